"""Memory importance scoring.

Scores are re-derived from the live game state on every call; the
``importance`` value persisted on a memory is a display hint and is never
read here.  The scorer is pure: it neither mutates its inputs nor uses
randomness.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Pattern, Tuple

from loreweaver.engine.state import EntityType, GameState, Memory, MemoryCategory, MemorySource

logger = logging.getLogger(__name__)

SOURCE_BONUS: Dict[Optional[MemorySource], Tuple[int, str]] = {
    MemorySource.CHRONICLE: (30, "Chronicle origin"),
    MemorySource.MANUAL: (20, "Manually created"),
}
DEFAULT_SOURCE_BONUS = (10, "Auto-generated")
PINNED_BONUS = 50

CATEGORY_BONUS: Dict[MemoryCategory, int] = {
    MemoryCategory.STORY: 15,
    MemoryCategory.RELATIONSHIP: 10,
    MemoryCategory.COMBAT: 8,
    MemoryCategory.DISCOVERY: 6,
    MemoryCategory.SOCIAL: 5,
    MemoryCategory.GENERAL: 0,
}

CONTENT_BONUS_CAP = 50

# (weight per match, patterns)
CONTENT_TIERS: List[Tuple[int, List[Pattern[str]]]] = [
    (10, [
        re.compile(r"chết|tử vong|hi sinh|thiệt mạng"),
        re.compile(r"cưới|kết hôn|đính hôn"),
        re.compile(r"chiến thắng|thắng lợi|đại thắng"),
        re.compile(r"thua cuộc|thất bại|thảm bại"),
        re.compile(r"yêu|phải lòng|si mê"),
    ]),
    (5, [
        re.compile(r"học được|nâng cấp|tiến bộ|thăng cấp"),
        re.compile(r"gặp gỡ|kết bạn|đồng minh|thù địch"),
        re.compile(r"nhận được|tìm thấy|thu thập|mua được"),
        re.compile(r"bí mật|bí ẩn|khám phá|phát hiện"),
    ]),
    (1, [
        re.compile(r"ăn|uống|ngủ|nghỉ ngơi"),
        re.compile(r"mua sắm|đi chợ|dạo phố"),
        re.compile(r"trò chuyện|nói chuyện|tám"),
    ]),
]

# Ordered: the first matching category wins.
CATEGORY_PATTERNS: List[Tuple[MemoryCategory, Pattern[str]]] = [
    (MemoryCategory.COMBAT, re.compile(r"tấn công|đánh|chiến đấu|giết|chém|đâm|phòng thủ|né tránh")),
    (MemoryCategory.RELATIONSHIP, re.compile(r"yêu|ghét|bạn|thù|cưới|hôn|thân thiết|xa cách")),
    (MemoryCategory.DISCOVERY, re.compile(r"tìm thấy|khám phá|phát hiện|bí mật|bí ẩn|tìm kiếm")),
    (MemoryCategory.SOCIAL, re.compile(r"nói|thuyết phục|giao dịch|mua|bán|gặp gỡ|trò chuyện")),
    (MemoryCategory.STORY, re.compile(r"chết|cưới|chiến thắng|thất bại|kết thúc|bắt đầu")),
]

EMOTION_TIERS: List[Tuple[float, List[Pattern[str]]]] = [
    (4, [
        re.compile(r"hạnh phúc|vui mừng|phấn khích|tuyệt vời"),
        re.compile(r"yêu|phải lòng|si mê|đam mê"),
        re.compile(r"chiến thắng|thành công|đại thắng"),
    ]),
    (1.5, [
        re.compile(r"vui|thoải mái|hài lòng|tốt"),
        re.compile(r"bạn bè|đồng minh|tin tưởng"),
    ]),
    (-4, [
        re.compile(r"chết|tử vong|thảm kịch|đau khổ"),
        re.compile(r"ghét|căm thù|thù địch|phản bội"),
        re.compile(r"thất bại|thảm bại|thua cuộc"),
    ]),
    (-1.5, [
        re.compile(r"buồn|khó chịu|thất vọng|lo lắng"),
        re.compile(r"kẻ thù|đối địch|xung đột"),
    ]),
]


@dataclass
class ImportanceAnalysis:
    score: float
    reasons: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)


class ImportanceScorer:
    """Additive multi-signal importance score in ``[0, 100]`` for a memory."""

    def score(self, memory: Memory, state: GameState) -> ImportanceAnalysis:
        total = 0.0
        reasons: List[str] = []

        bonus, label = SOURCE_BONUS.get(memory.source, DEFAULT_SOURCE_BONUS)
        total += bonus
        reasons.append(f"{label} (+{bonus})")

        if memory.pinned:
            total += PINNED_BONUS
            reasons.append(f"User pinned (+{PINNED_BONUS})")

        if memory.created_at is not None:
            elapsed = max(0, state.turn_count - memory.created_at)
            recency = max(0.0, 20 - elapsed * 0.5)
            if recency > 0:
                total += recency
                reasons.append(f"Recent creation (+{recency:.1f})")

        if memory.last_accessed is not None:
            elapsed = max(0, state.turn_count - memory.last_accessed)
            access = max(0.0, 15 - elapsed * 0.3)
            if access > 0:
                total += access
                reasons.append(f"Recently accessed (+{access:.1f})")

        entity_bonus = self._related_entity_bonus(memory, state)
        if entity_bonus:
            total += entity_bonus
            reasons.append(f"Related entities (+{entity_bonus})")

        if memory.emotional_weight:
            emotional = abs(memory.emotional_weight) * 2
            total += emotional
            reasons.append(f"Emotional significance (+{emotional})")

        if memory.category is not None:
            category_bonus = CATEGORY_BONUS.get(MemoryCategory(memory.category), 0)
            if category_bonus:
                total += category_bonus
                reasons.append(f"{MemoryCategory(memory.category).value.title()} category (+{category_bonus})")

        content = content_importance(memory.text)
        if content:
            total += content
            reasons.append(f"Content keywords (+{content})")

        final = min(100.0, max(0.0, total))
        return ImportanceAnalysis(score=final, reasons=reasons, suggestions=self._suggestions(memory, final))

    @staticmethod
    def _related_entity_bonus(memory: Memory, state: GameState) -> int:
        party = {m.name: m for m in state.party}
        bonus = 0
        for name in memory.related_entities:
            entity = state.known_entities.get(name) or party.get(name)
            if entity is None:
                continue
            if entity.type == EntityType.COMPANION:
                bonus += 10
            elif entity.type == EntityType.PC:
                bonus += 5
            elif entity.owner == "pc":
                bonus += 5
            elif entity.type == EntityType.NPC:
                bonus += 3
        return bonus

    @staticmethod
    def _suggestions(memory: Memory, score: float) -> List[str]:
        suggestions: List[str] = []
        if memory.created_at is None:
            suggestions.append("Add creation turn for recency tracking")
        if memory.category is None:
            suggestions.append("Categorize memory for better importance scoring")
        if not memory.related_entities:
            suggestions.append("Link to related entities for context")
        if score < 30 and not memory.pinned:
            suggestions.append("Consider pinning if this memory is important")
        if score > 80 and not memory.pinned:
            suggestions.append("High-importance memory - consider pinning")
        return suggestions


# ── content helpers ───────────────────────────────────────
def content_importance(text: str) -> int:
    """Keyword-tier bonus for memory text, capped at ``CONTENT_BONUS_CAP``."""
    lowered = (text or "").lower()
    total = 0
    for weight, patterns in CONTENT_TIERS:
        for pattern in patterns:
            total += weight * len(pattern.findall(lowered))
    return min(CONTENT_BONUS_CAP, total)


def suggest_category(text: str) -> MemoryCategory:
    lowered = (text or "").lower()
    for category, pattern in CATEGORY_PATTERNS:
        if pattern.search(lowered):
            return category
    return MemoryCategory.GENERAL


def analyze_emotional_weight(text: str) -> int:
    """Signed emotional weight in ``[-10, 10]`` from emotion keywords."""
    lowered = (text or "").lower()
    weight = 0.0
    for per_match, patterns in EMOTION_TIERS:
        for pattern in patterns:
            weight += per_match * len(pattern.findall(lowered))
    return int(max(-10, min(10, round(weight))))


def enrich_memory(memory: Memory) -> Memory:
    """Return a copy with missing category and emotional weight filled from the text."""
    updates = {}
    if memory.category is None:
        updates["category"] = suggest_category(memory.text)
    if memory.emotional_weight is None:
        updates["emotional_weight"] = analyze_emotional_weight(memory.text)
    return memory.model_copy(update=updates) if updates else memory
