"""Memory selection for the full (non-compact) context block.

Memories are ranked by a blend of recomputed importance, word overlap with
the action, recency, related-entity relevance and category keywords, then
thinned for category and topic diversity.  Pinned memories are always
placed first.
"""
from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Pattern

from config import Settings, settings as default_settings
from loreweaver.engine.state import Entity, GameState, Memory, MemoryCategory, MemorySource
from loreweaver.scoring.importance import ImportanceScorer

logger = logging.getLogger(__name__)

RECENCY_HORIZON = 50
RECENT_EVENT_TURNS = 5
INTERACTION_WINDOW = 10
CHRONICLE_BONUS = 5
CATEGORY_KEYWORD_BONUS = 3
TOKEN_FACTOR = 0.8

CATEGORY_KEYWORDS: Dict[MemoryCategory, List[str]] = {
    MemoryCategory.COMBAT: ["tấn công", "đánh", "chiến đấu", "giết", "chém", "bắn"],
    MemoryCategory.SOCIAL: ["nói", "hỏi", "thuyết phục", "giao dịch", "mua", "bán"],
    MemoryCategory.DISCOVERY: ["khám phá", "tìm kiếm", "điều tra", "quan sát"],
    MemoryCategory.RELATIONSHIP: ["yêu", "ghét", "bạn", "thù", "tin tưởng"],
    MemoryCategory.STORY: ["nhiệm vụ", "quest", "mục tiêu", "hoàn thành"],
}

CONTEXT_KEYWORDS = [
    # actions
    "tấn công", "đánh", "chiến đấu", "khám phá", "nói chuyện",
    "mua", "bán", "học", "sử dụng", "đi đến", "rời khỏi",
    # objects
    "kiếm", "khiên", "áo giáp", "thuốc", "ma pháp", "kỹ năng",
    "vàng", "bạc", "đồng", "rương", "cửa", "chìa khóa",
    # places
    "thành phố", "làng", "rừng", "núi", "biển", "hang động",
    "lâu đài", "đền", "chợ", "tavern", "khách sạn",
]

RELATIONSHIP_PATTERNS: List[Pattern[str]] = [
    re.compile(r"quan hệ với ([^:]+): ([^.!?]+)", re.IGNORECASE),
    re.compile(r"([^,]+) là ([^.!?]+) của", re.IGNORECASE),
    re.compile(r"tin tưởng ([^.!?]+)", re.IGNORECASE),
    re.compile(r"thù địch với ([^.!?]+)", re.IGNORECASE),
]

EVENT_PATTERNS: List[Pattern[str]] = [
    re.compile(r"hoàn thành [^.!?]+", re.IGNORECASE),
    re.compile(r"đánh bại [^.!?]+", re.IGNORECASE),
    re.compile(r"khám phá [^.!?]+", re.IGNORECASE),
    re.compile(r"gặp [^.!?]+", re.IGNORECASE),
    re.compile(r"nhận được [^.!?]+", re.IGNORECASE),
]


@dataclass
class RAGContext:
    relevant_memories: List[Memory] = field(default_factory=list)
    contextual_entities: List[Entity] = field(default_factory=list)
    relationship_context: List[str] = field(default_factory=list)
    recent_events: List[str] = field(default_factory=list)
    importance: float = 0.0
    token_usage: int = 0


# ── scoring helpers ───────────────────────────────────────
def context_keywords(text: str) -> List[str]:
    lowered = (text or "").lower()
    return [k for k in CONTEXT_KEYWORDS if k in lowered]


def text_relevance(memory_text: str, action: str) -> float:
    """Word overlap (70%) plus shared context keywords (30%), in ``[0, 100]``."""
    memory_words = (memory_text or "").lower().split()
    action_words = (action or "").lower().split()
    if not memory_words:
        direct = 0.0
    else:
        common = [w for w in memory_words if any(a in w or w in a for a in action_words)]
        direct = len(common) / len(memory_words)
    memory_keywords = set(context_keywords(memory_text))
    shared = sum(1 for k in context_keywords(action) if k in memory_keywords)
    context_score = min(1.0, shared * 0.2)
    return min(100.0, direct * 70 + context_score * 30)


def recency_score(memory: Memory, current_turn: int) -> float:
    created = memory.created_at if memory.created_at is not None else current_turn
    age = current_turn - created
    if age <= 0:
        return 1.0
    if age >= RECENCY_HORIZON:
        return 0.1
    return max(0.1, 1 - age / RECENCY_HORIZON)


def entity_relevance(memory: Memory, action: str, state: GameState) -> float:
    if not memory.related_entities:
        return 0.0
    action_lower = (action or "").lower()
    party = set(state.party_names)
    hits = 0.0
    for name in memory.related_entities:
        if name.lower() in action_lower:
            hits += 1
        elif name in party:
            hits += 0.5
        else:
            entity = state.known_entities.get(name)
            if entity is not None and entity.last_interaction is not None \
                    and state.turn_count - entity.last_interaction < INTERACTION_WINDOW:
                hits += 0.3
    return min(10.0, hits * 2)


def category_bonus(category: Optional[MemoryCategory], action: str) -> int:
    if category is None:
        return 0
    action_lower = (action or "").lower()
    keywords = CATEGORY_KEYWORDS.get(MemoryCategory(category), [])
    return CATEGORY_KEYWORD_BONUS * sum(1 for k in keywords if k in action_lower)


def _topic(memory: Memory) -> str:
    return " ".join(memory.text.split(" ")[:3]).lower()


# ── builder ───────────────────────────────────────────────
class IntelligentContextBuilder:
    def __init__(self, settings: Optional[Settings] = None, scorer: Optional[ImportanceScorer] = None) -> None:
        self.settings = settings or default_settings
        self.scorer = scorer or ImportanceScorer()

    def relevance(self, memory: Memory, action: str, state: GameState) -> float:
        score = self.scorer.score(memory, state).score * 0.4
        score += text_relevance(memory.text, action) * 30
        score += recency_score(memory, state.turn_count) * 30
        score += entity_relevance(memory, action, state) * 10
        score += category_bonus(memory.category, action)
        if memory.source == MemorySource.CHRONICLE:
            score += CHRONICLE_BONUS
        return min(100.0, max(0.0, score))

    def build(
        self,
        state: GameState,
        action: str,
        max_memories: Optional[int] = None,
        include_archived: bool = False,
    ) -> RAGContext:
        limit = max_memories if max_memories is not None else self.settings.INTELLIGENT_MAX_MEMORIES
        pool = list(state.memories) + (list(state.archived_memories) if include_archived else [])

        pinned = [m for m in pool if m.pinned]
        scored = [(self.relevance(m, action, state), i, m) for i, m in enumerate(pool) if not m.pinned]
        scored.sort(key=lambda t: (-t[0], t[1]))
        ranked = [m for _, _, m in scored]

        selected = self.ensure_diversity(pinned + ranked, max(limit, len(pinned)))
        entities = self.contextual_entities(selected, state)
        relationships = self.relationship_context(selected, state)
        events = self.recent_events(selected, state.turn_count)

        context = RAGContext(
            relevant_memories=selected,
            contextual_entities=entities,
            relationship_context=relationships,
            recent_events=events,
            importance=_average_importance(selected),
            token_usage=_token_usage(selected, entities, relationships),
        )
        logger.info(
            "Intelligent context: %d memories, %d entities, ~%d tokens",
            len(selected), len(entities), context.token_usage,
        )
        return context

    @staticmethod
    def ensure_diversity(memories: List[Memory], limit: int) -> List[Memory]:
        """Two passes: favour new categories first, then new opening topics."""
        if len(memories) <= 3:
            return memories[:limit]
        chosen: List[Memory] = []
        chosen_ids = set()
        categories = set()
        topics = set()

        for memory in memories:
            if len(chosen) >= limit:
                break
            category = memory.category or MemoryCategory.GENERAL
            if memory.pinned or category not in categories or len(categories) < 3:
                chosen.append(memory)
                chosen_ids.add(id(memory))
                categories.add(category)
                topics.add(_topic(memory))

        for memory in memories:
            if len(chosen) >= limit:
                break
            if id(memory) in chosen_ids:
                continue
            topic = _topic(memory)
            if topic not in topics:
                chosen.append(memory)
                chosen_ids.add(id(memory))
                topics.add(topic)
        return chosen

    @staticmethod
    def contextual_entities(memories: List[Memory], state: GameState) -> List[Entity]:
        names = list(dict.fromkeys(n for m in memories for n in m.related_entities))
        entities = [state.known_entities[n] for n in names if n in state.known_entities]
        party = set(state.party_names)
        return sorted(entities, key=lambda e: (e.name not in party, -(e.last_interaction or 0)))

    @staticmethod
    def relationship_context(memories: List[Memory], state: GameState) -> List[str]:
        lines = [f"{m.name}: {m.relationship}" for m in state.party if m.relationship]
        for memory in memories:
            if memory.category == MemoryCategory.RELATIONSHIP or "quan hệ" in memory.text:
                info = _relationship_info(memory.text)
                if info:
                    lines.append(info)
        return list(dict.fromkeys(lines))

    @staticmethod
    def recent_events(memories: List[Memory], current_turn: int) -> List[str]:
        def created(m: Memory) -> int:
            return m.created_at if m.created_at is not None else current_turn

        recent = [m for m in memories if current_turn - created(m) <= RECENT_EVENT_TURNS]
        recent.sort(key=lambda m: m.created_at or 0, reverse=True)
        events: List[str] = []
        for memory in recent:
            for pattern in EVENT_PATTERNS:
                events.extend(match.strip() for match in pattern.findall(memory.text))
        return events


def _relationship_info(text: str) -> Optional[str]:
    for pattern in RELATIONSHIP_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(0).strip()
    return None


def _average_importance(memories: List[Memory]) -> float:
    if not memories:
        return 0.0
    return sum(m.importance or 0 for m in memories) / len(memories)


def _token_usage(memories: List[Memory], entities: List[Entity], relationships: List[str]) -> int:
    texts = [m.text for m in memories] + [e.description for e in entities] + relationships
    return sum(math.ceil(len(t or "") * TOKEN_FACTOR) for t in texts)


def build_intelligent_context(
    state: GameState,
    action: str,
    max_memories: Optional[int] = None,
    include_archived: bool = False,
    settings: Optional[Settings] = None,
) -> RAGContext:
    return IntelligentContextBuilder(settings).build(state, action, max_memories, include_archived)


def format_intelligent_context(context: RAGContext) -> str:
    out = ""
    if context.relevant_memories:
        out += "--- RELEVANT MEMORIES ---\n"
        for i, memory in enumerate(context.relevant_memories, 1):
            category = MemoryCategory(memory.category).value.upper() if memory.category else "GENERAL"
            out += f"{i}. [{category}] {memory.text}\n"
        out += "\n"
    if context.relationship_context:
        out += "--- RELATIONSHIPS ---\n"
        out += "".join(f"• {rel}\n" for rel in context.relationship_context)
        out += "\n"
    if context.recent_events:
        out += "--- RECENT EVENTS ---\n"
        out += "".join(f"• {event}\n" for event in context.recent_events)
        out += "\n"
    return out
