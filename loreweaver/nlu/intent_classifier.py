"""Coarse action-intent classification by Vietnamese keyword patterns.

6 labels: movement, combat, social, item_use, skill_use, general
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Pattern

logger = logging.getLogger(__name__)

STOP_WORDS = {"và", "của", "là", "trong", "với", "để", "đến", "từ"}

_QUOTED = re.compile(r"\"([^\"]+)\"|“([^”]+)”")


@dataclass
class ActionIntent:
    """Classification result for one player action."""
    type: str = "general"
    targets: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    is_movement: bool = False
    is_combat: bool = False
    is_social: bool = False
    is_item_use: bool = False
    is_skill_use: bool = False


class IntentClassifier:
    """Classify a free-text action by ordered keyword regexes.

    The first matching pattern sets ``type``; every matching pattern sets its
    flag.  Anything that matches nothing is ``general``.  Callers depend only
    on ``predict()``, so a model-backed classifier can be swapped in.
    """

    PATTERN_MAP: Dict[str, Pattern[str]] = {
        "movement": re.compile(r"đi|chạy|leo|nhảy|bay|di chuyển|tới|đến|rời|về"),
        "combat": re.compile(r"tấn công|đánh|chém|đâm|bắn|ném|chiến đấu|giết"),
        "social": re.compile(r"nói|hỏi|trả lời|thuyết phục|dọa|giao dịch|mua|bán"),
        "item_use": re.compile(r"sử dụng|dùng|uống|ăn|trang bị|tháo|cho|lấy"),
        "skill_use": re.compile(r"thi triển|sử dụng.*pháp|công pháp|kỹ năng"),
    }

    # ── prediction ────────────────────────────────────────
    def predict(self, text: str) -> ActionIntent:
        """Return an ``ActionIntent`` for ``text``; never raises."""
        text = text or ""
        lowered = text.lower()
        intent = ActionIntent()

        for label, pattern in self.PATTERN_MAP.items():
            if pattern.search(lowered):
                setattr(intent, f"is_{label}", True)
                if intent.type == "general":
                    intent.type = label

        intent.targets = self.extract_targets(text)
        intent.keywords = self.extract_keywords(text)
        logger.debug("Intent %s for %r (targets=%s)", intent.type, text, intent.targets)
        return intent

    # ── extraction helpers ────────────────────────────────
    @staticmethod
    def extract_targets(text: str) -> List[str]:
        """Quoted phrases plus capitalised words longer than two characters."""
        targets: List[str] = []
        for match in _QUOTED.finditer(text):
            quoted = (match.group(1) or match.group(2) or "").strip()
            if quoted:
                targets.append(quoted)
        for word in re.findall(r"\w+", text):
            if len(word) > 2 and word[0].isupper():
                targets.append(word)
        return list(dict.fromkeys(targets))

    @staticmethod
    def extract_keywords(text: str) -> List[str]:
        words = [w for w in re.split(r"\s+", text.lower()) if w]
        keywords = [w for w in words if len(w) > 2 and w not in STOP_WORDS]
        return list(dict.fromkeys(keywords))
