"""Narrative-facing analysis of the player's action for the action framing block."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from loreweaver.engine.state import GameState

# Ordered: the first matching pattern names the action.
ACTION_TYPES: List[Tuple[str, "re.Pattern[str]", str]] = [
    ("relaxation/observation", re.compile(r"nghỉ|ngồi|quan sát|xem|nhìn|thư giãn|tận hưởng"),
     "A calm action focused on observing and enjoying the surroundings"),
    ("interaction/request", re.compile(r"thử thách|yêu cầu|nhờ|đề nghị"),
     "An active interaction that asks someone else to respond"),
    ("communication", re.compile(r"nói|hỏi|trò chuyện|tán gẫu"),
     "A social exchange of information"),
    ("combat", re.compile(r"tấn công|chiến đấu|đánh"),
     "A combat action that may carry danger"),
    ("movement", re.compile(r"di chuyển|đi|chạy|bay"),
     "Moving from one place to another"),
]
OTHER_DESCRIPTION = "A special action outside the usual categories"

_DURATION = re.compile(r"\((\d+)\s*(phút|giờ|ngày)\)")
_MEDIUM = re.compile(r"thử thách|yêu cầu|nhờ")
_COMPLEX = re.compile(r"chiến đấu|tấn công|kỹ năng")


@dataclass
class ActionAnalysis:
    type: str = "other"
    description: str = OTHER_DESCRIPTION
    complexity: str = "simple"
    expected_duration: str = "unspecified"
    involved_entities: List[str] = field(default_factory=list)


def analyze_player_action(action: str, state: Optional[GameState]) -> ActionAnalysis:
    """Classify the action for narration: type, complexity, duration, entities."""
    lowered = action.lower()
    analysis = ActionAnalysis()

    for label, pattern, description in ACTION_TYPES:
        if pattern.search(lowered):
            analysis.type = label
            analysis.description = description
            break

    match = _DURATION.search(action)
    if match:
        analysis.expected_duration = f"{match.group(1)} {match.group(2)}"

    if _MEDIUM.search(lowered):
        analysis.complexity = "moderate"
    elif _COMPLEX.search(lowered):
        analysis.complexity = "complex"

    if state is not None:
        involved: List[str] = []
        for name in list(state.known_entities) + state.party_names:
            if name and name.lower() in lowered:
                involved.append(name)
        analysis.involved_entities = list(dict.fromkeys(involved))
    return analysis
