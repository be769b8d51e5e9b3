"""Structured multi-step reasoning scaffold appended at the end of the prompt."""
from __future__ import annotations

import logging
import re
from typing import List, Optional

from loreweaver.context.history import extract_recent_events, parse_model_entry
from loreweaver.engine.state import Entity, GameState
from loreweaver.nlg.prompt_templates import COT_SCAFFOLD

logger = logging.getLogger(__name__)

_FATIGUE = re.compile(r"mệt|thương|đau|kiệt sức")
_ACTION_CATEGORIES = [
    ("communication", re.compile(r"nói|hỏi|trò chuyện")),
    ("combat", re.compile(r"tấn công|đánh|chiến đấu")),
    ("movement", re.compile(r"đi|di chuyển|tới")),
    ("observation", re.compile(r"quan sát|nhìn|xem")),
]
PROGRESSION_IDEAS = [
    "Introduce a new element or NPC",
    "Develop an existing relationship",
    "Create a chance to use a skill",
    "Pose a small challenge",
    "Reveal an interesting detail",
]


def categorize_action(action: str) -> str:
    lowered = action.lower()
    for label, pattern in _ACTION_CATEGORIES:
        if pattern.search(lowered):
            return label
    return "general"


def character_state(entity: Optional[Entity], state: GameState) -> str:
    if entity is None:
        return "unknown"
    details: List[str] = []
    if entity.realm:
        details.append(f"Realm: {entity.realm}")
    statuses = state.statuses_for(entity)
    if statuses:
        details.append(f"Statuses: {', '.join(s.name for s in statuses)}")
    return ", ".join(details) or "normal"


def physical_state(pc: Optional[Entity], state: GameState) -> str:
    if pc is None:
        return "unknown"
    for entry in state.game_history[-2:]:
        if entry.role != "model":
            continue
        parsed = parse_model_entry(entry)
        story = parsed.get("story") if parsed else None
        if isinstance(story, str) and _FATIGUE.search(story):
            return "Showing signs of fatigue or strain"
    return "Alert and healthy"


def power_balance(state: GameState) -> str:
    pc = state.player_character
    companions = state.companions
    if not companions:
        return "no power balance concerns"
    notes = []
    for companion in companions:
        if pc is not None and companion.realm and companion.realm == pc.realm:
            notes.append(f"{companion.name} is on par with the player character")
        else:
            notes.append(f"{companion.name} keeps a voice of their own")
    return ", ".join(notes)


def build_reasoning_scaffold(action: str, state: GameState) -> str:
    pc = state.player_character
    if state.companions:
        companions = "\n   ".join(
            f"[COMPANION] {c.name}: relationship {c.relationship or 'neutral'}; "
            f"personality {c.personality or 'unknown'}; state {character_state(c, state)}"
            for c in state.companions
        )
    else:
        companions = "[No companions]"

    scaffold = COT_SCAFFOLD.format(
        recent_events=extract_recent_events(state.game_history),
        game_time=state.game_time.format(),
        location=(pc.location if pc else None) or "unknown",
        pc_name=pc.name if pc else "unknown",
        pc_personality=(pc.personality if pc else None) or "undetermined",
        pc_motivation=(pc.motivation if pc else None) or "unclear",
        pc_state=character_state(pc, state),
        companions=companions,
        physical_state=physical_state(pc, state),
        power_balance=power_balance(state),
        action=action,
        action_category=categorize_action(action),
        progression=", ".join(PROGRESSION_IDEAS[:2]),
        continuity="Continue naturally from what just happened" if state.game_history else "A fresh start",
    )
    logger.debug("Reasoning scaffold: %d chars", len(scaffold))
    return scaffold
