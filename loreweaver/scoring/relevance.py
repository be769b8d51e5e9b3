"""Entity relevance scoring against the current action.

Party members are always relevant (flat 100).  Every other known entity
collects additive points from direct mention, recent history mentions,
location, intent/type affinity, companion skills, graph adjacency and
active statuses.  The graph bonus looks at the partial results of this same
pass, so it depends on insertion order; that single-pass behaviour is kept
for compatibility.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from config import Settings, settings as default_settings
from loreweaver.engine.state import Entity, EntityType, GameState, HistoryEntry
from loreweaver.knowledge_graph.graph import EntityGraph
from loreweaver.nlu.intent_classifier import ActionIntent

logger = logging.getLogger(__name__)

PARTY_SCORE = 100
DIRECT_MENTION_BONUS = 50
RECENT_MENTION_STEP = 10
RECENT_MENTION_CAP = 30
SAME_LOCATION_BONUS = 20
GRAPH_BONUS = 15
STATUS_BONUS = 10
SKILL_NAMED_BONUS = 30

TYPE_AFFINITY: Dict[str, Dict[str, int]] = {
    "combat": {"npc": 20, "item": 15, "skill": 25, "companion": 35},
    "social": {"npc": 30, "companion": 40, "faction": 20},
    "item_use": {"item": 30, "skill": 10, "companion": 15},
    "movement": {"location": 30, "npc": 10, "companion": 25},
    "skill_use": {"skill": 40, "item": 10, "companion": 30},
    "general": {"npc": 10, "item": 10, "location": 10, "companion": 20},
}

# (intent flag, phrases, bonus)
COMPANION_SKILL_PHRASES = [
    ("is_combat", ["chiến đấu", "tấn công", "phòng thủ", "kiếm thuật", "võ thuật", "magic", "pháp thuật"], 25),
    ("is_social", ["thuyết phục", "giao tiếp", "đàm phán", "lãnh đạo", "charm"], 20),
    ("is_movement", ["do thám", "stealth", "survival", "navigation", "tracking"], 15),
]


@dataclass
class EntityRelevance:
    """An entity paired with its score and human-readable reasons for one build."""
    entity: Entity
    score: float
    reasons: List[str] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.entity.name


def type_affinity(intent_type: str, entity_type: str) -> int:
    return TYPE_AFFINITY.get(intent_type, {}).get(entity_type, 0)


def count_recent_mentions(name: str, history: Sequence[HistoryEntry], turns: int) -> int:
    """Whole-word, case-insensitive occurrences of ``name`` in the last ``turns`` pairs."""
    if not name or turns <= 0:
        return 0
    pattern = re.compile(rf"(?<!\w){re.escape(name.lower())}(?!\w)")
    return sum(len(pattern.findall(entry.text.lower())) for entry in history[-turns * 2:])


def companion_skill_relevance(skills: Sequence[str], action: str, intent: ActionIntent) -> int:
    lowered_skills = [s.lower() for s in skills if s]
    action_lower = action.lower()
    score = 0
    for flag, phrases, bonus in COMPANION_SKILL_PHRASES:
        if getattr(intent, flag) and any(p in s for s in lowered_skills for p in phrases):
            score += bonus
    if any(s in action_lower for s in lowered_skills):
        score += SKILL_NAMED_BONUS
    return score


class EntityRelevanceScorer:
    """Rank every entity with a positive score; callers slice to their own budget."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or default_settings

    def score(
        self,
        state: GameState,
        action: str,
        intent: ActionIntent,
        graph: Optional[EntityGraph] = None,
    ) -> List[EntityRelevance]:
        action_lower = (action or "").lower()
        results: List[EntityRelevance] = []

        for member in state.party:
            results.append(EntityRelevance(member, PARTY_SCORE, ["Party member"]))

        party_names = set(state.party_names)
        pc = state.player_character
        pc_location = pc.location if pc is not None else None
        status_owners = {s.owner for s in state.statuses}

        for name, entity in state.known_entities.items():
            if name in party_names:
                continue
            score = 0.0
            reasons: List[str] = []

            if name.lower() in action_lower:
                score += DIRECT_MENTION_BONUS
                reasons.append("Directly mentioned")

            mentions = count_recent_mentions(name, state.game_history, self.settings.RECENT_MENTION_TURNS)
            if mentions:
                score += min(RECENT_MENTION_CAP, mentions * RECENT_MENTION_STEP)
                reasons.append(f"Recent mentions: {mentions}")

            if pc_location and entity.location == pc_location:
                score += SAME_LOCATION_BONUS
                reasons.append("Same location as PC")

            affinity = type_affinity(intent.type, _value(entity.type))
            if affinity:
                score += affinity
                reasons.append(f"Relevant to {intent.type} action")

            if entity.type == EntityType.COMPANION and entity.skills:
                skill_score = companion_skill_relevance(entity.skills, action_lower, intent)
                if skill_score:
                    score += skill_score
                    reasons.append(f"Relevant skills: {', '.join(entity.skills[:2])}")

            if graph is not None and self._connected_to_relevant(name, graph, results):
                score += GRAPH_BONUS
                reasons.append("Connected to relevant entity")

            if name in status_owners:
                score += STATUS_BONUS
                reasons.append("Has active status")

            if score > 0:
                results.append(EntityRelevance(entity, score, reasons))

        # sorted() is stable: ties keep party-first, then insertion order
        ranked = sorted(results, key=lambda r: r.score, reverse=True)
        logger.debug("Scored %d relevant entities for %r", len(ranked), action)
        return ranked

    def _connected_to_relevant(self, name: str, graph: EntityGraph, partial: List[EntityRelevance]) -> bool:
        neighbours = graph.related(name)
        if not neighbours:
            return False
        threshold = self.settings.GRAPH_BONUS_THRESHOLD
        return any(r.score > threshold and r.entity.name in neighbours for r in partial)


def _value(enum_or_str) -> str:
    return getattr(enum_or_str, "value", enum_or_str)
