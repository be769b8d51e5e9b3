"""Dynamic token budget split across the four prompt sections."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence

from config import Settings, settings as default_settings
from loreweaver.engine.state import GameState
from loreweaver.scoring.relevance import EntityRelevance

logger = logging.getLogger(__name__)

SECTIONS = ("critical", "important", "contextual", "supplemental")

MANY_CRITICAL_SHIFT = (0.10, -0.05)
NO_QUEST_SHIFT = (0.05, -0.05)
COMPLEX_HISTORY_ENTRIES = 20


@dataclass(frozen=True)
class TokenBudget:
    """Per-section token allowance for one prompt build."""

    critical: int
    important: int
    contextual: int
    supplemental: int
    ceiling: int
    weights: Dict[str, float] = field(default_factory=dict)
    complex_history: bool = False

    @property
    def total(self) -> int:
        return self.critical + self.important + self.contextual + self.supplemental

    def as_dict(self) -> Dict[str, int]:
        return {name: getattr(self, name) for name in SECTIONS}


def adjusted_weights(
    relevant: Sequence[EntityRelevance],
    state: GameState,
    settings: Optional[Settings] = None,
) -> Dict[str, float]:
    """Base allocation shifted toward the critical section by state complexity.

    Adjustments apply in order: many high-scoring entities, then no active
    quest.  No weight goes below zero, and any excess over 1.0 is taken from
    supplemental first, then contextual.
    """
    settings = settings or default_settings
    weights = dict(settings.allocation)

    high_scoring = sum(1 for r in relevant if r.score > settings.CRITICAL_ENTITY_SCORE)
    if high_scoring > settings.CRITICAL_ENTITY_COUNT:
        weights["critical"] += MANY_CRITICAL_SHIFT[0]
        weights["important"] += MANY_CRITICAL_SHIFT[1]
    if not state.active_quests:
        weights["critical"] += NO_QUEST_SHIFT[0]
        weights["important"] += NO_QUEST_SHIFT[1]

    weights = {k: max(0.0, v) for k, v in weights.items()}

    excess = sum(weights.values()) - 1.0
    for name in ("supplemental", "contextual", "important"):
        if excess <= 1e-9:
            break
        taken = min(weights[name], excess)
        weights[name] -= taken
        excess -= taken

    return {k: round(v, 6) for k, v in weights.items()}


def calculate_token_budget(
    relevant: Sequence[EntityRelevance],
    state: GameState,
    context_tokens: int = 0,
    settings: Optional[Settings] = None,
) -> TokenBudget:
    """Split ``MAX_TOKENS_PER_TURN - TOKEN_BUFFER - context_tokens`` into section budgets.

    Each bucket is ``floor(ceiling * weight)`` so the sum may fall short of the
    ceiling but never exceeds it.
    """
    settings = settings or default_settings
    ceiling = max(0, settings.token_ceiling - max(0, context_tokens))
    weights = adjusted_weights(relevant, state, settings)
    sizes = {name: max(0, math.floor(ceiling * weights[name])) for name in SECTIONS}

    budget = TokenBudget(
        ceiling=ceiling,
        weights=weights,
        complex_history=len(state.game_history) > COMPLEX_HISTORY_ENTRIES,
        **sizes,
    )
    logger.info("Token budget %s of %d (weights %s)", budget.as_dict(), ceiling, weights)
    return budget
