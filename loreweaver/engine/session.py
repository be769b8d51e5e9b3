"""Per-session mutable state: the reference registry and rule activation counts."""
from __future__ import annotations

import logging
import random
from typing import Dict, Optional

from loreweaver.retrieval.references import ReferenceRegistry
from loreweaver.rules.activation import RuleActivationEngine

logger = logging.getLogger(__name__)

DEFAULT_SESSION = "default"


class PromptSession:
    """Everything that must survive between prompt builds of one game."""

    def __init__(self, session_id: str = DEFAULT_SESSION, rng: Optional[random.Random] = None) -> None:
        self.session_id = session_id
        self.registry = ReferenceRegistry()
        self.rule_engine = RuleActivationEngine(rng)

    def reset(self) -> None:
        self.registry.clear()
        self.rule_engine.reset()
        logger.info("Session %s reset", self.session_id)


class SessionArena:
    """Sessions keyed by game/session ID so concurrent games never share state."""

    def __init__(self) -> None:
        self._sessions: Dict[str, PromptSession] = {}

    def get(self, session_id: str) -> PromptSession:
        if session_id not in self._sessions:
            self._sessions[session_id] = PromptSession(session_id)
        return self._sessions[session_id]

    def drop(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
