"""Global configuration for LoreWeaver: retrieval-augmented prompt assembly."""
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Centralised settings read from .env file automatically."""

    # ── Paths ──────────────────────────────────────────────
    PROJECT_ROOT: Path = Path(__file__).parent

    # ── Token ceiling ─────────────────────────────────────
    MAX_TOKENS_PER_TURN: int = Field(default=90000, ge=0, description="Hard prompt ceiling before the safety buffer")
    TOKEN_BUFFER: int = Field(default=10000, ge=0, description="Tokens held back for the model's reply")
    CHARS_PER_TOKEN: float = Field(default=1.2, gt=0, description="Conservative multiplier from characters to tokens")

    # ── Section weights (must sum to 1.0) ─────────────────
    ALLOCATION_CRITICAL: float = 0.50
    ALLOCATION_IMPORTANT: float = 0.25
    ALLOCATION_CONTEXTUAL: float = 0.15
    ALLOCATION_SUPPLEMENTAL: float = 0.10

    # ── Compact reference context ─────────────────────────
    USE_REFERENCE_RAG: bool = True
    REFERENCE_RAG_TOKEN_LIMIT: int = 600
    COMPACT_MAX_MEMORIES: int = 6
    SUMMARY_MAX_CHARS: int = 120

    # ── Reasoning scaffold ────────────────────────────────
    ENABLE_COT: bool = True

    # ── Entity scoring ────────────────────────────────────
    RECENT_MENTION_TURNS: int = 3
    CRITICAL_ENTITY_SCORE: int = 70
    CRITICAL_ENTITY_COUNT: int = 5
    GRAPH_BONUS_THRESHOLD: int = 50
    GRAPH_SCALE_WARNING: int = 1000

    # ── Context sections ──────────────────────────────────
    INTELLIGENT_MAX_MEMORIES: int = 5
    PINNED_MEMORY_LIMIT: int = 1
    SELECTED_CHOICE_WINDOW: int = 8
    OFFERED_CHOICE_WINDOW: int = 15
    CHOICE_TURN_WINDOW: int = 5
    RULE_SCAN_DEPTH: int = 5

    # ── Narration ─────────────────────────────────────────
    NARRATION_LANGUAGE: str = "Vietnamese"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @model_validator(mode="after")
    def _check_allocation(self) -> "Settings":
        weights = self.allocation
        if any(w < 0 for w in weights.values()):
            raise ValueError("section allocation weights must be non-negative")
        if abs(sum(weights.values()) - 1.0) > 1e-6:
            raise ValueError(f"section allocation weights must sum to 1.0, got {sum(weights.values()):.3f}")
        return self

    @property
    def allocation(self) -> dict:
        return {
            "critical": self.ALLOCATION_CRITICAL,
            "important": self.ALLOCATION_IMPORTANT,
            "contextual": self.ALLOCATION_CONTEXTUAL,
            "supplemental": self.ALLOCATION_SUPPLEMENTAL,
        }

    @property
    def token_ceiling(self) -> int:
        return max(0, self.MAX_TOKENS_PER_TURN - self.TOKEN_BUFFER)


# Singleton settings instance used by every module
settings = Settings()
