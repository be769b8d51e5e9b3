"""Game state snapshot consumed by the prompt assembly pipeline.

The raw save dictionary is validated once at the boundary
(``GameState.from_raw``); every downstream component reads typed fields
and never re-checks shapes ad hoc.  Field aliases accept the camelCase keys
found in existing save files.
"""
from __future__ import annotations

import logging
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    ValidatorFunctionWrapHandler,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


# ── enums ─────────────────────────────────────────────────
class EntityType(str, Enum):
    PC = "pc"
    NPC = "npc"
    COMPANION = "companion"
    LOCATION = "location"
    FACTION = "faction"
    ITEM = "item"
    SKILL = "skill"
    STATUS_EFFECT = "status_effect"
    CONCEPT = "concept"


class MemorySource(str, Enum):
    CHRONICLE = "chronicle"
    MANUAL = "manual"
    AUTO = "auto_generated"


class MemoryCategory(str, Enum):
    COMBAT = "combat"
    SOCIAL = "social"
    DISCOVERY = "discovery"
    STORY = "story"
    RELATIONSHIP = "relationship"
    GENERAL = "general"


class QuestStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class RuleLogic(IntEnum):
    AND_ANY = 0
    NOT_ALL = 1
    NOT_ANY = 2
    AND_ALL = 3


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


def _split_list(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return value


# ── world objects ─────────────────────────────────────────
class Entity(_Model):
    """A named, typed game object; ``name`` is unique within ``known_entities``."""

    name: str = ""
    type: EntityType = EntityType.CONCEPT
    description: str = ""
    location: Optional[str] = None
    owner: Optional[str] = None
    relationship: Optional[str] = None
    personality: Optional[str] = None
    motivation: Optional[str] = None
    realm: Optional[str] = None
    mastery: Optional[str] = None
    current_exp: Optional[float] = None
    skills: List[str] = Field(default_factory=list)
    learned_skills: List[str] = Field(default_factory=list)
    reference_id: Optional[str] = None
    archived: bool = False
    last_interaction: Optional[int] = None

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> Any:
        if isinstance(value, str) and value not in EntityType._value2member_map_:
            logger.warning("Unknown entity type %r, treating as concept.", value)
            return EntityType.CONCEPT
        return value

    @field_validator("skills", "learned_skills", mode="before")
    @classmethod
    def _coerce_skills(cls, value: Any) -> Any:
        return _split_list(value)

    @field_validator("description", mode="before")
    @classmethod
    def _coerce_description(cls, value: Any) -> Any:
        return value or ""


class Status(_Model):
    name: str
    description: str = ""
    type: str = "neutral"
    source: str = ""
    duration: Optional[str] = None
    effects: Optional[str] = None
    owner: str = "pc"


class Memory(_Model):
    """A fact extracted from play.  ``importance`` is a display hint only."""

    text: str
    pinned: bool = False
    created_at: Optional[int] = None
    last_accessed: Optional[int] = None
    source: Optional[MemorySource] = None
    category: Optional[MemoryCategory] = None
    importance: Optional[float] = None
    related_entities: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    emotional_weight: Optional[int] = None

    @field_validator("source", mode="before")
    @classmethod
    def _coerce_source(cls, value: Any) -> Any:
        if value in ("auto", "auto_generated"):
            return MemorySource.AUTO
        if isinstance(value, str) and value not in MemorySource._value2member_map_:
            return None
        return value

    @field_validator("category", mode="before")
    @classmethod
    def _coerce_category(cls, value: Any) -> Any:
        if isinstance(value, str) and value not in MemoryCategory._value2member_map_:
            return None
        return value or None

    @field_validator("related_entities", "tags", mode="before")
    @classmethod
    def _coerce_lists(cls, value: Any) -> Any:
        return _split_list(value)


class QuestObjective(_Model):
    description: str
    completed: bool = False


class Quest(_Model):
    title: str
    description: str = ""
    objectives: List[QuestObjective] = Field(default_factory=list)
    giver: Optional[str] = None
    reward: Optional[str] = None
    is_main_quest: bool = False
    status: QuestStatus = QuestStatus.ACTIVE

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> Any:
        if value is None:
            return QuestStatus.ACTIVE
        if isinstance(value, str) and value not in QuestStatus._value2member_map_:
            logger.warning("Unknown quest status %r, treating as active.", value)
            return QuestStatus.ACTIVE
        return value


class HistoryEntry(_Model):
    """One turn half.  Accepts ``{role, text}`` or the legacy ``{role, parts: [{text}]}``."""

    role: str
    text: str = ""

    @model_validator(mode="before")
    @classmethod
    def _flatten_parts(cls, data: Any) -> Any:
        if isinstance(data, dict) and "text" not in data and "parts" in data:
            parts = data.get("parts") or []
            text = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
            data = {**data, "text": text}
        return data


class Chronicle(_Model):
    memoir: List[str] = Field(default_factory=list)
    chapter: List[str] = Field(default_factory=list)
    turn: List[str] = Field(default_factory=list)


class ChoiceRecord(_Model):
    turn: int = 0
    choices: List[str] = Field(default_factory=list)
    selected_choice: Optional[str] = None
    context: Optional[str] = None


class CompressedHistorySegment(_Model):
    turn_range: str = ""
    summary: str = ""
    story_flow: List[str] = Field(default_factory=list)
    recent_choices: List[str] = Field(default_factory=list)
    key_actions: List[str] = Field(default_factory=list)
    important_events: List[str] = Field(default_factory=list)


class CustomRule(_Model):
    """User-authored world/lore rule injected by keyword activation."""

    id: str
    content: str
    is_active: bool = True
    title: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    secondary_keywords: List[str] = Field(default_factory=list)
    logic: RuleLogic = RuleLogic.AND_ANY
    order: int = 0
    always_active: bool = False
    case_sensitive: Optional[bool] = None
    match_whole_words: Optional[bool] = None
    probability: float = 100
    max_activations_per_turn: Optional[int] = None
    scan_depth: Optional[int] = None
    scan_player_input: bool = True
    scan_ai_output: bool = Field(default=True, alias="scanAIOutput")
    scan_memories: bool = True
    token_weight: Optional[int] = None
    category: Optional[str] = None

    @field_validator("keywords", "secondary_keywords", mode="before")
    @classmethod
    def _coerce_keywords(cls, value: Any) -> Any:
        return _split_list(value)

    @field_validator("logic", mode="before")
    @classmethod
    def _coerce_logic(cls, value: Any) -> Any:
        if value is None or (isinstance(value, int) and value not in RuleLogic._value2member_map_):
            return RuleLogic.AND_ANY
        return value


class GameTime(_Model):
    year: int = 1
    month: int = 1
    day: int = 1
    hour: int = 0
    minute: int = 0

    def format(self) -> str:
        return f"Year {self.year} Month {self.month} Day {self.day}, {self.hour:02d}:{self.minute:02d}"


class WorldData(_Model):
    world_name: str = ""
    story_name: str = ""
    genre: str = ""
    world_detail: str = ""
    writing_style: str = ""
    difficulty: str = ""
    allow_nsfw: bool = False


# ── snapshot ──────────────────────────────────────────────
class GameState(_Model):
    """Typed, read-only view of a save snapshot for one prompt build."""

    world_data: WorldData = Field(default_factory=WorldData)
    known_entities: Dict[str, Entity] = Field(default_factory=dict)
    statuses: List[Status] = Field(default_factory=list)
    quests: List[Quest] = Field(default_factory=list)
    game_history: List[HistoryEntry] = Field(default_factory=list)
    memories: List[Memory] = Field(default_factory=list)
    archived_memories: List[Memory] = Field(default_factory=list)
    party: List[Entity] = Field(default_factory=list)
    custom_rules: List[CustomRule] = Field(default_factory=list)
    turn_count: int = 0
    game_time: GameTime = Field(default_factory=GameTime)
    chronicle: Chronicle = Field(default_factory=Chronicle)
    compressed_history: List[CompressedHistorySegment] = Field(default_factory=list)
    choice_history: List[ChoiceRecord] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _drop_null_collections(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = {k: v for k, v in data.items() if v is not None}
            entities = data.get("knownEntities", data.get("known_entities"))
            if isinstance(entities, dict):
                data.pop("known_entities", None)
                data["knownEntities"] = _clean_entities(entities)
        return data

    @field_validator(
        "statuses", "quests", "game_history", "memories", "archived_memories", "party",
        "custom_rules", "compressed_history", "choice_history", "known_entities",
        mode="wrap",
    )
    @classmethod
    def _skip_bad_records(cls, value: Any, handler: ValidatorFunctionWrapHandler, info: ValidationInfo) -> Any:
        """Validate records one by one; a malformed record is logged and dropped."""
        if isinstance(value, list):
            kept: List[Any] = []
            for index, item in enumerate(value):
                try:
                    kept.extend(handler([item]))
                except ValidationError as exc:
                    logger.warning("Skipping malformed %s[%d]: %s", info.field_name, index, _first_error(exc))
            return kept
        if isinstance(value, dict):
            valid: Dict[str, Any] = {}
            for key, item in value.items():
                try:
                    valid.update(handler({key: item}))
                except ValidationError as exc:
                    logger.warning("Skipping malformed %s[%r]: %s", info.field_name, key, _first_error(exc))
            return valid
        return handler(value)

    # ── construction ──────────────────────────────────────
    @classmethod
    def from_raw(cls, raw: Any) -> Optional["GameState"]:
        """Validate a raw save dict.

        Malformed records inside collections are dropped one by one; ``None``
        (logged) is returned only when the save as a whole is unusable.
        """
        if isinstance(raw, GameState):
            return raw
        if not isinstance(raw, dict):
            logger.warning("Game state missing or not a mapping (%s).", type(raw).__name__)
            return None
        try:
            return cls.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Game state failed validation: %s", exc)
            return None

    # ── convenience views ─────────────────────────────────
    @property
    def player_character(self) -> Optional[Entity]:
        for member in self.party:
            if member.type == EntityType.PC:
                return member
        for entity in self.known_entities.values():
            if entity.type == EntityType.PC:
                return entity
        return None

    @property
    def companions(self) -> List[Entity]:
        return [m for m in self.party if m.type == EntityType.COMPANION]

    @property
    def active_quests(self) -> List[Quest]:
        return [q for q in self.quests if q.status == QuestStatus.ACTIVE]

    @property
    def party_names(self) -> List[str]:
        return [m.name for m in self.party]

    def statuses_for(self, entity: Entity) -> List[Status]:
        owners = {entity.name}
        if entity.type == EntityType.PC:
            owners.add("pc")
        return [s for s in self.statuses if s.owner in owners]


def _clean_entities(entities: Dict[Any, Any]) -> Dict[str, Any]:
    """Fill missing names from keys and drop entries that are not mappings."""
    cleaned: Dict[str, Any] = {}
    for key, value in entities.items():
        if isinstance(value, Entity):
            cleaned[str(key)] = value
            continue
        if not isinstance(value, dict):
            logger.warning("Dropping malformed entity entry %r.", key)
            continue
        if not value.get("name"):
            value = {**value, "name": str(key)}
        cleaned[str(key)] = value
    return cleaned


def _first_error(exc: ValidationError) -> str:
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error.get("loc", ()))
    return f"{location}: {error.get('msg', '')}" if location else error.get("msg", "")
