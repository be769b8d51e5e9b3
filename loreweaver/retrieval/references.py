"""Reference-compression context: compact ID-tagged summaries instead of full payloads.

Every entity gets a stable reference ID.  Entities from older saves carry
none, so one is derived once (``REF_<TT>_LEG_<hash>``) and remembered by the
session's registry; it is never regenerated for the same ``(type, name)``.
Registries are owned per session by ``PromptSession``.
"""
from __future__ import annotations

import hashlib
import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from config import Settings, settings as default_settings
from loreweaver.engine.state import Entity, EntityType, GameState, Memory, MemoryCategory
from loreweaver.knowledge_graph.graph import EntityGraph
from loreweaver.nlu.intent_classifier import ActionIntent, IntentClassifier
from loreweaver.retrieval.intelligent import IntelligentContextBuilder
from loreweaver.scoring.importance import ImportanceScorer
from loreweaver.scoring.relevance import EntityRelevance, EntityRelevanceScorer
from loreweaver.utils.tokens import ELLIPSIS, estimate_tokens

logger = logging.getLogger(__name__)

REFERENCE_ID_PATTERN = re.compile(r"^REF_([A-Z]{2})_([A-Z]{3})_([A-F0-9]{8})$")
LEGACY_TAG = "LEG"

TYPE_PREFIXES: Dict[str, str] = {
    "pc": "PC",
    "npc": "NP",
    "companion": "CO",
    "location": "LO",
    "item": "IT",
    "skill": "SK",
    "faction": "FA",
    "concept": "CN",
    "status_effect": "ST",
}

TYPE_LABELS: Dict[str, str] = {
    "pc": "Main character",
    "companion": "Companion",
    "npc": "NPC",
    "location": "Location",
    "item": "Item",
    "skill": "Skill",
    "faction": "Faction",
    "concept": "Concept",
    "status_effect": "Status",
}

DESCRIPTION_CHARS = 60
MEMORY_CHARS = 80
RELATIONSHIP_STATUS_CHARS = 30
RELATIONSHIP_LINE_CHARS = 50
EVENT_CHARS = 60
KEYWORD_SEARCH_LIMIT = 5


@dataclass
class EntityReference:
    reference_id: str
    name: str
    type: str
    summary: str
    relevance_score: float
    last_accessed: float = 0.0

    def render(self) -> str:
        return f"• {self.name} [{self.reference_id}]: {self.summary}"


@dataclass
class CompactRAGContext:
    entity_references: List[EntityReference] = field(default_factory=list)
    memory_references: List[str] = field(default_factory=list)
    relationship_keys: List[str] = field(default_factory=list)
    recent_event_summaries: List[str] = field(default_factory=list)
    original_tokens: int = 0
    compact_tokens: int = 0

    @property
    def tokens_saved(self) -> int:
        return self.original_tokens - self.compact_tokens

    @property
    def is_empty(self) -> bool:
        return not (self.entity_references or self.memory_references
                    or self.relationship_keys or self.recent_event_summaries)


# ── summaries ─────────────────────────────────────────────
def _type_value(entity: Entity) -> str:
    return getattr(entity.type, "value", entity.type)


def _clip(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: max(0, limit - len(ELLIPSIS))] + ELLIPSIS


def entity_summary(entity: Entity, max_chars: int) -> str:
    """Type label, realm, relationship, location, then a short description, joined by ``|``."""
    parts = [TYPE_LABELS.get(_type_value(entity), "Entity")]
    if entity.realm:
        parts.append(f"Realm: {entity.realm}")
    if entity.relationship:
        parts.append(f"Relationship: {entity.relationship}")
    if entity.location:
        parts.append(f"At: {entity.location}")
    if entity.description:
        parts.append(_clip(entity.description, DESCRIPTION_CHARS))
    return _clip(" | ".join(parts), max_chars)


def memory_line(memory: Memory, importance: float) -> str:
    category = MemoryCategory(memory.category).value.upper() if memory.category else "GENERAL"
    return f"[{category}]({round(importance)}) {_clip(memory.text, MEMORY_CHARS)}"


def relationship_key(line: str) -> str:
    name, sep, status = line.partition(":")
    if sep:
        return f"{name.strip()}: {status.strip()[:RELATIONSHIP_STATUS_CHARS]}"
    return _clip(line, RELATIONSHIP_LINE_CHARS)


def legacy_reference_id(entity: Entity, timestamp: Optional[float] = None) -> str:
    stamp = time.time() if timestamp is None else timestamp
    kind = _type_value(entity)
    digest = hashlib.sha256(f"{kind}_{entity.name}_{stamp}".encode("utf-8")).hexdigest()
    prefix = TYPE_PREFIXES.get(kind, kind[:2].upper())
    return f"REF_{prefix}_{LEGACY_TAG}_{digest[:8].upper()}"


def validate_reference_id(reference_id: str) -> Optional[str]:
    """Return the entity type encoded in a reference ID, or ``None`` if malformed."""
    match = REFERENCE_ID_PATTERN.match(reference_id or "")
    if not match:
        return None
    by_prefix = {v: k for k, v in TYPE_PREFIXES.items()}
    return by_prefix.get(match.group(1), "unknown")


# ── registry ──────────────────────────────────────────────
class ReferenceRegistry:
    """Per-session lookup maps from reference IDs to entities and memories."""

    def __init__(self) -> None:
        self.entities: Dict[str, Entity] = {}
        self.memories: Dict[str, Memory] = {}
        self.relationships: Dict[str, str] = {}
        self.assigned: Dict[Tuple[str, str], str] = {}
        self.last_update: float = 0.0

    def assign_reference(self, entity: Entity) -> str:
        key = (_type_value(entity), entity.name)
        ref = entity.reference_id or self.assigned.get(key)
        if ref is None:
            ref = legacy_reference_id(entity)
            logger.info("Generated legacy reference ID for %s (%s): %s", entity.name, key[0], ref)
        self.assigned[key] = ref
        self.entities[ref] = entity
        return ref

    def update(self, state: GameState) -> None:
        for entity in state.known_entities.values():
            self.assign_reference(entity)
        for member in state.party:
            self.assign_reference(member)
            if member.relationship:
                self.relationships[f"REL_{member.name}_PC"] = member.relationship
        self.memories = {f"MEM_{i}": memory for i, memory in enumerate(state.memories)}
        self.last_update = time.time()

    # ── lookups ───────────────────────────────────────────
    def get_entity_by_reference(self, reference_id: str) -> Optional[Entity]:
        return self.entities.get(reference_id)

    def get_memory_by_reference(self, reference_id: str) -> Optional[Memory]:
        return self.memories.get(reference_id)

    def reference_for(self, name: str) -> Optional[str]:
        for (_, entity_name), ref in self.assigned.items():
            if entity_name == name:
                return ref
        return None

    def find_by_keyword(self, keyword: str, limit: int = KEYWORD_SEARCH_LIMIT,
                        max_chars: Optional[int] = None) -> List[EntityReference]:
        needle = (keyword or "").lower()
        if not needle:
            return []
        cap = max_chars or default_settings.SUMMARY_MAX_CHARS
        results: List[EntityReference] = []
        for ref, entity in self.entities.items():
            name = entity.name.lower()
            kind = _type_value(entity).lower()
            description = entity.description.lower()
            score = 0
            if name == needle:
                score += 50
            elif needle in name:
                score += 30
            if needle in kind:
                score += 20
            if needle in description:
                score += 15
            if score:
                results.append(EntityReference(ref, entity.name, _type_value(entity),
                                               entity_summary(entity, cap), score, self.last_update))
        results.sort(key=lambda r: r.relevance_score, reverse=True)
        return results[:limit]

    def get_entities(self, reference_ids: List[str]) -> Tuple[Dict[str, Entity], List[str]]:
        found: Dict[str, Entity] = {}
        missing: List[str] = []
        for ref in reference_ids:
            entity = self.entities.get(ref)
            if entity is None:
                missing.append(ref)
            else:
                found[ref] = entity
        return found, missing

    def entity_relationships(self, reference_id: str, graph: Optional[EntityGraph] = None) -> List[Dict[str, Any]]:
        """Owner, location, party and graph links of an entity, expressed as references."""
        entity = self.get_entity_by_reference(reference_id)
        if entity is None:
            return []
        links: List[Dict[str, Any]] = []
        if entity.type == EntityType.COMPANION:
            links.append({
                "type": "party_member", "name": entity.name, "reference_id": reference_id,
                "description": f"{entity.name} is a party member ({entity.relationship or 'unknown'})",
            })
        if entity.location:
            links.append({
                "type": "location", "name": entity.location,
                "reference_id": self.reference_for(entity.location),
                "description": f"{entity.name} is at {entity.location}",
            })
        if entity.owner:
            links.append({
                "type": "owner", "name": entity.owner,
                "reference_id": self.reference_for(entity.owner),
                "description": f"{entity.name} is owned by {entity.owner}",
            })
        if graph is not None:
            seen = {link["name"] for link in links}
            for relation in graph.get_relations(entity.name):
                target = relation["target"]
                if target in seen:
                    continue
                links.append({
                    "type": "related", "name": target,
                    "reference_id": self.reference_for(target),
                    "description": f"{entity.name} {relation.get('relation', 'related to')} {target}",
                })
        return links

    # ── housekeeping ──────────────────────────────────────
    def snapshot(self) -> Dict[str, float]:
        return {
            "entities": len(self.entities),
            "memories": len(self.memories),
            "relationships": len(self.relationships),
            "last_update": self.last_update,
        }

    def clear(self) -> None:
        self.entities.clear()
        self.memories.clear()
        self.relationships.clear()
        self.assigned.clear()
        self.last_update = 0.0


# ── compact context ───────────────────────────────────────
class CompactContextBuilder:
    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or default_settings
        self.ratio = self.settings.CHARS_PER_TOKEN
        self.scorer = ImportanceScorer()

    def _tokens(self, text: str) -> int:
        return estimate_tokens(text, self.ratio)

    def _payload_tokens(self, model: Any) -> int:
        return self._tokens(json.dumps(model.model_dump(mode="json"), ensure_ascii=False))

    def build(
        self,
        state: GameState,
        action: str,
        registry: ReferenceRegistry,
        intent: Optional[ActionIntent] = None,
        graph: Optional[EntityGraph] = None,
        relevant: Optional[List[EntityRelevance]] = None,
    ) -> CompactRAGContext:
        s = self.settings
        registry.update(state)
        if relevant is None:
            intent = intent or IntentClassifier().predict(action)
            if graph is None:
                graph = EntityGraph(s).build(state.known_entities)
            relevant = EntityRelevanceScorer(s).score(state, action, intent, graph)

        full = IntelligentContextBuilder(s, self.scorer).build(state, action, s.COMPACT_MAX_MEMORIES)
        context = CompactRAGContext()
        remaining = s.REFERENCE_RAG_TOKEN_LIMIT

        # pinned memories are reserved before anything else and never skipped
        pinned = [m for m in full.relevant_memories if m.pinned]
        for memory in pinned:
            line = memory_line(memory, self.scorer.score(memory, state).score)
            cost = self._tokens(line)
            remaining = max(0, remaining - cost)
            context.memory_references.append(line)
            context.compact_tokens += cost
            context.original_tokens += self._payload_tokens(memory)
        if pinned and not remaining:
            logger.warning("Pinned memories use the whole compact budget (%d tokens)", context.compact_tokens)

        for item in relevant:
            ref = EntityReference(
                reference_id=registry.assign_reference(item.entity),
                name=item.name,
                type=_type_value(item.entity),
                summary=entity_summary(item.entity, s.SUMMARY_MAX_CHARS),
                relevance_score=item.score,
                last_accessed=registry.last_update,
            )
            cost = self._tokens(ref.render())
            if cost > remaining:
                continue
            remaining -= cost
            context.entity_references.append(ref)
            context.compact_tokens += cost
            context.original_tokens += self._payload_tokens(item.entity)

        for memory in full.relevant_memories:
            if memory.pinned:
                continue
            line = memory_line(memory, self.scorer.score(memory, state).score)
            cost = self._tokens(line)
            if cost > remaining:
                continue
            remaining -= cost
            context.memory_references.append(line)
            context.compact_tokens += cost
            context.original_tokens += self._payload_tokens(memory)

        for source, target, shorten in (
            (full.relationship_context, context.relationship_keys, relationship_key),
            (full.recent_events, context.recent_event_summaries, lambda e: _clip(e, EVENT_CHARS)),
        ):
            for text in source:
                line = shorten(text)
                cost = self._tokens(line)
                if cost > remaining:
                    continue
                remaining -= cost
                target.append(line)
                context.compact_tokens += cost
                context.original_tokens += self._tokens(text)

        logger.info(
            "Compact context: %d entities, %d memories, tokens %d -> %d (saved %d)",
            len(context.entity_references), len(context.memory_references),
            context.original_tokens, context.compact_tokens, context.tokens_saved,
        )
        return context


def build_compact_context(
    state: GameState,
    action: str,
    registry: ReferenceRegistry,
    settings: Optional[Settings] = None,
    intent: Optional[ActionIntent] = None,
    graph: Optional[EntityGraph] = None,
    relevant: Optional[List[EntityRelevance]] = None,
) -> CompactRAGContext:
    return CompactContextBuilder(settings).build(state, action, registry, intent, graph, relevant)


def format_compact_context(context: CompactRAGContext) -> str:
    out = ""
    if context.entity_references:
        out += "--- ENTITY REFERENCES ---\n"
        out += "".join(ref.render() + "\n" for ref in context.entity_references)
        out += "\n"
    if context.memory_references:
        out += "--- MEMORY HIGHLIGHTS ---\n"
        out += "".join(f"{i}. {line}\n" for i, line in enumerate(context.memory_references, 1))
        out += "\n"
    if context.relationship_keys:
        out += "--- RELATIONSHIP STATUS ---\n"
        out += "".join(f"• {line}\n" for line in context.relationship_keys)
        out += "\n"
    if context.recent_event_summaries:
        out += "--- RECENT EVENTS ---\n"
        out += "".join(f"• {line}\n" for line in context.recent_event_summaries)
        out += "\n"
    out += "--- REFERENCE SYSTEM ---\n"
    out += "Entities are tagged with reference IDs (e.g. REF_NP_LEG_1A2B3C4D). Use these IDs when referring to them.\n"
    out += "Full details for an entity can be looked up by its reference ID.\n\n"
    return out
