"""Four prioritized prompt sections built under their token budgets.

Every builder fills greedily and stops at its budget; only free-text
descriptions are ever cut mid-item (via ``aggressive_truncate``).
"""
from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

from config import Settings, settings as default_settings
from loreweaver.context.budget import TokenBudget
from loreweaver.context.history import recent_story_lines
from loreweaver.engine.state import Entity, EntityType, GameState, Quest
from loreweaver.nlg import prompt_templates as tpl
from loreweaver.rules.activation import ActivationContext, RuleActivationEngine
from loreweaver.scoring.relevance import EntityRelevance
from loreweaver.utils.tokens import aggressive_truncate, estimate_tokens

logger = logging.getLogger(__name__)

PARTY_SHARE = 0.4
QUEST_SHARE = 0.3
HISTORY_SHARE = 0.4
ENTITY_LIST_SHARE = 0.1
CHRONICLE_SHARE = 0.4
PINNED_MIN_TOKENS = 100
PERSONALITY_SNIPPET = 50


@dataclass
class ContextSections:
    critical: str = ""
    important: str = ""
    contextual: str = ""
    supplemental: str = ""


def normalize_name(name: str) -> str:
    """Lower-case name with any parenthesised suffix (mastery tier) removed."""
    return re.sub(r"\s*\([^)]*\)", "", name or "").strip().lower()


def skills_with_mastery(skills: Sequence[str], state: GameState) -> List[str]:
    """Resolve skill names to ``"Name (mastery)"`` using skill entities when known."""
    by_name = {
        normalize_name(e.name): e for e in state.known_entities.values()
        if e.type == EntityType.SKILL
    }
    resolved: List[str] = []
    for skill in skills:
        entity = by_name.get(normalize_name(skill))
        if entity is not None and entity.mastery:
            resolved.append(f"{entity.name} ({entity.mastery})")
        else:
            resolved.append(skill)
    return resolved


class _Filler:
    """Running token count for one section; ``add`` refuses text that would overflow."""

    def __init__(self, budget: int, ratio: float, text: str = "") -> None:
        self.budget = budget
        self.ratio = ratio
        self.parts: List[str] = []
        self.used = 0
        if text:
            self.force(text)

    def tokens(self, text: str) -> int:
        return estimate_tokens(text, self.ratio)

    def force(self, text: str) -> None:
        self.parts.append(text)
        self.used += self.tokens(text)

    def add(self, text: str, limit: Optional[int] = None) -> bool:
        cost = self.tokens(text)
        if self.used + cost > (self.budget if limit is None else limit):
            return False
        self.parts.append(text)
        self.used += cost
        return True

    @property
    def remaining(self) -> int:
        return max(0, self.budget - self.used)

    def render(self) -> str:
        return "".join(self.parts)


class ContextSectionBuilder:
    """Render critical / important / contextual / supplemental sections."""

    def __init__(self, settings: Optional[Settings] = None, rule_engine: Optional[RuleActivationEngine] = None) -> None:
        self.settings = settings or default_settings
        self.ratio = self.settings.CHARS_PER_TOKEN
        self.rule_engine = rule_engine or RuleActivationEngine()

    def build(
        self,
        relevant: Sequence[EntityRelevance],
        state: GameState,
        budget: TokenBudget,
        action: str = "",
    ) -> ContextSections:
        sections = ContextSections(
            critical=self.build_critical(relevant, state, budget.critical),
            important=self.build_important(relevant, state, budget.important),
            contextual=self.build_contextual(state, budget.contextual),
            supplemental=self.build_supplemental(state, budget.supplemental, action),
        )
        logger.debug(
            "Sections built: critical=%d important=%d contextual=%d supplemental=%d tokens",
            *(estimate_tokens(s, self.ratio) for s in
              (sections.critical, sections.important, sections.contextual, sections.supplemental)),
        )
        return sections

    # ── critical ──────────────────────────────────────────
    def build_critical(self, relevant: Sequence[EntityRelevance], state: GameState, budget: int) -> str:
        out = _Filler(budget, self.ratio)
        if not out.add(tpl.CRITICAL_HEADER):
            return ""
        out.add("\n" + tpl.CORE_INSTRUCTIONS + "\n\n")
        out.add(f"Time: {state.game_time.format()} (Turn: {state.turn_count + 1})\n\n")

        party = self.build_party_block(state, math.floor(budget * PARTY_SHARE))
        if party:
            out.add(party + "\n")

        party_names = set(state.party_names)
        others = [r for r in relevant if r.name not in party_names and r.entity.type != EntityType.COMPANION]
        share = out.remaining // max(1, len(others))
        for item in others:
            out.add(self.format_entity(item.entity, state, share) + "\n")
        return out.render()

    def build_party_block(self, state: GameState, budget: int) -> str:
        if not state.party:
            return ""
        out = _Filler(budget, self.ratio, tpl.PARTY_HEADER)

        pc = state.player_character
        if pc is not None and pc in state.party:
            details: List[str] = []
            if pc.motivation:
                details.append(f"**GOAL**: {pc.motivation}")
            if pc.location:
                details.append(f"Location: {pc.location}")
            if pc.realm:
                details.append(f"Power: {pc.realm}")
            if pc.learned_skills:
                details.append(f"Skills: {', '.join(skills_with_mastery(pc.learned_skills, state))}")
            statuses = state.statuses_for(pc)
            if statuses:
                details.append(f"Status: {', '.join(s.name for s in statuses)}")
            line = f"[Player character] {pc.name}"
            if details:
                line += " - " + ", ".join(details)
            out.add(line + "\n")

        companions = state.companions
        for companion in companions:
            details = []
            if companion.relationship:
                details.append(f"Relationship: {companion.relationship}")
            if companion.realm:
                details.append(f"Realm: {companion.realm}")
            if companion.skills:
                details.append(f"Expertise: {', '.join(companion.skills[:2])}")
            statuses = state.statuses_for(companion)
            if statuses:
                details.append(f"Status: {', '.join(s.name for s in statuses)}")
            if companion.personality:
                snippet = companion.personality
                if len(snippet) > PERSONALITY_SNIPPET:
                    snippet = snippet[:PERSONALITY_SNIPPET] + "..."
                details.append(f"Personality: {snippet}")
            line = f"[Companion] {companion.name}"
            if details:
                line += " - " + ", ".join(details)
            out.add(line + "\n")
        if companions:
            out.add(tpl.PARTY_COORDINATION_NOTE)
        return out.render()

    def format_entity(self, entity: Entity, state: GameState, max_tokens: int) -> str:
        """Detailed entity block; the description gets whatever share is left."""
        etype = _value(entity.type)
        head = f"• {entity.name} ({etype})"
        details: List[str] = []

        if entity.type == EntityType.PC:
            head += " [PLAYER CHARACTER]"
            if entity.motivation:
                details.append(f"**KEY GOAL**: {entity.motivation}")
            if entity.learned_skills:
                details.append(f"Skills: {', '.join(skills_with_mastery(entity.learned_skills, state))}")
            if entity.personality:
                details.append(f"Personality: {entity.personality}")
        elif entity.type == EntityType.COMPANION:
            head += " [COMPANION]"
            if entity.personality:
                details.append(f"Personality: {entity.personality}")
            if entity.motivation:
                details.append(f"Motivation: {entity.motivation}")
            if entity.relationship:
                details.append(f"Relationship with PC: {entity.relationship}")
            if entity.skills:
                details.append(f"Skills: {', '.join(entity.skills[:4])}")
        elif entity.type == EntityType.NPC:
            if entity.personality:
                details.append(f"Personality: {entity.personality}")
            if entity.motivation:
                details.append(f"Motivation: {entity.motivation}")
            if entity.skills:
                details.append(f"Skills: {', '.join(entity.skills[:3])}")
        elif entity.type == EntityType.SKILL and entity.mastery:
            details.append(f"Mastery: {entity.mastery}")

        if entity.location:
            details.append(f"Location: {entity.location}")
        if entity.owner:
            details.append(f"Owner: {entity.owner}")
        if entity.realm:
            details.append(f"Realm: {entity.realm}")
        statuses = state.statuses_for(entity)
        if statuses:
            details.append(f"Status: {', '.join(s.name for s in statuses[:2])}")

        if entity.description:
            remaining = max(0, max_tokens - estimate_tokens(head + "; ".join(details), self.ratio))
            threshold = 50 if entity.type == EntityType.COMPANION else 30
            if remaining > threshold:
                details.append(f"Description: {aggressive_truncate(entity.description, remaining, self.ratio)}")

        return head + ("\n  " + "\n  ".join(details) if details else "")

    # ── important ─────────────────────────────────────────
    def build_important(self, relevant: Sequence[EntityRelevance], state: GameState, budget: int) -> str:
        out = _Filler(budget, self.ratio)
        if not out.add(tpl.IMPORTANT_HEADER):
            return ""

        quests = self.build_quest_block(state.active_quests, math.floor(budget * QUEST_SHARE))
        if quests:
            out.add(quests)
        history = self.build_history_block(state, math.floor(budget * HISTORY_SHARE))
        if history:
            out.add(history)

        party_names = set(state.party_names)
        brief = [r for r in relevant if r.name not in party_names]
        share = out.remaining // max(1, len(brief))
        for item in brief:
            line = self.format_entity_brief(item, share)
            if line:
                out.add(line + "\n")
        return out.render()

    def build_quest_block(self, quests: Sequence[Quest], budget: int) -> str:
        if not quests:
            return ""
        out = _Filler(budget, self.ratio)
        if not out.add(tpl.QUEST_HEADER):
            return ""
        for quest in quests:
            open_objectives = [o.description for o in quest.objectives if not o.completed]
            out.add(f"- {quest.title}: {', '.join(open_objectives)}\n")
        return out.render() + "\n"

    def build_history_block(self, state: GameState, budget: int) -> str:
        out = _Filler(budget, self.ratio)
        if not out.add(tpl.HISTORY_HEADER):
            return ""
        if state.compressed_history:
            segment = state.compressed_history[-1]
            if segment.story_flow and out.add(tpl.COMPRESSED_FLOW_HEADER.format(turn_range=segment.turn_range)):
                for flow in segment.story_flow:
                    out.add(f"• {flow}\n")
                out.add("\n")
        for line in recent_story_lines(state.game_history):
            out.add(line + "\n")
        out.add(tpl.HISTORY_FOOTER)
        return out.render()

    def format_entity_brief(self, item: EntityRelevance, max_tokens: int) -> str:
        entity = item.entity
        text = f"• {entity.name} ({_value(entity.type)})"
        if item.reasons:
            text += f" [{item.reasons[0]}]"
        if entity.description:
            text += f" - {entity.description}"
        return aggressive_truncate(text, max_tokens, self.ratio)

    # ── contextual ────────────────────────────────────────
    def build_contextual(self, state: GameState, budget: int) -> str:
        out = _Filler(budget, self.ratio)
        if not out.add(tpl.CONTEXTUAL_HEADER):
            return ""
        world_name = state.world_data.world_name or state.world_data.story_name
        if world_name:
            out.add(tpl.WORLD_LINE.format(world_name=world_name))

        names = list(state.known_entities)
        if names:
            block = tpl.EXISTING_ENTITIES.format(names=", ".join(names))
            # all names or none; never a partial list
            if out.tokens(block) <= budget * ENTITY_LIST_SHARE:
                out.add(block)
            else:
                logger.warning("Existing-entity list (%d names) exceeds its share; omitted.", len(names))

        chronicle = self.build_chronicle_block(state, math.floor(out.remaining * CHRONICLE_SHARE))
        if chronicle:
            out.add(chronicle)

        pinned = [m for m in state.memories if m.pinned][: self.settings.PINNED_MEMORY_LIMIT]
        if pinned and out.remaining > PINNED_MIN_TOKENS and out.add(tpl.PINNED_MEMORY_HEADER):
            for memory in pinned:
                line = f"- {memory.text}\n"
                if not out.add(line):
                    out.add(aggressive_truncate(line, out.remaining, self.ratio))
        return out.render()

    def build_chronicle_block(self, state: GameState, budget: int) -> str:
        entries = [("[Memoir] ", m, 100) for m in state.chronicle.memoir[-2:]]
        entries += [("[Chapter] ", c, 70) for c in state.chronicle.chapter[-1:]]
        if not entries:
            return ""
        entries.sort(key=lambda e: e[2], reverse=True)
        out = _Filler(budget, self.ratio)
        if not out.add(tpl.CHRONICLE_HEADER):
            return ""
        for prefix, text, _score in entries:
            out.add(f"{prefix}{text}\n")
        return out.render() + "\n"

    # ── supplemental ──────────────────────────────────────
    def build_supplemental(self, state: GameState, budget: int, action: str = "") -> str:
        if not state.custom_rules or budget <= 0:
            return ""
        last_model = next((e.text for e in reversed(state.game_history) if e.role == "model"), "")
        context = ActivationContext(
            player_input=action,
            ai_response=last_model,
            history=state.game_history,
            memories=state.memories,
            current_turn=state.turn_count,
            scan_depth=self.settings.RULE_SCAN_DEPTH,
            token_budget=budget,
        )
        result = self.rule_engine.activate(state.custom_rules, context)
        text = self.rule_engine.format_for_prompt(result)
        if estimate_tokens(text, self.ratio) > budget:
            text = aggressive_truncate(text, budget, self.ratio)
        return text


def _value(enum_or_str) -> str:
    return getattr(enum_or_str, "value", enum_or_str)
