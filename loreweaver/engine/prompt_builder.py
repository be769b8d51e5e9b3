"""Prompt assembler: one bounded prompt string per player action.

Pipeline per build:
1. State validation
2. Intent classification
3. Entity graph + relevance scoring
4. Compact (reference) or intelligent memory context
5. Token budget net of that context
6. Section building
7. Fixed-order assembly
8. Hard-ceiling enforcement
"""
from __future__ import annotations

import logging
import secrets
from typing import Any, List, Optional

from config import Settings, settings as default_settings
from loreweaver.context.budget import calculate_token_budget
from loreweaver.context.choices import build_smart_choice_context
from loreweaver.context.sections import ContextSectionBuilder
from loreweaver.engine.session import PromptSession
from loreweaver.engine.state import GameState
from loreweaver.knowledge_graph.graph import EntityGraph
from loreweaver.nlg import prompt_templates as tpl
from loreweaver.nlg.reasoning import build_reasoning_scaffold
from loreweaver.nlu.action_analysis import analyze_player_action
from loreweaver.nlu.intent_classifier import IntentClassifier
from loreweaver.retrieval.intelligent import build_intelligent_context, format_intelligent_context
from loreweaver.retrieval.references import build_compact_context, format_compact_context
from loreweaver.scoring.relevance import EntityRelevanceScorer
from loreweaver.utils.tokens import aggressive_truncate, estimate_tokens, truncate_to_limit

logger = logging.getLogger(__name__)


class PromptBuilder:
    """Coordinates retrieval, budgeting and section rendering into one prompt."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        classifier: Optional[IntentClassifier] = None,
        session: Optional[PromptSession] = None,
    ) -> None:
        self.settings = settings or default_settings
        self.ratio = self.settings.CHARS_PER_TOKEN
        self.classifier = classifier or IntentClassifier()
        self.session = session or PromptSession()
        self.scorer = EntityRelevanceScorer(self.settings)
        self.sections = ContextSectionBuilder(self.settings, self.session.rule_engine)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def build_prompt(
        self,
        action: str,
        state: Any,
        rule_change_context: str = "",
        nsfw_context: str = "",
        enable_cot: Optional[bool] = None,
    ) -> str:
        """Assemble the prompt for ``action``.  Never raises for bad state."""
        action = action or ""
        game_state = GameState.from_raw(state)
        if game_state is None:
            return tpl.STATE_UNAVAILABLE_PROMPT.format(action=action)

        cot = self.settings.ENABLE_COT if enable_cot is None else enable_cot
        try:
            return self._build(action, game_state, rule_change_context, nsfw_context, cot)
        except Exception:
            logger.exception("Prompt assembly failed; using fallback prompt")
            return self.fallback_prompt(action, game_state)

    def fallback_prompt(self, action: str, state: GameState) -> str:
        pc = state.player_character
        prompt = tpl.FALLBACK_PROMPT.format(
            pc_name=pc.name if pc else "unknown",
            location=(pc.location if pc else None) or "unknown",
            turn=state.turn_count + 1,
            action=action,
        )
        return prompt + tpl.PROCESSING_RULES.format(language=self.settings.NARRATION_LANGUAGE)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _build(self, action: str, state: GameState, rule_change_context: str,
               nsfw_context: str, cot: bool) -> str:
        s = self.settings
        intent = self.classifier.predict(action)
        graph = EntityGraph(s).build(state.known_entities)
        relevant = self.scorer.score(state, action, intent, graph)

        if s.USE_REFERENCE_RAG:
            compact = build_compact_context(
                state, action, self.session.registry, s, intent=intent, graph=graph, relevant=relevant,
            )
            context_block = format_compact_context(compact) if not compact.is_empty else ""
        else:
            rag = build_intelligent_context(state, action, settings=s)
            context_block = format_intelligent_context(rag)
        if context_block:
            context_block = "\n" + context_block

        budget = calculate_token_budget(relevant, state, estimate_tokens(context_block, self.ratio), s)
        sections = self.sections.build(relevant, state, budget, action)

        body: List[str] = []
        if not cot:
            body.append(tpl.COT_DISABLED_NOTICE)
        if rule_change_context:
            body.append(rule_change_context)
        body += [sections.critical, context_block, sections.important, sections.contextual, sections.supplemental]

        tail = [self._action_frame(action, state), build_smart_choice_context(state, s)]
        if cot:
            tail.append(tpl.COT_BANNER + build_reasoning_scaffold(action, state))
        if nsfw_context:
            tail.append(nsfw_context)
        elif state.world_data.allow_nsfw:
            tail.append(tpl.NSFW_NOTICE)
        tail.append(tpl.PROCESSING_RULES.format(language=s.NARRATION_LANGUAGE))

        prompt = self._enforce_ceiling("".join(body), "".join(tail))
        logger.info(
            "Prompt built: intent=%s, %d relevant entities, ~%d tokens",
            intent.type, len(relevant), estimate_tokens(prompt, self.ratio),
        )
        return prompt

    def _action_frame(self, action: str, state: GameState) -> str:
        analysis = analyze_player_action(action, state)
        involved = ""
        if analysis.involved_entities:
            involved = f"Involved: {', '.join(analysis.involved_entities)}\n"
        return tpl.ACTION_FRAME.format(
            action=action,
            turn=state.turn_count + 1,
            game_time=state.game_time.format(),
            correlation_id=secrets.token_hex(3),
            action_type=analysis.type,
            action_description=analysis.description,
            complexity=analysis.complexity,
            duration=analysis.expected_duration,
            involved=involved,
        )

    def _enforce_ceiling(self, body: str, tail: str) -> str:
        ceiling = self.settings.token_ceiling
        prompt = body + tail
        if estimate_tokens(prompt, self.ratio) <= ceiling:
            return prompt

        body_budget = ceiling - estimate_tokens(tail, self.ratio)
        logger.warning(
            "Prompt over ceiling (%d > %d tokens); truncating context to %d tokens",
            estimate_tokens(prompt, self.ratio), ceiling, max(0, body_budget),
        )
        body = aggressive_truncate(body, body_budget, self.ratio) if body_budget > 0 else ""
        return truncate_to_limit(body + tail, ceiling, self.ratio)
