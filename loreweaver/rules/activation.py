"""Keyword-driven activation of user-authored world/lore rules.

Rules are evaluated highest ``order`` first against a scan text built from
the player input, the latest model output, recent history and memories.
Per-turn activation limits are tracked in a bounded counter keyed by
``(rule_id, turn)``; the engine belongs to one session and is cleared on
session reset.
"""
from __future__ import annotations

import logging
import math
import random
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from loreweaver.engine.state import CustomRule, HistoryEntry, Memory, RuleLogic
from loreweaver.nlg.prompt_templates import RULES_HEADER

logger = logging.getLogger(__name__)

DEFAULT_SCAN_DEPTH = 5
DEFAULT_TOKEN_BUDGET = 5000


@dataclass
class ActivationContext:
    player_input: str = ""
    ai_response: str = ""
    history: Sequence[HistoryEntry] = ()
    memories: Sequence[Memory] = ()
    current_turn: int = 0
    scan_depth: int = DEFAULT_SCAN_DEPTH
    token_budget: int = DEFAULT_TOKEN_BUDGET
    case_sensitive: bool = False
    match_whole_words: bool = False


@dataclass
class ActivatedRule:
    rule: CustomRule
    reason: str
    matched_keywords: List[str]
    token_cost: int

    @property
    def priority(self) -> int:
        return self.rule.order


@dataclass
class ActivationResult:
    activated_rules: List[ActivatedRule] = field(default_factory=list)
    total_tokens: int = 0
    budget_exceeded: bool = False
    skipped_rules: List[CustomRule] = field(default_factory=list)


def rule_token_cost(rule: CustomRule) -> int:
    return rule.token_weight or math.ceil(len(rule.content) / 4)


def match_keywords(text: str, keywords: Sequence[str], case_sensitive: bool, whole_words: bool) -> List[str]:
    haystack = text if case_sensitive else text.lower()
    matched: List[str] = []
    for keyword in keywords:
        if not keyword.strip():
            continue
        needle = keyword if case_sensitive else keyword.lower()
        if whole_words:
            if re.search(rf"(?<!\w){re.escape(needle)}(?!\w)", haystack):
                matched.append(keyword)
        elif needle in haystack:
            matched.append(keyword)
    return matched


def evaluate_logic(rule: CustomRule, primary: List[str], secondary: List[str]) -> Tuple[bool, str]:
    """Apply the rule's keyword logic to the primary and secondary matches."""
    matched = len(primary) + len(secondary)
    required = len(rule.keywords) + len(rule.secondary_keywords)
    if required == 0:
        return False, "No keywords defined"

    logic = RuleLogic(rule.logic)
    if logic == RuleLogic.AND_ANY and matched > 0:
        return True, f"AND_ANY: matched {matched} keywords"
    if logic == RuleLogic.AND_ALL and len(primary) == len(rule.keywords) \
            and len(secondary) == len(rule.secondary_keywords):
        return True, f"AND_ALL: all {required} keywords matched"
    if logic == RuleLogic.NOT_ALL and 0 < matched < required:
        return True, f"NOT_ALL: {matched}/{required} keywords matched"
    if logic == RuleLogic.NOT_ANY and matched == 0:
        return True, "NOT_ANY: no keywords found"
    return False, f"{logic.name} not satisfied"


class RuleActivationEngine:
    """Session-scoped rule selector with per-turn activation limits."""

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self.rng = rng or random.Random()
        self._turn: Optional[int] = None
        self._counts: Counter = Counter()

    # ── activation ────────────────────────────────────────
    def activate(self, rules: Sequence[CustomRule], context: ActivationContext) -> ActivationResult:
        self._roll_turn(context.current_turn)
        result = ActivationResult()

        active = sorted((r for r in rules if r.is_active), key=lambda r: r.order, reverse=True)
        for rule in active:
            if not self._within_limit(rule, context.current_turn) or not self._passes_probability(rule):
                result.skipped_rules.append(rule)
                continue

            if rule.always_active:
                fired, reason, matched = True, "Always active", []
            else:
                scan_text = self.collect_scan_text(rule, context)
                if not scan_text:
                    continue
                case_sensitive = bool(rule.case_sensitive or context.case_sensitive)
                whole_words = bool(rule.match_whole_words or context.match_whole_words)
                primary = match_keywords(scan_text, rule.keywords, case_sensitive, whole_words)
                secondary = match_keywords(scan_text, rule.secondary_keywords, case_sensitive, whole_words)
                fired, reason = evaluate_logic(rule, primary, secondary)
                matched = primary + secondary

            if not fired:
                result.skipped_rules.append(rule)
                continue

            cost = rule_token_cost(rule)
            if result.total_tokens + cost > context.token_budget:
                result.budget_exceeded = True
                result.skipped_rules.append(rule)
                continue

            result.activated_rules.append(ActivatedRule(rule, reason, matched, cost))
            result.total_tokens += cost
            self._counts[(rule.id, context.current_turn)] += 1

        if result.activated_rules:
            logger.info("Activated %d rules using %d tokens", len(result.activated_rules), result.total_tokens)
        if result.budget_exceeded:
            logger.warning("Rule budget of %d exceeded; %d rules skipped", context.token_budget,
                           len(result.skipped_rules))
        return result

    @staticmethod
    def collect_scan_text(rule: CustomRule, context: ActivationContext) -> str:
        depth = rule.scan_depth or context.scan_depth or DEFAULT_SCAN_DEPTH
        parts: List[str] = []
        if rule.scan_player_input and context.player_input:
            parts.append(context.player_input)
        if rule.scan_ai_output and context.ai_response:
            parts.append(context.ai_response)
        for entry in list(context.history)[-depth:]:
            if entry.role == "user" and rule.scan_player_input:
                parts.append(entry.text)
            elif entry.role == "model" and rule.scan_ai_output:
                parts.append(entry.text)
        if rule.scan_memories:
            parts.extend(m.text for m in list(context.memories)[-depth:])
        return " ".join(p for p in parts if p).strip()

    # ── formatting ────────────────────────────────────────
    @staticmethod
    def format_for_prompt(result: ActivationResult) -> str:
        if not result.activated_rules:
            return ""
        lines = ["\n" + RULES_HEADER]
        for activated in result.activated_rules:
            rule = activated.rule
            title = rule.title or f"Rule {rule.id}"
            header = f"[{title}] (priority: {rule.order})"
            if activated.matched_keywords:
                header += f" - matched keywords: {', '.join(activated.matched_keywords)}"
            lines.append(f"{header}\n{rule.content}\n")
        lines.append(f"=== Total: {len(result.activated_rules)} rules, {result.total_tokens} tokens ===\n")
        return "\n".join(lines)

    # ── per-turn limits ───────────────────────────────────
    def _roll_turn(self, turn: int) -> None:
        if turn != self._turn:
            self._counts.clear()
            self._turn = turn

    def _within_limit(self, rule: CustomRule, turn: int) -> bool:
        limit = rule.max_activations_per_turn
        if not limit or limit <= 0:
            return True
        return self._counts[(rule.id, turn)] < limit

    def _passes_probability(self, rule: CustomRule) -> bool:
        if rule.probability >= 100:
            return True
        if rule.probability <= 0:
            return False
        return self.rng.random() * 100 < rule.probability

    def activations(self, rule_id: str, turn: int) -> int:
        return self._counts[(rule_id, turn)]

    def reset(self) -> None:
        """Forget all activation counts (new game / session reset)."""
        self._counts.clear()
        self._turn = None
