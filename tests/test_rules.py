"""Tests for keyword-driven rule activation."""
import pytest

from loreweaver.engine.state import CustomRule, HistoryEntry, Memory, RuleLogic
from loreweaver.rules.activation import (
    ActivationContext,
    RuleActivationEngine,
    evaluate_logic,
    match_keywords,
    rule_token_cost,
)


def _rule(rule_id="r1", **kwargs):
    kwargs.setdefault("content", "Sói mạnh hơn vào ban đêm.")
    return CustomRule(id=rule_id, **kwargs)


def _ids(result):
    return [a.rule.id for a in result.activated_rules]


class TestLogic:
    @pytest.mark.parametrize("logic,primary,secondary,expected", [
        (RuleLogic.AND_ANY, ["sói"], [], True),
        (RuleLogic.AND_ANY, [], [], False),
        (RuleLogic.AND_ALL, ["sói"], ["đêm"], True),
        (RuleLogic.AND_ALL, ["sói"], [], False),
        (RuleLogic.NOT_ALL, ["sói"], [], True),
        (RuleLogic.NOT_ALL, ["sói"], ["đêm"], False),
        (RuleLogic.NOT_ANY, [], [], True),
        (RuleLogic.NOT_ANY, ["sói"], [], False),
    ])
    def test_evaluate_logic(self, logic, primary, secondary, expected):
        rule = _rule(keywords=["sói"], secondaryKeywords=["đêm"], logic=logic)
        fired, _reason = evaluate_logic(rule, primary, secondary)
        assert fired is expected

    def test_no_keywords_never_fire(self):
        fired, reason = evaluate_logic(_rule(logic=RuleLogic.NOT_ANY), [], [])
        assert not fired
        assert reason == "No keywords defined"

    def test_whole_word_matching(self):
        assert match_keywords("the category", ["cat"], False, False) == ["cat"]
        assert match_keywords("the category", ["cat"], False, True) == []
        assert match_keywords("a cat sat", ["cat"], False, True) == ["cat"]

    def test_case_sensitive_matching(self):
        assert match_keywords("Con Sói", ["sói"], True, False) == []
        assert match_keywords("Con Sói", ["sói"], False, False) == ["sói"]

    def test_token_cost(self):
        assert rule_token_cost(_rule(content="x" * 10)) == 3
        assert rule_token_cost(_rule(content="x" * 10, tokenWeight=42)) == 42


class TestRuleActivationEngine:
    @pytest.fixture
    def engine(self):
        return RuleActivationEngine()

    def test_keyword_in_player_input(self, engine):
        result = engine.activate([_rule(keywords=["sói"])], ActivationContext(player_input="tấn công con sói"))
        assert _ids(result) == ["r1"]
        assert result.activated_rules[0].matched_keywords == ["sói"]
        assert result.total_tokens == rule_token_cost(result.activated_rules[0].rule)

    def test_inactive_rules_ignored(self, engine):
        rule = _rule(keywords=["sói"], isActive=False)
        result = engine.activate([rule], ActivationContext(player_input="sói"))
        assert result.activated_rules == []

    def test_always_active(self, engine):
        result = engine.activate([_rule(alwaysActive=True)], ActivationContext())
        assert _ids(result) == ["r1"]
        assert result.activated_rules[0].reason == "Always active"

    def test_highest_order_first(self, engine):
        rules = [_rule("low", keywords=["sói"], order=1), _rule("high", keywords=["sói"], order=9)]
        result = engine.activate(rules, ActivationContext(player_input="sói"))
        assert _ids(result) == ["high", "low"]

    def test_budget_exceeded_skips_rule(self, engine):
        rules = [
            _rule("a", keywords=["sói"], order=2, tokenWeight=60),
            _rule("b", keywords=["sói"], order=1, tokenWeight=60),
        ]
        result = engine.activate(rules, ActivationContext(player_input="sói", token_budget=100))
        assert _ids(result) == ["a"]
        assert result.budget_exceeded
        assert [r.id for r in result.skipped_rules] == ["b"]

    def test_per_turn_limit(self, engine):
        rule = _rule(keywords=["sói"], maxActivationsPerTurn=1)
        context = ActivationContext(player_input="sói", current_turn=4)
        assert _ids(engine.activate([rule], context)) == ["r1"]
        assert _ids(engine.activate([rule], context)) == []
        assert engine.activations("r1", 4) == 1

        next_turn = ActivationContext(player_input="sói", current_turn=5)
        assert _ids(engine.activate([rule], next_turn)) == ["r1"]
        assert engine.activations("r1", 4) == 0

    def test_reset_clears_counts(self, engine):
        rule = _rule(keywords=["sói"], maxActivationsPerTurn=1)
        context = ActivationContext(player_input="sói", current_turn=4)
        engine.activate([rule], context)
        engine.reset()
        assert _ids(engine.activate([rule], context)) == ["r1"]

    def test_zero_probability_never_fires(self, engine):
        result = engine.activate([_rule(keywords=["sói"], probability=0)], ActivationContext(player_input="sói"))
        assert result.activated_rules == []

    def test_scan_flags(self, engine):
        rule = _rule(keywords=["sói"], scanPlayerInput=False, scanAIOutput=False, scanMemories=False)
        result = engine.activate([rule], ActivationContext(player_input="sói", ai_response="sói"))
        assert result.activated_rules == []

    def test_history_scanned_by_role(self, engine):
        history = [HistoryEntry(role="model", text="Một con sói xuất hiện")]
        only_player = _rule(keywords=["sói"], scanAIOutput=False, scanMemories=False)
        both = _rule("r2", keywords=["sói"], scanMemories=False)
        result = engine.activate([only_player, both], ActivationContext(history=history))
        assert _ids(result) == ["r2"]

    def test_memories_scanned(self, engine):
        rule = _rule(keywords=["sói"], scanPlayerInput=False, scanAIOutput=False)
        context = ActivationContext(memories=[Memory(text="Con sói già")])
        assert _ids(engine.activate([rule], context)) == ["r1"]

    def test_pinned_memory_scanned_regardless_of_stored_importance(self, engine):
        rule = _rule(keywords=["sói"], scanPlayerInput=False, scanAIOutput=False)
        context = ActivationContext(memories=[Memory(text="Con sói già", pinned=True, importance=5)])
        assert _ids(engine.activate([rule], context)) == ["r1"]

    def test_format_for_prompt(self, engine):
        result = engine.activate([_rule(keywords=["sói"], title="Sói đêm", order=5)],
                                 ActivationContext(player_input="sói"))
        text = engine.format_for_prompt(result)
        assert "=== ACTIVE WORLD RULES ===" in text
        assert "[Sói đêm] (priority: 5) - matched keywords: sói" in text
        assert "=== Total: 1 rules," in text

    def test_format_empty(self, engine):
        result = engine.activate([], ActivationContext())
        assert engine.format_for_prompt(result) == ""


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
