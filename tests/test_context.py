"""Tests for budgeting, section building, history helpers and choice guidance."""
import pytest
from pydantic import ValidationError

from config import Settings
from loreweaver.context.budget import adjusted_weights, calculate_token_budget
from loreweaver.context.choices import build_smart_choice_context, identify_choice_patterns
from loreweaver.context.history import extract_story_continuity, parse_model_entry, recent_story_lines
from loreweaver.context.sections import ContextSectionBuilder, normalize_name, skills_with_mastery
from loreweaver.engine.state import ChoiceRecord, Entity, GameState, HistoryEntry, Quest
from loreweaver.scoring.relevance import EntityRelevance


def _high_scorers(n, kind="companion"):
    return [EntityRelevance(Entity(name=f"E{i}", type=kind), 90) for i in range(n)]


# ── Token budget ────────────────────────────────────────────────────

class TestTokenBudget:
    @pytest.fixture
    def with_quest(self):
        return GameState(quests=[Quest(title="Săn sói")])

    @pytest.mark.parametrize("context_tokens", [0, 500, 79_999, 80_000, 1_000_000])
    def test_sum_never_exceeds_ceiling(self, state, context_tokens):
        budget = calculate_token_budget(_high_scorers(7), state, context_tokens)
        assert budget.total <= budget.ceiling
        assert all(v >= 0 for v in budget.as_dict().values())

    def test_context_tokens_reduce_ceiling(self, state):
        assert calculate_token_budget([], state, 0).ceiling == 80_000
        assert calculate_token_budget([], state, 5_000).ceiling == 75_000
        assert calculate_token_budget([], state, 90_000).ceiling == 0

    def test_three_companions_with_quest_keep_base_weights(self, with_quest):
        weights = adjusted_weights(_high_scorers(3), with_quest)
        assert weights == {"critical": 0.5, "important": 0.25, "contextual": 0.15, "supplemental": 0.1}

    def test_many_critical_entities_with_quest(self, with_quest):
        weights = adjusted_weights(_high_scorers(6), with_quest)
        assert weights["critical"] == pytest.approx(0.60)
        assert weights["important"] == pytest.approx(0.20)
        assert weights["contextual"] == pytest.approx(0.15)
        assert weights["supplemental"] == pytest.approx(0.05)
        assert sum(weights.values()) == pytest.approx(1.0)

    def test_no_quest_shifts_to_critical(self):
        weights = adjusted_weights([], GameState())
        assert weights["critical"] == pytest.approx(0.55)
        assert weights["important"] == pytest.approx(0.20)

    def test_both_adjustments(self):
        weights = adjusted_weights(_high_scorers(6), GameState())
        assert weights["critical"] == pytest.approx(0.65)
        assert weights["important"] == pytest.approx(0.15)
        assert sum(weights.values()) == pytest.approx(1.0)

    def test_buckets_are_floored(self, with_quest):
        settings = Settings(MAX_TOKENS_PER_TURN=1003, TOKEN_BUFFER=0)
        budget = calculate_token_budget([], with_quest, 0, settings)
        assert budget.critical == 501
        assert budget.supplemental == 100

    def test_invalid_allocation_rejected(self):
        with pytest.raises(ValidationError):
            Settings(ALLOCATION_CRITICAL=0.9)


# ── History helpers ─────────────────────────────────────────────────

class TestHistoryHelpers:
    def test_unparseable_model_entry_is_skipped(self):
        history = [
            HistoryEntry(role="user", text="ACTION: nhìn quanh"),
            HistoryEntry(role="model", text="not json"),
        ]
        assert parse_model_entry(history[1]) is None
        assert recent_story_lines(history) == ["[Action] nhìn quanh"]

    def test_story_lines_alternate(self, state):
        lines = recent_story_lines(state.game_history)
        assert lines[0] == "[Action] đi vào rừng"
        assert lines[1].startswith("[Result] ")
        assert "Location → Rừng Sương" in lines[2]

    def test_continuity_prefers_progress_sentences(self):
        story = "Màn đêm buông xuống trên đỉnh núi cao. Lâm Phong đã rút kiếm ra khỏi vỏ."
        assert extract_story_continuity(story) == "Lâm Phong đã rút kiếm ra khỏi vỏ."

    def test_short_story_has_no_continuity(self):
        assert extract_story_continuity("ngắn") is None


# ── Section builder ─────────────────────────────────────────────────

class TestContextSections:
    @pytest.fixture
    def builder(self):
        return ContextSectionBuilder()

    def test_entity_list_is_complete(self, builder, state):
        contextual = builder.build_contextual(state, 5_000)
        assert "EXISTING ENTITIES" in contextual
        for name in state.known_entities:
            assert name in contextual

    def test_entity_list_dropped_whole_when_over_share(self, builder, state):
        contextual = builder.build_contextual(state, 60)
        assert "EXISTING ENTITIES" not in contextual
        assert "Con Sói" not in contextual

    def test_pinned_memory_always_rendered(self, builder, state):
        contextual = builder.build_contextual(state, 5_000)
        assert "Sư phụ để lại lời nhắn bí mật" in contextual

    def test_pinned_memory_with_low_importance(self, builder, raw_state):
        raw_state["memories"] = [{"text": "Chiếc lá rơi", "pinned": True, "importance": 1}]
        state = GameState.from_raw(raw_state)
        assert "Chiếc lá rơi" in builder.build_contextual(state, 5_000)

    def test_chronicle_block(self, builder, state):
        contextual = builder.build_contextual(state, 5_000)
        assert "[Memoir] Lâm Phong rời tông môn" in contextual
        assert contextual.index("[Memoir]") < contextual.index("[Chapter]")

    def test_critical_has_party_and_time(self, builder, state):
        critical = builder.build_critical([], state, 10_000)
        assert critical.startswith("=== CRITICAL KNOWLEDGE ===")
        assert "[Player character] Lâm Phong" in critical
        assert "[Companion] Tiểu Vân" in critical
        assert "Year 3 Month 4 Day 5, 08:30 (Turn: 13)" in critical
        assert "Kiếm Pháp (Sơ Thành)" in critical

    def test_zero_budget_sections_are_empty(self, builder, state):
        assert builder.build_critical([], state, 0) == ""
        assert builder.build_important([], state, 0) == ""
        assert builder.build_contextual(state, 0) == ""
        assert builder.build_supplemental(state, 0, "sói") == ""

    def test_important_has_quest_and_history(self, builder, state):
        important = builder.build_important([], state, 5_000)
        assert "- Săn sói: Tiêu diệt Con Sói" in important
        assert "[Action] đi vào rừng" in important
        assert "COMPRESSED HISTORY (1-5)" in important

    def test_supplemental_activates_rules(self, builder, state):
        supplemental = builder.build_supplemental(state, 1_000, "tấn công con sói")
        assert "[Sói đêm] (priority: 5)" in supplemental
        assert "Sói mạnh hơn vào ban đêm." in supplemental

    def test_section_budgets_respected(self, builder, state):
        budget = calculate_token_budget([], state, 79_000)
        sections = builder.build([], state, budget, "tấn công con sói")
        ratio = builder.ratio
        for name in ("critical", "important", "contextual", "supplemental"):
            text = getattr(sections, name)
            assert len(text) * ratio <= getattr(budget, name) + 1

    def test_skills_with_mastery(self, state):
        assert normalize_name("Kiếm Pháp (Sơ Thành)") == "kiếm pháp"
        assert skills_with_mastery(["Kiếm Pháp", "Vô Danh"], state) == ["Kiếm Pháp (Sơ Thành)", "Vô Danh"]


# ── Choice guidance ─────────────────────────────────────────────────

class TestChoiceGuidance:
    def test_patterns_grouped(self):
        groups = dict(identify_choice_patterns(["Tấn công con sói", "Hỏi đường", "Xyzzy"]))
        assert groups["Attack/Combat"] == ["Tấn công con sói"]
        assert groups["Other"] == ["Xyzzy"]

    def test_twenty_offered_choices_keep_selected_and_compressed(self, state):
        records = [
            ChoiceRecord(turn=state.turn_count - (i % 4), choices=[f"Lựa chọn số {i}"],
                         selectedChoice=f"Lựa chọn số {i}" if i % 5 == 0 else None)
            for i in range(20)
        ]
        state = state.model_copy(update={"choice_history": records})
        block = build_smart_choice_context(state)
        assert "Recently selected actions:" in block
        assert "• Lựa chọn số 15" in block
        assert "Mua thuốc ở chợ" in block
        assert "Choices recovered from compressed history (1)" in block

    def test_diversity_categories(self, state):
        block = build_smart_choice_context(state)
        for category in ("COMMUNICATION", "ACTION", "TACTICS", "STRATEGY", "INTROSPECTION"):
            assert category in block

    def test_situational_suggestions(self, state):
        block = build_smart_choice_context(state)
        assert 'Make use of the location "Rừng Sương"' in block
        assert 'advances the quest "Săn sói"' in block
        assert "Interact with: Con Sói" in block

    def test_no_history(self):
        block = build_smart_choice_context(GameState())
        assert "AVOID REPETITION" not in block
        assert "SMART CHOICE GUIDANCE" in block


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
