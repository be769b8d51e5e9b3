"""Tests for NLG modules: prompt_templates and the reasoning scaffold."""
import json

import pytest

from loreweaver.engine.state import GameState, HistoryEntry
from loreweaver.nlg.prompt_templates import (
    ACTION_FRAME,
    COT_SCAFFOLD,
    FALLBACK_PROMPT,
    PROCESSING_RULES,
    STATE_UNAVAILABLE_PROMPT,
)
from loreweaver.nlg.reasoning import (
    build_reasoning_scaffold,
    categorize_action,
    character_state,
    physical_state,
    power_balance,
)


# ── Prompt templates ────────────────────────────────────────────────

class TestPromptTemplates:
    def test_action_frame_slots(self):
        rendered = ACTION_FRAME.format(
            action="nhìn quanh", turn=3, game_time="Year 1 Month 1 Day 1, 00:00",
            correlation_id="abc123", action_type="observation", action_description="look around",
            complexity="simple", duration="instant", involved="",
        )
        assert '"nhìn quanh"' in rendered
        assert "ID: abc123" in rendered
        assert rendered.rstrip().endswith("--- END OF CONTEXT ---")

    def test_processing_rules_language_slot(self):
        rendered = PROCESSING_RULES.format(language="English")
        assert rendered.lstrip().startswith("=== TASK ===")
        assert "narrate 100% in English" in rendered

    def test_scaffold_escapes_json_braces(self):
        rendered = COT_SCAFFOLD.format(
            recent_events="-", game_time="-", location="-", pc_name="A", pc_personality="-",
            pc_motivation="-", pc_state="-", companions="-", physical_state="-",
            power_balance="-", action="x", action_category="general", progression="-", continuity="-",
        )
        assert '"cot_reasoning": "STEP 1:' in rendered
        assert "{{" not in rendered

    def test_fallbacks(self):
        assert "system state unavailable" in STATE_UNAVAILABLE_PROMPT.format(action="x")
        rendered = FALLBACK_PROMPT.format(pc_name="A", location="B", turn=1, action="x")
        assert "Character: A" in rendered


# ── Reasoning scaffold ──────────────────────────────────────────────

class TestReasoning:
    @pytest.mark.parametrize("action,expected", [
        ("hỏi Tiểu Vân", "communication"),
        ("tấn công con sói", "combat"),
        ("đi vào rừng", "movement"),
        ("nhìn quanh", "observation"),
        ("xyzzy", "general"),
    ])
    def test_categorize_action(self, action, expected):
        assert categorize_action(action) == expected

    def test_character_state(self, state):
        pc = state.player_character
        assert character_state(pc, state) == "Realm: Trúc Cơ, Statuses: Mệt mỏi"
        assert character_state(None, state) == "unknown"

    def test_physical_state_reads_last_story(self, state):
        assert physical_state(state.player_character, state) == "Alert and healthy"
        tired = HistoryEntry(role="model", text=json.dumps({"story": "Lâm Phong mệt lả sau trận chiến."}))
        state = state.model_copy(update={"game_history": state.game_history + [tired]})
        assert physical_state(state.player_character, state) == "Showing signs of fatigue or strain"

    def test_power_balance(self, state):
        assert power_balance(state) == "Tiểu Vân is on par with the player character"
        assert power_balance(GameState()) == "no power balance concerns"

    def test_scaffold_for_sample_state(self, state):
        scaffold = build_reasoning_scaffold("tấn công con sói", state)
        assert "Action: đi vào rừng" in scaffold
        assert "Year 3 Month 4 Day 5, 08:30 at Rừng Sương" in scaffold
        assert "[PLAYER CHARACTER] Lâm Phong: personality Điềm tĩnh; goal Tìm lại sư phụ" in scaffold
        assert "[COMPANION] Tiểu Vân: relationship Bạn đồng hành thân thiết" in scaffold
        assert "a combat reaction" in scaffold
        assert "Continuity: Continue naturally" in scaffold

    def test_scaffold_for_empty_state(self):
        scaffold = build_reasoning_scaffold("nhìn quanh", GameState())
        assert "No recent events" in scaffold
        assert "[No companions]" in scaffold
        assert "[PLAYER CHARACTER] unknown" in scaffold
        assert "Continuity: A fresh start" in scaffold


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
