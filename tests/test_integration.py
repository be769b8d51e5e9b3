"""Integration tests: full prompt assembly pipeline."""
import re
import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from config import Settings
from loreweaver.engine.prompt_builder import PromptBuilder
from loreweaver.engine.session import PromptSession, SessionArena
from loreweaver.engine.state import GameState
from loreweaver.utils.tokens import estimate_tokens

ACTION = "tấn công con sói"


def _assert_in_order(prompt, markers):
    positions = [prompt.index(m) for m in markers]
    assert positions == sorted(positions), dict(zip(markers, positions))


class TestPromptBuilder:
    @pytest.fixture
    def builder(self):
        return PromptBuilder()

    def test_fixed_section_order_without_reasoning(self, builder, raw_state):
        prompt = builder.build_prompt(ACTION, raw_state, rule_change_context="RULE-CHANGE-MARKER\n",
                                      nsfw_context="NSFW-MARKER\n", enable_cot=False)
        _assert_in_order(prompt, [
            "RESPONSE FORMAT (READ FIRST)",
            "RULE-CHANGE-MARKER",
            "=== CRITICAL KNOWLEDGE ===",
            "--- ENTITY REFERENCES ---",
            "=== RELATED INFORMATION ===",
            "=== WORLD CONTEXT ===",
            "=== ACTIVE WORLD RULES ===",
            "--- PLAYER ACTION ---",
            "SMART CHOICE GUIDANCE",
            "NSFW-MARKER",
            "=== TASK ===",
        ])
        assert "STEP 1: CURRENT SITUATION" not in prompt

    def test_reasoning_scaffold_after_choices(self, builder, raw_state):
        prompt = builder.build_prompt(ACTION, raw_state, enable_cot=True)
        assert "RESPONSE FORMAT (READ FIRST)" not in prompt
        _assert_in_order(prompt, [
            "--- PLAYER ACTION ---",
            "SMART CHOICE GUIDANCE",
            "COMPLETE THE REASONING STEPS",
            "STEP 1: CURRENT SITUATION",
            "=== TASK ===",
        ])
        assert "[PLAYER CHARACTER] Lâm Phong" in prompt
        assert "[COMPANION] Tiểu Vân" in prompt

    def test_action_frame(self, builder, state):
        prompt = builder.build_prompt(ACTION, state)
        assert f'"{ACTION}"' in prompt
        assert "Turn: 13 | Time: Year 3 Month 4 Day 5, 08:30 | ID: " in prompt
        assert "Analysis: combat - " in prompt
        assert re.search(r"ID: [0-9a-f]{6}\n", prompt)

    def test_correlation_id_changes_per_call(self, builder, state):
        first = re.search(r"ID: ([0-9a-f]{6})", builder.build_prompt(ACTION, state)).group(1)
        second = re.search(r"ID: ([0-9a-f]{6})", builder.build_prompt(ACTION, state)).group(1)
        assert first != second

    def test_pinned_memory_in_final_prompt(self, builder, raw_state):
        raw_state["memories"].append({"text": "Chiếc lá vàng rơi bên suối", "pinned": True, "importance": 1})
        raw_state["memories"] = raw_state["memories"][-1:]
        prompt = builder.build_prompt(ACTION, raw_state)
        assert "Chiếc lá vàng rơi bên suối" in prompt

    def test_every_pinned_memory_reaches_compact_prompt(self, builder, raw_state):
        raw_state["memories"].append({"text": "Ngọc bội là tín vật của mẫu thân", "pinned": True, "createdAt": 3})
        for i in range(40):
            raw_state["knownEntities"][f"Lính {i}"] = {"type": "npc", "location": "Rừng Sương"}
        prompt = builder.build_prompt(ACTION, raw_state)
        assert "Sư phụ để lại lời nhắn bí mật" in prompt
        assert "Ngọc bội là tín vật của mẫu thân" in prompt

    def test_intelligent_mode_excludes_compact_block(self, raw_state):
        builder = PromptBuilder(Settings(USE_REFERENCE_RAG=False))
        prompt = builder.build_prompt(ACTION, raw_state)
        assert "--- RELEVANT MEMORIES ---" in prompt
        assert "--- ENTITY REFERENCES ---" not in prompt

    def test_nsfw_notice_from_world(self, builder, raw_state):
        raw_state["worldData"]["allowNsfw"] = True
        assert "NSFW mode is ON" in builder.build_prompt(ACTION, raw_state)

    def test_language_rule(self, builder, state):
        assert "narrate 100% in Vietnamese" in builder.build_prompt(ACTION, state)

    @pytest.mark.parametrize("bad_state", [None, "not a save", 42])
    def test_missing_state_degrades(self, builder, bad_state):
        prompt = builder.build_prompt(ACTION, bad_state)
        assert ACTION in prompt
        assert "system state unavailable" in prompt

    def test_invalid_state_degrades(self, builder):
        prompt = builder.build_prompt(ACTION, {"turnCount": "not a number"})
        assert "system state unavailable" in prompt

    @pytest.mark.parametrize("key,record", [
        ("gameHistory", {"text": "no role here"}),
        ("memories", {"pinned": False}),
        ("quests", {"title": "Tạm dừng", "status": "paused"}),
    ])
    def test_one_bad_record_keeps_full_context(self, builder, raw_state, key, record):
        raw_state[key].append(record)
        prompt = builder.build_prompt(ACTION, raw_state)
        assert "system state unavailable" not in prompt
        assert "=== CRITICAL KNOWLEDGE ===" in prompt
        assert "[Player character] Lâm Phong" in prompt

    def test_internal_error_gives_fallback(self, state):
        classifier = MagicMock()
        classifier.predict.side_effect = RuntimeError("boom")
        prompt = PromptBuilder(classifier=classifier).build_prompt(ACTION, state)
        assert "=== BASIC INFORMATION ===" in prompt
        assert "Character: Lâm Phong" in prompt
        assert "Location: Rừng Sương" in prompt
        assert "=== TASK ===" in prompt

    def test_hard_ceiling(self, raw_state):
        raw_state["knownEntities"]["Con Sói"]["description"] = "Sói xám khổng lồ. " * 4000
        raw_state["chronicle"]["memoir"] = ["Một chương dài. " * 3000]
        settings = Settings(MAX_TOKENS_PER_TURN=12_000, TOKEN_BUFFER=2_000)
        prompt = PromptBuilder(settings).build_prompt(ACTION, raw_state, enable_cot=False)
        assert estimate_tokens(prompt, settings.CHARS_PER_TOKEN) <= settings.token_ceiling
        assert "--- PLAYER ACTION ---" in prompt
        assert prompt.rstrip().endswith("use SKILL_UPDATE to replace.")

    def test_empty_state_still_builds(self, builder):
        prompt = builder.build_prompt(ACTION, {})
        assert "--- PLAYER ACTION ---" in prompt
        assert "=== TASK ===" in prompt


class TestSessions:
    def test_references_stable_across_builds(self, raw_state):
        session = PromptSession("game-1")
        builder = PromptBuilder(session=session)
        builder.build_prompt(ACTION, raw_state)
        first = session.registry.reference_for("Con Sói")
        builder.build_prompt(ACTION, GameState.from_raw(raw_state))
        assert session.registry.reference_for("Con Sói") == first
        assert first in builder.build_prompt(ACTION, raw_state)

    def test_reset_clears_registry(self, raw_state):
        session = PromptSession("game-1")
        PromptBuilder(session=session).build_prompt(ACTION, raw_state)
        assert session.registry.snapshot()["entities"] > 0
        session.reset()
        assert session.registry.snapshot()["entities"] == 0

    def test_arena_keeps_sessions_apart(self, raw_state):
        arena = SessionArena()
        PromptBuilder(session=arena.get("a")).build_prompt(ACTION, raw_state)
        assert arena.get("b").registry.snapshot()["entities"] == 0
        assert arena.get("a") is arena.get("a")
        assert "a" in arena and len(arena) == 2
        arena.drop("a")
        assert "a" not in arena


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
