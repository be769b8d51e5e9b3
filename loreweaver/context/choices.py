"""Anti-repetition guidance for the model's next set of choices.

Combines what the player recently picked, what was recently offered
(including choices recovered from compressed history, so avoidance survives
compression) and explicit diversity prompts.
"""
from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Pattern, Tuple

from config import Settings, settings as default_settings
from loreweaver.context.sections import skills_with_mastery
from loreweaver.engine.state import EntityType, GameState

logger = logging.getLogger(__name__)

UNIQUE_CHOICE_CAP = 20
COMPRESSED_SEGMENTS = 2

CHOICE_PATTERNS: List[Tuple[str, Pattern[str]]] = [
    ("Attack/Combat", re.compile(r"tấn công|đánh|chiến đấu|thi triển|công kích|attack|fight")),
    ("Talk/Converse", re.compile(r"nói|hỏi|trò chuyện|giao tiếp|thuyết phục|tán gẫu|talk|ask")),
    ("Move/Explore", re.compile(r"đi|di chuyển|về|tới|khám phá|tìm kiếm|rời|explore|travel")),
    ("Observe/Track", re.compile(r"quan sát|nhìn|theo dõi|xem|kín đáo|observe|watch")),
    ("Use skill", re.compile(r"sử dụng.*kỹ năng|thi triển|pháp thuật|kỹ thuật|skill")),
    ("Rest/Relax", re.compile(r"nghỉ|ngơi|thư giãn|tận hưởng|ngâm|rest")),
]
OTHER_PATTERN = "Other"

DIVERSITY_CATEGORIES = [
    "COMMUNICATION: talk, ask for information, persuade",
    "ACTION: move, explore, interact with objects",
    "TACTICS: use skills, fight, defend",
    "STRATEGY: observe, analyse, plan",
    "INTROSPECTION: reflect, remember, make an important decision",
]


def identify_choice_patterns(choices: List[str]) -> List[Tuple[str, List[str]]]:
    """Group choices by the first matching category pattern; empty groups are dropped."""
    groups: Dict[str, List[str]] = {label: [] for label, _ in CHOICE_PATTERNS}
    groups[OTHER_PATTERN] = []
    for choice in choices:
        lowered = choice.lower()
        label = next((lbl for lbl, pattern in CHOICE_PATTERNS if pattern.search(lowered)), OTHER_PATTERN)
        groups[label].append(choice)
    return [(label, examples) for label, examples in groups.items() if examples]


class ChoiceGuidanceBuilder:
    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or default_settings

    def build(self, state: GameState) -> str:
        parts = ["\n--- SMART CHOICE GUIDANCE ---\n"]
        for block in (
            self.choice_history(state),
            self.situational(state),
            self.party(state),
            self.goal(state),
            self.diversity(state),
        ):
            if block:
                parts.append(block + "\n")
        parts.append(
            "**IMPORTANT**: choices must fit the current situation, must not repeat recent "
            "picks, and should open interesting directions for the story."
        )
        return "".join(parts)

    # ── history ───────────────────────────────────────────
    def compressed_choices(self, state: GameState) -> List[str]:
        recovered: List[str] = []
        for segment in state.compressed_history[-COMPRESSED_SEGMENTS:]:
            recovered.extend(segment.recent_choices)
        return recovered

    def choice_history(self, state: GameState) -> Optional[str]:
        s = self.settings
        window = [r for r in state.choice_history if state.turn_count - r.turn <= s.CHOICE_TURN_WINDOW]
        recovered = self.compressed_choices(state)
        if not state.choice_history and not recovered:
            return None

        selected = [r.selected_choice for r in state.choice_history if r.selected_choice]
        selected = selected[-s.SELECTED_CHOICE_WINDOW:]
        offered = [c for r in window for c in r.choices][-s.OFFERED_CHOICE_WINDOW:]
        unique = list(dict.fromkeys(recovered + offered))[-UNIQUE_CHOICE_CAP:]

        lines = ["**AVOID REPETITION - diversify choices:**"]
        if selected:
            lines.append("Recently selected actions:")
            lines.extend(f"• {choice}" for choice in selected)
            lines.append("")
        if unique:
            lines.append("Choices already offered (including compressed history - do not repeat):")
            for label, examples in identify_choice_patterns(unique):
                more = "..." if len(examples) > 2 else ""
                lines.append(f'• Group "{label}": {", ".join(examples[:2])}{more}')
        if recovered:
            lines.append("")
            lines.append(f"Choices recovered from compressed history ({len(recovered)}):")
            lines.extend(f"• {choice}" for choice in dict.fromkeys(recovered))
        lines.append("")
        lines.append("**REQUIRED**: create NEW, DIFFERENT choices that fit the current situation!")
        return "\n".join(lines) + "\n"

    # ── suggestions ───────────────────────────────────────
    def situational(self, state: GameState) -> Optional[str]:
        pc = state.player_character
        if pc is None:
            return None
        suggestions: List[str] = []
        if pc.location and pc.location in state.known_entities:
            suggestions.append(f'Make use of the location "{pc.location}"')
        if state.active_quests:
            suggestions.append(f'Offer a choice that advances the quest "{state.active_quests[0].title}"')
        if pc.learned_skills:
            skills = skills_with_mastery(pc.learned_skills, state)[:2]
            suggestions.append(f"Allow using skills: {', '.join(skills)}")
        nearby = [
            e.name for e in state.known_entities.values()
            if e.type == EntityType.NPC and pc.location and e.location == pc.location
        ][:2]
        if nearby:
            suggestions.append(f"Interact with: {', '.join(nearby)}")
        if not suggestions:
            return None
        return "**Choices that fit the situation:**\n" + "\n".join(f"• {s}" for s in suggestions) + "\n"

    def party(self, state: GameState) -> Optional[str]:
        suggestions: List[str] = []
        for companion in state.companions:
            if companion.skills:
                suggestions.append(f"Ask {companion.name} to use their expertise: {companion.skills[0]}")
            if companion.relationship:
                suggestions.append(f"Talk with {companion.name} based on the relationship: {companion.relationship}")
        if not suggestions:
            return None
        return "**Choices involving companions:**\n" + "\n".join(f"• {s}" for s in suggestions[:2]) + "\n"

    def goal(self, state: GameState) -> Optional[str]:
        pc = state.player_character
        if pc is None or not pc.motivation:
            return None
        return (
            "**Choices toward the character's goal:**\n"
            f'• At least 1-2 choices must work toward the goal: "{pc.motivation}"\n'
            "• Create chances to get closer to the goal or to remove an obstacle\n"
        )

    def diversity(self, state: GameState) -> str:
        pc = state.player_character
        lines = ["\n**DIVERSE CHOICE GUIDANCE:**", "**Use at least 2-3 different kinds of action:**"]
        lines.extend(f"• {category}" for category in DIVERSITY_CATEGORIES)
        if pc is not None and pc.location:
            lines.append(f'\n**Use the location "{pc.location}":**')
            lines.append("• Offer choices that fit its features and opportunities")
        if pc is not None and pc.learned_skills:
            lines.append("\n**Use available skills:**")
            lines.extend(f'• Create a chance to use "{s}"' for s in skills_with_mastery(pc.learned_skills[:3], state))
        if state.companions:
            lines.append("\n**Companion interaction:**")
            lines.extend(f"• A choice to coordinate or talk with {c.name}" for c in state.companions[:2])
        lines.append("\n**Vary durations:**")
        lines.append("• Short (15-30 minutes), medium (1-2 hours) and long (half a day) choices")
        lines.append("• Balance quick actions with reflective ones")
        lines.append("\n**EVERY CHOICE MUST:**")
        lines.append("• LEAD TO A DIFFERENT OUTCOME")
        lines.append("• Create new, unpredictable situations")
        lines.append("• Reflect the character's personality and motives")
        lines.append("• Make sense in the current context")
        return "\n".join(lines) + "\n"


def build_smart_choice_context(state: GameState, settings: Optional[Settings] = None) -> str:
    return ChoiceGuidanceBuilder(settings).build(state)
