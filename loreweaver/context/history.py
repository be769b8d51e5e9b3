"""Helpers for reading the raw turn history.

Model entries are usually JSON objects (``story``, ``location_update`` …);
entries that fail to parse are skipped, never fatal.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from loreweaver.engine.state import HistoryEntry

logger = logging.getLogger(__name__)

ACTION_PREFIX = "ACTION:"

_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_CONTINUITY = re.compile(
    r"đã|đang|sẽ|vừa|bắt đầu|kết thúc|phát hiện|gặp|nói|quyết định|cảm thấy|di chuyển|tới|về|rời"
)


def parse_model_entry(entry: HistoryEntry) -> Optional[Dict[str, Any]]:
    """Decode a model entry's JSON payload, or ``None`` when it is not a JSON object."""
    try:
        parsed = json.loads(entry.text)
    except (json.JSONDecodeError, TypeError):
        logger.debug("Skipping unparseable model history entry (%d chars)", len(entry.text or ""))
        return None
    return parsed if isinstance(parsed, dict) else None


def clean_action(text: str) -> str:
    text = text or ""
    if text.startswith(ACTION_PREFIX):
        text = text[len(ACTION_PREFIX):]
    return text.strip()


def extract_story_continuity(story: str) -> Optional[str]:
    """One or two sentences carrying the story forward; first/last sentence otherwise."""
    if not story or len(story) < 20:
        return None
    sentences = [s.strip() for s in _SENTENCE_SPLIT.split(story) if len(s.strip()) > 15]
    key = [s for s in sentences if _CONTINUITY.search(s)][:2]
    if key:
        return ". ".join(key) + "."
    if not sentences:
        return None
    first, last = sentences[0], sentences[-1]
    if first != last:
        return f"{first}... {last}."
    return f"{first}."


def extract_state_changes(parsed: Dict[str, Any]) -> Optional[str]:
    changes: List[str] = []
    location = parsed.get("location_update")
    if isinstance(location, dict) and location.get("new_location"):
        changes.append(f"Location → {location['new_location']}")
    story = parsed.get("story")
    if isinstance(story, str) and ("SKILL_LEARNED" in story or "SKILL_UPDATE" in story):
        changes.append("Skills updated")
    if parsed.get("entity_updates"):
        changes.append(f"{len(parsed['entity_updates'])} entities updated")
    if parsed.get("quest_updates"):
        changes.append("Quest progress")
    if parsed.get("status_updates"):
        changes.append("Status changed")
    if parsed.get("memory_update"):
        changes.append("New memory")
    return ", ".join(changes) if changes else None


def recent_story_lines(history: Sequence[HistoryEntry], pairs: int = 6, limit: int = 8) -> List[str]:
    """Alternating ``[Action]`` and ``[Result]``/``[Changes]`` lines from the last ``pairs`` turns."""
    lookback = min(pairs, len(history) // 2)
    if lookback <= 0:
        return []
    actions: List[str] = []
    events: List[str] = []
    for entry in history[-lookback * 2:]:
        if entry.role == "user":
            if entry.text.startswith(ACTION_PREFIX):
                actions.append(f"[Action] {clean_action(entry.text)}")
        elif entry.role == "model":
            parsed = parse_model_entry(entry)
            if parsed is None:
                continue
            story = parsed.get("story")
            if isinstance(story, str):
                segment = extract_story_continuity(story)
                if segment:
                    events.append(f"[Result] {segment}")
            changes = extract_state_changes(parsed)
            if changes:
                events.append(f"[Changes] {changes}")

    combined: List[str] = []
    for i in range(max(len(actions), len(events))):
        if i < len(actions):
            combined.append(actions[i])
        if i < len(events):
            combined.append(events[i])
    return combined[-limit:]


def extract_recent_events(history: Sequence[HistoryEntry]) -> str:
    """Last history pair rendered as ``Action → Result`` for the reasoning scaffold."""
    if not history:
        return "No recent events"
    events: List[str] = []
    for entry in history[-2:]:
        if entry.role == "user":
            events.append(f"Action: {clean_action(entry.text)}")
        elif entry.role == "model":
            parsed = parse_model_entry(entry)
            story = parsed.get("story") if parsed else None
            if isinstance(story, str):
                summary = extract_story_continuity(story)
                if summary:
                    events.append(f"Result: {summary}")
    return " → ".join(events) or "The adventure begins"
