"""Token estimation and truncation helpers shared by every budgeting step."""
from __future__ import annotations

import math
from typing import Optional

from config import settings

TRUNCATION_MARKER = "\n...[content truncated]...\n"
ELLIPSIS = "..."


def _ratio(ratio: Optional[float]) -> float:
    return settings.CHARS_PER_TOKEN if ratio is None else ratio


def estimate_tokens(text: Optional[str], ratio: Optional[float] = None) -> int:
    """Approximate token count: ``ceil(len(text) * ratio)``.  Empty text is 0."""
    if not text:
        return 0
    return math.ceil(len(text) * _ratio(ratio))


def max_chars_for(max_tokens: int, ratio: Optional[float] = None) -> int:
    """Largest character count whose estimate stays within ``max_tokens``."""
    if max_tokens <= 0:
        return 0
    return int(math.floor(max_tokens / _ratio(ratio)))


def aggressive_truncate(text: str, max_tokens: int, ratio: Optional[float] = None) -> str:
    """Keep the head (60%) and tail (30%) of the allowed characters around a marker.

    Falls back to plain head truncation with an ellipsis when the two halves
    and the marker cannot fit.  Never returns an empty string for non-empty
    input while ``max_tokens`` is positive.
    """
    if not text or estimate_tokens(text, ratio) <= max_tokens:
        return text
    if max_tokens <= 0:
        return ""

    char_limit = max(1, int(max_chars_for(max_tokens, ratio) * 0.9))
    head_len = int(char_limit * 0.6)
    tail_len = int(char_limit * 0.3)

    if head_len and tail_len and head_len + tail_len + len(TRUNCATION_MARKER) <= char_limit \
            and head_len + tail_len < len(text):
        return text[:head_len] + TRUNCATION_MARKER + text[-tail_len:]
    return _head_truncate(text, char_limit)


def truncate_to_limit(text: str, max_tokens: int, ratio: Optional[float] = None) -> str:
    """Head-truncate at a sentence or word boundary so the estimate fits ``max_tokens``."""
    if not text or estimate_tokens(text, ratio) <= max_tokens:
        return text
    if max_tokens <= 0:
        return ""

    char_limit = max(1, max_chars_for(max_tokens, ratio))
    if char_limit <= len(ELLIPSIS):
        return text[:char_limit]
    cut = text[: char_limit - len(ELLIPSIS)]
    boundary = max(cut.rfind(". "), cut.rfind("\n"))
    if boundary > len(cut) * 0.8:
        cut = cut[: boundary + 1]
    else:
        space = cut.rfind(" ")
        if space > len(cut) * 0.8:
            cut = cut[:space]
    return cut.rstrip() + ELLIPSIS


def _head_truncate(text: str, char_limit: int) -> str:
    if char_limit <= len(ELLIPSIS):
        return text[:char_limit]
    return text[: char_limit - len(ELLIPSIS)] + ELLIPSIS
