"""Input checks shared by the dictionary, command and window-context editors.

Every check returns an error message, or ``None`` when the value is valid.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional


MAX_SUFFIX_LENGTH = 5


def validate_trigger(trigger: str) -> Optional[str]:
    if not trigger.strip():
        return "Trigger is required"
    return None


def is_duplicate_trigger(trigger: str, existing_triggers: Iterable[str]) -> bool:
    """Case-insensitive membership test."""
    normalized = trigger.strip().lower()
    return any(normalized == other.strip().lower() for other in existing_triggers)


def duplicate_trigger_error(trigger: str, existing_triggers: Iterable[str]) -> Optional[str]:
    if is_duplicate_trigger(trigger, existing_triggers):
        return "This trigger already exists"
    return None


def validate_suffix(suffix: Optional[str]) -> Optional[str]:
    if suffix and len(suffix) > MAX_SUFFIX_LENGTH:
        return f"Suffix must be {MAX_SUFFIX_LENGTH} characters or less"
    return None


def validate_title_pattern(pattern: Optional[str]) -> Optional[str]:
    """Empty patterns are valid (the matcher field is optional)."""
    if not pattern or not pattern.strip():
        return None
    try:
        re.compile(pattern)
    except re.error as exc:
        return f"Invalid regex: {exc}"
    return None
