"""
Assessment focus scheduling.

The conversation moves through the cognitive domains in a fixed order,
a band of turns each: general rapport first, then memory, language, and
executive function, which is kept for the rest of the conversation.
"""

from enum import Enum


class AssessmentFocus(str, Enum):
    GENERAL = "general"
    MEMORY = "memory"
    LANGUAGE = "language"
    EXECUTIVE = "executive"


FOCUS_ORDER = (
    AssessmentFocus.GENERAL,
    AssessmentFocus.MEMORY,
    AssessmentFocus.LANGUAGE,
    AssessmentFocus.EXECUTIVE,
)


def focus_band(turn_count: int, turns_per_focus: int = 4) -> int:
    """Index into FOCUS_ORDER for a turn count (clamped to the last band)."""
    if turns_per_focus < 1:
        raise ValueError(f"turns_per_focus must be >= 1, got {turns_per_focus}")
    if turn_count < 0:
        return 0
    return min(turn_count // turns_per_focus, len(FOCUS_ORDER) - 1)


def next_focus(
    current_focus: AssessmentFocus,
    turn_count: int,
    turns_per_focus: int = 4,
) -> AssessmentFocus:
    """
    Focus for the next reply, given the number of turns recorded so far.

    With the default band width: 0-3 general, 4-7 memory, 8-11 language,
    12 and later executive. Depends only on turn_count; current_focus is
    accepted so the schedule can later become adaptive.
    """
    return FOCUS_ORDER[focus_band(turn_count, turns_per_focus)]
