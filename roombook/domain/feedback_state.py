"""Room feedback state machine.

States: OPEN → RESOLVED | DISMISSED (both terminal)
"""

from enum import Enum

from roombook.core.exceptions import InvalidTransition


class FeedbackStatus(str, Enum):
    """Feedback lifecycle states."""

    OPEN = "OPEN"
    RESOLVED = "RESOLVED"
    DISMISSED = "DISMISSED"


FEEDBACK_TRANSITIONS: dict[FeedbackStatus, set[FeedbackStatus]] = {
    FeedbackStatus.OPEN: {FeedbackStatus.RESOLVED, FeedbackStatus.DISMISSED},
    FeedbackStatus.RESOLVED: set(),
    FeedbackStatus.DISMISSED: set(),
}


def assert_feedback_transition(current: str | FeedbackStatus, target: str | FeedbackStatus) -> None:
    """Validate feedback state transition."""
    current = FeedbackStatus(current)
    target = FeedbackStatus(target)
    if target not in FEEDBACK_TRANSITIONS[current]:
        raise InvalidTransition(current, target)
