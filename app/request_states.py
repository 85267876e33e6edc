"""Status values and transition policy for certificate requests.

Status changes only happen through the named lifecycle operations; this module
is the single place that says which of them is legal from which status. The
lifecycle guards below all read ``ALLOWED_TRANSITIONS``.
"""

from __future__ import annotations

PENDING = "PENDING"
IN_PROGRESS = "IN_PROGRESS"
COMPLETED = "COMPLETED"
FAILED = "FAILED"

ALL_STATUSES: frozenset[str] = frozenset({PENDING, IN_PROGRESS, COMPLETED, FAILED})
TERMINAL_STATUSES: frozenset[str] = frozenset({COMPLETED, FAILED})

# FAILED -> FAILED re-records the error message; a failed request is never completed.
ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    PENDING: {IN_PROGRESS, COMPLETED, FAILED},
    IN_PROGRESS: {COMPLETED, FAILED},
    FAILED: {FAILED},
    COMPLETED: set(),
}


def is_allowed(current_status: str, new_status: str) -> bool:
    return new_status in ALLOWED_TRANSITIONS.get(current_status, set())


def sources_of(new_status: str) -> frozenset[str]:
    """Statuses from which ``new_status`` may be entered."""
    return frozenset(status for status in ALL_STATUSES if is_allowed(status, new_status))


STARTABLE_STATUSES: frozenset[str] = sources_of(IN_PROGRESS)
COMPLETABLE_STATUSES: frozenset[str] = sources_of(COMPLETED)
FAILABLE_STATUSES: frozenset[str] = sources_of(FAILED)


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def can_begin_processing(status: str) -> bool:
    return is_allowed(status, IN_PROGRESS)


def can_complete(status: str) -> bool:
    return is_allowed(status, COMPLETED)


def can_fail(status: str) -> bool:
    return is_allowed(status, FAILED)
