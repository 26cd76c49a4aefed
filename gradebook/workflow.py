"""
Result status transitions.

TRANSITIONS maps (current status, action) to the next status. Anything not
listed is a state conflict; callers check every record first and only then
write, so a conflict never leaves a group half-transitioned.
"""
from .exceptions import StateConflictError
from .models import Result
from .permissions import Action

Status = Result.Status

TRANSITIONS = {
    (Status.DRAFT, Action.RECORD_SCORE): Status.DRAFT,
    (Status.REJECTED, Action.RECORD_SCORE): Status.DRAFT,
    (Status.DRAFT, Action.SUBMIT): Status.SUBMITTED,
    (Status.SUBMITTED, Action.APPROVE): Status.APPROVED,
    (Status.SUBMITTED, Action.REJECT): Status.REJECTED,
    (Status.APPROVED, Action.PUBLISH): Status.PUBLISHED,
}


def next_status(status, action):
    """Target status for ``action`` from ``status``, or None if not allowed."""
    return TRANSITIONS.get((Status(status), Action(action)))


def check_transitions(results, action):
    """
    Raise StateConflictError unless every result can take ``action``.

    Returns a list of (result, new_status) pairs in input order.
    """
    planned = []
    conflicts = {}
    for result in results:
        target = next_status(result.status, action)
        if target is None:
            conflicts[result.pk] = result.status
        else:
            planned.append((result, target))

    if conflicts:
        raise StateConflictError(
            f"Cannot {Action(action).value} {len(conflicts)} result(s) in their current state.",
            conflicts=conflicts,
        )
    return planned
