"""
Errors raised by the result workflow and the compilation scheduler.

Score validation reuses Django's ValidationError so forms and the admin can
render field errors directly.
"""
from django.core.exceptions import PermissionDenied, ValidationError

__all__ = [
    'ValidationError',
    'AuthorizationError',
    'StateConflictError',
    'PerMemberProcessingError',
    'JobFailure',
]


class AuthorizationError(PermissionDenied):
    """The actor lacks the role or assignment required for the action."""

    def __init__(self, message, action=None):
        super().__init__(message)
        self.message = message
        self.action = action


class StateConflictError(Exception):
    """
    A transition was attempted from an unexpected source state.

    ``conflicts`` maps record primary keys to their current status.
    """

    def __init__(self, message, conflicts=None):
        super().__init__(message)
        self.message = message
        self.conflicts = conflicts or {}


class PerMemberProcessingError(Exception):
    """One student's compilation step failed; the job carries on."""

    def __init__(self, result, reason):
        super().__init__(reason)
        self.result = result
        self.reason = reason

    def __str__(self):
        return f"Error processing student {self.result.student_id}: {self.reason}"


class JobFailure(Exception):
    """A group-level compilation fault; the job is marked failed."""
