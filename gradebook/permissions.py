"""
Authorization for the result workflow.

Every operation in services.py and compilation.py asks ``can_perform`` before
touching the ledger, so role rules live in one place.
"""
import logging
from enum import Enum

logger = logging.getLogger(__name__)


class Action(str, Enum):
    RECORD_SCORE = 'record_score'
    SUBMIT = 'submit'
    APPROVE = 'approve'
    REJECT = 'reject'
    PUBLISH = 'publish'
    VIEW = 'view'
    RETRY_JOB = 'retry_job'
    CONFIGURE = 'configure'


class SystemActor:
    """Non-human actor, such as the compilation scheduler."""

    is_authenticated = True
    is_active = True

    def __init__(self, name):
        self.name = name

    def __str__(self):
        return self.name

    def __repr__(self):
        return f"<SystemActor {self.name}>"


COMPILATION_SCHEDULER = SystemActor('compilation-scheduler')

ADMIN_ACTIONS = {Action.APPROVE, Action.REJECT, Action.PUBLISH, Action.RETRY_JOB, Action.CONFIGURE}
SUPERVISOR_ACTIONS = {Action.RECORD_SCORE, Action.SUBMIT}


def is_results_admin(user):
    return bool(getattr(user, 'is_results_admin', False))


def _is_assigned(user, group):
    from academics.models import ClassSubject

    return ClassSubject.is_assigned(user, group.class_id, group.subject_id)


def can_perform(actor, action, group=None):
    """
    Check whether ``actor`` may perform ``action`` on a result group.

    Args:
        actor: a User, or COMPILATION_SCHEDULER
        action: an Action
        group: ResultGroup the action targets (required for supervisor actions)

    Returns:
        tuple: (allowed: bool, error_message: str or None)
    """
    action = Action(action)

    if actor is COMPILATION_SCHEDULER:
        if action == Action.APPROVE:
            from .models import ResultSettings
            if ResultSettings.load().auto_approve:
                return True, None
            return False, 'Automatic approval is disabled.'
        return False, f'The compilation scheduler cannot {action.value}.'

    if actor is None or not getattr(actor, 'is_authenticated', False) or not actor.is_active:
        return False, 'You must be signed in.'

    if action in ADMIN_ACTIONS:
        if is_results_admin(actor):
            return True, None
        return False, 'Only school administrators can do this.'

    if action in SUPERVISOR_ACTIONS:
        if not getattr(actor, 'is_supervisor', False):
            return False, 'Only subject supervisors can record and submit scores.'
        if group is None or not _is_assigned(actor, group):
            return False, 'You are not assigned to this class and subject.'
        return True, None

    if action == Action.VIEW:
        if is_results_admin(actor):
            return True, None
        if group is not None and getattr(actor, 'is_supervisor', False):
            if _is_assigned(actor, group):
                return True, None
            return False, 'You are not assigned to this class and subject.'
        if actor.is_teacher or actor.is_parent or actor.is_student:
            # Row level filtering happens in visible_results()
            return True, None
        return False, 'You do not have permission to view results.'

    return False, 'Unknown action.'


def require(actor, action, group=None):
    """can_perform() that raises AuthorizationError instead of returning."""
    from .exceptions import AuthorizationError

    allowed, message = can_perform(actor, action, group)
    if not allowed:
        logger.info(f"Denied {Action(action).value} for {actor}: {message}")
        raise AuthorizationError(message, action=Action(action))
