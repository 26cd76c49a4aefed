"""
Result workflow operations: score entry, submission, approval, rejection,
publication and role-filtered reads.

Each operation checks authorization first, then locks and checks every
affected row, and only then writes. A failure at any point leaves the ledger
as it was.
"""
import logging

from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from .access import can_view_results
from .exceptions import AuthorizationError, StateConflictError, ValidationError
from .models import Result, ResultGroup, ResultSettings
from .permissions import Action, SystemActor, is_results_admin, require
from .signals import results_published, results_submitted
from .utils import rank, validate_scores
from .workflow import check_transitions

logger = logging.getLogger(__name__)


def _user_or_none(actor):
    return None if isinstance(actor, SystemActor) else actor


def rank_group(key):
    """
    Re-rank one group from the database.

    Submitted, approved and published members are ranked; draft and
    rejected members have their position cleared.
    """
    with transaction.atomic():
        members = list(Result.objects.select_for_update().in_group(key).order_by('student_id'))
        ranked = [m for m in members if m.status in Result.RANKED_STATUSES]
        ordered = rank(ranked)
        for member in members:
            if member.status not in Result.RANKED_STATUSES:
                member.position = None
        if members:
            Result.objects.bulk_update(members, ['position'])

    logger.debug(f"Ranked {len(ordered)} of {len(members)} results in group {tuple(key)}")
    return ordered


def record_score(actor, student, subject, academic_year, term, test1=None, test2=None, exam=None):
    """
    Create or update a student's draft result for a subject.

    Editing a rejected result reopens it as a draft. Results that are
    submitted, approved or published cannot be edited.

    Raises:
        ValidationError: bad scores, locked term, or student not in a class
        AuthorizationError: actor does not supervise the class and subject
        StateConflictError: result is no longer editable
    """
    class_assigned = student.current_class
    if class_assigned is None:
        raise ValidationError(f"{student} is not enrolled in a class.")

    key = ResultGroup(class_assigned.pk, subject.pk, academic_year.pk, term.pk)
    require(actor, Action.RECORD_SCORE, key)

    if term.academic_year_id != academic_year.pk:
        raise ValidationError(f"{term} does not belong to {academic_year}.")
    if term.grades_locked:
        raise ValidationError(f"Score entry is locked for {term}.")

    scores = validate_scores(test1, test2, exam)

    with transaction.atomic():
        result = Result.objects.select_for_update().filter(
            student=student,
            subject=subject,
            class_assigned=class_assigned,
            academic_year=academic_year,
            term=term,
        ).first()

        if result is None:
            result = Result(
                student=student,
                subject=subject,
                class_assigned=class_assigned,
                academic_year=academic_year,
                term=term,
            )
        else:
            [(result, target)] = check_transitions([result], Action.RECORD_SCORE)
            if result.status == Result.Status.REJECTED:
                logger.info(f"Reopening rejected result {result.pk} for {student} in {subject}")
            result.status = target

        result.test1_score = scores['test1']
        result.test2_score = scores['test2']
        result.exam_score = scores['exam']
        result.supervisor = actor
        result.position = None
        result.save()

    logger.debug(f"Recorded {result.percentage}% ({result.grade}) for {student} in {subject}")
    return result


def submit_group(actor, key):
    """
    Submit every draft in a group for compilation and approval.

    The group may only contain draft or already submitted results, and the
    drafts must have been recorded by ``actor``.

    Returns:
        list: the results that were submitted
    """
    require(actor, Action.SUBMIT, key)

    with transaction.atomic():
        members = list(Result.objects.select_for_update().in_group(key).order_by('student_id'))

        blocking = {
            m.pk: m.status for m in members
            if m.status not in (Result.Status.DRAFT, Result.Status.SUBMITTED)
        }
        if blocking:
            raise StateConflictError(
                "Only groups of draft or submitted results can be submitted.",
                conflicts=blocking,
            )

        drafts = [m for m in members if m.status == Result.Status.DRAFT]
        if not drafts:
            raise StateConflictError("There are no draft results to submit.")

        if any(m.supervisor_id not in (None, actor.pk) for m in drafts):
            raise AuthorizationError(
                "You can only submit results you recorded.",
                action=Action.SUBMIT,
            )

        now = timezone.now()
        for result, target in check_transitions(drafts, Action.SUBMIT):
            result.status = target
            result.submitted_at = now
            result.supervisor = actor
            result.updated_at = now
        Result.objects.bulk_update(drafts, ['status', 'submitted_at', 'supervisor', 'updated_at'])

    logger.info(f"{actor} submitted {len(drafts)} results for group {tuple(key)}")
    results_submitted.send(sender=Result, group=key, actor=actor, results=drafts)
    return drafts


def approve_results(actor, results):
    """
    Approve submitted results and re-rank their groups.

    ``actor`` is an admin, or COMPILATION_SCHEDULER when auto-approve is on.
    """
    results = list(results)
    if not results:
        raise StateConflictError("There are no results to approve.")

    keys = {r.group_key for r in results}
    for key in keys:
        require(actor, Action.APPROVE, key)

    with transaction.atomic():
        locked = list(
            Result.objects.select_for_update().filter(pk__in=[r.pk for r in results]).order_by('pk')
        )
        planned = check_transitions(locked, Action.APPROVE)

        now = timezone.now()
        for result, target in planned:
            result.status = target
            result.approved_at = now
            result.approved_by = _user_or_none(actor)
            result.updated_at = now
        Result.objects.bulk_update(locked, ['status', 'approved_at', 'approved_by', 'updated_at'])

        for key in keys:
            rank_group(key)

    logger.info(f"{actor} approved {len(locked)} results")
    return locked


def approve_group(actor, key):
    """Approve every submitted result in a group."""
    require(actor, Action.APPROVE, key)
    submitted = list(Result.objects.in_group(key).submitted())
    if not submitted:
        raise StateConflictError("There are no submitted results to approve in this group.")
    return approve_results(actor, submitted)


def reject_results(actor, results, reason=''):
    """Send submitted results back to their supervisor."""
    results = list(results)
    if not results:
        raise StateConflictError("There are no results to reject.")

    keys = {r.group_key for r in results}
    for key in keys:
        require(actor, Action.REJECT, key)

    with transaction.atomic():
        locked = list(
            Result.objects.select_for_update().filter(pk__in=[r.pk for r in results]).order_by('pk')
        )
        planned = check_transitions(locked, Action.REJECT)

        now = timezone.now()
        for result, target in planned:
            result.status = target
            result.rejected_at = now
            result.rejected_by = actor
            result.rejection_reason = reason
            result.updated_at = now
        Result.objects.bulk_update(
            locked, ['status', 'rejected_at', 'rejected_by', 'rejection_reason', 'updated_at']
        )

        for key in keys:
            rank_group(key)

    logger.info(f"{actor} rejected {len(locked)} results")
    return locked


def reject_group(actor, key, reason=''):
    """Reject every submitted result in a group."""
    require(actor, Action.REJECT, key)
    submitted = list(Result.objects.in_group(key).submitted())
    if not submitted:
        raise StateConflictError("There are no submitted results to reject in this group.")
    return reject_results(actor, submitted, reason)


def publish_results(actor, class_assigned, academic_year, term, subject=None):
    """
    Publish the approved results of a class for a session/term.

    Results in any other status are left untouched.

    Returns:
        int: number of results published
    """
    require(actor, Action.PUBLISH)

    with transaction.atomic():
        queryset = Result.objects.select_for_update().filter(
            class_assigned=class_assigned,
            academic_year=academic_year,
            term=term,
            status=Result.Status.APPROVED,
        )
        if subject is not None:
            queryset = queryset.filter(subject=subject)
        approved = list(queryset)

        if not approved:
            raise StateConflictError(f"There are no approved results to publish for {class_assigned}.")

        now = timezone.now()
        for result, target in check_transitions(approved, Action.PUBLISH):
            result.status = target
            result.published_at = now
            result.published_by = actor
            result.updated_at = now
        Result.objects.bulk_update(approved, ['status', 'published_at', 'published_by', 'updated_at'])

    logger.info(f"{actor} published {len(approved)} results for {class_assigned} ({term})")
    results_published.send(
        sender=Result,
        class_assigned=class_assigned,
        academic_year=academic_year,
        term=term,
        results=approved,
    )
    return len(approved)


def visible_results(actor, academic_year, term):
    """
    Results ``actor`` may read for a session/term.

    Admins see everything and supervisors see the groups assigned to them.
    Parents and students only see published results whose fees unlock them.
    """
    require(actor, Action.VIEW)

    queryset = Result.objects.filter(
        academic_year=academic_year,
        term=term,
    ).select_related('student', 'subject', 'class_assigned')

    if is_results_admin(actor):
        return list(queryset)

    if actor.is_supervisor:
        from academics.models import ClassSubject

        assignments = ClassSubject.objects.filter(supervisor=actor).values_list('class_assigned_id', 'subject_id')
        condition = Q(pk__in=[])
        for class_id, subject_id in assignments:
            condition |= Q(class_assigned_id=class_id, subject_id=subject_id)
        return list(queryset.filter(condition))

    students = []
    if actor.is_parent:
        students.extend(actor.wards.filter(is_active=True))
    if actor.is_student and hasattr(actor, 'student_profile'):
        students.append(actor.student_profile)

    threshold = ResultSettings.load().access_threshold
    published = queryset.filter(status=Result.Status.PUBLISHED, student__in=students)
    unlocked = {}
    visible = []
    for result in published:
        gate = (result.student_id, result.class_assigned_id)
        if gate not in unlocked:
            unlocked[gate] = can_view_results(
                result.student, academic_year, term, threshold, result.class_assigned
            )
        if unlocked[gate]:
            visible.append(result)
    return visible
