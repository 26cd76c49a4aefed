from datetime import date, timedelta
from decimal import Decimal
from io import StringIO
from types import SimpleNamespace
from unittest import mock

from django.contrib.admin import AdminSite
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.management import call_command
from django.db import IntegrityError, transaction
from django.test import RequestFactory, TestCase
from django.utils import timezone

from academics.models import Class, ClassSubject, Subject
from core.models import AcademicYear, Term
from finance.models import FeeStructure, Payment
from students.models import Student

from .access import can_view_results, fee_progress, is_result_visible
from .admin import ResultAdmin, ResultSettingsAdmin
from .compilation import CompilationScheduler
from .exceptions import (
    AuthorizationError, PerMemberProcessingError, StateConflictError, ValidationError,
)
from .models import CompilationJob, Result, ResultGroup, ResultSettings
from .permissions import COMPILATION_SCHEDULER, Action, can_perform
from .services import (
    approve_group, approve_results, publish_results, record_score,
    reject_group, submit_group, visible_results,
)
from .signals import compilation_completed, result_reports_requested, signals_disabled
from .tasks import process_compilation_job, scan_for_submissions
from .utils import grade, grade_for_percentage, rank, validate_scores
from .workflow import next_status


User = get_user_model()


class GradeFunctionTest(TestCase):
    """Tests for the grading function."""

    def test_sample_scores(self):
        """18/20 + 17/20 + 50/60 is 85%, an A."""
        info = grade(18, 17, 50, 'direct')
        self.assertEqual(info['total'], Decimal('85.00'))
        self.assertEqual(info['percentage'], 85)
        self.assertEqual(info['grade'], 'A')
        self.assertEqual(info['grade_remark'], 'Excellent')

    def test_deterministic(self):
        self.assertEqual(grade(12, 9.5, 41, 'direct'), grade(12, 9.5, 41, 'direct'))
        self.assertEqual(grade(55, 70, 64, 'weighted'), grade(55, 70, 64, 'weighted'))

    def test_band_boundaries(self):
        """Boundary percentages fall in the higher band."""
        cases = [
            (100, 'A'), (80, 'A'), (79, 'B'), (70, 'B'), (69, 'C'), (60, 'C'),
            (59, 'D'), (50, 'D'), (49, 'E'), (40, 'E'), (39, 'F'), (0, 'F'),
        ]
        for percentage, expected in cases:
            with self.subTest(percentage=percentage):
                self.assertEqual(grade_for_percentage(percentage)[0], expected)

    def test_boundary_through_scores(self):
        self.assertEqual(grade(20, 20, 40, 'direct')['grade'], 'A')
        self.assertEqual(grade(10, 10, 20, 'direct')['grade'], 'E')
        self.assertEqual(grade(10, 9, 20, 'direct')['grade'], 'F')

    def test_rounds_half_up(self):
        info = grade(10, 10, Decimal('39.5'), 'direct')
        self.assertEqual(info['total'], Decimal('59.50'))
        self.assertEqual(info['percentage'], 60)
        self.assertEqual(info['grade'], 'C')

    def test_weighted_convention(self):
        """Each component out of 100, weighted 0.2/0.2/0.6."""
        info = grade(80, 90, 70, 'weighted')
        self.assertEqual(info['total'], Decimal('76.00'))
        self.assertEqual(info['percentage'], 76)
        self.assertEqual(info['grade'], 'B')
        self.assertEqual(info['grade_remark'], 'Very Good')

    def test_missing_components_count_as_zero(self):
        info = grade(None, None, 45, 'direct')
        self.assertEqual(info['percentage'], 45)
        self.assertEqual(info['grade'], 'E')

    def test_out_of_range_components_are_clamped(self):
        self.assertEqual(grade(25, 0, 0, 'direct')['total'], Decimal('20.00'))
        self.assertEqual(grade(-5, 0, 0, 'direct')['total'], Decimal('0.00'))

    def test_unknown_convention(self):
        with self.assertRaises(ValueError):
            grade(10, 10, 10, 'percentile')

    def test_default_convention_from_settings(self):
        with self.settings(GRADEBOOK_SCORE_ENTRY_CONVENTION='weighted'):
            self.assertEqual(grade(100, 100, 100)['total'], Decimal('100.00'))
        self.assertEqual(grade(20, 20, 60)['total'], Decimal('100.00'))


class ValidateScoresTest(TestCase):
    """Tests for score validation at entry."""

    def test_valid_scores(self):
        cleaned = validate_scores('18', 17.5, 50, 'direct')
        self.assertEqual(cleaned, {'test1': Decimal('18'), 'test2': Decimal('17.5'), 'exam': Decimal('50')})

    def test_blank_scores(self):
        cleaned = validate_scores(None, '', 40, 'direct')
        self.assertIsNone(cleaned['test1'])
        self.assertIsNone(cleaned['test2'])

    def test_negative_score(self):
        with self.assertRaises(ValidationError) as ctx:
            validate_scores(-1, 10, 10, 'direct')
        self.assertIn('test1', ctx.exception.message_dict)

    def test_over_maximum(self):
        with self.assertRaises(ValidationError) as ctx:
            validate_scores(10, 10, 61, 'direct')
        self.assertIn('exam', ctx.exception.message_dict)

    def test_weighted_maximum(self):
        validate_scores(100, 100, 100, 'weighted')
        with self.assertRaises(ValidationError):
            validate_scores(101, 0, 0, 'weighted')

    def test_not_a_number(self):
        with self.assertRaises(ValidationError) as ctx:
            validate_scores('abc', 10, 'NaN', 'direct')
        self.assertIn('test1', ctx.exception.message_dict)
        self.assertIn('exam', ctx.exception.message_dict)


class RankFunctionTest(TestCase):
    """Tests for the ranking function."""

    def _record(self, student_id, percentage, **kwargs):
        defaults = {
            'class_assigned_id': 1, 'subject_id': 1, 'academic_year_id': 1, 'term_id': 1,
            'student_id': student_id, 'percentage': percentage, 'position': None,
        }
        defaults.update(kwargs)
        return SimpleNamespace(**defaults)

    def test_positions_follow_percentage(self):
        records = [self._record(1, 85), self._record(2, 60), self._record(3, 72)]
        ordered = rank(records)
        self.assertEqual([r.student_id for r in ordered], [1, 3, 2])
        self.assertEqual([r.position for r in records], [1, 3, 2])

    def test_positions_are_a_permutation(self):
        records = [self._record(i, p) for i, p in enumerate([55, 90, 55, 12, 90, 73, 40], 1)]
        ordered = rank(records)
        self.assertEqual(sorted(r.position for r in records), list(range(1, 8)))
        percentages = [r.percentage for r in ordered]
        self.assertEqual(percentages, sorted(percentages, reverse=True))

    def test_ties_break_by_student(self):
        records = [self._record(9, 70), self._record(4, 70), self._record(6, 70)]
        rank(records)
        self.assertEqual({r.student_id: r.position for r in records}, {4: 1, 6: 2, 9: 3})

    def test_only_position_changes(self):
        record = self._record(1, 66)
        rank([record])
        self.assertEqual(record.percentage, 66)
        self.assertEqual(record.position, 1)

    def test_mixed_groups_rejected(self):
        with self.assertRaises(ValueError):
            rank([self._record(1, 50), self._record(2, 60, subject_id=2)])

    def test_empty(self):
        self.assertEqual(rank([]), [])


class WorkflowTableTest(TestCase):

    def test_allowed_transitions(self):
        self.assertEqual(next_status('draft', Action.SUBMIT), 'submitted')
        self.assertEqual(next_status('submitted', Action.APPROVE), 'approved')
        self.assertEqual(next_status('submitted', Action.REJECT), 'rejected')
        self.assertEqual(next_status('approved', Action.PUBLISH), 'published')
        self.assertEqual(next_status('rejected', Action.RECORD_SCORE), 'draft')

    def test_everything_else_is_refused(self):
        allowed = {
            ('draft', Action.SUBMIT),
            ('submitted', Action.APPROVE),
            ('submitted', Action.REJECT),
            ('approved', Action.PUBLISH),
        }
        for status in Result.Status.values:
            for action in (Action.SUBMIT, Action.APPROVE, Action.REJECT, Action.PUBLISH):
                if (status, action) not in allowed:
                    with self.subTest(status=status, action=action):
                        self.assertIsNone(next_status(status, action))


class ResultFixtureMixin:
    """Creates a class, a subject, its supervisor and three students."""

    def setUp(self):
        self.year = AcademicYear.objects.create(
            name='2024/2025',
            start_date=date(2024, 9, 1),
            end_date=date(2025, 7, 31),
            is_current=True,
        )
        self.term = Term.objects.create(
            academic_year=self.year,
            name='First Term',
            term_number=1,
            start_date=date(2024, 9, 1),
            end_date=date(2024, 12, 15),
            is_current=True,
        )
        self.klass = Class.objects.create(level_type='jhs', level_number=2, section='A')
        self.subject = Subject.objects.create(name='Mathematics', short_name='MATH')

        self.admin = User.objects.create_school_admin('admin@school.test', 'pass1234')
        self.teacher = User.objects.create_teacher('mensah@school.test', 'pass1234')
        self.other_teacher = User.objects.create_teacher('owusu@school.test', 'pass1234')
        self.parent = User.objects.create_parent('parent@school.test', 'pass1234')
        self.allocation = ClassSubject.objects.create(
            class_assigned=self.klass, subject=self.subject, supervisor=self.teacher
        )

        self.students = [
            Student.objects.create(
                first_name=f'Student{i}',
                last_name='Test',
                admission_number=f'ADM{i:03d}',
                current_class=self.klass,
            )
            for i in range(1, 4)
        ]
        self.key = ResultGroup(self.klass.pk, self.subject.pk, self.year.pk, self.term.pk)

    def record(self, student, test1, test2, exam, actor=None):
        return record_score(
            actor or self.teacher, student, self.subject, self.year, self.term, test1, test2, exam
        )

    def record_sample_group(self):
        """Three results scoring 85, 60 and 72 percent."""
        return [
            self.record(self.students[0], 18, 17, 50),
            self.record(self.students[1], 12, 12, 36),
            self.record(self.students[2], 15, 15, 42),
        ]

    def statuses(self):
        return {r.student_id: r.status for r in Result.objects.in_group(self.key)}

    def positions(self):
        return {r.student_id: r.position for r in Result.objects.in_group(self.key)}

    def set_policy(self, **values):
        settings_obj = ResultSettings.load()
        for name, value in values.items():
            setattr(settings_obj, name, value)
        settings_obj.save()
        return settings_obj


class RecordScoreTest(ResultFixtureMixin, TestCase):
    """Tests for supervisor score entry."""

    def test_creates_graded_draft(self):
        result = self.record(self.students[0], 18, 17, 50)
        self.assertEqual(result.status, Result.Status.DRAFT)
        self.assertEqual(result.percentage, 85)
        self.assertEqual(result.grade, 'A')
        self.assertEqual(result.supervisor, self.teacher)
        self.assertEqual(result.class_assigned, self.klass)

    def test_updates_existing_draft(self):
        first = self.record(self.students[0], 18, 17, 50)
        second = self.record(self.students[0], 10, 10, 30)
        self.assertEqual(first.pk, second.pk)
        self.assertEqual(Result.objects.count(), 1)
        second.refresh_from_db()
        self.assertEqual(second.percentage, 50)
        self.assertEqual(second.grade, 'D')

    def test_unassigned_teacher_denied(self):
        with self.assertRaises(AuthorizationError):
            self.record(self.students[0], 10, 10, 10, actor=self.other_teacher)
        self.assertFalse(Result.objects.exists())

    def test_admin_cannot_record(self):
        with self.assertRaises(AuthorizationError):
            self.record(self.students[0], 10, 10, 10, actor=self.admin)

    def test_invalid_scores_rejected(self):
        with self.assertRaises(ValidationError):
            self.record(self.students[0], 21, 10, 10)
        self.assertFalse(Result.objects.exists())

    def test_locked_term_rejected(self):
        self.term.lock_grades(self.admin)
        with self.assertRaises(ValidationError):
            self.record(self.students[0], 10, 10, 10)
        self.assertFalse(Result.objects.exists())

    def test_student_without_class_rejected(self):
        student = Student.objects.create(first_name='No', last_name='Class', admission_number='ADM999')
        with self.assertRaises(ValidationError):
            self.record(student, 10, 10, 10)

    def test_submitted_result_cannot_be_edited(self):
        self.record_sample_group()
        submit_group(self.teacher, self.key)
        with self.assertRaises(StateConflictError):
            self.record(self.students[0], 1, 1, 1)
        result = Result.objects.get(student=self.students[0])
        self.assertEqual(result.percentage, 85)
        self.assertEqual(result.status, Result.Status.SUBMITTED)

    def test_rejected_result_reopens_as_draft(self):
        self.record_sample_group()
        submit_group(self.teacher, self.key)
        reject_group(self.admin, self.key, reason='Exam scores look wrong')

        result = self.record(self.students[1], 12, 12, 40)
        self.assertEqual(result.status, Result.Status.DRAFT)
        self.assertEqual(result.percentage, 64)
        self.assertIsNone(result.position)


class SubmitGroupTest(ResultFixtureMixin, TestCase):
    """Tests for group submission."""

    def test_submits_all_drafts(self):
        self.record_sample_group()
        submitted = submit_group(self.teacher, self.key)
        self.assertEqual(len(submitted), 3)
        for result in Result.objects.in_group(self.key):
            self.assertEqual(result.status, Result.Status.SUBMITTED)
            self.assertIsNotNone(result.submitted_at)

    def test_submission_queues_one_job(self):
        self.record_sample_group()
        submit_group(self.teacher, self.key)

        jobs = CompilationJob.objects.for_group(self.key)
        self.assertEqual(jobs.count(), 1)
        job = jobs.get()
        self.assertEqual(job.status, CompilationJob.Status.PENDING)
        self.assertEqual(job.total_students, 3)
        self.assertEqual(job.processed_students, 0)

    def test_late_submission_does_not_duplicate_job(self):
        self.record(self.students[0], 18, 17, 50)
        submit_group(self.teacher, self.key)
        self.record(self.students[1], 12, 12, 36)
        submit_group(self.teacher, self.key)

        self.assertEqual(CompilationJob.objects.for_group(self.key).active().count(), 1)
        self.assertEqual(Result.objects.in_group(self.key).submitted().count(), 2)

    def test_nothing_to_submit(self):
        with self.assertRaises(StateConflictError):
            submit_group(self.teacher, self.key)

    def test_group_with_approved_results_conflicts(self):
        self.record_sample_group()
        submit_group(self.teacher, self.key)
        approve_group(self.admin, self.key)

        newcomer = Student.objects.create(
            first_name='Late', last_name='Joiner', admission_number='ADM004', current_class=self.klass
        )
        self.record(newcomer, 10, 10, 30)

        with self.assertRaises(StateConflictError) as ctx:
            submit_group(self.teacher, self.key)
        self.assertEqual(len(ctx.exception.conflicts), 3)
        self.assertEqual(Result.objects.get(student=newcomer).status, Result.Status.DRAFT)

    def test_unassigned_teacher_denied(self):
        self.record_sample_group()
        with self.assertRaises(AuthorizationError):
            submit_group(self.other_teacher, self.key)
        self.assertEqual(set(self.statuses().values()), {Result.Status.DRAFT})

    def test_only_author_can_submit(self):
        self.record_sample_group()
        self.allocation.supervisor = self.other_teacher
        self.allocation.save()

        with self.assertRaises(AuthorizationError):
            submit_group(self.other_teacher, self.key)
        self.assertEqual(set(self.statuses().values()), {Result.Status.DRAFT})


class ApprovalTest(ResultFixtureMixin, TestCase):
    """Tests for approval and rejection."""

    def setUp(self):
        super().setUp()
        self.results = self.record_sample_group()
        submit_group(self.teacher, self.key)

    def test_approve_group_ranks(self):
        approved = approve_group(self.admin, self.key)
        self.assertEqual(len(approved), 3)

        for result in Result.objects.in_group(self.key):
            self.assertEqual(result.status, Result.Status.APPROVED)
            self.assertEqual(result.approved_by, self.admin)
            self.assertIsNotNone(result.approved_at)

        positions = self.positions()
        self.assertEqual(positions[self.students[0].pk], 1)
        self.assertEqual(positions[self.students[2].pk], 2)
        self.assertEqual(positions[self.students[1].pk], 3)

    def test_teacher_cannot_approve(self):
        with self.assertRaises(AuthorizationError):
            approve_group(self.teacher, self.key)
        self.assertEqual(set(self.statuses().values()), {Result.Status.SUBMITTED})

    def test_scheduler_needs_auto_approve(self):
        allowed, message = can_perform(COMPILATION_SCHEDULER, Action.APPROVE, self.key)
        self.assertFalse(allowed)
        self.assertTrue(message)

        self.set_policy(auto_approve=True)
        allowed, message = can_perform(COMPILATION_SCHEDULER, Action.APPROVE, self.key)
        self.assertTrue(allowed)
        self.assertIsNone(message)

        allowed, _ = can_perform(COMPILATION_SCHEDULER, Action.PUBLISH)
        self.assertFalse(allowed)

    def test_approving_twice_conflicts(self):
        approve_group(self.admin, self.key)
        with self.assertRaises(StateConflictError):
            approve_results(self.admin, Result.objects.in_group(self.key))
        self.assertEqual(set(self.statuses().values()), {Result.Status.APPROVED})

    def test_partial_conflict_changes_nothing(self):
        first = Result.objects.get(student=self.students[0])
        approve_results(self.admin, [first])

        with self.assertRaises(StateConflictError) as ctx:
            approve_results(self.admin, Result.objects.in_group(self.key))
        self.assertEqual(list(ctx.exception.conflicts), [first.pk])

        statuses = self.statuses()
        self.assertEqual(statuses[self.students[1].pk], Result.Status.SUBMITTED)
        self.assertEqual(statuses[self.students[2].pk], Result.Status.SUBMITTED)

    def test_reject_group(self):
        rejected = reject_group(self.admin, self.key, reason='Recheck exam marks')
        self.assertEqual(len(rejected), 3)
        for result in Result.objects.in_group(self.key):
            self.assertEqual(result.status, Result.Status.REJECTED)
            self.assertEqual(result.rejection_reason, 'Recheck exam marks')
            self.assertEqual(result.rejected_by, self.admin)
            self.assertIsNone(result.position)

    def test_resubmission_after_rejection(self):
        reject_group(self.admin, self.key)
        for student, scores in zip(self.students, [(18, 17, 50), (12, 12, 36), (15, 15, 42)]):
            self.record(student, *scores)
        submit_group(self.teacher, self.key)
        self.assertEqual(set(self.statuses().values()), {Result.Status.SUBMITTED})

    def test_rejected_results_cannot_be_approved(self):
        reject_group(self.admin, self.key)
        with self.assertRaises(StateConflictError):
            approve_results(self.admin, Result.objects.in_group(self.key))
        self.assertEqual(set(self.statuses().values()), {Result.Status.REJECTED})

    def test_score_correction_reranks(self):
        approve_group(self.admin, self.key)
        weakest = Result.objects.get(student=self.students[1])
        weakest.exam_score = Decimal('60')
        weakest.test1_score = Decimal('20')
        weakest.test2_score = Decimal('20')
        weakest.save()

        self.assertEqual(self.positions()[self.students[1].pk], 1)
        self.assertEqual(self.positions()[self.students[0].pk], 2)


class PublishTest(ResultFixtureMixin, TestCase):
    """Tests for publication."""

    def setUp(self):
        super().setUp()
        self.record_sample_group()
        submit_group(self.teacher, self.key)

    def test_publishes_only_approved(self):
        approve_results(self.admin, Result.objects.filter(student__in=self.students[:2]))

        count = publish_results(self.admin, self.klass, self.year, self.term)
        self.assertEqual(count, 2)

        statuses = self.statuses()
        self.assertEqual(statuses[self.students[0].pk], Result.Status.PUBLISHED)
        self.assertEqual(statuses[self.students[1].pk], Result.Status.PUBLISHED)
        self.assertEqual(statuses[self.students[2].pk], Result.Status.SUBMITTED)

        published = Result.objects.get(student=self.students[0])
        self.assertEqual(published.published_by, self.admin)
        self.assertIsNotNone(published.published_at)

    def test_nothing_approved(self):
        with self.assertRaises(StateConflictError):
            publish_results(self.admin, self.klass, self.year, self.term)
        self.assertEqual(set(self.statuses().values()), {Result.Status.SUBMITTED})

    def test_teacher_cannot_publish(self):
        approve_group(self.admin, self.key)
        with self.assertRaises(AuthorizationError):
            publish_results(self.teacher, self.klass, self.year, self.term)
        self.assertEqual(set(self.statuses().values()), {Result.Status.APPROVED})

    def test_published_results_cannot_be_approved(self):
        approve_group(self.admin, self.key)
        publish_results(self.admin, self.klass, self.year, self.term)
        with self.assertRaises(StateConflictError):
            approve_results(self.admin, Result.objects.in_group(self.key))
        self.assertEqual(set(self.statuses().values()), {Result.Status.PUBLISHED})


class CompilationSchedulerTest(ResultFixtureMixin, TestCase):
    """Tests for the compilation scheduler, driven by a virtual clock."""

    def setUp(self):
        super().setUp()
        self.record_sample_group()
        # Submit without the event-driven hook so scan() creates the job
        with signals_disabled():
            submit_group(self.teacher, self.key)

        self.now = timezone.now()
        self.dispatched = []
        self.scheduler = CompilationScheduler(
            clock=lambda: self.now,
            dispatch=lambda job, countdown: self.dispatched.append((job.pk, countdown)),
        )

    def advance(self, minutes):
        self.now += timedelta(minutes=minutes)

    def run_group(self):
        """Create the job and run it once the delay has passed."""
        created = self.scheduler.scan()
        self.advance(6)
        self.scheduler.run_due_jobs()
        return CompilationJob.objects.get(pk=created[0].pk)

    def test_scan_creates_pending_job(self):
        created = self.scheduler.scan()
        self.assertEqual(len(created), 1)

        job = created[0]
        self.assertEqual(job.status, CompilationJob.Status.PENDING)
        self.assertEqual(job.total_students, 3)
        self.assertEqual(job.processed_students, 0)
        self.assertEqual(job.scheduled_for, self.now + timedelta(minutes=5))
        self.assertEqual(self.dispatched, [(job.pk, 300)])

    def test_at_most_one_active_job(self):
        self.scheduler.scan()
        self.scheduler.scan()
        self.advance(1)
        self.scheduler.scan()
        self.assertEqual(CompilationJob.objects.for_group(self.key).count(), 1)

    def test_active_job_is_unique_in_database(self):
        self.scheduler.scan()
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                CompilationJob.objects.create(
                    class_assigned=self.klass,
                    subject=self.subject,
                    academic_year=self.year,
                    term=self.term,
                    scheduled_for=self.now,
                )

    def test_waits_for_delay(self):
        job = self.scheduler.scan()[0]
        self.advance(4)
        self.scheduler.scan()
        job.refresh_from_db()
        self.assertEqual(job.status, CompilationJob.Status.PENDING)
        self.assertIsNone(self.scheduler.process(job.pk))

    def test_processes_and_ranks(self):
        job = self.run_group()

        self.assertEqual(job.status, CompilationJob.Status.COMPLETED)
        self.assertEqual(job.processed_students, 3)
        self.assertEqual(job.progress, 100)
        self.assertEqual(job.errors, [])
        self.assertEqual(job.attempts, 1)
        self.assertEqual(job.completed_at, self.now)

        positions = self.positions()
        self.assertEqual(positions[self.students[0].pk], 1)
        self.assertEqual(positions[self.students[2].pk], 2)
        self.assertEqual(positions[self.students[1].pk], 3)
        # Ranked but not approved
        self.assertEqual(set(self.statuses().values()), {Result.Status.SUBMITTED})

    def test_positions_left_alone_when_disabled(self):
        self.set_policy(auto_calculate_positions=False)
        self.run_group()
        self.assertEqual(set(self.positions().values()), {None})

    def test_compiled_group_not_requeued(self):
        self.run_group()
        self.advance(1)
        self.assertEqual(self.scheduler.scan(), [])
        self.assertEqual(CompilationJob.objects.count(), 1)

    def test_auto_approve_then_publish(self):
        self.set_policy(auto_approve=True)
        job = self.run_group()

        self.assertEqual(job.status, CompilationJob.Status.COMPLETED)
        self.assertEqual(set(self.statuses().values()), {Result.Status.APPROVED})
        self.assertIsNone(Result.objects.filter(student=self.students[0]).get().approved_by)

        count = publish_results(self.admin, self.klass, self.year, self.term)
        self.assertEqual(count, 3)
        self.assertEqual(set(self.statuses().values()), {Result.Status.PUBLISHED})

    def test_member_errors_do_not_abort_job(self):
        failing_student = self.students[1]

        class FlakyScheduler(CompilationScheduler):
            def process_member(self, result, now):
                if result.student_id == failing_student.pk:
                    raise PerMemberProcessingError(result, 'score sheet unreadable')
                super().process_member(result, now)

        self.set_policy(auto_approve=True)
        scheduler = FlakyScheduler(clock=lambda: self.now, dispatch=lambda job, countdown: None)
        job = scheduler.scan()[0]
        self.advance(6)
        scheduler.run_due_jobs()
        job.refresh_from_db()

        self.assertEqual(job.status, CompilationJob.Status.COMPLETED)
        self.assertEqual(job.processed_students, 3)
        self.assertEqual(job.progress, 100)
        self.assertEqual(
            job.errors,
            [f"Error processing student {failing_student.pk}: score sheet unreadable"],
        )

        statuses = self.statuses()
        self.assertEqual(statuses[failing_student.pk], Result.Status.SUBMITTED)
        self.assertEqual(statuses[self.students[0].pk], Result.Status.APPROVED)
        self.assertEqual(statuses[self.students[2].pk], Result.Status.APPROVED)

    def test_member_errors_do_not_requeue_group(self):
        failing_student = self.students[1]

        class FlakyScheduler(CompilationScheduler):
            def process_member(self, result, now):
                if result.student_id == failing_student.pk:
                    raise PerMemberProcessingError(result, 'score sheet unreadable')
                super().process_member(result, now)

        completed = []

        def on_completed(sender, job, **kwargs):
            completed.append(job.pk)

        scheduler = FlakyScheduler(clock=lambda: self.now, dispatch=lambda job, countdown: None)
        compilation_completed.connect(on_completed)
        try:
            for _ in range(4):
                scheduler.scan()
                self.advance(6)
                scheduler.run_due_jobs()
        finally:
            compilation_completed.disconnect(on_completed)

        jobs = CompilationJob.objects.for_group(self.key)
        self.assertEqual(jobs.count(), 1)
        self.assertEqual(jobs.get().status, CompilationJob.Status.COMPLETED)
        self.assertEqual(completed, [jobs.get().pk])

    def test_new_submission_after_member_errors_is_queued(self):
        failing_student = self.students[1]

        class FlakyScheduler(CompilationScheduler):
            def process_member(self, result, now):
                if result.student_id == failing_student.pk:
                    raise PerMemberProcessingError(result, 'score sheet unreadable')
                super().process_member(result, now)

        scheduler = FlakyScheduler(clock=lambda: self.now, dispatch=lambda job, countdown: None)
        job = scheduler.scan()[0]
        self.advance(6)
        scheduler.run_due_jobs()
        job.refresh_from_db()

        newcomer = Student.objects.create(
            first_name='Late', last_name='Joiner', admission_number='ADM004', current_class=self.klass
        )
        self.record(newcomer, 10, 10, 30)
        with signals_disabled():
            submit_group(self.teacher, self.key)
        Result.objects.filter(student=newcomer).update(submitted_at=job.completed_at + timedelta(minutes=1))

        self.advance(2)
        created = scheduler.scan()
        self.assertEqual(len(created), 1)
        self.assertNotEqual(created[0].pk, job.pk)

    def test_group_failure_leaves_members_unchanged(self):
        self.set_policy(auto_approve=True)
        job = self.scheduler.scan()[0]
        self.advance(6)

        with mock.patch('gradebook.services.rank_group', side_effect=RuntimeError('ledger unreadable')):
            self.scheduler.run_due_jobs()

        job.refresh_from_db()
        self.assertEqual(job.status, CompilationJob.Status.FAILED)
        self.assertEqual(job.completed_at, self.now)
        self.assertIn('Compilation failed: ledger unreadable', job.errors)
        self.assertEqual(set(self.statuses().values()), {Result.Status.SUBMITTED})
        self.assertEqual(set(self.positions().values()), {None})

    def test_failed_job_waits_for_retry(self):
        job = self.scheduler.scan()[0]
        self.advance(6)
        with mock.patch('gradebook.services.rank_group', side_effect=RuntimeError('ledger unreadable')):
            self.scheduler.run_due_jobs()

        self.advance(1)
        self.assertEqual(self.scheduler.scan(), [])

        job.refresh_from_db()
        retried = self.scheduler.retry(self.admin, job)
        self.assertEqual(retried.status, CompilationJob.Status.PENDING)
        self.assertEqual(retried.errors, [])
        self.assertEqual(retried.progress, 0)

        self.advance(6)
        self.scheduler.run_due_jobs()
        retried.refresh_from_db()
        self.assertEqual(retried.status, CompilationJob.Status.COMPLETED)
        self.assertEqual(retried.attempts, 2)

    def test_new_submission_after_failure_is_queued(self):
        job = self.scheduler.scan()[0]
        self.advance(6)
        with mock.patch('gradebook.services.rank_group', side_effect=RuntimeError('ledger unreadable')):
            self.scheduler.run_due_jobs()
        job.refresh_from_db()

        newcomer = Student.objects.create(
            first_name='Late', last_name='Joiner', admission_number='ADM004', current_class=self.klass
        )
        self.record(newcomer, 10, 10, 30)
        with signals_disabled():
            submit_group(self.teacher, self.key)
        # Submitted after the job failed
        Result.objects.filter(student=newcomer).update(submitted_at=job.completed_at + timedelta(minutes=1))

        self.advance(2)
        created = self.scheduler.scan()
        self.assertEqual(len(created), 1)
        self.assertEqual(created[0].total_students, 4)

    def test_only_admins_retry(self):
        job = self.scheduler.scan()[0]
        CompilationJob.objects.filter(pk=job.pk).update(status=CompilationJob.Status.FAILED)
        job.refresh_from_db()
        with self.assertRaises(AuthorizationError):
            self.scheduler.retry(self.teacher, job)

    def test_only_failed_jobs_retry(self):
        job = self.scheduler.scan()[0]
        with self.assertRaises(StateConflictError):
            self.scheduler.retry(self.admin, job)

    def test_retry_conflicts_with_active_job(self):
        job = self.scheduler.scan()[0]
        CompilationJob.objects.filter(pk=job.pk).update(status=CompilationJob.Status.FAILED)
        other = CompilationJob.objects.create(
            class_assigned=self.klass,
            subject=self.subject,
            academic_year=self.year,
            term=self.term,
            scheduled_for=self.now,
        )
        job.refresh_from_db()

        with self.assertRaises(StateConflictError) as ctx:
            self.scheduler.retry(self.admin, job)
        self.assertIn(other.pk, ctx.exception.conflicts)
        job.refresh_from_db()
        self.assertEqual(job.status, CompilationJob.Status.FAILED)

    def test_resubmitted_group_gets_new_job(self):
        self.run_group()
        reject_group(self.admin, self.key)
        for student, scores in zip(self.students, [(18, 17, 50), (12, 12, 36), (15, 15, 42)]):
            self.record(student, *scores)
        with signals_disabled():
            submit_group(self.teacher, self.key)
        Result.objects.in_group(self.key).update(submitted_at=self.now + timedelta(minutes=1))

        self.advance(2)
        created = self.scheduler.scan()
        self.assertEqual(len(created), 1)
        self.assertEqual(CompilationJob.objects.for_group(self.key).count(), 2)

    def test_stale_pending_job_reclaimed(self):
        job = self.scheduler.scan()[0]
        # Worker never picked it up
        self.advance(30)
        self.dispatched.clear()

        reclaimed = self.scheduler.reclaim_stale_jobs()
        self.assertEqual([j.pk for j in reclaimed], [job.pk])
        self.assertEqual(self.dispatched, [(job.pk, 0)])

        job.refresh_from_db()
        self.assertEqual(job.scheduled_for, self.now)

    def test_scan_recovers_stale_job(self):
        job = self.scheduler.scan()[0]
        self.advance(30)
        self.scheduler.scan()
        job.refresh_from_db()
        self.assertEqual(job.status, CompilationJob.Status.COMPLETED)

    def test_abandoned_processing_job_fails(self):
        job = self.scheduler.scan()[0]
        CompilationJob.objects.filter(pk=job.pk).update(
            status=CompilationJob.Status.PROCESSING,
            started_at=self.now,
        )
        self.advance(30)
        self.scheduler.reclaim_stale_jobs()
        job.refresh_from_db()
        self.assertEqual(job.status, CompilationJob.Status.FAILED)
        self.assertTrue(job.errors)

    def test_disabled_compilation(self):
        self.set_policy(enabled=False)
        self.assertEqual(self.scheduler.scan(), [])
        self.assertFalse(CompilationJob.objects.exists())

    def test_completion_signals(self):
        self.set_policy(auto_generate_pdfs=True)
        completed = []
        reports = []

        def on_completed(sender, job, **kwargs):
            completed.append(job.pk)

        def on_reports(sender, job, group, **kwargs):
            reports.append(group)

        compilation_completed.connect(on_completed)
        result_reports_requested.connect(on_reports)
        try:
            job = self.run_group()
        finally:
            compilation_completed.disconnect(on_completed)
            result_reports_requested.disconnect(on_reports)

        self.assertEqual(completed, [job.pk])
        self.assertEqual(reports, [self.key])

    def test_no_notification_when_disabled(self):
        self.set_policy(notify_on_completion=False)
        completed = []

        def on_completed(sender, job, **kwargs):
            completed.append(job.pk)

        compilation_completed.connect(on_completed)
        try:
            self.run_group()
        finally:
            compilation_completed.disconnect(on_completed)
        self.assertEqual(completed, [])

    def test_summary_and_statistics(self):
        job = self.run_group()
        summary = job.summary()
        self.assertEqual(summary['status'], 'completed')
        self.assertEqual(summary['progress'], 100)
        self.assertEqual(summary['total_students'], 3)

        stats = CompilationJob.objects.statistics()
        self.assertEqual(stats['total'], 1)
        self.assertEqual(stats['completed'], 1)
        self.assertEqual(stats['failed'], 0)
        self.assertEqual(stats['success_rate'], 100)


class CompilationJobModelTest(ResultFixtureMixin, TestCase):

    def test_progress_is_monotonic(self):
        job = CompilationJob(
            class_assigned=self.klass,
            subject=self.subject,
            academic_year=self.year,
            term=self.term,
            total_students=3,
            scheduled_for=timezone.now(),
        )
        seen = []
        for processed in (1, 2, 3):
            job.record_progress(processed)
            seen.append(job.progress)
        self.assertEqual(seen, [33, 67, 100])

        job.record_progress(1)
        self.assertEqual(job.progress, 100)

    def test_empty_group_is_complete(self):
        job = CompilationJob(total_students=0)
        job.record_progress(0)
        self.assertEqual(job.progress, 100)


class CompilationTaskTest(ResultFixtureMixin, TestCase):
    """Tests for the Celery task wrappers and management command."""

    def setUp(self):
        super().setUp()
        self.set_policy(compilation_delay_minutes=0)
        self.record_sample_group()

    def test_process_task(self):
        submit_group(self.teacher, self.key)
        job = CompilationJob.objects.get()

        outcome = process_compilation_job.apply(args=[str(job.pk)]).get()
        self.assertTrue(outcome['success'])
        self.assertEqual(outcome['progress'], 100)

        job.refresh_from_db()
        self.assertEqual(job.status, CompilationJob.Status.COMPLETED)

    def test_process_task_missing_job(self):
        outcome = process_compilation_job.apply(
            args=['00000000-0000-0000-0000-000000000000']
        ).get()
        self.assertFalse(outcome['success'])

    def test_scan_task(self):
        with signals_disabled():
            submit_group(self.teacher, self.key)
        outcome = scan_for_submissions.apply().get()
        self.assertEqual(outcome['created'], 1)
        self.assertEqual(CompilationJob.objects.get().status, CompilationJob.Status.COMPLETED)

    def test_run_compilation_command(self):
        with signals_disabled():
            submit_group(self.teacher, self.key)
        out = StringIO()
        call_command('run_compilation', '--process-due', '--stats', stdout=out)
        self.assertIn('Created 1 compilation job(s)', out.getvalue())
        self.assertIn('1 completed', out.getvalue())


class ResultSettingsTest(TestCase):

    def test_load_is_singleton(self):
        first = ResultSettings.load()
        second = ResultSettings.load()
        self.assertEqual(first.pk, second.pk)
        self.assertEqual(ResultSettings.objects.count(), 1)

    def test_defaults(self):
        settings_obj = ResultSettings.load()
        self.assertTrue(settings_obj.enabled)
        self.assertFalse(settings_obj.auto_approve)
        self.assertTrue(settings_obj.auto_calculate_positions)
        self.assertEqual(settings_obj.compilation_delay_minutes, 5)
        self.assertEqual(settings_obj.access_threshold, Decimal('1.00'))
        self.assertEqual(settings_obj.compilation_delay, timedelta(minutes=5))

    def test_threshold_range(self):
        settings_obj = ResultSettings.load()
        settings_obj.access_threshold = Decimal('1.50')
        with self.assertRaises(DjangoValidationError):
            settings_obj.full_clean()


class AccessGateTest(ResultFixtureMixin, TestCase):
    """Tests for the fee-payment access gate."""

    def setUp(self):
        super().setUp()
        self.student = self.students[1]
        self.student.guardian = self.parent
        self.student.save()

    def pay(self, amount, approve=True):
        payment = Payment.objects.create(
            student=self.student,
            academic_year=self.year,
            term=self.term,
            amount=Decimal(amount),
        )
        if approve:
            payment.approve(self.admin)
        return payment

    def add_fees(self, amount='1000.00', **kwargs):
        defaults = {
            'class_assigned': self.klass,
            'academic_year': self.year,
            'term': self.term,
            'amount': Decimal(amount),
        }
        defaults.update(kwargs)
        return FeeStructure.objects.create(**defaults)

    def test_no_fee_structure_allows_access(self):
        self.assertTrue(can_view_results(self.student, self.year, self.term))
        progress = fee_progress(self.student, self.year, self.term)
        self.assertIsNone(progress.ratio)

    def test_partial_payment_below_threshold(self):
        self.add_fees()
        self.pay('400.00')
        progress = fee_progress(self.student, self.year, self.term)
        self.assertEqual(progress.paid, Decimal('400.00'))
        self.assertEqual(progress.required, Decimal('1000.00'))
        self.assertEqual(progress.percentage, 40)

        self.assertFalse(can_view_results(self.student, self.year, self.term))
        self.assertTrue(can_view_results(self.student, self.year, self.term, threshold=Decimal('0.4')))

    def test_threshold_from_settings(self):
        self.add_fees()
        self.pay('500.00')
        self.assertFalse(can_view_results(self.student, self.year, self.term))
        self.set_policy(access_threshold=Decimal('0.50'))
        self.assertTrue(can_view_results(self.student, self.year, self.term))

    def test_unapproved_payments_do_not_count(self):
        self.add_fees()
        self.pay('1000.00', approve=False)
        rejected = self.pay('1000.00', approve=False)
        rejected.reject(self.admin)
        self.assertFalse(can_view_results(self.student, self.year, self.term))

    def test_monotonic_in_paid(self):
        self.add_fees()
        seen = []
        for amount in ('100.00', '300.00', '350.00', '250.00', '200.00'):
            self.pay(amount)
            seen.append(can_view_results(self.student, self.year, self.term, threshold=Decimal('0.75')))
        self.assertEqual(seen, [False, False, True, True, True])

    def test_full_year_fee_counts(self):
        self.add_fees('600.00')
        self.add_fees('400.00', term=None, category='EXAM')
        self.assertEqual(fee_progress(self.student, self.year, self.term).required, Decimal('1000.00'))

    def test_published_and_paid_are_both_required(self):
        self.add_fees()
        self.pay('1000.00')
        result = self.record(self.student, 12, 12, 36)
        self.assertFalse(is_result_visible(result))

        submit_group(self.teacher, self.key)
        approve_group(self.admin, self.key)
        publish_results(self.admin, self.klass, self.year, self.term)
        result.refresh_from_db()
        self.assertTrue(is_result_visible(result))

    def test_fees_follow_the_class_of_the_result(self):
        self.add_fees()
        self.pay('1000.00')
        self.record_sample_group()
        submit_group(self.teacher, self.key)
        approve_group(self.admin, self.key)
        publish_results(self.admin, self.klass, self.year, self.term)
        result = Result.objects.get(student=self.student)

        promoted = Class.objects.create(level_type='jhs', level_number=3, section='A')
        self.add_fees('3000.00', class_assigned=promoted)
        self.student.current_class = promoted
        self.student.save()

        self.assertEqual(fee_progress(self.student, self.year, self.term).required, Decimal('3000.00'))
        self.assertEqual(
            fee_progress(self.student, self.year, self.term, self.klass).required, Decimal('1000.00')
        )
        self.assertTrue(is_result_visible(result))
        self.assertEqual(visible_results(self.parent, self.year, self.term), [result])

    def test_example_parent_cannot_view_unpaid_result(self):
        """Published 60% result stays hidden while only 40% of fees are paid."""
        self.add_fees()
        self.pay('400.00')
        self.set_policy(auto_approve=True, compilation_delay_minutes=0)

        self.record_sample_group()
        with signals_disabled():
            submit_group(self.teacher, self.key)
        now = timezone.now()
        scheduler = CompilationScheduler(
            clock=lambda: now + timedelta(minutes=10),
            dispatch=lambda job, countdown: None,
        )
        scheduler.scan()
        publish_results(self.admin, self.klass, self.year, self.term)

        result = Result.objects.get(student=self.student)
        self.assertEqual(result.status, Result.Status.PUBLISHED)
        self.assertEqual(result.percentage, 60)
        self.assertEqual(result.position, 3)
        self.assertFalse(is_result_visible(result))
        self.assertEqual(visible_results(self.parent, self.year, self.term), [])

        self.pay('600.00')
        self.assertEqual(visible_results(self.parent, self.year, self.term), [result])


class VisibleResultsTest(ResultFixtureMixin, TestCase):
    """Tests for role-filtered result reads."""

    def setUp(self):
        super().setUp()
        self.students[0].guardian = self.parent
        self.students[0].save()
        self.student_user = User.objects.create_student('student3@school.test', 'pass1234')
        self.students[2].user = self.student_user
        self.students[2].save()

        self.record_sample_group()
        submit_group(self.teacher, self.key)
        approve_results(self.admin, Result.objects.filter(student__in=[self.students[0], self.students[2]]))
        publish_results(self.admin, self.klass, self.year, self.term)

    def test_admin_sees_everything(self):
        self.assertEqual(len(visible_results(self.admin, self.year, self.term)), 3)

    def test_supervisor_sees_assigned_groups(self):
        self.assertEqual(len(visible_results(self.teacher, self.year, self.term)), 3)
        self.assertEqual(visible_results(self.other_teacher, self.year, self.term), [])

    def test_parent_sees_published_ward_results(self):
        results = visible_results(self.parent, self.year, self.term)
        self.assertEqual([r.student for r in results], [self.students[0]])

    def test_student_sees_own_published_result(self):
        results = visible_results(self.student_user, self.year, self.term)
        self.assertEqual([r.student for r in results], [self.students[2]])

    def test_unpublished_results_hidden_from_parent(self):
        self.students[1].guardian = self.parent
        self.students[1].save()
        students = {r.student for r in visible_results(self.parent, self.year, self.term)}
        self.assertNotIn(self.students[1], students)

    def test_inactive_user_denied(self):
        self.parent.is_active = False
        self.parent.save()
        with self.assertRaises(AuthorizationError):
            visible_results(self.parent, self.year, self.term)


class ResultAdminTest(ResultFixtureMixin, TestCase):
    """The admin change form cannot move results outside the workflow."""

    def setUp(self):
        super().setUp()
        self.factory = RequestFactory()
        self.model_admin = ResultAdmin(Result, AdminSite())
        self.result = self.record(self.students[0], 18, 17, 50)

    def change_form(self, user, result, data):
        request = self.factory.post('/')
        request.user = user
        form_class = self.model_admin.get_form(request, result, change=True)
        return request, form_class(data=data, instance=result)

    def test_status_cannot_be_changed(self):
        data = {
            'test1_score': '19', 'test2_score': '17', 'exam_score': '50',
            'status': Result.Status.PUBLISHED, 'supervisor': self.other_teacher.pk,
        }
        request, form = self.change_form(self.teacher, self.result, data)
        self.assertNotIn('status', form.fields)
        self.assertNotIn('supervisor', form.fields)
        self.assertTrue(form.is_valid(), form.errors)

        self.model_admin.save_model(request, form.save(commit=False), form, change=True)
        self.result.refresh_from_db()
        self.assertEqual(self.result.status, Result.Status.DRAFT)
        self.assertEqual(self.result.supervisor, self.teacher)
        self.assertEqual(self.result.test1_score, Decimal('19'))
        self.assertEqual(self.result.percentage, 86)

    def test_score_caps_checked(self):
        data = {'test1_score': '25', 'test2_score': '17', 'exam_score': '50'}
        _, form = self.change_form(self.teacher, self.result, data)
        self.assertFalse(form.is_valid())
        self.assertIn('test1_score', form.errors)

    def test_locked_term_refuses_scores(self):
        self.term.lock_grades(self.admin)
        self.result.refresh_from_db()
        data = {'test1_score': '19', 'test2_score': '17', 'exam_score': '50'}
        _, form = self.change_form(self.teacher, self.result, data)
        self.assertFalse(form.is_valid())

    def test_scores_read_only_after_submission(self):
        with signals_disabled():
            submit_group(self.teacher, self.key)
        self.result.refresh_from_db()
        request = self.factory.get('/')
        request.user = self.teacher
        readonly = self.model_admin.get_readonly_fields(request, self.result)
        for name in ('test1_score', 'test2_score', 'exam_score', 'status'):
            self.assertIn(name, readonly)

    def test_scores_read_only_for_admin(self):
        request = self.factory.get('/')
        request.user = self.admin
        self.assertIn('exam_score', self.model_admin.get_readonly_fields(request, self.result))

    def test_results_not_added_through_admin(self):
        request = self.factory.get('/')
        request.user = self.admin
        self.assertFalse(self.model_admin.has_add_permission(request))


class ResultSettingsAdminTest(TestCase):

    def setUp(self):
        self.factory = RequestFactory()
        self.model_admin = ResultSettingsAdmin(ResultSettings, AdminSite())

    def request_as(self, user):
        request = self.factory.get('/')
        request.user = user
        return request

    def test_staff_teacher_refused(self):
        teacher = User.objects.create_teacher('mensah@school.test', 'pass1234', is_staff=True)
        request = self.request_as(teacher)
        self.assertFalse(self.model_admin.has_view_permission(request))
        self.assertFalse(self.model_admin.has_change_permission(request))
        self.assertFalse(self.model_admin.has_add_permission(request))

    def test_school_admin_allowed(self):
        admin_user = User.objects.create_school_admin('admin@school.test', 'pass1234')
        request = self.request_as(admin_user)
        self.assertTrue(self.model_admin.has_view_permission(request))
        self.assertTrue(self.model_admin.has_change_permission(request))
        self.assertTrue(self.model_admin.has_add_permission(request))
        ResultSettings.load()
        self.assertFalse(self.model_admin.has_add_permission(request))
