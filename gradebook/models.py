import uuid
from collections import namedtuple
from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator, MaxValueValidator
from django.db import models
from django.db.models import Count, Q
from django.utils import timezone

from . import config
from .utils import grade as compute_grade


ResultGroup = namedtuple('ResultGroup', ['class_id', 'subject_id', 'academic_year_id', 'term_id'])
ResultGroup.__doc__ = "Key of the unit of ranking and compilation: class, subject, session, term."


def group_filter(key, prefix=''):
    """Queryset filter kwargs selecting one ResultGroup."""
    return {
        f'{prefix}class_assigned_id': key.class_id,
        f'{prefix}subject_id': key.subject_id,
        f'{prefix}academic_year_id': key.academic_year_id,
        f'{prefix}term_id': key.term_id,
    }


class ResultQuerySet(models.QuerySet):

    def in_group(self, key):
        return self.filter(**group_filter(key))

    def submitted(self):
        return self.filter(status=Result.Status.SUBMITTED)

    def ranked(self):
        """Members that take part in ranking."""
        return self.filter(status__in=Result.RANKED_STATUSES)

    def published(self):
        return self.filter(status=Result.Status.PUBLISHED)

    def uncompiled(self):
        """Submitted records the scheduler has not processed since submission."""
        return self.submitted().filter(
            Q(compiled_at__isnull=True) | Q(compiled_at__lt=models.F('submitted_at'))
        )


class Result(models.Model):
    """
    One student's scores for a subject in a session/term.

    Percentage and grade are recomputed from the component scores on every
    save, so they always agree with the grading function.
    """
    class Status(models.TextChoices):
        DRAFT = 'draft', 'Draft'
        SUBMITTED = 'submitted', 'Submitted'
        APPROVED = 'approved', 'Approved'
        REJECTED = 'rejected', 'Rejected'
        PUBLISHED = 'published', 'Published'

    RANKED_STATUSES = (Status.SUBMITTED, Status.APPROVED, Status.PUBLISHED)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Identity
    student = models.ForeignKey(
        'students.Student',
        on_delete=models.CASCADE,
        related_name='results'
    )
    subject = models.ForeignKey(
        'academics.Subject',
        on_delete=models.CASCADE,
        related_name='results'
    )
    class_assigned = models.ForeignKey(
        'academics.Class',
        on_delete=models.CASCADE,
        related_name='results'
    )
    academic_year = models.ForeignKey(
        'core.AcademicYear',
        on_delete=models.CASCADE,
        related_name='results'
    )
    term = models.ForeignKey(
        'core.Term',
        on_delete=models.CASCADE,
        related_name='results'
    )

    # Inputs
    test1_score = models.DecimalField(
        max_digits=5, decimal_places=2, null=True, blank=True,
        validators=[MinValueValidator(0), MaxValueValidator(100)]
    )
    test2_score = models.DecimalField(
        max_digits=5, decimal_places=2, null=True, blank=True,
        validators=[MinValueValidator(0), MaxValueValidator(100)]
    )
    exam_score = models.DecimalField(
        max_digits=5, decimal_places=2, null=True, blank=True,
        validators=[MinValueValidator(0), MaxValueValidator(100)]
    )

    # Derived
    total_score = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal('0.00'))
    percentage = models.PositiveSmallIntegerField(default=0)
    grade = models.CharField(max_length=2, blank=True)
    grade_remark = models.CharField(max_length=50, blank=True)
    position = models.PositiveIntegerField(null=True, blank=True)

    # Workflow
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.DRAFT)
    supervisor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        related_name='authored_results'
    )
    submitted_at = models.DateTimeField(null=True, blank=True)
    approved_at = models.DateTimeField(null=True, blank=True)
    approved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='approved_results'
    )
    rejected_at = models.DateTimeField(null=True, blank=True)
    rejected_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='rejected_results'
    )
    rejection_reason = models.TextField(blank=True)
    published_at = models.DateTimeField(null=True, blank=True)
    published_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='published_results'
    )
    compiled_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Last time the compilation scheduler processed this result"
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = ResultQuerySet.as_manager()

    class Meta:
        ordering = ['class_assigned', 'subject', 'position', 'student']
        constraints = [
            models.UniqueConstraint(
                fields=['student', 'subject', 'class_assigned', 'academic_year', 'term'],
                name='unique_result_per_student_subject_term',
            ),
        ]
        indexes = [
            models.Index(fields=['class_assigned', 'subject', 'academic_year', 'term', 'status'], name='result_group_status_idx'),
        ]

    def __str__(self):
        return f"{self.student} - {self.subject} ({self.percentage}% {self.grade})"

    @property
    def group_key(self):
        return ResultGroup(self.class_assigned_id, self.subject_id, self.academic_year_id, self.term_id)

    def apply_grading(self, convention=None):
        """Recompute total, percentage and grade from the component scores."""
        info = compute_grade(self.test1_score, self.test2_score, self.exam_score, convention)
        self.total_score = info['total']
        self.percentage = info['percentage']
        self.grade = info['grade']
        self.grade_remark = info['grade_remark']
        return info

    def grading_is_current(self, convention=None):
        info = compute_grade(self.test1_score, self.test2_score, self.exam_score, convention)
        return (
            self.total_score == info['total']
            and self.percentage == info['percentage']
            and self.grade == info['grade']
        )

    def save(self, *args, **kwargs):
        self.apply_grading()
        update_fields = kwargs.get('update_fields')
        if update_fields is not None:
            kwargs['update_fields'] = set(update_fields) | {
                'total_score', 'percentage', 'grade', 'grade_remark', 'updated_at'
            }
        super().save(*args, **kwargs)


class CompilationJobQuerySet(models.QuerySet):

    def for_group(self, key):
        return self.filter(**group_filter(key))

    def active(self):
        return self.filter(status__in=CompilationJob.ACTIVE_STATUSES)

    def statistics(self):
        """Counters for the job monitor."""
        stats = self.aggregate(
            total=Count('id'),
            completed=Count('id', filter=Q(status=CompilationJob.Status.COMPLETED)),
            failed=Count('id', filter=Q(status=CompilationJob.Status.FAILED)),
            processing=Count('id', filter=Q(status=CompilationJob.Status.PROCESSING)),
            pending=Count('id', filter=Q(status=CompilationJob.Status.PENDING)),
        )
        total = stats['total']
        stats['success_rate'] = round(stats['completed'] * 100 / total) if total else 0
        return stats


class CompilationJob(models.Model):
    """
    Unit of asynchronous work that grades and ranks one submitted group.

    Lifecycle: pending -> processing -> completed | failed; a failed job can
    be retried, which puts it back to pending. At most one pending or
    processing job exists per group.
    """
    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        PROCESSING = 'processing', 'Processing'
        COMPLETED = 'completed', 'Completed'
        FAILED = 'failed', 'Failed'

    ACTIVE_STATUSES = (Status.PENDING, Status.PROCESSING)
    TERMINAL_STATUSES = (Status.COMPLETED, Status.FAILED)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    class_assigned = models.ForeignKey(
        'academics.Class',
        on_delete=models.CASCADE,
        related_name='compilation_jobs'
    )
    subject = models.ForeignKey(
        'academics.Subject',
        on_delete=models.CASCADE,
        related_name='compilation_jobs'
    )
    academic_year = models.ForeignKey(
        'core.AcademicYear',
        on_delete=models.CASCADE,
        related_name='compilation_jobs'
    )
    term = models.ForeignKey(
        'core.Term',
        on_delete=models.CASCADE,
        related_name='compilation_jobs'
    )
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)

    total_students = models.PositiveIntegerField(default=0)
    processed_students = models.PositiveIntegerField(default=0)
    progress = models.PositiveSmallIntegerField(
        default=0,
        validators=[MaxValueValidator(100)]
    )
    errors = models.JSONField(default=list, blank=True)
    attempts = models.PositiveSmallIntegerField(default=0)

    scheduled_for = models.DateTimeField(help_text="Processing starts once this time has passed")
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the job reached completed or failed"
    )
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    objects = CompilationJobQuerySet.as_manager()

    class Meta:
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['class_assigned', 'subject', 'academic_year', 'term'],
                condition=Q(status__in=['pending', 'processing']),
                name='unique_active_compilation_job',
            ),
        ]

    def __str__(self):
        return f"{self.class_assigned} - {self.subject} ({self.get_status_display()}, {self.progress}%)"

    @property
    def group_key(self):
        return ResultGroup(self.class_assigned_id, self.subject_id, self.academic_year_id, self.term_id)

    @property
    def is_active(self):
        return self.status in self.ACTIVE_STATUSES

    @property
    def finished_with_errors(self):
        """Failed, or completed with at least one per-member error."""
        if self.status == self.Status.FAILED:
            return True
        return self.status == self.Status.COMPLETED and bool(self.errors)

    def record_progress(self, processed):
        """Update processed count and progress; progress never decreases."""
        self.processed_students = processed
        if self.total_students:
            progress = round(100 * processed / self.total_students)
        else:
            progress = 100
        self.progress = max(self.progress, min(progress, 100))

    def summary(self):
        """Plain dict for job monitors and task results."""
        return {
            'id': str(self.id),
            'class': str(self.class_assigned),
            'subject': str(self.subject),
            'status': self.status,
            'total_students': self.total_students,
            'processed_students': self.processed_students,
            'progress': self.progress,
            'errors': list(self.errors),
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
        }


class ResultSettings(models.Model):
    """
    Runtime switches for result compilation and access (singleton).
    """
    enabled = models.BooleanField(
        default=config.DEFAULT_COMPILATION_ENABLED,
        help_text="Automatically compile submitted results"
    )
    auto_approve = models.BooleanField(
        default=config.DEFAULT_AUTO_APPROVE,
        help_text="Approve results as soon as their compilation job completes"
    )
    auto_calculate_positions = models.BooleanField(
        default=config.DEFAULT_AUTO_CALCULATE_POSITIONS,
        help_text="Rank each group when it is compiled"
    )
    auto_generate_pdfs = models.BooleanField(
        default=config.DEFAULT_AUTO_GENERATE_PDFS,
        help_text="Request report cards after compilation"
    )
    notify_on_completion = models.BooleanField(
        default=config.DEFAULT_NOTIFY_ON_COMPLETION,
        help_text="Notify admins when a compilation job completes"
    )
    compilation_delay_minutes = models.PositiveIntegerField(
        default=config.DEFAULT_COMPILATION_DELAY_MINUTES,
        help_text="Minutes to wait after submission so late entries join the batch"
    )
    access_threshold = models.DecimalField(
        max_digits=3,
        decimal_places=2,
        default=config.DEFAULT_ACCESS_THRESHOLD,
        validators=[MinValueValidator(0), MaxValueValidator(1)],
        help_text="Share of required fees (0-1) a student must have paid for parents to view results"
    )
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Result Settings"
        verbose_name_plural = "Result Settings"

    def __str__(self):
        return "Result Compilation & Access Settings"

    def save(self, *args, **kwargs):
        self.pk = 1
        super().save(*args, **kwargs)

    @classmethod
    def load(cls):
        settings_obj, created = cls.objects.get_or_create(pk=1)
        return settings_obj

    @property
    def compilation_delay(self):
        return timedelta(minutes=self.compilation_delay_minutes)
