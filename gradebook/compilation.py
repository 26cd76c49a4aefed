"""
Compilation scheduler.

Turns submitted result groups into graded, ranked and (optionally)
auto-approved results:

    1. scan() finds groups with submitted results that have not been compiled
       and creates one pending CompilationJob per group.
    2. Once the configured delay has passed the job moves to processing.
    3. Each member is regraded; a failure on one student is recorded on the
       job and the loop carries on.
    4. The group is ranked and, when auto-approve is on, approved.
    5. The job is marked completed, or failed on a group-level fault. Failed
       jobs wait for an admin to retry them.

The scheduler takes an injectable clock and dispatcher so it can be driven
without a Celery worker or real waiting.
"""
import logging
from datetime import timedelta

from django.db import IntegrityError, transaction
from django.db.models import Max
from django.utils import timezone

from . import config
from .exceptions import JobFailure, PerMemberProcessingError, StateConflictError
from .models import CompilationJob, Result, ResultGroup, ResultSettings
from .permissions import COMPILATION_SCHEDULER, Action, require
from .signals import compilation_completed, result_reports_requested, signals_disabled

logger = logging.getLogger(__name__)


def dispatch_after_commit(job, countdown):
    """Queue the Celery task once the job row is committed."""
    from .tasks import process_compilation_job

    transaction.on_commit(
        lambda: process_compilation_job.apply_async(args=[str(job.pk)], countdown=countdown)
    )


class CompilationScheduler:
    """
    Creates, runs and retries compilation jobs.

    Args:
        clock: callable returning the current aware datetime
        dispatch: callable(job, countdown_seconds) that arranges for the job
            to be processed later; defaults to the Celery task
    """

    def __init__(self, clock=None, dispatch=None):
        self.clock = clock or timezone.now
        self.dispatch = dispatch or dispatch_after_commit

    # ------------------------------------------------------------------
    # Job creation
    # ------------------------------------------------------------------

    def scan(self):
        """
        Periodic pass over all submitted results.

        Returns:
            list: jobs created during this scan
        """
        settings = ResultSettings.load()
        if not settings.enabled:
            logger.debug("Result compilation is disabled; skipping scan")
            return []

        self.reclaim_stale_jobs()

        keys = {
            ResultGroup(*row)
            for row in Result.objects.submitted().values_list(
                'class_assigned_id', 'subject_id', 'academic_year_id', 'term_id'
            ).distinct()
        }

        created = []
        for key in sorted(keys):
            job = self.observe_group(key, settings)
            if job is not None:
                created.append(job)

        if created:
            logger.info(f"Scan created {len(created)} compilation job(s)")

        self.run_due_jobs()
        return created

    def needs_compilation(self, key):
        """
        True when a group has submitted results the scheduler has not seen.

        A group whose latest job failed, or completed with per-member errors,
        is left alone unless something was submitted after that job finished.
        Failed jobs can also be retried by an admin.
        """
        members = Result.objects.in_group(key)
        if not members.uncompiled().exists():
            return False

        latest = CompilationJob.objects.for_group(key).order_by('-created_at').first()
        if latest is not None and latest.finished_with_errors:
            last_submitted = members.submitted().aggregate(last=Max('submitted_at'))['last']
            finished_at = latest.completed_at or latest.updated_at
            return last_submitted is not None and last_submitted > finished_at
        return True

    def observe_group(self, key, settings=None):
        """
        Create a pending job for a group if it needs one.

        Returns the new job, or None when the group already has an active
        job or has nothing to compile.
        """
        settings = settings or ResultSettings.load()
        if not settings.enabled:
            return None

        with transaction.atomic():
            # Serialize job creation for this group on its result rows
            list(Result.objects.select_for_update().in_group(key).values_list('pk', flat=True))

            if CompilationJob.objects.for_group(key).active().exists():
                logger.debug(f"Group {tuple(key)} already has an active compilation job")
                return None
            if not self.needs_compilation(key):
                return None

            now = self.clock()
            try:
                with transaction.atomic():
                    job = CompilationJob.objects.create(
                        class_assigned_id=key.class_id,
                        subject_id=key.subject_id,
                        academic_year_id=key.academic_year_id,
                        term_id=key.term_id,
                        total_students=Result.objects.in_group(key).submitted().count(),
                        scheduled_for=now + settings.compilation_delay,
                        created_at=now,
                    )
            except IntegrityError:
                logger.debug(f"Compilation job for group {tuple(key)} was created concurrently")
                return None

        logger.info(
            f"Created compilation job {job.pk} for {job.total_students} result(s), "
            f"scheduled for {job.scheduled_for.isoformat()}"
        )
        self.dispatch(job, self._countdown(job))
        return job

    def _countdown(self, job):
        return max(0, int((job.scheduled_for - self.clock()).total_seconds()))

    # ------------------------------------------------------------------
    # Job execution
    # ------------------------------------------------------------------

    def run_due_jobs(self):
        """Process every pending job whose delay has passed."""
        due = CompilationJob.objects.filter(
            status=CompilationJob.Status.PENDING,
            scheduled_for__lte=self.clock(),
        ).order_by('scheduled_for').values_list('pk', flat=True)

        processed = []
        for job_id in list(due):
            job = self.process(job_id)
            if job is not None:
                processed.append(job)
        return processed

    def start(self, job_id):
        """Move a due pending job to processing. Returns None if it is not runnable."""
        with transaction.atomic():
            job = CompilationJob.objects.select_for_update().filter(pk=job_id).first()
            if job is None:
                logger.warning(f"Compilation job {job_id} no longer exists")
                return None
            if job.status != CompilationJob.Status.PENDING:
                logger.debug(f"Compilation job {job_id} is {job.status}; not starting")
                return None

            now = self.clock()
            if job.scheduled_for > now:
                logger.debug(f"Compilation job {job_id} is not due until {job.scheduled_for.isoformat()}")
                return None

            job.status = CompilationJob.Status.PROCESSING
            job.started_at = now
            job.completed_at = None
            job.attempts += 1
            job.errors = []
            job.processed_students = 0
            job.progress = 0
            job.total_students = Result.objects.in_group(job.group_key).submitted().count()
            job.save()

        logger.info(f"Started compilation job {job.pk} (attempt {job.attempts})")
        return job

    def load_members(self, job):
        """Submitted members of the job's group in stable order."""
        return list(Result.objects.in_group(job.group_key).submitted().order_by('student_id'))

    def process_member(self, result, now):
        """Regrade one result and stamp it as compiled."""
        try:
            if not result.grading_is_current():
                logger.debug(f"Regrading result {result.pk} for student {result.student_id}")
            result.compiled_at = now
            result.save(update_fields=['compiled_at'])
        except Exception as e:
            raise PerMemberProcessingError(result, e) from e

    def process(self, job_id):
        """
        Run a pending job to completion.

        Per-member errors are collected on the job. Any other error fails the
        job and rolls back ranking and approval for the group.

        Returns:
            CompilationJob or None if the job was not runnable
        """
        job = self.start(job_id)
        if job is None:
            return None

        settings = ResultSettings.load()
        try:
            with signals_disabled():
                succeeded = self._process_members(job)
                with transaction.atomic():
                    self._finish_group(job, succeeded, settings)
        except Exception as e:
            logger.exception(f"Compilation job {job.pk} failed: {e}")
            self._fail(job, e)
            return job

        logger.info(
            f"Completed compilation job {job.pk}: {job.processed_students}/{job.total_students} "
            f"processed, {len(job.errors)} error(s)"
        )
        if settings.notify_on_completion:
            compilation_completed.send(sender=CompilationJob, job=job)
        if settings.auto_generate_pdfs:
            result_reports_requested.send(
                sender=CompilationJob,
                job=job,
                group=job.group_key,
            )
        return job

    def _process_members(self, job):
        members = self.load_members(job)
        if job.total_students != len(members):
            job.total_students = len(members)

        succeeded = []
        for processed, result in enumerate(members, 1):
            try:
                with transaction.atomic():
                    self.process_member(result, self.clock())
            except PerMemberProcessingError as e:
                logger.warning(f"Compilation job {job.pk}: {e}")
                job.errors = job.errors + [str(e)]
            else:
                succeeded.append(result)

            job.record_progress(processed)
            job.save(update_fields=['total_students', 'processed_students', 'progress', 'errors', 'updated_at'])

        return succeeded

    def _finish_group(self, job, succeeded, settings):
        from .services import approve_results, rank_group

        key = job.group_key
        if settings.auto_calculate_positions:
            rank_group(key)

        if settings.auto_approve and succeeded:
            still_submitted = Result.objects.in_group(key).submitted().filter(
                pk__in=[r.pk for r in succeeded]
            )
            if still_submitted.exists():
                approve_results(COMPILATION_SCHEDULER, still_submitted)

        job.status = CompilationJob.Status.COMPLETED
        job.completed_at = self.clock()
        job.record_progress(job.processed_students)
        job.save()

    def _fail(self, job, error):
        job.status = CompilationJob.Status.FAILED
        job.completed_at = self.clock()
        job.errors = list(job.errors) + [f"Compilation failed: {error}"]
        job.save(update_fields=['status', 'completed_at', 'errors', 'updated_at'])

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    def retry(self, actor, job):
        """
        Put a failed job back to pending.

        Raises:
            AuthorizationError: actor is not a results admin
            StateConflictError: job is not failed, or the group already has
                another active job
        """
        require(actor, Action.RETRY_JOB, job.group_key)
        settings = ResultSettings.load()

        with transaction.atomic():
            job = CompilationJob.objects.select_for_update().get(pk=job.pk)
            if job.status != CompilationJob.Status.FAILED:
                raise StateConflictError(
                    "Only failed compilation jobs can be retried.",
                    conflicts={job.pk: job.status},
                )

            others = CompilationJob.objects.for_group(job.group_key).active().exclude(pk=job.pk)
            if others.exists():
                raise StateConflictError(
                    "Another compilation job is already active for this group.",
                    conflicts={other.pk: other.status for other in others},
                )

            now = self.clock()
            job.status = CompilationJob.Status.PENDING
            job.errors = []
            job.processed_students = 0
            job.progress = 0
            job.started_at = None
            job.completed_at = None
            job.scheduled_for = now + settings.compilation_delay
            job.save()

        logger.info(f"{actor} retried compilation job {job.pk}")
        self.dispatch(job, self._countdown(job))
        return job

    def reclaim_stale_jobs(self):
        """
        Recover jobs abandoned by a stopped worker.

        Pending jobs overdue by more than STALE_JOB_INTERVALS scan intervals
        are rescheduled immediately; processing jobs started that long ago
        are failed so an admin can retry them.
        """
        now = self.clock()
        cutoff = now - timedelta(seconds=config.COMPILATION_SCAN_INTERVAL * config.STALE_JOB_INTERVALS)

        reclaimed = []
        with transaction.atomic():
            stale_pending = CompilationJob.objects.select_for_update().filter(
                status=CompilationJob.Status.PENDING,
                scheduled_for__lt=cutoff,
            )
            for job in stale_pending:
                job.scheduled_for = now
                job.save(update_fields=['scheduled_for', 'updated_at'])
                reclaimed.append(job)
                logger.info(f"Reclaimed stale pending compilation job {job.pk}")

            stale_processing = CompilationJob.objects.select_for_update().filter(
                status=CompilationJob.Status.PROCESSING,
                started_at__lt=cutoff,
            )
            for job in stale_processing:
                logger.warning(f"Failing compilation job {job.pk} abandoned while processing")
                self._fail(job, JobFailure("job was abandoned while processing"))

        for job in reclaimed:
            self.dispatch(job, 0)
        return reclaimed
