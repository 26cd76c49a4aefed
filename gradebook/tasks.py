"""
Celery tasks for gradebook app.
Runs result compilation in the background; the scan is registered as a
periodic task (see CELERY_BEAT_SCHEDULE in settings).
"""
import logging

from celery import shared_task
from django.db import OperationalError

from . import config


logger = logging.getLogger(__name__)


@shared_task
def scan_for_submissions():
    """
    Create compilation jobs for newly submitted result groups and run any
    that are due.
    """
    from .compilation import CompilationScheduler

    jobs = CompilationScheduler().scan()
    return {'created': len(jobs), 'job_ids': [str(job.pk) for job in jobs]}


@shared_task(
    bind=True,
    max_retries=config.TASK_MAX_RETRIES,
    default_retry_delay=config.TASK_RETRY_DELAY,
    soft_time_limit=config.TASK_SOFT_TIME_LIMIT,
    time_limit=config.TASK_TIME_LIMIT,
)
def process_compilation_job(self, job_id):
    """
    Process one compilation job once its delay has passed.

    Job-level errors are recorded on the job itself; only database
    connectivity problems are retried here.
    """
    from .compilation import CompilationScheduler

    try:
        job = CompilationScheduler().process(job_id)
    except OperationalError as e:
        logger.warning(f"Database unavailable while processing job {job_id}: {e}")
        raise self.retry(exc=e, countdown=config.TASK_RETRY_DELAY * (2 ** self.request.retries))

    if job is None:
        return {'success': False, 'job_id': job_id, 'error': 'Job is not runnable'}
    return {'success': job.status == job.Status.COMPLETED, **job.summary()}


@shared_task
def retry_compilation_job(job_id, user_id):
    """Retry a failed compilation job on behalf of an admin."""
    from django.contrib.auth import get_user_model

    from .compilation import CompilationScheduler
    from .exceptions import AuthorizationError, StateConflictError
    from .models import CompilationJob

    User = get_user_model()

    try:
        job = CompilationJob.objects.get(pk=job_id)
        user = User.objects.get(pk=user_id)
    except (CompilationJob.DoesNotExist, User.DoesNotExist):
        logger.error(f"Cannot retry compilation job {job_id}: job or user {user_id} not found")
        return {'success': False, 'error': 'Job or user not found'}

    try:
        job = CompilationScheduler().retry(user, job)
    except (AuthorizationError, StateConflictError) as e:
        logger.warning(f"Retry of compilation job {job_id} refused: {e}")
        return {'success': False, 'error': str(e)}

    return {'success': True, **job.summary()}
