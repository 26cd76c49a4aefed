"""
Signals for the result workflow.

Custom signals let other parts of the system (notifications, report cards)
react to workflow events without the gradebook depending on them:

    results_submitted        a supervisor submitted a group
    results_published        an admin published results for a class
    compilation_completed    a compilation job finished (notify_on_completion)
    result_reports_requested report cards should be generated (auto_generate_pdfs)

When a ranked Result is saved directly (e.g. corrected in the admin), its
group is re-ranked automatically.
"""
import logging
import threading

from django.db.models.signals import post_save
from django.dispatch import Signal, receiver

from .models import Result, ResultSettings

logger = logging.getLogger(__name__)

# Thread-local storage for signal disabling (thread-safe)
_thread_locals = threading.local()

results_submitted = Signal()
results_published = Signal()
compilation_completed = Signal()
result_reports_requested = Signal()


def _is_signals_disabled():
    """Check if signals are disabled for the current thread."""
    return getattr(_thread_locals, 'signals_disabled', False)


def disable_signals():
    """Disable auto-ranking signals for the current thread (for bulk operations)."""
    _thread_locals.signals_disabled = True


def enable_signals():
    """Re-enable auto-ranking signals for the current thread."""
    _thread_locals.signals_disabled = False


class signals_disabled:
    """Context manager to temporarily disable signals (thread-safe)."""

    def __enter__(self):
        self._previous_state = _is_signals_disabled()
        disable_signals()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if not self._previous_state:
            enable_signals()
        return False


@receiver(post_save, sender=Result)
def result_saved(sender, instance, created, raw=False, **kwargs):
    """Re-rank the group when a ranked result changes."""
    if raw or _is_signals_disabled():
        return
    if instance.status not in Result.RANKED_STATUSES:
        return

    from .services import rank_group

    with signals_disabled():
        rank_group(instance.group_key)


@receiver(results_submitted)
def queue_compilation(sender, group, **kwargs):
    """Create a compilation job as soon as a group is submitted."""
    if _is_signals_disabled():
        return

    from .compilation import CompilationScheduler

    settings = ResultSettings.load()
    if not settings.enabled:
        logger.debug(f"Compilation disabled; group {tuple(group)} waits for the next scan")
        return
    CompilationScheduler().observe_group(group, settings)


@receiver(compilation_completed)
def log_compilation_completed(sender, job, **kwargs):
    logger.info(
        f"Compilation job {job.pk} completed: {job.processed_students}/{job.total_students} "
        f"processed, {len(job.errors)} error(s)"
    )
