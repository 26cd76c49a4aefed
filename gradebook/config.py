"""
Configuration settings for the gradebook app.

These values can be overridden in Django settings by prefixing with GRADEBOOK_.
For example, to switch score entry to the weighted 0-100 convention:
    GRADEBOOK_SCORE_ENTRY_CONVENTION = 'weighted'

All configuration values are lazily loaded to avoid Django setup issues.
Runtime switches that admins change without a deploy (auto-approve, delay,
access threshold, ...) live on the ResultSettings model and use the
DEFAULT_* values below as their initial values.
"""
from decimal import Decimal


def _get_setting(name, default):
    """Get a gradebook setting from Django settings or use default."""
    from django.conf import settings
    return getattr(settings, f'GRADEBOOK_{name}', default)


# Define defaults as constants for direct use when Django settings are not needed
_DEFAULTS = {
    # 'direct': test1/test2/exam entered on 20/20/60 scales
    # 'weighted': each component entered out of 100, weighted 0.2/0.2/0.6
    'SCORE_ENTRY_CONVENTION': 'direct',

    # Compilation scheduler
    'COMPILATION_SCAN_INTERVAL': 30,  # seconds
    'STALE_JOB_INTERVALS': 10,  # pending jobs older than this many scans are reclaimed

    # ResultSettings initial values
    'DEFAULT_COMPILATION_ENABLED': True,
    'DEFAULT_AUTO_APPROVE': False,
    'DEFAULT_AUTO_CALCULATE_POSITIONS': True,
    'DEFAULT_AUTO_GENERATE_PDFS': False,
    'DEFAULT_NOTIFY_ON_COMPLETION': True,
    'DEFAULT_COMPILATION_DELAY_MINUTES': 5,
    'DEFAULT_ACCESS_THRESHOLD': Decimal('1.00'),

    # Celery task settings
    'TASK_MAX_RETRIES': 3,
    'TASK_RETRY_DELAY': 60,  # seconds
    'TASK_SOFT_TIME_LIMIT': 300,  # 5 minutes
    'TASK_TIME_LIMIT': 360,  # 6 minutes
}


class _ConfigProxy:
    """
    Lazy configuration proxy that loads settings only when accessed.
    This avoids Django setup issues during module import.
    """

    def __getattr__(self, name):
        if name in _DEFAULTS:
            return _get_setting(name, _DEFAULTS[name])
        raise AttributeError(f"Unknown config setting: {name}")


# Module-level proxy object for attribute access
_config = _ConfigProxy()


def __getattr__(name):
    """Enable module-level attribute access via the config proxy."""
    return getattr(_config, name)
