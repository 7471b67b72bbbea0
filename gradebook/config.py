"""
Configuration settings for the gradebook app.

These values can be overridden in Django settings by prefixing with GRADEBOOK_.
For example, to change the promotion threshold used when a school has not
configured its own:
    GRADEBOOK_DEFAULT_PASSING_GRADE = Decimal('50')

All configuration values are lazily loaded to avoid Django setup issues.
"""
from decimal import Decimal


def _get_setting(name, default):
    """Get a gradebook setting from Django settings or use default."""
    from django.conf import settings
    return getattr(settings, f'GRADEBOOK_{name}', default)


# Define defaults as constants for direct use when Django settings are not needed
_DEFAULTS = {
    # Promotion threshold when SchoolSettings.passing_grade is empty
    'DEFAULT_PASSING_GRADE': Decimal('60'),

    # Point budget given to a subject when it is assigned to a class
    'DEFAULT_SUBJECT_BUDGET': Decimal('100'),

    # Tolerance on the per-subject budget sum
    'BUDGET_EPSILON': Decimal('0.001'),

    # Empty payment installments created with every enrollment
    'DEFAULT_INSTALLMENTS': 4,

    # SchoolSettings cache lifetime (seconds)
    'SETTINGS_CACHE_TIMEOUT': 60 * 60 * 24,
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
