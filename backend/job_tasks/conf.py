"""App settings with defaults, overridable through ``settings.JOB_TASKS``."""

from django.conf import settings


DEFAULTS = {
    # Fixed-width grid used to place graph nodes by ordinal position
    'GRAPH_COLUMNS': 3,
    'GRAPH_X_SPACING': 300,
    'GRAPH_Y_SPACING': 200,
}


def get_setting(name: str):
    """Read a JOB_TASKS setting, falling back to the default."""
    overrides = getattr(settings, 'JOB_TASKS', None) or {}
    if name in overrides:
        return overrides[name]
    return DEFAULTS[name]
