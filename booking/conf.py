"""
conf.py
-------
Read engine tunables from settings.SCHEDULING with sensible defaults.

Settings are read on every call (not cached at import time) so
override_settings(SCHEDULING=...) takes effect inside tests.
"""

from django.conf import settings

DEFAULTS = {
    "LOCK_TIMEOUT_SECONDS": 5.0,
    "ASYNC_EVENTS": True,
    "WAITLIST_WORKERS": 2,
    "AVAILABILITY_CACHE_ALIAS": "default",
    "AVAILABILITY_CACHE_TTL": 300,
    "MAX_RECURRENCE_OCCURRENCES": 52,
    "MAX_QUERY_DAYS": 62,
}


def engine_setting(name: str):
    overrides = getattr(settings, "SCHEDULING", {}) or {}
    if name in overrides:
        return overrides[name]
    return DEFAULTS[name]
