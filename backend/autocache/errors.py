from __future__ import annotations

from django.db import IntegrityError

# SQLSTATE for unique_violation (PostgreSQL, and MySQL/MariaDB drivers that expose it).
_UNIQUE_VIOLATION_SQLSTATE = "23505"
_UNIQUE_MARKERS = ("unique", "duplicate")


class AutoCacheError(Exception):
    """Base class for errors raised by the cache engine."""


class ConfigurationError(AutoCacheError):
    """A cache rule, hook or dedicated cache model is declared incorrectly."""


class DedicatedCacheError(AutoCacheError):
    """A dedicated cache record cannot be resolved for the given parent record."""


def is_uniqueness_conflict(exc: BaseException) -> bool:
    """
    Return True if `exc` is a unique-constraint violation.

    Other integrity failures (NOT NULL, foreign keys) are not conflicts with a
    concurrent writer and are treated like any other database error.
    """
    if not isinstance(exc, IntegrityError):
        return False
    cause = exc.__cause__
    for attr in ("pgcode", "sqlstate"):
        if getattr(cause, attr, None) == _UNIQUE_VIOLATION_SQLSTATE:
            return True
    text = str(exc).lower()
    return any(marker in text for marker in _UNIQUE_MARKERS)
