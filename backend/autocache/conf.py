"""Engine configuration dataclass and settings normalization."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from django.conf import settings


@dataclass(frozen=True)
class AutoCacheSettings:
    """Configuration for the derived-field cache engine."""

    dedicated_max_attempts: int = 3  # 1-20
    dedicated_backoff_seconds: float = 0.1  # 0-5s, multiplied by the attempt number
    autodiscover: bool = True
    async_workers: int = 2  # 1-16
    iterator_chunk_size: int = 500  # 1-10000


def _clamp_int(value: Any, *, default: int, low: int, high: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return default
    return max(low, min(high, value))


def normalize_autocache_settings(raw: Any) -> AutoCacheSettings:
    """
    Normalize the raw `AUTOCACHE` settings dict into a typed AutoCacheSettings.

    Args:
        raw: Raw settings value (dict or None)

    Returns:
        Validated AutoCacheSettings with defaults applied
    """
    if not isinstance(raw, dict):
        return AutoCacheSettings()

    defaults = AutoCacheSettings()

    backoff = raw.get("dedicated_backoff_seconds", defaults.dedicated_backoff_seconds)
    if isinstance(backoff, bool) or not isinstance(backoff, (int, float)) or backoff < 0:
        backoff = defaults.dedicated_backoff_seconds
    elif backoff > 5:
        backoff = 5.0

    autodiscover = raw.get("autodiscover", defaults.autodiscover)
    if not isinstance(autodiscover, bool):
        autodiscover = defaults.autodiscover

    return AutoCacheSettings(
        dedicated_max_attempts=_clamp_int(
            raw.get("dedicated_max_attempts"), default=defaults.dedicated_max_attempts, low=1, high=20
        ),
        dedicated_backoff_seconds=float(backoff),
        autodiscover=autodiscover,
        async_workers=_clamp_int(raw.get("async_workers"), default=defaults.async_workers, low=1, high=16),
        iterator_chunk_size=_clamp_int(
            raw.get("iterator_chunk_size"), default=defaults.iterator_chunk_size, low=1, high=10000
        ),
    )


def get_autocache_settings() -> AutoCacheSettings:
    """Load engine configuration from Django settings (read on every call)."""
    return normalize_autocache_settings(getattr(settings, "AUTOCACHE", None))
