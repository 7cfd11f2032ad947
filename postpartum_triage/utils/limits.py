"""Bounds for list queries."""

from typing import Any

from postpartum_triage.core.config import settings


def normalize_limit(
    limit: Any,
    default: int | None = None,
    maximum: int | None = None,
) -> int:
    """Clamp a caller-supplied row limit.

    Non-numeric, non-positive or missing values fall back to the default;
    anything larger than the maximum is capped.
    """
    if default is None:
        default = settings.recent_limit_default
    if maximum is None:
        maximum = settings.recent_limit_max

    if isinstance(limit, bool):
        return default

    try:
        value = int(float(limit))
    except (TypeError, ValueError, OverflowError):
        return default

    if value <= 0:
        return default
    return min(value, maximum)
