"""Utility functions."""

from postpartum_triage.utils.limits import normalize_limit
from postpartum_triage.utils.time import ensure_utc, parse_datetime, utc_now

__all__ = ["utc_now", "ensure_utc", "parse_datetime", "normalize_limit"]
