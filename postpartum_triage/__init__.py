"""Deterministic postpartum safety triage with auditable case tracking."""

__version__ = "0.1.0"
