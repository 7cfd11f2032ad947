"""SQLAlchemy models for the case store and change ledger."""

from postpartum_triage.models.case import TriageCase
from postpartum_triage.models.change_event import CaseChange

__all__ = ["TriageCase", "CaseChange"]
