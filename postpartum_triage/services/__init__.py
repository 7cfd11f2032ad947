"""Business logic services."""

from postpartum_triage.services.case_store import CaseNotFoundError, CaseStore
from postpartum_triage.services.change_ledger import ChangeLedger, StorageError
from postpartum_triage.services.legacy_import import import_if_empty
from postpartum_triage.services.patches import PatchValidationError
from postpartum_triage.services.triage import TriageService

__all__ = [
    "CaseStore",
    "CaseNotFoundError",
    "ChangeLedger",
    "StorageError",
    "PatchValidationError",
    "TriageService",
    "import_if_empty",
]
