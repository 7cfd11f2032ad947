"""Case record, workflow and change ledger schemas."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    field_validator,
    model_validator,
)

from postpartum_triage.schemas.triage import DecisionResult
from postpartum_triage.utils.time import ensure_utc, parse_datetime

NOTES_MAX_LENGTH = 5000
OWNER_MAX_LENGTH = 200


class CareType(str, Enum):
    """Where care was sought after the triage."""

    EMERGENCY_DEPARTMENT = "EMERGENCY_DEPARTMENT"
    OBGYN = "OBGYN"
    HAUSARZT = "HAUSARZT"
    MIDWIFE = "MIDWIFE"
    MENTAL_HEALTH = "MENTAL_HEALTH"
    OTHER = "OTHER"


class CaseStatus(str, Enum):
    """Operational workflow status of a case.

    Any status may follow any other; coordinators override freely.
    """

    NEW = "NEW"
    IN_PROGRESS = "IN_PROGRESS"
    WAITING = "WAITING"
    CLOSED = "CLOSED"


class ChangeType(str, Enum):
    """Kind of mutation recorded in the change ledger."""

    OUTCOME_UPDATE = "OUTCOME_UPDATE"
    WORKFLOW_UPDATE = "WORKFLOW_UPDATE"


class Outcome(BaseModel):
    """Recorded care outcome for a case."""

    care_sought: bool | None = None
    care_time_hours: float | None = Field(None, ge=0)
    care_type: CareType | None = None
    resolved: bool | None = None
    notes: str | None = None
    updated_at: datetime
    updated_by: str


class Workflow(BaseModel):
    """Operational follow-up state for a case."""

    status: CaseStatus = CaseStatus.NEW
    owner: str | None = None
    follow_up_due_at: datetime | None = None
    last_contact_at: datetime | None = None
    updated_at: datetime
    updated_by: str = "system"


class CaseMeta(BaseModel):
    """Provenance recorded alongside a new case."""

    source: str = "api"
    run_id: str | None = None
    input_digest_sha256: str | None = None
    input_snapshot: dict[str, Any] | None = None


class CaseRecord(BaseModel):
    """Persistent aggregate of one decision and its follow-up state."""

    case_id: str
    created_at: datetime
    source: str = "api"
    run_id: str | None = None
    input_digest_sha256: str | None = None
    input_snapshot: dict[str, Any] | None = None
    decision: DecisionResult
    outcome: Outcome | None = None
    workflow: Workflow
    last_updated_by: str | None = None
    last_updated_at: datetime | None = None

    def snapshot(self) -> "CaseSnapshot":
        """The mutable part of the record, as stored in the ledger."""
        return CaseSnapshot(outcome=self.outcome, workflow=self.workflow)


class CaseSnapshot(BaseModel):
    """Before or after state of the mutable sub-records."""

    outcome: Outcome | None = None
    workflow: Workflow


def _strip_text(value: Any) -> Any:
    """Trim strings and map blank ones to None (clear)."""
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def _parse_timestamp(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        return parse_datetime(value)
    raise ValueError("must be an ISO 8601 timestamp string")


class OutcomePatch(BaseModel):
    """Requested changes to a case outcome.

    Only keys present in the request are applied. A key sent as null (or
    a blank string for text) clears the stored value. Unknown keys are
    ignored.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    care_sought: StrictBool | None = None
    care_time_hours: float | None = Field(
        None, alias="care_time", ge=0, allow_inf_nan=False
    )
    care_type: CareType | None = None
    resolved: StrictBool | None = None
    notes: str | None = Field(None, max_length=NOTES_MAX_LENGTH)

    @field_validator("care_time_hours", mode="before")
    @classmethod
    def require_number(cls, value: Any) -> Any:
        # bool is an int subclass; true must not become 1 hour
        if isinstance(value, (bool, str)):
            raise ValueError("must be a number")
        return value

    @field_validator("care_type", mode="before")
    @classmethod
    def normalize_care_type(cls, value: Any) -> Any:
        """Accept care types case-insensitively."""
        value = _strip_text(value)
        if isinstance(value, str):
            return value.upper()
        return value

    @field_validator("notes", mode="before")
    @classmethod
    def normalize_notes(cls, value: Any) -> Any:
        """Trim notes; blank clears."""
        return _strip_text(value)

    def requested(self) -> dict[str, Any]:
        """The normalized requested fields, keyed by field name."""
        return self.model_dump(mode="json", include=self.model_fields_set)


class WorkflowPatch(BaseModel):
    """Requested changes to a case workflow.

    Same presence rules as OutcomePatch, except that status can be set
    but never cleared.
    """

    model_config = ConfigDict(extra="ignore")

    status: CaseStatus | None = None
    owner: str | None = Field(None, max_length=OWNER_MAX_LENGTH)
    follow_up_due_at: datetime | None = None
    last_contact_at: datetime | None = None

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, value: Any) -> Any:
        """Accept statuses case-insensitively."""
        value = _strip_text(value)
        if isinstance(value, str):
            return value.upper()
        return value

    @field_validator("owner", mode="before")
    @classmethod
    def normalize_owner(cls, value: Any) -> Any:
        """Trim owner; blank clears."""
        return _strip_text(value)

    @field_validator("follow_up_due_at", "last_contact_at", mode="before")
    @classmethod
    def normalize_timestamp(cls, value: Any) -> Any:
        """Parse ISO timestamps; naive values are taken as UTC."""
        return _parse_timestamp(value)

    @model_validator(mode="after")
    def status_not_cleared(self) -> "WorkflowPatch":
        """Reject an explicit null status."""
        if "status" in self.model_fields_set and self.status is None:
            raise ValueError("status cannot be cleared")
        return self

    def requested(self) -> dict[str, Any]:
        """The normalized requested fields, keyed by field name."""
        return self.model_dump(mode="json", include=self.model_fields_set)


class ChangeEvent(BaseModel):
    """One committed mutation of a case, as kept in the change ledger."""

    model_config = ConfigDict(frozen=True)

    change_id: str
    case_id: str
    sequence: int = Field(ge=1)
    timestamp: datetime
    editor: str
    change_type: ChangeType
    patch: dict[str, Any] = Field(default_factory=dict)
    before: CaseSnapshot
    after: CaseSnapshot
    prev_hash: str | None = None
    entry_hash: str


class CaseUpdateResult(BaseModel):
    """Outcome of a successful patch operation."""

    before: CaseRecord
    after: CaseRecord
    change: ChangeEvent


class ImportSummary(BaseModel):
    """Row counts actually inserted by a legacy import."""

    imported_cases: int = 0
    imported_changes: int = 0
