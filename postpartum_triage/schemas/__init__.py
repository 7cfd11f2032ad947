"""Pydantic schemas for triage input, decisions and case records."""

from postpartum_triage.schemas.case import (
    CareType,
    CaseMeta,
    CaseRecord,
    CaseSnapshot,
    CaseStatus,
    CaseUpdateResult,
    ChangeEvent,
    ChangeType,
    ImportSummary,
    Outcome,
    OutcomePatch,
    Workflow,
    WorkflowPatch,
)
from postpartum_triage.schemas.triage import (
    ActionPlan,
    AuditOptions,
    ConfidenceBucket,
    ConfidenceTrace,
    DecisionResult,
    DomainDominance,
    EvaluationResponse,
    InconsistencyLevel,
    PrimaryRoute,
    RedFlagTrace,
    ScoreBreakdown,
    Timeframe,
    TriageInput,
    TriageLevel,
    UncertaintyReason,
    UncertaintyTrace,
)

__all__ = [
    "TriageInput",
    "TriageLevel",
    "InconsistencyLevel",
    "ConfidenceBucket",
    "UncertaintyReason",
    "DomainDominance",
    "PrimaryRoute",
    "Timeframe",
    "RedFlagTrace",
    "ScoreBreakdown",
    "ConfidenceTrace",
    "UncertaintyTrace",
    "ActionPlan",
    "DecisionResult",
    "AuditOptions",
    "EvaluationResponse",
    "CareType",
    "CaseStatus",
    "ChangeType",
    "Outcome",
    "Workflow",
    "CaseMeta",
    "CaseRecord",
    "CaseSnapshot",
    "OutcomePatch",
    "WorkflowPatch",
    "ChangeEvent",
    "CaseUpdateResult",
    "ImportSummary",
]
