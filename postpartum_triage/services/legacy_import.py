"""One-time import of the flat-file case and change logs.

Earlier deployments appended one JSON object per line to a case log and a
change log. On startup those files are imported into the store, but only
while the corresponding table is still empty, so restarts never import
twice. Inserts ignore rows whose id already exists, which makes a
partially completed earlier import safe to resume.
"""

import json
import logging
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from postpartum_triage.db.session import IMMEDIATE
from postpartum_triage.models.case import TriageCase
from postpartum_triage.models.change_event import CaseChange
from postpartum_triage.rules.engine import build_action_plan, infer_dominant_domain
from postpartum_triage.rules.models import RuleSet
from postpartum_triage.schemas.case import (
    CaseRecord,
    CaseSnapshot,
    CareType,
    CaseStatus,
    ChangeEvent,
    ChangeType,
    ImportSummary,
    Outcome,
    Workflow,
)
from postpartum_triage.schemas.triage import (
    ConfidenceBucket,
    ConfidenceTrace,
    DecisionResult,
    DomainDominance,
    PrimaryRoute,
    RedFlagTrace,
    ScoreBreakdown,
    TriageLevel,
    UncertaintyReason,
    UncertaintyTrace,
)
from postpartum_triage.services.case_store import to_row as case_to_row
from postpartum_triage.services.change_ledger import StorageError, seal
from postpartum_triage.services.change_ledger import to_row as change_to_row
from postpartum_triage.utils.time import parse_datetime

logger = logging.getLogger(__name__)

LegacySource = str | Path | Iterable[dict[str, Any]] | None

IMPORT_RATIONALE = "Imported from the legacy case log; decision rebuilt from summary fields."

CARE_TYPES = {care_type.value for care_type in CareType}

# Same-day routes carry the domain that drove them
ROUTE_DOMINANCE = {
    PrimaryRoute.SAME_DAY_MENTAL_HEALTH: DomainDominance.MENTAL,
    PrimaryRoute.SAME_DAY_OBGYN: DomainDominance.PELVIC,
    PrimaryRoute.SAME_DAY_MIXED: DomainDominance.MIXED,
}


class LegacyRecordError(ValueError):
    """Raised for a legacy line that cannot be normalized."""

    pass


def read_jsonl(path: str | Path) -> list[dict[str, Any]]:
    """Read a JSON-lines file, skipping blank and malformed lines.

    Args:
        path: File to read; a missing file yields no records

    Returns:
        Parsed JSON objects in file order
    """
    path = Path(path)
    if not path.exists():
        return []

    records = []
    with path.open(encoding="utf-8") as f:
        for line_number, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                item = json.loads(line)
            except json.JSONDecodeError:
                logger.warning(f"Skipping malformed JSON at {path}:{line_number}")
                continue
            if not isinstance(item, dict):
                logger.warning(f"Skipping non-object JSON at {path}:{line_number}")
                continue
            records.append(item)
    return records


def _load(source: LegacySource) -> list[dict[str, Any]]:
    if source is None:
        return []
    if isinstance(source, (str, Path)):
        return read_jsonl(source)
    return [item for item in source if isinstance(item, dict)]


def _timestamp(value: Any, field_name: str) -> datetime:
    if not isinstance(value, str) or not value.strip():
        raise LegacyRecordError(f"missing {field_name}")
    try:
        return parse_datetime(value)
    except ValueError as e:
        raise LegacyRecordError(f"invalid {field_name}: {value!r}") from e


def _optional_timestamp(value: Any, field_name: str) -> datetime | None:
    if value is None or value == "":
        return None
    return _timestamp(value, field_name)


def _normalize_outcome(
    raw: Any,
    fallback_at: datetime,
    fallback_by: str,
) -> Outcome | None:
    if not isinstance(raw, dict):
        return None
    values = dict(raw)
    if "care_time" in values and "care_time_hours" not in values:
        values["care_time_hours"] = values.pop("care_time")
    care_type = values.pop("care_type", None)
    if care_type is not None:
        care_type = str(care_type).strip().upper()
        if care_type in CARE_TYPES:
            values["care_type"] = care_type
        else:
            logger.warning(f"Dropping unknown legacy care type {care_type!r}")
    values["updated_at"] = (
        _optional_timestamp(values.get("updated_at"), "outcome.updated_at") or fallback_at
    )
    values["updated_by"] = values.get("updated_by") or fallback_by
    return Outcome.model_validate(values)


def _normalize_workflow(
    raw: Any,
    outcome: Outcome | None,
    fallback_at: datetime,
    fallback_by: str,
) -> Workflow:
    if not isinstance(raw, dict):
        # No workflow was tracked yet: a resolved outcome means the case is done
        status = CaseStatus.CLOSED if outcome and outcome.resolved is True else CaseStatus.NEW
        return Workflow(status=status, updated_at=fallback_at, updated_by="system")

    values = dict(raw)
    for key in ("follow_up_due_at", "last_contact_at"):
        values[key] = _optional_timestamp(values.get(key), f"workflow.{key}")
    values["updated_at"] = (
        _optional_timestamp(values.get("updated_at"), "workflow.updated_at") or fallback_at
    )
    values["updated_by"] = values.get("updated_by") or fallback_by
    return Workflow.model_validate(values)


def _rebuild_decision(raw: dict[str, Any], rules: RuleSet) -> DecisionResult:
    """Reconstruct a DecisionResult from a legacy summary event."""
    try:
        level = TriageLevel(raw.get("finalLevel"))
        base_level = TriageLevel(raw.get("baseLevel") or level)
    except ValueError as e:
        raise LegacyRecordError(f"unknown triage level: {e}") from e

    fired_ids = [str(flag_id) for flag_id in raw.get("firedRedFlagIds") or []]
    red_flags = [
        RedFlagTrace(id=rule.id, label=rule.label, fired=rule.id in fired_ids)
        for rule in rules.red_flags
    ]
    known = {rule.id for rule in rules.red_flags}
    red_flags += [
        RedFlagTrace(id=flag_id, label=flag_id, fired=True)
        for flag_id in fired_ids
        if flag_id not in known
    ]

    raw_score = raw.get("scoreBreakdown") or {}
    if not isinstance(raw_score, dict):
        raise LegacyRecordError("scoreBreakdown must be an object")
    domains = {
        "mental_health": int(raw_score.get("mentalHealth", 0) or 0),
        "pelvic_floor_and_recovery": int(raw_score.get("pelvicFloorAndRecovery", 0) or 0),
        "history_and_context": int(raw_score.get("historyAndContext", 0) or 0),
    }
    score = ScoreBreakdown(**domains, total=sum(domains.values()))

    missing = int(raw.get("missingCriticalInputs", 0) or 0)
    try:
        bucket = ConfidenceBucket(raw.get("confidenceBucket"))
    except ValueError:
        bucket = (
            ConfidenceBucket.LOW
            if missing >= 2
            else ConfidenceBucket.MEDIUM if missing == 1 else ConfidenceBucket.HIGH
        )

    reasons = []
    for reason in raw.get("uncertaintyReasons") or []:
        try:
            reasons.append(UncertaintyReason(reason))
        except ValueError:
            logger.warning(f"Dropping unknown uncertainty reason {reason!r}")

    try:
        route = PrimaryRoute(raw.get("primaryRoute"))
    except ValueError:
        route = None
    dominance = ROUTE_DOMINANCE.get(route) or infer_dominant_domain(score)

    emergency_number = str(raw.get("emergencyNumber") or rules.emergency_number)
    rationale = [IMPORT_RATIONALE]
    rationale += [f"Triggered: {flag.label}" for flag in red_flags if flag.fired]
    rationale.append(f"Base triage level: {base_level.value}.")
    rationale.append(f"Confidence: {bucket.value}.")

    return DecisionResult(
        level=level,
        is_emergency=level == TriageLevel.EMERGENCY,
        emergency_number=emergency_number,
        rules_version=str(raw.get("rulesVersion") or "unknown"),
        rationale=rationale,
        red_flags=red_flags,
        score_breakdown=score,
        confidence=ConfidenceTrace(bucket=bucket, missing_critical_inputs=missing),
        uncertainty=UncertaintyTrace(
            triggered=bool(reasons),
            reasons=reasons,
            escalated_from=base_level if reasons else None,
            escalated_to=level if reasons else None,
        ),
        action_plan=build_action_plan(level, emergency_number, dominance),
    )


def normalize_legacy_case(raw: dict[str, Any], rules: RuleSet) -> CaseRecord:
    """Convert one legacy case log entry to the current CaseRecord shape.

    Entries already in the current shape are validated as they are.

    Raises:
        LegacyRecordError: If the entry cannot be converted
    """
    try:
        if "case_id" in raw and "decision" in raw:
            return CaseRecord.model_validate(raw)

        case_id = raw.get("eventId")
        if not case_id:
            raise LegacyRecordError("missing eventId")

        created_at = _timestamp(raw.get("timestamp"), "timestamp")
        last_updated_at = _optional_timestamp(raw.get("last_updated_at"), "last_updated_at")
        last_updated_by = raw.get("last_updated_by")
        fallback_by = last_updated_by or "system"

        outcome = _normalize_outcome(
            raw.get("outcome"), last_updated_at or created_at, fallback_by
        )
        workflow = _normalize_workflow(
            raw.get("workflow"), outcome, created_at, fallback_by
        )

        return CaseRecord(
            case_id=str(case_id),
            created_at=created_at,
            source=str(raw.get("source") or "legacy-import"),
            run_id=raw.get("runId"),
            input_digest_sha256=raw.get("inputDigestSha256"),
            input_snapshot=raw.get("inputSnapshot"),
            decision=_rebuild_decision(raw, rules),
            outcome=outcome,
            workflow=workflow,
            last_updated_by=last_updated_by,
            last_updated_at=last_updated_at,
        )
    except LegacyRecordError:
        raise
    except (AttributeError, TypeError, ValueError) as e:
        raise LegacyRecordError(str(e)) from e


def _snapshot(raw: Any, fallback_at: datetime, fallback_by: str) -> CaseSnapshot:
    raw = raw if isinstance(raw, dict) else {}
    outcome = _normalize_outcome(raw.get("outcome"), fallback_at, fallback_by)
    workflow = _normalize_workflow(raw.get("workflow"), outcome, fallback_at, fallback_by)
    return CaseSnapshot(outcome=outcome, workflow=workflow)


def _legacy_change_case_id(raw: dict[str, Any]) -> str | None:
    case_id = raw.get("eventId") or raw.get("case_id") or raw.get("caseId")
    return str(case_id) if case_id else None


def _normalize_legacy_change(
    raw: dict[str, Any],
    case_id: str,
) -> tuple[datetime, dict[str, Any]]:
    """Validated fields of a legacy change, before sequencing and hashing."""
    try:
        timestamp = _timestamp(raw.get("timestamp"), "timestamp")
        try:
            change_type = ChangeType(raw.get("changeType") or raw.get("change_type"))
        except ValueError as e:
            raise LegacyRecordError(f"unknown change type: {e}") from e
        editor = str(raw.get("editor") or "unknown")
        patch = raw.get("patch") if isinstance(raw.get("patch"), dict) else {}

        return timestamp, {
            "change_id": str(raw.get("changeId") or raw.get("change_id") or uuid4()),
            "case_id": case_id,
            "timestamp": timestamp,
            "editor": editor,
            "change_type": change_type,
            "patch": patch,
            "before": _snapshot(raw.get("before"), timestamp, editor),
            "after": _snapshot(raw.get("after"), timestamp, editor),
        }
    except LegacyRecordError:
        raise
    except (TypeError, ValueError) as e:
        raise LegacyRecordError(str(e)) from e


async def _count(session: AsyncSession, model) -> int:
    result = await session.execute(select(func.count()).select_from(model))
    return result.scalar_one()


def _column_values(row: Any) -> dict[str, Any]:
    return {column.key: getattr(row, column.key) for column in row.__table__.columns}


async def _insert_ignore(session: AsyncSession, model, row: Any, key: str) -> bool:
    """Insert a row unless its primary key exists; True if inserted."""
    connection = await session.connection()
    insert = pg_insert if connection.dialect.name == "postgresql" else sqlite_insert
    statement = (
        insert(model)
        .values(**_column_values(row))
        .on_conflict_do_nothing(index_elements=[key])
    )
    result = await session.execute(statement)
    return result.rowcount > 0


async def _import_cases(
    session: AsyncSession,
    raw_cases: list[dict[str, Any]],
    rules: RuleSet,
) -> int:
    imported = 0
    for raw in raw_cases:
        try:
            record = normalize_legacy_case(raw, rules)
        except LegacyRecordError as e:
            logger.warning(f"Skipping legacy case {raw.get('eventId')!r}: {e}")
            continue
        if await _insert_ignore(session, TriageCase, case_to_row(record), "case_id"):
            imported += 1
    return imported


async def _import_changes(session: AsyncSession, raw_changes: list[dict[str, Any]]) -> int:
    by_case: dict[str, list[tuple[datetime, dict[str, Any]]]] = {}
    for raw in raw_changes:
        case_id = _legacy_change_case_id(raw)
        if case_id is None:
            logger.warning(f"Skipping legacy change {raw.get('changeId')!r}: no case id")
            continue
        try:
            by_case.setdefault(case_id, []).append(_normalize_legacy_change(raw, case_id))
        except LegacyRecordError as e:
            logger.warning(f"Skipping legacy change {raw.get('changeId')!r}: {e}")

    if not by_case:
        return 0

    result = await session.execute(
        select(TriageCase.case_id).where(TriageCase.case_id.in_(list(by_case)))
    )
    known_cases = set(result.scalars().all())

    imported = 0
    for case_id, entries in by_case.items():
        if case_id not in known_cases:
            logger.warning(
                f"Skipping {len(entries)} legacy change(s) for unknown case {case_id}"
            )
            continue

        # Chain in time order; sort is stable for equal timestamps
        entries.sort(key=lambda entry: entry[0])
        prev_hash = None
        sequence = 0
        for _, fields in entries:
            change = seal(
                ChangeEvent(
                    **fields,
                    sequence=sequence + 1,
                    prev_hash=prev_hash,
                    entry_hash="",
                )
            )
            if await _insert_ignore(session, CaseChange, change_to_row(change), "change_id"):
                imported += 1
                sequence = change.sequence
                prev_hash = change.entry_hash
    return imported


async def import_if_empty(
    session_factory: async_sessionmaker[AsyncSession],
    rules: RuleSet,
    case_source: LegacySource,
    change_source: LegacySource,
) -> ImportSummary:
    """Import legacy case and change logs into empty tables.

    Cases are imported only while the case table is empty and changes only
    while the change table is empty. Calling this again after a successful
    import inserts nothing.

    Args:
        session_factory: Session factory for the target database
        rules: Ruleset used to rebuild legacy decisions
        case_source: Case log path or iterable of legacy case dicts
        change_source: Change log path or iterable of legacy change dicts

    Returns:
        ImportSummary with the number of rows actually inserted

    Raises:
        StorageError: If the import transaction fails
    """
    raw_cases = _load(case_source)
    raw_changes = _load(change_source)
    summary = ImportSummary()

    if not raw_cases and not raw_changes:
        return summary

    try:
        async with session_factory() as session:
            async with session.begin():
                await session.connection(execution_options=IMMEDIATE)

                if raw_cases and await _count(session, TriageCase) == 0:
                    summary.imported_cases = await _import_cases(session, raw_cases, rules)

                if raw_changes and await _count(session, CaseChange) == 0:
                    summary.imported_changes = await _import_changes(session, raw_changes)
    except SQLAlchemyError as e:
        logger.exception("Legacy import failed")
        raise StorageError("Legacy import failed") from e

    if summary.imported_cases or summary.imported_changes:
        logger.info(
            f"Imported {summary.imported_cases} legacy case(s) and "
            f"{summary.imported_changes} legacy change(s)"
        )
    return summary
