"""Case record store.

Cases are created once per evaluation and then changed only through
outcome and workflow patches. Each patch is one transaction: lock the
case row, merge, write it back, append one ledger entry, commit. Any
failure rolls all of it back, so the case table and the change ledger
never diverge.
"""

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from postpartum_triage.core.logging import change_logger
from postpartum_triage.db.session import IMMEDIATE
from postpartum_triage.models.case import TriageCase
from postpartum_triage.schemas.case import (
    CaseMeta,
    CaseRecord,
    CaseStatus,
    CaseUpdateResult,
    ChangeType,
    OutcomePatch,
    Workflow,
    WorkflowPatch,
)
from postpartum_triage.schemas.triage import DecisionResult
from postpartum_triage.services.change_ledger import ChangeLedger, StorageError
from postpartum_triage.services.patches import (
    apply_outcome_patch,
    apply_workflow_patch,
    parse_outcome_patch,
    parse_workflow_patch,
    validate_editor,
)
from postpartum_triage.utils.limits import normalize_limit
from postpartum_triage.utils.time import utc_now

logger = logging.getLogger(__name__)

__all__ = ["CaseNotFoundError", "CaseStore", "StorageError", "to_row"]


class CaseNotFoundError(Exception):
    """Raised when a case id is not in the store."""

    def __init__(self, case_id: str) -> None:
        super().__init__(f"Case {case_id} not found")
        self.case_id = case_id


def to_row(record: CaseRecord) -> TriageCase:
    """Database row for a case record."""
    return TriageCase(
        case_id=record.case_id,
        created_at=record.created_at,
        updated_at=record.last_updated_at or record.created_at,
        level=record.decision.level.value,
        status=record.workflow.status.value,
        record=record.model_dump(mode="json"),
    )


class CaseStore:
    """Persistent store of triage case records.

    Handles:
    - Creating a case from a decision
    - Reading single cases and recent listings
    - Outcome and workflow patches with ledger entries
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ledger: ChangeLedger | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.ledger = ledger or ChangeLedger(session_factory)

    @asynccontextmanager
    async def _write_transaction(self) -> AsyncIterator[AsyncSession]:
        """Session inside a transaction that holds the write lock from BEGIN."""
        async with self.session_factory() as session:
            async with session.begin():
                await session.connection(execution_options=IMMEDIATE)
                yield session

    async def create_case(
        self,
        decision: DecisionResult,
        meta: CaseMeta | None = None,
    ) -> CaseRecord:
        """Record a new case for a decision.

        Every call allocates a new case id; identical decisions are never
        merged.

        Args:
            decision: Engine output, embedded verbatim
            meta: Provenance of the evaluation

        Returns:
            The stored CaseRecord

        Raises:
            StorageError: If the insert fails
        """
        meta = meta or CaseMeta()
        now = utc_now()
        record = CaseRecord(
            case_id=str(uuid4()),
            created_at=now,
            source=meta.source,
            run_id=meta.run_id,
            input_digest_sha256=meta.input_digest_sha256,
            input_snapshot=meta.input_snapshot,
            decision=decision,
            workflow=Workflow(status=CaseStatus.NEW, updated_at=now, updated_by="system"),
        )

        try:
            async with self._write_transaction() as session:
                session.add(to_row(record))
        except SQLAlchemyError as e:
            logger.exception("Failed to create case")
            raise StorageError("Failed to create case") from e

        change_logger.case_created(record.case_id, decision.level.value, record.source)
        return record

    async def get_case(self, case_id: str) -> CaseRecord:
        """Get a case by id.

        Raises:
            CaseNotFoundError: If no such case exists
            StorageError: If the query fails
        """
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(TriageCase).where(TriageCase.case_id == case_id)
                )
                row = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.exception(f"Failed to read case {case_id}")
            raise StorageError("Failed to read case") from e

        if row is None:
            raise CaseNotFoundError(case_id)
        return CaseRecord.model_validate(row.record)

    async def get_recent(self, limit: Any = None) -> list[CaseRecord]:
        """Most recently created cases, newest first.

        Args:
            limit: Maximum cases; non-positive or invalid values use the
                default and large values are capped

        Raises:
            StorageError: If the query fails
        """
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(TriageCase)
                    .order_by(TriageCase.created_at.desc(), TriageCase.case_id.desc())
                    .limit(normalize_limit(limit))
                )
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            logger.exception("Failed to list recent cases")
            raise StorageError("Failed to list recent cases") from e

        return [CaseRecord.model_validate(row.record) for row in rows]

    async def patch_outcome(
        self,
        case_id: str,
        patch: OutcomePatch | dict[str, Any],
        editor: str,
    ) -> CaseUpdateResult:
        """Apply an outcome patch and record it in the ledger.

        Args:
            case_id: Case to change
            patch: Raw request fields or a validated OutcomePatch
            editor: Acting editor identity

        Returns:
            CaseUpdateResult with before/after records and the ledger entry

        Raises:
            PatchValidationError: Before any database access, if invalid
            CaseNotFoundError: If the case does not exist
            StorageError: If the transaction fails
        """
        outcome_patch = parse_outcome_patch(patch)
        editor = validate_editor(editor)

        def mutate(record: CaseRecord, now: datetime) -> CaseRecord:
            return record.model_copy(
                update={
                    "outcome": apply_outcome_patch(record.outcome, outcome_patch, editor, now)
                }
            )

        return await self._apply_patch(
            case_id, editor, ChangeType.OUTCOME_UPDATE, outcome_patch.requested(), mutate
        )

    async def patch_workflow(
        self,
        case_id: str,
        patch: WorkflowPatch | dict[str, Any],
        editor: str,
    ) -> CaseUpdateResult:
        """Apply a workflow patch and record it in the ledger.

        Any status may follow any other.

        Raises:
            PatchValidationError: Before any database access, if invalid
            CaseNotFoundError: If the case does not exist
            StorageError: If the transaction fails
        """
        workflow_patch = parse_workflow_patch(patch)
        editor = validate_editor(editor)

        def mutate(record: CaseRecord, now: datetime) -> CaseRecord:
            return record.model_copy(
                update={
                    "workflow": apply_workflow_patch(
                        record.workflow, workflow_patch, editor, now
                    )
                }
            )

        return await self._apply_patch(
            case_id, editor, ChangeType.WORKFLOW_UPDATE, workflow_patch.requested(), mutate
        )

    async def _apply_patch(
        self,
        case_id: str,
        editor: str,
        change_type: ChangeType,
        requested: dict[str, Any],
        mutate: Callable[[CaseRecord, datetime], CaseRecord],
    ) -> CaseUpdateResult:
        try:
            async with self._write_transaction() as session:
                result = await session.execute(
                    select(TriageCase)
                    .where(TriageCase.case_id == case_id)
                    .with_for_update()
                )
                row = result.scalar_one_or_none()
                if row is None:
                    raise CaseNotFoundError(case_id)

                before = CaseRecord.model_validate(row.record)
                now = utc_now()
                after = mutate(before, now).model_copy(
                    update={"last_updated_by": editor, "last_updated_at": now}
                )

                row.record = after.model_dump(mode="json")
                row.updated_at = now
                row.status = after.workflow.status.value

                change = await self.ledger.append(
                    session,
                    case_id=case_id,
                    editor=editor,
                    change_type=change_type,
                    patch=requested,
                    before=before.snapshot(),
                    after=after.snapshot(),
                    now=now,
                )
        except SQLAlchemyError as e:
            logger.exception(
                f"Failed to apply {change_type.value} to case {case_id}",
                extra={"case_id": case_id, "actor": editor},
            )
            raise StorageError(f"Failed to apply {change_type.value}") from e

        change_logger.change_recorded(
            change_type.value,
            editor,
            case_id,
            change.change_id,
            change.sequence,
            sorted(requested),
        )
        return CaseUpdateResult(before=before, after=after, change=change)
