"""Append-only, hash-chained ledger of case mutations.

Every successful outcome or workflow patch produces exactly one entry,
written in the same transaction as the case update. Entries are numbered
per case and each one's hash covers its content and the hash of the
entry before it, so any edit to a stored entry breaks the chain.
"""

import hashlib
import json
import logging
from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from postpartum_triage.models.change_event import CaseChange
from postpartum_triage.schemas.case import CaseSnapshot, ChangeEvent, ChangeType
from postpartum_triage.utils.limits import normalize_limit

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when the database fails to complete an operation."""

    pass


def canonical_json(data: Any) -> str:
    """Stable JSON encoding used for hashing."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def compute_entry_hash(prev_hash: str | None, payload: dict[str, Any]) -> str:
    """SHA256 over the previous entry's hash and this entry's content.

    Args:
        prev_hash: Hash of the previous entry for the case (None for the first)
        payload: Entry content, excluding its own hash

    Returns:
        SHA256 hex digest
    """
    combined = (prev_hash or "") + canonical_json(payload)
    return hashlib.sha256(combined.encode("utf-8")).hexdigest()


def entry_payload(change: ChangeEvent) -> dict[str, Any]:
    """The hashed content of an entry."""
    return change.model_dump(mode="json", exclude={"entry_hash"})


def seal(change: ChangeEvent) -> ChangeEvent:
    """Return the entry with its hash filled in."""
    return change.model_copy(
        update={"entry_hash": compute_entry_hash(change.prev_hash, entry_payload(change))}
    )


def to_row(change: ChangeEvent) -> CaseChange:
    """Database row for a sealed entry."""
    return CaseChange(
        change_id=change.change_id,
        case_id=change.case_id,
        sequence=change.sequence,
        timestamp=change.timestamp,
        editor=change.editor,
        change_type=change.change_type.value,
        prev_hash=change.prev_hash,
        entry_hash=change.entry_hash,
        change=change.model_dump(mode="json"),
    )


class ChangeLedger:
    """Writes and reads the change ledger.

    Appends happen only through the case store, inside its transaction.
    The read operations open their own short read transactions.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def last_entry(self, session: AsyncSession, case_id: str) -> CaseChange | None:
        """Latest entry for a case within the caller's transaction."""
        result = await session.execute(
            select(CaseChange)
            .where(CaseChange.case_id == case_id)
            .order_by(CaseChange.sequence.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def append(
        self,
        session: AsyncSession,
        *,
        case_id: str,
        editor: str,
        change_type: ChangeType,
        patch: dict[str, Any],
        before: CaseSnapshot,
        after: CaseSnapshot,
        now: datetime,
    ) -> ChangeEvent:
        """Append one entry for a case mutation.

        Must be called inside the transaction that updates the case, after
        the case row has been locked.

        Args:
            session: Session of the caller's open transaction
            case_id: Case being changed
            editor: Acting editor identity
            change_type: OUTCOME_UPDATE or WORKFLOW_UPDATE
            patch: Normalized requested fields
            before: Sub-records before the change
            after: Sub-records after the change
            now: Current time; raised to the previous entry's time if earlier

        Returns:
            The sealed ChangeEvent as written
        """
        last = await self.last_entry(session, case_id)
        sequence = 1
        prev_hash = None
        timestamp = now

        if last is not None:
            previous = ChangeEvent.model_validate(last.change)
            sequence = previous.sequence + 1
            prev_hash = previous.entry_hash
            timestamp = max(now, previous.timestamp)

        change = seal(
            ChangeEvent(
                change_id=str(uuid4()),
                case_id=case_id,
                sequence=sequence,
                timestamp=timestamp,
                editor=editor,
                change_type=change_type,
                patch=patch,
                before=before,
                after=after,
                prev_hash=prev_hash,
                entry_hash="",
            )
        )

        session.add(to_row(change))
        await session.flush()
        return change

    async def get_recent(self, limit: Any = None) -> list[ChangeEvent]:
        """Most recent entries across all cases, newest first.

        Args:
            limit: Maximum entries; defaulted and clamped like case listings

        Raises:
            StorageError: If the query fails
        """
        query = (
            select(CaseChange)
            .order_by(CaseChange.timestamp.desc(), CaseChange.sequence.desc())
            .limit(normalize_limit(limit))
        )
        rows = await self._fetch(query)
        return [ChangeEvent.model_validate(row.change) for row in rows]

    async def get_case_history(self, case_id: str) -> list[ChangeEvent]:
        """All entries for a case in sequence order.

        Raises:
            StorageError: If the query fails
        """
        query = (
            select(CaseChange)
            .where(CaseChange.case_id == case_id)
            .order_by(CaseChange.sequence.asc())
        )
        rows = await self._fetch(query)
        return [ChangeEvent.model_validate(row.change) for row in rows]

    async def verify_case_chain(self, case_id: str) -> bool:
        """Recompute the hash chain of a case.

        Returns:
            True if sequences are contiguous from 1 and every hash matches

        Raises:
            StorageError: If the query fails
        """
        query = (
            select(CaseChange)
            .where(CaseChange.case_id == case_id)
            .order_by(CaseChange.sequence.asc())
        )
        rows = await self._fetch(query)

        prev_hash = None
        for expected_sequence, row in enumerate(rows, start=1):
            change = ChangeEvent.model_validate(row.change)
            problems = []
            if row.sequence != expected_sequence or change.sequence != expected_sequence:
                problems.append("sequence")
            if change.prev_hash != prev_hash or row.prev_hash != prev_hash:
                problems.append("prev_hash")
            recomputed = compute_entry_hash(prev_hash, entry_payload(change))
            if recomputed != change.entry_hash or recomputed != row.entry_hash:
                problems.append("entry_hash")
            if problems:
                logger.warning(
                    f"Change chain broken for case {case_id} at entry "
                    f"{row.change_id}: {', '.join(problems)}",
                    extra={"case_id": case_id, "change_id": row.change_id},
                )
                return False
            prev_hash = row.entry_hash

        return True

    async def _fetch(self, query) -> list[CaseChange]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.exception("Change ledger query failed")
            raise StorageError("Change ledger query failed") from e
