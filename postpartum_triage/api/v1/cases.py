"""Case record endpoints.

Every route here requires a staff bearer token; the token subject is the
editor recorded in the change ledger.
"""

from typing import Any

from fastapi import APIRouter, Body, Query
from pydantic import BaseModel

from postpartum_triage.api.deps import CurrentActor, Ledger, Store
from postpartum_triage.schemas.case import CaseRecord, CaseUpdateResult, ChangeEvent

router = APIRouter()


class ChainVerification(BaseModel):
    """Result of re-deriving a case's ledger hash chain."""

    case_id: str
    entries: int
    valid: bool


@router.get(
    "/recent",
    response_model=list[CaseRecord],
    summary="Recent cases",
    description="Most recently created cases, newest first",
)
async def list_recent_cases(
    store: Store,
    actor: CurrentActor,
    limit: int | None = Query(None, description="Maximum cases (capped)"),
) -> list[CaseRecord]:
    """List recent cases."""
    return await store.get_recent(limit)


@router.get(
    "/{case_id}",
    response_model=CaseRecord,
    summary="Get case",
)
async def get_case(case_id: str, store: Store, actor: CurrentActor) -> CaseRecord:
    """Get a single case record."""
    return await store.get_case(case_id)


@router.patch(
    "/{case_id}/outcome",
    response_model=CaseUpdateResult,
    summary="Update outcome",
    description="Partially update the outcome; only the supplied fields change",
)
async def patch_outcome(
    case_id: str,
    store: Store,
    actor: CurrentActor,
    patch: Any = Body(...),
) -> CaseUpdateResult:
    """Apply an outcome patch as the authenticated staff member."""
    return await store.patch_outcome(case_id, patch, actor)


@router.patch(
    "/{case_id}/workflow",
    response_model=CaseUpdateResult,
    summary="Update workflow",
    description="Partially update status, owner or scheduling fields",
)
async def patch_workflow(
    case_id: str,
    store: Store,
    actor: CurrentActor,
    patch: Any = Body(...),
) -> CaseUpdateResult:
    """Apply a workflow patch as the authenticated staff member."""
    return await store.patch_workflow(case_id, patch, actor)


@router.get(
    "/{case_id}/changes",
    response_model=list[ChangeEvent],
    summary="Case change history",
    description="Ledger entries for the case, oldest first",
)
async def get_case_changes(
    case_id: str,
    store: Store,
    ledger: Ledger,
    actor: CurrentActor,
) -> list[ChangeEvent]:
    """List the change history of a case."""
    await store.get_case(case_id)
    return await ledger.get_case_history(case_id)


@router.get(
    "/{case_id}/changes/verify",
    response_model=ChainVerification,
    summary="Verify case hash chain",
)
async def verify_case_changes(
    case_id: str,
    store: Store,
    ledger: Ledger,
    actor: CurrentActor,
) -> ChainVerification:
    """Re-derive the hash chain of a case's ledger entries."""
    await store.get_case(case_id)
    history = await ledger.get_case_history(case_id)
    valid = await ledger.verify_case_chain(case_id)
    return ChainVerification(case_id=case_id, entries=len(history), valid=valid)
