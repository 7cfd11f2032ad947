"""Change ledger endpoints (read-only)."""

from fastapi import APIRouter, Query

from postpartum_triage.api.deps import CurrentActor, Ledger
from postpartum_triage.schemas.case import ChangeEvent

router = APIRouter()


@router.get(
    "/recent",
    response_model=list[ChangeEvent],
    summary="Recent changes",
    description="Most recent ledger entries across all cases, newest first",
)
async def list_recent_changes(
    ledger: Ledger,
    actor: CurrentActor,
    limit: int | None = Query(None, description="Maximum entries (capped)"),
) -> list[ChangeEvent]:
    """List recent ledger entries."""
    return await ledger.get_recent(limit)
