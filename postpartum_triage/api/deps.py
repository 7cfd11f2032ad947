"""FastAPI dependency injection utilities."""

from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from postpartum_triage.core.config import settings
from postpartum_triage.core.security import decode_access_token
from postpartum_triage.db.session import get_session_factory
from postpartum_triage.rules.loader import RulesetLoader
from postpartum_triage.rules.models import RuleSet
from postpartum_triage.services.case_store import CaseStore
from postpartum_triage.services.change_ledger import ChangeLedger
from postpartum_triage.services.triage import TriageService

# Security scheme
security = HTTPBearer(auto_error=False)

# Loaded once at startup; later calls are served from the cache
ruleset_loader = RulesetLoader()


async def get_current_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> dict | None:
    """Extract and decode the current JWT token.

    Args:
        credentials: Bearer token credentials

    Returns:
        Decoded token payload or None
    """
    if not credentials:
        return None

    return decode_access_token(credentials.credentials)


async def get_current_actor(
    token: Annotated[dict | None, Depends(get_current_token)],
) -> str:
    """Get the identity of the authenticated staff member.

    Args:
        token: Decoded JWT token

    Returns:
        Actor identity from the ``sub`` claim

    Raises:
        HTTPException: If not authenticated or not a staff token
    """
    if not token or not str(token.get("sub") or "").strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if token.get("actor_type") != "staff":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Staff authentication required",
        )

    return str(token["sub"]).strip()


def get_ruleset() -> RuleSet:
    """Get the configured ruleset."""
    return ruleset_loader.load(settings.ruleset_filename)


def get_change_ledger(
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
) -> ChangeLedger:
    """Change ledger bound to the application database."""
    return ChangeLedger(session_factory)


def get_case_store(
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
    ledger: Annotated[ChangeLedger, Depends(get_change_ledger)],
) -> CaseStore:
    """Case store bound to the application database."""
    return CaseStore(session_factory, ledger)


def get_triage_service(
    store: Annotated[CaseStore, Depends(get_case_store)],
    rules: Annotated[RuleSet, Depends(get_ruleset)],
) -> TriageService:
    """Triage service using the configured ruleset."""
    return TriageService(store, rules)


# Type aliases for cleaner route signatures
CurrentActor = Annotated[str, Depends(get_current_actor)]
Rules = Annotated[RuleSet, Depends(get_ruleset)]
Store = Annotated[CaseStore, Depends(get_case_store)]
Ledger = Annotated[ChangeLedger, Depends(get_change_ledger)]
Triage = Annotated[TriageService, Depends(get_triage_service)]
