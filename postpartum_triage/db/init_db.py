"""Database initialization utilities."""

import logging

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from postpartum_triage import models  # noqa: F401  (registers tables)
from postpartum_triage.core.config import settings
from postpartum_triage.db.base import Base
from postpartum_triage.db.session import AsyncSessionLocal, engine, sqlite_database_path
from postpartum_triage.rules.models import RuleSet
from postpartum_triage.schemas.case import ImportSummary
from postpartum_triage.services.legacy_import import import_if_empty

logger = logging.getLogger(__name__)


async def create_tables(bind: AsyncEngine | None = None) -> None:
    """Create all database tables and the ledger immutability triggers.

    Args:
        bind: Engine to use (defaults to the application engine)
    """
    bind = bind or engine

    path = sqlite_database_path(bind.url)
    if path is not None:
        path.parent.mkdir(parents=True, exist_ok=True)

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")


async def init_db(
    rules: RuleSet,
    bind: AsyncEngine | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> ImportSummary:
    """Create tables and import the legacy logs into an empty store.

    Args:
        rules: Ruleset used to rebuild legacy decisions
        bind: Engine to initialize (defaults to the application engine)
        session_factory: Session factory bound to the same database

    Returns:
        ImportSummary of the legacy import
    """
    await create_tables(bind)

    summary = await import_if_empty(
        session_factory or AsyncSessionLocal,
        rules,
        settings.legacy_case_log_path,
        settings.legacy_change_log_path,
    )
    logger.info(
        f"Database initialization complete "
        f"(imported_cases={summary.imported_cases}, "
        f"imported_changes={summary.imported_changes})"
    )
    return summary
