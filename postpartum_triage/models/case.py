"""Triage case model."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from postpartum_triage.db.base import Base

# JSONB on PostgreSQL, JSON text elsewhere
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class TriageCase(Base):
    """One triage decision and its follow-up state.

    The full CaseRecord lives in ``record``; the other columns are copies
    of its fields kept for indexing and listing. Rows are only ever
    inserted and updated through the case store.
    """

    __tablename__ = "triage_cases"

    case_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    level: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        index=True,
    )
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        index=True,
    )
    record: Mapped[dict] = mapped_column(JSONDocument, nullable=False)

    def __repr__(self) -> str:
        return f"<TriageCase {self.case_id} level={self.level} status={self.status}>"
