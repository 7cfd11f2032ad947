"""Append-only change ledger model."""

from datetime import datetime

from sqlalchemy import (
    DDL,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column

from postpartum_triage.db.base import Base
from postpartum_triage.models.case import JSONDocument


class CaseChange(Base):
    """One committed mutation of a triage case.

    IMPORTANT: This model intentionally has no update or delete
    operations. Entries are immutable once written, and database triggers
    reject UPDATE and DELETE on the table.

    Entries are numbered per case and chained: ``entry_hash`` covers the
    entry content and the previous entry's hash.
    """

    __tablename__ = "case_changes"
    __table_args__ = (
        UniqueConstraint("case_id", "sequence", name="uq_case_changes_case_id_sequence"),
        Index("ix_case_changes_case_id_timestamp", "case_id", "timestamp"),
    )

    change_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    case_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("triage_cases.case_id"),
        nullable=False,
        index=True,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )
    editor: Mapped[str] = mapped_column(String(255), nullable=False)
    change_type: Mapped[str] = mapped_column(String(32), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    entry_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    change: Mapped[dict] = mapped_column(JSONDocument, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<CaseChange {self.change_type} #{self.sequence} on {self.case_id} "
            f"by {self.editor}>"
        )


# Immutability triggers, installed whenever the table is created
_table = CaseChange.__table__

for _operation in ("UPDATE", "DELETE"):
    event.listen(
        _table,
        "after_create",
        DDL(
            f"CREATE TRIGGER IF NOT EXISTS case_changes_no_{_operation.lower()} "
            f"BEFORE {_operation} ON case_changes "
            "BEGIN "
            f"SELECT RAISE(ABORT, 'case_changes is append-only: {_operation} is not allowed'); "
            "END"
        ).execute_if(dialect="sqlite"),
    )

event.listen(
    _table,
    "after_create",
    DDL(
        """
        CREATE OR REPLACE FUNCTION prevent_case_change_modification()
        RETURNS TRIGGER AS $$
        BEGIN
            RAISE EXCEPTION 'case_changes is append-only: updates and deletes are not allowed';
            RETURN NULL;
        END;
        $$ LANGUAGE plpgsql
        """
    ).execute_if(dialect="postgresql"),
)

event.listen(
    _table,
    "after_create",
    DDL(
        """
        CREATE TRIGGER case_changes_immutability_trigger
        BEFORE UPDATE OR DELETE ON case_changes
        FOR EACH ROW
        EXECUTE FUNCTION prevent_case_change_modification()
        """
    ).execute_if(dialect="postgresql"),
)
