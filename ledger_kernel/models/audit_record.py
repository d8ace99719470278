"""
Module: ledger_kernel.models.audit_record
Responsibility: ORM persistence for the append-only, hash-chained audit trail
    of every ledger mutation attempt, accepted or rejected.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Rows are never updated or deleted (db/immutability.py).
    - Only AuditRecorder inserts rows.
    - seq is unique and comes from SequenceService.
    - hash = H(target_type | target_id | action | payload_hash | prev_hash).
    - target_id is a loose reference (no FK) so that rejected attempts on
      entries that were never written can still be recorded.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, BigInteger, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base, UUIDString


class AuditAction(str, Enum):
    """Kind of mutation attempted."""

    INSERT = "insert"
    UPDATE = "update"
    VOID = "void"
    DELETE_ATTEMPT = "delete_attempt"


class AuditOutcome(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class AuditRecord(Base):
    """
    One audit trail row.

    ``changes`` holds the before/after snapshot of the mutated fields only:
    ``{"field": [before, after], ...}``.
    """

    __tablename__ = "audit_records"

    __table_args__ = (
        Index("idx_audit_target", "target_type", "target_id"),
        Index("idx_audit_seq", "seq"),
        Index("idx_audit_occurred", "occurred_at"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    # e.g. "journal_entry", "accounting_period", "tax_matrix_rule"
    target_type: Mapped[str] = mapped_column(String(50), nullable=False)

    target_id: Mapped[str] = mapped_column(String(64), nullable=False)

    action: Mapped[AuditAction] = mapped_column(String(20), nullable=False)

    outcome: Mapped[AuditOutcome] = mapped_column(String(10), nullable=False)

    error_code: Mapped[str | None] = mapped_column(String(50), nullable=True)

    changes: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    actor_role: Mapped[str] = mapped_column(String(50), nullable=False)

    network_origin: Mapped[str | None] = mapped_column(String(64), nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditRecord #{self.seq} {self.target_type}/{self.action} {self.outcome}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None
