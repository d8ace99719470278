"""
Module: ledger_kernel.models.accounting_period
Responsibility: ORM persistence for accounting periods -- the date ranges
    whose status gates every ledger write.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - code unique per ledger scope; ranges never overlap within a scope
      (checked by PeriodService at creation time).
    - open: posts and voids accepted.  closing: voids only.  closed: nothing.
    - Status changes go through PeriodService, which row-locks the period and
      writes an audit record for each transition.
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import Date, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString
from ledger_kernel.models.journal import DEFAULT_LEDGER_SCOPE


class PeriodStatus(str, Enum):
    """Lifecycle status of an accounting period.

    open -> closing -> closed, closing -> open (cancel), closed -> open (reopen).
    """

    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class AccountingPeriod(TrackedBase):
    """Accounting period with inclusive start and end dates."""

    __tablename__ = "accounting_periods"

    __table_args__ = (
        UniqueConstraint("ledger_scope", "code", name="uq_period_scope_code"),
        Index("idx_period_dates", "start_date", "end_date"),
        Index("idx_period_status", "status"),
    )

    ledger_scope: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default=DEFAULT_LEDGER_SCOPE,
    )

    # e.g. "2025-03", "FY2025-Q1"
    code: Mapped[str] = mapped_column(String(20), nullable=False)

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)

    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[PeriodStatus] = mapped_column(
        String(20),
        default=PeriodStatus.OPEN,
        nullable=False,
    )

    closing_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    closing_started_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True
    )

    closed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    closed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    reopened_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    reopened_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    reopen_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def __repr__(self) -> str:
        return f"<AccountingPeriod {self.code}: {self.status}>"
