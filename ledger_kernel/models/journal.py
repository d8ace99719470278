"""
Module: ledger_kernel.models.journal
Responsibility: ORM persistence for journal entries and their lines -- the
    double-entry record of every financial transaction.
Architecture position: Kernel > Models.  May import from db/base.py and
    models/account.py.

Invariants enforced:
    - Sum of debits equals sum of credits per entry (checked by JournalWriter
      before any write; is_balanced is a read-side convenience).
    - Entries and lines are append-only.  The only permitted mutation is the
      one-way void transition on the entry header (db/immutability.py).
    - entry_number is unique and comes from SequenceService, never MAX()+1.
    - Line amounts are non-negative; the side column carries the sign.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TrackedBase, UUIDString
from ledger_kernel.models.account import Account

DEFAULT_LEDGER_SCOPE = "default"


class LineSide(str, Enum):
    """Debit or credit side of a journal line."""

    DEBIT = "debit"
    CREDIT = "credit"

    def opposite(self) -> "LineSide":
        return LineSide.CREDIT if self is LineSide.DEBIT else LineSide.DEBIT


class SourceType(str, Enum):
    """Business document that produced the entry."""

    INVOICE = "invoice"
    BILL = "bill"
    PAYMENT = "payment"
    ADJUSTMENT = "adjustment"
    CREDIT_MEMO = "credit_memo"
    REVERSAL = "reversal"


class JournalEntry(TrackedBase):
    """
    Journal entry header.

    Contract:
        Posted entries are never updated except to flip ``voided`` from False
        to True together with voided_at / voided_by_id / void_reason /
        reversed_by_id.  A voided entry stays in storage and is excluded from
        balance aggregation.
    """

    __tablename__ = "journal_entries"

    __table_args__ = (
        UniqueConstraint("entry_number", name="uq_journal_entry_number"),
        Index("idx_journal_transaction_date", "transaction_date"),
        Index("idx_journal_source", "source_type", "source_id"),
        Index("idx_journal_voided", "voided"),
    )

    entry_number: Mapped[int] = mapped_column(BigInteger, nullable=False)

    ledger_scope: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default=DEFAULT_LEDGER_SCOPE,
    )

    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)

    source_type: Mapped[SourceType] = mapped_column(String(20), nullable=False)

    source_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    posted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    voided: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    voided_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    voided_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    void_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    # Set on the reversing entry, points at the voided original
    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )

    # Set on the voided original, points at its reversing entry
    reversed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    lines: Mapped[list["JournalLine"]] = relationship(
        back_populates="entry",
        cascade="save-update, merge",
        lazy="selectin",
        order_by="JournalLine.line_number",
    )

    def __repr__(self) -> str:
        return f"<JournalEntry #{self.entry_number} voided={self.voided}>"

    @property
    def is_reversal(self) -> bool:
        return self.reversal_of_id is not None

    @property
    def total_debits(self) -> Decimal:
        """Sum of all debit line amounts."""
        return sum(
            (line.amount for line in self.lines if line.side == LineSide.DEBIT),
            Decimal("0"),
        )

    @property
    def total_credits(self) -> Decimal:
        """Sum of all credit line amounts."""
        return sum(
            (line.amount for line in self.lines if line.side == LineSide.CREDIT),
            Decimal("0"),
        )

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits


class JournalLine(TrackedBase):
    """
    One debit or credit line within a journal entry.

    ``jurisdiction`` carries the tax authority code when the line books a tax
    liability, so liabilities can be split per authority from the ledger
    alone.
    """

    __tablename__ = "journal_lines"

    __table_args__ = (
        UniqueConstraint("journal_entry_id", "line_number", name="uq_line_number"),
        Index("idx_line_entry", "journal_entry_id"),
        Index("idx_line_account", "account_id"),
    )

    journal_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=False,
    )

    line_number: Mapped[int] = mapped_column(Integer, nullable=False)

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    side: Mapped[LineSide] = mapped_column(String(6), nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    memo: Mapped[str | None] = mapped_column(String(500), nullable=True)

    jurisdiction: Mapped[str | None] = mapped_column(String(50), nullable=True)

    entry: Mapped[JournalEntry] = relationship(back_populates="lines")

    account: Mapped[Account] = relationship(
        back_populates="journal_lines",
        lazy="joined",
    )

    def __repr__(self) -> str:
        return f"<JournalLine {self.line_number} {self.side} {self.amount}>"

    @property
    def is_debit(self) -> bool:
        return self.side == LineSide.DEBIT

    @property
    def signed_amount(self) -> Decimal:
        """Debits positive, credits negative."""
        return self.amount if self.is_debit else -self.amount
