"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Immutable structures that cross the kernel boundary: the caller's
    EntryDraft (input to PostingEngine.post), the tax request and its
    per-authority TaxAssessment results, and read-side snapshots
    (JournalEntryInfo, AccountingPeriodInfo, AccountInfo, AuditRecordInfo).

Architecture position:
    Kernel > Domain.  No database access.  from_model() class methods are
    boundary converters invoked only from services and selectors.

Invariants enforced:
    - Services and selectors return DTOs, never live ORM objects.
    - Amounts are Decimal.  Validation of amounts (sign, precision, balance)
      happens in the posting engine so that rejections are audited.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from ledger_kernel.db.types import to_decimal
from ledger_kernel.models.accounting_period import PeriodStatus
from ledger_kernel.models.journal import DEFAULT_LEDGER_SCOPE, LineSide, SourceType
from ledger_kernel.models.tax import AuthorityLevel, ItemType

if TYPE_CHECKING:
    from ledger_kernel.models.account import Account as AccountModel
    from ledger_kernel.models.accounting_period import (
        AccountingPeriod as AccountingPeriodModel,
    )
    from ledger_kernel.models.audit_record import AuditRecord as AuditRecordModel
    from ledger_kernel.models.journal import JournalEntry as JournalEntryModel


@dataclass(frozen=True)
class Actor:
    """Authenticated caller: id, role and optional network origin (IP)."""

    actor_id: UUID
    role: str
    network_origin: str | None = None


# ---------------------------------------------------------------------------
# Posting input
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LineDraft:
    """One proposed journal line, addressed by account code."""

    account_code: str
    side: LineSide
    amount: Decimal
    memo: str | None = None
    jurisdiction: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "side", LineSide(self.side))
        object.__setattr__(self, "amount", to_decimal(self.amount))

    @classmethod
    def debit(cls, account_code: str, amount, memo: str | None = None) -> LineDraft:
        return cls(account_code, LineSide.DEBIT, to_decimal(amount), memo)

    @classmethod
    def credit(cls, account_code: str, amount, memo: str | None = None) -> LineDraft:
        return cls(account_code, LineSide.CREDIT, to_decimal(amount), memo)


@dataclass(frozen=True)
class TaxableItem:
    """A taxable line item.  ``line_ref`` ties tax ledger rows back to it."""

    line_ref: str
    item_type: ItemType
    amount: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(self, "item_type", ItemType(self.item_type))
        object.__setattr__(self, "amount", to_decimal(self.amount))


@dataclass(frozen=True)
class TaxRequest:
    """
    Tax to compute and book with an entry.

    Account codes fall back to the ledger policy defaults when omitted.
    The liability account receives the tax credits; the offset account
    (typically receivables) receives the balancing debit.
    """

    location_key: str
    items: tuple[TaxableItem, ...]
    liability_account_code: str | None = None
    offset_account_code: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "items", tuple(self.items))


@dataclass(frozen=True)
class EntryDraft:
    """
    A transaction to post.

    ``entry_id`` is generated up front so a rejected attempt can be audited
    against the id the entry would have had.
    """

    transaction_date: date
    source_type: SourceType
    lines: tuple[LineDraft, ...]
    actor: Actor
    source_id: str | None = None
    description: str | None = None
    tax: TaxRequest | None = None
    ledger_scope: str = DEFAULT_LEDGER_SCOPE
    entry_id: UUID = field(default_factory=uuid4)

    def __post_init__(self) -> None:
        object.__setattr__(self, "source_type", SourceType(self.source_type))
        object.__setattr__(self, "lines", tuple(self.lines))


# ---------------------------------------------------------------------------
# Tax results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TaxAssessment:
    """Tax owed to one authority for one line item."""

    line_ref: str
    item_type: ItemType
    authority_id: UUID
    authority_code: str
    authority_level: AuthorityLevel
    taxable_amount: Decimal
    rate: Decimal
    tax_amount: Decimal


# ---------------------------------------------------------------------------
# Read-side snapshots
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class JournalLineInfo:
    line_number: int
    account_code: str
    side: LineSide
    amount: Decimal
    memo: str | None = None
    jurisdiction: str | None = None

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.side == LineSide.DEBIT else -self.amount


@dataclass(frozen=True)
class JournalEntryInfo:
    """Immutable snapshot of a journal entry and its lines."""

    id: UUID
    entry_number: int
    transaction_date: date
    source_type: SourceType
    source_id: str | None
    description: str | None
    actor_id: UUID
    posted_at: datetime
    voided: bool
    lines: tuple[JournalLineInfo, ...]
    voided_at: datetime | None = None
    voided_by_id: UUID | None = None
    void_reason: str | None = None
    reversal_of_id: UUID | None = None
    reversed_by_id: UUID | None = None

    @property
    def total_debits(self) -> Decimal:
        return sum(
            (ln.amount for ln in self.lines if ln.side == LineSide.DEBIT),
            Decimal("0"),
        )

    @property
    def total_credits(self) -> Decimal:
        return sum(
            (ln.amount for ln in self.lines if ln.side == LineSide.CREDIT),
            Decimal("0"),
        )

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits

    @classmethod
    def from_model(cls, model: JournalEntryModel) -> JournalEntryInfo:
        return cls(
            id=model.id,
            entry_number=model.entry_number,
            transaction_date=model.transaction_date,
            source_type=SourceType(model.source_type),
            source_id=model.source_id,
            description=model.description,
            actor_id=model.actor_id,
            posted_at=model.posted_at,
            voided=model.voided,
            voided_at=model.voided_at,
            voided_by_id=model.voided_by_id,
            void_reason=model.void_reason,
            reversal_of_id=model.reversal_of_id,
            reversed_by_id=model.reversed_by_id,
            lines=tuple(
                JournalLineInfo(
                    line_number=line.line_number,
                    account_code=line.account.code,
                    side=LineSide(line.side),
                    amount=to_decimal(line.amount),
                    memo=line.memo,
                    jurisdiction=line.jurisdiction,
                )
                for line in model.lines
            ),
        )


@dataclass(frozen=True)
class VoidResult:
    """Outcome of a void: the (now voided) original and its reversal."""

    original: JournalEntryInfo
    reversal: JournalEntryInfo


@dataclass(frozen=True)
class AccountingPeriodInfo:
    """Immutable snapshot of an accounting period."""

    id: UUID
    code: str
    name: str
    start_date: date
    end_date: date
    status: PeriodStatus
    ledger_scope: str = DEFAULT_LEDGER_SCOPE
    closed_at: datetime | None = None
    closed_by_id: UUID | None = None
    reopen_count: int = 0

    @property
    def is_open(self) -> bool:
        return self.status == PeriodStatus.OPEN

    @property
    def is_closed(self) -> bool:
        return self.status == PeriodStatus.CLOSED

    def contains_date(self, check_date: date) -> bool:
        return self.start_date <= check_date <= self.end_date

    @classmethod
    def from_model(cls, model: AccountingPeriodModel) -> AccountingPeriodInfo:
        return cls(
            id=model.id,
            code=model.code,
            name=model.name,
            start_date=model.start_date,
            end_date=model.end_date,
            status=PeriodStatus(model.status),
            ledger_scope=model.ledger_scope,
            closed_at=model.closed_at,
            closed_by_id=model.closed_by_id,
            reopen_count=model.reopen_count,
        )


@dataclass(frozen=True)
class AccountInfo:
    id: UUID
    code: str
    name: str
    account_type: str
    normal_balance: str
    is_archived: bool

    @classmethod
    def from_model(cls, model: AccountModel) -> AccountInfo:
        return cls(
            id=model.id,
            code=model.code,
            name=model.name,
            account_type=str(getattr(model.account_type, "value", model.account_type)),
            normal_balance=str(getattr(model.normal_balance, "value", model.normal_balance)),
            is_archived=model.is_archived,
        )


@dataclass(frozen=True)
class AuditRecordInfo:
    """Immutable snapshot of one audit trail row."""

    seq: int
    target_type: str
    target_id: str
    action: str
    outcome: str
    error_code: str | None
    changes: dict | None
    reason: str | None
    actor_id: UUID
    actor_role: str
    network_origin: str | None
    occurred_at: datetime
    hash: str
    prev_hash: str | None

    @classmethod
    def from_model(cls, model: AuditRecordModel) -> AuditRecordInfo:
        return cls(
            seq=model.seq,
            target_type=model.target_type,
            target_id=model.target_id,
            action=str(getattr(model.action, "value", model.action)),
            outcome=str(getattr(model.outcome, "value", model.outcome)),
            error_code=model.error_code,
            changes=model.changes,
            reason=model.reason,
            actor_id=model.actor_id,
            actor_role=model.actor_role,
            network_origin=model.network_origin,
            occurred_at=model.occurred_at,
            hash=model.hash,
            prev_hash=model.prev_hash,
        )
