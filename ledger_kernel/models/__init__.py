"""ORM models for the ledger kernel.  Importing this package registers every table."""

from ledger_kernel.models.account import Account, AccountType, NormalBalance
from ledger_kernel.models.accounting_period import AccountingPeriod, PeriodStatus
from ledger_kernel.models.audit_record import AuditAction, AuditOutcome, AuditRecord
from ledger_kernel.models.journal import (
    DEFAULT_LEDGER_SCOPE,
    JournalEntry,
    JournalLine,
    LineSide,
    SourceType,
)
from ledger_kernel.models.sequence import SequenceCounter
from ledger_kernel.models.tax import (
    AuthorityLevel,
    ItemType,
    TaxAuthority,
    TaxLedgerRecord,
    TaxMatrixRule,
    TaxZone,
    TaxZoneAuthority,
)

__all__ = [
    "Account",
    "AccountType",
    "AccountingPeriod",
    "AuditAction",
    "AuditOutcome",
    "AuditRecord",
    "AuthorityLevel",
    "DEFAULT_LEDGER_SCOPE",
    "ItemType",
    "JournalEntry",
    "JournalLine",
    "LineSide",
    "NormalBalance",
    "PeriodStatus",
    "SequenceCounter",
    "SourceType",
    "TaxAuthority",
    "TaxLedgerRecord",
    "TaxMatrixRule",
    "TaxZone",
    "TaxZoneAuthority",
]
