"""Read-only query APIs.  Selectors never add, flush, commit or delete."""

from ledger_kernel.selectors.audit_selector import AuditSelector
from ledger_kernel.selectors.journal_selector import JournalSelector
from ledger_kernel.selectors.ledger_selector import LedgerSelector, TrialBalanceRow
from ledger_kernel.selectors.tax_selector import TaxLiabilityRow, TaxSelector

__all__ = [
    "AuditSelector",
    "JournalSelector",
    "LedgerSelector",
    "TaxLiabilityRow",
    "TaxSelector",
    "TrialBalanceRow",
]
