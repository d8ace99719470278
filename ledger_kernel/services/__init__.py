"""
Kernel services.

Flush-only services (caller owns the transaction):
    SequenceService, AuditRecorder, PeriodService, ChartOfAccounts, JournalWriter

Transactional services (one unit of work per call):
    PostingEngine, PeriodManager
"""

from ledger_kernel.services.audit_recorder import AuditRecorder, diff_fields
from ledger_kernel.services.chart_of_accounts import ChartOfAccounts
from ledger_kernel.services.journal_writer import JournalWriter
from ledger_kernel.services.period_manager import PeriodManager
from ledger_kernel.services.period_service import PeriodService
from ledger_kernel.services.posting_engine import PostingEngine, TaxComputer
from ledger_kernel.services.sequence_service import SequenceService

__all__ = [
    "AuditRecorder",
    "ChartOfAccounts",
    "JournalWriter",
    "PeriodManager",
    "PeriodService",
    "PostingEngine",
    "SequenceService",
    "TaxComputer",
    "diff_fields",
]
