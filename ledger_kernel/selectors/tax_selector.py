"""
Module: ledger_kernel.selectors.tax_selector
Responsibility: Tax liability reporting from the tax ledger.
Architecture position: Kernel > Selectors.  Read-only.

Void mirror rows carry negated amounts, so a voided sale nets to zero
liability without any filtering.  Scoped reports select tax rows through
the ledger scope of the journal entry that carries them.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import and_, func, select

from ledger_kernel.db.types import round_money, to_decimal
from ledger_kernel.models.accounting_period import AccountingPeriod
from ledger_kernel.models.journal import DEFAULT_LEDGER_SCOPE, JournalEntry
from ledger_kernel.models.tax import TaxLedgerRecord
from ledger_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class TaxLiabilityRow:
    authority_code: str
    taxable_amount: Decimal
    tax_amount: Decimal
    period_code: str | None = None


class TaxSelector(BaseSelector):
    """Sums of the tax ledger per authority (and per period)."""

    @staticmethod
    def _in_scope(query, ledger_scope: str):
        return query.join(
            JournalEntry, TaxLedgerRecord.journal_entry_id == JournalEntry.id
        ).where(JournalEntry.ledger_scope == ledger_scope)

    def liability_by_authority(
        self,
        start_date: date | None = None,
        end_date: date | None = None,
        ledger_scope: str | None = None,
    ) -> list[TaxLiabilityRow]:
        query = (
            select(
                TaxLedgerRecord.authority_code,
                func.sum(TaxLedgerRecord.taxable_amount).label("taxable"),
                func.sum(TaxLedgerRecord.tax_amount).label("tax"),
            )
            .select_from(TaxLedgerRecord)
            .group_by(TaxLedgerRecord.authority_code)
            .order_by(TaxLedgerRecord.authority_code)
        )
        if start_date is not None:
            query = query.where(TaxLedgerRecord.transaction_date >= start_date)
        if end_date is not None:
            query = query.where(TaxLedgerRecord.transaction_date <= end_date)
        if ledger_scope is not None:
            query = self._in_scope(query, ledger_scope)

        return [
            TaxLiabilityRow(
                authority_code=row.authority_code,
                taxable_amount=round_money(to_decimal(row.taxable), self.precision),
                tax_amount=round_money(to_decimal(row.tax), self.precision),
            )
            for row in self.session.execute(query).all()
        ]

    def liability_by_period(
        self, ledger_scope: str = DEFAULT_LEDGER_SCOPE
    ) -> list[TaxLiabilityRow]:
        """Liability per (accounting period, authority), in period order."""
        query = (
            select(
                AccountingPeriod.code.label("period_code"),
                TaxLedgerRecord.authority_code,
                func.sum(TaxLedgerRecord.taxable_amount).label("taxable"),
                func.sum(TaxLedgerRecord.tax_amount).label("tax"),
            )
            .select_from(TaxLedgerRecord)
            .join(
                AccountingPeriod,
                and_(
                    AccountingPeriod.ledger_scope == ledger_scope,
                    TaxLedgerRecord.transaction_date >= AccountingPeriod.start_date,
                    TaxLedgerRecord.transaction_date <= AccountingPeriod.end_date,
                ),
            )
            .group_by(
                AccountingPeriod.code,
                AccountingPeriod.start_date,
                TaxLedgerRecord.authority_code,
            )
            .order_by(AccountingPeriod.start_date, TaxLedgerRecord.authority_code)
        )
        query = self._in_scope(query, ledger_scope)
        return [
            TaxLiabilityRow(
                authority_code=row.authority_code,
                taxable_amount=round_money(to_decimal(row.taxable), self.precision),
                tax_amount=round_money(to_decimal(row.tax), self.precision),
                period_code=row.period_code,
            )
            for row in self.session.execute(query).all()
        ]
