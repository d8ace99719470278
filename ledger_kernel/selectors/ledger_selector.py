"""
Module: ledger_kernel.selectors.ledger_selector
Responsibility: Trial balance and account balances computed from journal
    lines at query time (never stored).
Architecture position: Kernel > Selectors.  Read-only.

Invariants enforced:
    - Voided entries and the reversals that void them are excluded together,
      so a voided transaction contributes nothing.  With include_voided=True
      both are included and still net to zero per account.
    - A ledger_scope argument restricts every figure to entries of that
      scope; omitted, all scopes are summed together.
    - Total debits equal total credits across every trial balance.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import and_, case, func, select

from ledger_kernel.db.types import round_money, to_decimal
from ledger_kernel.exceptions import UnknownAccountError
from ledger_kernel.models.account import Account, NormalBalance
from ledger_kernel.models.journal import JournalEntry, JournalLine, LineSide
from ledger_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class TrialBalanceRow:
    account_code: str
    account_name: str
    account_type: str
    debit_total: Decimal
    credit_total: Decimal

    @property
    def net(self) -> Decimal:
        """Debits minus credits."""
        return self.debit_total - self.credit_total


class LedgerSelector(BaseSelector):
    """Balances over non-voided journal lines."""

    def _sums(self):
        debit_sum = func.sum(
            case(
                (JournalLine.side == LineSide.DEBIT.value, JournalLine.amount),
                else_=0,
            )
        ).label("debit_total")
        credit_sum = func.sum(
            case(
                (JournalLine.side == LineSide.CREDIT.value, JournalLine.amount),
                else_=0,
            )
        ).label("credit_total")
        return debit_sum, credit_sum

    @staticmethod
    def _live_entries_filter():
        """Entry is neither voided nor the reversal of a voided entry."""
        return and_(
            JournalEntry.voided.is_(False),
            JournalEntry.reversal_of_id.is_(None),
        )

    def trial_balance(
        self,
        start_date: date | None = None,
        end_date: date | None = None,
        include_voided: bool = False,
        ledger_scope: str | None = None,
    ) -> list[TrialBalanceRow]:
        """
        Per-account debit and credit totals, ordered by account code.

        Entries are selected by transaction date within start..end inclusive
        (either bound may be omitted).
        """
        debit_sum, credit_sum = self._sums()
        query = (
            select(
                Account.code,
                Account.name,
                Account.account_type,
                debit_sum,
                credit_sum,
            )
            .select_from(JournalLine)
            .join(JournalEntry, JournalLine.journal_entry_id == JournalEntry.id)
            .join(Account, JournalLine.account_id == Account.id)
            .group_by(Account.code, Account.name, Account.account_type)
            .order_by(Account.code)
        )
        if not include_voided:
            query = query.where(self._live_entries_filter())
        if start_date is not None:
            query = query.where(JournalEntry.transaction_date >= start_date)
        if end_date is not None:
            query = query.where(JournalEntry.transaction_date <= end_date)
        if ledger_scope is not None:
            query = query.where(JournalEntry.ledger_scope == ledger_scope)

        return [
            TrialBalanceRow(
                account_code=row.code,
                account_name=row.name,
                account_type=str(row.account_type),
                debit_total=round_money(to_decimal(row.debit_total), self.precision),
                credit_total=round_money(to_decimal(row.credit_total), self.precision),
            )
            for row in self.session.execute(query).all()
        ]

    def trial_balance_totals(
        self,
        start_date: date | None = None,
        end_date: date | None = None,
        ledger_scope: str | None = None,
    ) -> tuple[Decimal, Decimal]:
        """(total debits, total credits) across the trial balance."""
        rows = self.trial_balance(start_date, end_date, ledger_scope=ledger_scope)
        return (
            sum((r.debit_total for r in rows), Decimal("0")),
            sum((r.credit_total for r in rows), Decimal("0")),
        )

    def account_balance(
        self,
        account_code: str,
        as_of: date | None = None,
        ledger_scope: str | None = None,
    ) -> Decimal:
        """
        Balance on the account's normal side as of a date (inclusive).

        Debit-normal accounts report debits - credits; credit-normal accounts
        report credits - debits.

        Raises:
            UnknownAccountError: If the account code does not exist.
        """
        account = self.session.execute(
            select(Account).where(Account.code == account_code)
        ).scalar_one_or_none()
        if account is None:
            raise UnknownAccountError(account_code)

        debit_sum, credit_sum = self._sums()
        query = (
            select(debit_sum, credit_sum)
            .select_from(JournalLine)
            .join(JournalEntry, JournalLine.journal_entry_id == JournalEntry.id)
            .where(JournalLine.account_id == account.id)
            .where(self._live_entries_filter())
        )
        if as_of is not None:
            query = query.where(JournalEntry.transaction_date <= as_of)
        if ledger_scope is not None:
            query = query.where(JournalEntry.ledger_scope == ledger_scope)

        row = self.session.execute(query).one()
        debits = to_decimal(row.debit_total)
        credits = to_decimal(row.credit_total)
        balance = debits - credits
        if account.normal_balance == NormalBalance.CREDIT:
            balance = -balance
        return round_money(balance, self.precision)

