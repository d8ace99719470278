"""
Read API tests: trial balance, account balances, tax liability, journal
and audit lookups.
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.exceptions import EntryNotFoundError, UnknownAccountError
from ledger_kernel.selectors import JournalSelector, LedgerSelector, TaxSelector


class TestTrialBalance:

    def test_totals_balance(self, engine, make_draft, db):
        engine.post(make_draft("100.00"))
        engine.post(make_draft("250.00", debit="1000", credit="1100"))
        engine.post(make_draft("700.00", tax_items=[("L1", "parts", "700.00")]))

        with db() as session:
            debits, credits = LedgerSelector(session).trial_balance_totals()
        assert debits == credits

    def test_rows_ordered_by_account(self, engine, make_draft, db):
        engine.post(make_draft("100.00", debit="5000", credit="1000"))
        with db() as session:
            rows = LedgerSelector(session).trial_balance()
        assert [r.account_code for r in rows] == ["1000", "5000"]
        assert rows[0].credit_total == Decimal("100.00")
        assert rows[1].debit_total == Decimal("100.00")

    def test_date_range(self, engine, make_draft, db):
        engine.post(make_draft("10.00", transaction_date=date(2025, 1, 15)))
        engine.post(make_draft("20.00", transaction_date=date(2025, 2, 15)))
        engine.post(make_draft("40.00", transaction_date=date(2025, 3, 15)))

        with db() as session:
            rows = LedgerSelector(session).trial_balance(date(2025, 2, 1), date(2025, 2, 28))
        receivable = next(r for r in rows if r.account_code == "1100")
        assert receivable.debit_total == Decimal("20.00")

    def test_empty_ledger(self, accounts, db):
        with db() as session:
            assert LedgerSelector(session).trial_balance() == []


class TestAccountBalance:

    def test_debit_normal_account(self, engine, make_draft, db):
        engine.post(make_draft("100.00"))
        engine.post(make_draft("30.00", debit="1000", credit="1100"))

        with db() as session:
            assert LedgerSelector(session).account_balance("1100") == Decimal("70.00")

    def test_credit_normal_account(self, engine, make_draft, db):
        engine.post(make_draft("100.00"))
        with db() as session:
            assert LedgerSelector(session).account_balance("4000") == Decimal("100.00")

    def test_as_of(self, engine, make_draft, db):
        engine.post(make_draft("10.00", transaction_date=date(2025, 1, 10)))
        engine.post(make_draft("90.00", transaction_date=date(2025, 3, 10)))
        with db() as session:
            assert LedgerSelector(session).account_balance(
                "1100", as_of=date(2025, 1, 31)
            ) == Decimal("10.00")

    def test_unknown_account(self, accounts, db):
        with db() as session:
            with pytest.raises(UnknownAccountError):
                LedgerSelector(session).account_balance("9999")


class TestTaxLiability:

    def test_by_authority(self, engine, make_draft, db):
        engine.post(make_draft("700.00", tax_items=[("L1", "parts", "700.00")]))
        engine.post(make_draft("100.00", tax_items=[("L1", "labor", "100.00")]))

        with db() as session:
            rows = TaxSelector(session).liability_by_authority()
        assert {r.authority_code: r.tax_amount for r in rows} == {
            "ST": Decimal("56.00"),
            "ST-CNTY": Decimal("8.00"),
            "ST-CITY": Decimal("8.00"),
        }
        state = next(r for r in rows if r.authority_code == "ST")
        assert state.taxable_amount == Decimal("800.00")

    def test_by_period(self, engine, make_draft, db):
        engine.post(
            make_draft("100.00", transaction_date=date(2025, 1, 5),
                       tax_items=[("L1", "parts", "100.00")])
        )
        engine.post(
            make_draft("200.00", transaction_date=date(2025, 2, 5),
                       tax_items=[("L1", "parts", "200.00")])
        )

        with db() as session:
            rows = TaxSelector(session).liability_by_period()
        state_rows = [(r.period_code, r.tax_amount) for r in rows if r.authority_code == "ST"]
        assert state_rows == [("2025-01", Decimal("7.00")), ("2025-02", Decimal("14.00"))]

    def test_liability_matches_tax_lines(self, engine, make_draft, db):
        engine.post(make_draft("700.00", tax_items=[("L1", "parts", "700.00")]))
        with db() as session:
            tax_total = sum(r.tax_amount for r in TaxSelector(session).liability_by_authority())
            payable = LedgerSelector(session).account_balance("2100")
        assert tax_total == payable == Decimal("63.00")


class TestLedgerScope:

    @pytest.fixture
    def branch_entries(self, engine, make_draft, period_manager, controller):
        period_manager.create_period(
            "B7-2025-03", "Branch March", date(2025, 3, 1), date(2025, 3, 31),
            controller, ledger_scope="branch-7",
        )
        engine.post(make_draft("700.00", tax_items=[("L1", "parts", "700.00")]))
        engine.post(
            replace(
                make_draft("100.00", tax_items=[("L1", "parts", "100.00")]),
                ledger_scope="branch-7",
            )
        )

    def test_trial_balance_per_scope(self, branch_entries, db):
        with db() as session:
            selector = LedgerSelector(session)
            branch = selector.trial_balance_totals(ledger_scope="branch-7")
            combined = selector.trial_balance_totals()
        assert branch == (Decimal("109.00"), Decimal("109.00"))
        assert combined == (Decimal("872.00"), Decimal("872.00"))

    def test_account_balance_per_scope(self, branch_entries, db):
        with db() as session:
            selector = LedgerSelector(session)
            assert selector.account_balance("4000", ledger_scope="branch-7") == Decimal("100.00")
            assert selector.account_balance("4000") == Decimal("800.00")

    def test_tax_liability_per_scope(self, branch_entries, db):
        with db() as session:
            selector = TaxSelector(session)
            branch = selector.liability_by_authority(ledger_scope="branch-7")
            by_period = selector.liability_by_period(ledger_scope="branch-7")
        assert {r.authority_code: r.tax_amount for r in branch} == {
            "ST": Decimal("7.00"),
            "ST-CNTY": Decimal("1.00"),
            "ST-CITY": Decimal("1.00"),
        }
        assert [(r.period_code, r.tax_amount) for r in by_period if r.authority_code == "ST"] == [
            ("B7-2025-03", Decimal("7.00"))
        ]

    def test_unknown_scope_is_empty(self, branch_entries, db):
        with db() as session:
            assert LedgerSelector(session).trial_balance(ledger_scope="nowhere") == []
            assert TaxSelector(session).liability_by_authority(ledger_scope="nowhere") == []


class TestJournalSelector:

    def test_get_entry(self, engine, make_draft, db):
        posted = engine.post(make_draft("12.34"))
        with db() as session:
            fetched = JournalSelector(session).get_entry(posted.id)
        assert fetched.id == posted.id
        assert fetched.entry_number == posted.entry_number
        assert fetched.lines == posted.lines

    def test_get_missing_entry(self, accounts, db):
        with db() as session:
            with pytest.raises(EntryNotFoundError):
                JournalSelector(session).get_entry(uuid4())

    def test_get_by_number(self, engine, make_draft, db):
        posted = engine.post(make_draft())
        with db() as session:
            assert JournalSelector(session).get_by_number(posted.entry_number).id == posted.id
            assert JournalSelector(session).get_by_number(999) is None
