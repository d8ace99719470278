"""
Posting pipeline tests.

Verifies:
- Balanced drafts persist balanced, with a sequential entry number
- Shape violations (unbalanced, < 2 lines, negative, sub-cent) are refused
  before any write and audited as rejected
- Unknown and archived accounts are refused
- Closed, closing and missing periods refuse posts with no rows written
- Tax lines are appended per authority (or aggregated) and tax ledger rows
  are written with the entry
- An unknown tax zone aborts the post before any write
"""

import dataclasses
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from ledger_kernel.domain.dtos import EntryDraft, LineDraft
from ledger_kernel.domain.policy import TaxLinePolicy
from ledger_kernel.exceptions import (
    InvalidEntryError,
    PeriodClosedError,
    PeriodClosingError,
    PeriodNotFoundError,
    UnbalancedEntryError,
    UnknownAccountError,
    UnknownZoneError,
)
from ledger_kernel.models.audit_record import AuditOutcome
from ledger_kernel.models.journal import JournalEntry, JournalLine, LineSide
from ledger_kernel.models.tax import TaxLedgerRecord
from ledger_kernel.selectors import AuditSelector
from ledger_kernel.services.chart_of_accounts import ChartOfAccounts
from ledger_kernel.services.posting_engine import PostingEngine


def _count(db, model) -> int:
    with db() as session:
        return session.execute(select(func.count()).select_from(model)).scalar_one()


def _rejections(db, target_id):
    with db() as session:
        return [
            r for r in AuditSelector(session).history_for(target_id)
            if r.outcome == AuditOutcome.REJECTED.value
        ]


class TestBalancedPosting:

    def test_balanced_entry_persists_balanced(self, engine, make_draft):
        info = engine.post(make_draft("250.00"))

        assert info.is_balanced
        assert info.total_debits == Decimal("250.00")
        assert len(info.lines) == 2
        assert not info.voided

    def test_entry_numbers_are_sequential(self, engine, make_draft):
        numbers = [engine.post(make_draft()).entry_number for _ in range(3)]
        assert numbers == [1, 2, 3]

    def test_draft_entry_id_is_kept(self, engine, make_draft):
        draft = make_draft()
        assert engine.post(draft).id == draft.entry_id

    def test_accepted_post_is_audited(self, engine, make_draft, db):
        draft = make_draft("10.00")
        engine.post(draft)

        with db() as session:
            history = AuditSelector(session).history_for(draft.entry_id)
        assert len(history) == 1
        assert history[0].action == "insert"
        assert history[0].outcome == "accepted"
        assert history[0].changes["period_code"] == [None, "2025-03"]

    def test_multi_line_entry(self, engine, actor):
        draft = EntryDraft(
            transaction_date=date(2025, 3, 1),
            source_type="bill",
            lines=[
                LineDraft.debit("5000", "60.00"),
                LineDraft.debit("1000", "40.00"),
                LineDraft.credit("2000", "100.00"),
            ],
            actor=actor,
        )
        info = engine.post(draft)
        assert [ln.side for ln in info.lines] == [LineSide.DEBIT, LineSide.DEBIT, LineSide.CREDIT]


class TestShapeValidation:

    def test_unbalanced_refused(self, engine, actor, db):
        draft = EntryDraft(
            transaction_date=date(2025, 3, 1),
            source_type="invoice",
            lines=[LineDraft.debit("1100", "100.00"), LineDraft.credit("4000", "99.99")],
            actor=actor,
        )
        with pytest.raises(UnbalancedEntryError) as exc_info:
            engine.post(draft)

        assert exc_info.value.debits == Decimal("100.00")
        assert _count(db, JournalEntry) == 0
        rejections = _rejections(db, draft.entry_id)
        assert [r.error_code for r in rejections] == ["UNBALANCED_ENTRY"]

    def test_single_line_refused(self, engine, actor):
        draft = EntryDraft(
            transaction_date=date(2025, 3, 1),
            source_type="invoice",
            lines=[LineDraft.debit("1100", "0.00")],
            actor=actor,
        )
        with pytest.raises(InvalidEntryError):
            engine.post(draft)

    def test_negative_amount_refused(self, engine, actor):
        draft = EntryDraft(
            transaction_date=date(2025, 3, 1),
            source_type="adjustment",
            lines=[LineDraft.debit("1100", "-5.00"), LineDraft.credit("4000", "-5.00")],
            actor=actor,
        )
        with pytest.raises(InvalidEntryError):
            engine.post(draft)

    def test_sub_cent_amount_refused(self, engine, make_draft, db):
        with pytest.raises(InvalidEntryError):
            engine.post(make_draft("10.005"))
        assert _count(db, JournalLine) == 0


class TestAccounts:

    def test_unknown_account(self, engine, make_draft, db):
        draft = make_draft(credit="9999")
        with pytest.raises(UnknownAccountError) as exc_info:
            engine.post(draft)
        assert exc_info.value.account_code == "9999"
        assert _count(db, JournalEntry) == 0

    def test_archived_account(self, engine, make_draft, db, actor):
        with db() as session:
            ChartOfAccounts(session).archive("4000", actor.actor_id)

        with pytest.raises(UnknownAccountError) as exc_info:
            engine.post(make_draft())
        assert exc_info.value.archived


class TestPeriodGate:

    def test_closed_period_refuses_post_with_no_rows(
        self, engine, make_draft, period_manager, controller, db
    ):
        period_manager.close_period("2025-02", controller)
        draft = make_draft(transaction_date=date(2025, 2, 14))

        with pytest.raises(PeriodClosedError) as exc_info:
            engine.post(draft)

        assert exc_info.value.period_code == "2025-02"
        assert exc_info.value.effective_date == "2025-02-14"
        assert _count(db, JournalEntry) == 0
        assert _count(db, JournalLine) == 0
        assert [r.error_code for r in _rejections(db, draft.entry_id)] == ["PERIOD_CLOSED"]

    def test_closing_period_refuses_post(self, engine, make_draft, period_manager, controller):
        period_manager.begin_closing("2025-03", controller)
        with pytest.raises(PeriodClosingError):
            engine.post(make_draft(transaction_date=date(2025, 3, 31)))

    def test_no_period(self, engine, make_draft):
        with pytest.raises(PeriodNotFoundError):
            engine.post(make_draft(transaction_date=date(2026, 1, 5)))

    def test_boundary_dates_post(self, engine, make_draft):
        first = engine.post(make_draft(transaction_date=date(2025, 3, 1)))
        last = engine.post(make_draft(transaction_date=date(2025, 3, 31)))
        assert first.transaction_date == date(2025, 3, 1)
        assert last.transaction_date == date(2025, 3, 31)


class TestTaxPosting:

    def test_per_authority_tax_lines(self, engine, make_draft, db):
        info = engine.post(make_draft("700.00", tax_items=[("L1", "parts", "700.00")]))

        tax_lines = [ln for ln in info.lines if ln.account_code == "2100"]
        assert [(ln.jurisdiction, ln.amount) for ln in tax_lines] == [
            ("ST", Decimal("49.00")),
            ("ST-CNTY", Decimal("7.00")),
            ("ST-CITY", Decimal("7.00")),
        ]
        assert info.is_balanced
        assert info.total_debits == Decimal("763.00")

        with db() as session:
            rows = session.execute(
                select(TaxLedgerRecord).where(TaxLedgerRecord.journal_entry_id == info.id)
            ).scalars().all()
        assert sorted(Decimal(r.tax_amount) for r in rows) == [
            Decimal("7.00"), Decimal("7.00"), Decimal("49.00"),
        ]
        assert all(not r.is_reversal for r in rows)

    def test_aggregate_tax_line(
        self, session_factory, resolver, clock, policy, accounts, periods, tax_zone, make_draft
    ):
        aggregate = PostingEngine(
            session_factory,
            resolver,
            clock,
            dataclasses.replace(policy, tax_line_policy=TaxLinePolicy.AGGREGATE),
        )
        info = aggregate.post(make_draft("700.00", tax_items=[("L1", "parts", "700.00")]))

        tax_lines = [ln for ln in info.lines if ln.account_code == "2100"]
        assert [ln.amount for ln in tax_lines] == [Decimal("63.00")]

    def test_unknown_zone_aborts_before_writes(self, engine, make_draft, db):
        draft = make_draft(tax_items=[("L1", "parts", "100.00")], location_key="00000")

        with pytest.raises(UnknownZoneError):
            engine.post(draft)

        assert _count(db, JournalEntry) == 0
        assert _count(db, TaxLedgerRecord) == 0
        assert [r.error_code for r in _rejections(db, draft.entry_id)] == ["UNKNOWN_ZONE"]

    def test_tax_without_resolver_refused(
        self, session_factory, clock, policy, accounts, periods, make_draft
    ):
        engine = PostingEngine(session_factory, None, clock, policy)
        with pytest.raises(InvalidEntryError):
            engine.post(make_draft(tax_items=[("L1", "parts", "100.00")]))

    def test_untaxed_items_add_no_lines(self, engine, make_draft):
        info = engine.post(make_draft("80.00", tax_items=[("L1", "freight", "80.00")]))
        assert len(info.lines) == 2


class TestRejectionAuditTarget:

    def test_rejection_uses_draft_id(self, engine, make_draft, db):
        draft = make_draft(credit="9999")
        with pytest.raises(UnknownAccountError):
            engine.post(draft)

        rejections = _rejections(db, draft.entry_id)
        assert len(rejections) == 1
        assert rejections[0].target_type == "journal_entry"
        assert rejections[0].actor_role == "accountant"
        assert rejections[0].network_origin == "10.0.0.7"

    def test_each_attempt_gets_its_own_record(self, engine, make_draft, db):
        draft = make_draft(credit="9999")
        for _ in range(2):
            with pytest.raises(UnknownAccountError):
                engine.post(draft)
        assert len(_rejections(db, draft.entry_id)) == 2

    def test_unrelated_entry_has_no_history(self, db):
        assert _rejections(db, uuid4()) == []
