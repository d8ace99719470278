"""
Pytest fixtures for the ledger test suite.

Provides:
- A fresh database per test (temporary SQLite file, or DATABASE_URL)
- Deterministic clock, policy and actors
- A seeded chart of accounts, the 2025 monthly periods and a three-level
  tax zone (state 7%, county 1%, city 1%)
- Log capture

Environment Variables:
- DATABASE_URL: run against another database (e.g. PostgreSQL) instead of
  a temporary SQLite file.  Tables are dropped and recreated per test.

SQLite takes the write lock at BEGIN, so a test must never hold a session
open while calling a service in the same thread.  Use the ``db`` fixture,
which opens a short unit of work, for reads and direct inspection.
"""

import json
import logging
import os
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest
from sqlalchemy.orm import sessionmaker

from ledger_config.reference_data import monthly_periods
from ledger_kernel.db.engine import (
    build_engine,
    create_tables,
    drop_tables,
    session_scope,
)
from ledger_kernel.db.immutability import register_immutability_listeners
from ledger_kernel.domain.clock import DeterministicClock
from ledger_kernel.domain.dtos import Actor, EntryDraft, LineDraft, TaxableItem, TaxRequest
from ledger_kernel.domain.policy import LedgerPolicy
from ledger_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from ledger_kernel.models.journal import SourceType
from ledger_kernel.services.chart_of_accounts import ChartOfAccounts
from ledger_kernel.services.period_manager import PeriodManager
from ledger_kernel.services.posting_engine import PostingEngine
from ledger_tax.reference_service import TaxReferenceService
from ledger_tax.resolver import TaxResolver

ZONE_KEY = "78701"

STANDARD_ACCOUNTS = (
    ("1000", "Cash", "asset"),
    ("1100", "Accounts Receivable", "asset"),
    ("2000", "Accounts Payable", "liability"),
    ("2100", "Sales Tax Payable", "liability"),
    ("3000", "Owner Equity", "equity"),
    ("4000", "Service Revenue", "revenue"),
    ("5000", "Cost of Parts", "expense"),
)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture ledger_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, engine):
            engine.post(draft)
            assert any(r["message"] == "posting_completed" for r in captured_logs())
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("ledger_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def db_engine(tmp_path):
    url = os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'ledger.db'}"
    engine = build_engine(url)
    if engine.dialect.name != "sqlite":
        drop_tables(engine)
    create_tables(engine)
    register_immutability_listeners()
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    """
    Open a short unit of work for reads and direct inspection.

    Usage::

        with db() as session:
            assert session.query(JournalEntry).count() == 0
    """

    @contextmanager
    def _open():
        with session_scope(session_factory) as session:
            yield session

    return _open


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock(datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def policy():
    return LedgerPolicy(
        tax_liability_account_code="2100",
        tax_offset_account_code="1100",
    )


@pytest.fixture
def actor():
    return Actor(actor_id=uuid4(), role="accountant", network_origin="10.0.0.7")


@pytest.fixture
def controller():
    return Actor(actor_id=uuid4(), role="controller", network_origin="10.0.0.8")


@pytest.fixture
def accounts(session_factory, actor):
    """Standard chart of accounts, keyed by code."""
    with session_scope(session_factory) as session:
        chart = ChartOfAccounts(session)
        return {
            code: chart.create_account(code, name, account_type, actor.actor_id)
            for code, name, account_type in STANDARD_ACCOUNTS
        }


@pytest.fixture
def period_manager(session_factory, clock, policy):
    return PeriodManager(session_factory, clock, policy)


@pytest.fixture
def periods(period_manager, controller):
    """The twelve calendar months of 2025, all open, keyed by code."""
    return {
        p["code"]: period_manager.create_period(
            p["code"], p["name"], p["start"], p["end"], controller
        )
        for p in monthly_periods(2025)
    }


@pytest.fixture
def resolver(session_factory):
    return TaxResolver.from_session_factory(session_factory)


@pytest.fixture
def tax_reference(session_factory, resolver, clock, policy):
    return TaxReferenceService(session_factory, resolver, clock, policy)


@pytest.fixture
def tax_zone(tax_reference, controller):
    """
    Zone 78701: STATE 7%, COUNTY 1%, CITY 1% on parts and labor.

    Members are registered city-first to prove resolution orders by level.
    """
    state = tax_reference.create_authority("ST", "State", "state", controller, state_code="TX")
    county = tax_reference.create_authority(
        "ST-CNTY", "County", "county", controller, parent_code="ST", state_code="TX"
    )
    city = tax_reference.create_authority(
        "ST-CITY", "City", "city", controller, parent_code="ST-CNTY", state_code="TX"
    )
    tax_reference.create_zone(ZONE_KEY, ["ST-CITY", "ST-CNTY", "ST"], controller, "Downtown")
    for code, rate in (("ST", "0.07"), ("ST-CNTY", "0.01"), ("ST-CITY", "0.01")):
        for item_type in ("parts", "labor"):
            tax_reference.add_rule(code, item_type, rate, date(2024, 1, 1), controller)
    return {"state": state, "county": county, "city": city}


@pytest.fixture
def engine(session_factory, resolver, clock, policy, accounts, periods, tax_zone):
    """PostingEngine over a fully seeded ledger."""
    return PostingEngine(session_factory, resolver, clock, policy)


# =============================================================================
# Draft builders
# =============================================================================


@pytest.fixture
def make_draft(actor):
    """
    Build a two-line draft: debit ``debit``, credit ``credit``.

    Usage::

        draft = make_draft(Decimal("100.00"))
        draft = make_draft("700.00", tax_items=[("L1", "parts", "700.00")])
    """

    def _make(
        amount="100.00",
        transaction_date=date(2025, 3, 10),
        debit="1100",
        credit="4000",
        tax_items=None,
        location_key=ZONE_KEY,
        draft_actor=None,
        source_type=SourceType.INVOICE,
    ):
        tax = None
        if tax_items is not None:
            tax = TaxRequest(
                location_key=location_key,
                items=[TaxableItem(ref, item_type, value) for ref, item_type, value in tax_items],
            )
        return EntryDraft(
            transaction_date=transaction_date,
            source_type=source_type,
            lines=[LineDraft.debit(debit, amount), LineDraft.credit(credit, amount)],
            actor=draft_actor or actor,
            source_id=f"INV-{uuid4().hex[:8]}",
            tax=tax,
        )

    return _make
