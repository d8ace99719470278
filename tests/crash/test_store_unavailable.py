"""
Store outage tests.

Verifies:
- An unreachable database surfaces as StoreUnavailableError (retryable)
- The failure is logged and nothing is recorded as a rejection
"""

from datetime import date
from uuid import uuid4

import pytest
from sqlalchemy.orm import sessionmaker

from ledger_kernel.db.engine import build_engine, session_scope
from ledger_kernel.domain.dtos import Actor, EntryDraft, LineDraft
from ledger_kernel.exceptions import StoreUnavailableError
from ledger_kernel.models.journal import SourceType
from ledger_kernel.services.period_manager import PeriodManager
from ledger_kernel.services.posting_engine import PostingEngine


@pytest.fixture
def unreachable_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'missing' / 'dir' / 'ledger.db'}")
    yield sessionmaker(bind=engine)
    engine.dispose()


def test_session_scope_translates_connect_failure(unreachable_factory):
    with pytest.raises(StoreUnavailableError) as exc_info:
        with session_scope(unreachable_factory) as session:
            session.connection()

    assert exc_info.value.retryable
    assert exc_info.value.code == "STORE_UNAVAILABLE"


def test_post_reports_store_unavailable(unreachable_factory, clock, captured_logs):
    engine = PostingEngine(unreachable_factory, None, clock)
    draft = EntryDraft(
        transaction_date=date(2025, 3, 10),
        source_type=SourceType.INVOICE,
        lines=[LineDraft.debit("1100", "10.00"), LineDraft.credit("4000", "10.00")],
        actor=Actor(actor_id=uuid4(), role="accountant"),
    )

    with pytest.raises(StoreUnavailableError):
        engine.post(draft)

    messages = [r["message"] for r in captured_logs()]
    assert "store_unavailable" in messages
    assert "posting_failed" in messages
    assert "posting_rejected" not in messages


def test_period_close_reports_store_unavailable(unreachable_factory, clock):
    manager = PeriodManager(unreachable_factory, clock)
    controller = Actor(actor_id=uuid4(), role="controller")

    with pytest.raises(StoreUnavailableError):
        manager.close_period("2025-03", controller)
