"""
LedgerGateway tests: role checks and refused deletes.

Verifies:
- Each operation checks the configured role permission
- A refused call is audited as rejected and leaves no other trace
- Deletes are always refused and audited as delete_attempt
- The admin wildcard grants everything
"""

from datetime import date
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from ledger_config.schema import LedgerConfig
from ledger_kernel.domain.dtos import Actor
from ledger_kernel.exceptions import DeleteNotSupportedError, PermissionDeniedError
from ledger_kernel.models.accounting_period import PeriodStatus
from ledger_kernel.models.journal import JournalEntry
from ledger_kernel.models.tax import TaxAuthority
from ledger_services import LedgerGateway


@pytest.fixture
def gateway(engine, session_factory, clock, resolver):
    config = LedgerConfig(
        tax_liability_account_code="2100",
        tax_offset_account_code="1100",
    )
    return LedgerGateway.from_config(config, session_factory, clock, resolver)


@pytest.fixture
def clerk():
    return Actor(actor_id=uuid4(), role="clerk")


@pytest.fixture
def admin():
    return Actor(actor_id=uuid4(), role="admin")


def _entry_count(db) -> int:
    with db() as session:
        return session.execute(select(func.count()).select_from(JournalEntry)).scalar_one()


class TestPosting:

    def test_clerk_can_post(self, gateway, make_draft, clerk):
        posted = gateway.post(make_draft("50.00", draft_actor=clerk))
        assert gateway.get_entry(posted.id).entry_number == posted.entry_number

    def test_unknown_role_refused_and_audited(self, gateway, make_draft, db):
        viewer = Actor(actor_id=uuid4(), role="viewer", network_origin="10.9.9.9")
        draft = make_draft("50.00", draft_actor=viewer)
        before = _entry_count(db)

        with pytest.raises(PermissionDeniedError) as exc_info:
            gateway.post(draft)

        assert exc_info.value.permission == "ledger.post"
        assert _entry_count(db) == before
        history = gateway.audit_history(draft.entry_id)
        assert len(history) == 1
        assert history[0].outcome == "rejected"
        assert history[0].error_code == "PERMISSION_DENIED"
        assert history[0].actor_role == "viewer"
        assert history[0].network_origin == "10.9.9.9"

    def test_clerk_cannot_void(self, gateway, make_draft, clerk, actor):
        posted = gateway.post(make_draft("50.00"))

        with pytest.raises(PermissionDeniedError):
            gateway.void(posted.id, clerk, "wrong customer")

        assert not gateway.get_entry(posted.id).voided
        result = gateway.void(posted.id, actor, "wrong customer")
        assert result.original.voided

    def test_trial_balance_through_gateway(self, gateway, make_draft):
        gateway.post(make_draft("80.00"))
        rows = {r.account_code: r for r in gateway.trial_balance()}
        assert rows["1100"].net == rows["4000"].net * -1


class TestDeletes:

    def test_delete_entry_refused(self, gateway, make_draft, actor, db):
        posted = gateway.post(make_draft("50.00"))

        with pytest.raises(DeleteNotSupportedError) as exc_info:
            gateway.delete_entry(posted.id, actor, "cleanup")

        assert exc_info.value.target_id == str(posted.id)
        assert gateway.get_entry(posted.id).id == posted.id
        last = gateway.audit_history(posted.id)[-1]
        assert last.action == "delete_attempt"
        assert last.outcome == "rejected"
        assert last.error_code == "DELETE_NOT_SUPPORTED"
        assert last.reason == "cleanup"

    def test_delete_refused_even_for_admin(self, gateway, admin, periods):
        with pytest.raises(DeleteNotSupportedError):
            gateway.delete_period("2025-01", admin)

        history = gateway.audit_history(periods["2025-01"].id)
        assert history[-1].action == "delete_attempt"


class TestPeriods:

    def test_accountant_cannot_close(self, gateway, actor, periods):
        with pytest.raises(PermissionDeniedError):
            gateway.close_period("2025-01", actor)

        history = gateway.audit_history(periods["2025-01"].id)
        assert history[-1].outcome == "rejected"
        assert history[-1].error_code == "PERMISSION_DENIED"

    def test_controller_close_and_reopen(self, gateway, controller, actor):
        gateway.begin_closing("2025-01", controller)
        gateway.close_period("2025-01", controller)

        with pytest.raises(PermissionDeniedError):
            gateway.reopen_period("2025-01", actor, "late invoice")

        reopened = gateway.reopen_period("2025-01", controller, "late invoice")
        assert reopened.status == PeriodStatus.OPEN

    def test_create_period_needs_permission(self, gateway, actor, controller):
        with pytest.raises(PermissionDeniedError):
            gateway.create_period(
                "2026-01", "January 2026", date(2026, 1, 1), date(2026, 1, 31), actor
            )
        created = gateway.create_period(
            "2026-01", "January 2026", date(2026, 1, 1), date(2026, 1, 31), controller
        )
        assert created.code == "2026-01"


class TestTaxAdministration:

    def test_controller_lacks_tax_admin(self, gateway, controller, db):
        with pytest.raises(PermissionDeniedError):
            gateway.create_tax_authority("NV", "Nevada", "state", controller)

        with db() as session:
            assert session.execute(
                select(TaxAuthority).where(TaxAuthority.code == "NV")
            ).scalar_one_or_none() is None
        assert gateway.audit_history("NV")[0].error_code == "PERMISSION_DENIED"

    def test_admin_wildcard(self, gateway, admin, make_draft):
        gateway.create_tax_authority("NV", "Nevada", "state", admin, state_code="NV")
        gateway.create_tax_zone("89501", ["NV"], admin, "Reno")
        rule = gateway.add_tax_rule("NV", "parts", "0.0685", date(2024, 1, 1), admin)

        posted = gateway.post(
            make_draft(
                "100.00",
                draft_actor=admin,
                tax_items=[("L1", "parts", "100.00")],
                location_key="89501",
            )
        )
        assert any(line.jurisdiction == "NV" for line in posted.lines)

        retired = gateway.retire_tax_rule(rule.id, admin, reason="rate change")
        assert not retired.is_active

    def test_tax_admin_role(self, session_factory, clock, resolver, engine):
        gateway = LedgerGateway.from_config(
            LedgerConfig(role_permissions={"tax_admin": {"tax.administer"}}),
            session_factory,
            clock,
            resolver,
        )
        tax_admin = Actor(actor_id=uuid4(), role="tax_admin")
        node = gateway.create_tax_authority("OR", "Oregon", "state", tax_admin)
        assert node.code == "OR"
