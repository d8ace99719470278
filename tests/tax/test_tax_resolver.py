"""
TaxResolver and TaxReferenceService tests against the database.

Verifies:
- Zone resolution in level order, UnknownZone for unregistered keys
- compute_tax over the seeded 7% / 1% / 1% zone
- Cache invalidation after reference-data changes
- Reference-data changes are audited; overlapping rules are refused
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.domain.dtos import TaxableItem
from ledger_kernel.exceptions import DuplicateTaxRuleError, UnknownZoneError
from ledger_kernel.models.audit_record import AuditAction, AuditOutcome
from ledger_kernel.models.tax import AuthorityLevel, ItemType
from ledger_kernel.selectors import AuditSelector
from ledger_tax.graph import TaxAuthorityGraph
from ledger_tax.models import AuthorityNode, RuleNode, ZoneNode
from ledger_tax.resolver import TaxResolver

ZONE_KEY = "78701"
ON = date(2025, 3, 10)


class TestResolveZone:

    def test_authorities_in_level_order(self, resolver, tax_zone):
        ids = resolver.resolve_zone(ZONE_KEY)
        assert ids == [tax_zone["state"].id, tax_zone["county"].id, tax_zone["city"].id]

    def test_unknown_zone(self, resolver, tax_zone):
        with pytest.raises(UnknownZoneError) as exc_info:
            resolver.resolve_zone("00000")
        assert exc_info.value.location_key == "00000"


class TestComputeTax:

    def test_700_dollars_across_three_authorities(self, resolver, tax_zone):
        result = resolver.compute_tax(
            [TaxableItem("L1", ItemType.PARTS, Decimal("700.00"))], ZONE_KEY, ON
        )
        assert [(a.authority_code, a.tax_amount) for a in result] == [
            ("ST", Decimal("49.00")),
            ("ST-CNTY", Decimal("7.00")),
            ("ST-CITY", Decimal("7.00")),
        ]

    def test_uncovered_item_type_is_untaxed(self, resolver, tax_zone):
        result = resolver.compute_tax(
            [TaxableItem("L1", ItemType.FREIGHT, Decimal("80.00"))], ZONE_KEY, ON
        )
        assert result == []

    def test_multiple_items(self, resolver, tax_zone):
        result = resolver.compute_tax(
            [
                TaxableItem("parts", ItemType.PARTS, Decimal("100.00")),
                TaxableItem("labor", ItemType.LABOR, Decimal("200.00")),
            ],
            ZONE_KEY,
            ON,
        )
        assert len(result) == 6
        assert sum(a.tax_amount for a in result) == Decimal("27.00")


class TestReferenceAdministration:

    def test_new_rule_visible_after_invalidation(
        self, resolver, tax_reference, tax_zone, controller
    ):
        items = [TaxableItem("L1", ItemType.SUBSCRIPTION, Decimal("100.00"))]
        assert resolver.compute_tax(items, ZONE_KEY, ON) == []

        tax_reference.add_rule("ST", "subscription", "0.05", date(2025, 1, 1), controller)

        result = resolver.compute_tax(items, ZONE_KEY, ON)
        assert [(a.authority_code, a.tax_amount) for a in result] == [("ST", Decimal("5.00"))]

    def test_new_zone_resolves_after_invalidation(
        self, resolver, tax_reference, tax_zone, controller
    ):
        with pytest.raises(UnknownZoneError):
            resolver.resolve_zone("78653")

        tax_reference.create_zone("78653", ["ST", "ST-CNTY"], controller)

        assert resolver.resolve_zone("78653") == [
            tax_zone["state"].id,
            tax_zone["county"].id,
        ]

    def test_overlapping_rule_refused_and_audited(
        self, tax_reference, tax_zone, controller, db
    ):
        with pytest.raises(DuplicateTaxRuleError):
            tax_reference.add_rule("ST", "parts", "0.08", date(2025, 6, 1), controller)

        with db() as session:
            rejected = AuditSelector(session).records(
                target_type="tax_rule", outcome=AuditOutcome.REJECTED
            )
        assert len(rejected) == 1
        assert rejected[0].error_code == "DUPLICATE_TAX_RULE"

    def test_retire_then_replace_rate(self, resolver, tax_reference, tax_zone, controller, db):
        state_rule = next(
            r for r in resolver.graph.rules_for(tax_zone["state"].id, ItemType.PARTS)
        )
        tax_reference.retire_rule(
            state_rule.id, controller, effective_to=date(2025, 6, 30), reason="rate change"
        )
        tax_reference.add_rule("ST", "parts", "0.08", date(2025, 7, 1), controller)

        items = [TaxableItem("L1", ItemType.PARTS, Decimal("100.00"))]
        before = resolver.compute_tax(items, ZONE_KEY, date(2025, 6, 30))
        after = resolver.compute_tax(items, ZONE_KEY, date(2025, 7, 1))
        assert before[0].tax_amount == Decimal("7.00")
        assert after[0].tax_amount == Decimal("8.00")

        with db() as session:
            history = AuditSelector(session).history_for(state_rule.id)
        assert [h.action for h in history] == [
            AuditAction.INSERT.value,
            AuditAction.UPDATE.value,
        ]
        assert history[-1].reason == "rate change"

    def test_deactivated_rule_stops_taxing(self, resolver, tax_reference, tax_zone, controller):
        city_rule = resolver.graph.rules_for(tax_zone["city"].id, ItemType.PARTS)[0]
        tax_reference.retire_rule(city_rule.id, controller)

        result = resolver.compute_tax(
            [TaxableItem("L1", ItemType.PARTS, Decimal("700.00"))], ZONE_KEY, ON
        )
        assert [a.authority_code for a in result] == ["ST", "ST-CNTY"]


class _InvalidatingGraph(TaxAuthorityGraph):
    """Graph whose zone lookup triggers a cache invalidation mid-resolution."""

    on_resolve = None

    def authorities_for_zone(self, zone):
        result = super().authorities_for_zone(zone)
        if self.on_resolve is not None:
            self.on_resolve()
        return result


class TestInvalidationRace:

    @pytest.fixture
    def nodes(self):
        state = AuthorityNode(uuid4(), "ST", "State", AuthorityLevel.STATE)
        city = AuthorityNode(uuid4(), "CITY", "City", AuthorityLevel.CITY, parent_id=state.id)
        rules = [
            RuleNode(uuid4(), a.id, ItemType.PARTS, True, Decimal(rate), date(2024, 1, 1))
            for a, rate in ((state, "0.07"), (city, "0.01"))
        ]
        return state, city, rules

    def test_stale_resolution_not_cached(self, nodes):
        state, city, rules = nodes
        old = _InvalidatingGraph(
            [state, city], [ZoneNode(uuid4(), ZONE_KEY, (state.id, city.id))], rules
        )
        new = TaxAuthorityGraph(
            [state, city], [ZoneNode(uuid4(), ZONE_KEY, (state.id,))], rules
        )
        graphs = iter([old, new])
        resolver = TaxResolver(lambda: next(graphs))
        old.on_resolve = resolver.invalidate

        assert resolver.resolve_zone(ZONE_KEY) == [state.id, city.id]
        assert resolver.resolve_zone(ZONE_KEY) == [state.id]

    def test_compute_tax_uses_one_snapshot(self, nodes):
        state, city, rules = nodes
        old = _InvalidatingGraph(
            [state, city], [ZoneNode(uuid4(), ZONE_KEY, (state.id, city.id))], rules
        )
        # The replacement graph drops the city rule entirely
        new = TaxAuthorityGraph(
            [state, city], [ZoneNode(uuid4(), ZONE_KEY, (state.id, city.id))], rules[:1]
        )
        graphs = iter([old, new])
        resolver = TaxResolver(lambda: next(graphs))
        old.on_resolve = resolver.invalidate

        result = resolver.compute_tax(
            [TaxableItem("L1", ItemType.PARTS, Decimal("100.00"))], ZONE_KEY, ON
        )

        assert [(a.authority_code, a.tax_amount) for a in result] == [
            ("ST", Decimal("7.00")),
            ("CITY", Decimal("1.00")),
        ]
