"""
Module: ledger_tax.graph
Responsibility: Immutable, validated snapshot of tax reference data.
Architecture position: Tax layer.  Built from the database by
    ``from_session`` / ``from_session_factory``; queried without I/O.

Invariants enforced at build time:
    - Every zone member and every parent reference names a known authority.
    - Parent composition is acyclic.
    - Rates and caps are non-negative.
    - No two active rules for the same (authority, item type) overlap in time.

Failure modes:
    - InvalidTaxReferenceError for dangling ids, cycles, negative numbers.
    - DuplicateTaxRuleError for overlapping active rules.
"""

from collections.abc import Iterable
from datetime import date
from types import MappingProxyType
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from ledger_kernel.db.engine import session_scope
from ledger_kernel.exceptions import DuplicateTaxRuleError, InvalidTaxReferenceError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.tax import ItemType, TaxAuthority, TaxMatrixRule, TaxZone
from ledger_tax.models import AuthorityNode, RuleNode, ZoneNode

logger = get_logger("tax.graph")


class TaxAuthorityGraph:
    """Authorities, zones and matrix rules, validated and read-only."""

    def __init__(
        self,
        authorities: Iterable[AuthorityNode],
        zones: Iterable[ZoneNode],
        rules: Iterable[RuleNode],
    ):
        self._authorities = MappingProxyType({a.id: a for a in authorities})
        self._by_code = MappingProxyType({a.code: a for a in self._authorities.values()})
        self._zones = MappingProxyType({z.location_key: z for z in zones})

        grouped: dict[tuple[UUID, ItemType], list[RuleNode]] = {}
        for rule in rules:
            grouped.setdefault((rule.authority_id, rule.item_type), []).append(rule)
        self._rules = MappingProxyType(
            {
                key: tuple(sorted(group, key=lambda r: r.effective_from))
                for key, group in grouped.items()
            }
        )

        self._validate()

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_session(cls, session: Session) -> "TaxAuthorityGraph":
        authorities = [
            AuthorityNode.from_model(a)
            for a in session.execute(select(TaxAuthority)).scalars()
        ]
        zones = [
            ZoneNode.from_model(z) for z in session.execute(select(TaxZone)).scalars()
        ]
        rules = [
            RuleNode.from_model(r)
            for r in session.execute(select(TaxMatrixRule)).scalars()
        ]
        graph = cls(authorities, zones, rules)
        logger.info(
            "tax_graph_loaded",
            extra={
                "authority_count": len(authorities),
                "zone_count": len(zones),
                "rule_count": len(rules),
            },
        )
        return graph

    @classmethod
    def from_session_factory(
        cls, session_factory: sessionmaker[Session] | None = None
    ) -> "TaxAuthorityGraph":
        with session_scope(session_factory) as session:
            return cls.from_session(session)

    def _validate(self) -> None:
        for authority in self._authorities.values():
            if authority.parent_id is not None and authority.parent_id not in self._authorities:
                raise InvalidTaxReferenceError(
                    f"authority {authority.code} has unknown parent {authority.parent_id}"
                )
            # Walking the chain detects cycles
            self.ancestors(authority.id)

        for zone in self._zones.values():
            for authority_id in zone.authority_ids:
                if authority_id not in self._authorities:
                    raise InvalidTaxReferenceError(
                        f"zone {zone.location_key} references unknown authority {authority_id}"
                    )

        for (authority_id, item_type), rules in self._rules.items():
            authority = self._authorities.get(authority_id)
            if authority is None:
                raise InvalidTaxReferenceError(
                    f"tax rule references unknown authority {authority_id}"
                )
            for rule in rules:
                if rule.rate < 0:
                    raise InvalidTaxReferenceError(
                        f"negative rate {rule.rate} for {authority.code}/{item_type.value}"
                    )
                if rule.cap_amount is not None and rule.cap_amount < 0:
                    raise InvalidTaxReferenceError(
                        f"negative cap {rule.cap_amount} for {authority.code}/{item_type.value}"
                    )
            active = [r for r in rules if r.is_active]
            for i, rule in enumerate(active):
                for other in active[i + 1:]:
                    if rule.overlaps(other):
                        raise DuplicateTaxRuleError(authority.code, item_type.value)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def authority(self, authority_id: UUID) -> AuthorityNode:
        try:
            return self._authorities[authority_id]
        except KeyError:
            raise InvalidTaxReferenceError(f"unknown authority {authority_id}") from None

    def authority_by_code(self, code: str) -> AuthorityNode | None:
        return self._by_code.get(code)

    def zone(self, location_key: str) -> ZoneNode | None:
        return self._zones.get(location_key)

    @property
    def location_keys(self) -> frozenset[str]:
        return frozenset(self._zones)

    def ancestors(self, authority_id: UUID) -> list[AuthorityNode]:
        """Parent chain of an authority, nearest first (city -> county -> state)."""
        chain: list[AuthorityNode] = []
        seen = {authority_id}
        current = self.authority(authority_id)
        while current.parent_id is not None:
            if current.parent_id in seen:
                raise InvalidTaxReferenceError(
                    f"authority parent cycle at {current.code}"
                )
            seen.add(current.parent_id)
            current = self.authority(current.parent_id)
            chain.append(current)
        return chain

    def authorities_for_zone(self, zone: ZoneNode) -> list[AuthorityNode]:
        """
        Active member authorities in application order.

        Ordered by level (state, county, city, special), then by the
        member's stored position within the zone.
        """
        ranked = [
            (self._authorities[authority_id], position)
            for position, authority_id in enumerate(zone.authority_ids)
        ]
        ranked = [(a, pos) for a, pos in ranked if a.is_active]
        ranked.sort(key=lambda pair: (pair[0].level.rank, pair[1]))
        return [a for a, _ in ranked]

    def rule_for(
        self, authority_id: UUID, item_type: ItemType, on_date: date
    ) -> RuleNode | None:
        """The rule in force on ``on_date``; None when the item is not covered."""
        for rule in self._rules.get((authority_id, ItemType(item_type)), ()):
            if rule.applies_on(on_date):
                return rule
        return None

    def rules_for(self, authority_id: UUID, item_type: ItemType) -> tuple[RuleNode, ...]:
        return self._rules.get((authority_id, ItemType(item_type)), ())
