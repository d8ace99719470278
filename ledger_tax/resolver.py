"""
Module: ledger_tax.resolver
Responsibility: Resolve a location key to its ordered authorities and
    compute per-authority tax for a set of line items.
Architecture position: Tax layer.  Satisfies the posting engine's
    TaxComputer protocol.

The graph and the per-zone resolutions are cached until ``invalidate()``;
reference-data administration calls it after every committed change.
"""

import threading
from collections.abc import Callable, Sequence
from datetime import date
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from ledger_kernel.domain.dtos import TaxableItem, TaxAssessment
from ledger_kernel.exceptions import UnknownZoneError
from ledger_kernel.logging_config import get_logger
from ledger_tax.calculator import assess, total_tax
from ledger_tax.graph import TaxAuthorityGraph
from ledger_tax.models import AuthorityNode

logger = get_logger("tax.resolver")


class TaxResolver:
    """Thread-safe, cached location -> authorities -> tax computation."""

    def __init__(
        self,
        loader: Callable[[], TaxAuthorityGraph],
        precision: int = 2,
    ):
        self._loader = loader
        self._precision = precision
        self._lock = threading.Lock()
        self._graph: TaxAuthorityGraph | None = None
        self._zone_cache: dict[str, tuple[AuthorityNode, ...]] = {}

    @classmethod
    def from_session_factory(
        cls,
        session_factory: sessionmaker[Session] | None = None,
        precision: int = 2,
    ) -> "TaxResolver":
        return cls(
            lambda: TaxAuthorityGraph.from_session_factory(session_factory),
            precision=precision,
        )

    @classmethod
    def from_graph(cls, graph: TaxAuthorityGraph, precision: int = 2) -> "TaxResolver":
        return cls(lambda: graph, precision=precision)

    @property
    def graph(self) -> TaxAuthorityGraph:
        with self._lock:
            if self._graph is None:
                self._graph = self._loader()
            return self._graph

    def invalidate(self) -> None:
        """Drop the cached graph and zone resolutions."""
        with self._lock:
            self._graph = None
            self._zone_cache.clear()
        logger.info("tax_cache_invalidated")

    def _zone_authorities(
        self, graph: TaxAuthorityGraph, location_key: str
    ) -> tuple[AuthorityNode, ...]:
        with self._lock:
            cached = self._zone_cache.get(location_key)
            if cached is not None and self._graph is graph:
                return cached

        zone = graph.zone(location_key)
        if zone is None:
            logger.warning("tax_zone_unknown", extra={"location_key": location_key})
            raise UnknownZoneError(location_key)
        authorities = tuple(graph.authorities_for_zone(zone))

        with self._lock:
            # An invalidate() since the snapshot was taken makes this result stale
            if self._graph is graph:
                self._zone_cache[location_key] = authorities
        return authorities

    def resolve_zone(self, location_key: str) -> list[UUID]:
        """
        Authority ids for a location, state first.

        Raises:
            UnknownZoneError: If no zone is registered for the key.
        """
        return [a.id for a in self._zone_authorities(self.graph, location_key)]

    def compute_tax(
        self,
        items: Sequence[TaxableItem],
        location_key: str,
        on_date: date,
    ) -> list[TaxAssessment]:
        """One assessment per (item, authority) with non-zero tax."""
        graph = self.graph
        authorities = self._zone_authorities(graph, location_key)
        assessments = assess(
            items,
            authorities,
            graph.rule_for,
            on_date,
            self._precision,
        )
        logger.debug(
            "tax_computed",
            extra={
                "location_key": location_key,
                "item_count": len(items),
                "authority_count": len(authorities),
                "tax_total": str(total_tax(assessments)),
            },
        )
        return assessments
