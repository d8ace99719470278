"""
Multi-jurisdiction sales tax.

    graph      -- TaxAuthorityGraph, an immutable validated snapshot of
                  authorities, zones and the taxability matrix
    calculator -- pure arithmetic (rounding, caps, per-authority assessment)
    resolver   -- TaxResolver: location key -> ordered authorities -> tax
    reference_service -- audited administration of the reference data

Usage:
    from ledger_tax import TaxResolver

    resolver = TaxResolver.from_session_factory(session_factory)
    assessments = resolver.compute_tax(items, "78701", date(2025, 3, 1))
"""

from ledger_tax.calculator import apply_cap, assess, compute_line_tax, total_tax
from ledger_tax.graph import TaxAuthorityGraph
from ledger_tax.models import AuthorityNode, RuleNode, ZoneNode
from ledger_tax.reference_service import TaxReferenceService
from ledger_tax.resolver import TaxResolver

__all__ = [
    "AuthorityNode",
    "RuleNode",
    "TaxAuthorityGraph",
    "TaxReferenceService",
    "TaxResolver",
    "ZoneNode",
    "apply_cap",
    "assess",
    "compute_line_tax",
    "total_tax",
]
