"""
ledger_services -- the front door in front of the ledger kernel.

Responsibility:
    Role-based access checks and delete-attempt interception on top of
    ``ledger_kernel`` and ``ledger_tax``.  The kernel itself is
    actor-agnostic beyond recording who did what.

Architecture position:
    Services.  May import from ledger_kernel, ledger_tax and ledger_config;
    none of those may import from here.
"""

from ledger_services.ledger_gateway import LedgerGateway

__all__ = ["LedgerGateway"]
