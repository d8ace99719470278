"""
Ledger kernel: double-entry journal, accounting periods, audit trail.

The kernel owns every durable write to the general ledger. Outer layers
(``ledger_services``) reach it through the posting engine and period
manager; tax reference data lives in ``ledger_tax``.
"""
