"""
Module: ledger_kernel.selectors.base
Responsibility: Base class for read-only selectors.
Architecture position: Kernel > Selectors.  Selectors accept a caller-owned
    Session, run queries and return DTOs.  They MUST NOT mutate data.
"""

from abc import ABC

from sqlalchemy.orm import Session

from ledger_kernel.db.types import DEFAULT_CURRENCY_PRECISION


class BaseSelector(ABC):
    """Read-only query object bound to a session."""

    def __init__(self, session: Session, precision: int = DEFAULT_CURRENCY_PRECISION):
        self.session = session
        self.precision = precision
