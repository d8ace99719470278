"""
Module: ledger_kernel.models.sequence
Responsibility: Named counter rows backing SequenceService.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One row per sequence name.  Values are only ever allocated by locking
      the row (SELECT ... FOR UPDATE) and incrementing it, never by
      aggregate MAX()+1 over the target table.
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base


class SequenceCounter(Base):
    """Current value of one named sequence."""

    __tablename__ = "sequence_counters"

    # e.g. "journal_entry", "audit_record", "lock:accounting_period:<scope>"
    name: Mapped[str] = mapped_column(String(150), nullable=False, unique=True)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
