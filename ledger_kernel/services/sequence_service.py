"""
Module: ledger_kernel.services.sequence_service
Responsibility: Allocate gap-free, strictly increasing numbers for journal
    entries and audit records from a locked counter row.
Architecture position: Kernel > Services.  Flush-only; the caller owns the
    transaction.

Invariants enforced:
    - SELECT ... FOR UPDATE on the counter row serializes allocation.  The
      aggregate MAX()+1 pattern is never used.
    - A value is consumed only if the caller's transaction commits.
    - Named lock rows (lock()) share the counter table and serialize
      callers that must check for conflicts before inserting.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """
    Transactional named sequences.

    Usage:
        with session_scope() as session:
            number = SequenceService(session).next_value(SequenceService.JOURNAL_ENTRY)
    """

    JOURNAL_ENTRY = "journal_entry"
    AUDIT_RECORD = "audit_record"

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _lock_or_create(self, sequence_name: str) -> SequenceCounter:
        """
        Lock the named counter row, creating it at 0 on first use.

        The row is created inside a savepoint so that a concurrent creator
        does not roll back the caller's other work.
        """
        counter = self._locked_counter(sequence_name)
        if counter is not None:
            return counter

        savepoint = self._session.begin_nested()
        try:
            counter = SequenceCounter(name=sequence_name, current_value=0)
            self._session.add(counter)
            self._session.flush()
            savepoint.commit()
            return counter
        except IntegrityError:
            logger.debug(
                "sequence_counter_race_retry",
                extra={"sequence_name": sequence_name},
            )
            savepoint.rollback()
            counter = self._locked_counter(sequence_name)
            if counter is None:
                raise
            return counter

    def next_value(self, sequence_name: str) -> int:
        """
        Lock the counter row, increment it and return the new value.

        Returns:
            The next value (always > 0).
        """
        counter = self._lock_or_create(sequence_name)
        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def lock(self, lock_name: str) -> None:
        """
        Hold a named lock row until the caller's transaction ends.

        Used to serialize check-then-insert sequences (overlap checks) that
        have no existing row to lock.  The counter value is left untouched.
        """
        self._lock_or_create(f"lock:{lock_name}")

    def current_value(self, sequence_name: str) -> int | None:
        """Current value without incrementing, or None if never allocated."""
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return counter.current_value if counter else None
