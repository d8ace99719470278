"""
Module: ledger_kernel.services.base
Responsibility: Base classes for the two kinds of kernel service.

    BaseService           -- flush-only; works inside a session the caller
                             owns.  Never commits or rolls back.
    TransactionalService  -- owns its units of work: each public call opens a
                             session, commits on success, rolls back on
                             failure, then records the rejected attempt in a
                             separate unit of work.

Architecture position: Kernel > Services.
"""

from abc import ABC
from contextlib import contextmanager
from typing import Generator
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from ledger_kernel.db.engine import get_session_factory, session_scope
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import Actor
from ledger_kernel.domain.policy import LedgerPolicy
from ledger_kernel.exceptions import (
    AuditWriteFailedError,
    LedgerKernelError,
    StoreUnavailableError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.audit_record import AuditAction, AuditOutcome

logger = get_logger("services.base")


class BaseService(ABC):
    """
    Flush-only service bound to a caller-owned session.

    The caller controls transaction boundaries, so several services can be
    combined into one atomic unit of work.
    """

    def __init__(self, session: Session):
        self.session = session


class TransactionalService(ABC):
    """
    Service whose public calls are each one atomic unit of work.

    Contract:
        - Success: the unit of work commits.
        - LedgerKernelError: the unit of work rolls back, a rejection audit
          record (outcome "rejected", error code) is committed in a second
          unit of work, and the original error is re-raised.
        - StoreUnavailableError: re-raised without a rejection record (the
          store that would hold it is the thing that is down).
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
        policy: LedgerPolicy | None = None,
    ):
        self._session_factory = session_factory or get_session_factory()
        self._clock = clock or SystemClock()
        self._policy = policy or LedgerPolicy()

    @property
    def policy(self) -> LedgerPolicy:
        return self._policy

    @property
    def clock(self) -> Clock:
        return self._clock

    @contextmanager
    def _unit_of_work(self) -> Generator[Session, None, None]:
        with session_scope(self._session_factory) as session:
            yield session

    def record_rejected_attempt(
        self,
        *,
        error: LedgerKernelError,
        action: AuditAction,
        target_type: str,
        target_id: UUID | str,
        actor: Actor,
        reason: str | None = None,
        attempted: dict | None = None,
    ) -> None:
        """
        Commit a rejected-attempt audit record in its own unit of work.

        Raises:
            AuditWriteFailedError: If the rejection cannot be recorded.  It
                carries the code of the original rejection.
        """
        if isinstance(error, StoreUnavailableError):
            return

        from ledger_kernel.services.audit_recorder import AuditRecorder

        try:
            with self._unit_of_work() as session:
                AuditRecorder(session, self._clock).record(
                    action=action,
                    target_type=target_type,
                    target_id=target_id,
                    actor=actor,
                    after=attempted,
                    reason=reason,
                    outcome=AuditOutcome.REJECTED,
                    error_code=error.code,
                )
        except (AuditWriteFailedError, StoreUnavailableError) as exc:
            logger.critical(
                "rejection_audit_failed",
                extra={
                    "target_type": target_type,
                    "target_id": str(target_id),
                    "original_code": error.code,
                },
            )
            raise AuditWriteFailedError(
                target_type,
                AuditAction(action).value,
                str(exc),
                original_code=error.code,
            ) from error
