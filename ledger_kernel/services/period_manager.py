"""
Module: ledger_kernel.services.period_manager
Responsibility: Transactional front for PeriodService.  Every call is one
    unit of work; a refused transition is rolled back and then recorded as a
    rejected audit record, so reopen attempts (and every other period
    transition) are always audited whatever their outcome.
Architecture position: Kernel > Services.  Used by ledger_services and by
    reference-data seeding.
"""

from datetime import date
from typing import Callable, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from ledger_kernel.domain.dtos import AccountingPeriodInfo, Actor
from ledger_kernel.exceptions import LedgerKernelError, StoreUnavailableError
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.audit_record import AuditAction
from ledger_kernel.models.journal import DEFAULT_LEDGER_SCOPE
from ledger_kernel.services.base import TransactionalService
from ledger_kernel.services.period_service import PERIOD_TARGET, PeriodService

logger = get_logger("services.period_manager")

T = TypeVar("T")


class PeriodManager(TransactionalService):
    """Period lifecycle, one atomic unit of work per call."""

    def _service(self, session: Session) -> PeriodService:
        return PeriodService(session, self._clock, self._policy)

    def _run(
        self,
        operation: str,
        actor: Actor,
        target_id: UUID | str,
        fn: Callable[[PeriodService], T],
        action: AuditAction = AuditAction.UPDATE,
        reason: str | None = None,
        attempted: dict | None = None,
    ) -> T:
        with LogContext.bind(operation=operation, actor_id=str(actor.actor_id)):
            try:
                with self._unit_of_work() as session:
                    return fn(self._service(session))
            except StoreUnavailableError:
                raise
            except LedgerKernelError as exc:
                logger.warning(
                    "period_operation_rejected",
                    extra={
                        "operation": operation,
                        "target": str(target_id),
                        "error_code": exc.code,
                    },
                )
                self.record_rejected_attempt(
                    error=exc,
                    action=action,
                    target_type=PERIOD_TARGET,
                    target_id=self.resolve_period_id(target_id),
                    actor=actor,
                    reason=reason,
                    attempted=attempted,
                )
                raise

    def resolve_period_id(self, ref: UUID | str) -> UUID | str:
        """Period id for audit purposes (codes are resolved when they exist)."""
        if isinstance(ref, UUID):
            return ref
        with self._unit_of_work() as session:
            try:
                return self._service(session).get_period(ref).id
            except LedgerKernelError:
                return ref

    def create_period(
        self,
        code: str,
        name: str,
        start_date: date,
        end_date: date,
        actor: Actor,
        ledger_scope: str = DEFAULT_LEDGER_SCOPE,
    ) -> AccountingPeriodInfo:
        period_id = uuid4()
        return self._run(
            "create_period",
            actor,
            period_id,
            lambda svc: svc.create_period(
                code, name, start_date, end_date, actor, ledger_scope, period_id=period_id
            ),
            action=AuditAction.INSERT,
            attempted={"code": code, "start_date": start_date, "end_date": end_date},
        )

    def begin_closing(self, ref: UUID | str, actor: Actor) -> AccountingPeriodInfo:
        return self._run(
            "begin_closing", actor, ref, lambda svc: svc.begin_closing(ref, actor)
        )

    def cancel_closing(self, ref: UUID | str, actor: Actor) -> AccountingPeriodInfo:
        return self._run(
            "cancel_closing", actor, ref, lambda svc: svc.cancel_closing(ref, actor)
        )

    def close_period(self, ref: UUID | str, actor: Actor) -> AccountingPeriodInfo:
        return self._run(
            "close_period", actor, ref, lambda svc: svc.close_period(ref, actor)
        )

    def reopen_period(
        self, ref: UUID | str, actor: Actor, reason: str
    ) -> AccountingPeriodInfo:
        return self._run(
            "reopen_period",
            actor,
            ref,
            lambda svc: svc.reopen_period(ref, actor, reason),
            reason=reason,
            attempted={"status": "open"},
        )

    def get_period_for(
        self, effective_date: date, ledger_scope: str = DEFAULT_LEDGER_SCOPE
    ) -> AccountingPeriodInfo:
        with self._unit_of_work() as session:
            return self._service(session).get_period_for(effective_date, ledger_scope)

    def get_period(self, ref: UUID | str) -> AccountingPeriodInfo:
        with self._unit_of_work() as session:
            return self._service(session).get_period(ref)

    def list_periods(
        self, ledger_scope: str = DEFAULT_LEDGER_SCOPE
    ) -> list[AccountingPeriodInfo]:
        with self._unit_of_work() as session:
            return self._service(session).list_periods(ledger_scope)
