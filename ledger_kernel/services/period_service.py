"""
Module: ledger_kernel.services.period_service
Responsibility: Accounting period lifecycle and the period gates used inside
    posting and void transactions.
Architecture position: Kernel > Services.  Flush-only (BaseService); the
    transactional wrappers live in services/period_manager.py.

Invariants enforced:
    - Periods in one ledger scope never overlap (start1 <= end2 AND
      start2 <= end1 is rejected).  Optionally a new period must start the
      day after the latest existing one ends.
    - Creation locks a per-scope row before checking for overlap, so two
      concurrent creators cannot both pass the check.
    - open accepts posts and voids; closing accepts voids only; closed
      accepts nothing.  The gates lock the period row (SELECT ... FOR UPDATE)
      so a concurrent close cannot slip between the check and the write.
    - Every status transition writes an audit record
      (target_type "accounting_period", action "update",
      changes {"status": [before, after]}).
    - Reopen requires an elevated role and a reason.

Failure modes:
    - OverlappingPeriodError, PeriodNotFoundError, PeriodClosedError,
      PeriodClosingError, AlreadyClosedError, PeriodNotClosedError,
      InvalidPeriodTransitionError, PermissionDeniedError,
      ReasonRequiredError.
"""

from datetime import date, timedelta
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import AccountingPeriodInfo, Actor
from ledger_kernel.domain.policy import LedgerPolicy
from ledger_kernel.exceptions import (
    AlreadyClosedError,
    InvalidPeriodTransitionError,
    OverlappingPeriodError,
    PeriodClosedError,
    PeriodClosingError,
    PeriodNotClosedError,
    PeriodNotFoundError,
    PermissionDeniedError,
    ReasonRequiredError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.accounting_period import AccountingPeriod, PeriodStatus
from ledger_kernel.models.audit_record import AuditAction
from ledger_kernel.models.journal import DEFAULT_LEDGER_SCOPE
from ledger_kernel.services.audit_recorder import AuditRecorder
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.sequence_service import SequenceService

logger = get_logger("services.period")

PERIOD_TARGET = "accounting_period"
REOPEN_PERMISSION = "period.reopen"


class PeriodService(BaseService):
    """
    Accounting period lifecycle within a caller-owned session.

    Periods are addressed by id (UUID) or by code within the ledger scope.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: LedgerPolicy | None = None,
        audit: AuditRecorder | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._policy = policy or LedgerPolicy()
        self._audit = audit or AuditRecorder(session, self._clock)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_period(
        self,
        code: str,
        name: str,
        start_date: date,
        end_date: date,
        actor: Actor,
        ledger_scope: str = DEFAULT_LEDGER_SCOPE,
        period_id: UUID | None = None,
    ) -> AccountingPeriodInfo:
        """
        Create an open period covering start_date..end_date inclusive.

        Raises:
            ValueError: If start_date > end_date.
            OverlappingPeriodError: If the range overlaps an existing period
                of the scope, or is not contiguous when contiguity is required.
        """
        if start_date > end_date:
            raise ValueError(
                f"Period {code}: start_date {start_date} is after end_date {end_date}"
            )

        # Concurrent creators in one scope queue here until commit
        SequenceService(self.session).lock(f"{PERIOD_TARGET}:{ledger_scope}")
        self._validate_no_overlap(code, start_date, end_date, ledger_scope)
        if self._policy.require_contiguous_periods:
            self._validate_contiguous(code, start_date, ledger_scope)

        period = AccountingPeriod(
            id=period_id or uuid4(),
            ledger_scope=ledger_scope,
            code=code,
            name=name,
            start_date=start_date,
            end_date=end_date,
            status=PeriodStatus.OPEN.value,
            reopen_count=0,
            created_by_id=actor.actor_id,
        )
        self.session.add(period)
        self.session.flush()

        self._audit.record(
            action=AuditAction.INSERT,
            target_type=PERIOD_TARGET,
            target_id=period.id,
            actor=actor,
            after={
                "code": code,
                "start_date": start_date,
                "end_date": end_date,
                "status": PeriodStatus.OPEN.value,
            },
        )

        logger.info(
            "period_created",
            extra={
                "period_code": code,
                "start_date": str(start_date),
                "end_date": str(end_date),
            },
        )
        return AccountingPeriodInfo.from_model(period)

    def _validate_no_overlap(
        self,
        code: str,
        start_date: date,
        end_date: date,
        ledger_scope: str,
    ) -> None:
        overlapping = self.session.execute(
            select(AccountingPeriod).where(
                AccountingPeriod.ledger_scope == ledger_scope,
                AccountingPeriod.start_date <= end_date,
                AccountingPeriod.end_date >= start_date,
            )
        ).scalars().first()

        if overlapping is not None:
            raise OverlappingPeriodError(code, overlapping.code)

    def _validate_contiguous(self, code: str, start_date: date, ledger_scope: str) -> None:
        latest_end = self.session.execute(
            select(AccountingPeriod.end_date)
            .where(AccountingPeriod.ledger_scope == ledger_scope)
            .order_by(AccountingPeriod.end_date.desc())
            .limit(1)
        ).scalar_one_or_none()

        if latest_end is not None and start_date != latest_end + timedelta(days=1):
            raise OverlappingPeriodError(code, None)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def _query_period(self, ref: UUID | str, ledger_scope: str):
        stmt = select(AccountingPeriod)
        if isinstance(ref, UUID):
            return stmt.where(AccountingPeriod.id == ref)
        return stmt.where(
            AccountingPeriod.ledger_scope == ledger_scope,
            AccountingPeriod.code == ref,
        )

    def _get_period_for_update(
        self, ref: UUID | str, ledger_scope: str = DEFAULT_LEDGER_SCOPE
    ) -> AccountingPeriod:
        period = self.session.execute(
            self._query_period(ref, ledger_scope)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if period is None:
            raise PeriodNotFoundError(str(ref))
        return period

    def _get_period_for_date(
        self, effective_date: date, ledger_scope: str, lock: bool
    ) -> AccountingPeriod:
        stmt = select(AccountingPeriod).where(
            AccountingPeriod.ledger_scope == ledger_scope,
            AccountingPeriod.start_date <= effective_date,
            AccountingPeriod.end_date >= effective_date,
        )
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        period = self.session.execute(stmt).scalar_one_or_none()
        if period is None:
            raise PeriodNotFoundError(effective_date)
        return period

    def get_period(
        self, ref: UUID | str, ledger_scope: str = DEFAULT_LEDGER_SCOPE
    ) -> AccountingPeriodInfo:
        period = self.session.execute(
            self._query_period(ref, ledger_scope)
        ).scalar_one_or_none()
        if period is None:
            raise PeriodNotFoundError(str(ref))
        return AccountingPeriodInfo.from_model(period)

    def get_period_for(
        self, effective_date: date, ledger_scope: str = DEFAULT_LEDGER_SCOPE
    ) -> AccountingPeriodInfo:
        """
        Period covering ``effective_date``.

        Raises:
            PeriodNotFoundError: If no period covers the date.
        """
        return AccountingPeriodInfo.from_model(
            self._get_period_for_date(effective_date, ledger_scope, lock=False)
        )

    def list_periods(
        self, ledger_scope: str = DEFAULT_LEDGER_SCOPE
    ) -> list[AccountingPeriodInfo]:
        periods = self.session.execute(
            select(AccountingPeriod)
            .where(AccountingPeriod.ledger_scope == ledger_scope)
            .order_by(AccountingPeriod.start_date)
        ).scalars().all()
        return [AccountingPeriodInfo.from_model(p) for p in periods]

    # ------------------------------------------------------------------
    # Gates (called inside posting / void transactions)
    # ------------------------------------------------------------------

    def assert_postable(
        self, effective_date: date, ledger_scope: str = DEFAULT_LEDGER_SCOPE
    ) -> AccountingPeriodInfo:
        """
        Lock the period covering ``effective_date`` and require it open.

        Raises:
            PeriodNotFoundError: No period covers the date.
            PeriodClosingError: The period is closing.
            PeriodClosedError: The period is closed.
        """
        period = self._get_period_for_date(effective_date, ledger_scope, lock=True)
        if period.status == PeriodStatus.CLOSED:
            logger.warning(
                "period_closed_violation",
                extra={"period_code": period.code, "effective_date": str(effective_date)},
            )
            raise PeriodClosedError(period.code, effective_date)
        if period.status == PeriodStatus.CLOSING:
            logger.warning(
                "period_closing_violation",
                extra={"period_code": period.code, "effective_date": str(effective_date)},
            )
            raise PeriodClosingError(period.code, effective_date)
        return AccountingPeriodInfo.from_model(period)

    def assert_voidable(
        self, effective_date: date, ledger_scope: str = DEFAULT_LEDGER_SCOPE
    ) -> AccountingPeriodInfo:
        """
        Lock the period covering ``effective_date``; open or closing passes.

        Raises:
            PeriodNotFoundError: No period covers the date.
            PeriodClosedError: The period is closed.
        """
        period = self._get_period_for_date(effective_date, ledger_scope, lock=True)
        if period.status == PeriodStatus.CLOSED:
            logger.warning(
                "period_closed_violation",
                extra={"period_code": period.code, "effective_date": str(effective_date)},
            )
            raise PeriodClosedError(period.code, effective_date)
        return AccountingPeriodInfo.from_model(period)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _audit_transition(
        self,
        period: AccountingPeriod,
        before: str,
        actor: Actor,
        reason: str | None = None,
    ) -> None:
        self._audit.record(
            action=AuditAction.UPDATE,
            target_type=PERIOD_TARGET,
            target_id=period.id,
            actor=actor,
            before={"status": before},
            after={"status": period.status},
            reason=reason,
        )

    def begin_closing(
        self, ref: UUID | str, actor: Actor, ledger_scope: str = DEFAULT_LEDGER_SCOPE
    ) -> AccountingPeriodInfo:
        """open -> closing.  New posts are refused; voids still pass."""
        period = self._get_period_for_update(ref, ledger_scope)
        if period.status == PeriodStatus.CLOSED:
            raise AlreadyClosedError(period.code)
        if period.status != PeriodStatus.OPEN:
            raise InvalidPeriodTransitionError(
                period.code, period.status, PeriodStatus.CLOSING.value
            )

        before = period.status
        period.status = PeriodStatus.CLOSING.value
        period.closing_started_at = self._clock.now()
        period.closing_started_by_id = actor.actor_id
        period.updated_by_id = actor.actor_id
        self.session.flush()
        self._audit_transition(period, before, actor)

        logger.info("period_closing_started", extra={"period_code": period.code})
        return AccountingPeriodInfo.from_model(period)

    def cancel_closing(
        self, ref: UUID | str, actor: Actor, ledger_scope: str = DEFAULT_LEDGER_SCOPE
    ) -> AccountingPeriodInfo:
        """closing -> open."""
        period = self._get_period_for_update(ref, ledger_scope)
        if period.status != PeriodStatus.CLOSING:
            raise InvalidPeriodTransitionError(
                period.code, period.status, PeriodStatus.OPEN.value
            )

        before = period.status
        period.status = PeriodStatus.OPEN.value
        period.closing_started_at = None
        period.closing_started_by_id = None
        period.updated_by_id = actor.actor_id
        self.session.flush()
        self._audit_transition(period, before, actor)

        logger.info("period_closing_cancelled", extra={"period_code": period.code})
        return AccountingPeriodInfo.from_model(period)

    def close_period(
        self, ref: UUID | str, actor: Actor, ledger_scope: str = DEFAULT_LEDGER_SCOPE
    ) -> AccountingPeriodInfo:
        """
        (open | closing) -> closed.

        The row lock serializes concurrent closers; the loser sees the
        committed status and gets AlreadyClosedError.
        """
        period = self._get_period_for_update(ref, ledger_scope)
        if period.status == PeriodStatus.CLOSED:
            logger.warning("period_already_closed", extra={"period_code": period.code})
            raise AlreadyClosedError(period.code)

        before = period.status
        period.status = PeriodStatus.CLOSED.value
        period.closed_at = self._clock.now()
        period.closed_by_id = actor.actor_id
        period.updated_by_id = actor.actor_id
        self.session.flush()
        self._audit_transition(period, before, actor)

        logger.info(
            "period_closed",
            extra={"period_code": period.code, "closed_by": str(actor.actor_id)},
        )
        return AccountingPeriodInfo.from_model(period)

    def reopen_period(
        self,
        ref: UUID | str,
        actor: Actor,
        reason: str,
        ledger_scope: str = DEFAULT_LEDGER_SCOPE,
    ) -> AccountingPeriodInfo:
        """
        closed -> open.

        Raises:
            PermissionDeniedError: Actor role is not elevated.
            ReasonRequiredError: Reason is blank.
            PeriodNotClosedError: Period is not closed.
        """
        if actor.role not in self._policy.elevated_roles:
            raise PermissionDeniedError(actor.actor_id, actor.role, REOPEN_PERMISSION)
        if not reason or not reason.strip():
            raise ReasonRequiredError("reopen_period")

        period = self._get_period_for_update(ref, ledger_scope)
        if period.status != PeriodStatus.CLOSED:
            raise PeriodNotClosedError(period.code, period.status)

        before = period.status
        period.status = PeriodStatus.OPEN.value
        period.reopened_at = self._clock.now()
        period.reopened_by_id = actor.actor_id
        period.reopen_count = (period.reopen_count or 0) + 1
        period.updated_by_id = actor.actor_id
        self.session.flush()
        self._audit_transition(period, before, actor, reason=reason)

        logger.warning(
            "period_reopened",
            extra={
                "period_code": period.code,
                "reopened_by": str(actor.actor_id),
                "reopen_count": period.reopen_count,
            },
        )
        return AccountingPeriodInfo.from_model(period)
