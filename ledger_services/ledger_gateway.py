"""
ledger_services.ledger_gateway -- role-checked entrypoint to the ledger.

Responsibility:
    Check the actor's role against the configured role permissions, then
    delegate to PostingEngine, PeriodManager or TaxReferenceService.
    Deletes are refused: the attempt is audited as ``delete_attempt`` with
    outcome ``rejected`` and DeleteNotSupportedError is raised.

Invariants:
    - A refused call leaves an audit record (outcome "rejected",
      error code PERMISSION_DENIED or DELETE_NOT_SUPPORTED) and no other
      trace.
    - Permission names come from ledger_config.schema.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from ledger_config.schema import (
    PERIOD_CLOSE,
    PERIOD_CREATE,
    PERIOD_REOPEN,
    POST,
    TAX_ADMINISTER,
    VOID,
    LedgerConfig,
)
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import (
    AccountingPeriodInfo,
    Actor,
    AuditRecordInfo,
    EntryDraft,
    JournalEntryInfo,
    VoidResult,
)
from ledger_kernel.exceptions import DeleteNotSupportedError, PermissionDeniedError
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.audit_record import AuditAction
from ledger_kernel.models.journal import DEFAULT_LEDGER_SCOPE
from ledger_kernel.selectors import (
    AuditSelector,
    JournalSelector,
    LedgerSelector,
    TaxLiabilityRow,
    TaxSelector,
    TrialBalanceRow,
)
from ledger_kernel.services.base import TransactionalService
from ledger_kernel.services.period_manager import PeriodManager
from ledger_kernel.services.period_service import PERIOD_TARGET
from ledger_kernel.services.posting_engine import ENTRY_TARGET, PostingEngine
from ledger_tax.models import AuthorityNode, RuleNode, ZoneNode
from ledger_tax.reference_service import RULE_TARGET, TaxReferenceService
from ledger_tax.resolver import TaxResolver

logger = get_logger("services.gateway")


class LedgerGateway(TransactionalService):
    """
    Role-checked facade over posting, voiding, periods and tax reference data.

    Build one with ``from_config``; the pieces can also be injected for
    tests.
    """

    def __init__(
        self,
        config: LedgerConfig,
        engine: PostingEngine,
        periods: PeriodManager,
        tax_reference: TaxReferenceService,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session_factory, clock, config.to_policy())
        self._config = config
        self._engine = engine
        self._periods = periods
        self._tax_reference = tax_reference

    @classmethod
    def from_config(
        cls,
        config: LedgerConfig,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
        resolver: TaxResolver | None = None,
    ) -> LedgerGateway:
        policy = config.to_policy()
        resolver = resolver or TaxResolver.from_session_factory(
            session_factory, precision=policy.currency_precision
        )
        return cls(
            config=config,
            engine=PostingEngine(session_factory, resolver, clock, policy),
            periods=PeriodManager(session_factory, clock, policy),
            tax_reference=TaxReferenceService(session_factory, resolver, clock, policy),
            session_factory=session_factory,
            clock=clock,
        )

    @property
    def config(self) -> LedgerConfig:
        return self._config

    # ------------------------------------------------------------------
    # Access control
    # ------------------------------------------------------------------

    def _require(
        self,
        actor: Actor,
        permission: str,
        *,
        action: AuditAction,
        target_type: str,
        target_id: UUID | str,
        attempted: dict | None = None,
        reason: str | None = None,
    ) -> None:
        if self._config.is_permitted(actor.role, permission):
            return
        error = PermissionDeniedError(str(actor.actor_id), actor.role, permission)
        with LogContext.bind(actor_id=str(actor.actor_id), operation=permission):
            logger.warning(
                "permission_denied",
                extra={
                    "role": actor.role,
                    "permission": permission,
                    "target_type": target_type,
                    "target_id": str(target_id),
                },
            )
        self.record_rejected_attempt(
            error=error,
            action=action,
            target_type=target_type,
            target_id=target_id,
            actor=actor,
            reason=reason,
            attempted=attempted,
        )
        raise error

    # ------------------------------------------------------------------
    # Journal
    # ------------------------------------------------------------------

    def post(self, draft: EntryDraft) -> JournalEntryInfo:
        self._require(
            draft.actor,
            POST,
            action=AuditAction.INSERT,
            target_type=ENTRY_TARGET,
            target_id=draft.entry_id,
            attempted={
                "transaction_date": draft.transaction_date,
                "source_type": draft.source_type.value,
            },
        )
        return self._engine.post(draft)

    def void(self, entry_id: UUID, actor: Actor, reason: str) -> VoidResult:
        self._require(
            actor,
            VOID,
            action=AuditAction.VOID,
            target_type=ENTRY_TARGET,
            target_id=entry_id,
            reason=reason,
        )
        return self._engine.void(entry_id, actor, reason)

    def delete_entry(self, entry_id: UUID, actor: Actor, reason: str | None = None) -> None:
        """
        Always refused.  Journal entries are voided, never deleted.

        Raises:
            DeleteNotSupportedError: Every time, after the attempt is audited.
        """
        self._refuse_delete(ENTRY_TARGET, entry_id, actor, reason)

    def delete_period(self, ref: UUID | str, actor: Actor, reason: str | None = None) -> None:
        """Always refused.  Periods are closed, never deleted."""
        self._refuse_delete(
            PERIOD_TARGET, self._periods.resolve_period_id(ref), actor, reason
        )

    def _refuse_delete(
        self,
        target_type: str,
        target_id: UUID | str,
        actor: Actor,
        reason: str | None,
    ) -> None:
        error = DeleteNotSupportedError(target_type, str(target_id))
        logger.warning(
            "delete_refused",
            extra={
                "target_type": target_type,
                "target_id": str(target_id),
                "actor_id": str(actor.actor_id),
            },
        )
        self.record_rejected_attempt(
            error=error,
            action=AuditAction.DELETE_ATTEMPT,
            target_type=target_type,
            target_id=target_id,
            actor=actor,
            reason=reason,
        )
        raise error

    # ------------------------------------------------------------------
    # Periods
    # ------------------------------------------------------------------

    def _require_period(
        self,
        actor: Actor,
        permission: str,
        ref: UUID | str,
        reason: str | None = None,
        attempted: dict | None = None,
    ) -> None:
        if self._config.is_permitted(actor.role, permission):
            return
        self._require(
            actor,
            permission,
            action=AuditAction.UPDATE,
            target_type=PERIOD_TARGET,
            target_id=self._periods.resolve_period_id(ref),
            reason=reason,
            attempted=attempted,
        )

    def create_period(
        self,
        code: str,
        name: str,
        start_date: date,
        end_date: date,
        actor: Actor,
        ledger_scope: str = DEFAULT_LEDGER_SCOPE,
    ) -> AccountingPeriodInfo:
        self._require(
            actor,
            PERIOD_CREATE,
            action=AuditAction.INSERT,
            target_type=PERIOD_TARGET,
            target_id=code,
            attempted={"code": code, "start_date": start_date, "end_date": end_date},
        )
        return self._periods.create_period(
            code, name, start_date, end_date, actor, ledger_scope
        )

    def begin_closing(self, ref: UUID | str, actor: Actor) -> AccountingPeriodInfo:
        self._require_period(actor, PERIOD_CLOSE, ref, attempted={"status": "closing"})
        return self._periods.begin_closing(ref, actor)

    def cancel_closing(self, ref: UUID | str, actor: Actor) -> AccountingPeriodInfo:
        self._require_period(actor, PERIOD_CLOSE, ref, attempted={"status": "open"})
        return self._periods.cancel_closing(ref, actor)

    def close_period(self, ref: UUID | str, actor: Actor) -> AccountingPeriodInfo:
        self._require_period(actor, PERIOD_CLOSE, ref, attempted={"status": "closed"})
        return self._periods.close_period(ref, actor)

    def reopen_period(self, ref: UUID | str, actor: Actor, reason: str) -> AccountingPeriodInfo:
        self._require_period(
            actor, PERIOD_REOPEN, ref, reason=reason, attempted={"status": "open"}
        )
        return self._periods.reopen_period(ref, actor, reason)

    # ------------------------------------------------------------------
    # Tax reference data
    # ------------------------------------------------------------------

    def _require_tax_admin(self, actor: Actor, target_type: str, target_id, attempted: dict):
        self._require(
            actor,
            TAX_ADMINISTER,
            action=AuditAction.INSERT,
            target_type=target_type,
            target_id=target_id,
            attempted=attempted,
        )

    def create_tax_authority(
        self,
        code: str,
        name: str,
        level: str,
        actor: Actor,
        parent_code: str | None = None,
        state_code: str | None = None,
        agency_name: str | None = None,
    ) -> AuthorityNode:
        self._require_tax_admin(actor, "tax_authority", code, {"code": code, "level": level})
        return self._tax_reference.create_authority(
            code, name, level, actor, parent_code, state_code, agency_name
        )

    def create_tax_zone(
        self,
        location_key: str,
        authority_codes: list[str],
        actor: Actor,
        name: str | None = None,
    ) -> ZoneNode:
        self._require_tax_admin(
            actor, "tax_zone", location_key, {"authorities": list(authority_codes)}
        )
        return self._tax_reference.create_zone(location_key, authority_codes, actor, name)

    def add_tax_rule(
        self,
        authority_code: str,
        item_type: str,
        rate: Decimal | str,
        effective_from: date,
        actor: Actor,
        effective_to: date | None = None,
        is_taxable: bool = True,
        cap_amount: Decimal | str | None = None,
    ) -> RuleNode:
        self._require_tax_admin(
            actor,
            RULE_TARGET,
            f"{authority_code}/{item_type}",
            {"rate": rate, "effective_from": effective_from},
        )
        return self._tax_reference.add_rule(
            authority_code,
            item_type,
            rate,
            effective_from,
            actor,
            effective_to=effective_to,
            is_taxable=is_taxable,
            cap_amount=cap_amount,
        )

    def retire_tax_rule(
        self,
        rule_id: UUID,
        actor: Actor,
        effective_to: date | None = None,
        reason: str | None = None,
    ) -> RuleNode:
        self._require(
            actor,
            TAX_ADMINISTER,
            action=AuditAction.UPDATE,
            target_type=RULE_TARGET,
            target_id=rule_id,
            reason=reason,
        )
        return self._tax_reference.retire_rule(rule_id, actor, effective_to, reason)

    # ------------------------------------------------------------------
    # Reads (no permission checks; callers are already authenticated)
    # ------------------------------------------------------------------

    def get_entry(self, entry_id: UUID) -> JournalEntryInfo:
        with self._unit_of_work() as session:
            return JournalSelector(session).get_entry(entry_id)

    def trial_balance(
        self,
        start_date: date | None = None,
        end_date: date | None = None,
        ledger_scope: str | None = None,
    ) -> list[TrialBalanceRow]:
        with self._unit_of_work() as session:
            return LedgerSelector(session, self._policy.currency_precision).trial_balance(
                start_date, end_date, ledger_scope=ledger_scope
            )

    def tax_liability(
        self,
        start_date: date | None = None,
        end_date: date | None = None,
        ledger_scope: str | None = None,
    ) -> list[TaxLiabilityRow]:
        with self._unit_of_work() as session:
            return TaxSelector(
                session, self._policy.currency_precision
            ).liability_by_authority(start_date, end_date, ledger_scope=ledger_scope)

    def audit_history(self, target_id: UUID | str) -> list[AuditRecordInfo]:
        with self._unit_of_work() as session:
            return AuditSelector(session).history_for(target_id)
