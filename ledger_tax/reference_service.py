"""
Module: ledger_tax.reference_service
Responsibility: Audited administration of tax reference data: authorities,
    zones and taxability-matrix rules.
Architecture position: Tax layer.  Transactional (one unit of work per call).

Invariants enforced:
    - Every accepted change writes an audit record in the same unit of work;
      every refused change is rolled back and recorded as rejected.
    - A new rule may not overlap an active rule for the same
      (authority, item type).
    - Rules are retired (end-dated or deactivated), never deleted.
    - The resolver cache is invalidated after each committed change.
"""

from collections.abc import Callable, Sequence
from datetime import date
from decimal import Decimal
from typing import TypeVar
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from ledger_kernel.db.types import to_decimal
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import Actor
from ledger_kernel.domain.policy import LedgerPolicy
from ledger_kernel.exceptions import (
    DuplicateTaxRuleError,
    InvalidTaxReferenceError,
    LedgerKernelError,
    StoreUnavailableError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.audit_record import AuditAction
from ledger_kernel.models.tax import (
    AuthorityLevel,
    ItemType,
    TaxAuthority,
    TaxMatrixRule,
    TaxZone,
    TaxZoneAuthority,
)
from ledger_kernel.services.audit_recorder import AuditRecorder
from ledger_kernel.services.base import TransactionalService
from ledger_tax.models import AuthorityNode, RuleNode, ZoneNode
from ledger_tax.resolver import TaxResolver

logger = get_logger("tax.reference")

AUTHORITY_TARGET = "tax_authority"
ZONE_TARGET = "tax_zone"
RULE_TARGET = "tax_rule"

T = TypeVar("T")


class TaxReferenceService(TransactionalService):
    """Create authorities, zones and rules; retire rules."""

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        resolver: TaxResolver | None = None,
        clock: Clock | None = None,
        policy: LedgerPolicy | None = None,
    ):
        super().__init__(session_factory, clock, policy)
        self._resolver = resolver

    def _run(
        self,
        operation: str,
        actor: Actor,
        target_type: str,
        target_id: UUID | str,
        fn: Callable[[Session, AuditRecorder], T],
        action: AuditAction = AuditAction.INSERT,
        attempted: dict | None = None,
        reason: str | None = None,
    ) -> T:
        with LogContext.bind(operation=operation, actor_id=str(actor.actor_id)):
            try:
                with self._unit_of_work() as session:
                    result = fn(session, AuditRecorder(session, self._clock))
            except StoreUnavailableError:
                raise
            except LedgerKernelError as exc:
                logger.warning(
                    "tax_reference_rejected",
                    extra={"target": str(target_id), "error_code": exc.code},
                )
                self.record_rejected_attempt(
                    error=exc,
                    action=action,
                    target_type=target_type,
                    target_id=target_id,
                    actor=actor,
                    reason=reason,
                    attempted=attempted,
                )
                raise

        if self._resolver is not None:
            self._resolver.invalidate()
        return result

    @staticmethod
    def _authority_by_code(
        session: Session, code: str, for_update: bool = False
    ) -> TaxAuthority:
        stmt = select(TaxAuthority).where(TaxAuthority.code == code)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        authority = session.execute(stmt).scalar_one_or_none()
        if authority is None:
            raise InvalidTaxReferenceError(f"unknown authority {code!r}")
        return authority

    # ------------------------------------------------------------------
    # Authorities
    # ------------------------------------------------------------------

    def create_authority(
        self,
        code: str,
        name: str,
        level: AuthorityLevel | str,
        actor: Actor,
        parent_code: str | None = None,
        state_code: str | None = None,
        agency_name: str | None = None,
    ) -> AuthorityNode:
        authority_id = uuid4()
        level = AuthorityLevel(level)
        attempted = {"code": code, "level": level.value, "parent_code": parent_code}

        def create(session: Session, audit: AuditRecorder) -> AuthorityNode:
            existing = session.execute(
                select(TaxAuthority.id).where(TaxAuthority.code == code)
            ).scalar_one_or_none()
            if existing is not None:
                raise InvalidTaxReferenceError(f"authority {code!r} already exists")
            parent_id = None
            if parent_code is not None:
                parent_id = self._authority_by_code(session, parent_code).id

            authority = TaxAuthority(
                id=authority_id,
                code=code,
                name=name,
                level=level.value,
                parent_id=parent_id,
                state_code=state_code,
                agency_name=agency_name,
                is_active=True,
                created_by_id=actor.actor_id,
            )
            session.add(authority)
            session.flush()
            audit.record(
                action=AuditAction.INSERT,
                target_type=AUTHORITY_TARGET,
                target_id=authority_id,
                actor=actor,
                after=attempted,
            )
            return AuthorityNode.from_model(authority)

        node = self._run(
            "create_authority", actor, AUTHORITY_TARGET, authority_id, create,
            attempted=attempted,
        )
        logger.info("tax_authority_created", extra={"authority_code": code})
        return node

    # ------------------------------------------------------------------
    # Zones
    # ------------------------------------------------------------------

    def create_zone(
        self,
        location_key: str,
        authority_codes: Sequence[str],
        actor: Actor,
        name: str | None = None,
    ) -> ZoneNode:
        """Register a location key; member order is the stored position."""
        zone_id = uuid4()
        attempted = {"location_key": location_key, "authorities": list(authority_codes)}

        def create(session: Session, audit: AuditRecorder) -> ZoneNode:
            existing = session.execute(
                select(TaxZone.id).where(TaxZone.location_key == location_key)
            ).scalar_one_or_none()
            if existing is not None:
                raise InvalidTaxReferenceError(f"zone {location_key!r} already exists")
            if len(set(authority_codes)) != len(authority_codes):
                raise InvalidTaxReferenceError(
                    f"zone {location_key!r} lists an authority twice"
                )

            zone = TaxZone(
                id=zone_id,
                location_key=location_key,
                name=name,
                created_by_id=actor.actor_id,
            )
            session.add(zone)
            for position, code in enumerate(authority_codes):
                session.add(
                    TaxZoneAuthority(
                        zone_id=zone_id,
                        authority_id=self._authority_by_code(session, code).id,
                        position=position,
                        created_by_id=actor.actor_id,
                    )
                )
            session.flush()
            session.refresh(zone)
            audit.record(
                action=AuditAction.INSERT,
                target_type=ZONE_TARGET,
                target_id=zone_id,
                actor=actor,
                after=attempted,
            )
            return ZoneNode.from_model(zone)

        node = self._run(
            "create_zone", actor, ZONE_TARGET, zone_id, create, attempted=attempted
        )
        logger.info("tax_zone_created", extra={"location_key": location_key})
        return node

    # ------------------------------------------------------------------
    # Matrix rules
    # ------------------------------------------------------------------

    def add_rule(
        self,
        authority_code: str,
        item_type: ItemType | str,
        rate: Decimal | str,
        effective_from: date,
        actor: Actor,
        effective_to: date | None = None,
        is_taxable: bool = True,
        cap_amount: Decimal | str | None = None,
    ) -> RuleNode:
        """
        Add a taxability rule.

        Raises:
            InvalidTaxReferenceError: Unknown authority, negative rate or cap,
                or an end date before the start date.
            DuplicateTaxRuleError: An active rule for the same authority and
                item type overlaps the new date range.
        """
        rule_id = uuid4()
        item_type = ItemType(item_type)
        rate = to_decimal(rate)
        cap = to_decimal(cap_amount) if cap_amount is not None else None
        attempted = {
            "authority_code": authority_code,
            "item_type": item_type.value,
            "rate": rate,
            "cap_amount": cap,
            "effective_from": effective_from,
            "effective_to": effective_to,
            "is_taxable": is_taxable,
        }

        def create(session: Session, audit: AuditRecorder) -> RuleNode:
            if rate < 0:
                raise InvalidTaxReferenceError(f"negative rate {rate}")
            if cap is not None and cap < 0:
                raise InvalidTaxReferenceError(f"negative cap {cap}")
            if effective_to is not None and effective_to < effective_from:
                raise InvalidTaxReferenceError(
                    f"rule ends ({effective_to}) before it starts ({effective_from})"
                )
            # Rule writers for one authority queue on its row until commit
            authority = self._authority_by_code(session, authority_code, for_update=True)

            candidate = RuleNode(
                id=rule_id,
                authority_id=authority.id,
                item_type=item_type,
                is_taxable=is_taxable,
                rate=rate,
                effective_from=effective_from,
                effective_to=effective_to,
                cap_amount=cap,
            )
            existing = session.execute(
                select(TaxMatrixRule)
                .where(TaxMatrixRule.authority_id == authority.id)
                .where(TaxMatrixRule.item_type == item_type.value)
                .where(TaxMatrixRule.is_active.is_(True))
            ).scalars()
            for row in existing:
                if candidate.overlaps(RuleNode.from_model(row)):
                    raise DuplicateTaxRuleError(authority_code, item_type.value)

            rule = TaxMatrixRule(
                id=rule_id,
                authority_id=authority.id,
                item_type=item_type.value,
                is_taxable=is_taxable,
                rate=rate,
                cap_amount=cap,
                effective_from=effective_from,
                effective_to=effective_to,
                is_active=True,
                created_by_id=actor.actor_id,
            )
            session.add(rule)
            session.flush()
            audit.record(
                action=AuditAction.INSERT,
                target_type=RULE_TARGET,
                target_id=rule_id,
                actor=actor,
                after=attempted,
            )
            return RuleNode.from_model(rule)

        node = self._run(
            "add_tax_rule", actor, RULE_TARGET, rule_id, create, attempted=attempted
        )
        logger.info(
            "tax_rule_added",
            extra={
                "authority_code": authority_code,
                "item_type": item_type.value,
                "rate": str(rate),
            },
        )
        return node

    def retire_rule(
        self,
        rule_id: UUID,
        actor: Actor,
        effective_to: date | None = None,
        reason: str | None = None,
    ) -> RuleNode:
        """
        End-date a rule, or deactivate it outright when no date is given.
        """

        def retire(session: Session, audit: AuditRecorder) -> RuleNode:
            rule = session.get(TaxMatrixRule, rule_id)
            if rule is None:
                raise InvalidTaxReferenceError(f"unknown tax rule {rule_id}")
            if effective_to is not None and effective_to < rule.effective_from:
                raise InvalidTaxReferenceError(
                    f"retirement date {effective_to} precedes rule start {rule.effective_from}"
                )

            before = {"effective_to": rule.effective_to, "is_active": rule.is_active}
            if effective_to is None:
                rule.is_active = False
            else:
                rule.effective_to = effective_to
            rule.updated_by_id = actor.actor_id
            session.flush()

            audit.record(
                action=AuditAction.UPDATE,
                target_type=RULE_TARGET,
                target_id=rule_id,
                actor=actor,
                before=before,
                after={"effective_to": rule.effective_to, "is_active": rule.is_active},
                reason=reason,
            )
            return RuleNode.from_model(rule)

        node = self._run(
            "retire_tax_rule", actor, RULE_TARGET, rule_id, retire,
            action=AuditAction.UPDATE,
            attempted={"effective_to": effective_to},
            reason=reason,
        )
        logger.info("tax_rule_retired", extra={"rule_id": str(rule_id)})
        return node
