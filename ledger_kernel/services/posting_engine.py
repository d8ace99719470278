"""
Module: ledger_kernel.services.posting_engine
Responsibility: Orchestrates post and void.  Each public call is exactly one
    atomic unit of work: validation, period gate, tax, entry + lines, tax
    ledger rows and the audit record commit together or not at all.
Architecture position: Kernel > Services.  Transactional (owns its
    sessions).  Calls PeriodService, ChartOfAccounts, JournalWriter and
    AuditRecorder inside the unit of work; calls the tax computer before it.

Post pipeline:
    1. Shape: >= 2 lines, amounts >= 0 and representable at currency
       precision, debits == credits.                (InvalidEntry, Unbalanced)
    2. Tax: zone resolves, per-authority tax computed. (UnknownZone)
       Tax is computed before the unit of work opens so an unknown zone is
       refused before any write.
    3. Unit of work: accounts exist and are not archived (UnknownAccount);
       period open (PeriodClosed / PeriodClosing / PeriodNotFound, row lock);
       entry_number from the locked counter; entry + lines + tax ledger +
       audit "insert".

Void pipeline (one unit of work):
    reason present -> entry exists (locked) -> not already voided -> original
    date voidable (open or closing) -> reversal date voidable -> mirrored
    reversing entry -> original marked voided -> mirrored tax rows -> audit
    "void" on the original and "insert" on the reversal.

Rejections:
    The unit of work rolls back, then a rejection audit record (outcome
    "rejected", error code) is committed separately and the typed error is
    re-raised.  StoreUnavailableError is re-raised without one.  No
    financial write is ever retried in-process.
"""

import time
from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from typing import Protocol
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from ledger_kernel.db.types import is_representable
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import (
    Actor,
    EntryDraft,
    JournalEntryInfo,
    LineDraft,
    TaxableItem,
    TaxAssessment,
    TaxRequest,
    VoidResult,
)
from ledger_kernel.domain.policy import LedgerPolicy, ReversalDating, TaxLinePolicy
from ledger_kernel.exceptions import (
    AlreadyVoidedError,
    InvalidEntryError,
    LedgerKernelError,
    StoreUnavailableError,
    UnbalancedEntryError,
    VoidReasonRequiredError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.audit_record import AuditAction
from ledger_kernel.models.journal import JournalEntry, LineSide
from ledger_kernel.services.audit_recorder import AuditRecorder
from ledger_kernel.services.base import TransactionalService
from ledger_kernel.services.chart_of_accounts import ChartOfAccounts
from ledger_kernel.services.journal_writer import JournalWriter
from ledger_kernel.services.period_service import PeriodService

logger = get_logger("services.posting_engine")

ENTRY_TARGET = "journal_entry"


class TaxComputer(Protocol):
    """What the engine needs from the tax resolver."""

    def compute_tax(
        self,
        items: Sequence[TaxableItem],
        location_key: str,
        on_date: date,
    ) -> list[TaxAssessment]:
        ...


class PostingEngine(TransactionalService):
    """
    Posts and voids journal entries.

    Contract:
        post() and void() each run in their own session and return DTOs.
        Callers never see partial state: on any failure nothing from the
        attempt is visible except its rejection audit record.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        tax: TaxComputer | None = None,
        clock: Clock | None = None,
        policy: LedgerPolicy | None = None,
    ):
        super().__init__(session_factory, clock, policy)
        self._tax = tax

    # ------------------------------------------------------------------
    # post
    # ------------------------------------------------------------------

    def post(self, draft: EntryDraft) -> JournalEntryInfo:
        """
        Validate and post a transaction draft.

        Returns:
            The posted entry (including any appended tax lines).

        Raises:
            InvalidEntryError, UnbalancedEntryError, UnknownAccountError,
            PeriodClosedError, PeriodClosingError, PeriodNotFoundError,
            UnknownZoneError, AuditWriteFailedError, StoreUnavailableError.
        """
        with LogContext.bind(
            correlation_id=str(draft.entry_id),
            entry_id=str(draft.entry_id),
            actor_id=str(draft.actor.actor_id),
            operation="post",
        ):
            logger.info(
                "posting_started",
                extra={
                    "source_type": draft.source_type.value,
                    "transaction_date": str(draft.transaction_date),
                    "line_count": len(draft.lines),
                    "has_tax": draft.tax is not None,
                },
            )
            t0 = time.monotonic()

            try:
                self._validate_shape(draft.lines, draft.tax)
                assessments = self._assess_tax(draft)
                tax_lines = self._tax_lines(draft.tax, assessments)
                with self._unit_of_work() as session:
                    info = self._post_in_session(session, draft, assessments, tax_lines)
            except StoreUnavailableError:
                logger.error(
                    "posting_failed",
                    extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
                    exc_info=True,
                )
                raise
            except LedgerKernelError as exc:
                logger.warning(
                    "posting_rejected",
                    extra={
                        "error_code": exc.code,
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                )
                self.record_rejected_attempt(
                    error=exc,
                    action=AuditAction.INSERT,
                    target_type=ENTRY_TARGET,
                    target_id=draft.entry_id,
                    actor=draft.actor,
                    attempted={
                        "transaction_date": draft.transaction_date,
                        "source_type": draft.source_type.value,
                        "source_id": draft.source_id,
                    },
                )
                raise

            logger.info(
                "posting_completed",
                extra={
                    "entry_number": info.entry_number,
                    "tax_line_count": len(tax_lines),
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
            return info

    def _validate_shape(
        self,
        lines: Sequence[LineDraft],
        tax: TaxRequest | None,
    ) -> None:
        precision = self._policy.currency_precision

        if len(lines) < 2:
            raise InvalidEntryError(f"entry needs at least 2 lines, got {len(lines)}")

        for line in lines:
            if line.amount < 0:
                raise InvalidEntryError(
                    f"negative amount {line.amount} on account {line.account_code}"
                )
            if not is_representable(line.amount, precision):
                raise InvalidEntryError(
                    f"amount {line.amount} on account {line.account_code} "
                    f"exceeds {precision} decimal places"
                )

        debits = sum((ln.amount for ln in lines if ln.side == LineSide.DEBIT), Decimal("0"))
        credits = sum((ln.amount for ln in lines if ln.side == LineSide.CREDIT), Decimal("0"))
        if debits != credits:
            raise UnbalancedEntryError(debits, credits)

        if tax is not None:
            for item in tax.items:
                if item.amount < 0 or not is_representable(item.amount, precision):
                    raise InvalidEntryError(
                        f"invalid taxable amount {item.amount} on {item.line_ref}"
                    )

    def _assess_tax(self, draft: EntryDraft) -> list[TaxAssessment]:
        if draft.tax is None or not draft.tax.items:
            return []
        if self._tax is None:
            raise InvalidEntryError("tax requested but no tax resolver is configured")
        return self._tax.compute_tax(
            draft.tax.items, draft.tax.location_key, draft.transaction_date
        )

    def _tax_lines(
        self,
        request: TaxRequest | None,
        assessments: Sequence[TaxAssessment],
    ) -> list[LineDraft]:
        """Credit lines to the liability account plus one offsetting debit."""
        if request is None or not assessments:
            return []

        liability = request.liability_account_code or self._policy.tax_liability_account_code
        offset = request.offset_account_code or self._policy.tax_offset_account_code
        if not liability or not offset:
            raise InvalidEntryError("tax requires a liability and an offset account")

        total = sum((a.tax_amount for a in assessments), Decimal("0"))
        lines: list[LineDraft] = []

        if self._policy.tax_line_policy == TaxLinePolicy.PER_AUTHORITY:
            per_authority: dict[str, Decimal] = {}
            for a in assessments:
                per_authority[a.authority_code] = (
                    per_authority.get(a.authority_code, Decimal("0")) + a.tax_amount
                )
            for code, amount in per_authority.items():
                lines.append(
                    LineDraft(
                        account_code=liability,
                        side=LineSide.CREDIT,
                        amount=amount,
                        memo=f"Sales tax {code}",
                        jurisdiction=code,
                    )
                )
        else:
            lines.append(
                LineDraft(
                    account_code=liability,
                    side=LineSide.CREDIT,
                    amount=total,
                    memo="Sales tax",
                )
            )

        lines.append(
            LineDraft(
                account_code=offset,
                side=LineSide.DEBIT,
                amount=total,
                memo="Sales tax receivable",
            )
        )
        return lines

    def _post_in_session(
        self,
        session: Session,
        draft: EntryDraft,
        assessments: Sequence[TaxAssessment],
        tax_lines: Sequence[LineDraft],
    ) -> JournalEntryInfo:
        audit = AuditRecorder(session, self._clock)
        periods = PeriodService(session, self._clock, self._policy, audit)
        coa = ChartOfAccounts(session)
        writer = JournalWriter(session, self._clock)

        lines = list(draft.lines) + list(tax_lines)
        accounts = {}
        for line in lines:
            if line.account_code not in accounts:
                accounts[line.account_code] = coa.require(line.account_code)

        period = periods.assert_postable(draft.transaction_date, draft.ledger_scope)

        entry = writer.write_entry(
            entry_id=draft.entry_id,
            transaction_date=draft.transaction_date,
            source_type=draft.source_type,
            source_id=draft.source_id,
            description=draft.description,
            lines=lines,
            accounts=accounts,
            actor_id=draft.actor.actor_id,
            ledger_scope=draft.ledger_scope,
        )
        if not entry.is_balanced:
            raise UnbalancedEntryError(entry.total_debits, entry.total_credits)

        writer.write_tax_records(entry, assessments, draft.actor.actor_id)

        audit.record(
            action=AuditAction.INSERT,
            target_type=ENTRY_TARGET,
            target_id=entry.id,
            actor=draft.actor,
            after={
                "entry_number": entry.entry_number,
                "transaction_date": draft.transaction_date,
                "source_type": draft.source_type.value,
                "source_id": draft.source_id,
                "period_code": period.code,
                "total": entry.total_debits,
                "tax_total": sum((a.tax_amount for a in assessments), Decimal("0")),
            },
        )
        return JournalEntryInfo.from_model(entry)

    # ------------------------------------------------------------------
    # void
    # ------------------------------------------------------------------

    def void(self, entry_id: UUID, actor: Actor, reason: str) -> VoidResult:
        """
        Void an entry by writing its mirrored reversal.

        Raises:
            VoidReasonRequiredError, EntryNotFoundError, AlreadyVoidedError,
            InvalidEntryError (reversing entries cannot be voided),
            PeriodClosedError, PeriodNotFoundError, AuditWriteFailedError,
            StoreUnavailableError.
        """
        with LogContext.bind(
            correlation_id=str(entry_id),
            entry_id=str(entry_id),
            actor_id=str(actor.actor_id),
            operation="void",
        ):
            logger.info("void_started")
            t0 = time.monotonic()

            try:
                if not reason or not reason.strip():
                    raise VoidReasonRequiredError(entry_id)
                with self._unit_of_work() as session:
                    result = self._void_in_session(session, entry_id, actor, reason)
            except StoreUnavailableError:
                logger.error(
                    "void_failed",
                    extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
                    exc_info=True,
                )
                raise
            except LedgerKernelError as exc:
                logger.warning(
                    "void_rejected",
                    extra={
                        "error_code": exc.code,
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                )
                self.record_rejected_attempt(
                    error=exc,
                    action=AuditAction.VOID,
                    target_type=ENTRY_TARGET,
                    target_id=entry_id,
                    actor=actor,
                    reason=reason or None,
                    attempted={"voided": True},
                )
                raise

            logger.info(
                "void_completed",
                extra={
                    "reversal_entry_id": str(result.reversal.id),
                    "reversal_entry_number": result.reversal.entry_number,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
            return result

    def _reversal_date(self, original: JournalEntry, original_period_open: bool) -> date:
        void_date = max(self._clock.today(), original.transaction_date)
        if (
            self._policy.reversal_dating == ReversalDating.ORIGINAL_DATE_IF_OPEN
            and original_period_open
        ):
            return original.transaction_date
        return void_date

    def _void_in_session(
        self,
        session: Session,
        entry_id: UUID,
        actor: Actor,
        reason: str,
    ) -> VoidResult:
        audit = AuditRecorder(session, self._clock)
        periods = PeriodService(session, self._clock, self._policy, audit)
        writer = JournalWriter(session, self._clock)

        original = writer.load_entry_for_update(entry_id)
        if original.voided:
            raise AlreadyVoidedError(original.id, original.reversed_by_id)
        if original.reversal_of_id is not None:
            raise InvalidEntryError("a reversing entry cannot itself be voided")

        original_period = periods.assert_voidable(
            original.transaction_date, original.ledger_scope
        )
        reversal_date = self._reversal_date(original, original_period.is_open)
        periods.assert_voidable(reversal_date, original.ledger_scope)

        reversal = writer.write_reversal(original, reversal_date, actor.actor_id, reason)
        writer.mark_voided(original, reversal, actor.actor_id, reason)
        writer.write_tax_reversal(original, reversal, actor.actor_id)

        audit.record(
            action=AuditAction.VOID,
            target_type=ENTRY_TARGET,
            target_id=original.id,
            actor=actor,
            before={"voided": False, "reversed_by_id": None},
            after={"voided": True, "reversed_by_id": reversal.id},
            reason=reason,
        )
        audit.record(
            action=AuditAction.INSERT,
            target_type=ENTRY_TARGET,
            target_id=reversal.id,
            actor=actor,
            after={
                "entry_number": reversal.entry_number,
                "transaction_date": reversal.transaction_date,
                "source_type": reversal.source_type,
                "reversal_of_id": original.id,
            },
            reason=reason,
        )

        return VoidResult(
            original=JournalEntryInfo.from_model(original),
            reversal=JournalEntryInfo.from_model(reversal),
        )
