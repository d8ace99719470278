"""
Module: ledger_kernel.services.audit_recorder
Responsibility: The only writer of audit records.  Appends hash-chained rows
    for every mutation attempt (accepted or rejected) and validates the chain.
Architecture position: Kernel > Services.  Flush-only; writes inside the
    caller's unit of work so a ledger change and its audit row commit or roll
    back together.

Invariants enforced:
    - hash = H(target_type | target_id | action | payload_hash | prev_hash).
      The payload covers occurred_at, so a backdated row does not verify.
    - The audit counter is the high-water mark: the newest seq and the row
      count must both equal it, so a deleted tail is detected.
    - seq comes from SequenceService; the previous hash is read after the
      audit counter row is locked, so concurrent writers cannot fork the chain.
    - Only mutated fields are snapshotted (diff_fields).
    - Any persistence failure raises AuditWriteFailedError, aborting the
      enclosing unit of work.  Connectivity faults propagate unchanged so the
      session scope can report them as StoreUnavailableError.
"""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ledger_kernel.db.engine import STORE_FAULTS
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import Actor
from ledger_kernel.exceptions import AuditChainBrokenError, AuditWriteFailedError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.audit_record import AuditAction, AuditOutcome, AuditRecord
from ledger_kernel.services.sequence_service import SequenceService
from ledger_kernel.utils.hashing import hash_audit_record, hash_payload, to_json_safe

logger = get_logger("services.audit")


def diff_fields(
    before: dict[str, Any] | None,
    after: dict[str, Any] | None,
) -> dict[str, list]:
    """
    Before/after snapshot of the fields that actually changed.

    Returns ``{field: [before, after]}`` for every key whose value differs.
    A missing side is reported as None.
    """
    before = before or {}
    after = after or {}
    changes: dict[str, list] = {}
    for key in sorted(set(before) | set(after)):
        old = before.get(key)
        new = after.get(key)
        if old != new:
            changes[key] = [old, new]
    return changes


def _canonical_timestamp(value: datetime) -> str:
    # Naive UTC: SQLite hands back timestamps without their offset
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(timespec="microseconds")


def _payload_for(record: AuditRecord) -> dict[str, Any]:
    """Fields covered by payload_hash (everything but the chain columns)."""
    return {
        "seq": record.seq,
        "occurred_at": _canonical_timestamp(record.occurred_at),
        "outcome": str(getattr(record.outcome, "value", record.outcome)),
        "error_code": record.error_code,
        "changes": record.changes,
        "reason": record.reason,
        "actor_id": str(record.actor_id),
        "actor_role": record.actor_role,
        "network_origin": record.network_origin,
    }


class AuditRecorder:
    """
    Append-only, hash-chained audit trail writer.

    Contract:
        ``record()`` adds one AuditRecord to the caller's session and flushes
        it.  The caller's commit makes it durable together with the change it
        describes.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence = SequenceService(session)

    def _last_hash(self) -> str | None:
        return self._session.execute(
            select(AuditRecord.hash).order_by(AuditRecord.seq.desc()).limit(1)
        ).scalar_one_or_none()

    def record(
        self,
        *,
        action: AuditAction,
        target_type: str,
        target_id: UUID | str,
        actor: Actor,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
        reason: str | None = None,
        outcome: AuditOutcome = AuditOutcome.ACCEPTED,
        error_code: str | None = None,
    ) -> AuditRecord:
        """
        Append one audit record.

        Raises:
            AuditWriteFailedError: If the row cannot be persisted.
        """
        action = AuditAction(action)
        outcome = AuditOutcome(outcome)
        changes = to_json_safe(diff_fields(before, after)) or None

        try:
            record = self._append(
                action=action,
                target_type=target_type,
                target_id=str(target_id),
                actor=actor,
                changes=changes,
                reason=reason,
                outcome=outcome,
                error_code=error_code,
            )
        except STORE_FAULTS:
            raise
        except SQLAlchemyError as exc:
            logger.critical(
                "audit_write_failed",
                extra={
                    "target_type": target_type,
                    "target_id": str(target_id),
                    "action": action.value,
                    "error_type": type(exc).__name__,
                },
            )
            raise AuditWriteFailedError(
                target_type, action.value, str(exc), original_code=error_code
            ) from exc

        logger.info(
            "audit_record_created",
            extra={
                "target_type": target_type,
                "target_id": str(target_id),
                "action": action.value,
                "outcome": outcome.value,
                "seq": record.seq,
            },
        )
        return record

    def _append(
        self,
        *,
        action: AuditAction,
        target_type: str,
        target_id: str,
        actor: Actor,
        changes: dict | None,
        reason: str | None,
        outcome: AuditOutcome,
        error_code: str | None,
    ) -> AuditRecord:
        seq = self._sequence.next_value(SequenceService.AUDIT_RECORD)
        prev_hash = self._last_hash()

        record = AuditRecord(
            seq=seq,
            target_type=target_type,
            target_id=target_id,
            action=action.value,
            outcome=outcome.value,
            error_code=error_code,
            changes=changes,
            reason=reason,
            actor_id=actor.actor_id,
            actor_role=actor.role,
            network_origin=actor.network_origin,
            occurred_at=self._clock.now(),
            prev_hash=prev_hash,
        )
        record.payload_hash = hash_payload(_payload_for(record))
        record.hash = hash_audit_record(
            target_type=target_type,
            target_id=target_id,
            action=action.value,
            payload_hash=record.payload_hash,
            prev_hash=prev_hash,
        )

        self._session.add(record)
        self._session.flush()
        return record

    def validate_chain(self) -> bool:
        """
        Recompute every payload hash and chain hash in seq order.

        Returns:
            True if the chain is intact (an empty trail is intact).

        Raises:
            AuditChainBrokenError: At the first row that does not verify,
                or when rows are missing from the end of the trail.
        """
        records = self._session.execute(
            select(AuditRecord).order_by(AuditRecord.seq)
        ).scalars().all()

        prev_hash: str | None = None
        for record in records:
            if record.prev_hash != prev_hash:
                logger.critical("audit_chain_broken", extra={"seq": record.seq})
                raise AuditChainBrokenError(record.seq, str(prev_hash), str(record.prev_hash))

            payload_hash = hash_payload(_payload_for(record))
            expected = hash_audit_record(
                target_type=record.target_type,
                target_id=record.target_id,
                action=str(getattr(record.action, "value", record.action)),
                payload_hash=payload_hash,
                prev_hash=prev_hash,
            )
            if payload_hash != record.payload_hash or expected != record.hash:
                logger.critical("audit_chain_broken", extra={"seq": record.seq})
                raise AuditChainBrokenError(record.seq, expected, record.hash)

            prev_hash = record.hash

        self._check_high_water_mark(records)

        logger.info("audit_chain_validated", extra={"record_count": len(records)})
        return True

    def _check_high_water_mark(self, records) -> None:
        allocated = self._sequence.current_value(SequenceService.AUDIT_RECORD) or 0
        last_seq = records[-1].seq if records else 0
        if last_seq != allocated or len(records) != allocated:
            logger.critical(
                "audit_chain_truncated",
                extra={
                    "allocated": allocated,
                    "last_seq": last_seq,
                    "record_count": len(records),
                },
            )
            raise AuditChainBrokenError(
                last_seq + 1,
                f"{allocated} records",
                f"{len(records)} records ending at seq {last_seq}",
            )
