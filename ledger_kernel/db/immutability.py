"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Ledger rows are append-only: a mistake is corrected by voiding the entry,
which writes a visible reversing entry, never by editing or deleting history.
The services only ever insert, but any code holding a session could still
mutate a loaded row.  These listeners fire before SQL reaches the database
and refuse the flush.

    session.flush()
         |
         v
    [before_update / before_delete] --> _check_*() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | Rule
------------------|------------------------------------------------------------
JournalEntry      | Never deleted.  Only update allowed is the one-way void:
                  | voided False -> True plus the void_* / reversed_by_id fields.
JournalLine       | Never updated or deleted.
AuditRecord       | Never updated or deleted.
TaxLedgerRecord   | Never updated or deleted.
AccountingPeriod  | Never deleted.
Account           | code / account_type / normal_balance frozen once any
                  | journal line references the account; referenced accounts
                  | are never deleted (archive them instead).

updated_at / updated_by_id are bookkeeping columns and may always change.

===============================================================================
USAGE
===============================================================================

Registered by init_engine_from_url().  Tests that build their own engine call
register_immutability_listeners() directly (idempotent).
"""

from sqlalchemy import event, exists, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import get_history

from ledger_kernel.exceptions import ImmutabilityViolationError
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# Always mutable bookkeeping columns
_METADATA_FIELDS = frozenset({"updated_at", "updated_by_id"})

# Columns the void transition is allowed to write on a posted entry
ENTRY_VOID_FIELDS = frozenset(
    {"voided", "voided_at", "voided_by_id", "void_reason", "reversed_by_id"}
)

# Structural account fields, frozen once the account is referenced
ACCOUNT_STRUCTURAL_FIELDS = frozenset({"account_type", "normal_balance", "code"})


def _blocked(entity_type: str, target, operation: str, reason: str) -> ImmutabilityViolationError:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "reason": reason,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _changed_columns(target) -> list[str]:
    from sqlalchemy import inspect

    insp = inspect(target)
    return [
        attr.key
        for attr in insp.mapper.column_attrs
        if attr.key not in _METADATA_FIELDS
        and get_history(target, attr.key).has_changes()
    ]


def _check_journal_entry_update(mapper, connection, target):
    """
    Allow only the void transition on a journal entry.

    The void fields may change only in the same flush that moves ``voided``
    from False to True.  A voided entry can never be un-voided or re-voided.
    """
    changed = _changed_columns(target)
    if not changed:
        return

    illegal = [f for f in changed if f not in ENTRY_VOID_FIELDS]
    if illegal:
        raise _blocked(
            "JournalEntry",
            target,
            "UPDATE",
            f"Cannot modify field '{illegal[0]}' on a posted journal entry",
        )

    voided_history = get_history(target, "voided")
    was_voided = bool(voided_history.deleted and voided_history.deleted[0])
    if not voided_history.has_changes() or was_voided or not target.voided:
        raise _blocked(
            "JournalEntry",
            target,
            "UPDATE",
            "Void fields may only be written by the voided False -> True transition",
        )


def _check_journal_entry_delete(mapper, connection, target):
    raise _blocked(
        "JournalEntry", target, "DELETE", "Journal entries are voided, never deleted"
    )


def _append_only(entity_type: str):
    def _check_update(mapper, connection, target):
        if not _changed_columns(target):
            return
        raise _blocked(entity_type, target, "UPDATE", f"{entity_type} rows are append-only")

    def _check_delete(mapper, connection, target):
        raise _blocked(entity_type, target, "DELETE", f"{entity_type} rows cannot be deleted")

    _check_update.__name__ = f"_check_{entity_type.lower()}_update"
    _check_delete.__name__ = f"_check_{entity_type.lower()}_delete"
    return _check_update, _check_delete


_check_line_update, _check_line_delete = _append_only("JournalLine")
_check_audit_update, _check_audit_delete = _append_only("AuditRecord")
_check_tax_ledger_update, _check_tax_ledger_delete = _append_only("TaxLedgerRecord")


def _check_period_delete(mapper, connection, target):
    raise _blocked(
        "AccountingPeriod", target, "DELETE", "Accounting periods cannot be deleted"
    )


def _account_is_referenced(connection, account_id) -> bool:
    from ledger_kernel.models.journal import JournalLine

    return bool(
        connection.execute(
            select(exists().where(JournalLine.account_id == account_id))
        ).scalar()
    )


def _check_account_structural_update(mapper, connection, target):
    """Structural account fields are frozen once a journal line references the account."""
    changed = [
        f for f in ACCOUNT_STRUCTURAL_FIELDS if get_history(target, f).has_changes()
    ]
    if not changed:
        return
    if _account_is_referenced(connection, target.id):
        raise _blocked(
            "Account",
            target,
            "UPDATE",
            f"Cannot change {sorted(changed)} on an account referenced by journal lines",
        )


def _check_account_deletion_before_flush(session, flush_context, instances):
    """Refuse deletion of referenced accounts before the flush plan is built."""
    from ledger_kernel.models.account import Account

    for obj in list(session.deleted):
        if not isinstance(obj, Account):
            continue
        with session.no_autoflush:
            referenced = _account_is_referenced(session.connection(), obj.id)
        if referenced:
            raise _blocked(
                "Account",
                obj,
                "DELETE",
                "Accounts referenced by journal lines cannot be deleted; archive instead",
            )


def _listener_table():
    from ledger_kernel.models.account import Account
    from ledger_kernel.models.accounting_period import AccountingPeriod
    from ledger_kernel.models.audit_record import AuditRecord
    from ledger_kernel.models.journal import JournalEntry, JournalLine
    from ledger_kernel.models.tax import TaxLedgerRecord

    return [
        (JournalEntry, "before_update", _check_journal_entry_update),
        (JournalEntry, "before_delete", _check_journal_entry_delete),
        (JournalLine, "before_update", _check_line_update),
        (JournalLine, "before_delete", _check_line_delete),
        (AuditRecord, "before_update", _check_audit_update),
        (AuditRecord, "before_delete", _check_audit_delete),
        (TaxLedgerRecord, "before_update", _check_tax_ledger_update),
        (TaxLedgerRecord, "before_delete", _check_tax_ledger_delete),
        (AccountingPeriod, "before_delete", _check_period_delete),
        (Account, "before_update", _check_account_structural_update),
        (Session, "before_flush", _check_account_deletion_before_flush),
    ]


def register_immutability_listeners() -> None:
    """Register all immutability listeners.  Safe to call more than once."""
    registered = 0
    for target, identifier, fn in _listener_table():
        if not event.contains(target, identifier, fn):
            event.listen(target, identifier, fn)
            registered += 1
    if registered:
        logger.info("immutability_listeners_registered", extra={"count": registered})


def unregister_immutability_listeners() -> None:
    """Remove all immutability listeners.  FOR TESTING ONLY."""
    for target, identifier, fn in _listener_table():
        if event.contains(target, identifier, fn):
            event.remove(target, identifier, fn)
