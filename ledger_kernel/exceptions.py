"""
Typed Exception Hierarchy for the Ledger Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of a ledger must react to failures precisely: a closed period means
"pick another date", an audit write failure means "stop and page someone", a
store outage means "retry later". Parsing message strings for that is fragile,
so every failure has:
  1. A TYPED exception class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe, written to the
     audit trail for rejected attempts)
  3. Structured DATA attributes (period code, entry id, amounts)

    try:
        engine.post(draft)
    except PeriodClosedError as e:
        api_response(code=e.code, period=e.period_code, date=e.effective_date)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerKernelError (base)
    |
    +-- PostingError
    |   +-- InvalidEntryError
    |   +-- UnbalancedEntryError
    |   +-- UnknownAccountError
    |
    +-- PeriodError
    |   +-- PeriodClosedError
    |   +-- PeriodClosingError
    |   +-- PeriodNotFoundError
    |   +-- AlreadyClosedError
    |   +-- OverlappingPeriodError
    |   +-- PeriodNotClosedError
    |   +-- InvalidPeriodTransitionError
    |
    +-- VoidError
    |   +-- EntryNotFoundError
    |   +-- AlreadyVoidedError
    |   +-- VoidReasonRequiredError
    |
    +-- TaxError
    |   +-- UnknownZoneError
    |   +-- DuplicateTaxRuleError
    |   +-- InvalidTaxReferenceError
    |
    +-- AuditError
    |   +-- AuditWriteFailedError
    |   +-- AuditChainBrokenError
    |
    +-- AccessError
    |   +-- PermissionDeniedError
    |   +-- DeleteNotSupportedError
    |   +-- ReasonRequiredError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- StoreUnavailableError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category   | Code                       | When Raised
-----------|----------------------------|------------------------------------------
Posting    | INVALID_ENTRY              | < 2 lines, negative or sub-precision amount
           | UNBALANCED_ENTRY           | Debits != Credits
           | UNKNOWN_ACCOUNT            | Account code missing or archived
-----------|----------------------------|------------------------------------------
Period     | PERIOD_CLOSED              | Write dated inside a closed period
           | PERIOD_CLOSING             | New post dated inside a closing period
           | PERIOD_NOT_FOUND           | No period covers the date / id
           | ALREADY_CLOSED             | Close requested on a closed period
           | OVERLAPPING_PERIOD         | Date range conflicts with another period
           | PERIOD_NOT_CLOSED          | Reopen requested on a non-closed period
           | INVALID_PERIOD_TRANSITION  | e.g. begin_closing on a closing period
-----------|----------------------------|------------------------------------------
Void       | ENTRY_NOT_FOUND            | Entry id unknown
           | ALREADY_VOIDED             | Entry already voided
           | VOID_REASON_REQUIRED       | Empty / blank void reason
-----------|----------------------------|------------------------------------------
Tax        | UNKNOWN_ZONE               | Location key has no tax zone
           | DUPLICATE_TAX_RULE         | Two active rules overlap in time
           | INVALID_TAX_REFERENCE      | Negative rate / cap, dangling authority
-----------|----------------------------|------------------------------------------
Audit      | AUDIT_WRITE_FAILED         | Audit row could not be persisted (fatal)
           | AUDIT_CHAIN_BROKEN         | Hash chain validation failed
-----------|----------------------------|------------------------------------------
Access     | PERMISSION_DENIED          | Actor role lacks the permission
           | DELETE_NOT_SUPPORTED       | Delete attempted on ledger data
           | REASON_REQUIRED            | Reason missing for reopen
-----------|----------------------------|------------------------------------------
Store      | STORE_UNAVAILABLE          | Connection / driver fault (retryable)

===============================================================================
DESIGN DECISIONS
===============================================================================

1. Validation errors are raised before any durable write and are never
   retried. Only StoreUnavailableError carries ``retryable = True``.

2. AuditWriteFailedError is fatal: the enclosing unit of work is aborted
   and no ledger change is visible without its audit record.

===============================================================================
"""

from datetime import date
from decimal import Decimal


class LedgerKernelError(Exception):
    """
    Base exception for all ledger kernel errors.

    All subclasses have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "LEDGER_KERNEL_ERROR"
    retryable: bool = False


# Posting exceptions


class PostingError(LedgerKernelError):
    """Base exception for posting-related errors."""

    code: str = "POSTING_ERROR"


class InvalidEntryError(PostingError):
    """Entry shape is invalid (too few lines, negative amounts, bad precision)."""

    code: str = "INVALID_ENTRY"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid journal entry: {reason}")


class UnbalancedEntryError(PostingError):
    """Entry debits do not equal credits."""

    code: str = "UNBALANCED_ENTRY"

    def __init__(self, debits: Decimal, credits: Decimal):
        self.debits = debits
        self.credits = credits
        super().__init__(
            f"Entry is unbalanced: debits={debits}, credits={credits}"
        )


class UnknownAccountError(PostingError):
    """Account code does not exist or is archived."""

    code: str = "UNKNOWN_ACCOUNT"

    def __init__(self, account_code: str, archived: bool = False):
        self.account_code = account_code
        self.archived = archived
        state = "archived" if archived else "not found"
        super().__init__(f"Account {account_code} is {state}")


# Period exceptions


class PeriodError(LedgerKernelError):
    """Base exception for accounting period errors."""

    code: str = "PERIOD_ERROR"


class PeriodClosedError(PeriodError):
    """Write dated inside a closed accounting period."""

    code: str = "PERIOD_CLOSED"

    def __init__(self, period_code: str, effective_date: date | str):
        self.period_code = period_code
        self.effective_date = str(effective_date)
        super().__init__(
            f"Cannot write to closed period {period_code} "
            f"for date {effective_date}"
        )


class PeriodClosingError(PeriodError):
    """New postings are refused while a period is closing."""

    code: str = "PERIOD_CLOSING"

    def __init__(self, period_code: str, effective_date: date | str):
        self.period_code = period_code
        self.effective_date = str(effective_date)
        super().__init__(
            f"Period {period_code} is closing; new postings for "
            f"{effective_date} are not accepted"
        )


class PeriodNotFoundError(PeriodError):
    """No accounting period covers the given date (or id)."""

    code: str = "PERIOD_NOT_FOUND"

    def __init__(self, effective_date: date | str):
        self.effective_date = str(effective_date)
        super().__init__(f"No accounting period found for {effective_date}")


class AlreadyClosedError(PeriodError):
    """Close requested on an already closed period."""

    code: str = "ALREADY_CLOSED"

    def __init__(self, period_code: str):
        self.period_code = period_code
        super().__init__(f"Period {period_code} is already closed")


class OverlappingPeriodError(PeriodError):
    """New period overlaps (or is not contiguous with) an existing one."""

    code: str = "OVERLAPPING_PERIOD"

    def __init__(self, period_code: str, conflicting_code: str | None):
        self.period_code = period_code
        self.conflicting_code = conflicting_code
        if conflicting_code is None:
            msg = f"Period {period_code} is not contiguous with existing periods"
        else:
            msg = f"Period {period_code} overlaps existing period {conflicting_code}"
        super().__init__(msg)


class PeriodNotClosedError(PeriodError):
    """Reopen requested on a period that is not closed."""

    code: str = "PERIOD_NOT_CLOSED"

    def __init__(self, period_code: str, status: str):
        self.period_code = period_code
        self.status = status
        super().__init__(f"Period {period_code} is {status}, not closed")


class InvalidPeriodTransitionError(PeriodError):
    """Requested status transition is not allowed from the current status."""

    code: str = "INVALID_PERIOD_TRANSITION"

    def __init__(self, period_code: str, from_status: str, to_status: str):
        self.period_code = period_code
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Period {period_code} cannot move from {from_status} to {to_status}"
        )


# Void exceptions


class VoidError(LedgerKernelError):
    """Base exception for void errors."""

    code: str = "VOID_ERROR"


class EntryNotFoundError(VoidError):
    """Journal entry id is unknown."""

    code: str = "ENTRY_NOT_FOUND"

    def __init__(self, entry_id: str):
        self.entry_id = str(entry_id)
        super().__init__(f"Journal entry not found: {entry_id}")


class AlreadyVoidedError(VoidError):
    """Journal entry has already been voided."""

    code: str = "ALREADY_VOIDED"

    def __init__(self, entry_id: str, reversed_by_id: str | None = None):
        self.entry_id = str(entry_id)
        self.reversed_by_id = str(reversed_by_id) if reversed_by_id else None
        super().__init__(f"Journal entry {entry_id} is already voided")


class VoidReasonRequiredError(VoidError):
    """Void requested without a reason."""

    code: str = "VOID_REASON_REQUIRED"

    def __init__(self, entry_id: str):
        self.entry_id = str(entry_id)
        super().__init__(f"A reason is required to void entry {entry_id}")


# Tax exceptions


class TaxError(LedgerKernelError):
    """Base exception for tax errors."""

    code: str = "TAX_ERROR"


class UnknownZoneError(TaxError):
    """Location key does not resolve to a tax zone."""

    code: str = "UNKNOWN_ZONE"

    def __init__(self, location_key: str):
        self.location_key = location_key
        super().__init__(f"No tax zone for location {location_key!r}")


class DuplicateTaxRuleError(TaxError):
    """Two active rules for the same (authority, item type) overlap in time."""

    code: str = "DUPLICATE_TAX_RULE"

    def __init__(self, authority_code: str, item_type: str):
        self.authority_code = authority_code
        self.item_type = item_type
        super().__init__(
            f"Overlapping active tax rules for {authority_code}/{item_type}"
        )


class InvalidTaxReferenceError(TaxError):
    """Tax reference data is inconsistent (negative rate, dangling id)."""

    code: str = "INVALID_TAX_REFERENCE"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid tax reference data: {reason}")


# Audit exceptions


class AuditError(LedgerKernelError):
    """Base exception for audit errors."""

    code: str = "AUDIT_ERROR"


class AuditWriteFailedError(AuditError):
    """
    Audit record could not be persisted.

    Fatal: the enclosing unit of work must be aborted.
    """

    code: str = "AUDIT_WRITE_FAILED"

    def __init__(
        self,
        target_type: str,
        action: str,
        cause: str,
        original_code: str | None = None,
    ):
        self.target_type = target_type
        self.action = action
        self.cause = cause
        # Code of the rejection that could not be audited, if any
        self.original_code = original_code
        super().__init__(
            f"Audit write failed for {target_type}/{action}: {cause}"
        )


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, seq: int, expected_hash: str, actual_hash: str):
        self.seq = seq
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at seq {seq}: "
            f"expected {expected_hash}, got {actual_hash}"
        )


# Access exceptions


class AccessError(LedgerKernelError):
    """Base exception for access-control errors."""

    code: str = "ACCESS_ERROR"


class PermissionDeniedError(AccessError):
    """Actor role does not carry the required permission."""

    code: str = "PERMISSION_DENIED"

    def __init__(self, actor_id: str, role: str, permission: str):
        self.actor_id = str(actor_id)
        self.role = role
        self.permission = permission
        super().__init__(
            f"Actor {actor_id} with role {role!r} lacks permission {permission!r}"
        )


class DeleteNotSupportedError(AccessError):
    """Ledger data is never deleted; use void."""

    code: str = "DELETE_NOT_SUPPORTED"

    def __init__(self, target_type: str, target_id: str):
        self.target_type = target_type
        self.target_id = str(target_id)
        super().__init__(
            f"Delete of {target_type} {target_id} is not supported; void it instead"
        )


class ReasonRequiredError(AccessError):
    """Operation requires a non-blank reason."""

    code: str = "REASON_REQUIRED"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"A reason is required for {operation}")


# Immutability exceptions


class ImmutabilityError(LedgerKernelError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempt to modify or delete a record that is append-only."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )


# Infrastructure


class StoreUnavailableError(LedgerKernelError):
    """
    The durable store could not be reached.

    Retryable by the caller; the kernel never retries financial writes itself.
    """

    code: str = "STORE_UNAVAILABLE"
    retryable: bool = True

    def __init__(self, cause: str):
        self.cause = cause
        super().__init__(f"Ledger store unavailable: {cause}")
