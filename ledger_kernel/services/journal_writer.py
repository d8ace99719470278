"""
Module: ledger_kernel.services.journal_writer
Responsibility: The ledger store.  Writes journal entries, their lines and
    tax ledger rows; builds mirrored reversing entries; marks originals
    voided.  Never deletes.
Architecture position: Kernel > Services.  Flush-only; PostingEngine owns
    the unit of work and runs every validation before calling in here.

Invariants enforced:
    - entry_number comes from SequenceService inside the caller's transaction.
    - A reversing entry mirrors every line of the original with the side
      swapped, so original + reversal net to zero per account.
    - Tax ledger mirror rows carry negated amounts and is_reversal=True.
"""

from collections.abc import Sequence
from datetime import date
from uuid import UUID, uuid4

from sqlalchemy import select

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import LineDraft, TaxAssessment
from ledger_kernel.exceptions import EntryNotFoundError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.models.journal import (
    DEFAULT_LEDGER_SCOPE,
    JournalEntry,
    JournalLine,
    LineSide,
    SourceType,
)
from ledger_kernel.models.tax import TaxLedgerRecord
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.sequence_service import SequenceService

logger = get_logger("services.journal_writer")


class JournalWriter(BaseService):
    """Append-only writer for journal entries and tax ledger rows."""

    def __init__(self, session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._sequence = SequenceService(session)

    # ------------------------------------------------------------------
    # Reads used by the engine inside the unit of work
    # ------------------------------------------------------------------

    def load_entry_for_update(self, entry_id: UUID) -> JournalEntry:
        """
        Lock and return an entry.

        Raises:
            EntryNotFoundError: If the id is unknown.
        """
        entry = self.session.execute(
            select(JournalEntry)
            .where(JournalEntry.id == entry_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if entry is None:
            raise EntryNotFoundError(str(entry_id))
        return entry

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def write_entry(
        self,
        *,
        transaction_date: date,
        source_type: SourceType,
        lines: Sequence[LineDraft],
        accounts: dict[str, Account],
        actor_id: UUID,
        entry_id: UUID | None = None,
        source_id: str | None = None,
        description: str | None = None,
        ledger_scope: str = DEFAULT_LEDGER_SCOPE,
        reversal_of_id: UUID | None = None,
    ) -> JournalEntry:
        """
        Persist an entry and its lines.

        ``accounts`` maps every account code used by ``lines`` to its
        already-validated Account row.
        """
        entry_number = self._sequence.next_value(SequenceService.JOURNAL_ENTRY)

        entry = JournalEntry(
            id=entry_id or uuid4(),
            entry_number=entry_number,
            ledger_scope=ledger_scope,
            transaction_date=transaction_date,
            source_type=SourceType(source_type).value,
            source_id=source_id,
            description=description,
            actor_id=actor_id,
            posted_at=self._clock.now(),
            voided=False,
            reversal_of_id=reversal_of_id,
            created_by_id=actor_id,
        )
        self.session.add(entry)

        for line_number, draft in enumerate(lines, start=1):
            entry.lines.append(
                JournalLine(
                    line_number=line_number,
                    account_id=accounts[draft.account_code].id,
                    side=LineSide(draft.side).value,
                    amount=draft.amount,
                    memo=draft.memo,
                    jurisdiction=draft.jurisdiction,
                    created_by_id=actor_id,
                )
            )

        self.session.flush()

        logger.info(
            "journal_entry_written",
            extra={
                "entry_id": str(entry.id),
                "entry_number": entry_number,
                "line_count": len(entry.lines),
                "is_reversal": reversal_of_id is not None,
            },
        )
        return entry

    def write_reversal(
        self,
        original: JournalEntry,
        reversal_date: date,
        actor_id: UUID,
        reason: str,
    ) -> JournalEntry:
        """Write the mirror of ``original`` (every line, sides swapped)."""
        accounts: dict[str, Account] = {}
        mirrored: list[LineDraft] = []
        for line in original.lines:
            accounts[line.account.code] = line.account
            mirrored.append(
                LineDraft(
                    account_code=line.account.code,
                    side=LineSide(line.side).opposite(),
                    amount=line.amount,
                    memo=f"Reversal of line {line.line_number}",
                    jurisdiction=line.jurisdiction,
                )
            )

        return self.write_entry(
            transaction_date=reversal_date,
            source_type=SourceType.REVERSAL,
            source_id=str(original.id),
            lines=mirrored,
            accounts=accounts,
            actor_id=actor_id,
            description=f"Reversal of entry #{original.entry_number}: {reason}",
            ledger_scope=original.ledger_scope,
            reversal_of_id=original.id,
        )

    def mark_voided(
        self,
        original: JournalEntry,
        reversal: JournalEntry,
        actor_id: UUID,
        reason: str,
    ) -> None:
        """The one permitted update on a posted entry."""
        original.voided = True
        original.voided_at = self._clock.now()
        original.voided_by_id = actor_id
        original.void_reason = reason
        original.reversed_by_id = reversal.id
        original.updated_by_id = actor_id
        self.session.flush()

    def write_tax_records(
        self,
        entry: JournalEntry,
        assessments: Sequence[TaxAssessment],
        actor_id: UUID,
    ) -> list[TaxLedgerRecord]:
        """One tax ledger row per (line item, authority) assessment."""
        records = [
            TaxLedgerRecord(
                source_type=entry.source_type,
                source_id=entry.source_id,
                journal_entry_id=entry.id,
                line_ref=a.line_ref,
                authority_id=a.authority_id,
                authority_code=a.authority_code,
                item_type=a.item_type.value,
                taxable_amount=a.taxable_amount,
                rate=a.rate,
                tax_amount=a.tax_amount,
                transaction_date=entry.transaction_date,
                is_reversal=False,
                created_by_id=actor_id,
            )
            for a in assessments
        ]
        self.session.add_all(records)
        self.session.flush()
        return records

    def write_tax_reversal(
        self,
        original: JournalEntry,
        reversal: JournalEntry,
        actor_id: UUID,
    ) -> list[TaxLedgerRecord]:
        """Mirror the original's tax rows with negated amounts on the reversal."""
        originals = self.session.execute(
            select(TaxLedgerRecord)
            .where(TaxLedgerRecord.journal_entry_id == original.id)
            .order_by(TaxLedgerRecord.line_ref, TaxLedgerRecord.authority_code)
        ).scalars().all()

        mirrors = [
            TaxLedgerRecord(
                source_type=row.source_type,
                source_id=row.source_id,
                journal_entry_id=reversal.id,
                line_ref=row.line_ref,
                authority_id=row.authority_id,
                authority_code=row.authority_code,
                item_type=row.item_type,
                taxable_amount=-row.taxable_amount,
                rate=row.rate,
                tax_amount=-row.tax_amount,
                transaction_date=reversal.transaction_date,
                is_reversal=True,
                created_by_id=actor_id,
            )
            for row in originals
        ]
        self.session.add_all(mirrors)
        self.session.flush()
        return mirrors
