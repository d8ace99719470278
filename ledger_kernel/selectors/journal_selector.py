"""
Module: ledger_kernel.selectors.journal_selector
Responsibility: Read access to journal entries as JournalEntryInfo DTOs.
Architecture position: Kernel > Selectors.  Read-only.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select

from ledger_kernel.domain.dtos import JournalEntryInfo
from ledger_kernel.exceptions import EntryNotFoundError
from ledger_kernel.models.journal import JournalEntry
from ledger_kernel.selectors.base import BaseSelector


class JournalSelector(BaseSelector):
    """Journal entry lookups."""

    def get_entry(self, entry_id: UUID) -> JournalEntryInfo:
        """
        Raises:
            EntryNotFoundError: If the id is unknown.
        """
        entry = self.session.get(JournalEntry, entry_id)
        if entry is None:
            raise EntryNotFoundError(str(entry_id))
        return JournalEntryInfo.from_model(entry)

    def get_by_number(self, entry_number: int) -> JournalEntryInfo | None:
        entry = self.session.execute(
            select(JournalEntry).where(JournalEntry.entry_number == entry_number)
        ).scalar_one_or_none()
        return JournalEntryInfo.from_model(entry) if entry else None

    def list_entries(
        self,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[JournalEntryInfo]:
        """Entries (voided ones included) ordered by entry number."""
        query = select(JournalEntry).order_by(JournalEntry.entry_number)
        if start_date is not None:
            query = query.where(JournalEntry.transaction_date >= start_date)
        if end_date is not None:
            query = query.where(JournalEntry.transaction_date <= end_date)
        return [JournalEntryInfo.from_model(e) for e in self.session.execute(query).scalars()]
