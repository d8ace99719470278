"""
Module: ledger_kernel.selectors.audit_selector
Responsibility: Forensic read access to the audit trail.
Architecture position: Kernel > Selectors.  Read-only.
"""

from uuid import UUID

from sqlalchemy import select

from ledger_kernel.domain.dtos import AuditRecordInfo
from ledger_kernel.models.audit_record import AuditRecord
from ledger_kernel.selectors.base import BaseSelector


class AuditSelector(BaseSelector):
    """Audit trail queries, always in seq order."""

    def history_for(self, target_id: UUID | str) -> list[AuditRecordInfo]:
        """Every audit record for one target (accepted and rejected)."""
        records = self.session.execute(
            select(AuditRecord)
            .where(AuditRecord.target_id == str(target_id))
            .order_by(AuditRecord.seq)
        ).scalars()
        return [AuditRecordInfo.from_model(r) for r in records]

    def records(
        self,
        target_type: str | None = None,
        action: str | None = None,
        outcome: str | None = None,
    ) -> list[AuditRecordInfo]:
        query = select(AuditRecord).order_by(AuditRecord.seq)
        if target_type is not None:
            query = query.where(AuditRecord.target_type == target_type)
        if action is not None:
            query = query.where(AuditRecord.action == getattr(action, "value", action))
        if outcome is not None:
            query = query.where(AuditRecord.outcome == getattr(outcome, "value", outcome))
        return [AuditRecordInfo.from_model(r) for r in self.session.execute(query).scalars()]
