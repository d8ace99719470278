"""
Value objects for the in-memory tax authority graph.

Built from ORM rows once per graph snapshot; nothing here touches the
database.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from ledger_kernel.db.types import to_decimal
from ledger_kernel.models.tax import AuthorityLevel, ItemType

if TYPE_CHECKING:
    from ledger_kernel.models.tax import TaxAuthority, TaxMatrixRule, TaxZone


@dataclass(frozen=True)
class AuthorityNode:
    id: UUID
    code: str
    name: str
    level: AuthorityLevel
    parent_id: UUID | None = None
    state_code: str | None = None
    is_active: bool = True

    @classmethod
    def from_model(cls, model: TaxAuthority) -> AuthorityNode:
        return cls(
            id=model.id,
            code=model.code,
            name=model.name,
            level=AuthorityLevel(model.level),
            parent_id=model.parent_id,
            state_code=model.state_code,
            is_active=model.is_active,
        )


@dataclass(frozen=True)
class ZoneNode:
    """A location key and its member authorities in stored position order."""

    id: UUID
    location_key: str
    authority_ids: tuple[UUID, ...]
    name: str | None = None

    @classmethod
    def from_model(cls, model: TaxZone) -> ZoneNode:
        return cls(
            id=model.id,
            location_key=model.location_key,
            name=model.name,
            authority_ids=tuple(m.authority_id for m in model.members),
        )


@dataclass(frozen=True)
class RuleNode:
    """One row of the taxability matrix.  effective_to is inclusive."""

    id: UUID
    authority_id: UUID
    item_type: ItemType
    is_taxable: bool
    rate: Decimal
    effective_from: date
    effective_to: date | None = None
    cap_amount: Decimal | None = None
    is_active: bool = True

    def applies_on(self, on_date: date) -> bool:
        if not self.is_active or on_date < self.effective_from:
            return False
        return self.effective_to is None or on_date <= self.effective_to

    def overlaps(self, other: RuleNode) -> bool:
        """Date ranges intersect (open ends extend forever)."""
        self_end = self.effective_to or date.max
        other_end = other.effective_to or date.max
        return self.effective_from <= other_end and other.effective_from <= self_end

    @classmethod
    def from_model(cls, model: TaxMatrixRule) -> RuleNode:
        return cls(
            id=model.id,
            authority_id=model.authority_id,
            item_type=ItemType(model.item_type),
            is_taxable=model.is_taxable,
            rate=to_decimal(model.rate),
            effective_from=model.effective_from,
            effective_to=model.effective_to,
            cap_amount=(
                to_decimal(model.cap_amount) if model.cap_amount is not None else None
            ),
            is_active=model.is_active,
        )
