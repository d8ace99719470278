"""
Module: ledger_kernel.models.tax
Responsibility: ORM persistence for tax reference data (authorities, zones,
    taxability matrix) and the per-authority tax ledger written alongside
    journal entries.
Architecture position: Kernel > Models.  May import from db/base.py and
    models/journal.py.  The in-memory graph built from these rows lives in
    ledger_tax.graph.

Invariants enforced:
    - TaxAuthority.code and TaxZone.location_key are unique.
    - At most one active TaxMatrixRule per (authority, item type) on any date
      (validated when the authority graph is built and when a rule is added).
    - TaxLedgerRecord rows are append-only.  A void writes mirror rows with
      negated amounts and is_reversal=True.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TrackedBase, UUIDString


class AuthorityLevel(str, Enum):
    """Level of a taxing authority.  Declaration order is application order."""

    STATE = "state"
    COUNTY = "county"
    CITY = "city"
    SPECIAL = "special"

    @property
    def rank(self) -> int:
        return list(AuthorityLevel).index(self)


class ItemType(str, Enum):
    """Kind of taxable line item."""

    LABOR = "labor"
    PARTS = "parts"
    FREIGHT = "freight"
    SUBSCRIPTION = "subscription"
    OTHER = "other"


class TaxAuthority(TrackedBase):
    """A taxing jurisdiction (state, county, city or special district)."""

    __tablename__ = "tax_authorities"

    __table_args__ = (UniqueConstraint("code", name="uq_tax_authority_code"),)

    # e.g. "TX", "TX-TRAVIS", "TX-AUS"
    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    level: Mapped[AuthorityLevel] = mapped_column(String(20), nullable=False)

    # A city composes with its county, which composes with its state
    parent_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("tax_authorities.id"),
        nullable=True,
    )

    state_code: Mapped[str | None] = mapped_column(String(2), nullable=True)

    agency_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<TaxAuthority {self.code} ({self.level})>"


class TaxZone(TrackedBase):
    """Location key (postal code) mapped to an ordered list of authorities."""

    __tablename__ = "tax_zones"

    __table_args__ = (UniqueConstraint("location_key", name="uq_tax_zone_location"),)

    location_key: Mapped[str] = mapped_column(String(20), nullable=False)

    name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    members: Mapped[list["TaxZoneAuthority"]] = relationship(
        back_populates="zone",
        lazy="selectin",
        order_by="TaxZoneAuthority.position",
    )

    def __repr__(self) -> str:
        return f"<TaxZone {self.location_key}>"


class TaxZoneAuthority(TrackedBase):
    """Membership of an authority in a zone, with its position."""

    __tablename__ = "tax_zone_authorities"

    __table_args__ = (
        UniqueConstraint("zone_id", "authority_id", name="uq_zone_authority"),
    )

    zone_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("tax_zones.id"),
        nullable=False,
    )

    authority_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("tax_authorities.id"),
        nullable=False,
    )

    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    zone: Mapped[TaxZone] = relationship(back_populates="members")


class TaxMatrixRule(TrackedBase):
    """
    Taxability of one item type under one authority over a date range.

    effective_to is inclusive; None means open-ended.  A rule with
    is_taxable=False makes the item explicitly exempt.
    """

    __tablename__ = "tax_matrix_rules"

    __table_args__ = (
        Index("idx_tax_rule_authority_item", "authority_id", "item_type"),
    )

    authority_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("tax_authorities.id"),
        nullable=False,
    )

    item_type: Mapped[ItemType] = mapped_column(String(20), nullable=False)

    is_taxable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Fraction: 0.0725 == 7.25%
    rate: Mapped[Decimal] = mapped_column(Numeric(10, 6), nullable=False)

    # Maximum tax per transaction for this authority
    cap_amount: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)

    effective_from: Mapped[date] = mapped_column(Date, nullable=False)

    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<TaxMatrixRule {self.authority_id}/{self.item_type} {self.rate}>"


class TaxLedgerRecord(TrackedBase):
    """One (line item, authority) tax amount booked by a journal entry."""

    __tablename__ = "tax_ledger"

    __table_args__ = (
        Index("idx_tax_ledger_authority", "authority_id"),
        Index("idx_tax_ledger_date", "transaction_date"),
        Index("idx_tax_ledger_entry", "journal_entry_id"),
    )

    source_type: Mapped[str] = mapped_column(String(20), nullable=False)

    source_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    journal_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=False,
    )

    line_ref: Mapped[str] = mapped_column(String(100), nullable=False)

    authority_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("tax_authorities.id"),
        nullable=False,
    )

    authority_code: Mapped[str] = mapped_column(String(50), nullable=False)

    item_type: Mapped[ItemType] = mapped_column(String(20), nullable=False)

    taxable_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    rate: Mapped[Decimal] = mapped_column(Numeric(10, 6), nullable=False)

    tax_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)

    is_reversal: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
