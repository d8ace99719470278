"""
Tax arithmetic.  Pure functions, no I/O.

Rounding is half-up at currency precision, applied per (line item,
authority).  A rule's cap limits the cumulative tax one authority collects
on a single transaction; items are assessed in input order, so the cap bites
on the later items.
"""

from collections.abc import Callable, Iterable, Sequence
from datetime import date
from decimal import Decimal
from uuid import UUID

from ledger_kernel.db.types import round_money, to_decimal
from ledger_kernel.domain.dtos import TaxableItem, TaxAssessment
from ledger_kernel.models.tax import ItemType
from ledger_tax.models import AuthorityNode, RuleNode

ZERO = Decimal("0")

RuleLookup = Callable[[UUID, ItemType, date], RuleNode | None]


def compute_line_tax(amount, rate, precision: int = 2) -> Decimal:
    """amount x rate, rounded half-up to ``precision`` places."""
    return round_money(to_decimal(amount) * to_decimal(rate), precision)


def apply_cap(collected: Decimal, tax: Decimal, cap: Decimal | None) -> Decimal:
    """
    Clamp ``tax`` so ``collected + tax`` never exceeds ``cap``.

    >>> apply_cap(Decimal("3"), Decimal("4"), Decimal("5"))
    Decimal('2')
    """
    if cap is None:
        return tax
    remaining = cap - collected
    if remaining <= ZERO:
        return ZERO
    return min(tax, remaining)


def assess(
    items: Iterable[TaxableItem],
    authorities: Sequence[AuthorityNode],
    rule_for: RuleLookup,
    on_date: date,
    precision: int = 2,
) -> list[TaxAssessment]:
    """
    Tax each item under each authority, in authority order.

    An authority with no rule for the item type on ``on_date`` does not tax
    it; neither does an explicit exempt rule.  Zero-tax results are dropped.
    """
    collected: dict[UUID, Decimal] = {}
    assessments: list[TaxAssessment] = []

    for item in items:
        for authority in authorities:
            rule = rule_for(authority.id, item.item_type, on_date)
            if rule is None or not rule.is_taxable:
                continue

            tax = compute_line_tax(item.amount, rule.rate, precision)
            already = collected.get(authority.id, ZERO)
            tax = apply_cap(already, tax, rule.cap_amount)
            if tax == ZERO:
                continue

            collected[authority.id] = already + tax
            assessments.append(
                TaxAssessment(
                    line_ref=item.line_ref,
                    item_type=item.item_type,
                    authority_id=authority.id,
                    authority_code=authority.code,
                    authority_level=authority.level,
                    taxable_amount=item.amount,
                    rate=rule.rate,
                    tax_amount=tax,
                )
            )

    return assessments


def total_tax(assessments: Iterable[TaxAssessment]) -> Decimal:
    return sum((a.tax_amount for a in assessments), ZERO)
