"""
Module: ledger_kernel.db.types
Responsibility: Annotated column aliases and the single sanctioned rounding
    function for monetary values.
Architecture position: Kernel > DB.  Importable from every kernel layer and
    from ledger_tax.

Invariants enforced:
    - round_money() is the only rounding function applied to money.  It rounds
      half-up (away from zero on ties) to the configured currency precision.
    - No floats.  Amounts are Decimal end to end.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated

from sqlalchemy import BigInteger, Numeric, String

# 38 digits, 9 decimal places
Money = Annotated[Decimal, Numeric(38, 9)]

# Tax rates are fractions (0.0725 == 7.25%)
Rate = Annotated[Decimal, Numeric(10, 6)]

Sequence = Annotated[int, BigInteger]

# SHA-256 hex digest
PayloadHash = Annotated[str, String(64)]

ShortCode = Annotated[str, String(50)]

LongText = Annotated[str, String(4000)]


MONEY_DECIMAL_PLACES = 9
DEFAULT_CURRENCY_PRECISION = 2
DEFAULT_ROUNDING = ROUND_HALF_UP


def to_decimal(value) -> Decimal:
    """
    Coerce an int, str or Decimal to Decimal.

    Floats are converted through ``str`` so that a database driver handing
    back a float aggregate does not leak binary noise into money.

    Raises:
        ValueError: If the value is not numeric.
    """
    if isinstance(value, Decimal):
        return value
    if value is None:
        return Decimal("0")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Not a numeric amount: {value!r}") from exc


def round_money(
    value: Decimal,
    decimal_places: int = DEFAULT_CURRENCY_PRECISION,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to ``decimal_places`` (half-up by default).

    This is the ONLY sanctioned rounding function for financial values.
    """
    quantum = Decimal(1).scaleb(-decimal_places)
    return to_decimal(value).quantize(quantum, rounding=rounding)


def is_representable(value: Decimal, decimal_places: int) -> bool:
    """True if ``value`` has no digits beyond ``decimal_places``."""
    value = to_decimal(value)
    return round_money(value, decimal_places) == value
