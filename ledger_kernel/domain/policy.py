"""
Module: ledger_kernel.domain.policy
Responsibility: The posting knobs the kernel honours, as one frozen value
    object.  Built from configuration by ``ledger_config`` (LedgerConfig.
    to_policy()); the kernel never reads configuration files itself.
"""

from dataclasses import dataclass, field
from enum import Enum


class TaxLinePolicy(str, Enum):
    """How computed tax is booked on the journal entry."""

    # One credit line per authority, tagged with the authority code
    PER_AUTHORITY = "per_authority"
    # One credit line for the whole tax amount
    AGGREGATE = "aggregate"


class ReversalDating(str, Enum):
    """Which date a void's reversing entry carries."""

    # The date the void is performed (clock today)
    VOID_DATE = "void_date"
    # The original entry's date while its period still accepts writes,
    # otherwise the void date
    ORIGINAL_DATE_IF_OPEN = "original_date_if_open"


@dataclass(frozen=True)
class LedgerPolicy:
    """Posting policy in force for a PostingEngine / PeriodService."""

    currency_precision: int = 2
    tax_line_policy: TaxLinePolicy = TaxLinePolicy.PER_AUTHORITY
    reversal_dating: ReversalDating = ReversalDating.VOID_DATE
    elevated_roles: frozenset[str] = field(
        default_factory=lambda: frozenset({"controller", "admin"})
    )
    require_contiguous_periods: bool = False
    tax_liability_account_code: str | None = None
    tax_offset_account_code: str | None = None

    def __post_init__(self) -> None:
        if self.currency_precision < 0:
            raise ValueError("currency_precision must be >= 0")
        object.__setattr__(self, "tax_line_policy", TaxLinePolicy(self.tax_line_policy))
        object.__setattr__(self, "reversal_dating", ReversalDating(self.reversal_dating))
        object.__setattr__(self, "elevated_roles", frozenset(self.elevated_roles))
