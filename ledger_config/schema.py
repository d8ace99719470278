"""
Configuration schema (``ledger_config.schema``).

Frozen dataclasses produced by ``ledger_config.loader``.  The kernel never
sees these directly: ``LedgerConfig.to_policy()`` is the bridge that hands
it a ``LedgerPolicy``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from ledger_kernel.domain.policy import LedgerPolicy, ReversalDating, TaxLinePolicy

# Permission names checked by ledger_services.LedgerGateway
POST = "ledger.post"
VOID = "ledger.void"
PERIOD_CREATE = "period.create"
PERIOD_CLOSE = "period.close"
PERIOD_REOPEN = "period.reopen"
TAX_ADMINISTER = "tax.administer"

ALL_PERMISSIONS = frozenset(
    {POST, VOID, PERIOD_CREATE, PERIOD_CLOSE, PERIOD_REOPEN, TAX_ADMINISTER}
)

# Grants every permission
WILDCARD = "*"

DEFAULT_ROLE_PERMISSIONS: Mapping[str, frozenset[str]] = MappingProxyType(
    {
        "clerk": frozenset({POST}),
        "accountant": frozenset({POST, VOID}),
        "controller": frozenset({POST, VOID, PERIOD_CREATE, PERIOD_CLOSE, PERIOD_REOPEN}),
        "admin": frozenset({WILDCARD}),
    }
)


@dataclass(frozen=True)
class LedgerConfig:
    """Runtime configuration for one ledger deployment."""

    config_id: str = "default"
    version: int = 1
    currency_precision: int = 2
    tax_line_policy: TaxLinePolicy = TaxLinePolicy.PER_AUTHORITY
    reversal_dating: ReversalDating = ReversalDating.VOID_DATE
    elevated_roles: frozenset[str] = frozenset({"controller", "admin"})
    role_permissions: Mapping[str, frozenset[str]] = field(
        default_factory=lambda: DEFAULT_ROLE_PERMISSIONS
    )
    require_contiguous_periods: bool = False
    tax_liability_account_code: str | None = None
    tax_offset_account_code: str | None = None
    database_url: str | None = None
    checksum: str = ""

    def __post_init__(self) -> None:
        if self.currency_precision < 0:
            raise ValueError("currency_precision must be >= 0")
        object.__setattr__(self, "tax_line_policy", TaxLinePolicy(self.tax_line_policy))
        object.__setattr__(self, "reversal_dating", ReversalDating(self.reversal_dating))
        object.__setattr__(self, "elevated_roles", frozenset(self.elevated_roles))
        permissions = {
            role: frozenset(perms) for role, perms in self.role_permissions.items()
        }
        for role, perms in permissions.items():
            unknown = perms - ALL_PERMISSIONS - {WILDCARD}
            if unknown:
                raise ValueError(
                    f"role {role!r} has unknown permissions: {sorted(unknown)}"
                )
        object.__setattr__(self, "role_permissions", MappingProxyType(permissions))

    def permissions_for(self, role: str) -> frozenset[str]:
        perms = self.role_permissions.get(role, frozenset())
        if WILDCARD in perms:
            return ALL_PERMISSIONS
        return perms

    def is_permitted(self, role: str, permission: str) -> bool:
        return permission in self.permissions_for(role)

    def to_policy(self) -> LedgerPolicy:
        """The kernel-facing subset of this configuration."""
        return LedgerPolicy(
            currency_precision=self.currency_precision,
            tax_line_policy=self.tax_line_policy,
            reversal_dating=self.reversal_dating,
            elevated_roles=self.elevated_roles,
            require_contiguous_periods=self.require_contiguous_periods,
            tax_liability_account_code=self.tax_liability_account_code,
            tax_offset_account_code=self.tax_offset_account_code,
        )
