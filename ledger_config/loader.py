"""
Configuration loader (``ledger_config.loader``).

Reads YAML with ``yaml.safe_load`` and parses it into frozen schema
objects.  Runtime callers go through ``ledger_config.get_active_config()``.

Failure modes:
    * Missing file -> ``FileNotFoundError`` propagates.
    * Malformed YAML -> ``yaml.YAMLError`` propagates.
    * Bad values (unknown policy name, negative precision, bad date)
      -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from datetime import date
from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import DEFAULT_ROLE_PERMISSIONS, LedgerConfig


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Contents of one YAML file as a dict (empty file -> {})."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_date(value: Any) -> date:
    """A date from YAML: either already a date or an ISO string."""
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value)
    raise ValueError(f"Cannot parse date from {value!r}")


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_ledger_config(data: dict[str, Any]) -> LedgerConfig:
    """
    Build a LedgerConfig from the parsed ``ledger.yaml`` mapping.

    Unspecified keys take the schema defaults.  ``role_permissions`` replaces
    the default role table wholesale when present.
    """
    posting = data.get("posting", {})
    tax = data.get("tax", {})
    periods = data.get("periods", {})
    access = data.get("access", {})

    role_permissions = access.get("role_permissions")
    if role_permissions is None:
        role_permissions = DEFAULT_ROLE_PERMISSIONS

    return LedgerConfig(
        config_id=data.get("config_id", "default"),
        version=int(data.get("version", 1)),
        currency_precision=int(posting.get("currency_precision", 2)),
        reversal_dating=posting.get("reversal_dating", "void_date"),
        tax_line_policy=tax.get("line_policy", "per_authority"),
        tax_liability_account_code=_optional_str(tax.get("liability_account")),
        tax_offset_account_code=_optional_str(tax.get("offset_account")),
        require_contiguous_periods=bool(periods.get("require_contiguous", False)),
        elevated_roles=frozenset(access.get("elevated_roles", ("controller", "admin"))),
        role_permissions={
            str(role): frozenset(perms or ()) for role, perms in role_permissions.items()
        },
        database_url=data.get("database", {}).get("url"),
        checksum=compute_checksum(data),
    )


def load_config(path: Path) -> LedgerConfig:
    return parse_ledger_config(load_yaml_file(path))


def _optional_str(value: Any) -> str | None:
    # YAML reads bare account codes like 2100 as ints
    return None if value is None else str(value)
