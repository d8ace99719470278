"""
ledger_config -- the entrypoint for ledger configuration.

Responsibility:
    ``get_active_config()`` is the one way runtime code obtains a
    ``LedgerConfig``.  ``load_reference_data()`` seeds accounts, periods and
    tax reference data from YAML (build and test tooling).

Architecture position:
    Sits above ``ledger_kernel`` and ``ledger_tax``.  The kernel never
    imports from here; ``LedgerConfig.to_policy()`` is the bridge.

Environment overrides:
    LEDGER_CONFIG_PATH   -- path of the YAML file to load
    LEDGER_DATABASE_URL  -- replaces ``database.url`` from the file

Audit relevance:
    Every successful ``get_active_config()`` call logs a
    ``ledger_config_loaded`` entry carrying the config id, version and
    checksum of the source file.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from pathlib import Path

from ledger_config.loader import load_config
from ledger_config.reference_data import ReferenceDataSummary, load_reference_data
from ledger_config.schema import LedgerConfig

_logger = logging.getLogger("ledger_kernel.config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"
DEFAULT_CONFIG_PATH = _DEFAULT_CONFIG_DIR / "ledger.yaml"
DEFAULT_REFERENCE_DATA_PATH = _DEFAULT_CONFIG_DIR / "reference_data.yaml"


def get_active_config(path: Path | str | None = None) -> LedgerConfig:
    """
    Load the active ledger configuration.

    Resolution order for the file: ``path`` argument, then
    ``LEDGER_CONFIG_PATH``, then the bundled ``sets/ledger.yaml``.

    Raises:
        FileNotFoundError: If the resolved file does not exist.
        ValueError: If a value fails validation.
    """
    config_path = Path(path or os.environ.get("LEDGER_CONFIG_PATH") or DEFAULT_CONFIG_PATH)
    config = load_config(config_path)

    database_url = os.environ.get("LEDGER_DATABASE_URL")
    if database_url:
        config = dataclasses.replace(config, database_url=database_url)

    _logger.info(
        "ledger_config_loaded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "config_path": str(config_path),
            "tax_line_policy": config.tax_line_policy.value,
            "reversal_dating": config.reversal_dating.value,
        },
    )
    return config


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "DEFAULT_REFERENCE_DATA_PATH",
    "LedgerConfig",
    "ReferenceDataSummary",
    "get_active_config",
    "load_reference_data",
]
