"""
Configuration loading and reference-data seeding tests.

Verifies:
- The bundled ledger.yaml loads and maps onto LedgerPolicy
- Environment overrides (LEDGER_CONFIG_PATH, LEDGER_DATABASE_URL)
- Invalid values are refused
- ledger_config_loaded is logged with a stable checksum
- Seeding the bundled reference data is complete and idempotent
"""

from datetime import date
from decimal import Decimal

import pytest
import yaml

from ledger_config import (
    DEFAULT_REFERENCE_DATA_PATH,
    get_active_config,
    load_reference_data,
)
from ledger_config.loader import compute_checksum, parse_date, parse_ledger_config
from ledger_config.schema import LedgerConfig
from ledger_kernel.domain.dtos import TaxableItem
from ledger_kernel.domain.policy import ReversalDating, TaxLinePolicy
from ledger_kernel.models.tax import ItemType
from ledger_tax.resolver import TaxResolver


def _write(tmp_path, data) -> str:
    path = tmp_path / "ledger.yaml"
    path.write_text(yaml.safe_dump(data))
    return str(path)


class TestLoadConfig:

    def test_bundled_config(self):
        config = get_active_config()

        assert config.currency_precision == 2
        assert config.tax_line_policy == TaxLinePolicy.PER_AUTHORITY
        assert config.reversal_dating == ReversalDating.VOID_DATE
        assert config.tax_liability_account_code == "2100"
        assert config.is_permitted("admin", "period.reopen")
        assert not config.is_permitted("clerk", "ledger.void")

    def test_to_policy(self, tmp_path):
        path = _write(
            tmp_path,
            {
                "posting": {"currency_precision": 3, "reversal_dating": "original_date_if_open"},
                "tax": {"line_policy": "aggregate", "liability_account": 2100},
                "periods": {"require_contiguous": True},
                "access": {"elevated_roles": ["cfo"]},
            },
        )
        policy = get_active_config(path).to_policy()

        assert policy.currency_precision == 3
        assert policy.tax_line_policy == TaxLinePolicy.AGGREGATE
        assert policy.reversal_dating == ReversalDating.ORIGINAL_DATE_IF_OPEN
        assert policy.require_contiguous_periods
        assert policy.tax_liability_account_code == "2100"
        assert policy.elevated_roles == frozenset({"cfo"})

    def test_empty_file_uses_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        config = get_active_config(path)
        assert config.currency_precision == 2
        assert config.is_permitted("controller", "period.close")

    def test_env_overrides(self, tmp_path, monkeypatch):
        path = _write(tmp_path, {"config_id": "from-env", "database": {"url": "sqlite://"}})
        monkeypatch.setenv("LEDGER_CONFIG_PATH", path)
        monkeypatch.setenv("LEDGER_DATABASE_URL", "postgresql://ledger@db/ledger")

        config = get_active_config()

        assert config.config_id == "from-env"
        assert config.database_url == "postgresql://ledger@db/ledger"

    def test_unknown_policy_name_refused(self, tmp_path):
        with pytest.raises(ValueError):
            get_active_config(_write(tmp_path, {"tax": {"line_policy": "per_line"}}))

    def test_unknown_permission_refused(self, tmp_path):
        data = {"access": {"role_permissions": {"clerk": ["ledger.delete"]}}}
        with pytest.raises(ValueError):
            get_active_config(_write(tmp_path, data))

    def test_negative_precision_refused(self):
        with pytest.raises(ValueError):
            LedgerConfig(currency_precision=-1)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "nope.yaml")

    def test_config_trace_logged(self, tmp_path, captured_logs):
        data = {"config_id": "traced", "version": 4}
        get_active_config(_write(tmp_path, data))

        record = next(r for r in captured_logs() if r["message"] == "ledger_config_loaded")
        assert record["config_id"] == "traced"
        assert record["config_version"] == 4
        assert record["checksum"] == compute_checksum(data)


class TestLoaderHelpers:

    def test_parse_date(self):
        assert parse_date("2025-03-01") == date(2025, 3, 1)
        assert parse_date(date(2025, 3, 1)) == date(2025, 3, 1)
        with pytest.raises(ValueError):
            parse_date(20250301)

    def test_checksum_is_order_independent(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})

    def test_wildcard_role(self):
        config = parse_ledger_config({"access": {"role_permissions": {"root": ["*"]}}})
        assert config.is_permitted("root", "tax.administer")
        assert not config.is_permitted("nobody", "ledger.post")


class TestReferenceData:

    def test_seed_bundled_reference_data(self, session_factory, controller, clock):
        summary = load_reference_data(
            DEFAULT_REFERENCE_DATA_PATH, session_factory, controller, clock
        )

        assert summary.accounts == 10
        assert summary.periods == 12
        assert summary.authorities == 4
        assert summary.zones == 2
        assert summary.rules == 9

        resolver = TaxResolver.from_session_factory(session_factory)
        result = resolver.compute_tax(
            [TaxableItem("L1", ItemType.PARTS, Decimal("100.00"))], "78701", date(2025, 3, 1)
        )
        assert [(a.authority_code, a.tax_amount) for a in result] == [
            ("TX", Decimal("6.25")),
            ("TX-TRAVIS", Decimal("1.00")),
            ("TX-AUS", Decimal("1.00")),
            ("TX-CMTA", Decimal("1.00")),
        ]

    def test_reseeding_is_idempotent(self, session_factory, controller, clock):
        load_reference_data(DEFAULT_REFERENCE_DATA_PATH, session_factory, controller, clock)
        again = load_reference_data(
            DEFAULT_REFERENCE_DATA_PATH, session_factory, controller, clock
        )
        assert again.accounts == again.periods == again.rules == 0

    def test_unknown_parent_refused(self, session_factory, controller, tmp_path):
        path = tmp_path / "ref.yaml"
        path.write_text(yaml.safe_dump({
            "tax": {"authorities": [
                {"code": "X-CITY", "name": "City", "level": "city", "parent": "X"},
            ]},
        }))
        with pytest.raises(ValueError):
            load_reference_data(path, session_factory, controller)
