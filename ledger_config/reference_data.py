"""
Reference-data seeding (``ledger_config.reference_data``).

Loads a YAML document describing the chart of accounts, accounting periods
and tax reference data, and writes whatever is missing.  Re-running against
a seeded database changes nothing.

Document shape::

    accounts:
      - {code: "1100", name: Accounts Receivable, type: asset}
    periods:
      - {code: "2025-01", name: January 2025, start: 2025-01-01, end: 2025-01-31}
    monthly_periods: {year: 2025}          # alternative to an explicit list
    tax:
      authorities:
        - {code: TX, name: Texas, level: state, state_code: TX}
      zones:
        - {location_key: "78701", authorities: [TX, TX-TRAVIS, TX-AUS]}
      rules:
        - {authority: TX, item_type: parts, rate: "0.0625", effective_from: 2024-01-01}

Periods and tax data go through PeriodManager and TaxReferenceService, so
every seeded row is audited like any other change.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from ledger_config.loader import load_yaml_file, parse_date
from ledger_kernel.db.engine import session_scope
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import Actor
from ledger_kernel.domain.policy import LedgerPolicy
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.accounting_period import AccountingPeriod
from ledger_kernel.models.journal import DEFAULT_LEDGER_SCOPE
from ledger_kernel.models.tax import TaxAuthority, TaxMatrixRule, TaxZone
from ledger_kernel.services.chart_of_accounts import ChartOfAccounts
from ledger_kernel.services.period_manager import PeriodManager
from ledger_tax.reference_service import TaxReferenceService
from ledger_tax.resolver import TaxResolver

logger = get_logger("config.reference_data")


@dataclass(frozen=True)
class ReferenceDataSummary:
    """How many rows of each kind were created by one seeding run."""

    accounts: int = 0
    periods: int = 0
    authorities: int = 0
    zones: int = 0
    rules: int = 0


def monthly_periods(year: int) -> list[dict[str, Any]]:
    """Twelve calendar-month period definitions for ``year``."""
    periods = []
    for month in range(1, 13):
        last_day = calendar.monthrange(year, month)[1]
        periods.append(
            {
                "code": f"{year}-{month:02d}",
                "name": f"{calendar.month_name[month]} {year}",
                "start": date(year, month, 1),
                "end": date(year, month, last_day),
            }
        )
    return periods


def load_reference_data(
    path: Path | str,
    session_factory: sessionmaker[Session] | None,
    actor: Actor,
    clock: Clock | None = None,
    policy: LedgerPolicy | None = None,
    resolver: TaxResolver | None = None,
) -> ReferenceDataSummary:
    """Seed everything the document at ``path`` describes."""
    return seed_reference_data(
        load_yaml_file(Path(path)), session_factory, actor, clock, policy, resolver
    )


def seed_reference_data(
    data: dict[str, Any],
    session_factory: sessionmaker[Session] | None,
    actor: Actor,
    clock: Clock | None = None,
    policy: LedgerPolicy | None = None,
    resolver: TaxResolver | None = None,
) -> ReferenceDataSummary:
    accounts = _seed_accounts(data.get("accounts", []), session_factory, actor)

    period_defs = list(data.get("periods", []))
    if "monthly_periods" in data:
        period_defs.extend(monthly_periods(int(data["monthly_periods"]["year"])))
    periods = _seed_periods(period_defs, session_factory, actor, clock, policy)

    tax = data.get("tax", {})
    reference = TaxReferenceService(session_factory, resolver, clock, policy)
    authorities = _seed_authorities(tax.get("authorities", []), reference, session_factory, actor)
    zones = _seed_zones(tax.get("zones", []), reference, session_factory, actor)
    rules = _seed_rules(tax.get("rules", []), reference, session_factory, actor)

    summary = ReferenceDataSummary(
        accounts=accounts,
        periods=periods,
        authorities=authorities,
        zones=zones,
        rules=rules,
    )
    logger.info(
        "reference_data_seeded",
        extra={
            "accounts": accounts,
            "periods": periods,
            "authorities": authorities,
            "zones": zones,
            "rules": rules,
        },
    )
    return summary


def _seed_accounts(defs, session_factory, actor: Actor) -> int:
    created = 0
    with session_scope(session_factory) as session:
        chart = ChartOfAccounts(session)
        # Parents first so parent_code always resolves
        for item in sorted(defs, key=lambda d: d.get("parent") is not None):
            code = str(item["code"])
            if chart.get_by_code(code) is not None:
                continue
            chart.create_account(
                code=code,
                name=item["name"],
                account_type=item["type"],
                actor_id=actor.actor_id,
                normal_balance=item.get("normal_balance"),
                parent_code=str(item["parent"]) if item.get("parent") is not None else None,
                tags=item.get("tags"),
            )
            created += 1
    return created


def _seed_periods(defs, session_factory, actor, clock, policy) -> int:
    manager = PeriodManager(session_factory, clock, policy)
    created = 0
    for item in sorted(defs, key=lambda d: parse_date(d["start"])):
        scope = item.get("ledger_scope", DEFAULT_LEDGER_SCOPE)
        code = str(item["code"])
        with session_scope(session_factory) as session:
            exists = session.execute(
                select(AccountingPeriod.id)
                .where(AccountingPeriod.ledger_scope == scope)
                .where(AccountingPeriod.code == code)
            ).scalar_one_or_none()
        if exists is not None:
            continue
        manager.create_period(
            code,
            item.get("name", code),
            parse_date(item["start"]),
            parse_date(item["end"]),
            actor,
            ledger_scope=scope,
        )
        created += 1
    return created


def _seed_authorities(defs, reference: TaxReferenceService, session_factory, actor) -> int:
    created = 0
    with session_scope(session_factory) as session:
        existing = set(session.execute(select(TaxAuthority.code)).scalars())
    # A parent must exist before its children
    pending = [d for d in defs if str(d["code"]) not in existing]
    while pending:
        ready = [
            d for d in pending
            if d.get("parent") is None or str(d["parent"]) in existing
        ]
        if not ready:
            raise ValueError(
                "tax authorities reference unknown parents: "
                + ", ".join(sorted(str(d["code"]) for d in pending))
            )
        for item in ready:
            reference.create_authority(
                code=str(item["code"]),
                name=item["name"],
                level=item["level"],
                actor=actor,
                parent_code=str(item["parent"]) if item.get("parent") is not None else None,
                state_code=item.get("state_code"),
                agency_name=item.get("agency"),
            )
            existing.add(str(item["code"]))
            created += 1
        pending = [d for d in pending if d not in ready]
    return created


def _seed_zones(defs, reference: TaxReferenceService, session_factory, actor) -> int:
    created = 0
    with session_scope(session_factory) as session:
        existing = set(session.execute(select(TaxZone.location_key)).scalars())
    for item in defs:
        key = str(item["location_key"])
        if key in existing:
            continue
        reference.create_zone(
            location_key=key,
            authority_codes=[str(code) for code in item["authorities"]],
            actor=actor,
            name=item.get("name"),
        )
        created += 1
    return created


def _seed_rules(defs, reference: TaxReferenceService, session_factory, actor) -> int:
    created = 0
    with session_scope(session_factory) as session:
        existing = {
            (code, item_type, effective_from)
            for code, item_type, effective_from in session.execute(
                select(
                    TaxAuthority.code,
                    TaxMatrixRule.item_type,
                    TaxMatrixRule.effective_from,
                ).join(TaxAuthority, TaxMatrixRule.authority_id == TaxAuthority.id)
            ).all()
        }
    for item in defs:
        key = (str(item["authority"]), item["item_type"], parse_date(item["effective_from"]))
        if key in existing:
            continue
        reference.add_rule(
            authority_code=str(item["authority"]),
            item_type=item["item_type"],
            rate=str(item.get("rate", "0")),
            effective_from=parse_date(item["effective_from"]),
            actor=actor,
            effective_to=(
                parse_date(item["effective_to"]) if item.get("effective_to") else None
            ),
            is_taxable=bool(item.get("taxable", True)),
            cap_amount=str(item["cap"]) if item.get("cap") is not None else None,
        )
        created += 1
    return created
