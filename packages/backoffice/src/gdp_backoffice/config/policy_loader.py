"""Utilities for loading business policy values from YAML."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

from gdp_backoffice.config.settings import get_settings

DEFAULT_POLICY_PATH = Path(__file__).resolve().parent / "policy.yaml"


@dataclass(frozen=True)
class TaxBracket:
    """One annual ISR bracket: income above ``lower`` up to ``upper`` taxed at ``rate``."""

    lower: Decimal
    upper: Decimal | None
    rate: Decimal


@dataclass(frozen=True)
class PayrollPolicy:
    """Constants used by the fortnightly payslip calculation."""

    avg_working_days_per_month: Decimal
    standard_hours_per_day: Decimal
    overtime_multiplier: Decimal
    afp_rate: Decimal
    sfs_rate: Decimal
    pay_periods_per_year: int
    isr_brackets: tuple[TaxBracket, ...]


@dataclass(frozen=True)
class ProfitSharePolicy:
    """Mi Heladito profit split configuration."""

    min_reinvestment: Decimal
    partners_share: Decimal
    business_share: Decimal
    partners: tuple[str, str]
    business_account: str
    part_time_month_days: int


@dataclass(frozen=True)
class ReportParty:
    name: str
    share: Decimal


@dataclass(frozen=True)
class ReportSharePolicy:
    """GDP monthly report income sources and flat profit split."""

    income_sources: tuple[str, ...]
    parties: tuple[ReportParty, ...]


@dataclass(frozen=True)
class BusinessPolicy:
    payroll: PayrollPolicy
    mi_heladito: ProfitSharePolicy
    gdp_report: ReportSharePolicy


def _decimal(value: Any, where: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"{where}: invalid number {value!r}") from exc


def _rate(value: Any, where: str) -> Decimal:
    rate = _decimal(value, where)
    if not (Decimal("0") <= rate <= Decimal("1")):
        raise ValueError(f"{where}: rate must be between 0 and 1, got {rate}")
    return rate


def _section(data: dict[str, Any], name: str, source: str) -> dict[str, Any]:
    section = data.get(name)
    if not isinstance(section, dict):
        raise ValueError(f"{source}: {name} must be a mapping")
    return section


def _parse_brackets(raw: Any, source: str) -> tuple[TaxBracket, ...]:
    if not isinstance(raw, list) or not raw:
        raise ValueError(f"{source}: payroll.isr_brackets must be a non-empty list")

    brackets: list[TaxBracket] = []
    lower = Decimal("0")
    for idx, item in enumerate(raw):
        where = f"{source}: payroll.isr_brackets[{idx}]"
        if not isinstance(item, dict):
            raise ValueError(f"{where} must be a mapping")
        upper_raw = item.get("up_to")
        upper = None if upper_raw is None else _decimal(upper_raw, where)
        if upper is not None and upper <= lower:
            raise ValueError(f"{where}: thresholds must be strictly increasing")
        if upper is None and idx != len(raw) - 1:
            raise ValueError(f"{where}: only the last bracket may be open-ended")
        brackets.append(TaxBracket(lower=lower, upper=upper, rate=_rate(item.get("rate"), where)))
        if upper is not None:
            lower = upper

    return tuple(brackets)


def parse_business_policy(data: dict[str, Any], source: str = "policy") -> BusinessPolicy:
    """Build a BusinessPolicy from an already-loaded YAML mapping."""
    payroll = _section(data, "payroll", source)
    heladito = _section(data, "mi_heladito", source)
    report = _section(data, "gdp_report", source)

    pay_periods = payroll.get("pay_periods_per_year")
    if not isinstance(pay_periods, int) or pay_periods <= 0:
        raise ValueError(f"{source}: payroll.pay_periods_per_year must be a positive int")

    payroll_policy = PayrollPolicy(
        avg_working_days_per_month=_decimal(
            payroll.get("avg_working_days_per_month"), f"{source}: payroll"
        ),
        standard_hours_per_day=_decimal(
            payroll.get("standard_hours_per_day"), f"{source}: payroll"
        ),
        overtime_multiplier=_decimal(payroll.get("overtime_multiplier"), f"{source}: payroll"),
        afp_rate=_rate(payroll.get("afp_rate"), f"{source}: payroll.afp_rate"),
        sfs_rate=_rate(payroll.get("sfs_rate"), f"{source}: payroll.sfs_rate"),
        pay_periods_per_year=pay_periods,
        isr_brackets=_parse_brackets(payroll.get("isr_brackets"), source),
    )

    partners = heladito.get("partners")
    if not isinstance(partners, list) or len(partners) != 2:
        raise ValueError(f"{source}: mi_heladito.partners must list exactly two names")
    partners_share = _rate(heladito.get("partners_share"), f"{source}: mi_heladito")
    business_share = _rate(heladito.get("business_share"), f"{source}: mi_heladito")
    if partners_share + business_share != Decimal("1"):
        raise ValueError(f"{source}: mi_heladito shares must sum to 1")

    heladito_policy = ProfitSharePolicy(
        min_reinvestment=_decimal(heladito.get("min_reinvestment"), f"{source}: mi_heladito"),
        partners_share=partners_share,
        business_share=business_share,
        partners=(str(partners[0]), str(partners[1])),
        business_account=str(heladito.get("business_account", "")),
        part_time_month_days=int(heladito.get("part_time_month_days", 30)),
    )

    sources = report.get("income_sources")
    if not isinstance(sources, list) or not sources:
        raise ValueError(f"{source}: gdp_report.income_sources must be a non-empty list")
    parties_raw = report.get("parties")
    if not isinstance(parties_raw, list) or not parties_raw:
        raise ValueError(f"{source}: gdp_report.parties must be a non-empty list")
    parties = tuple(
        ReportParty(
            name=str(party.get("name")),
            share=_rate(party.get("share"), f"{source}: gdp_report.parties[{idx}]"),
        )
        for idx, party in enumerate(parties_raw)
    )
    if sum((party.share for party in parties), Decimal("0")) != Decimal("1"):
        raise ValueError(f"{source}: gdp_report party shares must sum to 1")

    return BusinessPolicy(
        payroll=payroll_policy,
        mi_heladito=heladito_policy,
        gdp_report=ReportSharePolicy(
            income_sources=tuple(str(s) for s in sources),
            parties=parties,
        ),
    )


@lru_cache
def load_business_policy(path: Path | None = None) -> BusinessPolicy:
    """Load business policy from YAML.

    Args:
        path: Policy file. Defaults to ``GDP_POLICY_FILE`` or the packaged file.

    Returns:
        Parsed and validated policy.
    """
    policy_path = path or get_settings().policy_file or DEFAULT_POLICY_PATH
    raw = Path(policy_path).read_text(encoding="utf-8")
    data = yaml.safe_load(raw) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{Path(policy_path).name}: policy must be a mapping")
    return parse_business_policy(data, source=Path(policy_path).name)
