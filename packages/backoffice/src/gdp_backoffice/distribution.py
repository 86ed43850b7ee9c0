"""Monthly profit distribution for the Mi Heladito and GDP reports."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal

from gdp_backoffice.config.policy_loader import (
    ProfitSharePolicy,
    ReportSharePolicy,
    load_business_policy,
)
from gdp_backoffice.models import (
    ExpenseSource,
    ManualReportEntry,
    MiHeladitoReportEntry,
    ReportExpenseItem,
    SubagentMonthlyPayment,
)
from gdp_backoffice.money import ZERO, to_decimal, total
from gdp_backoffice.payroll import SPANISH_MONTHS


def month_key(year: int, month: int) -> str:
    """Storage key for a report month, e.g. ``2024-08``."""
    return f"{year}-{month:02d}"


def parse_month_key(key: str) -> tuple[int, int] | None:
    parts = key.split("-")
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        return None
    year, month = int(parts[0]), int(parts[1])
    if not 1 <= month <= 12:
        return None
    return year, month


# === Mi Heladito ===


@dataclass(frozen=True)
class ProfitDistribution:
    """Mi Heladito profit split for one month."""

    income: Decimal
    expense: Decimal
    profit: Decimal
    partner_shares: tuple[tuple[str, Decimal], tuple[str, Decimal]]
    business_share: Decimal
    investment_purchases: Decimal
    final_business_share: Decimal

    @property
    def partners_total(self) -> Decimal:
        return self.partner_shares[0][1] + self.partner_shares[1][1]


def distribute_profit(
    income: Decimal | int | float | str,
    expense: Decimal | int | float | str,
    investment_purchases: Decimal | int | float | str = 0,
    policy: ProfitSharePolicy | None = None,
) -> ProfitDistribution:
    """Split monthly profit between the business and the two partners.

    Profit up to the reinvestment threshold (and any loss) stays with the
    business. Above it, the business keeps the threshold plus its share of
    the remainder and the partners split the rest equally. Investment
    purchases are then taken from the business share, which may go negative.
    """
    policy = policy or load_business_policy().mi_heladito
    income_d = to_decimal(income)
    expense_d = to_decimal(expense)
    investments = to_decimal(investment_purchases)
    profit = income_d - expense_d

    partner_each = ZERO
    if profit <= policy.min_reinvestment:
        business_share = profit
    else:
        remainder = profit - policy.min_reinvestment
        partner_each = remainder * policy.partners_share / 2
        business_share = policy.min_reinvestment + remainder * policy.business_share

    first, second = policy.partners
    return ProfitDistribution(
        income=income_d,
        expense=expense_d,
        profit=profit,
        partner_shares=((first, partner_each), (second, partner_each)),
        business_share=business_share,
        investment_purchases=investments,
        final_business_share=business_share - investments,
    )


def distribute_mi_heladito_entry(
    entry: MiHeladitoReportEntry, policy: ProfitSharePolicy | None = None
) -> ProfitDistribution:
    """Distribution for a stored monthly report entry."""
    return distribute_profit(
        total(item.amount for item in entry.incomes),
        total(item.amount for item in entry.expenses),
        total(item.amount for item in entry.investment_purchases),
        policy,
    )


# === GDP monthly report ===


@dataclass(frozen=True)
class MonthlyReport:
    """Monthly GDP report totals and the flat profit split."""

    month_key: str
    expenses: tuple[ReportExpenseItem, ...]
    incomes: tuple[tuple[str, Decimal], ...]
    total_expense: Decimal
    total_income: Decimal
    profit: Decimal
    shares: tuple[tuple[str, Decimal], ...]


def subagent_expense_for_month(
    payments: Iterable[SubagentMonthlyPayment], key: str
) -> Decimal:
    """Sum of subagent payments registered for a month key."""
    return total(p.total_amount_paid for p in payments if p.month_year == key)


def build_monthly_report(
    key: str,
    entry: ManualReportEntry | None,
    subagent_payments: Iterable[SubagentMonthlyPayment],
    policy: ReportSharePolicy | None = None,
) -> MonthlyReport:
    """Assemble the GDP report for a month.

    Expenses are the automatic subagent total plus the manual items of the
    entry. Income counts only the configured income sources.
    """
    policy = policy or load_business_policy().gdp_report
    entry = entry or ManualReportEntry()

    expenses: list[ReportExpenseItem] = []
    subagents_total = subagent_expense_for_month(subagent_payments, key)
    if subagents_total > 0:
        expenses.append(
            ReportExpenseItem(
                id="auto-subagentes",
                remark="NOMINA Subagentes",
                amount=subagents_total,
                is_automatic=True,
                category=ExpenseSource.SUBAGENTS,
            )
        )
    expenses.extend(item for item in entry.expenses if not item.is_automatic)

    incomes = tuple(
        (source, total(i.amount for i in entry.incomes if i.source == source))
        for source in policy.income_sources
    )
    total_expense = total(item.amount for item in expenses)
    total_income = total(amount for _, amount in incomes)
    profit = total_income - total_expense

    return MonthlyReport(
        month_key=key,
        expenses=tuple(expenses),
        incomes=incomes,
        total_expense=total_expense,
        total_income=total_income,
        profit=profit,
        shares=tuple((party.name, profit * party.share) for party in policy.parties),
    )


def split_report_profit(
    incomes: Sequence[Decimal | int | float | str],
    expenses: Sequence[Decimal | int | float | str],
    policy: ReportSharePolicy | None = None,
) -> tuple[Decimal, tuple[tuple[str, Decimal], ...]]:
    """Flat percentage split of (Σ incomes − Σ expenses) between the parties."""
    policy = policy or load_business_policy().gdp_report
    profit = total(to_decimal(i) for i in incomes) - total(to_decimal(e) for e in expenses)
    return profit, tuple((party.name, profit * party.share) for party in policy.parties)


@dataclass(frozen=True)
class ReportSummary:
    month_key: str
    period: str
    incomes: Decimal
    expenses: Decimal
    profit: Decimal


def historical_summaries(
    entries: Mapping[str, ManualReportEntry],
    subagent_payments: Sequence[SubagentMonthlyPayment],
) -> list[ReportSummary]:
    """One row per month holding manual data, newest first."""
    rows: list[ReportSummary] = []
    for key, entry in entries.items():
        has_manual_data = any(not e.is_automatic for e in entry.expenses) or bool(entry.incomes)
        parsed = parse_month_key(key)
        if not has_manual_data or parsed is None:
            continue
        year, month = parsed
        expenses = subagent_expense_for_month(subagent_payments, key) + total(
            e.amount for e in entry.expenses if not e.is_automatic
        )
        incomes = total(i.amount for i in entry.incomes)
        rows.append(
            ReportSummary(
                month_key=key,
                period=f"{SPANISH_MONTHS[month - 1]} {year}",
                incomes=incomes,
                expenses=expenses,
                profit=incomes - expenses,
            )
        )
    rows.sort(key=lambda row: row.month_key, reverse=True)
    return rows
