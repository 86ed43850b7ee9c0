"""Fortnightly payroll calculation.

Payslips are computed with unrounded Decimal arithmetic; amounts are
rounded to cents only when a Payslip record is built for storage or display.
ISR is withheld on an annualized basis: fortnightly figures are multiplied
by the number of pay periods per year, taxed with the annual bracket table,
and divided back.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum

import structlog

from gdp_backoffice.config.policy_loader import (
    PayrollPolicy,
    ProfitSharePolicy,
    TaxBracket,
    load_business_policy,
)
from gdp_backoffice.errors import ValidationError
from gdp_backoffice.models import (
    Deduction,
    Employee,
    MiHeladitoPayrollRun,
    MiHeladitoPayslip,
    MiHeladitoWorker,
    MiHeladitoWorkerType,
    Payslip,
    PayrollRun,
    PayrollRunStatus,
)
from gdp_backoffice.money import ZERO, round_money, to_decimal, total

logger = structlog.get_logger(__name__)

AFP_LABEL = "AFP (Pensión)"
SFS_LABEL = "SFS (Salud)"
ISR_LABEL = "ISR (Impuesto Sobre la Renta)"

SPANISH_MONTHS = (
    "Enero",
    "Febrero",
    "Marzo",
    "Abril",
    "Mayo",
    "Junio",
    "Julio",
    "Agosto",
    "Septiembre",
    "Octubre",
    "Noviembre",
    "Diciembre",
)


class Fortnight(str, Enum):
    FIRST = "1st Fortnight"
    SECOND = "2nd Fortnight"

    @classmethod
    def for_day(cls, day: int) -> Fortnight:
        return cls.FIRST if day <= 15 else cls.SECOND


@dataclass(frozen=True)
class PayPeriod:
    """A named fortnightly period, e.g. ``Julio 2024 - 1st Fortnight``."""

    year: int
    month: int  # 1-12
    fortnight: Fortnight

    @classmethod
    def containing(cls, day: date) -> PayPeriod:
        return cls(year=day.year, month=day.month, fortnight=Fortnight.for_day(day.day))

    @classmethod
    def parse(cls, label: str) -> PayPeriod:
        match = re.match(
            r"^\s*(\w+)\s+(\d{4})\s*-\s*(1st|2nd)\s+Fortnight\s*$", label, re.IGNORECASE
        )
        if not match:
            raise ValidationError(f"Unrecognized pay period {label!r}")
        month_name, year, ordinal = match.groups()
        lowered = [m.lower() for m in SPANISH_MONTHS]
        if month_name.lower() not in lowered:
            raise ValidationError(f"Unknown month {month_name!r} in pay period")
        fortnight = Fortnight.FIRST if ordinal.lower() == "1st" else Fortnight.SECOND
        return cls(year=int(year), month=lowered.index(month_name.lower()) + 1, fortnight=fortnight)

    @property
    def label(self) -> str:
        return f"{SPANISH_MONTHS[self.month - 1]} {self.year} - {self.fortnight.value}"


def hourly_rate(monthly_salary: Decimal, policy: PayrollPolicy) -> Decimal:
    """Hourly rate from a monthly salary using average working days per month."""
    return (
        monthly_salary
        / policy.avg_working_days_per_month
        / policy.standard_hours_per_day
    )


def annual_isr(taxable_income: Decimal, brackets: Sequence[TaxBracket]) -> Decimal:
    """Progressive annual income tax over the bracket table."""
    tax = ZERO
    for bracket in brackets:
        if taxable_income <= bracket.lower:
            break
        upper = taxable_income if bracket.upper is None else min(taxable_income, bracket.upper)
        tax += (upper - bracket.lower) * bracket.rate
    return tax


def fortnightly_isr(
    gross: Decimal, tss_deductions: Decimal, policy: PayrollPolicy
) -> Decimal:
    """ISR withholding for one pay period, never negative."""
    periods = Decimal(policy.pay_periods_per_year)
    annual_taxable = gross * periods - tss_deductions * periods
    return max(ZERO, annual_isr(annual_taxable, policy.isr_brackets) / periods)


@dataclass(frozen=True)
class PayslipCalculation:
    """Unrounded breakdown of one fortnightly payslip."""

    monthly_salary: Decimal
    base_salary: Decimal
    hourly_rate: Decimal
    overtime_hours: Decimal
    overtime_pay: Decimal
    gross_earnings: Decimal
    afp: Decimal
    sfs: Decimal
    isr: Decimal
    net_pay: Decimal

    @property
    def total_deductions(self) -> Decimal:
        return self.afp + self.sfs + self.isr

    def deductions(self) -> list[Deduction]:
        """Non-zero deductions, in AFP, SFS, ISR order, rounded to cents."""
        items = [(AFP_LABEL, self.afp), (SFS_LABEL, self.sfs), (ISR_LABEL, self.isr)]
        return [
            Deduction(name=name, amount=round_money(amount))
            for name, amount in items
            if amount > 0
        ]


def calculate_payslip(
    monthly_salary: Decimal | int | float | str,
    overtime_hours: Decimal | int | float | str = 0,
    apply_tss: bool = False,
    policy: PayrollPolicy | None = None,
) -> PayslipCalculation:
    """Compute one fortnight's earnings, deductions and net pay.

    Args:
        monthly_salary: Employee monthly salary (DOP).
        overtime_hours: Overtime worked in the fortnight.
        apply_tss: Whether AFP and SFS are withheld on this payslip.
        policy: Payroll constants. Defaults to the loaded business policy.

    Raises:
        ValidationError: If salary or overtime hours are negative.
    """
    policy = policy or load_business_policy().payroll
    salary = to_decimal(monthly_salary)
    hours = to_decimal(overtime_hours)
    if salary < 0:
        raise ValidationError("Monthly salary cannot be negative")
    if hours < 0:
        raise ValidationError("Overtime hours cannot be negative")

    base = salary / 2
    rate = hourly_rate(salary, policy)
    overtime_pay = hours * rate * policy.overtime_multiplier
    gross = base + overtime_pay

    afp = gross * policy.afp_rate if apply_tss else ZERO
    sfs = gross * policy.sfs_rate if apply_tss else ZERO
    isr = fortnightly_isr(gross, afp + sfs, policy)

    return PayslipCalculation(
        monthly_salary=salary,
        base_salary=base,
        hourly_rate=rate,
        overtime_hours=hours,
        overtime_pay=overtime_pay,
        gross_earnings=gross,
        afp=afp,
        sfs=sfs,
        isr=isr,
        net_pay=gross - afp - sfs - isr,
    )


@dataclass(frozen=True)
class PayslipInput:
    """Per-employee inputs for a payroll run."""

    employee_id: str
    overtime_hours: Decimal = ZERO
    apply_tss: bool = False


def build_payslip(
    employee: Employee,
    calculation: PayslipCalculation,
    run_id: str,
    period: PayPeriod,
    generated_at: datetime | None = None,
) -> Payslip:
    """Round a calculation into a storable Payslip record."""
    return Payslip(
        id=f"ps-{employee.id}-{run_id}",
        employee_id=employee.id,
        employee_name=employee.name,
        employee_email=employee.email or None,
        employee_cedula=employee.cedula,
        payroll_run_id=run_id,
        pay_period=period.label,
        base_salary=round_money(calculation.base_salary),
        overtime_hours=calculation.overtime_hours,
        overtime_pay=round_money(calculation.overtime_pay),
        total_earnings=round_money(calculation.gross_earnings),
        deductions=calculation.deductions(),
        net_salary=round_money(calculation.net_pay),
        generated_date=generated_at or datetime.now(timezone.utc),
    )


def build_payroll_run(
    employees: Sequence[Employee],
    inputs: Sequence[PayslipInput],
    period: PayPeriod,
    run_id: str,
    policy: PayrollPolicy | None = None,
    processed_at: datetime | None = None,
) -> PayrollRun:
    """Compute payslips for the selected employees and aggregate them into a run.

    The run total is the sum of unrounded net pay, rounded once.

    Raises:
        ValidationError: If no employees are selected or an id is unknown.
    """
    if not inputs:
        raise ValidationError("Select at least one employee for the payroll run")

    policy = policy or load_business_policy().payroll
    processed_at = processed_at or datetime.now(timezone.utc)
    by_id = {employee.id: employee for employee in employees}

    payslips: list[Payslip] = []
    net_total = ZERO
    for item in inputs:
        employee = by_id.get(item.employee_id)
        if employee is None:
            raise ValidationError(f"Unknown employee {item.employee_id!r}")
        calculation = calculate_payslip(
            employee.salary, item.overtime_hours, item.apply_tss, policy
        )
        net_total += calculation.net_pay
        payslips.append(build_payslip(employee, calculation, run_id, period, processed_at))

    logger.debug(
        "payroll_run_built",
        run_id=run_id,
        period=period.label,
        employees=len(payslips),
    )

    return PayrollRun(
        id=run_id,
        pay_period=period.label,
        status=PayrollRunStatus.COMPLETED,
        total_amount=round_money(net_total),
        employees_processed=len(payslips),
        processing_date=processed_at,
        payslips_generated=payslips,
    )


def tss_applied(payslip: Payslip) -> bool:
    """True if the stored payslip carried AFP or SFS deductions."""
    return any("AFP" in d.name or "SFS" in d.name for d in payslip.deductions)


# === Mi Heladito payroll ===


@dataclass(frozen=True)
class WorkerPayInput:
    worker_id: str
    included: bool = True
    days_worked: int | None = None


def mi_heladito_payment(
    worker: MiHeladitoWorker,
    days_worked: int | None = None,
    policy: ProfitSharePolicy | None = None,
) -> Decimal:
    """Unrounded payment for one worker for a month.

    Fixed-contract workers receive their flat fee. Part-time workers are
    pro-rated over a fixed-length month.
    """
    if worker.worker_type == MiHeladitoWorkerType.CONTRACTOR:
        return worker.base_amount
    policy = policy or load_business_policy().mi_heladito
    days = policy.part_time_month_days if days_worked is None else days_worked
    if days < 0:
        raise ValidationError("Days worked cannot be negative")
    return worker.base_amount / Decimal(policy.part_time_month_days) * Decimal(days)


def build_mi_heladito_run(
    workers: Sequence[MiHeladitoWorker],
    inputs: Sequence[WorkerPayInput],
    year: int,
    month: int,
    run_id: str,
    policy: ProfitSharePolicy | None = None,
    processed_at: datetime | None = None,
) -> MiHeladitoPayrollRun:
    """Build a monthly Mi Heladito payroll run for the included workers."""
    included = [item for item in inputs if item.included]
    if not included:
        raise ValidationError("Select at least one worker for the payroll run")

    by_id = {worker.id: worker for worker in workers}
    pay_period = f"{SPANISH_MONTHS[month - 1]} {year}"
    payslips: list[MiHeladitoPayslip] = []
    payments: list[Decimal] = []

    for item in included:
        worker = by_id.get(item.worker_id)
        if worker is None:
            raise ValidationError(f"Unknown worker {item.worker_id!r}")
        payment = mi_heladito_payment(worker, item.days_worked, policy)
        payments.append(payment)
        part_time = worker.worker_type == MiHeladitoWorkerType.PART_TIME
        payslips.append(
            MiHeladitoPayslip(
                id=f"mh-ps-{worker.id}-{run_id}",
                payroll_run_id=run_id,
                worker_id=worker.id,
                worker_name=worker.name,
                worker_type=worker.worker_type,
                pay_period=pay_period,
                days_worked=item.days_worked if part_time else None,
                base_monthly_salary=worker.base_amount if part_time else None,
                net_payment=round_money(payment),
            )
        )

    return MiHeladitoPayrollRun(
        id=run_id,
        pay_period=pay_period,
        status=PayrollRunStatus.COMPLETED,
        total_amount_paid=round_money(total(payments)),
        payslips=payslips,
        processing_date=processed_at or datetime.now(timezone.utc),
    )
