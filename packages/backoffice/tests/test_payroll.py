"""Tests for fortnightly payroll and Mi Heladito worker pay."""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from gdp_backoffice.config import load_business_policy
from gdp_backoffice.errors import ValidationError
from gdp_backoffice.money import round_money
from gdp_backoffice.payroll import (
    AFP_LABEL,
    ISR_LABEL,
    SFS_LABEL,
    Fortnight,
    PayPeriod,
    PayslipInput,
    WorkerPayInput,
    annual_isr,
    build_mi_heladito_run,
    build_payroll_run,
    calculate_payslip,
    hourly_rate,
    mi_heladito_payment,
    tss_applied,
)


@pytest.fixture
def policy():
    return load_business_policy().payroll


class TestCalculatePayslip:
    """Tests for the fortnightly payslip calculation."""

    def test_overtime_without_tss(self):
        """16,000 monthly with 5 overtime hours and no TSS."""
        calc = calculate_payslip(Decimal("16000"), Decimal("5"))

        assert calc.base_salary == Decimal("8000")
        assert round_money(calc.hourly_rate) == Decimal("83.93")
        assert round_money(calc.overtime_pay) == Decimal("566.51")
        assert round_money(calc.gross_earnings) == Decimal("8566.51")
        assert calc.afp == 0
        assert calc.sfs == 0
        assert calc.isr == 0
        assert round_money(calc.net_pay) == Decimal("8566.51")
        assert calc.deductions() == []

    def test_tss_and_isr_bracket(self):
        """60,000 monthly with TSS lands in the 20% annual bracket."""
        calc = calculate_payslip(Decimal("60000"), apply_tss=True)

        assert calc.gross_earnings == Decimal("30000")
        assert calc.afp == Decimal("861.0000")
        assert calc.sfs == Decimal("912.0000")
        assert round_money(calc.isr) == Decimal("1743.34")
        assert round_money(calc.net_pay) == Decimal("26483.66")

        names = [d.name for d in calc.deductions()]
        assert names == [AFP_LABEL, SFS_LABEL, ISR_LABEL]

    def test_isr_without_tss(self):
        calc = calculate_payslip(Decimal("60000"))

        assert round_money(calc.isr) == Decimal("2097.94")
        assert round_money(calc.net_pay) == Decimal("27902.06")

    def test_top_bracket(self):
        calc = calculate_payslip(Decimal("100000"))

        assert round_money(calc.isr) == Decimal("6791.43")

    def test_net_equals_gross_minus_deductions(self):
        calc = calculate_payslip(Decimal("45000"), Decimal("12.5"), apply_tss=True)

        assert abs(calc.net_pay - (calc.gross_earnings - calc.total_deductions)) < Decimal("1e-18")
        rounded_parts = round_money(calc.gross_earnings) - sum(d.amount for d in calc.deductions())
        assert abs(round_money(calc.net_pay) - rounded_parts) <= Decimal("0.02")

    def test_zero_salary(self):
        calc = calculate_payslip(0)

        assert calc.gross_earnings == 0
        assert calc.net_pay == 0

    def test_negative_inputs_rejected(self):
        with pytest.raises(ValidationError):
            calculate_payslip(Decimal("-1"))
        with pytest.raises(ValidationError):
            calculate_payslip(Decimal("16000"), Decimal("-2"))

    def test_hourly_rate_uses_average_working_days(self, policy):
        assert hourly_rate(Decimal("23.83") * 8, policy) == Decimal("1")


class TestAnnualIsr:
    """Tests for the progressive bracket table."""

    def test_exempt_up_to_first_threshold(self, policy):
        assert annual_isr(Decimal("416220"), policy.isr_brackets) == 0

    def test_bracket_boundaries(self, policy):
        assert annual_isr(Decimal("624329"), policy.isr_brackets) == Decimal("31216.35")
        assert annual_isr(Decimal("867123"), policy.isr_brackets) == Decimal("79775.15")

    def test_above_top_threshold(self, policy):
        assert annual_isr(Decimal("967123"), policy.isr_brackets) == Decimal("104775.15")


class TestPayPeriod:
    """Tests for fortnight period labels."""

    def test_label(self):
        period = PayPeriod(year=2024, month=7, fortnight=Fortnight.FIRST)

        assert period.label == "Julio 2024 - 1st Fortnight"

    def test_containing(self):
        assert PayPeriod.containing(date(2024, 7, 15)).fortnight == Fortnight.FIRST
        assert PayPeriod.containing(date(2024, 7, 16)).fortnight == Fortnight.SECOND

    def test_parse_round_trips_label(self):
        period = PayPeriod.parse("Diciembre 2024 - 2nd Fortnight")

        assert period == PayPeriod(year=2024, month=12, fortnight=Fortnight.SECOND)

    def test_parse_rejects_unknown_text(self):
        with pytest.raises(ValidationError):
            PayPeriod.parse("July 2024 - 1st Fortnight")
        with pytest.raises(ValidationError):
            PayPeriod.parse("Julio 2024")


class TestPayrollRun:
    """Tests for building a payroll run."""

    def test_run_totals_and_payslips(self, employee, senior_employee):
        employees = [
            employee.model_copy(update={"id": employee.cedula}),
            senior_employee.model_copy(update={"id": senior_employee.cedula}),
        ]
        inputs = [
            PayslipInput(employee_id=employee.cedula, overtime_hours=Decimal("5")),
            PayslipInput(employee_id=senior_employee.cedula, apply_tss=True),
        ]
        period = PayPeriod(year=2024, month=7, fortnight=Fortnight.FIRST)
        processed_at = datetime(2024, 7, 15, tzinfo=timezone.utc)

        run = build_payroll_run(employees, inputs, period, "payr-1", processed_at=processed_at)

        assert run.employees_processed == 2
        assert run.pay_period == "Julio 2024 - 1st Fortnight"
        assert run.total_amount == Decimal("35050.17")
        first, second = run.payslips_generated
        assert first.id == f"ps-{employee.cedula}-payr-1"
        assert first.net_salary == Decimal("8566.51")
        assert first.generated_date == processed_at
        assert not tss_applied(first)
        assert second.net_salary == Decimal("26483.66")
        assert tss_applied(second)

    def test_empty_selection_rejected(self, employee):
        period = PayPeriod(year=2024, month=7, fortnight=Fortnight.FIRST)

        with pytest.raises(ValidationError):
            build_payroll_run([employee], [], period, "payr-1")

    def test_unknown_employee_rejected(self, employee):
        period = PayPeriod(year=2024, month=7, fortnight=Fortnight.FIRST)

        with pytest.raises(ValidationError, match="Unknown employee"):
            build_payroll_run([employee], [PayslipInput(employee_id="missing")], period, "r")


class TestMiHeladitoPayroll:
    """Tests for Mi Heladito worker payments."""

    def test_part_time_is_prorated(self, heladito_workers):
        part_time, _ = heladito_workers

        assert mi_heladito_payment(part_time, 20) == Decimal("10000")

    def test_part_time_defaults_to_full_month(self, heladito_workers):
        part_time, _ = heladito_workers

        assert mi_heladito_payment(part_time) == Decimal("15000")

    def test_contractor_gets_flat_fee(self, heladito_workers):
        _, contractor = heladito_workers

        assert mi_heladito_payment(contractor, 3) == Decimal("8000")

    def test_run_skips_excluded_workers(self, heladito_workers):
        inputs = [
            WorkerPayInput(worker_id="mihe-part", days_worked=20),
            WorkerPayInput(worker_id="mihe-fixed", included=False),
        ]

        run = build_mi_heladito_run(heladito_workers, inputs, 2024, 8, "mihe-run")

        assert run.pay_period == "Agosto 2024"
        assert run.total_amount_paid == Decimal("10000.00")
        assert len(run.payslips) == 1
        assert run.payslips[0].days_worked == 20
        assert run.payslips[0].base_monthly_salary == Decimal("15000")

    def test_run_with_contractor(self, heladito_workers):
        inputs = [
            WorkerPayInput(worker_id="mihe-part", days_worked=20),
            WorkerPayInput(worker_id="mihe-fixed"),
        ]

        run = build_mi_heladito_run(heladito_workers, inputs, 2024, 8, "mihe-run")

        assert run.total_amount_paid == Decimal("18000.00")
        assert run.payslips[1].days_worked is None

    def test_run_requires_a_worker(self, heladito_workers):
        inputs = [WorkerPayInput(worker_id="mihe-part", included=False)]

        with pytest.raises(ValidationError):
            build_mi_heladito_run(heladito_workers, inputs, 2024, 8, "mihe-run")
