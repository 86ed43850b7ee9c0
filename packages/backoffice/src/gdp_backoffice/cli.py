"""Command line calculators for the GDP back office.

Usage:
    gdp-backoffice payslip 16000 --overtime 5
    gdp-backoffice payslip 60000 --tss --period "Julio 2024 - 1st Fortnight"
    gdp-backoffice heladito 200000 50000 --investments 10000
    gdp-backoffice gdp-report --income 120000 --expense 20000 --expense 5000
    gdp-backoffice loan-schedule 10000 2000 500
    gdp-backoffice fuel 0:50 50:120 --gallons 10 --cost 2900
"""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence
from datetime import date
from decimal import Decimal, InvalidOperation

import structlog

from gdp_backoffice.config import configure_logging
from gdp_backoffice.distribution import distribute_profit, split_report_profit
from gdp_backoffice.errors import BackofficeError
from gdp_backoffice.fuel import calculate_efficiency, make_segment
from gdp_backoffice.loans import amortization_schedule, rounded
from gdp_backoffice.models import Loan
from gdp_backoffice.money import round_money
from gdp_backoffice.payroll import PayPeriod, calculate_payslip

logger = structlog.get_logger(__name__)


def _amount(text: str) -> Decimal:
    try:
        return Decimal(text)
    except InvalidOperation as e:
        raise argparse.ArgumentTypeError(f"invalid amount: {text!r}") from e


def _fmt(amount: Decimal) -> str:
    return f"DOP {round_money(amount):,.2f}"


def _print_rows(title: str, rows: Sequence[tuple[str, str]]) -> None:
    width = max(len(label) for label, _ in rows)
    print(title)
    print("=" * max(len(title), width + 20))
    for label, value in rows:
        print(f"{label:<{width}}  {value:>18}")


def _payslip(args: argparse.Namespace) -> None:
    calc = calculate_payslip(args.salary, args.overtime, args.tss)
    period = PayPeriod.parse(args.period) if args.period else PayPeriod.containing(date.today())
    rows = [
        ("Base (quincena)", _fmt(calc.base_salary)),
        ("Horas extras", f"{calc.overtime_hours}"),
        ("Pago horas extras", _fmt(calc.overtime_pay)),
        ("Total ingresos", _fmt(calc.gross_earnings)),
    ]
    rows += [(d.name, _fmt(d.amount)) for d in calc.deductions()]
    rows.append(("Salario neto", _fmt(calc.net_pay)))
    _print_rows(period.label, rows)


def _heladito(args: argparse.Namespace) -> None:
    result = distribute_profit(args.income, args.expense, args.investments)
    rows = [
        ("Ingresos", _fmt(result.income)),
        ("Gastos", _fmt(result.expense)),
        ("Ganancia", _fmt(result.profit)),
    ]
    rows += [(name, _fmt(amount)) for name, amount in result.partner_shares]
    rows += [
        ("Negocio", _fmt(result.business_share)),
        ("Compras de inversión", _fmt(result.investment_purchases)),
        ("Negocio (final)", _fmt(result.final_business_share)),
    ]
    _print_rows("Distribución Mi Heladito", rows)


def _gdp_report(args: argparse.Namespace) -> None:
    profit, shares = split_report_profit(args.income or [], args.expense or [])
    rows = [("Ganancia", _fmt(profit))]
    rows += [(name, _fmt(amount)) for name, amount in shares]
    _print_rows("Distribución de ganancias", rows)


def _loan_schedule(args: argparse.Namespace) -> None:
    loan = Loan(
        name="CLI",
        lender="-",
        initial_amount=args.amount,
        monthly_payment_amount=args.payment,
        monthly_interest_amount=args.interest,
        start_date=date.today(),
    )
    steps = amortization_schedule(loan)
    print(f"{'#':>4}  {'Interés':>14}  {'Capital':>14}  {'Balance':>14}")
    for number, step in enumerate(steps, start=1):
        step = rounded(step)
        print(
            f"{number:>4}  {step.interest_paid:>14,.2f}  "
            f"{step.principal_paid:>14,.2f}  {step.remaining_balance:>14,.2f}"
        )


def _segment(text: str) -> tuple[Decimal, Decimal]:
    start, sep, end = text.partition(":")
    if not sep:
        raise argparse.ArgumentTypeError(f"segment must be START:END, got {text!r}")
    return _amount(start), _amount(end)


def _fuel(args: argparse.Namespace) -> None:
    segments = [make_segment(start, end) for start, end in args.segments]
    refueled = args.gallons is not None
    result = calculate_efficiency(segments, refueled, args.gallons, args.cost)
    rows = [("Kilómetros", f"{result.total_km:,.2f}")]
    if result.efficiency_kmpg is not None:
        rows.append(("Km/galón", f"{result.efficiency_kmpg:,.2f}"))
    if result.cost_per_gallon is not None:
        rows.append(("Costo/galón", _fmt(result.cost_per_gallon)))
    _print_rows("Consumo de combustible", rows)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gdp-backoffice",
        description="GDP back office calculators",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    payslip = sub.add_parser("payslip", help="Fortnightly payslip breakdown")
    payslip.add_argument("salary", type=_amount, help="Monthly salary (DOP)")
    payslip.add_argument("--overtime", type=_amount, default=Decimal("0"), help="Overtime hours")
    payslip.add_argument("--tss", action="store_true", help="Withhold AFP and SFS")
    payslip.add_argument("--period", help='Pay period, e.g. "Julio 2024 - 1st Fortnight"')
    payslip.set_defaults(handler=_payslip)

    heladito = sub.add_parser("heladito", help="Mi Heladito profit distribution")
    heladito.add_argument("income", type=_amount)
    heladito.add_argument("expense", type=_amount)
    heladito.add_argument("--investments", type=_amount, default=Decimal("0"))
    heladito.set_defaults(handler=_heladito)

    report = sub.add_parser("gdp-report", help="GDP monthly profit split")
    report.add_argument("--income", type=_amount, action="append")
    report.add_argument("--expense", type=_amount, action="append")
    report.set_defaults(handler=_gdp_report)

    loan = sub.add_parser("loan-schedule", help="Project loan payments until paid off")
    loan.add_argument("amount", type=_amount, help="Initial amount")
    loan.add_argument("payment", type=_amount, help="Monthly payment")
    loan.add_argument("interest", type=_amount, help="Fixed monthly interest")
    loan.set_defaults(handler=_loan_schedule)

    fuel = sub.add_parser("fuel", help="Trip kilometers and fuel efficiency")
    fuel.add_argument("segments", type=_segment, nargs="+", help="START:END odometer pairs")
    fuel.add_argument("--gallons", type=_amount, help="Gallons added when refueling")
    fuel.add_argument("--cost", type=_amount, help="Total fuel cost (DOP)")
    fuel.set_defaults(handler=_fuel)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run a calculator subcommand and return the exit code."""
    configure_logging()
    args = build_parser().parse_args(argv)
    try:
        args.handler(args)
    except BackofficeError as e:
        logger.error("command_failed", command=args.command, error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
