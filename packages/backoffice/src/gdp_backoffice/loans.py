"""Fixed-payment loans with a fixed monthly interest portion."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from gdp_backoffice.errors import ValidationError
from gdp_backoffice.models import Loan, LoanPayment
from gdp_backoffice.money import ZERO, round_money, to_decimal


@dataclass(frozen=True)
class LoanPaymentStep:
    """Breakdown of one monthly payment."""

    amount_paid: Decimal
    interest_paid: Decimal
    principal_paid: Decimal
    previous_balance: Decimal
    remaining_balance: Decimal


def validate_loan(loan: Loan) -> None:
    """Reject loans whose terms can never amortize.

    Raises:
        ValidationError: If interest is not below the payment, or amounts are not positive.
    """
    if loan.monthly_interest_amount >= loan.monthly_payment_amount:
        raise ValidationError(
            "Monthly interest must be lower than the monthly payment",
            details={"loan": loan.name},
        )
    if loan.initial_amount <= 0 or loan.monthly_payment_amount <= 0:
        raise ValidationError(
            "Initial amount and monthly payment must be greater than zero",
            details={"loan": loan.name},
        )


def payment_step(
    monthly_payment: Decimal | int | float | str,
    fixed_interest: Decimal | int | float | str,
    current_balance: Decimal | int | float | str,
) -> LoanPaymentStep:
    """Apply one payment to the outstanding balance.

    Interest is capped at the balance; the balance never goes below zero.

    Raises:
        ValidationError: If the loan is already paid off.
    """
    payment = to_decimal(monthly_payment)
    interest = to_decimal(fixed_interest)
    balance = to_decimal(current_balance)
    if balance <= 0:
        raise ValidationError("This loan has already been paid off")

    interest_paid = min(balance, interest)
    principal_paid = payment - interest_paid
    return LoanPaymentStep(
        amount_paid=payment,
        interest_paid=interest_paid,
        principal_paid=principal_paid,
        previous_balance=balance,
        remaining_balance=max(ZERO, balance - principal_paid),
    )


def current_balance(loan: Loan, payments: Iterable[LoanPayment]) -> Decimal:
    """Remaining balance after the most recent payment.

    Payments are ordered by date; among payments on the same date the one
    recorded last wins.
    """
    latest: LoanPayment | None = None
    for payment in payments:
        if payment.loan_id != loan.id:
            continue
        if latest is None or payment.payment_date >= latest.payment_date:
            latest = payment
    return loan.initial_amount if latest is None else latest.remaining_balance


def amortization_schedule(loan: Loan, max_payments: int = 1200) -> list[LoanPaymentStep]:
    """Project payments from the initial amount until the balance is zero."""
    validate_loan(loan)
    schedule: list[LoanPaymentStep] = []
    balance = loan.initial_amount
    while balance > 0:
        if len(schedule) >= max_payments:
            raise ValidationError(
                f"Loan does not amortize within {max_payments} payments",
                details={"loan": loan.name},
            )
        step = payment_step(loan.monthly_payment_amount, loan.monthly_interest_amount, balance)
        schedule.append(step)
        balance = step.remaining_balance
    return schedule


def rounded(step: LoanPaymentStep) -> LoanPaymentStep:
    return LoanPaymentStep(
        amount_paid=round_money(step.amount_paid),
        interest_paid=round_money(step.interest_paid),
        principal_paid=round_money(step.principal_paid),
        previous_balance=round_money(step.previous_balance),
        remaining_balance=round_money(step.remaining_balance),
    )
