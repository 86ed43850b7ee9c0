"""Subagent conduce payments and monthly settlements."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

import structlog

from gdp_backoffice.distribution import month_key
from gdp_backoffice.errors import ValidationError
from gdp_backoffice.importers import parse_report_date
from gdp_backoffice.models import (
    ConduceDocument,
    ConducePaymentType,
    Subagent,
    SubagentMonthlyPayment,
)
from gdp_backoffice.money import round_money, to_decimal, total

logger = structlog.get_logger(__name__)

Number = Decimal | int | float | str


def conduce_payment(
    subagent: Subagent,
    payment_type: ConducePaymentType,
    weight_pounds: Number | None = None,
    direct_amount: Number | None = None,
) -> Decimal:
    """Payment owed for one conduce, rounded to cents.

    Raises:
        ValidationError: If a calculated conduce has no positive weight, or
            a direct payment is missing or negative.
    """
    if payment_type == ConducePaymentType.DIRECT:
        if direct_amount is None:
            raise ValidationError("Direct payment amount is required")
        amount = to_decimal(direct_amount)
        if not amount.is_finite() or amount < 0:
            raise ValidationError("Direct payment amount cannot be negative")
        return round_money(amount)

    weight = to_decimal(weight_pounds)
    if not weight.is_finite() or weight <= 0:
        raise ValidationError(
            "Weight must be greater than zero for calculated payments",
            details={"subagent": subagent.code},
        )
    return round_money(weight * subagent.rate_per_pound)


def build_conduce(
    subagent: Subagent,
    conduce_identifier: str,
    conduce_date: date,
    payment_type: ConducePaymentType,
    weight_pounds: Number | None = None,
    direct_amount: Number | None = None,
    notes: str | None = None,
    number_of_packages: int | None = None,
    declared_value: Number | None = None,
) -> ConduceDocument:
    """Validate inputs and build an unpaid conduce record."""
    if not conduce_identifier.strip():
        raise ValidationError("Conduce identifier is required")
    payment = conduce_payment(subagent, payment_type, weight_pounds, direct_amount)
    calculated = payment_type == ConducePaymentType.CALCULATED
    return ConduceDocument(
        subagent_id=subagent.id,
        conduce_identifier=conduce_identifier.strip(),
        date=conduce_date,
        payment_type=payment_type,
        total_weight_pounds=to_decimal(weight_pounds) if calculated else None,
        direct_payment_amount=None if calculated else to_decimal(direct_amount),
        notes=notes,
        calculated_payment=payment,
        is_paid=False,
        number_of_packages=number_of_packages,
        declared_value=None if declared_value is None else to_decimal(declared_value),
    )


def conduces_for_month(
    conduces: Iterable[ConduceDocument], subagent_id: str, year: int, month: int
) -> list[ConduceDocument]:
    return [
        c
        for c in conduces
        if c.subagent_id == subagent_id and c.date.year == year and c.date.month == month
    ]


def pending_conduces(
    conduces: Iterable[ConduceDocument], subagent_id: str, year: int, month: int
) -> list[ConduceDocument]:
    """Unpaid conduces for a subagent dated in the given month."""
    return [c for c in conduces_for_month(conduces, subagent_id, year, month) if not c.is_paid]


def pending_total(
    conduces: Iterable[ConduceDocument], subagent_id: str, year: int, month: int
) -> Decimal:
    return total(c.calculated_payment for c in pending_conduces(conduces, subagent_id, year, month))


def per_conduce_settlement(
    subagent: Subagent,
    conduces: Sequence[ConduceDocument],
    year: int,
    month: int,
    voucher_file_name: str | None = None,
    processed_at: datetime | None = None,
) -> tuple[SubagentMonthlyPayment, list[dict[str, Any]]]:
    """Monthly payment for a subagent's unpaid conduces.

    Returns the payment record (without an id) and the partial updates that
    mark each conduce as paid. The caller fills ``payment_run_id`` once the
    payment has been stored.

    Raises:
        ValidationError: If there is nothing pending for the month.
    """
    pending = pending_conduces(conduces, subagent.id, year, month)
    if not pending:
        raise ValidationError(
            f"No pending conduces for {subagent.name} in {month_key(year, month)}"
        )
    payment = SubagentMonthlyPayment(
        subagent_id=subagent.id,
        month_year=month_key(year, month),
        total_amount_paid=round_money(total(c.calculated_payment for c in pending)),
        conduce_doc_ids_included=[c.id for c in pending],
        processing_date=processed_at or datetime.now(timezone.utc),
        voucher_file_name=voucher_file_name,
    )
    partials = [{"id": c.id, "is_paid": True} for c in pending]
    return payment, partials


def aggregate_settlement(
    subagent: Subagent,
    total_weight_pounds: Number,
    year: int,
    month: int,
    voucher_file_name: str | None = None,
    processed_at: datetime | None = None,
) -> SubagentMonthlyPayment:
    """Monthly payment for a subagent paid on aggregate weight.

    Raises:
        ValidationError: If the weight is not positive.
    """
    weight = to_decimal(total_weight_pounds)
    if weight <= 0:
        raise ValidationError("Total monthly weight must be greater than zero")
    return SubagentMonthlyPayment(
        subagent_id=subagent.id,
        month_year=month_key(year, month),
        total_amount_paid=round_money(weight * subagent.rate_per_pound),
        total_weight_for_month=weight,
        processing_date=processed_at or datetime.now(timezone.utc),
        voucher_file_name=voucher_file_name,
    )


def conduces_from_extraction(
    subagent: Subagent,
    rows: Iterable[Mapping[str, Any]],
    context_year: int,
    today: date | None = None,
) -> list[ConduceDocument]:
    """Convert rows extracted from a conduce report into calculated conduces.

    Rows without a date or without a finite positive weight are dropped.
    Non-finite package counts and declared values are ignored. Dates that
    cannot be parsed fall back to ``today``.
    """
    today = today or date.today()
    documents: list[ConduceDocument] = []
    for row in rows:
        fecha = row.get("fecha")
        if not fecha:
            continue
        weight = _finite_number(row.get("peso"))
        if weight is None or weight <= 0:
            logger.debug("conduce_row_skipped", fecha=fecha, peso=row.get("peso"))
            continue

        parsed = parse_report_date(str(fecha), context_year)
        if parsed is None:
            logger.warning("conduce_date_unparsed", fecha=fecha, fallback=today.isoformat())
            parsed = today

        packages = _finite_number(row.get("paquetes"), allow_text=False)
        declared = _finite_number(row.get("monto"), allow_text=False)
        documents.append(
            build_conduce(
                subagent,
                f"Importado: {fecha}",
                parsed,
                ConducePaymentType.CALCULATED,
                weight_pounds=weight,
                number_of_packages=None if packages is None else int(packages),
                declared_value=declared,
            )
        )
    return documents


def _finite_number(value: Any, allow_text: bool = True) -> Decimal | None:
    """Decimal for a finite JSON number (or numeric text), else None.

    ``json.loads`` accepts ``NaN`` and ``Infinity``; both come back as None.
    """
    if isinstance(value, bool):
        return None
    if not isinstance(value, (int, float)) and not (allow_text and isinstance(value, str)):
        return None
    try:
        number = to_decimal(value)
    except ArithmeticError:
        return None
    return number if number.is_finite() else None
