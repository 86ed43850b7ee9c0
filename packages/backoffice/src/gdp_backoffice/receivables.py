"""Accounts receivable per debtor."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from gdp_backoffice.models import Debtor, Receivable
from gdp_backoffice.money import total


@dataclass(frozen=True)
class DebtorBalance:
    debtor_id: str
    name: str
    pending_total: Decimal
    pending_count: int


def unpaid_subtotal(receivables: Iterable[Receivable], debtor_id: str) -> Decimal:
    """Sum of unpaid receivables for one debtor."""
    return total(r.amount for r in receivables if r.debtor_id == debtor_id and not r.is_paid)


def debtor_balances(
    debtors: Iterable[Debtor], receivables: Iterable[Receivable]
) -> list[DebtorBalance]:
    """Pending total and count for every debtor, in name order."""
    items = list(receivables)
    balances: list[DebtorBalance] = []
    for debtor in debtors:
        pending = [r for r in items if r.debtor_id == debtor.id and not r.is_paid]
        balances.append(
            DebtorBalance(
                debtor_id=debtor.id,
                name=debtor.name,
                pending_total=total(r.amount for r in pending),
                pending_count=len(pending),
            )
        )
    balances.sort(key=lambda b: b.name.lower())
    return balances


def toggle_paid(receivable: Receivable) -> Receivable:
    return receivable.model_copy(update={"is_paid": not receivable.is_paid})
