"""Pytest configuration and fixtures."""

import os
from datetime import date
from decimal import Decimal

import pytest

# Set test environment variables before importing settings
os.environ.setdefault("GOOGLE_API_KEY", "test-key")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from gdp_backoffice.models import (  # noqa: E402
    Employee,
    Loan,
    MiHeladitoWorker,
    MiHeladitoWorkerType,
    Subagent,
    SubagentPaymentModel,
)
from gdp_backoffice.store import DocumentStore  # noqa: E402


@pytest.fixture
def memory_store():
    """A document store that keeps everything in memory."""
    return DocumentStore()


@pytest.fixture
def file_store(tmp_path):
    """A document store backed by JSON files in a temporary directory."""
    return DocumentStore(tmp_path / "data")


@pytest.fixture
def employee():
    return Employee(
        cedula="001-0000001-1",
        name="Ana Pérez",
        email="ana@example.com",
        department="Operaciones",
        role="Despachadora",
        salary=Decimal("16000"),
        bank_account_number="123456789",
        bank_name="Banreservas",
        hire_date=date(2023, 3, 1),
    )


@pytest.fixture
def senior_employee():
    return Employee(
        cedula="001-0000002-2",
        name="Luis Gómez",
        salary=Decimal("60000"),
    )


@pytest.fixture
def conduce_subagent():
    return Subagent(
        id="suba-wellington",
        code="WEL",
        name="Wellington",
        payment_model=SubagentPaymentModel.PER_CONDUCE_DOCUMENT,
        rate_per_pound=Decimal("25"),
    )


@pytest.fixture
def aggregate_subagent():
    return Subagent(
        id="suba-wendy",
        code="WEN",
        name="Wendy",
        payment_model=SubagentPaymentModel.MONTHLY_AGGREGATE_WEIGHT,
        rate_per_pound=Decimal("20"),
    )


@pytest.fixture
def loan():
    return Loan(
        name="Camión",
        lender="Banco Popular",
        initial_amount=Decimal("10000"),
        monthly_payment_amount=Decimal("2000"),
        monthly_interest_amount=Decimal("500"),
        start_date=date(2024, 1, 1),
    )


@pytest.fixture
def heladito_workers():
    return [
        MiHeladitoWorker(
            id="mihe-part",
            name="Carla",
            worker_type=MiHeladitoWorkerType.PART_TIME,
            base_amount=Decimal("15000"),
        ),
        MiHeladitoWorker(
            id="mihe-fixed",
            name="Pedro",
            worker_type=MiHeladitoWorkerType.CONTRACTOR,
            base_amount=Decimal("8000"),
        ),
    ]


@pytest.fixture
def bank_statement():
    """Two pasted statement transactions: a deposit and a card payment."""
    return (
        "15/07/2024\nREF001\nDEPOSITO EN EFECTIVO\nDP\nRD$ 5.000,00\nRD$ 25.000,00\n"
        "16/07/2024\nREF002\nPAGO TARJETA\nPT\n1.234,56\n23.765,44\n"
    )
