"""Tests for back office service operations."""

from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from gdp_backoffice.errors import ExtractionError, StorageError
from gdp_backoffice.fuel import make_segment
from gdp_backoffice.models import (
    ConducePaymentType,
    Debtor,
    ExpenseCategory,
    FuelLogEntry,
    ManualReportEntry,
    MiHeladitoReportEntry,
    Receivable,
    ReportExpenseItem,
    ReportIncomeItem,
)
from gdp_backoffice.payroll import Fortnight, PayPeriod, PayslipInput, WorkerPayInput
from gdp_backoffice.services import BackofficeService
from gdp_backoffice.store import Collection, ObjectStore

JULY_FIRST = PayPeriod(year=2024, month=7, fortnight=Fortnight.FIRST)


@pytest.fixture
def service(memory_store):
    return BackofficeService(memory_store)


@pytest.fixture
def mock_assistant():
    assistant = MagicMock()
    assistant.extract_conduces = AsyncMock()
    assistant.extract_financial_report = AsyncMock()
    assistant.explain_payslip = AsyncMock(return_value="Explicación")
    assistant.suggest_bank_comment = AsyncMock(return_value="Pago de servicios.")
    return assistant


class TestPayrollServices:
    """Tests for payroll processing."""

    @pytest.mark.asyncio
    async def test_add_employee_uses_cedula_as_id(self, service, employee):
        result = await service.add_employee(employee)

        assert result.ok
        assert result.unwrap().id == employee.cedula

    @pytest.mark.asyncio
    async def test_duplicate_employee_is_a_failure(self, service, employee):
        await service.add_employee(employee)

        result = await service.add_employee(employee)

        assert not result.ok
        assert "Duplicate id" in result.error

    @pytest.mark.asyncio
    async def test_process_payroll_run(self, service, memory_store, employee, senior_employee):
        await service.add_employee(employee)
        await service.add_employee(senior_employee)

        result = await service.process_payroll_run(
            [
                PayslipInput(employee_id=employee.cedula, overtime_hours=Decimal("5")),
                PayslipInput(employee_id=senior_employee.cedula, apply_tss=True),
            ],
            JULY_FIRST,
        )

        run = result.unwrap()
        assert run.id.startswith("payr-")
        assert run.total_amount == Decimal("35050.17")
        assert run.payslips_generated[0].id == f"ps-{employee.cedula}-{run.id}"
        assert await memory_store.fetch_all(Collection.PAYROLL_RUNS) == [run]

    @pytest.mark.asyncio
    async def test_reprocess_existing_run_in_place(
        self, service, memory_store, employee, senior_employee
    ):
        await service.add_employee(employee)
        await service.add_employee(senior_employee)
        first = (
            await service.process_payroll_run(
                [PayslipInput(employee_id=employee.cedula)], JULY_FIRST
            )
        ).unwrap()
        assert first.total_amount == Decimal("8000.00")

        result = await service.process_payroll_run(
            [
                PayslipInput(employee_id=employee.cedula, overtime_hours=Decimal("5")),
                PayslipInput(employee_id=senior_employee.cedula, apply_tss=True),
            ],
            JULY_FIRST,
            run_id=first.id,
        )

        assert result.unwrap().id == first.id
        runs = await memory_store.fetch_all(Collection.PAYROLL_RUNS)
        assert len(runs) == 1
        assert runs[0].id == first.id
        assert runs[0].employees_processed == 2
        assert runs[0].total_amount == Decimal("35050.17")

    @pytest.mark.asyncio
    async def test_reprocess_unknown_run_fails(self, service, memory_store, employee):
        await service.add_employee(employee)

        result = await service.process_payroll_run(
            [PayslipInput(employee_id=employee.cedula)], JULY_FIRST, run_id="payr-missing"
        )

        assert not result.ok
        assert await memory_store.fetch_all(Collection.PAYROLL_RUNS) == []

    @pytest.mark.asyncio
    async def test_unknown_employee_writes_nothing(self, service, memory_store):
        result = await service.process_payroll_run([PayslipInput(employee_id="nadie")], JULY_FIRST)

        assert not result.ok
        assert await memory_store.fetch_all(Collection.PAYROLL_RUNS) == []

    @pytest.mark.asyncio
    async def test_mi_heladito_payroll(self, service, memory_store, heladito_workers):
        for worker in heladito_workers:
            await memory_store.save_new(Collection.MI_HELADITO_WORKERS, worker)

        result = await service.process_mi_heladito_payroll(
            [WorkerPayInput("mihe-part", days_worked=20), WorkerPayInput("mihe-fixed")], 2024, 8
        )

        assert result.unwrap().total_amount_paid == Decimal("18000.00")

    @pytest.mark.asyncio
    async def test_explain_payslip_without_assistant(self, service):
        result = await service.explain_payslip(MagicMock(id="ps-1"))

        assert not result.ok
        assert "not configured" in result.error


class TestLoanServices:
    @pytest.mark.asyncio
    async def test_record_payments_reduce_balance(self, service, loan):
        loan = (await service.create_loan(loan)).unwrap()

        first = await service.record_loan_payment(loan.id, date(2024, 2, 1))
        second = await service.record_loan_payment(loan.id, date(2024, 3, 1))

        assert first.unwrap().remaining_balance == Decimal("8500.00")
        assert second.unwrap().remaining_balance == Decimal("7000.00")
        assert second.unwrap().interest_paid == Decimal("500.00")

    @pytest.mark.asyncio
    async def test_paid_off_loan_rejects_payment(self, service, loan):
        small = loan.model_copy(update={"initial_amount": Decimal("1000")})
        small = (await service.create_loan(small)).unwrap()

        await service.record_loan_payment(small.id, date(2024, 2, 1))
        result = await service.record_loan_payment(small.id, date(2024, 3, 1))

        assert not result.ok
        assert "already been paid off" in result.error

    @pytest.mark.asyncio
    async def test_invalid_loan_not_stored(self, service, memory_store, loan):
        bad = loan.model_copy(update={"monthly_interest_amount": Decimal("3000")})

        result = await service.create_loan(bad)

        assert not result.ok
        assert await memory_store.fetch_all(Collection.LOANS) == []


class TestSubagentServices:
    """Tests for conduce registration and monthly payments."""

    @pytest.mark.asyncio
    async def test_pay_conduces_for_month(self, service, memory_store, conduce_subagent):
        await memory_store.save_new(Collection.SUBAGENTS, conduce_subagent)
        entries = [
            (date(2024, 5, 3), Decimal("2")),
            (date(2024, 5, 20), Decimal("4")),
            (date(2024, 6, 1), Decimal("8")),
        ]
        for day, weight in entries:
            result = await service.add_conduce(
                conduce_subagent.id,
                f"C-{day.isoformat()}",
                day,
                ConducePaymentType.CALCULATED,
                weight_pounds=weight,
            )
            assert result.ok

        payment = (await service.pay_conduces_for_month(conduce_subagent.id, 2024, 5)).unwrap()

        assert payment.total_amount_paid == Decimal("150.00")
        conduces = await memory_store.fetch_all(Collection.CONDUCE_DOCUMENTS)
        paid = [c for c in conduces if c.is_paid]
        assert len(paid) == 2
        assert all(c.payment_run_id == payment.id for c in paid)
        assert sorted(payment.conduce_doc_ids_included) == sorted(c.id for c in paid)

        again = await service.pay_conduces_for_month(conduce_subagent.id, 2024, 5)
        assert not again.ok

    @pytest.mark.asyncio
    async def test_failed_conduce_update_removes_payment(
        self, service, memory_store, conduce_subagent, monkeypatch
    ):
        await memory_store.save_new(Collection.SUBAGENTS, conduce_subagent)
        await service.add_conduce(
            conduce_subagent.id,
            "C-1",
            date(2024, 5, 3),
            ConducePaymentType.CALCULATED,
            weight_pounds=Decimal("2"),
        )
        monkeypatch.setattr(
            memory_store, "batch_update", AsyncMock(side_effect=StorageError("disk full"))
        )

        result = await service.pay_conduces_for_month(conduce_subagent.id, 2024, 5)

        assert result.error == "disk full"
        assert await memory_store.fetch_all(Collection.SUBAGENT_MONTHLY_PAYMENTS) == []
        conduces = await memory_store.fetch_all(Collection.CONDUCE_DOCUMENTS)
        assert [c.is_paid for c in conduces] == [False]

    @pytest.mark.asyncio
    async def test_add_conduce_validation(self, service, memory_store, conduce_subagent):
        await memory_store.save_new(Collection.SUBAGENTS, conduce_subagent)

        result = await service.add_conduce(
            conduce_subagent.id, "C-1", date(2024, 5, 3), ConducePaymentType.CALCULATED
        )

        assert not result.ok
        assert await memory_store.fetch_all(Collection.CONDUCE_DOCUMENTS) == []

    @pytest.mark.asyncio
    async def test_aggregate_payment(self, service, memory_store, aggregate_subagent):
        await memory_store.save_new(Collection.SUBAGENTS, aggregate_subagent)

        result = await service.register_monthly_aggregate_payment(
            aggregate_subagent.id, Decimal("100"), 2024, 7
        )

        assert result.unwrap().total_amount_paid == Decimal("2000.00")

    @pytest.mark.asyncio
    async def test_aggregate_payment_wrong_model(self, service, memory_store, conduce_subagent):
        await memory_store.save_new(Collection.SUBAGENTS, conduce_subagent)

        result = await service.register_monthly_aggregate_payment(
            conduce_subagent.id, Decimal("100"), 2024, 7
        )

        assert not result.ok

    @pytest.mark.asyncio
    async def test_import_conduces_from_file(
        self, memory_store, conduce_subagent, mock_assistant
    ):
        await memory_store.save_new(Collection.SUBAGENTS, conduce_subagent)
        mock_assistant.extract_conduces.return_value = [
            {"fecha": "2024-05-03", "peso": 2.0, "paquetes": 2, "monto": 435.01},
            {"fecha": "2024-05-04", "peso": 0},
        ]
        service = BackofficeService(memory_store, mock_assistant)

        result = await service.import_conduces_from_file(
            conduce_subagent.id, b"%PDF", "application/pdf", context_year=2024
        )

        saved = result.unwrap()
        assert len(saved) == 1
        assert saved[0].id.startswith("cond-")
        assert saved[0].conduce_identifier == "Importado: 2024-05-03"

    @pytest.mark.asyncio
    async def test_import_conduces_with_non_finite_weights(
        self, memory_store, conduce_subagent, mock_assistant
    ):
        await memory_store.save_new(Collection.SUBAGENTS, conduce_subagent)
        mock_assistant.extract_conduces.return_value = [
            {"fecha": "2024-05-03", "peso": float("nan")},
            {"fecha": "2024-05-04", "peso": float("inf"), "paquetes": float("inf")},
        ]
        service = BackofficeService(memory_store, mock_assistant)

        result = await service.import_conduces_from_file(
            conduce_subagent.id, b"%PDF", "application/pdf", context_year=2024
        )

        assert not result.ok
        assert "No valid conduces" in result.error
        assert await memory_store.fetch_all(Collection.CONDUCE_DOCUMENTS) == []

    @pytest.mark.asyncio
    async def test_import_conduces_extraction_error(
        self, memory_store, conduce_subagent, mock_assistant
    ):
        await memory_store.save_new(Collection.SUBAGENTS, conduce_subagent)
        mock_assistant.extract_conduces.side_effect = ExtractionError("malformed")
        service = BackofficeService(memory_store, mock_assistant)

        result = await service.import_conduces_from_file(
            conduce_subagent.id, b"%PDF", "application/pdf"
        )

        assert result.error == "malformed"


class TestBankServices:
    @pytest.mark.asyncio
    async def test_import_bank_transactions(self, service, memory_store, bank_statement):
        report = (await service.import_bank_transactions(bank_statement + "17/07/2024\n")).unwrap()

        assert report.success == 2
        assert report.skipped == 1
        stored = await memory_store.fetch_all(Collection.BANK_TRANSACTIONS)
        assert len(stored) == 2

    @pytest.mark.asyncio
    async def test_categorize_transaction(self, service, memory_store, bank_statement):
        await service.import_bank_transactions(bank_statement)
        transaction = (await memory_store.fetch_all(Collection.BANK_TRANSACTIONS))[1]

        result = await service.categorize_transaction(
            transaction.id, ExpenseCategory.OTRO, "Publicidad", comment="Anuncio"
        )

        saved = result.unwrap()
        assert saved.category == ExpenseCategory.OTRO
        assert saved.custom_category == "Publicidad"
        assert saved.comment == "Anuncio"

    @pytest.mark.asyncio
    async def test_other_category_requires_custom_name(
        self, service, memory_store, bank_statement
    ):
        await service.import_bank_transactions(bank_statement)
        transaction = (await memory_store.fetch_all(Collection.BANK_TRANSACTIONS))[0]

        result = await service.categorize_transaction(transaction.id, ExpenseCategory.OTRO)

        assert not result.ok

    @pytest.mark.asyncio
    async def test_suggest_bank_comment(self, memory_store, mock_assistant, bank_statement):
        service = BackofficeService(memory_store, mock_assistant)
        await service.import_bank_transactions(bank_statement)
        transaction = (await memory_store.fetch_all(Collection.BANK_TRANSACTIONS))[1]

        result = await service.suggest_bank_comment(transaction)

        assert result.unwrap() == "Pago de servicios."
        mock_assistant.suggest_bank_comment.assert_awaited_once_with(
            "PAGO TARJETA", Decimal("1234.56"), None
        )


class TestReportServices:
    """Tests for the monthly report operations."""

    @pytest.mark.asyncio
    async def test_gdp_monthly_report(self, service, memory_store, aggregate_subagent):
        await memory_store.save_new(Collection.SUBAGENTS, aggregate_subagent)
        await service.register_monthly_aggregate_payment(
            aggregate_subagent.id, Decimal("100"), 2024, 8
        )
        await service.save_manual_report_entry(
            2024,
            8,
            ManualReportEntry(
                expenses=[ReportExpenseItem(remark="local", amount=Decimal("18000"))],
                incomes=[
                    ReportIncomeItem(
                        source="GANANCIA PAQUETERIA COURRIER", amount=Decimal("120000")
                    )
                ],
            ),
        )

        report = (await service.gdp_monthly_report(2024, 8)).unwrap()

        assert report.total_expense == Decimal("20000.00")
        assert report.profit == Decimal("100000.00")
        assert dict(report.shares) == {
            "ACC Multiservices": Decimal("35000"),
            "Grupo Denny": Decimal("65000"),
        }

        history = (await service.report_history()).unwrap()
        assert [row.month_key for row in history] == ["2024-08"]

    @pytest.mark.asyncio
    async def test_saving_manual_entry_drops_automatic_rows(self, service, memory_store):
        entry = ManualReportEntry(
            expenses=[
                ReportExpenseItem(remark="NOMINA Subagentes", amount=Decimal("1"), is_automatic=True),
                ReportExpenseItem(remark="luz", amount=Decimal("3134.14")),
            ]
        )

        await service.save_manual_report_entry(2024, 8, entry)

        stored = await memory_store.fetch_object_store(ObjectStore.MANUAL_REPORT_ENTRIES)
        assert [e.remark for e in stored["2024-08"].expenses] == ["luz"]

    @pytest.mark.asyncio
    async def test_mi_heladito_distribution(self, service):
        await service.save_mi_heladito_entry(
            2024,
            8,
            MiHeladitoReportEntry(
                incomes=[ReportIncomeItem(source="Ventas", amount=Decimal("200000"))],
                expenses=[ReportExpenseItem(remark="Insumos", amount=Decimal("50000"))],
            ),
        )

        result = (await service.mi_heladito_distribution(2024, 8)).unwrap()

        assert result.business_share == Decimal("90000")
        assert result.partners_total == Decimal("60000")

    @pytest.mark.asyncio
    async def test_mi_heladito_distribution_empty_month(self, service):
        result = (await service.mi_heladito_distribution(2024, 1)).unwrap()

        assert result.profit == 0

    @pytest.mark.asyncio
    async def test_import_financial_report_keeps_pounds(self, memory_store, mock_assistant):
        service = BackofficeService(memory_store, mock_assistant)
        await service.save_manual_report_entry(
            2024,
            6,
            ManualReportEntry(
                expenses=[ReportExpenseItem(remark="viejo", amount=Decimal("1"))],
                manual_pounds_for_selected_year={"2024-06": Decimal("1200")},
            ),
        )
        mock_assistant.extract_financial_report.return_value = ManualReportEntry(
            expenses=[ReportExpenseItem(remark="IMPUESTOS", amount=Decimal("787.01"))],
            incomes=[ReportIncomeItem(source="PAQUETERIA LOCAL", amount=Decimal("114.58"))],
        )

        merged = (await service.import_financial_report(2024, 6, b"\xff\xd8")).unwrap()

        assert [e.remark for e in merged.expenses] == ["IMPUESTOS"]
        assert merged.manual_pounds_for_selected_year == {"2024-06": Decimal("1200")}
        stored = await memory_store.fetch_object_store(ObjectStore.MANUAL_REPORT_ENTRIES)
        assert stored["2024-06"] == merged


class TestOtherServices:
    @pytest.mark.asyncio
    async def test_add_fuel_log(self, service):
        entry = FuelLogEntry(
            date=date(2024, 8, 2),
            vehicle="Camión",
            segments=[make_segment(0, 50), make_segment(50, 120)],
            refueled=True,
            gallons_added=Decimal("10"),
            total_fuel_cost=Decimal("2900"),
        )

        saved = (await service.add_fuel_log(entry)).unwrap()

        assert saved.efficiency_kmpg == Decimal("12")
        assert saved.id.startswith("fuel-")

    @pytest.mark.asyncio
    async def test_fuel_log_without_gallons_fails(self, service):
        entry = FuelLogEntry(
            date=date(2024, 8, 2),
            vehicle="Camión",
            segments=[make_segment(0, 50)],
            refueled=True,
        )

        assert not (await service.add_fuel_log(entry)).ok

    @pytest.mark.asyncio
    async def test_receivables(self, service, memory_store):
        debtor = await memory_store.save_new(Collection.DEBTORS, Debtor(name="Juan"))
        receivable = await memory_store.save_new(
            Collection.RECEIVABLES,
            Receivable(debtor_id=debtor.id, date=date(2024, 7, 1), amount=Decimal("500")),
        )

        balances = (await service.debtor_balances()).unwrap()
        assert balances[0].pending_total == Decimal("500")

        toggled = (await service.toggle_receivable(receivable.id)).unwrap()
        assert toggled.is_paid
        balances = (await service.debtor_balances()).unwrap()
        assert balances[0].pending_count == 0
