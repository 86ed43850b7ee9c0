"""Back office operations combining calculators, the store and the assistant.

Every public coroutine returns a Result. Domain errors are logged and turned
into failure results; validation happens before anything is written.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from typing import Any

import structlog

from gdp_backoffice.clients.gemini import GeminiAssistant
from gdp_backoffice.config import BusinessPolicy, load_business_policy
from gdp_backoffice.distribution import (
    MonthlyReport,
    ProfitDistribution,
    ReportSummary,
    build_monthly_report,
    distribute_mi_heladito_entry,
    historical_summaries,
    month_key,
)
from gdp_backoffice.errors import AssistantError, BackofficeError, ValidationError
from gdp_backoffice.fuel import apply_efficiency
from gdp_backoffice.importers import ImportReport, parse_bank_paste
from gdp_backoffice.loans import current_balance, payment_step, validate_loan
from gdp_backoffice.models import (
    BankTransaction,
    ConduceDocument,
    ConducePaymentType,
    Employee,
    ExpenseCategory,
    FuelLogEntry,
    Loan,
    LoanPayment,
    ManualReportEntry,
    MiHeladitoPayrollRun,
    MiHeladitoReportEntry,
    PayrollRun,
    Payslip,
    Receivable,
    Subagent,
    SubagentMonthlyPayment,
    SubagentPaymentModel,
)
from gdp_backoffice.money import round_money
from gdp_backoffice.payroll import (
    PayPeriod,
    PayslipInput,
    WorkerPayInput,
    build_mi_heladito_run,
    build_payroll_run,
)
from gdp_backoffice.receivables import DebtorBalance, debtor_balances, toggle_paid
from gdp_backoffice.results import Result
from gdp_backoffice.store import Collection, DocumentStore, ObjectStore
from gdp_backoffice.store.document_store import new_id
from gdp_backoffice.subagents import (
    aggregate_settlement,
    build_conduce,
    conduces_from_extraction,
    per_conduce_settlement,
)

logger = structlog.get_logger(__name__)


class BackofficeService:
    """Entry point for back office operations.

    Args:
        store: Persistence for records and report entries.
        assistant: Gemini assistant. AI operations fail gracefully without one.
        policy: Business constants. Defaults to the loaded policy file.
    """

    def __init__(
        self,
        store: DocumentStore,
        assistant: GeminiAssistant | None = None,
        policy: BusinessPolicy | None = None,
    ):
        self._store = store
        self._assistant = assistant
        self._policy = policy or load_business_policy()
        self._logger = logger.bind(component="backoffice_service")

    def _failure(self, event: str, error: Exception, **context: Any) -> Result[Any]:
        self._logger.warning(event, error=str(error), **context)
        return Result.failure(str(error))

    def _require_assistant(self) -> GeminiAssistant:
        if self._assistant is None:
            raise AssistantError("AI services are not configured")
        return self._assistant

    async def _find(self, collection: Collection, record_id: str) -> Any:
        for record in await self._store.fetch_all(collection):
            if record.id == record_id:
                return record
        raise ValidationError(f"No record {record_id!r} in {collection.value}")

    # === Employees and payroll ===

    async def add_employee(self, employee: Employee) -> Result[Employee]:
        """Store a new employee keyed by cédula."""
        try:
            if not employee.cedula.strip() or not employee.name.strip():
                raise ValidationError("Employee cédula and name are required")
            saved = await self._store.save_new(
                Collection.EMPLOYEES, employee.model_copy(update={"id": employee.cedula})
            )
        except BackofficeError as e:
            return self._failure("employee_add_failed", e, cedula=employee.cedula)
        return Result.success(saved)

    async def process_payroll_run(
        self,
        inputs: Sequence[PayslipInput],
        period: PayPeriod,
        run_id: str | None = None,
    ) -> Result[PayrollRun]:
        """Compute payslips for the selected employees and store the run.

        Passing the id of a stored run re-processes it in place: its payslips
        and totals are replaced and no new run is created.
        """
        try:
            employees = await self._store.fetch_all(Collection.EMPLOYEES)
            run = build_payroll_run(
                employees,
                inputs,
                period,
                run_id=run_id or new_id(Collection.PAYROLL_RUNS),
                policy=self._policy.payroll,
            )
            if run_id:
                saved = await self._store.update(Collection.PAYROLL_RUNS, run)
            else:
                saved = await self._store.save_new(Collection.PAYROLL_RUNS, run)
        except BackofficeError as e:
            return self._failure("payroll_run_failed", e, period=period.label, run_id=run_id)

        self._logger.info(
            "payroll_run_processed",
            run_id=saved.id,
            reprocessed=bool(run_id),
            period=saved.pay_period,
            employees=saved.employees_processed,
            total=saved.total_amount,
        )
        return Result.success(saved)

    async def process_mi_heladito_payroll(
        self, inputs: Sequence[WorkerPayInput], year: int, month: int
    ) -> Result[MiHeladitoPayrollRun]:
        try:
            workers = await self._store.fetch_all(Collection.MI_HELADITO_WORKERS)
            run = build_mi_heladito_run(
                workers,
                inputs,
                year,
                month,
                run_id=new_id(Collection.MI_HELADITO_PAYROLL_RUNS),
                policy=self._policy.mi_heladito,
            )
            saved = await self._store.save_new(Collection.MI_HELADITO_PAYROLL_RUNS, run)
        except BackofficeError as e:
            return self._failure("mi_heladito_payroll_failed", e, month=month_key(year, month))

        self._logger.info(
            "mi_heladito_payroll_processed",
            run_id=saved.id,
            total=saved.total_amount_paid,
        )
        return Result.success(saved)

    async def explain_payslip(self, payslip: Payslip) -> Result[str]:
        try:
            text = await self._require_assistant().explain_payslip(payslip)
        except AssistantError as e:
            return self._failure("payslip_explanation_failed", e, payslip_id=payslip.id)
        return Result.success(text)

    async def ask_payroll_assistant(self, prompt: str, context: str | None = None) -> Result[str]:
        try:
            text = await self._require_assistant().suggest_text(prompt, context)
        except AssistantError as e:
            return self._failure("assistant_question_failed", e)
        return Result.success(text)

    # === Loans ===

    async def create_loan(self, loan: Loan) -> Result[Loan]:
        try:
            validate_loan(loan)
            saved = await self._store.save_new(Collection.LOANS, loan)
        except BackofficeError as e:
            return self._failure("loan_create_failed", e, loan=loan.name)
        return Result.success(saved)

    async def record_loan_payment(
        self, loan_id: str, payment_date: date, notes: str | None = None
    ) -> Result[LoanPayment]:
        """Apply one scheduled payment to a loan's current balance."""
        try:
            loan = await self._find(Collection.LOANS, loan_id)
            payments = await self._store.fetch_all(Collection.LOAN_PAYMENTS)
            step = payment_step(
                loan.monthly_payment_amount,
                loan.monthly_interest_amount,
                current_balance(loan, payments),
            )
            payment = await self._store.save_new(
                Collection.LOAN_PAYMENTS,
                LoanPayment(
                    loan_id=loan.id,
                    payment_date=payment_date,
                    amount_paid=round_money(step.amount_paid),
                    principal_paid=round_money(step.principal_paid),
                    interest_paid=round_money(step.interest_paid),
                    remaining_balance=round_money(step.remaining_balance),
                    notes=notes,
                ),
            )
        except BackofficeError as e:
            return self._failure("loan_payment_failed", e, loan_id=loan_id)

        self._logger.info(
            "loan_payment_recorded",
            loan_id=loan_id,
            remaining_balance=payment.remaining_balance,
        )
        return Result.success(payment)

    # === Subagents ===

    async def add_conduce(
        self,
        subagent_id: str,
        conduce_identifier: str,
        conduce_date: date,
        payment_type: ConducePaymentType,
        weight_pounds: Decimal | None = None,
        direct_amount: Decimal | None = None,
        notes: str | None = None,
    ) -> Result[ConduceDocument]:
        try:
            subagent = await self._find(Collection.SUBAGENTS, subagent_id)
            conduce = build_conduce(
                subagent,
                conduce_identifier,
                conduce_date,
                payment_type,
                weight_pounds=weight_pounds,
                direct_amount=direct_amount,
                notes=notes,
            )
            saved = await self._store.save_new(Collection.CONDUCE_DOCUMENTS, conduce)
        except BackofficeError as e:
            return self._failure("conduce_add_failed", e, subagent_id=subagent_id)
        return Result.success(saved)

    async def pay_conduces_for_month(
        self,
        subagent_id: str,
        year: int,
        month: int,
        voucher_file_name: str | None = None,
    ) -> Result[SubagentMonthlyPayment]:
        """Register the month's payment and mark its pending conduces as paid."""
        try:
            subagent: Subagent = await self._find(Collection.SUBAGENTS, subagent_id)
            if subagent.payment_model != SubagentPaymentModel.PER_CONDUCE_DOCUMENT:
                raise ValidationError(f"{subagent.name} is not paid per conduce")
            conduces = await self._store.fetch_all(Collection.CONDUCE_DOCUMENTS)
            payment, partials = per_conduce_settlement(
                subagent, conduces, year, month, voucher_file_name
            )
            saved = await self._store.save_new(Collection.SUBAGENT_MONTHLY_PAYMENTS, payment)
            try:
                await self._store.batch_update(
                    Collection.CONDUCE_DOCUMENTS,
                    [{**partial, "payment_run_id": saved.id} for partial in partials],
                )
            except BackofficeError:
                # The payment only exists together with its paid conduces.
                await self._store.delete(Collection.SUBAGENT_MONTHLY_PAYMENTS, saved.id)
                raise
        except BackofficeError as e:
            return self._failure(
                "subagent_payment_failed", e, subagent_id=subagent_id, month=month_key(year, month)
            )

        self._logger.info(
            "subagent_payment_registered",
            subagent_id=subagent_id,
            month=saved.month_year,
            conduces=len(partials),
            total=saved.total_amount_paid,
        )
        return Result.success(saved)

    async def register_monthly_aggregate_payment(
        self,
        subagent_id: str,
        total_weight_pounds: Decimal,
        year: int,
        month: int,
        voucher_file_name: str | None = None,
    ) -> Result[SubagentMonthlyPayment]:
        try:
            subagent: Subagent = await self._find(Collection.SUBAGENTS, subagent_id)
            if subagent.payment_model != SubagentPaymentModel.MONTHLY_AGGREGATE_WEIGHT:
                raise ValidationError(f"{subagent.name} is not paid on aggregate weight")
            payment = aggregate_settlement(
                subagent, total_weight_pounds, year, month, voucher_file_name
            )
            saved = await self._store.save_new(Collection.SUBAGENT_MONTHLY_PAYMENTS, payment)
        except BackofficeError as e:
            return self._failure("subagent_payment_failed", e, subagent_id=subagent_id)
        return Result.success(saved)

    async def import_conduces_from_file(
        self,
        subagent_id: str,
        file_bytes: bytes,
        mime_type: str,
        context_year: int | None = None,
    ) -> Result[list[ConduceDocument]]:
        """Extract conduce rows from a report file and store them as calculated conduces."""
        try:
            subagent = await self._find(Collection.SUBAGENTS, subagent_id)
            rows = await self._require_assistant().extract_conduces(file_bytes, mime_type)
            conduces = conduces_from_extraction(
                subagent, rows, context_year or date.today().year
            )
            if not conduces:
                raise ValidationError("No valid conduces were found in the file")
            saved = [
                await self._store.save_new(Collection.CONDUCE_DOCUMENTS, conduce)
                for conduce in conduces
            ]
        except BackofficeError as e:
            return self._failure("conduce_import_failed", e, subagent_id=subagent_id)

        self._logger.info("conduces_imported", subagent_id=subagent_id, count=len(saved))
        return Result.success(saved)

    # === Bank transactions ===

    async def import_bank_transactions(self, text: str) -> Result[ImportReport]:
        """Parse pasted statement text and store every valid transaction."""
        report = parse_bank_paste(text)
        try:
            for transaction in report.transactions:
                await self._store.save_new(Collection.BANK_TRANSACTIONS, transaction)
        except BackofficeError as e:
            return self._failure("bank_import_failed", e, parsed=report.success)

        self._logger.info(
            "bank_transactions_imported", success=report.success, skipped=report.skipped
        )
        return Result.success(report)

    async def categorize_transaction(
        self,
        transaction_id: str,
        category: ExpenseCategory | None,
        custom_category: str | None = None,
        comment: str | None = None,
    ) -> Result[BankTransaction]:
        try:
            transaction: BankTransaction = await self._find(
                Collection.BANK_TRANSACTIONS, transaction_id
            )
            if category == ExpenseCategory.OTRO and not (custom_category or "").strip():
                raise ValidationError("A custom category is required for 'Otro'")
            update: dict[str, Any] = {
                "category": category,
                "custom_category": custom_category if category == ExpenseCategory.OTRO else None,
            }
            if comment is not None:
                update["comment"] = comment
            saved = await self._store.update(
                Collection.BANK_TRANSACTIONS, transaction.model_copy(update=update)
            )
        except BackofficeError as e:
            return self._failure("transaction_categorize_failed", e, id=transaction_id)
        return Result.success(saved)

    async def suggest_bank_comment(self, transaction: BankTransaction) -> Result[str]:
        try:
            text = await self._require_assistant().suggest_bank_comment(
                transaction.description, transaction.debit, transaction.credit
            )
        except AssistantError as e:
            return self._failure("bank_comment_failed", e, id=transaction.id)
        return Result.success(text)

    # === Fuel ===

    async def add_fuel_log(self, entry: FuelLogEntry) -> Result[FuelLogEntry]:
        """Fill in kilometers and efficiency, then store the log."""
        try:
            if not entry.segments:
                raise ValidationError("A fuel log needs at least one route segment")
            saved = await self._store.save_new(Collection.FUEL_LOG_ENTRIES, apply_efficiency(entry))
        except BackofficeError as e:
            return self._failure("fuel_log_failed", e, vehicle=entry.vehicle)
        return Result.success(saved)

    # === Receivables ===

    async def debtor_balances(self) -> Result[list[DebtorBalance]]:
        try:
            debtors = await self._store.fetch_all(Collection.DEBTORS)
            receivables = await self._store.fetch_all(Collection.RECEIVABLES)
        except BackofficeError as e:
            return self._failure("debtor_balances_failed", e)
        return Result.success(debtor_balances(debtors, receivables))

    async def toggle_receivable(self, receivable_id: str) -> Result[Receivable]:
        try:
            receivable = await self._find(Collection.RECEIVABLES, receivable_id)
            saved = await self._store.update(Collection.RECEIVABLES, toggle_paid(receivable))
        except BackofficeError as e:
            return self._failure("receivable_toggle_failed", e, id=receivable_id)
        return Result.success(saved)

    # === Monthly reports ===

    async def save_mi_heladito_entry(
        self, year: int, month: int, entry: MiHeladitoReportEntry
    ) -> Result[MiHeladitoReportEntry]:
        try:
            await self._store.update_object_store(
                ObjectStore.MI_HELADITO_REPORT_ENTRIES, {month_key(year, month): entry}
            )
        except BackofficeError as e:
            return self._failure("report_entry_save_failed", e, month=month_key(year, month))
        return Result.success(entry)

    async def mi_heladito_distribution(self, year: int, month: int) -> Result[ProfitDistribution]:
        """Profit split for a month's Mi Heladito report entry."""
        try:
            entries = await self._store.fetch_object_store(ObjectStore.MI_HELADITO_REPORT_ENTRIES)
        except BackofficeError as e:
            return self._failure("mi_heladito_report_failed", e)
        entry = entries.get(month_key(year, month)) or MiHeladitoReportEntry()
        return Result.success(distribute_mi_heladito_entry(entry, self._policy.mi_heladito))

    async def save_manual_report_entry(
        self, year: int, month: int, entry: ManualReportEntry
    ) -> Result[ManualReportEntry]:
        """Store the manual part of a GDP report; automatic rows are dropped."""
        manual_only = entry.model_copy(
            update={"expenses": [e for e in entry.expenses if not e.is_automatic]}
        )
        try:
            await self._store.update_object_store(
                ObjectStore.MANUAL_REPORT_ENTRIES, {month_key(year, month): manual_only}
            )
        except BackofficeError as e:
            return self._failure("report_entry_save_failed", e, month=month_key(year, month))
        return Result.success(manual_only)

    async def gdp_monthly_report(self, year: int, month: int) -> Result[MonthlyReport]:
        key = month_key(year, month)
        try:
            entries = await self._store.fetch_object_store(ObjectStore.MANUAL_REPORT_ENTRIES)
            payments = await self._store.fetch_all(Collection.SUBAGENT_MONTHLY_PAYMENTS)
        except BackofficeError as e:
            return self._failure("gdp_report_failed", e, month=key)
        return Result.success(
            build_monthly_report(key, entries.get(key), payments, self._policy.gdp_report)
        )

    async def report_history(self) -> Result[list[ReportSummary]]:
        try:
            entries = await self._store.fetch_object_store(ObjectStore.MANUAL_REPORT_ENTRIES)
            payments = await self._store.fetch_all(Collection.SUBAGENT_MONTHLY_PAYMENTS)
        except BackofficeError as e:
            return self._failure("gdp_report_failed", e)
        return Result.success(historical_summaries(entries, payments))

    async def import_financial_report(
        self, year: int, month: int, image_bytes: bytes, mime_type: str = "image/jpeg"
    ) -> Result[ManualReportEntry]:
        """Replace a month's manual expenses and incomes with data read from an image."""
        key = month_key(year, month)
        try:
            extracted = await self._require_assistant().extract_financial_report(
                image_bytes, mime_type
            )
            entries = await self._store.fetch_object_store(ObjectStore.MANUAL_REPORT_ENTRIES)
            existing = entries.get(key) or ManualReportEntry()
            merged = existing.model_copy(
                update={"expenses": extracted.expenses, "incomes": extracted.incomes}
            )
            await self._store.update_object_store(ObjectStore.MANUAL_REPORT_ENTRIES, {key: merged})
        except BackofficeError as e:
            return self._failure("financial_report_import_failed", e, month=key)

        self._logger.info(
            "financial_report_imported",
            month=key,
            expenses=len(merged.expenses),
            incomes=len(merged.incomes),
        )
        return Result.success(merged)
