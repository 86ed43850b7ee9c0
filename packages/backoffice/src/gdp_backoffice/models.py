"""Record types persisted in the document store.

Every record is a pydantic model so that data read back from storage is
validated before it reaches the calculators. Relationships between records
are plain string ids.
"""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field


class Record(BaseModel):
    """Base for stored records. An empty id is assigned by the store."""

    model_config = ConfigDict(extra="ignore", use_enum_values=False)

    id: str = ""


# === Payroll ===


class Employee(Record):
    cedula: str
    name: str
    email: str = ""
    department: str = ""
    role: str = ""
    salary: Decimal = Field(ge=0, description="Monthly base salary (DOP)")
    bank_account_number: str = ""
    bank_name: str = ""
    hire_date: dt.date | None = None


class Deduction(BaseModel):
    name: str
    amount: Decimal


class Payslip(Record):
    employee_id: str
    employee_name: str
    employee_email: str | None = None
    employee_cedula: str | None = None
    payroll_run_id: str
    pay_period: str
    base_salary: Decimal
    overtime_hours: Decimal = Decimal("0")
    overtime_pay: Decimal = Decimal("0")
    total_earnings: Decimal
    deductions: list[Deduction] = Field(default_factory=list)
    net_salary: Decimal
    generated_date: dt.datetime


class PayrollRunStatus(str, Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"


class PayrollRun(Record):
    pay_period: str
    status: PayrollRunStatus = PayrollRunStatus.PENDING
    total_amount: Decimal = Decimal("0")
    employees_processed: int = 0
    processing_date: dt.datetime | None = None
    payslips_generated: list[Payslip] = Field(default_factory=list)


# === Mi Heladito ===


class MiHeladitoWorkerType(str, Enum):
    PART_TIME = "Medio Tiempo"
    CONTRACTOR = "Pago Fijo"


class MiHeladitoWorker(Record):
    name: str
    worker_type: MiHeladitoWorkerType
    base_amount: Decimal = Field(ge=0)


class MiHeladitoPayslip(Record):
    payroll_run_id: str
    worker_id: str
    worker_name: str
    worker_type: MiHeladitoWorkerType
    pay_period: str
    days_worked: int | None = None
    base_monthly_salary: Decimal | None = None
    net_payment: Decimal


class MiHeladitoPayrollRun(Record):
    pay_period: str
    status: PayrollRunStatus = PayrollRunStatus.COMPLETED
    total_amount_paid: Decimal
    payslips: list[MiHeladitoPayslip] = Field(default_factory=list)
    processing_date: dt.datetime


# === Monthly reports ===


class ExpenseSource(str, Enum):
    PAYROLL = "payroll"
    SUBAGENTS = "subagents"
    MANUAL = "manual"


class ReportExpenseItem(BaseModel):
    id: str = ""
    remark: str
    amount: Decimal
    is_automatic: bool = False
    category: ExpenseSource = ExpenseSource.MANUAL


class ReportIncomeItem(BaseModel):
    id: str = ""
    source: str
    amount: Decimal


class ManualReportEntry(BaseModel):
    expenses: list[ReportExpenseItem] = Field(default_factory=list)
    incomes: list[ReportIncomeItem] = Field(default_factory=list)
    manual_pounds_for_selected_year: dict[str, Decimal | None] = Field(default_factory=dict)


class MiHeladitoReportEntry(BaseModel):
    expenses: list[ReportExpenseItem] = Field(default_factory=list)
    incomes: list[ReportIncomeItem] = Field(default_factory=list)
    investment_purchases: list[ReportExpenseItem] = Field(default_factory=list)


# === Subagents ===


class SubagentPaymentModel(str, Enum):
    PER_CONDUCE_DOCUMENT = "Pago por Conduce"
    MONTHLY_AGGREGATE_WEIGHT = "Peso Agregado Mensual"


class Subagent(Record):
    code: str
    name: str
    payment_model: SubagentPaymentModel
    rate_per_pound: Decimal = Field(ge=0)
    location_or_notes: str | None = None


class ConducePaymentType(str, Enum):
    CALCULATED = "calculated"
    DIRECT = "direct"


class ConduceDocument(Record):
    subagent_id: str
    conduce_identifier: str
    date: dt.date
    payment_type: ConducePaymentType
    total_weight_pounds: Decimal | None = None
    direct_payment_amount: Decimal | None = None
    notes: str | None = None
    calculated_payment: Decimal = Decimal("0")
    payment_run_id: str | None = None
    is_paid: bool = False
    number_of_packages: int | None = None
    declared_value: Decimal | None = None


class SubagentMonthlyPayment(Record):
    subagent_id: str
    month_year: str = Field(pattern=r"^\d{4}-\d{2}$")
    total_amount_paid: Decimal
    conduce_doc_ids_included: list[str] | None = None
    total_weight_for_month: Decimal | None = None
    processing_date: dt.datetime
    voucher_file_name: str | None = None


# === Fuel ===


class FuelType(str, Enum):
    GASOLINA_REGULAR = "Gasolina Regular"
    GASOLINA_PREMIUM = "Gasolina Premium"
    DIESEL = "Diesel"
    GAS_GLP = "Gas GLP"


class RouteSegment(BaseModel):
    id: str = ""
    description: str = ""
    start_km_odometer: Decimal
    end_km_odometer: Decimal
    segment_km: Decimal


class FuelLogEntry(Record):
    date: dt.date
    vehicle: str
    segments: list[RouteSegment] = Field(default_factory=list)
    total_kilometers: Decimal = Decimal("0")
    refueled: bool = False
    gallons_added: Decimal | None = None
    total_fuel_cost: Decimal | None = None
    cost_per_gallon: Decimal | None = None
    fuel_type: FuelType | None = None
    has_invoice: bool = False
    invoice_number: str | None = None
    efficiency_kmpg: Decimal | None = None
    notes: str | None = None


# === Bank transactions ===


class ExpenseCategory(str, Enum):
    PAGO_SUBAGENTE = "Pago subagente"
    NOMINA = "Nómina"
    IMPUESTOS = "Impuestos"
    PAGO_OFICINA = "Pago oficina"
    INTERNET = "Internet"
    LUZ = "Luz"
    FLOTA = "Flota"
    PAGO_CONDUCE = "Pago conduce"
    OTRO = "Otro"


class BankTransaction(Record):
    date: dt.date
    reference_number: str = ""
    description: str = ""
    code: str = ""
    debit: Decimal | None = None
    credit: Decimal | None = None
    balance: Decimal
    comment: str = ""
    category: ExpenseCategory | None = None
    custom_category: str | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_debit(self) -> bool:
        return (self.debit or Decimal("0")) > 0


# === Receivables ===


class Debtor(Record):
    name: str


class Receivable(Record):
    debtor_id: str
    date: dt.date
    amount: Decimal
    is_paid: bool = False


# === Loans ===


class Loan(Record):
    name: str
    lender: str
    initial_amount: Decimal
    monthly_payment_amount: Decimal
    monthly_interest_amount: Decimal
    start_date: dt.date


class LoanPayment(Record):
    loan_id: str
    payment_date: dt.date
    amount_paid: Decimal
    principal_paid: Decimal
    interest_paid: Decimal
    remaining_balance: Decimal
    notes: str | None = None
