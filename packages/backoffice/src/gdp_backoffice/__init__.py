"""GDP Back Office - payroll, subagent, report and loan management for a courier business."""

__version__ = "0.1.0"

from gdp_backoffice.clients import GeminiAssistant
from gdp_backoffice.config import configure_logging, get_settings, load_business_policy
from gdp_backoffice.distribution import build_monthly_report, distribute_profit
from gdp_backoffice.errors import (
    AssistantError,
    BackofficeError,
    ExtractionError,
    StorageError,
    ValidationError,
)
from gdp_backoffice.fuel import calculate_efficiency
from gdp_backoffice.importers import ImportReport, parse_bank_paste
from gdp_backoffice.loans import payment_step
from gdp_backoffice.payroll import PayPeriod, calculate_payslip
from gdp_backoffice.results import Result
from gdp_backoffice.services import BackofficeService
from gdp_backoffice.store import Collection, DocumentStore, ObjectStore

__all__ = [
    # Version
    "__version__",
    # Calculators
    "calculate_payslip",
    "PayPeriod",
    "distribute_profit",
    "build_monthly_report",
    "payment_step",
    "calculate_efficiency",
    "parse_bank_paste",
    "ImportReport",
    # Services
    "BackofficeService",
    "Result",
    # Storage
    "DocumentStore",
    "Collection",
    "ObjectStore",
    # AI
    "GeminiAssistant",
    # Errors
    "BackofficeError",
    "ValidationError",
    "StorageError",
    "AssistantError",
    "ExtractionError",
    # Config
    "get_settings",
    "configure_logging",
    "load_business_policy",
]
