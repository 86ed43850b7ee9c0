"""Google Gemini assistant for text suggestions and document extraction.

Uses the google-genai SDK. Without an API key the assistant is created but
unavailable: every call raises AssistantError.
"""

from __future__ import annotations

import json
import re
import uuid
from decimal import Decimal
from typing import Any

import structlog
from google import genai
from google.genai import types

from gdp_backoffice.config import get_settings, load_business_policy
from gdp_backoffice.errors import AssistantError, ExtractionError
from gdp_backoffice.models import (
    ExpenseSource,
    ManualReportEntry,
    Payslip,
    ReportExpenseItem,
    ReportIncomeItem,
)

logger = structlog.get_logger(__name__)

_FENCE = re.compile(r"^```(\w*)?\s*\n?(.*?)\n?\s*```$", re.DOTALL)

# Payroll rows are added automatically from subagent payments.
EXCLUDED_EXPENSE_REMARKS = {"NOMINA", "NOMINA SUBAGENTE"}

PAYROLL_SYSTEM_PROMPT = """Eres un asistente de nómina conciso para una empresa en República Dominicana.
Responde preguntas generales de nómina sin dar asesoría financiera.
Usa pesos dominicanos (DOP) al mencionar montos. Los pagos son quincenales.
En algunos volantes las deducciones de TSS (AFP y SFS) no se aplican; esto es temporal."""

FINANCIAL_REPORT_INSTRUCTIONS = """Analiza la imagen de un reporte financiero mensual y devuelve JSON
con dos claves: "expenses" e "incomes".

"expenses": lista de objetos {"remark": string, "amount": number} con cada gasto individual.
Omite totales, subtotales y las filas "NOMINA" o "NOMINA SUBAGENTE".

"incomes": lista de objetos {"source": string, "amount": number} solo para las fuentes
"PAQUETERIA LOCAL" y "GANANCIA PAQUETERIA COURRIER", con el nombre exacto.

Los montos son números con punto decimal y sin separador de miles.
Si la imagen no es un reporte financiero devuelve {"expenses": [], "incomes": []}."""

CONDUCE_REPORT_INSTRUCTIONS = """Analiza la tabla de conduces de un subagente (imagen o PDF) y devuelve
un array JSON con un objeto por fila de datos, con las claves:
"fecha" (string, columna CONDUCE, en formato YYYY-MM-DD si es posible),
"peso" (number, columna PESO), "paquetes" (number, columna PAQUETES) y
"monto" (number, columna MONTO).
Ignora encabezados y filas de totales. Omite las claves de celdas vacías.
Si no hay filas válidas devuelve []."""


def unwrap_json_fence(text: str) -> str:
    """Strip a Markdown code fence around a JSON payload, if present."""
    text = text.strip()
    match = _FENCE.match(text)
    if match and match.group(2):
        return match.group(2).strip()
    return text


def parse_json_payload(text: str) -> Any:
    """Parse model output as JSON.

    Raises:
        ExtractionError: If the output is empty or not valid JSON.
    """
    payload = unwrap_json_fence(text or "")
    if not payload:
        raise ExtractionError("The assistant returned an empty response")
    try:
        return json.loads(payload)
    except json.JSONDecodeError as e:
        raise ExtractionError(
            "The assistant returned malformed JSON", details={"payload": payload[:200]}
        ) from e


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _money(amount: Decimal | None) -> str:
    return f"DOP {amount or Decimal('0'):,.2f}"


class GeminiAssistant:
    """AI helpers backed by Google's Gemini models."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ):
        settings = get_settings()
        if api_key is None and settings.google_api_key is not None:
            api_key = settings.google_api_key.get_secret_value()
        self._model_name = model or settings.gemini_model
        self._max_tokens = max_tokens or settings.llm_max_tokens
        self._temperature = temperature if temperature is not None else settings.llm_temperature

        self._client = genai.Client(api_key=api_key) if api_key else None

        self._logger = logger.bind(component="gemini_assistant", model=self._model_name)
        if self._client is None:
            self._logger.warning("assistant_unavailable", reason="GOOGLE_API_KEY not set")

    @property
    def available(self) -> bool:
        return self._client is not None

    async def _generate(
        self,
        contents: Any,
        temperature: float | None = None,
        system_instruction: str | None = None,
        json_output: bool = False,
    ) -> str:
        """Run one generate_content call and return the response text."""
        if self._client is None:
            raise AssistantError("AI services are unavailable: GOOGLE_API_KEY is not configured")

        config = types.GenerateContentConfig(
            max_output_tokens=self._max_tokens,
            temperature=self._temperature if temperature is None else temperature,
            system_instruction=system_instruction,
            response_mime_type="application/json" if json_output else None,
        )

        try:
            response = self._client.models.generate_content(
                model=self._model_name,
                contents=contents,
                config=config,
            )
        except Exception as e:
            self._logger.error("api_error", error=str(e))
            raise AssistantError(f"Gemini request failed: {e}") from e

        text = response.text or ""
        self._logger.info("response_generated", chars=len(text), json_output=json_output)
        return text.strip()

    # === Text ===

    async def suggest_text(self, prompt: str, context: str | None = None) -> str:
        """Answer a free-form payroll question, optionally with extra context."""
        contents = prompt if not context else f"{context}\n\n{prompt}"
        return await self._generate(contents, system_instruction=PAYROLL_SYSTEM_PROMPT)

    async def explain_payslip(self, payslip: Payslip) -> str:
        """Plain-language explanation of a fortnightly payslip for the employee."""
        deductions = (
            "\n".join(f"  - {d.name}: {_money(d.amount)}" for d in payslip.deductions)
            or "  - Ninguna"
        )
        total_deductions = sum((d.amount for d in payslip.deductions), Decimal("0"))
        names = " ".join(d.name for d in payslip.deductions)
        tss_note = (
            "Se aplicaron AFP (pensión) y SFS (salud)."
            if "AFP" in names and "SFS" in names
            else "En este volante no se aplicaron AFP ni SFS por configuración interna."
        )
        isr_note = (
            "Se retuvo ISR sobre los ingresos."
            if "ISR" in names
            else "No se retuvo ISR porque el ingreso no alcanza el mínimo imponible."
        )
        overtime = ""
        if payslip.overtime_hours > 0:
            overtime = (
                f"- Horas extras: {payslip.overtime_hours} h, "
                f"pago {_money(payslip.overtime_pay)}\n"
            )

        prompt = f"""Explica en términos simples este volante de pago QUINCENAL para un empleado
en República Dominicana. El salario base quincenal es la mitad del mensual.

Empleado: {payslip.employee_name} ({payslip.employee_cedula or "N/A"})
Período: {payslip.pay_period}
- Salario base quincenal: {_money(payslip.base_salary)}
{overtime}- Total ingresos: {_money(payslip.total_earnings)}
- Deducciones:
{deductions}
- Total deducciones: {_money(total_deductions)}
- Salario neto: {_money(payslip.net_salary)}

{tss_note} {isr_note}
Explica el salario base, las horas extras si hay, las deducciones y el neto a recibir."""

        return await self._generate(prompt, temperature=0.3)

    async def suggest_bank_comment(
        self,
        description: str,
        debit: Decimal | None = None,
        credit: Decimal | None = None,
    ) -> str:
        """Short accounting comment for a bank transaction."""
        is_debit = (debit or Decimal("0")) > 0
        kind = "Egreso (Débito)" if is_debit else "Ingreso (Crédito)"
        amount = debit if is_debit else credit
        prompt = f"""Sugiere un comentario contable breve que justifique esta transacción bancaria.
- Descripción: "{description}"
- Tipo: {kind}
- Monto: {_money(amount)}
Si la descripción es vaga, infiere una causa común. Responde solo con el comentario."""

        return await self._generate(prompt, temperature=0.6)

    # === Structured extraction ===

    async def extract_structured_data(
        self, file_bytes: bytes, mime_type: str, instructions: str
    ) -> Any:
        """Send a document with instructions and parse the JSON the model returns.

        Raises:
            AssistantError: If the assistant is unavailable or the call fails.
            ExtractionError: If the response is empty or not JSON.
        """
        contents = [
            types.Part.from_bytes(data=file_bytes, mime_type=mime_type),
            instructions,
        ]
        text = await self._generate(contents, temperature=0.0, json_output=True)
        return parse_json_payload(text)

    async def extract_financial_report(
        self, image_bytes: bytes, mime_type: str = "image/jpeg"
    ) -> ManualReportEntry:
        """Extract manual expenses and known incomes from a monthly report image."""
        data = await self.extract_structured_data(
            image_bytes, mime_type, FINANCIAL_REPORT_INSTRUCTIONS
        )
        if not isinstance(data, dict):
            raise ExtractionError("Expected a JSON object with expenses and incomes")

        income_sources = load_business_policy().gdp_report.income_sources
        expenses = [
            ReportExpenseItem(
                id=f"img-exp-{uuid.uuid4().hex[:12]}",
                remark=item["remark"],
                amount=Decimal(str(item["amount"])),
                is_automatic=False,
                category=ExpenseSource.MANUAL,
            )
            for item in data.get("expenses") or []
            if isinstance(item, dict)
            and isinstance(item.get("remark"), str)
            and _is_number(item.get("amount"))
            and item["remark"].upper() not in EXCLUDED_EXPENSE_REMARKS
        ]
        incomes = [
            ReportIncomeItem(
                id=f"img-inc-{uuid.uuid4().hex[:12]}",
                source=item["source"],
                amount=Decimal(str(item["amount"])),
            )
            for item in data.get("incomes") or []
            if isinstance(item, dict)
            and item.get("source") in income_sources
            and _is_number(item.get("amount"))
        ]

        self._logger.info(
            "financial_report_extracted", expenses=len(expenses), incomes=len(incomes)
        )
        return ManualReportEntry(expenses=expenses, incomes=incomes)

    async def extract_conduces(self, file_bytes: bytes, mime_type: str) -> list[dict[str, Any]]:
        """Extract conduce rows (fecha, peso, paquetes, monto) from a report file."""
        data = await self.extract_structured_data(
            file_bytes, mime_type, CONDUCE_REPORT_INSTRUCTIONS
        )
        if not isinstance(data, list):
            return []
        rows = [item for item in data if isinstance(item, dict) and "fecha" in item]
        self._logger.info("conduces_extracted", rows=len(rows))
        return rows
