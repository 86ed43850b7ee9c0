"""Bulk import of pasted bank statements and DOP-formatted values.

Bank statements are pasted as plain text, six lines per transaction:
date, reference, description, code, amount, balance. Each block is parsed
independently; failures are collected in an ImportReport instead of
aborting the batch.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation

import structlog

from gdp_backoffice.models import BankTransaction

logger = structlog.get_logger(__name__)

LINES_PER_TRANSACTION = 6

CREDIT_KEYWORDS = ("credito", "crédito", "deposito", "depósito", "abono")

SPANISH_MONTH_ABBREVIATIONS = {
    "ene": 1,
    "feb": 2,
    "mar": 3,
    "abr": 4,
    "may": 5,
    "jun": 6,
    "jul": 7,
    "ago": 8,
    "sep": 9,
    "oct": 10,
    "nov": 11,
    "dic": 12,
}

_THOUSANDS_DOT = re.compile(r"\.(?=\d{3}(?:[.,]|$))")
_NUMERIC_DATE = re.compile(r"^(\d{1,2})[./-](\d{1,2})[./-](\d{2,4})$")


def clean_number(text: str | None) -> Decimal | None:
    """Parse a DOP amount such as ``RD$ 1.234,56``.

    Returns None for blank, ``-`` or unparseable input.
    """
    if text is None or text.strip() in ("", "-"):
        return None
    cleaned = re.sub(r"RD\$\s?", "", text.strip())
    cleaned = _THOUSANDS_DOT.sub("", cleaned).replace(",", ".", 1)
    match = re.match(r"^\s*[-+]?(\d+(\.\d*)?|\.\d+)", cleaned)
    if not match:
        return None
    try:
        return Decimal(match.group(0).strip())
    except InvalidOperation:
        return None


def _full_year(year_text: str) -> int:
    year = int(year_text)
    return 2000 + year if len(year_text) == 2 else year


def parse_statement_date(text: str) -> date | None:
    """Parse a statement date: ISO first, then day/month/year heuristics.

    Day comes first unless the middle number cannot be a month.
    """
    text = text.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass

    match = _NUMERIC_DATE.match(text)
    if not match:
        return None
    first, second = int(match.group(1)), int(match.group(2))
    year = _full_year(match.group(3))
    if second <= 12:
        day, month = first, second
    elif first <= 12:
        day, month = second, first
    else:
        return None
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_report_date(text: str, context_year: int) -> date | None:
    """Parse a conduce report date.

    Accepts ``YYYY-MM-DD``, ``DD-MON-YYYY``/``DD-MON-YY`` and ``DD-MON``
    (using ``context_year``) with Spanish month names or abbreviations.
    """
    text = text.strip()
    if re.match(r"^\d{4}-\d{2}-\d{2}$", text):
        try:
            return date.fromisoformat(text)
        except ValueError:
            return None

    parts = re.sub(r"[.\s]", "-", text).lower().split("-")
    parts = [p for p in parts if p]
    if len(parts) not in (2, 3) or not parts[0].isdigit():
        return None

    month = SPANISH_MONTH_ABBREVIATIONS.get(parts[1][:3])
    if month is None:
        return None
    if len(parts) == 3:
        if not parts[2].isdigit():
            return None
        year = _full_year(parts[2])
    else:
        year = context_year
    try:
        return date(year, month, int(parts[0]))
    except ValueError:
        return None


def is_credit_description(description: str) -> bool:
    lowered = description.lower()
    return any(keyword in lowered for keyword in CREDIT_KEYWORDS)


@dataclass
class ImportReport:
    """Outcome of a bulk import."""

    success: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    transactions: list[BankTransaction] = field(default_factory=list)

    def skip(self, message: str) -> None:
        self.skipped += 1
        self.errors.append(message)


def parse_bank_paste(text: str) -> ImportReport:
    """Parse pasted bank statement text into transactions.

    Blocks with an invalid date, amount or balance are skipped with a
    message naming the offending line; a trailing incomplete block is
    reported and skipped.
    """
    report = ImportReport()
    if not text.strip():
        return report

    lines = [line.strip() for line in text.strip().split("\n")]
    for start in range(0, len(lines), LINES_PER_TRANSACTION):
        block = lines[start : start + LINES_PER_TRANSACTION]
        if len(block) < LINES_PER_TRANSACTION:
            if any(line for line in block):
                report.skip(
                    f"Incomplete block at the end (lines {start + 1}-{start + len(block)}). "
                    "1 transaction skipped."
                )
            break

        date_text, reference, description, code, amount_text, balance_text = block
        parsed_date = parse_statement_date(date_text)
        if parsed_date is None:
            report.skip(f"Line {start + 1}: invalid date {date_text!r}.")
            continue
        amount = clean_number(amount_text)
        if amount is None:
            report.skip(f"Line {start + 5}: invalid amount {amount_text!r}.")
            continue
        balance = clean_number(balance_text)
        if balance is None:
            report.skip(f"Line {start + 6}: invalid balance {balance_text!r}.")
            continue

        credit = is_credit_description(description)
        report.transactions.append(
            BankTransaction(
                date=parsed_date,
                reference_number=reference,
                description=description,
                code=code,
                debit=None if credit else amount,
                credit=amount if credit else None,
                balance=balance,
                comment=f"Importado de lote: {description}",
            )
        )
        report.success += 1

    logger.info(
        "bank_paste_parsed",
        success=report.success,
        skipped=report.skipped,
    )
    return report
