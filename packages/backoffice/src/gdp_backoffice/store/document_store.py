"""Document store for back office records.

Records live in named collections (lists of records) and object stores
(mappings from a month key to a report entry). Each key is persisted as one
JSON file ``gdp_<key>.json`` in the data directory, or kept in memory when
no directory is configured. Access to a key is serialized with an
``asyncio.Lock`` and files are replaced atomically.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
import uuid
from collections.abc import Mapping, Sequence
from enum import Enum
from pathlib import Path
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from gdp_backoffice.errors import StorageError
from gdp_backoffice.models import (
    BankTransaction,
    ConduceDocument,
    Debtor,
    Employee,
    FuelLogEntry,
    Loan,
    LoanPayment,
    ManualReportEntry,
    MiHeladitoPayrollRun,
    MiHeladitoReportEntry,
    MiHeladitoWorker,
    PayrollRun,
    Receivable,
    Record,
    Subagent,
    SubagentMonthlyPayment,
)

logger = structlog.get_logger(__name__)

R = TypeVar("R", bound=Record)


class Collection(str, Enum):
    """Named record collections."""

    EMPLOYEES = "employees"
    PAYROLL_RUNS = "payrollRuns"
    SUBAGENTS = "subagents"
    CONDUCE_DOCUMENTS = "conduceDocuments"
    SUBAGENT_MONTHLY_PAYMENTS = "subagentMonthlyPayments"
    MI_HELADITO_WORKERS = "miHeladitoWorkers"
    MI_HELADITO_PAYROLL_RUNS = "miHeladitoPayrollRuns"
    FUEL_LOG_ENTRIES = "fuelLogEntries"
    BANK_TRANSACTIONS = "bankTransactions"
    DEBTORS = "debtors"
    RECEIVABLES = "receivables"
    LOANS = "loans"
    LOAN_PAYMENTS = "loanPayments"

    @property
    def model(self) -> type[Record]:
        return _COLLECTION_MODELS[self]


class ObjectStore(str, Enum):
    """Named mappings of month key to report entry."""

    MANUAL_REPORT_ENTRIES = "manualReportEntries"
    MI_HELADITO_REPORT_ENTRIES = "miHeladitoReportEntries"

    @property
    def model(self) -> type[BaseModel]:
        return _OBJECT_STORE_MODELS[self]


_COLLECTION_MODELS: dict[Collection, type[Record]] = {
    Collection.EMPLOYEES: Employee,
    Collection.PAYROLL_RUNS: PayrollRun,
    Collection.SUBAGENTS: Subagent,
    Collection.CONDUCE_DOCUMENTS: ConduceDocument,
    Collection.SUBAGENT_MONTHLY_PAYMENTS: SubagentMonthlyPayment,
    Collection.MI_HELADITO_WORKERS: MiHeladitoWorker,
    Collection.MI_HELADITO_PAYROLL_RUNS: MiHeladitoPayrollRun,
    Collection.FUEL_LOG_ENTRIES: FuelLogEntry,
    Collection.BANK_TRANSACTIONS: BankTransaction,
    Collection.DEBTORS: Debtor,
    Collection.RECEIVABLES: Receivable,
    Collection.LOANS: Loan,
    Collection.LOAN_PAYMENTS: LoanPayment,
}

_OBJECT_STORE_MODELS: dict[ObjectStore, type[BaseModel]] = {
    ObjectStore.MANUAL_REPORT_ENTRIES: ManualReportEntry,
    ObjectStore.MI_HELADITO_REPORT_ENTRIES: MiHeladitoReportEntry,
}


def new_id(collection: Collection) -> str:
    """Generate a record id prefixed with the first letters of the collection."""
    return f"{collection.value[:4]}-{uuid.uuid4().hex[:12]}"


class DocumentStore:
    """Async document store backed by JSON files or memory.

    Args:
        data_dir: Directory for ``gdp_*.json`` files. ``None`` keeps all
            documents in memory for the lifetime of the store.
    """

    def __init__(self, data_dir: Path | None = None):
        self._data_dir = Path(data_dir) if data_dir is not None else None
        self._memory: dict[str, str] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._logger = logger.bind(
            component="document_store",
            backend="file" if self._data_dir else "memory",
        )
        if self._data_dir is not None:
            self._data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def data_dir(self) -> Path | None:
        return self._data_dir

    def _lock(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def _path(self, key: str) -> Path:
        assert self._data_dir is not None
        return self._data_dir / f"gdp_{key}.json"

    # === Raw key access (callers hold the key lock) ===

    def _read(self, key: str, default: Any) -> Any:
        if self._data_dir is None:
            raw = self._memory.get(key)
        else:
            path = self._path(key)
            try:
                raw = path.read_text(encoding="utf-8") if path.exists() else None
            except OSError as e:
                self._logger.error("store_read_failed", key=key, error=str(e))
                raise StorageError(f"Could not read {key}: {e}", details={"key": key}) from e
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            self._logger.error("store_read_failed", key=key, error=str(e))
            raise StorageError(f"Corrupt data for {key}: {e}", details={"key": key}) from e

    def _write(self, key: str, data: Any) -> None:
        raw = json.dumps(data, ensure_ascii=False, indent=2)
        if self._data_dir is None:
            self._memory[key] = raw
            return

        path = self._path(key)
        fd, tmp_name = tempfile.mkstemp(dir=self._data_dir, prefix=f".gdp_{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(raw)
            os.replace(tmp_name, path)
        except OSError as e:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            self._logger.error("store_write_failed", key=key, error=str(e))
            raise StorageError(f"Could not write {key}: {e}", details={"key": key}) from e

    def _load_records(self, collection: Collection) -> list[Record]:
        raw = self._read(collection.value, [])
        if not isinstance(raw, list):
            raise StorageError(f"{collection.value} must hold a list of records")
        try:
            return [collection.model.model_validate(item) for item in raw]
        except PydanticValidationError as e:
            self._logger.error("store_validation_failed", key=collection.value, error=str(e))
            raise StorageError(
                f"Invalid record in {collection.value}", details={"errors": e.errors()}
            ) from e

    def _save_records(self, collection: Collection, records: Sequence[Record]) -> None:
        self._write(collection.value, [r.model_dump(mode="json") for r in records])

    # === Collections ===

    async def fetch_all(self, collection: Collection) -> list[Any]:
        """Return every record in a collection, validated."""
        async with self._lock(collection.value):
            return self._load_records(collection)

    async def save_new(self, collection: Collection, record: R) -> R:
        """Insert a record, assigning an id when it has none.

        Raises:
            StorageError: If a record with the same id already exists.
        """
        self._check_type(collection, record)
        async with self._lock(collection.value):
            records = self._load_records(collection)
            if not record.id:
                record = record.model_copy(update={"id": new_id(collection)})
            if any(r.id == record.id for r in records):
                raise StorageError(
                    f"Duplicate id {record.id!r} in {collection.value}",
                    details={"id": record.id},
                )
            records.append(record)
            self._save_records(collection, records)
        self._logger.debug("record_saved", collection=collection.value, id=record.id)
        return record

    async def update(self, collection: Collection, record: R) -> R:
        """Replace a stored record with the same id.

        Raises:
            StorageError: If no record has that id.
        """
        self._check_type(collection, record)
        async with self._lock(collection.value):
            records = self._load_records(collection)
            index = self._index_of(collection, records, record.id)
            records[index] = record
            self._save_records(collection, records)
        self._logger.debug("record_updated", collection=collection.value, id=record.id)
        return record

    async def delete(self, collection: Collection, record_id: str) -> None:
        """Remove a record by id.

        Raises:
            StorageError: If no record has that id.
        """
        async with self._lock(collection.value):
            records = self._load_records(collection)
            index = self._index_of(collection, records, record_id)
            del records[index]
            self._save_records(collection, records)
        self._logger.debug("record_deleted", collection=collection.value, id=record_id)

    async def batch_update(
        self, collection: Collection, partials: Sequence[Mapping[str, Any]]
    ) -> list[Any]:
        """Merge partial updates into several records in one write.

        Every partial must carry an ``id``. Nothing is written unless all
        partials apply cleanly.
        """
        async with self._lock(collection.value):
            records = self._load_records(collection)
            updated: list[Record] = []
            for partial in partials:
                record_id = partial.get("id")
                if not record_id:
                    raise StorageError("Batch update entries require an id")
                index = self._index_of(collection, records, str(record_id))
                merged = {**records[index].model_dump(mode="json"), **partial}
                try:
                    records[index] = collection.model.model_validate(merged)
                except PydanticValidationError as e:
                    raise StorageError(
                        f"Invalid update for {record_id!r} in {collection.value}",
                        details={"errors": e.errors()},
                    ) from e
                updated.append(records[index])
            self._save_records(collection, records)
        self._logger.debug("batch_updated", collection=collection.value, count=len(updated))
        return updated

    # === Object stores ===

    async def fetch_object_store(self, store: ObjectStore) -> dict[str, Any]:
        """Return the whole mapping of an object store, validated."""
        async with self._lock(store.value):
            return self._load_mapping(store)

    async def update_object_store(
        self, store: ObjectStore, entries: Mapping[str, BaseModel]
    ) -> dict[str, Any]:
        """Upsert the given keys into an object store and return the result."""
        async with self._lock(store.value):
            mapping = self._load_mapping(store)
            for key, entry in entries.items():
                if not isinstance(entry, store.model):
                    raise StorageError(
                        f"{store.value} expects {store.model.__name__}, "
                        f"got {type(entry).__name__}"
                    )
                mapping[key] = entry
            self._write(
                store.value, {k: v.model_dump(mode="json") for k, v in mapping.items()}
            )
        self._logger.debug("object_store_updated", store=store.value, keys=list(entries))
        return mapping

    def _load_mapping(self, store: ObjectStore) -> dict[str, Any]:
        raw = self._read(store.value, {})
        if not isinstance(raw, dict):
            raise StorageError(f"{store.value} must hold a mapping")
        try:
            return {key: store.model.model_validate(value) for key, value in raw.items()}
        except PydanticValidationError as e:
            raise StorageError(
                f"Invalid entry in {store.value}", details={"errors": e.errors()}
            ) from e

    # === Helpers ===

    @staticmethod
    def _check_type(collection: Collection, record: Record) -> None:
        if not isinstance(record, collection.model):
            raise StorageError(
                f"{collection.value} expects {collection.model.__name__}, "
                f"got {type(record).__name__}"
            )

    @staticmethod
    def _index_of(collection: Collection, records: Sequence[Record], record_id: str) -> int:
        for index, record in enumerate(records):
            if record.id == record_id:
                return index
        raise StorageError(
            f"No record {record_id!r} in {collection.value}", details={"id": record_id}
        )
