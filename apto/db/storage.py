"""Persistence of the full expense list as one JSON document under a fixed key."""

import json
import logging
import math
import sqlite3
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Protocol

from apto.db import database
from apto.db.models import Attachment, Expense, PaymentStatus
from apto.errors import EncodingError, StorageReadError, StorageWriteError

logger = logging.getLogger(__name__)

LEGACY_RECEIPT_KEY = "receiptBase64"


class KeyValueBackend(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...


class SQLiteBackend:
    async def get(self, key: str) -> str | None:
        return await database.get_value(key)

    async def set(self, key: str, value: str) -> None:
        await database.set_value(key, value)


class MemoryBackend:
    def __init__(self, initial: dict[str, str] | None = None):
        self.values: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self.values.get(key)

    async def set(self, key: str, value: str) -> None:
        self.values[key] = value


def expense_to_dict(expense: Expense) -> dict:
    data = {
        "id": expense.id,
        "description": expense.description,
        "amount": float(expense.amount),
        "dueDate": expense.due_date.isoformat(),
        "status": expense.status.value,
        "createdAt": expense.created_at,
    }
    if expense.receipt is not None:
        data["receiptImage"] = expense.receipt.to_data_uri()
    return data


def _parse_amount(value) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValueError(f"amount must be a number, got {value!r}")
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"amount is not numeric: {value!r}") from None
    if not amount.is_finite() or amount < 0:
        raise ValueError(f"amount must be finite and non-negative, got {value!r}")
    return amount


def expense_from_dict(data: dict) -> Expense:
    if not isinstance(data, dict):
        raise ValueError(f"record must be an object, got {type(data).__name__}")

    expense_id = data["id"]
    if not isinstance(expense_id, str) or not expense_id:
        raise ValueError(f"invalid id: {expense_id!r}")

    description = data["description"]
    if not isinstance(description, str) or not description.strip():
        raise ValueError(f"record {expense_id} has an empty description")

    created_at = data["createdAt"]
    if isinstance(created_at, bool) or not isinstance(created_at, (int, float)) or not math.isfinite(created_at):
        raise ValueError(f"record {expense_id} has an invalid createdAt")

    receipt_uri = data.get("receiptImage", data.get(LEGACY_RECEIPT_KEY))
    try:
        receipt = Attachment.from_data_uri(receipt_uri) if receipt_uri else None
    except EncodingError as exc:
        raise ValueError(str(exc)) from None

    return Expense(
        id=expense_id,
        description=description,
        amount=_parse_amount(data["amount"]),
        due_date=date.fromisoformat(data["dueDate"]),
        status=PaymentStatus(data["status"]),
        created_at=int(created_at),
        receipt=receipt,
    )


class ExpenseStorage:
    def __init__(self, backend: KeyValueBackend, key: str):
        self._backend = backend
        self._key = key

    async def read(self) -> list[Expense] | None:
        raw = await self._backend.get(self._key)
        if raw is None:
            return None
        try:
            document = json.loads(raw)
        except (json.JSONDecodeError, TypeError, RecursionError) as exc:
            raise StorageReadError(f"Stored document is not valid JSON: {exc}") from None
        if not isinstance(document, list):
            raise StorageReadError(f"Stored document must be a list, got {type(document).__name__}")

        expenses: list[Expense] = []
        seen: set[str] = set()
        for index, item in enumerate(document):
            try:
                expense = expense_from_dict(item)
            except (KeyError, TypeError, ValueError, OverflowError) as exc:
                raise StorageReadError(f"Record {index} is invalid: {exc}") from None
            if expense.id in seen:
                raise StorageReadError(f"Duplicate id {expense.id!r} in stored document")
            seen.add(expense.id)
            expenses.append(expense)
        return expenses

    async def write(self, expenses: list[Expense]) -> None:
        payload = json.dumps([expense_to_dict(e) for e in expenses], ensure_ascii=False)
        try:
            await self._backend.set(self._key, payload)
        except (sqlite3.Error, OSError) as exc:
            raise StorageWriteError(f"Failed to persist {len(expenses)} expenses: {exc}") from exc
        logger.debug("Persisted %d expenses under %s", len(expenses), self._key)
