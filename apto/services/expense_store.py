import logging
import time
import uuid
from dataclasses import replace
from datetime import date
from decimal import Decimal, InvalidOperation

from apto.db.models import Expense, ExpenseDraft, PaymentStatus, Totals
from apto.db.storage import ExpenseStorage
from apto.errors import DraftValidationError, StorageReadError

logger = logging.getLogger(__name__)

SEED_AGE_MS = 10_000_000


def _now_ms() -> int:
    return int(time.time() * 1000)


def seed_expenses(now_ms: int | None = None) -> list[Expense]:
    now_ms = _now_ms() if now_ms is None else now_ms
    return [
        Expense(
            id="1",
            description="Parcela Mensal 09/2025",
            amount=Decimal("1250.00"),
            due_date=date(2025, 9, 10),
            status=PaymentStatus.PAID,
            created_at=now_ms - SEED_AGE_MS,
        ),
        Expense(
            id="2",
            description="Manutenção Ar Condicionado",
            amount=Decimal("250.00"),
            due_date=date(2025, 9, 15),
            status=PaymentStatus.PENDING,
            created_at=now_ms,
        ),
    ]


def _as_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise ValueError(f"amount is not a number: {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"amount is not a number: {value!r}") from None


def validate_draft(draft: ExpenseDraft) -> list[str]:
    problems = []
    if not isinstance(draft.description, str) or not draft.description.strip():
        problems.append("description is required")
    try:
        amount = _as_decimal(draft.amount)
        if not amount.is_finite() or amount < 0:
            problems.append("amount must be zero or greater")
        elif Decimal(repr(float(amount))) != amount:
            # Stored as a JSON number, so it must survive a round trip through a double.
            problems.append(f"amount has more digits than can be stored: {amount}")
    except ValueError as exc:
        problems.append(str(exc))
    if isinstance(draft.due_date, str):
        try:
            date.fromisoformat(draft.due_date)
        except ValueError:
            problems.append(f"due date is not a valid YYYY-MM-DD date: {draft.due_date!r}")
    elif not isinstance(draft.due_date, date):
        problems.append("due date is required")
    try:
        PaymentStatus(draft.status)
    except ValueError:
        problems.append(f"unknown status: {draft.status!r}")
    return problems


class ExpenseStore:
    """In-memory expense collection, written through to storage on every mutation."""

    def __init__(self, storage: ExpenseStorage):
        self._storage = storage
        self._expenses: list[Expense] = []

    @property
    def expenses(self) -> list[Expense]:
        return list(self._expenses)

    def get(self, expense_id: str) -> Expense | None:
        return next((e for e in self._expenses if e.id == expense_id), None)

    async def load(self) -> list[Expense]:
        try:
            stored = await self._storage.read()
        except StorageReadError as exc:
            logger.warning("Discarding unreadable expense document: %s", exc)
            stored = None
        if stored is None:
            logger.info("No stored expenses, starting from seed data")
            stored = seed_expenses()
        self._expenses = stored
        return self.expenses

    async def create(self, draft: ExpenseDraft) -> Expense:
        problems = validate_draft(draft)
        if problems:
            raise DraftValidationError(problems)

        due_date = draft.due_date if isinstance(draft.due_date, date) else date.fromisoformat(draft.due_date)
        expense = Expense(
            id=str(uuid.uuid4()),
            description=draft.description,
            amount=_as_decimal(draft.amount),
            due_date=due_date,
            status=PaymentStatus(draft.status),
            created_at=_now_ms(),
            receipt=draft.receipt,
        )
        self._expenses.insert(0, expense)
        await self._persist()
        logger.info("Created expense %s", expense.description, extra={"expense_id": expense.id})
        return expense

    async def toggle_status(self, expense_id: str) -> Expense | None:
        for index, expense in enumerate(self._expenses):
            if expense.id == expense_id:
                updated = replace(expense, status=expense.status.toggled())
                self._expenses[index] = updated
                await self._persist()
                logger.info("Expense status set to %s", updated.status, extra={"expense_id": expense_id})
                return updated
        logger.debug("Toggle ignored, no expense %s", expense_id)
        return None

    async def delete(self, expense_id: str) -> bool:
        remaining = [e for e in self._expenses if e.id != expense_id]
        if len(remaining) == len(self._expenses):
            logger.debug("Delete ignored, no expense %s", expense_id)
            return False
        self._expenses = remaining
        await self._persist()
        logger.info("Deleted expense", extra={"expense_id": expense_id})
        return True

    def totals(self) -> Totals:
        paid = sum((e.amount for e in self._expenses if e.status is PaymentStatus.PAID), Decimal(0))
        pending = sum((e.amount for e in self._expenses if e.status is PaymentStatus.PENDING), Decimal(0))
        return Totals(paid=paid, pending=pending)

    async def _persist(self) -> None:
        await self._storage.write(self._expenses)
