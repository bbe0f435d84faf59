"""State of the "new installment" form between opening it and saving it.

The reconciler owns one ``ExpenseDraft`` and applies two rules to it:

* the monthly description follows the due date until the user types a
  description of their own;
* receipt analysis results are merged into the draft when they arrive, unless
  a newer attachment (or a reset) has replaced the one they were computed for.
"""

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import StrEnum
from pathlib import Path

from apto.config import settings
from apto.currency import parse_amount
from apto.db.models import Attachment, Expense, ExpenseDraft, PartialDraft, PaymentStatus
from apto.errors import AnalysisError, EncodingError
from apto.services.expense_store import ExpenseStore
from apto.services.receipt_analyzer import ReceiptAnalyzer
from apto.services.receipt_encoder import encode_bytes, encode_file

logger = logging.getLogger(__name__)

MONTHLY_DESCRIPTION = re.compile(r"Parcela Mensal \d{2}/\d{4}")

ENCODING_FAILED_MESSAGE = "Erro ao anexar arquivo."
ANALYSIS_FAILED_MESSAGE = "Não foi possível ler o comprovante. Preencha os campos manualmente."
NO_ANALYZER_MESSAGE = "Leitura automática indisponível. Preencha os campos manualmente."

PreviewCallback = Callable[[Attachment], Awaitable[None]]


def monthly_description(due_date: date) -> str:
    return f"Parcela Mensal {due_date.month:02d}/{due_date.year:04d}"


def is_monthly_description(text: str) -> bool:
    return MONTHLY_DESCRIPTION.fullmatch(text.strip()) is not None


class AttachState(StrEnum):
    IDLE = "idle"
    ENCODING = "encoding"
    ENCODED_PREVIEW = "encoded_preview"
    ANALYZING = "analyzing"


class AttachOutcome(StrEnum):
    MERGED = "merged"
    ANALYSIS_FAILED = "analysis_failed"
    ENCODING_FAILED = "encoding_failed"
    NO_ANALYZER = "no_analyzer"
    SUPERSEDED = "superseded"


@dataclass(frozen=True, slots=True)
class Notice:
    message: str
    blocking: bool = False


class DraftReconciler:
    def __init__(
        self,
        store: ExpenseStore,
        analyzer: ReceiptAnalyzer | None = None,
        today: Callable[[], date] = date.today,
        analysis_timeout: float | None = None,
    ):
        self._store = store
        self._analyzer = analyzer
        self._today = today
        self._analysis_timeout = settings.analysis_timeout if analysis_timeout is None else analysis_timeout
        self._generation = 0
        self._selection = 0
        self._analyzing: int | None = None
        self.state = AttachState.IDLE
        self.notices: list[Notice] = []
        self.draft = self._fresh_draft()

    def _fresh_draft(self) -> ExpenseDraft:
        today = self._today()
        return ExpenseDraft(
            description=monthly_description(today),
            amount=Decimal(0),
            due_date=today,
            status=PaymentStatus.PENDING,
            receipt=None,
        )

    # --- field edits ---

    def set_due_date(self, value: date | str) -> None:
        due_date = date.fromisoformat(value) if isinstance(value, str) else value
        changed = due_date != self.draft.due_date
        self.draft.due_date = due_date
        description = self.draft.description
        if not description.strip() or (changed and is_monthly_description(description)):
            self.draft.description = monthly_description(due_date)

    def set_description(self, text: str) -> None:
        self.draft.description = text

    def set_amount(self, value: Decimal | int | float | str) -> None:
        if isinstance(value, str):
            self.draft.amount = parse_amount(value)
        else:
            self.draft.amount = Decimal(str(value))

    def set_status(self, status: PaymentStatus | str) -> None:
        self.draft.status = PaymentStatus(status)

    def remove_attachment(self) -> None:
        self._generation += 1
        self.draft.receipt = None
        self.state = AttachState.IDLE

    def pop_notices(self) -> list[Notice]:
        notices, self.notices = self.notices, []
        return notices

    # --- attach and analyze ---

    async def attach(
        self,
        data: bytes,
        filename: str | None = None,
        media_type: str | None = None,
        on_preview: PreviewCallback | None = None,
    ) -> AttachOutcome:
        selection = self._begin_attach()
        try:
            attachment = encode_bytes(data, filename=filename, media_type=media_type)
        except EncodingError as exc:
            return self._encoding_failed(selection, exc)
        return await self._encoded(selection, attachment, on_preview)

    async def attach_file(self, path: str | Path, on_preview: PreviewCallback | None = None) -> AttachOutcome:
        selection = self._begin_attach()
        try:
            attachment = await encode_file(path)
        except EncodingError as exc:
            return self._encoding_failed(selection, exc)
        return await self._encoded(selection, attachment, on_preview)

    def _begin_attach(self) -> tuple[int, int]:
        # The generation only moves once the new file is encoded; a failed
        # selection leaves the current attachment and its analysis alone.
        self._selection += 1
        self.state = AttachState.ENCODING
        return self._selection, self._generation

    def _is_latest(self, selection: tuple[int, int]) -> bool:
        return selection == (self._selection, self._generation)

    def _is_current(self, token: int, attachment: Attachment) -> bool:
        return token == self._generation and self.draft.receipt is attachment

    async def _encoded(
        self, selection: tuple[int, int], attachment: Attachment, on_preview: PreviewCallback | None
    ) -> AttachOutcome:
        if not self._is_latest(selection):
            return AttachOutcome.SUPERSEDED
        self._generation += 1
        return await self._preview_and_analyze(self._generation, attachment, on_preview)

    def _encoding_failed(self, selection: tuple[int, int], exc: EncodingError) -> AttachOutcome:
        logger.warning("Could not encode attachment: %s", exc)
        if not self._is_latest(selection):
            return AttachOutcome.SUPERSEDED
        self.notices.append(Notice(ENCODING_FAILED_MESSAGE, blocking=True))
        analyzing = self._analyzing == self._generation and self.draft.receipt is not None
        self.state = AttachState.ANALYZING if analyzing else AttachState.IDLE
        return AttachOutcome.ENCODING_FAILED

    async def _preview_and_analyze(
        self, token: int, attachment: Attachment, on_preview: PreviewCallback | None
    ) -> AttachOutcome:
        self.draft.receipt = attachment
        self.state = AttachState.ENCODED_PREVIEW
        if on_preview is not None:
            await on_preview(attachment)
        if not self._is_current(token, attachment):
            return AttachOutcome.SUPERSEDED

        if self._analyzer is None:
            self.notices.append(Notice(NO_ANALYZER_MESSAGE))
            self.state = AttachState.IDLE
            return AttachOutcome.NO_ANALYZER

        self.state = AttachState.ANALYZING
        self._analyzing = token
        try:
            partial = await asyncio.wait_for(self._analyzer.analyze(attachment), timeout=self._analysis_timeout)
        except Exception as exc:
            if not self._is_current(token, attachment):
                return AttachOutcome.SUPERSEDED
            expected = isinstance(exc, (AnalysisError, TimeoutError))
            logger.warning("Receipt analysis failed: %s", str(exc) or "timed out", exc_info=not expected)
            self.notices.append(Notice(ANALYSIS_FAILED_MESSAGE))
            self.state = AttachState.IDLE
            return AttachOutcome.ANALYSIS_FAILED
        finally:
            if self._analyzing == token:
                self._analyzing = None

        if not self._is_current(token, attachment):
            logger.info("Discarding analysis for a replaced attachment")
            return AttachOutcome.SUPERSEDED
        self._merge(partial)
        self.state = AttachState.IDLE
        return AttachOutcome.MERGED

    def _merge(self, partial: PartialDraft) -> None:
        if partial.due_date is not None:
            self.set_due_date(partial.due_date)
        if partial.amount is not None:
            self.draft.amount = partial.amount
        if partial.description:
            self.draft.description = partial.description
        if partial.status is not None:
            self.draft.status = partial.status

    # --- lifecycle ---

    async def submit(self) -> Expense:
        expense = await self._store.create(self.draft)
        self.reset()
        return expense

    def cancel(self) -> None:
        self.reset()

    def reset(self) -> None:
        self._generation += 1
        self.draft = self._fresh_draft()
        self.state = AttachState.IDLE
        self.notices = []
