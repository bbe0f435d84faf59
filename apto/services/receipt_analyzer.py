"""Extraction of draft fields from a receipt or bill through Claude.

The reconciler only depends on the ``ReceiptAnalyzer`` protocol, so tests and
deployments without credentials can plug in any object with an ``analyze``
coroutine. ``ClaudeReceiptAnalyzer`` is the production implementation.
"""

import json
import logging
import time
from datetime import date
from decimal import Decimal
from typing import Protocol

import anthropic
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from apto.claude.client import ask_claude_structured
from apto.db.models import Attachment, PartialDraft, PaymentStatus
from apto.errors import AnalysisError

logger = logging.getLogger(__name__)

RECEIPT_PROMPT = (
    "Analise este documento (boleto ou comprovante). Extraia o valor total, a data de "
    "vencimento/pagamento. IMPORTANTE: Se parecer uma conta mensal (aluguel, condomínio, luz), "
    "a descrição DEVE ser estritamente no formato 'Parcela Mensal MM/AAAA' correspondente ao mês "
    "de referência. Se for pago, marque isPaid como true. Retorne JSON."
)

RECEIPT_SCHEMA = {
    "type": "object",
    "properties": {
        "amount": {"type": "number", "description": "Valor total do documento"},
        "date": {"type": "string", "description": "Data no formato YYYY-MM-DD"},
        "description": {
            "type": "string",
            "description": "Descrição sugerida, preferencialmente 'Parcela Mensal MM/AAAA'",
        },
        "isPaid": {
            "type": "boolean",
            "description": "True se for um comprovante de pagamento, False se for um boleto a pagar",
        },
    },
    "required": ["amount", "date", "description"],
}


class ReceiptExtraction(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    amount: float = Field(ge=0, allow_inf_nan=False)
    due_date: date = Field(alias="date")
    description: str = Field(min_length=1)
    is_paid: bool | None = Field(default=None, alias="isPaid")

    def to_partial(self) -> PartialDraft:
        return PartialDraft(
            amount=Decimal(str(self.amount)),
            due_date=self.due_date,
            description=self.description,
            status=PaymentStatus.PAID if self.is_paid else PaymentStatus.PENDING,
        )


class ReceiptAnalyzer(Protocol):
    async def analyze(self, attachment: Attachment) -> PartialDraft: ...


class ClaudeReceiptAnalyzer:
    async def analyze(self, attachment: Attachment) -> PartialDraft:
        started = time.monotonic()
        try:
            raw = await ask_claude_structured(
                prompt=RECEIPT_PROMPT,
                json_schema=RECEIPT_SCHEMA,
                attachment=attachment,
            )
        except (RuntimeError, TimeoutError, OSError, UnicodeDecodeError, json.JSONDecodeError, anthropic.APIError) as exc:
            raise AnalysisError(f"Receipt analysis failed: {exc}") from exc

        try:
            extraction = ReceiptExtraction.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Malformed receipt extraction: %s", raw)
            raise AnalysisError(f"Receipt analysis returned malformed data: {exc.error_count()} errors") from exc

        latency_ms = round((time.monotonic() - started) * 1000, 1)
        logger.info("Receipt analyzed", extra={"handler": "analyzer", "latency_ms": latency_ms})
        return extraction.to_partial()
