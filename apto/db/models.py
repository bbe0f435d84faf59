import base64
import binascii
import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import StrEnum

from apto.errors import EncodingError

_DATA_URI = re.compile(r"^data:(?P<media_type>[\w.+-]+/[\w.+-]+);base64,(?P<data>.*)$", re.DOTALL)


class PaymentStatus(StrEnum):
    PENDING = "PENDING"
    PAID = "PAID"

    def toggled(self) -> "PaymentStatus":
        return PaymentStatus.PENDING if self is PaymentStatus.PAID else PaymentStatus.PAID


@dataclass(frozen=True, slots=True)
class Attachment:
    media_type: str
    data: str

    def to_data_uri(self) -> str:
        return f"data:{self.media_type};base64,{self.data}"

    @classmethod
    def from_data_uri(cls, uri: str) -> "Attachment":
        uri = uri or ""
        match = _DATA_URI.match(uri)
        if not match or not match["data"]:
            raise EncodingError(f"Not a base64 data URI: {uri[:40]!r}")
        return cls(media_type=match["media_type"], data=match["data"])

    def raw_bytes(self) -> bytes:
        try:
            return base64.b64decode(self.data, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise EncodingError(f"Attachment payload is not valid base64: {exc}") from None

    @property
    def is_pdf(self) -> bool:
        return self.media_type == "application/pdf"


@dataclass(slots=True)
class ExpenseDraft:
    description: str
    amount: Decimal
    due_date: date
    status: PaymentStatus = PaymentStatus.PENDING
    receipt: Attachment | None = None


@dataclass(frozen=True, slots=True)
class Expense:
    id: str
    description: str
    amount: Decimal
    due_date: date
    status: PaymentStatus
    created_at: int
    receipt: Attachment | None = None


@dataclass(slots=True)
class PartialDraft:
    amount: Decimal | None = None
    due_date: date | None = None
    description: str | None = None
    status: PaymentStatus | None = None


@dataclass(frozen=True, slots=True)
class Totals:
    paid: Decimal = field(default_factory=Decimal)
    pending: Decimal = field(default_factory=Decimal)
