from datetime import date
from decimal import Decimal, InvalidOperation

from apto.db.models import PaymentStatus

CURRENCY_SYMBOL = "R$"

STATUS_LABELS: dict[PaymentStatus, str] = {
    PaymentStatus.PAID: "Pago",
    PaymentStatus.PENDING: "Pendente",
}


def format_brl(amount: Decimal | float) -> str:
    text = f"{Decimal(str(amount)):,.2f}"
    # 1,250.00 -> 1.250,00
    text = text.replace(",", "_").replace(".", ",").replace("_", ".")
    return f"{CURRENCY_SYMBOL} {text}"


def format_date(value: date) -> str:
    return value.strftime("%d/%m/%Y")


def status_label(status: PaymentStatus) -> str:
    return STATUS_LABELS[status]


def parse_amount(text: str) -> Decimal:
    cleaned = text.strip().removeprefix(CURRENCY_SYMBOL).replace(" ", "")
    if "," in cleaned:
        cleaned = cleaned.replace(".", "").replace(",", ".")
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        raise ValueError(f"Not an amount: {text!r}") from None
    if not amount.is_finite():
        raise ValueError(f"Not an amount: {text!r}")
    return amount
