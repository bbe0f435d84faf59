from datetime import date
from decimal import Decimal

import pytest

from apto.currency import format_brl, format_date, parse_amount, status_label
from apto.db.models import PaymentStatus


@pytest.mark.parametrize(
    "amount, expected",
    [
        (Decimal("1250"), "R$ 1.250,00"),
        (Decimal("250.5"), "R$ 250,50"),
        (Decimal("0"), "R$ 0,00"),
        (Decimal("1234567.891"), "R$ 1.234.567,89"),
        (99.9, "R$ 99,90"),
    ],
)
def test_format_brl(amount, expected):
    assert format_brl(amount) == expected


def test_format_date():
    assert format_date(date(2025, 9, 10)) == "10/09/2025"


def test_status_label():
    assert status_label(PaymentStatus.PAID) == "Pago"
    assert status_label(PaymentStatus.PENDING) == "Pendente"


@pytest.mark.parametrize(
    "text, expected",
    [
        ("1.250,50", Decimal("1250.50")),
        ("R$ 99,90", Decimal("99.90")),
        ("80", Decimal("80")),
        ("12.5", Decimal("12.5")),
    ],
)
def test_parse_amount(text, expected):
    assert parse_amount(text) == expected


@pytest.mark.parametrize("text", ["", "abc", "NaN", "R$"])
def test_parse_amount_invalid(text):
    with pytest.raises(ValueError):
        parse_amount(text)
