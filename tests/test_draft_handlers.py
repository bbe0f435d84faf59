import io
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from apto.db.models import PartialDraft, PaymentStatus
from apto.errors import AnalysisError
from apto.handlers.drafts import (
    NO_DRAFT_TEXT,
    _drafts,
    cmd_amount,
    cmd_cancel,
    cmd_description,
    cmd_due_date,
    cmd_new,
    cmd_save,
    cmd_status,
    handle_document,
    handle_photo,
    parse_date,
)
from apto.services.draft_service import ANALYSIS_FAILED_MESSAGE


@pytest.fixture(autouse=True)
def clear_drafts():
    _drafts.clear()
    yield
    _drafts.clear()


def _make_message(text: str = "", chat_id=1, user_id=1):
    msg = AsyncMock()
    msg.text = text
    msg.chat.id = chat_id
    msg.from_user = MagicMock()
    msg.from_user.id = user_id
    return msg


def _make_bot(content: bytes = b"\xff\xd8\xff\xe0fake jpeg"):
    bot = AsyncMock()
    file_obj = MagicMock()
    file_obj.file_path = "photos/file.jpg"
    bot.get_file.return_value = file_obj
    bot.download_file.return_value = io.BytesIO(content)
    return bot


def _answers(msg) -> list[str]:
    return [c[0][0] for c in msg.answer.call_args_list]


@pytest.mark.parametrize(
    "text, expected",
    [("10/09/2025", date(2025, 9, 10)), ("2025-09-10", date(2025, 9, 10)), (" 01/12/2025 ", date(2025, 12, 1))],
)
def test_parse_date(text, expected):
    assert parse_date(text) == expected


def test_parse_date_invalid():
    with pytest.raises(ValueError):
        parse_date("31/02/2025")


async def test_commands_without_draft(store):
    msg = _make_message("/valor 10")
    await cmd_amount(msg)
    msg.answer.assert_called_once_with(NO_DRAFT_TEXT)


async def test_full_draft_flow(store):
    await cmd_new(_make_message("/nova"), store, None)

    await cmd_due_date(_make_message("/data 10/09/2025"))
    assert _drafts[1].draft.description == "Parcela Mensal 09/2025"

    await cmd_amount(_make_message("/valor 1.250,00"))
    await cmd_status(_make_message("/pago"))

    msg = _make_message("/salvar")
    await cmd_save(msg)

    expense = store.expenses[0]
    assert expense.description == "Parcela Mensal 09/2025"
    assert expense.amount == Decimal("1250.00")
    assert expense.status is PaymentStatus.PAID
    assert 1 not in _drafts
    assert "Salva" in _answers(msg)[0]


async def test_custom_description_survives_date_change(store):
    await cmd_new(_make_message("/nova"), store, None)
    await cmd_description(_make_message("/descricao Conta de luz"))
    await cmd_due_date(_make_message("/data 2025-11-05"))
    assert _drafts[1].draft.description == "Conta de luz"


async def test_invalid_date_reply(store):
    await cmd_new(_make_message("/nova"), store, None)
    msg = _make_message("/data ontem")
    await cmd_due_date(msg)
    assert "Data inválida" in _answers(msg)[0]


async def test_save_invalid_draft_reports_problems(store):
    await cmd_new(_make_message("/nova"), store, None)
    await cmd_amount(_make_message("/valor -5"))
    msg = _make_message("/salvar")

    await cmd_save(msg)

    assert "Não foi possível salvar" in _answers(msg)[0]
    assert 1 in _drafts
    assert len(store.expenses) == 2


async def test_cancel_discards_draft(store):
    await cmd_new(_make_message("/nova"), store, None)
    msg = _make_message("/cancelar")
    await cmd_cancel(msg)
    assert 1 not in _drafts
    assert len(store.expenses) == 2


async def test_photo_opens_draft_and_merges_analysis(store):
    analyzer = AsyncMock()
    analyzer.analyze.return_value = PartialDraft(
        amount=Decimal("99.9"), due_date=date(2025, 10, 5), description="Condomínio", status=PaymentStatus.PAID
    )
    msg = _make_message()
    photo = MagicMock()
    photo.file_id = "photo123"
    msg.photo = [photo]

    await handle_photo(msg, _make_bot(), store, analyzer)

    draft = _drafts[1].draft
    assert draft.description == "Condomínio"
    assert draft.receipt.media_type == "image/jpeg"
    answers = _answers(msg)
    assert answers[0].startswith("📎 Comprovante anexado")
    assert "Condomínio" in answers[-1]


async def test_document_analysis_failure_shows_notice(store):
    analyzer = AsyncMock()
    analyzer.analyze.side_effect = AnalysisError("down")
    await cmd_new(_make_message("/nova"), store, analyzer)
    msg = _make_message()
    doc = MagicMock()
    doc.file_id = "doc123"
    doc.file_name = "boleto.pdf"
    doc.mime_type = "application/pdf"
    msg.document = doc

    await handle_document(msg, _make_bot(b"%PDF-1.4"), store, analyzer)

    assert ANALYSIS_FAILED_MESSAGE in _answers(msg)
    assert _drafts[1].draft.receipt.media_type == "application/pdf"


async def test_document_unsupported_mime(store):
    msg = _make_message()
    doc = MagicMock()
    doc.mime_type = "text/plain"
    msg.document = doc
    bot = _make_bot()

    await handle_document(msg, bot, store, None)

    bot.get_file.assert_not_called()
    assert 1 not in _drafts


async def test_photo_without_user_is_ignored(store):
    msg = _make_message()
    msg.from_user = None
    await handle_photo(msg, _make_bot(), store, None)
    msg.answer.assert_not_called()
