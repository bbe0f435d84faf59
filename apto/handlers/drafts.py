import logging
from datetime import date, datetime

from aiogram import Bot, F, Router
from aiogram.filters import Command
from aiogram.types import Message

from apto.currency import format_brl, format_date, status_label
from apto.db.models import Attachment, ExpenseDraft, PaymentStatus
from apto.errors import DraftValidationError
from apto.handlers.expenses import expense_keyboard, expense_text
from apto.services.draft_service import AttachOutcome, DraftReconciler
from apto.services.expense_store import ExpenseStore
from apto.services.receipt_analyzer import ReceiptAnalyzer
from apto.services.receipt_encoder import SUPPORTED_MEDIA_TYPES

logger = logging.getLogger(__name__)
router = Router()

_drafts: dict[int, DraftReconciler] = {}

NO_DRAFT_TEXT = "Nenhuma parcela em edição. Use /nova para começar."


def draft_text(draft: ExpenseDraft) -> str:
    return (
        "📝 Nova parcela\n"
        f"Descrição: {draft.description or '—'}\n"
        f"Valor: {format_brl(draft.amount)}\n"
        f"Vencimento: {format_date(draft.due_date)}\n"
        f"Status: {status_label(draft.status)}\n"
        f"Comprovante: {'anexado' if draft.receipt else 'nenhum'}\n\n"
        "/data DD/MM/AAAA · /valor 0,00 · /descricao texto\n"
        "/pago · /pendente · /remover_anexo\n"
        "/salvar · /cancelar"
    )


def parse_date(text: str) -> date:
    text = text.strip()
    for fmt in ("%d/%m/%Y", "%Y-%m-%d"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Not a date: {text!r}")


def _command_arg(message: Message) -> str:
    parts = message.text.split(maxsplit=1) if message.text else []
    return parts[1].strip() if len(parts) > 1 else ""


def _open_draft(chat_id: int, store: ExpenseStore, analyzer: ReceiptAnalyzer | None) -> DraftReconciler:
    reconciler = DraftReconciler(store, analyzer)
    _drafts[chat_id] = reconciler
    return reconciler


@router.message(Command("nova"))
async def cmd_new(message: Message, store: ExpenseStore, analyzer: ReceiptAnalyzer | None = None):
    reconciler = _open_draft(message.chat.id, store, analyzer)
    await message.answer(draft_text(reconciler.draft))


@router.message(Command("data"))
async def cmd_due_date(message: Message):
    reconciler = _drafts.get(message.chat.id)
    if reconciler is None:
        await message.answer(NO_DRAFT_TEXT)
        return
    try:
        reconciler.set_due_date(parse_date(_command_arg(message)))
    except ValueError:
        await message.answer("Data inválida. Use DD/MM/AAAA, por exemplo /data 10/09/2025.")
        return
    await message.answer(draft_text(reconciler.draft))


@router.message(Command("valor"))
async def cmd_amount(message: Message):
    reconciler = _drafts.get(message.chat.id)
    if reconciler is None:
        await message.answer(NO_DRAFT_TEXT)
        return
    try:
        reconciler.set_amount(_command_arg(message))
    except ValueError:
        await message.answer("Valor inválido. Exemplo: /valor 1.250,00")
        return
    await message.answer(draft_text(reconciler.draft))


@router.message(Command("descricao"))
async def cmd_description(message: Message):
    reconciler = _drafts.get(message.chat.id)
    if reconciler is None:
        await message.answer(NO_DRAFT_TEXT)
        return
    reconciler.set_description(_command_arg(message))
    await message.answer(draft_text(reconciler.draft))


@router.message(Command("pago", "pendente"))
async def cmd_status(message: Message):
    reconciler = _drafts.get(message.chat.id)
    if reconciler is None:
        await message.answer(NO_DRAFT_TEXT)
        return
    paid = message.text.lstrip("/").startswith("pago")
    reconciler.set_status(PaymentStatus.PAID if paid else PaymentStatus.PENDING)
    await message.answer(draft_text(reconciler.draft))


@router.message(Command("remover_anexo"))
async def cmd_remove_attachment(message: Message):
    reconciler = _drafts.get(message.chat.id)
    if reconciler is None:
        await message.answer(NO_DRAFT_TEXT)
        return
    reconciler.remove_attachment()
    await message.answer(draft_text(reconciler.draft))


@router.message(Command("salvar"))
async def cmd_save(message: Message):
    reconciler = _drafts.get(message.chat.id)
    if reconciler is None:
        await message.answer(NO_DRAFT_TEXT)
        return
    try:
        expense = await reconciler.submit()
    except DraftValidationError as exc:
        await message.answer("Não foi possível salvar:\n" + "\n".join(f"  • {p}" for p in exc.problems))
        return
    _drafts.pop(message.chat.id, None)
    logger.info("Expense saved from chat", extra={"chat_id": message.chat.id, "expense_id": expense.id})
    await message.answer(expense_text(expense) + "\n\nSalva ✓", reply_markup=expense_keyboard(expense))


@router.message(Command("cancelar"))
async def cmd_cancel(message: Message):
    reconciler = _drafts.pop(message.chat.id, None)
    if reconciler is None:
        await message.answer(NO_DRAFT_TEXT)
        return
    reconciler.cancel()
    await message.answer("Inclusão cancelada.")


async def _attach(
    message: Message,
    bot: Bot,
    store: ExpenseStore,
    analyzer: ReceiptAnalyzer | None,
    file_id: str,
    filename: str | None,
    media_type: str | None,
):
    reconciler = _drafts.get(message.chat.id) or _open_draft(message.chat.id, store, analyzer)

    file = await bot.get_file(file_id)
    buffer = await bot.download_file(file.file_path)

    async def preview(attachment: Attachment):
        await message.answer("📎 Comprovante anexado. Analisando...")

    outcome = await reconciler.attach(
        buffer.getvalue(), filename=filename, media_type=media_type, on_preview=preview
    )
    logger.info("Attachment processed: %s", outcome, extra={"chat_id": message.chat.id, "handler": "attach"})

    for notice in reconciler.pop_notices():
        await message.answer(("⚠️ " if notice.blocking else "") + notice.message)
    if outcome is not AttachOutcome.SUPERSEDED:
        await message.answer(draft_text(reconciler.draft))


@router.message(F.photo)
async def handle_photo(message: Message, bot: Bot, store: ExpenseStore, analyzer: ReceiptAnalyzer | None = None):
    if not message.from_user:
        return
    photo = message.photo[-1]
    await _attach(message, bot, store, analyzer, photo.file_id, "comprovante.jpg", "image/jpeg")


@router.message(F.document)
async def handle_document(message: Message, bot: Bot, store: ExpenseStore, analyzer: ReceiptAnalyzer | None = None):
    if not message.from_user:
        return
    doc = message.document
    mime = doc.mime_type or ""
    if mime not in SUPPORTED_MEDIA_TYPES:
        await message.answer("Envie uma imagem ou PDF do boleto ou comprovante.")
        return
    await _attach(message, bot, store, analyzer, doc.file_id, doc.file_name, mime)
