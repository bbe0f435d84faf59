import logging

from aiogram import Router
from aiogram.filters import Command
from aiogram.types import BufferedInputFile, CallbackQuery, InlineKeyboardButton, InlineKeyboardMarkup, Message

from apto.currency import format_brl, format_date, status_label
from apto.db.models import Expense, PaymentStatus
from apto.services.expense_store import ExpenseStore
from apto.services.receipt_encoder import MEDIA_TYPE_TO_SUFFIX

logger = logging.getLogger(__name__)
router = Router()


def expense_text(expense: Expense) -> str:
    icon = "✅" if expense.status is PaymentStatus.PAID else "⏳"
    text = (
        f"{icon} {expense.description}\n"
        f"💰 {format_brl(expense.amount)}\n"
        f"📅 {format_date(expense.due_date)} · {status_label(expense.status)}"
    )
    if expense.receipt:
        text += "\n📎 Comprovante anexado"
    return text


def expense_keyboard(expense: Expense) -> InlineKeyboardMarkup:
    toggle_text = "Marcar pendente" if expense.status is PaymentStatus.PAID else "Marcar pago"
    buttons = [InlineKeyboardButton(text=toggle_text, callback_data=f"exp:toggle:{expense.id}")]
    if expense.receipt:
        buttons.append(InlineKeyboardButton(text="Comprovante", callback_data=f"exp:receipt:{expense.id}"))
    buttons.append(InlineKeyboardButton(text="Excluir", callback_data=f"exp:delete:{expense.id}"))
    return InlineKeyboardMarkup(inline_keyboard=[buttons])


def delete_confirmation_keyboard(expense_id: str) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [
                InlineKeyboardButton(text="Sim, excluir", callback_data=f"exp:confirm_delete:{expense_id}"),
                InlineKeyboardButton(text="Não", callback_data=f"exp:keep:{expense_id}"),
            ]
        ]
    )


def _callback_expense_id(callback: CallbackQuery) -> str:
    return callback.data.split(":", 2)[2]


@router.message(Command("start"))
async def cmd_start(message: Message):
    await message.answer(
        "Bem-vindo ao controle de parcelas do apartamento!\n\n"
        "  /parcelas — listar parcelas\n"
        "  /resumo — total pago e pendente\n"
        "  /nova — incluir parcela\n\n"
        "Envie a foto ou o PDF de um boleto ou comprovante e eu preencho os dados."
    )


@router.message(Command("parcelas"))
async def cmd_list(message: Message, store: ExpenseStore):
    expenses = store.expenses
    if not expenses:
        await message.answer("Nenhuma parcela registrada.\nUse /nova para começar.")
        return
    for expense in expenses:
        await message.answer(expense_text(expense), reply_markup=expense_keyboard(expense))


@router.message(Command("resumo"))
async def cmd_summary(message: Message, store: ExpenseStore):
    totals = store.totals()
    await message.answer(
        "📊 Visão geral\n"
        f"Total pago: {format_brl(totals.paid)}\n"
        f"Pendente: {format_brl(totals.pending)}"
    )


@router.callback_query(lambda c: c.data and c.data.startswith("exp:toggle:"))
async def on_toggle(callback: CallbackQuery, store: ExpenseStore):
    updated = await store.toggle_status(_callback_expense_id(callback))
    if updated is None:
        await callback.answer("Parcela não encontrada.")
        await callback.message.edit_reply_markup(reply_markup=None)
        return
    await callback.message.edit_text(expense_text(updated), reply_markup=expense_keyboard(updated))
    await callback.answer(status_label(updated.status))


@router.callback_query(lambda c: c.data and c.data.startswith("exp:receipt:"))
async def on_receipt(callback: CallbackQuery, store: ExpenseStore):
    expense = store.get(_callback_expense_id(callback))
    if expense is None or expense.receipt is None:
        await callback.answer("Comprovante não encontrado.")
        return
    suffix = MEDIA_TYPE_TO_SUFFIX.get(expense.receipt.media_type, ".bin")
    document = BufferedInputFile(expense.receipt.raw_bytes(), filename=f"comprovante{suffix}")
    await callback.message.answer_document(document, caption=expense.description)
    await callback.answer()


@router.callback_query(lambda c: c.data and c.data.startswith("exp:delete:"))
async def on_delete(callback: CallbackQuery, store: ExpenseStore):
    expense = store.get(_callback_expense_id(callback))
    if expense is None:
        await callback.answer("Parcela não encontrada.")
        await callback.message.edit_reply_markup(reply_markup=None)
        return
    await callback.message.edit_text(
        expense_text(expense) + "\n\nTem certeza que deseja excluir esta parcela?",
        reply_markup=delete_confirmation_keyboard(expense.id),
    )
    await callback.answer()


@router.callback_query(lambda c: c.data and c.data.startswith("exp:confirm_delete:"))
async def on_confirm_delete(callback: CallbackQuery, store: ExpenseStore):
    expense_id = _callback_expense_id(callback)
    if not await store.delete(expense_id):
        await callback.answer("Parcela não encontrada.")
        await callback.message.edit_reply_markup(reply_markup=None)
        return
    logger.info("Expense deleted from chat", extra={"chat_id": callback.message.chat.id, "expense_id": expense_id})
    await callback.message.edit_text("🗑 Parcela excluída.")
    await callback.answer("Excluída.")


@router.callback_query(lambda c: c.data and c.data.startswith("exp:keep:"))
async def on_keep(callback: CallbackQuery, store: ExpenseStore):
    expense = store.get(_callback_expense_id(callback))
    if expense is None:
        await callback.answer("Parcela não encontrada.")
        await callback.message.edit_reply_markup(reply_markup=None)
        return
    await callback.message.edit_text(expense_text(expense), reply_markup=expense_keyboard(expense))
    await callback.answer("Mantida.")
