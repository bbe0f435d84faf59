import asyncio
import logging
import shutil

from aiogram import Bot, Dispatcher
from aiogram.types import CallbackQuery, Message

from apto.config import settings
from apto.db.database import close_db, init_db
from apto.db.storage import ExpenseStorage, SQLiteBackend
from apto.errors import StorageWriteError
from apto.handlers import drafts, expenses
from apto.logging import setup_logging
from apto.services.expense_store import ExpenseStore
from apto.services.receipt_analyzer import ClaudeReceiptAnalyzer, ReceiptAnalyzer

setup_logging(level=logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)


def _event_chat_id(event) -> int | None:
    if isinstance(event, CallbackQuery):
        return event.message.chat.id if event.message else None
    return event.chat.id if getattr(event, "chat", None) else None


async def _reply(event, text: str) -> None:
    if isinstance(event, Message):
        await event.answer(text)
    elif isinstance(event, CallbackQuery):
        await event.answer(text, show_alert=True)


async def auth_middleware(handler, event, data: dict):
    chat_id = _event_chat_id(event)
    if settings.allowed_chat_ids and chat_id not in settings.allowed_chat_ids:
        logger.warning("Unauthorized access", extra={"chat_id": chat_id})
        return
    return await handler(event, data)


async def error_boundary_middleware(handler, event, data: dict):
    try:
        return await handler(event, data)
    except Exception as exc:
        chat_id = _event_chat_id(event)
        if isinstance(exc, StorageWriteError):
            logger.error("Storage write failed: %s", exc, extra={"chat_id": chat_id})
            msg = "Não foi possível salvar as alterações. Tente novamente."
        else:
            logger.error("Handler error", exc_info=True, extra={"chat_id": chat_id})
            msg = "Algo deu errado. Tente novamente."
        try:
            await _reply(event, msg)
        except Exception:
            logger.error("Failed to send error message", exc_info=True, extra={"chat_id": chat_id})


def build_analyzer() -> ReceiptAnalyzer | None:
    if settings.anthropic_api_key or shutil.which("claude"):
        return ClaudeReceiptAnalyzer()
    logger.warning("No Claude credentials or CLI found, receipt analysis disabled")
    return None


async def main():
    await init_db()

    store = ExpenseStore(ExpenseStorage(SQLiteBackend(), settings.storage_key))
    loaded = await store.load()
    logger.info("Loaded %d expenses", len(loaded))

    bot = Bot(token=settings.telegram_bot_token)
    dp = Dispatcher(store=store, analyzer=build_analyzer())

    dp.message.outer_middleware(error_boundary_middleware)
    dp.callback_query.outer_middleware(error_boundary_middleware)
    dp.message.middleware(auth_middleware)
    dp.callback_query.middleware(auth_middleware)

    dp.include_router(drafts.router)
    dp.include_router(expenses.router)

    logger.info("Starting apto bot")
    try:
        await dp.start_polling(bot)
    finally:
        logger.info("Shutting down gracefully...")
        await close_db()
        logger.info("Shutdown complete")


def run():
    asyncio.run(main())
