"""
Telegram bot entry point (long polling).

Run from the ``backend`` directory with ``python bot.py``.
"""
import asyncio
import logging

from aiogram import Bot, Dispatcher

from config import settings
from db.base import Base, import_models
from db.session import engine
from handlers.router import register_handlers
from services.analyzer import AnthropicAnalyzer
from services.chat_gateway import TelegramFileFetcher, TelegramGateway
from services.payment_provider import YooKassaProvider
from services.payment_service import PaymentService
from services.quota_ledger import QuotaLedger
from utils.event_logger import configure_event_log
from workers.document_pipeline import DocumentPipeline

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_dispatcher(pipeline: DocumentPipeline, ledger: QuotaLedger, payments: PaymentService) -> Dispatcher:
    """Dispatcher with the services injected into every handler by parameter name."""
    dp = Dispatcher()
    dp["pipeline"] = pipeline
    dp["ledger"] = ledger
    dp["payments"] = payments
    register_handlers(dp)
    return dp


async def main() -> None:
    if not settings.TELEGRAM_BOT_TOKEN:
        raise SystemExit("TELEGRAM_BOT_TOKEN is not set")

    import_models()
    Base.metadata.create_all(bind=engine)
    configure_event_log()

    bot = Bot(token=settings.TELEGRAM_BOT_TOKEN)
    chat = TelegramGateway(bot)

    async def notify(user_id: str, message: str) -> None:
        await chat.send_message(int(user_id), message)

    ledger = QuotaLedger()
    pipeline = DocumentPipeline(chat, TelegramFileFetcher(bot), AnthropicAnalyzer(), ledger)
    payments = PaymentService(ledger, YooKassaProvider(), notifier=notify)
    dp = create_dispatcher(pipeline, ledger, payments)

    logger.info("Starting contract check bot...")
    try:
        await dp.start_polling(bot)
    finally:
        await bot.session.close()


if __name__ == "__main__":
    asyncio.run(main())
