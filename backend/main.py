"""
FastAPI application: payment webhook / return routes and health check.

Run with ``uvicorn main:app`` from the ``backend`` directory; the Telegram
bot itself runs from ``bot.py``.
"""
import logging
from contextlib import asynccontextmanager

from aiogram import Bot
from fastapi import Depends, FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.orm import Session

from api.payments import limiter
from api.router import api_router
from config import settings
from db.base import Base, import_models
from db.session import engine
from dependencies import get_db
from services.chat_gateway import TelegramGateway
from services.payment_provider import YooKassaProvider
from services.payment_service import PaymentService
from services.quota_ledger import QuotaLedger

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    import_models()
    Base.metadata.create_all(bind=engine)

    bot = Bot(token=settings.TELEGRAM_BOT_TOKEN) if settings.TELEGRAM_BOT_TOKEN else None
    notifier = None
    if bot is not None:
        gateway = TelegramGateway(bot)

        async def notifier(user_id: str, message: str) -> None:
            await gateway.send_message(int(user_id), message)
    else:
        logger.warning("TELEGRAM_BOT_TOKEN is not set; payment activations will not be announced")

    app.state.payment_service = PaymentService(QuotaLedger(), YooKassaProvider(), notifier)
    logger.info(f"{settings.APP_NAME} {settings.APP_VERSION} started")
    yield
    if bot is not None:
        await bot.session.close()


app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION, lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.include_router(api_router)


@app.get("/health")
async def health(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"status": "ok", "app": settings.APP_NAME, "version": settings.APP_VERSION}
