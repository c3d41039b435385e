"""Telegram command handlers: /start, /help, /about, admin /stats and the text fallback."""
import logging

from aiogram import Dispatcher, F
from aiogram.enums import ParseMode
from aiogram.filters import Command, CommandStart
from aiogram.types import KeyboardButton, Message, ReplyKeyboardMarkup

from config import settings
from constants import MAX_FILE_SIZE_MB, PLANS
from services.quota_ledger import QuotaLedger
from utils.event_logger import log_event

logger = logging.getLogger(__name__)

MAIN_MENU = ReplyKeyboardMarkup(
    keyboard=[
        [KeyboardButton(text="📄 Проверить договор"), KeyboardButton(text="💼 Мой тариф")],
        [KeyboardButton(text="📋 Тарифы"), KeyboardButton(text="❓ Помощь")],
    ],
    resize_keyboard=True,
)

WELCOME = (
    "👋 *Здравствуйте!*\n\n"
    "Я помогу проверить договор: найду риски, ошибки и невыгодные условия для каждой из сторон.\n\n"
    "Просто отправьте файл договора (PDF, DOC, DOCX, RTF, HTML, TXT) или фото.\n"
    "На бесплатном тарифе доступно {free_limit} проверки."
)

HELP = (
    "❓ *Как пользоваться ботом*\n\n"
    "1. Отправьте файл договора или фото страницы.\n"
    "2. Дождитесь анализа (обычно до минуты).\n"
    "3. Выберите сторону договора, с позиции которой показать результат.\n\n"
    "*Подсказки:*\n"
    "• Подпись со словом «договор» заставит бота анализировать документ, даже если он не похож на договор.\n"
    "• Подпись «я заказчик» (или другая роль) сразу даст анализ для этой стороны.\n"
    f"• Максимальный размер файла: {MAX_FILE_SIZE_MB} МБ.\n\n"
    "*Команды:*\n"
    "/tariff - ваш тариф и остаток проверок\n"
    "/plans - доступные тарифы\n"
    "/about - о боте"
)

ABOUT = (
    "ℹ️ *О боте*\n\n"
    "Бот анализирует договоры с помощью модели искусственного интеллекта и подсказывает, "
    "на что обратить внимание перед подписанием. Результат не является юридической консультацией."
)


def is_admin(user_id) -> bool:
    return str(user_id) in settings.ADMIN_IDS


async def cmd_start(message: Message, ledger: QuotaLedger) -> None:
    user_id = str(message.from_user.id)
    ledger.get_plan(user_id)
    log_event(user_id, "start", username=message.from_user.username)
    await message.answer(
        WELCOME.format(free_limit=PLANS["FREE"].request_limit),
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=MAIN_MENU,
    )


async def cmd_help(message: Message) -> None:
    await message.answer(HELP, parse_mode=ParseMode.MARKDOWN)


async def cmd_about(message: Message) -> None:
    await message.answer(ABOUT, parse_mode=ParseMode.MARKDOWN)


async def cmd_check_contract(message: Message) -> None:
    await message.answer("📄 Отправьте файл договора или фото страницы, и я начну анализ.")


async def cmd_stats(message: Message, ledger: QuotaLedger) -> None:
    if not is_admin(message.from_user.id):
        await message.answer("❌ У вас нет прав для выполнения этой команды.")
        return
    try:
        stats = ledger.stats()
    except Exception as e:
        logger.error(f"Failed to build stats: {e}", exc_info=True)
        await message.answer("❌ Произошла ошибка при получении статистики пользователей.")
        return

    lines = [
        "📊 *Статистика*",
        "",
        f"Всего пользователей: {stats.total_users}",
        f"Активных (хотя бы одна проверка): {stats.active_users}",
        f"Всего проверок: {stats.total_requests}",
        "",
        "*По тарифам:*",
    ]
    lines += [f"• {PLANS[p].name if p in PLANS else p}: {n}" for p, n in stats.users_by_plan.items()]
    lines += [
        "",
        "*Подписки:*",
        f"• активные: {stats.subscriptions.get('active', 0)}",
        f"• ожидают оплаты: {stats.subscriptions.get('pending', 0)}",
        f"• неактивные: {stats.subscriptions.get('inactive', 0)}",
        "",
        f"Выручка по активным подпискам: {stats.revenue} ₽",
    ]
    await message.answer("\n".join(lines), parse_mode=ParseMode.MARKDOWN)


async def handle_text(message: Message) -> None:
    await message.answer("Отправьте, пожалуйста, файл договора или фото. Справка: /help")


def register_command_handlers(dp: Dispatcher) -> None:
    dp.message.register(cmd_start, CommandStart())
    dp.message.register(cmd_help, Command("help"))
    dp.message.register(cmd_about, Command("about"))
    dp.message.register(cmd_stats, Command("stats"))
    dp.message.register(cmd_help, F.text == "❓ Помощь")
    dp.message.register(cmd_check_contract, F.text == "📄 Проверить договор")


def register_fallback_handlers(dp: Dispatcher) -> None:
    """Registered last so commands and menu buttons take precedence."""
    dp.message.register(handle_text, F.text)
