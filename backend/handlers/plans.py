"""Telegram handlers for tariff display, plan selection and checkout."""
import logging
from typing import Optional

from aiogram import Dispatcher, F
from aiogram.enums import ParseMode
from aiogram.filters import Command
from aiogram.types import CallbackQuery, InlineKeyboardButton, InlineKeyboardMarkup, Message

from constants import FREE_PLAN_ID, PLANS
from schemas.plan_schema import PlanInfo
from services.payment_provider import PaymentFailure
from services.payment_service import PaymentService
from services.quota_ledger import QuotaLedger, UnknownPlan
from utils.event_logger import log_event

logger = logging.getLogger(__name__)


def format_tariff(info: PlanInfo) -> str:
    """The user's current plan, usage and subscription state."""
    plan = info.plan
    limit = "без ограничений" if plan.is_unlimited else str(plan.request_limit)
    remaining = "без ограничений" if info.requests_remaining is None else str(info.requests_remaining)
    lines = [
        "💼 *Ваш тариф*",
        "",
        f"*Тариф:* {plan.name}",
        f"*Лимит проверок:* {limit}",
        f"*Использовано:* {info.requests_used}",
        f"*Осталось:* {remaining}",
    ]
    sub = info.subscription
    if plan.id != FREE_PLAN_ID:
        if sub.active:
            end = sub.end_date.strftime("%d.%m.%Y") if sub.end_date else "бессрочно"
            lines.append(f"\n✅ *Подписка активна* до {end}")
        else:
            lines.append("\n⚠️ *Статус подписки:* Не активирована")
    return "\n".join(lines)


def format_plans() -> str:
    lines = ["📋 *Доступные тарифы*", ""]
    for plan in PLANS.values():
        price = "бесплатно" if plan.price == 0 else f"{plan.price} ₽ / {plan.duration_days} дней"
        lines.append(f"*{plan.name}* ({price})\n{plan.description}\n")
    lines.append("Выберите тариф:")
    return "\n".join(lines)


def plans_keyboard(current_plan: Optional[str] = None) -> InlineKeyboardMarkup:
    rows = []
    for plan in PLANS.values():
        mark = "✅ " if plan.id == current_plan else ""
        price = "0 ₽" if plan.price == 0 else f"{plan.price} ₽"
        rows.append([InlineKeyboardButton(text=f"{mark}{plan.name} ({price})", callback_data=f"select_plan_{plan.id}")])
    return InlineKeyboardMarkup(inline_keyboard=rows)


def tariff_keyboard(info: PlanInfo) -> InlineKeyboardMarkup:
    rows = [[InlineKeyboardButton(text="📋 Сменить тариф", callback_data="show_plans")]]
    if info.plan.id != FREE_PLAN_ID and not info.subscription.active:
        rows.insert(0, [InlineKeyboardButton(text="💳 Оплатить подписку", callback_data=f"pay_{info.plan.id}")])
    return InlineKeyboardMarkup(inline_keyboard=rows)


async def cmd_tariff(message: Message, ledger: QuotaLedger) -> None:
    info = ledger.get_plan(str(message.from_user.id))
    await message.answer(format_tariff(info), parse_mode=ParseMode.MARKDOWN, reply_markup=tariff_keyboard(info))


async def cmd_plans(message: Message, ledger: QuotaLedger) -> None:
    info = ledger.get_plan(str(message.from_user.id))
    await message.answer(format_plans(), parse_mode=ParseMode.MARKDOWN, reply_markup=plans_keyboard(info.plan.id))


async def handle_show_plans(callback: CallbackQuery, ledger: QuotaLedger) -> None:
    info = ledger.get_plan(str(callback.from_user.id))
    await callback.message.answer(format_plans(), parse_mode=ParseMode.MARKDOWN,
                                  reply_markup=plans_keyboard(info.plan.id))
    await callback.answer()


async def handle_show_tariff(callback: CallbackQuery, ledger: QuotaLedger) -> None:
    info = ledger.get_plan(str(callback.from_user.id))
    await callback.message.answer(format_tariff(info), parse_mode=ParseMode.MARKDOWN,
                                  reply_markup=tariff_keyboard(info))
    await callback.answer()


async def _checkout(callback: CallbackQuery, payments: PaymentService, plan_id: str) -> None:
    user_id = str(callback.from_user.id)
    try:
        result = await payments.start_checkout(user_id, plan_id)
    except UnknownPlan:
        await callback.answer("❌ Тариф не найден", show_alert=True)
        return
    except PaymentFailure as e:
        logger.error(f"Checkout for user {user_id}, plan {plan_id} failed: {e}")
        await callback.answer()
        await callback.message.answer("❌ Не удалось создать платеж. Пожалуйста, попробуйте позже.")
        return

    await callback.answer()
    plan = PLANS[result.plan_id]
    log_event(user_id, "plan_selected", plan_id=plan.id, payment_id=result.payment_id)
    if result.confirmation_url is None:
        await callback.message.answer(
            f"✅ Вы перешли на тариф *{plan.name}*.\n\n{plan.description}.",
            parse_mode=ParseMode.MARKDOWN,
        )
        return

    keyboard = InlineKeyboardMarkup(inline_keyboard=[
        [InlineKeyboardButton(text=f"💳 Оплатить {plan.price} ₽", url=result.confirmation_url)],
        [InlineKeyboardButton(text="💼 Мой тариф", callback_data="show_tariff")],
    ])
    await callback.message.answer(
        f"💳 *Оплата тарифа «{plan.name}»*\n\n"
        f"Стоимость: {plan.price} ₽ за {plan.duration_days} дней.\n"
        f"Подписка активируется автоматически после оплаты.",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=keyboard,
    )


async def handle_select_plan(callback: CallbackQuery, payments: PaymentService) -> None:
    await _checkout(callback, payments, callback.data.removeprefix("select_plan_"))


async def handle_pay(callback: CallbackQuery, payments: PaymentService) -> None:
    await _checkout(callback, payments, callback.data.removeprefix("pay_"))


def register_plan_handlers(dp: Dispatcher) -> None:
    dp.message.register(cmd_tariff, Command("tariff"))
    dp.message.register(cmd_plans, Command("plans"))
    dp.message.register(cmd_tariff, F.text == "💼 Мой тариф")
    dp.message.register(cmd_plans, F.text == "📋 Тарифы")
    dp.callback_query.register(handle_show_plans, F.data == "show_plans")
    dp.callback_query.register(handle_show_tariff, F.data == "show_tariff")
    dp.callback_query.register(handle_select_plan, F.data.startswith("select_plan_"))
    dp.callback_query.register(handle_pay, F.data.startswith("pay_"))
