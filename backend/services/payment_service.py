"""Payment flow glue between the gateway, the ledger and the user notification."""
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from constants import FREE_PLAN_ID
from schemas.payment_schema import PaymentNotification, PaymentOut
from services.payment_provider import PaymentFailure, PaymentProvider
from services.quota_ledger import QuotaLedger, get_plan_definition

logger = logging.getLogger(__name__)

Notifier = Callable[[str, str], Awaitable[None]]

HANDLED_EVENTS = ("payment.succeeded", "payment.waiting_for_capture", "payment.canceled", "refund.succeeded")


@dataclass
class CheckoutResult:
    plan_id: str
    payment_id: Optional[str] = None
    confirmation_url: Optional[str] = None


class PaymentService:
    def __init__(self, ledger: QuotaLedger, provider: PaymentProvider, notifier: Optional[Notifier] = None):
        self.ledger = ledger
        self.provider = provider
        self.notifier = notifier

    async def start_checkout(self, user_id: str, plan_id: str) -> CheckoutResult:
        """Switch to the chosen plan and open a gateway payment for paid plans."""
        plan = get_plan_definition(plan_id)
        self.ledger.change_plan(user_id, plan.id)
        if plan.id == FREE_PLAN_ID or plan.price == 0:
            return CheckoutResult(plan_id=plan.id)

        info = await self.provider.create_payment(
            user_id=str(user_id),
            plan_id=plan.id,
            amount=plan.price,
            description=f"Подписка на тариф «{plan.name}» для пользователя {user_id}",
        )
        self.ledger.record_payment(
            payment_id=info.id,
            user_id=str(user_id),
            plan_id=plan.id,
            amount=plan.price,
            status=info.status,
            confirmation_url=info.confirmation_url,
        )
        return CheckoutResult(plan_id=plan.id, payment_id=info.id, confirmation_url=info.confirmation_url)

    async def _activate(self, user_id: str, plan_id: str, payment_id: str):
        info = self.ledger.activate_after_payment(user_id, plan_id, payment_ref=payment_id)
        if self.notifier is None:
            return
        end = info.subscription.end_date.strftime("%d.%m.%Y") if info.subscription.end_date else "бессрочно"
        try:
            await self.notifier(
                user_id,
                f"✅ *Оплата получена!*\n\nТариф «{info.plan.name}» активирован до {end}.\n"
                f"Отправьте договор, чтобы начать проверку.",
            )
        except Exception as e:
            logger.warning(f"Could not notify user {user_id} about activation: {e}")

    async def handle_notification(self, notification: PaymentNotification) -> Optional[PaymentOut]:
        """
        Apply a gateway webhook to the ledger.

        Raises:
            PaymentFailure: If the event lacks the user / plan metadata
        """
        event = notification.event
        obj = notification.object
        if event not in HANDLED_EVENTS:
            logger.info(f"Ignoring payment event {event}")
            return None

        if event == "refund.succeeded":
            payment_id = obj.payment_id or obj.id
            logger.info(f"Refund {obj.id} succeeded for payment {payment_id}")
            return self.ledger.update_payment_status(payment_id, "refunded", paid=False)

        user_id = obj.metadata.get("userId")
        plan_id = obj.metadata.get("planId")
        if not user_id or not plan_id:
            raise PaymentFailure(f"Payment {obj.id} has no userId/planId metadata")

        record = self.ledger.get_payment(obj.id)
        if record is None:
            amount = int(float(obj.amount.value)) if obj.amount else get_plan_definition(plan_id).price
            record = self.ledger.record_payment(obj.id, user_id, plan_id, amount, status="pending")

        if event == "payment.succeeded" and obj.paid is not False and obj.status in (None, "succeeded"):
            if record.status == "succeeded":
                logger.info(f"Payment {obj.id} already processed")
                return record
            await self._activate(user_id, plan_id, obj.id)
            return self.ledger.update_payment_status(obj.id, "succeeded", paid=True)
        if event == "payment.canceled":
            return self.ledger.update_payment_status(obj.id, "canceled", paid=False)
        return self.ledger.update_payment_status(obj.id, obj.status or "waiting_for_capture", paid=obj.paid)

    async def confirm_return(self, user_id: str, payment_id: str) -> Optional[PaymentOut]:
        """Return-URL check: ask the gateway and activate a paid subscription."""
        info = await self.provider.get_payment(payment_id)
        owner = info.metadata.get("userId")
        if owner and str(owner) != str(user_id):
            raise PaymentFailure(f"Payment {payment_id} does not belong to user {user_id}")

        record = self.ledger.get_payment(payment_id)
        if info.status == "succeeded" and info.paid:
            if record is None or record.status != "succeeded":
                plan_id = info.metadata.get("planId") or (record.plan_id if record else None)
                if not plan_id:
                    raise PaymentFailure(f"Payment {payment_id} has no plan metadata")
                if record is None:
                    self.ledger.record_payment(payment_id, user_id, plan_id, get_plan_definition(plan_id).price)
                await self._activate(user_id, plan_id, payment_id)
            return self.ledger.update_payment_status(payment_id, "succeeded", paid=True)
        if record is not None:
            return self.ledger.update_payment_status(payment_id, info.status, paid=info.paid)
        return None

    async def cancel(self, payment_id: str) -> Optional[PaymentOut]:
        info = await self.provider.cancel_payment(payment_id)
        return self.ledger.update_payment_status(payment_id, info.status, paid=info.paid)

    async def refund(self, payment_id: str, amount: Optional[int] = None,
                     description: Optional[str] = None) -> dict:
        record = self.ledger.get_payment(payment_id)
        if amount is None:
            if record is None:
                raise PaymentFailure(f"Unknown payment {payment_id}; refund amount is required")
            amount = record.amount
        refund = await self.provider.create_refund(payment_id, amount, description)
        if refund.get("status") == "succeeded":
            self.ledger.update_payment_status(payment_id, "refunded", paid=False)
        return refund
