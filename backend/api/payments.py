"""
Payment API routes: gateway webhook, return URL and admin operations.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import HTMLResponse
from slowapi import Limiter
from slowapi.util import get_remote_address

from config import settings
from dependencies import get_optional_payment_service, get_payment_service, require_admin
from schemas.payment_schema import NotificationAck, PaymentNotification, PaymentOut, RefundRequest
from services.payment_provider import PaymentFailure
from services.payment_service import PaymentService

logger = logging.getLogger(__name__)
limiter = Limiter(key_func=get_remote_address)

router = APIRouter(prefix="/payment", tags=["Payments"])

_PAGE = """<!DOCTYPE html>
<html lang="ru"><head><meta charset="utf-8"><title>{title}</title></head>
<body style="font-family: sans-serif; text-align: center; padding-top: 4em;">
<h1>{title}</h1><p>{body}</p><p>Вернитесь в Telegram, чтобы продолжить работу с ботом.</p>
</body></html>"""


@router.post("/notifications", response_model=NotificationAck)
async def payment_notification(
    request: Request,
    service: Optional[PaymentService] = Depends(get_optional_payment_service),
):
    """Gateway webhook.  Always acknowledged so the gateway does not retry."""
    if service is None:
        logger.error("Payment notification received before the payment service was initialised")
        return NotificationAck(success=True)
    try:
        payload = await request.json()
        notification = PaymentNotification.model_validate(payload)
        logger.info(f"Payment notification {notification.event} for {notification.object.id}")
        await service.handle_notification(notification)
    except Exception as e:
        logger.error(f"Payment notification processing failed: {e}", exc_info=True)
    return NotificationAck(success=True)


@router.get("/success", response_class=HTMLResponse)
@limiter.limit(settings.RATE_LIMIT_DEFAULT)
async def payment_success(
    request: Request,
    user_id: str = Query(..., alias="userId"),
    payment_id: Optional[str] = Query(None, alias="paymentId"),
    service: PaymentService = Depends(get_payment_service),
):
    """Return URL after checkout: confirm the payment with the gateway."""
    if not payment_id:
        latest = service.ledger.get_latest_payment(user_id)
        payment_id = latest.payment_id if latest else None
    if not payment_id:
        return HTMLResponse(_PAGE.format(title="Платеж не найден", body="Мы не нашли ваш платеж."), status_code=404)

    try:
        record = await service.confirm_return(user_id, payment_id)
    except PaymentFailure as e:
        logger.error(f"Return-URL confirmation of {payment_id} failed: {e}")
        return HTMLResponse(
            _PAGE.format(title="Не удалось проверить платеж", body="Попробуйте обновить страницу позже."),
            status_code=502,
        )

    if record is not None and record.status == "succeeded":
        return HTMLResponse(_PAGE.format(title="Оплата прошла успешно", body="Подписка активирована."))
    return HTMLResponse(_PAGE.format(
        title="Платеж обрабатывается",
        body="Подписка будет активирована автоматически после подтверждения оплаты.",
    ))


@router.get("/status/{payment_id}", response_model=PaymentOut)
@limiter.limit(settings.RATE_LIMIT_DEFAULT)
async def payment_status(
    request: Request,
    payment_id: str,
    service: PaymentService = Depends(get_payment_service),
):
    record = service.ledger.get_payment(payment_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Payment not found")
    return record


@router.post("/cancel/{payment_id}", response_model=PaymentOut, dependencies=[Depends(require_admin)])
@limiter.limit(settings.RATE_LIMIT_ADMIN)
async def cancel_payment(
    request: Request,
    payment_id: str,
    service: PaymentService = Depends(get_payment_service),
):
    try:
        record = await service.cancel(payment_id)
    except PaymentFailure as e:
        raise HTTPException(status_code=502, detail=str(e))
    if record is None:
        raise HTTPException(status_code=404, detail="Payment not found")
    return record


@router.post("/refund", dependencies=[Depends(require_admin)])
@limiter.limit(settings.RATE_LIMIT_ADMIN)
async def refund_payment(
    request: Request,
    body: RefundRequest,
    service: PaymentService = Depends(get_payment_service),
):
    try:
        refund = await service.refund(body.payment_id, body.amount, body.description)
    except PaymentFailure as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"success": True, "refund": refund}
