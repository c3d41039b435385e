"""YooKassa REST client (API v3) over httpx."""
import logging
import uuid
from typing import Optional, Protocol

import httpx

from config import settings
from schemas.payment_schema import Amount, PaymentInfo

logger = logging.getLogger(__name__)


class PaymentFailure(Exception):
    """Raised when the payment gateway rejects a request or cannot be reached."""
    pass


class PaymentProvider(Protocol):
    async def create_payment(self, user_id: str, plan_id: str, amount: int, description: str) -> PaymentInfo: ...

    async def get_payment(self, payment_id: str) -> PaymentInfo: ...

    async def cancel_payment(self, payment_id: str) -> PaymentInfo: ...

    async def create_refund(self, payment_id: str, amount: int, description: Optional[str] = None) -> dict: ...


def _format_amount(amount: int) -> dict:
    return {"value": f"{amount:.2f}", "currency": "RUB"}


def _to_payment_info(data: dict) -> PaymentInfo:
    confirmation = data.get("confirmation") or {}
    amount = data.get("amount")
    return PaymentInfo(
        id=data["id"],
        status=data.get("status", "pending"),
        paid=bool(data.get("paid", False)),
        amount=Amount(**amount) if amount else None,
        confirmation_url=confirmation.get("confirmation_url"),
        metadata={k: str(v) for k, v in (data.get("metadata") or {}).items()},
    )


class YooKassaProvider:
    """Minimal YooKassa client: create / query / cancel payments and refunds."""

    def __init__(self, shop_id: Optional[str] = None, secret_key: Optional[str] = None,
                 api_url: Optional[str] = None, return_url: Optional[str] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.shop_id = shop_id or settings.YOOKASSA_SHOP_ID
        self.secret_key = secret_key or settings.YOOKASSA_SECRET_KEY
        self.api_url = (api_url or settings.YOOKASSA_API_URL).rstrip("/")
        self.return_url = return_url or settings.YOOKASSA_RETURN_URL
        self._transport = transport

    async def _request(self, method: str, path: str, json: Optional[dict] = None, idempotent: bool = False) -> dict:
        if not self.shop_id or not self.secret_key:
            raise PaymentFailure("YooKassa credentials are not configured")

        headers = {"Content-Type": "application/json"}
        if idempotent:
            headers["Idempotence-Key"] = str(uuid.uuid4())

        async with httpx.AsyncClient(
            base_url=self.api_url,
            auth=(self.shop_id, self.secret_key),
            timeout=30.0,
            transport=self._transport,
        ) as client:
            try:
                resp = await client.request(method, path, json=json, headers=headers)
                resp.raise_for_status()
                return resp.json()
            except httpx.HTTPStatusError as e:
                logger.error(f"YooKassa {method} {path} failed: {e.response.status_code} {e.response.text}")
                raise PaymentFailure(f"YooKassa returned {e.response.status_code}") from e
            except httpx.HTTPError as e:
                logger.error(f"YooKassa {method} {path} unreachable: {e}")
                raise PaymentFailure(f"YooKassa is unreachable: {e}") from e

    async def create_payment(self, user_id: str, plan_id: str, amount: int, description: str) -> PaymentInfo:
        body = {
            "amount": _format_amount(amount),
            "confirmation": {
                "type": "redirect",
                "return_url": f"{self.return_url}?userId={user_id}",
            },
            "capture": True,
            "description": description,
            "metadata": {"userId": str(user_id), "planId": plan_id},
        }
        data = await self._request("POST", "/payments", json=body, idempotent=True)
        info = _to_payment_info(data)
        logger.info(f"Created YooKassa payment {info.id} for user {user_id}, plan {plan_id}")
        return info

    async def get_payment(self, payment_id: str) -> PaymentInfo:
        return _to_payment_info(await self._request("GET", f"/payments/{payment_id}"))

    async def cancel_payment(self, payment_id: str) -> PaymentInfo:
        data = await self._request("POST", f"/payments/{payment_id}/cancel", json={}, idempotent=True)
        return _to_payment_info(data)

    async def create_refund(self, payment_id: str, amount: int, description: Optional[str] = None) -> dict:
        body = {"payment_id": payment_id, "amount": _format_amount(amount)}
        if description:
            body["description"] = description
        data = await self._request("POST", "/refunds", json=body, idempotent=True)
        logger.info(f"Refund {data.get('id')} created for payment {payment_id}: {data.get('status')}")
        return data
