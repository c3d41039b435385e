"""
Pydantic schemas for payments: stored records, gateway objects and webhook payloads.
"""
from datetime import datetime
from typing import Dict, Optional
from pydantic import BaseModel, Field


class PaymentOut(BaseModel):
    payment_id: str
    user_id: str
    plan_id: str
    amount: int
    currency: str = "RUB"
    status: str
    paid: bool = False
    confirmation_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class Amount(BaseModel):
    value: str
    currency: str = "RUB"


class PaymentInfo(BaseModel):
    """Subset of the gateway payment object the bot relies on."""
    id: str
    status: str
    paid: bool = False
    amount: Optional[Amount] = None
    confirmation_url: Optional[str] = None
    metadata: Dict[str, str] = {}


class NotificationObject(BaseModel):
    id: str
    status: Optional[str] = None
    paid: Optional[bool] = None  # absent on some event payloads
    amount: Optional[Amount] = None
    metadata: Dict[str, str] = {}
    payment_id: Optional[str] = None  # present on refund objects


class PaymentNotification(BaseModel):
    type: str = "notification"
    event: str
    object: NotificationObject


class RefundRequest(BaseModel):
    payment_id: str = Field(..., alias="paymentId")
    amount: Optional[int] = None
    description: Optional[str] = None

    class Config:
        populate_by_name = True


class NotificationAck(BaseModel):
    success: bool = True
