"""
Pydantic schemas for tariff plans, quota state and admin statistics.
"""
from datetime import datetime
from typing import Dict, Optional
from pydantic import BaseModel


class Plan(BaseModel):
    id: str
    name: str
    price: int
    request_limit: Optional[int] = None  # None means unlimited
    duration_days: int = 0
    description: str = ""

    class Config:
        frozen = True

    @property
    def is_unlimited(self) -> bool:
        return self.request_limit is None


class SubscriptionOut(BaseModel):
    active: bool = False
    plan_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    payment_status: str = "none"

    class Config:
        from_attributes = True


class PlanInfo(BaseModel):
    user_id: str
    plan: Plan
    requests_used: int
    requests_remaining: Optional[int] = None  # None for unlimited plans
    registration_date: Optional[datetime] = None
    subscription: SubscriptionOut


class AdmissionDecision(BaseModel):
    allowed: bool
    reason: str  # ok | subscription_inactive | limit_reached
    requests_remaining: Optional[int] = None


class LedgerStats(BaseModel):
    total_users: int = 0
    active_users: int = 0
    total_requests: int = 0
    users_by_plan: Dict[str, int] = {}
    subscriptions: Dict[str, int] = {}
    revenue: int = 0
