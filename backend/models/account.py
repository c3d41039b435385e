"""
User account SQLAlchemy ORM model: tariff plan, request counter, subscription window.
"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime
from datetime import datetime, timezone

from db.base import Base


def utcnow() -> datetime:
    """Naive UTC timestamp; SQLite drops tzinfo on round-trip."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class UserAccount(Base):
    __tablename__ = "user_accounts"

    user_id = Column(String, primary_key=True, index=True)  # Telegram user id
    plan = Column(String, nullable=False, default="FREE")
    requests_used = Column(Integer, nullable=False, default=0)
    registration_date = Column(DateTime, default=utcnow)

    # Subscription window
    subscription_active = Column(Boolean, nullable=False, default=False)
    subscription_plan_id = Column(String, nullable=True)
    subscription_start = Column(DateTime, nullable=True)
    subscription_end = Column(DateTime, nullable=True)
    payment_status = Column(String, nullable=False, default="none")  # none | pending | paid
    last_payment_id = Column(String, nullable=True)

    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
