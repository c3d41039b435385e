"""
Payment SQLAlchemy ORM model: one row per gateway transaction.
"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey

from db.base import Base
from models.account import utcnow


class PaymentRecord(Base):
    __tablename__ = "payments"

    payment_id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("user_accounts.user_id"), index=True, nullable=False)
    plan_id = Column(String, nullable=False)
    amount = Column(Integer, nullable=False)          # whole roubles
    currency = Column(String, nullable=False, default="RUB")
    status = Column(String, nullable=False, default="pending")  # pending | waiting_for_capture | succeeded | canceled | refunded
    paid = Column(Boolean, nullable=False, default=False)
    confirmation_url = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
