"""Quota & subscription ledger backed by the SQL account store."""
import logging
from datetime import timedelta
from typing import Callable, Optional

from sqlalchemy import func

from constants import PLANS, FREE_PLAN_ID
from db.session import SessionLocal
from models.account import UserAccount, utcnow
from models.payment import PaymentRecord
from schemas.plan_schema import AdmissionDecision, LedgerStats, Plan, PlanInfo, SubscriptionOut
from schemas.payment_schema import PaymentOut

logger = logging.getLogger(__name__)


class UnknownPlan(ValueError):
    """Raised when a plan id is not in the plan catalogue."""
    pass


def get_plan_definition(plan_id: str) -> Plan:
    plan = PLANS.get((plan_id or "").upper())
    if plan is None:
        raise UnknownPlan(f"Unknown plan: {plan_id}")
    return plan


class QuotaLedger:
    """
    Tracks each user's plan, request counter and subscription window.

    Every method opens its own short-lived session; concurrent updates for
    the same user are last-write-wins.
    """

    def __init__(self, session_factory: Callable = SessionLocal, clock: Callable = utcnow):
        self._session_factory = session_factory
        self._clock = clock

    # ── internals ──

    def _get_or_create(self, db, user_id: str) -> UserAccount:
        account = db.get(UserAccount, str(user_id))
        if account is None:
            account = UserAccount(
                user_id=str(user_id),
                plan=FREE_PLAN_ID,
                requests_used=0,
                registration_date=self._clock(),
                subscription_active=False,
                payment_status="none",
            )
            db.add(account)
            db.commit()
            db.refresh(account)
            logger.info(f"Created account for user {user_id} on plan {FREE_PLAN_ID}")
        return account

    def _subscription_live(self, account: UserAccount) -> bool:
        if not account.subscription_active:
            return False
        return account.subscription_end is None or account.subscription_end > self._clock()

    def _plan_of(self, account: UserAccount) -> Plan:
        plan = PLANS.get(account.plan)
        if plan is None:
            logger.warning(f"User {account.user_id} has unknown plan '{account.plan}', treating as FREE")
            plan = PLANS[FREE_PLAN_ID]
        return plan

    def _to_info(self, account: UserAccount) -> PlanInfo:
        plan = self._plan_of(account)
        remaining = None if plan.is_unlimited else max(0, plan.request_limit - account.requests_used)
        return PlanInfo(
            user_id=account.user_id,
            plan=plan,
            requests_used=account.requests_used,
            requests_remaining=remaining,
            registration_date=account.registration_date,
            subscription=SubscriptionOut(
                active=self._subscription_live(account),
                plan_id=account.subscription_plan_id,
                start_date=account.subscription_start,
                end_date=account.subscription_end,
                payment_status=account.payment_status,
            ),
        )

    # ── plan / quota ──

    def get_plan(self, user_id: str) -> PlanInfo:
        """Return the user's plan, usage and subscription, creating the account lazily."""
        db = self._session_factory()
        try:
            return self._to_info(self._get_or_create(db, user_id))
        finally:
            db.close()

    def can_make_request(self, user_id: str) -> AdmissionDecision:
        """Admission check; an inactive paid subscription blocks regardless of usage."""
        info = self.get_plan(user_id)
        if info.plan.id != FREE_PLAN_ID and not info.subscription.active:
            return AdmissionDecision(allowed=False, reason="subscription_inactive",
                                     requests_remaining=info.requests_remaining)
        if info.requests_remaining is not None and info.requests_remaining <= 0:
            return AdmissionDecision(allowed=False, reason="limit_reached", requests_remaining=0)
        return AdmissionDecision(allowed=True, reason="ok", requests_remaining=info.requests_remaining)

    def register_usage(self, user_id: str) -> PlanInfo:
        """Count one analysed document against the user's quota."""
        db = self._session_factory()
        try:
            account = self._get_or_create(db, user_id)
            account.requests_used = (account.requests_used or 0) + 1
            db.commit()
            db.refresh(account)
            logger.info(f"User {user_id} used request #{account.requests_used} on plan {account.plan}")
            return self._to_info(account)
        finally:
            db.close()

    def change_plan(self, user_id: str, plan_id: str) -> PlanInfo:
        """
        Switch the user's plan.

        FREE clears the subscription window; a paid plan is recorded as
        pending until the payment is confirmed.  ``requests_used`` is kept.
        """
        plan = get_plan_definition(plan_id)
        db = self._session_factory()
        try:
            account = self._get_or_create(db, user_id)
            account.plan = plan.id
            if plan.id == FREE_PLAN_ID:
                account.subscription_active = False
                account.subscription_plan_id = None
                account.subscription_start = None
                account.subscription_end = None
                account.payment_status = "none"
            else:
                account.subscription_active = False
                account.subscription_plan_id = plan.id
                account.payment_status = "pending"
            db.commit()
            db.refresh(account)
            logger.info(f"User {user_id} switched to plan {plan.id}")
            return self._to_info(account)
        finally:
            db.close()

    def activate_after_payment(self, user_id: str, plan_id: str, payment_ref: Optional[str] = None) -> PlanInfo:
        """Open the subscription window after a confirmed payment."""
        plan = get_plan_definition(plan_id)
        db = self._session_factory()
        try:
            account = self._get_or_create(db, user_id)
            now = self._clock()
            account.plan = plan.id
            account.subscription_active = True
            account.subscription_plan_id = plan.id
            account.subscription_start = now
            account.subscription_end = now + timedelta(days=plan.duration_days) if plan.duration_days else None
            account.payment_status = "paid"
            if payment_ref:
                account.last_payment_id = payment_ref
            db.commit()
            db.refresh(account)
            logger.info(
                f"Activated plan {plan.id} for user {user_id} until {account.subscription_end} "
                f"(payment {payment_ref})"
            )
            return self._to_info(account)
        finally:
            db.close()

    # ── payment records ──

    def record_payment(self, payment_id: str, user_id: str, plan_id: str, amount: int,
                       currency: str = "RUB", status: str = "pending",
                       confirmation_url: Optional[str] = None) -> PaymentOut:
        db = self._session_factory()
        try:
            self._get_or_create(db, user_id)
            record = db.get(PaymentRecord, payment_id)
            if record is None:
                record = PaymentRecord(payment_id=payment_id, user_id=str(user_id))
                db.add(record)
            record.plan_id = plan_id
            record.amount = amount
            record.currency = currency
            record.status = status
            record.paid = status == "succeeded"
            record.confirmation_url = confirmation_url
            db.commit()
            db.refresh(record)
            return PaymentOut.model_validate(record)
        finally:
            db.close()

    def update_payment_status(self, payment_id: str, status: str, paid: Optional[bool] = None) -> Optional[PaymentOut]:
        db = self._session_factory()
        try:
            record = db.get(PaymentRecord, payment_id)
            if record is None:
                logger.warning(f"Status update for unknown payment {payment_id}")
                return None
            record.status = status
            if paid is not None:
                record.paid = paid
            db.commit()
            db.refresh(record)
            return PaymentOut.model_validate(record)
        finally:
            db.close()

    def get_payment(self, payment_id: str) -> Optional[PaymentOut]:
        db = self._session_factory()
        try:
            record = db.get(PaymentRecord, payment_id)
            return PaymentOut.model_validate(record) if record else None
        finally:
            db.close()

    def get_latest_payment(self, user_id: str) -> Optional[PaymentOut]:
        """Most recent payment of a user; the return URL does not carry the payment id."""
        db = self._session_factory()
        try:
            record = (
                db.query(PaymentRecord)
                .filter(PaymentRecord.user_id == str(user_id))
                .order_by(PaymentRecord.created_at.desc())
                .first()
            )
            return PaymentOut.model_validate(record) if record else None
        finally:
            db.close()

    # ── admin ──

    def stats(self) -> LedgerStats:
        """Aggregate counters for the admin /stats command."""
        db = self._session_factory()
        try:
            accounts = db.query(UserAccount).all()
            users_by_plan = {plan_id: 0 for plan_id in PLANS}
            subscriptions = {"active": 0, "pending": 0, "inactive": 0}
            revenue = 0
            for account in accounts:
                users_by_plan[account.plan] = users_by_plan.get(account.plan, 0) + 1
                if self._subscription_live(account):
                    subscriptions["active"] += 1
                    revenue += self._plan_of(account).price
                elif account.payment_status == "pending":
                    subscriptions["pending"] += 1
                else:
                    subscriptions["inactive"] += 1

            total_requests = db.query(func.coalesce(func.sum(UserAccount.requests_used), 0)).scalar() or 0
            active_users = db.query(func.count(UserAccount.user_id)).filter(
                UserAccount.requests_used > 0
            ).scalar() or 0

            return LedgerStats(
                total_users=len(accounts),
                active_users=active_users,
                total_requests=total_requests,
                users_by_plan=users_by_plan,
                subscriptions=subscriptions,
                revenue=revenue,
            )
        finally:
            db.close()
