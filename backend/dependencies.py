"""
Shared FastAPI dependencies.
"""
import secrets

from fastapi import Depends, Header, HTTPException, Request

from config import settings
from db.session import SessionLocal


def get_db():
    """Yield a SQLAlchemy session, closing it after the request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_optional_payment_service(request: Request):
    """PaymentService built during application startup, or None before it exists."""
    return getattr(request.app.state, "payment_service", None)


def get_payment_service(service=Depends(get_optional_payment_service)):
    if service is None:
        raise HTTPException(status_code=503, detail="Payment service is not initialised")
    return service


def require_admin(x_admin_token: str = Header(None)) -> None:
    """Guard for admin-only routes.  Used as a dependency."""
    if not settings.ADMIN_API_TOKEN:
        raise HTTPException(status_code=403, detail="Admin API is disabled")
    if not x_admin_token or not secrets.compare_digest(x_admin_token, settings.ADMIN_API_TOKEN):
        raise HTTPException(status_code=403, detail="Invalid admin token")
