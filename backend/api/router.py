"""
Master API router: aggregates all sub-routers.
"""
from fastapi import APIRouter

from api.payments import router as payments_router

api_router = APIRouter()

api_router.include_router(payments_router)
