"""
API router aggregator.
Includes all route modules.
"""
from fastapi import APIRouter
from tenantpay.api import health, payments, webhooks

api_router = APIRouter()

# Include route modules
api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
api_router.include_router(payments.router, prefix="/payments", tags=["payments"])
