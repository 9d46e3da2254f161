"""
Webhook endpoints for payment providers.
Authentication is by shared secret (Vipps) or signature (Stripe), not by user token.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from tenantpay.database import get_db
from tenantpay.services.webhook_service import (
    WebhookOutcome,
    handle_stripe_event,
    handle_vipps_callback,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def _respond(outcome: WebhookOutcome) -> JSONResponse:
    return JSONResponse(status_code=outcome.status_code, content=outcome.body)


async def _json_body(request: Request) -> Optional[Dict[str, Any]]:
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


@router.post("/vipps")
async def vipps_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    authorization: Optional[str] = Header(None),
):
    """
    Vipps payment callback.

    Body: {"orderId": str, "transactionInfo": {"status": str}}
    The Authorization header must carry the tenant's webhook secret.
    """
    payload = await _json_body(request)
    if payload is None:
        return JSONResponse(status_code=400, content={"error": "Invalid payload"})
    return _respond(await handle_vipps_callback(db, payload, authorization))


@router.post("/vipps/v2/payments/{order_id}")
async def vipps_callback_prefix(
    order_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    authorization: Optional[str] = Header(None),
):
    """
    Vipps callback at the path Vipps builds from callbackPrefix.

    The orderId in the path is used when the body does not carry one.
    """
    payload = await _json_body(request)
    if payload is None:
        return JSONResponse(status_code=400, content={"error": "Invalid payload"})
    payload.setdefault("orderId", order_id)
    return _respond(await handle_vipps_callback(db, payload, authorization))


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    stripe_signature: Optional[str] = Header(None, alias="stripe-signature"),
):
    """
    Stripe webhook endpoint.

    Handles:
    - payment_intent.succeeded: payment COMPLETED, order PROCESSING
    - payment_intent.payment_failed: payment FAILED, order CANCELLED
    - charge.refunded: payment REFUNDED, order REFUNDED
    - customer.subscription.created/updated/deleted: tenant subscription status

    Any other event type is acknowledged and ignored.
    """
    # Raw body, the signature covers the exact bytes
    body = await request.body()
    return _respond(await handle_stripe_event(db, body, stripe_signature))
