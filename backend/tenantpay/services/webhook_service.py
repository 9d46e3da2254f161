"""
Webhook reconciler.

Applies provider notifications to payments that already exist. A webhook
never creates a payment: the external identifier must resolve to exactly one
stored row, otherwise the notification is logged and acknowledged.

Handlers return a WebhookOutcome instead of raising so the routes can always
answer the provider with the right status code. Providers redeliver on any
non-2xx response, so everything that is safe to drop is acknowledged with 200.
"""
import hmac
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import stripe
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tenantpay.config import settings
from tenantpay.exceptions import PaymentError
from tenantpay.gateways.stripe_provider import apply_subscription_period
from tenantpay.models.base import utcnow
from tenantpay.models.payment import Payment, PaymentProvider, PaymentStatus
from tenantpay.models.payment_config import TenantPaymentConfig
from tenantpay.models.subscription import SubscriptionStatus, TenantSubscription
from tenantpay.repositories.payment_repository import PaymentRepository
from tenantpay.schemas.credentials import StripeCredentials
from tenantpay.services import vault
from tenantpay.services.audit_service import AuditService
from tenantpay.services.payment_config_service import PaymentConfigService
from tenantpay.services.transitions import (
    TERMINAL_STATUSES,
    TransitionResult,
    apply_transition,
    map_stripe_subscription_status,
    map_vipps_status,
)
from tenantpay.utils.logging import log_webhook_ignored, log_webhook_received
from tenantpay.utils.metrics import webhooks_received_total

logger = logging.getLogger(__name__)

# Stripe payment events -> canonical status
STRIPE_PAYMENT_EVENTS = {
    "payment_intent.succeeded": PaymentStatus.COMPLETED,
    "payment_intent.payment_failed": PaymentStatus.FAILED,
    "charge.refunded": PaymentStatus.REFUNDED,
}

STRIPE_SUBSCRIPTION_EVENTS = frozenset({
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
})

STRIPE_INVOICE_EVENTS = frozenset({
    "invoice.paid",
    "invoice.payment_failed",
})

DEFAULT_FAILURE_MESSAGE = "Payment failed"


@dataclass
class WebhookOutcome:
    """HTTP answer for a webhook delivery."""
    status_code: int
    body: Dict[str, Any] = field(default_factory=dict)


def _count(provider: str, outcome: str) -> None:
    webhooks_received_total.labels(provider=provider, outcome=outcome).inc()


def _audit_description(provider: str, external_id: str, result: TransitionResult, new_status: PaymentStatus) -> str:
    if result.applied:
        return f"{provider} payment {external_id}: {result.previous_status.value} -> {new_status.value}"
    return (
        f"{provider} payment {external_id}: ignored {new_status.value} "
        f"(current status {result.payment.status.value})"
    )


async def _record_transition(
    db: AsyncSession,
    payment: Payment,
    provider: str,
    result: TransitionResult,
    new_status: PaymentStatus,
) -> None:
    """Audit entry for a webhook-driven transition. Runs after the commit."""
    await AuditService.record(
        db,
        tenant_id=payment.tenant_id,
        user_id=payment.user_id,
        action="UPDATE",
        entity_type="PAYMENT",
        entity_id=payment.id,
        description=_audit_description(provider, payment.external_id, result, new_status),
    )


# ============= Vipps =============

def _vipps_authorized(config_secret: Optional[str], authorization: Optional[str]) -> bool:
    """Vipps echoes merchantInfo.authToken verbatim in the Authorization header."""
    if not config_secret or not authorization:
        return False
    return hmac.compare_digest(authorization.encode("utf-8"), config_secret.encode("utf-8"))


async def handle_vipps_callback(
    db: AsyncSession,
    payload: Dict[str, Any],
    authorization: Optional[str] = None,
) -> WebhookOutcome:
    """
    Reconcile a Vipps eCom callback.

    Payload shape: {"orderId": str, "transactionInfo": {"status": str, ...}}

    Returns:
        400 if orderId is missing, 404 if no payment matches, 401 if the
        Authorization header does not match the tenant's webhook secret,
        otherwise 200 (also for deleted or disabled configs and terminal payments).
    """
    order_id = payload.get("orderId")
    if not order_id or not isinstance(order_id, str):
        _count("vipps", "invalid")
        logger.warning("Vipps callback without orderId", extra={"event": "webhook_invalid", "provider": "vipps"})
        return WebhookOutcome(400, {"error": "Missing orderId"})

    transaction_info = payload.get("transactionInfo") or {}
    vipps_status = transaction_info.get("status") if isinstance(transaction_info, dict) else None
    if not isinstance(transaction_info, dict) or not isinstance(vipps_status, (str, type(None))):
        _count("vipps", "invalid")
        logger.warning(
            f"Vipps callback for {order_id} with malformed transactionInfo",
            extra={"event": "webhook_invalid", "provider": "vipps", "external_id": order_id}
        )
        return WebhookOutcome(400, {"error": "Invalid transactionInfo"})

    log_webhook_received(logger, provider="vipps", event_type=vipps_status or "UNKNOWN", external_id=order_id)

    payment = await PaymentRepository.get_by_external_id(db, PaymentProvider.VIPPS, order_id)
    if payment is None:
        _count("vipps", "not_found")
        log_webhook_ignored(
            logger, provider="vipps", event_type=vipps_status or "UNKNOWN",
            reason="payment_not_found", external_id=order_id,
        )
        return WebhookOutcome(404, {"error": "Payment not found"})

    config = await PaymentConfigService.get_config(db, payment.tenant_id, PaymentProvider.VIPPS)
    if config is None:
        # Deleted config: nothing to verify against and nothing will change
        _count("vipps", "ignored")
        log_webhook_ignored(
            logger, provider="vipps", event_type=vipps_status or "UNKNOWN",
            reason="provider_not_configured", external_id=order_id, tenant_id=payment.tenant_id,
        )
        return WebhookOutcome(200, {"success": True})

    if settings.webhook_verification_enabled:
        if not _vipps_authorized(config.webhook_secret, authorization):
            _count("vipps", "unauthorized")
            logger.warning(
                f"Vipps callback for {order_id} failed authentication",
                extra={"event": "webhook_unauthorized", "provider": "vipps", "tenant_id": payment.tenant_id}
            )
            return WebhookOutcome(401, {"error": "Unauthorized"})

    if not config.enabled:
        _count("vipps", "ignored")
        log_webhook_ignored(
            logger, provider="vipps", event_type=vipps_status or "UNKNOWN",
            reason="provider_disabled", external_id=order_id, tenant_id=payment.tenant_id,
        )
        return WebhookOutcome(200, {"success": True})

    if payment.status in TERMINAL_STATUSES:
        _count("vipps", "ignored")
        log_webhook_ignored(
            logger, provider="vipps", event_type=vipps_status or "UNKNOWN",
            reason="payment_terminal", external_id=order_id, tenant_id=payment.tenant_id,
        )
        await AuditService.record(
            db,
            tenant_id=payment.tenant_id,
            user_id=payment.user_id,
            action="UPDATE",
            entity_type="PAYMENT",
            entity_id=payment.id,
            description=(
                f"Vipps payment {order_id}: ignored {vipps_status or 'UNKNOWN'} "
                f"(current status {payment.status.value})"
            ),
        )
        return WebhookOutcome(200, {"success": True})

    new_status = map_vipps_status(vipps_status)
    if new_status == PaymentStatus.PENDING:
        _count("vipps", "ignored")
        log_webhook_ignored(
            logger, provider="vipps", event_type=vipps_status or "UNKNOWN",
            reason="status_not_final", external_id=order_id, tenant_id=payment.tenant_id,
        )
        return WebhookOutcome(200, {"success": True})

    try:
        result = await apply_transition(db, payment, new_status, provider_response=payload)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        _count("vipps", "error")
        logger.error(
            f"Failed to apply Vipps callback for {order_id}: {e}",
            extra={"event": "webhook_error", "provider": "vipps", "external_id": order_id},
            exc_info=True
        )
        return WebhookOutcome(500, {"error": "Internal error"})

    _count("vipps", "applied" if result.applied else "ignored")
    await _record_transition(db, payment, "Vipps", result, new_status)
    return WebhookOutcome(200, {"success": True})

# ============= Stripe =============

def _stripe_correlation_id(event_type: str, obj: Dict[str, Any]) -> Optional[str]:
    """Payment intent id an event refers to. Charges point at their parent intent."""
    if event_type == "charge.refunded":
        return obj.get("payment_intent")
    if event_type.startswith("payment_intent."):
        return obj.get("id")
    return None


def _invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    """
    Subscription an invoice bills.

    Newer API versions moved it under parent.subscription_details.
    """
    subscription = invoice.get("subscription")
    if not subscription:
        details = (invoice.get("parent") or {}).get("subscription_details") or {}
        subscription = details.get("subscription")
    if isinstance(subscription, dict):
        return subscription.get("id")
    return subscription


def _tenant_signing_secret(config: TenantPaymentConfig) -> Optional[str]:
    """
    The tenant's own Stripe webhook secret, else the platform secret.

    Raises:
        CryptoError: If the tenant's stored credentials cannot be decrypted
    """
    if config.encrypted_credentials:
        credentials = vault.decrypt_credentials(config.encrypted_credentials, PaymentProvider.STRIPE)
        if isinstance(credentials, StripeCredentials) and credentials.webhook_secret:
            return credentials.webhook_secret
    return settings.stripe_webhook_secret


def _verify_stripe_signature(
    payload: bytes,
    signature: Optional[str],
    secret: Optional[str],
    event_type: str,
) -> Optional[WebhookOutcome]:
    """
    Check the stripe-signature header.

    Returns:
        None if the delivery is authentic (or verification is disabled),
        otherwise the outcome to answer with
    """
    if not settings.webhook_verification_enabled:
        return None

    if not secret or not signature:
        _count("stripe", "unauthorized")
        logger.warning(
            "Stripe webhook without signature or signing secret",
            extra={"event": "webhook_unauthorized", "provider": "stripe", "event_type": event_type}
        )
        return WebhookOutcome(401, {"error": "Unauthorized"})

    try:
        stripe.Webhook.construct_event(payload, signature, secret)
    except stripe.SignatureVerificationError as e:
        _count("stripe", "unauthorized")
        logger.warning(
            f"Invalid Stripe signature: {e}",
            extra={"event": "webhook_unauthorized", "provider": "stripe", "event_type": event_type}
        )
        return WebhookOutcome(401, {"error": "Invalid signature"})
    except ValueError as e:
        _count("stripe", "invalid")
        return WebhookOutcome(400, {"error": f"Invalid payload: {e}"})
    return None


async def handle_stripe_event(
    db: AsyncSession,
    payload: bytes,
    signature: Optional[str] = None,
) -> WebhookOutcome:
    """
    Reconcile a Stripe webhook delivery.

    The raw body is required: the signature covers the exact bytes sent.
    The signature is checked before anything is written. Events that would
    change nothing (unhandled types, unknown payments, disabled providers)
    are acknowledged without it, since tenant accounts sign with secrets the
    platform can only find through a stored payment.

    Returns:
        200 {"received": true} for handled and ignored events, 401 on a bad
        signature, 400 {"error": ...} on a malformed payload or processing fault.
    """
    try:
        raw_event = json.loads(payload)
        event_type = raw_event["type"]
        obj = (raw_event.get("data") or {}).get("object") or {}
        if not isinstance(event_type, str) or not isinstance(obj, dict):
            raise TypeError("unexpected event shape")
    except (ValueError, KeyError, TypeError, AttributeError):
        _count("stripe", "invalid")
        return WebhookOutcome(400, {"error": "Invalid payload"})

    external_id = _stripe_correlation_id(event_type, obj)
    log_webhook_received(logger, provider="stripe", event_type=event_type, external_id=external_id)

    try:
        if event_type in STRIPE_PAYMENT_EVENTS:
            outcome = await _handle_stripe_payment_event(
                db, event_type, obj, external_id, raw_event, payload, signature
            )
        elif event_type in STRIPE_SUBSCRIPTION_EVENTS or event_type in STRIPE_INVOICE_EVENTS:
            # Platform account events
            outcome = _verify_stripe_signature(payload, signature, settings.stripe_webhook_secret, event_type)
            if outcome is None:
                if event_type in STRIPE_INVOICE_EVENTS:
                    await _handle_stripe_invoice_event(db, event_type, obj)
                else:
                    await _handle_stripe_subscription_event(db, event_type, obj)
        else:
            _count("stripe", "ignored")
            log_webhook_ignored(logger, provider="stripe", event_type=event_type, reason="unhandled_event")
            outcome = None
    except (SQLAlchemyError, PaymentError) as e:
        await db.rollback()
        _count("stripe", "error")
        logger.error(
            f"Failed to process Stripe event {event_type}: {e}",
            extra={"event": "webhook_error", "provider": "stripe", "external_id": external_id},
            exc_info=True
        )
        return WebhookOutcome(400, {"error": str(e)})

    return outcome or WebhookOutcome(200, {"received": True})


async def _handle_stripe_payment_event(
    db: AsyncSession,
    event_type: str,
    obj: Dict[str, Any],
    external_id: Optional[str],
    raw_event: Dict[str, Any],
    payload: bytes,
    signature: Optional[str],
) -> Optional[WebhookOutcome]:
    """Apply a payment event. Returns an outcome only when the delivery is rejected."""
    payment = await PaymentRepository.get_by_external_id(db, PaymentProvider.STRIPE, external_id)
    if payment is None:
        _count("stripe", "not_found")
        log_webhook_ignored(
            logger, provider="stripe", event_type=event_type,
            reason="payment_not_found", external_id=external_id,
        )
        return None

    config = await PaymentConfigService.get_config(db, payment.tenant_id, PaymentProvider.STRIPE)
    if config is None or not config.enabled:
        _count("stripe", "ignored")
        log_webhook_ignored(
            logger, provider="stripe", event_type=event_type,
            reason="provider_disabled", external_id=external_id, tenant_id=payment.tenant_id,
        )
        return None

    secret = _tenant_signing_secret(config)
    rejected = _verify_stripe_signature(payload, signature, secret, event_type)
    if rejected is not None:
        return rejected

    new_status = STRIPE_PAYMENT_EVENTS[event_type]
    error_message = None
    if new_status == PaymentStatus.FAILED:
        last_error = obj.get("last_payment_error") or {}
        error_message = last_error.get("message") or DEFAULT_FAILURE_MESSAGE

    result = await apply_transition(
        db,
        payment,
        new_status,
        provider_response=raw_event,
        error_message=error_message,
    )
    await db.commit()

    _count("stripe", "applied" if result.applied else "ignored")
    await _record_transition(db, payment, "Stripe", result, new_status)
    return None


async def _find_subscription(
    db: AsyncSession,
    subscription_id: Optional[str],
    tenant_id: Optional[str] = None,
) -> Optional[TenantSubscription]:
    """TenantSubscription by Stripe subscription id, falling back to tenant id."""
    if subscription_id:
        result = await db.execute(
            select(TenantSubscription).where(TenantSubscription.stripe_subscription_id == subscription_id)
        )
        record = result.scalar_one_or_none()
        if record is not None:
            return record
    if tenant_id:
        result = await db.execute(
            select(TenantSubscription).where(TenantSubscription.tenant_id == tenant_id)
        )
        return result.scalar_one_or_none()
    return None


async def _handle_stripe_subscription_event(db: AsyncSession, event_type: str, obj: Dict[str, Any]) -> None:
    """Keep TenantSubscription in step with the platform's Stripe subscriptions."""
    subscription_id = obj.get("id")
    tenant_id = (obj.get("metadata") or {}).get("tenantId")

    record = await _find_subscription(db, subscription_id, tenant_id)
    if record is None and tenant_id and event_type == "customer.subscription.created":
        record = TenantSubscription(tenant_id=tenant_id)
        db.add(record)

    if record is None:
        _count("stripe", "not_found")
        log_webhook_ignored(
            logger, provider="stripe", event_type=event_type,
            reason="subscription_not_found", external_id=subscription_id,
        )
        return

    record.stripe_subscription_id = subscription_id
    if obj.get("customer"):
        record.stripe_customer_id = obj["customer"]

    if event_type == "customer.subscription.deleted":
        record.status = SubscriptionStatus.CANCELLED
        record.cancelled_at = utcnow()
    else:
        record.status = map_stripe_subscription_status(obj.get("status"))
    apply_subscription_period(record, obj)

    await db.commit()
    _count("stripe", "applied")
    logger.info(
        f"Subscription {subscription_id} for tenant {record.tenant_id} is {record.status.value}",
        extra={"event": "subscription_synced", "tenant_id": record.tenant_id, "provider": "stripe"}
    )


async def _handle_stripe_invoice_event(db: AsyncSession, event_type: str, obj: Dict[str, Any]) -> None:
    """
    A failed subscription invoice puts the tenant's subscription PAST_DUE.

    invoice.paid is acknowledged only: Stripe follows it with a
    customer.subscription.updated carrying the recovered status.
    """
    subscription_id = _invoice_subscription_id(obj)
    if event_type != "invoice.payment_failed" or not subscription_id:
        _count("stripe", "ignored")
        log_webhook_ignored(
            logger, provider="stripe", event_type=event_type,
            reason="invoice_not_actionable", external_id=obj.get("id"),
        )
        return

    record = await _find_subscription(db, subscription_id)
    if record is None:
        _count("stripe", "not_found")
        log_webhook_ignored(
            logger, provider="stripe", event_type=event_type,
            reason="subscription_not_found", external_id=subscription_id,
        )
        return

    if record.status == SubscriptionStatus.CANCELLED:
        _count("stripe", "ignored")
        log_webhook_ignored(
            logger, provider="stripe", event_type=event_type,
            reason="subscription_cancelled", external_id=subscription_id, tenant_id=record.tenant_id,
        )
        return

    record.status = SubscriptionStatus.PAST_DUE
    record.updated_at = utcnow()
    await db.commit()
    _count("stripe", "applied")
    logger.warning(
        f"Invoice payment failed for tenant {record.tenant_id}, subscription {subscription_id} is PAST_DUE",
        extra={"event": "subscription_past_due", "tenant_id": record.tenant_id, "provider": "stripe"}
    )
