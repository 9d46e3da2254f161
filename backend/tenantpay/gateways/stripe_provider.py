"""
Stripe provider implementation.
Handles one-off payment intents for a tenant's own Stripe account and the
platform's tenant subscriptions.

Every SDK call passes api_key explicitly. The SDK's global stripe.api_key is
never set, so one tenant's key cannot leak into another tenant's request.
"""
import asyncio
import json
import logging
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

import stripe
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenantpay.config import settings
from tenantpay.exceptions import ConfigurationError, ProviderError
from tenantpay.gateways.base import InitiatedPayment, PaymentGateway, to_minor_units
from tenantpay.models.base import utcnow
from tenantpay.models.payment import PaymentProvider, PaymentStatus, PaymentType
from tenantpay.models.subscription import SubscriptionStatus, TenantSubscription
from tenantpay.repositories.payment_repository import PaymentRepository
from tenantpay.schemas.credentials import StripeCredentials
from tenantpay.services.transitions import map_stripe_subscription_status
from tenantpay.utils.logging import log_provider_request, log_provider_failure
from tenantpay.utils.metrics import (
    payment_provider_requests_total,
    payment_provider_failures_total,
    payment_provider_latency_seconds,
)

logger = logging.getLogger(__name__)

# Payment intent status -> canonical status
INTENT_STATUS_MAP = {
    "succeeded": PaymentStatus.COMPLETED,
    "canceled": PaymentStatus.FAILED,
}

# Smallest USD amount Stripe accepts, used by the connection test
CONNECTION_TEST_AMOUNT = 50

CAPTURE_METHODS = ("automatic", "manual")


def _configure_http_client() -> None:
    """Bound every SDK call by the provider timeout, with no automatic retries."""
    if getattr(stripe, "default_http_client", None) is None:
        stripe.default_http_client = stripe.new_default_http_client(
            timeout=settings.provider_timeout_seconds
        )
    stripe.max_network_retries = 0


def to_payload(obj: Any) -> Optional[Dict[str, Any]]:
    """Plain JSON-safe dict from a Stripe object, for provider_response."""
    if obj is None:
        return None
    if isinstance(obj, stripe.StripeObject):
        return json.loads(str(obj))
    return dict(obj)


def from_timestamp(value: Optional[int]) -> Optional[datetime]:
    """Stripe epoch seconds -> naive UTC datetime."""
    if not value:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)


class StripeProvider(PaymentGateway):
    """Stripe gateway client for one tenant (or the platform account)."""

    provider = PaymentProvider.STRIPE

    def __init__(
        self,
        credentials: StripeCredentials,
        tenant_id: str,
        test_mode: bool = True,
    ):
        super().__init__(tenant_id, test_mode)
        self.credentials = credentials
        _configure_http_client()

    @property
    def webhook_secret(self) -> Optional[str]:
        return self.credentials.webhook_secret

    async def _call(self, operation: str, method: Callable[..., Any], *args, **kwargs) -> Any:
        """Run a blocking SDK call off the event loop, translating Stripe errors."""
        start_time = time.time()
        payment_provider_requests_total.labels(provider="stripe", operation=operation).inc()

        try:
            result = await asyncio.to_thread(
                method, *args, api_key=self.credentials.secret_key, **kwargs
            )
        except stripe.StripeError as e:
            provider_message = getattr(e, "user_message", None) or str(e)
            payment_provider_failures_total.labels(provider="stripe", operation=operation).inc()
            log_provider_failure(
                logger,
                provider="stripe",
                operation=operation,
                error=provider_message,
                duration_ms=(time.time() - start_time) * 1000,
                tenant_id=self.tenant_id,
            )
            raise ProviderError(
                f"Stripe {operation} failed",
                provider="stripe",
                operation=operation,
                provider_status=getattr(e, "http_status", None),
                provider_message=provider_message,
            ) from e

        duration = time.time() - start_time
        payment_provider_latency_seconds.labels(provider="stripe", operation=operation).observe(duration)
        log_provider_request(
            logger,
            provider="stripe",
            operation=operation,
            duration_ms=duration * 1000,
            tenant_id=self.tenant_id,
        )
        return result

    # ============= Payments =============

    async def initiate_payment(
        self,
        db: AsyncSession,
        amount: Decimal,
        currency: str,
        user_id: str,
        description: str,
        payer_reference: Optional[str] = None,
        order_reference: Optional[str] = None,
        order_id: Optional[str] = None,
        payment_type: PaymentType = PaymentType.ORDER,
        capture_method: str = "automatic",
    ) -> InitiatedPayment:
        """
        Create a Payment Intent and store it as PENDING.

        payer_reference is used as receipt email when given. With
        capture_method="manual" the card is only authorized and the admin
        capture completes the payment. Returns the intent's client_secret for
        Payment Sheet / Elements.
        """
        if capture_method not in CAPTURE_METHODS:
            raise ValueError(f"Unsupported capture method: {capture_method}")

        metadata = {
            "tenantId": self.tenant_id,
            "userId": str(user_id),
            "paymentType": payment_type.value,
        }
        if order_id:
            metadata["orderId"] = order_id
        if order_reference:
            metadata["orderReference"] = order_reference

        params: Dict[str, Any] = {
            "amount": to_minor_units(amount),  # cents
            "currency": currency.lower(),
            "description": description,
            "metadata": metadata,
            "automatic_payment_methods": {"enabled": True},
        }
        if capture_method == "manual":
            params["capture_method"] = "manual"
        if payer_reference:
            params["receipt_email"] = payer_reference

        intent = await self._call("initiate", stripe.PaymentIntent.create, **params)

        payment = await PaymentRepository.create_pending(
            db,
            tenant_id=self.tenant_id,
            user_id=user_id,
            provider=self.provider,
            external_id=intent.id,
            amount=Decimal(str(amount)),
            currency=currency,
            payment_type=payment_type,
            description=description,
            order_id=order_id,
            method="card",
            provider_response=to_payload(intent),
        )
        await db.commit()

        logger.info(
            f"Created payment intent {intent.id} for tenant {self.tenant_id}",
            extra={"event": "payment_initiated", "provider": "stripe", "payment_id": payment.id}
        )
        return InitiatedPayment(
            payment=payment,
            external_id=intent.id,
            client_secret=intent.client_secret,
        )

    async def get_payment_details(self, external_id: str) -> Dict[str, Any]:
        intent = await self._call("details", stripe.PaymentIntent.retrieve, external_id)
        return to_payload(intent)

    async def capture_payment(
        self,
        db: AsyncSession,
        external_id: str,
        amount: Decimal,
        description: str,
    ) -> Dict[str, Any]:
        """
        Capture an intent created with capture_method=manual.

        Raises:
            ConfigurationError: If the intent is not awaiting capture, e.g. it
                was created for automatic capture
        """
        current = await self._call("details", stripe.PaymentIntent.retrieve, external_id)
        if current.status != "requires_capture":
            raise ConfigurationError(
                f"Payment intent is not awaiting capture (status {current.status})",
                provider="STRIPE",
            )

        intent = await self._call(
            "capture",
            stripe.PaymentIntent.capture,
            external_id,
            amount_to_capture=to_minor_units(amount),
            metadata={"captureNote": description},
        )
        payload = to_payload(intent)
        await self._transition(db, external_id, PaymentStatus.COMPLETED, payload)
        return payload

    async def cancel_payment(
        self,
        db: AsyncSession,
        external_id: str,
        description: str,
    ) -> Dict[str, Any]:
        """Refund a succeeded intent, cancel any other."""
        intent = await self._call("details", stripe.PaymentIntent.retrieve, external_id)

        if intent.status == "succeeded":
            result = await self._call(
                "refund",
                stripe.Refund.create,
                payment_intent=external_id,
                metadata={"reason": description},
            )
        else:
            result = await self._call(
                "cancel",
                stripe.PaymentIntent.cancel,
                external_id,
                cancellation_reason="requested_by_customer",
            )

        payload = to_payload(result)
        await self._transition(db, external_id, PaymentStatus.REFUNDED, payload)
        return payload

    async def test_connection(self) -> Dict[str, Any]:
        """Create a minimal intent and cancel it straight away. Nothing is charged."""
        intent = await self._call(
            "test_connection",
            stripe.PaymentIntent.create,
            amount=CONNECTION_TEST_AMOUNT,
            currency="usd",
            description="Connection test",
            metadata={"tenantId": self.tenant_id, "connectionTest": "true"},
        )
        await self._call(
            "test_connection",
            stripe.PaymentIntent.cancel,
            intent.id,
            cancellation_reason="abandoned",
        )
        return {"provider": "STRIPE", "test_mode": self.test_mode, "message": "Connected to Stripe"}

    def status_from_details(self, details: Dict[str, Any]) -> PaymentStatus:
        return INTENT_STATUS_MAP.get(details.get("status", ""), PaymentStatus.PENDING)

    # ============= Subscriptions =============

    async def create_customer(
        self,
        email: str,
        name: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        """Create a Stripe customer and return its id."""
        params: Dict[str, Any] = {"email": email, "metadata": metadata or {}}
        if name:
            params["name"] = name
        customer = await self._call("create_customer", stripe.Customer.create, **params)
        return customer.id

    async def create_subscription(
        self,
        db: AsyncSession,
        customer_id: str,
        price_id: str,
        tenant_id: str,
        trial_days: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Subscribe a tenant to a price and record it.

        Args:
            db: Database session
            customer_id: Stripe customer ID
            price_id: Stripe price ID
            tenant_id: Tenant being subscribed
            trial_days: Trial length, defaults to settings.stripe_trial_days
        """
        subscription = await self._call(
            "create_subscription",
            stripe.Subscription.create,
            customer=customer_id,
            items=[{"price": price_id}],
            trial_period_days=trial_days if trial_days is not None else settings.stripe_trial_days,
            metadata={"tenantId": tenant_id},
        )
        payload = to_payload(subscription)

        record = await get_tenant_subscription(db, tenant_id)
        if record is None:
            record = TenantSubscription(tenant_id=tenant_id)
            db.add(record)
        record.stripe_customer_id = customer_id
        record.stripe_subscription_id = payload["id"]
        record.status = map_stripe_subscription_status(payload.get("status"))
        apply_subscription_period(record, payload)
        await db.commit()

        return payload

    async def update_subscription(self, subscription_id: str, new_price_id: str) -> Dict[str, Any]:
        """Move a subscription to another price (upgrade/downgrade) with prorations."""
        subscription = await self._call(
            "update_subscription", stripe.Subscription.retrieve, subscription_id
        )
        item_id = subscription["items"]["data"][0]["id"]
        updated = await self._call(
            "update_subscription",
            stripe.Subscription.modify,
            subscription_id,
            items=[{"id": item_id, "price": new_price_id}],
            proration_behavior="create_prorations",
        )
        return to_payload(updated)

    async def cancel_subscription(self, subscription_id: str, immediately: bool = False) -> Dict[str, Any]:
        """Cancel now, or at the end of the current period (default)."""
        if immediately:
            result = await self._call("cancel_subscription", stripe.Subscription.cancel, subscription_id)
        else:
            result = await self._call(
                "cancel_subscription",
                stripe.Subscription.modify,
                subscription_id,
                cancel_at_period_end=True,
            )
        return to_payload(result)

    @staticmethod
    def map_subscription_status(stripe_status: Optional[str]) -> SubscriptionStatus:
        return map_stripe_subscription_status(stripe_status)


async def get_tenant_subscription(db: AsyncSession, tenant_id: str) -> Optional[TenantSubscription]:
    result = await db.execute(
        select(TenantSubscription).where(TenantSubscription.tenant_id == tenant_id)
    )
    return result.scalar_one_or_none()


def apply_subscription_period(record: TenantSubscription, subscription: Dict[str, Any]) -> None:
    """
    Copy billing period fields onto the record.

    Newer API versions report the period on the subscription item instead of
    the subscription itself.
    """
    start = subscription.get("current_period_start")
    end = subscription.get("current_period_end")
    if start is None or end is None:
        items = (subscription.get("items") or {}).get("data") or []
        if items:
            start = start or items[0].get("current_period_start")
            end = end or items[0].get("current_period_end")

    record.current_period_start = from_timestamp(start)
    record.current_period_end = from_timestamp(end)
    record.cancel_at = from_timestamp(subscription.get("cancel_at"))
    record.updated_at = utcnow()


def platform_stripe_provider() -> StripeProvider:
    """
    Stripe client for the platform account (tenant subscriptions).

    Raises:
        ConfigurationError: If STRIPE_SECRET_KEY is not set
    """
    if not settings.stripe_secret_key:
        raise ConfigurationError("Stripe is not configured", provider="STRIPE")
    credentials = StripeCredentials(
        secret_key=settings.stripe_secret_key,
        publishable_key="platform",
        webhook_secret=settings.stripe_webhook_secret,
    )
    return StripeProvider(credentials, tenant_id="platform", test_mode=settings.environment != "production")
