"""
Payment state machine.

PENDING -> COMPLETED | FAILED | REFUNDED
COMPLETED -> REFUNDED
FAILED, REFUNDED are terminal.

Both webhook handlers and the direct capture/cancel paths go through
apply_transition(), so the idempotency and no-regression rules live here only.
Repeated or regressive transitions are ignored, not raised: providers retry
webhooks aggressively and redeliveries must be harmless.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from tenantpay.models.base import utcnow
from tenantpay.models.order import Order, OrderStatus
from tenantpay.models.payment import Payment, PaymentStatus
from tenantpay.models.subscription import SubscriptionStatus
from tenantpay.utils.logging import log_payment_transition
from tenantpay.utils.metrics import payment_transitions_total

logger = logging.getLogger(__name__)


# Allowed predecessors of each target status
ALLOWED_FROM = {
    PaymentStatus.COMPLETED: (PaymentStatus.PENDING,),
    PaymentStatus.FAILED: (PaymentStatus.PENDING,),
    PaymentStatus.REFUNDED: (PaymentStatus.PENDING, PaymentStatus.COMPLETED),
    PaymentStatus.PENDING: (),
}

TERMINAL_STATUSES = frozenset({PaymentStatus.FAILED, PaymentStatus.REFUNDED})

# Canonical payment status -> order status
ORDER_STATUS_FOR_PAYMENT = {
    PaymentStatus.COMPLETED: OrderStatus.PROCESSING,
    PaymentStatus.FAILED: OrderStatus.CANCELLED,
    PaymentStatus.REFUNDED: OrderStatus.REFUNDED,
}

VIPPS_STATUS_MAP = {
    "RESERVE": PaymentStatus.COMPLETED,
    "SALE": PaymentStatus.COMPLETED,
    "CANCEL": PaymentStatus.FAILED,
    "VOID": PaymentStatus.FAILED,
    "REFUND": PaymentStatus.REFUNDED,
}

STRIPE_SUBSCRIPTION_STATUS_MAP = {
    "trialing": SubscriptionStatus.TRIAL,
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELLED,
    "unpaid": SubscriptionStatus.CANCELLED,
}


def map_vipps_status(vipps_status: Optional[str]) -> PaymentStatus:
    """
    Map a Vipps transaction status to the canonical status.

    Unknown statuses map to PENDING, never FAILED: a false FAILED would
    cancel a live order.
    """
    if not vipps_status:
        return PaymentStatus.PENDING
    return VIPPS_STATUS_MAP.get(vipps_status.upper(), PaymentStatus.PENDING)


def map_stripe_subscription_status(stripe_status: Optional[str]) -> SubscriptionStatus:
    """Map a Stripe subscription status, anything unknown suspends."""
    return STRIPE_SUBSCRIPTION_STATUS_MAP.get(stripe_status or "", SubscriptionStatus.SUSPENDED)


def can_transition(current: PaymentStatus, new: PaymentStatus) -> bool:
    """True if current -> new moves the payment forward."""
    return current in ALLOWED_FROM.get(new, ())


@dataclass
class TransitionResult:
    """Outcome of apply_transition()."""
    applied: bool
    payment: Payment
    previous_status: PaymentStatus
    order_status: Optional[OrderStatus] = None  # Set when the linked order was moved


def _provider_name(payment: Payment) -> str:
    provider = payment.provider
    return provider.value if hasattr(provider, "value") else str(provider)


async def apply_transition(
    db: AsyncSession,
    payment: Payment,
    new_status: PaymentStatus,
    provider_response: Optional[Dict[str, Any]] = None,
    error_message: Optional[str] = None,
    cascade: bool = True,
) -> TransitionResult:
    """
    Move a payment to new_status exactly once.

    The write is a single conditional UPDATE (status IN allowed predecessors),
    so two concurrent deliveries cannot both apply it: the loser sees
    rowcount == 0 and becomes a no-op. paid_at is stamped only on COMPLETED.
    Does not commit, the caller owns the transaction.

    Args:
        db: Database session
        payment: Payment to move
        new_status: Target canonical status
        provider_response: Raw provider payload to persist
        error_message: Failure reason (FAILED only)
        cascade: Also move the linked order

    Returns:
        TransitionResult
    """
    previous_status = payment.status
    allowed = ALLOWED_FROM.get(new_status, ())

    applied = False
    if allowed:
        values: Dict[str, Any] = {"status": new_status, "updated_at": utcnow()}
        if provider_response is not None:
            values["provider_response"] = provider_response
        if new_status == PaymentStatus.COMPLETED:
            values["paid_at"] = utcnow()
        if new_status == PaymentStatus.FAILED and error_message:
            values["error_message"] = error_message

        result = await db.execute(
            update(Payment)
            .where(Payment.id == payment.id)
            .where(Payment.status.in_(allowed))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        applied = result.rowcount > 0

    # Pick up the winner's write either way
    await db.refresh(payment)

    provider = _provider_name(payment)
    payment_transitions_total.labels(
        provider=provider,
        from_status=previous_status.value,
        to_status=new_status.value,
        applied=str(applied).lower(),
    ).inc()
    log_payment_transition(
        logger,
        payment_id=payment.id,
        tenant_id=payment.tenant_id,
        provider=provider,
        from_status=previous_status.value,
        to_status=new_status.value,
        applied=applied,
        external_id=payment.external_id,
    )

    order_status = None
    if applied and cascade and payment.order_id:
        order_status = await cascade_order(db, payment.order_id, new_status)

    return TransitionResult(
        applied=applied,
        payment=payment,
        previous_status=previous_status,
        order_status=order_status,
    )


async def cascade_order(
    db: AsyncSession,
    order_id: str,
    payment_status: PaymentStatus,
) -> Optional[OrderStatus]:
    """
    Move the order to follow its payment.

    No-op when the order is already in the target status.

    Returns:
        The order status written, or None if nothing changed
    """
    target = ORDER_STATUS_FOR_PAYMENT.get(payment_status)
    if target is None:
        return None

    values: Dict[str, Any] = {"status": target, "updated_at": utcnow()}
    if target == OrderStatus.PROCESSING:
        values["paid_at"] = utcnow()

    result = await db.execute(
        update(Order)
        .where(Order.id == order_id)
        .where(Order.status != target)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        logger.info(f"Order {order_id} already {target.value}, skipping")
        return None

    logger.info(
        f"Order {order_id} moved to {target.value}",
        extra={"event": "order_cascade", "order_id": order_id, "order_status": target.value}
    )
    return target
