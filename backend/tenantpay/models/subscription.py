"""
Tenant platform subscription billed through the platform Stripe account.
Independent from one-off Payments.
"""
from sqlalchemy import Column, String, DateTime, Enum
import enum

from tenantpay.models.base import Base, generate_uuid, utcnow


class SubscriptionStatus(str, enum.Enum):
    """Canonical subscription status."""
    TRIAL = "TRIAL"
    ACTIVE = "ACTIVE"
    PAST_DUE = "PAST_DUE"
    SUSPENDED = "SUSPENDED"
    CANCELLED = "CANCELLED"


class TenantSubscription(Base):
    """Subscription model, one per tenant."""

    __tablename__ = "tenant_subscriptions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    tenant_id = Column(String(36), nullable=False, unique=True, index=True)
    stripe_customer_id = Column(String(255), nullable=True)
    stripe_subscription_id = Column(String(255), nullable=True, unique=True, index=True)
    status = Column(Enum(SubscriptionStatus), nullable=False, default=SubscriptionStatus.TRIAL)

    current_period_start = Column(DateTime, nullable=True)
    current_period_end = Column(DateTime, nullable=True)
    cancel_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<TenantSubscription(tenant_id={self.tenant_id}, status={self.status})>"
