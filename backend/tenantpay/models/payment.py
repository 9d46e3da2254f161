"""
Payment model for tracking provider transactions.
One row per attempted movement of money, correlated to the provider by external_id.
"""
from sqlalchemy import Column, String, Numeric, DateTime, ForeignKey, Enum, Index, Text, JSON, UniqueConstraint
import enum

from tenantpay.models.base import Base, generate_uuid, utcnow


class PaymentProvider(str, enum.Enum):
    """Payment providers a tenant can configure."""
    VIPPS = "VIPPS"
    STRIPE = "STRIPE"
    CARD = "CARD"  # Stored credentials only, no gateway client


class PaymentStatus(str, enum.Enum):
    """Canonical, provider-agnostic status of a payment."""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class PaymentType(str, enum.Enum):
    """What the payment is for."""
    ORDER = "ORDER"
    PT_SESSION = "PT_SESSION"
    MEMBERSHIP = "MEMBERSHIP"
    CLASS = "CLASS"


class Payment(Base):
    """
    Payment model.

    Used for:
    - Idempotency: webhooks resolve to exactly one row via (provider, external_id)
    - Audit trail: last raw provider response is kept
    - Order cascade: order_id links the shop order whose status follows the payment
    """

    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String(128), nullable=False, index=True)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=True)

    # Payment details
    amount = Column(Numeric(12, 2), nullable=False)  # Major units, e.g. 99.50
    currency = Column(String(3), nullable=False, default="NOK")
    type = Column(Enum(PaymentType), nullable=False, default=PaymentType.ORDER)
    provider = Column(Enum(PaymentProvider), nullable=False)
    method = Column(String(50), nullable=True)
    description = Column(String(255), nullable=True)

    # Status tracking
    status = Column(
        Enum(PaymentStatus),
        nullable=False,
        default=PaymentStatus.PENDING
    )

    # Provider correlation (Vipps orderId, Stripe payment intent id)
    external_id = Column(String(255), nullable=False)
    provider_response = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    paid_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("provider", "external_id", name="uq_payment_provider_external_id"),
        Index("idx_payment_tenant_created", "tenant_id", "created_at"),
    )

    def __repr__(self):
        return (
            f"<Payment(id={self.id}, provider={self.provider}, "
            f"external_id={self.external_id}, status={self.status})>"
        )
