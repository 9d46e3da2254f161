"""
Shop order, owned by the shop domain.
The payment layer only moves its status and paid_at.
"""
from sqlalchemy import Column, String, Numeric, DateTime, Enum
import enum

from tenantpay.models.base import Base, generate_uuid, utcnow


class OrderStatus(str, enum.Enum):
    """Order status enum."""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class Order(Base):
    """Order model."""

    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String(128), nullable=False)
    order_number = Column(String(50), nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(Enum(OrderStatus), nullable=False, default=OrderStatus.PENDING)

    paid_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Order(id={self.id}, number={self.order_number}, status={self.status})>"
