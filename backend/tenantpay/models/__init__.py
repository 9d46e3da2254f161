"""
Database models package.
"""
from tenantpay.models.base import Base
from tenantpay.models.order import Order, OrderStatus
from tenantpay.models.payment import Payment, PaymentProvider, PaymentStatus, PaymentType
from tenantpay.models.payment_config import TenantPaymentConfig
from tenantpay.models.activity_log import ActivityLog
from tenantpay.models.subscription import TenantSubscription, SubscriptionStatus

__all__ = [
    "Base",
    "Order",
    "OrderStatus",
    "Payment",
    "PaymentProvider",
    "PaymentStatus",
    "PaymentType",
    "TenantPaymentConfig",
    "ActivityLog",
    "TenantSubscription",
    "SubscriptionStatus",
]
