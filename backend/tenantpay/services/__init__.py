"""
Business logic services.
"""
from tenantpay.services.audit_service import AuditService
from tenantpay.services.payment_config_service import PaymentConfigService

__all__ = [
    "AuditService",
    "PaymentConfigService",
]
