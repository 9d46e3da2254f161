"""
Pydantic schemas for API request/response validation.
"""
from tenantpay.schemas.credentials import (
    VippsCredentials,
    StripeCredentials,
    CardCredentials,
    parse_credentials,
)
from tenantpay.schemas.payments import (
    PaymentConfigUpsert,
    PaymentConfigResponse,
    PaymentResponse,
)

__all__ = [
    "VippsCredentials",
    "StripeCredentials",
    "CardCredentials",
    "parse_credentials",
    "PaymentConfigUpsert",
    "PaymentConfigResponse",
    "PaymentResponse",
]
