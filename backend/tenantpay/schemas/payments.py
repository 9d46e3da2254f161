"""
Pydantic schemas for payment endpoints.
Request bodies accept camelCase keys, the shape checkout and admin clients send.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from tenantpay.models.payment import PaymentProvider, PaymentStatus, PaymentType


class _RequestModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ============= Config =============

class PaymentConfigUpsert(_RequestModel):
    """Schema for creating or updating a provider config."""
    provider: PaymentProvider
    enabled: bool = False
    test_mode: bool = Field(True, alias="testMode")
    credentials: Dict[str, Any] = Field(..., description="Provider-specific credentials")
    display_name: Optional[str] = Field(None, alias="displayName")
    sort_order: int = Field(0, alias="sortOrder")
    webhook_secret: Optional[str] = Field(None, alias="webhookSecret", description="Replace the generated secret")


class PaymentConfigToggle(BaseModel):
    """Schema for enabling or disabling a provider."""
    enabled: bool


class PaymentConfigResponse(BaseModel):
    """Provider config. Credentials are never returned."""
    id: str
    provider: PaymentProvider
    enabled: bool
    test_mode: bool
    display_name: Optional[str] = None
    sort_order: int
    merchant_serial_number: Optional[str] = None
    has_credentials: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_config(cls, config) -> "PaymentConfigResponse":
        return cls(
            id=config.id,
            provider=config.provider,
            enabled=config.enabled,
            test_mode=config.test_mode,
            display_name=config.display_name,
            sort_order=config.sort_order,
            merchant_serial_number=config.merchant_serial_number,
            has_credentials=bool(config.encrypted_credentials),
            created_at=config.created_at,
            updated_at=config.updated_at,
        )


class AvailableProvider(BaseModel):
    """Checkout view of an enabled provider."""
    provider: PaymentProvider
    display_name: Optional[str] = None
    sort_order: int

    model_config = ConfigDict(from_attributes=True)


class ConnectionTestResponse(BaseModel):
    """Result of a live connection test."""
    success: bool
    provider: PaymentProvider
    test_mode: bool
    message: str


# ============= Checkout =============

class VippsInitiateRequest(_RequestModel):
    """Schema for starting a Vipps payment."""
    amount: Decimal = Field(..., gt=0, description="Amount in NOK, e.g. 99.50")
    currency: str = "NOK"
    phone_number: Optional[str] = Field(None, alias="phoneNumber")
    order_id: Optional[str] = Field(None, alias="orderId", description="Linked shop order")
    order_reference: Optional[str] = Field(None, alias="orderReference")
    description: str = Field("Betaling", max_length=100)
    payment_type: PaymentType = Field(PaymentType.ORDER, alias="paymentType")


class VippsInitiateResponse(BaseModel):
    """Vipps landing page and the Vipps orderId."""
    url: Optional[str]
    order_id: str
    payment_id: str


class StripeIntentRequest(_RequestModel):
    """Schema for creating a Stripe payment intent."""
    amount: Decimal = Field(..., gt=0)
    currency: str = "NOK"
    receipt_email: Optional[str] = Field(None, alias="receiptEmail")
    order_id: Optional[str] = Field(None, alias="orderId")
    order_reference: Optional[str] = Field(None, alias="orderReference")
    description: str = Field("Betaling", max_length=255)
    payment_type: PaymentType = Field(PaymentType.ORDER, alias="paymentType")
    capture_method: Literal["automatic", "manual"] = Field("automatic", alias="captureMethod")


class StripeIntentResponse(BaseModel):
    """Client secret for Payment Sheet / Elements."""
    client_secret: Optional[str]
    payment_intent_id: str
    payment_id: str


# ============= Payments =============

class PaymentResponse(BaseModel):
    """Schema for a payment."""
    id: str
    tenant_id: str
    user_id: str
    order_id: Optional[str] = None
    amount: Decimal
    currency: str
    type: PaymentType
    provider: PaymentProvider
    method: Optional[str] = None
    description: Optional[str] = None
    status: PaymentStatus
    external_id: str
    error_message: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PaymentListResponse(BaseModel):
    payments: List[PaymentResponse]


class CaptureRequest(BaseModel):
    """Capture amount defaults to the full payment amount."""
    amount: Optional[Decimal] = Field(None, gt=0)
    description: str = "Capture"


class CancelRequest(BaseModel):
    description: str = "Cancelled"


class ReconciliationResponse(BaseModel):
    """Payment after a capture, cancel or sync."""
    payment: PaymentResponse
    applied: bool
    provider_response: Optional[Dict[str, Any]] = None


class PaymentStatistics(BaseModel):
    """Revenue over completed payments."""
    total_revenue: Decimal
    total_transactions: int
    by_type: Dict[str, Decimal]
    average_transaction: Decimal
