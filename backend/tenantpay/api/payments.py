"""
Payment API endpoints.
Tenant provider configuration, checkout and admin reconciliation.
"""
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenantpay.auth.dependencies import Principal, get_current_principal, require_admin
from tenantpay.config import settings
from tenantpay.database import get_db
from tenantpay.exceptions import ConfigurationError, ProviderError
from tenantpay.gateways.base import PaymentGateway
from tenantpay.gateways.factory import build_gateway, check_connection, get_gateway
from tenantpay.models.order import Order
from tenantpay.models.payment import Payment, PaymentProvider, PaymentStatus, PaymentType
from tenantpay.repositories.payment_repository import PaymentRepository
from tenantpay.schemas.payments import (
    AvailableProvider,
    CancelRequest,
    CaptureRequest,
    ConnectionTestResponse,
    PaymentConfigResponse,
    PaymentConfigToggle,
    PaymentConfigUpsert,
    PaymentListResponse,
    PaymentResponse,
    PaymentStatistics,
    ReconciliationResponse,
    StripeIntentRequest,
    StripeIntentResponse,
    VippsInitiateRequest,
    VippsInitiateResponse,
)
from tenantpay.services.audit_service import AuditService
from tenantpay.services.payment_config_service import PaymentConfigService

router = APIRouter()
logger = logging.getLogger(__name__)


def _checkout_failed(e: ProviderError) -> HTTPException:
    """Localized, provider-agnostic message with the provider's own text appended."""
    detail = settings.checkout_error_message
    if e.provider_message:
        detail = f"{detail} ({e.provider_message})"
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=detail)


async def _ensure_order(db: AsyncSession, order_id: Optional[str], tenant_id: str) -> None:
    if not order_id:
        return
    result = await db.execute(
        select(Order.id).where(Order.id == order_id).where(Order.tenant_id == tenant_id)
    )
    if result.scalar_one_or_none() is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Order not found"
        )


async def _checkout_gateway(db: AsyncSession, tenant_id: str, provider: PaymentProvider) -> PaymentGateway:
    gateway = await get_gateway(db, tenant_id, provider)
    if gateway is None:
        raise ConfigurationError(f"{provider.value.capitalize()} is not available", provider=provider.value)
    return gateway


async def _tenant_payment(db: AsyncSession, payment_id: str, principal: Principal) -> Payment:
    payment = await PaymentRepository.get(db, payment_id, tenant_id=principal.tenant_id)
    if payment is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Payment not found"
        )
    return payment


async def _payment_gateway(db: AsyncSession, payment: Payment) -> PaymentGateway:
    """Gateway for an existing payment. Works while the provider is disabled."""
    config = await PaymentConfigService.get_config(db, payment.tenant_id, payment.provider)
    gateway = build_gateway(config) if config is not None else None
    if gateway is None:
        raise ConfigurationError(provider=payment.provider.value)
    return gateway


# ============= Config =============

@router.get("/config", response_model=List[PaymentConfigResponse])
async def list_configs(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    """List the tenant's provider configs. Credentials are never returned."""
    configs = await PaymentConfigService.list_configs(db, principal.tenant_id)
    return [PaymentConfigResponse.from_config(c) for c in configs]


@router.post("/config", response_model=PaymentConfigResponse)
async def upsert_config(
    request: PaymentConfigUpsert,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    """Create or update a provider config. Credentials are encrypted before storage."""
    try:
        config = await PaymentConfigService.upsert(
            db,
            tenant_id=principal.tenant_id,
            provider=request.provider,
            enabled=request.enabled,
            test_mode=request.test_mode,
            raw_credentials=request.credentials,
            display_name=request.display_name,
            sort_order=request.sort_order,
            webhook_secret=request.webhook_secret,
            user_id=principal.user_id,
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    return PaymentConfigResponse.from_config(config)


@router.put("/config/{provider}/toggle", response_model=PaymentConfigResponse)
async def toggle_config(
    provider: PaymentProvider,
    request: PaymentConfigToggle,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    """Enable or disable a provider."""
    config = await PaymentConfigService.toggle(
        db, principal.tenant_id, provider, request.enabled, user_id=principal.user_id
    )
    if config is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Payment config not found"
        )
    return PaymentConfigResponse.from_config(config)


@router.delete("/config/{provider}")
async def delete_config(
    provider: PaymentProvider,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    """Delete a provider config."""
    deleted = await PaymentConfigService.delete(db, principal.tenant_id, provider, user_id=principal.user_id)
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Payment config not found"
        )
    return {"success": True}


@router.post("/config/{provider}/test", response_model=ConnectionTestResponse)
async def test_config(
    provider: PaymentProvider,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    """
    Exercise the live provider connection without charging anyone.

    Vipps: fetches an access token. Stripe: creates a minimal payment intent
    and cancels it immediately.
    """
    result = await check_connection(db, principal.tenant_id, provider)
    return ConnectionTestResponse(**result)


# ============= Checkout =============

@router.get("/available", response_model=List[AvailableProvider])
async def list_available(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Enabled providers for checkout UIs."""
    configs = await PaymentConfigService.list_available(db, principal.tenant_id)
    return [AvailableProvider.model_validate(c) for c in configs]


@router.post("/vipps/initiate", response_model=VippsInitiateResponse)
async def initiate_vipps(
    request: VippsInitiateRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """
    Start a Vipps payment.

    Returns the Vipps landing page URL. The payment stays PENDING until the
    Vipps callback arrives.
    """
    await _ensure_order(db, request.order_id, principal.tenant_id)
    gateway = await _checkout_gateway(db, principal.tenant_id, PaymentProvider.VIPPS)

    try:
        initiated = await gateway.initiate_payment(
            db,
            amount=request.amount,
            currency=request.currency,
            user_id=principal.user_id,
            description=request.description,
            payer_reference=request.phone_number,
            order_reference=request.order_reference,
            order_id=request.order_id,
            payment_type=request.payment_type,
        )
    except ProviderError as e:
        raise _checkout_failed(e)

    await AuditService.record(
        db,
        tenant_id=principal.tenant_id,
        user_id=principal.user_id,
        action="CREATE",
        entity_type="PAYMENT",
        entity_id=initiated.payment.id,
        description=f"Vipps payment {initiated.external_id} initiated",
    )
    return VippsInitiateResponse(
        url=initiated.redirect_url,
        order_id=initiated.external_id,
        payment_id=initiated.payment.id,
    )


@router.post("/stripe/create-intent", response_model=StripeIntentResponse)
async def create_stripe_intent(
    request: StripeIntentRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """
    Create a Stripe Payment Intent.

    Returns client_secret for Payment Sheet / Elements.
    """
    await _ensure_order(db, request.order_id, principal.tenant_id)
    gateway = await _checkout_gateway(db, principal.tenant_id, PaymentProvider.STRIPE)

    try:
        initiated = await gateway.initiate_payment(
            db,
            amount=request.amount,
            currency=request.currency,
            user_id=principal.user_id,
            description=request.description,
            payer_reference=request.receipt_email or principal.email,
            order_reference=request.order_reference,
            order_id=request.order_id,
            payment_type=request.payment_type,
            capture_method=request.capture_method,
        )
    except ProviderError as e:
        raise _checkout_failed(e)

    await AuditService.record(
        db,
        tenant_id=principal.tenant_id,
        user_id=principal.user_id,
        action="CREATE",
        entity_type="PAYMENT",
        entity_id=initiated.payment.id,
        description=f"Stripe payment intent {initiated.external_id} created",
    )
    return StripeIntentResponse(
        client_secret=initiated.client_secret,
        payment_intent_id=initiated.external_id,
        payment_id=initiated.payment.id,
    )


# ============= Payments =============

@router.get("", response_model=PaymentListResponse)
async def list_payments(
    status_filter: Optional[PaymentStatus] = Query(None, alias="status"),
    payment_type: Optional[PaymentType] = Query(None, alias="type"),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """
    List the tenant's payments, newest first.

    Admins see every payment of the tenant, customers only their own.
    """
    payments = await PaymentRepository.list_for_tenant(
        db,
        tenant_id=principal.tenant_id,
        user_id=None if principal.is_admin else principal.user_id,
        status=status_filter,
        payment_type=payment_type,
        limit=limit,
    )
    return PaymentListResponse(payments=[PaymentResponse.model_validate(p) for p in payments])


@router.get("/statistics", response_model=PaymentStatistics)
async def get_statistics(
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    """
    Revenue over the tenant's completed payments.

    The paid_at range applies only when both startDate and endDate are given.
    """
    stats = await PaymentRepository.get_statistics(
        db,
        tenant_id=principal.tenant_id,
        start_date=start_date,
        end_date=end_date,
    )
    return PaymentStatistics(**stats)


@router.get("/{payment_id}/provider-details")
async def get_provider_details(
    payment_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    """Raw provider view of a payment. Read-only."""
    payment = await _tenant_payment(db, payment_id, principal)
    gateway = await _payment_gateway(db, payment)
    return await gateway.get_payment_details(payment.external_id)


@router.post("/{payment_id}/capture", response_model=ReconciliationResponse)
async def capture_payment(
    payment_id: str,
    request: CaptureRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    """Capture a reserved payment, in full unless an amount is given."""
    payment = await _tenant_payment(db, payment_id, principal)
    previous_status = payment.status
    gateway = await _payment_gateway(db, payment)

    response = await gateway.capture_payment(
        db,
        payment.external_id,
        amount=request.amount or payment.amount,
        description=request.description,
    )
    await db.refresh(payment)
    return ReconciliationResponse(
        payment=PaymentResponse.model_validate(payment),
        applied=payment.status != previous_status,
        provider_response=response,
    )


@router.post("/{payment_id}/cancel", response_model=ReconciliationResponse)
async def cancel_payment(
    payment_id: str,
    request: CancelRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    """Cancel a reserved payment or refund a captured one."""
    payment = await _tenant_payment(db, payment_id, principal)
    previous_status = payment.status
    gateway = await _payment_gateway(db, payment)

    response = await gateway.cancel_payment(db, payment.external_id, description=request.description)
    await db.refresh(payment)
    return ReconciliationResponse(
        payment=PaymentResponse.model_validate(payment),
        applied=payment.status != previous_status,
        provider_response=response,
    )


@router.post("/{payment_id}/sync", response_model=ReconciliationResponse)
async def sync_payment(
    payment_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    """Pull the provider's current status and apply it (missed webhooks)."""
    payment = await _tenant_payment(db, payment_id, principal)
    gateway = await _payment_gateway(db, payment)

    result = await gateway.sync_payment(db, payment.external_id)
    await db.refresh(payment)
    return ReconciliationResponse(
        payment=PaymentResponse.model_validate(payment),
        applied=bool(result and result.applied),
    )
