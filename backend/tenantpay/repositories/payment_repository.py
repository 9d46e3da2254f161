"""
Repository for payment records.
The (provider, external_id) pair is the only key webhooks may correlate on.
"""
import logging
from datetime import datetime
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import func, select
from typing import Any, Dict, List, Optional

from tenantpay.models.payment import Payment, PaymentProvider, PaymentStatus, PaymentType

logger = logging.getLogger(__name__)


class PaymentRepository:
    """Repository for payment database operations."""

    @staticmethod
    async def create_pending(
        db: AsyncSession,
        tenant_id: str,
        user_id: str,
        provider: PaymentProvider,
        external_id: str,
        amount: Decimal,
        currency: str,
        payment_type: PaymentType = PaymentType.ORDER,
        description: Optional[str] = None,
        order_id: Optional[str] = None,
        method: Optional[str] = None,
        provider_response: Optional[Dict[str, Any]] = None,
    ) -> Payment:
        """
        Create a PENDING payment tied to the provider's external identifier.

        Flushes without committing, the caller owns the transaction.
        """
        payment = Payment(
            tenant_id=tenant_id,
            user_id=user_id,
            order_id=order_id,
            provider=provider,
            external_id=external_id,
            amount=Decimal(amount),
            currency=currency.upper(),
            type=payment_type,
            method=method,
            description=description,
            status=PaymentStatus.PENDING,
            provider_response=provider_response,
        )
        db.add(payment)
        await db.flush()
        return payment

    @staticmethod
    async def get(db: AsyncSession, payment_id: str, tenant_id: Optional[str] = None) -> Optional[Payment]:
        """Get a payment by id, optionally scoped to a tenant."""
        query = select(Payment).where(Payment.id == payment_id)
        if tenant_id:
            query = query.where(Payment.tenant_id == tenant_id)
        result = await db.execute(query)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_external_id(
        db: AsyncSession,
        provider: PaymentProvider,
        external_id: str,
    ) -> Optional[Payment]:
        """
        Resolve a provider identifier to exactly one payment.

        Returns None when nothing or more than one row matches. Never guesses.
        """
        if not external_id:
            return None

        result = await db.execute(
            select(Payment)
            .where(Payment.provider == provider)
            .where(Payment.external_id == external_id)
            .limit(2)
        )
        payments = list(result.scalars().all())

        if len(payments) > 1:
            logger.error(
                f"Ambiguous {provider.value} external id {external_id}: multiple payments",
                extra={"event": "payment_correlation_ambiguous", "provider": provider.value}
            )
            return None
        return payments[0] if payments else None

    @staticmethod
    async def list_for_tenant(
        db: AsyncSession,
        tenant_id: str,
        user_id: Optional[str] = None,
        status: Optional[PaymentStatus] = None,
        payment_type: Optional[PaymentType] = None,
        limit: int = 50,
    ) -> List[Payment]:
        """
        List a tenant's payments, newest first.

        Args:
            db: Database session
            tenant_id: Tenant ID
            user_id: Restrict to one payer (customers see only their own)
            status: Optional status filter
            payment_type: Optional type filter
            limit: Maximum number of records
        """
        query = select(Payment).where(Payment.tenant_id == tenant_id)
        if user_id:
            query = query.where(Payment.user_id == user_id)
        if status:
            query = query.where(Payment.status == status)
        if payment_type:
            query = query.where(Payment.type == payment_type)

        result = await db.execute(query.order_by(Payment.created_at.desc()).limit(limit))
        return list(result.scalars().all())

    @staticmethod
    async def get_statistics(
        db: AsyncSession,
        tenant_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Revenue over a tenant's COMPLETED payments.

        The paid_at range applies only when both bounds are given.
        """
        query = (
            select(Payment.type, func.count(Payment.id), func.sum(Payment.amount))
            .where(Payment.tenant_id == tenant_id)
            .where(Payment.status == PaymentStatus.COMPLETED)
        )
        if start_date and end_date:
            query = query.where(Payment.paid_at >= start_date).where(Payment.paid_at <= end_date)

        result = await db.execute(query.group_by(Payment.type))

        by_type: Dict[str, Decimal] = {}
        total_transactions = 0
        total_revenue = Decimal("0")
        for payment_type, count, revenue in result.all():
            revenue = Decimal(revenue or 0).quantize(Decimal("0.01"))
            by_type[payment_type.value] = revenue
            total_transactions += count
            total_revenue += revenue

        average = total_revenue / total_transactions if total_transactions else Decimal("0")
        return {
            "total_revenue": total_revenue.quantize(Decimal("0.01")),
            "total_transactions": total_transactions,
            "by_type": by_type,
            "average_transaction": average.quantize(Decimal("0.01")),
        }
