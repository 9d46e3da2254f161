"""
Base class for payment gateway clients.
All providers implement this interface so checkout, reconciliation and the
connection test can use any provider without knowing which one.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from tenantpay.models.payment import Payment, PaymentProvider, PaymentStatus, PaymentType
from tenantpay.repositories.payment_repository import PaymentRepository
from tenantpay.services.transitions import TransitionResult, apply_transition

logger = logging.getLogger(__name__)


def to_minor_units(amount: Union[Decimal, float, int, str]) -> int:
    """
    Convert a major-unit amount to minor units (øre, cents).

    Rounds half up instead of truncating, so 99.995 becomes 10000 and
    float artifacts like 19.99 * 100 == 1998.9999 never under-charge.
    """
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass
class InitiatedPayment:
    """Result of initiate_payment()."""
    payment: Payment
    external_id: str
    redirect_url: Optional[str] = None  # Vipps landing page
    client_secret: Optional[str] = None  # Stripe Payment Sheet / Elements


class PaymentGateway(ABC):
    """
    Abstract base class for payment gateway clients.

    Instances are short-lived: built per request from one tenant's decrypted
    config by tenantpay.gateways.factory and thrown away afterwards.
    """

    provider: PaymentProvider

    def __init__(self, tenant_id: str, test_mode: bool = True):
        self.tenant_id = tenant_id
        self.test_mode = test_mode

    @property
    def provider_name(self) -> str:
        return self.provider.value.lower()

    @abstractmethod
    async def initiate_payment(
        self,
        db: AsyncSession,
        amount: Decimal,
        currency: str,
        user_id: str,
        description: str,
        payer_reference: Optional[str] = None,
        order_reference: Optional[str] = None,
        order_id: Optional[str] = None,
        payment_type: PaymentType = PaymentType.ORDER,
    ) -> InitiatedPayment:
        """
        Create the provider-side payment and a PENDING Payment row.

        Args:
            db: Database session
            amount: Amount in major units of currency
            currency: ISO currency code
            user_id: Paying user
            description: Text shown to the payer
            payer_reference: Provider-specific payer handle (Vipps phone number)
            order_reference: Merchant reference sent to the provider
            order_id: Linked shop order, if any
            payment_type: What the payment is for

        Raises:
            ProviderError: If the provider rejects the request or times out
        """

    @abstractmethod
    async def get_payment_details(self, external_id: str) -> Dict[str, Any]:
        """Read-only provider status payload."""

    @abstractmethod
    async def capture_payment(
        self,
        db: AsyncSession,
        external_id: str,
        amount: Decimal,
        description: str,
    ) -> Dict[str, Any]:
        """Capture reserved funds and mark the payment COMPLETED."""

    @abstractmethod
    async def cancel_payment(
        self,
        db: AsyncSession,
        external_id: str,
        description: str,
    ) -> Dict[str, Any]:
        """Cancel or refund and mark the payment REFUNDED."""

    @abstractmethod
    async def test_connection(self) -> Dict[str, Any]:
        """
        Exercise the live provider connection without charging anyone.

        Raises:
            ProviderError: If the provider cannot be reached or rejects the credentials
        """

    @abstractmethod
    def status_from_details(self, details: Dict[str, Any]) -> PaymentStatus:
        """Canonical status for a get_payment_details() payload."""

    async def sync_payment(self, db: AsyncSession, external_id: str) -> Optional[TransitionResult]:
        """
        Manual reconciliation: pull the provider's view and apply it.

        Returns:
            TransitionResult, or None if no payment matches external_id
        """
        details = await self.get_payment_details(external_id)
        return await self._transition(db, external_id, self.status_from_details(details), details)

    async def _transition(
        self,
        db: AsyncSession,
        external_id: str,
        new_status: PaymentStatus,
        provider_response: Optional[Dict[str, Any]] = None,
    ) -> Optional[TransitionResult]:
        """Apply new_status to the payment for external_id and commit."""
        payment = await PaymentRepository.get_by_external_id(db, self.provider, external_id)
        if payment is None:
            logger.warning(
                f"{self.provider.value} payment {external_id} not found after provider call",
                extra={"event": "payment_not_found", "provider": self.provider_name}
            )
            return None

        if new_status == PaymentStatus.PENDING:
            return TransitionResult(applied=False, payment=payment, previous_status=payment.status)

        result = await apply_transition(db, payment, new_status, provider_response=provider_response)
        await db.commit()
        return result
