"""
Vipps provider implementation.
Uses the Vipps eCom v2 API over httpx.

Vipps authenticates every call with a short-lived bearer token obtained from
/accesstoken/get. Tokens are cached per (tenant, client id, environment) and
refreshed shortly before they expire.
"""
import logging
import time
import uuid
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from tenantpay.config import settings
from tenantpay.exceptions import ProviderError
from tenantpay.gateways.base import InitiatedPayment, PaymentGateway, to_minor_units
from tenantpay.gateways.token_cache import AccessTokenCache, CachedToken, vipps_token_cache
from tenantpay.models.payment import PaymentProvider, PaymentStatus, PaymentType
from tenantpay.repositories.payment_repository import PaymentRepository
from tenantpay.schemas.credentials import VippsCredentials
from tenantpay.services.transitions import map_vipps_status
from tenantpay.utils.logging import log_provider_request, log_provider_failure
from tenantpay.utils.metrics import (
    payment_provider_requests_total,
    payment_provider_failures_total,
    payment_provider_latency_seconds,
)

logger = logging.getLogger(__name__)

PRODUCTION_BASE_URL = "https://api.vipps.no"
TEST_BASE_URL = "https://apitest.vipps.no"


class VippsProvider(PaymentGateway):
    """
    Vipps gateway client for one tenant.

    Credentials come from the tenant's decrypted config and never leave this
    object except as request headers.
    """

    provider = PaymentProvider.VIPPS

    def __init__(
        self,
        credentials: VippsCredentials,
        tenant_id: str,
        test_mode: bool = True,
        webhook_secret: Optional[str] = None,
        token_cache: Optional[AccessTokenCache] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(tenant_id, test_mode)
        self.credentials = credentials
        self.webhook_secret = webhook_secret
        self.base_url = TEST_BASE_URL if test_mode else PRODUCTION_BASE_URL
        self.safety_margin = settings.vipps_token_safety_margin_seconds
        self._token_cache = token_cache if token_cache is not None else AccessTokenCache()
        self._http_client = http_client
        self._clock = clock

    @property
    def _cache_key(self):
        return (self.tenant_id, self.credentials.client_id, self.test_mode)

    # ============= HTTP =============

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        headers: Optional[Dict[str, str]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Send one request to Vipps, translating every failure to ProviderError."""
        request_headers = {
            "Content-Type": "application/json",
            "Ocp-Apim-Subscription-Key": self.credentials.subscription_key,
            "Vipps-System-Name": "tenantpay",
        }
        request_headers.update(headers or {})

        if self._http_client is not None:
            return await self._send(self._http_client, method, path, operation, request_headers, json)

        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=settings.provider_timeout_seconds,
        ) as client:
            return await self._send(client, method, path, operation, request_headers, json)

    async def _send(
        self,
        client: httpx.AsyncClient,
        method: str,
        path: str,
        operation: str,
        headers: Dict[str, str],
        json: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        start_time = time.time()
        payment_provider_requests_total.labels(provider="vipps", operation=operation).inc()

        try:
            response = await client.request(method, path, headers=headers, json=json)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            self._record_failure(operation, "timeout", start_time)
            raise ProviderError("Vipps request timed out", provider="vipps", operation=operation) from e
        except httpx.HTTPStatusError as e:
            provider_message = self._error_message(e.response)
            self._record_failure(operation, provider_message or str(e.response.status_code), start_time)
            if e.response.status_code == 401 and operation != "token":
                # Revoked before expiry, fetch a new one on the next call
                self._token_cache.invalidate(self._cache_key)
            raise ProviderError(
                f"Vipps {operation} failed",
                provider="vipps",
                operation=operation,
                provider_status=e.response.status_code,
                provider_message=provider_message,
            ) from e
        except httpx.HTTPError as e:
            self._record_failure(operation, type(e).__name__, start_time)
            raise ProviderError("Could not reach Vipps", provider="vipps", operation=operation) from e

        duration = time.time() - start_time
        payment_provider_latency_seconds.labels(provider="vipps", operation=operation).observe(duration)
        log_provider_request(
            logger,
            provider="vipps",
            operation=operation,
            duration_ms=duration * 1000,
            tenant_id=self.tenant_id,
        )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError("Invalid response from Vipps", provider="vipps", operation=operation) from e

    def _record_failure(self, operation: str, error: str, start_time: float) -> None:
        payment_provider_failures_total.labels(provider="vipps", operation=operation).inc()
        log_provider_failure(
            logger,
            provider="vipps",
            operation=operation,
            error=error,
            duration_ms=(time.time() - start_time) * 1000,
            tenant_id=self.tenant_id,
        )

    @staticmethod
    def _error_message(response: httpx.Response) -> Optional[str]:
        """Extract Vipps' error text. Errors come as a list of {errorCode, errorMessage}."""
        try:
            body = response.json()
        except ValueError:
            return None
        if isinstance(body, list) and body and isinstance(body[0], dict):
            return body[0].get("errorMessage") or body[0].get("errorCode")
        if isinstance(body, dict):
            return body.get("errorMessage") or body.get("error_description") or body.get("title")
        return None

    # ============= Session =============

    async def get_access_token(self, force_refresh: bool = False) -> str:
        """
        Get a bearer token, refreshing it when it is missing or about to expire.

        Freshness is checked on every call against the cached expiry, so an
        expired token is never handed out.

        Raises:
            ProviderError: If the token endpoint fails
        """
        now = self._clock()
        cached = self._token_cache.get(self._cache_key)
        if not force_refresh and cached is not None and cached.is_fresh(now, self.safety_margin):
            return cached.token

        data = await self._request(
            "POST",
            "/accesstoken/get",
            operation="token",
            headers={
                "client_id": self.credentials.client_id,
                "client_secret": self.credentials.client_secret,
            },
        )

        token = data.get("access_token")
        try:
            expires_in = int(data.get("expires_in", 0))  # Vipps sends this as a string
        except (TypeError, ValueError):
            expires_in = 0
        if not token:
            raise ProviderError("Vipps token response missing access_token", provider="vipps", operation="token")

        self._token_cache.put(self._cache_key, CachedToken(token=token, expires_at=now + expires_in))
        return token

    async def _auth_headers(self) -> Dict[str, str]:
        token = await self.get_access_token()
        return {
            "Authorization": f"Bearer {token}",
            "Merchant-Serial-Number": self.credentials.merchant_serial_number,
        }

    # ============= Payments =============

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
        Start a Vipps payment and store it as PENDING.

        payer_reference is the customer's mobile number (optional, Vipps asks
        for it on the landing page when missing). order_reference becomes the
        Vipps orderId and the webhook correlation key.
        """
        vipps_order_id = order_reference or f"tp-{uuid.uuid4().hex[:24]}"
        merchant_info: Dict[str, Any] = {
            "merchantSerialNumber": self.credentials.merchant_serial_number,
            "callbackPrefix": settings.vipps_callback_url,
            "fallBack": f"{settings.frontend_url}/payment/vipps/fallback?orderId={vipps_order_id}",
        }
        if self.webhook_secret:
            # Vipps echoes this in the callback Authorization header
            merchant_info["authToken"] = self.webhook_secret

        body: Dict[str, Any] = {
            "merchantInfo": merchant_info,
            "transaction": {
                "orderId": vipps_order_id,
                "amount": to_minor_units(amount),  # øre
                "transactionText": description,
            },
        }
        if payer_reference:
            body["customerInfo"] = {"mobileNumber": payer_reference}

        response = await self._request(
            "POST",
            "/ecomm/v2/payments",
            operation="initiate",
            headers=await self._auth_headers(),
            json=body,
        )

        payment = await PaymentRepository.create_pending(
            db,
            tenant_id=self.tenant_id,
            user_id=user_id,
            provider=self.provider,
            external_id=vipps_order_id,
            amount=Decimal(str(amount)),
            currency=currency,
            payment_type=payment_type,
            description=description,
            order_id=order_id,
            method="vipps",
            provider_response=response,
        )
        await db.commit()

        logger.info(
            f"Initiated Vipps payment {vipps_order_id} for tenant {self.tenant_id}",
            extra={"event": "payment_initiated", "provider": "vipps", "payment_id": payment.id}
        )
        return InitiatedPayment(
            payment=payment,
            external_id=vipps_order_id,
            redirect_url=response.get("url"),
        )

    async def get_payment_details(self, external_id: str) -> Dict[str, Any]:
        return await self._request(
            "GET",
            f"/ecomm/v2/payments/{external_id}/details",
            operation="details",
            headers=await self._auth_headers(),
        )

    async def capture_payment(
        self,
        db: AsyncSession,
        external_id: str,
        amount: Decimal,
        description: str,
    ) -> Dict[str, Any]:
        """Capture a reserved payment (full or partial)."""
        headers = await self._auth_headers()
        headers["X-Request-Id"] = f"capture-{external_id}-{to_minor_units(amount)}"
        response = await self._request(
            "POST",
            f"/ecomm/v2/payments/{external_id}/capture",
            operation="capture",
            headers=headers,
            json={
                "merchantInfo": {"merchantSerialNumber": self.credentials.merchant_serial_number},
                "transaction": {
                    "amount": to_minor_units(amount),
                    "transactionText": description,
                },
            },
        )
        await self._transition(db, external_id, PaymentStatus.COMPLETED, response)
        return response

    async def cancel_payment(
        self,
        db: AsyncSession,
        external_id: str,
        description: str,
    ) -> Dict[str, Any]:
        """Cancel a reserved payment."""
        response = await self._request(
            "PUT",
            f"/ecomm/v2/payments/{external_id}/cancel",
            operation="cancel",
            headers=await self._auth_headers(),
            json={
                "merchantInfo": {"merchantSerialNumber": self.credentials.merchant_serial_number},
                "transaction": {"transactionText": description},
            },
        )
        await self._transition(db, external_id, PaymentStatus.REFUNDED, response)
        return response

    async def handle_callback(self, db: AsyncSession, external_id: str):
        """Re-read the payment from Vipps and reconcile it."""
        return await self.sync_payment(db, external_id)

    async def test_connection(self) -> Dict[str, Any]:
        """Fetch a fresh token. Proves client id, secret and subscription key."""
        await self.get_access_token(force_refresh=True)
        return {"provider": "VIPPS", "test_mode": self.test_mode, "message": "Connected to Vipps"}

    def status_from_details(self, details: Dict[str, Any]) -> PaymentStatus:
        """
        Canonical status from a /details payload.

        Prefers transactionInfo.status, falls back to the newest entry of
        transactionLogHistory.
        """
        transaction_info = details.get("transactionInfo") or {}
        status = transaction_info.get("status")
        if not status:
            history = details.get("transactionLogHistory") or []
            if history:
                status = history[0].get("operation")
        return map_vipps_status(status)


def build_vipps_provider(
    credentials: VippsCredentials,
    tenant_id: str,
    test_mode: bool,
    webhook_secret: Optional[str] = None,
) -> VippsProvider:
    """Vipps client sharing the process-wide token cache."""
    return VippsProvider(
        credentials,
        tenant_id=tenant_id,
        test_mode=test_mode,
        webhook_secret=webhook_secret,
        token_cache=vipps_token_cache,
    )
