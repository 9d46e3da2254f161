"""
Payment gateway factory.
Builds the gateway client for a tenant's provider from its stored config.
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from tenantpay.exceptions import ConfigurationError, ProviderError
from tenantpay.gateways.base import PaymentGateway
from tenantpay.gateways.stripe_provider import StripeProvider
from tenantpay.gateways.vipps_provider import build_vipps_provider
from tenantpay.models.payment import PaymentProvider
from tenantpay.models.payment_config import TenantPaymentConfig
from tenantpay.schemas.credentials import StripeCredentials, VippsCredentials
from tenantpay.services import vault
from tenantpay.services.payment_config_service import PaymentConfigService

logger = logging.getLogger(__name__)


def build_gateway(config: TenantPaymentConfig) -> Optional[PaymentGateway]:
    """
    Build a gateway client from a stored config.

    Returns:
        PaymentGateway instance, or None for providers without a remote API (CARD)

    Raises:
        CryptoError: If the stored credentials cannot be decrypted
        ConfigurationError: If the credentials are missing
    """
    if not config.encrypted_credentials:
        raise ConfigurationError(provider=config.provider.value)

    provider = PaymentProvider(config.provider)
    credentials = vault.decrypt_credentials(config.encrypted_credentials, provider)

    if provider == PaymentProvider.VIPPS and isinstance(credentials, VippsCredentials):
        return build_vipps_provider(
            credentials,
            tenant_id=config.tenant_id,
            test_mode=config.test_mode,
            webhook_secret=config.webhook_secret,
        )

    if provider == PaymentProvider.STRIPE and isinstance(credentials, StripeCredentials):
        return StripeProvider(credentials, tenant_id=config.tenant_id, test_mode=config.test_mode)

    logger.debug(f"No gateway client for provider {provider.value}")
    return None


async def get_gateway(
    db: AsyncSession,
    tenant_id: str,
    provider: PaymentProvider,
) -> Optional[PaymentGateway]:
    """
    Gateway for a tenant's enabled provider.

    Returns:
        PaymentGateway instance, or None if the provider is not configured,
        disabled or has no remote API
    """
    config = await PaymentConfigService.get_enabled_config(db, tenant_id, provider)
    if config is None:
        return None
    return build_gateway(config)


async def check_connection(
    db: AsyncSession,
    tenant_id: str,
    provider: PaymentProvider,
) -> Dict[str, Any]:
    """
    Exercise a tenant's provider credentials against the live API.

    Works on disabled configs too, so admins can verify before enabling.
    Provider faults are reported in the result, not raised.

    Raises:
        ConfigurationError: If the provider is not configured or has no remote API
        CryptoError: If the stored credentials cannot be decrypted
    """
    config = await PaymentConfigService.get_config(db, tenant_id, provider)
    if config is None:
        raise ConfigurationError(provider=PaymentProvider(provider).value)

    gateway = build_gateway(config)
    if gateway is None:
        raise ConfigurationError(
            f"{PaymentProvider(provider).value} has no connection to test",
            provider=PaymentProvider(provider).value,
        )

    try:
        result = await gateway.test_connection()
    except ProviderError as e:
        logger.warning(
            f"Connection test failed for {gateway.provider_name} (tenant {tenant_id}): {e.provider_message or e.message}",
            extra={"event": "connection_test_failed", "tenant_id": tenant_id, "provider": gateway.provider_name}
        )
        return {
            "success": False,
            "provider": config.provider,
            "test_mode": config.test_mode,
            "message": e.provider_message or e.message,
        }

    return {"success": True, **result, "provider": config.provider}
