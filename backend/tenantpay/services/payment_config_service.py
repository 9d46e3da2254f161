"""
Tenant payment configuration registry.
Per-tenant, per-provider enable flag, test mode and encrypted credentials.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenantpay.models.base import utcnow
from tenantpay.models.payment import PaymentProvider
from tenantpay.models.payment_config import TenantPaymentConfig
from tenantpay.schemas.credentials import VippsCredentials, parse_credentials
from tenantpay.services import vault
from tenantpay.services.audit_service import AuditService

logger = logging.getLogger(__name__)


class PaymentConfigService:
    """Service for tenant payment provider configuration."""

    @staticmethod
    async def get_config(
        db: AsyncSession,
        tenant_id: str,
        provider: PaymentProvider,
    ) -> Optional[TenantPaymentConfig]:
        """Get a tenant's config for a provider, enabled or not."""
        result = await db.execute(
            select(TenantPaymentConfig)
            .where(TenantPaymentConfig.tenant_id == tenant_id)
            .where(TenantPaymentConfig.provider == provider)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_enabled_config(
        db: AsyncSession,
        tenant_id: str,
        provider: PaymentProvider,
    ) -> Optional[TenantPaymentConfig]:
        """
        Get the config only if it exists and is enabled.

        None means "provider unavailable for this tenant", not a fault.
        """
        config = await PaymentConfigService.get_config(db, tenant_id, provider)
        if config is None or not config.enabled:
            return None
        return config

    @staticmethod
    async def list_configs(db: AsyncSession, tenant_id: str) -> List[TenantPaymentConfig]:
        """All of a tenant's configs, in display order."""
        result = await db.execute(
            select(TenantPaymentConfig)
            .where(TenantPaymentConfig.tenant_id == tenant_id)
            .order_by(TenantPaymentConfig.sort_order, TenantPaymentConfig.provider)
        )
        return list(result.scalars().all())

    @staticmethod
    async def list_available(db: AsyncSession, tenant_id: str) -> List[TenantPaymentConfig]:
        """Enabled configs for checkout UIs."""
        configs = await PaymentConfigService.list_configs(db, tenant_id)
        return [c for c in configs if c.enabled]

    @staticmethod
    async def upsert(
        db: AsyncSession,
        tenant_id: str,
        provider: PaymentProvider,
        enabled: bool,
        test_mode: bool,
        raw_credentials: Dict[str, Any],
        display_name: Optional[str] = None,
        sort_order: int = 0,
        webhook_secret: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> TenantPaymentConfig:
        """
        Create or update the (tenant, provider) config.

        Credentials are validated for the provider and encrypted before
        storage. For Vipps the merchant serial number is also stored in the
        clear and rewritten on every update so both copies agree. The webhook
        secret is generated on creation and kept unless webhook_secret is given.

        Raises:
            ValueError: If the credentials do not match the provider's shape
            CryptoError: If encryption fails
        """
        provider = PaymentProvider(provider)
        credentials = parse_credentials(provider, raw_credentials)
        encrypted = vault.encrypt_credentials(credentials)
        merchant_serial_number = (
            credentials.merchant_serial_number if isinstance(credentials, VippsCredentials) else None
        )

        config = await PaymentConfigService.get_config(db, tenant_id, provider)
        created = config is None
        if created:
            config = TenantPaymentConfig(
                tenant_id=tenant_id,
                provider=provider,
                webhook_secret=webhook_secret or vault.generate_secure_token(),
            )
            db.add(config)
        elif webhook_secret:
            config.webhook_secret = webhook_secret

        config.enabled = enabled
        config.test_mode = test_mode
        config.display_name = display_name or provider.value.capitalize()
        config.sort_order = sort_order
        config.encrypted_credentials = encrypted
        config.merchant_serial_number = merchant_serial_number
        config.updated_at = utcnow()

        await db.commit()
        await db.refresh(config)

        logger.info(
            f"{'Created' if created else 'Updated'} {provider.value} config for tenant {tenant_id}",
            extra={"event": "payment_config_upserted", "tenant_id": tenant_id, "provider": provider.value}
        )
        await AuditService.record(
            db,
            tenant_id=tenant_id,
            user_id=user_id,
            action="CREATE" if created else "UPDATE",
            entity_type="PAYMENT_CONFIG",
            entity_id=config.id,
            description=f"{provider.value} payment config {'created' if created else 'updated'}",
        )
        return config

    @staticmethod
    async def toggle(
        db: AsyncSession,
        tenant_id: str,
        provider: PaymentProvider,
        enabled: bool,
        user_id: Optional[str] = None,
    ) -> Optional[TenantPaymentConfig]:
        """Enable or disable a provider. Returns None if it was never configured."""
        config = await PaymentConfigService.get_config(db, tenant_id, provider)
        if config is None:
            return None

        config.enabled = enabled
        config.updated_at = utcnow()
        await db.commit()
        await db.refresh(config)

        await AuditService.record(
            db,
            tenant_id=tenant_id,
            user_id=user_id,
            action="UPDATE",
            entity_type="PAYMENT_CONFIG",
            entity_id=config.id,
            description=f"{config.provider.value} {'enabled' if enabled else 'disabled'}",
        )
        return config

    @staticmethod
    async def delete(
        db: AsyncSession,
        tenant_id: str,
        provider: PaymentProvider,
        user_id: Optional[str] = None,
    ) -> bool:
        """Delete a provider config. Returns False if there was none."""
        config = await PaymentConfigService.get_config(db, tenant_id, provider)
        if config is None:
            return False

        config_id = config.id
        await db.delete(config)
        await db.commit()

        await AuditService.record(
            db,
            tenant_id=tenant_id,
            user_id=user_id,
            action="DELETE",
            entity_type="PAYMENT_CONFIG",
            entity_id=config_id,
            description=f"{PaymentProvider(provider).value} payment config deleted",
        )
        return True
