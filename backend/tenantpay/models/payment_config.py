"""
Per-tenant payment provider configuration.
Credentials live only in encrypted form, see tenantpay.services.vault.
"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, Enum, Text, UniqueConstraint

from tenantpay.models.base import Base, generate_uuid, utcnow
from tenantpay.models.payment import PaymentProvider


class TenantPaymentConfig(Base):
    """One row per (tenant, provider)."""

    __tablename__ = "tenant_payment_configs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)
    provider = Column(Enum(PaymentProvider), nullable=False)

    enabled = Column(Boolean, nullable=False, default=False)
    test_mode = Column(Boolean, nullable=False, default=True)
    display_name = Column(String(100), nullable=True)
    sort_order = Column(Integer, nullable=False, default=0)

    encrypted_credentials = Column(Text, nullable=False)  # iv:authTag:ciphertext
    webhook_secret = Column(String(128), nullable=False)
    # Vipps only. Plaintext copy of the MSN inside encrypted_credentials,
    # needed for the Merchant-Serial-Number request header
    merchant_serial_number = Column(String(20), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "provider", name="uq_tenant_payment_config_provider"),
    )

    def __repr__(self):
        return (
            f"<TenantPaymentConfig(tenant_id={self.tenant_id}, provider={self.provider}, "
            f"enabled={self.enabled}, test_mode={self.test_mode})>"
        )
