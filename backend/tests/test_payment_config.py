"""
Tests for the tenant payment config registry and the payments API.
"""
from datetime import datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
import stripe
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenantpay.exceptions import ConfigurationError, ProviderError
from tenantpay.gateways.factory import build_gateway, check_connection, get_gateway
from tenantpay.gateways.stripe_provider import StripeProvider
from tenantpay.gateways.vipps_provider import VippsProvider
from tenantpay.models.activity_log import ActivityLog
from tenantpay.models.order import Order
from tenantpay.models.payment import PaymentProvider, PaymentStatus, PaymentType
from tenantpay.models.payment_config import TenantPaymentConfig
from tenantpay.repositories.payment_repository import PaymentRepository
from tenantpay.services import vault
from tenantpay.services.payment_config_service import PaymentConfigService

from factories import OTHER_TENANT_ID, STRIPE_CREDENTIALS, TENANT_ID, VIPPS_CREDENTIALS


class TestPaymentConfigService:
    """Tests for PaymentConfigService."""

    @pytest.mark.asyncio
    async def test_upsert_encrypts_credentials(self, db_session: AsyncSession, vipps_config: TenantPaymentConfig):
        """Test credentials are stored encrypted and decrypt to the input."""
        assert "vipps-client-secret" not in vipps_config.encrypted_credentials

        credentials = vault.decrypt_credentials(vipps_config.encrypted_credentials, PaymentProvider.VIPPS)
        assert credentials.client_secret == "vipps-client-secret"
        assert vipps_config.merchant_serial_number == "123456"
        assert len(vipps_config.webhook_secret) == 64

    @pytest.mark.asyncio
    async def test_update_keeps_webhook_secret_and_syncs_msn(
        self, db_session: AsyncSession, vipps_config: TenantPaymentConfig
    ):
        """Test an update keeps the webhook secret and rewrites the plaintext serial number."""
        original_secret = vipps_config.webhook_secret

        updated = await PaymentConfigService.upsert(
            db_session,
            tenant_id=TENANT_ID,
            provider=PaymentProvider.VIPPS,
            enabled=False,
            test_mode=False,
            raw_credentials={**VIPPS_CREDENTIALS, "merchantSerialNumber": "654321"},
        )

        assert updated.id == vipps_config.id
        assert updated.webhook_secret == original_secret
        assert updated.merchant_serial_number == "654321"
        assert updated.enabled is False
        assert updated.test_mode is False
        credentials = vault.decrypt_credentials(updated.encrypted_credentials, PaymentProvider.VIPPS)
        assert credentials.merchant_serial_number == "654321"

    @pytest.mark.asyncio
    async def test_explicit_webhook_secret_replaces(self, db_session: AsyncSession, vipps_config: TenantPaymentConfig):
        updated = await PaymentConfigService.upsert(
            db_session,
            tenant_id=TENANT_ID,
            provider=PaymentProvider.VIPPS,
            enabled=True,
            test_mode=True,
            raw_credentials=VIPPS_CREDENTIALS,
            webhook_secret="rotated-secret",
        )

        assert updated.webhook_secret == "rotated-secret"

    @pytest.mark.asyncio
    async def test_invalid_credentials_rejected(self, db_session: AsyncSession):
        """Test credentials of the wrong shape are never stored."""
        with pytest.raises(ValueError):
            await PaymentConfigService.upsert(
                db_session,
                tenant_id=TENANT_ID,
                provider=PaymentProvider.STRIPE,
                enabled=True,
                test_mode=True,
                raw_credentials={"clientId": "x"},
            )

        assert await PaymentConfigService.get_config(db_session, TENANT_ID, PaymentProvider.STRIPE) is None

    @pytest.mark.asyncio
    async def test_default_display_name(self, db_session: AsyncSession):
        config = await PaymentConfigService.upsert(
            db_session,
            tenant_id=TENANT_ID,
            provider=PaymentProvider.CARD,
            enabled=True,
            test_mode=True,
            raw_credentials={},
        )

        assert config.display_name == "Card"
        assert config.merchant_serial_number is None

    @pytest.mark.asyncio
    async def test_toggle_and_enabled_lookup(self, db_session: AsyncSession, vipps_config: TenantPaymentConfig):
        """Test a disabled config is unavailable but still readable."""
        await PaymentConfigService.toggle(db_session, TENANT_ID, PaymentProvider.VIPPS, enabled=False)

        assert await PaymentConfigService.get_enabled_config(db_session, TENANT_ID, PaymentProvider.VIPPS) is None
        assert await PaymentConfigService.get_config(db_session, TENANT_ID, PaymentProvider.VIPPS) is not None

    @pytest.mark.asyncio
    async def test_toggle_missing_returns_none(self, db_session: AsyncSession):
        assert await PaymentConfigService.toggle(db_session, TENANT_ID, PaymentProvider.VIPPS, enabled=True) is None

    @pytest.mark.asyncio
    async def test_list_available_in_sort_order(
        self, db_session: AsyncSession, vipps_config: TenantPaymentConfig, stripe_config: TenantPaymentConfig
    ):
        """Test available providers are enabled ones in display order."""
        available = await PaymentConfigService.list_available(db_session, TENANT_ID)
        assert [c.provider for c in available] == [PaymentProvider.VIPPS, PaymentProvider.STRIPE]

        await PaymentConfigService.toggle(db_session, TENANT_ID, PaymentProvider.VIPPS, enabled=False)
        available = await PaymentConfigService.list_available(db_session, TENANT_ID)
        assert [c.provider for c in available] == [PaymentProvider.STRIPE]

    @pytest.mark.asyncio
    async def test_configs_are_tenant_scoped(self, db_session: AsyncSession, vipps_config: TenantPaymentConfig):
        """Test one tenant never sees another tenant's config."""
        assert await PaymentConfigService.get_config(db_session, OTHER_TENANT_ID, PaymentProvider.VIPPS) is None
        assert await PaymentConfigService.list_configs(db_session, OTHER_TENANT_ID) == []

    @pytest.mark.asyncio
    async def test_delete(self, db_session: AsyncSession, vipps_config: TenantPaymentConfig):
        assert await PaymentConfigService.delete(db_session, TENANT_ID, PaymentProvider.VIPPS) is True
        assert await PaymentConfigService.delete(db_session, TENANT_ID, PaymentProvider.VIPPS) is False

    @pytest.mark.asyncio
    async def test_changes_are_audited(self, db_session: AsyncSession, vipps_config: TenantPaymentConfig):
        await PaymentConfigService.toggle(db_session, TENANT_ID, PaymentProvider.VIPPS, enabled=False)

        result = await db_session.execute(
            select(ActivityLog).where(ActivityLog.entity_id == vipps_config.id)
        )
        actions = sorted(entry.action for entry in result.scalars().all())
        assert actions == ["CREATE", "UPDATE"]


class TestGatewayFactory:
    """Tests for building gateways from stored configs."""

    @pytest.mark.asyncio
    async def test_get_gateway(
        self, db_session: AsyncSession, vipps_config: TenantPaymentConfig, stripe_config: TenantPaymentConfig
    ):
        vipps = await get_gateway(db_session, TENANT_ID, PaymentProvider.VIPPS)
        stripe_gateway = await get_gateway(db_session, TENANT_ID, PaymentProvider.STRIPE)

        assert isinstance(vipps, VippsProvider)
        assert vipps.webhook_secret == vipps_config.webhook_secret
        assert vipps.credentials.merchant_serial_number == "123456"
        assert isinstance(stripe_gateway, StripeProvider)
        assert stripe_gateway.credentials.secret_key == "sk_test_tenant"

    @pytest.mark.asyncio
    async def test_get_gateway_disabled_or_missing(self, db_session: AsyncSession, vipps_config: TenantPaymentConfig):
        await PaymentConfigService.toggle(db_session, TENANT_ID, PaymentProvider.VIPPS, enabled=False)

        assert await get_gateway(db_session, TENANT_ID, PaymentProvider.VIPPS) is None
        assert await get_gateway(db_session, TENANT_ID, PaymentProvider.STRIPE) is None

    def test_card_has_no_gateway(self):
        config = TenantPaymentConfig(
            tenant_id=TENANT_ID,
            provider=PaymentProvider.CARD,
            test_mode=True,
            encrypted_credentials=vault.encrypt('{"terminal": "T1"}'),
        )
        assert build_gateway(config) is None

    def test_missing_credentials(self):
        config = TenantPaymentConfig(tenant_id=TENANT_ID, provider=PaymentProvider.STRIPE, test_mode=True)

        with pytest.raises(ConfigurationError):
            build_gateway(config)

    @pytest.mark.asyncio
    async def test_check_connection_success(self, db_session: AsyncSession, vipps_config: TenantPaymentConfig, monkeypatch):
        """Test the connection check works on a disabled config."""
        await PaymentConfigService.toggle(db_session, TENANT_ID, PaymentProvider.VIPPS, enabled=False)
        monkeypatch.setattr(VippsProvider, "get_access_token", AsyncMock(return_value="token"))

        result = await check_connection(db_session, TENANT_ID, PaymentProvider.VIPPS)

        assert result["success"] is True
        assert result["provider"] == PaymentProvider.VIPPS
        assert result["test_mode"] is True

    @pytest.mark.asyncio
    async def test_check_connection_failure(self, db_session: AsyncSession, vipps_config: TenantPaymentConfig, monkeypatch):
        """Test provider faults are reported, not raised."""
        error = ProviderError("Vipps token failed", provider="vipps", provider_status=401,
                              provider_message="Invalid client secret")
        monkeypatch.setattr(VippsProvider, "get_access_token", AsyncMock(side_effect=error))

        result = await check_connection(db_session, TENANT_ID, PaymentProvider.VIPPS)

        assert result["success"] is False
        assert result["message"] == "Invalid client secret"

    @pytest.mark.asyncio
    async def test_check_connection_not_configured(self, db_session: AsyncSession):
        with pytest.raises(ConfigurationError):
            await check_connection(db_session, TENANT_ID, PaymentProvider.STRIPE)


class TestConfigAPI:
    """Tests for /api/payments/config endpoints."""

    @pytest.mark.asyncio
    async def test_upsert_and_list(self, client: AsyncClient):
        """Test an admin can configure a provider and credentials never come back."""
        response = await client.post("/api/payments/config", json={
            "provider": "VIPPS",
            "enabled": True,
            "testMode": True,
            "credentials": VIPPS_CREDENTIALS,
            "displayName": "Vipps",
        })

        assert response.status_code == 200
        data = response.json()
        assert data["provider"] == "VIPPS"
        assert data["has_credentials"] is True
        assert data["merchant_serial_number"] == "123456"
        assert "credentials" not in data
        assert "encrypted_credentials" not in data
        assert "webhook_secret" not in data

        response = await client.get("/api/payments/config")
        assert response.status_code == 200
        assert [c["provider"] for c in response.json()] == ["VIPPS"]
        assert "vipps-client-secret" not in response.text

    @pytest.mark.asyncio
    async def test_upsert_invalid_credentials(self, client: AsyncClient):
        response = await client.post("/api/payments/config", json={
            "provider": "STRIPE",
            "enabled": True,
            "credentials": {"secretKey": "sk_test"},
        })

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_customer_cannot_configure(self, customer_client: AsyncClient):
        """Test config endpoints are admin-only."""
        response = await customer_client.post("/api/payments/config", json={
            "provider": "STRIPE",
            "enabled": True,
            "credentials": STRIPE_CREDENTIALS,
        })
        assert response.status_code == 403

        response = await customer_client.get("/api/payments/config")
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_toggle(self, client: AsyncClient, vipps_config: TenantPaymentConfig):
        response = await client.put("/api/payments/config/VIPPS/toggle", json={"enabled": False})

        assert response.status_code == 200
        assert response.json()["enabled"] is False

    @pytest.mark.asyncio
    async def test_toggle_missing(self, client: AsyncClient):
        response = await client.put("/api/payments/config/STRIPE/toggle", json={"enabled": True})

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_delete(self, client: AsyncClient, vipps_config: TenantPaymentConfig):
        response = await client.delete("/api/payments/config/VIPPS")
        assert response.status_code == 200
        assert response.json() == {"success": True}

        response = await client.delete("/api/payments/config/VIPPS")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_connection_test_route(self, client: AsyncClient, stripe_config: TenantPaymentConfig, monkeypatch):
        monkeypatch.setattr(stripe.PaymentIntent, "create", MagicMock(
            return_value=stripe.PaymentIntent.construct_from({"id": "pi_conn_test"}, "sk")
        ))
        monkeypatch.setattr(stripe.PaymentIntent, "cancel", MagicMock(
            return_value=stripe.PaymentIntent.construct_from({"id": "pi_conn_test", "status": "canceled"}, "sk")
        ))

        response = await client.post("/api/payments/config/STRIPE/test")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["provider"] == "STRIPE"

    @pytest.mark.asyncio
    async def test_connection_test_not_configured(self, client: AsyncClient):
        response = await client.post("/api/payments/config/VIPPS/test")

        assert response.status_code == 400
        assert response.json()["error"] == "PROVIDER_NOT_CONFIGURED"


class TestCheckoutAPI:
    """Tests for checkout endpoints."""

    @pytest.mark.asyncio
    async def test_available_providers(
        self, customer_client: AsyncClient, vipps_config: TenantPaymentConfig, stripe_config: TenantPaymentConfig
    ):
        response = await customer_client.get("/api/payments/available")

        assert response.status_code == 200
        assert [p["provider"] for p in response.json()] == ["VIPPS", "STRIPE"]

    @pytest.mark.asyncio
    async def test_vipps_initiate(
        self, customer_client: AsyncClient, vipps_config: TenantPaymentConfig, test_order: Order, monkeypatch
    ):
        """Test checkout returns the landing page and a PENDING payment."""
        sent = {}

        async def fake_request(self, method, path, operation, headers=None, json=None):
            if operation == "token":
                return {"access_token": "tok", "expires_in": "3600"}
            sent["body"] = json
            return {"orderId": json["transaction"]["orderId"], "url": "https://apitest.vipps.no/landing"}

        monkeypatch.setattr(VippsProvider, "_request", fake_request)

        response = await customer_client.post("/api/payments/vipps/initiate", json={
            "amount": "99.50",
            "phoneNumber": "4791234567",
            "orderId": test_order.id,
            "orderReference": "ORD-vipps-1",
        })

        assert response.status_code == 200
        data = response.json()
        assert data["url"] == "https://apitest.vipps.no/landing"
        assert data["order_id"] == "ORD-vipps-1"
        assert sent["body"]["transaction"]["amount"] == 9950
        assert sent["body"]["merchantInfo"]["authToken"] == vipps_config.webhook_secret

        payments = await customer_client.get("/api/payments")
        listed = payments.json()["payments"]
        assert len(listed) == 1
        assert listed[0]["status"] == "PENDING"
        assert listed[0]["external_id"] == "ORD-vipps-1"

    @pytest.mark.asyncio
    async def test_vipps_initiate_provider_failure(
        self, customer_client: AsyncClient, vipps_config: TenantPaymentConfig, monkeypatch
    ):
        """Test a provider fault becomes a localized 502 with the provider's text."""
        error = ProviderError("Vipps initiate failed", provider="vipps", provider_status=400,
                              provider_message="Invalid phone number")
        monkeypatch.setattr(VippsProvider, "_request", AsyncMock(side_effect=error))

        response = await customer_client.post("/api/payments/vipps/initiate", json={"amount": "10"})

        assert response.status_code == 502
        assert "Invalid phone number" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_vipps_not_configured(self, customer_client: AsyncClient):
        response = await customer_client.post("/api/payments/vipps/initiate", json={"amount": "10"})

        assert response.status_code == 400
        assert response.json()["error"] == "PROVIDER_NOT_CONFIGURED"

    @pytest.mark.asyncio
    async def test_foreign_order_rejected(
        self, customer_client: AsyncClient, db_session: AsyncSession, vipps_config: TenantPaymentConfig
    ):
        """Test checkout cannot link another tenant's order."""
        order = Order(
            tenant_id=OTHER_TENANT_ID,
            user_id="someone",
            order_number="ORD-OTHER",
            total_amount=Decimal("10.00"),
        )
        db_session.add(order)
        await db_session.commit()

        response = await customer_client.post("/api/payments/vipps/initiate", json={
            "amount": "10", "orderId": order.id,
        })

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_amount(self, customer_client: AsyncClient, vipps_config: TenantPaymentConfig):
        response = await customer_client.post("/api/payments/vipps/initiate", json={"amount": "0"})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_stripe_create_intent(
        self, customer_client: AsyncClient, stripe_config: TenantPaymentConfig, monkeypatch
    ):
        create = MagicMock(return_value=stripe.PaymentIntent.construct_from(
            {"id": "pi_api", "status": "requires_payment_method", "client_secret": "pi_api_secret"}, "sk"
        ))
        monkeypatch.setattr(stripe.PaymentIntent, "create", create)

        response = await customer_client.post("/api/payments/stripe/create-intent", json={"amount": "250"})

        assert response.status_code == 200
        data = response.json()
        assert data["client_secret"] == "pi_api_secret"
        assert data["payment_intent_id"] == "pi_api"
        assert create.call_args.kwargs["amount"] == 25000
        assert create.call_args.kwargs["receipt_email"] == "kunde@example.com"
        assert "capture_method" not in create.call_args.kwargs

    @pytest.mark.asyncio
    async def test_stripe_create_intent_for_manual_capture(
        self, customer_client: AsyncClient, stripe_config: TenantPaymentConfig, monkeypatch
    ):
        create = MagicMock(return_value=stripe.PaymentIntent.construct_from(
            {"id": "pi_hold", "status": "requires_payment_method", "client_secret": "pi_hold_secret"}, "sk"
        ))
        monkeypatch.setattr(stripe.PaymentIntent, "create", create)

        response = await customer_client.post(
            "/api/payments/stripe/create-intent", json={"amount": "250", "captureMethod": "manual"}
        )

        assert response.status_code == 200
        assert create.call_args.kwargs["capture_method"] == "manual"

    @pytest.mark.asyncio
    async def test_stripe_create_intent_rejects_unknown_capture_method(
        self, customer_client: AsyncClient, stripe_config: TenantPaymentConfig
    ):
        response = await customer_client.post(
            "/api/payments/stripe/create-intent", json={"amount": "250", "captureMethod": "later"}
        )

        assert response.status_code == 422


class TestPaymentsAPI:
    """Tests for listing and admin reconciliation."""

    @pytest.mark.asyncio
    async def test_customer_sees_own_payments(
        self, customer_client: AsyncClient, db_session: AsyncSession, make_payment
    ):
        await make_payment(PaymentProvider.VIPPS, "mine")
        other = await make_payment(PaymentProvider.VIPPS, "theirs")
        other.user_id = "someone-else"
        await db_session.commit()

        response = await customer_client.get("/api/payments")

        assert [p["external_id"] for p in response.json()["payments"]] == ["mine"]

    @pytest.mark.asyncio
    async def test_admin_sees_tenant_payments_only(self, client: AsyncClient, make_payment):
        await make_payment(PaymentProvider.VIPPS, "tenant-payment")
        await make_payment(PaymentProvider.VIPPS, "other-tenant-payment", tenant_id=OTHER_TENANT_ID)

        response = await client.get("/api/payments")

        assert [p["external_id"] for p in response.json()["payments"]] == ["tenant-payment"]

    @pytest.mark.asyncio
    async def test_status_filter(self, client: AsyncClient, make_payment):
        await make_payment(PaymentProvider.VIPPS, "pending-one")

        response = await client.get("/api/payments", params={"status": "COMPLETED"})

        assert response.json()["payments"] == []

    @pytest.mark.asyncio
    async def test_sync_route(
        self, client: AsyncClient, stripe_config: TenantPaymentConfig, make_payment, monkeypatch
    ):
        """Test admin sync applies the provider status, even while the provider is disabled."""
        payment = await make_payment(PaymentProvider.STRIPE, "pi_admin_sync")
        await client.put("/api/payments/config/STRIPE/toggle", json={"enabled": False})
        monkeypatch.setattr(stripe.PaymentIntent, "retrieve", MagicMock(
            return_value=stripe.PaymentIntent.construct_from({"id": "pi_admin_sync", "status": "succeeded"}, "sk")
        ))

        response = await client.post(f"/api/payments/{payment.id}/sync")

        assert response.status_code == 200
        data = response.json()
        assert data["applied"] is True
        assert data["payment"]["status"] == PaymentStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_customer_cannot_sync(self, customer_client: AsyncClient, make_payment):
        payment = await make_payment(PaymentProvider.STRIPE, "pi_forbidden")

        response = await customer_client.post(f"/api/payments/{payment.id}/sync")

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_other_tenant_payment_not_found(self, client: AsyncClient, stripe_config, make_payment):
        payment = await make_payment(PaymentProvider.STRIPE, "pi_foreign", tenant_id=OTHER_TENANT_ID)

        response = await client.post(f"/api/payments/{payment.id}/sync")

        assert response.status_code == 404


class TestPaymentStatistics:
    """Tests for revenue statistics."""

    @pytest.fixture
    def complete(self, db_session: AsyncSession):
        async def _complete(payment, paid_at: datetime, payment_type: PaymentType = PaymentType.ORDER):
            payment.status = PaymentStatus.COMPLETED
            payment.paid_at = paid_at
            payment.type = payment_type
            await db_session.commit()
            return payment

        return _complete

    @pytest.mark.asyncio
    async def test_totals_over_completed_payments(
        self, db_session: AsyncSession, make_payment, complete
    ):
        """Test only COMPLETED payments of the tenant count."""
        await complete(await make_payment(PaymentProvider.VIPPS, "stat-1", amount=Decimal("100.00")), datetime(2026, 3, 1))
        await complete(
            await make_payment(PaymentProvider.STRIPE, "stat-2", amount=Decimal("250.50")),
            datetime(2026, 3, 2),
            PaymentType.MEMBERSHIP,
        )
        await make_payment(PaymentProvider.VIPPS, "stat-pending", amount=Decimal("999.00"))
        await complete(
            await make_payment(PaymentProvider.VIPPS, "stat-foreign", amount=Decimal("40.00"), tenant_id=OTHER_TENANT_ID),
            datetime(2026, 3, 1),
        )

        stats = await PaymentRepository.get_statistics(db_session, TENANT_ID)

        assert stats["total_transactions"] == 2
        assert stats["total_revenue"] == Decimal("350.50")
        assert stats["by_type"] == {"ORDER": Decimal("100.00"), "MEMBERSHIP": Decimal("250.50")}
        assert stats["average_transaction"] == Decimal("175.25")

    @pytest.mark.asyncio
    async def test_date_range_needs_both_bounds(self, db_session: AsyncSession, make_payment, complete):
        await complete(await make_payment(PaymentProvider.VIPPS, "march", amount=Decimal("10.00")), datetime(2026, 3, 15))
        await complete(await make_payment(PaymentProvider.VIPPS, "april", amount=Decimal("20.00")), datetime(2026, 4, 15))

        march = await PaymentRepository.get_statistics(
            db_session, TENANT_ID, start_date=datetime(2026, 3, 1), end_date=datetime(2026, 3, 31)
        )
        open_ended = await PaymentRepository.get_statistics(db_session, TENANT_ID, start_date=datetime(2026, 4, 1))

        assert march["total_revenue"] == Decimal("10.00")
        assert march["total_transactions"] == 1
        assert open_ended["total_transactions"] == 2

    @pytest.mark.asyncio
    async def test_no_payments(self, db_session: AsyncSession):
        stats = await PaymentRepository.get_statistics(db_session, TENANT_ID)

        assert stats["total_transactions"] == 0
        assert stats["total_revenue"] == Decimal("0")
        assert stats["by_type"] == {}
        assert stats["average_transaction"] == Decimal("0")

    @pytest.mark.asyncio
    async def test_statistics_route(self, client: AsyncClient, make_payment, complete):
        await complete(await make_payment(PaymentProvider.VIPPS, "route-1", amount=Decimal("99.50")), datetime(2026, 5, 1))

        response = await client.get(
            "/api/payments/statistics",
            params={"startDate": "2026-05-01T00:00:00", "endDate": "2026-05-31T23:59:59"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total_transactions"] == 1
        assert Decimal(data["total_revenue"]) == Decimal("99.50")
        assert Decimal(data["by_type"]["ORDER"]) == Decimal("99.50")
        assert Decimal(data["average_transaction"]) == Decimal("99.50")

    @pytest.mark.asyncio
    async def test_customer_cannot_read_statistics(self, customer_client: AsyncClient):
        response = await customer_client.get("/api/payments/statistics")

        assert response.status_code == 403
