"""
Provider credential shapes.

The set is closed: every provider maps to exactly one model, so parsing,
encryption and validation are exhaustive. Serialized with camelCase keys.
"""
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, RootModel, ValidationError

from tenantpay.models.payment import PaymentProvider


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid", frozen=True)


class VippsCredentials(_CamelModel):
    """Vipps eCom API credentials."""
    client_id: str = Field(..., alias="clientId", min_length=1)
    client_secret: str = Field(..., alias="clientSecret", min_length=1)
    subscription_key: str = Field(..., alias="subscriptionKey", min_length=1)  # Ocp-Apim-Subscription-Key
    merchant_serial_number: str = Field(..., alias="merchantSerialNumber", min_length=1)


class StripeCredentials(_CamelModel):
    """Stripe API keys for the tenant's own Stripe account."""
    secret_key: str = Field(..., alias="secretKey", min_length=1)
    publishable_key: str = Field(..., alias="publishableKey", min_length=1)
    webhook_secret: Optional[str] = Field(None, alias="webhookSecret")


class CardCredentials(RootModel[Dict[str, str]]):
    """Generic card processor, arbitrary key/value pairs."""


PaymentCredentials = Union[VippsCredentials, StripeCredentials, CardCredentials]

CREDENTIAL_MODELS = {
    PaymentProvider.VIPPS: VippsCredentials,
    PaymentProvider.STRIPE: StripeCredentials,
    PaymentProvider.CARD: CardCredentials,
}


def parse_credentials(provider: PaymentProvider, raw: Dict[str, Any]) -> PaymentCredentials:
    """
    Validate raw credentials for a provider.

    Raises:
        ValueError: If the provider is unknown or the payload has the wrong shape
    """
    model = CREDENTIAL_MODELS.get(PaymentProvider(provider))
    if model is None:
        raise ValueError(f"Unsupported payment provider: {provider}")
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) or "credentials" for err in e.errors())
        raise ValueError(f"Invalid {PaymentProvider(provider).value} credentials: {fields}") from e


def credentials_to_dict(credentials: PaymentCredentials) -> Dict[str, Any]:
    """Serialize credentials with their wire (camelCase) keys."""
    if isinstance(credentials, CardCredentials):
        return dict(credentials.root)
    return credentials.model_dump(by_alias=True, exclude_none=True)
