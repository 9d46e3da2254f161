"""
Payment layer exceptions.

Every fault raised by the payment layer derives from PaymentError so API
handlers can render it uniformly without leaking stack detail.
"""
from typing import Any, Dict, Optional


class PaymentError(Exception):
    """
    Base payment layer error.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for API responses
        status_code: HTTP status code for this error type
        context: Additional context data about the error
    """

    def __init__(
        self,
        message: str,
        error_code: str = "PAYMENT_ERROR",
        status_code: int = 400,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.context = context or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error": self.error_code,
            "message": self.message,
        }


class ConfigurationError(PaymentError):
    """Provider config missing, disabled or invalid for the tenant."""

    def __init__(self, message: str = "Payment provider not configured", provider: Optional[str] = None):
        context = {"provider": provider} if provider else {}
        super().__init__(message, "PROVIDER_NOT_CONFIGURED", status_code=400, context=context)


class CryptoError(PaymentError):
    """Encryption or decryption failed. Fatal for the current operation."""

    def __init__(self, message: str = "Failed to decrypt data"):
        super().__init__(message, "CRYPTO_ERROR", status_code=500)


class ProviderError(PaymentError):
    """Network, timeout or HTTP error from an external payment gateway."""

    def __init__(
        self,
        message: str,
        provider: str,
        operation: Optional[str] = None,
        provider_status: Optional[int] = None,
        provider_message: Optional[str] = None,
    ):
        context: Dict[str, Any] = {"provider": provider}
        if operation:
            context["operation"] = operation
        if provider_status is not None:
            context["provider_status"] = provider_status
        super().__init__(message, "PROVIDER_ERROR", status_code=502, context=context)
        self.provider = provider
        self.operation = operation
        self.provider_status = provider_status
        self.provider_message = provider_message
