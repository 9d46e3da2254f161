"""
Production logging utility for structured JSON logging.

Provides event-specific logging functions with mandatory fields:
- timestamp (ISO8601)
- level
- service
- event

Optional fields (included when applicable):
- tenant_id
- payment_id
- provider
- external_id
- duration_ms

Credentials, tokens and decrypted blobs must never be passed to these helpers.

Usage:
    from tenantpay.utils.logging import configure_logging, log_provider_request

    configure_logging('tenantpay-api', 'INFO')
    log_provider_request(logger, provider='vipps', operation='initiate', duration_ms=120.4)
"""
import logging
import sys
from typing import Optional, Dict, Any
from pythonjsonlogger import jsonlogger


class StructuredLogger:
    """Structured JSON logger with mandatory fields."""

    _service_name = None
    _configured = False

    @classmethod
    def configure(cls, service_name: str, log_level: str = "INFO"):
        """
        Configure structured JSON logging for the application.

        Args:
            service_name: Service identifier
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        """
        if cls._configured:
            return  # Already configured

        cls._service_name = service_name

        # Remove default handlers
        root_logger = logging.getLogger()
        root_logger.handlers = []

        formatter = jsonlogger.JsonFormatter(
            '%(timestamp)s %(level)s %(name)s %(message)s',
            timestamp=True,
            json_ensure_ascii=False
        )

        # Console handler (for docker logs)
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)

        root_logger.addHandler(handler)
        root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

        # Add service name to all log records via filter
        class ServiceFilter(logging.Filter):
            def filter(self, record):
                record.service = cls._service_name
                return True

        handler.addFilter(ServiceFilter())
        cls._configured = True


def _build_log_extra(
    event: str,
    tenant_id: Optional[str] = None,
    payment_id: Optional[str] = None,
    duration_ms: Optional[float] = None,
    **kwargs
) -> Dict[str, Any]:
    """
    Build extra fields for structured logging.

    Args:
        event: Event name (mandatory)
        tenant_id: Optional tenant ID
        payment_id: Optional payment ID
        duration_ms: Optional duration in milliseconds
        **kwargs: Additional fields

    Returns:
        Dictionary of extra fields
    """
    extra = {
        "event": event,
        **kwargs
    }

    if tenant_id:
        extra["tenant_id"] = tenant_id
    if payment_id:
        extra["payment_id"] = payment_id
    if duration_ms is not None:
        extra["duration_ms"] = round(duration_ms, 2)

    return extra


# Provider event functions

def log_provider_request(
    logger: logging.Logger,
    provider: str,
    operation: str,
    duration_ms: Optional[float] = None,
    tenant_id: Optional[str] = None,
    **kwargs
):
    """
    Log a payment provider request.

    Args:
        logger: Logger instance
        provider: Provider name (vipps, stripe) (required)
        operation: Operation name (token, initiate, capture, ...) (required)
        duration_ms: Optional duration in milliseconds
        tenant_id: Optional tenant ID
        **kwargs: Additional fields
    """
    extra = _build_log_extra(
        event="provider_request",
        tenant_id=tenant_id,
        duration_ms=duration_ms,
        provider=provider,
        operation=operation,
        **kwargs
    )

    logger.info(f"Provider request: {provider}.{operation}", extra=extra)


def log_provider_failure(
    logger: logging.Logger,
    provider: str,
    operation: str,
    error: str,
    duration_ms: Optional[float] = None,
    tenant_id: Optional[str] = None,
    include_traceback: bool = False,
    **kwargs
):
    """
    Log a payment provider failure.

    Stack traces are optional, the provider's message is usually enough.
    """
    extra = _build_log_extra(
        event="provider_failure",
        tenant_id=tenant_id,
        duration_ms=duration_ms,
        provider=provider,
        operation=operation,
        error=str(error),
        **kwargs
    )

    message = f"Provider failure: {provider}.{operation} - {error}"

    if include_traceback:
        exc_info = sys.exc_info()
        if exc_info[0] is not None:
            logger.error(message, extra=extra, exc_info=exc_info)
            return
    logger.error(message, extra=extra)


# Payment event functions

def log_payment_transition(
    logger: logging.Logger,
    payment_id: str,
    tenant_id: str,
    provider: str,
    from_status: str,
    to_status: str,
    applied: bool,
    **kwargs
):
    """
    Log a payment status transition attempt.

    Args:
        logger: Logger instance
        payment_id: Payment ID (required)
        tenant_id: Tenant ID (required)
        provider: Provider name (required)
        from_status: Status before the attempt
        to_status: Requested status
        applied: False when the transition was a repeat or a regression
        **kwargs: Additional fields
    """
    extra = _build_log_extra(
        event="payment_transition",
        tenant_id=tenant_id,
        payment_id=payment_id,
        provider=provider,
        from_status=from_status,
        to_status=to_status,
        applied=applied,
        **kwargs
    )

    if applied:
        logger.info(f"Payment {payment_id}: {from_status} -> {to_status}", extra=extra)
    else:
        logger.info(
            f"Payment {payment_id}: ignored {from_status} -> {to_status}",
            extra=extra
        )


# Webhook event functions

def log_webhook_received(
    logger: logging.Logger,
    provider: str,
    event_type: str,
    external_id: Optional[str] = None,
    **kwargs
):
    """Log an inbound provider webhook."""
    extra = _build_log_extra(
        event="webhook_received",
        provider=provider,
        event_type=event_type,
        external_id=external_id,
        **kwargs
    )

    logger.info(f"Webhook received: {provider} {event_type}", extra=extra)


def log_webhook_ignored(
    logger: logging.Logger,
    provider: str,
    event_type: str,
    reason: str,
    external_id: Optional[str] = None,
    **kwargs
):
    """
    Log a webhook that was acknowledged without effect.

    Args:
        logger: Logger instance
        provider: Provider name (required)
        event_type: Provider event type or status (required)
        reason: Why it was ignored, e.g. payment_not_found, unhandled_event
        external_id: Correlation identifier, if any
        **kwargs: Additional fields
    """
    extra = _build_log_extra(
        event="webhook_ignored",
        provider=provider,
        event_type=event_type,
        external_id=external_id,
        reason=reason,
        **kwargs
    )

    logger.warning(
        f"Webhook ignored: {provider} {event_type} ({reason})",
        extra=extra
    )


def configure_logging(service_name: str, log_level: str = "INFO"):
    """Configure logging (alias for StructuredLogger.configure)."""
    StructuredLogger.configure(service_name, log_level)
