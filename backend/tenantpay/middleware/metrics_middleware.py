"""
ASGI middleware for tracking HTTP request metrics.
Records request count, duration, and errors.
"""
import re
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from tenantpay.utils.metrics import http_requests_total, http_request_duration_seconds, errors_total

UUID_PATTERN = re.compile(
    r'[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}',
    flags=re.IGNORECASE
)
# Vipps callbacks carry the orderId in the path: /vipps/v2/payments/{orderId}
VIPPS_CALLBACK_PATTERN = re.compile(r'(/v2/payments/)[^/]+')
NUMERIC_ID_PATTERN = re.compile(r'/\d+(?=/|$)')


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware to track HTTP metrics for Prometheus."""

    async def dispatch(self, request: Request, call_next):
        """Process request and record metrics."""
        start_time = time.time()

        # Skip metrics endpoint to avoid recursion
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        normalized_path = self._normalize_path(request.url.path)

        try:
            response = await call_next(request)
        except Exception:
            errors_total.labels(error_type="exception").inc()
            raise

        status_code = response.status_code
        http_requests_total.labels(
            method=method,
            path=normalized_path,
            status=status_code
        ).inc()
        http_request_duration_seconds.labels(
            method=method,
            path=normalized_path
        ).observe(time.time() - start_time)

        # Track errors (4xx and 5xx)
        if status_code >= 400:
            errors_total.labels(error_type=f"{status_code // 100}xx").inc()

        return response

    @staticmethod
    def _normalize_path(path: str) -> str:
        """
        Normalize path to reduce cardinality.
        Replaces UUIDs, Vipps order ids and numeric IDs with placeholders.
        """
        path = UUID_PATTERN.sub('{id}', path)
        path = VIPPS_CALLBACK_PATTERN.sub(r'\1{order_id}', path)
        return NUMERIC_ID_PATTERN.sub('/{id}', path)
