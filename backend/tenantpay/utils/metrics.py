"""
Prometheus metrics definitions.
All metrics are registered here and can be imported by other modules.
"""
from prometheus_client import Counter, Histogram

# HTTP request metrics
http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'path', 'status']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'path'],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Error metrics
errors_total = Counter(
    'errors_total',
    'Total errors',
    ['error_type']
)

# Payment provider metrics
payment_provider_requests_total = Counter(
    'payment_provider_requests_total',
    'Total payment provider requests',
    ['provider', 'operation']
)

payment_provider_failures_total = Counter(
    'payment_provider_failures_total',
    'Total payment provider failures',
    ['provider', 'operation']
)

payment_provider_latency_seconds = Histogram(
    'payment_provider_latency_seconds',
    'Payment provider request latency in seconds',
    ['provider', 'operation'],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0]
)

# Webhook metrics
webhooks_received_total = Counter(
    'payment_webhooks_received_total',
    'Total payment webhooks received',
    ['provider', 'outcome']
)

# Payment state machine metrics
payment_transitions_total = Counter(
    'payment_transitions_total',
    'Payment status transitions',
    ['provider', 'from_status', 'to_status', 'applied']
)
