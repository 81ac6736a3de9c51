"""
Prometheus metrics for the SMS relay.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Inbound webhook outcome counter (result)
- Outbound send outcome counter (result)

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

# HTTP request counter with labels for method, path, and status code
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

# Request latency histogram in seconds, default buckets
request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

# result: stored, invalid_payload, storage_error, invalid_signature
inbound_messages_total = Counter(
    "inbound_messages_total",
    "Inbound webhook processing outcomes",
    labelnames=["result"]
)

# result: sent, validation_error, configuration_error, transmission_error, storage_error
outbound_messages_total = Counter(
    "outbound_messages_total",
    "Outbound send outcomes",
    labelnames=["result"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Request path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    # Normalize path to avoid high-cardinality labels
    normalized_path = path.split("?")[0]

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_inbound_outcome(result: str) -> None:
    inbound_messages_total.labels(result=result).inc()


def record_outbound_outcome(result: str) -> None:
    outbound_messages_total.labels(result=result).inc()


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
