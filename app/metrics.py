"""
Prometheus metrics for the portfolio API.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Channel delivery counter (platform, result)
- Message submission counter (result)
- Chat request counter (result)

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

# Using default buckets: .005, .01, .025, .05, .075, .1, .25, .5, .75, 1.0, 2.5, 5.0, 7.5, 10.0
request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

# result: success, failure
channel_deliveries_total = Counter(
    "channel_deliveries_total",
    "Notification delivery attempts per channel",
    labelnames=["platform", "result"]
)

# result: sent, failed, error
message_submissions_total = Counter(
    "message_submissions_total",
    "Submitted messages by final delivery status",
    labelnames=["result"]
)

# result: streamed, upstream_error, rejected
chat_requests_total = Counter(
    "chat_requests_total",
    "Chat relay requests by outcome",
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


def record_channel_delivery(platform: str, success: bool) -> None:
    channel_deliveries_total.labels(
        platform=platform,
        result="success" if success else "failure"
    ).inc()


def record_message_submission(result: str) -> None:
    """
    Record the final outcome of a message submission.

    Args:
        result: "sent", "failed" (no channel delivered) or "error"
            (the fan-out itself raised)
    """
    message_submissions_total.labels(result=result).inc()


def record_chat_request(result: str) -> None:
    chat_requests_total.labels(result=result).inc()


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
