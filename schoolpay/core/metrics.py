"""Prometheus metrics for the billing service.

Exposes HTTP request metrics and billing activity counters.
"""

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    CollectorRegistry,
    generate_latest,
    CONTENT_TYPE_LATEST,
    multiprocess,
)
import os

# Create a custom registry for our metrics
REGISTRY = CollectorRegistry()

# Check if running in multiprocess mode (e.g., with gunicorn)
if "prometheus_multiproc_dir" in os.environ:
    multiprocess.MultiProcessCollector(REGISTRY)


# ============================================
# Application Info
# ============================================
APP_INFO = Info(
    "schoolpay_app",
    "Application information",
    registry=REGISTRY,
)


# ============================================
# HTTP Request Metrics
# ============================================
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=REGISTRY,
)

HTTP_REQUESTS_IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "Number of HTTP requests currently in progress",
    ["method", "endpoint"],
    registry=REGISTRY,
)


# ============================================
# Billing Metrics
# ============================================
PAYMENTS_CREATED_TOTAL = Counter(
    "billing_payments_created_total",
    "Payments created by origin",
    ["origin"],
    registry=REGISTRY,
)

PAYMENT_STATUS_CHANGES_TOTAL = Counter(
    "billing_payment_status_changes_total",
    "Payment status changes by new status",
    ["status"],
    registry=REGISTRY,
)

GATEWAY_CHARGES_TOTAL = Counter(
    "billing_gateway_charges_total",
    "Gateway charge attempts by gateway and outcome",
    ["gateway", "outcome"],
    registry=REGISTRY,
)

INVOICES_GENERATED_TOTAL = Counter(
    "billing_invoices_generated_total",
    "Invoices created",
    registry=REGISTRY,
)

STATUS_CASCADE_FAILURES_TOTAL = Counter(
    "billing_status_cascade_failures_total",
    "Payment/invoice status cascades that failed after the primary write",
    ["direction"],
    registry=REGISTRY,
)

SUBSCRIPTION_RENEWALS_TOTAL = Counter(
    "billing_subscription_renewals_total",
    "Subscription renewals by outcome",
    ["outcome"],
    registry=REGISTRY,
)


def get_metrics() -> bytes:
    """Generate latest metrics in Prometheus format."""
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST


def set_app_info(version: str, environment: str) -> None:
    """Set application info metrics.

    Args:
        version: Application version
        environment: Deployment environment
    """
    APP_INFO.info({
        "version": version,
        "environment": environment,
    })
