"""
Metrics Collection with Prometheus.

Exposes ledger and HTTP metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from points_ledger.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    OUTCOME = "outcome"
    CURRENCY = "currency"
    TRANSACTION_TYPE = "transaction_type"
    ERROR_TYPE = "error_type"


class LedgerMetrics:
    """
    Centralized metrics for the points ledger.

    Covers:
    - HTTP requests (rate, duration, in-flight)
    - Ledger operations (rate and outcome per operation)
    - Amounts moved per sub-ledger
    - Write verification and errors
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "ledger_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "ledger_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "ledger_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "ledger_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Ledger Metrics
        # ====================================================================
        self.ledger_operations_total = Counter(
            "ledger_operations_total",
            "Ledger operations by outcome",
            [MetricLabels.OPERATION, MetricLabels.OUTCOME],
        )

        self.ledger_amount = Histogram(
            "ledger_amount",
            "Amounts moved by successful mutations",
            [MetricLabels.OPERATION, MetricLabels.CURRENCY],
            buckets=(1, 5, 10, 25, 50, 100, 250, 500, 1000, 5000, 10000, 50000),
        )

        self.accounts_created_total = Counter(
            "ledger_accounts_created_total",
            "Total accounts created lazily",
        )

        self.db_write_verifications_total = Counter(
            "ledger_db_write_verifications_total",
            "Total write verification checks",
            ["success"],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "ledger_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_ledger_operation(
        self,
        operation: str,
        outcome: str,
        amount: int | None = None,
        currency: str = "points",
    ) -> None:
        """Record one ledger operation; amount only for successful mutations."""
        self.ledger_operations_total.labels(operation=operation, outcome=outcome).inc()
        if amount is not None and outcome == "success":
            self.ledger_amount.labels(operation=operation, currency=currency).observe(amount)

    def record_write_verification(self, success: bool) -> None:
        """Record a read-back verification result."""
        self.db_write_verifications_total.labels(success=str(success)).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = LedgerMetrics()
