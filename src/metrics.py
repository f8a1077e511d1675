"""
Prometheus metrics for the payment reconciliation core.
Tracks run outcomes, match tiers and exception types for monitoring and alerting.
"""

from prometheus_client import Counter, Histogram, start_http_server
import logging

logger = logging.getLogger(__name__)

# Business Metrics
RECONCILIATION_RUNS_TOTAL = Counter(
    'reconciliation_runs_total',
    'Total number of reconciliation runs',
    ['status']
)

PAYMENTS_PROCESSED_TOTAL = Counter(
    'reconciliation_payments_total',
    'Total payments processed by reconciliation runs'
)

MATCHES_TOTAL = Counter(
    'reconciliation_matches_total',
    'Total payment-to-invoice matches',
    ['match_type']
)

MATCHED_AMOUNT_TOTAL = Counter(
    'reconciliation_matched_amount_minor_units_total',
    'Total amount applied to invoices, in minor units'
)

EXCEPTIONS_TOTAL = Counter(
    'reconciliation_exceptions_total',
    'Total reconciliation exceptions raised for finance review',
    ['exception_type']
)

# Technical Metrics
RECONCILIATION_DURATION_SECONDS = Histogram(
    'reconciliation_duration_seconds',
    'Time spent on a reconciliation run',
    buckets=[0.001, 0.01, 0.05, 0.1, 0.5, 1, 5, 30]
)


class MetricsCollector:
    """Centralized metrics collection for the reconciliation core."""

    def __init__(self, port: int = 8000):
        self.port = port
        self.server_started = False

    def start_metrics_server(self):
        """Start Prometheus metrics server."""
        if not self.server_started:
            try:
                # Validate port range for security
                if not (8000 <= self.port <= 9999):
                    raise ValueError(f"Invalid port {self.port}. Must be between 8000-9999")

                start_http_server(self.port)
                self.server_started = True
                logger.info(f"Metrics server started on port {self.port}")
            except Exception as e:
                logger.error(f"Failed to start metrics server: {e}")

    def record_run(self, result, payment_count: int, duration: float):
        """Record a completed reconciliation run."""
        RECONCILIATION_RUNS_TOTAL.labels(status='success').inc()
        RECONCILIATION_DURATION_SECONDS.observe(duration)
        PAYMENTS_PROCESSED_TOTAL.inc(payment_count)
        for match in result.matches:
            MATCHES_TOTAL.labels(match_type=match.match_type.value).inc()
            MATCHED_AMOUNT_TOTAL.inc(match.amount)
        for exception in result.exceptions:
            EXCEPTIONS_TOTAL.labels(exception_type=exception.type).inc()

    def record_failed_run(self, duration: float):
        """Record a run rejected during validation."""
        RECONCILIATION_RUNS_TOTAL.labels(status='invalid').inc()
        RECONCILIATION_DURATION_SECONDS.observe(duration)


# Global metrics collector instance
metrics = MetricsCollector()
