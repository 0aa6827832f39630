"""
Observability module - Logging, Metrics, and Tracing.
"""

from points_ledger.observability.logging import get_logger, log_context, setup_logging
from points_ledger.observability.metrics import metrics
from points_ledger.observability.tracing import setup_tracing, trace_operation

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
    "trace_operation",
]
