"""
Tests for structured logging helpers.
"""

from uuid import UUID

import structlog

from points_ledger.models.api import Currency, TransactionType
from points_ledger.observability.logging import (
    add_app_context,
    log_context,
    normalize_ledger_values,
)


class TestProcessors:
    """Tests for the custom structlog processors."""

    def test_ids_and_enums_become_strings(self):
        transaction_id = UUID("12345678-1234-5678-1234-567812345678")
        event = {
            "event": "points_credited",
            "transaction_id": transaction_id,
            "currency": Currency.CREDITS,
            "transaction_type": TransactionType.QUIZ,
            "amount": 15,
        }

        result = normalize_ledger_values(None, "info", event)

        assert result["transaction_id"] == "12345678-1234-5678-1234-567812345678"
        assert result["currency"] == "credits"
        assert result["transaction_type"] == "quiz"
        assert result["amount"] == 15

    def test_app_context_added(self):
        result = add_app_context(None, "info", {"event": "points_converted"})

        assert "service" in result
        assert "version" in result


class TestLogContext:
    """Tests for the log_context manager."""

    def test_binds_and_unbinds(self):
        with log_context(request_id="req-123", user_id="student-1"):
            bound = structlog.contextvars.get_contextvars()
            assert bound["request_id"] == "req-123"
            assert bound["user_id"] == "student-1"

        assert "request_id" not in structlog.contextvars.get_contextvars()
