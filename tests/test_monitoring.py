"""
Tests for structured logging and correlation IDs
"""

import json
import logging

from app.middleware import get_correlation_id
from app.services.monitoring import CorrelationJsonFormatter, setup_logging
from app.services.monitoring.logging import SERVICE_NAME


class TestLogging:
    """Tests for the JSON formatter and handler setup."""

    def test_formatter_injects_service_and_correlation_id(self):
        formatter = CorrelationJsonFormatter('%(levelname)s %(name)s %(message)s')
        record = logging.LogRecord("app.test", logging.INFO, __file__, 1, "idempotency_cleanup_completed", None, None)

        payload = json.loads(formatter.format(record))

        assert payload["message"] == "idempotency_cleanup_completed"
        assert payload["service"] == SERVICE_NAME
        assert payload["correlation_id"] == "none"

    def test_setup_logging_replaces_previous_handler(self):
        root = logging.getLogger()
        first = setup_logging()
        second = setup_logging()

        try:
            assert second in root.handlers
            assert first not in root.handlers
        finally:
            root.removeHandler(second)

    def test_correlation_id_outside_request(self):
        assert get_correlation_id() == "none"
