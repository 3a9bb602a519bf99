"""Unit tests for telemetry and logging setup."""

import logging
from unittest.mock import patch

from estate_messaging.core import configure_logging, get_tracer, setup_telemetry


class TestTelemetry:
    """Tests for OpenTelemetry setup."""

    def test_disabled_without_endpoint(self):
        """Test that no provider is installed without an OTLP endpoint."""
        with patch("estate_messaging.core.telemetry.settings") as mock_settings:
            mock_settings.OTEL_EXPORTER_OTLP_ENDPOINT = ""

            assert setup_telemetry() is False

    def test_get_tracer_spans(self):
        """Test that spans can be opened without a configured provider."""
        tracer = get_tracer("tests")
        with tracer.start_as_current_span("messaging.test") as span:
            span.set_attribute("conversation.id", "c1")


class TestLogging:
    """Tests for logging configuration."""

    def test_debug_level(self):
        with patch("estate_messaging.core.logging_config.logging.basicConfig") as mock_config:
            configure_logging(debug=True)

        assert mock_config.call_args.kwargs["level"] == logging.DEBUG
