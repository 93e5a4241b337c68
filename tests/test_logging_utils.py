"""
Tests for structured logging utilities module.

Tests cover JSON formatting, request ID correlation across the hosting
platforms, and the standardized request / external call log lines.
"""

import json
import logging
import sys
import uuid

from shared.logging_utils import (
    StructuredFormatter,
    configure_structured_logging,
    log_api_request,
    log_external_call,
    log_webhook_outcome,
    redact,
    request_id_var,
    set_request_id,
    set_user_id,
    user_id_var,
)


def _record(msg="Test message", level=logging.INFO, args=(), **extra):
    record = logging.LogRecord(
        name="test.logger",
        level=level,
        pathname="test.py",
        lineno=10,
        msg=msg,
        args=args,
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredFormatter:
    """Tests for StructuredFormatter class."""

    def test_format_includes_required_fields(self):
        parsed = json.loads(StructuredFormatter().format(_record("Warning message", logging.WARNING)))

        assert "timestamp" in parsed
        assert parsed["level"] == "WARNING"
        assert parsed["logger"] == "test.logger"
        assert parsed["message"] == "Warning message"

    def test_format_includes_request_id_from_context(self):
        token = request_id_var.set("req-12345")
        try:
            parsed = json.loads(StructuredFormatter().format(_record()))
        finally:
            request_id_var.reset(token)

        assert parsed["request_id"] == "req-12345"

    def test_format_includes_extra_fields(self):
        parsed = json.loads(StructuredFormatter().format(_record(service="stripe", latency_ms=12.5)))

        assert parsed["service"] == "stripe"
        assert parsed["latency_ms"] == 12.5

    def test_format_excludes_standard_record_fields(self):
        parsed = json.loads(StructuredFormatter().format(_record()))

        for field in ("pathname", "lineno", "args", "msg", "exc_info"):
            assert field not in parsed

    def test_format_handles_non_serializable_extra(self):
        parsed = json.loads(StructuredFormatter().format(_record(when=object())))
        assert parsed["when"].startswith("<object")

    def test_format_includes_exception_info(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = _record()
            record.exc_info = sys.exc_info()

        parsed = json.loads(StructuredFormatter().format(record))
        assert "ValueError: boom" in parsed["exception"]


class TestConfigureStructuredLogging:
    def test_replaces_handlers_with_structured_one(self):
        root = logging.getLogger()
        original_handlers = root.handlers[:]
        original_level = root.level
        try:
            configure_structured_logging()
            configure_structured_logging()

            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, StructuredFormatter)
            assert root.level == logging.INFO
        finally:
            root.handlers[:] = original_handlers
            root.setLevel(original_level)


class TestSetRequestId:
    """Request ids come from the platform that invoked the function."""

    def test_extracts_api_gateway_request_id(self):
        event = {"requestContext": {"requestId": "apigw-123"}, "headers": {"x-request-id": "hdr"}}
        assert set_request_id(event) == "apigw-123"
        assert request_id_var.get() == "apigw-123"

    def test_extracts_netlify_request_id(self):
        assert set_request_id({"headers": {"X-Nf-Request-Id": "01HNETLIFY"}}) == "01HNETLIFY"

    def test_extracts_vercel_id(self):
        assert set_request_id({"headers": {"x-vercel-id": "iad1::abc"}}) == "iad1::abc"

    def test_generates_uuid_when_no_id_found(self):
        request_id = set_request_id({"headers": None})
        assert uuid.UUID(request_id)


class TestLogApiRequest:
    def test_formats_message_and_fields(self, caplog):
        logger = logging.getLogger("test.api")

        with caplog.at_level(logging.INFO):
            log_api_request(logger, "POST", "/api/account/pause", 200, 50.0, user_id="user-123")

        record = caplog.records[0]
        assert "POST /api/account/pause -> 200" in caplog.text
        assert record.http_method == "POST"
        assert record.status_code == 200
        assert record.user_id == "user-123"

    def test_anonymous_user_id_when_none(self, caplog):
        logger = logging.getLogger("test.api")

        with caplog.at_level(logging.INFO):
            log_api_request(logger, "GET", "/api/stripe/subscription-status", 401, 5.0)

        assert caplog.records[0].user_id == "anonymous"

    def test_uses_authenticated_user_from_context(self, caplog):
        logger = logging.getLogger("test.api")
        set_user_id("user-456")

        with caplog.at_level(logging.INFO):
            log_api_request(logger, "POST", "/api/account/resume", 200, 12.0)

        assert caplog.records[0].user_id == "user-456"

    def test_new_request_clears_previous_user(self, caplog):
        logger = logging.getLogger("test.api")
        set_user_id("user-456")
        set_request_id({"headers": {}})

        assert user_id_var.get() == ""
        with caplog.at_level(logging.INFO):
            log_api_request(logger, "POST", "/api/account/delete", 401, 3.0)

        assert caplog.records[0].user_id == "anonymous"


class TestLogExternalCall:
    def test_success_is_info(self, caplog):
        logger = logging.getLogger("test.external")

        with caplog.at_level(logging.INFO):
            log_external_call(logger, "supabase", "rpc.check_rate_limit", True, 20.0)

        record = caplog.records[0]
        assert record.levelno == logging.INFO
        assert record.service == "supabase"
        assert "success" in record.getMessage()

    def test_failure_is_warning_with_error(self, caplog):
        logger = logging.getLogger("test.external")

        with caplog.at_level(logging.INFO):
            log_external_call(logger, "stripe", "subscriptions.cancel", False, 80.0, error="APIConnectionError")

        record = caplog.records[0]
        assert record.levelno == logging.WARNING
        assert record.error == "APIConnectionError"


class TestRedaction:
    def test_masks_stripe_and_bearer_secrets(self):
        text = redact("key=sk_live_abc123 secret=whsec_XYZ auth=Bearer eyJhbGciOi.payload.sig")

        assert "sk_live_abc123" not in text
        assert "whsec_XYZ" not in text
        assert "eyJhbGciOi" not in text
        assert text.count("[REDACTED]") == 3

    def test_ids_are_kept(self):
        assert redact("customer cus_123 subscription sub_456") == "customer cus_123 subscription sub_456"

    def test_formatter_redacts_message_and_extras(self):
        record = _record("Stripe key %s rejected", args=("sk_test_999",), header="Bearer token-1")

        parsed = json.loads(StructuredFormatter().format(record))

        assert parsed["message"] == "Stripe key [REDACTED] rejected"
        assert parsed["header"] == "[REDACTED]"


class TestLogWebhookOutcome:
    def test_succeeded_is_info(self, caplog):
        logger = logging.getLogger("test.webhook")

        with caplog.at_level(logging.INFO):
            log_webhook_outcome(logger, "evt_1", "customer.subscription.updated", "succeeded", 42.0)

        record = caplog.records[0]
        assert record.levelno == logging.INFO
        assert record.event_id == "evt_1"
        assert record.outcome == "succeeded"

    def test_failed_is_warning(self, caplog):
        logger = logging.getLogger("test.webhook")

        with caplog.at_level(logging.INFO):
            log_webhook_outcome(logger, "evt_1", "checkout.session.completed", "failed", 42.0)

        assert caplog.records[0].levelno == logging.WARNING
