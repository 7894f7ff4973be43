"""
Unit Tests for Logging Module

Tests operation context, credential redaction and the stage logging helper.
"""

from unittest.mock import MagicMock

import pytest

from ingestion_broker.core.config.constants import Stage
from ingestion_broker.core.logging.logger import (
    add_log_level_name,
    add_operation_id,
    clear_operation_id,
    get_logger,
    get_operation_id,
    log_stage,
    redact_credentials,
    redact_secrets_from_text,
    reset_operation_id,
    set_operation_id,
    setup_logging,
)


@pytest.mark.unit
class TestLoggerCreation:
    def test_get_logger_returns_logger_instance(self):
        logger = get_logger(__name__)
        assert logger is not None
        assert hasattr(logger, "info")

    def test_setup_logging_json(self, capsys):
        setup_logging(log_level="INFO", log_format="json")
        get_logger("setup-test").info("configured", queue="https://a.queue.core.windows.net/q?sig=s3cret")
        out = capsys.readouterr().out
        assert "s3cret" not in out


@pytest.mark.unit
class TestOperationContext:
    def test_set_and_clear_operation_id(self):
        set_operation_id("op-123")
        assert get_operation_id() == "op-123"
        clear_operation_id()
        assert get_operation_id() is None

    def test_reset_restores_previous_operation_id(self):
        clear_operation_id()
        outer = set_operation_id("op-outer")
        try:
            inner = set_operation_id("op-inner")
            assert get_operation_id() == "op-inner"
            reset_operation_id(inner)
            assert get_operation_id() == "op-outer"
        finally:
            reset_operation_id(outer)
        assert get_operation_id() is None

    def test_processor_adds_operation_id(self):
        set_operation_id("op-456")
        try:
            event = add_operation_id(None, "info", {"event": "x"})
        finally:
            clear_operation_id()
        assert event["operation_id"] == "op-456"

    def test_processor_skips_missing_operation_id(self):
        clear_operation_id()
        assert "operation_id" not in add_operation_id(None, "info", {"event": "x"})


@pytest.mark.unit
class TestCredentialRedaction:
    def test_sas_query_string_removed(self):
        uri = "https://acct.blob.core.windows.net/c1?sv=2024-01-01&sig=abc%2Fdef"
        assert redact_secrets_from_text(uri) == "https://acct.blob.core.windows.net/c1?[REDACTED]"

    def test_stray_signature_removed(self):
        assert redact_secrets_from_text("token sig=abcdef&x=1") == "token sig=[REDACTED]&x=1"

    def test_bearer_token_removed(self):
        assert redact_secrets_from_text("Authorization: Bearer eyJ0eXAi.abc-def") == (
            "Authorization: Bearer [REDACTED]"
        )

    def test_plain_text_unchanged(self):
        assert redact_secrets_from_text("queue q1 on acct1") == "queue q1 on acct1"

    def test_processor_redacts_every_string_field(self):
        event = {
            "event": "Uploaded to https://a.blob.core.windows.net/c?sig=s3cret",
            "blob": "https://a.blob.core.windows.net/c/b?sv=1&sig=s3cret",
            "attempt": 2,
        }
        redacted = redact_credentials(None, "info", event)
        assert "s3cret" not in redacted["event"]
        assert "s3cret" not in redacted["blob"]
        assert redacted["attempt"] == 2


@pytest.mark.unit
class TestLogStage:
    def test_log_stage_uses_stage_value(self):
        logger = MagicMock()
        log_stage(logger, Stage.ROUTE_FALLBACK, "Falling back", level="warning", reason="exhausted")
        logger.warning.assert_called_once_with(
            "Falling back", stage=Stage.ROUTE_FALLBACK.value, reason="exhausted"
        )

    def test_log_stage_accepts_plain_string(self):
        logger = MagicMock()
        log_stage(logger, "CUSTOM.1", "Message")
        logger.info.assert_called_once_with("Message", stage="CUSTOM.1")

    def test_level_name_uppercased(self):
        assert add_log_level_name(None, "info", {"level": "warning"})["level"] == "WARNING"
