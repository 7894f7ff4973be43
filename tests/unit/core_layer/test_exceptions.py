"""
Unit Tests for Core Exceptions

Tests the error kind carried by every broker error and the single
classification point used by the retry layer.
"""

import asyncio

import pytest

from ingestion_broker.core.exceptions import (
    ConfigurationError,
    ErrorKind,
    IngestionBrokerError,
    PermanentBackendError,
    RefreshError,
    ResourceExhaustedError,
    ResourceUnavailableError,
    StaleResourcesError,
    ThrottledError,
    TransientBackendError,
    classify_error,
    is_permanent_error,
    is_retryable_error,
)


@pytest.mark.unit
class TestIngestionBrokerError:
    """Test the base exception class."""

    def test_base_error_creation(self):
        error = IngestionBrokerError("Test message")
        assert str(error) == "Test message"
        assert error.message == "Test message"

    def test_base_error_default_values(self):
        error = IngestionBrokerError("Test")
        assert error.details == {}
        assert error.operation_id is None
        assert error.kind == ErrorKind.TRANSIENT

    def test_details_are_copied(self):
        details = {"key": "value"}
        error = IngestionBrokerError("Test", details=details)
        details["key"] = "changed"
        assert error.details == {"key": "value"}

    def test_explicit_kind_overrides_default(self):
        error = TransientBackendError("Test", kind=ErrorKind.PERMANENT)
        assert error.kind == ErrorKind.PERMANENT
        assert error.is_permanent

    def test_to_dict(self):
        error = PermanentBackendError("Rejected", operation_id="op-1", details={"status": 400})
        assert error.to_dict() == {
            "error_type": "PermanentBackendError",
            "kind": "permanent",
            "message": "Rejected",
            "operation_id": "op-1",
            "details": {"status": 400},
        }

    def test_with_context_and_suggestion_chain(self):
        error = ConfigurationError("Bad").with_context(attempt=1).with_suggestion("Fix it")
        assert error.details == {"attempt": 1, "suggestion": "Fix it"}

    def test_from_exception_keeps_cause(self):
        original = OSError("socket closed")
        error = TransientBackendError.from_exception(original, queue="q1")

        assert error.__cause__ is original
        assert error.message == "socket closed"
        assert error.details["original_error"] == "OSError"
        assert error.details["queue"] == "q1"

    def test_repr_includes_kind(self):
        error = ConfigurationError("Bad table")
        assert "kind='configuration'" in repr(error)


@pytest.mark.unit
class TestErrorKinds:
    """Each error family carries the expected kind."""

    @pytest.mark.parametrize(
        "error_class, kind",
        [
            (ConfigurationError, ErrorKind.CONFIGURATION),
            (TransientBackendError, ErrorKind.TRANSIENT),
            (ThrottledError, ErrorKind.TRANSIENT),
            (PermanentBackendError, ErrorKind.PERMANENT),
            (ResourceExhaustedError, ErrorKind.RESOURCE_EXHAUSTED),
            (ResourceUnavailableError, ErrorKind.RESOURCE_EXHAUSTED),
            (StaleResourcesError, ErrorKind.RESOURCE_EXHAUSTED),
            (RefreshError, ErrorKind.TRANSIENT),
        ],
    )
    def test_default_kind(self, error_class, kind):
        assert error_class("x").kind == kind

    def test_stale_is_a_resource_unavailable_error(self):
        assert isinstance(StaleResourcesError("x"), ResourceUnavailableError)


@pytest.mark.unit
class TestClassifyError:
    """Test the classification of arbitrary exceptions."""

    def test_broker_errors_use_their_kind(self):
        assert classify_error(PermanentBackendError("x")) == ErrorKind.PERMANENT
        assert classify_error(ConfigurationError("x")) == ErrorKind.CONFIGURATION

    def test_timeouts_and_connection_errors_are_transient(self):
        assert classify_error(asyncio.TimeoutError()) == ErrorKind.TRANSIENT
        assert classify_error(TimeoutError()) == ErrorKind.TRANSIENT
        assert classify_error(ConnectionResetError()) == ErrorKind.TRANSIENT

    def test_value_and_type_errors_are_configuration(self):
        assert classify_error(ValueError("bad")) == ErrorKind.CONFIGURATION
        assert classify_error(TypeError("bad")) == ErrorKind.CONFIGURATION

    def test_unknown_errors_are_transient(self):
        assert classify_error(RuntimeError("boom")) == ErrorKind.TRANSIENT

    def test_predicates(self):
        assert is_retryable_error(ThrottledError("429"))
        assert not is_retryable_error(PermanentBackendError("400"))
        assert is_permanent_error(PermanentBackendError("400"))
        assert not is_permanent_error(ConfigurationError("x"))
