"""Tests for abengine exceptions."""

import pytest

from abengine.core.exceptions import (
    ABEngineError,
    ConfigurationError,
    InvalidOperationError,
    NotFoundError,
    StateTransitionError,
    StoreError,
)


class TestConfigurationError:
    """Tests for ConfigurationError."""

    def test_message_with_field(self) -> None:
        """Test the field is appended to the message."""
        error = ConfigurationError("Test name is required", field="name")
        assert str(error) == "Test name is required (field: name)"
        assert error.reason == "Test name is required"
        assert error.field == "name"

    def test_message_without_field(self) -> None:
        """Test the reason alone is the message."""
        error = ConfigurationError("At least 2 variants are required")
        assert str(error) == "At least 2 variants are required"
        assert error.field is None


class TestNotFoundError:
    """Tests for NotFoundError."""

    def test_message(self) -> None:
        """Test the experiment ID is in the message."""
        error = NotFoundError("ab_1")
        assert str(error) == "Experiment ab_1 not found"
        assert error.experiment_id == "ab_1"


class TestStateTransitionError:
    """Tests for StateTransitionError."""

    def test_attributes(self) -> None:
        """Test transition context is kept."""
        error = StateTransitionError(
            "Only draft tests can be started",
            experiment_id="ab_1",
            current_status="active",
            action="start",
        )
        assert str(error) == "Only draft tests can be started"
        assert error.experiment_id == "ab_1"
        assert error.current_status == "active"
        assert error.action == "start"


class TestStoreError:
    """Tests for StoreError."""

    def test_message_with_location(self) -> None:
        """Test operation and key prefix the message."""
        error = StoreError("timed out", operation="get", key="ab_test:1")
        assert str(error) == "Operation: get, Key: ab_test:1: timed out"

    def test_message_operation_only(self) -> None:
        """Test message with an operation but no key."""
        error = StoreError("connection refused", operation="keys")
        assert str(error) == "Operation: keys: connection refused"

    def test_plain_message(self) -> None:
        """Test message without location."""
        assert str(StoreError("boom")) == "boom"


class TestHierarchy:
    """Tests for the exception hierarchy."""

    @pytest.mark.parametrize(
        "error",
        [
            ConfigurationError("x"),
            NotFoundError("x"),
            StateTransitionError("x"),
            InvalidOperationError("x"),
            StoreError("x"),
        ],
    )
    def test_all_derive_from_base(self, error: Exception) -> None:
        """Test every engine error can be caught as ABEngineError."""
        assert isinstance(error, ABEngineError)
        with pytest.raises(ABEngineError):
            raise error
