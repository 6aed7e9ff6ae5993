"""
Tests for error taxonomy and classification
"""

import asyncio

import pytest

from docgov_core.errors import (
    AuditCancelledError,
    BatchAbortedError,
    BusyError,
    CheckpointError,
    EngineKind,
    ErrorCategory,
    ErrorClassifier,
    PartialNodeFailure,
    PersistentError,
    ReplacementAbortedError,
    TransientError,
    ValidationError,
    classify_error,
)


class TestErrorHierarchy:
    """Tests for exception categories."""

    def test_taxonomy_categories(self):
        """Test each exception type carries its category."""
        assert ValidationError("x").category is ErrorCategory.VALIDATION
        assert TransientError("x").category is ErrorCategory.TRANSIENT
        assert PersistentError("x").category is ErrorCategory.PERSISTENT
        assert PartialNodeFailure("n1", "locked").category is ErrorCategory.PARTIAL

    def test_checkpoint_error_is_persistent(self):
        """Test checkpoint failures are persistent."""
        assert issubclass(CheckpointError, PersistentError)
        assert CheckpointError("refused").category is ErrorCategory.PERSISTENT

    def test_busy_error_carries_kind(self):
        """Test BusyError names the busy engine."""
        error = BusyError(EngineKind.AUDIT)

        assert error.kind is EngineKind.AUDIT
        assert "audit" in str(error)
        assert error.category is ErrorCategory.VALIDATION

    def test_partial_node_failure_fields(self):
        """Test PartialNodeFailure keeps the node id and reason."""
        error = PartialNodeFailure("n7", "node is locked")

        assert error.node_id == "n7"
        assert error.reason == "node is locked"
        assert str(error) == "n7: node is locked"

    def test_aborted_errors_copy_failed_nodes(self):
        """Test abort errors copy the failed node list."""
        failures = ["a"]
        batch = BatchAbortedError("stop", processed=100, failed_nodes=failures)
        failures.append("b")

        assert batch.processed == 100
        assert batch.failed_nodes == ["a"]

        aborted = ReplacementAbortedError("stop", checkpoint_title="cp", updated_count=3)
        assert aborted.checkpoint_title == "cp"
        assert aborted.updated_count == 3
        assert aborted.failed_nodes == []

    def test_cancelled_is_not_retryable(self):
        """Test a cancelled audit is never retried."""
        assert AuditCancelledError("x").category is not ErrorCategory.TRANSIENT


class TestErrorClassifier:
    """Tests for ErrorClassifier."""

    @pytest.fixture
    def classifier(self):
        return ErrorClassifier()

    @pytest.mark.parametrize("exc", [
        TimeoutError("slow"),
        asyncio.TimeoutError(),
        ConnectionResetError("peer reset"),
        RuntimeError("Rate limit exceeded"),
        RuntimeError("HTTP 503 from host"),
        RuntimeError("request timed out"),
        RuntimeError("Service temporarily unavailable, try again"),
    ])
    def test_transient(self, classifier, exc):
        """Test transient failures are recognised."""
        assert classifier.classify(exc) is ErrorCategory.TRANSIENT
        assert classifier.is_transient(exc)

    @pytest.mark.parametrize("exc", [
        PermissionError("no edit access"),
        FileNotFoundError("gone"),
        KeyError("node-1"),
        RuntimeError("Permission denied"),
        RuntimeError("definition not found"),
        RuntimeError("HTTP 403"),
        RuntimeError("invalid reference to style"),
    ])
    def test_persistent(self, classifier, exc):
        """Test persistent failures are recognised."""
        assert classifier.classify(exc) is ErrorCategory.PERSISTENT
        assert not classifier.is_transient(exc)

    def test_persistent_signature_wins(self, classifier):
        """A message matching both families is not retried."""
        exc = RuntimeError("permission denied after timeout")
        assert classifier.classify(exc) is ErrorCategory.PERSISTENT

    def test_unknown_defaults_to_persistent(self, classifier):
        """Test unrecognised failures default to persistent."""
        assert classifier.classify(RuntimeError("boom")) is ErrorCategory.PERSISTENT
        assert classifier.classify(ValueError("")) is ErrorCategory.PERSISTENT

    def test_taxonomy_overrides_message(self, classifier):
        """Own category beats message heuristics."""
        assert classifier.classify(TransientError("permission denied")) is ErrorCategory.TRANSIENT
        assert classifier.classify(ValidationError("timeout")) is ErrorCategory.VALIDATION

    def test_custom_patterns(self):
        """Test custom message patterns."""
        classifier = ErrorClassifier(transient_patterns=[r"busy"], persistent_patterns=[r"fatal"])

        assert classifier.classify(RuntimeError("host busy")) is ErrorCategory.TRANSIENT
        assert classifier.classify(RuntimeError("fatal: corrupted")) is ErrorCategory.PERSISTENT
        # Default signatures are replaced, not extended
        assert classifier.classify(RuntimeError("rate limit")) is ErrorCategory.PERSISTENT

    def test_module_level_classifier(self):
        """Test the module-level classify_error helper."""
        assert classify_error(TimeoutError()) is ErrorCategory.TRANSIENT
        assert classify_error(PartialNodeFailure("n", "r")) is ErrorCategory.PARTIAL
