"""
Error Taxonomy and Classification

Four-way failure classification governing retry, abort, or per-node skip:

- TRANSIENT:  timeouts, dropped connections, rate limits (retried with backoff)
- PERSISTENT: permission denied, missing objects, invalid references (abort)
- VALIDATION: pre-flight argument problems (never retried, zero side effects)
- PARTIAL:    failure scoped to one node inside an otherwise healthy batch
"""

import asyncio
import logging
import re
from enum import Enum
from typing import List, Optional, Pattern, Sequence, Tuple

logger = logging.getLogger(__name__)


class ErrorCategory(str, Enum):
    """Classification of a raised failure."""
    TRANSIENT = "transient"
    PERSISTENT = "persistent"
    VALIDATION = "validation"
    PARTIAL = "partial"


class EngineKind(str, Enum):
    """Engine families, each with its own single-flight guard."""
    AUDIT = "audit"
    REPLACEMENT = "replacement"


# =============================================================================
# Exception Hierarchy
# =============================================================================

class DocGovError(Exception):
    """Base class for all engine errors."""
    category: ErrorCategory = ErrorCategory.PERSISTENT


class ValidationError(DocGovError):
    """Pre-flight argument problem. Raised before any mutation."""
    category = ErrorCategory.VALIDATION


class TransientError(DocGovError):
    """Recoverable host failure (timeout, connection, rate limit)."""
    category = ErrorCategory.TRANSIENT


class PersistentError(DocGovError):
    """Unrecoverable host failure. Never retried."""
    category = ErrorCategory.PERSISTENT


class PartialNodeFailure(DocGovError):
    """Failure scoped to a single content node."""
    category = ErrorCategory.PARTIAL

    def __init__(self, node_id: str, reason: str):
        super().__init__(f"{node_id}: {reason}")
        self.node_id = node_id
        self.reason = reason


class BusyError(DocGovError):
    """Raised when an engine of the same kind already has a run in flight."""
    category = ErrorCategory.VALIDATION

    def __init__(self, kind: EngineKind):
        super().__init__(f"A {kind.value} run is already in progress")
        self.kind = kind


class IllegalTransitionError(DocGovError):
    """Raised on a state change absent from the transition table."""
    category = ErrorCategory.PERSISTENT


class CheckpointError(PersistentError):
    """The host refused to create a snapshot. No mutation may follow."""
    pass


class AuditCancelledError(DocGovError):
    """The audit was cancelled at a page or chunk boundary."""
    category = ErrorCategory.VALIDATION


class BatchAbortedError(PersistentError):
    """A batch failed persistently; remaining batches were not attempted."""

    def __init__(self, message: str, processed: int = 0, failed_nodes: Optional[list] = None):
        super().__init__(message)
        self.processed = processed
        self.failed_nodes = list(failed_nodes or [])


class ReplacementAbortedError(PersistentError):
    """
    Replacement stopped after mutation began.

    Already-applied bindings are left in place; recovery is a manual restore
    of the checkpoint named by ``checkpoint_title``.
    """

    def __init__(
        self,
        message: str,
        checkpoint_title: Optional[str] = None,
        updated_count: int = 0,
        failed_nodes: Optional[list] = None,
        guidance: str = "",
    ):
        super().__init__(message)
        self.checkpoint_title = checkpoint_title
        self.updated_count = updated_count
        self.failed_nodes = list(failed_nodes or [])
        self.guidance = guidance


# =============================================================================
# Classifier
# =============================================================================

DEFAULT_TRANSIENT_PATTERNS = [
    r"time(d)?\s*out",
    r"timeout",
    r"connection (reset|refused|aborted|closed|lost)",
    r"rate.?limit",
    r"too many requests",
    r"\b429\b",
    r"\b503\b",
    r"temporarily unavailable",
    r"try again",
]

DEFAULT_PERSISTENT_PATTERNS = [
    r"permission",
    r"denied",
    r"forbidden",
    r"not found",
    r"no such",
    r"invalid reference",
    r"\b403\b",
    r"\b404\b",
]


class ErrorClassifier:
    """
    Maps a raised exception to an ErrorCategory.

    Resolution order:
    1. Taxonomy exceptions carry their own category
    2. Well-known stdlib exception types
    3. Message signatures (case-insensitive regexes)
    4. Default: PERSISTENT (never silently retried forever)

    Example:
        classifier = ErrorClassifier()
        if classifier.classify(exc) is ErrorCategory.TRANSIENT:
            ...
    """

    TRANSIENT_TYPES: Tuple[type, ...] = (TimeoutError, asyncio.TimeoutError, ConnectionError)
    PERSISTENT_TYPES: Tuple[type, ...] = (PermissionError, FileNotFoundError, LookupError)

    def __init__(
        self,
        transient_patterns: Optional[Sequence[str]] = None,
        persistent_patterns: Optional[Sequence[str]] = None,
    ):
        self._transient: List[Pattern] = [
            re.compile(p, re.I) for p in (transient_patterns or DEFAULT_TRANSIENT_PATTERNS)
        ]
        self._persistent: List[Pattern] = [
            re.compile(p, re.I) for p in (persistent_patterns or DEFAULT_PERSISTENT_PATTERNS)
        ]

    def classify(self, exc: BaseException) -> ErrorCategory:
        """Return the category of ``exc``."""
        if isinstance(exc, DocGovError):
            return exc.category

        # ConnectionError subclasses must win over the generic OSError family
        if isinstance(exc, self.TRANSIENT_TYPES):
            return ErrorCategory.TRANSIENT
        if isinstance(exc, self.PERSISTENT_TYPES):
            return ErrorCategory.PERSISTENT

        message = str(exc)
        # Persistent signatures are checked first: "permission denied after timeout"
        # must not be retried.
        if any(p.search(message) for p in self._persistent):
            return ErrorCategory.PERSISTENT
        if any(p.search(message) for p in self._transient):
            return ErrorCategory.TRANSIENT

        logger.debug(f"Unclassifiable failure {type(exc).__name__}: {exc}; treating as persistent")
        return ErrorCategory.PERSISTENT

    def is_transient(self, exc: BaseException) -> bool:
        return self.classify(exc) is ErrorCategory.TRANSIENT


_default_classifier = ErrorClassifier()


def classify_error(exc: BaseException) -> ErrorCategory:
    """Classify with the module-level default classifier."""
    return _default_classifier.classify(exc)
