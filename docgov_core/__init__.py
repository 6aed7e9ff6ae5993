"""
docgov Core - Audit and bulk-replacement engine for document style governance

Scans a document for reusable style/token definitions and their usage, then
replaces one definition with another across many nodes behind a checkpoint,
with retries, adaptive batching and stale-audit detection.
"""

from .version import __version__

from .errors import (
    ErrorCategory,
    EngineKind,
    DocGovError,
    ValidationError,
    TransientError,
    PersistentError,
    PartialNodeFailure,
    BusyError,
    IllegalTransitionError,
    CheckpointError,
    AuditCancelledError,
    BatchAbortedError,
    ReplacementAbortedError,
    ErrorClassifier,
    classify_error,
)
from .models import (
    DefinitionKind,
    NodeCategory,
    ChangeOrigin,
    ContentNodeRef,
    StyleDefinition,
    NodeAuditEntry,
    InvalidationFlag,
    AuditResult,
    NodeFailure,
    CheckpointRecord,
    ReplacementResult,
    ProgressEvent,
    ChangeNotification,
)
from .resilience import RetryConfig, RetryPolicy, calculate_delay, retry_async
from .state_machine import StateMachine, StateChange, OperationGuard, OperationToken
from .host import DocumentHost, DocumentInfo, NodePage, Subscription
from .batch_processor import (
    BATCH_SIZES,
    BatchProcessor,
    BatchProcessorState,
    BatchRunSummary,
    per_node,
)
from .checkpoint import CheckpointManager, format_checkpoint_title, format_rollback_guidance
from .audit_engine import AuditEngine, AuditOptions, AuditState, AuditResultStore
from .replacement_engine import ReplacementEngine, ReplacementOptions, ReplacementState
from .change_watcher import ChangeWatcher
from .config import DocGovConfig, load_config, get_config, reload_config, save_config
from .logging_utils import OperationLog, LogLevel, configure_logging
from .service import GovernanceService

__all__ = [
    "__version__",
    # Errors
    "ErrorCategory",
    "EngineKind",
    "DocGovError",
    "ValidationError",
    "TransientError",
    "PersistentError",
    "PartialNodeFailure",
    "BusyError",
    "IllegalTransitionError",
    "CheckpointError",
    "AuditCancelledError",
    "BatchAbortedError",
    "ReplacementAbortedError",
    "ErrorClassifier",
    "classify_error",
    # Models
    "DefinitionKind",
    "NodeCategory",
    "ChangeOrigin",
    "ContentNodeRef",
    "StyleDefinition",
    "NodeAuditEntry",
    "InvalidationFlag",
    "AuditResult",
    "NodeFailure",
    "CheckpointRecord",
    "ReplacementResult",
    "ProgressEvent",
    "ChangeNotification",
    # Resilience
    "RetryConfig",
    "RetryPolicy",
    "calculate_delay",
    "retry_async",
    # State machines
    "StateMachine",
    "StateChange",
    "OperationGuard",
    "OperationToken",
    # Host
    "DocumentHost",
    "DocumentInfo",
    "NodePage",
    "Subscription",
    # Engines
    "BATCH_SIZES",
    "BatchProcessor",
    "BatchProcessorState",
    "BatchRunSummary",
    "per_node",
    "CheckpointManager",
    "format_checkpoint_title",
    "format_rollback_guidance",
    "AuditEngine",
    "AuditOptions",
    "AuditState",
    "AuditResultStore",
    "ReplacementEngine",
    "ReplacementOptions",
    "ReplacementState",
    "ChangeWatcher",
    "GovernanceService",
    # Config / logging
    "DocGovConfig",
    "load_config",
    "get_config",
    "reload_config",
    "save_config",
    "OperationLog",
    "LogLevel",
    "configure_logging",
]
