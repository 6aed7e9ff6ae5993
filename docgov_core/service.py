"""
Governance Service

Facade wiring the audit and replacement engines, the checkpoint manager and
the change watcher around one document host. This is the surface used by UI
and export collaborators:

    service = GovernanceService(host)
    audit = await service.start_audit(on_progress=show_progress)
    result = await service.replace("style-a", "style-b", audit.nodes_using("style-a"))
    service.get_invalidated_flag()   # True: the document changed since the audit

Callbacks must be passed with the call that starts the run; events emitted
before registration are not replayed.
"""

import logging
from typing import Callable, Optional, Sequence, Union

from .audit_engine import AuditEngine, AuditOptions, AuditResultStore
from .change_watcher import ChangeWatcher
from .checkpoint import CheckpointManager
from .config import DocGovConfig
from .errors import (
    AuditCancelledError,
    BusyError,
    EngineKind,
    ReplacementAbortedError,
    ValidationError,
)
from .host import DocumentHost
from .logging_utils import LogLevel, OperationLog
from .models import AuditResult, ProgressEvent, ReplacementResult
from .replacement_engine import ReplacementEngine, ReplacementOptions, ReplacementState
from .resilience import RetryConfig, RetryPolicy, SleepFn
from .state_machine import StateChange

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]
StateCallback = Callable[[StateChange], None]


class GovernanceService:
    """Single-document governance facade."""

    def __init__(
        self,
        host: DocumentHost,
        config: Optional[DocGovConfig] = None,
        operation_log: Optional[OperationLog] = None,
        sleep: Optional[SleepFn] = None,
    ):
        self.host = host
        self.config = config or DocGovConfig()
        self.operation_log = operation_log

        retry_policy = RetryPolicy(
            RetryConfig(
                max_attempts=self.config.retry.max_attempts,
                delays=list(self.config.retry.delays),
            ),
            sleep=sleep,
        )

        self.store = AuditResultStore()
        self.checkpoints = CheckpointManager(host)
        self.audit_engine = AuditEngine(host, self.config.audit, retry_policy, store=self.store)
        self.replacement_engine = ReplacementEngine(
            host,
            self.config.replacement,
            retry_policy,
            checkpoints=self.checkpoints,
            store=self.store,
        )
        self.watcher = ChangeWatcher(host, on_invalidate=self._on_external_change)
        self.watcher.start()
        self.replacement_engine.machine.add_listener(self._on_replacement_state)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @property
    def current_audit(self) -> Optional[AuditResult]:
        return self.store.current

    def is_busy(self, kind: Union[EngineKind, str]) -> bool:
        kind = EngineKind(kind)
        if kind is EngineKind.AUDIT:
            return self.audit_engine.is_busy
        return self.replacement_engine.is_busy

    def get_invalidated_flag(self) -> bool:
        """True when the last audit no longer reflects the document."""
        return self.watcher.invalidated or self.store.invalidated

    # -------------------------------------------------------------------------
    # Audit
    # -------------------------------------------------------------------------

    async def start_audit(
        self,
        options: Optional[AuditOptions] = None,
        on_progress: Optional[ProgressCallback] = None,
        on_state_change: Optional[StateCallback] = None,
    ) -> AuditResult:
        """
        Run an audit and publish its result.

        Raises:
            BusyError: An audit is already running
            AuditCancelledError: ``cancel_audit()`` was honoured
        """
        if self.audit_engine.is_busy:
            raise BusyError(EngineKind.AUDIT)

        unsubscribe = self.audit_engine.subscribe(on_progress, on_state_change)
        # External edits seen from here on make the new result stale
        self.watcher.reset()
        self._log("audit_started", {"root_id": options.root_id if options else None})

        try:
            result = await self.audit_engine.start(options)
        except AuditCancelledError as e:
            self._log("audit_cancelled", {"reason": str(e)})
            raise
        except Exception as e:
            self._log("audit_failed", {"error": str(e), "type": type(e).__name__}, LogLevel.ERROR)
            raise
        finally:
            unsubscribe()

        if self.watcher.invalidated:
            result.invalidate("document changed during the audit")

        self._log("audit_completed", {
            "audit_id": result.audit_id,
            "total_nodes": result.total_nodes,
            "definitions": len(result.definitions),
            "warnings": list(result.warnings),
            "invalidated": result.invalidated,
        })
        return result

    def cancel_audit(self) -> bool:
        return self.audit_engine.cancel()

    # -------------------------------------------------------------------------
    # Replacement
    # -------------------------------------------------------------------------

    async def replace(
        self,
        source_ref: str,
        target_ref: str,
        node_ids: Optional[Sequence[str]] = None,
        options: Optional[ReplacementOptions] = None,
        on_progress: Optional[ProgressCallback] = None,
        on_state_change: Optional[StateCallback] = None,
    ) -> ReplacementResult:
        """
        Replace ``source_ref`` with ``target_ref`` on ``node_ids``.

        When ``node_ids`` is None the nodes bound to ``source_ref`` in the
        current, still valid audit result are used.
        """
        if self.replacement_engine.is_busy:
            raise BusyError(EngineKind.REPLACEMENT)

        if node_ids is None:
            audit = self.store.current
            if audit is None or audit.invalidated:
                raise ValidationError("No node ids given and no valid audit result to take them from")
            node_ids = audit.nodes_using(source_ref)

        unsubscribe = self.replacement_engine.subscribe(on_progress, on_state_change)
        try:
            result = await self.replacement_engine.replace(source_ref, target_ref, node_ids, options)
        except ReplacementAbortedError as e:
            self._log("replacement_failed", {
                "source": source_ref,
                "target": target_ref,
                "checkpoint": e.checkpoint_title,
                "updated_count": e.updated_count,
                "error": str(e),
            }, LogLevel.ERROR)
            raise
        except Exception as e:
            self._log("replacement_rejected", {
                "source": source_ref,
                "target": target_ref,
                "error": str(e),
                "type": type(e).__name__,
            }, LogLevel.WARNING)
            raise
        finally:
            unsubscribe()

        self._log("replacement_completed", result.to_dict(),
                  LogLevel.WARNING if result.has_warnings else LogLevel.INFO)
        return result

    def cancel_replacement(self) -> bool:
        return self.replacement_engine.cancel()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def dispose(self) -> None:
        self.watcher.dispose()

    def _on_external_change(self, reason: str) -> None:
        if self.store.invalidate_current(reason):
            self._log("audit_invalidated", {"reason": reason})

    def _on_replacement_state(self, change: StateChange) -> None:
        if change.current == ReplacementState.PROCESSING:
            self._log("checkpoint_created", {"title": change.detail})

    def _log(self, event_type: str, data: dict, level: LogLevel = LogLevel.INFO) -> None:
        if self.operation_log is not None:
            self.operation_log.log_event(event_type, data, level)
