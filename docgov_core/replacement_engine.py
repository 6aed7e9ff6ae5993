"""
Replacement Engine

Rewrites the binding of many content nodes from one definition to another,
behind a checkpoint, in adaptively sized batches.

States:
    idle -> validating -> creating_checkpoint -> processing -> {complete | error} -> idle

Guarantees:
- Validation failures happen before any checkpoint or mutation.
- No checkpoint, no mutation: a rejected snapshot ends the run in ``error``.
- A persistent failure during processing stops further batches; bindings
  already rewritten stay rewritten and the checkpoint title is reported for
  a manual restore. No automatic revert is attempted.
- Once processing has started, any existing AuditResult is invalidated
  whatever the outcome.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence

from .audit_engine import AuditResultStore
from .batch_processor import BatchProcessor, per_node
from .checkpoint import CheckpointManager, format_rollback_guidance
from .config import ReplacementConfig
from .errors import (
    EngineKind,
    PartialNodeFailure,
    ReplacementAbortedError,
    ValidationError,
)
from .host import DocumentHost
from .models import ProgressEvent, ReplacementResult, StyleDefinition
from .resilience import RetryPolicy
from .state_machine import OperationGuard, StateChange, StateMachine

logger = logging.getLogger(__name__)


class ReplacementState(str, Enum):
    """Replacement engine states. No cancelled state exists."""
    IDLE = "idle"
    VALIDATING = "validating"
    CREATING_CHECKPOINT = "creating_checkpoint"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


REPLACEMENT_TRANSITIONS = {
    ReplacementState.IDLE: frozenset({ReplacementState.VALIDATING}),
    ReplacementState.VALIDATING: frozenset({ReplacementState.CREATING_CHECKPOINT, ReplacementState.ERROR}),
    ReplacementState.CREATING_CHECKPOINT: frozenset({ReplacementState.PROCESSING, ReplacementState.ERROR}),
    ReplacementState.PROCESSING: frozenset({ReplacementState.COMPLETE, ReplacementState.ERROR}),
    ReplacementState.COMPLETE: frozenset({ReplacementState.IDLE}),
    ReplacementState.ERROR: frozenset({ReplacementState.IDLE}),
}

REPLACEMENT_TERMINAL = frozenset({ReplacementState.COMPLETE, ReplacementState.ERROR})


@dataclass
class ReplacementOptions:
    """
    Per-run replacement options.

    Attributes:
        checkpoint_label: Snapshot label (default: "<config label>: <source> -> <target>")
        require_source_binding: Skip nodes no longer bound to the source
        hard_limit: Maximum number of node ids (default from ReplacementConfig)
    """
    checkpoint_label: Optional[str] = None
    require_source_binding: bool = True
    hard_limit: Optional[int] = None


class ReplacementEngine:
    """
    Six-state replacement state machine.

    Example:
        engine = ReplacementEngine(host, store=store)
        result = await engine.replace("style-a", "style-b", result.nodes_using("style-a"))
    """

    def __init__(
        self,
        host: DocumentHost,
        config: Optional[ReplacementConfig] = None,
        retry_policy: Optional[RetryPolicy] = None,
        checkpoints: Optional[CheckpointManager] = None,
        store: Optional[AuditResultStore] = None,
        guard: Optional[OperationGuard] = None,
    ):
        self.host = host
        self.config = config or ReplacementConfig()
        self.retry_policy = retry_policy or RetryPolicy()
        self.checkpoints = checkpoints or CheckpointManager(host)
        self.store = store
        self.guard = guard or OperationGuard(EngineKind.REPLACEMENT)
        self.machine: StateMachine = StateMachine(
            "replacement",
            ReplacementState,
            REPLACEMENT_TRANSITIONS,
            ReplacementState.IDLE,
            REPLACEMENT_TERMINAL,
        )
        self._progress_listeners: List[Callable[[ProgressEvent], None]] = []
        self._cancel_requested = False

    @property
    def state(self) -> ReplacementState:
        return self.machine.state

    @property
    def is_busy(self) -> bool:
        return self.guard.busy

    def subscribe(
        self,
        on_progress: Optional[Callable[[ProgressEvent], None]] = None,
        on_state_change: Optional[Callable[[StateChange], None]] = None,
    ) -> Callable[[], None]:
        """Register callbacks before ``replace()``; returns an unsubscribe callable."""
        removers = []
        if on_progress is not None:
            self._progress_listeners.append(on_progress)

            def remove_progress():
                if on_progress in self._progress_listeners:
                    self._progress_listeners.remove(on_progress)

            removers.append(remove_progress)
        if on_state_change is not None:
            removers.append(self.machine.add_listener(on_state_change))

        def unsubscribe():
            for remove in removers:
                remove()

        return unsubscribe

    def cancel(self) -> bool:
        """
        Request cancellation. Only honoured while validating; once the
        checkpoint is being created the run goes to completion or error.
        """
        if self.machine.state != ReplacementState.VALIDATING:
            return False
        self._cancel_requested = True
        logger.info("Replacement cancellation requested during validation")
        return True

    async def replace(
        self,
        source_ref: str,
        target_ref: str,
        node_ids: Sequence[str],
        options: Optional[ReplacementOptions] = None,
    ) -> ReplacementResult:
        """
        Rebind ``node_ids`` from ``source_ref`` to ``target_ref``.

        Raises:
            BusyError: A replacement is already running (no side effect)
            ValidationError: Bad arguments; nothing was checkpointed or mutated
            CheckpointError: Snapshot rejected; nothing was mutated
            ReplacementAbortedError: Persistent failure after mutation began
        """
        token = self.guard.acquire()
        mutation_started = False
        try:
            self._cancel_requested = False
            options = options or ReplacementOptions()
            started = time.monotonic()
            self.machine.transition(ReplacementState.VALIDATING, f"{source_ref} -> {target_ref}")

            try:
                targets = await self._validate(source_ref, target_ref, node_ids, options)
                if self._cancel_requested:
                    raise ValidationError("Replacement cancelled before checkpoint creation")
            except Exception as e:
                logger.warning(f"Replacement rejected: {e}")
                self.machine.finish(ReplacementState.ERROR, str(e))
                raise

            self.machine.transition(ReplacementState.CREATING_CHECKPOINT)
            label = options.checkpoint_label or (
                f"{self.config.checkpoint_label}: {source_ref} -> {target_ref}"
            )
            try:
                record = await self.checkpoints.create_checkpoint(label)
            except Exception as e:
                self.machine.finish(ReplacementState.ERROR, str(e))
                raise

            self.machine.transition(ReplacementState.PROCESSING, record.title)
            mutation_started = True
            self._invalidate_audit(source_ref, target_ref)
            processor = BatchProcessor(self.retry_policy, on_progress=self._emit)

            async def rewrite(node_id: str) -> None:
                await self._rewrite_node(node_id, source_ref, target_ref, options)

            try:
                summary = await processor.run(targets, per_node(rewrite))
            except Exception as e:
                processed = getattr(e, "processed", 0)
                failed = list(getattr(e, "failed_nodes", []))
                guidance = format_rollback_guidance(record)
                logger.error(
                    f"Replacement {source_ref} -> {target_ref} aborted after {processed} nodes; "
                    f"checkpoint '{record.title}'"
                )
                self._invalidate_audit(source_ref, target_ref)
                self.machine.finish(ReplacementState.ERROR, str(e))
                raise ReplacementAbortedError(
                    f"Replacement aborted: {e}. {guidance}",
                    checkpoint_title=record.title,
                    updated_count=processed - len(failed),
                    failed_nodes=failed,
                    guidance=guidance,
                ) from e

            result = ReplacementResult(
                source_ref=source_ref,
                target_ref=target_ref,
                updated_count=summary.updated_count,
                failed_nodes=summary.failed_nodes,
                checkpoint_title=record.title,
                duration_seconds=time.monotonic() - started,
                batch_sizes=summary.batch_sizes,
            )
            if result.has_warnings:
                logger.warning(
                    f"Replacement {source_ref} -> {target_ref} completed with "
                    f"{len(result.failed_nodes)} skipped nodes"
                )
            else:
                logger.info(f"Replacement {source_ref} -> {target_ref}: {result.updated_count} nodes updated")
            self._invalidate_audit(source_ref, target_ref)
            self.machine.finish(ReplacementState.COMPLETE, record.title)
            return result

        finally:
            if not self.machine.is_idle:
                # Interrupted from outside (task cancellation); close the run
                if mutation_started:
                    self._invalidate_audit(source_ref, target_ref)
                self.machine.finish(ReplacementState.ERROR, "interrupted")
            self._cancel_requested = False
            self.guard.release(token)

    # -------------------------------------------------------------------------
    # Phases
    # -------------------------------------------------------------------------

    async def _validate(
        self,
        source_ref: str,
        target_ref: str,
        node_ids: Sequence[str],
        options: ReplacementOptions,
    ) -> List[str]:
        if source_ref == target_ref:
            raise ValidationError(f"Source and target are the same definition '{source_ref}'")
        if not node_ids:
            raise ValidationError("No affected nodes to replace")

        targets = list(dict.fromkeys(node_ids))
        if len(targets) != len(node_ids):
            logger.debug(f"Dropped {len(node_ids) - len(targets)} duplicate node ids")

        hard_limit = self.config.hard_limit if options.hard_limit is None else options.hard_limit
        if len(targets) > hard_limit:
            raise ValidationError(f"{len(targets)} nodes exceeds the replacement limit of {hard_limit}")

        source = await self._resolve(source_ref, "source")
        target = await self._resolve(target_ref, "target")
        if source.kind != target.kind:
            raise ValidationError(
                f"Cannot replace {source.kind.value} '{source_ref}' with {target.kind.value} '{target_ref}'"
            )
        return targets

    async def _resolve(self, ref: str, role: str) -> StyleDefinition:
        definition = await self.retry_policy.run(
            lambda: self.host.get_definition(ref), label=f"resolve {role}"
        )
        if definition is None:
            raise ValidationError(f"Unknown {role} definition '{ref}'")
        return definition

    async def _rewrite_node(
        self,
        node_id: str,
        source_ref: str,
        target_ref: str,
        options: ReplacementOptions,
    ) -> None:
        node = await self.host.get_node(node_id)
        if node is None:
            raise PartialNodeFailure(node_id, "node no longer exists")
        if node.binding == target_ref:
            # Already rewritten by an earlier attempt of this batch
            return
        if node.locked:
            raise PartialNodeFailure(node_id, "node is locked")
        if options.require_source_binding and node.binding != source_ref:
            raise PartialNodeFailure(
                node_id, f"binding changed to '{node.binding}' since the audit"
            )
        await self.host.set_binding(node_id, target_ref)

    def _invalidate_audit(self, source_ref: str, target_ref: str) -> None:
        if self.store is not None:
            self.store.record_mutation(f"bindings replaced: {source_ref} -> {target_ref}")

    def _emit(self, event: ProgressEvent) -> None:
        for listener in list(self._progress_listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"Replacement progress listener failed: {e}")
