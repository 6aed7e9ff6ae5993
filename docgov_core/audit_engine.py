"""
Audit Engine

Scans the document for leaf nodes, extracts per-node binding metadata and
publishes one immutable AuditResult (style/token inventory + usage).

States:
    idle -> validating -> scanning -> processing -> {complete | error | cancelled} -> idle

Publication is all-or-nothing: partial scan data is discarded on error or
cancellation. Cancellation is cooperative and observed only between pages
(scanning) and chunks (processing).
"""

import asyncio
import logging
import time
import uuid
from collections import Counter
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional, Set

from .config import AuditConfig
from .errors import (
    AuditCancelledError,
    EngineKind,
    PersistentError,
    ValidationError,
)
from .host import DocumentHost
from .models import (
    AuditResult,
    ContentNodeRef,
    NodeAuditEntry,
    NodeCategory,
    ProgressEvent,
)
from .resilience import RetryPolicy
from .state_machine import OperationGuard, StateChange, StateMachine

logger = logging.getLogger(__name__)


class AuditState(str, Enum):
    """Audit engine states."""
    IDLE = "idle"
    VALIDATING = "validating"
    SCANNING = "scanning"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"


AUDIT_TRANSITIONS = {
    AuditState.IDLE: frozenset({AuditState.VALIDATING}),
    AuditState.VALIDATING: frozenset({AuditState.SCANNING, AuditState.ERROR, AuditState.CANCELLED}),
    AuditState.SCANNING: frozenset({AuditState.PROCESSING, AuditState.ERROR, AuditState.CANCELLED}),
    AuditState.PROCESSING: frozenset({AuditState.COMPLETE, AuditState.ERROR, AuditState.CANCELLED}),
    AuditState.COMPLETE: frozenset({AuditState.IDLE}),
    AuditState.ERROR: frozenset({AuditState.IDLE}),
    AuditState.CANCELLED: frozenset({AuditState.IDLE}),
}

AUDIT_TERMINAL = frozenset({AuditState.COMPLETE, AuditState.ERROR, AuditState.CANCELLED})


@dataclass
class AuditOptions:
    """
    Per-run audit options. Unset limits fall back to AuditConfig.

    Attributes:
        root_id: Restrict the scan to leaves under this container
        include_hidden: Keep hidden nodes in the inventory
    """
    root_id: Optional[str] = None
    include_hidden: bool = True
    page_size: Optional[int] = None
    chunk_size: Optional[int] = None
    warn_threshold: Optional[int] = None
    hard_limit: Optional[int] = None


class AuditResultStore:
    """
    Holder of the single process-wide AuditResult.

    A new audit replaces the result entirely; an old result is never patched.
    ``generation`` counts document mutations; an audit that saw it change
    while running publishes its result already invalidated.
    """

    def __init__(self):
        self._current: Optional[AuditResult] = None
        self._generation = 0
        self._last_mutation: Optional[str] = None

    @property
    def current(self) -> Optional[AuditResult]:
        return self._current

    @property
    def invalidated(self) -> bool:
        return self._current is not None and self._current.invalidated

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def last_mutation(self) -> Optional[str]:
        return self._last_mutation

    def publish(self, result: AuditResult) -> None:
        previous = self._current
        self._current = result
        if previous is not None:
            logger.debug(f"Audit result {previous.audit_id} replaced by {result.audit_id}")

    def invalidate_current(self, reason: str) -> bool:
        """Flag the current result stale. Returns True if it was fresh."""
        if self._current is None:
            return False
        changed = self._current.invalidate(reason)
        if changed:
            logger.info(f"Audit result {self._current.audit_id} invalidated: {reason}")
        return changed

    def record_mutation(self, reason: str) -> bool:
        """Count a document mutation and flag the current result stale."""
        self._generation += 1
        self._last_mutation = reason
        return self.invalidate_current(reason)

    def clear(self) -> None:
        self._current = None


class AuditEngine:
    """
    Seven-state audit state machine.

    Example:
        engine = AuditEngine(host, AuditConfig())
        engine.subscribe(on_progress=print)
        result = await engine.start(AuditOptions(root_id="page-1"))
    """

    def __init__(
        self,
        host: DocumentHost,
        config: Optional[AuditConfig] = None,
        retry_policy: Optional[RetryPolicy] = None,
        store: Optional[AuditResultStore] = None,
        guard: Optional[OperationGuard] = None,
    ):
        self.host = host
        self.config = config or AuditConfig()
        self.retry_policy = retry_policy or RetryPolicy()
        self.store = store
        self.guard = guard or OperationGuard(EngineKind.AUDIT)
        self.machine: StateMachine = StateMachine(
            "audit", AuditState, AUDIT_TRANSITIONS, AuditState.IDLE, AUDIT_TERMINAL
        )
        self._progress_listeners: List[Callable[[ProgressEvent], None]] = []
        self._cancel_requested = False

    @property
    def state(self) -> AuditState:
        return self.machine.state

    @property
    def is_busy(self) -> bool:
        return self.guard.busy

    def subscribe(
        self,
        on_progress: Optional[Callable[[ProgressEvent], None]] = None,
        on_state_change: Optional[Callable[[StateChange], None]] = None,
    ) -> Callable[[], None]:
        """Register callbacks before ``start()``; returns an unsubscribe callable."""
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
        """Request cancellation at the next page/chunk boundary."""
        if self.machine.is_idle:
            return False
        self._cancel_requested = True
        logger.info("Audit cancellation requested")
        return True

    async def start(self, options: Optional[AuditOptions] = None) -> AuditResult:
        """
        Run a full audit.

        Raises:
            BusyError: An audit is already running (raised before any side effect)
            ValidationError: Node count over the hard limit
            AuditCancelledError: Cancelled at a boundary
            Exception: Any unrecoverable host failure
        """
        token = self.guard.acquire()
        try:
            self._cancel_requested = False
            options = options or AuditOptions()
            generation = self.store.generation if self.store is not None else 0
            started = time.monotonic()
            self.machine.transition(AuditState.VALIDATING)

            try:
                expected, warnings = await self._validate(options)
                self._check_cancelled()

                self.machine.transition(AuditState.SCANNING)
                nodes = await self._scan(options, expected)

                self.machine.transition(AuditState.PROCESSING)
                result = await self._process(nodes, warnings, started, options)

            except AuditCancelledError:
                logger.info("Audit cancelled; partial data discarded")
                self.machine.finish(AuditState.CANCELLED, "cancelled")
                raise
            except Exception as e:
                logger.error(f"Audit failed in {self.machine.state.value}: {e}")
                self.machine.finish(AuditState.ERROR, str(e))
                raise

            if self.store is not None:
                if self.store.generation != generation:
                    result.invalidate(f"document mutated during the audit ({self.store.last_mutation})")
                self.store.publish(result)
            logger.info(
                f"Audit {result.audit_id} complete: {result.total_nodes} nodes, "
                f"{len(result.definitions)} definitions in {result.duration_seconds:.2f}s"
            )
            self.machine.finish(AuditState.COMPLETE, result.audit_id)
            return result

        finally:
            if not self.machine.is_idle:
                # Interrupted from outside (task cancellation); nothing was published
                self.machine.finish(AuditState.ERROR, "interrupted")
            self._cancel_requested = False
            self.guard.release(token)

    # -------------------------------------------------------------------------
    # Phases
    # -------------------------------------------------------------------------

    def _limit(self, value: Optional[int], default: int) -> int:
        return default if value is None else value

    async def _validate(self, options: AuditOptions):
        page_size = self._limit(options.page_size, self.config.page_size)
        chunk_size = self._limit(options.chunk_size, self.config.chunk_size)
        if page_size <= 0 or chunk_size <= 0:
            raise ValidationError(f"page_size and chunk_size must be positive ({page_size}, {chunk_size})")

        info = await self.retry_policy.run(self.host.describe, label="describe document")
        expected = await self.retry_policy.run(
            lambda: self.host.count_nodes(options.root_id), label="count nodes"
        )

        hard_limit = self._limit(options.hard_limit, self.config.hard_limit)
        warn_threshold = self._limit(options.warn_threshold, self.config.warn_threshold)

        if expected > hard_limit:
            raise ValidationError(
                f"Document '{info.name}' has {expected} matching nodes, above the limit of {hard_limit}; "
                f"narrow the scan to a smaller root"
            )

        warnings = []
        if expected > warn_threshold:
            message = f"Large scan: {expected} nodes exceeds the recommended {warn_threshold}"
            logger.warning(message)
            warnings.append(message)

        logger.debug(f"Audit validated: '{info.name}', {expected} nodes expected")
        return expected, warnings

    async def _scan(self, options: AuditOptions, expected: int) -> List[ContentNodeRef]:
        page_size = self._limit(options.page_size, self.config.page_size)
        hard_limit = self._limit(options.hard_limit, self.config.hard_limit)

        nodes: List[ContentNodeRef] = []
        seen: Set[str] = set()
        cursor: Optional[int] = None
        page_index = 0
        scanned = 0

        while True:
            page = await self.retry_policy.run(
                lambda: self.host.list_nodes(options.root_id, cursor, page_size),
                label=f"list page {page_index}",
            )

            for node in page.nodes:
                scanned += 1
                if node.id in seen:
                    # Concurrent edits can shift paging windows
                    logger.debug(f"Skipping duplicate node {node.id} on page {page_index}")
                    continue
                seen.add(node.id)
                if node.hidden and not options.include_hidden:
                    continue
                nodes.append(node)

            if scanned > hard_limit:
                raise PersistentError(
                    f"Document grew beyond the limit of {hard_limit} nodes during the scan"
                )

            self._emit(ProgressEvent(
                phase="scanning",
                index=page_index,
                size=len(page.nodes),
                processed=scanned,
                total=expected,
            ))
            self._check_cancelled()

            if page.is_last:
                break
            if cursor is not None and page.next_cursor <= cursor:
                raise PersistentError(f"Listing cursor did not advance past {cursor}")
            cursor = page.next_cursor
            page_index += 1

        return nodes

    async def _process(
        self,
        nodes: List[ContentNodeRef],
        warnings: List[str],
        started: float,
        options: AuditOptions,
    ) -> AuditResult:
        chunk_size = self._limit(options.chunk_size, self.config.chunk_size)
        catalog = await self.retry_policy.run(self.host.list_definitions, label="list definitions")
        known = {d.id for d in catalog}

        usage: Counter = Counter()
        entries: List[NodeAuditEntry] = []
        missing: Set[str] = set()

        for index, start in enumerate(range(0, len(nodes), chunk_size)):
            chunk = nodes[start:start + chunk_size]
            for node in chunk:
                if node.binding is None:
                    category = NodeCategory.UNBOUND
                elif node.binding in known:
                    category = NodeCategory.BOUND
                    usage[node.binding] += 1
                else:
                    category = NodeCategory.MISSING
                    missing.add(node.binding)
                entries.append(NodeAuditEntry(
                    node_id=node.id,
                    category=category,
                    binding=node.binding,
                    locked=node.locked,
                    hidden=node.hidden,
                ))

            self._emit(ProgressEvent(
                phase="processing",
                index=index,
                size=len(chunk),
                processed=len(entries),
                total=len(nodes),
            ))
            await asyncio.sleep(0)
            self._check_cancelled()

        if missing:
            warnings.append(
                f"{len(missing)} referenced definitions are missing from the catalog: "
                f"{', '.join(sorted(missing))}"
            )

        now = datetime.now(timezone.utc)
        return AuditResult(
            audit_id=f"audit_{now.strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:6]}",
            timestamp=now,
            total_nodes=len(entries),
            definitions=tuple(replace(d, usage_count=usage[d.id]) for d in catalog),
            nodes=tuple(entries),
            warnings=tuple(warnings),
            duration_seconds=time.monotonic() - started,
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _check_cancelled(self) -> None:
        if self._cancel_requested:
            raise AuditCancelledError(f"Audit cancelled during {self.machine.state.value}")

    def _emit(self, event: ProgressEvent) -> None:
        for listener in list(self._progress_listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"Audit progress listener failed: {e}")
