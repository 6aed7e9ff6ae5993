"""
Adaptive Batch Processor

Applies a caller-supplied mutation to an ordered list of node ids in
sequential batches, adapting the batch size to observed reliability:

- Start at 100.
- Every successful batch increments the consecutive-success counter; after
  5 in a row below 100 the size grows by 25 and the counter resets.
- A batch whose transient retries are exhausted drops the size to 25 and the
  same slice is attempted once more at that size. Failing again at 25, or any
  persistent failure, aborts the run.
- Per-node failures returned by the mutation are recorded and never count as
  a batch failure.

Batches are processed strictly in list order, one at a time; the loop yields
to the event loop after every batch.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from .errors import BatchAbortedError, ErrorCategory, ErrorClassifier, PartialNodeFailure
from .models import NodeFailure, ProgressEvent
from .resilience import RetryPolicy

logger = logging.getLogger(__name__)

BATCH_SIZES: Tuple[int, ...] = (25, 50, 75, 100)
MIN_BATCH_SIZE = 25
MAX_BATCH_SIZE = 100
BATCH_SIZE_STEP = 25
PROMOTE_AFTER = 5

BatchMutation = Callable[[List[str]], Awaitable[Optional[Sequence[NodeFailure]]]]
ProgressCallback = Callable[[ProgressEvent], None]


@dataclass
class BatchProcessorState:
    """
    Mutable state of one in-flight run. Created per run, discarded after.

    Attributes:
        current_batch_size: Always one of BATCH_SIZES
        consecutive_successes: Reset on every failure and every size change
        cursor: Number of ids handled so far (next batch starts here)
        failed_nodes: Per-node failures recorded so far
        batch_sizes: Sizes of the completed batches, in order
    """
    current_batch_size: int = MAX_BATCH_SIZE
    consecutive_successes: int = 0
    cursor: int = 0
    failed_nodes: List[NodeFailure] = field(default_factory=list)
    batch_sizes: List[int] = field(default_factory=list)

    def __post_init__(self):
        if self.current_batch_size not in BATCH_SIZES:
            raise ValueError(f"Batch size {self.current_batch_size} not in {BATCH_SIZES}")

    @property
    def batch_index(self) -> int:
        return len(self.batch_sizes)

    def set_size(self, size: int) -> None:
        if size not in BATCH_SIZES:
            raise ValueError(f"Batch size {size} not in {BATCH_SIZES}")
        if size != self.current_batch_size:
            self.current_batch_size = size
            self.consecutive_successes = 0

    def record_success(self, count: int, failures: Sequence[NodeFailure] = ()) -> bool:
        """Account for a completed batch. Returns True if the size grew."""
        self.cursor += count
        self.failed_nodes.extend(failures)
        self.batch_sizes.append(count)
        self.consecutive_successes += 1

        if self.current_batch_size < MAX_BATCH_SIZE and self.consecutive_successes >= PROMOTE_AFTER:
            self.set_size(min(MAX_BATCH_SIZE, self.current_batch_size + BATCH_SIZE_STEP))
            return True
        return False

    def record_failure(self) -> bool:
        """Account for a failed batch. Returns True if the size was reduced."""
        self.consecutive_successes = 0
        if self.current_batch_size > MIN_BATCH_SIZE:
            self.set_size(MIN_BATCH_SIZE)
            return True
        return False


@dataclass(frozen=True)
class BatchRunSummary:
    """Outcome of a run that processed every id."""
    processed: int
    failed_nodes: Tuple[NodeFailure, ...]
    batch_sizes: Tuple[int, ...]

    @property
    def updated_count(self) -> int:
        return self.processed - len(self.failed_nodes)

    @property
    def batch_count(self) -> int:
        return len(self.batch_sizes)


def per_node(apply_one: Callable[[str], Awaitable[None]]) -> BatchMutation:
    """
    Build a batch mutation from a single-node coroutine.

    PartialNodeFailure raised for one node is recorded and the batch goes on;
    anything else propagates and fails the whole batch.
    """
    async def mutation(batch_ids: List[str]) -> List[NodeFailure]:
        failures = []
        for node_id in batch_ids:
            try:
                await apply_one(node_id)
            except PartialNodeFailure as e:
                failures.append(NodeFailure(node_id=e.node_id or node_id, reason=e.reason))
        return failures

    return mutation


class BatchProcessor:
    """
    Drives a batch mutation over an ordered id list.

    Example:
        processor = BatchProcessor(RetryPolicy(), on_progress=print)
        summary = await processor.run(node_ids, per_node(rewrite_binding))
    """

    def __init__(
        self,
        retry_policy: Optional[RetryPolicy] = None,
        classifier: Optional[ErrorClassifier] = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.retry_policy = retry_policy or RetryPolicy()
        self.classifier = classifier or self.retry_policy.classifier
        self.on_progress = on_progress

    async def run(self, target_ids: Sequence[str], mutation: BatchMutation) -> BatchRunSummary:
        """
        Process every id in ``target_ids``.

        Raises:
            BatchAbortedError: A batch failed persistently; no later batch was attempted
        """
        ids = list(target_ids)
        total = len(ids)
        state = BatchProcessorState()

        while state.cursor < total:
            size = state.current_batch_size
            batch = ids[state.cursor:state.cursor + size]
            label = f"batch {state.batch_index} ({len(batch)} nodes)"

            try:
                failures = await self.retry_policy.run(lambda: mutation(batch), label=label)

            except Exception as e:
                category = self.classifier.classify(e)

                if category is ErrorCategory.TRANSIENT and state.record_failure():
                    logger.warning(
                        f"{label} failed after retries: {e}; "
                        f"reducing batch size {size} -> {state.current_batch_size} and retrying"
                    )
                    continue

                logger.error(
                    f"{label} failed ({category.value}) at cursor {state.cursor}/{total}: {e}; aborting run"
                )
                raise BatchAbortedError(
                    f"Batch at position {state.cursor} failed: {e}",
                    processed=state.cursor,
                    failed_nodes=state.failed_nodes,
                ) from e

            failures = list(failures or [])
            for failure in failures:
                logger.info(f"Node {failure.node_id} skipped: {failure.reason}")

            index = state.batch_index
            grew = state.record_success(len(batch), failures)
            if grew:
                logger.debug(f"Batch size increased to {state.current_batch_size}")

            self._emit(ProgressEvent(
                phase="batch",
                index=index,
                size=len(batch),
                processed=state.cursor,
                failed=len(state.failed_nodes),
                total=total,
            ))
            await asyncio.sleep(0)

        return BatchRunSummary(
            processed=state.cursor,
            failed_nodes=tuple(state.failed_nodes),
            batch_sizes=tuple(state.batch_sizes),
        )

    def _emit(self, event: ProgressEvent) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(event)
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")
