"""
Checkpoint Manager

Creates the named, timestamped snapshot that must exist before any node is
mutated. There is no programmatic rollback: the title is surfaced so the user
can restore the snapshot from the host's version history.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from .errors import CheckpointError
from .host import DocumentHost
from .models import CheckpointRecord

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def format_checkpoint_title(label: str, when: datetime) -> str:
    """``"<label> - <timestamp>"``"""
    return f"{label} - {when.strftime(TIMESTAMP_FORMAT)}"


def format_rollback_guidance(record: Optional[CheckpointRecord]) -> str:
    """User-facing message pointing at the checkpoint to restore."""
    if record is None:
        return "No checkpoint was created; the document was not modified."
    return (
        f"Changes were partially applied. To undo them, restore the checkpoint "
        f"\"{record.title}\" from the document's version history."
    )


class CheckpointManager:
    """
    Wraps the host's snapshot capability.

    Example:
        manager = CheckpointManager(host)
        record = await manager.create_checkpoint("Replace H1 with Title")
    """

    def __init__(self, host: DocumentHost, clock: Optional[Callable[[], datetime]] = None):
        self.host = host
        self._clock = clock or datetime.now
        self.history: List[CheckpointRecord] = []

    @property
    def last_checkpoint(self) -> Optional[CheckpointRecord]:
        return self.history[-1] if self.history else None

    async def create_checkpoint(self, label: str) -> CheckpointRecord:
        """
        Create a snapshot titled ``"<label> - <timestamp>"``.

        Raises:
            CheckpointError: The host rejected the snapshot
        """
        created_at = self._clock()
        title = format_checkpoint_title(label, created_at)

        try:
            await self.host.create_snapshot(title)
        except Exception as e:
            logger.error(f"Checkpoint '{title}' rejected by host: {e}")
            raise CheckpointError(f"Could not create checkpoint '{title}': {e}") from e

        record = CheckpointRecord(title=title, created_at=created_at)
        self.history.append(record)
        logger.info(f"Checkpoint created: {title}")
        return record
