"""
Logging Utilities for docgov

- configure_logging(): console handler for the CLI
- OperationLog: append-only JSONL trail of audit/replacement run events
"""

import json
import logging
import sys
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


class LogLevel(str, Enum):
    """Levels accepted by OperationLog."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


def configure_logging(level: str = "INFO", stream=None) -> None:
    """Install a single console handler on the ``docgov_core`` logger."""
    root = logging.getLogger("docgov_core")
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    for handler in list(root.handlers):
        if getattr(handler, "_docgov_console", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._docgov_console = True
    root.addHandler(handler)


class OperationLog:
    """
    File-based structured event log.

    Events are written to ``{log_dir}/events.jsonl``, one JSON object per line:
        {"timestamp": ..., "level": "INFO", "type": "audit_completed", "data": {...}}
    """

    def __init__(
        self,
        log_dir: Path,
        filename: str = "events.jsonl",
        min_level: LogLevel = LogLevel.INFO,
    ):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.min_level = min_level
        self.path = self.log_dir / filename

    def _should_log(self, level: LogLevel) -> bool:
        levels = [LogLevel.DEBUG, LogLevel.INFO, LogLevel.WARNING, LogLevel.ERROR]
        return levels.index(level) >= levels.index(self.min_level)

    def log_event(self, event_type: str, data: Dict[str, Any], level: LogLevel = LogLevel.INFO) -> None:
        """
        Append a structured event.

        Args:
            event_type: e.g. "audit_completed", "replacement_failed"
            data: JSON-serializable payload
            level: Log level
        """
        if not self._should_log(level):
            return

        event = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level.value,
            "type": event_type,
            "data": data,
        }
        try:
            with self.path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(event, default=str) + "\n")
        except OSError as e:
            # Best effort: a write failure never fails the run
            logger.warning(f"Cannot write event log {self.path}: {e}")

    def read_events(self, event_type: Optional[str] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Read back events, newest last."""
        if not self.path.exists():
            return []

        events = []
        with self.path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning(f"Skipping malformed event line in {self.path}")
                    continue
                if event_type is None or event.get("type") == event_type:
                    events.append(event)

        if limit is not None:
            events = events[-limit:]
        return events
