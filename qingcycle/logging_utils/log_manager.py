"""
Simple centralized log manager.
"""

import json
import logging
from pathlib import Path
from typing import Callable, List, Optional, Union

from .events import LogEvent


class LogManager:
    """Keeps lifecycle events in memory and optionally appends them to a JSONL file."""

    def __init__(self, event_log: Optional[Union[str, Path]] = None):
        self.logger = logging.getLogger("LogManager")
        self.events: List[LogEvent] = []
        self._subscribers: List[Callable[[LogEvent], None]] = []

        self.event_log_file: Optional[Path] = None
        if event_log is not None:
            self.event_log_file = Path(event_log)
            self.event_log_file.parent.mkdir(parents=True, exist_ok=True)

    async def emit_event(self, event: LogEvent) -> None:
        """Emit a log event."""
        self.events.append(event)

        for handler in self._subscribers:
            handler(event)

        if self.event_log_file is not None:
            self._write_event_to_file(event)

    def subscribe(self, handler: Callable[[LogEvent], None]) -> None:
        """Call ``handler`` for every event emitted from now on."""
        self._subscribers.append(handler)

    def _write_event_to_file(self, event: LogEvent) -> None:
        """Write event to JSONL file."""
        assert self.event_log_file is not None
        try:
            event_dict = {
                "event_type": event.event_type,
                "timestamp": event.timestamp.isoformat() if event.timestamp else "",
                "correlation_id": event.correlation_id,
                "handle": event.handle,
                **{
                    k: v
                    for k, v in event.__dict__.items()
                    if k
                    not in [
                        "event_type",
                        "timestamp",
                        "correlation_id",
                        "handle",
                        "metadata",
                    ]
                },
                **(event.metadata or {}),
            }

            with open(self.event_log_file, "a") as f:
                f.write(json.dumps(event_dict, default=str) + "\n")

        except OSError as e:
            self.logger.error(f"Failed to write event to file: {e}")
