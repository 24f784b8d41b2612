"""
Lifecycle events for the centralized event log.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class LogEvent:
    """Base class for all log events."""

    correlation_id: str
    event_type: str = ""
    timestamp: Optional[datetime] = None
    handle: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if self.metadata is None:
            self.metadata = {}
        if self.timestamp is None:
            self.timestamp = datetime.now()


@dataclass
class OperationStarted(LogEvent):
    """Emitted when create, update or delete begins."""

    operation: str = ""

    def __post_init__(self):
        super().__post_init__()
        self.event_type = "operation_started"


@dataclass
class OperationCompleted(LogEvent):
    """Emitted when create, update or delete ends."""

    operation: str = ""
    success: bool = False
    duration_seconds: float = 0.0
    error_message: Optional[str] = None

    def __post_init__(self):
        super().__post_init__()
        self.event_type = "operation_completed"


@dataclass
class StepStarted(LogEvent):
    """Emitted when an update step starts."""

    step_name: str = ""
    fields: Optional[List[str]] = None

    def __post_init__(self):
        super().__post_init__()
        self.event_type = "step_started"


@dataclass
class StepCompleted(LogEvent):
    """Emitted when an update step finishes or fails."""

    step_name: str = ""
    success: bool = False
    duration_seconds: float = 0.0
    error_message: Optional[str] = None

    def __post_init__(self):
        super().__post_init__()
        self.event_type = "step_completed"


@dataclass
class StateObserved(LogEvent):
    """Emitted for every state the poller sees."""

    state: str = ""
    state_class: str = ""

    def __post_init__(self):
        super().__post_init__()
        self.event_type = "state_observed"
