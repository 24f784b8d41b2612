"""
Centralized lifecycle event logging.

This module provides a simple, event-driven logging system with
visual progress tracking integration.
"""

from .events import (
    LogEvent,
    OperationCompleted,
    OperationStarted,
    StateObserved,
    StepCompleted,
    StepStarted,
)
from .log_manager import LogManager
from .progress_tracker import ProgressTracker

__all__ = [
    "LogManager",
    "LogEvent",
    "OperationStarted",
    "OperationCompleted",
    "StepStarted",
    "StepCompleted",
    "StateObserved",
    "ProgressTracker",
]
