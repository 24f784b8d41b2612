"""
Progress tracking with rich progress integration for lifecycle runs.
"""

from typing import List, Optional

from rich.console import Console, Group
from rich.live import Live
from rich.progress import Progress, SpinnerColumn, TaskID, TextColumn, TimeElapsedColumn
from rich.text import Text

from .events import LogEvent, OperationCompleted, StateObserved, StepCompleted
from .log_manager import LogManager


class ProgressTracker:
    """Shows a spinner plus one line per finished update step."""

    def __init__(self, log_manager: LogManager, console: Optional[Console] = None):
        self.log_manager = log_manager
        self.console = console or Console()
        self._progress: Optional[Progress] = None
        self._task: Optional[TaskID] = None
        self._step_messages: List[str] = []
        self._live: Optional[Live] = None
        log_manager.subscribe(self.handle_event)

    def start(self, title: str) -> None:
        """Start the live display."""
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            TimeElapsedColumn(),
        )
        self._task = self._progress.add_task(title, total=None)
        self._live = Live(
            self._create_display(), console=self.console, refresh_per_second=10
        )
        self._live.start()

    def _create_display(self):
        """Create the display group with progress bar and step messages."""
        if not self._progress:
            return Text("")

        step_text = Text()
        for msg in self._step_messages:
            step_text.append(f"{msg}\n")

        return Group(self._progress, step_text)

    def _refresh(self) -> None:
        if self._live:
            self._live.update(self._create_display())

    def add_step_message(self, message: str, completed: bool = True) -> None:
        status_icon = "✅" if completed else "❌"
        self._step_messages.append(f"{message} {status_icon}")
        self._refresh()

    def handle_event(self, event: LogEvent) -> None:
        """Translate lifecycle events into display updates."""
        if isinstance(event, StepCompleted):
            self.add_step_message(event.step_name, completed=event.success)
        elif isinstance(event, StateObserved):
            if self._progress and self._task is not None:
                self._progress.update(
                    self._task, description=f"{event.handle}: {event.state}"
                )
                self._refresh()
        elif isinstance(event, OperationCompleted) and not event.success:
            self.add_step_message(f"{event.operation} failed", completed=False)

    @property
    def messages(self) -> List[str]:
        return list(self._step_messages)

    def stop(self) -> None:
        """Stop the live display."""
        if self._live:
            self._live.stop()
            self._live = None
        self._progress = None
        self._task = None
