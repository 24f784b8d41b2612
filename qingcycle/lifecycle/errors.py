"""
Lifecycle error kinds.

Every error names the resource handle, the phase or step that failed and
the last remote state observed, so an operator can decide whether to retry,
step in by hand, or abandon the resource.
"""

from typing import Any, List, Optional, Sequence


class LifecycleError(Exception):
    """Base exception for resource lifecycle failures."""

    def __init__(
        self,
        message: str,
        handle: Any = None,
        phase: Optional[str] = None,
        last_state: Any = None,
    ):
        self.message = message
        self.handle = handle
        self.phase = phase
        self.last_state = last_state
        super().__init__(self._render())

    def _render(self) -> str:
        parts = []
        if self.handle is not None:
            parts.append(f"[{self.handle}]")
        if self.phase:
            parts.append(f"{self.phase}:")
        parts.append(self.message)
        if self.last_state is not None:
            parts.append(f"(last state: {self.last_state})")
        return " ".join(parts)


class PreconditionError(LifecycleError):
    """Input rejected before any remote call was made."""


class PlanError(LifecycleError):
    """An update plan could not be ordered."""


class RetryExhaustedError(LifecycleError):
    """Transient errors persisted past the retry bound."""

    def __init__(self, last_error: BaseException, attempts: int, **kwargs):
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(
            f"gave up after {attempts} attempts: {last_error}", **kwargs
        )


class TransitionTimeoutError(LifecycleError):
    """The resource did not reach a stable state in time."""

    def __init__(self, timeout: float, **kwargs):
        self.timeout = timeout
        super().__init__(
            f"resource did not reach a stable state within {timeout:g}s", **kwargs
        )


class UnexpectedDisappearanceError(LifecycleError):
    """The resource vanished while a non-delete transition was awaited."""


class DeadlineExceededError(LifecycleError):
    """The caller's deadline passed while waiting."""


class PartialUpdateFailure(LifecycleError):
    """
    An update plan stopped part way.

    ``applied_steps`` lists, in order, the steps that completed before
    ``failed_step`` raised ``cause``. Steps are idempotent, so re-invoking
    the update resumes with the remainder.
    """

    def __init__(
        self,
        failed_step: str,
        applied_steps: Sequence[str],
        cause: BaseException,
        **kwargs,
    ):
        self.failed_step = failed_step
        self.applied_steps: List[str] = list(applied_steps)
        self.cause = cause
        applied = ", ".join(self.applied_steps) or "none"
        kwargs.setdefault("phase", f"step '{failed_step}'")
        if kwargs.get("last_state") is None:
            kwargs["last_state"] = getattr(cause, "last_state", None)
        super().__init__(f"{cause} [applied: {applied}]", **kwargs)
