"""
Lifecycle layer: retry, polling, update plans and the orchestrator.
"""

from .deadline import Deadline
from .errors import (
    DeadlineExceededError,
    LifecycleError,
    PartialUpdateFailure,
    PlanError,
    PreconditionError,
    RetryExhaustedError,
    TransitionTimeoutError,
    UnexpectedDisappearanceError,
)
from .orchestrator import LifecycleOrchestrator, build_orchestrator
from .plan import (
    AppliedStepLedger,
    StepContext,
    UpdatePlan,
    UpdateStep,
    order_steps,
    plan_fingerprint,
)
from .poller import StateTransitionPoller
from .retry import RetryConfig, RetryPolicy

__all__ = [
    "AppliedStepLedger",
    "Deadline",
    "DeadlineExceededError",
    "LifecycleError",
    "LifecycleOrchestrator",
    "PartialUpdateFailure",
    "PlanError",
    "PreconditionError",
    "RetryConfig",
    "RetryExhaustedError",
    "RetryPolicy",
    "StateTransitionPoller",
    "StepContext",
    "TransitionTimeoutError",
    "UnexpectedDisappearanceError",
    "UpdatePlan",
    "UpdateStep",
    "build_orchestrator",
    "order_steps",
    "plan_fingerprint",
]
