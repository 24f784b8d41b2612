"""
Resource driver interface.

A driver holds everything that is specific to one resource kind: which
remote states are stable, how describe responses map to attributes, which
requests provision and terminate the resource and which ordered steps an
update needs. The orchestrator stays generic over this contract.
"""

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar, Dict, FrozenSet, List, Optional, Type

from ..clients.requests import RemoteRequest
from ..lifecycle.deadline import Deadline
from ..lifecycle.errors import PreconditionError
from ..lifecycle.plan import StepContext, UpdatePlan, UpdateStep
from ..models import ABSENT, AttributeSet, Observation, RemoteState, ResourceHandle, StateClass

if TYPE_CHECKING:
    from ..lifecycle.poller import StateTransitionPoller


class ResourceDriver(ABC):
    """Base class for all resource drivers."""

    kind: ClassVar[str] = ""
    attributes_model: ClassVar[Type[AttributeSet]] = AttributeSet

    # QingCloud resource type used when binding tags
    RESOURCE_TYPE: ClassVar[str] = ""

    STABLE_STATES: ClassVar[FrozenSet[str]] = frozenset()
    TRANSITIONAL_STATES: ClassVar[FrozenSet[str]] = frozenset({"pending"})
    GONE_STATES: ClassVar[FrozenSet[str]] = frozenset()

    FORCE_NEW_FIELDS: ClassVar[FrozenSet[str]] = frozenset()

    def __init__(self, poll_interval: float = 5.0):
        self.poll_interval = poll_interval
        self.logger = logging.getLogger(f"{self.__class__.__name__}")

    def stable_states(self) -> FrozenSet[str]:
        return self.STABLE_STATES

    def transitional_states(self) -> FrozenSet[str]:
        return self.TRANSITIONAL_STATES

    def gone_states(self) -> FrozenSet[str]:
        return self.GONE_STATES

    def classify(self, state: RemoteState) -> StateClass:
        """
        Classify an observed state.

        A state is stable only when its status is stable and no transition
        is in flight. Unknown statuses are waited out like transitional ones.
        """
        if state.status == ABSENT or state.status in self.gone_states():
            return StateClass.GONE
        if state.transition_status:
            return StateClass.TRANSITIONAL
        if state.status in self.stable_states():
            return StateClass.STABLE
        return StateClass.TRANSITIONAL

    def new_handle(self, resource_id: str) -> ResourceHandle:
        return ResourceHandle(self.kind, resource_id)

    # Remote bindings

    @abstractmethod
    def describe_request(self, resource_id: str) -> RemoteRequest:
        """Request describing one resource."""

    @abstractmethod
    def interpret(self, response: Dict[str, Any]) -> Observation:
        """Map a describe response to the observed state and attributes."""

    @abstractmethod
    def provision_request(self, desired: AttributeSet) -> RemoteRequest:
        """Request creating the resource with what provisioning can carry."""

    @abstractmethod
    def handle_from(self, response: Dict[str, Any]) -> ResourceHandle:
        """Extract the new resource handle from a provisioning response."""

    @abstractmethod
    def creation_baseline(self, desired: AttributeSet) -> AttributeSet:
        """Attributes the resource has right after provisioning."""

    @abstractmethod
    def terminate_request(self, resource_id: str) -> RemoteRequest:
        """Request deleting the resource."""

    @abstractmethod
    def update_steps(self) -> List[UpdateStep]:
        """Every step an update may need, in declaration order."""

    # Preconditions and planning

    def check_create(self, desired: AttributeSet) -> None:
        """Reject invalid create input before any remote call."""

    async def before_mutation(
        self,
        poller: "StateTransitionPoller",
        handle: ResourceHandle,
        deadline: Optional[Deadline] = None,
    ) -> None:
        """
        Wait for kind-specific conditions before the first mutating call.

        Called once before the steps of an update and once before the
        terminate call. Most kinds have nothing to wait for.
        """

    def check_update(self, desired: AttributeSet, current: AttributeSet) -> None:
        """Reject updates that would need the resource to be replaced."""
        changed = desired.changed_fields(current) & self.FORCE_NEW_FIELDS
        if changed:
            raise PreconditionError(
                f"changing {', '.join(sorted(changed))} requires a new {self.kind}",
                phase="update",
            )

    def build_update_plan(
        self, desired: AttributeSet, current: AttributeSet
    ) -> UpdatePlan:
        return UpdatePlan.build(self.update_steps(), desired, current)


async def run_resize_legs(
    ctx: StepContext,
    stop_request: RemoteRequest,
    resize_request: Optional[RemoteRequest],
    start_request: RemoteRequest,
    running: bool,
) -> None:
    """
    Stop, resize and start a resource, awaiting a stable state after each leg.

    Legs are chosen from the live state seen by the step's pre-step await.
    Any stable state other than the kind's running state (stopped,
    suspended) counts as powered off: it is never stopped again and is
    started whenever ``running`` is desired. ``resize_request`` is None when
    the live size already matches.
    """
    observation = ctx.observation or await ctx.await_stable()
    is_running = bool(observation.attributes and observation.attributes.running)
    needs_resize = resize_request is not None

    if is_running and (needs_resize or not running):
        await ctx.call(stop_request)
        await ctx.await_stable()

    if resize_request is not None:
        await ctx.call(resize_request)
        await ctx.await_stable()

    if running and (needs_resize or not is_running):
        await ctx.call(start_request)
        await ctx.await_stable()


def live_attributes(ctx: StepContext) -> Any:
    """Attributes seen by the step's pre-step await, or the declared current ones."""
    if ctx.observation is not None and ctx.observation.attributes is not None:
        return ctx.observation.attributes
    return ctx.current
