"""
Update plans and the applied-step ledger.

An update plan is the ordered list of idempotent sub-steps a driver needs to
move a resource from its current attributes to the desired ones. The ledger
records which of them completed during one update request.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterator,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
)

from pydantic import BaseModel, Field

from ..clients.requests import RemoteRequest
from ..models import AttributeSet, Observation, ResourceHandle
from .errors import PlanError


@dataclass
class StepContext:
    """What a step sees while it runs: the resource and the ways to act on it."""

    handle: ResourceHandle
    desired: Any
    current: Any
    call_remote: Callable[[RemoteRequest], Awaitable[Dict[str, Any]]]
    await_remote: Callable[[], Awaitable[Observation]]
    observation: Optional[Observation] = None

    @property
    def resource_id(self) -> str:
        assert self.handle.resource_id is not None
        return self.handle.resource_id

    async def call(self, request: RemoteRequest) -> Dict[str, Any]:
        return await self.call_remote(request)

    async def await_stable(self) -> Observation:
        """Wait until the resource is quiescent and remember what was seen."""
        self.observation = await self.await_remote()
        return self.observation


StepAction = Callable[[StepContext], Awaitable[None]]
StepPredicate = Callable[[Any, Any], bool]


@dataclass(frozen=True)
class UpdateStep:
    """
    One idempotent sub-step of an update.

    ``fields`` are the attributes the step reconciles; unless ``needed`` is
    given, the step runs when any of them differ. ``requires_quiescence``
    makes the orchestrator wait for a stable state first and
    ``induces_transition`` makes it wait again afterwards.
    """

    name: str
    fields: Tuple[str, ...]
    apply: StepAction
    depends_on: Tuple[str, ...] = ()
    requires_quiescence: bool = True
    induces_transition: bool = False
    needed: Optional[StepPredicate] = None

    def is_needed(self, desired: Any, current: Any) -> bool:
        if self.needed is not None:
            return self.needed(desired, current)
        return any(getattr(desired, f) != getattr(current, f) for f in self.fields)


def order_steps(steps: Sequence[UpdateStep]) -> List[UpdateStep]:
    """
    Order ``steps`` by declared dependency.

    Dependencies on steps outside ``steps`` are already satisfied. Ties keep
    declaration order.
    """
    by_name = {step.name: step for step in steps}
    graph: Dict[str, Set[str]] = {
        step.name: {dep for dep in step.depends_on if dep in by_name}
        for step in steps
    }

    # Kahn's algorithm, always taking the earliest declared ready step;
    # graph[node] holds the dependencies of node
    in_degree = {name: len(deps) for name, deps in graph.items()}
    remaining = list(steps)
    result: List[UpdateStep] = []

    while remaining:
        ready = next((s for s in remaining if in_degree[s.name] == 0), None)
        if ready is None:
            stuck = sorted(s.name for s in remaining)
            raise PlanError(f"circular step dependency among {stuck}")
        remaining.remove(ready)
        result.append(ready)
        for step in remaining:
            if ready.name in graph[step.name]:
                in_degree[step.name] -= 1

    return result


class UpdatePlan:
    """Ordered list of the steps an update request needs."""

    def __init__(self, steps: Sequence[UpdateStep]):
        self.steps: List[UpdateStep] = list(steps)

    @classmethod
    def build(
        cls,
        steps: Sequence[UpdateStep],
        desired: AttributeSet,
        current: AttributeSet,
    ) -> "UpdatePlan":
        declared = {step.name for step in steps}
        if len(declared) != len(steps):
            raise PlanError("duplicate step names in update plan")
        for step in steps:
            unknown = set(step.depends_on) - declared
            if unknown:
                raise PlanError(
                    f"step '{step.name}' depends on unknown steps {sorted(unknown)}"
                )

        needed = [step for step in steps if step.is_needed(desired, current)]
        return cls(order_steps(needed))

    @property
    def names(self) -> List[str]:
        return [step.name for step in self.steps]

    @property
    def is_empty(self) -> bool:
        return not self.steps

    def __iter__(self) -> Iterator[UpdateStep]:
        return iter(self.steps)

    def __len__(self) -> int:
        return len(self.steps)


def plan_fingerprint(desired: AttributeSet, current: AttributeSet) -> str:
    return f"{desired.fingerprint()}:{current.fingerprint()}"


class StepRecord(BaseModel):
    """A completed update step."""

    name: str
    started_at: datetime
    finished_at: datetime = Field(default_factory=datetime.utcnow)


class AppliedStepLedger(BaseModel):
    """Steps completed for one update request, in order."""

    handle: str
    fingerprint: str
    records: List[StepRecord] = Field(default_factory=list)

    @property
    def applied(self) -> List[str]:
        return [record.name for record in self.records]

    def has_applied(self, name: str) -> bool:
        return any(record.name == name for record in self.records)

    def record(self, name: str, started_at: datetime) -> None:
        self.records.append(StepRecord(name=name, started_at=started_at))
