"""
Compute instance driver.

Instances are provisioned with RunInstances, which carries only the image,
the size, the security group and a single login key pair. Everything else
(description, managed network, elastic IP, extra key pairs, volumes, tags)
is applied by the update steps right after the instance first settles.
"""

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Callable, ClassVar, Dict, FrozenSet, List, Optional, Type

from pydantic import Field

from ..clients.base import RemoteCallError
from ..clients.requests import (
    ApplySecurityGroupRequest,
    AssociateEipRequest,
    AttachKeyPairsRequest,
    AttachVolumesRequest,
    DescribeInstancesRequest,
    DetachKeyPairsRequest,
    DetachVolumesRequest,
    DissociateEipsRequest,
    JoinVxnetRequest,
    LeaveVxnetRequest,
    ModifyInstanceAttributesRequest,
    RemoteRequest,
    ResizeInstancesRequest,
    RunInstancesRequest,
    StartInstancesRequest,
    StopInstancesRequest,
    TerminateInstancesRequest,
)
from ..lifecycle.deadline import Deadline
from ..lifecycle.errors import PreconditionError
from ..lifecycle.plan import StepContext, UpdateStep
from ..models import AttributeSet, Observation, RemoteState, ResourceHandle, ResourceKind
from .base import ResourceDriver, live_attributes, run_resize_legs
from .tags import tags_step

if TYPE_CHECKING:
    from ..lifecycle.poller import StateTransitionPoller

ALLOWED_CPU = (1, 2, 4, 8, 16)
ALLOWED_MEMORY = (1024, 2048, 4096, 6144, 8192, 12288, 16384, 24576, 32768)
ALLOWED_INSTANCE_CLASS = (0, 1)

DEFAULT_VXNET = "vxnet-0"
MANAGED_VXNET_TYPE = 1

# A freshly leased instance rejects mutating calls until its lease settles
LEASE_SECONDS = 60.0
TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


class InstanceAttributes(AttributeSet):
    """Declared attributes of a compute instance."""

    COMPUTED: ClassVar[FrozenSet[str]] = frozenset({"private_ip", "public_ip"})

    name: str = ""
    description: str = ""
    image_id: str
    cpu: int = 1
    memory: int = 1024
    instance_class: int = 0
    managed_vxnet_id: str = DEFAULT_VXNET
    keypair_ids: FrozenSet[str] = Field(default_factory=frozenset)
    security_group_id: Optional[str] = None
    eip_id: Optional[str] = None
    volume_ids: FrozenSet[str] = Field(default_factory=frozenset)
    tag_ids: FrozenSet[str] = Field(default_factory=frozenset)
    running: bool = True

    private_ip: Optional[str] = None
    public_ip: Optional[str] = None


async def _modify_attributes(ctx: StepContext) -> None:
    live = live_attributes(ctx)
    desired = ctx.desired
    name = desired.name if desired.name != live.name else None
    description = desired.description if desired.description != live.description else None
    if name is None and description is None:
        return
    await ctx.call(
        ModifyInstanceAttributesRequest(
            instance=ctx.resource_id, instance_name=name, description=description
        )
    )


async def _change_managed_vxnet(ctx: StepContext) -> None:
    old = live_attributes(ctx).managed_vxnet_id
    new = ctx.desired.managed_vxnet_id
    if old == new:
        return
    if old:
        await ctx.call(LeaveVxnetRequest(vxnet=old, instances=(ctx.resource_id,)))
        await ctx.await_stable()
    if new:
        await ctx.call(JoinVxnetRequest(vxnet=new, instances=(ctx.resource_id,)))


async def _apply_security_group(ctx: StepContext) -> None:
    group = ctx.desired.security_group_id
    if not group or live_attributes(ctx).security_group_id == group:
        return
    await ctx.call(
        ApplySecurityGroupRequest(security_group=group, instances=(ctx.resource_id,))
    )


async def _change_eip(ctx: StepContext) -> None:
    old = live_attributes(ctx).eip_id
    new = ctx.desired.eip_id
    if old == new:
        return
    if old:
        await ctx.call(DissociateEipsRequest(eips=(old,)))
        await ctx.await_stable()
    if new:
        await ctx.call(AssociateEipRequest(eip=new, instance=ctx.resource_id))


async def _change_keypairs(ctx: StepContext) -> None:
    live = set(live_attributes(ctx).keypair_ids)
    desired = set(ctx.desired.keypair_ids)
    instances = (ctx.resource_id,)

    removed = sorted(live - desired)
    if removed:
        await ctx.call(DetachKeyPairsRequest(keypairs=tuple(removed), instances=instances))

    added = sorted(desired - live)
    if added:
        await ctx.call(AttachKeyPairsRequest(keypairs=tuple(added), instances=instances))


async def _change_volumes(ctx: StepContext) -> None:
    live = set(live_attributes(ctx).volume_ids)
    desired = set(ctx.desired.volume_ids)

    removed = sorted(live - desired)
    if removed:
        await ctx.call(DetachVolumesRequest(volumes=tuple(removed), instance=ctx.resource_id))
        await ctx.await_stable()

    added = sorted(desired - live)
    if added:
        await ctx.call(AttachVolumesRequest(volumes=tuple(added), instance=ctx.resource_id))


async def _resize(ctx: StepContext) -> None:
    live = live_attributes(ctx)
    desired = ctx.desired
    instances = (ctx.resource_id,)

    resize: Optional[RemoteRequest] = None
    if (live.cpu, live.memory) != (desired.cpu, desired.memory):
        resize = ResizeInstancesRequest(
            instances=instances, cpu=desired.cpu, memory=desired.memory
        )

    await run_resize_legs(
        ctx,
        stop_request=StopInstancesRequest(instances=instances),
        resize_request=resize,
        start_request=StartInstancesRequest(instances=instances),
        running=desired.running,
    )


def _security_group_needed(desired: InstanceAttributes, current: InstanceAttributes) -> bool:
    return bool(desired.security_group_id) and (
        desired.security_group_id != current.security_group_id
    )


class InstanceDriver(ResourceDriver):
    """Lifecycle bindings for QingCloud compute instances."""

    kind: ClassVar[str] = ResourceKind.INSTANCE.value
    attributes_model: ClassVar[Type[AttributeSet]] = InstanceAttributes
    RESOURCE_TYPE: ClassVar[str] = "instance"

    STABLE_STATES: ClassVar[FrozenSet[str]] = frozenset({"running", "stopped", "suspended"})
    TRANSITIONAL_STATES: ClassVar[FrozenSet[str]] = frozenset(
        {
            "pending",
            "creating",
            "starting",
            "stopping",
            "restarting",
            "suspending",
            "resuming",
            "terminating",
            "recovering",
            "resetting",
        }
    )
    GONE_STATES: ClassVar[FrozenSet[str]] = frozenset({"terminated", "ceased"})

    FORCE_NEW_FIELDS: ClassVar[FrozenSet[str]] = frozenset({"image_id", "instance_class"})

    def __init__(
        self,
        poll_interval: float = 5.0,
        lease_seconds: float = LEASE_SECONDS,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(poll_interval)
        self.lease_seconds = lease_seconds
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def describe_request(self, resource_id: str) -> DescribeInstancesRequest:
        return DescribeInstancesRequest(instances=(resource_id,))

    def interpret(self, response: Dict[str, Any]) -> Observation:
        instances = response.get("instance_set") or []
        if not instances:
            return Observation.absent()

        instance = instances[0]
        state = RemoteState(
            status=instance.get("status") or "",
            transition_status=instance.get("transition_status") or "",
        )

        managed_vxnet_id = ""
        private_ip = None
        for vxnet in instance.get("vxnets") or []:
            vxnet_type = vxnet.get("vxnet_type")
            if not vxnet_type:
                continue
            if vxnet_type == MANAGED_VXNET_TYPE:
                managed_vxnet_id = vxnet.get("vxnet_id") or ""
            else:
                managed_vxnet_id = DEFAULT_VXNET
            private_ip = vxnet.get("private_ip")

        eip = instance.get("eip") or {}
        security_group = instance.get("security_group") or {}

        volume_ids = instance.get("volume_ids")
        if volume_ids is None:
            volume_ids = [v.get("volume_id") for v in instance.get("volumes") or []]

        attributes = InstanceAttributes(
            name=instance.get("instance_name") or "",
            description=instance.get("description") or "",
            image_id=(instance.get("image") or {}).get("image_id") or "",
            cpu=instance.get("vcpus_current") or 0,
            memory=instance.get("memory_current") or 0,
            instance_class=instance.get("instance_class") or 0,
            managed_vxnet_id=managed_vxnet_id,
            private_ip=private_ip,
            keypair_ids=frozenset(instance.get("keypair_ids") or []),
            security_group_id=security_group.get("security_group_id"),
            eip_id=eip.get("eip_id") or None,
            public_ip=eip.get("eip_addr") or None,
            volume_ids=frozenset(v for v in volume_ids if v),
            tag_ids=frozenset(
                t.get("tag_id") for t in instance.get("tags") or [] if t.get("tag_id")
            ),
            running=state.status == "running",
        )
        return Observation(state, attributes)

    def provision_request(self, desired: InstanceAttributes) -> RunInstancesRequest:
        return RunInstancesRequest(
            image_id=desired.image_id,
            cpu=desired.cpu,
            memory=desired.memory,
            instance_class=desired.instance_class,
            instance_name=desired.name or None,
            login_keypair=self._login_keypair(desired),
            security_group=desired.security_group_id,
        )

    def handle_from(self, response: Dict[str, Any]) -> ResourceHandle:
        instances = response.get("instances") or []
        if not instances:
            raise RemoteCallError("RunInstances", "response carries no instance id")
        return self.new_handle(instances[0])

    def creation_baseline(self, desired: InstanceAttributes) -> InstanceAttributes:
        return desired.model_copy(
            update={
                "description": "",
                "managed_vxnet_id": "",
                "keypair_ids": frozenset({self._login_keypair(desired)}),
                "eip_id": None,
                "volume_ids": frozenset(),
                "tag_ids": frozenset(),
                "running": True,
            }
        )

    def terminate_request(self, resource_id: str) -> TerminateInstancesRequest:
        return TerminateInstancesRequest(instances=(resource_id,))

    def update_steps(self) -> List[UpdateStep]:
        steps = [
            UpdateStep(
                name="attributes",
                fields=("name", "description"),
                apply=_modify_attributes,
            ),
            UpdateStep(
                name="network",
                fields=("managed_vxnet_id",),
                apply=_change_managed_vxnet,
                depends_on=("attributes",),
                induces_transition=True,
            ),
            UpdateStep(
                name="security_group",
                fields=("security_group_id",),
                apply=_apply_security_group,
                induces_transition=True,
                needed=_security_group_needed,
            ),
            UpdateStep(
                name="eip",
                fields=("eip_id",),
                apply=_change_eip,
                induces_transition=True,
            ),
            UpdateStep(
                name="keypairs",
                fields=("keypair_ids",),
                apply=_change_keypairs,
            ),
            UpdateStep(
                name="volumes",
                fields=("volume_ids",),
                apply=_change_volumes,
                induces_transition=True,
            ),
            UpdateStep(
                name="resize",
                fields=("cpu", "memory", "running"),
                apply=_resize,
                depends_on=("volumes",),
            ),
        ]
        steps.append(tags_step(self.RESOURCE_TYPE, after=[s.name for s in steps]))
        return steps

    # Preconditions

    async def before_mutation(
        self,
        poller: "StateTransitionPoller",
        handle: ResourceHandle,
        deadline: Optional[Deadline] = None,
    ) -> None:
        await poller.await_condition(handle, self.lease_settled, "instance lease", deadline)

    def lease_settled(self, response: Dict[str, Any]) -> bool:
        """
        Whether the instance lease has settled.

        The lease starts at the instance's ``status_time`` (falling back to
        ``create_time``) and settles ``lease_seconds`` later. A missing
        instance or timestamp counts as settled.
        """
        instances = response.get("instance_set") or []
        if not instances:
            return True
        stamp = instances[0].get("status_time") or instances[0].get("create_time")
        if not stamp:
            return True
        try:
            started = datetime.strptime(stamp, TIME_FORMAT).replace(tzinfo=timezone.utc)
        except ValueError:
            self.logger.warning(
                "Unparseable lease timestamp, not waiting",
                extra={"instance": instances[0].get("instance_id"), "timestamp": stamp},
            )
            return True
        return self.clock() >= started + timedelta(seconds=self.lease_seconds)

    def check_create(self, desired: InstanceAttributes) -> None:
        if not desired.keypair_ids:
            raise PreconditionError("KeyPair Required", phase="create")
        self._check_values(desired, "create")

    def check_update(self, desired: InstanceAttributes, current: InstanceAttributes) -> None:
        super().check_update(desired, current)
        if not desired.keypair_ids:
            raise PreconditionError(
                "an instance must keep at least one key pair", phase="update"
            )
        self._check_values(desired, "update")

    def _check_values(self, desired: InstanceAttributes, phase: str) -> None:
        if desired.cpu not in ALLOWED_CPU:
            raise PreconditionError(
                f"cpu must be one of {ALLOWED_CPU}, got {desired.cpu}", phase=phase
            )
        if desired.memory not in ALLOWED_MEMORY:
            raise PreconditionError(
                f"memory must be one of {ALLOWED_MEMORY}, got {desired.memory}",
                phase=phase,
            )
        if desired.instance_class not in ALLOWED_INSTANCE_CLASS:
            raise PreconditionError(
                f"instance_class must be one of {ALLOWED_INSTANCE_CLASS}, "
                f"got {desired.instance_class}",
                phase=phase,
            )

    @staticmethod
    def _login_keypair(desired: InstanceAttributes) -> str:
        return sorted(desired.keypair_ids)[0]
