"""
Cache cluster driver.

Caches are created with CreateCache on a fixed network; the description and
tags are applied once the cache has settled. Growing a cache needs the full
stop, resize, start cycle.
"""

from typing import Any, ClassVar, Dict, FrozenSet, List, Optional, Type

from pydantic import Field

from ..clients.base import RemoteCallError
from ..clients.requests import (
    CreateCacheRequest,
    DeleteCachesRequest,
    DescribeCachesRequest,
    ModifyCacheAttributesRequest,
    RemoteRequest,
    ResizeCachesRequest,
    StartCachesRequest,
    StopCachesRequest,
)
from ..lifecycle.errors import PreconditionError
from ..lifecycle.plan import StepContext, UpdateStep
from ..models import AttributeSet, Observation, RemoteState, ResourceHandle, ResourceKind
from .base import ResourceDriver, live_attributes, run_resize_legs
from .tags import tags_step

# auto_backup_time value that disables automatic backups
BACKUP_DISABLED = -1


class CacheAttributes(AttributeSet):
    """Declared attributes of a cache cluster."""

    name: str = ""
    description: str = ""
    cache_type: str
    size: int
    vxnet_id: str
    auto_backup_time: int = BACKUP_DISABLED
    tag_ids: FrozenSet[str] = Field(default_factory=frozenset)
    running: bool = True


async def _modify_attributes(ctx: StepContext) -> None:
    live = live_attributes(ctx)
    desired = ctx.desired
    changes: Dict[str, Any] = {}
    if desired.name != live.name:
        changes["cache_name"] = desired.name
    if desired.description != live.description:
        changes["description"] = desired.description
    if desired.auto_backup_time != live.auto_backup_time:
        changes["auto_backup_time"] = desired.auto_backup_time
    if changes:
        await ctx.call(ModifyCacheAttributesRequest(cache=ctx.resource_id, **changes))


async def _resize(ctx: StepContext) -> None:
    caches = (ctx.resource_id,)
    size = ctx.desired.size

    resize: Optional[RemoteRequest] = None
    if live_attributes(ctx).size != size:
        resize = ResizeCachesRequest(caches=caches, cache_size=size)

    await run_resize_legs(
        ctx,
        stop_request=StopCachesRequest(caches=caches),
        resize_request=resize,
        start_request=StartCachesRequest(caches=caches),
        running=ctx.desired.running,
    )


class CacheDriver(ResourceDriver):
    """Lifecycle bindings for QingCloud cache clusters."""

    kind: ClassVar[str] = ResourceKind.CACHE.value
    attributes_model: ClassVar[Type[AttributeSet]] = CacheAttributes
    RESOURCE_TYPE: ClassVar[str] = "cache"

    STABLE_STATES: ClassVar[FrozenSet[str]] = frozenset({"active", "stopped", "suspended"})
    TRANSITIONAL_STATES: ClassVar[FrozenSet[str]] = frozenset(
        {
            "pending",
            "creating",
            "starting",
            "stopping",
            "restarting",
            "resizing",
            "updating",
            "deleting",
        }
    )
    GONE_STATES: ClassVar[FrozenSet[str]] = frozenset({"deleted", "ceased"})

    FORCE_NEW_FIELDS: ClassVar[FrozenSet[str]] = frozenset({"cache_type", "vxnet_id"})

    def describe_request(self, resource_id: str) -> DescribeCachesRequest:
        return DescribeCachesRequest(caches=(resource_id,))

    def interpret(self, response: Dict[str, Any]) -> Observation:
        caches = response.get("cache_set") or []
        if not caches:
            return Observation.absent()

        cache = caches[0]
        state = RemoteState(
            status=cache.get("status") or "",
            transition_status=cache.get("transition_status") or "",
        )
        vxnet = cache.get("vxnet") or {}
        auto_backup_time = cache.get("auto_backup_time")

        attributes = CacheAttributes(
            name=cache.get("cache_name") or "",
            description=cache.get("description") or "",
            cache_type=cache.get("cache_type") or "",
            size=cache.get("cache_size") or 0,
            vxnet_id=vxnet.get("vxnet_id") or cache.get("vxnet_id") or "",
            auto_backup_time=(
                BACKUP_DISABLED if auto_backup_time is None else auto_backup_time
            ),
            tag_ids=frozenset(
                t.get("tag_id") for t in cache.get("tags") or [] if t.get("tag_id")
            ),
            running=state.status == "active",
        )
        return Observation(state, attributes)

    def provision_request(self, desired: CacheAttributes) -> CreateCacheRequest:
        return CreateCacheRequest(
            vxnet=desired.vxnet_id,
            cache_size=desired.size,
            cache_type=desired.cache_type,
            cache_name=desired.name or None,
            auto_backup_time=desired.auto_backup_time,
        )

    def handle_from(self, response: Dict[str, Any]) -> ResourceHandle:
        cache_id = response.get("cache_id")
        if not cache_id:
            raise RemoteCallError("CreateCache", "response carries no cache id")
        return self.new_handle(cache_id)

    def creation_baseline(self, desired: CacheAttributes) -> CacheAttributes:
        return desired.model_copy(
            update={"description": "", "tag_ids": frozenset(), "running": True}
        )

    def terminate_request(self, resource_id: str) -> DeleteCachesRequest:
        return DeleteCachesRequest(caches=(resource_id,))

    def update_steps(self) -> List[UpdateStep]:
        steps = [
            UpdateStep(
                name="attributes",
                fields=("name", "description", "auto_backup_time"),
                apply=_modify_attributes,
            ),
            UpdateStep(
                name="resize",
                fields=("size", "running"),
                apply=_resize,
                depends_on=("attributes",),
            ),
        ]
        steps.append(tags_step(self.RESOURCE_TYPE, after=[s.name for s in steps]))
        return steps

    def check_create(self, desired: CacheAttributes) -> None:
        self._check_values(desired, "create")

    def check_update(self, desired: CacheAttributes, current: CacheAttributes) -> None:
        super().check_update(desired, current)
        self._check_values(desired, "update")

    def _check_values(self, desired: CacheAttributes, phase: str) -> None:
        if desired.size <= 0:
            raise PreconditionError(
                f"size must be a positive number of GB, got {desired.size}", phase=phase
            )
        if not desired.vxnet_id:
            raise PreconditionError("a cache needs a vxnet", phase=phase)
