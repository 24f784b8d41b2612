"""Tag binding step shared by every resource kind."""

from typing import Iterable, Sequence, Tuple

from ..clients.requests import AttachTagsRequest, DetachTagsRequest, ResourceTagPair
from ..lifecycle.plan import StepContext, UpdateStep
from .base import live_attributes

TAGS_STEP = "tags"


def _pairs(
    tag_ids: Iterable[str], resource_type: str, resource_id: str
) -> Tuple[ResourceTagPair, ...]:
    return tuple(
        ResourceTagPair(tag_id=tag_id, resource_type=resource_type, resource_id=resource_id)
        for tag_id in sorted(tag_ids)
    )


def tags_step(resource_type: str, after: Sequence[str]) -> UpdateStep:
    """
    Build the step reconciling ``tag_ids``.

    Tags are bound last, once every other step of the plan has run.
    """

    async def apply(ctx: StepContext) -> None:
        live = set(live_attributes(ctx).tag_ids)
        desired = set(ctx.desired.tag_ids)

        removed = live - desired
        if removed:
            await ctx.call(
                DetachTagsRequest(
                    resource_tag_pairs=_pairs(removed, resource_type, ctx.resource_id)
                )
            )

        added = desired - live
        if added:
            await ctx.call(
                AttachTagsRequest(
                    resource_tag_pairs=_pairs(added, resource_type, ctx.resource_id)
                )
            )

    return UpdateStep(
        name=TAGS_STEP,
        fields=("tag_ids",),
        apply=apply,
        depends_on=tuple(after),
    )
