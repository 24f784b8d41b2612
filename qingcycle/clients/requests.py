"""
Immutable request value objects, one per remote action.

Each request knows its API action name, whether repeating it is harmless
and whether it changes remote state. ``to_params`` renders the flat query
parameters the QingCloud API expects (``instances.1``, ``resource_tag_pairs.1.tag_id``).
"""

from typing import Any, ClassVar, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict


def flatten_params(values: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Flatten nested lists and mappings into dotted, 1-indexed keys."""
    flat: Dict[str, Any] = {}
    for key, value in values.items():
        name = f"{prefix}{key}"
        if value is None:
            continue
        if isinstance(value, dict):
            flat.update(flatten_params(value, f"{name}."))
        elif isinstance(value, (list, tuple)):
            for index, item in enumerate(value, 1):
                if isinstance(item, dict):
                    flat.update(flatten_params(item, f"{name}.{index}."))
                elif item is not None:
                    flat[f"{name}.{index}"] = _scalar(item)
        else:
            flat[name] = _scalar(value)
    return flat


def _scalar(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    return value


class RemoteRequest(BaseModel):
    """Base class for all remote action requests."""

    model_config = ConfigDict(frozen=True)

    action: ClassVar[str] = ""
    idempotent: ClassVar[bool] = True

    def to_params(self) -> Dict[str, Any]:
        params = flatten_params(self.model_dump(exclude_none=True))
        params["action"] = self.action
        return params


class ResourceTagPair(BaseModel):
    """Tag to resource binding used by the tag actions."""

    model_config = ConfigDict(frozen=True)

    tag_id: str
    resource_type: str
    resource_id: str


# Instances


class RunInstancesRequest(RemoteRequest):
    action: ClassVar[str] = "RunInstances"
    idempotent: ClassVar[bool] = False

    image_id: str
    cpu: int
    memory: int
    instance_class: int = 0
    instance_name: Optional[str] = None
    login_mode: str = "keypair"
    login_keypair: str
    security_group: Optional[str] = None
    vxnets: Optional[Tuple[str, ...]] = None
    count: int = 1


class DescribeInstancesRequest(RemoteRequest):
    action: ClassVar[str] = "DescribeInstances"

    instances: Tuple[str, ...]
    verbose: int = 1


class ModifyInstanceAttributesRequest(RemoteRequest):
    action: ClassVar[str] = "ModifyInstanceAttributes"

    instance: str
    instance_name: Optional[str] = None
    description: Optional[str] = None


class StopInstancesRequest(RemoteRequest):
    action: ClassVar[str] = "StopInstances"

    instances: Tuple[str, ...]
    force: Optional[int] = None


class StartInstancesRequest(RemoteRequest):
    action: ClassVar[str] = "StartInstances"

    instances: Tuple[str, ...]


class ResizeInstancesRequest(RemoteRequest):
    action: ClassVar[str] = "ResizeInstances"

    instances: Tuple[str, ...]
    cpu: int
    memory: int


class TerminateInstancesRequest(RemoteRequest):
    action: ClassVar[str] = "TerminateInstances"

    instances: Tuple[str, ...]


class JoinVxnetRequest(RemoteRequest):
    action: ClassVar[str] = "JoinVxnet"
    idempotent: ClassVar[bool] = False

    vxnet: str
    instances: Tuple[str, ...]


class LeaveVxnetRequest(RemoteRequest):
    action: ClassVar[str] = "LeaveVxnet"
    idempotent: ClassVar[bool] = False

    vxnet: str
    instances: Tuple[str, ...]


class ApplySecurityGroupRequest(RemoteRequest):
    action: ClassVar[str] = "ApplySecurityGroup"

    security_group: str
    instances: Tuple[str, ...]


class AssociateEipRequest(RemoteRequest):
    action: ClassVar[str] = "AssociateEip"
    idempotent: ClassVar[bool] = False

    eip: str
    instance: str


class DissociateEipsRequest(RemoteRequest):
    action: ClassVar[str] = "DissociateEips"
    idempotent: ClassVar[bool] = False

    eips: Tuple[str, ...]


class AttachKeyPairsRequest(RemoteRequest):
    action: ClassVar[str] = "AttachKeyPairs"
    idempotent: ClassVar[bool] = False

    keypairs: Tuple[str, ...]
    instances: Tuple[str, ...]


class DetachKeyPairsRequest(RemoteRequest):
    action: ClassVar[str] = "DetachKeyPairs"
    idempotent: ClassVar[bool] = False

    keypairs: Tuple[str, ...]
    instances: Tuple[str, ...]


class AttachVolumesRequest(RemoteRequest):
    action: ClassVar[str] = "AttachVolumes"
    idempotent: ClassVar[bool] = False

    volumes: Tuple[str, ...]
    instance: str


class DetachVolumesRequest(RemoteRequest):
    action: ClassVar[str] = "DetachVolumes"
    idempotent: ClassVar[bool] = False

    volumes: Tuple[str, ...]
    instance: str


# Tags


class AttachTagsRequest(RemoteRequest):
    action: ClassVar[str] = "AttachTags"
    idempotent: ClassVar[bool] = False

    resource_tag_pairs: Tuple[ResourceTagPair, ...]


class DetachTagsRequest(RemoteRequest):
    action: ClassVar[str] = "DetachTags"
    idempotent: ClassVar[bool] = False

    resource_tag_pairs: Tuple[ResourceTagPair, ...]


# Caches


class CreateCacheRequest(RemoteRequest):
    action: ClassVar[str] = "CreateCache"
    idempotent: ClassVar[bool] = False

    vxnet: str
    cache_size: int
    cache_type: str
    cache_name: Optional[str] = None
    auto_backup_time: Optional[int] = None
    node_count: Optional[int] = None


class DescribeCachesRequest(RemoteRequest):
    action: ClassVar[str] = "DescribeCaches"

    caches: Tuple[str, ...]
    verbose: int = 1


class ModifyCacheAttributesRequest(RemoteRequest):
    action: ClassVar[str] = "ModifyCacheAttributes"

    cache: str
    cache_name: Optional[str] = None
    description: Optional[str] = None
    auto_backup_time: Optional[int] = None


class StopCachesRequest(RemoteRequest):
    action: ClassVar[str] = "StopCaches"

    caches: Tuple[str, ...]


class StartCachesRequest(RemoteRequest):
    action: ClassVar[str] = "StartCaches"

    caches: Tuple[str, ...]


class ResizeCachesRequest(RemoteRequest):
    action: ClassVar[str] = "ResizeCaches"

    caches: Tuple[str, ...]
    cache_size: int


class DeleteCachesRequest(RemoteRequest):
    action: ClassVar[str] = "DeleteCaches"

    caches: Tuple[str, ...]
