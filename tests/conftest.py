"""
Pytest configuration and shared fixtures.
"""

import copy
import re
from typing import Any, Dict, List, Optional

import pytest

from qingcycle.clients.base import RemoteClient
from qingcycle.clients.requests import RemoteRequest
from qingcycle.drivers import CacheDriver, InstanceAttributes, InstanceDriver
from qingcycle.drivers.cache import CacheAttributes
from qingcycle.lifecycle import (
    LifecycleOrchestrator,
    RetryConfig,
    RetryPolicy,
    StateTransitionPoller,
)
from qingcycle.logging_utils import LogManager


def _snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def _mutates(request: RemoteRequest) -> bool:
    return not request.action.startswith("Describe")


class FakeCloud(RemoteClient):
    """
    In-memory QingCloud control plane.

    Every call is recorded. A mutating call puts the resource into a
    transition that describe reports for ``transition_polls`` polls before
    the resource settles. Mutating calls issued while any resource is
    transitional are recorded in ``violations``.
    """

    def __init__(self, transition_polls: int = 1):
        super().__init__()
        self.transition_polls = transition_polls
        self.calls: List[RemoteRequest] = []
        self.violations: List[str] = []
        self.instances: Dict[str, Dict[str, Any]] = {}
        self.caches: Dict[str, Dict[str, Any]] = {}
        self._failures: Dict[str, List[BaseException]] = {}
        self._counter = 0

    # Scripting

    def fail(self, action: str, *errors: BaseException) -> None:
        """Raise ``errors`` from the next calls of ``action``, one per call."""
        self._failures.setdefault(action, []).extend(errors)

    def add_instance(
        self,
        status: str = "running",
        transition_status: str = "",
        polls: int = 0,
        target: Optional[str] = None,
        **fields: Any,
    ) -> str:
        instance_id = fields.pop("instance_id", None) or self._next_id("i")
        record = {
            "instance_id": instance_id,
            "instance_name": fields.get("name", ""),
            "description": fields.get("description", ""),
            "status": status,
            "transition_status": transition_status,
            "image": {"image_id": fields.get("image_id", "img-1")},
            "vcpus_current": fields.get("cpu", 1),
            "memory_current": fields.get("memory", 1024),
            "instance_class": fields.get("instance_class", 0),
            "vxnets": [self._vxnet(fields.get("managed_vxnet_id", "vxnet-0"))],
            "eip": None,
            "security_group": None,
            "keypair_ids": list(fields.get("keypair_ids", ["kp-1"])),
            "volume_ids": list(fields.get("volume_ids", [])),
            "tags": [{"tag_id": t} for t in fields.get("tag_ids", [])],
            "_polls": polls,
            "_target": target or status,
        }
        for stamp in ("create_time", "status_time"):
            if stamp in fields:
                record[stamp] = fields[stamp]
        self.instances[instance_id] = record
        return instance_id

    def add_cache(
        self,
        status: str = "active",
        transition_status: str = "",
        polls: int = 0,
        target: Optional[str] = None,
        **fields: Any,
    ) -> str:
        cache_id = fields.pop("cache_id", None) or self._next_id("c")
        record = {
            "cache_id": cache_id,
            "cache_name": fields.get("name", ""),
            "description": fields.get("description", ""),
            "cache_type": fields.get("cache_type", "redis3.0.5"),
            "cache_size": fields.get("size", 1),
            "vxnet": {"vxnet_id": fields.get("vxnet_id", "vxnet-abc")},
            "auto_backup_time": fields.get("auto_backup_time", -1),
            "status": status,
            "transition_status": transition_status,
            "tags": [{"tag_id": t} for t in fields.get("tag_ids", [])],
            "_polls": polls,
            "_target": target or status,
        }
        self.caches[cache_id] = record
        return cache_id

    def remove(self, resource_id: str) -> None:
        self.instances.pop(resource_id, None)
        self.caches.pop(resource_id, None)

    # Inspection

    @property
    def actions(self) -> List[str]:
        return [request.action for request in self.calls]

    @property
    def mutating_actions(self) -> List[str]:
        return [request.action for request in self.calls if _mutates(request)]

    def collapsed_actions(self) -> List[str]:
        """Actions with consecutive repeats folded into one entry."""
        collapsed: List[str] = []
        for action in self.actions:
            if not collapsed or collapsed[-1] != action:
                collapsed.append(action)
        return collapsed

    def count(self, action: str) -> int:
        return self.actions.count(action)

    # RemoteClient

    async def call(self, request: RemoteRequest) -> Dict[str, Any]:
        self.calls.append(request)

        if _mutates(request):
            busy = [
                rid
                for rid, record in {**self.instances, **self.caches}.items()
                if record["_polls"] != 0
            ]
            if busy:
                self.violations.append(f"{request.action} while {busy} transitional")

        queue = self._failures.get(request.action)
        if queue:
            raise queue.pop(0)

        handler = getattr(self, f"_{_snake(request.action)}")
        result = handler(request) or {}
        result.setdefault("ret_code", 0)
        return result

    # Helpers

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}-{self._counter:08d}"

    @staticmethod
    def _vxnet(vxnet_id: str) -> Dict[str, Any]:
        return {
            "vxnet_id": vxnet_id,
            "vxnet_type": 2 if vxnet_id == "vxnet-0" else 1,
            "private_ip": "192.168.0.2",
        }

    def _transition(self, record: Dict[str, Any], transition: str, target: str) -> None:
        record["transition_status"] = transition
        record["_target"] = target
        record["_polls"] = self.transition_polls
        if self.transition_polls == 0:
            record["status"] = target
            record["transition_status"] = ""

    @staticmethod
    def _view(record: Dict[str, Any]) -> Dict[str, Any]:
        view = {k: copy.deepcopy(v) for k, v in record.items() if not k.startswith("_")}
        if record["_polls"] > 0:
            record["_polls"] -= 1
            if record["_polls"] == 0:
                record["status"] = record["_target"]
                record["transition_status"] = ""
        return view

    def _record(self, resource_id: str) -> Dict[str, Any]:
        return self.instances.get(resource_id) or self.caches[resource_id]

    # Instances

    def _run_instances(self, request):
        instance_id = self.add_instance(
            status="pending",
            name=request.instance_name or "",
            image_id=request.image_id,
            cpu=request.cpu,
            memory=request.memory,
            instance_class=request.instance_class,
            keypair_ids=[request.login_keypair],
        )
        record = self.instances[instance_id]
        record["vxnets"] = []
        self._transition(record, "creating", "running")
        if request.security_group:
            record["security_group"] = {"security_group_id": request.security_group}
        return {"instances": [instance_id], "job_id": "j-1"}

    def _describe_instances(self, request):
        found = [
            self._view(self.instances[i]) for i in request.instances if i in self.instances
        ]
        return {"instance_set": found, "total_count": len(found)}

    def _modify_instance_attributes(self, request):
        record = self.instances[request.instance]
        if request.instance_name is not None:
            record["instance_name"] = request.instance_name
        if request.description is not None:
            record["description"] = request.description

    def _stop_instances(self, request):
        for i in request.instances:
            self._transition(self.instances[i], "stopping", "stopped")

    def _start_instances(self, request):
        for i in request.instances:
            self._transition(self.instances[i], "starting", "running")

    def _resize_instances(self, request):
        for i in request.instances:
            record = self.instances[i]
            record["vcpus_current"] = request.cpu
            record["memory_current"] = request.memory
            self._transition(record, "resizing", record["status"])

    def _terminate_instances(self, request):
        for i in request.instances:
            self._transition(self.instances[i], "terminating", "terminated")

    def _join_vxnet(self, request):
        for i in request.instances:
            record = self.instances[i]
            record["vxnets"] = [self._vxnet(request.vxnet)]
            self._transition(record, "updating", record["status"])

    def _leave_vxnet(self, request):
        for i in request.instances:
            record = self.instances[i]
            record["vxnets"] = []
            self._transition(record, "updating", record["status"])

    def _apply_security_group(self, request):
        for i in request.instances:
            record = self.instances[i]
            record["security_group"] = {"security_group_id": request.security_group}
            self._transition(record, "updating", record["status"])

    def _associate_eip(self, request):
        record = self.instances[request.instance]
        record["eip"] = {"eip_id": request.eip, "eip_addr": "139.198.0.1"}
        self._transition(record, "updating", record["status"])

    def _dissociate_eips(self, request):
        for record in self.instances.values():
            if record["eip"] and record["eip"]["eip_id"] in request.eips:
                record["eip"] = None
                self._transition(record, "updating", record["status"])

    def _attach_key_pairs(self, request):
        for i in request.instances:
            record = self.instances[i]
            record["keypair_ids"] = sorted(set(record["keypair_ids"]) | set(request.keypairs))

    def _detach_key_pairs(self, request):
        for i in request.instances:
            record = self.instances[i]
            record["keypair_ids"] = sorted(set(record["keypair_ids"]) - set(request.keypairs))

    def _attach_volumes(self, request):
        record = self.instances[request.instance]
        record["volume_ids"] = sorted(set(record["volume_ids"]) | set(request.volumes))
        self._transition(record, "attaching", record["status"])

    def _detach_volumes(self, request):
        record = self.instances[request.instance]
        record["volume_ids"] = sorted(set(record["volume_ids"]) - set(request.volumes))
        self._transition(record, "detaching", record["status"])

    # Tags

    def _attach_tags(self, request):
        for pair in request.resource_tag_pairs:
            tags = self._record(pair.resource_id)["tags"]
            if {"tag_id": pair.tag_id} not in tags:
                tags.append({"tag_id": pair.tag_id})

    def _detach_tags(self, request):
        for pair in request.resource_tag_pairs:
            record = self._record(pair.resource_id)
            record["tags"] = [t for t in record["tags"] if t["tag_id"] != pair.tag_id]

    # Caches

    def _create_cache(self, request):
        cache_id = self.add_cache(
            status="pending",
            name=request.cache_name or "",
            cache_type=request.cache_type,
            size=request.cache_size,
            vxnet_id=request.vxnet,
            auto_backup_time=request.auto_backup_time,
        )
        self._transition(self.caches[cache_id], "creating", "active")
        return {"cache_id": cache_id, "job_id": "j-2"}

    def _describe_caches(self, request):
        found = [self._view(self.caches[c]) for c in request.caches if c in self.caches]
        return {"cache_set": found, "total_count": len(found)}

    def _modify_cache_attributes(self, request):
        record = self.caches[request.cache]
        if request.cache_name is not None:
            record["cache_name"] = request.cache_name
        if request.description is not None:
            record["description"] = request.description
        if request.auto_backup_time is not None:
            record["auto_backup_time"] = request.auto_backup_time

    def _stop_caches(self, request):
        for c in request.caches:
            self._transition(self.caches[c], "stopping", "stopped")

    def _start_caches(self, request):
        for c in request.caches:
            self._transition(self.caches[c], "starting", "active")

    def _resize_caches(self, request):
        for c in request.caches:
            record = self.caches[c]
            record["cache_size"] = request.cache_size
            self._transition(record, "resizing", record["status"])

    def _delete_caches(self, request):
        for c in request.caches:
            self._transition(self.caches[c], "deleting", "deleted")


@pytest.fixture
def cloud() -> FakeCloud:
    """Create an empty in-memory control plane."""
    return FakeCloud()


@pytest.fixture
def fast_retry() -> RetryPolicy:
    """Retry policy that does not sleep between attempts."""
    return RetryPolicy(RetryConfig(max_attempts=3, base_delay=0.0))


@pytest.fixture
def log_manager() -> LogManager:
    """Create an in-memory log manager."""
    return LogManager()


def make_orchestrator(
    cloud: FakeCloud,
    driver,
    retry_policy: Optional[RetryPolicy] = None,
    timeout: float = 5.0,
    poll_interval: float = 0.0,
    log_manager: Optional[LogManager] = None,
) -> LifecycleOrchestrator:
    retry_policy = retry_policy or RetryPolicy(RetryConfig(max_attempts=3, base_delay=0.0))
    poller = StateTransitionPoller(
        cloud,
        driver,
        retry_policy=retry_policy,
        timeout=timeout,
        poll_interval=poll_interval,
        log_manager=log_manager,
    )
    return LifecycleOrchestrator(
        cloud,
        driver,
        retry_policy=retry_policy,
        poller=poller,
        log_manager=log_manager,
    )


@pytest.fixture
def instance_orchestrator(cloud, log_manager) -> LifecycleOrchestrator:
    """Orchestrator for instances that polls without sleeping."""
    return make_orchestrator(cloud, InstanceDriver(poll_interval=0.0), log_manager=log_manager)


@pytest.fixture
def cache_orchestrator(cloud, log_manager) -> LifecycleOrchestrator:
    """Orchestrator for caches that polls without sleeping."""
    return make_orchestrator(cloud, CacheDriver(poll_interval=0.0), log_manager=log_manager)


@pytest.fixture
def instance_attrs() -> InstanceAttributes:
    """Attributes matching ``FakeCloud.add_instance`` defaults."""
    return InstanceAttributes(image_id="img-1", keypair_ids=frozenset({"kp-1"}))


@pytest.fixture
def cache_attrs() -> CacheAttributes:
    """Attributes matching ``FakeCloud.add_cache`` defaults."""
    return CacheAttributes(cache_type="redis3.0.5", size=1, vxnet_id="vxnet-abc")


@pytest.fixture
def orchestrator_factory():
    """Build orchestrators with custom retry, timeout and poll settings."""
    return make_orchestrator


@pytest.fixture
def cloud_factory():
    """Build control planes with a custom transition length."""
    return FakeCloud
