"""
Tests for the instance and cache drivers.

Tests cover state classification, describe response mapping, provisioning
requests, creation baselines, preconditions and update plan contents.
"""

from datetime import datetime, timezone

import pytest

from qingcycle.clients.base import RemoteCallError
from qingcycle.drivers import (
    CacheAttributes,
    CacheDriver,
    InstanceAttributes,
    InstanceDriver,
    get_driver,
)
from qingcycle.lifecycle import PreconditionError
from qingcycle.models import ABSENT, RemoteState, StateClass


@pytest.fixture
def instance_driver():
    return InstanceDriver(poll_interval=0.0)


@pytest.fixture
def cache_driver():
    return CacheDriver(poll_interval=0.0)


@pytest.fixture
def describe_response():
    """A DescribeInstances response as returned with verbose=1."""
    return {
        "action": "DescribeInstancesResponse",
        "ret_code": 0,
        "total_count": 1,
        "instance_set": [
            {
                "instance_id": "i-abcd1234",
                "instance_name": "web",
                "description": "frontend",
                "status": "running",
                "transition_status": "",
                "image": {"image_id": "centos7x64"},
                "vcpus_current": 2,
                "memory_current": 4096,
                "instance_class": 1,
                "vxnets": [
                    {"vxnet_id": "vxnet-abc", "vxnet_type": 1, "private_ip": "192.168.1.5"}
                ],
                "eip": {"eip_id": "eip-1", "eip_addr": "139.198.0.9"},
                "security_group": {"security_group_id": "sg-1"},
                "keypair_ids": ["kp-1", "kp-2"],
                "volumes": [{"volume_id": "vol-1"}, {"volume_id": "vol-2"}],
                "tags": [{"tag_id": "tag-1"}],
            }
        ],
    }


class TestClassification:
    """Test stable, transitional and gone state classification."""

    @pytest.mark.parametrize("status", ["running", "stopped", "suspended"])
    def test_instance_stable(self, instance_driver, status):
        assert instance_driver.classify(RemoteState(status)) is StateClass.STABLE

    @pytest.mark.parametrize("status", ["terminated", "ceased", ABSENT])
    def test_instance_gone(self, instance_driver, status):
        assert instance_driver.classify(RemoteState(status)) is StateClass.GONE

    def test_transition_status_makes_state_transitional(self, instance_driver):
        state = RemoteState("running", "stopping")
        assert instance_driver.classify(state) is StateClass.TRANSITIONAL

    def test_pending_is_transitional(self, instance_driver):
        assert instance_driver.classify(RemoteState("pending")) is StateClass.TRANSITIONAL

    def test_unknown_status_is_waited_out(self, instance_driver):
        assert instance_driver.classify(RemoteState("migrating")) is StateClass.TRANSITIONAL

    @pytest.mark.parametrize(
        "status,expected",
        [
            ("active", StateClass.STABLE),
            ("stopped", StateClass.STABLE),
            ("deleted", StateClass.GONE),
            ("ceased", StateClass.GONE),
            ("pending", StateClass.TRANSITIONAL),
        ],
    )
    def test_cache_states(self, cache_driver, status, expected):
        assert cache_driver.classify(RemoteState(status)) is expected

    def test_state_sets(self, instance_driver):
        assert "running" in instance_driver.stable_states()
        assert "terminated" in instance_driver.gone_states()
        assert "pending" in instance_driver.transitional_states()


class TestInstanceDriver:
    """Test instance bindings."""

    def test_interpret(self, instance_driver, describe_response):
        observation = instance_driver.interpret(describe_response)

        assert observation.state == RemoteState("running", "")
        attrs = observation.attributes
        assert attrs.name == "web"
        assert attrs.description == "frontend"
        assert attrs.image_id == "centos7x64"
        assert attrs.cpu == 2
        assert attrs.memory == 4096
        assert attrs.instance_class == 1
        assert attrs.managed_vxnet_id == "vxnet-abc"
        assert attrs.private_ip == "192.168.1.5"
        assert attrs.eip_id == "eip-1"
        assert attrs.public_ip == "139.198.0.9"
        assert attrs.security_group_id == "sg-1"
        assert attrs.keypair_ids == frozenset({"kp-1", "kp-2"})
        assert attrs.volume_ids == frozenset({"vol-1", "vol-2"})
        assert attrs.tag_ids == frozenset({"tag-1"})
        assert attrs.running is True

    def test_interpret_base_network(self, instance_driver, describe_response):
        """Test that a non-managed network reports the default vxnet."""
        instance = describe_response["instance_set"][0]
        instance["vxnets"] = [{"vxnet_id": "vxnet-0", "vxnet_type": 2, "private_ip": "10.0.0.3"}]
        instance["eip"] = None

        attrs = instance_driver.interpret(describe_response).attributes

        assert attrs.managed_vxnet_id == "vxnet-0"
        assert attrs.eip_id is None
        assert attrs.public_ip is None

    def test_interpret_empty_set_is_absent(self, instance_driver):
        observation = instance_driver.interpret({"instance_set": [], "ret_code": 0})

        assert observation.state.status == ABSENT
        assert observation.attributes is None
        assert instance_driver.classify(observation.state) is StateClass.GONE

    def test_provision_request(self, instance_driver):
        desired = InstanceAttributes(
            name="web",
            image_id="img-1",
            cpu=2,
            memory=2048,
            keypair_ids=frozenset({"kp-b", "kp-a"}),
            security_group_id="sg-1",
        )

        params = instance_driver.provision_request(desired).to_params()

        assert params["action"] == "RunInstances"
        assert params["image_id"] == "img-1"
        assert params["cpu"] == 2
        assert params["memory"] == 2048
        assert params["login_mode"] == "keypair"
        assert params["login_keypair"] == "kp-a"
        assert params["security_group"] == "sg-1"
        assert params["instance_name"] == "web"
        assert params["count"] == 1

    def test_handle_from(self, instance_driver):
        handle = instance_driver.handle_from({"instances": ["i-new"], "ret_code": 0})

        assert handle.kind == "instance"
        assert handle.resource_id == "i-new"

    def test_handle_from_without_id(self, instance_driver):
        with pytest.raises(RemoteCallError):
            instance_driver.handle_from({"instances": [], "ret_code": 0})

    def test_creation_baseline(self, instance_driver):
        desired = InstanceAttributes(
            name="web",
            description="frontend",
            image_id="img-1",
            keypair_ids=frozenset({"kp-1", "kp-2"}),
            eip_id="eip-1",
            volume_ids=frozenset({"vol-1"}),
            tag_ids=frozenset({"tag-1"}),
        )

        baseline = instance_driver.creation_baseline(desired)

        assert baseline.name == "web"
        assert baseline.description == ""
        assert baseline.managed_vxnet_id == ""
        assert baseline.keypair_ids == frozenset({"kp-1"})
        assert baseline.eip_id is None
        assert baseline.volume_ids == frozenset()
        assert baseline.tag_ids == frozenset()

    def test_update_plan_order(self, instance_driver):
        """Test that every step is planned in dependency order with tags last."""
        current = InstanceAttributes(image_id="img-1", keypair_ids=frozenset({"kp-1"}))
        desired = InstanceAttributes(
            name="web",
            image_id="img-1",
            cpu=2,
            managed_vxnet_id="vxnet-abc",
            keypair_ids=frozenset({"kp-2"}),
            security_group_id="sg-1",
            eip_id="eip-1",
            volume_ids=frozenset({"vol-1"}),
            tag_ids=frozenset({"tag-1"}),
        )

        plan = instance_driver.build_update_plan(desired, current)

        assert plan.names == [
            "attributes",
            "network",
            "security_group",
            "eip",
            "keypairs",
            "volumes",
            "resize",
            "tags",
        ]

    def test_unset_security_group_is_not_planned(self, instance_driver):
        current = InstanceAttributes(
            image_id="img-1", keypair_ids=frozenset({"kp-1"}), security_group_id="sg-1"
        )
        desired = current.model_copy(update={"security_group_id": None})

        assert instance_driver.build_update_plan(desired, current).is_empty

    def test_computed_fields_are_not_diffed(self, instance_driver):
        current = InstanceAttributes(
            image_id="img-1", keypair_ids=frozenset({"kp-1"}), public_ip="1.2.3.4"
        )
        desired = current.model_copy(update={"public_ip": None, "private_ip": "10.0.0.1"})

        assert desired.changed_fields(current) == set()
        assert instance_driver.build_update_plan(desired, current).is_empty

    def test_check_create_validates_memory(self, instance_driver):
        desired = InstanceAttributes(
            image_id="img-1", keypair_ids=frozenset({"kp-1"}), memory=3000
        )

        with pytest.raises(PreconditionError, match="memory"):
            instance_driver.check_create(desired)

    def test_instance_class_is_force_new(self, instance_driver):
        current = InstanceAttributes(image_id="img-1", keypair_ids=frozenset({"kp-1"}))
        desired = current.model_copy(update={"instance_class": 1})

        with pytest.raises(PreconditionError, match="instance_class"):
            instance_driver.check_update(desired, current)

    @pytest.mark.parametrize(
        "now, settled",
        [
            (datetime(2026, 3, 1, 12, 0, 30, tzinfo=timezone.utc), False),
            (datetime(2026, 3, 1, 12, 1, 0, tzinfo=timezone.utc), True),
        ],
    )
    def test_lease_settles_after_lease_seconds(self, now, settled):
        driver = InstanceDriver(poll_interval=0.0, clock=lambda: now)
        response = {"instance_set": [{"create_time": "2026-03-01T12:00:00Z"}]}

        assert driver.lease_settled(response) is settled

    def test_status_time_takes_precedence(self):
        now = datetime(2026, 3, 1, 12, 1, 30, tzinfo=timezone.utc)
        driver = InstanceDriver(poll_interval=0.0, clock=lambda: now)
        response = {
            "instance_set": [
                {"create_time": "2026-03-01T11:00:00Z", "status_time": "2026-03-01T12:01:00Z"}
            ]
        }

        assert driver.lease_settled(response) is False

    @pytest.mark.parametrize(
        "response",
        [
            {"instance_set": []},
            {"instance_set": [{"status": "running"}]},
            {"instance_set": [{"create_time": "yesterday"}]},
        ],
    )
    def test_lease_without_usable_timestamp_is_settled(self, instance_driver, response):
        assert instance_driver.lease_settled(response) is True


class TestCacheDriver:
    """Test cache bindings."""

    def test_interpret(self, cache_driver):
        response = {
            "ret_code": 0,
            "cache_set": [
                {
                    "cache_id": "c-1",
                    "cache_name": "sessions",
                    "description": "",
                    "cache_type": "redis3.0.5",
                    "cache_size": 4,
                    "vxnet": {"vxnet_id": "vxnet-abc"},
                    "auto_backup_time": 2,
                    "status": "active",
                    "transition_status": "",
                    "tags": [],
                }
            ],
        }

        observation = cache_driver.interpret(response)

        assert observation.state.status == "active"
        attrs = observation.attributes
        assert attrs == CacheAttributes(
            name="sessions",
            cache_type="redis3.0.5",
            size=4,
            vxnet_id="vxnet-abc",
            auto_backup_time=2,
        )

    def test_provision_request(self, cache_driver):
        desired = CacheAttributes(
            name="sessions", cache_type="redis3.0.5", size=2, vxnet_id="vxnet-abc"
        )

        params = cache_driver.provision_request(desired).to_params()

        assert params == {
            "action": "CreateCache",
            "vxnet": "vxnet-abc",
            "cache_size": 2,
            "cache_type": "redis3.0.5",
            "cache_name": "sessions",
            "auto_backup_time": -1,
        }

    def test_handle_from(self, cache_driver):
        handle = cache_driver.handle_from({"cache_id": "c-new", "ret_code": 0})

        assert str(handle) == "cache:c-new"

    def test_force_new_fields(self, cache_driver):
        current = CacheAttributes(cache_type="redis3.0.5", size=1, vxnet_id="vxnet-abc")
        desired = current.model_copy(update={"vxnet_id": "vxnet-other"})

        with pytest.raises(PreconditionError, match="vxnet_id"):
            cache_driver.check_update(desired, current)

    def test_invalid_size(self, cache_driver):
        desired = CacheAttributes(cache_type="redis3.0.5", size=0, vxnet_id="vxnet-abc")

        with pytest.raises(PreconditionError, match="size"):
            cache_driver.check_create(desired)

    def test_update_plan(self, cache_driver):
        current = CacheAttributes(cache_type="redis3.0.5", size=1, vxnet_id="vxnet-abc")
        desired = current.model_copy(
            update={"size": 2, "auto_backup_time": 3, "tag_ids": frozenset({"t"})}
        )

        assert cache_driver.build_update_plan(desired, current).names == [
            "attributes",
            "resize",
            "tags",
        ]


class TestRegistry:
    """Test the driver registry."""

    def test_get_driver(self):
        driver = get_driver("cache", poll_interval=2.5)

        assert isinstance(driver, CacheDriver)
        assert driver.poll_interval == 2.5

    def test_unknown_kind(self):
        with pytest.raises(ValueError, match="Unknown resource kind"):
            get_driver("volume")
