"""Test target group membership, health gating and listeners."""

import pytest

from placement_engine.core.models import Placement
from placement_engine.exposure.layer import ExposureLayer
from placement_engine.exposure.listener import Listener
from placement_engine.exposure.models import HealthProbe
from placement_engine.workload.models import Protocol


def placement_on(host_id, address):
    return Placement.new(host_id=host_id, unit_id=f"cs2-{host_id}", volume_id=None, host_address=address)


def check_all(group, success, times=1):
    for _ in range(times):
        for target in group.probe_targets():
            group.record_probe(target, success)


@pytest.fixture
def exposure(workload_spec, events):
    probe = HealthProbe(healthy_threshold=2, unhealthy_threshold=2)
    return ExposureLayer.build(workload_spec, probe, front_door_address="198.51.100.7", emitters=events)


@pytest.fixture
def group(exposure):
    return exposure.target_group


class TestTargetGroup:
    """Test membership and health thresholds."""

    # -------------------------
    # HEALTH TESTS
    # -------------------------

    def test_new_member_not_routable_until_healthy(self, exposure, group):
        """Test that a new member only routes once the healthy threshold is met."""
        group.sync(placement_on("i-0001", "10.0.1.11"))

        assert group.members()[0]["status"] == "INITIAL"
        assert not exposure.listener(Protocol.UDP).is_routable()

        check_all(group, True, times=2)

        assert group.members()[0]["status"] == "HEALTHY"
        udp = exposure.listener(Protocol.UDP).route()
        tcp = exposure.listener(Protocol.TCP).route()
        assert (udp.address, udp.port, udp.protocol) == ("10.0.1.11", 27015, Protocol.UDP)
        assert (tcp.address, tcp.port, tcp.protocol) == ("10.0.1.11", 27016, Protocol.TCP)

    def test_listeners_share_health(self, exposure, group):
        """Test that both listeners stop routing together."""
        group.sync(placement_on("i-0001", "10.0.1.11"))
        check_all(group, True, times=2)

        check_all(group, False, times=2)

        assert not exposure.listener(Protocol.UDP).is_routable()
        assert not exposure.listener(Protocol.TCP).is_routable()

    def test_threshold_ignores_single_failure(self, group):
        """Test that one failed check keeps a member HEALTHY."""
        group.sync(placement_on("i-0001", "10.0.1.11"))
        check_all(group, True, times=2)

        check_all(group, False)

        assert group.members()[0]["status"] == "HEALTHY"
        assert group.consecutive_failures("i-0001") == 1

    def test_targets_checked_on_responder_port(self, group):
        """Test that members are checked on the responder port."""
        group.sync(placement_on("i-0001", "10.0.1.11"))
        [target] = group.probe_targets()
        assert target.url == "http://10.0.1.11:8080/"

    # -------------------------
    # MEMBERSHIP TESTS
    # -------------------------

    def test_stale_check_result_dropped(self, group):
        """Test that results taken under an older membership are ignored."""
        group.sync(placement_on("i-0001", "10.0.1.11"))
        stale = group.probe_targets()

        group.sync(placement_on("i-0002", "10.0.1.12"))

        assert group.record_probe(stale[0], True) is None
        assert group.record_probe(stale[0], True) is None
        assert [m["host_id"] for m in group.members()] == ["i-0002"]

    def test_sync_same_placement_is_noop(self, group):
        """Test that re-syncing the same placement changes nothing."""
        placement = placement_on("i-0001", "10.0.1.11")
        assert group.sync(placement) is True
        assert group.sync(placement) is False
        assert group.generation == 1

    def test_sync_none_empties_group(self, exposure, group):
        """Test that no placement means no targets."""
        group.sync(placement_on("i-0001", "10.0.1.11"))
        check_all(group, True, times=2)

        group.sync(None)

        assert group.members() == []
        assert not exposure.listener(Protocol.UDP).is_routable()


class TestMakeBeforeBreak:
    """Test how the previous member leaves on replacement."""

    # -------------------------
    # DRAINING TESTS
    # -------------------------

    def test_serving_old_member_drains_until_new_is_healthy(self, exposure, group):
        """Test that a still-serving old member routes until its successor is healthy."""
        first = placement_on("i-0001", "10.0.1.11")
        group.sync(first)
        check_all(group, True, times=2)

        group.sync(placement_on("i-0002", "10.0.1.12"), serving={first.placement_id})

        udp = exposure.listener(Protocol.UDP)
        assert udp.route().host_id == "i-0001"
        assert {m["host_id"]: m["draining"] for m in group.members()} == {"i-0001": True, "i-0002": False}

        check_all(group, True, times=2)

        assert udp.route().host_id == "i-0002"
        assert [m["host_id"] for m in group.members()] == ["i-0002"]

    def test_draining_member_removed_when_unreachable(self, group):
        """Test that a draining member is dropped once it turns unhealthy."""
        first = placement_on("i-0001", "10.0.1.11")
        group.sync(first)
        check_all(group, True, times=2)
        group.sync(placement_on("i-0002", "10.0.1.12"), serving={first.placement_id})

        for target in group.probe_targets():
            if target.host_id == "i-0001":
                group.record_probe(target, False)
                group.record_probe(target, False)

        assert [m["host_id"] for m in group.members()] == ["i-0002"]

    # -------------------------
    # IMMEDIATE REMOVAL TESTS
    # -------------------------

    def test_unhealthy_old_member_removed_at_once(self, group):
        """Test that an unhealthy old member never drains."""
        first = placement_on("i-0001", "10.0.1.11")
        group.sync(first)
        check_all(group, False, times=2)

        group.sync(placement_on("i-0002", "10.0.1.12"), serving={first.placement_id})

        assert [m["host_id"] for m in group.members()] == ["i-0002"]

    def test_torn_down_old_member_removed_at_once(self, exposure, group):
        """Test that a healthy old member whose unit is gone stops routing at once."""
        group.sync(placement_on("i-0001", "10.0.1.11"))
        check_all(group, True, times=2)

        exposure.sync(placement_on("i-0002", "10.0.1.12"))

        assert [m["host_id"] for m in group.members()] == ["i-0002"]
        assert exposure.listener(Protocol.UDP).route() is None
        assert exposure.listener(Protocol.TCP).route() is None

    def test_health_change_events(self, group, events):
        """Test that every status change is emitted."""
        group.sync(placement_on("i-0001", "10.0.1.11"))
        check_all(group, True, times=2)
        check_all(group, False, times=2)

        changes = [(e.metadata["from"], e.metadata["to"]) for e in events.of_type("target.health_changed")]
        assert changes == [("INITIAL", "HEALTHY"), ("HEALTHY", "UNHEALTHY")]


class TestListener:
    """Test listener routing and connection tracking."""

    def test_stream_connections_counted(self, exposure, group):
        """Test that open stream connections survive the target turning unhealthy."""
        group.sync(placement_on("i-0001", "10.0.1.11"))
        check_all(group, True, times=2)
        tcp = exposure.listener(Protocol.TCP)

        target = tcp.open_connection()
        assert tcp.in_flight("i-0001") == 1

        check_all(group, False, times=2)
        assert tcp.open_connection() is None
        assert tcp.in_flight("i-0001") == 1

        tcp.close_connection(target)
        assert tcp.in_flight() == 0

    def test_datagram_listener_has_no_connections(self, exposure):
        """Test that the datagram listener rejects connection tracking."""
        with pytest.raises(ValueError):
            exposure.listener(Protocol.UDP).open_connection()

    def test_protocol_mismatch_rejected(self, group, workload_spec):
        """Test that a listener cannot forward to a port of another protocol."""
        with pytest.raises(ValueError):
            Listener(27015, Protocol.TCP, group, workload_spec.datagram_port)


class TestExposureLayer:
    """Test the front door."""

    def test_ingress_rules(self, exposure):
        """Test that both listener ports and the health check port are opened."""
        assert exposure.ingress_rules() == [("udp", 27015), ("tcp", 27016), ("tcp", 8080)]

    def test_snapshot(self, exposure):
        """Test the snapshot served by the targets endpoint."""
        snapshot = exposure.snapshot()

        assert snapshot["front_door_address"] == "198.51.100.7"
        assert snapshot["probe"] == {"protocol": "HTTP", "port": 8080, "path": "/"}
        assert [l["name"] for l in snapshot["listeners"]] == ["udp:27015", "tcp:27016"]
        assert snapshot["ingress"] == ["udp/27015", "tcp/27016", "tcp/8080"]

    def test_front_door_address_change(self, exposure):
        """Test updating the front door address."""
        exposure.set_front_door_address("203.0.113.12")
        assert exposure.front_door_address == "203.0.113.12"
