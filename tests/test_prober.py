"""Test the health prober."""

import time

import pytest
import requests

from placement_engine.core.errors import HealthCheckTimeout
from placement_engine.core.models import Placement
from placement_engine.exposure.layer import ExposureLayer
from placement_engine.exposure.models import HealthProbe, ProbeTarget
from placement_engine.exposure.prober import HealthProber, check_http_health


class ScriptedCheck:
    """Health check returning queued results (True / False / exception)."""

    def __init__(self, default=True):
        self.default = default
        self.results = []
        self.calls = []

    def __call__(self, target, probe):
        self.calls.append(target.url)
        result = self.results.pop(0) if self.results else self.default
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def placement():
    return Placement.new("i-0001", "cs2-1", None, "10.0.1.11")


@pytest.fixture
def group(workload_spec, placement):
    probe = HealthProbe(healthy_threshold=3, unhealthy_threshold=3, interval_seconds=0.01)
    layer = ExposureLayer.build(workload_spec, probe)
    layer.sync(placement)
    return layer.target_group


class TestHealthProber:
    """Test the health check loop against a target group."""

    # -------------------------
    # THRESHOLD TESTS
    # -------------------------

    def test_marks_healthy_after_threshold(self, group):
        """Test that the member turns HEALTHY after the healthy threshold."""
        prober = HealthProber(group, check=ScriptedCheck(default=True))

        for _ in range(3):
            prober.probe_once()

        assert group.members()[0]["status"] == "HEALTHY"

    def test_timeout_counts_as_failure(self, group):
        """Test that an unanswered check counts as a failure."""
        check = ScriptedCheck(default=True)
        check.results = [True, True, True] + [HealthCheckTimeout("slow")] * 3
        prober = HealthProber(group, check=check)

        for _ in range(6):
            prober.probe_once()

        assert group.members()[0]["status"] == "UNHEALTHY"

    # -------------------------
    # FAILURE REPORT TESTS
    # -------------------------

    def test_persistent_failure_reported_once(self, group, placement):
        """Test that persistent failure is reported once, naming the placement."""
        reported = []
        prober = HealthProber(
            group,
            check=ScriptedCheck(default=False),
            reschedule_after_failures=4,
            on_persistent_failure=lambda placement_id, host_id, failures: reported.append(
                (placement_id, host_id, failures)
            ),
        )

        for _ in range(8):
            prober.probe_once()

        assert reported == [(placement.placement_id, "i-0001", 4)]

    def test_subscribe_sets_callback(self, group):
        """Test that subscribe installs the failure callback."""
        reported = []
        prober = HealthProber(group, check=ScriptedCheck(default=False), reschedule_after_failures=1)
        prober.subscribe(lambda placement_id, host_id, failures: reported.append(host_id))

        prober.probe_once()

        assert reported == ["i-0001"]

    def test_background_loop(self, group):
        """Test that the background thread keeps checking until stopped."""
        check = ScriptedCheck(default=True)
        prober = HealthProber(group, check=check)

        prober.start()
        try:
            deadline = 200
            while len(check.calls) < 3 and deadline:
                deadline -= 1
                time.sleep(0.01)
        finally:
            prober.stop()

        assert len(check.calls) >= 3
        assert check.calls[0] == "http://10.0.1.11:8080/"


class FakeResponse:
    def __init__(self, status_code):
        self.status_code = status_code


class TestHttpHealthCheck:
    """Test the HTTP check against the health responder."""

    target = ProbeTarget(
        placement_id=None, host_id="i-0001", address="10.0.1.11", port=8080, path="/", generation=1
    )

    def test_ok(self, monkeypatch):
        """Test that 200 is healthy."""
        monkeypatch.setattr(requests, "get", lambda url, timeout: FakeResponse(200))
        assert check_http_health(self.target, HealthProbe()) is True

    def test_redirect_counts_as_healthy(self, monkeypatch):
        """Test that 3xx is healthy."""
        monkeypatch.setattr(requests, "get", lambda url, timeout: FakeResponse(302))
        assert check_http_health(self.target, HealthProbe()) is True

    def test_server_error(self, monkeypatch):
        """Test that 5xx is unhealthy."""
        monkeypatch.setattr(requests, "get", lambda url, timeout: FakeResponse(503))
        assert check_http_health(self.target, HealthProbe()) is False

    def test_connection_refused(self, monkeypatch):
        """Test that a refused connection is unhealthy."""
        def refuse(url, timeout):
            raise requests.exceptions.ConnectionError("refused")

        monkeypatch.setattr(requests, "get", refuse)
        assert check_http_health(self.target, HealthProbe()) is False

    def test_timeout(self, monkeypatch):
        """Test that a timeout raises HealthCheckTimeout."""
        def hang(url, timeout):
            raise requests.exceptions.ReadTimeout("slow")

        monkeypatch.setattr(requests, "get", hang)
        with pytest.raises(HealthCheckTimeout):
            check_http_health(self.target, HealthProbe(timeout_seconds=5))
