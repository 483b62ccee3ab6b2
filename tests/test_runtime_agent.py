"""Test the runtime agent server, its client and the agent-backed runtime."""

import docker
import pytest
import requests
from fastapi.testclient import TestClient

from placement_engine.capacity.models import Host
from placement_engine.core.errors import RuntimeUnavailable
from placement_engine.runtime.runtime import AgentWorkloadRuntime
from placement_engine.workload.models import WorkloadUnit
from runtime_agent import client as agent_client
from runtime_agent import server
from runtime_agent.client import RuntimeAgentClient, RuntimeAgentError


# ============================================
# FAKE DOCKER
# ============================================

class FakeContainer:
    def __init__(self, name, status="running"):
        self.name = name
        self.id = f"{name}-0123456789abcdef"
        self.status = status
        self.stopped = False
        self.removed = False

    def stop(self, timeout=10):
        self.stopped = True
        self.status = "exited"

    def remove(self):
        self.removed = True


class FakeContainers:
    def __init__(self):
        self.by_name = {}
        self.run_calls = []
        # 1-based index of the run call that fails, if any
        self.fail_on_call = None

    def run(self, image, name, **kwargs):
        self.run_calls.append({"image": image, "name": name, **kwargs})
        if self.fail_on_call == len(self.run_calls):
            raise docker.errors.APIError(f"port conflict starting {name}")
        container = FakeContainer(name)
        self.by_name[name] = container
        return container

    def get(self, name):
        if name not in self.by_name:
            raise docker.errors.NotFound(f"No such container: {name}")
        return self.by_name[name]


class FakeImages:
    def __init__(self):
        self.pulled = []

    def pull(self, image):
        self.pulled.append(image)


class FakeDocker:
    def __init__(self):
        self.containers = FakeContainers()
        self.images = FakeImages()

    def info(self):
        return {"ServerVersion": "26.0.0", "ContainersRunning": 2, "MemTotal": 8 * 1024 ** 3, "NCPU": 2}


@pytest.fixture
def fake_docker(monkeypatch):
    fake = FakeDocker()
    monkeypatch.setattr(server, "docker_client", fake)
    return fake


@pytest.fixture
def agent(fake_docker):
    return TestClient(server.app)


def deploy_request(volume=True):
    return {
        "unit_id": "cs2-1",
        "primary": {
            "image": "joedwards32/cs2",
            "memory_limit_mib": 4096,
            "ports": [
                {"container_port": 27015, "protocol": "UDP"},
                {"container_port": 27016, "protocol": "TCP"},
            ],
            "environment": {"CS2_SERVERNAME": "Private Server", "CS2_RCONPW": "rcon-password"},
            "volume": {"volume_id": "vol-000001", "mount_path": "/home/steam/cs2-dedicated"} if volume else None,
            "log_stream_prefix": "CS2CDKLogStream",
        },
        "responder": {
            "image": "placement/health-responder:latest",
            "memory_limit_mib": 256,
            "port": 8080,
            "essential": True,
            "log_stream_prefix": "CS2CDKHealthcheckLogStream",
        },
    }


class TestRuntimeAgentServer:
    """Test the agent endpoints against a fake Docker daemon."""

    # -------------------------
    # HOST TESTS
    # -------------------------

    def test_health_without_docker(self, monkeypatch):
        """Test that the agent reports 503 without Docker."""
        monkeypatch.setattr(server, "docker_client", None)
        assert TestClient(server.app).get("/health").status_code == 503

    def test_info(self, agent):
        """Test host info from docker info."""
        data = agent.get("/info").json()
        assert data["docker_version"] == "26.0.0"
        assert data["cpu_count"] == 2

    def test_registration_payload(self, fake_docker, monkeypatch):
        """Test the registration payload built from the environment."""
        monkeypatch.setenv("HOST_INTERNAL_IP", "10.0.1.50")
        monkeypatch.setenv("HOST_PUBLIC_IP", "203.0.113.50")
        monkeypatch.delenv("HOST_MEMORY_MIB", raising=False)
        monkeypatch.delenv("AGENT_URL", raising=False)

        payload = server.registration_payload()

        assert payload["internal_ip"] == "10.0.1.50"
        assert payload["public_ip"] == "203.0.113.50"
        assert payload["agent_url"] == f"http://10.0.1.50:{server.AGENT_PORT}"
        assert payload["total_memory"] == 8192
        assert payload["total_storage"] == 60

    # -------------------------
    # DEPLOY TESTS
    # -------------------------

    def test_deploy_unit(self, agent, fake_docker):
        """Test that both containers start on the host network."""
        response = agent.post("/units", json=deploy_request())

        assert response.status_code == 200
        assert fake_docker.images.pulled == ["placement/health-responder:latest", "joedwards32/cs2"]

        responder, primary = fake_docker.containers.run_calls
        assert responder["network_mode"] == "host"
        assert responder["mem_limit"] == "256m"
        assert responder["environment"] == {"HEALTH_PORT": "8080"}

        assert primary["network_mode"] == "host"
        assert primary["mem_limit"] == "4096m"
        assert primary["environment"]["CS2_RCONPW"] == "rcon-password"
        assert primary["volumes"] == {
            "/mnt/volumes/vol-000001": {"bind": "/home/steam/cs2-dedicated", "mode": "rw"}
        }
        assert primary["labels"]["log_stream_prefix"] == "CS2CDKLogStream"

    def test_deploy_without_volume(self, agent, fake_docker):
        """Test that no bind mount is made without a volume."""
        agent.post("/units", json=deploy_request(volume=False))
        primary = fake_docker.containers.run_calls[1]
        assert primary["volumes"] == {}

    def test_failed_primary_removes_responder(self, agent, fake_docker):
        """Test that a primary that fails to start takes the started responder down with it."""
        fake_docker.containers.fail_on_call = 2

        response = agent.post("/units", json=deploy_request())

        assert response.status_code == 500
        responder = fake_docker.containers.by_name["cs2-1-health"]
        assert responder.stopped
        assert responder.removed
        assert "cs2-1-primary" not in fake_docker.containers.by_name

    def test_redeploy_after_failed_primary(self, agent, fake_docker):
        """Test that a deploy after a failed one starts a fresh responder."""
        fake_docker.containers.fail_on_call = 2
        agent.post("/units", json=deploy_request())
        fake_docker.containers.fail_on_call = None

        response = agent.post("/units", json=deploy_request())

        assert response.status_code == 200
        assert fake_docker.containers.by_name["cs2-1-health"].status == "running"

    # -------------------------
    # STATUS / STOP TESTS
    # -------------------------

    def test_unit_status(self, agent, fake_docker):
        """Test the running state of both containers."""
        agent.post("/units", json=deploy_request())
        fake_docker.containers.by_name["cs2-1-health"].status = "exited"

        data = agent.get("/units/cs2-1/status").json()

        assert data["primary_running"] is True
        assert data["responder_running"] is False
        assert data["responder_status"] == "exited"

    def test_unknown_unit_status(self, agent):
        """Test that an unknown unit is 404."""
        assert agent.get("/units/nope/status").status_code == 404

    def test_stop_unit(self, agent, fake_docker):
        """Test that stop removes both containers."""
        agent.post("/units", json=deploy_request())

        data = agent.post("/units/cs2-1/stop").json()

        assert sorted(data["containers"]) == ["cs2-1-health", "cs2-1-primary"]
        assert all(c.removed for c in fake_docker.containers.by_name.values())


# ============================================
# CLIENT
# ============================================

class FakeResponse:
    def __init__(self, status_code, data=None, text=""):
        self.status_code = status_code
        self._data = data
        self.text = text

    def json(self):
        if self._data is None:
            raise ValueError("no json")
        return self._data


class RecordingTransport:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def __call__(self, method, url, timeout=None, **kwargs):
        self.calls.append({"method": method, "url": url, "timeout": timeout, **kwargs})
        if self.error:
            raise self.error
        return self.response


DEPLOYED = {
    "unit_id": "cs2-i-0001-1",
    "primary_container_id": "abcdef0123456789",
    "responder_container_id": "0123456789abcdef",
    "status": "running",
}


class TestRuntimeAgentClient:
    """Test the HTTP client for the agent."""

    def test_deploy_unit(self, monkeypatch):
        """Test the deploy request."""
        transport = RecordingTransport(FakeResponse(200, DEPLOYED))
        monkeypatch.setattr(agent_client.requests, "request", transport)

        result = RuntimeAgentClient("http://10.0.1.11:9000/").deploy_unit({"unit_id": "cs2-i-0001-1"})

        assert result.primary_container_id == "abcdef0123456789"
        assert transport.calls[0]["url"] == "http://10.0.1.11:9000/units"
        assert transport.calls[0]["method"] == "POST"

    def test_error_detail_surfaced(self, monkeypatch):
        """Test that the agent's error detail reaches the caller."""
        transport = RecordingTransport(FakeResponse(500, {"detail": "Docker error: no space left"}))
        monkeypatch.setattr(agent_client.requests, "request", transport)

        with pytest.raises(RuntimeAgentError, match="no space left"):
            RuntimeAgentClient("http://10.0.1.11:9000").stop_unit("cs2-1")

    def test_connection_error(self, monkeypatch):
        """Test that a refused connection raises RuntimeAgentError."""
        transport = RecordingTransport(error=requests.exceptions.ConnectionError("refused"))
        monkeypatch.setattr(agent_client.requests, "request", transport)

        with pytest.raises(RuntimeAgentError, match="Cannot connect"):
            RuntimeAgentClient("http://10.0.1.11:9000").get_unit_status("cs2-1")


class TestAgentWorkloadRuntime:
    """Test the runtime that drives agents."""

    host = Host(host_id="i-0001", host_name="i-0001", internal_ip="10.0.1.11", agent_url="http://10.0.1.11:9000")

    def test_start_unit_sends_secrets_and_volume(self, monkeypatch, volume_workload_spec, secret_values):
        """Test the deploy payload carries secrets, config and the volume."""
        transport = RecordingTransport(FakeResponse(200, DEPLOYED))
        monkeypatch.setattr(agent_client.requests, "request", transport)

        unit = AgentWorkloadRuntime().start_unit(self.host, volume_workload_spec, secret_values, volume_id="vol-000001")

        payload = transport.calls[0]["json"]
        assert payload["primary"]["environment"]["STEAMUSER"] == secret_values["STEAMUSER"]
        assert payload["primary"]["environment"]["CS2_STARTMAP"] == "de_dust2"
        assert payload["primary"]["volume"] == {
            "volume_id": "vol-000001",
            "mount_path": "/home/steam/cs2-dedicated",
        }
        assert payload["responder"]["port"] == 8080
        assert unit.unit_id == DEPLOYED["unit_id"]

    def test_unreachable_agent(self, monkeypatch):
        """Test that an unreachable agent raises RuntimeUnavailable."""
        transport = RecordingTransport(error=requests.exceptions.ConnectionError("refused"))
        monkeypatch.setattr(agent_client.requests, "request", transport)

        unit = WorkloadUnit(unit_id="cs2-1", host_id="i-0001", spec_name="cs2")
        with pytest.raises(RuntimeUnavailable):
            AgentWorkloadRuntime().unit_status(self.host, unit)

    def test_host_without_agent(self, workload_spec):
        """Test that a host without an agent URL cannot run units."""
        host = Host(host_id="i-0002", host_name="i-0002", internal_ip="10.0.1.12")
        with pytest.raises(RuntimeUnavailable):
            AgentWorkloadRuntime().start_unit(host, workload_spec, {})
