"""Test the controller API."""

import pytest
from fastapi.testclient import TestClient

from placement_engine.api.main import create_app
from placement_engine.capacity.provider import InMemoryComputeProvider, RegisteredHostProvider
from placement_engine.config import EngineSettings
from placement_engine.container import build_services
from placement_engine.dns.publisher import InMemoryDnsProvider
from placement_engine.infrastructure.memory.repository import InMemoryPlacementRepository
from placement_engine.runtime.runtime import InMemoryWorkloadRuntime


@pytest.fixture
def engine_settings():
    return EngineSettings(
        _env_file=None,
        dns_name="cs2.test.example.com",
        front_door_address=None,
        volume_enabled=True,
        capacity_max_attempts=2,
        attachment_max_attempts=2,
    )


@pytest.fixture
def make_services(engine_settings, secret_store, game_config, clock):
    def _make(compute=None, store=None):
        return build_services(
            engine_settings,
            repository=InMemoryPlacementRepository(),
            compute=compute or InMemoryComputeProvider(),
            runtime=InMemoryWorkloadRuntime(),
            secret_store=store or secret_store,
            dns=InMemoryDnsProvider(),
            game_config=game_config,
            probe_check=lambda target, probe: True,
            sleep=clock.sleep,
        )

    return _make


@pytest.fixture
def services(make_services):
    return make_services()


@pytest.fixture
def client(services):
    return TestClient(create_app(services))


def register_payload(host_id="i-agent-1", memory=8192):
    return {
        "host_id": host_id,
        "internal_ip": "10.0.1.50",
        "public_ip": "203.0.113.50",
        "agent_url": "http://10.0.1.50:9000",
        "total_memory": memory,
        "total_storage": 60,
    }


class TestHealth:
    """Test the liveness endpoint."""

    def test_health(self, client):
        """Test that the API answers ok."""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestPlacementRoutes:
    """Test the placement endpoints."""

    # -------------------------
    # DEPLOY TESTS
    # -------------------------

    def test_initially_unplaced(self, client):
        """Test that nothing is placed before a deploy."""
        data = client.get("/placement").json()

        assert data["state"] == "UNPLACED"
        assert data["placement"] is None
        assert data["published_name"] == "cs2.test.example.com"

    def test_deploy(self, client):
        """Test that a deploy places the unit and binds the volume."""
        response = client.post("/placement/deploy")

        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "PLACED"
        assert data["placement"]["host_id"] == "i-0001"
        assert data["volume_id"] == "vol-000001"
        assert len(data["history"]) == 1

    def test_deploy_with_missing_secret(self, client, secret_store):
        """Test that a missing secret is 422 and leaves the unit unplaced."""
        secret_store.delete("CS2_PW")

        response = client.post("/placement/deploy")

        assert response.status_code == 422
        assert "CS2_PW" in response.json()["detail"]
        assert client.get("/placement").json()["state"] == "UNPLACED"

    def test_deploy_without_capacity(self, make_services):
        """Test that an empty pool is 503."""
        compute = InMemoryComputeProvider(capacity=0)
        client = TestClient(create_app(make_services(compute=compute)))

        response = client.post("/placement/deploy")

        assert response.status_code == 503

    # -------------------------
    # REPLACE TESTS
    # -------------------------

    def test_replace_requires_placement(self, client):
        """Test that replace without a placement is 409."""
        assert client.post("/placement/replace").status_code == 409

    def test_replace(self, client):
        """Test that replace starts a new generation on the same volume."""
        first = client.post("/placement/deploy").json()

        response = client.post("/placement/replace", json={"reason": "map rotation"})

        assert response.status_code == 200
        data = response.json()
        assert data["generation"] == 2
        assert data["placement"]["placement_id"] != first["placement"]["placement_id"]
        assert data["volume_id"] == first["volume_id"]

    # -------------------------
    # DEPROVISION TESTS
    # -------------------------

    def test_deprovision(self, client, services):
        """Test that deprovision keeps the volume by default."""
        client.post("/placement/deploy")

        response = client.delete("/placement")

        assert response.status_code == 200
        assert response.json()["state"] == "UNPLACED"
        assert services.volume_binder.volume_id == "vol-000001"

    def test_deprovision_with_volume(self, client, services):
        """Test that deprovision can delete the volume."""
        client.post("/placement/deploy")

        client.delete("/placement", params={"delete_volume": "true"})

        assert services.volume_binder.volume_id is None


class TestHostRoutes:
    """Test the host pool endpoints."""

    # -------------------------
    # REGISTRATION TESTS
    # -------------------------

    def test_list_hosts(self, client):
        """Test the host listing after a deploy."""
        client.post("/placement/deploy")

        hosts = client.get("/hosts").json()

        assert [h["host_id"] for h in hosts] == ["i-0001"]
        assert hosts[0]["status"] == "OCCUPIED"
        assert hosts[0]["available_memory"] == 8192 - 4352

    def test_register_into_registered_pool(self, make_services):
        """Test that a registered host joins the pool and takes the unit."""
        client = TestClient(create_app(make_services(compute=RegisteredHostProvider())))

        response = client.post("/hosts/register", json=register_payload())

        assert response.status_code == 200
        assert response.json()["status"] == "READY"
        assert [h["host_id"] for h in client.get("/hosts").json()] == ["i-agent-1"]

        assert client.post("/placement/deploy").json()["placement"]["host_id"] == "i-agent-1"

    def test_register_standby_host(self, make_services):
        """Test that a second host waits as standby until the first fails."""
        client = TestClient(create_app(make_services(compute=RegisteredHostProvider())))
        client.post("/hosts/register", json=register_payload("i-agent-1"))

        client.post("/hosts/register", json=register_payload("i-agent-2"))

        assert [h["host_id"] for h in client.get("/hosts").json()] == ["i-agent-1"]

        client.post("/hosts/i-agent-1/failed", json={"reason": "spot interruption"})
        assert [h["host_id"] for h in client.get("/hosts").json()] == ["i-agent-2"]

    def test_register_validation(self, client):
        """Test that a registration without an agent URL is 422."""
        payload = register_payload()
        del payload["agent_url"]
        assert client.post("/hosts/register", json=payload).status_code == 422

    # -------------------------
    # HEARTBEAT TESTS
    # -------------------------

    def test_heartbeat(self, client):
        """Test that a heartbeat is recorded."""
        client.post("/placement/deploy")

        response = client.post("/hosts/i-0001/heartbeat", json={"health_status": "healthy"})

        assert response.status_code == 200
        assert response.json()["last_heartbeat_at"] is not None

    def test_heartbeat_unknown_host(self, client):
        """Test that a heartbeat for an unknown host is 404."""
        assert client.post("/hosts/i-9999/heartbeat").status_code == 404

    def test_heartbeat_bad_status(self, client):
        """Test that an unknown health status is 400."""
        client.post("/placement/deploy")
        response = client.post("/hosts/i-0001/heartbeat", json={"health_status": "SLEEPY"})
        assert response.status_code == 400

    def test_unhealthy_heartbeat_replaces_host(self, client):
        """Test that an UNHEALTHY heartbeat terminates and replaces the host."""
        client.post("/placement/deploy")

        response = client.post("/hosts/i-0001/heartbeat", json={"health_status": "UNHEALTHY"})

        assert response.status_code == 410
        assert [h["host_id"] for h in client.get("/hosts").json()] == ["i-0002"]

    # -------------------------
    # FAILURE TESTS
    # -------------------------

    def test_mark_failed(self, client, services):
        """Test that a failed host is replaced and the unit follows."""
        client.post("/placement/deploy")

        response = client.post("/hosts/i-0001/failed")

        assert response.status_code == 200
        assert response.json()["replacement_host_id"] == "i-0002"

        services.controller.run_cycle()
        assert client.get("/placement").json()["placement"]["host_id"] == "i-0002"

    def test_mark_failed_unknown_host(self, client):
        """Test that failing an unknown host is 404."""
        assert client.post("/hosts/i-9999/failed").status_code == 404


class TestTargetRoutes:
    """Test the exposure snapshot endpoint."""

    def test_targets_before_placement(self, client):
        """Test that no members exist before placement."""
        data = client.get("/targets").json()

        assert data["members"] == []
        assert data["ingress"] == ["udp/27015", "tcp/27016", "tcp/8080"]

    def test_targets_after_cycle(self, client, services):
        """Test that a cycle registers the placed host."""
        services.controller.run_cycle()

        data = client.get("/targets").json()

        assert [m["host_id"] for m in data["members"]] == ["i-0001"]
        assert data["members"][0]["status"] == "INITIAL"
        assert data["front_door_address"] == "203.0.113.11"
