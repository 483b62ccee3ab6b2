#tests\conftest.py

"""Pytest configuration and fixtures."""

import pytest

from placement_engine.capacity.models import CapacityPool
from placement_engine.capacity.provider import InMemoryComputeProvider
from placement_engine.capacity.service import CapacityPoolService
from placement_engine.core.events import LogEventEmitter
from placement_engine.core.retry import RetryPolicy
from placement_engine.infrastructure.memory.repository import InMemoryPlacementRepository
from placement_engine.runtime.runtime import InMemoryWorkloadRuntime
from placement_engine.scheduler.scheduler import PlacementScheduler
from placement_engine.storage.binder import VolumeBinder
from placement_engine.storage.provider import InMemoryStorageProvider
from placement_engine.workload.config import (
    DEFAULT_GAME_SERVER_ENV,
    build_workload_unit,
    load_game_server_config,
)
from placement_engine.workload.secrets import InMemorySecretStore, SecretResolver


SECRETS = {
    "STEAMUSER": "steam-user",
    "STEAMPASS": "steam-pass",
    "CS2_PW": "join-password",
    "CS2_RCONPW": "rcon-password",
}


class FakeClock:
    """Deterministic clock; ``sleep`` advances time instead of blocking."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def monotonic(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def retry(clock):
    """Default backoff schedule without real sleeping."""
    return RetryPolicy(sleep=clock.sleep)


@pytest.fixture
def events():
    return LogEventEmitter()


# -------------------------
# Workload
# -------------------------

@pytest.fixture
def game_config():
    return load_game_server_config(DEFAULT_GAME_SERVER_ENV)


@pytest.fixture
def workload_spec(game_config):
    return build_workload_unit(game_config)


@pytest.fixture
def volume_workload_spec(game_config):
    return build_workload_unit(game_config, volume_mount_path="/home/steam/cs2-dedicated")


@pytest.fixture
def secret_values():
    return dict(SECRETS)


@pytest.fixture
def secret_store():
    return InMemorySecretStore(dict(SECRETS))


# -------------------------
# Collaborators
# -------------------------

@pytest.fixture
def compute():
    return InMemoryComputeProvider(capacity=10)


@pytest.fixture
def pool_service(compute):
    return CapacityPoolService(CapacityPool(pool_id="test-pool"), compute)


@pytest.fixture
def runtime():
    return InMemoryWorkloadRuntime()


@pytest.fixture
def storage():
    return InMemoryStorageProvider()


@pytest.fixture
def binder(storage, clock, events):
    return VolumeBinder(
        storage,
        attach_timeout=10.0,
        poll_interval=1.0,
        sleep=clock.sleep,
        clock=clock.monotonic,
        emitters=events,
    )


@pytest.fixture
def repository():
    return InMemoryPlacementRepository()


@pytest.fixture
def make_scheduler(pool_service, runtime, secret_store, repository, retry, events):
    """Factory so tests can pick the spec and whether a volume is bound."""

    def _make(spec, volume_binder=None, repo=None):
        return PlacementScheduler(
            pool_service=pool_service,
            runtime=runtime,
            secret_resolver=SecretResolver(secret_store),
            workload_spec=spec,
            repository=repo or repository,
            volume_binder=volume_binder,
            capacity_retry=retry,
            attachment_retry=retry,
            emitters=events,
        )

    return _make


@pytest.fixture
def scheduler(make_scheduler, workload_spec):
    return make_scheduler(workload_spec)


@pytest.fixture
def volume_scheduler(make_scheduler, volume_workload_spec, binder):
    return make_scheduler(volume_workload_spec, volume_binder=binder)
