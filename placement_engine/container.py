#placement_engine\container.py

"""Dependency injection container - wires all services together."""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from placement_engine.capacity.models import CapacityPool, HostProfile
from placement_engine.capacity.provider import ComputeProvider, RegisteredHostProvider
from placement_engine.capacity.service import CapacityPoolService
from placement_engine.config import EngineSettings, settings as default_settings
from placement_engine.controller.loop import PlacementController
from placement_engine.core.events import LogEventEmitter, MultiEventEmitter
from placement_engine.core.repository import PlacementRepository
from placement_engine.core.retry import RetryPolicy
from placement_engine.dns.publisher import DnsProvider, InMemoryDnsProvider, NamePublisher
from placement_engine.exposure.layer import ExposureLayer
from placement_engine.exposure.models import HealthProbe
from placement_engine.exposure.prober import HealthProber, check_http_health
from placement_engine.infrastructure.sql.database import create_db_engine, get_session_factory, init_db
from placement_engine.infrastructure.sql.repository import SqlPlacementRepository
from placement_engine.runtime.runtime import AgentWorkloadRuntime, WorkloadRuntime
from placement_engine.scheduler.scheduler import PlacementScheduler
from placement_engine.storage.binder import VolumeBinder
from placement_engine.storage.provider import InMemoryStorageProvider, StorageProvider
from placement_engine.workload.config import (
    GameServerConfig,
    build_workload_unit,
    load_game_server_config_from_env,
)
from placement_engine.workload.models import WorkloadUnitSpec
from placement_engine.workload.secrets import EnvSecretStore, SecretResolver, SecretStore

logger = logging.getLogger(__name__)


@dataclass
class PlacementServices:
    """Everything the controller process and the API need."""
    settings: EngineSettings
    workload_spec: WorkloadUnitSpec
    repository: PlacementRepository
    compute: ComputeProvider
    pool_service: CapacityPoolService
    runtime: WorkloadRuntime
    scheduler: PlacementScheduler
    exposure: ExposureLayer
    publisher: NamePublisher
    prober: HealthProber
    controller: PlacementController
    emitters: MultiEventEmitter
    volume_binder: Optional[VolumeBinder] = None


def build_services(
    engine_settings: Optional[EngineSettings] = None,
    *,
    repository: Optional[PlacementRepository] = None,
    compute: Optional[ComputeProvider] = None,
    runtime: Optional[WorkloadRuntime] = None,
    secret_store: Optional[SecretStore] = None,
    storage: Optional[StorageProvider] = None,
    dns: Optional[DnsProvider] = None,
    game_config: Optional[GameServerConfig] = None,
    probe_check: Callable = check_http_health,
    sleep: Callable[[float], None] = time.sleep,
) -> PlacementServices:
    """
    Wire the placement engine.

    Every collaborator can be overridden; defaults are the SQL state store,
    self-registering hosts and the runtime agents on them.

    Raises:
        WorkloadConfigError: If the game server config is invalid
    """
    cfg = engine_settings or default_settings

    # ============================================
    # WORKLOAD
    # ============================================

    game_config = game_config or load_game_server_config_from_env()
    workload_spec = build_workload_unit(
        game_config,
        volume_mount_path=cfg.volume_mount_path if cfg.volume_enabled else None,
    )

    # ============================================
    # EVENTS
    # ============================================

    emitters = MultiEventEmitter([LogEventEmitter()])

    # ============================================
    # REPOSITORIES
    # ============================================

    if repository is None:
        engine = create_db_engine(cfg.database_url, cfg.echo_sql)
        init_db(engine)
        repository = SqlPlacementRepository(get_session_factory(engine))

    # ============================================
    # COLLABORATORS
    # ============================================

    compute = compute or RegisteredHostProvider()
    runtime = runtime or AgentWorkloadRuntime()
    secret_store = secret_store or EnvSecretStore(prefix=cfg.secret_env_prefix)

    if dns is None:
        # TODO: add a hosted-zone provider; until then the binding lives in-process
        logger.warning("No DNS provider configured, name bindings are kept in memory")
        dns = InMemoryDnsProvider()

    # ============================================
    # SERVICES
    # ============================================

    pool = CapacityPool(
        pool_id="game-server-pool",
        profile=HostProfile(
            instance_type=cfg.host_instance_type,
            cpu=cfg.host_cpu,
            memory_mib=cfg.host_memory_mib,
            root_disk_gib=cfg.host_root_disk_gib,
        ),
    )
    pool_service = CapacityPoolService(pool, compute, stale_threshold_seconds=cfg.host_stale_seconds)

    volume_binder = None
    if cfg.volume_enabled:
        if storage is None:
            logger.warning("No storage provider configured, volumes are kept in memory")
            storage = InMemoryStorageProvider()
        volume_binder = VolumeBinder(
            storage,
            volume_id=cfg.volume_id,
            size_gib=cfg.volume_size_gib,
            storage_class=cfg.volume_storage_class,
            auto_provision=cfg.volume_auto_provision,
            attach_timeout=cfg.attach_timeout_seconds,
            poll_interval=cfg.attach_poll_seconds,
            sleep=sleep,
            emitters=emitters,
        )

    def backoff(max_attempts: int) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=max_attempts,
            base_delay=cfg.backoff_base_seconds,
            multiplier=cfg.backoff_multiplier,
            max_delay=cfg.backoff_max_seconds,
            sleep=sleep,
        )

    scheduler = PlacementScheduler(
        pool_service=pool_service,
        runtime=runtime,
        secret_resolver=SecretResolver(secret_store),
        workload_spec=workload_spec,
        repository=repository,
        volume_binder=volume_binder,
        capacity_retry=backoff(cfg.capacity_max_attempts),
        attachment_retry=backoff(cfg.attachment_max_attempts),
        unreachable_threshold=cfg.runtime_unreachable_threshold,
        emitters=emitters,
    )

    probe = HealthProbe(
        port=cfg.probe_port,
        path=cfg.probe_path,
        interval_seconds=cfg.probe_interval_seconds,
        timeout_seconds=cfg.probe_timeout_seconds,
        healthy_threshold=cfg.healthy_threshold,
        unhealthy_threshold=cfg.unhealthy_threshold,
    )
    exposure = ExposureLayer.build(workload_spec, probe, cfg.front_door_address, emitters=emitters)

    publisher = NamePublisher(cfg.dns_name, dns, emitters=emitters)

    prober = HealthProber(
        exposure.target_group,
        check=probe_check,
        reschedule_after_failures=cfg.reschedule_after_failures,
    )

    controller = PlacementController(
        scheduler=scheduler,
        pool_service=pool_service,
        exposure=exposure,
        publisher=publisher,
        prober=prober,
        reconcile_interval=cfg.reconcile_interval_seconds,
        static_front_door=cfg.front_door_address,
    )

    return PlacementServices(
        settings=cfg,
        workload_spec=workload_spec,
        repository=repository,
        compute=compute,
        pool_service=pool_service,
        runtime=runtime,
        scheduler=scheduler,
        exposure=exposure,
        publisher=publisher,
        prober=prober,
        controller=controller,
        emitters=emitters,
        volume_binder=volume_binder,
    )
