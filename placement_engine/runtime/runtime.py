# placement_engine/runtime/runtime.py
"""Workload runtimes - start, inspect and stop Workload Units on hosts."""

import logging
from abc import ABC, abstractmethod
from itertools import count
from threading import Lock
from typing import Dict, Optional

from placement_engine.capacity.models import Host
from placement_engine.core.errors import RuntimeUnavailable
from placement_engine.workload.models import UnitHealth, UnitStatus, WorkloadUnit, WorkloadUnitSpec
from runtime_agent.client import RuntimeAgentClient, RuntimeAgentError

logger = logging.getLogger(__name__)


class WorkloadRuntime(ABC):
    """Runs Workload Units on capacity pool hosts."""

    @abstractmethod
    def start_unit(
        self,
        host: Host,
        spec: WorkloadUnitSpec,
        secret_env: Dict[str, str],
        volume_id: Optional[str] = None,
    ) -> WorkloadUnit:
        pass

    @abstractmethod
    def unit_status(self, host: Host, unit: WorkloadUnit) -> UnitHealth:
        """
        Raises:
            RuntimeUnavailable: If the host's runtime cannot be reached
        """
        pass

    @abstractmethod
    def stop_unit(self, host: Host, unit: WorkloadUnit) -> None:
        """
        Raises:
            RuntimeUnavailable: If the host's runtime cannot be reached
        """
        pass


class AgentWorkloadRuntime(WorkloadRuntime):
    """Runtime backed by the Runtime Agent on each host."""

    def __init__(self, timeout: int = 30):
        self._timeout = timeout
        self._clients: Dict[str, RuntimeAgentClient] = {}
        self._ids = count(1)

    def start_unit(self, host, spec, secret_env, volume_id=None) -> WorkloadUnit:
        client = self._get_client(host)
        unit_id = f"{spec.name}-{host.host_id}-{next(self._ids)}"

        volume = None
        if volume_id and spec.primary.volume_mount_path:
            volume = {"volume_id": volume_id, "mount_path": spec.primary.volume_mount_path}

        payload = {
            "unit_id": unit_id,
            "primary": {
                "image": spec.primary.image,
                "memory_limit_mib": spec.primary.memory_limit_mib,
                "ports": [
                    {"container_port": p.container_port, "protocol": p.protocol.value}
                    for p in spec.primary.ports
                ],
                "environment": {**spec.primary.environment, **secret_env},
                "volume": volume,
                "log_stream_prefix": spec.primary.log_stream_prefix,
            },
            "responder": {
                "image": spec.health_responder.image,
                "memory_limit_mib": spec.health_responder.memory_limit_mib,
                "port": spec.probe_port,
                "essential": spec.health_responder.essential,
                "log_stream_prefix": spec.health_responder.log_stream_prefix,
            },
        }

        try:
            result = client.deploy_unit(payload)
        except RuntimeAgentError as e:
            raise RuntimeUnavailable(f"Deploy on {host.host_id} failed: {e}") from e

        return WorkloadUnit(
            unit_id=result.unit_id,
            host_id=host.host_id,
            spec_name=spec.name,
            primary_container_id=result.primary_container_id,
            responder_container_id=result.responder_container_id,
            status=UnitStatus.RUNNING,
        )

    def unit_status(self, host, unit) -> UnitHealth:
        try:
            status = self._get_client(host).get_unit_status(unit.unit_id)
        except RuntimeAgentError as e:
            raise RuntimeUnavailable(str(e)) from e

        return UnitHealth(
            primary_running=status.primary_running,
            responder_running=status.responder_running,
            detail=f"primary={status.primary_status} responder={status.responder_status}",
        )

    def stop_unit(self, host, unit) -> None:
        try:
            self._get_client(host).stop_unit(unit.unit_id)
        except RuntimeAgentError as e:
            raise RuntimeUnavailable(str(e)) from e

    def _get_client(self, host: Host) -> RuntimeAgentClient:
        if not host.agent_url:
            raise RuntimeUnavailable(f"Host {host.host_id} has no runtime agent URL")
        if host.agent_url not in self._clients:
            self._clients[host.agent_url] = RuntimeAgentClient(host.agent_url, timeout=self._timeout)
        return self._clients[host.agent_url]


class InMemoryWorkloadRuntime(WorkloadRuntime):
    """
    Simulated runtime for tests and local runs.

    ``crash_responder`` / ``crash_primary`` stop one process of the running unit;
    ``unreachable_hosts`` makes a host's runtime raise RuntimeUnavailable.
    """

    def __init__(self):
        self._units: Dict[str, Dict] = {}
        self._ids = count(1)
        self._lock = Lock()
        self.unreachable_hosts = set()

        # Every start in order: (unit_id, host_id, volume_id)
        self.start_log = []
        # Environment handed to the last started primary
        self.last_environment: Dict[str, str] = {}

    def start_unit(self, host, spec, secret_env, volume_id=None) -> WorkloadUnit:
        self._check_reachable(host)
        with self._lock:
            unit_id = f"{spec.name}-{next(self._ids)}"
            self._units[unit_id] = {
                "host_id": host.host_id,
                "primary_running": True,
                "responder_running": True,
                "volume_id": volume_id,
            }
            self.start_log.append((unit_id, host.host_id, volume_id))
            self.last_environment = {**spec.primary.environment, **secret_env}

        logger.info(f"[runtime] started {unit_id} on {host.host_id}")
        return WorkloadUnit(
            unit_id=unit_id,
            host_id=host.host_id,
            spec_name=spec.name,
            primary_container_id=f"{unit_id}-primary",
            responder_container_id=f"{unit_id}-health",
            status=UnitStatus.RUNNING,
        )

    def unit_status(self, host, unit) -> UnitHealth:
        self._check_reachable(host)
        state = self._units.get(unit.unit_id)
        if state is None:
            return UnitHealth(primary_running=False, responder_running=False, detail="missing")
        return UnitHealth(
            primary_running=state["primary_running"],
            responder_running=state["responder_running"],
        )

    def stop_unit(self, host, unit) -> None:
        self._check_reachable(host)
        with self._lock:
            self._units.pop(unit.unit_id, None)
        logger.info(f"[runtime] stopped {unit.unit_id} on {host.host_id}")

    def crash_responder(self, unit_id: str) -> None:
        self._units[unit_id]["responder_running"] = False

    def crash_primary(self, unit_id: str) -> None:
        self._units[unit_id]["primary_running"] = False

    def running_units(self) -> Dict[str, Dict]:
        return {uid: dict(state) for uid, state in self._units.items()}

    def _check_reachable(self, host: Host) -> None:
        if host.host_id in self.unreachable_hosts:
            raise RuntimeUnavailable(f"Runtime on {host.host_id} unreachable")
