"""Capacity pool service."""

import logging
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Iterable, List, Optional

from placement_engine.capacity.models import CapacityPool, Host, HostHealthStatus, HostStatus
from placement_engine.capacity.provider import ComputeProvider
from placement_engine.core.errors import CapacityExhausted

logger = logging.getLogger(__name__)


class CapacityPoolService:
    """
    Maintains the fixed-size host pool.

    Host failure is handled here by replacing the host; the replacement is
    announced through ``drain_replaced_hosts`` and resolved by the scheduler.
    """

    def __init__(
        self,
        pool: CapacityPool,
        provider: ComputeProvider,
        *,
        stale_threshold_seconds: int = 300,
    ):
        self._pool = pool
        self._provider = provider
        self._stale_threshold = timedelta(seconds=stale_threshold_seconds)
        self._replaced: List[str] = []
        self._lock = Lock()

    @property
    def pool(self) -> CapacityPool:
        return self._pool

    # ============================================
    # POOL SIZE
    # ============================================

    def ensure_capacity(self) -> List[Host]:
        """
        Request hosts until the pool holds its desired number of live hosts.

        Raises:
            CapacityExhausted: If the provider cannot supply a host
        """
        with self._lock:
            while len(self._pool.live_hosts()) < self._pool.desired_size:
                host = self._provider.request_host(self._pool.profile)
                host.status = HostStatus.READY
                if host.health_status == HostHealthStatus.UNKNOWN:
                    host.health_status = HostHealthStatus.HEALTHY
                host.last_heartbeat_at = datetime.now(timezone.utc)
                self._pool.hosts.append(host)
                logger.info(f"[pool] host {host.host_id} joined pool {self._pool.pool_id}")
            return self._pool.live_hosts()

    def add_host(self, host: Host) -> None:
        """Adopt a host that registered itself."""
        with self._lock:
            if self._pool.find(host.host_id):
                return
            host.last_heartbeat_at = host.last_heartbeat_at or datetime.now(timezone.utc)
            self._pool.hosts.append(host)
        logger.info(f"[pool] host {host.host_id} registered into pool {self._pool.pool_id}")

    # ============================================
    # HOST SELECTION
    # ============================================

    def select_host(
        self,
        required_memory: int,
        required_storage: int,
        exclude: Iterable[str] = (),
    ) -> Optional[Host]:
        """
        Select a schedulable host with sufficient free resources.

        Returns None when nothing fits.
        """
        excluded = set(exclude)
        with self._lock:
            suitable = [
                host for host in self._pool.hosts
                if host.host_id not in excluded
                and host.is_schedulable()
                and host.can_accommodate(required_memory, required_storage)
            ]

        if not suitable:
            logger.info(
                f"[pool] no suitable host for {required_memory}MiB / {required_storage}GiB"
            )
            return None

        # Most free memory first
        selected = max(suitable, key=lambda h: h.available_memory)
        logger.info(f"[pool] selected host {selected.host_id} ({selected.host_name})")
        return selected

    def occupy(self, host_id: str, memory: int, storage: int) -> None:
        with self._lock:
            host = self._pool.find(host_id)
            if not host:
                return
            host.available_memory -= memory
            host.available_storage -= storage
            host.status = HostStatus.OCCUPIED

    def vacate(self, host_id: str, memory: int, storage: int) -> None:
        with self._lock:
            host = self._pool.find(host_id)
            if not host:
                return
            host.available_memory = min(host.total_memory, host.available_memory + memory)
            host.available_storage = min(host.total_storage, host.available_storage + storage)
            if host.status == HostStatus.OCCUPIED:
                host.status = HostStatus.READY

    def get_host(self, host_id: str) -> Optional[Host]:
        return self._pool.find(host_id)

    def list_hosts(self) -> List[Host]:
        return list(self._pool.hosts)

    # ============================================
    # FAILURE / REPLACEMENT
    # ============================================

    def report_heartbeat(
        self,
        host_id: str,
        health_status: HostHealthStatus = HostHealthStatus.HEALTHY,
    ) -> None:
        """Update host heartbeat; an UNHEALTHY report triggers replacement."""
        host = self._pool.find(host_id)
        if not host:
            raise KeyError(f"Host {host_id} not in pool")

        host.last_heartbeat_at = datetime.now(timezone.utc)
        host.health_status = health_status

        if health_status == HostHealthStatus.UNHEALTHY and host.is_live():
            self.mark_failed(host_id, reason="reported unhealthy")

    def mark_failed(self, host_id: str, reason: str = "failure") -> Optional[Host]:
        """
        Terminate a failed host and try to bring in its replacement.

        Returns the replacement host if one could be allocated now; otherwise
        ``ensure_capacity`` will retry on the next cycle.
        """
        with self._lock:
            host = self._pool.find(host_id)
            if not host or not host.is_live():
                return None

            logger.warning(f"[pool] host {host_id} failed ({reason}), replacing")
            host.status = HostStatus.FAILED
            host.health_status = HostHealthStatus.UNHEALTHY
            self._provider.release_host(host_id)
            host.status = HostStatus.TERMINATED
            self._pool.hosts.remove(host)
            self._replaced.append(host_id)

        try:
            live = self.ensure_capacity()
        except CapacityExhausted as e:
            logger.warning(f"[pool] replacement for {host_id} deferred: {e}")
            return None
        return live[0] if live else None

    def check_stale_hosts(self) -> List[str]:
        """
        Replace hosts that have not sent a heartbeat recently.

        Returns the ids of hosts marked failed.
        """
        cutoff = datetime.now(timezone.utc) - self._stale_threshold
        stale = [
            host.host_id for host in self._pool.live_hosts()
            if host.last_heartbeat_at and host.last_heartbeat_at < cutoff
        ]
        for host_id in stale:
            self.mark_failed(host_id, reason="heartbeat stale")
        return stale

    def drain_replaced_hosts(self) -> List[str]:
        """Host ids replaced since the last call."""
        with self._lock:
            replaced, self._replaced = self._replaced, []
        return replaced
