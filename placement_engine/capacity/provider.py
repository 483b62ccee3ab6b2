# placement_engine/capacity/provider.py
"""Compute provisioning collaborators."""

import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from itertools import count
from threading import Lock
from typing import Dict, List, Optional

from placement_engine.capacity.models import Host, HostHealthStatus, HostProfile, HostStatus
from placement_engine.core.errors import CapacityExhausted, HostRegistrationError

logger = logging.getLogger(__name__)


class ComputeProvider(ABC):
    """Request/release hosts with a resource profile."""

    @abstractmethod
    def request_host(self, profile: HostProfile) -> Host:
        """
        Allocate a host.

        Raises:
            CapacityExhausted: If no host can be provided right now
        """
        pass

    @abstractmethod
    def release_host(self, host_id: str) -> None:
        """Return a host to the provider (terminate it)."""
        pass


class InMemoryComputeProvider(ComputeProvider):
    """
    Provider with a finite number of host slots.

    Used by tests and local runs; ``capacity`` bounds how many hosts may be
    allocated over the provider's lifetime.
    """

    def __init__(self, capacity: int = 10, subnet: str = "10.0.1"):
        self._capacity = capacity
        self._subnet = subnet
        self._ids = count(1)
        self._allocated: Dict[str, Host] = {}
        self._issued = 0
        self._lock = Lock()

    def set_capacity(self, capacity: int) -> None:
        self._capacity = capacity

    def request_host(self, profile: HostProfile) -> Host:
        with self._lock:
            if self._issued >= self._capacity:
                raise CapacityExhausted(
                    f"No {profile.instance_type} capacity left ({self._issued}/{self._capacity} issued)"
                )
            n = next(self._ids)
            host = Host.from_profile(
                host_id=f"i-{n:04d}",
                internal_ip=f"{self._subnet}.{10 + n}",
                profile=profile,
                public_ip=f"203.0.113.{10 + n}",
                health_status=HostHealthStatus.HEALTHY,
            )
            self._issued += 1
            self._allocated[host.host_id] = host
            logger.info(f"[compute] allocated {host.host_id} ({profile.instance_type}) at {host.internal_ip}")
            return host

    def release_host(self, host_id: str) -> None:
        with self._lock:
            self._allocated.pop(host_id, None)
            logger.info(f"[compute] released {host_id}")

    def allocated(self) -> List[str]:
        return list(self._allocated)


class RegisteredHostProvider(ComputeProvider):
    """
    Pull-model provider backed by hosts that registered themselves.

    Runtime agents call the controller's ``/hosts/register`` endpoint on boot;
    ``request_host`` hands out the oldest registered host that satisfies the
    profile.
    """

    def __init__(self):
        self._registered: "OrderedDict[str, Host]" = OrderedDict()
        self._in_use: set = set()
        self._lock = Lock()

    def register(self, host: Host) -> None:
        if not host.agent_url:
            raise HostRegistrationError("agent_url required")
        if not host.internal_ip:
            raise HostRegistrationError("internal_ip required")

        with self._lock:
            host.status = HostStatus.READY
            host.health_status = HostHealthStatus.HEALTHY
            self._registered[host.host_id] = host
        logger.info(f"[compute] registered host {host.host_id} ({host.host_name})")

    def request_host(self, profile: HostProfile) -> Host:
        with self._lock:
            for host_id, host in self._registered.items():
                if host_id in self._in_use:
                    continue
                if host.total_memory < profile.memory_mib or host.total_storage < profile.root_disk_gib:
                    continue
                self._in_use.add(host_id)
                return host
        raise CapacityExhausted(f"No registered host matches {profile.instance_type}")

    def release_host(self, host_id: str) -> None:
        with self._lock:
            self._in_use.discard(host_id)
            self._registered.pop(host_id, None)

    def get(self, host_id: str) -> Optional[Host]:
        return self._registered.get(host_id)
