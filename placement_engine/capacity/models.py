#placement_engine\capacity\models.py

"""Capacity pool and host models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional


class HostStatus(Enum):
    """Host status."""
    READY = "READY"
    OCCUPIED = "OCCUPIED"
    FAILED = "FAILED"
    TERMINATED = "TERMINATED"


class HostHealthStatus(Enum):
    """Host health status."""
    HEALTHY = "HEALTHY"
    UNHEALTHY = "UNHEALTHY"
    UNKNOWN = "UNKNOWN"


class ReplacementPolicy(Enum):
    REPLACE_ON_UNHEALTHY = "REPLACE_ON_UNHEALTHY"


@dataclass(frozen=True)
class HostProfile:
    """Instance profile requested from the compute provider."""
    instance_type: str = "t3.large"
    cpu: float = 2.0
    memory_mib: int = 8192
    root_disk_gib: int = 60


@dataclass
class Host:
    """Compute host able to run one Workload Unit."""
    host_id: str
    host_name: str
    internal_ip: str
    agent_url: Optional[str] = None
    public_ip: Optional[str] = None

    instance_type: str = "t3.large"

    total_memory: int = 0  # MiB
    total_storage: int = 0  # GiB

    available_memory: int = 0
    available_storage: int = 0

    status: HostStatus = HostStatus.READY
    health_status: HostHealthStatus = HostHealthStatus.UNKNOWN

    last_heartbeat_at: Optional[datetime] = None

    labels: Dict[str, str] = field(default_factory=dict)

    registered_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @staticmethod
    def from_profile(host_id: str, internal_ip: str, profile: HostProfile, **kwargs) -> "Host":
        return Host(
            host_id=host_id,
            host_name=kwargs.pop("host_name", host_id),
            internal_ip=internal_ip,
            instance_type=profile.instance_type,
            total_memory=profile.memory_mib,
            total_storage=profile.root_disk_gib,
            available_memory=profile.memory_mib,
            available_storage=profile.root_disk_gib,
            **kwargs,
        )

    def can_accommodate(self, required_memory: int, required_storage: int) -> bool:
        """Check if host can accommodate resource requirements."""
        return (
            self.available_memory >= required_memory and
            self.available_storage >= required_storage
        )

    def is_schedulable(self) -> bool:
        """Check if host is available for a placement."""
        return (
            self.status == HostStatus.READY and
            self.health_status != HostHealthStatus.UNHEALTHY
        )

    def is_live(self) -> bool:
        return self.status in (HostStatus.READY, HostStatus.OCCUPIED)

    @property
    def address(self) -> str:
        return self.internal_ip


@dataclass
class CapacityPool:
    """Fixed-size pool of hosts (desired size is always 1)."""
    pool_id: str
    profile: HostProfile = field(default_factory=HostProfile)
    replacement_policy: ReplacementPolicy = ReplacementPolicy.REPLACE_ON_UNHEALTHY
    hosts: List[Host] = field(default_factory=list)

    @property
    def desired_size(self) -> int:
        return 1

    def live_hosts(self) -> List[Host]:
        return [h for h in self.hosts if h.is_live()]

    def find(self, host_id: str) -> Optional[Host]:
        for host in self.hosts:
            if host.host_id == host_id:
                return host
        return None
