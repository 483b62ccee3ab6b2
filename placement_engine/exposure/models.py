"""Exposure layer models."""

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from placement_engine.workload.models import Protocol


class TargetStatus(Enum):
    """Routability of a target group member."""
    INITIAL = "INITIAL"
    HEALTHY = "HEALTHY"
    UNHEALTHY = "UNHEALTHY"


@dataclass(frozen=True)
class HealthProbe:
    """Health check definition shared by every listener of a target group."""
    protocol: Protocol = Protocol.HTTP
    port: int = 8080
    path: str = "/"
    interval_seconds: float = 10.0
    timeout_seconds: float = 5.0
    healthy_threshold: int = 3
    unhealthy_threshold: int = 3


@dataclass(frozen=True)
class Target:
    """(host, port, protocol) tuple traffic is forwarded to."""
    host_id: str
    address: str
    port: int
    protocol: Protocol


@dataclass(frozen=True)
class ProbeTarget:
    """Snapshot of a member to probe, tagged with the membership generation."""
    placement_id: UUID
    host_id: str
    address: str
    port: int
    path: str
    generation: int

    @property
    def url(self) -> str:
        return f"http://{self.address}:{self.port}{self.path}"
