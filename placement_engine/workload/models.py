#placement_engine\workload\models.py

"""Workload Unit models: game server process plus its health responder."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from placement_engine.core.errors import WorkloadConfigError


# ============================================
# OPERATOR PORTS (wire level)
# ============================================

GAME_PORT = 27015
RCON_PORT = 27016
HEALTH_PORT = 8080

HEALTH_RESPONSE_BODY = "ok"


class Protocol(Enum):
    """Transport / probe protocol."""
    UDP = "UDP"
    TCP = "TCP"
    HTTP = "HTTP"

    @property
    def is_datagram(self) -> bool:
        return self == Protocol.UDP


class UnitStatus(Enum):
    """Workload Unit lifecycle status."""
    STARTING = "STARTING"
    RUNNING = "RUNNING"
    FAILED = "FAILED"
    STOPPED = "STOPPED"


@dataclass(frozen=True)
class PortMapping:
    """Container port published on the host (host network mode: same number)."""
    container_port: int
    protocol: Protocol
    host_port: Optional[int] = None

    @property
    def published_port(self) -> int:
        return self.host_port or self.container_port

    def key(self) -> str:
        """Docker-style key, e.g. '27015/udp'."""
        proto = "tcp" if self.protocol == Protocol.HTTP else self.protocol.value.lower()
        return f"{self.container_port}/{proto}"


@dataclass
class PrimaryProcessSpec:
    """Game server process."""
    image: str = "joedwards32/cs2"
    memory_limit_mib: int = 4096
    ports: List[PortMapping] = field(default_factory=lambda: [
        PortMapping(GAME_PORT, Protocol.UDP),
        PortMapping(RCON_PORT, Protocol.TCP),
    ])
    environment: Dict[str, str] = field(default_factory=dict)

    # Environment variable name -> secret key in the secret store
    secret_refs: Dict[str, str] = field(default_factory=dict)

    log_stream_prefix: str = "CS2CDKLogStream"
    volume_mount_path: Optional[str] = None


@dataclass
class HealthResponderSpec:
    """Sidecar answering the fixed liveness probe."""
    image: str = "placement/health-responder:latest"
    memory_limit_mib: int = 256
    port: PortMapping = field(default_factory=lambda: PortMapping(HEALTH_PORT, Protocol.TCP))
    path: str = "/"
    response_body: str = HEALTH_RESPONSE_BODY
    essential: bool = True
    log_stream_prefix: str = "CS2CDKHealthcheckLogStream"


@dataclass
class WorkloadUnitSpec:
    """Co-scheduled primary process + health responder sharing host networking."""
    name: str
    primary: PrimaryProcessSpec
    health_responder: HealthResponderSpec = field(default_factory=HealthResponderSpec)
    network_mode: str = "host"

    # Disk needed on the host besides the (optional) persistent volume
    required_storage_gib: int = 1

    def __post_init__(self):
        if self.network_mode != "host":
            raise WorkloadConfigError(
                "Primary process and health responder must share the host network"
            )

        ports = [p.published_port for p in self.primary.ports]
        ports.append(self.health_responder.port.published_port)
        if len(ports) != len(set(ports)):
            raise WorkloadConfigError(f"Port collision in workload unit: {ports}")

        protocols = {p.protocol for p in self.primary.ports}
        if Protocol.UDP not in protocols or Protocol.TCP not in protocols:
            raise WorkloadConfigError(
                "Primary process needs one datagram and one stream port"
            )

    @property
    def required_memory_mib(self) -> int:
        return self.primary.memory_limit_mib + self.health_responder.memory_limit_mib

    @property
    def datagram_port(self) -> PortMapping:
        return next(p for p in self.primary.ports if p.protocol == Protocol.UDP)

    @property
    def stream_port(self) -> PortMapping:
        return next(p for p in self.primary.ports if p.protocol == Protocol.TCP)

    @property
    def probe_port(self) -> int:
        return self.health_responder.port.published_port


@dataclass
class WorkloadUnit:
    """A started Workload Unit on a specific host."""
    unit_id: str
    host_id: str
    spec_name: str

    primary_container_id: Optional[str] = None
    responder_container_id: Optional[str] = None

    status: UnitStatus = UnitStatus.STARTING
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class UnitHealth:
    """Per-process running state reported by the runtime."""
    primary_running: bool
    responder_running: bool
    responder_essential: bool = True
    detail: Optional[str] = None

    @property
    def failed(self) -> bool:
        """
        The unit is failed when an essential process is down.

        Both processes are essential: a dead health responder fails the unit
        even while the game server keeps running.
        """
        if not self.primary_running:
            return True
        return self.responder_essential and not self.responder_running
