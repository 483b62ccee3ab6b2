"""Protocol listeners on the exposure layer's front door."""

import logging
import threading
from collections import Counter
from typing import Optional

from placement_engine.exposure.models import Target
from placement_engine.exposure.target_group import TargetGroup
from placement_engine.workload.models import PortMapping, Protocol

logger = logging.getLogger(__name__)


class Listener:
    """
    (port, protocol) on the front door, bound to one target group.

    New flows go only to HEALTHY targets. Stream connections already open
    stay counted until closed, so they can drain after the target turns
    unhealthy; datagram flows carry no connection state.
    """

    def __init__(self, port: int, protocol: Protocol, target_group: TargetGroup, target_port: PortMapping):
        if target_port.protocol != protocol:
            raise ValueError(
                f"Listener {port}/{protocol.value} cannot forward to {target_port.key()}"
            )
        self.port = port
        self.protocol = protocol
        self.target_group = target_group
        self.target_port = target_port

        self._in_flight: Counter = Counter()
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return f"{self.protocol.value.lower()}:{self.port}"

    def route(self) -> Optional[Target]:
        """Target for a new flow, or None (traffic dropped)."""
        targets = self.target_group.routable_targets(self.target_port)
        return targets[0] if targets else None

    def is_routable(self) -> bool:
        return self.route() is not None

    def open_connection(self) -> Optional[Target]:
        """Accept a new stream connection; None when no healthy target."""
        if self.protocol.is_datagram:
            raise ValueError(f"{self.name} is a datagram listener")

        target = self.route()
        if target is None:
            logger.debug(f"[{self.name}] rejecting new connection: no healthy target")
            return None

        with self._lock:
            self._in_flight[target] += 1
        return target

    def close_connection(self, target: Target) -> None:
        with self._lock:
            if self._in_flight[target] > 0:
                self._in_flight[target] -= 1
            if self._in_flight[target] == 0:
                del self._in_flight[target]

    def in_flight(self, host_id: Optional[str] = None) -> int:
        with self._lock:
            return sum(n for t, n in self._in_flight.items() if host_id is None or t.host_id == host_id)
