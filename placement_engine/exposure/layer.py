# placement_engine/exposure/layer.py
"""Exposure layer: public front door with one listener per protocol."""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from placement_engine.core.models import Placement
from placement_engine.exposure.listener import Listener
from placement_engine.exposure.models import HealthProbe
from placement_engine.exposure.target_group import TargetGroup
from placement_engine.workload.models import Protocol, WorkloadUnitSpec

logger = logging.getLogger(__name__)


class ExposureLayer:
    """
    Front door with two listeners (datagram game traffic, stream RCON).

    Both listeners reference the same TargetGroup, so they share one health
    probe definition and one health state.
    """

    def __init__(self, front_door_address: Optional[str], target_group: TargetGroup, listeners: List[Listener]):
        self._front_door_address = front_door_address
        self.target_group = target_group
        self.listeners = list(listeners)

    @classmethod
    def build(
        cls,
        spec: WorkloadUnitSpec,
        probe: HealthProbe,
        front_door_address: Optional[str] = None,
        emitters=None,
    ) -> "ExposureLayer":
        datagram = spec.datagram_port
        stream = spec.stream_port

        group = TargetGroup(
            name=f"{spec.name}-targets",
            ports=[datagram, stream],
            probe=probe,
            emitters=emitters,
        )
        listeners = [
            Listener(datagram.published_port, Protocol.UDP, group, datagram),
            Listener(stream.published_port, Protocol.TCP, group, stream),
        ]
        return cls(front_door_address, group, listeners)

    @property
    def front_door_address(self) -> Optional[str]:
        return self._front_door_address

    def set_front_door_address(self, address: str) -> None:
        if address != self._front_door_address:
            logger.info(f"[exposure] front door address {self._front_door_address} -> {address}")
            self._front_door_address = address

    def listener(self, protocol: Protocol) -> Listener:
        for listener in self.listeners:
            if listener.protocol == protocol:
                return listener
        raise KeyError(protocol)

    def sync(self, placement: Optional[Placement], serving: Iterable[UUID] = ()) -> bool:
        """
        Recompute target membership from the current placement.

        ``serving`` names the placements whose units are still up; anything
        else is dropped from routing at once.
        """
        return self.target_group.sync(placement, serving)

    def ingress_rules(self) -> List[Tuple[str, int]]:
        """Ports opened to any IPv4 source: both listeners plus the probe port."""
        rules = [(l.protocol.value.lower(), l.port) for l in self.listeners]
        rules.append(("tcp", self.target_group.probe.port))
        return rules

    def snapshot(self) -> Dict[str, Any]:
        return {
            "front_door_address": self._front_door_address,
            "generation": self.target_group.generation,
            "probe": {
                "protocol": self.target_group.probe.protocol.value,
                "port": self.target_group.probe.port,
                "path": self.target_group.probe.path,
            },
            "members": self.target_group.members(),
            "listeners": [
                {
                    "name": l.name,
                    "routable": l.is_routable(),
                    "in_flight": l.in_flight() if not l.protocol.is_datagram else None,
                }
                for l in self.listeners
            ],
            "ingress": [f"{p}/{port}" for p, port in self.ingress_rules()],
        }
