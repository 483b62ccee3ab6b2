# placement_engine/exposure/target_group.py
"""Target group whose membership is derived from the current placement."""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from placement_engine.core.events import NullEventEmitter
from placement_engine.core.events_model import PlacementEvent
from placement_engine.core.models import Placement
from placement_engine.exposure.models import HealthProbe, ProbeTarget, Target, TargetStatus
from placement_engine.workload.models import PortMapping

logger = logging.getLogger(__name__)


@dataclass
class _Member:
    placement_id: UUID
    host_id: str
    address: str
    status: TargetStatus = TargetStatus.INITIAL
    consecutive_successes: int = 0
    consecutive_failures: int = 0
    draining: bool = False
    last_checked_at: Optional[datetime] = None


class TargetGroup:
    """
    Routable set of (host, port, protocol) for the current placement.

    - Membership is only changed by ``sync(placement)``
    - Health is driven only by ``record_probe`` results
    - Probe results taken under an older membership generation are dropped
    - On replacement the previous member keeps routing (draining) until the
      new member is HEALTHY, but only while it is HEALTHY and its placement
      is known to still be serving; otherwise it is dropped at once
    """

    def __init__(self, name: str, ports: List[PortMapping], probe: HealthProbe, emitters=None):
        self.name = name
        self.ports = list(ports)
        self.probe = probe
        self._emitters = emitters or NullEventEmitter()

        self._members: Dict[UUID, _Member] = {}
        self._placement_id: Optional[UUID] = None
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def generation(self) -> int:
        return self._generation

    # ============================================
    # MEMBERSHIP
    # ============================================

    def sync(self, placement: Optional[Placement], serving: Iterable[UUID] = ()) -> bool:
        """
        Derive membership from ``placement``.

        ``serving`` holds the placement ids whose units are verifiably still
        up; a previous member outside it is deregistered immediately.

        Returns True when membership changed.
        """
        serving = set(serving)
        with self._lock:
            new_id = placement.placement_id if placement else None
            if new_id == self._placement_id:
                return False

            self._generation += 1
            self._placement_id = new_id

            for member in list(self._members.values()):
                if (
                    placement is not None
                    and member.status == TargetStatus.HEALTHY
                    and member.placement_id in serving
                ):
                    member.draining = True
                    logger.info(f"[{self.name}] draining {member.host_id} until replacement is healthy")
                else:
                    del self._members[member.placement_id]
                    logger.info(f"[{self.name}] deregistered {member.host_id}")

            if placement is not None:
                self._members[placement.placement_id] = _Member(
                    placement_id=placement.placement_id,
                    host_id=placement.host_id,
                    address=placement.host_address or placement.host_id,
                )
                logger.info(
                    f"[{self.name}] registered {placement.host_id} "
                    f"(generation {self._generation})"
                )
            return True

    def probe_targets(self) -> List[ProbeTarget]:
        """Members to probe, tagged with the current generation."""
        with self._lock:
            return [
                ProbeTarget(
                    placement_id=m.placement_id,
                    host_id=m.host_id,
                    address=m.address,
                    port=self.probe.port,
                    path=self.probe.path,
                    generation=self._generation,
                )
                for m in self._members.values()
            ]

    # ============================================
    # HEALTH
    # ============================================

    def record_probe(self, target: ProbeTarget, success: bool) -> Optional[TargetStatus]:
        """
        Apply one probe result.

        Returns the member's new status if it changed, else None. Results for
        an outdated generation or a removed member are ignored.
        """
        with self._lock:
            if target.generation != self._generation:
                logger.debug(f"[{self.name}] dropping stale probe result for {target.host_id}")
                return None

            member = self._members.get(target.placement_id)
            if member is None:
                return None

            member.last_checked_at = datetime.now(timezone.utc)
            previous = member.status

            if success:
                member.consecutive_successes += 1
                member.consecutive_failures = 0
                if (
                    member.status != TargetStatus.HEALTHY
                    and member.consecutive_successes >= self.probe.healthy_threshold
                ):
                    member.status = TargetStatus.HEALTHY
            else:
                member.consecutive_failures += 1
                member.consecutive_successes = 0
                if (
                    member.status != TargetStatus.UNHEALTHY
                    and member.consecutive_failures >= self.probe.unhealthy_threshold
                ):
                    member.status = TargetStatus.UNHEALTHY

            if member.status == previous:
                return None

            logger.info(
                f"[{self.name}] {member.host_id}: {previous.value} -> {member.status.value}"
            )
            self._emitters.emit([
                PlacementEvent.target_health_changed(
                    member.host_id, previous, member.status, member.consecutive_failures
                )
            ])

            if member.status == TargetStatus.HEALTHY and not member.draining:
                self._drop_draining()
            elif member.status == TargetStatus.UNHEALTHY and member.draining:
                del self._members[member.placement_id]
                logger.info(f"[{self.name}] drained member {member.host_id} unreachable, removed")

            return member.status

    def _drop_draining(self) -> None:
        for member in list(self._members.values()):
            if member.draining:
                del self._members[member.placement_id]
                logger.info(f"[{self.name}] replacement healthy, removed {member.host_id}")

    # ============================================
    # ROUTING
    # ============================================

    def routable_targets(self, port: PortMapping) -> List[Target]:
        """HEALTHY members for one of the group's ports, current member first."""
        if port not in self.ports:
            raise ValueError(f"{port.key()} is not a port of target group {self.name}")

        with self._lock:
            healthy = [m for m in self._members.values() if m.status == TargetStatus.HEALTHY]
            healthy.sort(key=lambda m: m.draining)
            return [
                Target(
                    host_id=m.host_id,
                    address=m.address,
                    port=port.published_port,
                    protocol=port.protocol,
                )
                for m in healthy
            ]

    def consecutive_failures(self, host_id: str) -> int:
        with self._lock:
            for m in self._members.values():
                if m.host_id == host_id and not m.draining:
                    return m.consecutive_failures
        return 0

    def members(self) -> List[Dict]:
        with self._lock:
            return [
                {
                    "placement_id": str(m.placement_id),
                    "host_id": m.host_id,
                    "address": m.address,
                    "status": m.status.value,
                    "draining": m.draining,
                    "consecutive_successes": m.consecutive_successes,
                    "consecutive_failures": m.consecutive_failures,
                    "last_checked_at": m.last_checked_at.isoformat() if m.last_checked_at else None,
                }
                for m in self._members.values()
            ]
