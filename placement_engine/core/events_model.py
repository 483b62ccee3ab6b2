"""Event models for the placement engine."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PlacementEvent:
    """Base placement event."""

    event_type: str
    subject: str
    timestamp: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def state_changed(previous, current, generation: int):
        return PlacementEvent(
            event_type="placement.state_changed",
            subject="scheduler",
            timestamp=_now(),
            metadata={
                "from": previous.value,
                "to": current.value,
                "generation": generation,
            },
        )

    @staticmethod
    def placement_created(placement):
        return PlacementEvent(
            event_type="placement.created",
            subject=str(placement.placement_id),
            timestamp=_now(),
            metadata={
                "host_id": placement.host_id,
                "unit_id": placement.unit_id,
                "volume_id": placement.volume_id,
            },
        )

    @staticmethod
    def placement_superseded(placement, reason: str):
        return PlacementEvent(
            event_type="placement.superseded",
            subject=str(placement.placement_id),
            timestamp=_now(),
            metadata={
                "host_id": placement.host_id,
                "reason": reason,
            },
        )

    @staticmethod
    def placement_failed(reason: str, error_type: str):
        return PlacementEvent(
            event_type="placement.failed",
            subject="scheduler",
            timestamp=_now(),
            metadata={
                "error_type": error_type,
                "reason": reason,
            },
        )

    @staticmethod
    def volume_attached(volume_id: str, host_id: str):
        return PlacementEvent(
            event_type="volume.attached",
            subject=volume_id,
            timestamp=_now(),
            metadata={"host_id": host_id},
        )

    @staticmethod
    def volume_released(volume_id: str, host_id: str):
        return PlacementEvent(
            event_type="volume.released",
            subject=volume_id,
            timestamp=_now(),
            metadata={"host_id": host_id},
        )

    @staticmethod
    def target_health_changed(host_id: str, previous, current, failures: int):
        return PlacementEvent(
            event_type="target.health_changed",
            subject=host_id,
            timestamp=_now(),
            metadata={
                "from": previous.value,
                "to": current.value,
                "consecutive_failures": failures,
            },
        )

    @staticmethod
    def name_published(name: str, address: str, previous: Optional[str]):
        return PlacementEvent(
            event_type="name.published",
            subject=name,
            timestamp=_now(),
            metadata={"address": address, "previous": previous},
        )
