"""Core placement models (scheduler state)."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID, uuid4


class PlacementState(Enum):
    """Scheduler state machine."""

    UNPLACED = "UNPLACED"
    PLACING = "PLACING"
    PLACED = "PLACED"
    REPLACING = "REPLACING"


@dataclass
class Placement:
    """Binding of one Workload Unit (and optional volume) to one host."""

    placement_id: UUID
    host_id: str
    unit_id: str
    volume_id: Optional[str] = None

    # Addresses the exposure layer needs to register targets
    host_address: Optional[str] = None

    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    superseded_at: Optional[datetime] = None

    @staticmethod
    def new(host_id: str, unit_id: str, volume_id: Optional[str], host_address: Optional[str]):
        return Placement(
            placement_id=uuid4(),
            host_id=host_id,
            unit_id=unit_id,
            volume_id=volume_id,
            host_address=host_address,
        )

    @property
    def is_active(self) -> bool:
        return self.superseded_at is None

    def supersede(self) -> None:
        if self.superseded_at is None:
            self.superseded_at = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "placement_id": str(self.placement_id),
            "host_id": self.host_id,
            "unit_id": self.unit_id,
            "volume_id": self.volume_id,
            "host_address": self.host_address,
            "created_at": self.created_at.isoformat(),
            "superseded_at": self.superseded_at.isoformat() if self.superseded_at else None,
        }


@dataclass
class SchedulerRecord:
    """Persisted scheduler state (single row)."""

    state: PlacementState = PlacementState.UNPLACED
    active_placement_id: Optional[UUID] = None

    # Incremented on every new placement
    generation: int = 0

    last_error: Optional[str] = None
    consecutive_failures: int = 0

    placing_started_at: Optional[datetime] = None
    placed_at: Optional[datetime] = None
    replacing_started_at: Optional[datetime] = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
