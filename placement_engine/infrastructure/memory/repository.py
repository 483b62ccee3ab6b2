# placement_engine/infrastructure/memory/repository.py

from copy import deepcopy
from datetime import datetime, timezone
from threading import Lock
from typing import Iterable, Optional
from uuid import UUID

from placement_engine.core.errors import PlacementConcurrencyError, PlacementNotFound
from placement_engine.core.models import Placement, SchedulerRecord
from placement_engine.core.repository import PlacementRepository


class InMemoryPlacementRepository(PlacementRepository):
    def __init__(self):
        self._record = SchedulerRecord()
        self._placements: dict[UUID, Placement] = {}
        self._lock = Lock()

    def get_record(self) -> SchedulerRecord:
        with self._lock:
            return deepcopy(self._record)

    def save_record(self, record: SchedulerRecord) -> None:
        with self._lock:
            self._record = deepcopy(record)

    def create_placement(self, placement: Placement) -> None:
        with self._lock:
            if placement.placement_id in self._placements:
                raise PlacementConcurrencyError("Placement already exists")

            active = [p for p in self._placements.values() if p.is_active]
            if active:
                raise PlacementConcurrencyError(
                    f"Placement {active[0].placement_id} on {active[0].host_id} is still active"
                )
            self._placements[placement.placement_id] = deepcopy(placement)

    def supersede_placement(self, placement_id: UUID) -> None:
        with self._lock:
            placement = self._placements.get(placement_id)
            if not placement:
                raise PlacementNotFound(f"Placement {placement_id} not found")
            if placement.superseded_at is None:
                placement.superseded_at = datetime.now(timezone.utc)

    def get_placement(self, placement_id: UUID) -> Optional[Placement]:
        placement = self._placements.get(placement_id)
        return deepcopy(placement) if placement else None

    def list_active(self) -> Iterable[Placement]:
        return [deepcopy(p) for p in self._placements.values() if p.is_active]

    def list_history(self, limit: int = 50) -> Iterable[Placement]:
        ordered = sorted(self._placements.values(), key=lambda p: p.created_at, reverse=True)
        return [deepcopy(p) for p in ordered[:limit]]
