# placement_engine/core/repository.py

from abc import ABC, abstractmethod
from typing import Iterable, Optional
from uuid import UUID

from placement_engine.core.models import Placement, SchedulerRecord


class PlacementRepository(ABC):
    """
    Persistence contract for placements and scheduler state.
    """

    @abstractmethod
    def get_record(self) -> SchedulerRecord:
        """
        Fetch the scheduler record.
        Returns a fresh UNPLACED record if none was stored yet.
        """
        raise NotImplementedError

    @abstractmethod
    def save_record(self, record: SchedulerRecord) -> None:
        """
        Persist the scheduler record.
        """
        raise NotImplementedError

    @abstractmethod
    def create_placement(self, placement: Placement) -> None:
        """
        Persist a new active placement.
        Must fail with PlacementConcurrencyError if another placement is active.
        """
        raise NotImplementedError

    @abstractmethod
    def supersede_placement(self, placement_id: UUID) -> None:
        """
        Mark a placement as superseded (no longer active).
        """
        raise NotImplementedError

    @abstractmethod
    def get_placement(self, placement_id: UUID) -> Optional[Placement]:
        """
        Fetch placement by ID.
        Returns None if not found.
        """
        raise NotImplementedError

    @abstractmethod
    def list_active(self) -> Iterable[Placement]:
        """
        List placements that have not been superseded.
        Never more than one.
        """
        raise NotImplementedError

    @abstractmethod
    def list_history(self, limit: int = 50) -> Iterable[Placement]:
        """
        List placements, newest first.
        """
        raise NotImplementedError
