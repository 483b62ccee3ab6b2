"""Persistent volume models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class VolumeStatus(Enum):
    AVAILABLE = "AVAILABLE"
    ATTACHED = "ATTACHED"
    DELETED = "DELETED"


@dataclass
class PersistentVolume:
    """Block storage attachable to at most one host at a time."""
    volume_id: str
    size_gib: int
    storage_class: str = "gp3"

    attached_host_id: Optional[str] = None
    status: VolumeStatus = VolumeStatus.AVAILABLE

    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_attached(self) -> bool:
        return self.attached_host_id is not None

    def attached_to(self, host_id: str) -> bool:
        return self.attached_host_id == host_id
