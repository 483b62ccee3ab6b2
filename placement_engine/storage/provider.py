# placement_engine/storage/provider.py
"""Persistent storage collaborators."""

import logging
from abc import ABC, abstractmethod
from copy import deepcopy
from itertools import count
from threading import Lock
from typing import Dict, Optional

from placement_engine.core.errors import AttachmentConflict, PlacementError
from placement_engine.storage.models import PersistentVolume, VolumeStatus

logger = logging.getLogger(__name__)


class VolumeNotFound(PlacementError):
    pass


class StorageProvider(ABC):
    """
    Create/attach/detach/delete volumes by identity.

    Implementations guarantee single attachment: attaching a volume that is
    attached to another host raises AttachmentConflict.
    """

    @abstractmethod
    def create_volume(self, size_gib: int, storage_class: str, volume_id: Optional[str] = None) -> PersistentVolume:
        pass

    @abstractmethod
    def describe_volume(self, volume_id: str) -> Optional[PersistentVolume]:
        pass

    @abstractmethod
    def attach(self, volume_id: str, host_id: str) -> None:
        pass

    @abstractmethod
    def detach(self, volume_id: str, host_id: str) -> None:
        """Request detachment; completion is observed through describe_volume."""
        pass

    @abstractmethod
    def delete_volume(self, volume_id: str) -> None:
        pass


class InMemoryStorageProvider(StorageProvider):
    """
    Volumes kept in memory, with host-scoped data access.

    ``detach_delay_polls`` makes a detach take effect only after that many
    ``describe_volume`` calls, to exercise release confirmation.
    """

    def __init__(self, detach_delay_polls: int = 0):
        self._volumes: Dict[str, PersistentVolume] = {}
        self._data: Dict[str, Dict[str, str]] = {}
        self._pending_detach: Dict[str, int] = {}
        self._detach_delay_polls = detach_delay_polls
        self._ids = count(1)
        self._lock = Lock()

        # Every attachment ever made, in order: (volume_id, host_id)
        self.attach_log = []

    def create_volume(self, size_gib: int, storage_class: str, volume_id: Optional[str] = None) -> PersistentVolume:
        with self._lock:
            volume_id = volume_id or f"vol-{next(self._ids):06d}"
            if volume_id in self._volumes:
                raise ValueError(f"Volume {volume_id} already exists")
            volume = PersistentVolume(volume_id=volume_id, size_gib=size_gib, storage_class=storage_class)
            self._volumes[volume_id] = volume
            self._data[volume_id] = {}
            logger.info(f"[storage] created {volume_id} ({size_gib}GiB {storage_class})")
            return deepcopy(volume)

    def describe_volume(self, volume_id: str) -> Optional[PersistentVolume]:
        with self._lock:
            volume = self._volumes.get(volume_id)
            if not volume:
                return None

            if volume_id in self._pending_detach:
                self._pending_detach[volume_id] -= 1
                if self._pending_detach[volume_id] <= 0:
                    del self._pending_detach[volume_id]
                    volume.attached_host_id = None
                    volume.status = VolumeStatus.AVAILABLE
            return deepcopy(volume)

    def attach(self, volume_id: str, host_id: str) -> None:
        with self._lock:
            volume = self._require(volume_id)
            if volume.attached_host_id == host_id:
                return
            if volume.attached_host_id is not None:
                raise AttachmentConflict(volume_id, volume.attached_host_id, host_id)

            volume.attached_host_id = host_id
            volume.status = VolumeStatus.ATTACHED
            self.attach_log.append((volume_id, host_id))
            logger.info(f"[storage] attached {volume_id} to {host_id}")

    def detach(self, volume_id: str, host_id: str) -> None:
        with self._lock:
            volume = self._require(volume_id)
            if volume.attached_host_id != host_id:
                return

            if self._detach_delay_polls > 0:
                self._pending_detach[volume_id] = self._detach_delay_polls
                return

            volume.attached_host_id = None
            volume.status = VolumeStatus.AVAILABLE
            logger.info(f"[storage] detached {volume_id} from {host_id}")

    def delete_volume(self, volume_id: str) -> None:
        with self._lock:
            volume = self._require(volume_id)
            if volume.attached_host_id is not None:
                raise AttachmentConflict(volume_id, volume.attached_host_id, "delete")
            volume.status = VolumeStatus.DELETED
            del self._volumes[volume_id]
            self._data.pop(volume_id, None)
            logger.info(f"[storage] deleted {volume_id}")

    # -------------------------
    # Data access (host scoped)
    # -------------------------

    def write(self, volume_id: str, host_id: str, key: str, value: str) -> None:
        with self._lock:
            self._require_attached(volume_id, host_id)
            self._data[volume_id][key] = value

    def read(self, volume_id: str, host_id: str, key: str) -> Optional[str]:
        with self._lock:
            self._require_attached(volume_id, host_id)
            return self._data[volume_id].get(key)

    def force_attach(self, volume_id: str, host_id: str) -> None:
        """Simulate a volume left attached by something outside the engine."""
        with self._lock:
            volume = self._require(volume_id)
            volume.attached_host_id = host_id
            volume.status = VolumeStatus.ATTACHED

    def _require(self, volume_id: str) -> PersistentVolume:
        volume = self._volumes.get(volume_id)
        if not volume:
            raise VolumeNotFound(f"Volume {volume_id} not found")
        return volume

    def _require_attached(self, volume_id: str, host_id: str) -> None:
        volume = self._require(volume_id)
        if volume.attached_host_id != host_id:
            raise AttachmentConflict(volume_id, volume.attached_host_id, host_id)
