# placement_engine/storage/binder.py
"""Volume binding with single-attachment and release confirmation."""

import logging
import time
from typing import Callable, Optional

from placement_engine.core.errors import AttachmentConflict, PreconditionFailure
from placement_engine.core.events import NullEventEmitter
from placement_engine.core.events_model import PlacementEvent
from placement_engine.storage.models import PersistentVolume
from placement_engine.storage.provider import StorageProvider

logger = logging.getLogger(__name__)


class VolumeBinder:
    """
    Owns the persistent volume of the placement.

    - Volume identity is fixed once created and survives replacement
    - Attach waits (bounded) for a foreign attachment to be released
    - Release returns only after the provider confirms detachment
    """

    def __init__(
        self,
        provider: StorageProvider,
        *,
        volume_id: Optional[str] = None,
        size_gib: int = 60,
        storage_class: str = "gp3",
        auto_provision: bool = True,
        attach_timeout: float = 60.0,
        poll_interval: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        emitters=None,
    ):
        self._provider = provider
        self._volume_id = volume_id
        self._size_gib = size_gib
        self._storage_class = storage_class
        self._auto_provision = auto_provision
        self._attach_timeout = attach_timeout
        self._poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock
        self._emitters = emitters or NullEventEmitter()

    @property
    def volume_id(self) -> Optional[str]:
        return self._volume_id

    def ensure_volume(self) -> PersistentVolume:
        """
        Return the bound volume, creating it on first use if allowed.

        Raises:
            PreconditionFailure: If the volume is missing and auto-provisioning is off
        """
        if self._volume_id:
            volume = self._provider.describe_volume(self._volume_id)
            if volume:
                return volume
            if not self._auto_provision:
                raise PreconditionFailure(f"Volume {self._volume_id} does not exist")
        elif not self._auto_provision:
            raise PreconditionFailure("No volume configured and auto-provisioning is disabled")

        volume = self._provider.create_volume(
            size_gib=self._size_gib,
            storage_class=self._storage_class,
            volume_id=self._volume_id,
        )
        self._volume_id = volume.volume_id
        logger.info(f"[volume] provisioned {volume.volume_id} on first attachment request")
        return volume

    def attach(self, host_id: str) -> PersistentVolume:
        """
        Attach the volume to ``host_id``.

        Raises:
            AttachmentConflict: If still attached elsewhere after the wait
        """
        volume = self.ensure_volume()

        if volume.attached_to(host_id):
            return volume

        if volume.is_attached:
            logger.warning(
                f"[volume] {volume.volume_id} still attached to {volume.attached_host_id}, "
                f"waiting up to {self._attach_timeout}s for release"
            )
            released = self._wait_until(lambda v: not v.is_attached)
            if not released:
                current = self._provider.describe_volume(volume.volume_id)
                raise AttachmentConflict(
                    volume.volume_id,
                    current.attached_host_id if current else None,
                    host_id,
                )

        self._provider.attach(volume.volume_id, host_id)

        if not self._wait_until(lambda v: v.attached_to(host_id)):
            current = self._provider.describe_volume(volume.volume_id)
            raise AttachmentConflict(
                volume.volume_id,
                current.attached_host_id if current else None,
                host_id,
            )

        logger.info(f"[volume] ✅ {volume.volume_id} attached to {host_id}")
        self._emitters.emit([PlacementEvent.volume_attached(volume.volume_id, host_id)])
        return self._provider.describe_volume(volume.volume_id)

    def release(self, host_id: str) -> None:
        """
        Detach the volume from ``host_id`` and wait for confirmation.

        Raises:
            AttachmentConflict: If the detachment is not confirmed in time
        """
        if not self._volume_id:
            return

        volume = self._provider.describe_volume(self._volume_id)
        if not volume or not volume.attached_to(host_id):
            return

        logger.info(f"[volume] releasing {self._volume_id} from {host_id}")
        self._provider.detach(self._volume_id, host_id)

        if not self._wait_until(lambda v: not v.attached_to(host_id)):
            raise AttachmentConflict(self._volume_id, host_id, "release")

        logger.info(f"[volume] ✅ {self._volume_id} released from {host_id}")
        self._emitters.emit([PlacementEvent.volume_released(self._volume_id, host_id)])

    def is_attached_to(self, host_id: str) -> bool:
        if not self._volume_id:
            return False
        volume = self._provider.describe_volume(self._volume_id)
        return bool(volume and volume.attached_to(host_id))

    def deprovision(self) -> None:
        """Delete the volume. Only explicit deprovisioning destroys data."""
        if not self._volume_id:
            return
        volume = self._provider.describe_volume(self._volume_id)
        if volume:
            if volume.is_attached:
                self.release(volume.attached_host_id)
            self._provider.delete_volume(self._volume_id)
        logger.info(f"[volume] deprovisioned {self._volume_id}")
        self._volume_id = None

    def _wait_until(self, predicate: Callable[[PersistentVolume], bool]) -> bool:
        deadline = self._clock() + self._attach_timeout
        while True:
            volume = self._provider.describe_volume(self._volume_id)
            if volume is not None and predicate(volume):
                return True
            if self._clock() >= deadline:
                return False
            self._sleep(self._poll_interval)
