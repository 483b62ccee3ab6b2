# placement_engine/dns/publisher.py
"""Name publication - one stable name pointing at the front door."""

import logging
from abc import ABC, abstractmethod
from threading import Lock
from typing import Dict, Optional

from placement_engine.core.errors import NameBindingFailure
from placement_engine.core.events import NullEventEmitter
from placement_engine.core.events_model import PlacementEvent

logger = logging.getLogger(__name__)


class DnsProvider(ABC):
    """DNS collaborator: upsert a name -> address binding."""

    @abstractmethod
    def upsert_record(self, name: str, address: str) -> None:
        """
        Raises:
            NameBindingFailure: If the upsert was rejected or failed
        """
        pass

    @abstractmethod
    def get_record(self, name: str) -> Optional[str]:
        pass


class InMemoryDnsProvider(DnsProvider):
    def __init__(self, fail_times: int = 0):
        self._records: Dict[str, str] = {}
        self._fail_times = fail_times
        self._lock = Lock()
        self.upsert_calls = 0

    def fail_next(self, times: int) -> None:
        self._fail_times = times

    def upsert_record(self, name: str, address: str) -> None:
        with self._lock:
            self.upsert_calls += 1
            if self._fail_times > 0:
                self._fail_times -= 1
                raise NameBindingFailure(f"Upsert {name} -> {address} rejected")
            self._records[name] = address

    def get_record(self, name: str) -> Optional[str]:
        return self._records.get(name)


class NamePublisher:
    """
    Publishes ``name`` -> front door address.

    Idempotent: publishing an unchanged address is a no-op. Each ``publish``
    makes a single upsert attempt; a failed one leaves the address pending and
    the controller's next cycle is the retry. Serving never waits on this.
    """

    def __init__(self, name: str, provider: DnsProvider, emitters=None):
        self.name = name
        self._provider = provider
        self._emitters = emitters or NullEventEmitter()
        self._published: Optional[str] = None
        self._pending: Optional[str] = None
        self.failed_attempts = 0

    @property
    def published_address(self) -> Optional[str]:
        return self._published

    @property
    def pending_address(self) -> Optional[str]:
        return self._pending

    def publish(self, address: Optional[str]) -> bool:
        """
        Converge the binding to ``address``.

        Returns True if the record was written, False when nothing changed or
        the write is still pending.
        """
        if not address:
            return False

        if address == self._published and self._pending is None:
            return False

        if self._published is None and self._provider.get_record(self.name) == address:
            # Binding already in place (e.g. controller restart)
            self._published = address
            self._pending = None
            return False

        previous = self._published
        self._pending = address
        try:
            self._provider.upsert_record(self.name, address)
        except NameBindingFailure as e:
            self.failed_attempts += 1
            logger.error(
                f"[dns] {self.name} -> {address} still pending "
                f"(attempt {self.failed_attempts}): {e}"
            )
            return False

        self._published = address
        self._pending = None
        self.failed_attempts = 0
        logger.info(f"[dns] ✅ {self.name} -> {address}")
        self._emitters.emit([PlacementEvent.name_published(self.name, address, previous)])
        return True
