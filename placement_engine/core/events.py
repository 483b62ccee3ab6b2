"""Event emitters for the placement engine."""

import logging
from abc import ABC, abstractmethod
from typing import Iterable

from placement_engine.core.events_model import PlacementEvent

logger = logging.getLogger(__name__)


ALLOWED_EVENTS = {
    "placement.state_changed",
    "placement.created",
    "placement.superseded",
    "placement.failed",
    "volume.attached",
    "volume.released",
    "target.health_changed",
    "name.published",
}


class EventEmitter(ABC):
    """Abstract event emitter."""

    @abstractmethod
    def emit(self, events: Iterable[PlacementEvent]) -> None:
        """Emit one or more events."""
        pass


class LogEventEmitter(EventEmitter):
    """Logs events and keeps them in memory for inspection."""

    def __init__(self):
        self.events = []

    def emit(self, events: Iterable[PlacementEvent]) -> None:
        for event in events:
            # Validation
            if event.event_type not in ALLOWED_EVENTS:
                raise ValueError(f"Invalid event type: {event.event_type}")
            if not event.subject:
                raise ValueError("Event must have a subject")

            self.events.append(event)

            logger.info(f"[EVENT] {event.event_type} | subject={event.subject} | {event.metadata}")

    def of_type(self, event_type: str) -> list:
        return [e for e in self.events if e.event_type == event_type]


class MultiEventEmitter:
    """Fan-out to multiple emitters."""

    def __init__(self, emitters: Iterable[EventEmitter]):
        self._emitters = list(emitters)

    def emit(self, events: Iterable[PlacementEvent]):
        """Emit to all emitters."""
        events = list(events)
        for emitter in self._emitters:
            emitter.emit(events)


class NullEventEmitter(EventEmitter):
    """No-op emitter (used when events are not needed)."""

    def emit(self, events: Iterable[PlacementEvent]) -> None:
        """Do nothing."""
        pass
