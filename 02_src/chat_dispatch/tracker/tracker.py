"""Tracker: turns dispatch activity into persisted TraceEvents."""

import uuid
from datetime import datetime, timezone
from typing import Protocol

from ..event_bus import IEventBus
from ..logging_config import get_logger
from ..models import BusMessage, Topic, TraceEvent
from ..storage import IStorage

logger = get_logger(__name__)

# Event type recorded for each bus topic
TOPIC_EVENT_TYPES = {
    Topic.SESSION_STATE: "session_state_changed",
}


class ITracker(Protocol):
    """Creating TraceEvents. Two channels: EventBus subscription + direct calls."""

    async def track(self, event_type: str, actor: str, data: dict) -> None:
        """Create TraceEvent and save to Storage."""
        ...


class Tracker:
    """Records session state changes from the bus and race events from the resolver."""

    def __init__(self, event_bus: IEventBus, storage: IStorage):
        self._event_bus = event_bus
        self._storage = storage
        self._unsubscribers: list = []

    @property
    def started(self) -> bool:
        return bool(self._unsubscribers)

    async def start(self) -> None:
        """Subscribe to every topic. Idempotent."""
        if self.started:
            return
        self._unsubscribers = [
            self._event_bus.subscribe(topic, self._handle_bus_message)
            for topic in Topic
        ]

    async def stop(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    async def _handle_bus_message(self, bus_message: BusMessage) -> None:
        event_type = TOPIC_EVENT_TYPES.get(bus_message.topic, "bus_message_published")
        await self.track(
            event_type=event_type,
            actor=bus_message.source,
            data={"bus_message_id": bus_message.id, **bus_message.payload},
        )

    async def track(self, event_type: str, actor: str, data: dict) -> None:
        trace_event = TraceEvent(
            id=str(uuid.uuid4()),
            event_type=event_type,
            actor=actor,
            data=data,
            timestamp=datetime.now(timezone.utc),
        )
        await self._storage.save_trace_event(trace_event)
        logger.debug("Tracked %s from %s", event_type, actor)
