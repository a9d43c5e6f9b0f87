"""EventBus: in-process pub/sub for session state changes."""

import asyncio
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol

from ..logging_config import get_logger
from ..models import BusMessage, Topic
from ..storage import IStorage

logger = get_logger(__name__)


TopicHandler = Callable[[BusMessage], Awaitable[None]]


class IEventBus(Protocol):
    """In-memory pub/sub for exchanging BusMessages."""

    def subscribe(
        self, topic: Topic, handler: TopicHandler, session_id: str | None = None
    ) -> Callable[[], None]:
        """Subscribe a handler, optionally to one session only.

        Returns a callable that removes this subscription.
        """
        ...

    def unsubscribe(self, topic: Topic, handler: TopicHandler) -> None:
        """Remove every subscription of a handler on a topic."""
        ...

    async def publish(self, message: BusMessage) -> None:
        """Publish BusMessage: calls matching handlers, persists to Storage."""
        ...


@dataclass(eq=False)
class _Subscription:
    handler: TopicHandler
    session_id: str | None = None

    def matches(self, message: BusMessage) -> bool:
        return self.session_id is None or message.payload.get("session_id") == self.session_id


class EventBus:
    """In-memory pub/sub event bus.

    A view rendering one visitor's widget subscribes with its session id and
    only sees that session's changes; the Tracker subscribes to everything.
    """

    def __init__(self, storage: IStorage):
        self._storage = storage
        self._subscribers: dict[Topic, list[_Subscription]] = {
            topic: [] for topic in Topic
        }

    def subscribe(
        self, topic: Topic, handler: TopicHandler, session_id: str | None = None
    ) -> Callable[[], None]:
        subscription = _Subscription(handler, session_id)
        self._subscribers[topic].append(subscription)

        def remove() -> None:
            if subscription in self._subscribers[topic]:
                self._subscribers[topic].remove(subscription)

        return remove

    def unsubscribe(self, topic: Topic, handler: TopicHandler) -> None:
        self._subscribers[topic] = [
            s for s in self._subscribers[topic] if s.handler != handler
        ]

    def subscriber_count(self, topic: Topic) -> int:
        return len(self._subscribers[topic])

    async def publish(self, message: BusMessage) -> None:
        if not message.id:
            message.id = str(uuid.uuid4())

        handlers = [s.handler for s in self._subscribers[message.topic] if s.matches(message)]
        if handlers:
            results = await asyncio.gather(
                *[handler(message) for handler in handlers],
                return_exceptions=True,
            )
            for handler, result in zip(handlers, results):
                if isinstance(result, Exception):
                    logger.error(
                        "Handler %s failed on %s message %s: %s",
                        getattr(handler, "__qualname__", repr(handler)),
                        message.topic.value,
                        message.id,
                        result,
                    )

        await self._storage.save_bus_message(message)
