"""Live status feed for one pending conversation."""

import asyncio
from contextlib import aclosing
from typing import Callable, Protocol

from ..backend import IChatBackend
from ..errors import FeedAuthError
from ..logging_config import get_logger
from ..models import ConversationStatus

logger = get_logger(__name__)

StatusHandler = Callable[[ConversationStatus], None]
ErrorHandler = Callable[[Exception], None]


class IStatusWatch(Protocol):
    """Status feed with replay-on-subscribe and idempotent unsubscribe."""

    @property
    def closed(self) -> bool:
        ...

    def open(
        self,
        conversation_id: str,
        on_status: StatusHandler,
        on_error: ErrorHandler,
    ) -> Callable[[], None]:
        """Start delivering statuses. Returns the unsubscribe callable."""
        ...

    def unsubscribe(self) -> None:
        """Stop delivery. Idempotent."""
        ...


class StatusWatch:
    """Watches a conversation's status, reconnecting on transient failures.

    Every (re)connect opens the live feed, then reads and delivers the current
    status, then live changes, so consumers must tolerate duplicates. ``FeedAuthError`` is reported
    through ``on_error`` and ends the watch; any other feed error is retried
    after ``reconnect_delay`` seconds.
    """

    def __init__(self, backend: IChatBackend, reconnect_delay: float = 5.0):
        self._backend = backend
        self._reconnect_delay = reconnect_delay
        self._conversation_id: str | None = None
        self._task: asyncio.Task | None = None
        self._unsubscribed = False
        self._closed = False
        self.reconnects = 0

    @property
    def conversation_id(self) -> str | None:
        return self._conversation_id

    @property
    def closed(self) -> bool:
        """True once the feed stopped for any reason."""
        return self._closed

    @property
    def unsubscribed(self) -> bool:
        return self._unsubscribed

    def open(
        self,
        conversation_id: str,
        on_status: StatusHandler,
        on_error: ErrorHandler,
    ) -> Callable[[], None]:
        if self._task is not None or self._unsubscribed:
            raise RuntimeError(f"StatusWatch for {self._conversation_id} already opened")

        self._conversation_id = conversation_id
        self._task = asyncio.create_task(
            self._run(conversation_id, on_status, on_error),
            name=f"status-watch:{conversation_id}",
        )
        self._task.add_done_callback(self._on_task_done)
        return self.unsubscribe

    def unsubscribe(self) -> None:
        if self._unsubscribed:
            return
        self._unsubscribed = True

        task = self._task
        # Called from inside on_status: the loop exits after the delivery returns
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        if task is None:
            self._closed = True
        logger.debug("Unsubscribed status watch for %s", self._conversation_id)

    async def _run(
        self,
        conversation_id: str,
        on_status: StatusHandler,
        on_error: ErrorHandler,
    ) -> None:
        while not self._unsubscribed:
            try:
                feed = await self._backend.watch_conversation_status(conversation_id)
                async with aclosing(feed):
                    current = await self._backend.get_conversation_status(
                        conversation_id
                    )
                    if not self._deliver(on_status, current):
                        return
                    async for status in feed:
                        if not self._deliver(on_status, status):
                            return

                logger.info("Status feed for %s closed by server", conversation_id)
                return

            except FeedAuthError as e:
                logger.error(
                    "Status feed for %s rejected, not reconnecting: %s",
                    conversation_id,
                    e,
                )
                if not self._unsubscribed:
                    on_error(e)
                return

            except Exception as e:
                self.reconnects += 1
                logger.warning(
                    "Status feed for %s interrupted (attempt %s), reconnecting in %ss: %s",
                    conversation_id,
                    self.reconnects,
                    self._reconnect_delay,
                    e,
                )
                await asyncio.sleep(self._reconnect_delay)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._closed = True

    def _deliver(self, on_status: StatusHandler, status: ConversationStatus) -> bool:
        """Hand one status to the consumer. Returns False once unsubscribed."""
        if self._unsubscribed:
            return False
        try:
            on_status(status)
        except Exception as e:
            logger.error(
                "Status handler for %s failed: %s",
                self._conversation_id,
                e,
                exc_info=True,
            )
        return not self._unsubscribed
