"""RaceResolver: picks one winner among concurrently pending conversations."""

import asyncio
from enum import Enum
from typing import Any, Coroutine

from ..backend import IChatBackend
from ..config import DispatchConfig
from ..errors import ERROR_MESSAGES
from ..logging_config import get_logger
from ..models import (
    Aborted,
    AllFailed,
    AllMissed,
    Connected,
    ConversationStatus,
    DispatchOutcome,
    PendingConversation,
    TimedOut,
)
from ..timers import Countdown
from ..tracker import ITracker
from .engine import DispatchBatch

logger = get_logger(__name__)


class ResolverState(str, Enum):
    DISPATCHING = "dispatching"
    WAITING = "waiting"
    CONNECTED = "connected"
    ALL_FAILED = "all_failed"
    ALL_MISSED = "all_missed"
    TIMED_OUT = "timed_out"
    ABORTED = "aborted"


_TERMINAL = {
    Connected: ResolverState.CONNECTED,
    AllFailed: ResolverState.ALL_FAILED,
    AllMissed: ResolverState.ALL_MISSED,
    TimedOut: ResolverState.TIMED_OUT,
    Aborted: ResolverState.ABORTED,
}


class RaceResolver:
    """Consumes status and miss events of one batch and resolves the race once.

    All event handlers are synchronous and run on the event loop, so each
    event is handled to completion before the next one. That is what makes
    the plain ``set`` used as the opening-message guard safe without a lock.
    Backend writes (miss marks, opening message) run as background tasks the
    race never waits on.
    """

    def __init__(
        self,
        backend: IChatBackend,
        config: DispatchConfig | None = None,
        tracker: ITracker | None = None,
    ):
        self._backend = backend
        self._config = config or DispatchConfig()
        self._tracker = tracker

        self._state = ResolverState.DISPATCHING
        self._batch: DispatchBatch | None = None
        self._pending: dict[str, PendingConversation] = {}
        self._winner: PendingConversation | None = None
        self._outcome: DispatchOutcome | None = None
        self._done = asyncio.get_running_loop().create_future()

        # Conversation ids whose opening message has been triggered
        self._opening_messages: set[str] = set()
        self._waiting_timer = Countdown("waiting-timeout")
        self._background: set[asyncio.Task] = set()

    @property
    def state(self) -> ResolverState:
        return self._state

    @property
    def is_resolved(self) -> bool:
        return self._outcome is not None

    @property
    def outcome(self) -> DispatchOutcome | None:
        return self._outcome

    @property
    def pending(self) -> list[PendingConversation]:
        return list(self._pending.values())

    @property
    def pending_count(self) -> int:
        """Conversations still waiting for an agent."""
        return sum(
            1 for c in self._pending.values() if c.status is ConversationStatus.CREATED
        )

    @property
    def waiting_timer(self) -> Countdown:
        return self._waiting_timer

    def begin(self, batch: DispatchBatch) -> None:
        """Take ownership of a dispatched batch and start waiting."""
        if self._batch is not None:
            raise RuntimeError("RaceResolver already has a batch")
        self._batch = batch

        if self.is_resolved:
            # Cancelled while conversations were being created
            logger.info("Session already %s, releasing new batch", self._state.value)
            batch.release_all()
            return

        if not batch.succeeded:
            self._resolve(AllFailed(failures=list(batch.failed)))
            return

        self._pending = {c.id: c for c in batch.succeeded}
        self._state = ResolverState.WAITING
        self._waiting_timer.arm(
            self._config.waiting_timeout_seconds, self._on_waiting_timeout
        )
        for conversation in batch.succeeded:
            self._track(
                "conversation_created",
                {
                    "conversation_id": conversation.id,
                    "contract_id": conversation.contract_id,
                    "correlation_key": str(batch.request.correlation_key),
                },
            )
        logger.info("Waiting for %s pending conversations", len(self._pending))

    async def wait(self) -> DispatchOutcome:
        """Wait for the terminal outcome."""
        return await asyncio.shield(self._done)

    async def drain(self) -> None:
        """Wait for background backend writes to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def abort(self, reason: str = "cancelled") -> None:
        """Abort the race. No-op once the race is resolved."""
        if self.is_resolved:
            logger.debug("Abort ignored, session already %s", self._state.value)
            return
        logger.info("Aborting dispatch: %s", reason)
        self._resolve(Aborted(reason=reason))

    # IRaceListener
    def on_status(self, conversation_id: str, status: ConversationStatus) -> None:
        conversation = self._pending.get(conversation_id)
        if conversation is None:
            logger.debug(
                "Ignoring status %s for unknown conversation %s",
                status.value,
                conversation_id,
            )
            return

        if self._state is not ResolverState.WAITING:
            if status is ConversationStatus.STARTED and conversation is self._winner:
                # Redelivery for the winner: retry the opening message if it was rolled back
                self._ensure_opening_message(conversation)
            else:
                logger.debug(
                    "Ignoring status %s for %s after %s",
                    status.value,
                    conversation_id,
                    self._state.value,
                )
            return

        if status is ConversationStatus.STARTED:
            self._win(conversation)
        elif status is ConversationStatus.MISSED:
            self._mark_missed(conversation, write=False)
        elif status is ConversationStatus.FAILED:
            self._mark_failed(conversation)

    def on_missed(self, conversation_id: str, contract_id: str) -> None:
        conversation = self._pending.get(conversation_id)
        if conversation is None or self._state is not ResolverState.WAITING:
            return
        self._mark_missed(conversation, write=True)

    def on_watch_error(self, conversation_id: str, error: Exception) -> None:
        if self._state is not ResolverState.WAITING:
            return
        logger.error(
            "Status watch for %s cannot reconnect, aborting session: %s",
            conversation_id,
            error,
        )
        self._resolve(Aborted(reason=ERROR_MESSAGES["auth"]))

    # Transitions
    def _win(self, conversation: PendingConversation) -> None:
        if conversation.missed:
            logger.warning(
                "Conversation %s started after being marked missed", conversation.id
            )
        conversation.status = ConversationStatus.STARTED
        self._winner = conversation
        for other in self._pending.values():
            if other is not conversation:
                other.superseded = True

        logger.info(
            "Connected via contract %s (conversation %s)",
            conversation.contract_id,
            conversation.id,
        )
        self._track(
            "race_won",
            {
                "conversation_id": conversation.id,
                "contract_id": conversation.contract_id,
                "superseded": [c.id for c in self._pending.values() if c.superseded],
            },
        )
        self._resolve(Connected(conversation=conversation))
        self._ensure_opening_message(conversation)

    def _mark_missed(self, conversation: PendingConversation, write: bool) -> None:
        if conversation.missed or conversation.status is not ConversationStatus.CREATED:
            return
        conversation.missed = True
        conversation.status = ConversationStatus.MISSED
        if write:
            self._spawn(self._write_missed(conversation))
        else:
            # Reported by the backend itself; our own countdown is moot
            self._batch.release_timer(conversation.id)
        self._track(
            "conversation_missed",
            {
                "conversation_id": conversation.id,
                "contract_id": conversation.contract_id,
                "source": "timer" if write else "feed",
            },
        )
        self._check_exhausted()

    def _mark_failed(self, conversation: PendingConversation) -> None:
        if conversation.status is not ConversationStatus.CREATED:
            return
        conversation.status = ConversationStatus.FAILED
        logger.warning("Conversation %s failed on the backend", conversation.id)
        self._batch.release(conversation.id)
        self._check_exhausted()

    def _check_exhausted(self) -> None:
        finished = (ConversationStatus.MISSED, ConversationStatus.FAILED)
        if all(c.status in finished for c in self._pending.values()):
            logger.info("All %s conversations missed or failed", len(self._pending))
            self._resolve(AllMissed())

    def _on_waiting_timeout(self) -> None:
        if self._state is ResolverState.WAITING:
            logger.warning(
                "No agent responded within %ss", self._config.waiting_timeout_seconds
            )
            self._resolve(TimedOut())

    def _resolve(self, outcome: DispatchOutcome) -> None:
        """Enter a terminal state exactly once, releasing everything."""
        if self.is_resolved:
            return
        self._outcome = outcome
        self._state = _TERMINAL[type(outcome)]

        self._waiting_timer.clear()
        if self._batch is not None:
            self._batch.release_all()

        if not self._done.done():
            self._done.set_result(outcome)
        self._track(
            "session_resolved",
            {"state": self._state.value, "message": outcome.message},
        )

    # Side effects
    def _ensure_opening_message(self, conversation: PendingConversation) -> None:
        if conversation.id in self._opening_messages:
            logger.info("Opening message already created for %s", conversation.id)
            return
        self._opening_messages.add(conversation.id)
        self._spawn(self._create_opening_message(conversation))

    async def _create_opening_message(self, conversation: PendingConversation) -> None:
        attempts = max(self._config.message_retry_limit, 1)
        for attempt in range(1, attempts + 1):
            try:
                await self._backend.create_opening_message(
                    conversation.id, conversation.headline, conversation.customer_name
                )
            except Exception as e:
                logger.error(
                    "Opening message for %s failed (attempt %s/%s): %s",
                    conversation.id,
                    attempt,
                    attempts,
                    e,
                    exc_info=True,
                )
                if attempt < attempts:
                    await asyncio.sleep(self._config.retry_delay_seconds)
                continue

            logger.info("Opening message created for %s", conversation.id)
            await self._track_now(
                "opening_message_created", {"conversation_id": conversation.id}
            )
            return

        # Allow a later STARTED redelivery to try again
        self._opening_messages.discard(conversation.id)

    async def _write_missed(self, conversation: PendingConversation) -> None:
        try:
            await self._backend.mark_conversation_missed(conversation.id)
        except Exception as e:
            logger.error(
                "Failed to mark conversation %s as missed: %s",
                conversation.id,
                e,
                exc_info=True,
            )

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _track(self, event_type: str, data: dict) -> None:
        if self._tracker is not None:
            self._spawn(self._track_now(event_type, data))

    async def _track_now(self, event_type: str, data: dict) -> None:
        if self._tracker is None:
            return
        try:
            await self._tracker.track(event_type, "race_resolver", data)
        except Exception as e:
            logger.error("Failed to track %s: %s", event_type, e)
