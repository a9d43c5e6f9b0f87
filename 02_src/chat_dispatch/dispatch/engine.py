"""DispatchEngine: fans one request out to every eligible contract."""

import asyncio
from typing import Callable, Protocol

from ..backend import IChatBackend
from ..logging_config import get_logger
from ..models import (
    Contract,
    ConversationStatus,
    DispatchRequest,
    FailedCreation,
    PendingConversation,
)
from ..timers import Countdown, MissTimer
from ..watch import IStatusWatch, StatusWatch

logger = get_logger(__name__)


class IRaceListener(Protocol):
    """Receives the events of every timer and watch in a batch."""

    def on_status(self, conversation_id: str, status: ConversationStatus) -> None:
        ...

    def on_missed(self, conversation_id: str, contract_id: str) -> None:
        ...

    def on_watch_error(self, conversation_id: str, error: Exception) -> None:
        ...


TimerFactory = Callable[[str, str], MissTimer]
WatchFactory = Callable[[], IStatusWatch]


class DispatchBatch:
    """Result of one fan-out; owns the batch's miss timers and status watches."""

    def __init__(
        self,
        request: DispatchRequest,
        succeeded: list[PendingConversation],
        failed: list[FailedCreation],
    ):
        self.request = request
        self.succeeded = succeeded
        self.failed = failed
        self._timers: dict[str, MissTimer] = {}
        self._watches: dict[str, IStatusWatch] = {}

    @property
    def active_timer_count(self) -> int:
        return len(self._timers)

    @property
    def active_watch_count(self) -> int:
        return len(self._watches)

    def timer_for(self, conversation_id: str) -> MissTimer | None:
        return self._timers.get(conversation_id)

    def watch_for(self, conversation_id: str) -> IStatusWatch | None:
        return self._watches.get(conversation_id)

    def add_timer(self, timer: MissTimer) -> None:
        self._timers[timer.conversation_id] = timer

    def add_watch(self, conversation_id: str, watch: IStatusWatch) -> None:
        self._watches[conversation_id] = watch

    def forget_timer(self, timer: Countdown) -> None:
        """Drop the reference to a timer that fired or was cleared."""
        if isinstance(timer, MissTimer) and self._timers.get(timer.conversation_id) is timer:
            del self._timers[timer.conversation_id]

    def release_timer(self, conversation_id: str) -> None:
        timer = self._timers.pop(conversation_id, None)
        if timer is not None:
            timer.clear()

    def release(self, conversation_id: str) -> None:
        """Clear the conversation's timer and unsubscribe its watch, once."""
        self.release_timer(conversation_id)
        watch = self._watches.pop(conversation_id, None)
        if watch is not None:
            watch.unsubscribe()

    def release_all(self) -> None:
        """Release every timer and watch still held. Idempotent."""
        for conversation_id in list(self._timers) + list(self._watches):
            self.release(conversation_id)


class DispatchEngine:
    """Creates one conversation per contract concurrently and arms their monitors."""

    def __init__(
        self,
        backend: IChatBackend,
        watch_factory: WatchFactory | None = None,
        timer_factory: TimerFactory = MissTimer,
        reconnect_delay: float = 5.0,
    ):
        self._backend = backend
        self._watch_factory = watch_factory or (
            lambda: StatusWatch(backend, reconnect_delay=reconnect_delay)
        )
        self._timer_factory = timer_factory

    async def dispatch(
        self,
        contracts: list[Contract],
        request: DispatchRequest,
        listener: IRaceListener,
    ) -> DispatchBatch:
        """Create conversations for all contracts and wait until every call settles.

        Individual failures are collected, never raised. Timers and watches
        are armed only for conversations that were created.
        """
        if not contracts:
            raise ValueError("dispatch requires at least one contract")

        logger.info(
            "Creating %s conversations for key %s",
            len(contracts),
            request.correlation_key,
        )

        if len(contracts) == 1:
            results = [await self._create_one(contracts[0], request)]
        else:
            results = await asyncio.gather(
                *(self._create_one(contract, request) for contract in contracts)
            )

        succeeded = [r for r in results if isinstance(r, PendingConversation)]
        failed = [r for r in results if isinstance(r, FailedCreation)]
        logger.info(
            "Conversation creation: %s succeeded, %s failed",
            len(succeeded),
            len(failed),
        )
        if failed:
            logger.warning(
                "Failed contracts: %s",
                ", ".join(f.contract_id for f in failed),
            )

        batch = DispatchBatch(request, succeeded, failed)
        for conversation in succeeded:
            self._monitor(batch, conversation, listener)
        return batch

    async def _create_one(
        self, contract: Contract, request: DispatchRequest
    ) -> PendingConversation | FailedCreation:
        try:
            created = await self._backend.create_conversation(
                customer_name=request.customer_name,
                headline=request.headline,
                contract_id=contract.id,
                correlation_key=request.correlation_key,
                ip_address=request.ip_address,
            )
        except Exception as e:
            logger.error(
                "Conversation creation failed for contract %s: %s", contract.id, e
            )
            return FailedCreation(contract_id=contract.id, error=e)

        return PendingConversation(
            id=created.id,
            contract_id=contract.id,
            customer_name=created.customer_name or request.customer_name,
            headline=created.headline or request.headline,
            contract=contract,
        )

    def _monitor(
        self,
        batch: DispatchBatch,
        conversation: PendingConversation,
        listener: IRaceListener,
    ) -> None:
        contract = conversation.contract
        if contract is not None and contract.miss_timeout_seconds > 0:
            timer = self._timer_factory(conversation.id, conversation.contract_id)
            batch.add_timer(timer)
            timer.arm(
                contract.miss_timeout_seconds,
                listener.on_missed,
                on_release=batch.forget_timer,
            )

        watch = self._watch_factory()
        batch.add_watch(conversation.id, watch)
        watch.open(
            conversation.id,
            lambda status, cid=conversation.id: listener.on_status(cid, status),
            lambda error, cid=conversation.id: listener.on_watch_error(cid, error),
        )
