"""In-memory chat backend for the simulation and tests."""

import asyncio
import uuid
from uuid import UUID

from ..errors import BackendError
from ..logging_config import get_logger
from ..models import Contract, Conversation, ConversationStatus

logger = get_logger(__name__)

_FEED_CLOSED = object()


class StatusFeed:
    """Live status feed, registered with the backend as soon as it is created."""

    def __init__(self, queues: list[asyncio.Queue]):
        self._queues = queues
        self._queue: asyncio.Queue = asyncio.Queue()
        self._queues.append(self._queue)
        self._closed = False

    def __aiter__(self) -> "StatusFeed":
        return self

    async def __anext__(self) -> ConversationStatus:
        if self._closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _FEED_CLOSED:
            await self.aclose()
            raise StopAsyncIteration
        if isinstance(item, Exception):
            await self.aclose()
            raise item
        return item

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queues.remove(self._queue)


class InMemoryChatBackend:
    """Keeps conversations in a dict and pushes status changes to live feeds."""

    def __init__(self, creation_latency: float = 0.0):
        self.creation_latency = creation_latency
        self.contracts: dict[str, list[Contract]] = {}
        self.conversations: dict[str, Conversation] = {}
        self.correlation_keys: dict[str, UUID] = {}
        self.ip_addresses: dict[str, str | None] = {}
        self.failing_contracts: set[str] = set()
        self.missed_writes: list[str] = []
        self.opening_messages: list[tuple[str, str, str]] = []
        self._feeds: dict[str, list[asyncio.Queue]] = {}

    def add_contracts(self, website_id: str, contracts: list[Contract]) -> None:
        self.contracts.setdefault(website_id, []).extend(contracts)

    async def fetch_contracts(self, website_id: str) -> list[Contract]:
        if website_id not in self.contracts:
            raise BackendError(f"Unknown website {website_id}")
        return list(self.contracts[website_id])

    async def create_conversation(
        self,
        customer_name: str,
        headline: str,
        contract_id: str,
        correlation_key: UUID,
        ip_address: str | None,
    ) -> Conversation:
        if self.creation_latency:
            await asyncio.sleep(self.creation_latency)
        if contract_id in self.failing_contracts:
            raise BackendError(f"Contract {contract_id} rejected the conversation")

        conversation = Conversation(
            id=str(uuid.uuid4()),
            contract_id=contract_id,
            customer_name=customer_name,
            headline=headline,
        )
        self.conversations[conversation.id] = conversation
        self.correlation_keys[conversation.id] = correlation_key
        self.ip_addresses[conversation.id] = ip_address
        return conversation

    async def get_conversation_status(self, conversation_id: str) -> ConversationStatus:
        return self._get(conversation_id).status

    async def watch_conversation_status(self, conversation_id: str) -> StatusFeed:
        self._get(conversation_id)
        return StatusFeed(self._feeds.setdefault(conversation_id, []))

    async def mark_conversation_missed(self, conversation_id: str) -> None:
        conversation = self._get(conversation_id)
        self.missed_writes.append(conversation_id)
        if conversation.status is ConversationStatus.CREATED:
            self.set_status(conversation_id, ConversationStatus.MISSED)

    async def create_opening_message(
        self, conversation_id: str, text: str, author: str
    ) -> None:
        self._get(conversation_id)
        self.opening_messages.append((conversation_id, text, author))

    # Simulation controls
    def set_status(self, conversation_id: str, status: ConversationStatus) -> None:
        """Change a conversation's status and push it to every live feed."""
        self._get(conversation_id).status = status
        for queue in self._feeds.get(conversation_id, []):
            queue.put_nowait(status)

    def interrupt_feeds(self, conversation_id: str, error: Exception) -> None:
        """Make every live feed of a conversation raise ``error``."""
        for queue in self._feeds.get(conversation_id, []):
            queue.put_nowait(error)

    def close_feeds(self, conversation_id: str) -> None:
        for queue in self._feeds.get(conversation_id, []):
            queue.put_nowait(_FEED_CLOSED)

    def live_feed_count(self, conversation_id: str) -> int:
        return len(self._feeds.get(conversation_id, []))

    def conversations_for_contract(self, contract_id: str) -> list[Conversation]:
        return [c for c in self.conversations.values() if c.contract_id == contract_id]

    def _get(self, conversation_id: str) -> Conversation:
        try:
            return self.conversations[conversation_id]
        except KeyError:
            raise BackendError(f"Unknown conversation {conversation_id}") from None
