"""External collaborators consumed by the dispatch core."""

from datetime import datetime
from typing import AsyncIterator, Awaitable, Callable, Protocol
from uuid import UUID

from ..models import Contract, Conversation, ConversationStatus

NowProvider = Callable[[], Awaitable[datetime]]
IpLookup = Callable[[], Awaitable[str | None]]


class IStatusFeed(Protocol):
    """Async iterator of statuses that can be closed early."""

    def __aiter__(self) -> AsyncIterator[ConversationStatus]:
        ...

    async def __anext__(self) -> ConversationStatus:
        ...

    async def aclose(self) -> None:
        ...


class IChatBackend(Protocol):
    """Chat service the widget talks to."""

    async def fetch_contracts(self, website_id: str) -> list[Contract]:
        """Return the contract pool configured for a website."""
        ...

    async def create_conversation(
        self,
        customer_name: str,
        headline: str,
        contract_id: str,
        correlation_key: UUID,
        ip_address: str | None,
    ) -> Conversation:
        """Create a conversation against one contract. Safe to call concurrently."""
        ...

    async def get_conversation_status(self, conversation_id: str) -> ConversationStatus:
        """Read the current status of a conversation."""
        ...

    async def watch_conversation_status(
        self, conversation_id: str
    ) -> IStatusFeed:
        """Open a live feed of status changes (at-least-once delivery).

        The subscription is registered by the time the call returns, so a
        status read afterwards cannot miss a change made in between.
        """
        ...

    async def mark_conversation_missed(self, conversation_id: str) -> None:
        """Mark a conversation as missed. Idempotent."""
        ...

    async def create_opening_message(
        self, conversation_id: str, text: str, author: str
    ) -> None:
        """Write the customer's first message into a started conversation."""
        ...
