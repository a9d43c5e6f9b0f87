"""Tests for InMemoryChatBackend."""

import asyncio
import uuid

import pytest

from chat_dispatch.errors import BackendError
from chat_dispatch.models import ConversationStatus


async def create(backend, contract_id="c1"):
    return await backend.create_conversation(
        customer_name="Alice",
        headline="Help",
        contract_id=contract_id,
        correlation_key=uuid.uuid4(),
        ip_address="203.0.113.7",
    )


class TestMemoryBackendContracts:
    """Tests for contract pools."""

    @pytest.mark.asyncio
    async def test_fetch_contracts(self, backend, make_contract):
        """Test that contracts are returned per website."""
        backend.add_contracts("site", [make_contract("a"), make_contract("b")])

        contracts = await backend.fetch_contracts("site")

        assert [c.id for c in contracts] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_unknown_website_raises(self, backend):
        """Test that an unknown website is a BackendError."""
        with pytest.raises(BackendError):
            await backend.fetch_contracts("nope")


class TestMemoryBackendConversations:
    """Tests for conversation lifecycle."""

    @pytest.mark.asyncio
    async def test_create_conversation(self, backend):
        """Test that a created conversation is stored as CREATED."""
        conversation = await create(backend)

        assert conversation.status is ConversationStatus.CREATED
        assert backend.conversations[conversation.id] is conversation
        assert backend.ip_addresses[conversation.id] == "203.0.113.7"
        assert await backend.get_conversation_status(conversation.id) is (
            ConversationStatus.CREATED
        )

    @pytest.mark.asyncio
    async def test_failing_contract_raises(self, backend):
        """Test that failing contracts reject creation."""
        backend.failing_contracts.add("c1")

        with pytest.raises(BackendError):
            await create(backend, "c1")
        assert backend.conversations == {}

    @pytest.mark.asyncio
    async def test_mark_missed_only_when_created(self, backend):
        """Test that marking missed never overrides a started conversation."""
        waiting = await create(backend, "c1")
        started = await create(backend, "c2")
        backend.set_status(started.id, ConversationStatus.STARTED)

        await backend.mark_conversation_missed(waiting.id)
        await backend.mark_conversation_missed(started.id)

        assert waiting.status is ConversationStatus.MISSED
        assert started.status is ConversationStatus.STARTED
        assert backend.missed_writes == [waiting.id, started.id]

    @pytest.mark.asyncio
    async def test_opening_message_recorded(self, backend):
        """Test that opening messages are recorded in order."""
        conversation = await create(backend)

        await backend.create_opening_message(conversation.id, "Help", "Alice")

        assert backend.opening_messages == [(conversation.id, "Help", "Alice")]

    @pytest.mark.asyncio
    async def test_unknown_conversation_raises(self, backend):
        """Test that operations on unknown ids raise BackendError."""
        with pytest.raises(BackendError):
            await backend.get_conversation_status("missing")
        with pytest.raises(BackendError):
            await backend.create_opening_message("missing", "x", "y")


class TestMemoryBackendFeeds:
    """Tests for live status feeds."""

    @pytest.mark.asyncio
    async def test_feed_yields_changes(self, backend, wait_for):
        """Test that set_status pushes to live feeds."""
        conversation = await create(backend)
        received = []

        async def consume():
            feed = await backend.watch_conversation_status(conversation.id)
            async for status in feed:
                received.append(status)

        task = asyncio.create_task(consume())
        await wait_for(lambda: backend.live_feed_count(conversation.id) == 1)
        backend.set_status(conversation.id, ConversationStatus.STARTED)
        backend.close_feeds(conversation.id)
        await asyncio.wait_for(task, timeout=1)

        assert received == [ConversationStatus.STARTED]
        assert backend.live_feed_count(conversation.id) == 0

    @pytest.mark.asyncio
    async def test_interrupt_raises_in_feed(self, backend, wait_for):
        """Test that interrupt_feeds raises inside the consumer."""
        conversation = await create(backend)

        async def consume():
            feed = await backend.watch_conversation_status(conversation.id)
            async for _ in feed:
                pass

        task = asyncio.create_task(consume())
        await wait_for(lambda: backend.live_feed_count(conversation.id) == 1)
        backend.interrupt_feeds(conversation.id, ConnectionError("reset"))

        with pytest.raises(ConnectionError):
            await asyncio.wait_for(task, timeout=1)
        assert backend.live_feed_count(conversation.id) == 0

    @pytest.mark.asyncio
    async def test_feed_is_live_when_returned(self, backend):
        """Test that a change made before iterating is already queued."""
        conversation = await create(backend)

        feed = await backend.watch_conversation_status(conversation.id)
        assert backend.live_feed_count(conversation.id) == 1
        backend.set_status(conversation.id, ConversationStatus.STARTED)

        assert await anext(feed) is ConversationStatus.STARTED
        await feed.aclose()
        await feed.aclose()
        assert backend.live_feed_count(conversation.id) == 0
