"""Tests for RaceResolver."""

import asyncio
import uuid
from unittest.mock import AsyncMock, Mock

import pytest

from chat_dispatch.dispatch import DispatchBatch, RaceResolver, ResolverState
from chat_dispatch.errors import ERROR_MESSAGES, BackendError
from chat_dispatch.models import (
    Aborted,
    AllFailed,
    AllMissed,
    Connected,
    ConversationStatus,
    DispatchRequest,
    FailedCreation,
    PendingConversation,
    TimedOut,
)


@pytest.fixture
def chat_backend():
    """Backend double with async write methods."""
    backend = Mock()
    backend.mark_conversation_missed = AsyncMock()
    backend.create_opening_message = AsyncMock()
    return backend


def make_batch(*conversation_ids, failed=()):
    request = DispatchRequest(
        correlation_key=uuid.uuid4(), customer_name="Alice", headline="Help"
    )
    succeeded = [
        PendingConversation(
            id=cid, contract_id=f"contract-{cid}", customer_name="Alice", headline="Help"
        )
        for cid in conversation_ids
    ]
    failures = [FailedCreation(contract_id=c, error=BackendError("down")) for c in failed]
    return DispatchBatch(request, succeeded, failures)


class TestResolverBegin:
    """Tests for RaceResolver.begin()."""

    @pytest.mark.asyncio
    async def test_begin_enters_waiting(self, chat_backend, config):
        """Test that a batch with conversations starts the wait."""
        resolver = RaceResolver(chat_backend, config)
        resolver.begin(make_batch("c1", "c2"))

        assert resolver.state is ResolverState.WAITING
        assert resolver.pending_count == 2
        assert resolver.is_resolved is False
        resolver.abort()

    @pytest.mark.asyncio
    async def test_begin_without_successes_fails(self, chat_backend, config):
        """Test that an empty batch resolves AllFailed at once."""
        resolver = RaceResolver(chat_backend, config)
        resolver.begin(make_batch(failed=["x", "y"]))

        outcome = await resolver.wait()
        assert isinstance(outcome, AllFailed)
        assert [f.contract_id for f in outcome.failures] == ["x", "y"]
        assert resolver.state is ResolverState.ALL_FAILED
        assert resolver.waiting_timer.state.value == "idle"

    @pytest.mark.asyncio
    async def test_begin_twice_raises(self, chat_backend, config):
        """Test that a resolver owns only one batch."""
        resolver = RaceResolver(chat_backend, config)
        resolver.begin(make_batch("c1"))

        with pytest.raises(RuntimeError):
            resolver.begin(make_batch("c2"))
        resolver.abort()

    @pytest.mark.asyncio
    async def test_begin_after_abort_releases_batch(self, chat_backend, config):
        """Test that a batch arriving after abort is released immediately."""
        resolver = RaceResolver(chat_backend, config)
        resolver.abort("gone")

        batch = make_batch("c1")
        watch = Mock()
        batch.add_watch("c1", watch)
        resolver.begin(batch)

        watch.unsubscribe.assert_called_once()
        assert isinstance(resolver.outcome, Aborted)
        assert resolver.pending == []


class TestResolverRace:
    """Tests for status handling during the race."""

    @pytest.mark.asyncio
    async def test_started_wins(self, chat_backend, config):
        """Test that the first STARTED resolves Connected."""
        resolver = RaceResolver(chat_backend, config)
        resolver.begin(make_batch("c1", "c2", "c3"))

        resolver.on_status("c2", ConversationStatus.STARTED)

        outcome = await resolver.wait()
        assert isinstance(outcome, Connected)
        assert outcome.conversation.id == "c2"
        assert resolver.state is ResolverState.CONNECTED
        superseded = {c.id for c in resolver.pending if c.superseded}
        assert superseded == {"c1", "c3"}
        await resolver.drain()

    @pytest.mark.asyncio
    async def test_second_started_ignored(self, chat_backend, config):
        """Test that only the first STARTED is honoured."""
        resolver = RaceResolver(chat_backend, config)
        resolver.begin(make_batch("c1", "c2"))

        resolver.on_status("c1", ConversationStatus.STARTED)
        resolver.on_status("c2", ConversationStatus.STARTED)
        await resolver.drain()

        assert resolver.outcome.conversation.id == "c1"
        chat_backend.create_opening_message.assert_awaited_once_with(
            "c1", "Help", "Alice"
        )

    @pytest.mark.asyncio
    async def test_duplicate_started_single_opening_message(self, chat_backend, config):
        """Test that redelivered STARTED never creates a second opening message."""
        resolver = RaceResolver(chat_backend, config)
        resolver.begin(make_batch("c1", "c2"))

        for _ in range(3):
            resolver.on_status("c1", ConversationStatus.STARTED)
        await resolver.drain()
        resolver.on_status("c1", ConversationStatus.STARTED)
        await resolver.drain()

        assert chat_backend.create_opening_message.await_count == 1

    @pytest.mark.asyncio
    async def test_unknown_conversation_ignored(self, chat_backend, config):
        """Test that events for conversations outside the batch are dropped."""
        resolver = RaceResolver(chat_backend, config)
        resolver.begin(make_batch("c1"))

        resolver.on_status("other", ConversationStatus.STARTED)
        resolver.on_missed("other", "contract-other")

        assert resolver.state is ResolverState.WAITING
        resolver.abort()

    @pytest.mark.asyncio
    async def test_created_status_is_noop(self, chat_backend, config):
        """Test that a replayed CREATED status changes nothing."""
        resolver = RaceResolver(chat_backend, config)
        resolver.begin(make_batch("c1"))

        resolver.on_status("c1", ConversationStatus.CREATED)

        assert resolver.pending_count == 1
        assert resolver.state is ResolverState.WAITING
        resolver.abort()

    @pytest.mark.asyncio
    async def test_started_after_local_miss_still_wins(self, chat_backend, config):
        """Test that a late STARTED for a missed conversation connects."""
        resolver = RaceResolver(chat_backend, config)
        resolver.begin(make_batch("c1", "c2"))

        resolver.on_missed("c1", "contract-c1")
        resolver.on_status("c1", ConversationStatus.STARTED)

        outcome = await resolver.wait()
        assert isinstance(outcome, Connected)
        assert outcome.conversation.missed is True
        await resolver.drain()


class TestResolverMisses:
    """Tests for miss and failure handling."""

    @pytest.mark.asyncio
    async def test_timer_miss_writes_to_backend(self, chat_backend, config):
        """Test that a local miss is persisted in the background."""
        resolver = RaceResolver(chat_backend, config)
        resolver.begin(make_batch("c1", "c2"))

        resolver.on_missed("c1", "contract-c1")
        await resolver.drain()

        chat_backend.mark_conversation_missed.assert_awaited_once_with("c1")
        assert resolver.pending_count == 1
        assert resolver.state is ResolverState.WAITING
        resolver.abort()

    @pytest.mark.asyncio
    async def test_repeated_miss_is_noop(self, chat_backend, config):
        """Test that a conversation is missed at most once."""
        resolver = RaceResolver(chat_backend, config)
        resolver.begin(make_batch("c1", "c2"))

        resolver.on_missed("c1", "contract-c1")
        resolver.on_missed("c1", "contract-c1")
        resolver.on_status("c1", ConversationStatus.MISSED)
        await resolver.drain()

        assert chat_backend.mark_conversation_missed.await_count == 1
        resolver.abort()

    @pytest.mark.asyncio
    async def test_all_missed(self, chat_backend, config):
        """Test that the race ends when every conversation is missed."""
        resolver = RaceResolver(chat_backend, config)
        resolver.begin(make_batch("c1", "c2"))

        resolver.on_missed("c1", "contract-c1")
        resolver.on_status("c2", ConversationStatus.MISSED)

        outcome = await resolver.wait()
        assert isinstance(outcome, AllMissed)
        await resolver.drain()
        chat_backend.mark_conversation_missed.assert_awaited_once_with("c1")

    @pytest.mark.asyncio
    async def test_failed_and_missed_exhaust(self, chat_backend, config):
        """Test that FAILED conversations count towards exhaustion."""
        resolver = RaceResolver(chat_backend, config)
        resolver.begin(make_batch("c1", "c2"))

        resolver.on_status("c1", ConversationStatus.FAILED)
        assert resolver.state is ResolverState.WAITING
        resolver.on_status("c2", ConversationStatus.MISSED)

        assert isinstance(await resolver.wait(), AllMissed)

    @pytest.mark.asyncio
    async def test_missed_write_failure_is_logged(self, chat_backend, config):
        """Test that a failing miss write does not disturb the race."""
        chat_backend.mark_conversation_missed.side_effect = BackendError("down")
        resolver = RaceResolver(chat_backend, config)
        resolver.begin(make_batch("c1", "c2"))

        resolver.on_missed("c1", "contract-c1")
        await resolver.drain()

        assert resolver.state is ResolverState.WAITING
        resolver.abort()


class TestResolverTerminal:
    """Tests for timeouts, aborts and watch errors."""

    @pytest.mark.asyncio
    async def test_waiting_timeout(self, chat_backend, config):
        """Test that the waiting timeout resolves TimedOut."""
        config.waiting_timeout_seconds = 0.05
        resolver = RaceResolver(chat_backend, config)
        resolver.begin(make_batch("c1"))

        outcome = await asyncio.wait_for(resolver.wait(), timeout=1)
        assert isinstance(outcome, TimedOut)
        assert resolver.state is ResolverState.TIMED_OUT

    @pytest.mark.asyncio
    async def test_win_clears_waiting_timer(self, chat_backend, config):
        """Test that the waiting timer is cleared on resolution."""
        resolver = RaceResolver(chat_backend, config)
        resolver.begin(make_batch("c1"))

        resolver.on_status("c1", ConversationStatus.STARTED)

        assert resolver.waiting_timer.state.value == "cleared"
        await resolver.drain()

    @pytest.mark.asyncio
    async def test_abort(self, chat_backend, config):
        """Test that abort resolves with the given reason."""
        resolver = RaceResolver(chat_backend, config)
        resolver.begin(make_batch("c1"))

        resolver.abort("visitor closed the widget")

        outcome = await resolver.wait()
        assert isinstance(outcome, Aborted)
        assert outcome.message == "visitor closed the widget"

    @pytest.mark.asyncio
    async def test_abort_after_resolution_is_noop(self, chat_backend, config):
        """Test that abort never replaces an outcome."""
        resolver = RaceResolver(chat_backend, config)
        resolver.begin(make_batch("c1"))
        resolver.on_status("c1", ConversationStatus.STARTED)

        resolver.abort()

        assert isinstance(resolver.outcome, Connected)
        await resolver.drain()

    @pytest.mark.asyncio
    async def test_watch_error_aborts(self, chat_backend, config):
        """Test that a fatal watch error aborts with the auth message."""
        resolver = RaceResolver(chat_backend, config)
        resolver.begin(make_batch("c1", "c2"))

        resolver.on_watch_error("c1", RuntimeError("401"))

        outcome = await resolver.wait()
        assert isinstance(outcome, Aborted)
        assert outcome.message == ERROR_MESSAGES["auth"]

    @pytest.mark.asyncio
    async def test_resolution_releases_batch(self, chat_backend, config):
        """Test that every watch in the batch is unsubscribed once."""
        batch = make_batch("c1", "c2")
        watches = {cid: Mock() for cid in ("c1", "c2")}
        for cid, watch in watches.items():
            batch.add_watch(cid, watch)
        resolver = RaceResolver(chat_backend, config)
        resolver.begin(batch)

        resolver.on_status("c1", ConversationStatus.STARTED)
        resolver.abort()

        for watch in watches.values():
            watch.unsubscribe.assert_called_once()
        assert batch.active_watch_count == 0
        await resolver.drain()


class TestResolverOpeningMessage:
    """Tests for opening message retries."""

    @pytest.mark.asyncio
    async def test_retry_then_success(self, chat_backend, config):
        """Test that a failed opening message is retried."""
        chat_backend.create_opening_message.side_effect = [BackendError("busy"), None]
        resolver = RaceResolver(chat_backend, config)
        resolver.begin(make_batch("c1"))

        resolver.on_status("c1", ConversationStatus.STARTED)
        await resolver.drain()

        assert chat_backend.create_opening_message.await_count == 2

    @pytest.mark.asyncio
    async def test_exhausted_retries_roll_back_guard(self, chat_backend, config):
        """Test that a later STARTED retries after every attempt failed."""
        chat_backend.create_opening_message.side_effect = BackendError("down")
        resolver = RaceResolver(chat_backend, config)
        resolver.begin(make_batch("c1"))

        resolver.on_status("c1", ConversationStatus.STARTED)
        await resolver.drain()
        assert chat_backend.create_opening_message.await_count == config.message_retry_limit

        chat_backend.create_opening_message.side_effect = None
        resolver.on_status("c1", ConversationStatus.STARTED)
        await resolver.drain()

        assert (
            chat_backend.create_opening_message.await_count
            == config.message_retry_limit + 1
        )
        assert isinstance(resolver.outcome, Connected)

    @pytest.mark.asyncio
    async def test_tracker_failure_does_not_break_race(self, chat_backend, config):
        """Test that tracker errors are swallowed."""
        tracker = Mock()
        tracker.track = AsyncMock(side_effect=RuntimeError("db locked"))
        resolver = RaceResolver(chat_backend, config, tracker)
        resolver.begin(make_batch("c1"))

        resolver.on_status("c1", ConversationStatus.STARTED)
        await resolver.drain()

        assert isinstance(resolver.outcome, Connected)
        chat_backend.create_opening_message.assert_awaited_once()
