"""DispatchSession: one customer submission from form to outcome."""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Callable

from ..backend import IChatBackend, IpLookup
from ..config import DispatchConfig
from ..errors import ContractFetchError, NoAgentsAvailableError
from ..event_bus import IEventBus, TopicHandler
from ..logging_config import get_logger
from ..models import (
    BusMessage,
    Contract,
    CustomerForm,
    DispatchOutcome,
    DispatchRequest,
    SessionState,
    SessionStateChange,
    Topic,
)
from ..selector import ContractSelector
from ..tracker import ITracker
from .engine import DispatchEngine
from .resolver import RaceResolver


class DispatchSession:
    """Wires selector, engine and resolver together for a single submission.

    The view layer observes ``state``/``history`` or calls ``subscribe()``
    to get this session's ``Topic.SESSION_STATE`` messages. The sequence is
    DISPATCHING -> WAITING(pending_count) -> terminal outcome.
    """

    def __init__(
        self,
        backend: IChatBackend,
        config: DispatchConfig | None = None,
        selector: ContractSelector | None = None,
        engine: DispatchEngine | None = None,
        event_bus: IEventBus | None = None,
        tracker: ITracker | None = None,
        ip_lookup: IpLookup | None = None,
    ):
        self.id = str(uuid.uuid4())
        self._log = get_logger(__name__, session_id=self.id)
        self._backend = backend
        self._config = config or DispatchConfig()
        self._selector = selector or ContractSelector()
        self._engine = engine or DispatchEngine(
            backend, reconnect_delay=self._config.watch_reconnect_delay_seconds
        )
        self._event_bus = event_bus
        self._tracker = tracker
        self._ip_lookup = ip_lookup

        self._resolver: RaceResolver | None = None
        self._submitted = False
        self._cancel_reason: str | None = None
        self._state = SessionState.IDLE
        self._history: list[SessionStateChange] = []

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def history(self) -> list[SessionStateChange]:
        return list(self._history)

    @property
    def outcome(self) -> DispatchOutcome | None:
        return self._resolver.outcome if self._resolver else None

    @property
    def resolver(self) -> RaceResolver | None:
        return self._resolver

    def subscribe(self, handler: TopicHandler) -> Callable[[], None]:
        """Receive this session's state changes from the EventBus."""
        if self._event_bus is None:
            raise RuntimeError("DispatchSession has no event bus")
        return self._event_bus.subscribe(
            Topic.SESSION_STATE, handler, session_id=self.id
        )

    async def submit_for_website(
        self, website_id: str, form: CustomerForm
    ) -> DispatchOutcome:
        """Load the website's contract pool, then submit."""
        try:
            contracts = await self._backend.fetch_contracts(website_id)
        except Exception as e:
            self._log.error("Contract fetch failed for website %s: %s", website_id, e)
            raise ContractFetchError(website_id, e) from e
        return await self.submit(contracts, form)

    async def submit(
        self, contracts: list[Contract], form: CustomerForm
    ) -> DispatchOutcome:
        """Dispatch the form to every eligible contract and wait for the outcome.

        Raises:
            NoAgentsAvailableError: no contract is eligible right now.
        """
        if self._submitted:
            raise RuntimeError("DispatchSession already submitted")
        self._submitted = True

        resolver = RaceResolver(self._backend, self._config, self._tracker)
        self._resolver = resolver
        if self._cancel_reason is not None:
            resolver.abort(self._cancel_reason)

        eligible = await self._selector.select(contracts)
        if not eligible:
            self._log.warning("No eligible contracts among %s", len(contracts))
            raise NoAgentsAvailableError()

        try:
            if not resolver.is_resolved:
                request = DispatchRequest(
                    correlation_key=uuid.uuid4(),
                    customer_name=form.customer_name,
                    headline=form.headline,
                    ip_address=form.ip_address or await self._lookup_ip(),
                )
                if not resolver.is_resolved:
                    await self._emit(SessionState.DISPATCHING)

            # cancel() may land during the IP lookup or a bus handler
            if not resolver.is_resolved:
                batch = await self._engine.dispatch(eligible, request, resolver)
                resolver.begin(batch)

                if not resolver.is_resolved:
                    await self._emit(SessionState.WAITING, resolver.pending_count)

            outcome = await resolver.wait()
        except asyncio.CancelledError:
            self._log.info("Submit task cancelled, aborting dispatch")
            resolver.abort("cancelled")
            if resolver.outcome is not None and not self._state.is_terminal:
                self._record(resolver.outcome.state, outcome=resolver.outcome)
            raise

        await self._emit(outcome.state, outcome=outcome)
        self._log.info("Dispatch session finished: %s", outcome.state.value)
        return outcome

    def cancel(self, reason: str = "cancelled") -> None:
        """Abort the session. Safe to call at any time, a no-op once resolved."""
        if self._resolver is None:
            if self._cancel_reason is None:
                self._cancel_reason = reason
            return
        self._resolver.abort(reason)

    async def close(self) -> None:
        """Cancel if still running and wait for background writes."""
        self.cancel()
        if self._resolver is not None:
            await self._resolver.drain()

    async def __aenter__(self) -> "DispatchSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _lookup_ip(self) -> str | None:
        if self._ip_lookup is None:
            return None
        try:
            return await self._ip_lookup()
        except Exception as e:
            self._log.error("IP lookup failed: %s", e)
            return None

    def _record(
        self,
        state: SessionState,
        pending_count: int = 0,
        outcome: DispatchOutcome | None = None,
    ) -> None:
        self._state = state
        self._history.append(
            SessionStateChange(
                state=state, pending_count=pending_count, outcome=outcome
            )
        )

    async def _emit(
        self,
        state: SessionState,
        pending_count: int = 0,
        outcome: DispatchOutcome | None = None,
    ) -> None:
        self._record(state, pending_count, outcome)

        if self._event_bus is None:
            return

        payload = {
            "session_id": self.id,
            "state": state.value,
            "pending_count": pending_count,
        }
        if outcome is not None:
            payload["message"] = outcome.message
            conversation = getattr(outcome, "conversation", None)
            if conversation is not None:
                payload["conversation_id"] = conversation.id
                payload["contract_id"] = conversation.contract_id

        await self._event_bus.publish(
            BusMessage(
                id=str(uuid.uuid4()),
                topic=Topic.SESSION_STATE,
                payload=payload,
                source="dispatch_session",
                timestamp=datetime.now(timezone.utc),
            )
        )
