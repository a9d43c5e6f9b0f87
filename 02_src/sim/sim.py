"""SIM implementation - simulated agents racing for one visitor."""

import asyncio
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol

from chat_dispatch.app import Application
from chat_dispatch.backend import InMemoryChatBackend
from chat_dispatch.logging_config import get_logger
from chat_dispatch.models import (
    Contract,
    ContractStatus,
    ConversationStatus,
    CustomerForm,
    DispatchOutcome,
    Session,
)
from chat_dispatch.selector import session_for_hour

logger = get_logger(__name__)

WEBSITE_ID = "sim-website"


class ISim(Protocol):
    """Generate test traffic against the dispatch core."""

    async def start(self) -> None:
        """Start the scenario."""
        ...

    async def stop(self) -> None:
        """Stop the scenario."""
        ...


@dataclass
class SimulatedAgent:
    """An agent behind one contract; answers after ``response_delay`` or never."""

    contract: Contract
    response_delay: float | None


def build_agents(session: Session, seed: int | None = None) -> list[SimulatedAgent]:
    """Three agents in the given session with random response behaviour."""
    rng = random.Random(seed)
    agents = []
    for i, color in enumerate(["#2185d0", "#21ba45", "#f2711c"], start=1):
        contract = Contract(
            id=f"contract_{i:03d}",
            session=session,
            status=ContractStatus.ACTIVE,
            miss_timeout_seconds=rng.uniform(2, 4),
            color=color,
        )
        # Roughly one agent in three never picks up
        delay = None if rng.random() < 0.35 else rng.uniform(0.5, 5)
        agents.append(SimulatedAgent(contract=contract, response_delay=delay))
    return agents


class Sim:
    """SIM with a randomized single-visitor scenario."""

    def __init__(self, app: Application, seed: int | None = None):
        self._app = app
        self._seed = seed
        self._running = False
        self._task: asyncio.Task | None = None
        self._agent_tasks: list[asyncio.Task] = []
        self.outcome: DispatchOutcome | None = None
        self.session_id: str | None = None

    async def start(self) -> None:
        """Start the scenario in the background."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run_scenario())

    async def wait(self) -> DispatchOutcome | None:
        """Wait for the scenario to finish."""
        if self._task:
            await self._task
        return self.outcome

    async def stop(self) -> None:
        """Stop scenario."""
        self._running = False

        for task in [self._task, *self._agent_tasks]:
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._agent_tasks.clear()

    async def _run_scenario(self) -> None:
        backend = self._app.backend
        if not isinstance(backend, InMemoryChatBackend):
            raise RuntimeError("SIM requires the in-memory backend")

        current = session_for_hour(datetime.now(timezone.utc).hour)
        agents = build_agents(current, self._seed)
        backend.add_contracts(WEBSITE_ID, [a.contract for a in agents])

        for agent in agents:
            self._agent_tasks.append(
                asyncio.create_task(self._run_agent(backend, agent))
            )

        session = self._app.create_session()
        self.session_id = session.id
        try:
            self.outcome = await session.submit_for_website(
                WEBSITE_ID,
                CustomerForm(customer_name="Alice", headline="I need help with my order"),
            )
            logger.info(
                "SIM: session finished with %s (%s)",
                self.outcome.state.value,
                self.outcome.message or "no message",
            )
        except Exception as e:
            logger.error("SIM scenario error: %s", e)
        finally:
            await session.close()
            self._running = False

    async def _run_agent(
        self, backend: InMemoryChatBackend, agent: SimulatedAgent
    ) -> None:
        """Wait for a conversation on this agent's contract and start it."""
        if agent.response_delay is None:
            return

        while self._running:
            conversations = backend.conversations_for_contract(agent.contract.id)
            if conversations:
                break
            await asyncio.sleep(0.05)
        else:
            return

        await asyncio.sleep(agent.response_delay)
        conversation = conversations[0]
        if conversation.status is ConversationStatus.CREATED:
            logger.info("SIM: agent %s picks up %s", agent.contract.id, conversation.id)
            backend.set_status(conversation.id, ConversationStatus.STARTED)
