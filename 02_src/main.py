"""Main entry point for Chat Dispatch."""

import asyncio
from pathlib import Path

from dotenv import load_dotenv

from chat_dispatch.app import Application
from chat_dispatch.logging_config import get_logger, setup_logging
from sim import Sim

logger = get_logger(__name__)


async def run() -> None:
    """Run one simulated dispatch session."""
    app = Application()
    await app.start()
    sim = Sim(app)
    try:
        await sim.start()
        outcome = await sim.wait()
        if outcome is not None:
            logger.info("Outcome: %s", outcome.state.value)
        if sim.session_id:
            for change in await app.storage.get_session_history(sim.session_id):
                logger.info(
                    "%s %s (pending %s)",
                    change.timestamp.isoformat(),
                    change.payload["state"],
                    change.payload["pending_count"],
                )
    finally:
        await sim.stop()
        await app.stop()


def main():
    """Run the application."""
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env")
    setup_logging()
    asyncio.run(run())


if __name__ == "__main__":
    main()
