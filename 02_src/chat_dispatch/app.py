"""Application bootstrap and lifecycle management."""

import os
from typing import Protocol

from .backend import HttpTimeSource, IChatBackend, InMemoryChatBackend, IpAddressLookup
from .config import DispatchConfig, resolve_db_path
from .dispatch import DispatchEngine, DispatchSession
from .event_bus import EventBus
from .logging_config import get_logger
from .selector import ContractSelector
from .storage import IStorage, Storage
from .tracker import Tracker

logger = get_logger(__name__)


class IApplication(Protocol):
    """Bootstrap and lifecycle."""

    async def start(self) -> None:
        """Initialize components in dependency order."""
        ...

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        ...

    async def reset(self) -> None:
        """Reset data between test runs."""
        ...

    def create_session(self) -> DispatchSession:
        """Create a DispatchSession wired to the running components."""
        ...


class Application:
    """Main application bootstrap."""

    def __init__(
        self,
        db_path: str | None = None,
        backend: IChatBackend | None = None,
        config: DispatchConfig | None = None,
    ):
        env_db_path = os.getenv("DATABASE_URL") if db_path is None else db_path
        self._db_path = resolve_db_path(env_db_path)
        self._config = config or DispatchConfig.from_env()
        self._backend_override = backend

        # Components (will be initialized in start())
        self._storage: IStorage | None = None
        self._event_bus: EventBus | None = None
        self._tracker: Tracker | None = None
        self._backend: IChatBackend | None = None
        self._selector: ContractSelector | None = None
        self._ip_lookup: IpAddressLookup | None = None
        self._sessions: list[DispatchSession] = []

    async def start(self) -> None:
        """Initialize components in dependency order."""
        logger.info("Starting application")

        # 1. Storage (no dependencies)
        self._storage = Storage(self._db_path)
        await self._storage.init()
        logger.info("Storage initialized")

        # 2. EventBus (depends on Storage for persistence)
        self._event_bus = EventBus(self._storage)

        # 3. Tracker (depends on EventBus + Storage)
        self._tracker = Tracker(self._event_bus, self._storage)
        await self._tracker.start()

        # 4. Backend and external lookups
        self._backend = self._backend_override or InMemoryChatBackend()
        time_source = (
            HttpTimeSource(self._config.time_api_url)
            if self._config.time_api_url
            else None
        )
        self._selector = ContractSelector(time_source)
        if self._config.ip_lookup_url:
            self._ip_lookup = IpAddressLookup(
                self._config.ip_lookup_url,
                timeout=self._config.ip_lookup_timeout_seconds,
            )
        logger.info("All components initialized successfully")

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        for session in self._sessions:
            await session.close()
        self._sessions.clear()
        if self._tracker:
            await self._tracker.stop()
        if self._storage:
            await self._storage.close()
            logger.info("Storage closed")

    async def reset(self) -> None:
        """Reset data between test runs."""
        for session in self._sessions:
            await session.close()
        self._sessions.clear()

        if self._storage:
            await self._storage.clear()
            logger.info("Reset complete")

    def create_session(self) -> DispatchSession:
        """Create a DispatchSession wired to the running components."""
        if not self._backend or not self._event_bus:
            raise RuntimeError("Application not started")

        session = DispatchSession(
            backend=self._backend,
            config=self._config,
            selector=self._selector,
            engine=DispatchEngine(
                self._backend,
                reconnect_delay=self._config.watch_reconnect_delay_seconds,
            ),
            event_bus=self._event_bus,
            tracker=self._tracker,
            ip_lookup=self._ip_lookup,
        )
        self._sessions.append(session)
        return session

    @property
    def storage(self) -> IStorage:
        """Get storage instance."""
        if not self._storage:
            raise RuntimeError("Application not started")
        return self._storage

    @property
    def backend(self) -> IChatBackend:
        """Get backend instance."""
        if not self._backend:
            raise RuntimeError("Application not started")
        return self._backend

    @property
    def config(self) -> DispatchConfig:
        return self._config
