"""Single-shot countdown timers with an explicit lifecycle."""

import asyncio
import inspect
from enum import Enum
from typing import Any, Callable

from ..logging_config import get_logger

logger = get_logger(__name__)


class TimerState(str, Enum):
    """Lifecycle of a countdown. FIRED and CLEARED are terminal."""

    IDLE = "idle"
    ARMED = "armed"
    FIRED = "fired"
    CLEARED = "cleared"


class Countdown:
    """A countdown owned by exactly one asyncio task.

    ``IDLE -> ARMED -> FIRED | CLEARED``. Firing runs the callback once and
    then the release step; clearing cancels the task. Both end in a released
    state and repeated ``clear()`` calls are no-ops.
    """

    def __init__(self, name: str):
        self.name = name
        self._state = TimerState.IDLE
        self._task: asyncio.Task | None = None
        self._on_fire: Callable[[], Any] | None = None
        self._on_release: Callable[["Countdown"], None] | None = None
        self._released = False

    @property
    def state(self) -> TimerState:
        return self._state

    @property
    def released(self) -> bool:
        """True once the timer fired (and its callback finished) or was cleared."""
        return self._released

    def arm(
        self,
        duration_seconds: float,
        on_fire: Callable[[], Any],
        on_release: Callable[["Countdown"], None] | None = None,
    ) -> None:
        """Start counting down. A timer can be armed only once."""
        if self._state is not TimerState.IDLE:
            raise RuntimeError(f"Timer {self.name} already {self._state.value}")

        self._on_fire = on_fire
        self._on_release = on_release
        self._state = TimerState.ARMED
        self._task = asyncio.create_task(
            self._countdown(max(duration_seconds, 0)), name=f"countdown:{self.name}"
        )

    def clear(self) -> bool:
        """Cancel the countdown if still armed. Returns True if it was armed."""
        if self._state is not TimerState.ARMED:
            return False

        self._state = TimerState.CLEARED
        if self._task is not None:
            self._task.cancel()
        self._release()
        logger.debug("Timer %s cleared", self.name)
        return True

    async def _countdown(self, duration_seconds: float) -> None:
        await asyncio.sleep(duration_seconds)
        if self._state is not TimerState.ARMED:
            return

        # Mark fired before the callback so a clear() issued from inside it is a no-op
        self._state = TimerState.FIRED
        logger.debug("Timer %s fired after %ss", self.name, duration_seconds)
        try:
            result = self._fire()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error("Error in timer %s callback: %s", self.name, e, exc_info=True)
        finally:
            self._release()

    def _fire(self) -> Any:
        return self._on_fire() if self._on_fire else None

    def _release(self) -> None:
        if self._released:
            return
        self._released = True
        self._task = None
        self._on_fire = None
        on_release, self._on_release = self._on_release, None
        if on_release is not None:
            on_release(self)


class MissTimer(Countdown):
    """Declares one pending conversation missed when its contract's timeout elapses."""

    def __init__(self, conversation_id: str, contract_id: str):
        super().__init__(f"miss:{conversation_id}")
        self.conversation_id = conversation_id
        self.contract_id = contract_id
        self._on_missed: Callable[[str, str], Any] | None = None

    def arm(
        self,
        duration_seconds: float,
        on_fire: Callable[[str, str], Any],
        on_release: Callable[["Countdown"], None] | None = None,
    ) -> None:
        """Arm with ``on_fire(conversation_id, contract_id)``."""
        self._on_missed = on_fire
        super().arm(duration_seconds, self._notify_missed, on_release)

    def _notify_missed(self) -> Any:
        logger.info(
            "Conversation %s missed for contract %s",
            self.conversation_id,
            self.contract_id,
        )
        on_missed, self._on_missed = self._on_missed, None
        return on_missed(self.conversation_id, self.contract_id) if on_missed else None
