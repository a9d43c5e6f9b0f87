"""Session states and terminal dispatch outcomes."""

from dataclasses import dataclass, field
from enum import Enum

from ..errors import ERROR_MESSAGES
from .conversations import FailedCreation, PendingConversation


class SessionState(str, Enum):
    """Observable state of a DispatchSession."""

    IDLE = "idle"
    DISPATCHING = "dispatching"
    WAITING = "waiting"
    CONNECTED = "connected"
    ALL_FAILED = "all_failed"
    ALL_MISSED = "all_missed"
    TIMED_OUT = "timed_out"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self not in (
            SessionState.IDLE,
            SessionState.DISPATCHING,
            SessionState.WAITING,
        )


class DispatchOutcome:
    """Terminal result of a session. Exactly one per session."""

    state: SessionState

    @property
    def message(self) -> str | None:
        """Advisory text for the view layer."""
        return None


@dataclass(frozen=True)
class Connected(DispatchOutcome):
    conversation: PendingConversation
    state: SessionState = field(default=SessionState.CONNECTED, init=False)


@dataclass(frozen=True)
class AllFailed(DispatchOutcome):
    failures: list[FailedCreation] = field(default_factory=list)
    state: SessionState = field(default=SessionState.ALL_FAILED, init=False)

    @property
    def message(self) -> str | None:
        return ERROR_MESSAGES["failed_to_start"]


@dataclass(frozen=True)
class AllMissed(DispatchOutcome):
    state: SessionState = field(default=SessionState.ALL_MISSED, init=False)

    @property
    def message(self) -> str | None:
        return ERROR_MESSAGES["all_missed"]


@dataclass(frozen=True)
class TimedOut(DispatchOutcome):
    state: SessionState = field(default=SessionState.TIMED_OUT, init=False)

    @property
    def message(self) -> str | None:
        return ERROR_MESSAGES["timeout"]


@dataclass(frozen=True)
class Aborted(DispatchOutcome):
    reason: str = "cancelled"
    state: SessionState = field(default=SessionState.ABORTED, init=False)

    @property
    def message(self) -> str | None:
        return self.reason


@dataclass(frozen=True)
class SessionStateChange:
    """One entry of the state sequence exposed to the view layer."""

    state: SessionState
    pending_count: int = 0
    outcome: DispatchOutcome | None = None
