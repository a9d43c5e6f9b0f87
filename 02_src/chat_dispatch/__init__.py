"""Multi-contract chat dispatch and race resolution."""

from .app import Application, IApplication
from .backend import (
    HttpTimeSource,
    IChatBackend,
    InMemoryChatBackend,
    IpAddressLookup,
)
from .config import DispatchConfig
from .dispatch import (
    DispatchBatch,
    DispatchEngine,
    DispatchSession,
    RaceResolver,
    ResolverState,
)
from .errors import (
    ERROR_MESSAGES,
    BackendError,
    ContractFetchError,
    DispatchError,
    FeedAuthError,
    NoAgentsAvailableError,
)
from .event_bus import EventBus, IEventBus
from .models import (
    Aborted,
    AllFailed,
    AllMissed,
    BusMessage,
    Connected,
    Contract,
    ContractStatus,
    Conversation,
    ConversationStatus,
    CustomerForm,
    DispatchOutcome,
    DispatchRequest,
    FailedCreation,
    PendingConversation,
    Session,
    SessionState,
    SessionStateChange,
    TimedOut,
    Topic,
    TraceEvent,
)
from .selector import ContractSelector, select_contracts, session_for_hour
from .storage import IStorage, Storage
from .timers import Countdown, MissTimer, TimerState
from .tracker import ITracker, Tracker
from .watch import IStatusWatch, StatusWatch

__all__ = [
    # Application
    "Application",
    "IApplication",
    "DispatchConfig",
    # Models
    "Contract",
    "ContractStatus",
    "Session",
    "Conversation",
    "ConversationStatus",
    "CustomerForm",
    "DispatchRequest",
    "PendingConversation",
    "FailedCreation",
    "DispatchOutcome",
    "Connected",
    "AllFailed",
    "AllMissed",
    "TimedOut",
    "Aborted",
    "SessionState",
    "SessionStateChange",
    "BusMessage",
    "Topic",
    "TraceEvent",
    # Errors
    "ERROR_MESSAGES",
    "DispatchError",
    "ContractFetchError",
    "NoAgentsAvailableError",
    "BackendError",
    "FeedAuthError",
    # Components
    "IChatBackend",
    "InMemoryChatBackend",
    "HttpTimeSource",
    "IpAddressLookup",
    "ContractSelector",
    "select_contracts",
    "session_for_hour",
    "Countdown",
    "MissTimer",
    "TimerState",
    "IStatusWatch",
    "StatusWatch",
    "DispatchBatch",
    "DispatchEngine",
    "RaceResolver",
    "ResolverState",
    "DispatchSession",
    "IEventBus",
    "EventBus",
    "ITracker",
    "Tracker",
    "IStorage",
    "Storage",
]
