"""Core data models for Chat Dispatch."""

from .bus import BusMessage, Topic
from .contracts import Contract, ContractStatus, Session
from .conversations import (
    Conversation,
    ConversationStatus,
    CustomerForm,
    DispatchRequest,
    FailedCreation,
    PendingConversation,
)
from .outcomes import (
    Aborted,
    AllFailed,
    AllMissed,
    Connected,
    DispatchOutcome,
    SessionState,
    SessionStateChange,
    TimedOut,
)
from .tracing import TraceEvent

__all__ = [
    # Contracts
    "Contract",
    "ContractStatus",
    "Session",
    # Conversations
    "Conversation",
    "ConversationStatus",
    "CustomerForm",
    "DispatchRequest",
    "FailedCreation",
    "PendingConversation",
    # Outcomes
    "DispatchOutcome",
    "Connected",
    "AllFailed",
    "AllMissed",
    "TimedOut",
    "Aborted",
    "SessionState",
    "SessionStateChange",
    # EventBus
    "BusMessage",
    "Topic",
    # Tracing
    "TraceEvent",
]
