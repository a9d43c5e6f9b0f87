"""Conversation-related data models."""

from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID

from .contracts import Contract


class ConversationStatus(str, Enum):
    """Status of a conversation as seen by the dispatch core."""

    CREATED = "created"
    STARTED = "started"
    MISSED = "missed"
    FAILED = "failed"


@dataclass(frozen=True)
class CustomerForm:
    """Values submitted by the visitor."""

    customer_name: str
    headline: str
    ip_address: str | None = None


@dataclass(frozen=True)
class DispatchRequest:
    """One submission, shared by every conversation in the fan-out."""

    correlation_key: UUID
    customer_name: str
    headline: str
    ip_address: str | None = None


@dataclass
class Conversation:
    """Conversation record returned by the backend on creation."""

    id: str
    contract_id: str
    customer_name: str
    headline: str
    status: ConversationStatus = ConversationStatus.CREATED


@dataclass
class PendingConversation:
    """A conversation awaiting an agent; mutated only by RaceResolver."""

    id: str
    contract_id: str
    customer_name: str
    headline: str
    contract: Contract | None = None
    status: ConversationStatus = ConversationStatus.CREATED
    missed: bool = False
    superseded: bool = False  # another conversation won the race


@dataclass
class FailedCreation:
    """A contract whose conversation could not be created."""

    contract_id: str
    error: Exception = field(repr=False)
