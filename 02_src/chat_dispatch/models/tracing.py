"""Tracing and observability data models."""

from dataclasses import dataclass
from datetime import datetime


@dataclass
class TraceEvent:
    """A single observability event of a dispatch session."""

    id: str
    event_type: str  # e.g. "race_won", "conversation_missed"
    actor: str  # who created this event
    data: dict  # full self-contained data for display
    timestamp: datetime
