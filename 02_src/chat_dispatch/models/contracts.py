"""Contract-related data models."""

from dataclasses import dataclass
from enum import Enum


class Session(str, Enum):
    """Working-hours bucket of a contract (8-hour UTC windows)."""

    NIGHT = "night"  # 00:00-08:00 UTC
    DAY = "day"  # 08:00-16:00 UTC
    EVENING = "evening"  # 16:00-24:00 UTC


class ContractStatus(str, Enum):
    """Contract availability."""

    ACTIVE = "active"
    INACTIVE = "inactive"


@dataclass(frozen=True)
class Contract:
    """A service agent's availability record."""

    id: str
    session: Session
    status: ContractStatus
    miss_timeout_seconds: float = 0
    color: str | None = None
