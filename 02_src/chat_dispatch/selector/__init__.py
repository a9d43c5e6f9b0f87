"""Contract selection module."""

from .selector import (
    ContractSelector,
    contracts_for_session,
    current_utc_time,
    filter_active,
    select_contracts,
    session_for_hour,
)

__all__ = [
    "ContractSelector",
    "contracts_for_session",
    "current_utc_time",
    "filter_active",
    "select_contracts",
    "session_for_hour",
]
