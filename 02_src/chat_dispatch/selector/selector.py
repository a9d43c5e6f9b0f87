"""Selects the contracts eligible for dispatch right now."""

from datetime import datetime, timezone

from ..backend import NowProvider
from ..logging_config import get_logger
from ..models import Contract, ContractStatus, Session

logger = get_logger(__name__)


def session_for_hour(utc_hour: int) -> Session:
    """Map a UTC hour (0-23) to its 8-hour session bucket."""
    if 0 <= utc_hour < 8:
        return Session.NIGHT
    if 8 <= utc_hour < 16:
        return Session.DAY
    if 16 <= utc_hour < 24:
        return Session.EVENING
    raise ValueError(f"Invalid UTC hour: {utc_hour}")


def filter_active(contracts: list[Contract]) -> list[Contract]:
    """Keep active contracts that carry an id."""
    return [c for c in contracts if c.id and c.status is ContractStatus.ACTIVE]


def contracts_for_session(contracts: list[Contract], session: Session) -> list[Contract]:
    return [c for c in contracts if c.session is session]


async def current_utc_time(now_provider: NowProvider | None) -> datetime:
    """Ask the time service, falling back to the local clock on any failure."""
    if now_provider is None:
        return datetime.now(timezone.utc)
    try:
        now = await now_provider()
    except Exception as e:
        logger.warning(
            "Failed to get time from time service, falling back to local time: %s", e
        )
        return datetime.now(timezone.utc)

    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


async def select_contracts(
    contracts: list[Contract], now_provider: NowProvider | None = None
) -> list[Contract]:
    """Return active contracts whose session covers the current UTC hour.

    Order is preserved. An empty list means no agent is available.
    """
    now = await current_utc_time(now_provider)
    session = session_for_hour(now.hour)
    selected = contracts_for_session(filter_active(contracts), session)
    logger.info(
        "Selected %s of %s contracts for session %s",
        len(selected),
        len(contracts),
        session.value,
    )
    return selected


class ContractSelector:
    """Contract selection bound to one time source."""

    def __init__(self, now_provider: NowProvider | None = None):
        self._now_provider = now_provider

    async def select(
        self, contracts: list[Contract], now_provider: NowProvider | None = None
    ) -> list[Contract]:
        return await select_contracts(contracts, now_provider or self._now_provider)
