"""Project-level configuration and path helpers."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Union

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DATA_DIR = PROJECT_ROOT / "03_data"
LOGS_DIR = PROJECT_ROOT / "04_logs"
DEFAULT_DB_PATH = DATA_DIR / "chat_dispatch.db"
DEFAULT_LOG_PATH = LOGS_DIR / "app.log"


PathLike = Union[str, Path]


def resolve_db_path(env_value: PathLike | None = None) -> PathLike:
    """Resolve DATABASE_URL to an absolute path."""
    if not env_value:
        DATA_DIR.mkdir(parents=True, exist_ok=True)
        return DEFAULT_DB_PATH

    if str(env_value) == ":memory:":
        return ":memory:"

    candidate = Path(env_value)
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


@dataclass
class DispatchConfig:
    """Timeouts and retry policy for one dispatch session."""

    waiting_timeout_seconds: float = 5 * 60
    message_retry_limit: int = 2
    retry_delay_seconds: float = 3.0
    watch_reconnect_delay_seconds: float = 5.0
    time_api_url: str | None = None
    ip_lookup_url: str | None = None
    ip_lookup_timeout_seconds: float = 3.0

    @classmethod
    def from_env(cls) -> "DispatchConfig":
        """Build config from environment variables, falling back to defaults."""
        defaults = cls()
        return cls(
            waiting_timeout_seconds=_env_float(
                "CHAT_WAITING_TIMEOUT", defaults.waiting_timeout_seconds
            ),
            message_retry_limit=_env_int(
                "CHAT_MESSAGE_RETRY_LIMIT", defaults.message_retry_limit
            ),
            retry_delay_seconds=_env_float(
                "CHAT_RETRY_DELAY", defaults.retry_delay_seconds
            ),
            watch_reconnect_delay_seconds=_env_float(
                "CHAT_CONNECTION_RETRY", defaults.watch_reconnect_delay_seconds
            ),
            time_api_url=os.getenv("TIME_API_URL") or None,
            ip_lookup_url=os.getenv("IPIFY_URL") or None,
            ip_lookup_timeout_seconds=_env_float(
                "IP_LOOKUP_TIMEOUT", defaults.ip_lookup_timeout_seconds
            ),
        )
