"""HTTP collaborators: backend clock and visitor IP lookup."""

from datetime import datetime, timezone

import httpx

from ..logging_config import get_logger

logger = get_logger(__name__)


def parse_server_time(value: str) -> datetime:
    """Parse an ISO-8601 timestamp as returned by the time endpoint."""
    text = value.strip().strip('"')
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class HttpTimeSource:
    """Reads the current time from GET {api_url}/api/time."""

    def __init__(
        self,
        api_url: str,
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ):
        self._url = f"{api_url.rstrip('/')}/api/time"
        self._timeout = timeout
        self._client = client

    async def __call__(self) -> datetime:
        """Return server time. Raises on transport or parse errors."""
        if self._client is not None:
            response = await self._client.get(self._url, timeout=self._timeout)
        else:
            async with httpx.AsyncClient() as client:
                response = await client.get(self._url, timeout=self._timeout)

        response.raise_for_status()
        body = response.json() if _is_json(response) else response.text
        if isinstance(body, dict):
            body = body.get("time") or body.get("now") or ""
        return parse_server_time(str(body))


class IpAddressLookup:
    """Detects the visitor's public IP via an ipify-style JSON endpoint."""

    def __init__(
        self,
        url: str,
        timeout: float = 3.0,
        client: httpx.AsyncClient | None = None,
    ):
        self._url = url
        self._timeout = timeout
        self._client = client

    async def __call__(self) -> str | None:
        """Return the IP address, or None when it cannot be determined."""
        try:
            if self._client is not None:
                response = await self._client.get(self._url, timeout=self._timeout)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.get(self._url, timeout=self._timeout)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException:
            logger.error("IP detection failed: request timeout after %ss", self._timeout)
            return None
        except httpx.HTTPStatusError as e:
            logger.error("IP detection failed: HTTP error %s", e.response.status_code)
            return None
        except httpx.HTTPError as e:
            logger.error("IP detection failed: network error %s", e)
            return None
        except ValueError as e:
            logger.error("IP detection failed: invalid JSON %s", e)
            return None

        ip = data.get("ip") if isinstance(data, dict) else None
        if not isinstance(ip, str) or not ip.strip():
            logger.error("IP detection failed: invalid response format %s", data)
            return None
        return ip.strip()


def _is_json(response: httpx.Response) -> bool:
    return "json" in response.headers.get("content-type", "")
