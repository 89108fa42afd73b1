"""WebDriver endpoint parsing and /status probing.

webdriver-supervisor v0.1.0

The ready line of most drivers names the address they bound, e.g.
``Listening on 127.0.0.1:4444``. parse_endpoint() pulls the address out and
fetch_status() asks the driver's ``GET /status`` whether it accepts new
sessions.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any

import aiohttp
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import StatusCheckError

__all__ = [
    "DriverEndpoint",
    "DriverStatus",
    "fetch_status",
    "parse_endpoint",
]

logger = logging.getLogger(__name__)

DEFAULT_STATUS_TIMEOUT = 5.0

_ENDPOINT_RE = re.compile(
    r"(?P<host>\[[0-9A-Fa-f:.]+\]|localhost|\d{1,3}(?:\.\d{1,3}){3}|[A-Za-z0-9-]+(?:\.[A-Za-z0-9-]+)+)"
    r":(?P<port>\d{1,5})\b"
)

# Wildcard binds are reachable on loopback
_WILDCARD_HOSTS = {"0.0.0.0": "127.0.0.1", "[::]": "[::1]"}


class DriverEndpoint(BaseModel):
    """Address a driver listens on."""

    model_config = ConfigDict(frozen=True)

    host: str
    port: int = Field(ge=1, le=65535)

    @property
    def base_url(self) -> str:
        host = _WILDCARD_HOSTS.get(self.host, self.host)
        return f"http://{host}:{self.port}"

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


class DriverStatus(BaseModel):
    """Parsed WebDriver status payload.

    Attributes:
        ready: Whether the driver accepts new sessions
        message: Human readable status message
        raw: Full decoded response body
    """

    model_config = ConfigDict(extra="ignore")

    ready: bool = False
    message: str = ""
    raw: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "DriverStatus":
        """Build from a W3C (``{"value": {...}}``) or flat status body."""
        value = payload.get("value")
        body = value if isinstance(value, dict) else payload
        return cls.model_validate({**body, "raw": payload})


def parse_endpoint(line: str | None) -> DriverEndpoint | None:
    """Extract the last ``host:port`` pair from a driver output line."""
    if not line:
        return None
    for match in reversed(list(_ENDPOINT_RE.finditer(line))):
        port = int(match.group("port"))
        if 1 <= port <= 65535:
            return DriverEndpoint(host=match.group("host"), port=port)
    return None


async def fetch_status(
    endpoint: DriverEndpoint,
    *,
    session: aiohttp.ClientSession | None = None,
    timeout: float = DEFAULT_STATUS_TIMEOUT,
) -> DriverStatus:
    """Query ``GET /status`` on a running driver.

    Args:
        endpoint: Driver address
        session: Reused HTTP session (a temporary one is created if None)
        timeout: Total request timeout in seconds

    Raises:
        StatusCheckError: On network errors, non-2xx responses or bad payloads
    """
    url = f"{endpoint.base_url}/status"
    owns_session = session is None
    if session is None:
        session = aiohttp.ClientSession()

    try:
        async with session.get(url, timeout=aiohttp.ClientTimeout(total=timeout)) as resp:
            if resp.status >= 400:
                text = await resp.text()
                raise StatusCheckError(url, text[:200] or resp.reason or "error", resp.status)
            payload = await resp.json(content_type=None)
    except aiohttp.ClientError as e:
        raise StatusCheckError(url, f"Network error: {e}") from e
    except asyncio.TimeoutError as e:
        raise StatusCheckError(url, f"Timed out after {timeout}s") from e
    except ValueError as e:
        raise StatusCheckError(url, f"Invalid JSON: {e}") from e
    finally:
        if owns_session:
            await session.close()

    if not isinstance(payload, dict):
        raise StatusCheckError(url, f"Unexpected payload type {type(payload).__name__}")

    try:
        status = DriverStatus.from_payload(payload)
    except ValidationError as e:
        raise StatusCheckError(url, f"Invalid status payload: {e}") from e

    logger.debug(f"Driver status {url}: ready={status.ready} message={status.message!r}")
    return status
