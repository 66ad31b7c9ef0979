"""HTTP fetch utilities.

Every document, sitemap, and listing page is retrieved with a plain GET
through a shared ``httpx.AsyncClient``. Transport errors and 5xx responses are
retried with exponential backoff; 4xx responses fail immediately.

Functions
---------
create_client : Build the session's AsyncClient from ``config.json`` settings
fetch_bytes : GET a URL and return the body, raising on failure

Notes
-----
Failures propagate as ``httpx.HTTPError``; callers decide whether to skip
the URL. Logging is configured via kpi_official.config.setup_logging.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import httpx

from kpi_official.config import setup_logging

# Module-level logger for download operations
logger = setup_logging(__name__)


@dataclass(frozen=True)
class HttpSettings:
    """Timeout, identification, and retry knobs for outbound requests."""

    timeout_seconds: float = 60.0
    user_agent: str = "Mozilla/5.0 kpi-official/0.1"
    max_attempts: int = 2
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 8.0

    @classmethod
    def from_config(cls, http_config: dict[str, Any] | None) -> HttpSettings:
        """Build settings from the ``http`` block of ``config.json``."""
        block = http_config or {}
        retry = block.get("retry", {})
        defaults = cls()
        return cls(
            timeout_seconds=float(block.get("timeout_seconds", defaults.timeout_seconds)),
            user_agent=str(block.get("user_agent", defaults.user_agent)),
            max_attempts=max(1, int(retry.get("max_attempts", defaults.max_attempts))),
            base_delay_seconds=float(retry.get("base_delay_seconds", defaults.base_delay_seconds)),
            max_delay_seconds=float(retry.get("max_delay_seconds", defaults.max_delay_seconds)),
        )


def create_client(
    settings: HttpSettings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create the AsyncClient shared by one hydration session.

    Parameters
    ----------
    settings : HttpSettings
        Timeout and User-Agent to apply.
    transport : httpx.AsyncBaseTransport, optional
        Alternate transport (``httpx.MockTransport`` in tests).

    Returns
    -------
    httpx.AsyncClient
        Client with redirect following enabled for CDN-hosted files.
    """
    return httpx.AsyncClient(
        timeout=settings.timeout_seconds,
        follow_redirects=True,
        headers={"User-Agent": settings.user_agent},
        transport=transport,
    )


def _is_retryable(error: httpx.HTTPError) -> bool:
    """Return whether ``error`` is worth another attempt."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code >= 500
    return isinstance(error, httpx.TransportError)


async def fetch_bytes(client: httpx.AsyncClient, url: str, settings: HttpSettings | None = None) -> bytes:
    """Download ``url`` and return the raw response body.

    Parameters
    ----------
    client : httpx.AsyncClient
        Session client (see :func:`create_client`).
    url : str
        Absolute HTTP(S) URL.
    settings : HttpSettings, optional
        Retry policy; defaults to a single retry.

    Returns
    -------
    bytes
        Response content.

    Raises
    ------
    httpx.HTTPError
        On transport failure or non-2xx status after the last attempt.
    """
    policy = settings or HttpSettings()

    for attempt in range(policy.max_attempts):
        try:
            logger.debug("GET %s (attempt %d/%d)", url, attempt + 1, policy.max_attempts)
            response = await client.get(url)
            response.raise_for_status()  # Raise on 4xx/5xx
        except httpx.HTTPError as e:
            if attempt == policy.max_attempts - 1 or not _is_retryable(e):
                raise
            delay = min(policy.base_delay_seconds * (2**attempt), policy.max_delay_seconds)
            logger.debug("Fetch failed for %s (%s), retrying in %ss", url, e, delay)
            await asyncio.sleep(delay)
        else:
            logger.debug("Downloaded %s (%d bytes)", url, len(response.content))
            return response.content

    # max_attempts >= 1 guarantees the loop either returned or raised
    msg = f"No fetch attempt was made for {url}"
    raise RuntimeError(msg)
