"""
Endpoint health checks against Chrome's /json/version HTTP endpoint.
"""
import asyncio
from dataclasses import dataclass
from typing import List, Optional, Sequence
from urllib.parse import urlsplit

import aiohttp

from ..logging_config import get_logger
from .models import normalize_endpoint

logger = get_logger("cdpfleet.browser.health")


@dataclass
class EndpointStatus:
    endpoint: str
    reachable: bool
    browser: str = ""
    protocol_version: str = ""
    websocket_url: str = ""
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "endpoint": self.endpoint,
            "reachable": self.reachable,
            "browser": self.browser,
            "protocol_version": self.protocol_version,
            "websocket_url": self.websocket_url,
            "error": self.error,
        }


def version_url(endpoint: str) -> str:
    """The /json/version URL for an endpoint, whatever scheme it was given in."""
    parts = urlsplit(normalize_endpoint(endpoint))
    scheme = "https" if parts.scheme in ("https", "wss") else "http"
    return f"{scheme}://{parts.netloc}/json/version"


async def fetch_version(session: aiohttp.ClientSession, endpoint: str) -> EndpointStatus:
    url = version_url(endpoint)
    try:
        async with session.get(url) as response:
            if response.status != 200:
                return EndpointStatus(endpoint=endpoint, reachable=False, error=f"HTTP {response.status}")
            data = await response.json(content_type=None)
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.debug(f"Health check failed for {endpoint}: {e!r}")
        return EndpointStatus(endpoint=endpoint, reachable=False, error=str(e) or e.__class__.__name__)

    return EndpointStatus(
        endpoint=endpoint,
        reachable=True,
        browser=data.get("Browser", ""),
        protocol_version=data.get("Protocol-Version", ""),
        websocket_url=data.get("webSocketDebuggerUrl", ""),
    )


async def check_endpoints(endpoints: Sequence[str], timeout: float = 5.0) -> List[EndpointStatus]:
    """Probe every endpoint concurrently; results keep the input order."""
    client_timeout = aiohttp.ClientTimeout(total=timeout)
    async with aiohttp.ClientSession(timeout=client_timeout) as session:
        return list(await asyncio.gather(*(fetch_version(session, e) for e in endpoints)))
