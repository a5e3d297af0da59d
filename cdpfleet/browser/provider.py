"""
Connection providers.

A provider turns a CDP endpoint into a connected browser handle. The execution
unit only relies on the small surface described by the protocols below, which
Playwright's async Browser/BrowserContext/Page objects satisfy.
"""
import asyncio
from typing import Any, List, Optional, Protocol

from ..errors import BrowserConnectionError
from ..logging_config import get_logger

logger = get_logger("cdpfleet.browser.provider")


class Page(Protocol):
    url: str

    async def goto(self, url: str, **kwargs) -> Any: ...

    async def title(self) -> str: ...

    def locator(self, selector: str) -> Any: ...

    async def evaluate(self, expression: str) -> Any: ...

    async def screenshot(self, **kwargs) -> bytes: ...


class BrowserContext(Protocol):
    @property
    def pages(self) -> List[Page]: ...

    async def new_page(self) -> Page: ...


class Connection(Protocol):
    @property
    def contexts(self) -> List[BrowserContext]: ...

    @property
    def version(self) -> str: ...

    async def new_context(self) -> BrowserContext: ...

    async def close(self) -> None: ...


class ConnectionProvider(Protocol):
    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def connect(self, endpoint: str) -> Connection: ...


class PlaywrightProvider:
    """Connects to running Chromium instances with Playwright's connect_over_cdp."""

    def __init__(self, connect_timeout_ms: Optional[float] = None):
        self.connect_timeout_ms = connect_timeout_ms
        self._manager = None
        self._playwright = None
        self._start_lock = asyncio.Lock()

    async def start(self):
        """Lazy-init Playwright on first use."""
        async with self._start_lock:
            if self._playwright is None:
                from playwright.async_api import async_playwright
                self._manager = async_playwright()
                self._playwright = await self._manager.start()
                logger.info("Playwright initialized")

    async def stop(self):
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
            self._manager = None
            logger.info("Playwright stopped")

    async def __aenter__(self) -> "PlaywrightProvider":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    async def connect(self, endpoint: str) -> Connection:
        await self.start()
        kwargs = {}
        if self.connect_timeout_ms is not None:
            kwargs["timeout"] = self.connect_timeout_ms
        try:
            browser = await self._playwright.chromium.connect_over_cdp(endpoint, **kwargs)
        except Exception as e:
            raise BrowserConnectionError(endpoint, _first_line(str(e))) from e
        logger.debug_with("Connected over CDP", endpoint=endpoint, version=browser.version)
        return browser


def _first_line(message: str) -> str:
    # Playwright appends a multi-line call log to its error messages
    for line in message.splitlines():
        if line.strip():
            return line.strip()
    return message
