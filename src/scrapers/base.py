import asyncio
import re
from enum import Enum
from typing import List, Optional, Protocol

import requests
from loguru import logger
from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright_stealth import Stealth

from config.settings import SESSION_LOST_PATTERNS, PipelineConfig
from src.models.capture import SearchQuery, ViewerHandle
from src.models.property import DocumentListing

USER_AGENT_DESKTOP = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"

_SESSION_LOST_RE = re.compile("|".join(SESSION_LOST_PATTERNS), re.IGNORECASE)


class CaptureError(Exception):
    """Base class for remote-site failures."""


class TransientNetworkError(CaptureError):
    """Timeout or navigation failure; the session itself is still usable."""


class SessionLostError(CaptureError):
    """The remote page/context/browser went away."""


class ListingUnavailableError(CaptureError):
    """The search results listing never rendered."""


class ErrorKind(Enum):
    SESSION_LOST = "SESSION_LOST"
    TRANSIENT = "TRANSIENT"
    OTHER = "OTHER"


def is_session_lost(exc: BaseException) -> bool:
    if isinstance(exc, SessionLostError):
        return True
    return bool(_SESSION_LOST_RE.search(str(exc)))


def classify_error(exc: BaseException) -> ErrorKind:
    """
    Map any exception raised by a site adapter to an ErrorKind.

    The session-lost check runs first: Playwright reports a closed target as
    a plain Error (sometimes as a TimeoutError) with the reason in the message.
    """
    if is_session_lost(exc):
        return ErrorKind.SESSION_LOST
    if isinstance(exc, (TransientNetworkError, PlaywrightTimeoutError, asyncio.TimeoutError, TimeoutError)):
        return ErrorKind.TRANSIENT
    if isinstance(exc, (requests.exceptions.Timeout, requests.exceptions.ConnectionError)):
        return ErrorKind.TRANSIENT
    if isinstance(exc, PlaywrightError) and "net::" in str(exc):
        return ErrorKind.TRANSIENT
    return ErrorKind.OTHER


def proxy_settings(proxy_url: Optional[str]) -> Optional[dict]:
    """Split a proxy URL with credentials into Playwright's proxy dict."""
    if not proxy_url:
        return None
    match = re.match(r"^(?P<scheme>\w+)://(?:(?P<user>[^:@]+):(?P<password>[^@]+)@)?(?P<host>.+)$", proxy_url)
    if not match:
        return {"server": proxy_url}
    settings = {"server": f"{match.group('scheme')}://{match.group('host')}"}
    if match.group("user"):
        settings["username"] = match.group("user")
        settings["password"] = match.group("password")
    return settings


class BrowserSession:
    """
    One Playwright browser + context + page. A capture session lives exactly as
    long as one of these; recovery throws it away and starts a new one.
    """

    def __init__(self, config: PipelineConfig):
        self.config = config
        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None

    async def start(self) -> Page:
        if self.page is not None:
            return self.page
        self.playwright = await async_playwright().start()
        self.browser = await self.playwright.chromium.launch(
            headless=self.config.headless,
            proxy=proxy_settings(self.config.proxy_url),
            args=[
                '--disable-blink-features=AutomationControlled',
                '--disable-dev-shm-usage',
                '--no-sandbox',
            ]
        )
        self.context = await self.browser.new_context(
            user_agent=USER_AGENT_DESKTOP,
            viewport={'width': 1920, 'height': 1080},
            locale='en-US',
            timezone_id='America/Chicago'
        )
        self.page = await self.context.new_page()
        await Stealth().apply_stealth_async(self.page)
        self.page.set_default_timeout(self.config.action_timeout_ms)
        self.page.set_default_navigation_timeout(self.config.navigation_timeout_ms)
        logger.info("Browser session started (headless={}, proxy={})", self.config.headless, bool(self.config.proxy_url))
        return self.page

    async def close(self) -> None:
        """Close everything; a half-dead session may fail to close and that is fine."""
        browser, playwright = self.browser, self.playwright
        self.page = self.context = self.browser = self.playwright = None
        if browser is not None:
            try:
                await browser.close()
            except PlaywrightError as e:
                logger.debug("Browser close failed (session already gone?): {}", e)
        if playwright is not None:
            try:
                await playwright.stop()
            except PlaywrightError as e:
                logger.debug("Playwright stop failed: {}", e)

    async def __aenter__(self) -> Page:
        return await self.start()

    async def __aexit__(self, *exc: object) -> None:
        await self.close()


class RecordsSite(Protocol):
    """
    Async adapter over one remote records site session.

    Implementations hold at most one live browser session; the capture
    manager discards the adapter and builds a new one after a session loss.
    """

    # True from the moment opening a document leaves the results listing
    # until go_back returns to it
    in_viewer: bool

    async def start(self) -> None: ...

    async def close(self) -> None: ...

    async def search(self, query: SearchQuery) -> List[DocumentListing]: ...

    async def open_viewer(self, instrument_number: str) -> ViewerHandle: ...

    async def page_count(self, handle: ViewerHandle) -> int: ...

    async def capture_image(self, handle: ViewerHandle, page_number: int) -> bytes: ...

    async def next_page(self, handle: ViewerHandle) -> None: ...

    async def go_back(self) -> None: ...
