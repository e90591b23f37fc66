"""
Dallas County Clerk scraper - publicsearch.us real property records.

One ClerkRecordsSite owns one browser session. The capture loop drives it
through search -> open_viewer -> page_count / capture_image / next_page ->
go_back, and throws the whole object away when the session dies.

Search URL (department=RP, advanced search):
    https://dallas.tx.publicsearch.us/results?department=RP&searchType=advancedSearch
        &recordedDateRange=20000101,20250101&lot=8&block=N&block2=6757
        &legalDescription=ST AUGUSTINE HIGHLANDS
"""
import asyncio
import random
import re
from typing import Dict, List, Optional, Sequence, Tuple

from loguru import logger
from playwright.async_api import ElementHandle
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from config.settings import CLERK_RESULTS_URL, PipelineConfig
from src.models.capture import SearchQuery, ViewerHandle
from src.models.property import DocumentListing
from src.scrapers.base import BrowserSession, CaptureError, ListingUnavailableError, SessionLostError, is_session_lost

RESULT_ROWS = "table tbody tr"
RESULT_HEADERS = "table thead th"
VIEWER_IMAGE = "svg image"
NEXT_PAGE_BUTTON = 'button:has(img[alt="Go To Next Page"])'

PAGE_COUNT_TEXT = re.compile(r"^\s*\d+\s+of\s+\d+\s*$", re.IGNORECASE)
_PAGE_TOTAL_RE = re.compile(r"\bof\s+(\d+)\b", re.IGNORECASE)

# Result table header -> DocumentListing field (first keyword hit wins)
HEADER_FIELDS = (
    ("grantor", "grantor"),
    ("grantee", "grantee"),
    ("doc type", "document_type"),
    ("document type", "document_type"),
    ("recorded", "filing_date"),
    ("filing", "filing_date"),
    ("doc number", "instrument_number"),
    ("instrument", "instrument_number"),
    ("doc #", "instrument_number"),
    ("book", "book_and_page"),
    ("legal", "legal_description"),
)


def field_for_header(header: str) -> Optional[str]:
    name = " ".join(header.lower().split())
    for keyword, field_name in HEADER_FIELDS:
        if keyword in name:
            return field_name
    return None


def parse_listing_rows(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> List[DocumentListing]:
    """
    Map scraped result-table text onto DocumentListings.

    Cells are matched to headers by position; columns with no known header
    (checkboxes, town, etc.) are ignored. Rows without any mapped value are
    dropped.
    """
    fields = [field_for_header(h) for h in headers]
    listings = []
    for index, cells in enumerate(rows):
        data: Dict[str, str] = {}
        for field_name, cell in zip(fields, cells):
            text = (cell or "").strip()
            if field_name and text and field_name not in data:
                data[field_name] = text
        if not data:
            continue
        listings.append(DocumentListing(row_index=index, **data))
    return listings


def parse_page_count(text: Optional[str]) -> int:
    """'1 of 6' -> 6. Anything unparsable counts as a single page."""
    match = _PAGE_TOTAL_RE.search(text or "")
    if not match:
        return 1
    return max(1, int(match.group(1)))


def find_instrument_row(rows: Sequence[Sequence[str]], instrument_number: str) -> Optional[int]:
    """Index of the first row with a cell exactly equal to the instrument number."""
    target = instrument_number.strip()
    for index, cells in enumerate(rows):
        if any((cell or "").strip() == target for cell in cells):
            return index
    return None


class ClerkRecordsSite:
    def __init__(self, config: PipelineConfig, base_url: str = CLERK_RESULTS_URL):
        self.config = config
        self.base_url = base_url
        self.session = BrowserSession(config)
        self.page: Optional[Page] = None
        # True once a row click has navigated away from the results listing
        self.in_viewer = False

    async def start(self) -> None:
        self.page = await self.session.start()

    async def close(self) -> None:
        self.page = None
        self.in_viewer = False
        await self.session.close()

    def _require_page(self) -> Page:
        if self.page is None:
            raise SessionLostError("Session closed: clerk site is not started")
        return self.page

    async def search(self, query: SearchQuery) -> List[DocumentListing]:
        page = self._require_page()
        url = query.to_url(self.base_url)
        logger.info("Clerk search: {}", url)
        await page.goto(url, wait_until="domcontentloaded", timeout=self.config.navigation_timeout_ms * 2)
        await asyncio.sleep(random.uniform(*self.config.post_search_delay_range))  # noqa: S311

        try:
            await page.wait_for_selector(RESULT_ROWS, timeout=self.config.results_timeout_ms)
        except PlaywrightTimeoutError as e:
            if is_session_lost(e):
                raise SessionLostError(str(e)) from e
            raise ListingUnavailableError(f"No search results rendered for {url}") from e

        self.in_viewer = False
        header_names = [await h.inner_text() for h in await page.query_selector_all(RESULT_HEADERS)]
        _, rows = await self._read_rows(page)

        listings = parse_listing_rows(header_names, rows)
        logger.debug("Clerk listing: {} rows, {} parsed", len(rows), len(listings))
        return listings

    async def open_viewer(self, instrument_number: str) -> ViewerHandle:
        """Open a document by its instrument number, never by row position."""
        page = self._require_page()
        handles, rows = await self._read_rows(page)
        index = find_instrument_row(rows, instrument_number)
        if index is None:
            raise CaptureError(f"Instrument {instrument_number} not found in the results listing")
        await handles[index].click(timeout=self.config.action_timeout_ms)
        self.in_viewer = True
        await page.wait_for_selector(VIEWER_IMAGE, timeout=self.config.viewer_timeout_ms)
        return ViewerHandle(instrument_number=instrument_number, url=page.url)

    async def page_count(self, handle: ViewerHandle) -> int:
        page = self._require_page()
        try:
            text = await page.get_by_text(PAGE_COUNT_TEXT).first.inner_text(timeout=self.config.action_timeout_ms)
        except PlaywrightError as e:
            if is_session_lost(e):
                raise SessionLostError(str(e)) from e
            logger.warning("Page count not found for {}; assuming 1 page", handle.instrument_number)
            return 1
        return parse_page_count(text)

    async def capture_image(self, handle: ViewerHandle, page_number: int) -> bytes:
        page = self._require_page()
        image = await page.locator(VIEWER_IMAGE).first.screenshot(timeout=self.config.action_timeout_ms)
        logger.debug("Captured page {} of {} ({} bytes)", page_number, handle.instrument_number, len(image))
        return image

    async def next_page(self, handle: ViewerHandle) -> None:
        page = self._require_page()
        await page.locator(NEXT_PAGE_BUTTON).click(timeout=self.config.action_timeout_ms)
        await asyncio.sleep(self.config.page_settle_seconds)

    async def go_back(self) -> None:
        page = self._require_page()
        await page.go_back(wait_until="domcontentloaded")
        self.in_viewer = False

    async def _read_rows(self, page: Page) -> Tuple[List[ElementHandle], List[List[str]]]:
        """Result rows and the inner text of their cells."""
        handles = await page.query_selector_all(RESULT_ROWS)
        rows = []
        for row in handles:
            cells = await row.query_selector_all("td")
            rows.append([await cell.inner_text() for cell in cells])
        return handles, rows
