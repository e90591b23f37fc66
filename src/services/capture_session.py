"""
Capture Session Manager - resilient clerk document capture for one property.

State machine (per run):

    SEARCHING -> FILTERING -> for each matched document, in order:
        OPENING -> PAGINATING -> EXTRACTING_TEXT -> SUMMARIZING -> RECORDED
        (on a lost session: SESSION_LOST -> RECOVERING -> OPENING, once)
    -> DONE | FAILED

Only an unavailable results listing fails the run. After that every
matched document yields exactly one DocumentRecord; a document that cannot
be captured gets SUMMARY_SENTINEL instead of a summary.

A lost session is recovered at most once per document: the site adapter is
closed and rebuilt, the same search is replayed, and the document is
reopened by its instrument number from page 1.
"""

import asyncio
import functools
import random
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Tuple, Union

from loguru import logger

from config.settings import CLERK_RESULTS_URL, SUMMARY_SENTINEL, PipelineConfig
from src.models.capture import CaptureResult, CaptureState, CaptureStatus, SearchQuery, ViewerHandle
from src.models.property import DocumentListing, DocumentRecord
from src.scrapers.base import CaptureError, ErrorKind, RecordsSite, SessionLostError, classify_error, is_session_lost
from src.utils.legal_description import LegalDescription
from src.utils.logging_utils import Timer, log_search
from src.utils.relevance_checker import filter_documents
from src.utils.time import parse_date, today_local


class DocumentReader(Protocol):
    """Blocking OCR + summarization capability."""

    def text_from_images(self, images: List[bytes]) -> str: ...

    def summarize(self, text: str) -> str: ...


SiteFactory = Callable[[], RecordsSite]


@dataclass
class DocumentProgress:
    listing: DocumentListing
    source_url: Optional[str] = None
    pages: int = 0
    recovered: bool = False


class CaptureSessionManager:
    def __init__(
        self,
        site_factory: SiteFactory,
        reader: DocumentReader,
        config: PipelineConfig,
        stop_event: Optional[asyncio.Event] = None,
        search_base_url: str = CLERK_RESULTS_URL,
    ):
        self.site_factory = site_factory
        self.reader = reader
        self.config = config
        self.stop_event = stop_event
        self.search_base_url = search_base_url
        self.site: Optional[RecordsSite] = None
        self.recoveries = 0
        self.transitions: List[Tuple[CaptureState, Optional[str]]] = []

    def build_query(self, target: Union[LegalDescription, SearchQuery]) -> SearchQuery:
        """Deterministic clerk query for a parsed legal description."""
        if isinstance(target, SearchQuery):
            return target
        if not target.has_lot_and_block:
            raise ValueError("Legal description has no lot/block to search by")
        return SearchQuery(
            lot=target.lot1,
            block=target.block,
            subdivision=target.subdivision or "",
            city_block=target.city_block or "",
            start_date=self.config.search_start_date,
            end_date=today_local(),
        )

    async def run(self, target: Union[LegalDescription, SearchQuery]) -> CaptureResult:
        query = self.build_query(target)
        search_url = query.to_url(self.search_base_url)
        self.recoveries = 0
        self.transitions = []

        try:
            self._enter(CaptureState.SEARCHING)
            try:
                with Timer() as search_timer:
                    listings = await self._open_listing(query)
            except Exception as e:
                self._enter(CaptureState.FAILED, str(e))
                logger.error("Clerk listing unavailable for lot {} block {}: {}", query.lot, query.block, e)
                return CaptureResult(
                    status=CaptureStatus.FAILED,
                    search_url=search_url,
                    message="Search results listing unavailable",
                    error_details=str(e),
                )

            self._enter(CaptureState.FILTERING)
            matched = filter_documents(listings, query.lot, query.block)
            logger.info(
                "Found {} total documents, filtered down to {} relevant documents.",
                len(listings),
                len(matched),
            )
            log_search(
                source="CLERK",
                query=search_url,
                results_raw=len(listings),
                results_kept=len(matched),
                duration_ms=search_timer.elapsed_ms,
                lot=query.lot,
                block=query.block,
            )

            records: List[DocumentRecord] = []
            cancelled = False
            for index, listing in enumerate(matched):
                if self._stop_requested():
                    cancelled = True
                    logger.warning("Stop requested; {} documents left uncaptured", len(matched) - index)
                    records.extend(self._record(DocumentProgress(rest), None) for rest in matched[index:])
                    break

                logger.info("Processing document {}/{}: {}", index + 1, len(matched), listing.instrument_number)
                progress = DocumentProgress(listing)
                records.append(await self._capture_document(query, progress))

                if index < len(matched) - 1:
                    await self._return_to_listing()

            self._enter(CaptureState.DONE)
            captured = sum(1 for r in records if r.captured)
            return CaptureResult(
                status=CaptureStatus.DONE,
                documents=records,
                listing_count=len(listings),
                search_url=search_url,
                recoveries=self.recoveries,
                cancelled=cancelled,
                message=f"{len(records)} documents recorded, {captured} summarized",
            )
        finally:
            await self._close_site()

    # ------------------------------------------------------------------
    # Per-document flow
    # ------------------------------------------------------------------

    async def _capture_document(self, query: SearchQuery, progress: DocumentProgress) -> DocumentRecord:
        instrument = progress.listing.instrument_number
        while True:
            try:
                summary = await asyncio.wait_for(
                    self._process_once(progress),
                    timeout=self.config.session_timeout_ms / 1000,
                )
            except Exception as e:
                kind = classify_error(e)
                logger.error(
                    "Failed to process images/summary for {} ({}, {} pages captured): {}",
                    instrument,
                    kind.value,
                    progress.pages,
                    e,
                )
                if kind is not ErrorKind.SESSION_LOST or progress.recovered:
                    return self._record(progress, None)

                self._enter(CaptureState.SESSION_LOST, instrument)
                progress.recovered = True
                progress.source_url = None
                progress.pages = 0
                if not await self._recover(query, instrument):
                    return self._record(progress, None)
                continue

            self._enter(CaptureState.RECORDED, instrument)
            return self._record(progress, summary)

    async def _process_once(self, progress: DocumentProgress) -> str:
        instrument = progress.listing.instrument_number
        if not instrument:
            raise CaptureError("Listing has no instrument number to open it by")
        site = self._require_site()

        self._enter(CaptureState.OPENING, instrument)
        handle = await site.open_viewer(instrument)
        progress.source_url = handle.url

        self._enter(CaptureState.PAGINATING, instrument)
        total = await self._page_count(site, handle)
        images = []
        for page_number in range(1, total + 1):
            images.append(await site.capture_image(handle, page_number))
            progress.pages = page_number
            if page_number < total:
                await site.next_page(handle)

        self._enter(CaptureState.EXTRACTING_TEXT, instrument)
        text = await self._in_thread(self.reader.text_from_images, images)

        self._enter(CaptureState.SUMMARIZING, instrument)
        return await self._in_thread(self.reader.summarize, text)

    async def _page_count(self, site: RecordsSite, handle: ViewerHandle) -> int:
        """Viewer page count clamped to [1, max_pages_per_document]; 1 when unknown."""
        try:
            total = int(await site.page_count(handle))
        except Exception as e:
            if is_session_lost(e):
                raise
            logger.warning("Page count failed for {}; assuming 1 page: {}", handle.instrument_number, e)
            return 1
        if total > self.config.max_pages_per_document:
            logger.warning(
                "{} reports {} pages; capping at {}",
                handle.instrument_number,
                total,
                self.config.max_pages_per_document,
            )
        return max(1, min(total, self.config.max_pages_per_document))

    async def _recover(self, query: SearchQuery, instrument: Optional[str]) -> bool:
        """Replace the dead session and replay the search. False if that fails too."""
        self._enter(CaptureState.RECOVERING, instrument)
        self.recoveries += 1
        logger.warning("Detected closed page/context. Recreating session and retrying {} once...", instrument)
        try:
            await self._close_site()
            await self._open_listing(query)
        except Exception as e:
            logger.error("Session recovery failed for {}: {}", instrument, e)
            # no usable session; the next document starts with its own recovery
            await self._close_site()
            return False
        return True

    async def _return_to_listing(self) -> None:
        """Back to the results table, then a randomized pause before the next document."""
        if self.site is not None and self.site.in_viewer:
            try:
                await self.site.go_back()
            except Exception as e:
                logger.warning("Navigating back to the listing failed: {}", e)
        low, high = self.config.inter_doc_delay_range
        await asyncio.sleep(random.uniform(low, high))  # noqa: S311

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _open_listing(self, query: SearchQuery) -> List[DocumentListing]:
        """Start a fresh site session and load the search results."""
        self.site = self.site_factory()
        await self.site.start()
        return await self.site.search(query)

    async def _close_site(self) -> None:
        site, self.site = self.site, None
        if site is None:
            return
        try:
            await site.close()
        except Exception as e:
            logger.debug("Closing stale site session failed: {}", e)

    def _require_site(self) -> RecordsSite:
        if self.site is None:
            raise SessionLostError("Session closed: no active site session")
        return self.site

    async def _in_thread(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))

    def _stop_requested(self) -> bool:
        return self.stop_event is not None and self.stop_event.is_set()

    def _enter(self, state: CaptureState, detail: Optional[str] = None) -> None:
        self.transitions.append((state, detail))
        logger.debug("capture -> {} {}", state.value, detail or "")

    @staticmethod
    def _record(progress: DocumentProgress, summary: Optional[str]) -> DocumentRecord:
        listing = progress.listing
        return DocumentRecord(
            instrument_number=listing.instrument_number,
            document_type=listing.document_type,
            grantor=listing.grantor,
            grantee=listing.grantee,
            filing_date=parse_date(listing.filing_date),
            book_and_page=listing.book_and_page,
            legal_description=listing.legal_description,
            summary=summary if summary is not None else SUMMARY_SENTINEL,
            source_url=progress.source_url,
            captured=summary is not None,
        )
