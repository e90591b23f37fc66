from __future__ import annotations

import asyncio
from datetime import date
from typing import Any

from loguru import logger

from config.settings import SUMMARY_SENTINEL, PipelineConfig
from src.models.capture import CaptureState, CaptureStatus, SearchQuery, ViewerHandle
from src.models.property import DocumentListing
from src.scrapers.base import ListingUnavailableError, TransientNetworkError
from src.services.capture_session import CaptureSessionManager
from src.utils.legal_description import parse_legal_description

CLOSED = "Target page, context or browser has been closed"

QUERY = SearchQuery(
    lot="8",
    block="N",
    subdivision="ST AUGUSTINE HIGHLANDS",
    city_block="6757",
    end_date=date(2025, 1, 1),
)

LISTINGS = [
    DocumentListing(
        instrument_number="202100001",
        document_type="WARRANTY DEED",
        grantor="DOE JANE",
        grantee="SMITH JOHN",
        filing_date="01/15/2021",
        legal_description="ST AUGUSTINE HIGHLANDS BLK N/6757 LOT 8",
        row_index=0,
    ),
    DocumentListing(
        instrument_number="202100002",
        document_type="DEED OF TRUST",
        filing_date="01/15/2021",
        legal_description="BLOCK N LOT 8",
        row_index=1,
    ),
    DocumentListing(
        instrument_number="202100003",
        document_type="WARRANTY DEED",
        legal_description="LOT 18 BLOCK N",
        row_index=2,
    ),
    DocumentListing(
        instrument_number="202200004",
        document_type="RELEASE OF LIEN",
        filing_date="03/02/2022",
        legal_description="LT 8 BLK N",
        row_index=3,
    ),
]


class _Script:
    """Shared state across every fake site the manager creates."""

    def __init__(
        self,
        listings: list[DocumentListing] | None = None,
        pages: dict[str, Any] | None = None,
        open_failures: dict[str, list[Exception]] | None = None,
        search_failures: dict[int, Exception] | None = None,
        render_failures: dict[str, list[Exception]] | None = None,
        capture_failures: dict[tuple[str, int], list[Exception]] | None = None,
    ) -> None:
        self.listings = LISTINGS if listings is None else listings
        self.pages = pages or {}
        self.open_failures = {k: list(v) for k, v in (open_failures or {}).items()}
        self.search_failures = search_failures or {}  # search call number -> error
        self.render_failures = {k: list(v) for k, v in (render_failures or {}).items()}
        self.capture_failures = {k: list(v) for k, v in (capture_failures or {}).items()}
        self.captured_pages: list[tuple[str, int]] = []
        self.sites: list[_FakeSite] = []
        self.searches: list[SearchQuery] = []
        self.opened: list[str] = []
        self.go_backs = 0

    def factory(self) -> "_FakeSite":
        site = _FakeSite(self)
        self.sites.append(site)
        return site


class _FakeSite:
    def __init__(self, script: _Script) -> None:
        self.script = script
        self.started = False
        self.closed = False
        self.in_viewer = False

    async def start(self) -> None:
        self.started = True

    async def close(self) -> None:
        self.closed = True

    async def search(self, query: SearchQuery) -> list[DocumentListing]:
        self.script.searches.append(query)
        self.in_viewer = False
        failure = self.script.search_failures.get(len(self.script.searches))
        if failure is not None:
            raise failure
        # row order shifts between searches; documents must be found by number
        return list(reversed(self.script.listings)) if len(self.script.searches) > 1 else list(self.script.listings)

    async def open_viewer(self, instrument_number: str) -> ViewerHandle:
        self.script.opened.append(instrument_number)
        if self.in_viewer:
            # the results table is not on the viewer page
            raise TimeoutError(f"Timeout waiting for row {instrument_number}")
        failures = self.script.open_failures.get(instrument_number)
        if failures:
            raise failures.pop(0)
        self.in_viewer = True
        failures = self.script.render_failures.get(instrument_number)
        if failures:
            raise failures.pop(0)
        return ViewerHandle(instrument_number, f"https://dallas.tx.publicsearch.us/doc/{instrument_number}")

    async def page_count(self, handle: ViewerHandle) -> int:
        count = self.script.pages.get(handle.instrument_number, 1)
        if isinstance(count, Exception):
            raise count
        if isinstance(count, float):
            await asyncio.sleep(count)
            return 1
        return count

    async def capture_image(self, handle: ViewerHandle, page_number: int) -> bytes:
        failures = self.script.capture_failures.get((handle.instrument_number, page_number))
        if failures:
            raise failures.pop(0)
        self.script.captured_pages.append((handle.instrument_number, page_number))
        return f"{handle.instrument_number}-p{page_number}".encode()

    async def next_page(self, handle: ViewerHandle) -> None:
        return None

    async def go_back(self) -> None:
        self.script.go_backs += 1
        self.in_viewer = False


class _FakeReader:
    def __init__(self, summarize_errors: dict[str, Exception] | None = None) -> None:
        self.batches: list[list[bytes]] = []
        self.summarize_errors = summarize_errors or {}

    def text_from_images(self, images: list[bytes]) -> str:
        self.batches.append(list(images))
        return " ".join(image.decode() for image in images)

    def summarize(self, text: str) -> str:
        for instrument, error in self.summarize_errors.items():
            if text.startswith(instrument):
                raise error
        return f"summary: {text}"


def _config(**overrides: Any) -> PipelineConfig:
    values: dict[str, Any] = {"inter_doc_delay_range": (0.0, 0.0), "session_timeout_ms": 5000}
    values.update(overrides)
    return PipelineConfig(**values)


def _run(script: _Script, reader: _FakeReader | None = None, **kwargs: Any):
    config = kwargs.pop("config", None) or _config()
    manager = CaptureSessionManager(script.factory, reader or _FakeReader(), config, **kwargs)
    return manager, asyncio.run(manager.run(QUERY))


def test_all_matched_documents_are_captured_in_order() -> None:
    script = _Script()
    reader = _FakeReader()
    manager, result = _run(script, reader)

    assert result.status is CaptureStatus.DONE
    assert result.listing_count == 4
    assert [d.instrument_number for d in result.documents] == ["202100001", "202100002", "202200004"]
    assert all(d.captured for d in result.documents)
    assert result.documents[0].summary == "summary: 202100001-p1"
    assert result.documents[0].filing_date == date(2021, 1, 15)
    assert result.documents[0].source_url == "https://dallas.tx.publicsearch.us/doc/202100001"
    assert result.recoveries == 0
    assert len(script.sites) == 1
    assert script.sites[0].closed is True
    assert script.go_backs == 2
    assert manager.transitions[0] == (CaptureState.SEARCHING, None)
    assert manager.transitions[-1] == (CaptureState.DONE, None)


def test_session_lost_on_second_document_recovers_once() -> None:
    script = _Script(open_failures={"202100002": [RuntimeError(CLOSED)]})
    manager, result = _run(script)

    assert result.status is CaptureStatus.DONE
    assert len(result.documents) == 3
    assert all(d.captured for d in result.documents)
    assert result.recoveries == 1
    # the replayed search returns rows in a different order; the document is reopened by number
    assert script.opened == ["202100001", "202100002", "202100002", "202200004"]
    assert script.searches == [QUERY, QUERY]
    assert len(script.sites) == 2
    assert script.sites[0].closed is True
    states = [state for state, _ in manager.transitions]
    assert states.count(CaptureState.SESSION_LOST) == 1
    assert states.count(CaptureState.RECOVERING) == 1


def test_failed_retry_records_sentinel_and_batch_continues() -> None:
    script = _Script(open_failures={"202100002": [RuntimeError(CLOSED), RuntimeError("Session closed")]})
    _, result = _run(script)

    assert len(result.documents) == 3
    failed = result.documents[1]
    assert failed.instrument_number == "202100002"
    assert failed.summary == SUMMARY_SENTINEL
    assert failed.captured is False
    assert failed.source_url is None
    assert result.documents[2].captured is True
    assert result.recoveries == 1
    assert script.opened.count("202100002") == 2


def test_failed_recovery_search_leaves_next_document_its_own_recovery() -> None:
    script = _Script(
        open_failures={"202100002": [RuntimeError(CLOSED)]},
        search_failures={2: ListingUnavailableError("No search results rendered")},
    )
    _, result = _run(script)

    assert result.status is CaptureStatus.DONE
    assert [d.captured for d in result.documents] == [True, False, True]
    assert result.recoveries == 2
    assert len(script.searches) == 3
    assert len(script.sites) == 3


def test_transient_error_is_not_retried() -> None:
    script = _Script(open_failures={"202100002": [TimeoutError("Timeout 60000ms exceeded")]})
    _, result = _run(script)

    assert [d.captured for d in result.documents] == [True, False, True]
    assert result.recoveries == 0
    assert len(script.sites) == 1
    assert script.opened.count("202100002") == 1


def test_summarize_failure_becomes_sentinel() -> None:
    reader = _FakeReader(summarize_errors={"202100001": TransientNetworkError("Gemini request failed")})
    script = _Script()
    _, result = _run(script, reader)

    assert result.documents[0].summary == SUMMARY_SENTINEL
    assert result.documents[0].source_url == "https://dallas.tx.publicsearch.us/doc/202100001"
    assert result.documents[1].captured is True


def test_listing_unavailable_fails_the_run() -> None:
    script = _Script(search_failures={1: ListingUnavailableError("No search results rendered")})
    manager, result = _run(script)

    assert result.status is CaptureStatus.FAILED
    assert result.documents == []
    assert "No search results rendered" in result.error_details
    assert result.search_url == QUERY.to_url()
    assert script.sites[0].closed is True
    assert manager.transitions[-1][0] is CaptureState.FAILED


def test_all_pages_go_into_one_ocr_batch() -> None:
    script = _Script(pages={"202100001": 3})
    reader = _FakeReader()
    _run(script, reader)

    assert reader.batches[0] == [b"202100001-p1", b"202100001-p2", b"202100001-p3"]
    assert len(reader.batches) == 3


def test_page_count_is_capped_and_defaults_to_one() -> None:
    script = _Script(pages={"202100001": 500, "202100002": RuntimeError("page count text not found")})
    reader = _FakeReader()
    _run(script, reader, config=_config(max_pages_per_document=2))

    assert len(reader.batches[0]) == 2
    assert len(reader.batches[1]) == 1


def test_listing_without_instrument_number_gets_sentinel() -> None:
    listings = [
        DocumentListing(instrument_number=None, legal_description="LOT 8 BLOCK N"),
        DocumentListing(instrument_number="202100001", legal_description="LOT 8 BLOCK N"),
    ]
    script = _Script(listings=listings)
    _, result = _run(script)

    assert [d.captured for d in result.documents] == [False, True]
    assert script.go_backs == 0


def test_stop_before_documents_keeps_one_record_per_document() -> None:
    script = _Script()
    stop = asyncio.Event()
    stop.set()
    _, result = _run(script, stop_event=stop)

    assert result.cancelled is True
    assert len(result.documents) == 3
    assert not any(d.captured for d in result.documents)
    assert script.opened == []


def test_build_query_from_legal_description() -> None:
    manager = CaptureSessionManager(_Script().factory, _FakeReader(), _config())
    query = manager.build_query(parse_legal_description("ST AUGUSTINE HIGHLANDS\nBLK N/6757\nLT 8"))

    assert (query.lot, query.block, query.subdivision, query.city_block) == (
        "8",
        "N",
        "ST AUGUSTINE HIGHLANDS",
        "6757",
    )
    assert query.start_date == date(2000, 1, 1)


def test_viewer_render_timeout_still_returns_to_listing() -> None:
    script = _Script(render_failures={"202100002": [TimeoutError("Timeout 60000ms exceeded waiting for svg image")]})
    _, result = _run(script)

    assert [d.captured for d in result.documents] == [True, False, True]
    assert result.documents[1].source_url is None
    assert script.go_backs == 2
    assert result.recoveries == 0
    assert len(script.sites) == 1


def test_session_lost_mid_pagination_restarts_from_page_one() -> None:
    script = _Script(
        pages={"202100001": 3},
        capture_failures={("202100001", 2): [RuntimeError(CLOSED)]},
    )
    reader = _FakeReader()
    _, result = _run(script, reader)

    assert result.recoveries == 1
    assert all(d.captured for d in result.documents)
    assert [p for p in script.captured_pages if p[0] == "202100001"] == [
        ("202100001", 1),
        ("202100001", 1),
        ("202100001", 2),
        ("202100001", 3),
    ]
    assert reader.batches[0] == [b"202100001-p1", b"202100001-p2", b"202100001-p3"]
    assert len(reader.batches) == 3


def test_document_exceeding_session_timeout_gets_sentinel_without_recovery() -> None:
    script = _Script(pages={"202100002": 30.0})
    _, result = _run(script, config=_config(session_timeout_ms=500))

    assert [d.captured for d in result.documents] == [True, False, True]
    assert result.documents[1].summary == SUMMARY_SENTINEL
    assert result.recoveries == 0
    assert len(script.sites) == 1
    assert script.go_backs == 2


def test_failure_log_reports_pages_captured() -> None:
    messages: list[str] = []
    sink_id = logger.add(lambda m: messages.append(m.record["message"]), level="ERROR")
    try:
        _, result = _run(_Script(pages={"202100001": 3}, capture_failures={("202100001", 3): [ValueError("bad image")]}))
    finally:
        logger.remove(sink_id)

    assert result.documents[0].captured is False
    assert any("202100001 (OTHER, 2 pages captured)" in m for m in messages)
