"""
Pipeline orchestrator - one pass over a batch of Dallas property targets.

Per property, in order:
    1. assessment extraction (DCAD)
    2. legal description parsing
    3. assessment persistence (property, owners, intervals, values)
    4. clerk document capture, only when lot and block were parsed
    5. document persistence

A failure in any stage ends that property's run; the batch always moves on
to the next target.
"""
import asyncio
import functools
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Protocol

from loguru import logger

from config.settings import PipelineConfig
from src.db.operations import PersistenceError, RecordStore
from src.models.capture import CaptureStatus
from src.models.property import AssessmentRecord, PropertyTarget
from src.services.capture_session import CaptureSessionManager, DocumentReader, SiteFactory
from src.services.property_builder import build_assessment_bundle
from src.utils.legal_description import parse_legal_description
from src.utils.logging_utils import Timer


class AssessmentSource(Protocol):
    async def fetch_assessment(self, address_number: str, street_name: str) -> AssessmentRecord: ...


@dataclass(slots=True)
class PropertyRunResult:
    target: str
    account_number: str | None = None
    stage: str = "pending"
    assessment_saved: bool = False
    capture_status: CaptureStatus | None = None
    capture_skipped: str | None = None
    documents: int = 0
    documents_summarized: int = 0
    recoveries: int = 0
    duration_ms: float = 0.0
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def status(self) -> str:
        if self.errors:
            return "failed"
        if self.stage == "stopped":
            return "stopped"
        if self.capture_skipped:
            return "skipped_capture"
        return "completed"


class PipelineOrchestrator:
    """
    Sequences the per-property stages and isolates failures per property.

    Properties run one at a time unless config.max_concurrent_properties is
    raised; each property always gets its own capture session.
    """

    def __init__(
        self,
        config: PipelineConfig,
        store: RecordStore,
        assessment_source: AssessmentSource,
        site_factory: SiteFactory,
        reader: DocumentReader,
    ):
        self.config = config
        self.store = store
        self.assessment_source = assessment_source
        self.site_factory = site_factory
        self.reader = reader
        self.property_semaphore = asyncio.Semaphore(config.max_concurrent_properties)
        self._stop = asyncio.Event()

    def request_stop(self) -> None:
        """Finish the document in progress, then stop the whole run."""
        if not self._stop.is_set():
            logger.warning("Stop requested; finishing current document")
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    async def run(self, targets: Iterable[PropertyTarget]) -> List[PropertyRunResult]:
        targets = list(targets)
        logger.info("Starting run for {} properties", len(targets))
        with Timer() as timer:
            if self.config.max_concurrent_properties == 1:
                results = [await self._process_property_safe(t) for t in targets]
            else:
                async with asyncio.TaskGroup() as tg:
                    tasks = [tg.create_task(self._process_property_safe(t)) for t in targets]
                results = [task.result() for task in tasks]
        self._log_summary(results, timer.elapsed_ms)
        return results

    async def _process_property_safe(self, target: PropertyTarget) -> PropertyRunResult:
        """Wrapper to handle semaphore and errors for a single property."""
        result = PropertyRunResult(target=target.label)
        async with self.property_semaphore:
            if self.stopping:
                result.stage = "stopped"
                return result
            with Timer() as timer:
                try:
                    await self._process_property(target, result)
                except Exception as e:
                    logger.exception("Property {} failed during {}: {}", target.label, result.stage, e)
                    result.errors.append(f"{result.stage}: {e}")
            result.duration_ms = timer.elapsed_ms
        return result

    async def _process_property(self, target: PropertyTarget, result: PropertyRunResult) -> None:
        log = logger.bind(target=target.label)
        log.info("--- Processing property: {} ---", target.label)

        result.stage = "assessment"
        record = await self.assessment_source.fetch_assessment(target.address_number, target.street_name)
        legal = parse_legal_description(record.legal_description)
        bundle = build_assessment_bundle(record, legal)
        account = result.account_number = bundle.property.account_number

        result.stage = "persist_assessment"
        try:
            await self._in_thread(self.store.save_assessment, bundle)
        except PersistenceError as e:
            log.error("Skipping remaining stages for {}: {}", account, e)
            result.errors.append(f"persist_assessment: {e}")
            return
        result.assessment_saved = True

        if not legal.has_lot_and_block:
            result.stage = "done"
            result.capture_skipped = "no lot/block in legal description"
            log.info("Skipping clerk capture for {}: missing lot/block", account)
            return

        result.stage = "capture"
        manager = CaptureSessionManager(self.site_factory, self.reader, self.config, stop_event=self._stop)
        capture = await manager.run(legal)
        result.capture_status = capture.status
        result.recoveries = capture.recoveries
        if not capture.ok:
            result.errors.append(f"capture: {capture.message} ({capture.error_details})")
            return
        result.documents = len(capture.documents)
        result.documents_summarized = sum(1 for doc in capture.documents if doc.captured)
        if capture.cancelled:
            log.warning("Capture for {} was stopped early; stored documents left unchanged", account)
            result.stage = "stopped"
            return

        result.stage = "persist_documents"
        try:
            await self._in_thread(
                self.store.save_documents, account, capture.documents, search_url=capture.search_url
            )
        except PersistenceError as e:
            result.errors.append(f"persist_documents: {e}")
            return
        result.stage = "done"

    async def _in_thread(self, func, *args, **kwargs):
        """Run a blocking store call in the default thread pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))

    @staticmethod
    def _log_summary(results: List[PropertyRunResult], elapsed_ms: Optional[float]) -> None:
        succeeded = sum(1 for r in results if r.ok and r.stage == "done")
        failed = [r for r in results if not r.ok]
        skipped_capture = sum(1 for r in results if r.capture_skipped)
        documents = sum(r.documents for r in results)
        logger.info(
            "Run complete: {} properties, {} succeeded, {} failed, {} without capture, {} documents ({:.0f} ms)",
            len(results),
            succeeded,
            len(failed),
            skipped_capture,
            documents,
            elapsed_ms or 0.0,
        )
        for r in failed:
            logger.warning("  {}: {}", r.target, "; ".join(r.errors))
