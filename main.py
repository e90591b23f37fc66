"""
Main entry point for the Dallas property records pipeline.

Usage:
  python main.py --address "9920 Gulf Palm" [--address ...]
  python main.py --targets-file targets.json   # [{"addressNumber": "...", "streetName": "..."}]
  python main.py --clear-db                    # delete all stored rows
  python main.py --init-db                     # create missing tables
"""
import argparse
import asyncio
import json
import logging
import signal
import sys
from dataclasses import replace
from pathlib import Path
from typing import List

from dotenv import load_dotenv
from loguru import logger

from config.settings import PipelineConfig
from src.db.operations import PersistenceError, RecordStore
from src.models.property import PropertyTarget
from src.orchestrator import PipelineOrchestrator
from src.scrapers.clerk_scraper import ClerkRecordsSite
from src.scrapers.dallas_cad_scraper import DallasCADScraper
from src.services.vision_service import VisionService
from src.utils.logging_config import configure_logger
from src.utils.logging_utils import add_optional_sinks, env_log_level


class InterceptHandler(logging.Handler):
    """Intercept standard logging and redirect to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        # Get corresponding Loguru level if it exists
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where originated the logged message
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def setup_logging(level: str) -> None:
    configure_logger(level=level)
    add_optional_sinks()
    # Intercept standard logging (Playwright, urllib3, SQLAlchemy) and route to loguru
    logging.basicConfig(handlers=[InterceptHandler()], level=logging.INFO, force=True)
    for logger_name in ["playwright", "urllib3", "asyncio", "sqlalchemy"]:
        logging.getLogger(logger_name).handlers = [InterceptHandler()]
        logging.getLogger(logger_name).propagate = False


def parse_address(value: str) -> PropertyTarget:
    """'9920 Gulf Palm' -> addressNumber '9920', streetName 'Gulf Palm'."""
    number, _, street = value.strip().partition(" ")
    if not number or not street.strip():
        raise argparse.ArgumentTypeError(f"Expected '<number> <street name>', got {value!r}")
    return PropertyTarget(address_number=number, street_name=street.strip())


def load_targets(path: Path) -> List[PropertyTarget]:
    data = json.loads(path.read_text(encoding="utf-8"))
    return [PropertyTarget.model_validate(item) for item in data]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Dallas property records pipeline")
    parser.add_argument("--address", action="append", type=parse_address, default=[],
                        help="Target address, e.g. '9920 Gulf Palm' (repeatable)")
    parser.add_argument("--targets-file", type=Path, help="JSON list of {addressNumber, streetName}")
    parser.add_argument("--dsn", help="SQLAlchemy database URL (overrides RECORDS_DB_DSN)")
    parser.add_argument("--log-level", default=None, help="Log level (default: LOG_LEVEL env or INFO)")
    parser.add_argument("--headed", action="store_true", help="Show the browser window")
    parser.add_argument("--workers", type=int, default=None, help="Properties processed concurrently")
    parser.add_argument("--clear-db", action="store_true", help="Delete all stored rows and exit")
    parser.add_argument("--init-db", action="store_true", help="Create missing tables before running")
    return parser


async def run_pipeline(config: PipelineConfig, store: RecordStore, targets: List[PropertyTarget]) -> int:
    vision = VisionService(config)
    orchestrator = PipelineOrchestrator(
        config=config,
        store=store,
        assessment_source=DallasCADScraper(config, vision),
        site_factory=lambda: ClerkRecordsSite(config),
        reader=vision,
    )

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, orchestrator.request_stop)
    except NotImplementedError:
        logger.debug("Signal handlers not supported on this platform")

    results = await orchestrator.run(targets)
    return 0 if all(r.ok for r in results) else 2


def main(argv: List[str] | None = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level.upper() if args.log_level else env_log_level())

    config = PipelineConfig.from_env()
    overrides = {}
    if args.dsn:
        overrides["dsn"] = args.dsn
    if args.headed:
        overrides["headless"] = False
    if args.workers:
        overrides["max_concurrent_properties"] = args.workers
    config = replace(config, **overrides)

    try:
        store = RecordStore(config.dsn, create_schema=args.init_db)
    except PersistenceError as e:
        logger.error("Database unavailable: {}", e)
        return 1

    if args.clear_db:
        logger.info("Clearing all data from the database...")
        store.clear_all()
        logger.success("Database cleared")
        return 0

    targets = list(args.address)
    if args.targets_file:
        targets.extend(load_targets(args.targets_file))
    if not targets:
        logger.error("No targets given; use --address or --targets-file")
        return 1

    missing = config.validate()
    if missing:
        logger.error("Missing required settings: {}", ", ".join(missing))
        return 1

    return asyncio.run(run_pipeline(config, store, targets))


if __name__ == "__main__":
    sys.exit(main())
