"""
Dallas Central Appraisal District (DCAD) scraper.

Flow: address search form -> matching address link -> account detail page
-> History page. Field extraction is delegated to the vision service,
which reads the rendered page text and answers with JSON that matches the
pydantic extraction schemas.
"""
import asyncio
import random
from typing import Optional, Type, TypeVar

from loguru import logger
from playwright.async_api import Page
from pydantic import BaseModel

from config.settings import CAD_SEARCH_URL, PipelineConfig
from src.models.property import (
    AssessmentRecord,
    ExemptionExtraction,
    MainPageExtraction,
    MarketValueExtraction,
    OwnershipHistoryExtraction,
)
from src.scrapers.base import BrowserSession, CaptureError
from src.services.vision_service import VisionService

M = TypeVar("M", bound=BaseModel)

MAIN_PAGE_INSTRUCTION = """
From the property details page, extract the address, account number, property
value, property details, and a list of ALL current owners. For each owner, get
their name, address, and ownership percentage. Also, from the "Legal Desc
(Current)" section, extract the full, multi-line legal description text, the
INT number (the line starting with INT), and the Deed Transfer Date.
"""

OWNERSHIP_INSTRUCTION = """
From the history page, extract the ownership history table. For each row, get
the year, the full owner name and address, the INT number (line starting with
INT), and the Deed Transfer Date.
"""

MARKET_VALUE_INSTRUCTION = "From the history page, extract the market value history table."

EXEMPTION_INSTRUCTION = "From the history page, extract the exemptions table with the year and code for each entry."


class AssessmentNotFoundError(CaptureError):
    """The address search did not lead to an account page."""


class DallasCADScraper:
    ADDRESS_NUMBER_INPUT = "#txtAddrNum"
    STREET_NAME_INPUT = "#txtStName"
    SEARCH_BUTTON = "#cmdSubmit"
    HISTORY_LINK = "a:has-text('History')"

    def __init__(self, config: PipelineConfig, vision: VisionService, search_url: str = CAD_SEARCH_URL):
        self.config = config
        self.vision = vision
        self.search_url = search_url

    async def fetch_assessment(self, address_number: str, street_name: str) -> AssessmentRecord:
        """
        Search DCAD by address and extract everything on the account and
        history pages.

        Raises:
            AssessmentNotFoundError: no address link matched the search.
            TransientNetworkError: the extraction service could not be reached.
        """
        async with BrowserSession(self.config) as page:
            cad_url = await self._open_account_page(page, address_number, street_name)

            main = await self._extract(page, MAIN_PAGE_INSTRUCTION, MainPageExtraction)
            logger.info(
                "DCAD main page for {} {}: account={} owners={}",
                address_number,
                street_name,
                main.account_number,
                len(main.current_owners),
            )

            await page.locator(self.HISTORY_LINK).first.click()
            await page.wait_for_load_state("domcontentloaded")

            ownership = await self._extract(page, OWNERSHIP_INSTRUCTION, OwnershipHistoryExtraction)
            values = await self._extract(page, MARKET_VALUE_INSTRUCTION, MarketValueExtraction)
            exemptions = await self._extract(page, EXEMPTION_INSTRUCTION, ExemptionExtraction)

        return AssessmentRecord(
            **main.model_dump(),
            ownership_history=ownership.ownership_history,
            market_value_history=values.market_value_history,
            exemptions=exemptions.exemptions,
            cad_url=cad_url,
        )

    async def _open_account_page(self, page: Page, address_number: str, street_name: str) -> str:
        logger.info("Searching DCAD for {} {}", address_number, street_name)
        await page.goto(self.search_url, wait_until="domcontentloaded")
        await page.fill(self.ADDRESS_NUMBER_INPUT, address_number)
        await asyncio.sleep(random.uniform(0.5, 1.5))  # noqa: S311
        await page.fill(self.STREET_NAME_INPUT, street_name)
        await page.click(self.SEARCH_BUTTON)
        await page.wait_for_load_state("domcontentloaded")

        link = page.locator("a", has_text=street_name.upper()).first
        if not await link.count():
            raise AssessmentNotFoundError(f"No DCAD result for {address_number} {street_name}")
        await link.click()
        await page.wait_for_load_state("domcontentloaded")
        return page.url

    async def _extract(self, page: Page, instruction: str, schema: Type[M]) -> M:
        text: Optional[str] = await page.inner_text("body")
        return await self.vision.process_async(
            self.vision.extract_structured, instruction, schema, context_text=text
        )
