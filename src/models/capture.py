from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import List, Optional
from urllib.parse import urlencode

from pydantic import BaseModel, Field

from config.settings import CLERK_RESULTS_URL
from src.models.property import DocumentRecord
from src.utils.time import compact_date


class CaptureState(Enum):
    SEARCHING = "SEARCHING"
    FILTERING = "FILTERING"
    OPENING = "OPENING"
    PAGINATING = "PAGINATING"
    EXTRACTING_TEXT = "EXTRACTING_TEXT"
    SUMMARIZING = "SUMMARIZING"
    RECORDED = "RECORDED"
    SESSION_LOST = "SESSION_LOST"
    RECOVERING = "RECOVERING"
    DONE = "DONE"
    FAILED = "FAILED"


class CaptureStatus(Enum):
    DONE = "DONE"        # Listing rendered; one record per matched document
    FAILED = "FAILED"    # Listing never rendered; nothing captured


@dataclass(frozen=True)
class SearchQuery:
    """Deterministic clerk search: same target + same end date -> same URL."""
    lot: str
    block: str
    subdivision: str = ""
    city_block: str = ""
    start_date: date = date(2000, 1, 1)
    end_date: date = field(default_factory=date.today)

    def to_url(self, base_url: str = CLERK_RESULTS_URL) -> str:
        params = {
            "department": "RP",
            "searchType": "advancedSearch",
            "recordedDateRange": f"{compact_date(self.start_date)},{compact_date(self.end_date)}",
            "lot": self.lot,
            "block": self.block,
            "block2": self.city_block,
            "legalDescription": self.subdivision,
        }
        return f"{base_url}?{urlencode(params)}"


@dataclass
class ViewerHandle:
    instrument_number: str
    url: str


class CaptureResult(BaseModel):
    status: CaptureStatus
    documents: List[DocumentRecord] = Field(default_factory=list)
    listing_count: int = 0  # rows before filtering
    search_url: Optional[str] = None
    recoveries: int = 0
    cancelled: bool = False  # stop requested before every document was processed
    message: str = ""  # Human readable explanation
    error_details: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.now)

    @property
    def ok(self) -> bool:
        return self.status is CaptureStatus.DONE
