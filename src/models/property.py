from datetime import date
from typing import List, Optional
from pydantic import BaseModel, Field


# --- Assessment extraction payloads (appraisal district pages) ---

class PropertyValue(BaseModel):
    improvement_value: Optional[str] = None
    land_value: Optional[str] = None
    total_market_value: Optional[str] = None

class PropertyDetails(BaseModel):
    year_built: Optional[str] = None
    living_area: Optional[str] = None

class CurrentOwner(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None
    percentage: Optional[str] = None
    is_primary: Optional[bool] = Field(
        default=None,
        description="True only for the owner listed under the main 'Owner' heading",
    )

class OwnershipHistoryEntry(BaseModel):
    year: Optional[str] = None
    owner_name_and_address: Optional[str] = Field(
        default=None, description="The full text block containing the owner's name and address"
    )
    int_number: Optional[str] = Field(
        default=None, description="The line starting with 'INT' from the 'Legal Description' column"
    )
    deed_xfer_date: Optional[str] = Field(
        default=None, description="The date from the 'Deed Transfer Date' line"
    )

    @property
    def owner_name(self) -> Optional[str]:
        """First line of the name/address block."""
        lines = (self.owner_name_and_address or "").split("\n")
        name = lines[0].strip() if lines else ""
        return name or None

    @property
    def owner_address(self) -> Optional[str]:
        lines = (self.owner_name_and_address or "").split("\n")
        address = " ".join(line.strip() for line in lines[1:] if line.strip())
        return address or None

class MarketValueEntry(BaseModel):
    year: Optional[str] = None
    total_market_value: Optional[str] = None

class ExemptionEntry(BaseModel):
    year: Optional[str] = None
    code: Optional[str] = None


class MainPageExtraction(BaseModel):
    """Fields read from the property detail page."""
    address: Optional[str] = None
    account_number: Optional[str] = None
    legal_description: Optional[str] = Field(
        default=None, description="The full, multi-line text from the 'Legal Desc (Current)' section"
    )
    int_number: Optional[str] = Field(
        default=None, description="The line starting with 'INT' from the 'Legal Desc (Current)' section"
    )
    deed_xfer_date: Optional[str] = Field(
        default=None, description="The date from the 'Deed Transfer Date' line"
    )
    property_value: Optional[PropertyValue] = None
    property_details: Optional[PropertyDetails] = None
    current_owners: List[CurrentOwner] = Field(default_factory=list)

class OwnershipHistoryExtraction(BaseModel):
    ownership_history: List[OwnershipHistoryEntry] = Field(default_factory=list)

class MarketValueExtraction(BaseModel):
    market_value_history: List[MarketValueEntry] = Field(default_factory=list)

class ExemptionExtraction(BaseModel):
    exemptions: List[ExemptionEntry] = Field(default_factory=list)


class AssessmentRecord(MainPageExtraction):
    """Everything the appraisal district shows for one account."""
    ownership_history: List[OwnershipHistoryEntry] = Field(default_factory=list)
    market_value_history: List[MarketValueEntry] = Field(default_factory=list)
    exemptions: List[ExemptionEntry] = Field(default_factory=list)
    cad_url: Optional[str] = None


# --- Normalized records handed to the persistence gateway ---

class PropertyRecord(BaseModel):
    account_number: str
    address: Optional[str] = None
    improvement_value: Optional[float] = None
    land_value: Optional[float] = None
    total_market_value: Optional[float] = None
    year_built: Optional[int] = None
    living_area: Optional[float] = None
    cad_url: Optional[str] = None
    clerk_search_url: Optional[str] = None
    subdivision: Optional[str] = None
    block: Optional[str] = None
    city_block: Optional[str] = None
    lot1: Optional[str] = None
    lot2: Optional[str] = None

class OwnerRecord(BaseModel):
    owner_name: str  # raw name, the upsert key
    normalized_name: str
    owner_address: Optional[str] = None

class OwnershipInterval(BaseModel):
    owner_name: str  # raw name of the resolved owner
    start_year: int
    end_year: int
    int_number: Optional[str] = None
    deed_xfer_date: Optional[str] = None
    ownership_percentage: Optional[float] = None
    is_primary_owner: bool = False

class ExemptionInterval(BaseModel):
    code: str
    start_year: int
    end_year: int

class ValueSnapshot(BaseModel):
    year: int
    total_market_value: Optional[float] = None

class AssessmentBundle(BaseModel):
    """One property's normalized assessment rows, written together."""
    property: PropertyRecord
    owners: List[OwnerRecord] = Field(default_factory=list)
    ownership: List[OwnershipInterval] = Field(default_factory=list)
    exemptions: List[ExemptionInterval] = Field(default_factory=list)
    values: List[ValueSnapshot] = Field(default_factory=list)


# --- Clerk documents ---

class DocumentListing(BaseModel):
    """One row of the clerk search results table."""
    instrument_number: Optional[str] = None
    document_type: Optional[str] = None
    grantor: Optional[str] = None
    grantee: Optional[str] = None
    filing_date: Optional[str] = None
    book_and_page: Optional[str] = None
    legal_description: Optional[str] = None
    row_index: Optional[int] = None  # position in the listing when it was read

class DocumentRecord(BaseModel):
    instrument_number: Optional[str] = None
    document_type: Optional[str] = None
    grantor: Optional[str] = None
    grantee: Optional[str] = None
    filing_date: Optional[date] = None
    book_and_page: Optional[str] = None
    legal_description: Optional[str] = None
    summary: str
    source_url: Optional[str] = None
    captured: bool = False  # False when summary is the sentinel


class PropertyTarget(BaseModel):
    address_number: str = Field(alias="addressNumber")
    street_name: str = Field(alias="streetName")

    model_config = {"populate_by_name": True}

    @property
    def label(self) -> str:
        return f"{self.address_number} {self.street_name}"
