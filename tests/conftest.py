from __future__ import annotations

from typing import Callable

import pytest

from src.models.property import (
    AssessmentRecord,
    CurrentOwner,
    ExemptionEntry,
    MarketValueEntry,
    OwnershipHistoryEntry,
    PropertyDetails,
    PropertyValue,
)


def _history(year: str, block: str, int_number: str | None = None, deed: str | None = None) -> OwnershipHistoryEntry:
    return OwnershipHistoryEntry(year=year, owner_name_and_address=block, int_number=int_number, deed_xfer_date=deed)


def build_record(**overrides) -> AssessmentRecord:
    john = "JOHN SMITH & ET AL\n9920 GULF PALM DR\nDALLAS, TEXAS 75238"
    jane = "JANE DOE\n412 ELM ST\nDALLAS, TEXAS 75201"
    data = dict(
        account_number="00000776533000000",
        address="9920 GULF PALM DR",
        legal_description="ST AUGUSTINE HIGHLANDS\nBLK N/6757\nLT 8\nINT202000012345 DD01152020",
        int_number="INT202000012345",
        deed_xfer_date="1/15/2020",
        property_value=PropertyValue(
            improvement_value="$150,000", land_value="$40,000", total_market_value="$190,000"
        ),
        property_details=PropertyDetails(year_built="1985", living_area="1,450 sqft"),
        current_owners=[
            CurrentOwner(name="JOHN SMITH", address="9920 GULF PALM DR", percentage="100%", is_primary=True)
        ],
        ownership_history=[
            _history("2024", john, "INT202000012345", "01/15/2020"),
            _history("2023", john, "INT202000012345", "01/15/2020"),
            _history("2022", john, "INT202000012345", "01/15/2020"),
            _history("2021", john, "INT202000012345", "01/15/2020"),
            _history("2020", john, "INT202000012345", "01/15/2020"),
            _history("2019", jane, "INT201500099999", "06/01/2015"),
            _history("2018", jane, "INT201500099999", "06/01/2015"),
            _history("2017", jane),
            _history("2016", jane),
            _history("2015", jane, "DD06012015"),
        ],
        market_value_history=[
            MarketValueEntry(year="2024", total_market_value="$190,000"),
            MarketValueEntry(year="2023", total_market_value="$180,000"),
            MarketValueEntry(year="2023", total_market_value="$1"),
            MarketValueEntry(year="N/A", total_market_value="$5"),
        ],
        exemptions=[
            ExemptionEntry(year="2024", code="HS"),
            ExemptionEntry(year="2023", code="HS"),
            ExemptionEntry(year="2021", code="HS"),
            ExemptionEntry(year="2024", code="OV65"),
            ExemptionEntry(year="2022", code=""),
        ],
        cad_url="https://www.dallascad.org/AcctDetailRes.aspx?ID=00000776533000000",
    )
    data.update(overrides)
    return AssessmentRecord(**data)


@pytest.fixture()
def make_record() -> Callable[..., AssessmentRecord]:
    """Factory for a realistic DCAD assessment; keyword overrides replace fields."""
    return build_record
