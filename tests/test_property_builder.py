from __future__ import annotations

import pytest

from src.models.property import AssessmentRecord, OwnershipHistoryEntry
from src.services.property_builder import (
    build_assessment_bundle,
    build_exemption_intervals,
    build_value_snapshots,
)
from src.utils.legal_description import parse_legal_description


def test_property_record_values_are_normalized(make_record) -> None:
    record = make_record()
    bundle = build_assessment_bundle(record, parse_legal_description(record.legal_description), year=2025)
    prop = bundle.property

    assert prop.account_number == "00000776533000000"
    assert prop.improvement_value == 150000.0
    assert prop.land_value == 40000.0
    assert prop.total_market_value == 190000.0
    assert prop.year_built == 1985
    assert prop.living_area == 1450.0
    assert (prop.subdivision, prop.block, prop.city_block, prop.lot1, prop.lot2) == (
        "ST AUGUSTINE HIGHLANDS",
        "N",
        "6757",
        "8",
        None,
    )
    assert prop.clerk_search_url is None


def test_owners_merge_and_ownership_is_compacted(make_record) -> None:
    record = make_record()
    bundle = build_assessment_bundle(record, parse_legal_description(record.legal_description), year=2025)

    assert [o.owner_name for o in bundle.owners] == ["JOHN SMITH", "JANE DOE"]
    john, jane = bundle.ownership
    assert (john.owner_name, john.start_year, john.end_year) == ("JOHN SMITH", 2020, 2025)
    assert john.int_number == "INT202000012345"
    assert john.deed_xfer_date == "2020-01-15"
    assert john.ownership_percentage == 100.0
    assert john.is_primary_owner is True

    assert (jane.owner_name, jane.start_year, jane.end_year) == ("JANE DOE", 2015, 2019)
    assert jane.int_number == "INT201500099999"
    assert jane.deed_xfer_date == "2015-06-01"
    assert jane.ownership_percentage is None
    assert jane.is_primary_owner is False


def test_current_owner_attributes_only_on_interval_with_current_year(make_record) -> None:
    record = make_record(
        ownership_history=[
            OwnershipHistoryEntry(year="2018", owner_name_and_address="JOHN SMITH"),
            OwnershipHistoryEntry(year="2017", owner_name_and_address="JOHN SMITH"),
            OwnershipHistoryEntry(year="2024", owner_name_and_address="JOHN SMITH"),
        ]
    )
    bundle = build_assessment_bundle(record, parse_legal_description(record.legal_description), year=2025)

    spans = [(i.start_year, i.end_year, i.is_primary_owner) for i in bundle.ownership]
    assert spans == [(2024, 2025, True), (2017, 2018, False)]


def test_exemptions_are_compacted_per_code(make_record) -> None:
    intervals = build_exemption_intervals(make_record())

    assert [(i.code, i.start_year, i.end_year) for i in intervals] == [
        ("HS", 2023, 2024),
        ("HS", 2021, 2021),
        ("OV65", 2024, 2024),
    ]


def test_value_snapshots_one_per_year(make_record) -> None:
    snapshots = build_value_snapshots(make_record())

    assert [(s.year, s.total_market_value) for s in snapshots] == [(2024, 190000.0), (2023, 180000.0)]


def test_missing_account_number_is_rejected(make_record) -> None:
    record = make_record(account_number=None)

    with pytest.raises(ValueError):
        build_assessment_bundle(record, parse_legal_description(record.legal_description))


def test_empty_extraction_produces_empty_rows() -> None:
    record = AssessmentRecord(account_number="123")
    bundle = build_assessment_bundle(record, parse_legal_description(None), year=2025)

    assert bundle.owners == []
    assert bundle.ownership == []
    assert bundle.exemptions == []
    assert bundle.values == []
    assert bundle.property.total_market_value is None
