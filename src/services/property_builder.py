"""Turn one extracted assessment into the normalized rows the gateway stores.

Yearly observations (owners, exemptions) are compacted into year intervals;
market values stay one row per year.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from loguru import logger

from src.db.type_normalizer import (
    clean_text,
    format_date,
    normalize_int_number,
    parse_number,
    parse_year,
)
from src.models.property import (
    AssessmentBundle,
    AssessmentRecord,
    ExemptionInterval,
    OwnershipInterval,
    PropertyRecord,
    ValueSnapshot,
)
from src.services.interval_compaction import compact_years
from src.utils.legal_description import LegalDescription
from src.utils.name_matcher import OwnerIdentityResolver
from src.utils.time import current_year


def build_property_record(record: AssessmentRecord, legal: LegalDescription) -> PropertyRecord:
    if not record.account_number or not record.account_number.strip():
        raise ValueError("Assessment has no account number")
    value = record.property_value
    details = record.property_details
    year_built = parse_number(details.year_built) if details else None
    return PropertyRecord(
        account_number=record.account_number.strip(),
        address=clean_text(record.address),
        improvement_value=parse_number(value.improvement_value) if value else None,
        land_value=parse_number(value.land_value) if value else None,
        total_market_value=parse_number(value.total_market_value) if value else None,
        year_built=int(year_built) if year_built is not None else None,
        living_area=parse_number(details.living_area) if details else None,
        cad_url=record.cad_url,
        subdivision=legal.subdivision,
        block=legal.block,
        city_block=legal.city_block,
        lot1=legal.lot1,
        lot2=legal.lot2,
    )


def build_ownership_intervals(
    record: AssessmentRecord,
    resolver: OwnerIdentityResolver,
    year: Optional[int] = None,
) -> List[OwnershipInterval]:
    """
    Compact yearly ownership into intervals per owner identity.

    Current owners count as an observation for the current year. Deed
    metadata for an interval comes from its latest observed year.
    """
    this_year = year if year is not None else current_year()
    observations: List[Tuple[str, int]] = []
    deed_info: Dict[Tuple[str, int], Tuple[Optional[str], Optional[str]]] = {}
    current_info: Dict[str, Tuple[Optional[float], bool]] = {}

    for entry in record.ownership_history:
        entry_year = parse_year(entry.year)
        owner = resolver.resolve(entry.owner_name)
        if entry_year is None or owner is None:
            continue
        observations.append((owner.raw_name, entry_year))
        deed_info.setdefault(
            (owner.raw_name, entry_year),
            (normalize_int_number(entry.int_number), format_date(entry.deed_xfer_date)),
        )

    current_int = normalize_int_number(record.int_number)
    current_deed = format_date(record.deed_xfer_date)
    for current in record.current_owners:
        owner = resolver.resolve(current.name)
        if owner is None:
            continue
        observations.append((owner.raw_name, this_year))
        deed_info[(owner.raw_name, this_year)] = (current_int, current_deed)
        current_info.setdefault(owner.raw_name, (parse_number(current.percentage), current.is_primary is True))

    intervals = []
    for span in compact_years(observations):
        int_number, deed_date = deed_info.get((span.key, span.end_year), (None, None))
        percentage, is_primary = (None, False)
        if this_year in span:
            percentage, is_primary = current_info.get(span.key, (None, False))
        intervals.append(
            OwnershipInterval(
                owner_name=span.key,
                start_year=span.start_year,
                end_year=span.end_year,
                int_number=int_number,
                deed_xfer_date=deed_date,
                ownership_percentage=percentage,
                is_primary_owner=is_primary,
            )
        )
    return intervals


def build_exemption_intervals(record: AssessmentRecord) -> List[ExemptionInterval]:
    observations = []
    for entry in record.exemptions:
        entry_year = parse_year(entry.year)
        code = (entry.code or "").strip()
        if entry_year is None or not code:
            continue
        observations.append((code, entry_year))
    return [
        ExemptionInterval(code=span.key, start_year=span.start_year, end_year=span.end_year)
        for span in compact_years(observations)
    ]


def build_value_snapshots(record: AssessmentRecord) -> List[ValueSnapshot]:
    snapshots: Dict[int, ValueSnapshot] = {}
    for entry in record.market_value_history:
        entry_year = parse_year(entry.year)
        if entry_year is None or entry_year in snapshots:
            continue
        snapshots[entry_year] = ValueSnapshot(
            year=entry_year, total_market_value=parse_number(entry.total_market_value)
        )
    return list(snapshots.values())


def build_assessment_bundle(
    record: AssessmentRecord,
    legal: LegalDescription,
    year: Optional[int] = None,
) -> AssessmentBundle:
    prop = build_property_record(record, legal)
    resolver = OwnerIdentityResolver.from_sources(record.current_owners, record.ownership_history)
    if not len(resolver):
        logger.info("No owners found for account {}", prop.account_number)
    return AssessmentBundle(
        property=prop,
        owners=resolver.records(),
        ownership=build_ownership_intervals(record, resolver, year=year),
        exemptions=build_exemption_intervals(record),
        values=build_value_snapshots(record),
    )
