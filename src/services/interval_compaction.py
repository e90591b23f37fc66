"""
Year interval compaction.

Turns per-year observations ("owner X in 2019", "exemption HS in 2020") into
maximal runs of consecutive years per key. Used for both ownership and
exemption history.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Generic, Hashable, Iterable, List, Set, Tuple, TypeVar

K = TypeVar("K", bound=Hashable)


@dataclass(frozen=True, slots=True)
class YearRange(Generic[K]):
    key: K
    start_year: int
    end_year: int

    def __contains__(self, year: int) -> bool:
        return self.start_year <= year <= self.end_year

    def years(self) -> range:
        return range(self.start_year, self.end_year + 1)


def compact_years(observations: Iterable[Tuple[K, int]]) -> List[YearRange[K]]:
    """
    Collapse (key, year) observations into maximal consecutive-year ranges.

    Keys come out in first-seen order; within a key, ranges are newest first.
    Duplicate (key, year) pairs count once.

    Example:
        {2015, 2019, 2020, 2021, 2022} -> [2019..2022, 2015..2015]
    """
    years_by_key: Dict[K, Set[int]] = {}
    for key, year in observations:
        years_by_key.setdefault(key, set()).add(int(year))

    ranges: List[YearRange[K]] = []
    for key, years in years_by_key.items():
        ordered = sorted(years, reverse=True)
        end = start = ordered[0]
        for year in ordered[1:]:
            if year == start - 1:
                start = year
                continue
            ranges.append(YearRange(key, start, end))
            end = start = year
        ranges.append(YearRange(key, start, end))
    return ranges
