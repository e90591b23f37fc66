"""
Legal Description Utilities

Parses the free-text "Legal Desc (Current)" block from the appraisal district
into the pieces the clerk search needs. DCAD prints the legal description as
several lines, for example:

    ST AUGUSTINE HIGHLANDS
    BLK N/6757
    LT 8
    INT201900123456 DD01152019

Block and city block share one token ("N/6757"), and two lots are written
as "LTS 4 & 5". Formatting is irregular, so every field is optional: a
missing field means "not enough data for dependent work", never an error.
"""

import re
from dataclasses import asdict, dataclass
from typing import List, Optional

from loguru import logger

# Only the first match of each pattern is used. Both keywords must start a word:
# "SUBLOT 5" has no lot and "8BLK 2" has no block.
BLOCK_PATTERN = re.compile(r"\b(?:BLK|BLOCK)\s*([^\s/]+)(?:\s*/\s*(\S+))?", re.IGNORECASE)
LOT_PATTERN = re.compile(r"\b(?:LTS|LT|LOTS|LOT)\s*(\d+)(?:\s*&\s*(\d+))?", re.IGNORECASE)


@dataclass
class LegalDescription:
    """Parsed legal description components."""
    raw_text: str
    subdivision: Optional[str] = None
    block: Optional[str] = None
    city_block: Optional[str] = None
    lot1: Optional[str] = None
    lot2: Optional[str] = None

    @property
    def has_lot_and_block(self) -> bool:
        """True when there is enough data to search and filter recorded documents."""
        return bool(self.lot1 and self.block)

    def to_dict(self) -> dict:
        data = asdict(self)
        data.pop("raw_text")
        return data


def split_lines(raw_text: str) -> List[str]:
    """Split into trimmed, non-empty lines."""
    return [line.strip() for line in raw_text.splitlines() if line.strip()]


def _contains_block_token(line: str) -> bool:
    upper = line.upper()
    return "BLK" in upper or "BLOCK" in upper


def parse_legal_description(raw_text: Optional[str]) -> LegalDescription:
    """
    Parse a legal description into subdivision, block, city block and lots.

    Args:
        raw_text: Multi-line legal description text

    Returns:
        LegalDescription with whatever components could be found
    """
    if not raw_text:
        return LegalDescription(raw_text="")

    lines = split_lines(raw_text)
    result = LegalDescription(raw_text=raw_text)
    if not lines:
        return result

    full_text = " ".join(lines)

    # Subdivision is everything before the first "BLK"; without one, the
    # first line stands in unless it is itself the block line.
    block_index = full_text.upper().find("BLK")
    if block_index > 0:
        result.subdivision = full_text[:block_index].strip() or None
    elif not _contains_block_token(lines[0]):
        result.subdivision = lines[0]

    block_match = BLOCK_PATTERN.search(full_text)
    if block_match:
        result.block = block_match.group(1) or None
        result.city_block = block_match.group(2) or None

    lot_match = LOT_PATTERN.search(full_text)
    if lot_match:
        result.lot1 = lot_match.group(1) or None
        result.lot2 = lot_match.group(2) or None

    if not result.has_lot_and_block:
        logger.debug("Legal description has no usable lot/block: {!r}", full_text[:120])

    return result
