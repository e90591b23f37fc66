"""
Document relevance checker - ensures documents belong to target property.

The clerk search is narrowed by subdivision upstream, but the subdivision
text on recorded documents is too inconsistent to compare ("ST AUGUSTINE
HGLDS", "ST AUGUSTINE HIGHLANDS NO 2", ...). Lot + block is treated as
the effective key instead.
"""
import re
from typing import Iterable, List, Optional, Pattern, TypeVar

from src.models.property import DocumentListing

T = TypeVar("T", bound=DocumentListing)


def _anchored(prefixes: str, value: str) -> Pattern[str]:
    # "LOT 31" must not satisfy lot "1", and "PILOT 3" must not satisfy lot "3"
    return re.compile(rf"\b(?:{prefixes}):?\s*{re.escape(value)}\b", re.IGNORECASE)


def lot_pattern(lot: str) -> Pattern[str]:
    return _anchored("LOT|LT", lot.strip())


def block_pattern(block: str) -> Pattern[str]:
    return _anchored("BLOCK|BLK", block.strip())


def matches_lot_block(legal_description: Optional[str], lot: str, block: str) -> bool:
    """
    Check whether a document's legal description names the target lot and block.

    Args:
        legal_description: Legal description text from the listing row
        lot: Target lot number
        block: Target block number

    Returns:
        True only if both a LOT/LT and a BLOCK/BLK reference match
    """
    if not legal_description or not lot or not block:
        return False
    return bool(lot_pattern(lot).search(legal_description)) and bool(
        block_pattern(block).search(legal_description)
    )


def filter_documents(listings: Iterable[T], lot: str, block: str) -> List[T]:
    """Keep listings whose legal description matches lot and block, in input order."""
    lot_re = lot_pattern(lot)
    block_re = block_pattern(block)
    kept = []
    for listing in listings:
        legal = listing.legal_description or ""
        if lot_re.search(legal) and block_re.search(legal):
            kept.append(listing)
    return kept
