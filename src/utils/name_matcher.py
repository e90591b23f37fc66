"""
Owner name identity utility.

The appraisal district lists owners in two places: the current owner block
(name + address fields) and the yearly ownership history (one combined
name/address block per year). The same person shows up as "SMITH JOHN",
"SMITH, JOHN" or "SMITH JOHN & ET AL" depending on the year, so names are
compared by a normalized identity rather than by raw string.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from loguru import logger

from src.models.property import CurrentOwner, OwnershipHistoryEntry, OwnerRecord

_PUNCT_RE = re.compile(r"[,.]")
_ET_AL_RE = re.compile(r"\s*&\s*ET\s+AL$")


def normalize_owner_name(name: str) -> str:
    """
    Uppercase, drop commas/periods, collapse whitespace and strip a trailing
    "& ET AL". Two raw names are the same owner iff these forms are equal.
    """
    if not name:
        return ""
    clean = _PUNCT_RE.sub("", name.upper())
    clean = " ".join(clean.split())
    clean = _ET_AL_RE.sub("", clean)
    return clean.strip()


@dataclass
class OwnerIdentity:
    raw_name: str  # first raw spelling seen; the persistence key
    normalized_name: str
    address: Optional[str] = None
    aliases: List[str] = field(default_factory=list)

    def to_record(self) -> OwnerRecord:
        return OwnerRecord(
            owner_name=self.raw_name,
            normalized_name=self.normalized_name,
            owner_address=self.address,
        )


class OwnerIdentityResolver:
    """
    Per-run map from raw owner name to owner metadata.

    Insertion is first-seen-wins by raw string: once a raw name is a key its
    metadata is never replaced. A later raw spelling with the same identity
    is attached to the existing owner as an alias; its address is not merged.
    """

    def __init__(self) -> None:
        self._by_raw: Dict[str, OwnerIdentity] = {}
        self._by_identity: Dict[str, OwnerIdentity] = {}

    def __len__(self) -> int:
        return len(self._by_identity)

    def __contains__(self, raw_name: str) -> bool:
        return (raw_name or "").strip() in self._by_raw

    def add(self, raw_name: Optional[str], address: Optional[str] = None) -> Optional[OwnerIdentity]:
        raw = (raw_name or "").strip()
        if not raw:
            return None
        existing = self._by_raw.get(raw)
        if existing is not None:
            return existing

        identity = normalize_owner_name(raw)
        if not identity:
            return None

        owner = self._by_identity.get(identity)
        if owner is None:
            owner = OwnerIdentity(raw_name=raw, normalized_name=identity, address=(address or "").strip() or None)
            self._by_identity[identity] = owner
        else:
            owner.aliases.append(raw)
            logger.debug("Owner {!r} resolved to existing owner {!r}", raw, owner.raw_name)
        self._by_raw[raw] = owner
        return owner

    def resolve(self, raw_name: Optional[str]) -> Optional[OwnerIdentity]:
        """Look up an owner by raw name, falling back to its normalized identity."""
        raw = (raw_name or "").strip()
        if not raw:
            return None
        owner = self._by_raw.get(raw)
        if owner is not None:
            return owner
        return self._by_identity.get(normalize_owner_name(raw))

    def owners(self) -> List[OwnerIdentity]:
        """Distinct owners in first-seen order."""
        return list(self._by_identity.values())

    def records(self) -> List[OwnerRecord]:
        return [owner.to_record() for owner in self.owners()]

    @classmethod
    def from_sources(
        cls,
        current_owners: Iterable[CurrentOwner],
        history: Iterable[OwnershipHistoryEntry],
    ) -> "OwnerIdentityResolver":
        """Current owners first, then history names (first line of each block)."""
        resolver = cls()
        for owner in current_owners:
            resolver.add(owner.name, owner.address)
        for entry in history:
            resolver.add(entry.owner_name, entry.owner_address)
        return resolver
