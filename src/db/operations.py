"""
Record store - persistence gateway for assessment and clerk data.

Write semantics per property (keyed by account number):
- properties: upsert
- owners: upsert keyed by raw owner name, returns assigned ids
- ownership_history / exemptions / value_history / property_documents:
  delete-then-insert scoped to the account number (full replace per run)

Each public write runs in its own transaction, so concurrent writers working
on different properties never touch each other's rows.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

from loguru import logger
from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.db.engine import get_engine, get_session_factory, resolve_dsn
from src.db.tables import (
    Base,
    ExemptionRow,
    OwnerRow,
    OwnershipHistoryRow,
    PropertyDocumentRow,
    PropertyRow,
    ValueHistoryRow,
)
from src.models.property import (
    AssessmentBundle,
    DocumentRecord,
    ExemptionInterval,
    OwnerRecord,
    OwnershipInterval,
    PropertyRecord,
    ValueSnapshot,
)
from src.utils.time import now_utc

# Child tables first so foreign keys never dangle.
_CLEAR_ORDER = (
    OwnershipHistoryRow,
    ValueHistoryRow,
    ExemptionRow,
    PropertyDocumentRow,
    PropertyRow,
    OwnerRow,
)


class PersistenceError(Exception):
    """A database write for one property failed."""


def _iso_to_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def _row_to_dict(row: Any) -> Dict[str, Any]:
    return {col.name: getattr(row, col.key) for col in row.__table__.columns}


def _dialect_insert(session: Session, table: Any) -> Any:
    """INSERT supporting ON CONFLICT for the bound dialect (PostgreSQL, or SQLite in tests)."""
    if session.get_bind().dialect.name == "sqlite":
        return sqlite_insert(table)
    return pg_insert(table)


class RecordStore:
    def __init__(self, dsn: str | None = None, create_schema: bool = False):
        self.dsn = resolve_dsn(dsn)
        self._engine = get_engine(self.dsn)
        self._session_factory = get_session_factory(self.dsn)
        if create_schema:
            self.ensure_schema()

    def ensure_schema(self) -> None:
        """Create missing tables (idempotent)."""
        try:
            Base.metadata.create_all(self._engine)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Schema creation failed: {e}") from e

    @contextmanager
    def _transaction(self, action: str) -> Iterator[Session]:
        try:
            with self._session_factory() as session, session.begin():
                yield session
        except SQLAlchemyError as e:
            logger.error("DB write failed ({}): {}", action, e)
            raise PersistenceError(f"{action} failed: {e}") from e

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save_assessment(self, bundle: AssessmentBundle) -> Dict[str, int]:
        """Write one property's assessment rows in a single transaction.

        Returns the owner name -> id map.
        """
        account = bundle.property.account_number
        with self._transaction(f"save_assessment[{account}]") as session:
            self._upsert_property(session, bundle.property)
            owner_ids = self._upsert_owners(session, bundle.owners)
            self._replace_ownership(session, account, bundle.ownership, owner_ids)
            self._replace_exemptions(session, account, bundle.exemptions)
            self._replace_values(session, account, bundle.values)
        logger.info(
            "Saved assessment for {}: {} owners, {} ownership intervals, {} exemption intervals, {} values",
            account,
            len(bundle.owners),
            len(bundle.ownership),
            len(bundle.exemptions),
            len(bundle.values),
        )
        return owner_ids

    def upsert_property(self, prop: PropertyRecord) -> None:
        with self._transaction(f"upsert_property[{prop.account_number}]") as session:
            self._upsert_property(session, prop)

    def upsert_owners(self, owners: Sequence[OwnerRecord]) -> Dict[str, int]:
        with self._transaction("upsert_owners") as session:
            return self._upsert_owners(session, owners)

    def save_documents(
        self,
        account_number: str,
        documents: Sequence[DocumentRecord],
        search_url: Optional[str] = None,
    ) -> int:
        """Replace the property's documents; optionally record the clerk search URL."""
        with self._transaction(f"save_documents[{account_number}]") as session:
            if search_url:
                session.execute(
                    update(PropertyRow)
                    .where(PropertyRow.account_number == account_number)
                    .values(clerk_search_url=search_url)
                )
            session.execute(
                delete(PropertyDocumentRow).where(
                    PropertyDocumentRow.property_account_number == account_number
                )
            )
            session.add_all(
                PropertyDocumentRow(
                    property_account_number=account_number,
                    instrument_number=doc.instrument_number,
                    document_type=doc.document_type,
                    grantor=doc.grantor,
                    grantee=doc.grantee,
                    filing_date=doc.filing_date,
                    book_and_page=doc.book_and_page,
                    legal_description=doc.legal_description,
                    summary=doc.summary,
                    source_url=doc.source_url,
                )
                for doc in documents
            )
        logger.info("Saved {} documents for {}", len(documents), account_number)
        return len(documents)

    def clear_all(self) -> None:
        """Delete every row, child tables first."""
        with self._transaction("clear_all") as session:
            for table in _CLEAR_ORDER:
                result = session.execute(delete(table))
                logger.info("Cleared {} ({} rows)", table.__tablename__, result.rowcount)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_property(self, account_number: str) -> Optional[Dict[str, Any]]:
        with self._session_factory() as session:
            row = session.get(PropertyRow, account_number)
            return _row_to_dict(row) if row else None

    def get_owners(self) -> List[Dict[str, Any]]:
        with self._session_factory() as session:
            rows = session.scalars(select(OwnerRow).order_by(OwnerRow.id)).all()
            return [_row_to_dict(r) for r in rows]

    def get_ownership_history(self, account_number: str) -> List[Dict[str, Any]]:
        """Ownership intervals joined with owner names, newest first."""
        stmt = (
            select(OwnershipHistoryRow, OwnerRow.owner_name)
            .join(OwnerRow, OwnerRow.id == OwnershipHistoryRow.owner_id)
            .where(OwnershipHistoryRow.property_account_number == account_number)
            .order_by(OwnershipHistoryRow.start_year.desc())
        )
        with self._session_factory() as session:
            return [
                {**_row_to_dict(row), "owner_name": owner_name}
                for row, owner_name in session.execute(stmt).all()
            ]

    def get_exemptions(self, account_number: str) -> List[Dict[str, Any]]:
        stmt = (
            select(ExemptionRow)
            .where(ExemptionRow.property_account_number == account_number)
            .order_by(ExemptionRow.code, ExemptionRow.start_year.desc())
        )
        with self._session_factory() as session:
            return [_row_to_dict(r) for r in session.scalars(stmt).all()]

    def get_value_history(self, account_number: str) -> List[Dict[str, Any]]:
        stmt = (
            select(ValueHistoryRow)
            .where(ValueHistoryRow.property_account_number == account_number)
            .order_by(ValueHistoryRow.year.desc())
        )
        with self._session_factory() as session:
            return [_row_to_dict(r) for r in session.scalars(stmt).all()]

    def get_documents(self, account_number: str) -> List[Dict[str, Any]]:
        stmt = (
            select(PropertyDocumentRow)
            .where(PropertyDocumentRow.property_account_number == account_number)
            .order_by(PropertyDocumentRow.id)
        )
        with self._session_factory() as session:
            return [_row_to_dict(r) for r in session.scalars(stmt).all()]

    # ------------------------------------------------------------------
    # Session-scoped helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _upsert_property(session: Session, prop: PropertyRecord) -> None:
        data = prop.model_dump(exclude={"clerk_search_url"} if prop.clerk_search_url is None else set())
        data["updated_at"] = now_utc()
        stmt = _dialect_insert(session, PropertyRow).values(data)
        stmt = stmt.on_conflict_do_update(
            index_elements=[PropertyRow.account_number],
            set_={k: v for k, v in data.items() if k != "account_number"},
        )
        session.execute(stmt)

    @staticmethod
    def _upsert_owners(session: Session, owners: Sequence[OwnerRecord]) -> Dict[str, int]:
        """Insert-or-update each owner atomically, so concurrent writers sharing an owner never collide."""
        owner_ids: Dict[str, int] = {}
        for owner in owners:
            data = {"owner_name": owner.owner_name, "normalized_name": owner.normalized_name}
            if owner.owner_address:
                data["owner_address"] = owner.owner_address
            stmt = _dialect_insert(session, OwnerRow).values(data)
            stmt = stmt.on_conflict_do_update(
                index_elements=[OwnerRow.owner_name],
                set_={k: v for k, v in data.items() if k != "owner_name"},
            ).returning(OwnerRow.id)
            owner_ids[owner.owner_name] = session.execute(stmt).scalar_one()
        return owner_ids

    @staticmethod
    def _replace_ownership(
        session: Session,
        account_number: str,
        intervals: Sequence[OwnershipInterval],
        owner_ids: Dict[str, int],
    ) -> None:
        session.execute(
            delete(OwnershipHistoryRow).where(
                OwnershipHistoryRow.property_account_number == account_number
            )
        )
        for interval in intervals:
            owner_id = owner_ids.get(interval.owner_name)
            if owner_id is None:
                logger.warning(
                    "No owner id for {!r} on {}; interval {}-{} dropped",
                    interval.owner_name,
                    account_number,
                    interval.start_year,
                    interval.end_year,
                )
                continue
            session.add(
                OwnershipHistoryRow(
                    property_account_number=account_number,
                    owner_id=owner_id,
                    start_year=interval.start_year,
                    end_year=interval.end_year,
                    int_number=interval.int_number,
                    deed_xfer_date=_iso_to_date(interval.deed_xfer_date),
                    ownership_percentage=interval.ownership_percentage,
                    is_primary_owner=interval.is_primary_owner,
                )
            )

    @staticmethod
    def _replace_exemptions(
        session: Session, account_number: str, intervals: Sequence[ExemptionInterval]
    ) -> None:
        session.execute(
            delete(ExemptionRow).where(ExemptionRow.property_account_number == account_number)
        )
        session.add_all(
            ExemptionRow(
                property_account_number=account_number,
                code=interval.code,
                start_year=interval.start_year,
                end_year=interval.end_year,
            )
            for interval in intervals
        )

    @staticmethod
    def _replace_values(
        session: Session, account_number: str, values: Sequence[ValueSnapshot]
    ) -> None:
        session.execute(
            delete(ValueHistoryRow).where(ValueHistoryRow.property_account_number == account_number)
        )
        session.add_all(
            ValueHistoryRow(
                property_account_number=account_number,
                year=value.year,
                total_market_value=value.total_market_value,
            )
            for value in values
        )
