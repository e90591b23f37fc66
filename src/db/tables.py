from __future__ import annotations

import datetime as dt

from sqlalchemy import BigInteger
from sqlalchemy import Boolean
from sqlalchemy import Date
from sqlalchemy import DateTime
from sqlalchemy import Float
from sqlalchemy import ForeignKey
from sqlalchemy import Index
from sqlalchemy import Integer
from sqlalchemy import String
from sqlalchemy import Text
from sqlalchemy import UniqueConstraint
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.orm import Mapped
from sqlalchemy.orm import mapped_column

from src.utils.time import now_utc


class Base(DeclarativeBase):
    pass


class PropertyRow(Base):
    __tablename__ = "properties"

    account_number: Mapped[str] = mapped_column(String(64), primary_key=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    improvement_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    land_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_market_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    year_built: Mapped[int | None] = mapped_column(Integer, nullable=True)
    living_area: Mapped[float | None] = mapped_column(Float, nullable=True)
    cad_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    clerk_search_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    subdivision: Mapped[str | None] = mapped_column(Text, nullable=True)
    block: Mapped[str | None] = mapped_column(String(32), nullable=True)
    city_block: Mapped[str | None] = mapped_column(String(32), nullable=True)
    lot1: Mapped[str | None] = mapped_column(String(32), nullable=True)
    lot2: Mapped[str | None] = mapped_column(String(32), nullable=True)
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc, onupdate=now_utc
    )


class OwnerRow(Base):
    __tablename__ = "owners"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    owner_name: Mapped[str] = mapped_column(Text, nullable=False)
    normalized_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    owner_address: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("owner_name", name="uq_owners_owner_name"),
    )


class OwnershipHistoryRow(Base):
    __tablename__ = "ownership_history"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    property_account_number: Mapped[str] = mapped_column(
        ForeignKey("properties.account_number", ondelete="CASCADE"), nullable=False
    )
    owner_id: Mapped[int] = mapped_column(ForeignKey("owners.id"), nullable=False)
    start_year: Mapped[int] = mapped_column(Integer, nullable=False)
    end_year: Mapped[int] = mapped_column(Integer, nullable=False)
    int_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    deed_xfer_date: Mapped[dt.date | None] = mapped_column(Date, nullable=True)
    ownership_percentage: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_primary_owner: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("idx_ownership_history_property", "property_account_number"),
    )


class ExemptionRow(Base):
    __tablename__ = "exemptions"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    property_account_number: Mapped[str] = mapped_column(
        ForeignKey("properties.account_number", ondelete="CASCADE"), nullable=False
    )
    code: Mapped[str] = mapped_column(String(32), nullable=False)
    start_year: Mapped[int] = mapped_column(Integer, nullable=False)
    end_year: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        Index("idx_exemptions_property", "property_account_number"),
    )


class ValueHistoryRow(Base):
    __tablename__ = "value_history"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    property_account_number: Mapped[str] = mapped_column(
        ForeignKey("properties.account_number", ondelete="CASCADE"), nullable=False
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    total_market_value: Mapped[float | None] = mapped_column(Float, nullable=True)

    __table_args__ = (
        UniqueConstraint("property_account_number", "year", name="uq_value_history_property_year"),
    )


class PropertyDocumentRow(Base):
    __tablename__ = "property_documents"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    property_account_number: Mapped[str] = mapped_column(
        ForeignKey("properties.account_number", ondelete="CASCADE"), nullable=False
    )
    instrument_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    document_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    grantor: Mapped[str | None] = mapped_column(Text, nullable=True)
    grantee: Mapped[str | None] = mapped_column(Text, nullable=True)
    filing_date: Mapped[dt.date | None] = mapped_column(Date, nullable=True)
    book_and_page: Mapped[str | None] = mapped_column(String(64), nullable=True)
    legal_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    summary: Mapped[str] = mapped_column(Text, nullable=False)
    source_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc
    )

    __table_args__ = (
        Index("idx_property_documents_property", "property_account_number"),
    )
