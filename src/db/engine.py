from __future__ import annotations

import os
from functools import lru_cache

from sqlalchemy import Engine
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.orm import sessionmaker

from config.settings import DEFAULT_PG_DSN


def resolve_dsn(explicit_dsn: str | None = None) -> str:
    if explicit_dsn:
        return explicit_dsn
    return os.getenv("RECORDS_DB_DSN", DEFAULT_PG_DSN)


@lru_cache(maxsize=8)
def get_engine(dsn: str) -> Engine:
    return create_engine(dsn, pool_pre_ping=True)


def get_session_factory(dsn: str) -> sessionmaker[Session]:
    engine = get_engine(dsn)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
