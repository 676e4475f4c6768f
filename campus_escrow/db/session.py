from __future__ import annotations

from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from campus_escrow.core.config import Settings, get_settings
from campus_escrow.db.store import Store

settings = get_settings()

DATABASE_URL = settings.database_url  # fail fast if missing

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    DATABASE_URL,
    pool_pre_ping=True,
    future=True,
    connect_args=_connect_args,
)

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    future=True,
)


def build_store(session_factory: sessionmaker, settings: Settings) -> Store:
    return Store(
        session_factory,
        max_retries=settings.store_max_retries,
        base_delay=settings.store_retry_base_delay_seconds,
        max_delay=settings.store_retry_max_delay_seconds,
    )


_store = build_store(SessionLocal, settings)


def default_store() -> Store:
    return _store


def get_store() -> Iterator[Store]:
    yield _store
