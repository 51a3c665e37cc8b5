from __future__ import annotations

import os

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

DEFAULT_DATABASE_URL = "sqlite:///./soc_scheduler.db"


def get_database_url() -> str:
    raw_url = os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)
    if raw_url.startswith("postgres://"):
        return raw_url.replace("postgres://", "postgresql+psycopg://", 1)
    if raw_url.startswith("postgresql://") and "+" not in raw_url.split("://", 1)[0]:
        return raw_url.replace("postgresql://", "postgresql+psycopg://", 1)
    return raw_url


def make_engine(url: str) -> Engine:
    # Request handlers and TestClient run on worker threads.
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args, pool_pre_ping=True)


def configure(url: str | None = None) -> Engine:
    """(Re)bind the module engine and session factory, disposing the old pool."""
    global DATABASE_URL, engine, SessionLocal
    if "engine" in globals():
        engine.dispose()
    DATABASE_URL = url or get_database_url()
    engine = make_engine(DATABASE_URL)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)
    return engine


Base = declarative_base()
configure()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
