"""
Database engine and session management using SQLAlchemy 2.x.
Provides connection pooling and session factory for the application.
"""
from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from carrental.lib.settings import settings


# Base class for all SQLAlchemy models
class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


def build_engine(database_url: str, timeout_seconds: float, echo: bool = False) -> Engine:
    """
    Create an engine whose operations are bounded by ``timeout_seconds``.

    Postgres gets a server-side statement timeout; every pooled backend gets
    a pool checkout timeout. SQLite (tests, local runs) only honours the
    driver busy timeout.
    """
    url = make_url(database_url)

    if url.get_backend_name() == "sqlite":
        return create_engine(
            url,
            echo=echo,
            connect_args={"timeout": timeout_seconds, "check_same_thread": False},
        )

    return create_engine(
        url,
        echo=echo,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=5,
        max_overflow=10,
        pool_timeout=timeout_seconds,
        connect_args={
            "connect_timeout": max(1, int(timeout_seconds)),
            "options": f"-c statement_timeout={int(timeout_seconds * 1000)}",
        },
    )


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    """Process-wide engine, created on first use."""
    return build_engine(
        settings.database_url,
        settings.store_timeout_seconds,
        echo=settings.debug,
    )


@lru_cache(maxsize=1)
def get_session_factory() -> sessionmaker:
    """Session factory bound to the process-wide engine."""
    return sessionmaker(
        bind=get_engine(),
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


def init_db(engine: Engine | None = None):
    """
    Initialize the database by creating all tables.
    Should be called after all models are imported.
    """
    import carrental.models  # noqa: F401  (registers every table on Base.metadata)

    Base.metadata.create_all(bind=engine or get_engine())


def drop_db(engine: Engine | None = None):
    """
    Drop all tables. Use with caution - for testing only.
    """
    Base.metadata.drop_all(bind=engine or get_engine())
