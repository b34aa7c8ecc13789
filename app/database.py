from contextlib import contextmanager
from typing import Callable, Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker, declarative_base
from sqlalchemy.pool import NullPool, StaticPool
from app.config import settings
import os

# Safety check: Prevent accidental production database usage in tests
if os.getenv("TESTING") == "true" and not settings.DATABASE_URL.startswith("sqlite"):
    import warnings
    warnings.warn(
        f"WARNING: TESTING is set but DATABASE_URL is not SQLite: {settings.DATABASE_URL[:50]}...",
        RuntimeWarning,
        stacklevel=2
    )


def engine_options(url: str) -> dict:
    """Pooling for the configured backend.

    The realtime sync layer runs store calls on worker threads, so SQLite
    connections must be usable from any thread. An in-memory database only
    exists inside one connection, which every session then has to share.
    """
    if url.startswith("sqlite"):
        options = {"connect_args": {"check_same_thread": False}, "echo": False}
        if ":memory:" in url or url.rstrip("/") == "sqlite:":
            options["poolclass"] = StaticPool
        else:
            options["poolclass"] = NullPool
        return options
    return {
        "connect_args": {"connect_timeout": 10},
        "pool_size": 20,
        "max_overflow": 10,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
        "pool_timeout": 30,
        "echo": False,
    }


engine = create_engine(settings.DATABASE_URL, **engine_options(settings.DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


@contextmanager
def session_scope(factory: Callable[[], Session] | None = None) -> Iterator[Session]:
    """One session per unit of work outside a request (sync backend, scripts)."""
    db = (factory or SessionLocal)()
    try:
        yield db
    finally:
        db.close()
