"""Engine and session helpers for the migration persistence layer."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from threading import Lock
from typing import Generator, List, Optional

from sqlalchemy import Engine, create_engine, inspect
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import Settings, get_settings
from .monitoring import forget_engine, instrument_engine

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker[Session]] = None
_engine_lock = Lock()


def _build_engine(settings: Settings) -> Engine:
    database_url = settings.database_url
    if not database_url:
        raise RuntimeError("FATHOM_DATABASE_URL must be configured before using the database.")

    kwargs: dict[str, object] = {"echo": settings.database_echo, "pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        # Migrations for different guests run on worker threads.
        kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_size"] = settings.database_pool_size
        kwargs["max_overflow"] = settings.database_max_overflow

    return create_engine(database_url, **kwargs)


def get_engine() -> Engine:
    global _engine, _session_factory
    with _engine_lock:
        if _engine is None:
            engine = _build_engine(get_settings())
            instrument_engine(engine)
            _session_factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
            _engine = engine
            logger.info("Database engine ready for %s", engine.url.render_as_string(hide_password=True))
        return _engine


def get_session_factory() -> sessionmaker[Session]:
    get_engine()
    assert _session_factory is not None
    return _session_factory


@contextmanager
def session_scope(*, commit: bool = True) -> Generator[Session, None, None]:
    """One unit of work; committed on success unless ``commit`` is False."""
    session = get_session_factory()()
    try:
        yield session
        if commit:
            session.commit()
    except Exception as exc:  # noqa: BLE001
        session.rollback()
        logger.debug("Rolled back database session after %s", type(exc).__name__)
        raise
    finally:
        session.close()


def get_session_dependency() -> Generator[Session, None, None]:
    with session_scope() as session:
        yield session


def create_schema() -> List[str]:
    """Create missing tables and return the names that were added."""
    from . import models  # noqa: F401
    from .base import Base

    engine = get_engine()
    existing = set(inspect(engine).get_table_names())
    Base.metadata.create_all(engine)
    created = sorted(set(Base.metadata.tables) - existing)
    if created:
        logger.info("Created migration tables: %s", ", ".join(created))
    return created


def dispose_engine() -> None:
    global _engine, _session_factory
    with _engine_lock:
        if _engine is not None:
            _engine.dispose()
            forget_engine(_engine)
        _engine = None
        _session_factory = None


__all__ = [
    "create_schema",
    "dispose_engine",
    "get_engine",
    "get_session_factory",
    "get_session_dependency",
    "session_scope",
]
