"""Engine and session helpers."""

from collections.abc import Generator
from contextlib import contextmanager

import structlog
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from train_log.storage.models import Base

logger = structlog.get_logger(__name__)

IN_MEMORY_SQLITE_URLS = ("sqlite://", "sqlite:///:memory:")


def create_session_factory(url: str, **engine_kwargs) -> sessionmaker[Session]:
    """Create the engine for ``url``, make sure the tables exist, and return a session factory.

    An in-memory SQLite database is shared by every thread, since store calls
    run in worker threads.
    """
    if url in IN_MEMORY_SQLITE_URLS:
        engine_kwargs.setdefault("poolclass", StaticPool)
        engine_kwargs.setdefault("connect_args", {"check_same_thread": False})
    engine = create_engine(url, **engine_kwargs)
    Base.metadata.create_all(engine)
    logger.info("database_ready", dialect=engine.dialect.name)
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Commit on normal exit, roll back and re-raise on error."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()
