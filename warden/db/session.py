"""Engine and session factory for warden."""

from contextlib import contextmanager
from functools import lru_cache
from typing import Generator, Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from warden.core.config import get_settings
from warden.db.base import Base


@lru_cache
def get_engine(database_url: Optional[str] = None) -> Engine:
    settings = get_settings()
    url = database_url or settings.database_url
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, echo=settings.database_echo, future=True, connect_args=connect_args)


def get_session_factory(engine: Optional[Engine] = None) -> sessionmaker:
    return sessionmaker(bind=engine or get_engine(), autoflush=False, expire_on_commit=False)


def init_db(engine: Optional[Engine] = None) -> None:
    """Create all warden tables that do not exist yet."""
    # Register models on the metadata before creating tables
    import warden.db.models  # noqa: F401

    Base.metadata.create_all(bind=engine or get_engine())


def get_db() -> Generator[Session, None, None]:
    """Database session dependency."""
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """Commit everything done in the block, or roll all of it back."""
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
