"""
SQLAlchemy engine, session, and base. Each relational backend owns its own engine.
"""
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Tuple

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

logger = logging.getLogger(__name__)

Base = declarative_base()


@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    """Context manager for a single DB session. Commits on success, rolls back on error."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def sqlite_url(path: str) -> str:
    """Turn a filesystem path (or :memory:) into a SQLAlchemy SQLite URL."""
    if path == ":memory:":
        return "sqlite://"
    db_path = Path(path).expanduser().resolve()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{db_path}"


def create_db_engine(db_url: str) -> Tuple[Engine, sessionmaker]:
    """
    Create an engine for db_url, create all tables and return (engine, session factory).
    """
    engine = create_engine(db_url, echo=False, future=True)

    # Import model modules so tables are registered with Base
    from ignitia.persistence import models as _  # noqa: F401

    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    logger.info(f"Database initialized: {db_url.split('?')[0]}")
    return engine, factory
