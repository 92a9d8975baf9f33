# referral_graph/core/db.py
"""
Database management for the referral graph store.
Single database; the engine is created lazily from Config or bound explicitly.
"""
import logging
from contextlib import contextmanager
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from config import Config
from models.base import Base

logger = logging.getLogger(__name__)

# Database engine
_engine = None
_SessionFactory = None


def _build_engine(database_url: str) -> Engine:
    options = {"echo": False, "pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
    engine = create_engine(database_url, **options)
    logger.info(f"Database engine created: {engine.url.render_as_string(hide_password=True)}")
    return engine


def get_engine() -> Engine:
    """Get or create database engine from Config.DATABASE_URL."""
    global _engine
    if _engine is None:
        _engine = _build_engine(Config.get(Config.DATABASE_URL))
    return _engine


def bind_engine(engine: Engine) -> None:
    """Use an already configured engine instead of Config.DATABASE_URL."""
    global _engine, _SessionFactory
    _engine = engine
    _SessionFactory = None
    logger.info(f"Database engine bound: {engine.url}")


def reset_engine() -> None:
    """Forget the current engine; the next call rebuilds it from Config."""
    global _engine, _SessionFactory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


def get_session_factory():
    """Get or create session factory."""
    global _SessionFactory
    if _SessionFactory is None:
        _SessionFactory = sessionmaker(bind=get_engine())
    return _SessionFactory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def get_db_session_ctx(session_factory=None):
    """
    Context manager for one unit of work.

    Commits on success, rolls back and re-raises on error.

    Usage:
        with get_db_session_ctx() as session:
            partner = session.query(Partner).first()
    """
    session = session_factory() if session_factory is not None else get_session()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Database error: {e}")
        raise
    finally:
        session.close()


def setup_database():
    """Create the partners and products tables if missing."""
    logger.info("Setting up database...")
    Base.metadata.create_all(get_engine())
    logger.info("Database setup completed")
