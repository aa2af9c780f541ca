"""
SQLAlchemy engine, session factory and the `get_db` dependency.

The engine is built on first use so models and the engine modules can be
imported without a reachable database.
"""

from contextlib import contextmanager
import logging

from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker, declarative_base

logger = logging.getLogger(__name__)

Base = declarative_base()

_engine = None
_SessionLocal = None


def engine_options(url: str) -> dict:
    """create_engine kwargs for the configured backend."""
    if url.startswith("sqlite"):
        # Sessions are used from FastAPI's threadpool
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "connect_args": {"connect_timeout": 10},
    }


def get_engine():
    global _engine
    if _engine is None:
        from cre_explorer.core.config import settings
        url = settings.DATABASE_URL
        logger.info(f"Creating database engine for: {url.split('@')[-1][:50]}")
        _engine = create_engine(url, **engine_options(url))
    return _engine


def get_session_local():
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=get_engine())
    return _SessionLocal


def create_tables(engine=None) -> None:
    """Create any missing tables (properties, sales, violations, portfolios, saved searches)."""
    import cre_explorer.models  # noqa: F401
    Base.metadata.create_all(bind=engine or get_engine())


def get_db():
    """FastAPI dependency: one session per request."""
    db = get_session_local()()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope():
    """Session for scripts; callers commit (the repository commits per batch)."""
    db: Session = get_session_local()()
    try:
        yield db
    finally:
        db.close()


def check_database_connection() -> bool:
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
