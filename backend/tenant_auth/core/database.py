"""
Database configuration and session management
"""

from contextlib import contextmanager
from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from typing import Generator, Iterator, List
import logging

from tenant_auth.core.config import settings, DATABASE_URL
from tenant_auth.models.base import Base

logger = logging.getLogger(__name__)


def _engine_options(url: str) -> dict:
    """Pool settings per backend; SQLite is used by the test suite"""
    if url.startswith("sqlite"):
        options = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            options["poolclass"] = StaticPool
        return options
    return {
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "pool_size": 10,
        "max_overflow": 20,
    }


# Create SQLAlchemy engine
engine = create_engine(
    DATABASE_URL,
    echo=settings.DEBUG,  # Log SQL queries in debug mode
    **_engine_options(DATABASE_URL),
)

# Create SessionLocal class
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False  # Keep objects accessible after commit
)

if DATABASE_URL.startswith("sqlite"):
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        """Enforce foreign keys on SQLite connections"""
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session
    """
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error(f"Database session error: {e}")
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Session for scripts and tasks; commits on success, rolls back on error"""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def _metadata():
    # Importing the package registers every model on Base.metadata
    import tenant_auth.models  # noqa: F401
    return Base.metadata


def create_schema() -> List[str]:
    """Create missing tables and return the names of all known tables"""
    metadata = _metadata()
    metadata.create_all(bind=engine)
    tables = sorted(metadata.tables)
    logger.info(f"Schema ready: {len(tables)} tables")
    return tables


def drop_schema() -> None:
    _metadata().drop_all(bind=engine)
    logger.warning(f"Dropped all tables on {engine.url.render_as_string(hide_password=True)}")


def database_ready() -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Database connection failed: {e}")
        return False
    return True
