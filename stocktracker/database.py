"""
Database connection and initialization
"""

import logging
from pathlib import Path

from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import settings

logger = logging.getLogger(__name__)

Base = declarative_base()


def _ensure_db_directory(db_url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    if db_url.startswith("sqlite:///"):
        db_path = db_url.replace("sqlite:///", "")
        if not db_path or db_path == ":memory:":
            return
        db_file = Path(db_path)
        db_file.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"Database location: {db_file.resolve()}")


def _create_engine(db_url: str):
    """
    Create SQLAlchemy engine with appropriate settings for the database type.

    For SQLite:
    - Use StaticPool for an in-memory database so every session shares it
    - Disable same-thread check for FastAPI threadpool handlers
    """
    if db_url.startswith("sqlite"):
        _ensure_db_directory(db_url)
        pool_args = {"poolclass": StaticPool} if ":memory:" in db_url or db_url == "sqlite://" else {}
        return create_engine(
            db_url,
            connect_args={"check_same_thread": False},
            echo=settings.debug,
            **pool_args,
        )
    return create_engine(db_url, pool_pre_ping=True, echo=settings.debug)


engine = _create_engine(settings.database_url)

if settings.is_sqlite:
    # pysqlite defers BEGIN on its own, which breaks SAVEPOINT; let
    # SQLAlchemy emit BEGIN so per-row savepoints nest inside the batch.
    @event.listens_for(engine, "connect")
    def _sqlite_disable_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _sqlite_emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    expire_on_commit=False
)


def init_db_sync():
    """Initialize database tables synchronously"""
    try:
        from . import models  # noqa: F401  registers tables on Base
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error(f"Error creating database tables: {e}")
        raise


def get_db_sync():
    """Dependency to get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def reset_db_sync():
    """Reset database (drop all tables and recreate) synchronously"""
    try:
        from . import models  # noqa: F401
        Base.metadata.drop_all(bind=engine)
        Base.metadata.create_all(bind=engine)
        logger.info("Database reset successfully")
    except Exception as e:
        logger.error(f"Error resetting database: {e}")
        raise


def check_db_connection() -> bool:
    """Run a trivial query; used by the health endpoint."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        return True
    except Exception as e:
        logger.error(f"Database connectivity check failed: {e}")
        return False
