import os
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Optional
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///./data/lorekeeper.db"


def _normalize_url(url: str) -> str:
    if not url:
        return url
    if url.startswith("postgres://"):
        return "postgresql+psycopg://" + url[len("postgres://"):]
    if url.startswith("postgresql://") and not url.startswith("postgresql+psycopg://"):
        return "postgresql+psycopg://" + url[len("postgresql://"):]
    if url.startswith("postgresql+psycopg2://"):
        return "postgresql+psycopg://" + url[len("postgresql+psycopg2://"):]
    return url


def _enable_sqlite_foreign_keys(dbapi_conn, _record) -> None:
    cur = dbapi_conn.cursor()
    cur.execute("PRAGMA foreign_keys=ON")
    cur.close()


engine: Optional[Engine] = None
SessionLocal: Optional[sessionmaker] = None


def init_db(database_url: Optional[str] = None) -> None:
    """Initialize the SQLAlchemy engine and ensure tables exist.

    Falls back to a local SQLite file when DATABASE_URL is not configured.
    Calling it again while an engine is live is a no-op.
    """
    global engine, SessionLocal
    if engine is not None:
        return
    url = _normalize_url((database_url or os.getenv("DATABASE_URL", "")).strip() or DEFAULT_DATABASE_URL)
    if url.startswith("sqlite"):
        db_path = url.split("///", 1)[-1]
        if db_path and db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(url, connect_args={"check_same_thread": False})
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    else:
        engine = create_engine(url, pool_pre_ping=True)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    if engine.dialect.name == "postgresql":
        # Ensure pgvector extension exists (Postgres with pgvector installed)
        try:
            with engine.begin() as conn:
                conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        except Exception as e:
            logger.warning("db: could not ensure vector extension: %s", e)
    # Import models after engine is ready to avoid circular imports
    from lorekeeper.db.models import Base  # noqa: WPS433
    Base.metadata.create_all(engine)
    logger.info("db: initialized (%s) and tables ensured", engine.dialect.name)


def dispose_db() -> None:
    """Drop the engine so the next init_db() starts fresh (tests, shutdown)."""
    global engine, SessionLocal
    if engine is not None:
        engine.dispose()
    engine = None
    SessionLocal = None


@contextmanager
def db_session():
    if SessionLocal is None:
        raise RuntimeError("SessionLocal is not initialized; call init_db() first")
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
