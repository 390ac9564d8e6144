import logging
from contextlib import contextmanager
from typing import Iterator

from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import InterfaceError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import sessionmaker, Session

from coctelera.core.config import Settings
from coctelera.core.exceptions import StoreUnavailable

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(settings: Settings) -> Engine:
    """Create an engine whose every call is bounded by a timeout."""
    url = make_url(settings.DATABASE_URL)
    timeout_s = settings.DB_POOL_TIMEOUT_SECONDS

    if url.get_backend_name() == "sqlite":
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": timeout_s},
        )
    else:
        connect_args = {}
        if url.get_backend_name() == "postgresql":
            connect_args = {
                "connect_timeout": max(1, int(timeout_s)),
                "options": f"-c statement_timeout={settings.DB_STATEMENT_TIMEOUT_MS}",
            }
        engine = create_engine(
            url,
            pool_pre_ping=True,
            pool_size=settings.DB_POOL_SIZE,
            pool_timeout=timeout_s,
            connect_args=connect_args,
        )
    register_engine_events(engine)
    return engine


def register_engine_events(engine: Engine) -> None:
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)


class Database:
    """Process-scoped store handle: one engine and its session factory."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        db = cls(build_engine(settings))
        logger.info("Database engine configured for %s", db.engine.url.get_backend_name())
        return db

    def session(self) -> Session:
        return self.SessionLocal()

    def create_all(self) -> None:
        from coctelera.db.base import Base
        import coctelera.models  # noqa: F401  registers the tables

        Base.metadata.create_all(bind=self.engine)
        logger.info("Schema created on %s", self.engine.url.get_backend_name())

    def dispose(self) -> None:
        self.engine.dispose()
        logger.info("Database engine disposed")


def get_db(request: Request) -> Iterator[Session]:
    database: Database = request.app.state.database
    db = database.session()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def store_errors(db: Session) -> Iterator[Session]:
    """Roll back and re-raise connectivity failures and timeouts as ``StoreUnavailable``."""
    try:
        yield db
    except (OperationalError, InterfaceError, PoolTimeoutError) as e:
        db.rollback()
        logger.error("Store unavailable: %s", e.__class__.__name__)
        raise StoreUnavailable("The access store is unavailable") from e
