import os
from contextlib import contextmanager
from typing import Any, Iterator, Mapping, Optional, Sequence

import structlog
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, RowMapping
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .config import Settings


Base = declarative_base()

log = structlog.get_logger(__name__)


@event.listens_for(Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    # SQLite ships with foreign keys disabled; cascades on task children depend on them
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


class Database:
    """Owns the engine/connection pool and hands out sessions and transactions.

    One instance per process, built by the app factory and passed to each
    service. Disposed at shutdown.
    """

    def __init__(self, url: str, *, pool_size: int = 5, max_overflow: int = 10, pool_recycle: int = 3600):
        self.url = url
        is_sqlite = url.startswith("sqlite")
        if url.startswith("sqlite:///./"):
            os.makedirs(os.path.dirname(url[len("sqlite:///"):]) or ".", exist_ok=True)
        engine_kwargs: dict = {"future": True, "pool_pre_ping": True}
        if is_sqlite:
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        else:
            engine_kwargs.update(pool_size=pool_size, max_overflow=max_overflow, pool_recycle=pool_recycle)
        self.engine = create_engine(url, **engine_kwargs)
        # IMPORTANT: never share a Session across requests; one per unit of work
        self.SessionLocal = sessionmaker(
            bind=self.engine, autoflush=False, autocommit=False, expire_on_commit=False, future=True
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(
            settings.database_url,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_recycle=settings.db_pool_recycle,
        )

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    @contextmanager
    def session(self) -> Iterator[Session]:
        db = self.SessionLocal()
        try:
            yield db
        finally:
            db.close()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """BEGIN ... COMMIT around the block; any exception rolls back and propagates."""
        db = self.SessionLocal()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def query(self, sql: Any, params: Optional[Mapping[str, Any]] = None) -> Sequence[RowMapping]:
        """Run a parameterized statement and return its rows as mappings.

        `sql` is either a SQL string with `:name` placeholders or any
        SQLAlchemy executable.
        """
        stmt = text(sql) if isinstance(sql, str) else sql
        with self.engine.connect() as conn:
            result = conn.execute(stmt, params or {})
            if not result.returns_rows:
                conn.commit()
                return []
            return result.mappings().all()

    def create_all(self) -> None:
        # models must be imported so their tables are registered on Base.metadata
        from .models import models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)
        log.info("db_tables_ready", dialect=self.dialect)

    def drop_all(self) -> None:
        from .models import models  # noqa: F401

        Base.metadata.drop_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()
