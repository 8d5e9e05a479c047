"""
core/database.py -- Pooled SQLAlchemy engine shared by every store.

Pattern: one Database per process, created in the application lifespan and
handed to the stores that need it (auth/store.py). Stores own their Table
definitions and run schema-typed SQLAlchemy Core queries through
Database.engine; nothing outside ping() builds SQL from strings.

Startup contract:
  Database(url) only builds the pool -- SQLAlchemy connects lazily. The
  lifespan then calls ping(), which runs SELECT 1 on a real connection.
  A failure propagates out of startup and uvicorn never starts serving.

Retry policy: none. A transient connection failure surfaces as an exception
on the request that hit it. The pool's pre_ping discards dead connections
before handing them out, which covers the common "database restarted" case.

SQL logging: in development core/logging.py sets the sqlalchemy.engine logger
to INFO, so statements go through the normal root handler. We deliberately do
not pass echo=True, which would attach a second handler of SQLAlchemy's own.

Layer rule: core/ is the kernel. No imports from api/, web/, or auth/.
"""

from __future__ import annotations

import logging

from sqlalchemy import MetaData, create_engine, text
from sqlalchemy.engine import Engine, make_url

logger = logging.getLogger("homebase.db")


def normalize_url(url: str) -> str:
    """Accept the postgres:// scheme many hosting providers hand out.

    SQLAlchemy 1.4+ only recognises postgresql://.
    """
    if url.startswith("postgres://"):
        return "postgresql://" + url[len("postgres://") :]
    return url


class Database:
    """Connection pool plus the startup liveness probe.

    Usage:
        db = Database(settings.database_url)
        db.ping()                       # raises if the database is unreachable
        db.create_all(store_metadata)
        ...
        db.dispose()
    """

    def __init__(self, url: str) -> None:
        url = normalize_url(url)
        connect_args: dict = {}
        if url.startswith("sqlite"):
            # The pool hands connections to FastAPI's worker threads.
            connect_args["check_same_thread"] = False
        self.url = make_url(url)
        self.engine: Engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True)

    def ping(self) -> None:
        """Run SELECT 1. Any driver or network error propagates to the caller."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1")).scalar_one()
        logger.info(
            "Database reachable",
            extra={"backend": self.url.get_backend_name(), "database": self.url.database},
        )

    def create_all(self, metadata: MetaData) -> None:
        """Create any missing tables of a store's schema. Idempotent."""
        metadata.create_all(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()
