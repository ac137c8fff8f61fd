"""Postgres connection pool (SQLAlchemy engine over psycopg)."""

import math
from typing import List, Optional

from sqlalchemy import Engine, create_engine, text
from sqlalchemy.engine import Connection

from app.config import DatabaseSettings


class DatabaseConnectionError(Exception):
    """The database could not be reached at startup."""


def _whole_seconds(timeout: float) -> int:
    # libpq takes whole seconds and reads 0 as "wait forever"
    return max(1, math.ceil(timeout))


def create_pool(settings: DatabaseSettings) -> Engine:
    return create_engine(
        settings.url,
        pool_size=settings.max_conns,
        max_overflow=0,
        pool_pre_ping=True,
        connect_args={
            "sslmode": settings.ssl_mode,
            "connect_timeout": _whole_seconds(settings.connect_timeout),
        },
    )


class Postgres:
    def __init__(self, engine: Engine):
        self.engine = engine

    @classmethod
    def connect(cls, settings: DatabaseSettings, engine: Optional[Engine] = None) -> "Postgres":
        """Build the pool, open ``min_conns`` connections and ping once."""
        engine = engine if engine is not None else create_pool(settings)
        pg = cls(engine)
        try:
            pg._warm(settings.min_conns)
            pg.ping()
        except Exception as e:
            engine.dispose()
            raise DatabaseConnectionError(f"failed to ping Postgres: {e}") from e
        return pg

    def _warm(self, count: int) -> None:
        # Checked-out connections go back to the pool on close and stay open
        held: List[Connection] = []
        try:
            for _ in range(count):
                held.append(self.engine.connect())
        finally:
            for conn in held:
                conn.close()

    def ping(self) -> None:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def close(self) -> None:
        self.engine.dispose()
