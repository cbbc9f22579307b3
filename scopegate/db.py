"""
Database initialization and the query executor seam.

Every round-trip the engine makes goes through one ``QueryExecutor``. The
SQLAlchemy adapter is the only implementation shipped; it is built once at
startup by ``init_db`` and injected wherever statements are executed.
"""

from __future__ import annotations

import re
from typing import Any, Iterable, Optional, Protocol

import sqlalchemy as sa
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

import scopegate.config as config
from scopegate.errors import StorageError, UsageError

logger = config.logger

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class DB:
    """Database state holder (avoids global scoping issues)."""

    engine = None
    executor = None


def is_identifier(name: Any) -> bool:
    return isinstance(name, str) and bool(_IDENTIFIER.match(name))


def require_identifier(name: Any, field: str) -> str:
    if not is_identifier(name):
        raise UsageError(f"{field} must be a plain column or table name, got {name!r}")
    return name


def table_for(name: str, columns: Iterable[str]) -> sa.TableClause:
    """Build a lightweight table clause; views work the same as tables."""
    require_identifier(name, "table")
    unique = dict.fromkeys(require_identifier(column, "column") for column in columns)
    return sa.table(name, *(sa.column(column) for column in unique))


class QueryExecutor(Protocol):
    def fetch_all(self, statement) -> list[dict]: ...

    def fetch_one(self, statement) -> Optional[dict]: ...

    def scalar(self, statement) -> Any: ...

    def execute(self, statement) -> int: ...

    def insert_returning(self, statement) -> Any: ...


class SqlAlchemyExecutor:
    """QueryExecutor backed by a SQLAlchemy engine."""

    def __init__(self, engine: Engine):
        self._engine = engine

    @property
    def engine(self) -> Engine:
        return self._engine

    def _storage_error(self, exc: SQLAlchemyError, statement) -> StorageError:
        detail = str(getattr(exc, "orig", None) or exc)
        error = StorageError(detail)
        logger.error(
            "storage_error",
            extra={
                "statement": type(statement).__name__,
                "error": error.message,
            },
        )
        return error

    def fetch_all(self, statement) -> list[dict]:
        try:
            with self._engine.connect() as conn:
                result = conn.execute(statement)
                return [dict(row._mapping) for row in result]
        except SQLAlchemyError as exc:
            raise self._storage_error(exc, statement) from exc

    def fetch_one(self, statement) -> Optional[dict]:
        try:
            with self._engine.connect() as conn:
                row = conn.execute(statement).first()
                return dict(row._mapping) if row is not None else None
        except SQLAlchemyError as exc:
            raise self._storage_error(exc, statement) from exc

    def scalar(self, statement) -> Any:
        try:
            with self._engine.connect() as conn:
                return conn.execute(statement).scalar()
        except SQLAlchemyError as exc:
            raise self._storage_error(exc, statement) from exc

    def execute(self, statement) -> int:
        try:
            with self._engine.begin() as conn:
                return conn.execute(statement).rowcount
        except SQLAlchemyError as exc:
            raise self._storage_error(exc, statement) from exc

    def insert_returning(self, statement) -> Any:
        try:
            with self._engine.begin() as conn:
                return conn.execute(statement).scalar_one()
        except SQLAlchemyError as exc:
            raise self._storage_error(exc, statement) from exc

    def ping(self) -> None:
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            raise self._storage_error(exc, "ping") from exc


def init_db() -> None:
    """Initialize the database engine and the shared executor."""
    config.validate_and_prepare_config()

    config.logger.info("Connecting to database...")
    engine_kwargs = {"pool_pre_ping": True}
    if config.DB_BACKEND == "sqlite":
        engine_kwargs["connect_args"] = {"check_same_thread": False}
    DB.engine = create_engine(config.DATABASE_URL, **engine_kwargs)
    DB.executor = SqlAlchemyExecutor(DB.engine)

    config.logger.info("Database initialized")


def dispose_db() -> None:
    if DB.engine is not None:
        DB.engine.dispose()
    DB.engine = None
    DB.executor = None
