from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import NullPool

from .core.errors import DatabaseConnectionError


def _normalize_database_url(url: str) -> str:
    """Ensure SQLAlchemy uses psycopg driver explicitly.

    Deployments provide postgresql://...; prefer postgresql+psycopg://...
    """
    if url.startswith("postgresql://") and "+" not in url.split("://", 1)[0]:
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    return url


def create_maintenance_engine(database_url: str) -> Engine:
    # One connection per run, nothing to pool
    return create_engine(
        _normalize_database_url(database_url),
        poolclass=NullPool,
        future=True,
    )


@contextmanager
def open_connection(database_url: str) -> Iterator[Connection]:
    """Hold a single autocommit connection for the duration of a run.

    Every statement commits on its own, which is also what VACUUM needs.
    The connection is closed and the engine disposed on every exit path.
    """
    try:
        engine = create_maintenance_engine(database_url)
    except SQLAlchemyError as exc:
        raise DatabaseConnectionError(f"Invalid database URL: {exc}") from exc
    try:
        try:
            connection = engine.connect()
        except SQLAlchemyError as exc:
            raise DatabaseConnectionError(f"Error connecting to database: {exc}") from exc
        try:
            connection = connection.execution_options(isolation_level="AUTOCOMMIT")
            yield connection
        finally:
            connection.close()
    finally:
        engine.dispose()
