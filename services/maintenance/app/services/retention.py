"""Retention deletes for composes and their clones.

All statements take a single ``cutoff`` timestamp. Clones reference composes
through ``clones.compose_id -> composes.job_id`` so they are always deleted
first.
"""

from __future__ import annotations

from datetime import datetime

from dateutil.relativedelta import relativedelta
from sqlalchemy import DateTime, bindparam, text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql.elements import TextClause

from ..core.errors import CountError, DeletionError, ReclaimError
from ..core.logging import get_logger


def _with_cutoff(sql: str) -> TextClause:
    return text(sql).bindparams(bindparam("cutoff", type_=DateTime(timezone=True)))


SQL_DELETE_CLONES = _with_cutoff(
    """
    DELETE FROM clones
    WHERE compose_id IN (
        SELECT job_id
        FROM composes
        WHERE created_at < :cutoff
    )
    """
)
SQL_DELETE_COMPOSES = _with_cutoff(
    """
    DELETE FROM composes
    WHERE created_at < :cutoff
    """
)
SQL_EXPIRED_CLONES_COUNT = _with_cutoff(
    """
    SELECT COUNT(*) FROM clones
    WHERE compose_id IN (
        SELECT job_id
        FROM composes
        WHERE created_at < :cutoff
    )
    """
)
SQL_EXPIRED_COMPOSES_COUNT = _with_cutoff(
    """
    SELECT COUNT(*) FROM composes
    WHERE created_at < :cutoff
    """
)
SQL_VACUUM_ANALYZE = text("VACUUM ANALYZE")
# SQLite has no combined form
SQL_VACUUM = text("VACUUM")
SQL_ANALYZE = text("ANALYZE")


def retention_cutoff(now: datetime, months: int) -> datetime:
    """Return ``now`` moved back by ``months`` calendar months."""
    return now - relativedelta(months=months)


class RetentionCleaner:
    def __init__(self, connection: Connection, logger=None) -> None:
        self._connection = connection
        self._logger = logger or get_logger(__name__)

    def delete_expired_clones(self, cutoff: datetime) -> int:
        return self._delete("clones", SQL_DELETE_CLONES, cutoff)

    def delete_expired_composes(self, cutoff: datetime) -> int:
        return self._delete("composes", SQL_DELETE_COMPOSES, cutoff)

    def count_expired_clones(self, cutoff: datetime) -> int:
        return self._count("clones", SQL_EXPIRED_CLONES_COUNT, cutoff)

    def count_expired_composes(self, cutoff: datetime) -> int:
        return self._count("composes", SQL_EXPIRED_COMPOSES_COUNT, cutoff)

    def reclaim(self) -> None:
        """Reclaim space left by deleted rows and refresh planner statistics."""
        if self._connection.dialect.name == "sqlite":
            statements = (SQL_VACUUM, SQL_ANALYZE)
        else:
            statements = (SQL_VACUUM_ANALYZE,)
        try:
            for statement in statements:
                self._connection.execute(statement)
        except SQLAlchemyError as exc:
            raise ReclaimError(f"Error running VACUUM ANALYZE: {exc}") from exc
        self._logger.info("retention.reclaimed")

    def _delete(self, table: str, statement: TextClause, cutoff: datetime) -> int:
        try:
            result = self._connection.execute(statement, {"cutoff": cutoff})
        except SQLAlchemyError as exc:
            # The statement failed as a whole, so nothing was affected
            raise DeletionError(table, 0, f"Error deleting {table}: {exc}") from exc
        rows = max(result.rowcount, 0)
        self._logger.info("retention.rows_deleted", table=table, rows=rows)
        return rows

    def _count(self, table: str, statement: TextClause, cutoff: datetime) -> int:
        try:
            return int(self._connection.execute(statement, {"cutoff": cutoff}).scalar_one())
        except SQLAlchemyError as exc:
            raise CountError(table, f"Error querying expired {table}: {exc}") from exc
