from __future__ import annotations

from contextlib import closing
from dataclasses import asdict, dataclass, fields
from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from ..core.errors import StatsError
from ..core.logging import get_logger

SQL_VACUUM_STATS = text(
    """
    SELECT relname, pg_size_pretty(pg_total_relation_size(relid)),
        n_tup_ins, n_tup_upd, n_tup_del, n_live_tup, n_dead_tup,
        vacuum_count, autovacuum_count, analyze_count, autoanalyze_count,
        last_vacuum, last_autovacuum, last_analyze, last_autoanalyze
    FROM pg_stat_user_tables
    """
)


@dataclass(frozen=True)
class TableStat:
    """One row of pg_stat_user_tables, in query column order."""

    table_name: str
    table_size: str
    tuples_inserted: int
    tuples_updated: int
    tuples_deleted: int
    tuples_live: int
    tuples_dead: int
    vacuum_count: int
    autovacuum_count: int
    analyze_count: int
    autoanalyze_count: int
    last_vacuum: datetime | None
    last_autovacuum: datetime | None
    last_analyze: datetime | None
    last_autoanalyze: datetime | None

    @classmethod
    def from_row(cls, row: Sequence[Any]) -> "TableStat":
        names = [f.name for f in fields(cls)]
        if len(row) != len(names):
            raise ValueError(f"expected {len(names)} columns, got {len(row)}")
        values = dict(zip(names, row))
        for name in names[2:11]:
            values[name] = int(values[name])
        return cls(**values)

    def as_log_fields(self) -> dict[str, Any]:
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, datetime):
                data[key] = value.isoformat()
        return data


class StatsReporter:
    """Logs vacuum and analyze statistics for every user table."""

    def __init__(self, connection: Connection, logger=None) -> None:
        self._connection = connection
        self._logger = logger or get_logger(__name__)

    def report(self) -> list[TableStat]:
        try:
            result = self._connection.execute(SQL_VACUUM_STATS)
        except SQLAlchemyError as exc:
            raise StatsError(f"Error querying vacuum stats: {exc}") from exc

        stats: list[TableStat] = []
        with closing(result):
            try:
                for row in result:
                    stat = TableStat.from_row(row)
                    self._logger.info("stats.table", **stat.as_log_fields())
                    stats.append(stat)
            except (SQLAlchemyError, TypeError, ValueError) as exc:
                raise StatsError(f"Error reading vacuum stats row: {exc}") from exc
        return stats
