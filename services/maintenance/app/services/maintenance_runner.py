"""One end-to-end cleanup pass over the image-builder database.

Stats are logged before and after the retention work. A live run repeats
delete clones, delete composes and reclaim until a compose delete affects no
rows; a dry run only counts what would be deleted.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Callable, ContextManager

from sqlalchemy.engine import Connection

from ..core.errors import CountError, MaintenanceError, StatsError
from ..core.logging import get_logger
from ..db import open_connection
from .retention import RetentionCleaner, retention_cutoff
from .stats_reporter import StatsReporter, TableStat

ConnectFactory = Callable[[str], ContextManager[Connection]]


def utcnow() -> datetime:
    return datetime.now(UTC)


class RunState(str, enum.Enum):
    INIT = "init"
    STATS_BEFORE = "stats_before"
    DRY_RUN_REPORT = "dry_run_report"
    DELETE_LOOP = "delete_loop"
    STATS_AFTER = "stats_after"
    DONE = "done"
    ABORTED = "aborted"


@dataclass
class RunSummary:
    cutoff: datetime
    dry_run: bool
    iterations: int = 0
    clones_deleted: int = 0
    composes_deleted: int = 0
    # Dry-run counts; None when not queried or when the count failed
    expired_clones: int | None = None
    expired_composes: int | None = None
    stats_before: list[TableStat] = field(default_factory=list)
    stats_after: list[TableStat] = field(default_factory=list)


class MaintenanceRunner:
    def __init__(
        self,
        database_url: str,
        *,
        dry_run: bool = False,
        retention_months: int = 5,
        connect: ConnectFactory = open_connection,
        now: Callable[[], datetime] | None = None,
        logger=None,
    ) -> None:
        self._database_url = database_url
        self._dry_run = dry_run
        self._retention_months = retention_months
        self._connect = connect
        self._now = now or utcnow
        self._logger = logger or get_logger(__name__)
        self._state = RunState.INIT

    @property
    def state(self) -> RunState:
        return self._state

    def run(self) -> RunSummary:
        self._transition(RunState.INIT)
        # Fixed for the whole run, never re-derived inside the loop
        cutoff = retention_cutoff(self._now(), self._retention_months)
        summary = RunSummary(cutoff=cutoff, dry_run=self._dry_run)
        try:
            with self._connect(self._database_url) as connection:
                self._run_with_connection(connection, summary)
        except MaintenanceError as exc:
            self._abort(exc, summary)
            raise
        self._transition(RunState.DONE)
        self._logger.info(
            "maintenance.done",
            dry_run=summary.dry_run,
            cutoff=cutoff.isoformat(),
            iterations=summary.iterations,
            clones_deleted=summary.clones_deleted,
            composes_deleted=summary.composes_deleted,
        )
        return summary

    def _run_with_connection(self, connection: Connection, summary: RunSummary) -> None:
        reporter = StatsReporter(connection, logger=self._logger)
        cleaner = RetentionCleaner(connection, logger=self._logger)

        self._transition(RunState.STATS_BEFORE)
        summary.stats_before = self._report_stats(reporter)

        if self._dry_run:
            self._transition(RunState.DRY_RUN_REPORT)
            self._dry_run_report(cleaner, summary)
        else:
            self._transition(RunState.DELETE_LOOP)
            self._delete_loop(cleaner, summary)

        self._transition(RunState.STATS_AFTER)
        summary.stats_after = self._report_stats(reporter)

    def _report_stats(self, reporter: StatsReporter) -> list[TableStat]:
        try:
            return reporter.report()
        except StatsError as exc:
            self._logger.warning("stats.error", error=str(exc), state=self._state.value)
            return []

    def _dry_run_report(self, cleaner: RetentionCleaner, summary: RunSummary) -> None:
        try:
            summary.expired_clones = cleaner.count_expired_clones(summary.cutoff)
        except CountError as exc:
            self._logger.warning("dry_run.count_error", table=exc.table, error=str(exc))
        try:
            summary.expired_composes = cleaner.count_expired_composes(summary.cutoff)
        except CountError as exc:
            self._logger.warning("dry_run.count_error", table=exc.table, error=str(exc))
        self._logger.info(
            "dry_run.expired",
            cutoff=summary.cutoff.isoformat(),
            expired_composes=summary.expired_composes,
            expired_clones=summary.expired_clones,
        )

    def _delete_loop(self, cleaner: RetentionCleaner, summary: RunSummary) -> None:
        while True:
            summary.iterations += 1
            clones = cleaner.delete_expired_clones(summary.cutoff)
            summary.clones_deleted += clones
            composes = cleaner.delete_expired_composes(summary.cutoff)
            summary.composes_deleted += composes
            cleaner.reclaim()

            if composes == 0:
                break

            self._logger.info(
                "retention.pass_complete",
                iteration=summary.iterations,
                composes_deleted=composes,
                clones_deleted=clones,
            )

    def _abort(self, exc: MaintenanceError, summary: RunSummary) -> None:
        failed_in = self._state
        self._transition(RunState.ABORTED)
        exc.summary = summary
        self._logger.error(
            "maintenance.aborted",
            error=str(exc),
            error_type=type(exc).__name__,
            state=failed_in.value,
            rows_affected=getattr(exc, "rows_affected", None),
            iterations=summary.iterations,
            clones_deleted=summary.clones_deleted,
            composes_deleted=summary.composes_deleted,
        )

    def _transition(self, state: RunState) -> None:
        self._state = state
        self._logger.debug("maintenance.state", state=state.value)
