"""Exception taxonomy for the maintenance job.

Connection, deletion and reclaim failures are fatal for a run. Stats and
count failures are observability only and are logged by the runner.
"""

from __future__ import annotations

from typing import Any


class MaintenanceError(Exception):
    """Base class for every error raised by the maintenance job."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        # Set by the runner when a run aborts: the totals reached so far.
        self.summary: Any = None


class DatabaseConnectionError(MaintenanceError):
    pass


class DeletionError(MaintenanceError):
    def __init__(self, table: str, rows_affected: int, message: str) -> None:
        super().__init__(message)
        self.table = table
        self.rows_affected = rows_affected


class ReclaimError(MaintenanceError):
    pass


class StatsError(MaintenanceError):
    pass


class CountError(MaintenanceError):
    def __init__(self, table: str, message: str) -> None:
        super().__init__(message)
        self.table = table
