"""
Root conftest.py for pytest configuration and shared fixtures.
"""
import os
from datetime import UTC, datetime
from typing import Generator

import pytest
import structlog
from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    event,
    func,
    insert,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool
from structlog.testing import LogCapture

# Set test environment BEFORE importing any app code
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"

# 2026-10-17 12:00 UTC; one month retention gives a 2026-09-17 cutoff
FIXED_NOW = datetime(2026, 10, 17, 12, 0, tzinfo=UTC)

# Minimal mirror of the image-builder tables, test-only
metadata = MetaData()
composes = Table(
    "composes",
    metadata,
    Column("job_id", String(36), primary_key=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
)
clones = Table(
    "clones",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("compose_id", String(36), ForeignKey("composes.job_id"), nullable=False),
)


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, _record):
    if type(dbapi_connection).__module__.startswith("sqlite3"):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


class SeededDatabase:
    """File-backed SQLite database with the composes and clones tables."""

    def __init__(self, url: str) -> None:
        self.url = url
        self.engine = create_engine(url, poolclass=NullPool)
        metadata.create_all(self.engine)

    def add_compose(self, job_id: str, created_at: datetime, clone_count: int = 0) -> None:
        with self.engine.begin() as conn:
            conn.execute(insert(composes).values(job_id=job_id, created_at=created_at))
            for _ in range(clone_count):
                conn.execute(insert(clones).values(compose_id=job_id))

    def compose_ids(self) -> set[str]:
        with self.engine.connect() as conn:
            return set(conn.execute(select(composes.c.job_id)).scalars())

    def clone_parents(self) -> list[str]:
        with self.engine.connect() as conn:
            return list(conn.execute(select(clones.c.compose_id)).scalars())

    def counts(self) -> tuple[int, int]:
        with self.engine.connect() as conn:
            n_composes = conn.execute(select(func.count()).select_from(composes)).scalar_one()
            n_clones = conn.execute(select(func.count()).select_from(clones)).scalar_one()
        return n_composes, n_clones


@pytest.fixture
def fixed_now():
    return lambda: FIXED_NOW


@pytest.fixture
def seeded_db(tmp_path) -> Generator[SeededDatabase, None, None]:
    db = SeededDatabase(f"sqlite:///{tmp_path / 'maintenance.db'}")
    yield db
    db.engine.dispose()


@pytest.fixture
def scenario_db(seeded_db):
    """One compose from two months ago with a clone, one from today."""
    seeded_db.add_compose("old-compose", datetime(2026, 8, 17, 12, 0, tzinfo=UTC), clone_count=1)
    seeded_db.add_compose("new-compose", FIXED_NOW, clone_count=1)
    return seeded_db


@pytest.fixture
def log_capture() -> LogCapture:
    return LogCapture()


@pytest.fixture
def capturing_logger(log_capture):
    """Logger whose records land in ``log_capture.entries``."""
    return structlog.wrap_logger(None, processors=[log_capture])


@pytest.fixture(autouse=True)
def reset_environment():
    """Reset environment variables after each test."""
    original_env = os.environ.copy()
    yield
    os.environ.clear()
    os.environ.update(original_env)
