"""Shared pytest fixtures for the typing analytics tests.

Database fixtures use a temporary SQLite file (``ConnectionType.LOCAL``) so
the suite runs without a PostgreSQL server. Time-dependent components take an
injectable clock; ``FakeClock`` drives them deterministically.
"""

import os
import tempfile
from typing import Generator

import pytest

from db.database_manager import ConnectionType, DatabaseManager
from helpers.debug_util import DebugUtil


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start_ms: float = 0.0) -> None:
        self.now = start_ms

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> float:
        self.now += ms
        return self.now


@pytest.fixture
def fake_clock() -> FakeClock:
    """A clock starting at t=1000ms."""
    return FakeClock(1000.0)


@pytest.fixture(scope="function")
def temp_db() -> Generator[DatabaseManager, None, None]:
    """Create a temporary DatabaseManager with all aggregate tables.

    Ensures the connection is closed and the temp file removed after the test.
    """
    with tempfile.NamedTemporaryFile(delete=False, suffix=".db") as tmp:
        db_path = tmp.name

    db = DatabaseManager(db_path, connection_type=ConnectionType.LOCAL, debug_util=DebugUtil())
    db.init_tables()
    try:
        yield db
    finally:
        db.close()
        try:
            os.unlink(db_path)
        except OSError:
            pass


@pytest.fixture(scope="function")
def db_manager(temp_db: DatabaseManager) -> DatabaseManager:
    """Alias of ``temp_db`` for tests that read better with this name."""
    return temp_db
