from datetime import datetime, timezone

import pytest

from db import Database, MemberRepository
from service import MembershipService

FIXED_NOW = datetime(2024, 3, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def database(tmp_path):
    """Fresh SQLite file with all tables and a placeholder admin row."""
    db = Database(tmp_path / "test.db")
    db.init_db("admin@policardmed.com", "not-a-real-hash")
    return db


@pytest.fixture
def repository(database):
    return MemberRepository(database, "test-app")


@pytest.fixture
def service(repository):
    return MembershipService(repository, clock=lambda: FIXED_NOW, poll_interval=0.01)


@pytest.fixture
def now():
    return FIXED_NOW
