"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from quarry.db.connection import Database
from quarry.db.schema import initialize
from quarry.db.store import Store


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".quarry.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def store(tmp_db):
    return Store(tmp_db)
