"""
Pytest configuration and fixtures.

This file is automatically loaded by pytest and provides
shared fixtures for all tests.
"""

from datetime import datetime

import pytest

from playerlink.db import create_storage
from playerlink.players.lifecycle import CompletionEvent
from playerlink.players.registry import PlayerRegistry

# Fixed "now" for correlation windows
NOW = datetime(2026, 10, 19, 12, 0, 0)


class RecordingSink:
    """Completion sink that remembers what it received, optionally failing."""

    def __init__(self, name: str = "recorder", fail_with: Exception | None = None):
        self.name = name
        self.fail_with = fail_with
        self.events: list[CompletionEvent] = []

    def deliver(self, event: CompletionEvent) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.events.append(event)


@pytest.fixture
def storage():
    """
    Storage context on a fresh in-memory SQLite database.

    Uses SQLite for fast tests that don't need PostgreSQL-specific
    features; every test gets its own database.
    """
    ctx = create_storage("sqlite://")
    ctx.create_tables()
    yield ctx
    ctx.dispose()


@pytest.fixture
def file_storage(tmp_path):
    """Storage on a SQLite file, for tests that use several connections or threads."""
    ctx = create_storage(f"sqlite:///{tmp_path / 'playerlink.db'}")
    ctx.create_tables()
    yield ctx
    ctx.dispose()


@pytest.fixture
def db_session(storage):
    session = storage.session_factory()
    yield session
    session.close()


@pytest.fixture
def registry(db_session):
    return PlayerRegistry(db_session)


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def make_verified_player(registry):
    """Create a fully verified player awaiting a session id."""

    def _make(account_id, ip="1.2.3.4", checked_at=NOW, chat_account_id="111", chat_tag="john#0001"):
        registry.register_web_verification(
            account_id, chat_account_id=chat_account_id, chat_tag=chat_tag, at=checked_at
        )
        record = registry.record_device_check(account_id, ip=ip, at=checked_at)
        registry.session.commit()
        return record

    return _make


@pytest.fixture
def make_sink():
    return RecordingSink
