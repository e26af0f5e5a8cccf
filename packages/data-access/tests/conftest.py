"""Test fixtures for the profile repository.

Provides a MockEngine/MockConnection that mimics SQLAlchemy async engine
behavior, recording executed statements and returning canned rows. The
repository takes its engine as a constructor argument, so tests hand it a
MockEngine directly; no patching of `get_engine` is needed.

A connection can be told to raise a SQLAlchemy error on a given call, to
exercise the ProfileFetchError / ProfileWriteError paths.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

import pytest
from sqlalchemy.exc import OperationalError

# ============================================================================
# Mock SQLAlchemy async engine/connection
# ============================================================================


class MappingRow:
    """Mimics a SQLAlchemy Row: attribute and index access."""

    def __init__(self, data: dict[str, Any]) -> None:
        self._data = data

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        return self._data.get(name)

    def __getitem__(self, key: Any) -> Any:
        if isinstance(key, int):
            return list(self._data.values())[key]
        return self._data[key]


class MockMappings:
    """Mimics result.mappings() for dict-like row access."""

    def __init__(self, rows: list[dict[str, Any]]) -> None:
        self._rows = rows

    def fetchone(self) -> dict[str, Any] | None:
        return self._rows[0] if self._rows else None

    def fetchall(self) -> list[dict[str, Any]]:
        return self._rows


class MockCursorResult:
    """Mimics SQLAlchemy CursorResult."""

    def __init__(self, rows: list[dict[str, Any]] | None = None) -> None:
        self._rows = rows or []

    def fetchone(self) -> MappingRow | None:
        return MappingRow(self._rows[0]) if self._rows else None

    def mappings(self) -> MockMappings:
        return MockMappings(self._rows)


class MockConnection:
    """Mimics AsyncConnection with execute() recording."""

    def __init__(self) -> None:
        self.executed: list[Any] = []
        self._responses: list[MockCursorResult | Exception] = []

    def queue_response(self, rows: list[dict[str, Any]]) -> None:
        """Queue rows for the next execute() call."""
        self._responses.append(MockCursorResult(rows))

    def queue_error(self, message: str = "connection reset by peer") -> None:
        """Make the next execute() call raise a database error."""
        self._responses.append(OperationalError("SELECT 1", {}, Exception(message)))

    def queue_exception(self, error: Exception) -> None:
        """Make the next execute() call raise `error` as-is (e.g. a driver OSError)."""
        self._responses.append(error)

    async def execute(self, stmt: Any, parameters: Any = None) -> MockCursorResult:
        self.executed.append(stmt)
        if self._responses:
            response = self._responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response
        return MockCursorResult()


class MockEngine:
    """Mimics AsyncEngine.begin(), tracking commits and rollbacks."""

    def __init__(self) -> None:
        self.connection = MockConnection()
        self.commits = 0
        self.rollbacks = 0

    def begin(self) -> MockEngine:
        return self

    async def __aenter__(self) -> MockConnection:
        return self.connection

    async def __aexit__(self, exc_type: Any, *args: Any) -> None:
        if exc_type is None:
            self.commits += 1
        else:
            self.rollbacks += 1


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def mock_engine() -> MockEngine:
    """Provide a MockEngine that records SQL calls."""
    return MockEngine()


@pytest.fixture
def mock_conn(mock_engine: MockEngine) -> MockConnection:
    """Shortcut to the connection for queueing responses."""
    return mock_engine.connection


@pytest.fixture
def user_row() -> dict[str, Any]:
    """A signed-up user with no team yet."""
    now = datetime(2026, 3, 2, 9, 30, tzinfo=UTC)
    return {
        "id": str(uuid.uuid4()),
        "email": "mette@flowcaser.dk",
        "full_name": "Mette Hansen",
        "avatar_url": None,
        "team_id": None,
        "role": "member",
        "created_at": now,
        "updated_at": now,
    }


@pytest.fixture
def team_row(user_row: dict[str, Any]) -> dict[str, Any]:
    """A team created by `user_row`."""
    now = datetime(2026, 3, 2, 10, 0, tzinfo=UTC)
    return {
        "id": str(uuid.uuid4()),
        "name": "Salg",
        "description": "Salgsteamet",
        "created_by": user_row["id"],
        "created_at": now,
        "updated_at": now,
    }
