"""
Shared test fixtures.

The Supabase double keeps rows in memory and honours the filters, upserts
and unique constraints the services rely on.
"""

import os
import sys
from pathlib import Path

# Add project directory to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

# Settings are built at import time
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")
os.environ.setdefault("ENVIRONMENT", "development")

import copy
import re
import uuid
import pytest
from contextlib import ExitStack
from datetime import datetime, timezone
from typing import Any, Callable, Generator, Optional
from unittest.mock import patch

from postgrest.exceptions import APIError


# ===================
# MOCK SUPABASE CLIENT
# ===================

class MockSupabaseResponse:
    """Mock Supabase query response."""

    def __init__(self, data: list = None, count: int = None):
        self.data = data or []
        self.count = count if count is not None else len(self.data)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _coerce(value: Any) -> Any:
    """Compare ISO timestamps as datetimes."""
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return value


def like_to_regex(pattern: str) -> re.Pattern:
    """Translate a SQL LIKE pattern (backslash escapes) to a regex."""
    parts = []
    i = 0
    while i < len(pattern):
        char = pattern[i]
        if char == "\\" and i + 1 < len(pattern):
            parts.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        if char == "%":
            parts.append(".*")
        elif char == "_":
            parts.append(".")
        else:
            parts.append(re.escape(char))
        i += 1
    return re.compile("".join(parts), re.DOTALL)


class MockSupabaseQuery:
    """Chainable query against one in-memory table."""

    def __init__(self, client: "MockSupabaseClient", table: str):
        self._client = client
        self._table = table
        self._op = "select"
        self._payload: Any = None
        self._on_conflict: Optional[str] = None
        self._filters: list[Callable[[dict], bool]] = []
        self._order: list[tuple[str, bool]] = []
        self._limit: Optional[int] = None
        self._range: Optional[tuple[int, int]] = None
        self._count: Optional[str] = None

    # Operations

    def select(self, *columns, count: Optional[str] = None):
        self._op = "select"
        self._count = count
        return self

    def insert(self, data):
        self._op = "insert"
        self._payload = data
        return self

    def upsert(self, data, on_conflict: str = "", **kwargs):
        self._op = "upsert"
        self._payload = data
        self._on_conflict = on_conflict
        return self

    def update(self, data: dict):
        self._op = "update"
        self._payload = data
        return self

    def delete(self):
        self._op = "delete"
        return self

    # Filters

    def eq(self, column: str, value):
        self._filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column: str, value):
        self._filters.append(lambda row: row.get(column) != value)
        return self

    def lt(self, column: str, value):
        self._filters.append(
            lambda row: row.get(column) is not None and _coerce(row.get(column)) < _coerce(value)
        )
        return self

    def in_(self, column: str, values):
        allowed = list(values)
        self._filters.append(lambda row: row.get(column) in allowed)
        return self

    def like(self, column: str, pattern: str):
        regex = like_to_regex(pattern)
        self._filters.append(
            lambda row: row.get(column) is not None and regex.fullmatch(str(row.get(column))) is not None
        )
        return self

    # Modifiers

    def order(self, column: str, desc: bool = False, **kwargs):
        self._order.append((column, desc))
        return self

    def limit(self, count: int):
        self._limit = count
        return self

    def range(self, start: int, end: int):
        self._range = (start, end)
        return self

    # Execution

    def _matches(self, row: dict) -> bool:
        return all(f(row) for f in self._filters)

    def execute(self) -> MockSupabaseResponse:
        rows = self._client.rows(self._table)

        if self._op == "insert":
            items = self._payload if isinstance(self._payload, list) else [self._payload]
            return MockSupabaseResponse([self._client.insert_row(self._table, item) for item in items])

        if self._op == "upsert":
            items = self._payload if isinstance(self._payload, list) else [self._payload]
            columns = [c.strip() for c in (self._on_conflict or "id").split(",")]
            return MockSupabaseResponse([
                self._client.upsert_row(self._table, item, columns) for item in items
            ])

        if self._op == "update":
            updated = []
            for row in rows:
                if self._matches(row):
                    row.update(copy.deepcopy(self._payload))
                    updated.append(copy.deepcopy(row))
            return MockSupabaseResponse(updated)

        if self._op == "delete":
            kept, deleted = [], []
            for row in rows:
                (deleted if self._matches(row) else kept).append(row)
            rows[:] = kept
            return MockSupabaseResponse(copy.deepcopy(deleted))

        selected = [row for row in rows if self._matches(row)]
        for column, desc in reversed(self._order):
            selected.sort(key=lambda r: (r.get(column) is None, str(r.get(column))), reverse=desc)
        total = len(selected)
        if self._range is not None:
            start, end = self._range
            selected = selected[start:end + 1]
        if self._limit is not None:
            selected = selected[:self._limit]

        return MockSupabaseResponse(copy.deepcopy(selected), count=total)


class MockSupabaseClient:
    """
    In-memory Supabase client.

    Usage:
        def test_something(mock_db):
            mock_db.seed("sheet_sources", [{"id": "src-1", ...}])
    """

    UNIQUE_KEYS = {
        "orders": [("workspace_id", "identity_key")],
        "sync_locks": [("lock_key",)],
    }
    DEFAULTS = {
        "orders": {
            "status": "pending",
            "status_modified_manually": False,
            "status_modified_at": None,
        },
        "sheet_sources": {
            "is_active": True,
            "sheet_name": "Sheet1",
        },
    }
    AUTO_ID_TABLES = {"orders", "sheet_sources"}

    def __init__(self):
        self._tables: dict[str, list[dict]] = {}
        self.calls: list[tuple[str, str]] = []

    def rows(self, table: str) -> list[dict]:
        return self._tables.setdefault(table, [])

    def seed(self, table: str, rows: list[dict]) -> None:
        for row in rows:
            self.insert_row(table, row)

    def all(self, table: str) -> list[dict]:
        return copy.deepcopy(self.rows(table))

    def table(self, name: str) -> MockSupabaseQuery:
        return MockSupabaseQuery(self, name)

    def _find_conflict(self, table: str, row: dict, columns: tuple) -> Optional[dict]:
        for existing in self.rows(table):
            if all(existing.get(c) == row.get(c) for c in columns):
                return existing
        return None

    def _raise_unique(self, table: str, columns: tuple):
        raise APIError({
            "code": "23505",
            "message": f'duplicate key value violates unique constraint "{table}_{"_".join(columns)}_key"',
            "details": None,
            "hint": None,
        })

    def insert_row(self, table: str, item: dict) -> dict:
        row = {**self.DEFAULTS.get(table, {}), **copy.deepcopy(item)}
        if table in self.AUTO_ID_TABLES:
            row.setdefault("id", str(uuid.uuid4()))
        row.setdefault("created_at", _now_iso())

        for columns in self.UNIQUE_KEYS.get(table, []):
            if self._find_conflict(table, row, columns):
                self._raise_unique(table, columns)
        if "id" in row and any(r.get("id") == row["id"] for r in self.rows(table)):
            self._raise_unique(table, ("id",))

        self.rows(table).append(row)
        return copy.deepcopy(row)

    def upsert_row(self, table: str, item: dict, columns: list[str]) -> dict:
        existing = self._find_conflict(table, item, tuple(columns))
        if existing is None:
            return self.insert_row(table, item)
        existing.update(copy.deepcopy(item))
        return copy.deepcopy(existing)


# ===================
# FIXTURES
# ===================

PATCHED_CLIENT_TARGETS = [
    "config.database.get_supabase_client",
    "services.source_service.get_supabase_client",
    "services.order_service.get_supabase_client",
    "services.identity_resolver.get_supabase_client",
    "services.reconciliation_writer.get_supabase_client",
    "services.sync_lock_service.get_supabase_client",
]

SINGLETONS = [
    ("services.source_service", "_source_service"),
    ("services.order_service", "_order_service"),
    ("services.identity_resolver", "_identity_resolver"),
    ("services.reconciliation_writer", "_reconciliation_writer"),
    ("services.sync_lock_service", "_lock_manager"),
    ("services.progress_broadcaster", "_broadcaster"),
    ("services.sync_orchestrator", "_orchestrator"),
    ("services.auto_sync_service", "_auto_sync_service"),
    ("integrations.google_sheets", "_sheets_client"),
]


@pytest.fixture
def mock_supabase() -> MockSupabaseClient:
    """Fresh in-memory Supabase client."""
    return MockSupabaseClient()


@pytest.fixture
def mock_db(mock_supabase) -> Generator:
    """
    Patch the database client with the in-memory one.

    Any service constructed inside the test gets the mock.
    """
    import services  # noqa: F401  (load modules before patching them)

    with ExitStack() as stack:
        for target in PATCHED_CLIENT_TARGETS:
            stack.enter_context(patch(target, return_value=mock_supabase))
        yield mock_supabase


@pytest.fixture
def reset_singletons(monkeypatch):
    """Drop cached service singletons so they are rebuilt per test."""
    import importlib

    for module_name, attribute in SINGLETONS:
        monkeypatch.setattr(importlib.import_module(module_name), attribute, None)


# ===================
# API TEST CLIENT
# ===================

@pytest.fixture
def test_client_with_mock_db(mock_db, reset_singletons):
    """
    FastAPI test client backed by the in-memory database.

    Usage:
        def test_endpoint(test_client_with_mock_db, mock_db):
            mock_db.seed("sheet_sources", [...])
            response = test_client_with_mock_db.get("/api/workspaces/ws-1/sources")
    """
    from fastapi.testclient import TestClient
    from main import app

    yield TestClient(app)
