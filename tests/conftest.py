"""
Shared test fixtures.
"""

import sys
from pathlib import Path

# Add project root to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

import pytest
from unittest.mock import patch
from datetime import datetime, timezone
from typing import Generator

# ===================
# MOCK SUPABASE CLIENT
# ===================

class MockSupabaseResponse:
    """Mock Supabase query response."""

    def __init__(self, data=None, count: int = None):
        self.data = data if data is not None else []
        self.count = count if count is not None else (
            len(self.data) if isinstance(self.data, list) else None
        )


class MockSupabaseQuery:
    """Mock Supabase query builder with chainable methods."""

    def __init__(self, client: "MockSupabaseClient", table: str, data: list = None):
        self._client = client
        self._table = table
        self._data = list(data or [])
        self._operation = "select"
        self._payload = None
        self._filters: list[tuple] = []
        self._range = None
        self._count = None

    def select(self, *args, **kwargs):
        self._count = kwargs.get("count")
        return self

    def insert(self, data):
        self._operation = "insert"
        self._payload = data if isinstance(data, list) else [data]
        return self

    def upsert(self, data, on_conflict: str = None, **kwargs):
        self._operation = "upsert"
        self._payload = data if isinstance(data, list) else [data]
        self._filters.append(("on_conflict", on_conflict))
        return self

    def delete(self, count=None, **kwargs):
        self._operation = "delete"
        self._count = count
        return self

    def eq(self, column, value):
        self._filters.append(("eq", column, value))
        return self

    def in_(self, column, values):
        self._filters.append(("in", column, list(values)))
        return self

    def order(self, column, **kwargs):
        self._data.sort(key=lambda row: row.get(column) or "")
        return self

    def range(self, start, end):
        self._range = (start, end)
        return self

    def limit(self, count):
        self._range = (0, count - 1)
        return self

    def _matches(self, row: dict) -> bool:
        for f in self._filters:
            if f[0] == "eq" and row.get(f[1]) != f[2]:
                return False
            if f[0] == "in" and row.get(f[1]) not in f[2]:
                return False
        return True

    def execute(self) -> MockSupabaseResponse:
        self._client.calls.append({
            "table": self._table,
            "operation": self._operation,
            "payload": self._payload,
            "filters": self._filters,
        })

        failure = self._client.failures.get((self._table, self._operation))
        if failure is not None:
            raise failure

        if self._operation in ("insert", "upsert"):
            return MockSupabaseResponse(data=self._payload)

        rows = [row for row in self._data if self._matches(row)]
        if self._operation == "delete":
            return MockSupabaseResponse(data=rows, count=len(rows))

        if self._range is not None:
            start, end = self._range
            rows = rows[start:end + 1]
        return MockSupabaseResponse(data=rows)


class MockSupabaseRpc:
    """Mock result of client.rpc(...)."""

    def __init__(self, client: "MockSupabaseClient", name: str, params: dict):
        self._client = client
        self._name = name
        self._params = params

    def execute(self) -> MockSupabaseResponse:
        self._client.calls.append({
            "rpc": self._name,
            "params": self._params,
        })
        failure = self._client.failures.get(("rpc", self._name))
        if failure is not None:
            raise failure
        return MockSupabaseResponse(data=self._client.rpc_results.get(self._name))


class MockSupabaseClient:
    """
    Mock Supabase client.

    Records every executed call in `calls`; `fail(table, operation, error)`
    makes that operation raise.
    """

    def __init__(self):
        self._tables = {}
        self.calls: list[dict] = []
        self.failures: dict[tuple, Exception] = {}
        self.rpc_results: dict = {}

    def set_table_data(self, table_name: str, data: list):
        """Configure mock data for a table."""
        self._tables[table_name] = data

    def fail(self, table_name: str, operation: str, error: Exception):
        self.failures[(table_name, operation)] = error

    def table(self, name: str) -> MockSupabaseQuery:
        """Get mock table query."""
        return MockSupabaseQuery(self, name, self._tables.get(name, []))

    def rpc(self, name: str, params: dict) -> MockSupabaseRpc:
        return MockSupabaseRpc(self, name, params)

    def calls_for(self, table_name: str, operation: str) -> list[dict]:
        return [
            c for c in self.calls
            if c.get("table") == table_name and c.get("operation") == operation
        ]


# ===================
# FIXTURES
# ===================

@pytest.fixture
def mock_supabase() -> MockSupabaseClient:
    """
    Create a mock Supabase client.

    Usage:
        def test_something(mock_supabase):
            mock_supabase.set_table_data("wholesaler_products", [
                {"wholesaler_id": "w1", "product_code": "LJ-W001", ...}
            ])
    """
    return MockSupabaseClient()


@pytest.fixture
def mock_db(mock_supabase) -> Generator:
    """
    Patch the database client with mock.

    Usage:
        def test_something(mock_db, mock_supabase):
            store = SupabaseCatalogStore()  # talks to mock_supabase
    """
    with patch("config.database.get_supabase_client", return_value=mock_supabase):
        with patch("services.catalog_store.get_supabase_client", return_value=mock_supabase):
            yield mock_supabase


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def clock(fixed_now):
    """Deterministic clock for last_updated stamps."""
    return lambda: fixed_now


@pytest.fixture
def memory_store():
    """Empty in-memory catalog store."""
    from services.catalog_store import InMemoryCatalogStore

    return InMemoryCatalogStore()


@pytest.fixture
def service(memory_store, clock):
    """
    Catalog import service over an in-memory store.

    Batch size 2 so small files still span several batches.
    """
    from services.catalog_import_service import CatalogImportService

    return CatalogImportService(
        memory_store,
        batch_size=2,
        clock=clock,
        preview_limit=100,
        invalid_preview_limit=10,
    )


# ===================
# API TEST CLIENT
# ===================

@pytest.fixture
def test_client(service):
    """
    Create FastAPI test client wired to the in-memory `service` fixture.

    Usage:
        def test_endpoint(test_client):
            response = test_client.get("/api/wholesalers/w1/catalog/stats")
            assert response.status_code == 200
    """
    from fastapi.testclient import TestClient
    from main import app

    with patch("routes.catalog.get_catalog_import_service", return_value=service):
        yield TestClient(app)
