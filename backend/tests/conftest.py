"""Pytest configuration and fixtures."""

import os
import secrets
import uuid

import pytest

# Generate a unique test secret for this test run to prevent token forgery
_TEST_JWT_SECRET = f"test-only-{secrets.token_urlsafe(32)}"
TEST_CRON_SECRET = "test-cron-secret"

os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
os.environ.setdefault("JWT_SECRET_KEY", _TEST_JWT_SECRET)
os.environ["CRON_SECRET"] = TEST_CRON_SECRET
os.environ.setdefault("RATE_LIMIT_STORAGE_URI", "memory://")

from app.main import app  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402


class MockExecuteResult:
    """Mock Supabase execute() result."""

    def __init__(self, data: list = None):
        self.data = data or []


class MockQueryBuilder:
    """One chained Supabase query against FakeSupabase's in-memory tables."""

    def __init__(self, db: "FakeSupabase", table: str):
        self._db = db
        self._table = table
        self._mode = "select"
        self._payload = None
        self._fields = None
        self._filters = []
        self._order = None
        self._limit_value = None
        self._range = None

    def select(self, fields: str = "*") -> "MockQueryBuilder":
        self._mode = "select"
        if fields != "*":
            self._fields = [f.strip() for f in fields.split(",")]
        return self

    def insert(self, row: dict) -> "MockQueryBuilder":
        self._mode = "insert"
        self._payload = row
        return self

    def update(self, row: dict) -> "MockQueryBuilder":
        self._mode = "update"
        self._payload = row
        return self

    def delete(self) -> "MockQueryBuilder":
        self._mode = "delete"
        return self

    def eq(self, field: str, value) -> "MockQueryBuilder":
        self._filters.append(lambda row: row.get(field) == value)
        return self

    def in_(self, field: str, values) -> "MockQueryBuilder":
        allowed = set(values)
        self._filters.append(lambda row: row.get(field) in allowed)
        return self

    def order(self, field: str, desc: bool = False) -> "MockQueryBuilder":
        self._order = (field, desc)
        return self

    def limit(self, n: int) -> "MockQueryBuilder":
        self._limit_value = n
        return self

    def range(self, start: int, end: int) -> "MockQueryBuilder":
        self._range = (start, end)
        return self

    def _matches(self, row: dict) -> bool:
        return all(f(row) for f in self._filters)

    def execute(self) -> MockExecuteResult:
        if self._db.fail_next:
            error, self._db.fail_next = self._db.fail_next, None
            raise error

        rows = self._db.tables.setdefault(self._table, [])

        if self._mode == "insert":
            row = dict(self._payload)
            unique = self._db.unique_keys.get(self._table)
            if unique and any(r.get(unique) == row.get(unique) for r in rows):
                raise Exception(f'duplicate key value violates unique constraint "{unique}"')
            row.setdefault("id", str(uuid.uuid4()))
            rows.append(row)
            return MockExecuteResult([dict(row)])

        matched = [r for r in rows if self._matches(r)]

        if self._mode == "update":
            for r in matched:
                r.update(self._payload)
            return MockExecuteResult([dict(r) for r in matched])

        if self._mode == "delete":
            self._db.tables[self._table] = [r for r in rows if not self._matches(r)]
            return MockExecuteResult([dict(r) for r in matched])

        if self._order:
            field, desc = self._order
            matched = sorted(matched, key=lambda r: r.get(field) or "", reverse=desc)
        if self._range is not None:
            start, end = self._range
            matched = matched[start : end + 1]
        if self._limit_value is not None:
            matched = matched[: self._limit_value]
        if self._db.max_rows is not None:
            matched = matched[: self._db.max_rows]
        if self._fields:
            matched = [{k: r.get(k) for k in self._fields} for r in matched]
        return MockExecuteResult([dict(r) for r in matched])


class FakeSupabase:
    """Minimal in-memory stand-in for the supabase Client."""

    def __init__(self):
        self.tables: dict[str, list[dict]] = {}
        self.unique_keys = {"user_data": "user_id"}
        self.fail_next: Exception | None = None
        # PostgREST max-rows: cap on rows one select returns
        self.max_rows: int | None = None

    def table(self, name: str) -> MockQueryBuilder:
        return MockQueryBuilder(self, name)


@pytest.fixture
def fake_db(monkeypatch):
    """Route every database call to an in-memory FakeSupabase."""
    from app import database

    db = FakeSupabase()
    monkeypatch.setattr(database, "_supabase_client", db)
    app.dependency_overrides[database.get_db] = lambda: db
    yield db
    app.dependency_overrides.pop(database.get_db, None)


@pytest.fixture(autouse=True)
def reset_rate_limits():
    """Each test starts with an empty rate-limit window."""
    from app.rate_limit import limiter

    limiter.reset()
    yield


@pytest.fixture
def client(fake_db):
    """Create a test client."""
    return TestClient(app)


def _auth_headers(user_id: str) -> dict:
    from app.auth import create_access_token
    from app.config import get_settings

    token = create_access_token(user_id, get_settings())
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    """Auth headers for a test user."""
    # Use clearly invalid test ID that cannot collide with production IDs
    return _auth_headers("usr_TEST_ONLY_000000")


@pytest.fixture
def make_auth_headers():
    """Factory for auth headers of arbitrary users."""
    return _auth_headers


@pytest.fixture
def cron_headers():
    return {"Authorization": f"Bearer {TEST_CRON_SECRET}"}
