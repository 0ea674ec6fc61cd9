import copy
import json
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock

import pytest

from schemaflow.db.pool import PoolKind
from schemaflow.errors import PersistenceError
from schemaflow.models.schema import GlobalSchema, SchemaColumn
from schemaflow.repositories import audit_repo, record_repo, schema_repo, version_repo


def make_schema(*columns, version: int = 1, schema_id: str = "schema_test") -> GlobalSchema:
    """Build a schema from SchemaColumn objects or bare column names."""
    return GlobalSchema(
        id=schema_id,
        user_id="owner@example.com",
        project_id="project_1",
        name="Customers",
        columns=[c if isinstance(c, SchemaColumn) else SchemaColumn(name=c) for c in columns],
        version=version,
    )


# --- Connection fakes ---


class FakeResult:
    def __init__(self, rows=None, rowcount=0):
        self._rows = rows or []
        self.rowcount = rowcount

    def mappings(self):
        return self

    def all(self):
        return list(self._rows)


class FakeTransaction:
    def __init__(self, conn):
        self.conn = conn

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.conn.commits += 1
        else:
            self.conn.rollbacks += 1
        return False


class FakeConnection:
    def __init__(self, backend, kind: PoolKind, number: int):
        self.backend = backend
        self.kind = kind
        self.number = number
        self.closed = False
        self.commits = 0
        self.rollbacks = 0

    def begin(self):
        return FakeTransaction(self)

    async def execute(self, statement, params=None):
        self.backend.executed.append((self.kind, str(statement), params))
        if self.backend.error is not None:
            raise self.backend.error
        return FakeResult(self.backend.rows, self.backend.rowcount)

    async def close(self):
        if self.backend.close_error is not None:
            raise self.backend.close_error
        self.closed = True


class FakeBackend:
    """Hands out FakeConnections and records every statement they run."""

    def __init__(self):
        self.connections: list[FakeConnection] = []
        self.executed: list[tuple[PoolKind, str, object]] = []
        self.rows: list[dict] = []
        self.rowcount = 0
        self.error: Exception | None = None
        self.close_error: Exception | None = None

    def factory(self, kind: PoolKind):
        async def connect():
            conn = FakeConnection(self, kind, len(self.connections))
            self.connections.append(conn)
            return conn

        return connect

    def factories(self):
        return {kind: self.factory(kind) for kind in PoolKind}


@pytest.fixture
def backend():
    return FakeBackend()


# --- In-memory repositories ---


class InMemoryStore:
    def __init__(self):
        self.schemas: dict[str, GlobalSchema] = {}
        self.versions: dict[str, list] = {}
        self.records: dict[str, dict] = {}
        self.records_table = True
        self.failing_records: set[str] = set()
        self.fetch_error: PersistenceError | None = None
        self.inserted_rows: list[dict] = []

    # schema_repo
    async def insert_schema(self, db, schema):
        self.schemas[schema.id] = schema.model_copy(deep=True)

    async def get_schema(self, db, schema_id):
        stored = self.schemas.get(schema_id)
        return stored.model_copy(deep=True) if stored else None

    async def update_schema(self, db, schema, expected_version=None):
        stored = self.schemas.get(schema.id)
        if stored is None:
            return False
        if expected_version is not None and stored.version != expected_version:
            return False
        self.schemas[schema.id] = schema.model_copy(deep=True)
        return True

    async def delete_schema(self, db, schema_id):
        return self.schemas.pop(schema_id, None) is not None

    async def list_for_project(self, db, project_id, active_only=False):
        return [
            s.model_copy(deep=True)
            for s in self.schemas.values()
            if s.project_id == project_id and (s.is_active or not active_only)
        ]

    async def set_active(self, db, project_id, schema_id):
        found = False
        for s in self.schemas.values():
            if s.project_id == project_id:
                s.is_active = s.id == schema_id
                found = found or s.id == schema_id
        return found

    # version_repo
    async def insert_version(self, db, version):
        existing = self.versions.setdefault(version.schema_id, [])
        if any(v.version == version.version for v in existing):
            raise PersistenceError("duplicate key value violates unique constraint")
        existing.append(version)

    async def list_versions(self, db, schema_id):
        return sorted(self.versions.get(schema_id, []), key=lambda v: v.version, reverse=True)

    async def get_version(self, db, schema_id, version):
        return next((v for v in self.versions.get(schema_id, []) if v.version == version), None)

    async def get_latest(self, db, schema_id):
        versions = await self.list_versions(db, schema_id)
        return versions[0] if versions else None

    async def delete_versions(self, db, schema_id):
        return len(self.versions.pop(schema_id, []))

    # record_repo
    def add_record(self, record_id, schema_id, data):
        self.records[record_id] = {"schema_id": schema_id, "data": data}

    async def table_exists(self, db):
        return self.records_table

    async def fetch_batch(self, db, schema_id, after_id, limit):
        if self.fetch_error is not None:
            raise self.fetch_error
        ids = sorted(
            rid for rid, r in self.records.items()
            if r["schema_id"] == schema_id and (after_id is None or rid > after_id)
        )
        return [
            {"id": rid, "data": self.records[rid]["data"] if isinstance(self.records[rid]["data"], str)
             else json.dumps(self.records[rid]["data"])}
            for rid in ids[:limit]
        ]

    async def update_data(self, db, record_id, data):
        if record_id in self.failing_records:
            raise PersistenceError("connection reset by peer")
        self.records[record_id]["data"] = data

    async def insert_records(self, db, schema_id, rows):
        self.inserted_rows.extend(rows)
        return len(rows)


@pytest.fixture
def store(monkeypatch):
    """Replace every repository function with an in-memory equivalent."""
    fake = InMemoryStore()
    for name in ("insert_schema", "get_schema", "update_schema", "delete_schema", "list_for_project", "set_active"):
        monkeypatch.setattr(schema_repo, name, getattr(fake, name))
    for name in ("insert_version", "list_versions", "get_version", "get_latest", "delete_versions"):
        monkeypatch.setattr(version_repo, name, getattr(fake, name))
    for name in ("table_exists", "fetch_batch", "update_data", "insert_records"):
        monkeypatch.setattr(record_repo, name, getattr(fake, name))
    fake.audit = AsyncMock()
    monkeypatch.setattr(audit_repo, "record_event", fake.audit)
    return fake


class InMemoryDatabase:
    """Database handle for service tests; transaction() restores schemas and versions if the block raises."""

    def __init__(self, store: InMemoryStore):
        self.store = store
        self.commits = 0
        self.rollbacks = 0

    @asynccontextmanager
    async def transaction(self):
        saved = copy.deepcopy(self.store.schemas), copy.deepcopy(self.store.versions)
        try:
            yield self
        except BaseException:
            self.store.schemas, self.store.versions = saved
            self.rollbacks += 1
            raise
        self.commits += 1


@pytest.fixture
def db(store):
    return InMemoryDatabase(store)
