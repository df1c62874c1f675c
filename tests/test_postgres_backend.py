"""
Tests for PostgresMetadataStore with a recording connection pool.

Tests cover:
- SQL parameters and row mapping for files, folders, grants and secrets
- jsonb attributes written and read through orjson
- Update column whitelists and attribute containment filters
- Wrapping of driver errors into StorageIOError
"""
from contextlib import asynccontextmanager

import orjson
import pytest

from envelope_vault.backends.postgres import SCHEMA, PostgresMetadataStore
from envelope_vault.exceptions import StorageIOError
from envelope_vault.models import (
    AccessLevel,
    FileMetadata,
    FolderAccessGrant,
    SecretKind,
    SecretRecord,
    utcnow,
)


class FakeConnection:
    """Records statements and replays queued results."""

    def __init__(self):
        self.calls = []
        self.results = []
        self.error = None

    def _next(self, method, sql, args, default):
        self.calls.append((method, " ".join(sql.split()), args))
        if self.error is not None:
            raise self.error
        return self.results.pop(0) if self.results else default

    async def execute(self, sql, *args):
        return self._next("execute", sql, args, "DELETE 0")

    async def fetchrow(self, sql, *args):
        return self._next("fetchrow", sql, args, None)

    async def fetch(self, sql, *args):
        return self._next("fetch", sql, args, [])

    async def fetchval(self, sql, *args):
        return self._next("fetchval", sql, args, 0)


class FakePool:
    def __init__(self):
        self.conn = FakeConnection()

    @asynccontextmanager
    async def acquire(self):
        yield self.conn


@pytest.fixture
def pool():
    return FakePool()


@pytest.fixture
def store(pool):
    return PostgresMetadataStore(pool)


def _file_row(**overrides):
    row = {
        "id": "file-1", "owner_id": "u1", "name": "a.txt", "size": 3,
        "mime_type": "text/plain", "storage_path": "1_ab_a.txt.encrypted",
        "folder_id": None, "created_at": utcnow(),
    }
    row.update(overrides)
    return row


def _secret_row(**overrides):
    now = utcnow()
    row = {
        "id": "s1", "owner_id": "u1", "kind": "apikeys", "label": "default",
        "ciphertext": "Y2lwaGVy", "folder_id": None,
        "attributes": '{"service_name": "openai"}', "is_active": True,
        "created_at": now, "updated_at": now, "last_used_at": None,
    }
    row.update(overrides)
    return row


class TestSchema:
    async def test_create_schema(self, store, pool):
        await store.create_schema()
        method, sql, _ = pool.conn.calls[0]
        assert method == "execute"
        assert "ON DELETE CASCADE" in SCHEMA
        assert "ON DELETE RESTRICT" in SCHEMA
        assert "lower(name)" in sql


class TestFiles:
    async def test_insert(self, store, pool):
        meta = FileMetadata(**_file_row())
        pool.conn.results.append(_file_row())
        stored = await store.insert_file(meta)
        assert stored.id == "file-1"
        _, sql, args = pool.conn.calls[0]
        assert sql.startswith("INSERT INTO vault.files")
        assert args[:3] == ("file-1", "u1", "a.txt")

    async def test_get_missing(self, store):
        assert await store.get_file("missing") is None

    async def test_delete_status(self, store, pool):
        pool.conn.results.append("DELETE 1")
        assert await store.delete_file("file-1") is True
        assert await store.delete_file("file-1") is False

    async def test_count(self, store, pool):
        pool.conn.results.append(4)
        assert await store.count_files("f1") == 4


class TestFolders:
    async def test_update_whitelist(self, store, pool):
        with pytest.raises(ValueError):
            await store.update_folder("f1", owner_id="someone")
        assert pool.conn.calls == []

    async def test_update_builds_set_clause(self, store, pool):
        await store.update_folder("f1", name="New", display_order=2)
        _, sql, args = pool.conn.calls[0]
        assert "SET name = $2, display_order = $3, updated_at = NOW()" in sql
        assert args == ("f1", "New", 2)

    async def test_get_folders_empty(self, store, pool):
        assert await store.get_folders([]) == []
        assert pool.conn.calls == []

    async def test_subtree_ids(self, store, pool):
        pool.conn.results.append([{"id": "f1"}, {"id": "f2"}, {"id": "f3"}])
        assert await store.subtree_ids("f1") == ["f1", "f2", "f3"]
        _, sql, args = pool.conn.calls[0]
        assert sql.startswith("WITH RECURSIVE subtree")
        assert args == ("f1",)

    async def test_folder_links(self, store, pool):
        pool.conn.results.append([
            {"kind": "workspace", "id": "ws-1", "name": "Acme", "folder_id": "f1"},
        ])
        links = await store.folder_links("f1")
        assert links[0].kind == "workspace"
        assert links[0].name == "Acme"

    async def test_get_workspace(self, store, pool):
        pool.conn.results.extend([
            {"id": "ws-1", "name": "Acme", "owner_id": "u1", "folder_id": "f1"},
            [{"folder_id": "f2"}, {"folder_id": "f3"}],
            [{"user_id": "u2"}],
        ])
        workspace = await store.get_workspace("ws-1")
        assert workspace.channel_folder_ids == ["f2", "f3"]
        assert workspace.member_ids == ["u2"]

    async def test_get_workspace_missing(self, store, pool):
        assert await store.get_workspace("ws-x") is None
        assert len(pool.conn.calls) == 1


class TestGrants:
    async def test_upsert(self, store, pool):
        now = utcnow()
        pool.conn.results.append({
            "folder_id": "f1", "user_id": "u2", "access_level": "read",
            "granted_by": "u1", "created_at": now, "updated_at": now,
        })
        grant = await store.upsert_grant(
            FolderAccessGrant(folder_id="f1", user_id="u2", access_level="read")
        )
        assert grant.access_level is AccessLevel.READ
        _, sql, args = pool.conn.calls[0]
        assert "ON CONFLICT (folder_id, user_id)" in sql
        assert args == ("f1", "u2", "read", None)


class TestSecrets:
    async def test_insert_serializes_attributes(self, store, pool):
        record = SecretRecord(
            id="s1", owner_id="u1", kind=SecretKind.APIKEYS, label="default",
            ciphertext="Y2lwaGVy", attributes={"service_name": "openai"},
        )
        pool.conn.results.append(_secret_row())
        stored = await store.insert_secret(record)
        assert stored.attributes == {"service_name": "openai"}
        _, _, args = pool.conn.calls[0]
        assert orjson.loads(args[6]) == {"service_name": "openai"}

    async def test_reads_bytes_attributes(self, store, pool):
        pool.conn.results.append(_secret_row(attributes=b'{"category": "work"}'))
        record = await store.get_secret("s1")
        assert record.attributes == {"category": "work"}

    async def test_list_filters(self, store, pool):
        await store.list_secrets(
            "u1", SecretKind.APIKEYS, service_name="openai", is_active=True,
        )
        _, sql, args = pool.conn.calls[0]
        assert "is_active = $3" in sql
        assert "attributes @> $4::jsonb" in sql
        assert args[:3] == ("u1", "apikeys", True)
        assert orjson.loads(args[3]) == {"service_name": "openai"}

    async def test_update_attributes_cast(self, store, pool):
        await store.update_secret("s1", attributes={"a": 1})
        _, sql, args = pool.conn.calls[0]
        assert "attributes = $2::jsonb" in sql
        assert orjson.loads(args[1]) == {"a": 1}


class TestErrors:
    async def test_driver_error_wrapped(self, store, pool):
        pool.conn.error = RuntimeError("connection reset")
        with pytest.raises(StorageIOError) as exc_info:
            await store.get_file("file-1")
        assert exc_info.value.operation == "get_file"
        assert isinstance(exc_info.value.__cause__, RuntimeError)
