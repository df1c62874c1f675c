"""
PostgreSQL Metadata Store — vault rows over an asyncpg-compatible pool.

The folder hierarchy relies on ``ON DELETE CASCADE`` foreign keys: deleting
a folder removes descendant folders, their files, secrets and grants in
one statement. Collaborator links (workspaces, channels) reference
folders with ``ON DELETE RESTRICT``, so the database refuses a delete the
guard hook would also refuse.

Blobs are not touched here; a cascaded file row leaves its blob behind in
the Object Store.
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import orjson

from ..exceptions import StorageIOError, VaultError
from ..models import (
    AccessLevel,
    FileMetadata,
    Folder,
    FolderAccessGrant,
    FolderLink,
    SecretKind,
    SecretRecord,
    WorkspaceLink,
)
from .base import MetadataStore

logger = logging.getLogger("envelope.vault")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

SCHEMA = """
CREATE SCHEMA IF NOT EXISTS vault;

CREATE TABLE IF NOT EXISTS vault.folders (
    id text PRIMARY KEY,
    owner_id text NOT NULL,
    name text NOT NULL,
    parent_id text REFERENCES vault.folders (id) ON DELETE CASCADE,
    display_order integer NOT NULL DEFAULT 0,
    created_at timestamptz NOT NULL DEFAULT NOW(),
    updated_at timestamptz NOT NULL DEFAULT NOW()
);
CREATE UNIQUE INDEX IF NOT EXISTS folders_sibling_name_uq
    ON vault.folders (owner_id, COALESCE(parent_id, ''), lower(name));

CREATE TABLE IF NOT EXISTS vault.files (
    id text PRIMARY KEY,
    owner_id text NOT NULL,
    name text NOT NULL,
    size bigint NOT NULL,
    mime_type text NOT NULL,
    storage_path text NOT NULL UNIQUE,
    folder_id text REFERENCES vault.folders (id) ON DELETE CASCADE,
    created_at timestamptz NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS vault.folder_access (
    folder_id text NOT NULL REFERENCES vault.folders (id) ON DELETE CASCADE,
    user_id text NOT NULL,
    access_level text NOT NULL CHECK (access_level IN ('read', 'write', 'admin')),
    granted_by text,
    created_at timestamptz NOT NULL DEFAULT NOW(),
    updated_at timestamptz NOT NULL DEFAULT NOW(),
    PRIMARY KEY (folder_id, user_id)
);

CREATE TABLE IF NOT EXISTS vault.secrets (
    id text PRIMARY KEY,
    owner_id text NOT NULL,
    kind text NOT NULL CHECK (kind IN ('passwords', 'apikeys')),
    label text NOT NULL,
    ciphertext text NOT NULL,
    folder_id text REFERENCES vault.folders (id) ON DELETE CASCADE,
    attributes jsonb NOT NULL DEFAULT '{}'::jsonb,
    is_active boolean NOT NULL DEFAULT TRUE,
    created_at timestamptz NOT NULL DEFAULT NOW(),
    updated_at timestamptz NOT NULL DEFAULT NOW(),
    last_used_at timestamptz
);

CREATE TABLE IF NOT EXISTS vault.workspaces (
    id text PRIMARY KEY,
    name text NOT NULL,
    owner_id text NOT NULL,
    folder_id text REFERENCES vault.folders (id) ON DELETE RESTRICT
);

CREATE TABLE IF NOT EXISTS vault.channels (
    id text PRIMARY KEY,
    workspace_id text NOT NULL REFERENCES vault.workspaces (id) ON DELETE CASCADE,
    name text NOT NULL,
    folder_id text REFERENCES vault.folders (id) ON DELETE RESTRICT
);

CREATE TABLE IF NOT EXISTS vault.workspace_members (
    workspace_id text NOT NULL REFERENCES vault.workspaces (id) ON DELETE CASCADE,
    user_id text NOT NULL,
    PRIMARY KEY (workspace_id, user_id)
);
"""

# ---------------------------------------------------------------------------
# SQL statements
# ---------------------------------------------------------------------------

_INSERT_FILE = """
INSERT INTO vault.files (id, owner_id, name, size, mime_type, storage_path, folder_id, created_at)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
RETURNING *
"""

_SELECT_FILE = "SELECT * FROM vault.files WHERE id = $1"

_MOVE_FILE = "UPDATE vault.files SET folder_id = $2 WHERE id = $1 RETURNING *"

_DELETE_FILE = "DELETE FROM vault.files WHERE id = $1"

_SELECT_FILES = """
SELECT * FROM vault.files
WHERE owner_id = $1 AND folder_id IS NOT DISTINCT FROM $2
ORDER BY created_at DESC
"""

_COUNT_FILES = """
SELECT count(*) FROM vault.files WHERE folder_id IS NOT DISTINCT FROM $1
"""

_INSERT_FOLDER = """
INSERT INTO vault.folders (id, owner_id, name, parent_id, display_order, created_at, updated_at)
VALUES ($1, $2, $3, $4, $5, $6, $7)
RETURNING *
"""

_SELECT_FOLDER = "SELECT * FROM vault.folders WHERE id = $1"

_SELECT_FOLDERS = "SELECT * FROM vault.folders WHERE id = ANY($1::text[])"

_SELECT_CHILD_FOLDERS = """
SELECT * FROM vault.folders
WHERE owner_id = $1 AND parent_id IS NOT DISTINCT FROM $2
ORDER BY display_order, name
"""

_SELECT_SUBTREE = """
WITH RECURSIVE subtree (id, depth) AS (
    SELECT id, 0 FROM vault.folders WHERE id = $1
    UNION
    SELECT f.id, s.depth + 1 FROM vault.folders f
    JOIN subtree s ON f.parent_id = s.id
)
SELECT id FROM subtree ORDER BY depth, id
"""

_DELETE_FOLDER = "DELETE FROM vault.folders WHERE id = $1"

_SELECT_FOLDER_LINKS = """
SELECT 'workspace' AS kind, id, name, folder_id FROM vault.workspaces WHERE folder_id = $1
UNION ALL
SELECT 'channel' AS kind, id, name, folder_id FROM vault.channels WHERE folder_id = $1
"""

_SELECT_WORKSPACE = "SELECT id, name, owner_id, folder_id FROM vault.workspaces WHERE id = $1"

_SELECT_CHANNEL_FOLDERS = """
SELECT folder_id FROM vault.channels
WHERE workspace_id = $1 AND folder_id IS NOT NULL
ORDER BY id
"""

_SELECT_MEMBERS = """
SELECT user_id FROM vault.workspace_members WHERE workspace_id = $1 ORDER BY user_id
"""

_UPSERT_GRANT = """
INSERT INTO vault.folder_access (folder_id, user_id, access_level, granted_by)
VALUES ($1, $2, $3, $4)
ON CONFLICT (folder_id, user_id)
DO UPDATE SET access_level = EXCLUDED.access_level,
              granted_by = EXCLUDED.granted_by,
              updated_at = NOW()
RETURNING *
"""

_SELECT_GRANT = """
SELECT * FROM vault.folder_access WHERE folder_id = $1 AND user_id = $2
"""

_SELECT_GRANTS = """
SELECT * FROM vault.folder_access WHERE folder_id = $1 ORDER BY created_at
"""

_SELECT_USER_GRANTS = """
SELECT * FROM vault.folder_access WHERE user_id = $1 ORDER BY created_at
"""

_UPDATE_GRANT = """
UPDATE vault.folder_access
SET access_level = $3, updated_at = NOW()
WHERE folder_id = $1 AND user_id = $2
RETURNING *
"""

_DELETE_GRANT = """
DELETE FROM vault.folder_access WHERE folder_id = $1 AND user_id = $2
"""

_INSERT_SECRET = """
INSERT INTO vault.secrets (id, owner_id, kind, label, ciphertext, folder_id,
                           attributes, is_active, created_at, updated_at)
VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8, $9, $10)
RETURNING *
"""

_SELECT_SECRET = "SELECT * FROM vault.secrets WHERE id = $1"

_DELETE_SECRET = "DELETE FROM vault.secrets WHERE id = $1"

_FOLDER_COLUMNS = frozenset({"name", "parent_id", "display_order"})
_SECRET_COLUMNS = frozenset(
    {"label", "ciphertext", "folder_id", "attributes", "is_active", "last_used_at"}
)
_SECRET_FILTER_COLUMNS = frozenset({"label", "folder_id", "is_active"})


def _affected(status: str) -> bool:
    """True if an asyncpg command status ("DELETE 1") touched any row."""
    return status.rsplit(" ", 1)[-1] != "0"


def _set_clause(fields: dict[str, Any], allowed: frozenset, first: int) -> tuple[str, list]:
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Cannot update column(s): {sorted(unknown)}")
    parts, args = [], []
    for offset, (column, value) in enumerate(fields.items()):
        cast = "::jsonb" if column == "attributes" else ""
        parts.append(f"{column} = ${first + offset}{cast}")
        args.append(orjson.dumps(value).decode() if column == "attributes" else value)
    parts.append("updated_at = NOW()")
    return ", ".join(parts), args


def _secret(row: Any) -> SecretRecord:
    data = dict(row)
    if isinstance(data.get("attributes"), (str, bytes)):
        data["attributes"] = orjson.loads(data["attributes"])
    return SecretRecord.model_validate(data)


class PostgresMetadataStore(MetadataStore):
    """Metadata Store over an asyncpg-compatible connection pool.

    Every database error is raised as StorageIOError; nothing is retried.
    """

    def __init__(self, db_pool: Any):
        self._db = db_pool

    @asynccontextmanager
    async def _connection(self, operation: str) -> AsyncIterator[Any]:
        try:
            async with self._db.acquire() as conn:
                yield conn
        except VaultError:
            raise
        except Exception as err:
            raise StorageIOError(
                f"Metadata store {operation} failed: {err}", operation=operation,
            ) from err

    async def create_schema(self) -> None:
        async with self._connection("create_schema") as conn:
            await conn.execute(SCHEMA)
        logger.info("Vault schema ensured")

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    async def insert_file(self, meta: FileMetadata) -> FileMetadata:
        async with self._connection("insert_file") as conn:
            row = await conn.fetchrow(
                _INSERT_FILE,
                meta.id, meta.owner_id, meta.name, meta.size, meta.mime_type,
                meta.storage_path, meta.folder_id, meta.created_at,
            )
        return FileMetadata.model_validate(dict(row))

    async def get_file(self, file_id: str) -> Optional[FileMetadata]:
        async with self._connection("get_file") as conn:
            row = await conn.fetchrow(_SELECT_FILE, file_id)
        return FileMetadata.model_validate(dict(row)) if row else None

    async def update_file_folder(
        self, file_id: str, folder_id: Optional[str]
    ) -> Optional[FileMetadata]:
        async with self._connection("update_file_folder") as conn:
            row = await conn.fetchrow(_MOVE_FILE, file_id, folder_id)
        return FileMetadata.model_validate(dict(row)) if row else None

    async def delete_file(self, file_id: str) -> bool:
        async with self._connection("delete_file") as conn:
            status = await conn.execute(_DELETE_FILE, file_id)
        return _affected(status)

    async def list_files(
        self, owner_id: str, folder_id: Optional[str] = None
    ) -> list[FileMetadata]:
        async with self._connection("list_files") as conn:
            rows = await conn.fetch(_SELECT_FILES, owner_id, folder_id)
        return [FileMetadata.model_validate(dict(r)) for r in rows]

    async def count_files(self, folder_id: Optional[str]) -> int:
        async with self._connection("count_files") as conn:
            return int(await conn.fetchval(_COUNT_FILES, folder_id))

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    async def insert_folder(self, folder: Folder) -> Folder:
        async with self._connection("insert_folder") as conn:
            row = await conn.fetchrow(
                _INSERT_FOLDER,
                folder.id, folder.owner_id, folder.name, folder.parent_id,
                folder.display_order, folder.created_at, folder.updated_at,
            )
        return Folder.model_validate(dict(row))

    async def get_folder(self, folder_id: str) -> Optional[Folder]:
        async with self._connection("get_folder") as conn:
            row = await conn.fetchrow(_SELECT_FOLDER, folder_id)
        return Folder.model_validate(dict(row)) if row else None

    async def get_folders(self, folder_ids: list[str]) -> list[Folder]:
        if not folder_ids:
            return []
        async with self._connection("get_folders") as conn:
            rows = await conn.fetch(_SELECT_FOLDERS, list(folder_ids))
        return [Folder.model_validate(dict(r)) for r in rows]

    async def list_child_folders(
        self, owner_id: str, parent_id: Optional[str]
    ) -> list[Folder]:
        async with self._connection("list_child_folders") as conn:
            rows = await conn.fetch(_SELECT_CHILD_FOLDERS, owner_id, parent_id)
        return [Folder.model_validate(dict(r)) for r in rows]

    async def update_folder(self, folder_id: str, **fields: Any) -> Optional[Folder]:
        clause, args = _set_clause(fields, _FOLDER_COLUMNS, 2)
        sql = f"UPDATE vault.folders SET {clause} WHERE id = $1 RETURNING *"
        async with self._connection("update_folder") as conn:
            row = await conn.fetchrow(sql, folder_id, *args)
        return Folder.model_validate(dict(row)) if row else None

    async def subtree_ids(self, folder_id: str) -> list[str]:
        async with self._connection("subtree_ids") as conn:
            rows = await conn.fetch(_SELECT_SUBTREE, folder_id)
        return [r["id"] for r in rows]

    async def delete_folder(self, folder_id: str) -> bool:
        async with self._connection("delete_folder") as conn:
            status = await conn.execute(_DELETE_FOLDER, folder_id)
        return _affected(status)

    async def folder_links(self, folder_id: str) -> list[FolderLink]:
        async with self._connection("folder_links") as conn:
            rows = await conn.fetch(_SELECT_FOLDER_LINKS, folder_id)
        return [FolderLink.model_validate(dict(r)) for r in rows]

    async def get_workspace(self, workspace_id: str) -> Optional[WorkspaceLink]:
        async with self._connection("get_workspace") as conn:
            row = await conn.fetchrow(_SELECT_WORKSPACE, workspace_id)
            if row is None:
                return None
            channels = await conn.fetch(_SELECT_CHANNEL_FOLDERS, workspace_id)
            members = await conn.fetch(_SELECT_MEMBERS, workspace_id)
        return WorkspaceLink(
            workspace_id=row["id"],
            name=row["name"],
            owner_id=row["owner_id"],
            folder_id=row["folder_id"],
            channel_folder_ids=[c["folder_id"] for c in channels],
            member_ids=[m["user_id"] for m in members],
        )

    # ------------------------------------------------------------------
    # Access grants
    # ------------------------------------------------------------------

    async def upsert_grant(self, grant: FolderAccessGrant) -> FolderAccessGrant:
        async with self._connection("upsert_grant") as conn:
            row = await conn.fetchrow(
                _UPSERT_GRANT,
                grant.folder_id, grant.user_id,
                AccessLevel(grant.access_level).value, grant.granted_by,
            )
        return FolderAccessGrant.model_validate(dict(row))

    async def get_grant(
        self, folder_id: str, user_id: str
    ) -> Optional[FolderAccessGrant]:
        async with self._connection("get_grant") as conn:
            row = await conn.fetchrow(_SELECT_GRANT, folder_id, user_id)
        return FolderAccessGrant.model_validate(dict(row)) if row else None

    async def list_grants(self, folder_id: str) -> list[FolderAccessGrant]:
        async with self._connection("list_grants") as conn:
            rows = await conn.fetch(_SELECT_GRANTS, folder_id)
        return [FolderAccessGrant.model_validate(dict(r)) for r in rows]

    async def list_user_grants(self, user_id: str) -> list[FolderAccessGrant]:
        async with self._connection("list_user_grants") as conn:
            rows = await conn.fetch(_SELECT_USER_GRANTS, user_id)
        return [FolderAccessGrant.model_validate(dict(r)) for r in rows]

    async def update_grant_level(
        self, folder_id: str, user_id: str, level: AccessLevel
    ) -> Optional[FolderAccessGrant]:
        async with self._connection("update_grant_level") as conn:
            row = await conn.fetchrow(
                _UPDATE_GRANT, folder_id, user_id, AccessLevel(level).value,
            )
        return FolderAccessGrant.model_validate(dict(row)) if row else None

    async def delete_grant(self, folder_id: str, user_id: str) -> bool:
        async with self._connection("delete_grant") as conn:
            status = await conn.execute(_DELETE_GRANT, folder_id, user_id)
        return _affected(status)

    # ------------------------------------------------------------------
    # Secrets
    # ------------------------------------------------------------------

    async def insert_secret(self, record: SecretRecord) -> SecretRecord:
        async with self._connection("insert_secret") as conn:
            row = await conn.fetchrow(
                _INSERT_SECRET,
                record.id, record.owner_id, record.kind.value, record.label,
                record.ciphertext, record.folder_id,
                orjson.dumps(record.attributes).decode(),
                record.is_active, record.created_at, record.updated_at,
            )
        return _secret(row)

    async def get_secret(self, secret_id: str) -> Optional[SecretRecord]:
        async with self._connection("get_secret") as conn:
            row = await conn.fetchrow(_SELECT_SECRET, secret_id)
        return _secret(row) if row else None

    async def update_secret(self, secret_id: str, **fields: Any) -> Optional[SecretRecord]:
        clause, args = _set_clause(fields, _SECRET_COLUMNS, 2)
        sql = f"UPDATE vault.secrets SET {clause} WHERE id = $1 RETURNING *"
        async with self._connection("update_secret") as conn:
            row = await conn.fetchrow(sql, secret_id, *args)
        return _secret(row) if row else None

    async def delete_secret(self, secret_id: str) -> bool:
        async with self._connection("delete_secret") as conn:
            status = await conn.execute(_DELETE_SECRET, secret_id)
        return _affected(status)

    async def list_secrets(
        self, owner_id: str, kind: SecretKind, **filters: Any
    ) -> list[SecretRecord]:
        conditions = ["owner_id = $1", "kind = $2"]
        args: list[Any] = [owner_id, SecretKind(kind).value]
        attributes = {}
        for name, value in filters.items():
            if name in _SECRET_FILTER_COLUMNS:
                args.append(value)
                conditions.append(f"{name} = ${len(args)}")
            else:
                attributes[name] = value
        if attributes:
            args.append(orjson.dumps(attributes).decode())
            conditions.append(f"attributes @> ${len(args)}::jsonb")
        sql = (
            f"SELECT * FROM vault.secrets WHERE {' AND '.join(conditions)} "
            "ORDER BY created_at DESC"
        )
        async with self._connection("list_secrets") as conn:
            rows = await conn.fetch(sql, *args)
        return [_secret(r) for r in rows]
