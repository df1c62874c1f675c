"""
In-memory backends — process-local Identity, Object and Metadata stores.

Used by the test-suite and for local tooling. They follow the same
contracts as the networked backends, including cascading folder deletes
and upsert semantics for access grants. Every returned model is a copy;
mutating it never changes stored state.
"""
import logging
from typing import Any, Optional

from ..exceptions import BlobNotFound
from ..models import (
    AccessLevel,
    FileMetadata,
    Folder,
    FolderAccessGrant,
    FolderLink,
    SecretKind,
    SecretRecord,
    WorkspaceLink,
    utcnow,
)
from .base import IdentityProvider, MetadataStore, ObjectStore

logger = logging.getLogger("envelope.vault")


class StaticIdentity(IdentityProvider):
    """Identity of a fixed principal."""

    def __init__(self, principal_id: str, email: Optional[str] = None):
        self.principal_id = principal_id
        self.email = email
        self.email_lookups = 0

    async def current_principal_id(self) -> str:
        return self.principal_id

    async def current_principal_email(self) -> Optional[str]:
        self.email_lookups += 1
        return self.email


class MemoryObjectStore(ObjectStore):
    def __init__(self):
        self._blobs: dict[str, bytes] = {}

    async def put(self, path: str, data: bytes) -> None:
        self._blobs[path] = bytes(data)

    async def get(self, path: str) -> bytes:
        try:
            return self._blobs[path]
        except KeyError:
            raise BlobNotFound(path) from None

    async def delete(self, path: str) -> None:
        if self._blobs.pop(path, None) is None:
            raise BlobNotFound(path, operation="delete")

    def __contains__(self, path: object) -> bool:
        return path in self._blobs

    def __len__(self) -> int:
        return len(self._blobs)


class MemoryMetadataStore(MetadataStore):
    """Dict-backed metadata store.

    Collaborator rows (workspaces and channels) are not owned by the vault;
    ``link_workspace`` / ``link_channel`` stand in for them.
    """

    def __init__(self):
        self.files: dict[str, FileMetadata] = {}
        self.folders: dict[str, Folder] = {}
        self.grants: dict[tuple[str, str], FolderAccessGrant] = {}
        self.secrets: dict[str, SecretRecord] = {}
        self.workspaces: dict[str, WorkspaceLink] = {}
        self.channels: dict[str, FolderLink] = {}
        self._channel_workspace: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Collaborator links
    # ------------------------------------------------------------------

    def link_workspace(
        self,
        workspace_id: str,
        folder_id: Optional[str],
        owner_id: str,
        name: str = "workspace",
        member_ids: Optional[list[str]] = None,
    ) -> None:
        self.workspaces[workspace_id] = WorkspaceLink(
            workspace_id=workspace_id,
            name=name,
            owner_id=owner_id,
            folder_id=folder_id,
            member_ids=list(member_ids or []),
        )

    def link_channel(
        self, channel_id: str, workspace_id: str, folder_id: str, name: str = "channel"
    ) -> None:
        self.channels[channel_id] = FolderLink(
            kind="channel", id=channel_id, name=name, folder_id=folder_id,
        )
        self._channel_workspace[channel_id] = workspace_id

    async def folder_links(self, folder_id: str) -> list[FolderLink]:
        links = [
            FolderLink(kind="workspace", id=ws.workspace_id, name=ws.name, folder_id=folder_id)
            for ws in self.workspaces.values()
            if ws.folder_id == folder_id
        ]
        links.extend(
            ch.model_copy(deep=True) for ch in self.channels.values() if ch.folder_id == folder_id
        )
        return links

    async def get_workspace(self, workspace_id: str) -> Optional[WorkspaceLink]:
        ws = self.workspaces.get(workspace_id)
        if ws is None:
            return None
        channel_folders = [
            ch.folder_id
            for ch_id, ch in self.channels.items()
            if self._channel_workspace.get(ch_id) == workspace_id
        ]
        return ws.model_copy(update={"channel_folder_ids": channel_folders}, deep=True)

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    async def insert_file(self, meta: FileMetadata) -> FileMetadata:
        self.files[meta.id] = meta.model_copy(deep=True)
        return meta.model_copy(deep=True)

    async def get_file(self, file_id: str) -> Optional[FileMetadata]:
        meta = self.files.get(file_id)
        return meta.model_copy(deep=True) if meta else None

    async def update_file_folder(
        self, file_id: str, folder_id: Optional[str]
    ) -> Optional[FileMetadata]:
        meta = self.files.get(file_id)
        if meta is None:
            return None
        meta = meta.model_copy(update={"folder_id": folder_id})
        self.files[file_id] = meta.model_copy(deep=True)
        return meta.model_copy(deep=True)

    async def delete_file(self, file_id: str) -> bool:
        return self.files.pop(file_id, None) is not None

    async def list_files(
        self, owner_id: str, folder_id: Optional[str] = None
    ) -> list[FileMetadata]:
        rows = [
            m.model_copy(deep=True)
            for m in self.files.values()
            if m.owner_id == owner_id and m.folder_id == folder_id
        ]
        return sorted(rows, key=lambda m: m.created_at, reverse=True)

    async def count_files(self, folder_id: Optional[str]) -> int:
        return sum(1 for m in self.files.values() if m.folder_id == folder_id)

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    async def insert_folder(self, folder: Folder) -> Folder:
        self.folders[folder.id] = folder.model_copy(deep=True)
        return folder.model_copy(deep=True)

    async def get_folder(self, folder_id: str) -> Optional[Folder]:
        folder = self.folders.get(folder_id)
        return folder.model_copy(deep=True) if folder else None

    async def get_folders(self, folder_ids: list[str]) -> list[Folder]:
        return [
            self.folders[fid].model_copy(deep=True) for fid in folder_ids if fid in self.folders
        ]

    async def list_child_folders(
        self, owner_id: str, parent_id: Optional[str]
    ) -> list[Folder]:
        rows = [
            f.model_copy(deep=True)
            for f in self.folders.values()
            if f.owner_id == owner_id and f.parent_id == parent_id
        ]
        return sorted(rows, key=lambda f: f.display_order)

    async def update_folder(self, folder_id: str, **fields: Any) -> Optional[Folder]:
        folder = self.folders.get(folder_id)
        if folder is None:
            return None
        folder = folder.model_copy(update={**fields, "updated_at": utcnow()})
        self.folders[folder_id] = folder.model_copy(deep=True)
        return folder.model_copy(deep=True)

    async def subtree_ids(self, folder_id: str) -> list[str]:
        if folder_id not in self.folders:
            return []
        found = [folder_id]
        for current in found:
            found.extend(
                f.id for f in self.folders.values()
                if f.parent_id == current and f.id not in found
            )
        return found

    async def delete_folder(self, folder_id: str) -> bool:
        doomed = set(await self.subtree_ids(folder_id))
        if not doomed:
            return False
        for fid in doomed:
            del self.folders[fid]
        self.files = {k: m for k, m in self.files.items() if m.folder_id not in doomed}
        self.secrets = {k: s for k, s in self.secrets.items() if s.folder_id not in doomed}
        self.grants = {k: g for k, g in self.grants.items() if k[0] not in doomed}
        logger.debug("Cascaded delete of %d folder(s) from %s", len(doomed), folder_id)
        return True

    # ------------------------------------------------------------------
    # Access grants
    # ------------------------------------------------------------------

    async def upsert_grant(self, grant: FolderAccessGrant) -> FolderAccessGrant:
        key = (grant.folder_id, grant.user_id)
        existing = self.grants.get(key)
        if existing is not None:
            grant = existing.model_copy(update={
                "access_level": grant.access_level,
                "granted_by": grant.granted_by,
                "updated_at": utcnow(),
            })
        self.grants[key] = grant.model_copy(deep=True)
        return grant.model_copy(deep=True)

    async def get_grant(
        self, folder_id: str, user_id: str
    ) -> Optional[FolderAccessGrant]:
        grant = self.grants.get((folder_id, user_id))
        return grant.model_copy(deep=True) if grant else None

    async def list_grants(self, folder_id: str) -> list[FolderAccessGrant]:
        rows = [g.model_copy(deep=True) for k, g in self.grants.items() if k[0] == folder_id]
        return sorted(rows, key=lambda g: g.created_at)

    async def list_user_grants(self, user_id: str) -> list[FolderAccessGrant]:
        return [g.model_copy(deep=True) for k, g in self.grants.items() if k[1] == user_id]

    async def update_grant_level(
        self, folder_id: str, user_id: str, level: AccessLevel
    ) -> Optional[FolderAccessGrant]:
        grant = self.grants.get((folder_id, user_id))
        if grant is None:
            return None
        grant = grant.model_copy(update={"access_level": level, "updated_at": utcnow()})
        self.grants[(folder_id, user_id)] = grant.model_copy(deep=True)
        return grant.model_copy(deep=True)

    async def delete_grant(self, folder_id: str, user_id: str) -> bool:
        return self.grants.pop((folder_id, user_id), None) is not None

    # ------------------------------------------------------------------
    # Secrets
    # ------------------------------------------------------------------

    async def insert_secret(self, record: SecretRecord) -> SecretRecord:
        self.secrets[record.id] = record.model_copy(deep=True)
        return record.model_copy(deep=True)

    async def get_secret(self, secret_id: str) -> Optional[SecretRecord]:
        record = self.secrets.get(secret_id)
        return record.model_copy(deep=True) if record else None

    async def update_secret(self, secret_id: str, **fields: Any) -> Optional[SecretRecord]:
        record = self.secrets.get(secret_id)
        if record is None:
            return None
        record = record.model_copy(update={**fields, "updated_at": utcnow()})
        self.secrets[secret_id] = record.model_copy(deep=True)
        return record.model_copy(deep=True)

    async def delete_secret(self, secret_id: str) -> bool:
        return self.secrets.pop(secret_id, None) is not None

    async def list_secrets(
        self, owner_id: str, kind: SecretKind, **filters: Any
    ) -> list[SecretRecord]:
        def matches(record: SecretRecord) -> bool:
            for name, value in filters.items():
                if name in SecretRecord.model_fields:
                    if getattr(record, name) != value:
                        return False
                elif record.attributes.get(name) != value:
                    return False
            return True

        rows = [
            r.model_copy(deep=True)
            for r in self.secrets.values()
            if r.owner_id == owner_id and r.kind == kind and matches(r)
        ]
        return sorted(rows, key=lambda r: r.created_at, reverse=True)
