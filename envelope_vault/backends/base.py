"""
Vault Backends — contracts of the external collaborators.

- IdentityProvider: who is calling (and, for legacy data only, their email)
- ObjectStore: opaque blob put/get/delete by path
- MetadataStore: rows for files, folders, access grants and secrets,
  cascading folder deletes and the guard hook (``folder_links``)

Implementations must raise ``StorageIOError`` (or ``BlobNotFound``) for
backend failures and never retry on their own.
"""
from abc import ABC, abstractmethod
from typing import Any, Optional

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


class IdentityProvider(ABC):
    """Supplies the stable identifier of the calling principal."""

    @abstractmethod
    async def current_principal_id(self) -> str:
        ...

    @abstractmethod
    async def current_principal_email(self) -> Optional[str]:
        """Email of the principal; consumed only by legacy decryption."""


class ObjectStore(ABC):
    """Opaque blob storage addressed by path."""

    @abstractmethod
    async def put(self, path: str, data: bytes) -> None:
        ...

    @abstractmethod
    async def get(self, path: str) -> bytes:
        """Return the blob stored at path.

        Raises:
            BlobNotFound: Nothing is stored at path.
            StorageIOError: The store could not be reached.
        """

    @abstractmethod
    async def delete(self, path: str) -> None:
        """Remove the blob at path.

        Raises:
            BlobNotFound: Nothing is stored at path.
        """

    async def close(self) -> None:
        """Release backend resources. No-op by default."""


class MetadataStore(ABC):
    """Row storage for the vault.

    Deleting a folder removes its descendant folders together with their
    files, secrets and access grants. ``folder_links`` is the guard hook:
    a folder with links must not be deleted.
    """

    # files

    @abstractmethod
    async def insert_file(self, meta: FileMetadata) -> FileMetadata:
        ...

    @abstractmethod
    async def get_file(self, file_id: str) -> Optional[FileMetadata]:
        ...

    @abstractmethod
    async def update_file_folder(
        self, file_id: str, folder_id: Optional[str]
    ) -> Optional[FileMetadata]:
        ...

    @abstractmethod
    async def delete_file(self, file_id: str) -> bool:
        ...

    @abstractmethod
    async def list_files(
        self, owner_id: str, folder_id: Optional[str] = None
    ) -> list[FileMetadata]:
        """Files of owner directly in folder_id (root when None), newest first."""

    @abstractmethod
    async def count_files(self, folder_id: Optional[str]) -> int:
        ...

    # folders

    @abstractmethod
    async def insert_folder(self, folder: Folder) -> Folder:
        ...

    @abstractmethod
    async def get_folder(self, folder_id: str) -> Optional[Folder]:
        ...

    @abstractmethod
    async def get_folders(self, folder_ids: list[str]) -> list[Folder]:
        ...

    @abstractmethod
    async def list_child_folders(
        self, owner_id: str, parent_id: Optional[str]
    ) -> list[Folder]:
        """Owned children of parent_id ordered by display_order."""

    @abstractmethod
    async def update_folder(self, folder_id: str, **fields: Any) -> Optional[Folder]:
        ...

    @abstractmethod
    async def subtree_ids(self, folder_id: str) -> list[str]:
        """folder_id followed by every descendant id, of any owner."""

    @abstractmethod
    async def delete_folder(self, folder_id: str) -> bool:
        """Delete folder_id and everything below it."""

    @abstractmethod
    async def folder_links(self, folder_id: str) -> list[FolderLink]:
        """Collaborator entities (workspaces, channels) referencing folder_id."""

    @abstractmethod
    async def get_workspace(self, workspace_id: str) -> Optional[WorkspaceLink]:
        ...

    # access grants

    @abstractmethod
    async def upsert_grant(self, grant: FolderAccessGrant) -> FolderAccessGrant:
        """Insert or update the single grant of (folder_id, user_id)."""

    @abstractmethod
    async def get_grant(
        self, folder_id: str, user_id: str
    ) -> Optional[FolderAccessGrant]:
        ...

    @abstractmethod
    async def list_grants(self, folder_id: str) -> list[FolderAccessGrant]:
        """Grants of a folder ordered by created_at."""

    @abstractmethod
    async def list_user_grants(self, user_id: str) -> list[FolderAccessGrant]:
        ...

    @abstractmethod
    async def update_grant_level(
        self, folder_id: str, user_id: str, level: AccessLevel
    ) -> Optional[FolderAccessGrant]:
        ...

    @abstractmethod
    async def delete_grant(self, folder_id: str, user_id: str) -> bool:
        ...

    # secrets

    @abstractmethod
    async def insert_secret(self, record: SecretRecord) -> SecretRecord:
        ...

    @abstractmethod
    async def get_secret(self, secret_id: str) -> Optional[SecretRecord]:
        ...

    @abstractmethod
    async def update_secret(self, secret_id: str, **fields: Any) -> Optional[SecretRecord]:
        ...

    @abstractmethod
    async def delete_secret(self, secret_id: str) -> bool:
        ...

    @abstractmethod
    async def list_secrets(
        self, owner_id: str, kind: SecretKind, **filters: Any
    ) -> list[SecretRecord]:
        """Secrets of owner and kind matching equality filters, newest first.

        Filters address top-level columns (``is_active``, ``label``) or keys
        of ``attributes``.
        """
