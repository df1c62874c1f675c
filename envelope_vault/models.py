"""
Vault Models — row shapes exchanged with the Metadata Store.

All models are pydantic models so rows coming from any backend (asyncpg
records, dicts) are validated the same way via ``model_validate``.
"""
from enum import Enum
from typing import Any, Optional
from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccessLevel(str, Enum):
    """Folder access level; ordered read < write < admin."""

    READ = "read"
    WRITE = "write"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return _ACCESS_RANK[self]

    def allows(self, required: "AccessLevel") -> bool:
        """True if this level is at least ``required``."""
        return self.rank >= AccessLevel(required).rank


_ACCESS_RANK = {
    AccessLevel.READ: 0,
    AccessLevel.WRITE: 1,
    AccessLevel.ADMIN: 2,
}


class SecretKind(str, Enum):
    """Kinds of text secrets; the value doubles as the KDF purpose."""

    PASSWORDS = "passwords"
    APIKEYS = "apikeys"


class FileMetadata(BaseModel):
    """Metadata row of an encrypted file.

    ``folder_id`` of None means the blob was encrypted with the owner's
    personal key; otherwise it was written under the folder's shared scope.
    Moving a file only changes ``folder_id``, so the key scope of the blob
    may differ from what the row implies.
    """

    id: str
    owner_id: str
    name: str
    size: int = Field(ge=0)
    mime_type: str = "application/octet-stream"
    storage_path: str
    folder_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class Folder(BaseModel):
    id: str
    owner_id: str
    name: str
    parent_id: Optional[str] = None
    display_order: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class FolderAccessGrant(BaseModel):
    folder_id: str
    user_id: str
    access_level: AccessLevel = AccessLevel.WRITE
    granted_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class FolderLink(BaseModel):
    """External collaborator entity (workspace or channel) bound to a folder."""

    kind: str
    id: str
    name: str
    folder_id: str


class SecretRecord(BaseModel):
    """A password or API key; ``ciphertext`` is a base64 EncryptedBlob."""

    id: str
    owner_id: str
    kind: SecretKind
    label: str
    ciphertext: str
    folder_id: Optional[str] = None
    attributes: dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    last_used_at: Optional[datetime] = None


class FilePayload(BaseModel):
    """Plaintext file content together with its descriptive fields."""

    name: str
    content: bytes
    mime_type: str = "application/octet-stream"

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Reject empty names and names carrying path separators."""
        v = v.strip()
        if not v:
            raise ValueError("File name cannot be empty")
        if "/" in v or "\\" in v:
            raise ValueError(f"File name cannot contain path separators: {v!r}")
        return v

    @property
    def size(self) -> int:
        return len(self.content)


class FanOutReport(BaseModel):
    """Aggregate outcome of a best-effort grant/revoke fan-out.

    Targets are folder ids, or "{member_id}:{folder_id}" pairs for a member sync.
    """

    succeeded: list[str] = Field(default_factory=list)
    failed: dict[str, str] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def partial(self) -> bool:
        return bool(self.succeeded) and bool(self.failed)


class WorkspaceLink(BaseModel):
    """Read-only view of a collaborator workspace bound to vault folders."""

    workspace_id: str
    name: str
    owner_id: str
    folder_id: Optional[str] = None
    channel_folder_ids: list[str] = Field(default_factory=list)
    member_ids: list[str] = Field(default_factory=list)
