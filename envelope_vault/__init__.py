"""envelope_vault — encrypted file and secret vault with shared folders."""
from .version import __version__
from .conf import VaultConfig
from .exceptions import (
    AuthenticationFailure,
    BlobNotFound,
    ConstraintViolation,
    ExhaustedDecryptionTiers,
    GrantNotFound,
    StorageInconsistency,
    StorageIOError,
    VaultError,
)
from .models import (
    AccessLevel,
    FanOutReport,
    FileMetadata,
    FilePayload,
    Folder,
    FolderAccessGrant,
    SecretKind,
    SecretRecord,
)

__all__ = [
    "__version__",
    "VaultConfig",
    "VaultError",
    "AuthenticationFailure",
    "ExhaustedDecryptionTiers",
    "StorageIOError",
    "BlobNotFound",
    "ConstraintViolation",
    "StorageInconsistency",
    "GrantNotFound",
    "AccessLevel",
    "SecretKind",
    "FileMetadata",
    "FilePayload",
    "Folder",
    "FolderAccessGrant",
    "FanOutReport",
    "SecretRecord",
]
