"""
Vault Exceptions — error taxonomy shared by the crypto core and the stores.

Only ``AuthenticationFailure`` is expected and recovered, and only inside
the generational decryptor where it means "not this tier". Every other
error reaches the caller unchanged.
"""
from typing import Optional, Sequence


class VaultError(Exception):
    """Base class for every error raised by envelope_vault."""


class AuthenticationFailure(VaultError):
    """A ciphertext did not authenticate under the key that was tried.

    Raised for a tag mismatch, a wrong key, a corrupted or truncated blob.
    No plaintext is ever attached to this error.
    """


class ExhaustedDecryptionTiers(VaultError):
    """Every decryption tier failed; the resource is unreadable."""

    def __init__(self, tiers: Sequence[str], resource: Optional[str] = None):
        self.tiers = list(tiers)
        self.resource = resource
        target = f" for {resource}" if resource else ""
        super().__init__(
            f"Resource unreadable{target}: no decryption tier authenticated "
            f"(tried: {', '.join(self.tiers) or 'none'})"
        )


class StorageIOError(VaultError):
    """An Object Store or Metadata Store call failed."""

    def __init__(self, message: str, operation: Optional[str] = None):
        self.operation = operation
        super().__init__(message)


class BlobNotFound(StorageIOError):
    """The Object Store has no blob at the requested path."""

    def __init__(self, path: str, operation: str = "get"):
        self.path = path
        super().__init__(f"Blob not found: {path}", operation=operation)


class ConstraintViolation(VaultError):
    """A duplicate sibling folder name or a refused guarded delete."""


class StorageInconsistency(VaultError):
    """Metadata and blob storage disagree (e.g. a row pointing at no blob)."""


class GrantNotFound(VaultError):
    """No access grant exists for the (folder, user) pair."""

    def __init__(self, folder_id: str, user_id: str):
        self.folder_id = folder_id
        self.user_id = user_id
        super().__init__(
            f"No access grant for user {user_id} on folder {folder_id}"
        )
