"""
Vault Storage — upload, download, move and delete of encrypted files.

Provides the file API of the vault:
- ``upload(payload, owner_id, folder_id)`` — encrypt, put blob, insert metadata
- ``download(metadata, owner_id)`` — get blob, decrypt through the tiers
- ``move(file_id, folder_id)`` — metadata-only, never re-encrypts
- ``delete(metadata)`` — blob first, then metadata
- ``reencrypt(metadata, owner_id)`` — opt-in upgrade to the current scope

Blob paths are ``{unix_millis}_{random token}_{name}{suffix}``; the random
token keeps two uploads of one name in the same millisecond apart.

Security Note:
    Never log plaintext or ciphertext values. Only log file ids, storage
    paths, owner ids and tier names.
"""
import time
import uuid
import secrets
import logging
from typing import Optional

from ..backends.base import IdentityProvider, MetadataStore, ObjectStore
from ..exceptions import BlobNotFound, StorageIOError, StorageInconsistency
from ..folders.access import FolderAccessRegistry
from ..models import FileMetadata, FilePayload
from ..conf import VaultConfig
from .crypto import KeyDerivation, KeyMaterial, encrypt
from .decryptor import FolderSharedTier, GenerationalDecryptor, PersonalTier

logger = logging.getLogger("envelope.vault")

_PATH_TOKEN_BYTES = 16  # 128-bit


class VaultStorageOrchestrator:
    """Encrypted file storage over an Object Store and a Metadata Store.

    No operation retries on its own; every store failure reaches the
    caller. A failed upload can be repeated from scratch, the new attempt
    draws a new IV and a new storage path.
    """

    def __init__(
        self,
        objects: ObjectStore,
        metadata: MetadataStore,
        identity: Optional[IdentityProvider] = None,
        config: Optional[VaultConfig] = None,
        registry: Optional[FolderAccessRegistry] = None,
    ):
        self._objects = objects
        self._metadata = metadata
        self._identity = identity
        self.config = config or VaultConfig()
        self.kdf = KeyDerivation(self.config)
        self.registry = registry or FolderAccessRegistry(metadata, self.config)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def storage_path(self, name: str) -> str:
        millis = int(time.time() * 1000)
        token = secrets.token_hex(_PATH_TOKEN_BYTES)
        return f"{millis}_{token}_{name}{self.config.storage_suffix}"

    def _write_key(self, owner_id: str, folder_id: Optional[str]) -> KeyMaterial:
        scope = self.registry.scope_for(owner_id, folder_id, self.config.file_purpose)
        return self.kdf.derive(scope.seed, scope.scope_id, scope.purpose)

    def _decryptor(self, meta: FileMetadata, principal_id: str) -> GenerationalDecryptor:
        return GenerationalDecryptor.for_file(
            self.kdf,
            principal_id,
            folder_id=meta.folder_id,
            identity=self._identity,
            resource=f"file:{meta.id}",
        )

    async def _fetch_blob(self, meta: FileMetadata) -> bytes:
        try:
            return await self._objects.get(meta.storage_path)
        except BlobNotFound as err:
            raise StorageInconsistency(
                f"File {meta.id} references missing blob {meta.storage_path}"
            ) from err

    async def _discard_orphan(self, path: str) -> None:
        """Compensating delete of a blob whose metadata was never written."""
        try:
            await self._objects.delete(path)
            logger.info("Removed orphaned blob %s", path)
        except StorageIOError as err:
            logger.error("Could not remove orphaned blob %s: %s", path, err)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def upload(
        self,
        payload: FilePayload,
        owner_id: str,
        folder_id: Optional[str] = None,
    ) -> FileMetadata:
        """Encrypt and store a file.

        Personal key when folder_id is None, the folder's shared key otherwise.

        Raises:
            StorageIOError: The blob put or the metadata insert failed. After
                a failed insert the blob is deleted again (best effort).
        """
        blob = encrypt(payload.content, self._write_key(owner_id, folder_id))
        path = self.storage_path(payload.name)
        await self._objects.put(path, blob)
        meta = FileMetadata(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            name=payload.name,
            size=payload.size,
            mime_type=payload.mime_type,
            storage_path=path,
            folder_id=folder_id,
        )
        try:
            stored = await self._metadata.insert_file(meta)
        except Exception:
            await self._discard_orphan(path)
            raise
        logger.info(
            "Uploaded file %s (%d bytes) for owner %s folder=%s",
            stored.id, stored.size, owner_id, folder_id,
        )
        return stored

    async def download(self, meta: FileMetadata, owner_id: str) -> FilePayload:
        """Fetch and decrypt a file.

        Raises:
            StorageInconsistency: The metadata points at a missing blob.
            ExhaustedDecryptionTiers: No decryption tier authenticated.
        """
        blob = await self._fetch_blob(meta)
        content = await self._decryptor(meta, owner_id).decrypt(blob)
        logger.debug("Downloaded file %s for %s", meta.id, owner_id)
        return FilePayload(name=meta.name, content=content, mime_type=meta.mime_type)

    async def get(self, file_id: str) -> FileMetadata:
        meta = await self._metadata.get_file(file_id)
        if meta is None:
            raise KeyError(f"File {file_id} not found")
        return meta

    async def move(self, file_id: str, folder_id: Optional[str] = None) -> FileMetadata:
        """Point a file at another folder (None for root); the blob is untouched."""
        meta = await self._metadata.update_file_folder(file_id, folder_id)
        if meta is None:
            raise KeyError(f"File {file_id} not found")
        logger.info("Moved file %s to folder=%s", file_id, folder_id)
        return meta

    async def delete(self, meta: FileMetadata) -> None:
        """Delete the blob, then the metadata row.

        A blob that is already gone is logged and the row is still removed.
        If the row delete fails the row is left dangling and reads of it
        report StorageInconsistency.
        """
        try:
            await self._objects.delete(meta.storage_path)
        except BlobNotFound:
            logger.warning(
                "Blob %s of file %s already missing", meta.storage_path, meta.id,
            )
        if not await self._metadata.delete_file(meta.id):
            logger.debug("Metadata of file %s was already gone", meta.id)
        logger.info("Deleted file %s", meta.id)

    async def list_files(
        self, owner_id: str, folder_id: Optional[str] = None
    ) -> list[FileMetadata]:
        return await self._metadata.list_files(owner_id, folder_id)

    async def count_files(self, folder_id: Optional[str] = None) -> int:
        return await self._metadata.count_files(folder_id)

    async def reencrypt(self, meta: FileMetadata, owner_id: str) -> FileMetadata:
        """Rewrite a blob under the key scope its metadata implies.

        Reads never need this; it only retires legacy or misplaced
        ciphertexts (e.g. a personal-keyed file moved into a shared folder).
        The blob is overwritten in place at the same storage path.

        Raises:
            PermissionError: owner_id would re-key another principal's
                personal file.
        """
        if meta.folder_id is None and owner_id != meta.owner_id:
            raise PermissionError(
                f"Only the owner can re-key personal file {meta.id}"
            )
        blob = await self._fetch_blob(meta)
        tier, plaintext = await self._decryptor(meta, owner_id).resolve(blob)
        current = FolderSharedTier if meta.folder_id else PersonalTier
        if isinstance(tier, current):
            logger.debug("File %s already uses %s", meta.id, tier.name)
            return meta
        key = self._write_key(meta.owner_id, meta.folder_id)
        await self._objects.put(meta.storage_path, encrypt(plaintext, key))
        logger.info("Re-encrypted file %s from tier %s", meta.id, tier.name)
        return meta
