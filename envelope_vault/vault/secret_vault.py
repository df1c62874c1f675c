"""
SecretVault — passwords and API keys stored as encrypted text.

Provides the public API for text secrets:
- ``add(owner_id, kind, label, value)`` — encrypt and persist a secret
- ``reveal(record, owner_id)`` — decrypt through the generational tiers
- ``update(record, owner_id, value=...)`` — change fields, re-encrypt on new value
- ``set_active`` / ``touch`` / ``delete`` / ``list`` — row management
- ``lookup(owner_id, service_name)`` — first active API key of a service

Secrets use the purpose of their kind ("passwords", "apikeys") so a key
of one vault never opens the other. Ciphertexts are base64 text.

Security Note:
    Never log plaintext or ciphertext values. Only log record ids, kinds
    and owner ids.
"""
import uuid
import logging
from typing import Any, Optional

from ..backends.base import IdentityProvider, MetadataStore
from ..conf import VaultConfig
from ..exceptions import AuthenticationFailure, ExhaustedDecryptionTiers
from ..folders.access import FolderAccessRegistry
from ..models import SecretKind, SecretRecord, utcnow
from .crypto import KeyDerivation, b64decode, encrypt_text
from .decryptor import GenerationalDecryptor

logger = logging.getLogger("envelope.vault")

_MAX_LABEL_LENGTH = 255


class SecretVault:
    """Encrypted password and API-key storage over a Metadata Store."""

    def __init__(
        self,
        metadata: MetadataStore,
        identity: Optional[IdentityProvider] = None,
        config: Optional[VaultConfig] = None,
        registry: Optional[FolderAccessRegistry] = None,
    ):
        self._metadata = metadata
        self._identity = identity
        self.config = config or VaultConfig()
        self.kdf = KeyDerivation(self.config)
        self.registry = registry or FolderAccessRegistry(metadata, self.config)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_label(label: str) -> str:
        label = label.strip()
        if not label:
            raise ValueError("Secret label cannot be empty")
        if len(label) > _MAX_LABEL_LENGTH:
            raise ValueError(f"Secret label cannot exceed {_MAX_LABEL_LENGTH} characters")
        return label

    def _seal(
        self, value: str, owner_id: str, kind: SecretKind, folder_id: Optional[str]
    ) -> str:
        scope = self.registry.scope_for(owner_id, folder_id, kind.value)
        key = self.kdf.derive(scope.seed, scope.scope_id, scope.purpose)
        return encrypt_text(value, key)

    @staticmethod
    def _require(secret_id: str, record: Optional[SecretRecord]) -> SecretRecord:
        if record is None:
            raise KeyError(f"Secret {secret_id} not found")
        return record

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def add(
        self,
        owner_id: str,
        kind: SecretKind,
        label: str,
        value: str,
        folder_id: Optional[str] = None,
        **attributes: Any,
    ) -> SecretRecord:
        """Encrypt and persist a secret.

        Args:
            owner_id: Principal owning the secret.
            kind: SecretKind.PASSWORDS or SecretKind.APIKEYS.
            label: Title of a password or name of an API key.
            value: The secret itself.
            folder_id: Folder whose shared key encrypts the secret.
            attributes: Non-secret fields (username, url, service_name, ...).
        """
        kind = SecretKind(kind)
        record = SecretRecord(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            kind=kind,
            label=self._validate_label(label),
            ciphertext=self._seal(value, owner_id, kind, folder_id),
            folder_id=folder_id,
            attributes={k: v for k, v in attributes.items() if v is not None},
        )
        stored = await self._metadata.insert_secret(record)
        logger.info("Added %s secret %s for owner %s", kind.value, stored.id, owner_id)
        return stored

    async def reveal(self, record: SecretRecord, owner_id: str) -> str:
        """Decrypt a secret.

        Raises:
            ExhaustedDecryptionTiers: No decryption tier authenticated.
        """
        resource = f"{record.kind.value}:{record.id}"
        try:
            blob = b64decode(record.ciphertext)
        except AuthenticationFailure:
            raise ExhaustedDecryptionTiers([], resource) from None
        decryptor = GenerationalDecryptor.for_secret(
            self.kdf,
            owner_id,
            record.kind,
            folder_id=record.folder_id,
            identity=self._identity,
            resource=resource,
        )
        plaintext = await decryptor.decrypt(blob)
        return plaintext.decode("utf-8")

    async def get(self, secret_id: str) -> SecretRecord:
        return self._require(secret_id, await self._metadata.get_secret(secret_id))

    async def update(
        self,
        record: SecretRecord,
        owner_id: str,
        value: Optional[str] = None,
        label: Optional[str] = None,
        **attributes: Any,
    ) -> SecretRecord:
        """Update a secret; only a new ``value`` is re-encrypted.

        Attributes given as None are removed.
        """
        fields: dict[str, Any] = {}
        if label is not None:
            fields["label"] = self._validate_label(label)
        if attributes:
            merged = {**record.attributes, **attributes}
            fields["attributes"] = {k: v for k, v in merged.items() if v is not None}
        if value is not None:
            fields["ciphertext"] = self._seal(
                value, record.owner_id, record.kind, record.folder_id,
            )
        if not fields:
            return record
        updated = self._require(
            record.id, await self._metadata.update_secret(record.id, **fields)
        )
        logger.info(
            "Updated %s secret %s by %s (re-encrypted=%s)",
            record.kind.value, record.id, owner_id, value is not None,
        )
        return updated

    async def set_active(self, secret_id: str, is_active: bool) -> SecretRecord:
        return self._require(
            secret_id, await self._metadata.update_secret(secret_id, is_active=is_active)
        )

    async def touch(self, secret_id: str) -> SecretRecord:
        """Record that a secret was just used."""
        return self._require(
            secret_id,
            await self._metadata.update_secret(secret_id, last_used_at=utcnow()),
        )

    async def delete(self, secret_id: str) -> bool:
        deleted = await self._metadata.delete_secret(secret_id)
        if deleted:
            logger.info("Deleted secret %s", secret_id)
        return deleted

    async def lookup(
        self, owner_id: str, service_name: str, key_name: Optional[str] = None
    ) -> Optional[str]:
        """Decrypted value of the newest active API key for service_name."""
        filters: dict[str, Any] = {"service_name": service_name, "is_active": True}
        if key_name is not None:
            filters["label"] = key_name
        records = await self._metadata.list_secrets(owner_id, SecretKind.APIKEYS, **filters)
        if not records:
            return None
        record = records[0]
        await self.touch(record.id)
        return await self.reveal(record, owner_id)

    async def list(
        self, owner_id: str, kind: SecretKind, **filters: Any
    ) -> list[SecretRecord]:
        """Secrets of a kind, newest first, optionally filtered (e.g. category)."""
        return await self._metadata.list_secrets(owner_id, SecretKind(kind), **filters)
