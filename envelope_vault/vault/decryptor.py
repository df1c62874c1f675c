"""
Generational Decryptor — ordered fallback across encryption scheme generations.

Every read walks an ordered list of tiers:

1. folder-shared key (only for folder-scoped resources)
2. personal key of the reading principal for the resource purpose
3. legacy scheme keyed by the principal email (if enabled)

The first tier that authenticates wins and no later tier is attempted.
Keys are derived inside ``attempt`` so a tier that never runs never
derives anything, and the principal email is requested only when a
legacy tier runs. Old ciphertexts stay readable without a migration pass.

Security Note:
    Only tier names and resource identifiers are logged.
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional, Sequence

from ..exceptions import AuthenticationFailure, ExhaustedDecryptionTiers
from ..models import SecretKind
from ..backends.base import IdentityProvider
from .crypto import KeyDerivation, decrypt
from .legacy import (
    decrypt_passphrase_envelope,
    derive_legacy_email_key,
    legacy_passphrase,
    legacy_text_salt,
)

logger = logging.getLogger("envelope.vault")


class DecryptionTier(ABC):
    """One (scope, scheme) candidate of the generational decryptor."""

    name: str = "tier"

    @abstractmethod
    async def attempt(self, blob: bytes) -> bytes:
        """Return the authenticated plaintext of blob.

        Raises:
            AuthenticationFailure: blob was not written by this tier.
        """

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class FolderSharedTier(DecryptionTier):
    name = "folder-shared"

    def __init__(self, kdf: KeyDerivation, folder_id: str):
        self.kdf = kdf
        self.folder_id = folder_id

    async def attempt(self, blob: bytes) -> bytes:
        return decrypt(blob, self.kdf.shared(self.folder_id))


class PersonalTier(DecryptionTier):
    def __init__(self, kdf: KeyDerivation, principal_id: str, purpose: str):
        self.kdf = kdf
        self.principal_id = principal_id
        self.purpose = purpose
        self.name = f"personal:{purpose}"

    async def attempt(self, blob: bytes) -> bytes:
        return decrypt(blob, self.kdf.personal(self.principal_id, self.purpose))


class _LegacyTier(DecryptionTier):
    """Base of the email-keyed legacy tiers."""

    def __init__(self, identity: Optional[IdentityProvider]):
        self.identity = identity

    async def _email(self) -> str:
        if self.identity is None:
            raise AuthenticationFailure("No identity provider for legacy decryption")
        email = await self.identity.current_principal_email()
        if not email:
            raise AuthenticationFailure("Principal has no email for legacy decryption")
        return email


class LegacyPassphraseTier(_LegacyTier):
    """Files written by the salted AES-CBC passphrase scheme."""

    name = "legacy-passphrase"

    def __init__(self, identity: Optional[IdentityProvider], principal_id: str):
        super().__init__(identity)
        self.principal_id = principal_id

    async def attempt(self, blob: bytes) -> bytes:
        email = await self._email()
        return decrypt_passphrase_envelope(
            blob, legacy_passphrase(self.principal_id, email)
        )


class LegacyEmailTier(_LegacyTier):
    """Text secrets written with an email-derived AES-GCM key."""

    name = "legacy-email"

    def __init__(
        self,
        identity: Optional[IdentityProvider],
        kind: SecretKind,
        password_salt: str,
    ):
        super().__init__(identity)
        self.kind = SecretKind(kind)
        self.password_salt = password_salt

    async def attempt(self, blob: bytes) -> bytes:
        email = await self._email()
        salt = legacy_text_salt(self.kind, email, self.password_salt)
        if salt is None:
            raise AuthenticationFailure(f"No legacy salt for {self.kind.value}")
        return decrypt(blob, derive_legacy_email_key(email, salt))


class GenerationalDecryptor:
    """Iterates decryption tiers once, in order, until one authenticates."""

    def __init__(self, tiers: Sequence[DecryptionTier], resource: Optional[str] = None):
        self.tiers = list(tiers)
        self.resource = resource

    @property
    def tier_names(self) -> list[str]:
        return [tier.name for tier in self.tiers]

    async def resolve(self, blob: bytes) -> tuple[DecryptionTier, bytes]:
        """Return the winning tier together with the plaintext.

        Raises:
            ExhaustedDecryptionTiers: No tier authenticated the blob.
        """
        attempted: list[str] = []
        for tier in self.tiers:
            attempted.append(tier.name)
            try:
                plaintext = await tier.attempt(blob)
            except AuthenticationFailure as err:
                logger.debug(
                    "Tier %s rejected %s: %s", tier.name, self.resource, err,
                )
                continue
            if len(attempted) > 1:
                logger.debug(
                    "Resource %s decrypted by fallback tier %s",
                    self.resource, tier.name,
                )
            return tier, plaintext
        logger.warning(
            "Resource %s unreadable after tiers %s", self.resource, attempted,
        )
        raise ExhaustedDecryptionTiers(attempted, self.resource)

    async def decrypt(self, blob: bytes) -> bytes:
        _, plaintext = await self.resolve(blob)
        return plaintext

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    @classmethod
    def for_file(
        cls,
        kdf: KeyDerivation,
        principal_id: str,
        folder_id: Optional[str] = None,
        identity: Optional[IdentityProvider] = None,
        resource: Optional[str] = None,
    ) -> "GenerationalDecryptor":
        """Tiers for a file blob read by principal_id."""
        tiers: list[DecryptionTier] = []
        if folder_id:
            tiers.append(FolderSharedTier(kdf, folder_id))
        tiers.append(PersonalTier(kdf, principal_id, kdf.config.file_purpose))
        if kdf.config.legacy_enabled:
            tiers.append(LegacyPassphraseTier(identity, principal_id))
        return cls(tiers, resource=resource)

    @classmethod
    def for_secret(
        cls,
        kdf: KeyDerivation,
        principal_id: str,
        kind: SecretKind,
        folder_id: Optional[str] = None,
        identity: Optional[IdentityProvider] = None,
        resource: Optional[str] = None,
    ) -> "GenerationalDecryptor":
        """Tiers for a text secret (password or API key)."""
        kind = SecretKind(kind)
        tiers: list[DecryptionTier] = []
        if folder_id:
            tiers.append(FolderSharedTier(kdf, folder_id))
        tiers.append(PersonalTier(kdf, principal_id, kind.value))
        if kdf.config.legacy_enabled:
            tiers.append(
                LegacyEmailTier(identity, kind, kdf.config.legacy_password_salt)
            )
        return cls(tiers, resource=resource)
