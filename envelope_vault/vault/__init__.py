"""Envelope Vault — Encrypted files and secrets with generational decryption.

Security Note (Threat Model):
    Personal keys are derived from the principal identifier and shared
    keys from the folder identifier; neither is secret. Confidentiality
    therefore rests on the Metadata Store ACL and on keeping identifiers
    away from untrusted parties. Wrapping per-folder random keys would
    close this gap but changes the key hierarchy of existing ciphertexts.
"""

from .crypto import (
    KeyDerivation,
    KeyMaterial,
    decrypt,
    decrypt_text,
    derive_key,
    encrypt,
    encrypt_text,
)
from .decryptor import (
    DecryptionTier,
    FolderSharedTier,
    GenerationalDecryptor,
    LegacyEmailTier,
    LegacyPassphraseTier,
    PersonalTier,
)
from .storage import VaultStorageOrchestrator
from .secret_vault import SecretVault

__all__ = [
    "KeyDerivation",
    "KeyMaterial",
    "derive_key",
    "encrypt",
    "decrypt",
    "encrypt_text",
    "decrypt_text",
    "DecryptionTier",
    "FolderSharedTier",
    "PersonalTier",
    "LegacyPassphraseTier",
    "LegacyEmailTier",
    "GenerationalDecryptor",
    "VaultStorageOrchestrator",
    "SecretVault",
]
