"""Constants and legacy-format writers shared by the vault tests.

The vault only reads the legacy formats; these writers produce fixtures
the way the historical clients stored them.
"""
import os
import base64

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from envelope_vault.vault.legacy import (
    OPENSSL_MAGIC,
    derive_legacy_email_key,
    evp_bytes_to_key,
    legacy_passphrase,
)

OWNER = "user-owner"
OWNER_EMAIL = "owner@example.com"
COLLABORATOR = "user-collab"


def legacy_file_blob(plaintext: bytes, principal_id: str, email: str) -> bytes:
    """Salted AES-256-CBC envelope as the old file scheme stored it."""
    salt = os.urandom(8)
    key, iv = evp_bytes_to_key(legacy_passphrase(principal_id, email), salt)
    padder = padding.PKCS7(128).padder()
    padded = padder.update(plaintext) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    body = encryptor.update(padded) + encryptor.finalize()
    return base64.b64encode(OPENSSL_MAGIC + salt + body)


def legacy_text_ciphertext(plaintext: str, email: str, salt: str) -> str:
    """Email-keyed AES-GCM text secret of the old password/API-key vault."""
    iv = os.urandom(12)
    sealed = AESGCM(derive_legacy_email_key(email, salt)).encrypt(
        iv, plaintext.encode("utf-8"), None
    )
    return base64.b64encode(iv + sealed).decode("ascii")
