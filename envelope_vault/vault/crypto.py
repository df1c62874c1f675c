"""
Vault Crypto Core — Key derivation and envelope encryption.

Implements the current encryption scheme of the vault:
- Key derivation: PBKDF2-HMAC-SHA256(seed, "{namespace}:{purpose}:{scope_id}")
- Envelope: AES-256-GCM → [iv 12B][ciphertext][tag 16B]
- Text transport: base64([iv 12B][ciphertext][tag 16B])

Security Note:
    Never log key material, plaintext or ciphertext values.
    IVs are random 96-bit values drawn from os.urandom on every call;
    no counter is kept, so retries and parallel processes never reuse one.
"""
import os
import base64
import binascii
import logging
from typing import Optional, Union
from dataclasses import dataclass, field

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..exceptions import AuthenticationFailure
from ..conf import VaultConfig, MIN_KDF_ITERATIONS

logger = logging.getLogger("envelope.vault")

IV_SIZE = 12  # 96-bit GCM nonce
TAG_SIZE = 16  # GCM authentication tag
KEY_LENGTH = 32  # AES-256
MIN_BLOB_SIZE = IV_SIZE + TAG_SIZE

DEFAULT_NAMESPACE = "ldgr"


@dataclass(frozen=True)
class KeyMaterial:
    """A derived 256-bit key tagged with the namespace it was derived for.

    Recomputed on demand, never persisted. ``repr`` omits the key bytes.
    """

    scope_id: str
    purpose: str
    key: bytes = field(repr=False)


def _as_bytes(value: Union[str, bytes]) -> bytes:
    if isinstance(value, bytes):
        return value
    return value.encode("utf-8")


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def build_salt(scope_id: str, purpose: str, namespace: str = DEFAULT_NAMESPACE) -> bytes:
    """Deterministic salt for (scope_id, purpose).

    The salt has to be reproducible without stored state, so it is built
    from the derivation namespace only and never randomized.
    """
    return f"{namespace}:{purpose}:{scope_id}".encode("utf-8")


def derive_key(
    seed: Union[str, bytes],
    scope_id: str,
    purpose: str,
    iterations: int = MIN_KDF_ITERATIONS,
    namespace: str = DEFAULT_NAMESPACE,
) -> KeyMaterial:
    """Derive a 32-byte AES key using PBKDF2-HMAC-SHA256.

    Args:
        seed: Input key material (principal id or folder id).
        scope_id: Identifier of the key scope.
        purpose: Domain separator (e.g. "files", "passwords", "shared").
        iterations: PBKDF2 iteration count.
        namespace: Salt prefix shared by all ciphertexts of a deployment.

    Returns:
        KeyMaterial for (scope_id, purpose).
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=build_salt(scope_id, purpose, namespace),
        iterations=iterations,
    )
    return KeyMaterial(
        scope_id=scope_id, purpose=purpose, key=kdf.derive(_as_bytes(seed)),
    )


class KeyDerivation:
    """Configured key derivation: ``derive(seed, scope_id, purpose)``.

    Pure function of its inputs plus the configured iteration count and
    salt namespace; no I/O.
    """

    def __init__(self, config: Optional[VaultConfig] = None):
        self.config = config or VaultConfig()

    def derive(self, seed: Union[str, bytes], scope_id: str, purpose: str) -> KeyMaterial:
        return derive_key(
            seed,
            scope_id,
            purpose,
            iterations=self.config.kdf_iterations,
            namespace=self.config.salt_namespace,
        )

    def personal(self, principal_id: str, purpose: str) -> KeyMaterial:
        """Key owned by a single principal for one purpose."""
        return self.derive(principal_id, principal_id, purpose)

    def shared(self, folder_id: str) -> KeyMaterial:
        """Key derivable by anyone who knows the folder identifier."""
        return self.derive(folder_id, folder_id, self.config.shared_purpose)


# ---------------------------------------------------------------------------
# Envelope encryption
# ---------------------------------------------------------------------------

def _key_bytes(key: Union[KeyMaterial, bytes]) -> bytes:
    raw = key.key if isinstance(key, KeyMaterial) else key
    if len(raw) != KEY_LENGTH:
        raise ValueError(f"AES-256 key must be {KEY_LENGTH} bytes, got {len(raw)}")
    return raw


def encrypt(plaintext: bytes, key: Union[KeyMaterial, bytes]) -> bytes:
    """Encrypt plaintext with AES-256-GCM.

    Format: [iv 12B][ciphertext][tag 16B]

    Args:
        plaintext: Data to encrypt (may be empty).
        key: Derived key material.

    Returns:
        EncryptedBlob bytes.
    """
    cipher = AESGCM(_key_bytes(key))
    iv = os.urandom(IV_SIZE)
    return iv + cipher.encrypt(iv, plaintext, None)


def decrypt(blob: bytes, key: Union[KeyMaterial, bytes]) -> bytes:
    """Decrypt and authenticate an EncryptedBlob.

    Args:
        blob: Ciphertext in format [iv 12B][ciphertext][tag 16B].
        key: Derived key material.

    Returns:
        Decrypted plaintext bytes.

    Raises:
        AuthenticationFailure: Wrong key, tampered or truncated blob.
    """
    if len(blob) < MIN_BLOB_SIZE:
        raise AuthenticationFailure(
            f"Encrypted blob too short: {len(blob)} bytes (minimum {MIN_BLOB_SIZE})"
        )
    cipher = AESGCM(_key_bytes(key))
    try:
        return cipher.decrypt(blob[:IV_SIZE], blob[IV_SIZE:], None)
    except InvalidTag:
        raise AuthenticationFailure("Authentication tag mismatch") from None


# ---------------------------------------------------------------------------
# Text transport
# ---------------------------------------------------------------------------

def b64encode(blob: bytes) -> str:
    return base64.b64encode(blob).decode("ascii")


def b64decode(text: str) -> bytes:
    """Strict base64 decoding; malformed input cannot authenticate."""
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError):
        raise AuthenticationFailure("Ciphertext is not valid base64") from None


def encrypt_text(plaintext: str, key: Union[KeyMaterial, bytes]) -> str:
    """Encrypt a string and return base64([iv][ciphertext][tag])."""
    return b64encode(encrypt(plaintext.encode("utf-8"), key))


def decrypt_text(ciphertext: str, key: Union[KeyMaterial, bytes]) -> str:
    """Decrypt a base64 EncryptedBlob back into a string."""
    return decrypt(b64decode(ciphertext), key).decode("utf-8")
