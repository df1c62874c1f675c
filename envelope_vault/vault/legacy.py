"""
Vault Legacy Schemes — decryption of data written before the current scheme.

Two historical formats are still readable:
- Passphrase envelope (files): base64("Salted__" | salt 8B | AES-256-CBC ct),
  key/iv from EVP_BytesToKey(MD5, 1 round) over hex(SHA256(principal_id + email)).
  Not authenticated: a wrong key is only detected by a PKCS#7 padding error.
- Email key (text secrets): PBKDF2-SHA256(email, historical salt) → AES-256-GCM
  with the same [iv][ct][tag] layout as the current scheme.

Only decryption is provided. Nothing new is ever written in these formats.

Security Note:
    Never log the principal email, passphrases or derived keys.
"""
import base64
import binascii
import logging
from typing import Optional

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..exceptions import AuthenticationFailure
from ..models import SecretKind

logger = logging.getLogger("envelope.vault")

OPENSSL_MAGIC = b"Salted__"
OPENSSL_SALT_SIZE = 8
CBC_BLOCK_SIZE = 16
LEGACY_KEY_LENGTH = 32
LEGACY_KDF_ITERATIONS = 100_000


def evp_bytes_to_key(
    passphrase: bytes,
    salt: bytes,
    key_length: int = LEGACY_KEY_LENGTH,
    iv_length: int = CBC_BLOCK_SIZE,
) -> tuple[bytes, bytes]:
    """OpenSSL EVP_BytesToKey with MD5 and a single round."""
    derived = b""
    block = b""
    while len(derived) < key_length + iv_length:
        digest = hashes.Hash(hashes.MD5())
        digest.update(block + passphrase + salt)
        block = digest.finalize()
        derived += block
    return derived[:key_length], derived[key_length:key_length + iv_length]


def legacy_passphrase(principal_id: str, email: str) -> bytes:
    """Passphrase of the legacy file scheme: hex(SHA256(principal_id + email))."""
    digest = hashes.Hash(hashes.SHA256())
    digest.update(f"{principal_id}{email}".encode("utf-8"))
    return digest.finalize().hex().encode("ascii")


def decrypt_passphrase_envelope(blob: bytes, passphrase: bytes) -> bytes:
    """Decrypt an OpenSSL-compatible salted AES-256-CBC envelope.

    Args:
        blob: ASCII base64 text of the envelope, as stored.
        passphrase: Legacy passphrase bytes.

    Returns:
        Plaintext bytes.

    Raises:
        AuthenticationFailure: Malformed envelope or bad padding.
    """
    try:
        raw = base64.b64decode(blob.strip(), validate=True)
    except (binascii.Error, ValueError):
        raise AuthenticationFailure("Legacy envelope is not base64 text") from None
    header = len(OPENSSL_MAGIC) + OPENSSL_SALT_SIZE
    body = raw[header:]
    if (
        not raw.startswith(OPENSSL_MAGIC)
        or not body
        or len(body) % CBC_BLOCK_SIZE
    ):
        raise AuthenticationFailure("Not a legacy passphrase envelope")
    key, iv = evp_bytes_to_key(passphrase, raw[len(OPENSSL_MAGIC):header])
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(body) + decryptor.finalize()
    unpadder = padding.PKCS7(CBC_BLOCK_SIZE * 8).unpadder()
    try:
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError:
        raise AuthenticationFailure("Legacy envelope padding mismatch") from None


def legacy_text_salt(
    kind: SecretKind, email: str, password_salt: str
) -> Optional[str]:
    """Historical salt used for a kind of text secret.

    Passwords used one fixed salt for everyone, API keys used the email.
    """
    if kind == SecretKind.PASSWORDS:
        return password_salt
    if kind == SecretKind.APIKEYS:
        return email
    return None


def derive_legacy_email_key(
    email: str, salt: str, iterations: int = LEGACY_KDF_ITERATIONS
) -> bytes:
    """PBKDF2-SHA256 key of the legacy email-keyed text scheme."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=LEGACY_KEY_LENGTH,
        salt=salt.encode("utf-8"),
        iterations=iterations,
    )
    return kdf.derive(email.encode("utf-8"))
