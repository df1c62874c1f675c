"""Tests for the read-only legacy schemes."""
import base64

import pytest

from envelope_vault.exceptions import AuthenticationFailure
from envelope_vault.models import SecretKind
from envelope_vault.vault.legacy import (
    decrypt_passphrase_envelope,
    evp_bytes_to_key,
    legacy_passphrase,
    legacy_text_salt,
)

from .helpers import OWNER, OWNER_EMAIL, legacy_file_blob


class TestPassphraseEnvelope:
    def test_evp_bytes_to_key_lengths(self):
        key, iv = evp_bytes_to_key(b"passphrase", b"12345678")
        assert len(key) == 32
        assert len(iv) == 16

    def test_evp_bytes_to_key_deterministic(self):
        assert evp_bytes_to_key(b"p", b"saltsalt") == evp_bytes_to_key(b"p", b"saltsalt")

    def test_passphrase_is_hex_digest(self):
        passphrase = legacy_passphrase(OWNER, OWNER_EMAIL)
        assert len(passphrase) == 64
        int(passphrase, 16)

    def test_decrypts(self):
        blob = legacy_file_blob(b"legacy content", OWNER, OWNER_EMAIL)
        passphrase = legacy_passphrase(OWNER, OWNER_EMAIL)
        assert decrypt_passphrase_envelope(blob, passphrase) == b"legacy content"

    def test_rejects_missing_header(self):
        with pytest.raises(AuthenticationFailure):
            decrypt_passphrase_envelope(base64.b64encode(b"x" * 48), b"p")

    def test_rejects_non_base64(self):
        with pytest.raises(AuthenticationFailure):
            decrypt_passphrase_envelope(b"\x00\x01binary", b"p")

    def test_rejects_unaligned_body(self):
        blob = base64.b64encode(b"Salted__" + b"s" * 8 + b"b" * 15)
        with pytest.raises(AuthenticationFailure):
            decrypt_passphrase_envelope(blob, b"p")


class TestTextSalt:
    def test_passwords_use_fixed_salt(self):
        assert legacy_text_salt(SecretKind.PASSWORDS, "a@b.c", "fixed") == "fixed"

    def test_apikeys_use_email(self):
        assert legacy_text_salt(SecretKind.APIKEYS, "a@b.c", "fixed") == "a@b.c"
