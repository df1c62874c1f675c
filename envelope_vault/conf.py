"""
Vault Configuration — validated settings for key derivation and storage.

Reads settings from environment variables:
    VAULT_KDF_ITERATIONS = <int, at least 100000>
    VAULT_SALT_NAMESPACE = <salt prefix of existing ciphertexts>
    VAULT_FILE_PURPOSE / VAULT_SHARED_PURPOSE = <KDF purposes>
    VAULT_LEGACY_ENABLED = <true|false>
    VAULT_LEGACY_PASSWORD_SALT = <historical salt of the password vault>
    VAULT_STORAGE_SUFFIX = <suffix of blob storage paths>

Security Note:
    Nothing configured here is secret. Keys are always recomputed from
    (seed, scope, purpose) and never read from configuration.
"""
import os
import logging
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .models import SecretKind

logger = logging.getLogger("envelope.vault")

MIN_KDF_ITERATIONS = 100_000

_TRUE_VALUES = ("1", "true", "yes", "on")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUE_VALUES


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    kdf_iterations: int = Field(default=MIN_KDF_ITERATIONS, ge=MIN_KDF_ITERATIONS)
    salt_namespace: str = Field(default="ldgr")
    file_purpose: str = Field(default="files")
    shared_purpose: str = Field(default="shared")
    legacy_enabled: bool = True
    legacy_password_salt: str = Field(default="ldgr-passwords-salt")
    storage_suffix: str = Field(default=".encrypted")

    model_config = {"frozen": True}

    @field_validator("salt_namespace")
    @classmethod
    def validate_namespace(cls, v: str) -> str:
        """The namespace is the first ':'-separated salt component."""
        if not v or ":" in v:
            raise ValueError(
                f"salt_namespace must be non-empty and cannot contain ':': {v!r}"
            )
        return v

    @field_validator("file_purpose", "shared_purpose")
    @classmethod
    def validate_purpose(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("KDF purpose cannot be empty")
        return v

    @field_validator("storage_suffix")
    @classmethod
    def validate_suffix(cls, v: str) -> str:
        if not v.startswith(".") or len(v) < 2:
            raise ValueError(f"storage_suffix must look like '.ext': {v!r}")
        return v

    @model_validator(mode="after")
    def validate_purpose_isolation(self) -> "VaultConfig":
        """The shared purpose must not collide with a personal purpose."""
        personal = {self.file_purpose} | {kind.value for kind in SecretKind}
        if self.shared_purpose in personal:
            raise ValueError(
                f"shared_purpose {self.shared_purpose!r} collides with a "
                f"personal purpose ({sorted(personal)})"
            )
        return self

    @classmethod
    def from_env(cls, **overrides) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Keyword overrides win over environment values.

        Returns:
            Populated VaultConfig instance.
        """
        values: dict = {}
        iterations: Optional[str] = os.environ.get("VAULT_KDF_ITERATIONS")
        if iterations is not None:
            values["kdf_iterations"] = int(iterations)
        for field, env in (
            ("salt_namespace", "VAULT_SALT_NAMESPACE"),
            ("file_purpose", "VAULT_FILE_PURPOSE"),
            ("shared_purpose", "VAULT_SHARED_PURPOSE"),
            ("legacy_password_salt", "VAULT_LEGACY_PASSWORD_SALT"),
            ("storage_suffix", "VAULT_STORAGE_SUFFIX"),
        ):
            raw = os.environ.get(env)
            if raw is not None:
                values[field] = raw
        values["legacy_enabled"] = _env_bool("VAULT_LEGACY_ENABLED", True)
        values.update(overrides)
        config = cls(**values)
        logger.debug(
            "Vault config loaded: iterations=%d namespace=%s legacy=%s",
            config.kdf_iterations, config.salt_namespace, config.legacy_enabled,
        )
        return config
