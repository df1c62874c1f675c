import pytest

from envelope_vault.backends.memory import (
    MemoryMetadataStore,
    MemoryObjectStore,
    StaticIdentity,
)
from envelope_vault.conf import VaultConfig
from envelope_vault.folders import FolderAccessRegistry, FolderTree
from envelope_vault.vault import SecretVault, VaultStorageOrchestrator

from .helpers import OWNER, OWNER_EMAIL


@pytest.fixture
def config():
    return VaultConfig()


@pytest.fixture
def identity():
    return StaticIdentity(OWNER, OWNER_EMAIL)


@pytest.fixture
def objects():
    return MemoryObjectStore()


@pytest.fixture
def metadata():
    return MemoryMetadataStore()


@pytest.fixture
def registry(metadata, config):
    return FolderAccessRegistry(metadata, config)


@pytest.fixture
def tree(metadata):
    return FolderTree(metadata)


@pytest.fixture
def orchestrator(objects, metadata, identity, config, registry):
    return VaultStorageOrchestrator(
        objects, metadata, identity=identity, config=config, registry=registry,
    )


@pytest.fixture
def secrets_vault(metadata, identity, config, registry):
    return SecretVault(metadata, identity=identity, config=config, registry=registry)
