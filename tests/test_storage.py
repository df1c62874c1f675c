"""
Tests for VaultStorageOrchestrator.

Tests cover:
- Upload/download with personal and folder-shared keys
- Moves that never re-encrypt, reads that still succeed after a move
- Deletes, missing blobs and dangling metadata
- Compensating blob delete after a failed metadata insert
- Opt-in re-encryption of legacy and misplaced blobs
"""
import os
import re

import pytest

from envelope_vault.backends.memory import MemoryMetadataStore, StaticIdentity
from envelope_vault.exceptions import (
    ExhaustedDecryptionTiers,
    StorageInconsistency,
    StorageIOError,
)
from envelope_vault.models import FileMetadata, FilePayload
from envelope_vault.vault import VaultStorageOrchestrator
from envelope_vault.vault.crypto import decrypt

from .helpers import COLLABORATOR, OWNER, OWNER_EMAIL, legacy_file_blob

PATH_PATTERN = re.compile(r"^\d{13}_[0-9a-f]{32}_report\.pdf\.encrypted$")


class BrokenInsertStore(MemoryMetadataStore):
    async def insert_file(self, meta):
        raise StorageIOError("insert refused", "insert_file")


def _payload(content=b"quarterly numbers", name="report.pdf"):
    return FilePayload(name=name, content=content, mime_type="application/pdf")


class TestUploadDownload:
    async def test_personal_round_trip(self, orchestrator, objects):
        meta = await orchestrator.upload(_payload(), OWNER)
        assert meta.folder_id is None
        assert meta.size == len(b"quarterly numbers")
        assert meta.storage_path in objects
        payload = await orchestrator.download(meta, OWNER)
        assert payload.content == b"quarterly numbers"
        assert payload.name == "report.pdf"
        assert payload.mime_type == "application/pdf"

    async def test_blob_uses_personal_file_key(self, orchestrator, objects):
        meta = await orchestrator.upload(_payload(), OWNER)
        key = orchestrator.kdf.personal(OWNER, "files")
        assert decrypt(objects._blobs[meta.storage_path], key) == b"quarterly numbers"

    @pytest.mark.parametrize("size", [0, 1, 64 * 1024, 10 * 1024 * 1024])
    async def test_round_trip_sizes(self, orchestrator, size):
        content = os.urandom(size)
        meta = await orchestrator.upload(_payload(content=content), OWNER, folder_id="team")
        assert meta.size == size
        assert (await orchestrator.download(meta, OWNER)).content == content

    async def test_empty_file(self, orchestrator):
        meta = await orchestrator.upload(_payload(content=b""), OWNER)
        assert meta.size == 0
        assert (await orchestrator.download(meta, OWNER)).content == b""

    async def test_shared_folder_readable_by_collaborator(self, orchestrator, objects):
        meta = await orchestrator.upload(_payload(), OWNER, folder_id="team")
        key = orchestrator.kdf.shared("team")
        assert decrypt(objects._blobs[meta.storage_path], key) == b"quarterly numbers"
        payload = await orchestrator.download(meta, COLLABORATOR)
        assert payload.content == b"quarterly numbers"

    async def test_personal_file_unreadable_by_others(self, orchestrator):
        meta = await orchestrator.upload(_payload(), OWNER)
        with pytest.raises(ExhaustedDecryptionTiers):
            await orchestrator.download(meta, COLLABORATOR)

    async def test_legacy_blob(self, orchestrator, objects, metadata):
        objects._blobs["legacy.bin"] = legacy_file_blob(b"old scan", OWNER, OWNER_EMAIL)
        meta = await metadata.insert_file(FileMetadata(
            id="legacy-1", owner_id=OWNER, name="scan.png", size=8,
            storage_path="legacy.bin",
        ))
        assert (await orchestrator.download(meta, OWNER)).content == b"old scan"

    def test_rejects_path_separators(self):
        with pytest.raises(ValueError):
            _payload(name="../etc/passwd")


class TestStoragePath:
    def test_format(self, orchestrator):
        assert PATH_PATTERN.match(orchestrator.storage_path("report.pdf"))

    def test_unique_within_same_millisecond(self, orchestrator):
        paths = {orchestrator.storage_path("report.pdf") for _ in range(50)}
        assert len(paths) == 50

    async def test_same_name_uploads_do_not_collide(self, orchestrator, objects):
        first = await orchestrator.upload(_payload(b"one"), OWNER)
        second = await orchestrator.upload(_payload(b"two"), OWNER)
        assert first.storage_path != second.storage_path
        assert len(objects) == 2


class TestMove:
    async def test_move_does_not_reencrypt(self, orchestrator, objects):
        meta = await orchestrator.upload(_payload(), OWNER)
        before = objects._blobs[meta.storage_path]
        moved = await orchestrator.move(meta.id, "team")
        assert moved.folder_id == "team"
        assert objects._blobs[meta.storage_path] == before
        assert (await orchestrator.download(moved, OWNER)).content == b"quarterly numbers"

    async def test_move_to_root(self, orchestrator):
        meta = await orchestrator.upload(_payload(), OWNER, folder_id="team")
        moved = await orchestrator.move(meta.id, None)
        assert moved.folder_id is None
        # shared-keyed blob at root is only readable once re-keyed
        with pytest.raises(ExhaustedDecryptionTiers):
            await orchestrator.download(moved, OWNER)

    async def test_move_missing(self, orchestrator):
        with pytest.raises(KeyError):
            await orchestrator.move("missing", "team")


class TestDelete:
    async def test_delete(self, orchestrator, objects, metadata):
        meta = await orchestrator.upload(_payload(), OWNER)
        await orchestrator.delete(meta)
        assert meta.storage_path not in objects
        assert meta.id not in metadata.files

    async def test_delete_with_missing_blob(self, orchestrator, objects, metadata):
        meta = await orchestrator.upload(_payload(), OWNER)
        del objects._blobs[meta.storage_path]
        await orchestrator.delete(meta)
        assert meta.id not in metadata.files

    async def test_dangling_metadata(self, orchestrator, objects):
        meta = await orchestrator.upload(_payload(), OWNER)
        del objects._blobs[meta.storage_path]
        with pytest.raises(StorageInconsistency):
            await orchestrator.download(meta, OWNER)


class TestCompensation:
    async def test_failed_insert_removes_blob(self, objects, identity, config):
        orchestrator = VaultStorageOrchestrator(
            objects, BrokenInsertStore(), identity=identity, config=config,
        )
        with pytest.raises(StorageIOError, match="insert refused"):
            await orchestrator.upload(_payload(), OWNER)
        assert len(objects) == 0


class TestListing:
    async def test_list_and_count(self, orchestrator):
        await orchestrator.upload(_payload(b"1", "a.txt"), OWNER)
        await orchestrator.upload(_payload(b"2", "b.txt"), OWNER, folder_id="team")
        await orchestrator.upload(_payload(b"3", "c.txt"), OWNER, folder_id="team")
        assert [m.name for m in await orchestrator.list_files(OWNER)] == ["a.txt"]
        assert len(await orchestrator.list_files(OWNER, "team")) == 2
        assert await orchestrator.count_files("team") == 2

    async def test_get(self, orchestrator):
        meta = await orchestrator.upload(_payload(), OWNER)
        assert (await orchestrator.get(meta.id)).storage_path == meta.storage_path
        with pytest.raises(KeyError):
            await orchestrator.get("missing")


class TestReencrypt:
    async def test_moved_file_is_rekeyed_to_folder(self, orchestrator, objects):
        meta = await orchestrator.upload(_payload(), OWNER)
        moved = await orchestrator.move(meta.id, "team")
        await orchestrator.reencrypt(moved, OWNER)
        key = orchestrator.kdf.shared("team")
        assert decrypt(objects._blobs[meta.storage_path], key) == b"quarterly numbers"
        assert (await orchestrator.download(moved, COLLABORATOR)).content == b"quarterly numbers"

    async def test_current_blob_untouched(self, orchestrator, objects):
        meta = await orchestrator.upload(_payload(), OWNER)
        before = objects._blobs[meta.storage_path]
        await orchestrator.reencrypt(meta, OWNER)
        assert objects._blobs[meta.storage_path] == before

    async def test_legacy_blob_upgraded(self, objects, metadata, config):
        identity = StaticIdentity(OWNER, OWNER_EMAIL)
        orchestrator = VaultStorageOrchestrator(
            objects, metadata, identity=identity, config=config,
        )
        objects._blobs["legacy.bin"] = legacy_file_blob(b"old", OWNER, OWNER_EMAIL)
        meta = await metadata.insert_file(FileMetadata(
            id="legacy-1", owner_id=OWNER, name="old.txt", size=3,
            storage_path="legacy.bin",
        ))
        await orchestrator.reencrypt(meta, OWNER)
        assert identity.email_lookups == 1
        assert (await orchestrator.download(meta, OWNER)).content == b"old"
        assert identity.email_lookups == 1

    async def test_only_owner_rekeys_personal_file(self, orchestrator):
        meta = await orchestrator.upload(_payload(), OWNER)
        with pytest.raises(PermissionError):
            await orchestrator.reencrypt(meta, COLLABORATOR)
