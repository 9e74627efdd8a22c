"""Tests for FileStorageService: the two-phase upload and the delete flows."""

import asyncio
import hashlib
import time
import uuid

import pytest
from sqlalchemy.exc import OperationalError

from file_storage.errors import (
    CancellationFailure,
    Gone,
    IoFailure,
    NotFound,
    StorageInconsistency,
    UploadFailed,
)
from file_storage.keys import locate
from file_storage.schemas import FilesQuery


async def _upload(service, make_source, data=b"hello world", name="a.txt", tags=("x", "y")):
    return await service.upload(make_source(data), name, "text/plain", list(tags), "u1")


class TestUpload:
    @pytest.mark.asyncio
    async def test_upload_download_round_trip(self, service, make_source):
        data = b"hello world" * 300

        record = await _upload(service, make_source, data)

        assert record.size_bytes == len(data)
        assert len(record.checksum) == 64
        assert record.checksum == record.checksum.lower()
        assert record.checksum == hashlib.sha256(data).hexdigest()
        assert record.tags == "x,y"
        assert record.version == 1
        assert record.deleted_at_utc is None
        assert record.created_by_user_id == "u1"

        download = service.download(record.id)
        with download.stream as stream:
            assert stream.read() == data
        assert download.content_type == "text/plain"
        assert download.file_name == "a.txt"

    @pytest.mark.asyncio
    async def test_upload_writes_sidecar(self, service, storage_config, make_source):
        record = await _upload(service, make_source)

        folder = locate(storage_config.base_dir, record.key, record.created_at_utc)
        assert (folder / "metadata.json").is_file()
        assert record.id in (folder / "metadata.json").read_text(encoding="utf-8")

    @pytest.mark.asyncio
    async def test_record_matches_stored_bytes(self, service, content_store, make_source):
        record = await _upload(service, make_source, b"\x00\x01" * 4000)

        assert content_store.checksum_of(record.key, record.created_at_utc) == (record.size_bytes, record.checksum)

    @pytest.mark.asyncio
    async def test_content_failure_leaves_no_record(self, service, metadata_store, make_source):
        source = make_source(b"x" * 5000, fail_after=3000)

        with pytest.raises(UploadFailed) as exc_info:
            await service.upload(source, "a.txt", "text/plain", [], "u1")

        assert isinstance(exc_info.value.__cause__, CancellationFailure)
        assert exc_info.value.key is None
        assert metadata_store.query(FilesQuery()) == ([], 0)

    @pytest.mark.asyncio
    async def test_insert_failure_orphans_content(self, service, metadata_store, content_store, make_source, monkeypatch):
        def broken_insert(record):
            raise OperationalError("INSERT", {}, Exception("database is locked"))

        monkeypatch.setattr(metadata_store, "insert", broken_insert)

        with pytest.raises(UploadFailed) as exc_info:
            await _upload(service, make_source)

        monkeypatch.undo()
        assert isinstance(exc_info.value.__cause__, OperationalError)
        assert metadata_store.query(FilesQuery()) == ([], 0)
        # no compensation: the blob is still on disk under the reported key
        assert content_store.exists(exc_info.value.key)

    @pytest.mark.asyncio
    async def test_slow_insert_does_not_block_event_loop(self, service, metadata_store, make_source, monkeypatch):
        real_insert = metadata_store.insert

        def slow_insert(record):
            time.sleep(0.3)
            return real_insert(record)

        monkeypatch.setattr(metadata_store, "insert", slow_insert)
        ticks = 0

        async def ticker():
            nonlocal ticks
            while True:
                await asyncio.sleep(0.01)
                ticks += 1

        ticking = asyncio.create_task(ticker())
        try:
            record = await _upload(service, make_source)
        finally:
            ticking.cancel()

        assert metadata_store.get(record.id) is not None
        assert ticks >= 5

    @pytest.mark.asyncio
    async def test_cancelled_upload_leaves_nothing(self, service, metadata_store, storage_config, make_source):
        source = make_source(b"q" * 4096, block_after=1024)
        task = asyncio.create_task(service.upload(source, "a.txt", "text/plain", [], "u1"))
        while source.pos < 1024:
            await asyncio.sleep(0)
        await asyncio.sleep(0)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert metadata_store.query(FilesQuery()) == ([], 0)
        assert list(storage_config.base_dir.rglob("content.bin*")) == []


class TestDownload:
    def test_unknown_id(self, service):
        with pytest.raises(NotFound):
            service.download(str(uuid.uuid4()))

    @pytest.mark.asyncio
    async def test_missing_content_is_inconsistency(self, service, content_store, make_source):
        record = await _upload(service, make_source)
        content_store.delete(record.key, record.created_at_utc)

        with pytest.raises(StorageInconsistency):
            service.download(record.id)


class TestSoftDelete:
    @pytest.mark.asyncio
    async def test_soft_deleted_is_gone_but_content_kept(self, service, content_store, make_source):
        record = await _upload(service, make_source, b"keep me")

        deleted = service.soft_delete(record.id)

        assert deleted.deleted_at_utc is not None
        with pytest.raises(Gone):
            service.download(record.id)
        with content_store.read(record.key, record.created_at_utc) as f:
            assert f.read() == b"keep me"

    @pytest.mark.asyncio
    async def test_soft_delete_twice_is_noop(self, service, make_source):
        record = await _upload(service, make_source)

        first = service.soft_delete(record.id)
        second = service.soft_delete(record.id)

        assert second.deleted_at_utc == first.deleted_at_utc

    def test_soft_delete_unknown(self, service):
        with pytest.raises(NotFound):
            service.soft_delete(str(uuid.uuid4()))


class TestHardDelete:
    @pytest.mark.asyncio
    async def test_everything_is_gone_afterwards(self, service, content_store, make_source):
        record = await _upload(service, make_source)

        service.hard_delete(record.id)

        with pytest.raises(NotFound):
            service.download(record.id)
        with pytest.raises(NotFound):
            service.hard_delete(record.id)
        with pytest.raises(NotFound):
            content_store.read(record.key, record.created_at_utc)

    @pytest.mark.asyncio
    async def test_hard_delete_after_soft_delete(self, service, metadata_store, make_source):
        record = await _upload(service, make_source)
        service.soft_delete(record.id)

        service.hard_delete(record.id)

        assert metadata_store.get(record.id) is None

    @pytest.mark.asyncio
    async def test_retry_after_content_already_removed(self, service, content_store, metadata_store, make_source):
        record = await _upload(service, make_source)
        # crash between the two steps: content gone, row still there
        content_store.delete(record.key, record.created_at_utc)

        service.hard_delete(record.id)

        assert metadata_store.get(record.id) is None

    @pytest.mark.asyncio
    async def test_record_kept_when_content_delete_fails(self, service, content_store, metadata_store, make_source, monkeypatch):
        record = await _upload(service, make_source)
        monkeypatch.setattr(content_store, "delete", lambda key, created_at=None: False)

        with pytest.raises(StorageInconsistency):
            service.hard_delete(record.id)

        assert metadata_store.get(record.id) is not None

    @pytest.mark.asyncio
    async def test_record_kept_on_io_failure(self, service, content_store, metadata_store, make_source, monkeypatch):
        record = await _upload(service, make_source)

        def broken_delete(key, created_at=None):
            raise IoFailure("permission denied", key=key)

        monkeypatch.setattr(content_store, "delete", broken_delete)

        with pytest.raises(IoFailure):
            service.hard_delete(record.id)

        assert metadata_store.get(record.id) is not None


class TestListFiles:
    @pytest.mark.asyncio
    async def test_excludes_soft_deleted_newest_first(self, service, make_source):
        first = await _upload(service, make_source, name="one.txt")
        await asyncio.sleep(0.01)
        second = await _upload(service, make_source, name="two.txt")
        await asyncio.sleep(0.01)
        third = await _upload(service, make_source, name="three.txt")
        service.soft_delete(second.id)

        page = service.list_files(FilesQuery())

        assert [i.id for i in page.items] == [third.id, first.id]
        assert page.total_count == 2
        assert page.page_number == 1

    @pytest.mark.asyncio
    async def test_stable_for_same_filters(self, service, make_source):
        for n in range(5):
            await _upload(service, make_source, name=f"f{n}.txt")

        query = FilesQuery(page_size=2, page_number=2)
        first = service.list_files(query)
        second = service.list_files(query)

        assert first == second
        assert first.total_count == 5
        assert len(first.items) == 2
