"""Shared fixtures for file storage tests."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from file_storage.config import StorageConfig
from file_storage.content_store import ContentStore
from file_storage.db import init_db, make_engine, make_session_factory
from file_storage.metadata_store import MetadataStore
from file_storage.service import FileStorageService


class ByteSource:
    """Async byte source over an in-memory buffer.

    With ``fail_after`` set, hands out at most that many bytes and then
    raises ``error`` on the next read, like a client that dropped mid-upload.
    With ``block_after`` set, the read after that many bytes waits forever.
    """

    def __init__(self, data: bytes, fail_after=None, error=None, block_after=None):
        self.data = data
        self.pos = 0
        self.fail_after = fail_after
        self.error = error or RuntimeError("client went away")
        self.block_after = block_after
        self.reads = 0

    async def read(self, size: int = -1) -> bytes:
        self.reads += 1
        if self.fail_after is not None and self.pos >= self.fail_after:
            raise self.error
        if self.block_after is not None and self.pos >= self.block_after:
            await asyncio.Event().wait()

        end = len(self.data) if size < 0 else self.pos + size
        for limit in (self.fail_after, self.block_after):
            if limit is not None:
                end = min(end, limit)
        chunk = self.data[self.pos:end]
        self.pos = end
        return chunk


@pytest.fixture
def make_source():
    """Factory for ByteSource instances."""
    return ByteSource


@pytest.fixture
def storage_config(tmp_path):
    """Storage config rooted in a temp dir, small chunks to exercise looping."""
    return StorageConfig(base_dir=tmp_path / "files", chunk_size=1024)


@pytest.fixture
def content_store(storage_config):
    return ContentStore(storage_config)


@pytest.fixture
def session_factory(tmp_path):
    """Sqlite-file session factory with tables created.

    Yields:
        sessionmaker bound to a fresh database.
    """
    engine = make_engine(f"sqlite:///{tmp_path}/test.db")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def metadata_store(session_factory):
    return MetadataStore(session_factory)


@pytest.fixture
def service(content_store, metadata_store):
    return FileStorageService(content_store, metadata_store)


@pytest.fixture
def client(service):
    """TestClient wired to the test service, startup hook not run."""
    from file_storage.main import app, get_allowed_content_types

    app.state.service = service
    app.dependency_overrides[get_allowed_content_types] = lambda: []
    yield TestClient(app)
    app.dependency_overrides.clear()
