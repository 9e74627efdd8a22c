"""Local content store.

Owns the bytes on disk. Each blob lives in its own directory::

    {base_dir}/{yyyy}/{mm}/{dd}/{key}/content.bin
    {base_dir}/{yyyy}/{mm}/{dd}/{key}/metadata.json

``content.bin`` only appears through an atomic rename of a fully written temp
file, so a reader either sees complete bytes or nothing. ``metadata.json`` is a
diagnostic copy of the record and is never used to decide whether content
exists.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
import os
from pathlib import Path
from typing import BinaryIO, Iterator

from starlette.concurrency import run_in_threadpool

from .checksum import AsyncByteSource, checksum_file, copy_with_checksum
from .config import StorageConfig
from .errors import CancellationFailure, IoFailure, NotFound
from .keys import allocate_key, is_valid_key, locate, utcnow
from .schemas import ContentDescriptor, StoredObject

logger = logging.getLogger(__name__)

HEALTHCHECK_FILE = "healthcheck.tmp"


class ContentStore:
    def __init__(self, config: StorageConfig):
        self.config = config
        self.base_dir = Path(config.base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    async def write(self, source: AsyncByteSource, created_at: dt.datetime | None = None) -> ContentDescriptor:
        """Stream source into a new blob and return its descriptor.

        Bytes go to a temp file next to the final one; the rename to
        ``content.bin`` happens only after the source is exhausted without
        error. On failure or cancellation the temp file and the empty key
        directory are removed and nothing is visible under the key.
        """
        key = allocate_key()
        created_at = created_at or utcnow()
        folder = locate(self.base_dir, key, created_at)
        content_path = folder / self.config.content_file_name
        temp_path = folder / self.config.temp_file_name

        try:
            folder.mkdir(parents=True, exist_ok=False)
        except OSError as e:
            logger.error("Cannot create content directory %s for key=%s: %s", folder, key, e)
            raise IoFailure(f"Cannot create content directory for key {key}: {e}", key=key) from e

        logger.info("Writing content to temporary path %s", temp_path)
        try:
            with temp_path.open("wb") as out:
                size, checksum = await copy_with_checksum(source, out, self.config.chunk_size)
                await run_in_threadpool(_flush_to_disk, out)
            await run_in_threadpool(os.replace, temp_path, content_path)
        except asyncio.CancelledError:
            logger.warning("Write cancelled before commit, discarding key=%s", key)
            self._discard(folder, temp_path, content_path)
            raise
        except OSError as e:
            logger.error("I/O error while writing key=%s: %s", key, e)
            self._discard(folder, temp_path, content_path)
            raise IoFailure(f"Failed to write content for key {key}: {e}", key=key) from e
        except Exception as e:
            logger.exception("Write aborted for key=%s", key)
            self._discard(folder, temp_path, content_path)
            raise CancellationFailure(f"Upload aborted for key {key}: {e}", key=key) from e

        logger.info(
            "Content saved. path=%s size_bytes=%d checksum=%s",
            content_path,
            size,
            checksum,
        )
        return ContentDescriptor(key=key, size_bytes=size, checksum=checksum, created_at_utc=created_at)

    def _discard(self, folder: Path, *paths: Path) -> None:
        # best effort; the key was never handed out, so content.bin goes too
        try:
            for path in paths:
                path.unlink(missing_ok=True)
            folder.rmdir()
        except OSError as e:
            logger.warning("Could not clean up abandoned write in %s: %s", folder, e)

    def write_sidecar(self, record: StoredObject) -> Path:
        """Write metadata.json for an already committed blob."""
        folder = locate(self.base_dir, record.key, record.created_at_utc)
        if not (folder / self.config.content_file_name).is_file():
            raise NotFound(f"No content for key {record.key}", key=record.key)

        path = folder / self.config.metadata_file_name
        try:
            path.write_text(record.model_dump_json(indent=2), encoding="utf-8")
        except OSError as e:
            raise IoFailure(f"Failed to write metadata for key {record.key}: {e}", key=record.key) from e

        logger.info("Metadata written. path=%s", path)
        return path

    def _resolve(self, key: str, created_at: dt.datetime | None) -> Path | None:
        if not is_valid_key(key):
            return None
        if created_at is not None:
            folder = locate(self.base_dir, key, created_at)
            return folder if folder.is_dir() else None
        return self._scan(key)

    def _scan(self, key: str) -> Path | None:
        # fallback for callers that lost the creation date: walks every day dir
        logger.warning("Resolving key=%s by scanning %s", key, self.base_dir)
        for folder in self.base_dir.glob(f"*/*/*/{key}"):
            if folder.is_dir():
                return folder
        return None

    def exists(self, key: str, created_at: dt.datetime | None = None) -> bool:
        folder = self._resolve(key, created_at)
        return folder is not None and (folder / self.config.content_file_name).is_file()

    def read(self, key: str, created_at: dt.datetime | None = None) -> BinaryIO:
        """Open the blob for reading. The caller must close the handle."""
        folder = self._resolve(key, created_at)
        if folder is None:
            logger.warning("Read failed: no content directory for key=%s", key)
            raise NotFound(f"No content for key {key}", key=key)

        path = folder / self.config.content_file_name
        try:
            f = path.open("rb")
        except FileNotFoundError as e:
            logger.warning("Read failed: %s missing for key=%s", path, key)
            raise NotFound(f"No content for key {key}", key=key) from e
        except OSError as e:
            raise IoFailure(f"Failed to open content for key {key}: {e}", key=key) from e

        logger.info("Content found. path=%s key=%s", path, key)
        return f

    def checksum_of(self, key: str, created_at: dt.datetime | None = None) -> tuple[int, str]:
        """Re-hash stored bytes, returns (size, sha256 hex)."""
        with self.read(key, created_at) as f:
            try:
                return checksum_file(f, self.config.chunk_size)
            except OSError as e:
                raise IoFailure(f"Failed to read content for key {key}: {e}", key=key) from e

    def delete(self, key: str, created_at: dt.datetime | None = None) -> bool:
        """Remove content, sidecar and the key directory.

        Missing pieces are logged and skipped so a retry after a partial
        failure goes through. Returns False only when the directory is left
        behind because it still holds entries this store did not create.
        """
        folder = self._resolve(key, created_at)
        if folder is None:
            logger.warning("Delete: no content directory for key=%s, nothing to remove", key)
            return True

        for name in (
            self.config.content_file_name,
            self.config.metadata_file_name,
            self.config.temp_file_name,
        ):
            path = folder / name
            try:
                path.unlink()
                logger.info("Deleted %s for key=%s", path, key)
            except FileNotFoundError:
                if name != self.config.temp_file_name:
                    logger.warning("Delete: %s not found for key=%s", path, key)
            except OSError as e:
                raise IoFailure(f"Failed to delete {path}: {e}", key=key) from e

        try:
            leftovers = sorted(p.name for p in folder.iterdir())
            if leftovers:
                logger.error("Delete: %s still holds %s, keeping it for key=%s", folder, leftovers, key)
                return False
            folder.rmdir()
        except FileNotFoundError:
            # concurrent delete got there first
            pass
        except OSError as e:
            raise IoFailure(f"Failed to remove {folder}: {e}", key=key) from e

        logger.info("Deleted folder %s for key=%s", folder, key)
        return True

    def probe(self) -> None:
        """Check that the base dir is writable, raises IoFailure if not."""
        test_file = self.base_dir / HEALTHCHECK_FILE
        try:
            test_file.write_text("test", encoding="utf-8")
            test_file.unlink()
        except OSError as e:
            raise IoFailure(f"Filesystem check failed for {self.base_dir}: {e}") from e


def _flush_to_disk(out: BinaryIO) -> None:
    out.flush()
    os.fsync(out.fileno())


def iter_chunks(stream: BinaryIO, chunk_size: int) -> Iterator[bytes]:
    """Yield chunks from an open handle, closing it however iteration ends.

    A plain generator, so StreamingResponse iterates it in its threadpool.
    """
    try:
        while True:
            chunk = stream.read(chunk_size)
            if not chunk:
                break
            yield chunk
    finally:
        stream.close()
