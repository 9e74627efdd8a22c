"""Upload, download, soft/hard delete and listing over the two stores.

The content store holds bytes, the metadata store holds the authoritative
record. Upload writes content first and the record second, so a record never
points at a partial blob. Hard delete removes content first and the record
second, so a crash in between leaves a record whose retry finishes the job
rather than an unreferenced blob.

Only upload is a coroutine, it awaits the incoming stream. The other
operations block on the database and the disk and run in a worker thread.
"""

from __future__ import annotations

import logging
import uuid

from starlette.concurrency import run_in_threadpool

from .checksum import AsyncByteSource
from .content_store import ContentStore
from .errors import Gone, NotFound, StorageError, StorageInconsistency, UploadFailed
from .metadata_store import MetadataStore
from .schemas import FileDownload, FilesPage, FilesQuery, StoredObject, join_tags

logger = logging.getLogger(__name__)


class FileStorageService:
    def __init__(self, content_store: ContentStore, metadata_store: MetadataStore):
        self.content_store = content_store
        self.metadata_store = metadata_store

    async def upload(
        self,
        source: AsyncByteSource,
        original_name: str,
        content_type: str,
        tags: list[str] | None,
        user_id: str,
    ) -> StoredObject:
        try:
            descriptor = await self.content_store.write(source)
        except StorageError as e:
            logger.error("Upload failed while writing content. name=%s user=%s: %s", original_name, user_id, e)
            raise UploadFailed(f"Failed to store content: {e}") from e

        record = StoredObject(
            id=str(uuid.uuid4()),
            key=descriptor.key,
            original_name=original_name,
            content_type=content_type,
            size_bytes=descriptor.size_bytes,
            checksum=descriptor.checksum,
            tags=join_tags(tags),
            created_at_utc=descriptor.created_at_utc,
            version=1,
            created_by_user_id=user_id,
        )

        try:
            await run_in_threadpool(self.content_store.write_sidecar, record)
        except StorageError as e:
            # metadata.json is diagnostic only
            logger.warning("Sidecar not written for key=%s: %s", record.key, e)

        try:
            stored = await run_in_threadpool(self.metadata_store.insert, record)
        except Exception as e:
            # no compensation: the blob stays on disk without a record
            logger.exception("Record insert failed, orphaned content key=%s id=%s", record.key, record.id)
            raise UploadFailed(f"Failed to save record: {e}", key=record.key) from e

        logger.info(
            "File uploaded. id=%s key=%s size_bytes=%d user=%s",
            stored.id,
            stored.key,
            stored.size_bytes,
            user_id,
        )
        return stored

    def _get_record(self, object_id: str) -> StoredObject:
        record = self.metadata_store.get(object_id)
        if record is None:
            raise NotFound(f"File {object_id} not found")
        return record

    def get(self, object_id: str) -> StoredObject:
        record = self._get_record(object_id)
        if record.is_deleted:
            raise Gone(f"File {object_id} is deleted", key=record.key)
        return record

    def download(self, object_id: str) -> FileDownload:
        """Open the content of an active record. The caller closes the stream."""
        record = self.get(object_id)
        try:
            stream = self.content_store.read(record.key, record.created_at_utc)
        except NotFound as e:
            logger.error("Active record id=%s has no content under key=%s", object_id, record.key)
            raise StorageInconsistency(
                f"File {object_id} has a record but its content is missing", key=record.key
            ) from e

        return FileDownload(
            stream=stream,
            content_type=record.content_type,
            file_name=record.original_name,
            size_bytes=record.size_bytes,
            checksum=record.checksum,
        )

    def soft_delete(self, object_id: str) -> StoredObject:
        record = self._get_record(object_id)
        if record.is_deleted:
            logger.info("File id=%s already soft deleted at %s", object_id, record.deleted_at_utc)
            return record

        updated = self.metadata_store.mark_deleted(object_id)
        if updated is None:
            # hard deleted between get and update
            raise NotFound(f"File {object_id} not found")
        logger.info("File soft deleted. id=%s", object_id)
        return updated

    def hard_delete(self, object_id: str) -> None:
        record = self._get_record(object_id)

        if not self.content_store.delete(record.key, record.created_at_utc):
            logger.error("Content for id=%s key=%s not fully removed, keeping record", object_id, record.key)
            raise StorageInconsistency(
                f"Content for file {object_id} could not be fully removed", key=record.key
            )

        if not self.metadata_store.remove(object_id):
            logger.warning("Record id=%s was already removed by a concurrent delete", object_id)
            return
        logger.info("File hard deleted. id=%s key=%s", object_id, record.key)

    def list_files(self, query: FilesQuery) -> FilesPage:
        items, total = self.metadata_store.query(query)
        logger.info("Files listed. count=%d total=%d page=%d", len(items), total, query.page_number)
        return FilesPage(
            total_count=total,
            page_number=query.page_number,
            page_size=query.page_size,
            items=items,
        )
