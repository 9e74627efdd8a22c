"""SQLAlchemy-backed record store, one row per stored object."""

import datetime as dt

from sqlalchemy import and_, func, select
from sqlalchemy.orm import sessionmaker

from .keys import utcnow
from .models import StoredObjectRecord
from .schemas import FilesQuery, StoredObject


class MetadataStore:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def insert(self, record: StoredObject) -> StoredObject:
        with self._session_factory() as db:
            row = StoredObjectRecord(**record.model_dump())
            db.add(row)
            db.commit()
            db.refresh(row)
            return StoredObject.model_validate(row)

    def get(self, object_id: str) -> StoredObject | None:
        with self._session_factory() as db:
            row = db.get(StoredObjectRecord, object_id)
            return StoredObject.model_validate(row) if row else None

    def mark_deleted(self, object_id: str, when: dt.datetime | None = None) -> StoredObject | None:
        """Set deleted_at_utc once. Returns None when the row does not exist."""
        with self._session_factory() as db:
            row = db.get(StoredObjectRecord, object_id)
            if not row:
                return None
            if row.deleted_at_utc is None:
                row.deleted_at_utc = when or utcnow()
                db.commit()
                db.refresh(row)
            return StoredObject.model_validate(row)

    def remove(self, object_id: str) -> bool:
        with self._session_factory() as db:
            row = db.get(StoredObjectRecord, object_id)
            if not row:
                return False
            db.delete(row)
            db.commit()
            return True

    def query(self, q: FilesQuery) -> tuple[list[StoredObject], int]:
        """Active rows matching the filters, newest first, plus the total count."""
        conditions = [StoredObjectRecord.deleted_at_utc.is_(None)]
        if q.name:
            conditions.append(StoredObjectRecord.original_name.contains(q.name, autoescape=True))
        if q.tag:
            conditions.append(StoredObjectRecord.tags.contains(q.tag, autoescape=True))
        if q.content_type:
            conditions.append(StoredObjectRecord.content_type.contains(q.content_type, autoescape=True))
        if q.date_from:
            conditions.append(StoredObjectRecord.created_at_utc >= q.date_from)
        if q.date_to:
            conditions.append(StoredObjectRecord.created_at_utc <= q.date_to)

        where = and_(*conditions)
        with self._session_factory() as db:
            total = db.execute(select(func.count()).select_from(StoredObjectRecord).where(where)).scalar_one()
            rows = db.execute(
                select(StoredObjectRecord)
                .where(where)
                .order_by(StoredObjectRecord.created_at_utc.desc(), StoredObjectRecord.id.desc())
                .offset((q.page_number - 1) * q.page_size)
                .limit(q.page_size)
            ).scalars().all()
            return [StoredObject.model_validate(r) for r in rows], total
