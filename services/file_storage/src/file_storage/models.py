import datetime as dt
from sqlalchemy import String, DateTime, Integer, BigInteger, Text
from sqlalchemy.orm import Mapped, mapped_column
from .db import Base
from .keys import utcnow


class StoredObjectRecord(Base):
    __tablename__ = "stored_objects"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    key: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    original_name: Mapped[str] = mapped_column(String, nullable=False, index=True)
    content_type: Mapped[str] = mapped_column(String, nullable=False, default="application/octet-stream")
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    checksum: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    tags: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at_utc: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow, nullable=False, index=True)

    # set once by soft delete, never cleared
    deleted_at_utc: Mapped[dt.datetime | None] = mapped_column(DateTime, nullable=True, index=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_by_user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
