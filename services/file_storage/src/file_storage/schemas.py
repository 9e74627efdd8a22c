import datetime as dt
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

TAG_SEPARATOR = ","


def join_tags(tags: list[str] | None) -> str:
    """Serialize tags as a delimited string, dropping blanks and repeats."""
    seen: list[str] = []
    for value in tags or []:
        for tag in value.split(TAG_SEPARATOR):
            tag = tag.strip()
            if tag and tag not in seen:
                seen.append(tag)
    return TAG_SEPARATOR.join(seen)


def split_tags(tags: str | None) -> list[str]:
    return [t for t in (tags or "").split(TAG_SEPARATOR) if t]


class ContentDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    size_bytes: int
    checksum: str
    created_at_utc: dt.datetime


class StoredObject(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    key: str
    original_name: str
    content_type: str
    size_bytes: int
    checksum: str
    tags: str = ""
    created_at_utc: dt.datetime
    deleted_at_utc: dt.datetime | None = None
    # never incremented, content is immutable
    version: int = 1
    created_by_user_id: str

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at_utc is not None

    @property
    def tag_list(self) -> list[str]:
        return split_tags(self.tags)


class FilesQuery(BaseModel):
    name: str | None = None
    tag: str | None = None
    content_type: str | None = None
    date_from: dt.datetime | None = None
    date_to: dt.datetime | None = None
    page_number: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1)

    @field_validator("date_from", "date_to")
    @classmethod
    def to_naive_utc(cls, value: dt.datetime | None) -> dt.datetime | None:
        # stored timestamps are naive UTC
        if value is not None and value.tzinfo is not None:
            return value.astimezone(dt.timezone.utc).replace(tzinfo=None)
        return value


class FilesPage(BaseModel):
    total_count: int
    page_number: int
    page_size: int
    items: list[StoredObject]


class FileDownload(BaseModel):
    # open binary handle, closed by the caller
    stream: Any
    content_type: str
    file_name: str
    size_bytes: int
    checksum: str
