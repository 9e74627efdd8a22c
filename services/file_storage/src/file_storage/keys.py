import datetime as dt
import uuid
from pathlib import Path


def utcnow() -> dt.datetime:
    # naive UTC, same as what the DateTime columns hand back
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)


def allocate_key() -> str:
    # random 128-bit id, collisions are not checked
    return str(uuid.uuid4())


def is_valid_key(key: str) -> bool:
    try:
        return str(uuid.UUID(key)) == key
    except (ValueError, TypeError, AttributeError):
        return False


def date_parts(created_at: dt.datetime) -> tuple[str, str, str]:
    return created_at.strftime("%Y"), created_at.strftime("%m"), created_at.strftime("%d")


def locate(base_dir: Path, key: str, created_at: dt.datetime) -> Path:
    """Directory holding the blob: base_dir/yyyy/mm/dd/key."""
    yyyy, mm, dd = date_parts(created_at)
    return base_dir / yyyy / mm / dd / key
