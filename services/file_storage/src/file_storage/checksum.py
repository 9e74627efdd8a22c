from __future__ import annotations

import hashlib
from typing import BinaryIO, Protocol

from .config import CHUNK_SIZE


class AsyncByteSource(Protocol):
    async def read(self, size: int = -1) -> bytes: ...


class ChecksumAccumulator:
    """Running sha256 + byte count over the chunks fed to it."""

    def __init__(self) -> None:
        self._hasher = hashlib.sha256()
        self.size_bytes = 0

    def update(self, chunk: bytes) -> None:
        self._hasher.update(chunk)
        self.size_bytes += len(chunk)

    def hexdigest(self) -> str:
        return self._hasher.hexdigest()


async def copy_with_checksum(
    source: AsyncByteSource,
    sink: BinaryIO,
    chunk_size: int = CHUNK_SIZE,
) -> tuple[int, str]:
    """Copy source into sink chunk by chunk and return (size, sha256 hex).

    Errors from either side are not caught here; the caller sees the original
    exception and no checksum.
    """
    acc = ChecksumAccumulator()
    while True:
        chunk = await source.read(chunk_size)
        if not chunk:
            break
        acc.update(chunk)
        sink.write(chunk)

    return acc.size_bytes, acc.hexdigest()


def checksum_file(f: BinaryIO, chunk_size: int = CHUNK_SIZE) -> tuple[int, str]:
    acc = ChecksumAccumulator()
    for chunk in iter(lambda: f.read(chunk_size), b""):
        acc.update(chunk)
    return acc.size_bytes, acc.hexdigest()
