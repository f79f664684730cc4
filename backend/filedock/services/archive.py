"""Streamed ZIP archives over an ordered selection of (entry name, stream) pairs.

The archive is produced chunk by chunk into an unseekable buffer, so nothing
beyond the current chunk is held in memory. Entries are written with data
descriptors, which is what zipfile does when it cannot seek back.
"""

import logging
import os
import threading
import time
import zipfile
from collections.abc import Iterable, Iterator
from typing import BinaryIO

logger = logging.getLogger(__name__)

CHUNK_SIZE = 81920
FALLBACK_ENTRY_NAME = "file"


class ArchiveCancelledError(Exception):
    pass


class _ChunkBuffer:
    """Write-only sink that hands its contents out as chunks. Deliberately has no seek/tell."""

    def __init__(self) -> None:
        self._chunks: list[bytes] = []

    def write(self, data) -> int:
        if data:
            self._chunks.append(bytes(data))
        return len(data)

    def flush(self) -> None:
        pass

    def drain(self) -> Iterator[bytes]:
        if self._chunks:
            data = b"".join(self._chunks)
            self._chunks.clear()
            yield data


def normalize_entry_name(name: str) -> str:
    normalized = (name or "").replace("\\", "/").lstrip("/")
    return normalized or FALLBACK_ENTRY_NAME


def _entry_info(name: str, stream: BinaryIO) -> zipfile.ZipInfo:
    mtime = time.time()
    size = 0
    try:
        stat = os.fstat(stream.fileno())
        mtime, size = stat.st_mtime, stat.st_size
    except (AttributeError, OSError, ValueError):
        pass  # in-memory stream

    # zip timestamps cannot predate 1980
    info = zipfile.ZipInfo(name, date_time=time.localtime(max(mtime, 315532800))[:6])
    if name.endswith("/"):
        info.external_attr = (0o40775 << 16) | 0x10
        info.compress_type = zipfile.ZIP_STORED
    else:
        info.external_attr = 0o644 << 16
        info.compress_type = zipfile.ZIP_DEFLATED
        # Lets zipfile decide up front whether the entry needs zip64 headers
        info.file_size = size
    return info


def iter_zip(
    items: Iterable[tuple[str, BinaryIO]],
    cancel: threading.Event | None = None,
    chunk_size: int = CHUNK_SIZE,
) -> Iterator[bytes]:
    """Yield the bytes of a ZIP archive holding one entry per item, in order.

    Streams are read but never closed here; the caller owns them. If reading
    one of them fails the whole archive is abandoned and the error propagates.
    """
    buffer = _ChunkBuffer()
    count = 0
    with zipfile.ZipFile(buffer, mode="w", allowZip64=True) as archive:
        for entry_name, stream in items:
            if stream is None:
                raise ValueError(f"No stream supplied for archive entry '{entry_name}'")

            name = normalize_entry_name(entry_name)
            logger.debug("Adding %s to zip stream", name)

            with archive.open(_entry_info(name, stream), mode="w") as entry:
                while True:
                    if cancel is not None and cancel.is_set():
                        raise ArchiveCancelledError(f"Archive cancelled while writing '{name}'")
                    chunk = stream.read(chunk_size)
                    if not chunk:
                        break
                    entry.write(chunk)
                    yield from buffer.drain()
            yield from buffer.drain()
            count += 1

    # Central directory is written on close
    yield from buffer.drain()
    logger.info("Zip stream finished with %d entries", count)


def write_zip(
    sink: BinaryIO,
    items: Iterable[tuple[str, BinaryIO]],
    cancel: threading.Event | None = None,
) -> None:
    """Write a ZIP archive of items into sink. A failure leaves sink holding a partial archive."""
    for chunk in iter_zip(items, cancel=cancel):
        sink.write(chunk)
    sink.flush()
