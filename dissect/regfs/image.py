from __future__ import annotations

import io
import threading
from typing import BinaryIO

from dissect.regfs.exceptions import ReadError


class HiveImage:
    """Byte range reader over the region of a file-like object that holds a hive.

    Addresses are relative to ``offset``, the start of the hive in the
    underlying image. Every read is fully addressed, the seek and read pair is
    serialized so a single instance can be shared between threads.
    """

    def __init__(self, fh: BinaryIO, offset: int = 0, size: int | None = None):
        self.fh = fh
        self.offset = offset
        self._lock = threading.Lock()

        if size is None:
            size = fh.seek(0, io.SEEK_END) - offset
        self.size = max(size, 0)

    def __repr__(self) -> str:
        return f"<HiveImage offset=0x{self.offset:x} size=0x{self.size:x}>"

    def read(self, address: int, length: int) -> bytes:
        if address < 0 or length < 0 or address + length > self.size:
            raise ReadError(
                f"Read of {length} bytes at 0x{address:x} falls outside the image (size 0x{self.size:x})",
                address,
                length,
                max(0, min(length, self.size - address)),
            )

        with self._lock:
            self.fh.seek(self.offset + address)
            data = self.fh.read(length)

        if len(data) != length:
            raise ReadError(
                f"Short read at 0x{address:x}: expected {length} bytes, got {len(data)}",
                address,
                length,
                len(data),
            )

        return data
