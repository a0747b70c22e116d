"""
Little-endian read cursor over an open assembly file.

All header and table decoding goes through FileCursor so that every read has
a known width and short reads surface as FormatError instead of silently
returning partial data.
"""

import os
import struct
from contextlib import contextmanager
from typing import BinaryIO, Iterator

from .errors import FormatError


class FileCursor:
    """Positioned reader over a seekable binary stream.

    Usage:
        with open(path, "rb") as f:
            cursor = FileCursor(f)
            cursor.seek(0x3C)
            pe_offset = cursor.read_u32()

            with cursor.preserved(heap_offset):
                name = cursor.read(32)
            # cursor is back where it was
    """

    def __init__(self, stream: BinaryIO):
        self._stream = stream
        self._size = stream.seek(0, os.SEEK_END)
        stream.seek(0)

    @property
    def size(self) -> int:
        """Total size of the underlying file."""
        return self._size

    def tell(self) -> int:
        return self._stream.tell()

    def seek(self, offset: int) -> None:
        if offset < 0 or offset > self._size:
            raise FormatError(
                f"Seek to 0x{offset:x} outside file bounds (size 0x{self._size:x})"
            )
        self._stream.seek(offset)

    def skip(self, count: int) -> None:
        self.seek(self.tell() + count)

    @contextmanager
    def preserved(self, offset: int | None = None) -> Iterator["FileCursor"]:
        """Save the position, optionally seek, and restore it on exit."""
        saved = self.tell()
        try:
            if offset is not None:
                self.seek(offset)
            yield self
        finally:
            self._stream.seek(saved)

    def read(self, count: int) -> bytes:
        """Read exactly count bytes."""
        start = self.tell()
        data = self._stream.read(count)
        if len(data) != count:
            raise FormatError(
                f"Unexpected end of file at 0x{start:x}: "
                f"wanted {count} bytes, got {len(data)}"
            )
        return data

    def read_at_most(self, count: int) -> bytes:
        """Read up to count bytes, stopping at end of file."""
        return self._stream.read(count)

    def read_u8(self) -> int:
        return self.read(1)[0]

    def read_u16(self) -> int:
        return struct.unpack("<H", self.read(2))[0]

    def read_u32(self) -> int:
        return struct.unpack("<I", self.read(4))[0]

    def read_u64(self) -> int:
        return struct.unpack("<Q", self.read(8))[0]

    def read_index(self, width: int) -> int:
        """Read a 2- or 4-byte heap, table or coded index."""
        if width == 2:
            return self.read_u16()
        if width == 4:
            return self.read_u32()
        raise ValueError(f"Invalid index width: {width}")

    def read_struct(self, fmt: str) -> tuple:
        """Read and unpack a struct format at the current position."""
        return struct.unpack(fmt, self.read(struct.calcsize(fmt)))
