"""Seekable byte buffers for recorded process I/O."""

from __future__ import annotations

import os
import tempfile

from ..config import get_config
from .errors import StreamIOError

__all__ = ["ByteBuffer"]


class ByteBuffer:
    """Byte stream with a single read/write position.

    Kept in memory until ``max_size`` bytes, then spilled to a temporary
    file. Writes land at the current position, like a regular file opened
    in ``w+b`` mode.
    """

    def __init__(self, max_size: int | None = None) -> None:
        if max_size is None:
            max_size = get_config().spool_max_size
        self._file = tempfile.SpooledTemporaryFile(max_size=max_size, mode="w+b")

    def read(self, size: int = -1) -> bytes:
        try:
            return self._file.read(size)
        except OSError as e:
            raise StreamIOError("read", e) from e

    def write(self, data: bytes) -> int:
        try:
            return self._file.write(data)
        except OSError as e:
            raise StreamIOError("write", e) from e

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        try:
            return self._file.seek(offset, whence)
        except OSError as e:
            raise StreamIOError("seek", e) from e

    def tell(self) -> int:
        return self._file.tell()

    def eof(self) -> bool:
        """Whether the position is at (or past) the end of the data."""
        position = self.tell()
        end = self.seek(0, os.SEEK_END)
        self.seek(position)
        return position >= end

    def read_to_end(self) -> bytes:
        """Read everything from the current position."""
        return self.read()

    def read_from_start_to_end(self) -> bytes:
        """Read the whole buffer without moving the current position."""
        position = self.tell()
        try:
            self.seek(0)
            return self.read()
        finally:
            self.seek(position)

    def close(self) -> None:
        self._file.close()

    @property
    def closed(self) -> bool:
        return self._file.closed

    def __repr__(self) -> str:
        return f"ByteBuffer(position={self.tell() if not self.closed else None})"
