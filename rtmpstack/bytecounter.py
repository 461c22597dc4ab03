"""Stream wrappers that count the bytes passing through them."""

from __future__ import annotations

import threading
from typing import Any


class Reader:
    """Wraps a readable stream and counts the bytes read from it."""

    def __init__(self, r: Any) -> None:
        self._r = r
        self._count = 0
        self._lock = threading.Lock()

    @property
    def count(self) -> int:
        """Number of bytes read so far."""
        with self._lock:
            return self._count

    @count.setter
    def count(self, value: int) -> None:
        with self._lock:
            self._count = value

    def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes from the wrapped stream."""
        data = self._r.read(size)
        if not data:
            return b""
        with self._lock:
            self._count += len(data)
        return data


class Writer:
    """Wraps a writable stream and counts the bytes written to it."""

    def __init__(self, w: Any) -> None:
        self._w = w
        self._count = 0
        self._lock = threading.Lock()

    @property
    def count(self) -> int:
        """Number of bytes written so far."""
        with self._lock:
            return self._count

    @count.setter
    def count(self, value: int) -> None:
        with self._lock:
            self._count = value

    def write(self, data: bytes) -> int:
        """Write ``data`` to the wrapped stream and return the bytes written."""
        written = self._w.write(data)
        if written is None:
            written = len(data)
        with self._lock:
            self._count += written
        return written


class ReadWriter:
    """Counts bytes read from and written to a duplex stream."""

    def __init__(self, rw: Any) -> None:
        self.reader = Reader(rw)
        self.writer = Writer(rw)

    def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes."""
        return self.reader.read(size)

    def write(self, data: bytes) -> int:
        """Write ``data``."""
        return self.writer.write(data)