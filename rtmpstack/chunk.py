"""RTMP chunks of header types 0 to 3."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any


class MessageType(enum.IntEnum):
    """RTMP message types."""

    SET_CHUNK_SIZE = 1
    ABORT_MESSAGE = 2
    ACKNOWLEDGE = 3
    USER_CONTROL = 4
    SET_WINDOW_ACK_SIZE = 5
    SET_PEER_BANDWIDTH = 6
    AUDIO = 8
    VIDEO = 9
    DATA_AMF3 = 15
    COMMAND_AMF3 = 17
    DATA_AMF0 = 18
    COMMAND_AMF0 = 20


def _message_type(value: int) -> int:
    try:
        return MessageType(value)
    except ValueError:
        return value


def _read_exact(r: Any, size: int) -> bytes:
    parts = []
    remaining = size
    while remaining > 0:
        data = r.read(remaining)
        if not data:
            raise EOFError("unexpected end of stream")
        parts.append(data)
        remaining -= len(data)
    return b"".join(parts)


def _u24(value: int) -> bytes:
    return (value & 0xFFFFFF).to_bytes(3, "big")


@dataclass
class Chunk0:
    """Type 0 chunk: used at the start of a chunk stream or when time goes backward."""

    chunk_stream_id: int = 0
    timestamp: int = 0
    type: int = 0
    message_stream_id: int = 0
    body_len: int = 0
    body: bytes = field(default=b"")

    @classmethod
    def read(cls, r: Any, chunk_max_body_len: int) -> "Chunk0":
        """Read a chunk whose body holds at most ``chunk_max_body_len`` bytes."""
        header = _read_exact(r, 12)
        body_len = int.from_bytes(header[4:7], "big")
        return cls(
            chunk_stream_id=header[0] & 0x3F,
            timestamp=int.from_bytes(header[1:4], "big"),
            type=_message_type(header[7]),
            message_stream_id=int.from_bytes(header[8:12], "big"),
            body_len=body_len,
            body=_read_exact(r, min(body_len, chunk_max_body_len)),
        )

    def marshal(self) -> bytes:
        """Encode the chunk."""
        return (
            bytes([self.chunk_stream_id & 0xFF])
            + _u24(self.timestamp)
            + _u24(self.body_len)
            + bytes([int(self.type) & 0xFF])
            + (self.message_stream_id & 0xFFFFFFFF).to_bytes(4, "big")
            + bytes(self.body)
        )


@dataclass
class Chunk1:
    """Type 1 chunk: takes the message stream ID of the preceding chunk."""

    chunk_stream_id: int = 0
    timestamp_delta: int = 0
    type: int = 0
    body_len: int = 0
    body: bytes = field(default=b"")

    @classmethod
    def read(cls, r: Any, chunk_max_body_len: int) -> "Chunk1":
        """Read a chunk whose body holds at most ``chunk_max_body_len`` bytes."""
        header = _read_exact(r, 8)
        body_len = int.from_bytes(header[4:7], "big")
        return cls(
            chunk_stream_id=header[0] & 0x3F,
            timestamp_delta=int.from_bytes(header[1:4], "big"),
            type=_message_type(header[7]),
            body_len=body_len,
            body=_read_exact(r, min(body_len, chunk_max_body_len)),
        )

    def marshal(self) -> bytes:
        """Encode the chunk."""
        return (
            bytes([(1 << 6 | self.chunk_stream_id) & 0xFF])
            + _u24(self.timestamp_delta)
            + _u24(self.body_len)
            + bytes([int(self.type) & 0xFF])
            + bytes(self.body)
        )


@dataclass
class Chunk2:
    """Type 2 chunk: takes stream ID and message length of the preceding chunk."""

    chunk_stream_id: int = 0
    timestamp_delta: int = 0
    body: bytes = field(default=b"")

    @classmethod
    def read(cls, r: Any, chunk_body_len: int) -> "Chunk2":
        """Read a chunk whose body is ``chunk_body_len`` bytes long."""
        header = _read_exact(r, 4)
        return cls(
            chunk_stream_id=header[0] & 0x3F,
            timestamp_delta=int.from_bytes(header[1:4], "big"),
            body=_read_exact(r, chunk_body_len),
        )

    def marshal(self) -> bytes:
        """Encode the chunk."""
        return (
            bytes([(2 << 6 | self.chunk_stream_id) & 0xFF])
            + _u24(self.timestamp_delta)
            + bytes(self.body)
        )


@dataclass
class Chunk3:
    """Type 3 chunk: no message header, all values from the preceding chunk."""

    chunk_stream_id: int = 0
    body: bytes = field(default=b"")

    @classmethod
    def read(cls, r: Any, chunk_body_len: int) -> "Chunk3":
        """Read a chunk whose body is ``chunk_body_len`` bytes long."""
        header = _read_exact(r, 1)
        return cls(
            chunk_stream_id=header[0] & 0x3F,
            body=_read_exact(r, chunk_body_len),
        )

    def marshal(self) -> bytes:
        """Encode the chunk."""
        return bytes([(3 << 6 | self.chunk_stream_id) & 0xFF]) + bytes(self.body)