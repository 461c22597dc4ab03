"""RTMP protocol control and user control messages."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass

from .chunk import MessageType
from .rawmessage import Message

CONTROL_CHUNK_STREAM_ID = 2

_U32 = 0xFFFFFFFF


class MessageError(ValueError):
    """Raised when a raw message cannot be decoded."""


class UserControlType(enum.IntEnum):
    """User control event types."""

    STREAM_BEGIN = 0
    STREAM_EOF = 1
    STREAM_DRY = 2
    SET_BUFFER_LENGTH = 3
    STREAM_IS_RECORDED = 4
    PING_REQUEST = 6
    PING_RESPONSE = 7


def _check(raw: Message, size: int, size_error: str) -> bytes:
    if raw.chunk_stream_id != CONTROL_CHUNK_STREAM_ID:
        raise MessageError("unexpected chunk stream ID")
    body = bytes(raw.body)
    if len(body) != size:
        raise MessageError(size_error)
    return body


def _control(message_type: MessageType, body: bytes) -> Message:
    return Message(
        chunk_stream_id=CONTROL_CHUNK_STREAM_ID,
        type=message_type,
        body=body,
    )


def _u32_body(value: int) -> bytes:
    return struct.pack(">I", value & _U32)


def _read_u32(raw: Message) -> int:
    return struct.unpack(">I", _check(raw, 4, "unexpected body size"))[0]


def _user_control(event: UserControlType, *values: int) -> Message:
    body = struct.pack(">H", int(event)) + b"".join(_u32_body(v) for v in values)
    return _control(MessageType.USER_CONTROL, body)


def _read_user_control_u32(raw: Message) -> int:
    body = _check(raw, 6, "invalid body size")
    return struct.unpack(">I", body[2:6])[0]


@dataclass
class MsgAcknowledge:
    """An acknowledgement carrying the number of bytes received."""

    value: int = 0

    @classmethod
    def unmarshal(cls, raw: Message) -> "MsgAcknowledge":
        """Decode the message from a raw message."""
        return cls(value=_read_u32(raw))

    def marshal(self) -> Message:
        """Encode the message into a raw message."""
        return _control(MessageType.ACKNOWLEDGE, _u32_body(self.value))


@dataclass
class MsgSetChunkSize:
    """Sets the maximum chunk size."""

    value: int = 0

    @classmethod
    def unmarshal(cls, raw: Message) -> "MsgSetChunkSize":
        """Decode the message from a raw message."""
        return cls(value=_read_u32(raw))

    def marshal(self) -> Message:
        """Encode the message into a raw message."""
        return _control(MessageType.SET_CHUNK_SIZE, _u32_body(self.value))


@dataclass
class MsgSetWindowAckSize:
    """Sets the window acknowledgement size."""

    value: int = 0

    @classmethod
    def unmarshal(cls, raw: Message) -> "MsgSetWindowAckSize":
        """Decode the message from a raw message."""
        return cls(value=_read_u32(raw))

    def marshal(self) -> Message:
        """Encode the message into a raw message."""
        return _control(MessageType.SET_WINDOW_ACK_SIZE, _u32_body(self.value))


@dataclass
class MsgSetPeerBandwidth:
    """Limits the output bandwidth of the peer."""

    value: int = 0
    type: int = 0

    @classmethod
    def unmarshal(cls, raw: Message) -> "MsgSetPeerBandwidth":
        """Decode the message from a raw message."""
        body = _check(raw, 5, "unexpected body size")
        return cls(value=struct.unpack(">I", body[:4])[0], type=body[4])

    def marshal(self) -> Message:
        """Encode the message into a raw message."""
        body = struct.pack(">IB", self.value & _U32, self.type & 0xFF)
        return _control(MessageType.SET_PEER_BANDWIDTH, body)


@dataclass
class MsgUserControlPingRequest:
    """A ping request."""

    server_time: int = 0

    @classmethod
    def unmarshal(cls, raw: Message) -> "MsgUserControlPingRequest":
        """Decode the message from a raw message."""
        return cls(server_time=_read_user_control_u32(raw))

    def marshal(self) -> Message:
        """Encode the message into a raw message."""
        return _user_control(UserControlType.PING_REQUEST, self.server_time)


@dataclass
class MsgUserControlPingResponse:
    """A ping response."""

    server_time: int = 0

    @classmethod
    def unmarshal(cls, raw: Message) -> "MsgUserControlPingResponse":
        """Decode the message from a raw message."""
        return cls(server_time=_read_user_control_u32(raw))

    def marshal(self) -> Message:
        """Encode the message into a raw message."""
        return _user_control(UserControlType.PING_RESPONSE, self.server_time)


@dataclass
class MsgUserControlStreamBegin:
    """Notifies that a stream has begun."""

    stream_id: int = 0

    @classmethod
    def unmarshal(cls, raw: Message) -> "MsgUserControlStreamBegin":
        """Decode the message from a raw message."""
        return cls(stream_id=_read_user_control_u32(raw))

    def marshal(self) -> Message:
        """Encode the message into a raw message."""
        return _user_control(UserControlType.STREAM_BEGIN, self.stream_id)


@dataclass
class MsgUserControlStreamDry:
    """Notifies that a stream has no more data."""

    stream_id: int = 0

    @classmethod
    def unmarshal(cls, raw: Message) -> "MsgUserControlStreamDry":
        """Decode the message from a raw message."""
        return cls(stream_id=_read_user_control_u32(raw))

    def marshal(self) -> Message:
        """Encode the message into a raw message."""
        return _user_control(UserControlType.STREAM_DRY, self.stream_id)


@dataclass
class MsgUserControlStreamEOF:
    """Notifies that a stream has ended."""

    stream_id: int = 0

    @classmethod
    def unmarshal(cls, raw: Message) -> "MsgUserControlStreamEOF":
        """Decode the message from a raw message."""
        return cls(stream_id=_read_user_control_u32(raw))

    def marshal(self) -> Message:
        """Encode the message into a raw message."""
        return _user_control(UserControlType.STREAM_EOF, self.stream_id)


@dataclass
class MsgUserControlStreamIsRecorded:
    """Notifies that a stream is recorded."""

    stream_id: int = 0

    @classmethod
    def unmarshal(cls, raw: Message) -> "MsgUserControlStreamIsRecorded":
        """Decode the message from a raw message."""
        return cls(stream_id=_read_user_control_u32(raw))

    def marshal(self) -> Message:
        """Encode the message into a raw message."""
        return _user_control(UserControlType.STREAM_IS_RECORDED, self.stream_id)


@dataclass
class MsgUserControlSetBufferLength:
    """Tells the buffer length, in milliseconds, used for a stream."""

    stream_id: int = 0
    buffer_length: int = 0

    @classmethod
    def unmarshal(cls, raw: Message) -> "MsgUserControlSetBufferLength":
        """Decode the message from a raw message."""
        body = _check(raw, 10, "invalid body size")
        stream_id, buffer_length = struct.unpack(">II", body[2:10])
        return cls(stream_id=stream_id, buffer_length=buffer_length)

    def marshal(self) -> Message:
        """Encode the message into a raw message."""
        return _user_control(
            UserControlType.SET_BUFFER_LENGTH, self.stream_id, self.buffer_length
        )