"""RTMP media and AMF0 messages, and readers and writers of typed messages."""

from __future__ import annotations

import contextlib
import struct
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from . import amf0
from .bytecounter import ReadWriter as _CountingReadWriter
from .chunk import MessageType
from .control import (
    MessageError,
    MsgAcknowledge,
    MsgSetChunkSize,
    MsgSetPeerBandwidth,
    MsgSetWindowAckSize,
    MsgUserControlPingRequest,
    MsgUserControlPingResponse,
    MsgUserControlSetBufferLength,
    MsgUserControlStreamBegin,
    MsgUserControlStreamDry,
    MsgUserControlStreamEOF,
    MsgUserControlStreamIsRecorded,
    UserControlType,
)
from .rawmessage import AcknowledgeError
from .rawmessage import Message as RawMessage
from .rawmessage import Reader as _RawReader
from .rawmessage import Writer as _RawWriter

# FLV audio tag values.
SOUND_AAC = 10
SOUND_5_5KHZ = 0
SOUND_11KHZ = 1
SOUND_22KHZ = 2
SOUND_44KHZ = 3
SOUND_8BIT = 0
SOUND_16BIT = 1
SOUND_MONO = 0
SOUND_STEREO = 1
AAC_SEQHDR = 0
AAC_RAW = 1

# FLV video tag values.
VIDEO_H264 = 7
FRAME_KEY = 1
FRAME_INTER = 2
AVC_SEQHDR = 0
AVC_NALU = 1
AVC_EOS = 2

MSG_AUDIO_CHUNK_STREAM_ID = 6
MSG_VIDEO_CHUNK_STREAM_ID = 6


@dataclass
class MsgAudio:
    """An AAC audio message; ``dts`` is in milliseconds."""

    chunk_stream_id: int = 0
    dts: int = 0
    message_stream_id: int = 0
    rate: int = 0
    depth: int = 0
    channels: int = 0
    aac_type: int = 0
    payload: bytes = b""

    @classmethod
    def unmarshal(cls, raw: RawMessage) -> "MsgAudio":
        """Decode the message from a raw message."""
        body = bytes(raw.body)
        if len(body) < 2:
            raise MessageError("invalid body size")

        codec = body[0] >> 4
        if codec != SOUND_AAC:
            raise MessageError(f"unsupported audio codec: {codec}")

        return cls(
            chunk_stream_id=raw.chunk_stream_id,
            dts=raw.timestamp,
            message_stream_id=raw.message_stream_id,
            rate=(body[0] >> 2) & 0x03,
            depth=(body[0] >> 1) & 0x01,
            channels=body[0] & 0x01,
            aac_type=body[1],
            payload=body[2:],
        )

    def marshal(self) -> RawMessage:
        """Encode the message into a raw message."""
        head = (
            SOUND_AAC << 4
            | (self.rate & 0x03) << 2
            | (self.depth & 0x01) << 1
            | (self.channels & 0x01)
        )
        return RawMessage(
            chunk_stream_id=self.chunk_stream_id,
            timestamp=self.dts,
            type=MessageType.AUDIO,
            message_stream_id=self.message_stream_id,
            body=bytes([head, self.aac_type & 0xFF]) + bytes(self.payload),
        )


@dataclass
class MsgVideo:
    """An H264 video message; ``dts`` and ``pts_delta`` are in milliseconds."""

    chunk_stream_id: int = 0
    dts: int = 0
    message_stream_id: int = 0
    is_key_frame: bool = False
    h264_type: int = 0
    pts_delta: int = 0
    payload: bytes = b""

    @classmethod
    def unmarshal(cls, raw: RawMessage) -> "MsgVideo":
        """Decode the message from a raw message."""
        body = bytes(raw.body)
        if len(body) < 5:
            raise MessageError("invalid body size")

        codec = body[0] & 0x0F
        if codec != VIDEO_H264:
            raise MessageError(f"unsupported video codec: {codec}")

        return cls(
            chunk_stream_id=raw.chunk_stream_id,
            dts=raw.timestamp,
            message_stream_id=raw.message_stream_id,
            is_key_frame=(body[0] >> 4) == FRAME_KEY,
            h264_type=body[1],
            pts_delta=int.from_bytes(body[2:5], "big"),
            payload=body[5:],
        )

    def marshal(self) -> RawMessage:
        """Encode the message into a raw message."""
        frame = FRAME_KEY if self.is_key_frame else FRAME_INTER
        head = bytes([frame << 4 | VIDEO_H264, self.h264_type & 0xFF])
        delta = (self.pts_delta & 0xFFFFFF).to_bytes(3, "big")
        return RawMessage(
            chunk_stream_id=self.chunk_stream_id,
            timestamp=self.dts,
            type=MessageType.VIDEO,
            message_stream_id=self.message_stream_id,
            body=head + delta + bytes(self.payload),
        )


@dataclass
class MsgCommandAMF0:
    """An AMF0 command message."""

    chunk_stream_id: int = 0
    message_stream_id: int = 0
    name: str = ""
    command_id: int = 0
    arguments: List[Any] = field(default_factory=list)

    @classmethod
    def unmarshal(cls, raw: RawMessage) -> "MsgCommandAMF0":
        """Decode the message from a raw message."""
        payload = amf0.decode(raw.body)
        if len(payload) < 3:
            raise MessageError("invalid command payload")

        name, command_id = payload[0], payload[1]
        if not isinstance(name, str) or not isinstance(command_id, float):
            raise MessageError("invalid command payload")

        return cls(
            chunk_stream_id=raw.chunk_stream_id,
            message_stream_id=raw.message_stream_id,
            name=name,
            command_id=int(command_id),
            arguments=payload[2:],
        )

    def marshal(self) -> RawMessage:
        """Encode the message into a raw message."""
        return RawMessage(
            chunk_stream_id=self.chunk_stream_id,
            type=MessageType.COMMAND_AMF0,
            message_stream_id=self.message_stream_id,
            body=amf0.encode([self.name, float(self.command_id), *self.arguments]),
        )


@dataclass
class MsgDataAMF0:
    """An AMF0 data message."""

    chunk_stream_id: int = 0
    message_stream_id: int = 0
    payload: List[Any] = field(default_factory=list)

    @classmethod
    def unmarshal(cls, raw: RawMessage) -> "MsgDataAMF0":
        """Decode the message from a raw message."""
        return cls(
            chunk_stream_id=raw.chunk_stream_id,
            message_stream_id=raw.message_stream_id,
            payload=amf0.decode(raw.body),
        )

    def marshal(self) -> RawMessage:
        """Encode the message into a raw message."""
        return RawMessage(
            chunk_stream_id=self.chunk_stream_id,
            type=MessageType.DATA_AMF0,
            message_stream_id=self.message_stream_id,
            body=amf0.encode(self.payload),
        )


Message = Union[
    MsgAcknowledge,
    MsgSetChunkSize,
    MsgSetPeerBandwidth,
    MsgSetWindowAckSize,
    MsgUserControlPingRequest,
    MsgUserControlPingResponse,
    MsgUserControlSetBufferLength,
    MsgUserControlStreamBegin,
    MsgUserControlStreamDry,
    MsgUserControlStreamEOF,
    MsgUserControlStreamIsRecorded,
    MsgAudio,
    MsgVideo,
    MsgCommandAMF0,
    MsgDataAMF0,
]

_BY_TYPE: Dict[int, Any] = {
    MessageType.SET_CHUNK_SIZE: MsgSetChunkSize,
    MessageType.ACKNOWLEDGE: MsgAcknowledge,
    MessageType.SET_WINDOW_ACK_SIZE: MsgSetWindowAckSize,
    MessageType.SET_PEER_BANDWIDTH: MsgSetPeerBandwidth,
    MessageType.COMMAND_AMF0: MsgCommandAMF0,
    MessageType.DATA_AMF0: MsgDataAMF0,
    MessageType.AUDIO: MsgAudio,
    MessageType.VIDEO: MsgVideo,
}

_BY_USER_CONTROL: Dict[int, Any] = {
    UserControlType.STREAM_BEGIN: MsgUserControlStreamBegin,
    UserControlType.STREAM_EOF: MsgUserControlStreamEOF,
    UserControlType.STREAM_DRY: MsgUserControlStreamDry,
    UserControlType.SET_BUFFER_LENGTH: MsgUserControlSetBufferLength,
    UserControlType.STREAM_IS_RECORDED: MsgUserControlStreamIsRecorded,
    UserControlType.PING_REQUEST: MsgUserControlPingRequest,
    UserControlType.PING_RESPONSE: MsgUserControlPingResponse,
}


def decode_message(raw: RawMessage) -> Message:
    """Decode a raw message into the typed message it carries."""
    if raw.type == MessageType.USER_CONTROL:
        if len(raw.body) < 2:
            raise MessageError("invalid body size")
        sub_type = struct.unpack(">H", bytes(raw.body[:2]))[0]
        cls = _BY_USER_CONTROL.get(sub_type)
        if cls is None:
            raise MessageError("invalid user control type")
    else:
        cls = _BY_TYPE.get(raw.type)
        if cls is None:
            raise MessageError(f"unhandled message type ({int(raw.type)})")
    return cls.unmarshal(raw)


class Reader:
    """Reads typed messages from a byte-counting reader."""

    def __init__(
        self, r: Any, on_ack_needed: Optional[Callable[[int], None]] = None
    ) -> None:
        self._raw = _RawReader(r, on_ack_needed)

    def read(self) -> Message:
        """Read the next message, applying chunk size and window changes."""
        msg = decode_message(self._raw.read())

        if isinstance(msg, MsgSetChunkSize):
            self._raw.chunk_size = msg.value
        elif isinstance(msg, MsgSetWindowAckSize):
            self._raw.window_ack_size = msg.value

        return msg


class Writer:
    """Writes typed messages to a byte-counting writer."""

    def __init__(self, w: Any, check_acknowledge: bool = False) -> None:
        self._raw = _RawWriter(w, check_acknowledge)

    @property
    def acknowledge_value(self) -> int:
        """Value of the last acknowledgement received from the peer."""
        return self._raw.ack_value

    @acknowledge_value.setter
    def acknowledge_value(self, value: int) -> None:
        self._raw.ack_value = value

    def write(self, msg: Message) -> None:
        """Write a message, applying chunk size and window changes."""
        self._raw.write(msg.marshal())

        if isinstance(msg, MsgSetChunkSize):
            self._raw.chunk_size = msg.value
        elif isinstance(msg, MsgSetWindowAckSize):
            self._raw.window_ack_size = msg.value


class ReadWriter:
    """Reads and writes messages, answering acknowledgements and pings."""

    def __init__(self, bc: _CountingReadWriter, check_acknowledge: bool = False) -> None:
        self.writer = Writer(bc.writer, check_acknowledge)
        self.reader = Reader(
            bc.reader,
            lambda count: self.writer.write(MsgAcknowledge(value=count)),
        )

    def read(self) -> Message:
        """Read a message."""
        msg = self.reader.read()

        if isinstance(msg, MsgAcknowledge):
            self.writer.acknowledge_value = msg.value
        elif isinstance(msg, MsgUserControlPingRequest):
            with contextlib.suppress(AcknowledgeError, OSError):
                self.writer.write(
                    MsgUserControlPingResponse(server_time=msg.server_time)
                )

        return msg

    def write(self, msg: Message) -> None:
        """Write a message."""
        self.writer.write(msg)