"""RTMP raw messages, reassembled from chunks and split into chunks."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .chunk import Chunk0, Chunk1, Chunk2, Chunk3

_U32 = 0xFFFFFFFF
DEFAULT_CHUNK_SIZE = 128


@dataclass
class Message:
    """A raw message; ``timestamp`` is expressed in milliseconds."""

    chunk_stream_id: int = 0
    timestamp: int = 0
    type: int = 0
    message_stream_id: int = 0
    body: bytes = b""


class AcknowledgeError(Exception):
    """Raised when the peer did not acknowledge within the window."""


class _Prefixed:
    """Serves an already consumed first byte before the rest of a stream."""

    def __init__(self, first: bytes, source: Any) -> None:
        self._first = first
        self._source = source

    def read(self, size: int) -> bytes:
        if self._first:
            if size <= 0:
                return b""
            data, self._first = self._first, b""
            return data
        return self._source.read(size)


class _ReaderChunkStream:
    """State of one incoming chunk stream."""

    def __init__(self, reader: "Reader") -> None:
        self._reader = reader
        self.cur_timestamp: Optional[int] = None
        self.cur_type: Optional[int] = None
        self.cur_message_stream_id: Optional[int] = None
        self.cur_body_len: Optional[int] = None
        self.cur_body: Optional[bytearray] = None
        self.cur_timestamp_delta: Optional[int] = None

    def _read_chunk(self, cls: Any, source: Any, size: int) -> Any:
        chunk = cls.read(source, size)
        self._reader._check_ack()
        return chunk

    def _complete(self, chunk_stream_id: int, body: bytes) -> Message:
        return Message(
            chunk_stream_id=chunk_stream_id,
            timestamp=self.cur_timestamp,
            type=self.cur_type,
            message_stream_id=self.cur_message_stream_id,
            body=bytes(body),
        )

    def read_message(
        self, typ: int, chunk_stream_id: int, source: Any
    ) -> Optional[Message]:
        """Read one chunk; return a message once it is complete, else None."""
        chunk_size = self._reader.chunk_size

        if typ == 0:
            if self.cur_body is not None:
                raise ValueError("received type 0 chunk but expected type 3 chunk")

            c0 = self._read_chunk(Chunk0, source, chunk_size)
            self.cur_message_stream_id = c0.message_stream_id
            self.cur_type = c0.type
            self.cur_timestamp = c0.timestamp
            self.cur_body_len = c0.body_len
            self.cur_timestamp_delta = None

            if c0.body_len != len(c0.body):
                self.cur_body = bytearray(c0.body)
                return None
            return self._complete(chunk_stream_id, c0.body)

        if typ == 1:
            if self.cur_timestamp is None:
                raise ValueError("received type 1 chunk without previous chunk")
            if self.cur_body is not None:
                raise ValueError("received type 1 chunk but expected type 3 chunk")

            c1 = self._read_chunk(Chunk1, source, chunk_size)
            self.cur_type = c1.type
            self.cur_timestamp = (self.cur_timestamp + c1.timestamp_delta) & _U32
            self.cur_body_len = c1.body_len
            self.cur_timestamp_delta = c1.timestamp_delta

            if c1.body_len != len(c1.body):
                self.cur_body = bytearray(c1.body)
                return None
            return self._complete(chunk_stream_id, c1.body)

        if typ == 2:
            if self.cur_timestamp is None:
                raise ValueError("received type 2 chunk without previous chunk")
            if self.cur_body is not None:
                raise ValueError("received type 2 chunk but expected type 3 chunk")

            size = min(self.cur_body_len, chunk_size)
            c2 = self._read_chunk(Chunk2, source, size)
            self.cur_timestamp = (self.cur_timestamp + c2.timestamp_delta) & _U32
            self.cur_timestamp_delta = c2.timestamp_delta

            if self.cur_body_len != len(c2.body):
                self.cur_body = bytearray(c2.body)
                return None
            return self._complete(chunk_stream_id, c2.body)

        if self.cur_body is None and self.cur_timestamp_delta is None:
            raise ValueError("received type 3 chunk without previous chunk")

        if self.cur_body is not None:
            size = min(self.cur_body_len - len(self.cur_body), chunk_size)
            c3 = self._read_chunk(Chunk3, source, size)
            self.cur_body.extend(c3.body)

            if self.cur_body_len != len(self.cur_body):
                return None

            body, self.cur_body = self.cur_body, None
            return self._complete(chunk_stream_id, body)

        size = min(self.cur_body_len, chunk_size)
        c3 = self._read_chunk(Chunk3, source, size)
        self.cur_timestamp = (self.cur_timestamp + self.cur_timestamp_delta) & _U32

        if self.cur_body_len != len(c3.body):
            self.cur_body = bytearray(c3.body)
            return None
        return self._complete(chunk_stream_id, c3.body)


class Reader:
    """Reads raw messages from a byte-counting reader.

    ``on_ack_needed`` is called with the received byte count whenever more
    than ``window_ack_size`` bytes arrived since the last acknowledgement.
    """

    def __init__(
        self, r: Any, on_ack_needed: Optional[Callable[[int], None]] = None
    ) -> None:
        self._r = r
        self._on_ack_needed = on_ack_needed
        self.chunk_size = DEFAULT_CHUNK_SIZE
        self.window_ack_size = 0
        self.last_ack_count = 0
        self._chunk_streams: Dict[int, _ReaderChunkStream] = {}

    def _check_ack(self) -> None:
        if self.window_ack_size == 0:
            return
        count = self._r.count & _U32
        diff = (count - self.last_ack_count) & _U32
        if diff > self.window_ack_size:
            if self._on_ack_needed is not None:
                self._on_ack_needed(count)
            self.last_ack_count = (self.last_ack_count + self.window_ack_size) & _U32

    def read(self) -> Message:
        """Read the next complete message."""
        while True:
            first = self._r.read(1)
            if not first:
                raise EOFError("unexpected end of stream")

            typ = first[0] >> 6
            chunk_stream_id = first[0] & 0x3F

            stream = self._chunk_streams.get(chunk_stream_id)
            if stream is None:
                stream = _ReaderChunkStream(self)
                self._chunk_streams[chunk_stream_id] = stream

            msg = stream.read_message(typ, chunk_stream_id, _Prefixed(first, self._r))
            if msg is not None:
                return msg


class _WriterChunkStream:
    """State of one outgoing chunk stream."""

    def __init__(self, writer: "Writer") -> None:
        self._writer = writer
        self.last_message_stream_id: Optional[int] = None
        self.last_type: Optional[int] = None
        self.last_body_len: Optional[int] = None
        self.last_timestamp: Optional[int] = None
        self.last_timestamp_delta: Optional[int] = None

    def write_message(self, msg: Message) -> None:
        body = bytes(msg.body)
        body_len = len(body)
        pos = 0
        first = True

        timestamp_delta: Optional[int] = None
        if self.last_timestamp is not None:
            diff = msg.timestamp - self.last_timestamp
            # use delta only if it is positive
            if diff >= 0:
                timestamp_delta = diff

        while True:
            size = min(body_len - pos, self._writer.chunk_size)
            part = body[pos:pos + size]

            if first:
                first = False

                if (
                    self.last_message_stream_id is None
                    or timestamp_delta is None
                    or self.last_message_stream_id != msg.message_stream_id
                ):
                    chunk: Any = Chunk0(
                        chunk_stream_id=msg.chunk_stream_id,
                        timestamp=msg.timestamp & _U32,
                        type=msg.type,
                        message_stream_id=msg.message_stream_id,
                        body_len=body_len,
                        body=part,
                    )
                elif self.last_type != msg.type or self.last_body_len != body_len:
                    chunk = Chunk1(
                        chunk_stream_id=msg.chunk_stream_id,
                        timestamp_delta=timestamp_delta & _U32,
                        type=msg.type,
                        body_len=body_len,
                        body=part,
                    )
                elif (
                    self.last_timestamp_delta is None
                    or self.last_timestamp_delta != timestamp_delta
                ):
                    chunk = Chunk2(
                        chunk_stream_id=msg.chunk_stream_id,
                        timestamp_delta=timestamp_delta & _U32,
                        body=part,
                    )
                else:
                    chunk = Chunk3(chunk_stream_id=msg.chunk_stream_id, body=part)

                self._writer._write_chunk(chunk)

                self.last_message_stream_id = msg.message_stream_id
                self.last_type = msg.type
                self.last_body_len = body_len
                self.last_timestamp = msg.timestamp
                if timestamp_delta is not None:
                    self.last_timestamp_delta = timestamp_delta
            else:
                self._writer._write_chunk(
                    Chunk3(chunk_stream_id=msg.chunk_stream_id, body=part)
                )

            pos += size
            if pos == body_len:
                return


class Writer:
    """Writes raw messages, split into chunks, to a byte-counting writer."""

    def __init__(self, w: Any, check_acknowledge: bool = False) -> None:
        self._w = w
        self.check_acknowledge = check_acknowledge
        self.chunk_size = DEFAULT_CHUNK_SIZE
        self.window_ack_size = 0
        self.ack_value = 0
        self._chunk_streams: Dict[int, _WriterChunkStream] = {}

    def _write_chunk(self, chunk: Any) -> None:
        if self.check_acknowledge and self.window_ack_size != 0:
            diff = ((self._w.count & _U32) - self.ack_value) & _U32
            if diff > ((self.window_ack_size * 3) & _U32) // 2:
                raise AcknowledgeError("no acknowledge received within window")
        self._w.write(chunk.marshal())

    def write(self, msg: Message) -> None:
        """Write a message."""
        stream = self._chunk_streams.get(msg.chunk_stream_id)
        if stream is None:
            stream = _WriterChunkStream(self)
            self._chunk_streams[msg.chunk_stream_id] = stream
        stream.write_message(msg)