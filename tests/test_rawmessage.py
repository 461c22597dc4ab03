import io

import pytest

from rtmpstack.bytecounter import Reader as CountingReader
from rtmpstack.bytecounter import Writer as CountingWriter
from rtmpstack.chunk import Chunk0, Chunk1, Chunk2, Chunk3, MessageType
from rtmpstack.rawmessage import AcknowledgeError, Message, Reader, Writer

PB = MessageType.SET_PEER_BANDWIDTH
WA = MessageType.SET_WINDOW_ACK_SIZE

CASES = [
    (
        "(chunk0) + (chunk1)",
        [
            Message(27, 18576, PB, 3123, bytes([0x03]) * 64),
            Message(27, 18576 + 15, WA, 3123, bytes([0x04]) * 64),
        ],
        [
            Chunk0(27, 18576, PB, 3123, 64, bytes([0x03]) * 64),
            Chunk1(27, 15, WA, 64, bytes([0x04]) * 64),
        ],
        [128, 128],
    ),
    (
        "(chunk0) + (chunk2) + (chunk3)",
        [
            Message(27, 18576, PB, 3123, bytes([0x03]) * 64),
            Message(27, 18576 + 15, PB, 3123, bytes([0x04]) * 64),
            Message(27, 18576 + 15 + 15, PB, 3123, bytes([0x05]) * 64),
        ],
        [
            Chunk0(27, 18576, PB, 3123, 64, bytes([0x03]) * 64),
            Chunk2(27, 15, bytes([0x04]) * 64),
            Chunk3(27, bytes([0x05]) * 64),
        ],
        [128, 64, 64],
    ),
    (
        "(chunk0 + chunk3) + (chunk1 + chunk3) + (chunk2 + chunk3) + (chunk3 + chunk3)",
        [
            Message(27, 18576, PB, 3123, bytes([0x03]) * 190),
            Message(27, 18576, PB, 3123, bytes([0x04]) * 192),
            Message(27, 18576 + 15, PB, 3123, bytes([0x05]) * 192),
            Message(27, 18576 + 15 + 15, PB, 3123, bytes([0x06]) * 192),
        ],
        [
            Chunk0(27, 18576, PB, 3123, 190, bytes([0x03]) * 128),
            Chunk3(27, bytes([0x03]) * 62),
            Chunk1(27, 0, PB, 192, bytes([0x04]) * 128),
            Chunk3(27, bytes([0x04]) * 64),
            Chunk2(27, 15, bytes([0x05]) * 128),
            Chunk3(27, bytes([0x05]) * 64),
            Chunk3(27, bytes([0x06]) * 128),
            Chunk3(27, bytes([0x06]) * 64),
        ],
        [128, 62, 128, 64, 128, 64, 128, 64],
    ),
]

IDS = [c[0] for c in CASES]


@pytest.mark.parametrize("name,messages,chunks,sizes", CASES, ids=IDS)
def test_reader(name, messages, chunks, sizes):
    data = b"".join(c.marshal() for c in chunks)
    r = Reader(CountingReader(io.BytesIO(data)), lambda count: None)
    for expected in messages:
        assert r.read() == expected


@pytest.mark.parametrize("name,messages,chunks,sizes", CASES, ids=IDS)
def test_writer(name, messages, chunks, sizes):
    buf = io.BytesIO()
    w = Writer(CountingWriter(buf), True)
    for msg in messages:
        w.write(msg)

    out = io.BytesIO(buf.getvalue())
    for expected, size in zip(chunks, sizes):
        assert type(expected).read(out, size) == expected
    assert out.read() == b""


@pytest.mark.parametrize("overflow", [False, True], ids=["standard", "overflow"])
def test_reader_acknowledge(overflow):
    calls = []
    data = Chunk0(27, 18576, PB, 3123, 200, bytes([0x03]) * 200).marshal()
    bc = CountingReader(io.BytesIO(data))
    r = Reader(bc, calls.append)

    if overflow:
        bc.count = 4294967096
        r.last_ack_count = 4294967096

    r.chunk_size = 65536
    r.window_ack_size = 100

    msg = r.read()
    assert msg.body == bytes([0x03]) * 200
    assert len(calls) == 1


@pytest.mark.parametrize("overflow", [False, True], ids=["standard", "overflow"])
def test_writer_acknowledge(overflow):
    buf = io.BytesIO()
    bcw = CountingWriter(buf)
    w = Writer(bcw, True)

    if overflow:
        bcw.count = 4294967096
        w.ack_value = 4294967096

    w.chunk_size = 65536
    w.window_ack_size = 100

    msg = Message(27, 18576, PB, 3123, bytes([0x03]) * 200)
    w.write(msg)

    with pytest.raises(AcknowledgeError, match="no acknowledge received within window"):
        w.write(msg)


def test_writer_without_ack_check_never_raises_ack_error():
    buf = io.BytesIO()
    w = Writer(CountingWriter(buf), False)
    w.chunk_size = 65536
    w.window_ack_size = 100
    msg = Message(27, 18576, PB, 3123, bytes([0x03]) * 200)
    w.write(msg)
    w.write(msg)
    r = Reader(CountingReader(io.BytesIO(buf.getvalue())))
    r.chunk_size = 65536
    assert r.read() == msg
    assert r.read() == msg


def test_round_trip_interleaved_streams():
    msgs = [
        Message(3, 10, MessageType.COMMAND_AMF0, 0, b"abc" * 100),
        Message(6, 20, MessageType.VIDEO, 1, b"v" * 10),
        Message(3, 30, MessageType.COMMAND_AMF0, 0, b"xyz" * 100),
        Message(6, 20, MessageType.VIDEO, 1, b"w" * 10),
    ]
    buf = io.BytesIO()
    w = Writer(CountingWriter(buf))
    for m in msgs:
        w.write(m)
    r = Reader(CountingReader(io.BytesIO(buf.getvalue())))
    assert [r.read() for _ in msgs] == msgs


def test_empty_body_round_trip():
    msg = Message(4, 5, MessageType.DATA_AMF0, 1, b"")
    buf = io.BytesIO()
    Writer(CountingWriter(buf)).write(msg)
    assert Reader(CountingReader(io.BytesIO(buf.getvalue()))).read() == msg


def test_type1_without_previous_chunk():
    data = Chunk1(27, 15, WA, 4, b"\x01\x02\x03\x04").marshal()
    r = Reader(CountingReader(io.BytesIO(data)))
    with pytest.raises(ValueError, match="type 1 chunk without previous chunk"):
        r.read()


def test_type3_without_previous_chunk():
    data = Chunk3(27, b"\x01").marshal()
    r = Reader(CountingReader(io.BytesIO(data)))
    with pytest.raises(ValueError, match="type 3 chunk without previous chunk"):
        r.read()


def test_type0_while_expecting_type3():
    data = (
        Chunk0(27, 1, PB, 1, 200, b"\x00" * 128).marshal()
        + Chunk0(27, 1, PB, 1, 4, b"\x00" * 4).marshal()
    )
    r = Reader(CountingReader(io.BytesIO(data)))
    with pytest.raises(ValueError, match="expected type 3 chunk"):
        r.read()


def test_read_empty_stream():
    r = Reader(CountingReader(io.BytesIO(b"")))
    with pytest.raises(EOFError):
        r.read()