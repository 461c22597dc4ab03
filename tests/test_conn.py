import socket
import threading
from urllib.parse import SplitResult

import pytest

from rtmpstack import bytecounter, handshake
from rtmpstack.conn import (
    Conn,
    ConnError,
    MPEG4AudioConfig,
    TrackH264,
    TrackMPEG4Audio,
    create_url,
    get_tc_url,
    split_path,
)
from rtmpstack.control import (
    MsgSetChunkSize,
    MsgSetPeerBandwidth,
    MsgSetWindowAckSize,
    MsgUserControlSetBufferLength,
    MsgUserControlStreamBegin,
    MsgUserControlStreamIsRecorded,
)
from rtmpstack.h264conf import Conf
from rtmpstack.messages import (
    AAC_SEQHDR,
    AVC_SEQHDR,
    MSG_AUDIO_CHUNK_STREAM_ID,
    MSG_VIDEO_CHUNK_STREAM_ID,
    SOUND_16BIT,
    SOUND_44KHZ,
    SOUND_STEREO,
    MsgAudio,
    MsgCommandAMF0,
    MsgDataAMF0,
    MsgVideo,
    ReadWriter,
)

SPS = bytes([
    0x67, 0x64, 0x00, 0x0C, 0xAC, 0x3B, 0x50, 0xB0,
    0x4B, 0x42, 0x00, 0x00, 0x03, 0x00, 0x02, 0x00,
    0x00, 0x03, 0x00, 0x3D, 0x08,
])
PPS = bytes([0x68, 0xEE, 0x3C, 0x80])

EXPECTED_VIDEO = TrackH264(payload_type=96, sps=SPS, pps=PPS, packetization_mode=1)
EXPECTED_AUDIO = TrackMPEG4Audio(
    payload_type=96,
    config=MPEG4AudioConfig(type=2, sample_rate=44100, channel_count=2),
    size_length=13,
    index_length=3,
    index_delta_length=3,
)


class _SockIO:
    def __init__(self, sock):
        self._sock = sock

    def read(self, size):
        return self._sock.recv(size)

    def write(self, data):
        self._sock.sendall(data)
        return len(data)


class _Peer(threading.Thread):
    def __init__(self, fn):
        super().__init__(daemon=True)
        self._fn = fn
        self.result = None
        self.error = None

    def run(self):
        try:
            self.result = self._fn()
        except BaseException as exc:  # noqa: BLE001
            self.error = exc

    def finish(self):
        self.join(10)
        assert not self.is_alive()
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def sockets():
    a, b = socket.socketpair()
    a.settimeout(10)
    b.settimeout(10)
    yield a, b
    a.close()
    b.close()


def _status(command_id, code, description, chunk_stream_id=5):
    return MsgCommandAMF0(
        chunk_stream_id=chunk_stream_id,
        message_stream_id=0x1000000,
        name="onStatus",
        command_id=command_id,
        arguments=[None, {"level": "status", "code": code, "description": description}],
    )


def _connect_result(object_encoding=0.0):
    return MsgCommandAMF0(
        chunk_stream_id=3,
        name="_result",
        command_id=1,
        arguments=[
            {"fmsVer": "LNX 9,0,124,2", "capabilities": 31.0},
            {
                "level": "status",
                "code": "NetConnection.Connect.Success",
                "description": "Connection succeeded.",
                "objectEncoding": object_encoding,
            },
        ],
    )


def _client_connect(sock):
    bc = bytecounter.ReadWriter(_SockIO(sock))
    handshake.do_client(bc, True)
    mrw = ReadWriter(bc, True)
    mrw.write(MsgCommandAMF0(
        chunk_stream_id=3,
        name="connect",
        command_id=1,
        arguments=[{
            "app": "/stream",
            "flashVer": "LNX 9,0,124,2",
            "tcUrl": "rtmp://127.0.0.1:9121/stream",
            "fpad": False,
            "capabilities": 15,
            "audioCodecs": 4071,
            "videoCodecs": 252,
            "videoFunction": 1,
        }],
    ))
    assert mrw.read() == MsgSetWindowAckSize(value=2500000)
    assert mrw.read() == MsgSetPeerBandwidth(value=2500000, type=2)
    assert mrw.read() == MsgSetChunkSize(value=65536)
    assert mrw.read() == _connect_result()
    return mrw


def _create_stream_result(command_id):
    return MsgCommandAMF0(
        chunk_stream_id=3, name="_result", command_id=command_id, arguments=[None, 1.0],
    )


@pytest.mark.parametrize("case", ["read", "publish"])
def test_initialize_client(sockets, case):
    client_sock, server_sock = sockets

    def server():
        bc = bytecounter.ReadWriter(_SockIO(server_sock))
        handshake.do_server(bc, True)
        mrw = ReadWriter(bc, True)
        received = [mrw.read() for _ in range(4)]
        mrw.write(_connect_result())
        if case == "read":
            received.append(mrw.read())
            mrw.write(_create_stream_result(2))
            received.append(mrw.read())
            received.append(mrw.read())
            mrw.write(_status(3, "NetStream.Play.Reset", "play reset"))
        else:
            received.extend(mrw.read() for _ in range(3))
            mrw.write(_create_stream_result(4))
            received.append(mrw.read())
            mrw.write(_status(5, "NetStream.Publish.Start", "publish start"))
        return received

    peer = _Peer(server)
    peer.start()

    conn = Conn(client_sock)
    conn.initialize_client("rtmp://127.0.0.1:9121/stream", case == "publish")

    if case == "read":
        assert conn.bytes_received == 3421
        assert conn.bytes_sent == 3409
    else:
        assert conn.bytes_received == 3427
        assert conn.bytes_sent == 3466

    received = peer.finish()
    expected = [
        MsgSetWindowAckSize(value=2500000),
        MsgSetPeerBandwidth(value=2500000, type=2),
        MsgSetChunkSize(value=65536),
        MsgCommandAMF0(
            chunk_stream_id=3,
            name="connect",
            command_id=1,
            arguments=[{
                "app": "stream",
                "flashVer": "LNX 9,0,124,2",
                "tcUrl": "rtmp://127.0.0.1:9121/stream",
                "fpad": False,
                "capabilities": 15.0,
                "audioCodecs": 4071.0,
                "videoCodecs": 252.0,
                "videoFunction": 1.0,
            }],
        ),
    ]
    if case == "read":
        expected += [
            MsgCommandAMF0(chunk_stream_id=3, name="createStream", command_id=2, arguments=[None]),
            MsgUserControlSetBufferLength(buffer_length=0x64),
            MsgCommandAMF0(
                chunk_stream_id=4, message_stream_id=0x1000000, name="play",
                command_id=3, arguments=[None, ""],
            ),
        ]
    else:
        expected += [
            MsgCommandAMF0(chunk_stream_id=3, name="releaseStream", command_id=2, arguments=[None, ""]),
            MsgCommandAMF0(chunk_stream_id=3, name="FCPublish", command_id=3, arguments=[None, ""]),
            MsgCommandAMF0(chunk_stream_id=3, name="createStream", command_id=4, arguments=[None]),
            MsgCommandAMF0(
                chunk_stream_id=4, message_stream_id=0x1000000, name="publish",
                command_id=5, arguments=[None, "", "stream"],
            ),
        ]
    assert received == expected


def test_initialize_client_refused(sockets):
    client_sock, server_sock = sockets

    def server():
        bc = bytecounter.ReadWriter(_SockIO(server_sock))
        handshake.do_server(bc, True)
        mrw = ReadWriter(bc, True)
        for _ in range(4):
            mrw.read()
        mrw.write(MsgCommandAMF0(
            chunk_stream_id=3, name="_result", command_id=1,
            arguments=[{}, {"level": "error"}],
        ))

    peer = _Peer(server)
    peer.start()

    conn = Conn(client_sock)
    with pytest.raises(ConnError, match="server refused connect request"):
        conn.initialize_client("rtmp://127.0.0.1:9121/stream", True)
    peer.finish()


def _client_publish(mrw):
    mrw.write(MsgSetChunkSize(value=65536))
    mrw.write(MsgCommandAMF0(chunk_stream_id=3, name="releaseStream", command_id=2, arguments=[None, ""]))
    mrw.write(MsgCommandAMF0(chunk_stream_id=3, name="FCPublish", command_id=3, arguments=[None, ""]))
    mrw.write(MsgCommandAMF0(chunk_stream_id=3, name="createStream", command_id=4, arguments=[None]))
    assert mrw.read() == _create_stream_result(4)


@pytest.mark.parametrize("case", ["read", "publish"])
def test_initialize_server(sockets, case):
    client_sock, server_sock = sockets

    peer = _Peer(lambda: Conn(server_sock).initialize_server())
    peer.start()

    mrw = _client_connect(client_sock)

    if case == "read":
        mrw.write(MsgSetChunkSize(value=65536))
        mrw.write(MsgCommandAMF0(chunk_stream_id=3, name="createStream", command_id=2, arguments=[None]))
        assert mrw.read() == _create_stream_result(2)
        mrw.write(MsgUserControlSetBufferLength(buffer_length=0x64))
        mrw.write(MsgCommandAMF0(
            chunk_stream_id=4, message_stream_id=0x1000000, name="play",
            command_id=0, arguments=[None, ""],
        ))
    else:
        _client_publish(mrw)
        mrw.write(MsgCommandAMF0(
            chunk_stream_id=4, message_stream_id=0x1000000, name="publish",
            command_id=5, arguments=[None, "", "stream"],
        ))

    url, is_publishing = peer.finish()
    assert url == SplitResult("rtmp", "127.0.0.1:9121", "//stream/", "", "")
    assert is_publishing == (case == "publish")


def _metadata(fields):
    return MsgDataAMF0(
        chunk_stream_id=4,
        message_stream_id=1,
        payload=["@setDataFrame", "onMetaData", fields],
    )


def _video_header():
    return MsgVideo(
        chunk_stream_id=MSG_VIDEO_CHUNK_STREAM_ID,
        message_stream_id=0x1000000,
        is_key_frame=True,
        h264_type=AVC_SEQHDR,
        payload=Conf(sps=SPS, pps=PPS).marshal(),
    )


def _audio_header():
    return MsgAudio(
        chunk_stream_id=MSG_AUDIO_CHUNK_STREAM_ID,
        message_stream_id=0x1000000,
        rate=SOUND_44KHZ,
        depth=SOUND_16BIT,
        channels=SOUND_STEREO,
        aac_type=AAC_SEQHDR,
        payload=MPEG4AudioConfig(type=2, sample_rate=44100, channel_count=2).marshal(),
    )


@pytest.mark.parametrize(
    "case", ["video+audio", "video", "metadata without codec id", "missing metadata"]
)
def test_read_tracks(sockets, case):
    client_sock, server_sock = sockets

    def server():
        conn = Conn(server_sock)
        conn.initialize_server()
        return conn.read_tracks()

    peer = _Peer(server)
    peer.start()

    mrw = _client_connect(client_sock)
    _client_publish(mrw)
    mrw.write(MsgCommandAMF0(
        chunk_stream_id=8, message_stream_id=1, name="publish",
        command_id=5, arguments=[None, "", "live"],
    ))
    assert mrw.read() == _status(5, "NetStream.Publish.Start", "publish start")

    if case == "video+audio":
        mrw.write(_metadata({
            "videodatarate": 0.0, "videocodecid": 7.0,
            "audiodatarate": 0.0, "audiocodecid": 10.0,
        }))
        mrw.write(_video_header())
        mrw.write(_audio_header())
    elif case == "video":
        mrw.write(_metadata({
            "videodatarate": 0.0, "videocodecid": 7.0,
            "audiodatarate": 0.0, "audiocodecid": 0.0,
        }))
        mrw.write(_video_header())
    elif case == "metadata without codec id":
        mrw.write(_metadata({"width": 2688.0, "height": 1520.0, "framerate": 21.0}))
        mrw.write(_video_header())
        mrw.write(_audio_header())
    else:
        mrw.write(_video_header())
        mrw.write(_audio_header())

    video, audio = peer.finish()
    assert video == EXPECTED_VIDEO
    if case == "video":
        assert audio is None
    else:
        assert audio == EXPECTED_AUDIO


def test_read_tracks_unsupported_video_codec(sockets):
    client_sock, server_sock = sockets

    def server():
        conn = Conn(server_sock)
        conn.initialize_server()
        return conn.read_tracks()

    peer = _Peer(server)
    peer.start()

    mrw = _client_connect(client_sock)
    _client_publish(mrw)
    mrw.write(MsgCommandAMF0(
        chunk_stream_id=8, message_stream_id=1, name="publish",
        command_id=5, arguments=[None, "", "live"],
    ))
    mrw.read()
    mrw.write(_metadata({"videocodecid": 2.0}))

    with pytest.raises(ConnError, match="unsupported video codec 2"):
        peer.finish()


def test_write_tracks(sockets):
    client_sock, server_sock = sockets

    def server():
        conn = Conn(server_sock)
        conn.initialize_server()
        conn.write_tracks(EXPECTED_VIDEO, EXPECTED_AUDIO)

    peer = _Peer(server)
    peer.start()

    mrw = _client_connect(client_sock)
    mrw.write(MsgSetWindowAckSize(value=2500000))
    mrw.write(MsgSetChunkSize(value=65536))
    mrw.write(MsgCommandAMF0(chunk_stream_id=3, name="createStream", command_id=2, arguments=[None]))
    assert mrw.read() == _create_stream_result(2)

    mrw.write(MsgCommandAMF0(chunk_stream_id=8, name="getStreamLength", command_id=3, arguments=[None, ""]))
    mrw.write(MsgCommandAMF0(
        chunk_stream_id=8, message_stream_id=0x1000000, name="play",
        command_id=4, arguments=[None, "", -2000.0],
    ))

    assert mrw.read() == MsgUserControlStreamIsRecorded(stream_id=1)
    assert mrw.read() == MsgUserControlStreamBegin(stream_id=1)
    assert mrw.read() == _status(4, "NetStream.Play.Reset", "play reset")
    assert mrw.read() == _status(4, "NetStream.Play.Start", "play start")
    assert mrw.read() == _status(4, "NetStream.Data.Start", "data start")
    assert mrw.read() == _status(4, "NetStream.Play.PublishNotify", "publish notify")

    assert mrw.read() == MsgDataAMF0(
        chunk_stream_id=4,
        message_stream_id=0x1000000,
        payload=[
            "@setDataFrame",
            "onMetaData",
            {"videodatarate": 0.0, "videocodecid": 7.0, "audiodatarate": 0.0, "audiocodecid": 10.0},
        ],
    )
    assert mrw.read() == MsgVideo(
        chunk_stream_id=MSG_VIDEO_CHUNK_STREAM_ID,
        message_stream_id=0x1000000,
        is_key_frame=True,
        h264_type=AVC_SEQHDR,
        payload=bytes([
            0x1, 0x64, 0x0,
            0xC, 0xFF, 0xE1, 0x0, 0x15, 0x67, 0x64, 0x0,
            0xC, 0xAC, 0x3B, 0x50, 0xB0, 0x4B, 0x42, 0x0,
            0x0, 0x3, 0x0, 0x2, 0x0, 0x0, 0x3, 0x0,
            0x3D, 0x8, 0x1, 0x0, 0x4, 0x68, 0xEE, 0x3C,
            0x80,
        ]),
    )
    assert mrw.read() == MsgAudio(
        chunk_stream_id=MSG_AUDIO_CHUNK_STREAM_ID,
        message_stream_id=0x1000000,
        rate=SOUND_44KHZ,
        depth=SOUND_16BIT,
        channels=SOUND_STEREO,
        aac_type=AAC_SEQHDR,
        payload=b"\x12\x10",
    )
    peer.finish()


@pytest.mark.parametrize(
    "url, expected",
    [
        ("rtmp://127.0.0.1:9121/stream", ("stream", "")),
        ("rtmp://host/app/stream", ("app", "stream")),
        ("rtmp://host/a/b/c/d", ("a/b", "c/d")),
        ("rtmp://host", ("", "")),
        ("rtmp://host/app/stream?key=1", ("app", "stream?key=1")),
    ],
)
def test_split_path(url, expected):
    assert split_path(url) == expected


def test_get_tc_url():
    assert get_tc_url("rtmp://127.0.0.1:9121/stream") == "rtmp://127.0.0.1:9121/stream"
    assert get_tc_url("rtmp://host/app/stream?key=1") == "rtmp://host/app"


def test_create_url():
    assert create_url("rtmp://host:1935/app", "live", "cam?key=1") == SplitResult(
        "rtmp", "host:1935", "/live/cam", "key=1", ""
    )


def test_create_url_errors():
    with pytest.raises(ConnError, match="invalid host"):
        create_url("/nohost", "app", "stream")
    with pytest.raises(ConnError, match="invalid scheme"):
        create_url("//host/app", "app", "stream")


def test_mpeg4_audio_config_marshal():
    assert MPEG4AudioConfig(type=2, sample_rate=44100, channel_count=2).marshal() == b"\x12\x10"
    assert MPEG4AudioConfig.unmarshal(b"\x12\x10") == MPEG4AudioConfig(
        type=2, sample_rate=44100, channel_count=2
    )


@pytest.mark.parametrize(
    "config",
    [
        MPEG4AudioConfig(type=2, sample_rate=48000, channel_count=1),
        MPEG4AudioConfig(type=2, sample_rate=44000, channel_count=8),
        MPEG4AudioConfig(type=2, sample_rate=22050, channel_count=2,
                         extension_type=5, extension_sample_rate=44100),
    ],
)
def test_mpeg4_audio_config_round_trip(config):
    assert MPEG4AudioConfig.unmarshal(config.marshal()) == config


def test_mpeg4_audio_config_errors():
    with pytest.raises(ValueError):
        MPEG4AudioConfig.unmarshal(b"\x12")
    with pytest.raises(ValueError, match="channel configuration 0"):
        MPEG4AudioConfig.unmarshal(b"\x12\x00")
    with pytest.raises(ValueError, match="invalid channel count"):
        MPEG4AudioConfig(channel_count=7).marshal()


def test_read_message_before_initialization():
    with pytest.raises(ConnError, match="not initialized"):
        Conn(_SockIO(None)).read_message()