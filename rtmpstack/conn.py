"""RTMP connections: client and server setup, track discovery and announcement."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional, Tuple, Union
from urllib.parse import SplitResult, urlsplit, urlunsplit

from . import handshake
from .bytecounter import ReadWriter as _ByteCounter
from .control import (
    MsgSetChunkSize,
    MsgSetPeerBandwidth,
    MsgSetWindowAckSize,
    MsgUserControlSetBufferLength,
    MsgUserControlStreamBegin,
    MsgUserControlStreamIsRecorded,
)
from .h264conf import Conf
from .messages import (
    AAC_SEQHDR,
    AVC_SEQHDR,
    MSG_AUDIO_CHUNK_STREAM_ID,
    MSG_VIDEO_CHUNK_STREAM_ID,
    SOUND_16BIT,
    SOUND_44KHZ,
    SOUND_STEREO,
    Message,
    MsgAudio,
    MsgCommandAMF0,
    MsgDataAMF0,
    MsgVideo,
    ReadWriter,
)

CODEC_H264 = 7
CODEC_AAC = 10

_STREAM_MSID = 0x1000000
_FLASH_VERSION = "LNX 9,0,124,2"
_WINDOW_ACK_SIZE = 2500000
_CHUNK_SIZE = 65536

URLLike = Union[str, SplitResult]


class ConnError(Exception):
    """Raised when the peer misbehaves or refuses a request."""


class _EmptyMetadataError(ConnError):
    """Raised when the metadata announces no track at all."""


# MPEG-4 audio ---------------------------------------------------------------

_SAMPLE_RATES = [
    96000, 88200, 64000, 48000, 44100, 32000, 24000,
    22050, 16000, 12000, 11025, 8000, 7350,
]
_GA_OBJECT_TYPES = {1, 2, 3, 4, 6, 7, 17, 19, 20, 21, 22, 23}
_SBR_TYPES = {5, 29}


class _BitReader:
    def __init__(self, data: bytes) -> None:
        self._value = int.from_bytes(bytes(data), "big")
        self._remaining = len(data) * 8

    def read(self, n: int) -> int:
        if n > self._remaining:
            raise ValueError("not enough bits")
        self._remaining -= n
        return (self._value >> self._remaining) & ((1 << n) - 1)


class _BitWriter:
    def __init__(self) -> None:
        self._value = 0
        self._count = 0

    def write(self, value: int, n: int) -> None:
        self._value = (self._value << n) | (value & ((1 << n) - 1))
        self._count += n

    def getvalue(self) -> bytes:
        pad = (-self._count) % 8
        total = self._count + pad
        return (self._value << pad).to_bytes(total // 8, "big")


def _read_object_type(r: _BitReader) -> int:
    typ = r.read(5)
    if typ == 31:
        typ = 32 + r.read(6)
    return typ


def _write_object_type(w: _BitWriter, typ: int) -> None:
    if typ >= 31:
        w.write(31, 5)
        w.write(typ - 32, 6)
    else:
        w.write(typ, 5)


def _read_sample_rate(r: _BitReader) -> int:
    index = r.read(4)
    if index == 15:
        return r.read(24)
    if index >= len(_SAMPLE_RATES):
        raise ValueError(f"invalid sample rate index ({index})")
    return _SAMPLE_RATES[index]


def _write_sample_rate(w: _BitWriter, rate: int) -> None:
    if rate in _SAMPLE_RATES:
        w.write(_SAMPLE_RATES.index(rate), 4)
    else:
        w.write(15, 4)
        w.write(rate, 24)


@dataclass
class MPEG4AudioConfig:
    """An MPEG-4 AudioSpecificConfig."""

    type: int = 2
    sample_rate: int = 44100
    channel_count: int = 2
    extension_type: int = 0
    extension_sample_rate: int = 0
    frame_length_960: bool = False
    depends_on_core_coder: bool = False
    core_coder_delay: int = 0

    @classmethod
    def unmarshal(cls, data: bytes) -> "MPEG4AudioConfig":
        """Decode a configuration; raises ValueError on malformed input."""
        r = _BitReader(data)
        typ = _read_object_type(r)
        sample_rate = _read_sample_rate(r)
        channel_config = r.read(4)

        extension_type = 0
        extension_sample_rate = 0
        if typ in _SBR_TYPES:
            extension_type = typ
            extension_sample_rate = _read_sample_rate(r)
            typ = _read_object_type(r)

        if typ not in _GA_OBJECT_TYPES:
            raise ValueError(f"unsupported object type: {typ}")

        if channel_config == 0:
            raise ValueError("channel configuration 0 is not supported")
        if 1 <= channel_config <= 6:
            channel_count = channel_config
        elif channel_config == 7:
            channel_count = 8
        else:
            raise ValueError(f"invalid channel configuration ({channel_config})")

        frame_length_960 = bool(r.read(1))
        depends_on_core_coder = bool(r.read(1))
        core_coder_delay = r.read(14) if depends_on_core_coder else 0
        r.read(1)  # extension flag

        return cls(
            type=typ,
            sample_rate=sample_rate,
            channel_count=channel_count,
            extension_type=extension_type,
            extension_sample_rate=extension_sample_rate,
            frame_length_960=frame_length_960,
            depends_on_core_coder=depends_on_core_coder,
            core_coder_delay=core_coder_delay,
        )

    def marshal(self) -> bytes:
        """Encode the configuration."""
        if 1 <= self.channel_count <= 6:
            channel_config = self.channel_count
        elif self.channel_count == 8:
            channel_config = 7
        else:
            raise ValueError(f"invalid channel count ({self.channel_count})")

        w = _BitWriter()
        if self.extension_type:
            _write_object_type(w, self.extension_type)
            _write_sample_rate(w, self.sample_rate)
            w.write(channel_config, 4)
            _write_sample_rate(w, self.extension_sample_rate)
            _write_object_type(w, self.type)
        else:
            _write_object_type(w, self.type)
            _write_sample_rate(w, self.sample_rate)
            w.write(channel_config, 4)

        w.write(1 if self.frame_length_960 else 0, 1)
        w.write(1 if self.depends_on_core_coder else 0, 1)
        if self.depends_on_core_coder:
            w.write(self.core_coder_delay, 14)
        w.write(0, 1)
        return w.getvalue()


@dataclass
class TrackH264:
    """An H264 track."""

    payload_type: int = 96
    sps: Optional[bytes] = None
    pps: Optional[bytes] = None
    packetization_mode: int = 1


@dataclass
class TrackMPEG4Audio:
    """An MPEG-4 audio track."""

    payload_type: int = 96
    config: Optional[MPEG4AudioConfig] = None
    size_length: int = 13
    index_length: int = 3
    index_delta_length: int = 3


# URLs -----------------------------------------------------------------------

def _as_split(url: URLLike) -> SplitResult:
    if isinstance(url, SplitResult):
        return url
    return urlsplit(url)


def split_path(url: URLLike) -> Tuple[str, str]:
    """Split the path of an RTMP URL into the application and stream names."""
    u = _as_split(url)
    request_uri = u.path or "/"
    if u.query:
        request_uri += "?" + u.query

    segs = request_uri.split("/")
    app, stream = "", ""
    if len(segs) == 2:
        app = segs[1]
    elif len(segs) == 3:
        app, stream = segs[1], segs[2]
    elif len(segs) > 3:
        app = "/".join(segs[1:3])
        stream = "/".join(segs[3:])
    return app, stream


def get_tc_url(url: URLLike) -> str:
    """Return the tcUrl announced for an RTMP URL."""
    u = _as_split(url)
    app, _ = split_path(u)
    return urlunsplit((u.scheme, u.netloc, "/", "", u.fragment)) + app


def create_url(tcurl: str, app: str, play: str) -> SplitResult:
    """Build the URL of a stream from the tcUrl, application and stream name."""
    path, _, query = ("/" + app + "/" + play).partition("?")
    try:
        tu = urlsplit(tcurl)
    except ValueError as exc:
        raise ConnError(str(exc)) from exc

    host = tu.netloc.rpartition("@")[2]
    if host == "":
        raise ConnError("invalid host")
    if tu.scheme == "":
        raise ConnError("invalid scheme")

    return SplitResult(tu.scheme, host, path, query, "")


# Connection -----------------------------------------------------------------

def _get_string(m: Any, key: str) -> Optional[str]:
    if not isinstance(m, Mapping):
        return None
    value = m.get(key)
    return value if isinstance(value, str) else None


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _format_value(v: Any) -> str:
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    return str(v)


def _result_is_ok1(cmd: MsgCommandAMF0) -> bool:
    return len(cmd.arguments) >= 2 and _get_string(cmd.arguments[1], "level") == "status"


def _result_is_ok2(cmd: MsgCommandAMF0) -> bool:
    return (
        len(cmd.arguments) >= 2
        and _is_number(cmd.arguments[1])
        and cmd.arguments[1] == 1
    )


def _on_status(command_id: int, code: str, description: str) -> MsgCommandAMF0:
    return MsgCommandAMF0(
        chunk_stream_id=5,
        message_stream_id=_STREAM_MSID,
        name="onStatus",
        command_id=command_id,
        arguments=[
            None,
            {"level": "status", "code": code, "description": description},
        ],
    )


def _track_from_h264_config(data: bytes) -> TrackH264:
    try:
        conf = Conf.unmarshal(data)
    except ValueError as exc:
        raise ConnError(f"unable to parse H264 config: {exc}") from exc
    return TrackH264(payload_type=96, sps=conf.sps, pps=conf.pps, packetization_mode=1)


def _track_from_aac_config(data: bytes) -> TrackMPEG4Audio:
    return TrackMPEG4Audio(
        payload_type=96,
        config=MPEG4AudioConfig.unmarshal(data),
        size_length=13,
        index_length=3,
        index_delta_length=3,
    )


def _codec_present(md: Mapping, key: str, codec_id: int, fourcc: str, kind: str) -> bool:
    if key not in md:
        return False
    v = md[key]
    if _is_number(v):
        if v == 0:
            return False
        if v == codec_id:
            return True
    elif isinstance(v, str) and v == fourcc:
        return True
    raise ConnError(f"unsupported {kind} codec {_format_value(v)}")


class _SocketStream:
    """Gives a socket the read/write interface of a stream."""

    def __init__(self, sock: Any) -> None:
        self._sock = sock

    def read(self, size: int) -> bytes:
        return self._sock.recv(size)

    def write(self, data: bytes) -> int:
        self._sock.sendall(data)
        return len(data)


class Conn:
    """An RTMP connection over a stream or a socket."""

    def __init__(self, rw: Any) -> None:
        if not hasattr(rw, "read") and hasattr(rw, "recv"):
            rw = _SocketStream(rw)
        self._bc = _ByteCounter(rw)
        self._mrw: Optional[ReadWriter] = None

    @property
    def bytes_received(self) -> int:
        """Number of bytes received."""
        return self._bc.reader.count

    @property
    def bytes_sent(self) -> int:
        """Number of bytes sent."""
        return self._bc.writer.count

    @property
    def _rw(self) -> ReadWriter:
        if self._mrw is None:
            raise ConnError("connection is not initialized")
        return self._mrw

    def _read_command(self) -> MsgCommandAMF0:
        while True:
            msg = self._rw.read()
            if isinstance(msg, MsgCommandAMF0):
                return msg

    def _read_command_result(
        self,
        command_id: int,
        name: str,
        is_valid: Callable[[MsgCommandAMF0], bool],
    ) -> None:
        while True:
            msg = self._rw.read()
            if (
                isinstance(msg, MsgCommandAMF0)
                and msg.command_id == command_id
                and msg.name == name
            ):
                if not is_valid(msg):
                    raise ConnError("server refused connect request")
                return

    def _write_control_setup(self) -> None:
        self._rw.write(MsgSetWindowAckSize(value=_WINDOW_ACK_SIZE))
        self._rw.write(MsgSetPeerBandwidth(value=_WINDOW_ACK_SIZE, type=2))
        self._rw.write(MsgSetChunkSize(value=_CHUNK_SIZE))

    def initialize_client(self, url: URLLike, is_publishing: bool) -> None:
        """Perform the handshake and set up playback or publishing."""
        u = _as_split(url)
        connect_path, action_path = split_path(u)

        handshake.do_client(self._bc, False)
        self._mrw = ReadWriter(self._bc, False)

        self._write_control_setup()
        self._rw.write(MsgCommandAMF0(
            chunk_stream_id=3,
            name="connect",
            command_id=1,
            arguments=[{
                "app": connect_path,
                "flashVer": _FLASH_VERSION,
                "tcUrl": get_tc_url(u),
                "fpad": False,
                "capabilities": 15,
                "audioCodecs": 4071,
                "videoCodecs": 252,
                "videoFunction": 1,
            }],
        ))
        self._read_command_result(1, "_result", _result_is_ok1)

        if not is_publishing:
            self._rw.write(MsgCommandAMF0(
                chunk_stream_id=3, name="createStream", command_id=2, arguments=[None],
            ))
            self._read_command_result(2, "_result", _result_is_ok2)

            self._rw.write(MsgUserControlSetBufferLength(buffer_length=0x64))
            self._rw.write(MsgCommandAMF0(
                chunk_stream_id=4,
                message_stream_id=_STREAM_MSID,
                name="play",
                command_id=3,
                arguments=[None, action_path],
            ))
            self._read_command_result(3, "onStatus", _result_is_ok1)
            return

        self._rw.write(MsgCommandAMF0(
            chunk_stream_id=3, name="releaseStream", command_id=2,
            arguments=[None, action_path],
        ))
        self._rw.write(MsgCommandAMF0(
            chunk_stream_id=3, name="FCPublish", command_id=3,
            arguments=[None, action_path],
        ))
        self._rw.write(MsgCommandAMF0(
            chunk_stream_id=3, name="createStream", command_id=4, arguments=[None],
        ))
        self._read_command_result(4, "_result", _result_is_ok2)

        self._rw.write(MsgCommandAMF0(
            chunk_stream_id=4,
            message_stream_id=_STREAM_MSID,
            name="publish",
            command_id=5,
            arguments=[None, action_path, connect_path],
        ))
        self._read_command_result(5, "onStatus", _result_is_ok1)

    def initialize_server(self) -> Tuple[SplitResult, bool]:
        """Perform the handshake; return the requested URL and whether it publishes."""
        handshake.do_server(self._bc, False)
        self._mrw = ReadWriter(self._bc, False)

        cmd = self._read_command()
        if cmd.name != "connect":
            raise ConnError(f"unexpected command: {cmd!r}")
        if len(cmd.arguments) < 1 or not isinstance(cmd.arguments[0], Mapping):
            raise ConnError(f"invalid connect command: {cmd!r}")

        ma = cmd.arguments[0]
        connect_path = _get_string(ma, "app")
        if connect_path is None:
            raise ConnError(f"invalid connect command: {cmd!r}")

        tc_url = _get_string(ma, "tcUrl")
        if tc_url is None:
            tc_url = _get_string(ma, "tcurl")
            if tc_url is None:
                raise ConnError(f"invalid connect command: {cmd!r}")

        self._write_control_setup()

        oe = ma.get("objectEncoding")
        object_encoding = float(oe) if _is_number(oe) else 0.0

        self._rw.write(MsgCommandAMF0(
            chunk_stream_id=cmd.chunk_stream_id,
            name="_result",
            command_id=cmd.command_id,
            arguments=[
                {"fmsVer": _FLASH_VERSION, "capabilities": 31.0},
                {
                    "level": "status",
                    "code": "NetConnection.Connect.Success",
                    "description": "Connection succeeded.",
                    "objectEncoding": object_encoding,
                },
            ],
        ))

        while True:
            cmd = self._read_command()

            if cmd.name == "createStream":
                self._rw.write(MsgCommandAMF0(
                    chunk_stream_id=cmd.chunk_stream_id,
                    name="_result",
                    command_id=cmd.command_id,
                    arguments=[None, 1.0],
                ))

            elif cmd.name == "play":
                if len(cmd.arguments) < 2 or not isinstance(cmd.arguments[1], str):
                    raise ConnError("invalid play command arguments")
                u = create_url(tc_url, connect_path, cmd.arguments[1])

                self._rw.write(MsgUserControlStreamIsRecorded(stream_id=1))
                self._rw.write(MsgUserControlStreamBegin(stream_id=1))
                for code, description in (
                    ("NetStream.Play.Reset", "play reset"),
                    ("NetStream.Play.Start", "play start"),
                    ("NetStream.Data.Start", "data start"),
                    ("NetStream.Play.PublishNotify", "publish notify"),
                ):
                    self._rw.write(_on_status(cmd.command_id, code, description))
                return u, False

            elif cmd.name == "publish":
                if len(cmd.arguments) < 2 or not isinstance(cmd.arguments[1], str):
                    raise ConnError("invalid publish command arguments")
                u = create_url(tc_url, connect_path, cmd.arguments[1])

                self._rw.write(_on_status(
                    cmd.command_id, "NetStream.Publish.Start", "publish start"
                ))
                return u, True

    def read_message(self) -> Message:
        """Read a message."""
        return self._rw.read()

    def write_message(self, msg: Message) -> None:
        """Write a message."""
        self._rw.write(msg)

    def _read_tracks_from_metadata(
        self, payload: List[Any]
    ) -> Tuple[Optional[TrackH264], Optional[TrackMPEG4Audio]]:
        if len(payload) != 1 or not isinstance(payload[0], Mapping):
            raise ConnError("invalid metadata")
        md = payload[0]

        has_video = _codec_present(md, "videocodecid", CODEC_H264, "avc1", "video")
        has_audio = _codec_present(md, "audiocodecid", CODEC_AAC, "mp4a", "audio")
        if not has_video and not has_audio:
            raise _EmptyMetadataError("metadata is empty")

        video_track: Optional[TrackH264] = None
        audio_track: Optional[TrackMPEG4Audio] = None

        while True:
            msg = self.read_message()

            if isinstance(msg, MsgVideo) and msg.h264_type == AVC_SEQHDR:
                if not has_video:
                    raise ConnError("unexpected video packet")
                if video_track is not None:
                    raise ConnError("video track setupped twice")
                video_track = _track_from_h264_config(msg.payload)

            elif isinstance(msg, MsgAudio) and msg.aac_type == AAC_SEQHDR:
                if not has_audio:
                    raise ConnError("unexpected audio packet")
                if audio_track is not None:
                    raise ConnError("audio track setupped twice")
                audio_track = _track_from_aac_config(msg.payload)

            if (not has_video or video_track is not None) and (
                not has_audio or audio_track is not None
            ):
                return video_track, audio_track

    def _read_tracks_from_messages(
        self, msg: Message
    ) -> Tuple[Optional[TrackH264], Optional[TrackMPEG4Audio]]:
        start_time: Optional[int] = None
        video_track: Optional[TrackH264] = None
        audio_track: Optional[TrackMPEG4Audio] = None

        # analyze 1 second of packets
        while True:
            if isinstance(msg, (MsgVideo, MsgAudio)):
                if start_time is None:
                    start_time = msg.dts

                if isinstance(msg, MsgVideo):
                    if msg.h264_type == AVC_SEQHDR and video_track is None:
                        video_track = _track_from_h264_config(msg.payload)
                        if audio_track is not None:
                            return video_track, audio_track
                elif msg.aac_type == AAC_SEQHDR and audio_track is None:
                    audio_track = _track_from_aac_config(msg.payload)
                    if video_track is not None:
                        return video_track, audio_track

                if msg.dts - start_time >= 1000:
                    break

            msg = self.read_message()

        if video_track is None and audio_track is None:
            raise ConnError("no tracks found")
        return video_track, audio_track

    def _first_media_message(self) -> Message:
        while True:
            msg = self.read_message()

            # skip play start and data start
            if isinstance(msg, MsgCommandAMF0) and msg.name == "onStatus":
                continue

            # skip RtmpSampleAccess
            if (
                isinstance(msg, MsgDataAMF0)
                and msg.payload
                and msg.payload[0] == "|RtmpSampleAccess"
            ):
                continue

            return msg

    def read_tracks(self) -> Tuple[Optional[TrackH264], Optional[TrackMPEG4Audio]]:
        """Read the tracks announced by a publisher."""
        msg = self._first_media_message()

        if isinstance(msg, MsgDataAMF0) and msg.payload:
            payload = list(msg.payload)
            if payload[0] == "@setDataFrame":
                payload = payload[1:]

            if payload and payload[0] == "onMetaData":
                try:
                    return self._read_tracks_from_metadata(payload[1:])
                except _EmptyMetadataError:
                    return self._read_tracks_from_messages(self.read_message())

        return self._read_tracks_from_messages(msg)

    def write_tracks(
        self,
        video_track: Optional[TrackH264],
        audio_track: Optional[TrackMPEG4Audio],
    ) -> None:
        """Announce tracks to a reader."""
        self.write_message(MsgDataAMF0(
            chunk_stream_id=4,
            message_stream_id=_STREAM_MSID,
            payload=[
                "@setDataFrame",
                "onMetaData",
                {
                    "videodatarate": 0.0,
                    "videocodecid": float(CODEC_H264) if video_track is not None else 0.0,
                    "audiodatarate": 0.0,
                    "audiocodecid": float(CODEC_AAC) if audio_track is not None else 0.0,
                },
            ],
        ))

        # decoder config is sent later when SPS and PPS are not available yet
        if (
            video_track is not None
            and video_track.sps is not None
            and video_track.pps is not None
        ):
            self.write_message(MsgVideo(
                chunk_stream_id=MSG_VIDEO_CHUNK_STREAM_ID,
                message_stream_id=_STREAM_MSID,
                is_key_frame=True,
                h264_type=AVC_SEQHDR,
                payload=Conf(sps=video_track.sps, pps=video_track.pps).marshal(),
            ))

        if audio_track is not None:
            if audio_track.config is None:
                raise ConnError("audio track has no configuration")
            self.write_message(MsgAudio(
                chunk_stream_id=MSG_AUDIO_CHUNK_STREAM_ID,
                message_stream_id=_STREAM_MSID,
                rate=SOUND_44KHZ,
                depth=SOUND_16BIT,
                channels=SOUND_STEREO,
                aac_type=AAC_SEQHDR,
                payload=audio_track.config.marshal(),
            ))