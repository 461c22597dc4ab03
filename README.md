# rtmpstack

A pure-Python RTMP protocol stack. It covers the connection handshake, chunk
encoding and reassembly, control and media messages, AMF0 values, and the
command exchange that a client or a server performs before media flows.

It needs no third-party libraries and runs on Python 3.10 and later.

## Install

```
pip install rtmpstack
```

## Modules

- `rtmpstack.bytecounter`: `Reader`, `Writer` and `ReadWriter` wrap a stream
  and count the bytes that pass through it. The count is in their `count`
  property, which can also be set.
- `rtmpstack.chunk`: `MessageType` and the four chunk header forms, `Chunk0`
  to `Chunk3`. Each has a `read(r, size)` class method and a `marshal()`
  method.
- `rtmpstack.handshake`: the `C0S0`, `C1S1` and `C2S2` packets, and
  `do_client(rw, validate_signature)` and `do_server(rw, validate_signature)`.
  A bad version byte or a signature that fails to validate raises
  `HandshakeError`.
- `rtmpstack.rawmessage`: `Reader` reassembles chunks into a `Message` and
  calls an optional `on_ack_needed(count)` callback once more than the
  window acknowledgement size has been received. `Writer` splits a `Message`
  into chunks. With `check_acknowledge` set, it raises `AcknowledgeError`
  when the peer stops acknowledging. Timestamps are in milliseconds.
- `rtmpstack.amf0`: `encode(values)` and `decode(data)` for sequences of AMF0
  values. `None`, `bool`, numbers, `str`, mappings, `ECMAArray`, lists and
  `datetime` values are supported. Bad data raises `AMFError`.
- `rtmpstack.control`: the protocol control messages (`MsgAcknowledge`,
  `MsgSetChunkSize`, `MsgSetWindowAckSize`, `MsgSetPeerBandwidth`). It also
  has the user control messages (`MsgUserControlStreamBegin`,
  `MsgUserControlStreamEOF`, `MsgUserControlStreamDry`,
  `MsgUserControlStreamIsRecorded`, `MsgUserControlSetBufferLength`,
  `MsgUserControlPingRequest`, `MsgUserControlPingResponse`) and the
  `UserControlType` enum. A body that cannot be decoded raises `MessageError`.
- `rtmpstack.messages`: `MsgAudio` (AAC), `MsgVideo` (H.264), `MsgCommandAMF0`
  and `MsgDataAMF0`, plus `decode_message(raw)`. It also holds the typed
  `Reader`, `Writer` and `ReadWriter`. They apply chunk size and window size
  changes as those messages pass. `ReadWriter` also sends acknowledgements
  and answers ping requests.
- `rtmpstack.h264conf`: `Conf`, the H.264 decoder configuration record with
  one SPS and one PPS.
- `rtmpstack.conn`: `Conn` wraps a stream, or a socket directly.
  - `initialize_client(url, is_publishing)` and `initialize_server()` perform
    the client or server setup.
  - `read_tracks()` and `write_tracks(video_track, audio_track)` exchange
    track descriptions (`TrackH264`, `TrackMPEG4Audio` with an
    `MPEG4AudioConfig`).
  - `read_message()` and `write_message(msg)` carry media once setup is done.
  - `bytes_received` and `bytes_sent` report traffic.
  - The URL helpers `split_path`, `get_tc_url` and `create_url` are here too.
    A misbehaving peer raises `ConnError`.
- `rtmpstack.logger`: `Logger(level, destinations, file_path)` writes entries
  at or above a `Level` to any of the `Destination`s `STDOUT`, `FILE` and
  `SYSLOG`. It uses printf-style `log(level, format, *args)` and works as a
  context manager.
- `rtmpstack.rlimit`: `raise_limit()` raises the soft limit on open files and
  returns the new limit. It returns `None` where the platform has no resource
  limits.

## Example: accept a publisher

```python
import socket

from rtmpstack.conn import Conn

with socket.create_server(("127.0.0.1", 1935)) as server:
    sock, _ = server.accept()
    with sock:
        conn = Conn(sock)
        url, is_publishing = conn.initialize_server()
        video_track, audio_track = conn.read_tracks()
        while True:
            msg = conn.read_message()
            ...
```

## Example: connect as a reader

```python
import socket
from urllib.parse import urlsplit

from rtmpstack.conn import Conn

url = urlsplit("rtmp://localhost:1935/live/stream")
with socket.create_connection((url.hostname, url.port)) as sock:
    conn = Conn(sock)
    conn.initialize_client(url, False)
    video_track, audio_track = conn.read_tracks()
```

## What it does not do

This is a library, not a media server:

- There is no command-line program.
- There is no listener that accepts connections on its own.
- Nothing routes streams from publishers to readers.
- Only H.264 video and AAC audio are understood.
- AMF3 command and data messages, and abort messages, are not decoded.
  `decode_message` raises `MessageError` for them.

## Tests

```
pip install -e .[test]
pytest
```