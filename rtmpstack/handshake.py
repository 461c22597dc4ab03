"""RTMP handshake (C0/S0, C1/S1, C2/S2) with digest signatures."""

from __future__ import annotations

import hashlib
import hmac
import os
from dataclasses import dataclass
from typing import Any, Optional

RTMP_VERSION = 0x03
_PACKET_SIZE = 1536
_DIGEST_SIZE = 32

_KEY_TAIL = bytes([
    0xF0, 0xEE, 0xC2, 0x4A, 0x80, 0x68, 0xBE, 0xE8, 0x2E, 0x00, 0xD0, 0xD1,
    0x02, 0x9E, 0x7E, 0x57, 0x6E, 0xEC, 0x5D, 0x2D, 0x29, 0x80, 0x6F, 0xAB,
    0x93, 0xB8, 0xE6, 0x36, 0xCF, 0xEB, 0x31, 0xAE,
])
_CLIENT_FULL_KEY = b"Genuine Adobe Flash Player 001" + _KEY_TAIL
_SERVER_FULL_KEY = b"Genuine Adobe Flash Media Server 001" + _KEY_TAIL
_CLIENT_PARTIAL_KEY = _CLIENT_FULL_KEY[:30]
_SERVER_PARTIAL_KEY = _SERVER_FULL_KEY[:36]


class HandshakeError(Exception):
    """Raised when a handshake packet is invalid."""


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


def _calc_digest_pos(p: bytes, base: int) -> int:
    return sum(p[base:base + 4]) % 728 + base + 4


def _make_digest(key: bytes, src: bytes, gap: int) -> bytes:
    mac = hmac.new(key, digestmod=hashlib.sha256)
    if gap <= 0:
        mac.update(src)
    else:
        mac.update(src[:gap])
        mac.update(src[gap + _DIGEST_SIZE:])
    return mac.digest()


def _find_digest(p: bytes, key: bytes, base: int) -> Optional[int]:
    gap = _calc_digest_pos(p, base)
    digest = _make_digest(key, p, gap)
    if not hmac.compare_digest(bytes(p[gap:gap + _DIGEST_SIZE]), digest):
        return None
    return gap


def _parse1(p: bytes, peer_key: bytes, key: bytes) -> Optional[bytes]:
    pos = _find_digest(p, peer_key, 772)
    if pos is None:
        pos = _find_digest(p, peer_key, 8)
        if pos is None:
            return None
    return _make_digest(key, p[pos:pos + _DIGEST_SIZE], -1)


@dataclass
class C0S0:
    """A C0 or S0 packet: the protocol version byte."""

    @classmethod
    def read(cls, r: Any) -> "C0S0":
        """Read and check the version byte."""
        version = _read_exact(r, 1)[0]
        if version != RTMP_VERSION:
            raise HandshakeError(f"invalid rtmp version ({version})")
        return cls()

    def write(self, w: Any) -> None:
        """Write the version byte."""
        w.write(bytes([RTMP_VERSION]))


@dataclass
class C1S1:
    """A C1 or S1 packet."""

    time: int = 0
    random: Optional[bytes] = None
    digest: Optional[bytes] = None

    @classmethod
    def read(cls, r: Any, is_c1: bool, validate_signature: bool) -> "C1S1":
        """Read a packet; the digest is None when the signature is not found."""
        buf = _read_exact(r, _PACKET_SIZE)
        if is_c1:
            peer_key, key = _CLIENT_PARTIAL_KEY, _SERVER_FULL_KEY
        else:
            peer_key, key = _SERVER_PARTIAL_KEY, _CLIENT_FULL_KEY

        digest = _parse1(buf, peer_key, key)
        if digest is None and validate_signature:
            raise HandshakeError("unable to validate C1/S1 signature")

        return cls(
            time=int.from_bytes(buf[0:4], "big"),
            random=buf[8:],
            digest=digest,
        )

    def write(self, w: Any, is_c1: bool) -> None:
        """Sign and write the packet, storing the digest the peer will use."""
        buf = bytearray(_PACKET_SIZE)
        buf[0:4] = (self.time & 0xFFFFFFFF).to_bytes(4, "big")

        random = self.random if self.random is not None else os.urandom(_PACKET_SIZE - 8)
        random = bytes(random[:_PACKET_SIZE - 8])
        buf[8:8 + len(random)] = random

        gap = _calc_digest_pos(buf, 8)
        if is_c1:
            peer_key, key = _SERVER_FULL_KEY, _CLIENT_PARTIAL_KEY
        else:
            peer_key, key = _CLIENT_FULL_KEY, _SERVER_PARTIAL_KEY

        buf[gap:gap + _DIGEST_SIZE] = _make_digest(key, bytes(buf), gap)
        self.digest = _make_digest(peer_key, bytes(buf[gap:gap + _DIGEST_SIZE]), -1)

        w.write(bytes(buf))


@dataclass
class C2S2:
    """A C2 or S2 packet."""

    time: int = 0
    time2: int = 0
    random: Optional[bytes] = None
    digest: Optional[bytes] = None

    @classmethod
    def read(
        cls, r: Any, digest: Optional[bytes], validate_signature: bool
    ) -> "C2S2":
        """Read a packet, checking its signature against ``digest`` if asked."""
        buf = _read_exact(r, _PACKET_SIZE)

        if validate_signature:
            gap = len(buf) - _DIGEST_SIZE
            expected = _make_digest(digest or b"", buf, gap)
            if not hmac.compare_digest(buf[gap:], expected):
                raise HandshakeError("unable to validate C2/S2 signature")

        return cls(
            time=int.from_bytes(buf[0:4], "big"),
            time2=int.from_bytes(buf[4:8], "big"),
            random=buf[8:],
            digest=digest,
        )

    def write(self, w: Any) -> None:
        """Write the packet, signed with the digest when one is set."""
        buf = bytearray(_PACKET_SIZE)
        buf[0:4] = (self.time & 0xFFFFFFFF).to_bytes(4, "big")
        buf[4:8] = (self.time2 & 0xFFFFFFFF).to_bytes(4, "big")

        random = self.random if self.random is not None else os.urandom(_PACKET_SIZE - 8)
        random = bytes(random[:_PACKET_SIZE - 8])
        buf[8:8 + len(random)] = random

        if self.digest is not None:
            gap = len(buf) - _DIGEST_SIZE
            buf[gap:] = _make_digest(self.digest, bytes(buf), gap)

        w.write(bytes(buf))


def do_client(rw: Any, validate_signature: bool) -> None:
    """Perform the client side of the handshake."""
    C0S0().write(rw)

    c1 = C1S1()
    c1.write(rw, True)

    C0S0.read(rw)

    s1 = C1S1.read(rw, False, validate_signature)

    C2S2.read(rw, c1.digest, validate_signature)

    C2S2(digest=s1.digest).write(rw)


def do_server(rw: Any, validate_signature: bool) -> None:
    """Perform the server side of the handshake."""
    C0S0.read(rw)

    c1 = C1S1.read(rw, True, validate_signature)

    C0S0().write(rw)

    s1 = C1S1()
    s1.write(rw, False)

    C2S2(digest=c1.digest).write(rw)

    C2S2.read(rw, s1.digest, validate_signature)