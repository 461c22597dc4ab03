"""RTMP H264 decoder configuration (AVC sequence header)."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Conf:
    """An H264 configuration carrying one SPS and one PPS."""

    sps: bytes = b""
    pps: bytes = b""

    @classmethod
    def unmarshal(cls, buf: bytes) -> "Conf":
        """Decode a configuration; raises ValueError on malformed input."""
        if len(buf) < 8:
            raise ValueError("invalid size 1")

        pos = 5
        sps_count = buf[pos] & 0x1F
        pos += 1
        if sps_count != 1:
            raise ValueError("sps count != 1 is unsupported")

        sps_len = int.from_bytes(buf[pos:pos + 2], "big")
        pos += 2
        if len(buf) - pos < sps_len:
            raise ValueError("invalid size 2")

        sps = bytes(buf[pos:pos + sps_len])
        pos += sps_len

        if len(buf) - pos < 3:
            raise ValueError("invalid size 3")

        pps_count = buf[pos]
        pos += 1
        if pps_count != 1:
            raise ValueError("pps count != 1 is unsupported")

        pps_len = int.from_bytes(buf[pos:pos + 2], "big")
        pos += 2
        if len(buf) - pos < pps_len:
            raise ValueError("invalid size")

        return cls(sps=sps, pps=bytes(buf[pos:pos + pps_len]))

    def marshal(self) -> bytes:
        """Encode the configuration."""
        if len(self.sps) < 4:
            raise ValueError("SPS is too short")
        return (
            bytes([1, self.sps[1], self.sps[2], self.sps[3], 3 | 0xFC, 1 | 0xE0])
            + len(self.sps).to_bytes(2, "big")
            + bytes(self.sps)
            + b"\x01"
            + len(self.pps).to_bytes(2, "big")
            + bytes(self.pps)
        )