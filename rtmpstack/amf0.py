"""AMF0 value encoding and decoding.

Python values map to AMF0 types as follows: ``None`` is null, ``bool`` is
boolean, ``int`` and ``float`` are numbers, ``str`` is a string or long
string, a mapping is an object, an ``ECMAArray`` is an ECMA array, a list or
tuple is a strict array and a ``datetime`` is a date.
"""

from __future__ import annotations

import datetime
import struct
from typing import Any, Iterable, List, Mapping

NUMBER = 0x00
BOOLEAN = 0x01
STRING = 0x02
OBJECT = 0x03
NULL = 0x05
UNDEFINED = 0x06
REFERENCE = 0x07
ECMA_ARRAY = 0x08
OBJECT_END = 0x09
STRICT_ARRAY = 0x0A
DATE = 0x0B
LONG_STRING = 0x0C

_U16_MAX = 0xFFFF
_U32_MAX = 0xFFFFFFFF
_EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)


class AMFError(ValueError):
    """Raised when a value cannot be encoded or data cannot be decoded."""


class ECMAArray(dict):
    """An associative array encoded with the AMF0 ECMA array marker."""


def _encode_key(out: bytearray, key: Any) -> None:
    if not isinstance(key, str):
        raise AMFError(f"AMF0 object keys must be strings, not {type(key).__name__}")
    raw = key.encode("utf-8")
    if len(raw) > _U16_MAX:
        raise AMFError("AMF0 object key is too long")
    out += struct.pack(">H", len(raw))
    out += raw


def _encode_pairs(out: bytearray, mapping: Mapping[Any, Any]) -> None:
    for key, value in mapping.items():
        _encode_key(out, key)
        _encode_value(out, value)
    out += bytes([0x00, 0x00, OBJECT_END])


def _encode_value(out: bytearray, value: Any) -> None:
    if value is None:
        out.append(NULL)
    elif isinstance(value, bool):
        out += bytes([BOOLEAN, 1 if value else 0])
    elif isinstance(value, (int, float)):
        out.append(NUMBER)
        out += struct.pack(">d", float(value))
    elif isinstance(value, str):
        raw = value.encode("utf-8")
        if len(raw) <= _U16_MAX:
            out.append(STRING)
            out += struct.pack(">H", len(raw))
        elif len(raw) <= _U32_MAX:
            out.append(LONG_STRING)
            out += struct.pack(">I", len(raw))
        else:
            raise AMFError("AMF0 string is too long")
        out += raw
    elif isinstance(value, datetime.datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=datetime.timezone.utc)
        millis = (value - _EPOCH) / datetime.timedelta(milliseconds=1)
        out.append(DATE)
        out += struct.pack(">dh", millis, 0)
    elif isinstance(value, ECMAArray):
        out.append(ECMA_ARRAY)
        out += struct.pack(">I", len(value))
        _encode_pairs(out, value)
    elif isinstance(value, Mapping):
        out.append(OBJECT)
        _encode_pairs(out, value)
    elif isinstance(value, (list, tuple)):
        out.append(STRICT_ARRAY)
        out += struct.pack(">I", len(value))
        for item in value:
            _encode_value(out, item)
    else:
        raise AMFError(f"unsupported AMF0 value type: {type(value).__name__}")


def encode(values: Iterable[Any]) -> bytes:
    """Encode a sequence of values one after another."""
    out = bytearray()
    for value in values:
        _encode_value(out, value)
    return bytes(out)


class _Decoder:
    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._pos = 0

    @property
    def done(self) -> bool:
        return self._pos >= len(self._data)

    def _take(self, size: int) -> bytes:
        end = self._pos + size
        if end > len(self._data):
            raise AMFError("unexpected end of AMF0 data")
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def _unpack(self, fmt: str) -> Any:
        return struct.unpack(fmt, self._take(struct.calcsize(fmt)))[0]

    def _text(self, size: int) -> str:
        try:
            return self._take(size).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise AMFError("invalid UTF-8 in AMF0 string") from exc

    def _pairs(self, target: dict) -> dict:
        while True:
            key = self._text(self._unpack(">H"))
            if key == "" and self._data[self._pos:self._pos + 1] == bytes([OBJECT_END]):
                self._pos += 1
                return target
            target[key] = self.value()

    def value(self) -> Any:
        marker = self._take(1)[0]
        if marker == NUMBER:
            return self._unpack(">d")
        if marker == BOOLEAN:
            return self._take(1)[0] != 0
        if marker == STRING:
            return self._text(self._unpack(">H"))
        if marker == LONG_STRING:
            return self._text(self._unpack(">I"))
        if marker == OBJECT:
            return self._pairs({})
        if marker == ECMA_ARRAY:
            self._unpack(">I")
            return self._pairs(ECMAArray())
        if marker in (NULL, UNDEFINED):
            return None
        if marker == STRICT_ARRAY:
            count = self._unpack(">I")
            return [self.value() for _ in range(count)]
        if marker == DATE:
            millis = self._unpack(">d")
            self._unpack(">h")
            return _EPOCH + datetime.timedelta(milliseconds=millis)
        raise AMFError(f"unsupported AMF0 marker 0x{marker:02x}")


def decode(data: bytes) -> List[Any]:
    """Decode all the values held in ``data``."""
    decoder = _Decoder(data)
    values = []
    while not decoder.done:
        values.append(decoder.value())
    return values