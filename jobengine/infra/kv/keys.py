"""
Order-preserving encoding of tuple keys.

Each key part is written as a type tag followed by a self-delimiting body, so
bytewise comparison of encoded keys matches tuple comparison of the parts and
a tuple prefix always encodes to a byte prefix.
"""

import struct
from typing import Union

KeyPart = Union[bytes, str, int, float, bool]
Key = tuple[KeyPart, ...]

_BYTES = 0x01
_STRING = 0x02
_INT = 0x14
_FLOAT = 0x21
_FALSE = 0x26
_TRUE = 0x27

_INT_OFFSET = 1 << 63

# Upper bound appended to a prefix to form the end of its range
PREFIX_END = b"\xff"


def _escape(raw: bytes) -> bytes:
    return raw.replace(b"\x00", b"\x00\xff") + b"\x00"


def _encode_part(part: KeyPart) -> bytes:
    # bool must be checked before int
    if isinstance(part, bool):
        return bytes([_TRUE if part else _FALSE])
    if isinstance(part, int):
        if not -_INT_OFFSET <= part < _INT_OFFSET:
            raise ValueError(f"Integer key part out of range: {part}")
        return bytes([_INT]) + struct.pack(">Q", part + _INT_OFFSET)
    if isinstance(part, float):
        raw = struct.pack(">d", part)
        if raw[0] & 0x80:
            body = bytes(b ^ 0xFF for b in raw)
        else:
            body = bytes([raw[0] ^ 0x80]) + raw[1:]
        return bytes([_FLOAT]) + body
    if isinstance(part, str):
        return bytes([_STRING]) + _escape(part.encode("utf-8"))
    if isinstance(part, bytes):
        return bytes([_BYTES]) + _escape(part)
    raise TypeError(f"Unsupported key part type: {type(part).__name__}")


def encode_key(key: Key) -> bytes:
    """Encode a tuple key into bytes that sort like the tuple."""
    return b"".join(_encode_part(part) for part in key)


def _read_escaped(data: bytes, pos: int) -> tuple[bytes, int]:
    out = bytearray()
    while True:
        byte = data[pos]
        if byte == 0x00:
            if pos + 1 < len(data) and data[pos + 1] == 0xFF:
                out.append(0x00)
                pos += 2
                continue
            return bytes(out), pos + 1
        out.append(byte)
        pos += 1


def decode_key(data: bytes) -> Key:
    """Decode bytes produced by encode_key back into a tuple."""
    parts: list[KeyPart] = []
    pos = 0
    while pos < len(data):
        tag = data[pos]
        pos += 1
        if tag == _STRING:
            raw, pos = _read_escaped(data, pos)
            parts.append(raw.decode("utf-8"))
        elif tag == _BYTES:
            raw, pos = _read_escaped(data, pos)
            parts.append(raw)
        elif tag == _INT:
            (value,) = struct.unpack(">Q", data[pos : pos + 8])
            parts.append(value - _INT_OFFSET)
            pos += 8
        elif tag == _FLOAT:
            body = data[pos : pos + 8]
            if body[0] & 0x80:
                raw = bytes([body[0] ^ 0x80]) + body[1:]
            else:
                raw = bytes(b ^ 0xFF for b in body)
            (value,) = struct.unpack(">d", raw)
            parts.append(value)
            pos += 8
        elif tag == _TRUE:
            parts.append(True)
        elif tag == _FALSE:
            parts.append(False)
        else:
            raise ValueError(f"Unknown key tag 0x{tag:02x} at offset {pos - 1}")
    return tuple(parts)


def key_range(
    prefix: Key = (), start: Key | None = None, end: Key | None = None
) -> tuple[bytes, bytes]:
    """
    Compute the [low, high) byte range for a scan.

    `start` and `end` are full keys that narrow the prefix range; `start` is
    inclusive and `end` exclusive.
    """
    encoded_prefix = encode_key(prefix)
    low = encoded_prefix
    high = encoded_prefix + PREFIX_END
    if start is not None:
        low = max(low, encode_key(start))
    if end is not None:
        high = min(high, encode_key(end))
    return low, high
