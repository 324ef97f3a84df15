"""
Fixed-width little-endian primitive codec.

All structured entities in levelforge are read and written through these
functions, which keeps decode and encode symmetric field by field.

Supported primitives:
- float32 (4 bytes)
- int32 / uint32 (4 bytes)
- int16 / uint16 (2 bytes)

Reads work on any bytes-like object; writes need a bytearray (or other
writable buffer) and modify it in place. Offsets are byte offsets with no
alignment requirement.
"""

import struct
from typing import Union

from levelforge.errors import BoundsError

Buffer = Union[bytes, bytearray, memoryview]

_FLOAT32 = struct.Struct("<f")
_INT32 = struct.Struct("<i")
_UINT32 = struct.Struct("<I")
_INT16 = struct.Struct("<h")
_UINT16 = struct.Struct("<H")


def _check(buffer: Buffer, offset: int, width: int) -> None:
    if offset < 0 or offset + width > len(buffer):
        raise BoundsError(offset, width, len(buffer))


def read_float32(buffer: Buffer, offset: int) -> float:
    _check(buffer, offset, 4)
    return _FLOAT32.unpack_from(buffer, offset)[0]


def read_int32(buffer: Buffer, offset: int) -> int:
    _check(buffer, offset, 4)
    return _INT32.unpack_from(buffer, offset)[0]


def read_uint32(buffer: Buffer, offset: int) -> int:
    _check(buffer, offset, 4)
    return _UINT32.unpack_from(buffer, offset)[0]


def read_int16(buffer: Buffer, offset: int) -> int:
    _check(buffer, offset, 2)
    return _INT16.unpack_from(buffer, offset)[0]


def read_uint16(buffer: Buffer, offset: int) -> int:
    _check(buffer, offset, 2)
    return _UINT16.unpack_from(buffer, offset)[0]


def write_float32(buffer: bytearray, offset: int, value: float) -> None:
    _check(buffer, offset, 4)
    _FLOAT32.pack_into(buffer, offset, float(value))


def write_int32(buffer: bytearray, offset: int, value: int) -> None:
    _check(buffer, offset, 4)
    _INT32.pack_into(buffer, offset, int(value))


def write_uint32(buffer: bytearray, offset: int, value: int) -> None:
    _check(buffer, offset, 4)
    _UINT32.pack_into(buffer, offset, int(value) & 0xFFFFFFFF)


def write_int16(buffer: bytearray, offset: int, value: int) -> None:
    _check(buffer, offset, 2)
    _INT16.pack_into(buffer, offset, int(value))


def write_uint16(buffer: bytearray, offset: int, value: int) -> None:
    _check(buffer, offset, 2)
    _UINT16.pack_into(buffer, offset, int(value) & 0xFFFF)


def read_block(buffer: Buffer, offset: int, length: int) -> bytes:
    """
    Copy a region out of a buffer.

    Args:
        buffer: Source bytes
        offset: Start of the region
        length: Number of bytes to copy

    Returns:
        The region as an independent bytes object

    Raises:
        BoundsError: If the region runs past the end of the buffer
    """
    if length < 0:
        raise ValueError(f"Negative block length: {length}")
    _check(buffer, offset, length)
    return bytes(buffer[offset:offset + length])
