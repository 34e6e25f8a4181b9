"""
Fixed-width binary reads and writes for geometry payloads.

Little- and big-endian variants share one code path: the byte order only
selects the struct prefix.
"""
import struct
from typing import Union

Buffer = Union[bytes, bytearray, memoryview]

UINT32_SIZE = 4
DOUBLE_SIZE = 8


class CoordinateCodec:
    """Reads and writes uint32 and float64 values at byte offsets."""

    @staticmethod
    def _order(little_endian: bool) -> str:
        return "<" if little_endian else ">"

    @staticmethod
    def _check(data: Buffer, offset: int, width: int) -> None:
        if offset < 0 or offset + width > len(data):
            raise ValueError(
                f"Read of {width} bytes at offset {offset} exceeds buffer of {len(data)} bytes"
            )

    @classmethod
    def read_uint32(cls, data: Buffer, offset: int, little_endian: bool = True) -> int:
        cls._check(data, offset, UINT32_SIZE)
        return struct.unpack_from(cls._order(little_endian) + "I", data, offset)[0]

    @classmethod
    def read_double(cls, data: Buffer, offset: int, little_endian: bool = True) -> float:
        cls._check(data, offset, DOUBLE_SIZE)
        return struct.unpack_from(cls._order(little_endian) + "d", data, offset)[0]

    @classmethod
    def read_pair(cls, data: Buffer, offset: int, little_endian: bool = True) -> tuple[float, float]:
        """Read two consecutive doubles as (x, y)."""
        cls._check(data, offset, 2 * DOUBLE_SIZE)
        return struct.unpack_from(cls._order(little_endian) + "dd", data, offset)

    @classmethod
    def write_uint32(cls, value: int, little_endian: bool = True) -> bytes:
        return struct.pack(cls._order(little_endian) + "I", value)

    @classmethod
    def write_double(cls, value: float, little_endian: bool = True) -> bytes:
        return struct.pack(cls._order(little_endian) + "d", value)

    @classmethod
    def write_pair(cls, x: float, y: float, little_endian: bool = True) -> bytes:
        return struct.pack(cls._order(little_endian) + "dd", x, y)
