"""
Fixed-size structured records found in level data.

Each record kind declares its element size and an explicit field table of
(name, kind, offset). Arrays of records are stored back to back, so record
``i`` starts at ``i * ELEMENT_SIZE``.

Record kinds:
- Light: 0x40 bytes, sixteen float32 lighting parameters
- TupleElement: 0x20 bytes, four float32 followed by four int32
"""

from dataclasses import dataclass
from typing import ClassVar, Dict, List, Sequence, Tuple, Type, TypeVar

from levelforge.codec import (
    Buffer,
    read_float32,
    read_int32,
    write_float32,
    write_int32,
)

FLOAT = "float32"
INT = "int32"

_READERS = {FLOAT: read_float32, INT: read_int32}
_WRITERS = {FLOAT: write_float32, INT: write_int32}

R = TypeVar("R", bound="FixedRecord")


class FixedRecord:
    """
    Base for records with a constant element size.

    Subclasses are dataclasses that set ELEMENT_SIZE and FIELDS.
    """

    ELEMENT_SIZE: ClassVar[int] = 0
    FIELDS: ClassVar[Tuple[Tuple[str, str, int], ...]] = ()

    @classmethod
    def decode(cls: Type[R], buffer: Buffer, index: int = 0) -> R:
        """
        Decode the record at position ``index`` of a record array.

        Args:
            buffer: Bytes holding the record array
            index: Record number within the array

        Returns:
            Decoded record
        """
        base = index * cls.ELEMENT_SIZE
        values = {
            name: _READERS[kind](buffer, base + offset)
            for name, kind, offset in cls.FIELDS
        }
        return cls(**values)

    def encode(self) -> bytes:
        """Serialize into a fresh ELEMENT_SIZE buffer."""
        out = bytearray(self.ELEMENT_SIZE)
        for name, kind, offset in self.FIELDS:
            _WRITERS[kind](out, offset, getattr(self, name))
        return bytes(out)

    def to_dict(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name, _, _ in self.FIELDS}


def decode_array(record_type: Type[R], buffer: Buffer, count: int) -> List[R]:
    """Decode ``count`` consecutive records starting at the buffer's first byte."""
    return [record_type.decode(buffer, i) for i in range(count)]


def encode_array(records: Sequence[FixedRecord]) -> bytes:
    """Concatenate record encodings in their original order."""
    return b"".join(record.encode() for record in records)


@dataclass
class Light(FixedRecord):
    """Engine light parameters."""

    ELEMENT_SIZE: ClassVar[int] = 0x40
    FIELDS: ClassVar[Tuple[Tuple[str, str, int], ...]] = (
        ("off_00", FLOAT, 0x00),
        ("off_04", FLOAT, 0x04),
        ("off_08", FLOAT, 0x08),
        ("off_0C", FLOAT, 0x0C),
        ("off_10", FLOAT, 0x10),
        ("off_14", FLOAT, 0x14),
        ("off_18", FLOAT, 0x18),
        ("off_1C", FLOAT, 0x1C),
        ("off_20", FLOAT, 0x20),
        ("off_24", FLOAT, 0x24),
        ("off_28", FLOAT, 0x28),
        ("off_2C", FLOAT, 0x2C),
        ("off_30", FLOAT, 0x30),
        ("off_34", FLOAT, 0x34),
        ("off_38", FLOAT, 0x38),
        ("off_3C", FLOAT, 0x3C),
    )

    off_00: float = 0.0
    off_04: float = 0.0
    off_08: float = 0.0
    off_0C: float = 0.0
    off_10: float = 0.0
    off_14: float = 0.0
    off_18: float = 0.0
    off_1C: float = 0.0
    off_20: float = 0.0
    off_24: float = 0.0
    off_28: float = 0.0
    off_2C: float = 0.0
    off_30: float = 0.0
    off_34: float = 0.0
    off_38: float = 0.0
    off_3C: float = 0.0


@dataclass
class TupleElement(FixedRecord):
    """Generic gameplay tuple: four floats then four ints."""

    ELEMENT_SIZE: ClassVar[int] = 0x20
    FIELDS: ClassVar[Tuple[Tuple[str, str, int], ...]] = (
        ("off_00", FLOAT, 0x00),
        ("off_04", FLOAT, 0x04),
        ("off_08", FLOAT, 0x08),
        ("off_0C", FLOAT, 0x0C),
        ("off_10", INT, 0x10),
        ("off_14", INT, 0x14),
        ("off_18", INT, 0x18),
        ("off_1C", INT, 0x1C),
    )

    off_00: float = 0.0
    off_04: float = 0.0
    off_08: float = 0.0
    off_0C: float = 0.0
    off_10: int = 0
    off_14: int = 0
    off_18: int = 0
    off_1C: int = 0


RECORD_KINDS: Dict[str, Type[FixedRecord]] = {
    "light": Light,
    "tuple": TupleElement,
}
