"""
Error types raised by the levelforge codecs and exporters.

Every decode, encode and export call either returns a complete result or
raises one of these; nothing is partially written.
"""


class LevelForgeError(Exception):
    """Base class for all levelforge errors."""


class BoundsError(LevelForgeError, IndexError):
    """A read or write would run past the end of a buffer."""

    def __init__(self, offset: int, width: int, length: int):
        self.offset = offset
        self.width = width
        self.length = length
        super().__init__(
            f"Access of {width} bytes at offset {offset:#x} exceeds buffer of {length:#x} bytes"
        )


class MalformedLayout(LevelForgeError, ValueError):
    """A requested stride or element size is not a supported variant."""


class MissingSkeleton(LevelForgeError):
    """Skeleton or animation output was requested for a model without bones."""


class IndexOutOfRange(LevelForgeError, IndexError):
    """A triangle references a vertex that does not exist."""

    def __init__(self, index: int, vertex_count: int):
        self.index = index
        self.vertex_count = vertex_count
        super().__init__(f"Vertex index {index} out of range for {vertex_count} vertices")


class ClipIndexOutOfRange(LevelForgeError, IndexError):
    """A single animation clip was requested that the model does not have."""

    def __init__(self, index: int, clip_count: int):
        self.index = index
        self.clip_count = clip_count
        super().__init__(f"Animation index {index} out of range for {clip_count} animations")
