"""
Quantized skeletal animation.

Each frame stores a playback speed and, per bone, a rotation packed as four
signed 16-bit components. Translations are not animated; every frame reuses
the bone's rest translation.

Binary layout:
- Frame: float32 speed, then (x, y, z, w) int16 per bone -> 4 + 8 * bones bytes
- Animation: int32 frame count, then the frames back to back

Timing: frames play at 60 * speed frames per second. A speed of 0 means the
fallback speed of 0.2 is used.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Sequence, Tuple

import numpy as np

from levelforge.codec import (
    Buffer,
    read_float32,
    read_int16,
    read_int32,
    write_float32,
    write_int16,
    write_int32,
)
from levelforge.geometry import quaternion_to_matrix
from levelforge.skeleton import bone_scale

FRAME_RATE = 60.0
FALLBACK_SPEED = 0.2
QUANTIZATION = 32767.0


@dataclass
class Frame:
    """One animation frame: speed plus a quantized rotation per bone."""
    speed: float = 0.0
    rotations: np.ndarray = field(default_factory=lambda: np.zeros((0, 4), dtype=np.int16))

    def __post_init__(self):
        self.rotations = np.asarray(self.rotations, dtype=np.int16).reshape(-1, 4)

    @property
    def bone_count(self) -> int:
        return len(self.rotations)

    @staticmethod
    def byte_size(bone_count: int) -> int:
        return 4 + 8 * bone_count

    @classmethod
    def decode(cls, buffer: Buffer, offset: int, bone_count: int) -> "Frame":
        speed = read_float32(buffer, offset)
        rotations = np.zeros((bone_count, 4), dtype=np.int16)
        for bone in range(bone_count):
            base = offset + 4 + 8 * bone
            for c in range(4):
                rotations[bone, c] = read_int16(buffer, base + 2 * c)
        return cls(speed=speed, rotations=rotations)

    def encode(self) -> bytes:
        out = bytearray(self.byte_size(self.bone_count))
        write_float32(out, 0, self.speed)
        for bone, rotation in enumerate(self.rotations):
            for c, value in enumerate(rotation):
                write_int16(out, 4 + 8 * bone + 2 * c, value)
        return bytes(out)

    def duration(self) -> float:
        return frame_duration(self.speed)

    def rotation_matrix(self, bone: int) -> np.ndarray:
        """Rest-relative rotation of ``bone`` in this frame."""
        return quantized_rotation_matrix(self.rotations[bone])

    def transform(self, bone: int, rest_translation: np.ndarray, size: float) -> np.ndarray:
        """
        Local 4x4 transform of a bone in this frame.

        Args:
            bone: Bone index
            rest_translation: The bone's rest translation in bone units
            size: Model scale factor

        Returns:
            4x4 float32 matrix: frame rotation plus scaled rest translation
        """
        matrix = np.eye(4, dtype=np.float32)
        matrix[:3, :3] = self.rotation_matrix(bone)
        matrix[:3, 3] = np.asarray(rest_translation, dtype=np.float32) * np.float32(bone_scale(size))
        return matrix


@dataclass
class Animation:
    """Ordered frames of one clip."""
    frames: List[Frame] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.frames)

    @classmethod
    def decode(cls, buffer: Buffer, offset: int, bone_count: int) -> "Animation":
        count = read_int32(buffer, offset)
        if count < 0:
            raise ValueError(f"Negative frame count {count} at offset {offset:#x}")
        frames = []
        position = offset + 4
        for _ in range(count):
            frames.append(Frame.decode(buffer, position, bone_count))
            position += Frame.byte_size(bone_count)
        return cls(frames=frames)

    def encode(self) -> bytes:
        header = bytearray(4)
        write_int32(header, 0, len(self.frames))
        return bytes(header) + b"".join(frame.encode() for frame in self.frames)

    def duration(self) -> float:
        return sum(frame.duration() for frame in self.frames)


def frame_duration(speed: float) -> float:
    """Time one frame occupies on the timeline."""
    if speed == 0.0:
        return 1.0 / (FRAME_RATE * FALLBACK_SPEED)
    return 1.0 / (FRAME_RATE * speed)


def frame_times(frames: Iterable[Frame], start: float = 0.0) -> Tuple[List[float], float]:
    """
    Start time of every frame.

    Args:
        frames: Frames in playback order
        start: Time of the first frame

    Returns:
        Tuple of:
        - times: Start time of each frame
        - end: Time just after the last frame
    """
    times = []
    current = start
    for frame in frames:
        times.append(current)
        current += frame.duration()
    return times, current


def sequential_frame_times(animations: Sequence[Animation]) -> List[float]:
    """Frame start times for clips played back to back on one timeline."""
    times: List[float] = []
    current = 0.0
    for animation in animations:
        clip_times, current = frame_times(animation.frames, current)
        times.extend(clip_times)
    return times


def reconstruct_quaternion(rotation: Sequence[int]) -> np.ndarray:
    """
    Expand a quantized rotation to an (x, y, z, w) quaternion.

    Components are divided by 32767 and scaled by 180, and w is negated.
    The quaternion is left unnormalized; quaternion_to_matrix removes the
    common scale.
    """
    x, y, z, w = (int(c) for c in rotation)
    return np.array([
        x / QUANTIZATION * 180.0,
        y / QUANTIZATION * 180.0,
        z / QUANTIZATION * 180.0,
        -w / QUANTIZATION * 180.0,
    ])


def quantized_rotation_matrix(rotation: Sequence[int]) -> np.ndarray:
    """3x3 float32 rotation matrix for a quantized rotation."""
    return quaternion_to_matrix(reconstruct_quaternion(rotation)).astype(np.float32)
