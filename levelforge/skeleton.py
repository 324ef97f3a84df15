"""
Bone records, skeleton trees and bind-pose transforms.

Binary layouts:
- Bone matrix (0x40 bytes): 3x4 row-major float32 rest transform at 0x00,
  cumulative offset x/y/z float32 at 0x30, int16 parent index at 0x3C,
  int16 bone id at 0x3E
- Bone data (0x10 bytes): rest translation x/y/z float32 at 0x00,
  int32 at 0x0C (kept verbatim)

Bone transforms are stored in game units; multiplying by ``size / 1024``
converts them to model units.

The skeleton is an arena: node ``i`` belongs to bone matrix ``i`` and links
to its parent and children by index. The root is the single bone whose
parent index is its own index.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

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

logger = logging.getLogger(__name__)

# Some importers drop joints shorter than this (squared length), so such
# bones are nudged along Z by BONE_FIX. Exported fixtures depend on these values.
BONE_MIN_LENGTH = 1e-6
BONE_FIX = 1e-3

BONE_UNITS = 1024.0


def bone_scale(size: float) -> float:
    """Scale factor from bone units to model units for a model of ``size``."""
    return size / BONE_UNITS


@dataclass
class BoneMatrix:
    """Rest transform of one bone."""

    ELEMENT_SIZE = 0x40

    id: int
    parent: int
    transformation: np.ndarray = field(default_factory=lambda: np.hstack([np.eye(3), np.zeros((3, 1))]).astype(np.float32))
    cumulative_offset: np.ndarray = field(default_factory=lambda: np.zeros(3, dtype=np.float32))

    def __post_init__(self):
        self.transformation = np.asarray(self.transformation, dtype=np.float32).reshape(3, 4)
        self.cumulative_offset = np.asarray(self.cumulative_offset, dtype=np.float32).reshape(3)

    @property
    def rotation(self) -> np.ndarray:
        """3x3 rotation part of the rest transform."""
        return self.transformation[:, :3]

    @property
    def translation(self) -> np.ndarray:
        """Translation column of the rest transform."""
        return self.transformation[:, 3]

    @classmethod
    def decode(cls, buffer: Buffer, index: int = 0) -> "BoneMatrix":
        base = index * cls.ELEMENT_SIZE
        values = [read_float32(buffer, base + 4 * i) for i in range(12)]
        offset = [read_float32(buffer, base + 0x30 + 4 * i) for i in range(3)]
        return cls(
            id=read_int16(buffer, base + 0x3E),
            parent=read_int16(buffer, base + 0x3C),
            transformation=np.array(values, dtype=np.float32).reshape(3, 4),
            cumulative_offset=np.array(offset, dtype=np.float32),
        )

    def encode(self) -> bytes:
        out = bytearray(self.ELEMENT_SIZE)
        for i, value in enumerate(self.transformation.reshape(12)):
            write_float32(out, 4 * i, value)
        for i, value in enumerate(self.cumulative_offset):
            write_float32(out, 0x30 + 4 * i, value)
        write_int16(out, 0x3C, self.parent)
        write_int16(out, 0x3E, self.id)
        return bytes(out)


@dataclass
class BoneData:
    """Rest translation of one bone, used as the constant part of animated transforms."""

    ELEMENT_SIZE = 0x10

    translation: np.ndarray = field(default_factory=lambda: np.zeros(3, dtype=np.float32))
    unknown: int = 0

    def __post_init__(self):
        self.translation = np.asarray(self.translation, dtype=np.float32).reshape(3)

    @classmethod
    def decode(cls, buffer: Buffer, index: int = 0) -> "BoneData":
        base = index * cls.ELEMENT_SIZE
        translation = [read_float32(buffer, base + 4 * i) for i in range(3)]
        return cls(
            translation=np.array(translation, dtype=np.float32),
            unknown=read_int32(buffer, base + 0x0C),
        )

    def encode(self) -> bytes:
        out = bytearray(self.ELEMENT_SIZE)
        for i, value in enumerate(self.translation):
            write_float32(out, 4 * i, value)
        write_int32(out, 0x0C, self.unknown)
        return bytes(out)


@dataclass
class SkeletonNode:
    """Arena node: one bone plus index links to its parent and children."""
    bone: int
    parent: Optional[int] = None
    children: List[int] = field(default_factory=list)


class Skeleton:
    """
    Bone hierarchy built once from a flat bone matrix array.

    Args:
        bone_matrices: Bones in source order; each parent index refers to a
            position in this sequence

    Raises:
        ValueError: If there is not exactly one root, a parent index is out
            of range, or some bones cannot be reached from the root
    """

    def __init__(self, bone_matrices: Sequence[BoneMatrix]):
        self.bone_matrices: List[BoneMatrix] = list(bone_matrices)
        self.nodes: List[SkeletonNode] = [SkeletonNode(bone=i) for i in range(len(self.bone_matrices))]
        self._by_id: Dict[int, int] = {}

        roots = []
        for i, bone in enumerate(self.bone_matrices):
            self._by_id.setdefault(bone.id, i)
            if bone.parent == i:
                roots.append(i)
                continue
            if not 0 <= bone.parent < len(self.bone_matrices):
                raise ValueError(f"Bone {i} has parent index {bone.parent} out of range")
            self.nodes[i].parent = bone.parent
            self.nodes[bone.parent].children.append(i)

        if len(roots) != 1:
            raise ValueError(f"Skeleton must have exactly one root bone, found {len(roots)}")
        self.root = roots[0]

        reached = sum(1 for _ in self.walk())
        if reached != len(self.nodes):
            raise ValueError(f"Only {reached} of {len(self.nodes)} bones are reachable from the root")

    def __len__(self) -> int:
        return len(self.nodes)

    def bone(self, node: int) -> BoneMatrix:
        return self.bone_matrices[self.nodes[node].bone]

    def find(self, bone_id: int) -> int:
        """Node index of the bone with the given id."""
        return self._by_id[bone_id]

    def parent_of(self, node: int) -> Optional[int]:
        return self.nodes[node].parent

    def walk(self) -> Iterator[Tuple[int, int]]:
        """
        Depth-first traversal from the root.

        Yields:
            (node index, depth) with children visited in source order
        """
        stack = [(self.root, 0)]
        while stack:
            node, depth = stack.pop()
            yield node, depth
            for child in reversed(self.nodes[node].children):
                stack.append((child, depth + 1))


def build_skeleton(bone_matrices: Sequence[BoneMatrix]) -> Optional[Skeleton]:
    """Build a skeleton, or return None for a model without bones."""
    if not bone_matrices:
        return None
    return Skeleton(bone_matrices)


def relative_rotation(skeleton: Skeleton, node: int) -> np.ndarray:
    """
    Rotation of a bone relative to its parent bone.

    Computed as transpose(parent rotation) @ bone rotation; the root keeps
    its own rotation.
    """
    rotation = skeleton.bone(node).rotation
    parent = skeleton.parent_of(node)
    if parent is None:
        return rotation.copy()
    return (skeleton.bone(parent).rotation.T @ rotation).astype(np.float32)


def joint_matrix(skeleton: Skeleton, node: int, size: float) -> np.ndarray:
    """
    Parent-relative 4x4 joint transform for a scene graph node.

    Args:
        skeleton: Skeleton holding the node
        node: Node index
        size: Model scale factor

    Returns:
        4x4 float32 matrix with the relative rotation and scaled translation
    """
    matrix = np.eye(4, dtype=np.float32)
    matrix[:3, :3] = relative_rotation(skeleton, node)
    matrix[:3, 3] = skeleton.bone(node).translation * np.float32(bone_scale(size))
    return matrix


def guard_tip(tip: np.ndarray) -> np.ndarray:
    """Replace a near zero-length bone tip with a short stand-in along Z."""
    tip = np.asarray(tip, dtype=np.float32)
    if float(np.dot(tip, tip)) < BONE_MIN_LENGTH:
        return np.array([0.0, 0.0, BONE_FIX], dtype=np.float32)
    return tip


def bone_tip(bone: BoneMatrix, size: float) -> np.ndarray:
    """
    Tip vector of a bone in its own rest frame.

    The scaled rest translation is rotated by the transposed rest rotation,
    then passed through guard_tip.
    """
    tip = bone.rotation.T @ (bone.translation * np.float32(bone_scale(size)))
    if float(np.dot(tip, tip)) < BONE_MIN_LENGTH:
        logger.debug("Bone %d has a zero-length tip, using stand-in", bone.id)
    return guard_tip(tip)


def bind_offsets(skeleton: Skeleton, size: float) -> List[np.ndarray]:
    """
    Bone-to-model offsets used for the inverse bind matrices.

    Each cumulative offset is scaled by ``size / 1024``. A non-root bone whose
    offset is within BONE_MIN_LENGTH (squared) of its parent's adjusted offset
    is moved to the parent offset plus BONE_FIX along Z.

    Returns:
        One float32 offset per bone, in bone matrix order
    """
    scale = np.float32(bone_scale(size))
    offsets: List[Optional[np.ndarray]] = [None] * len(skeleton)

    for node, _ in skeleton.walk():
        offset = skeleton.bone(node).cumulative_offset * scale
        parent = skeleton.parent_of(node)
        if parent is not None:
            parent_offset = offsets[parent]
            delta = offset - parent_offset
            if float(np.dot(delta, delta)) < BONE_MIN_LENGTH:
                logger.debug("Bone %d coincides with its parent, nudging bind offset", skeleton.bone(node).id)
                offset = parent_offset.copy()
                offset[2] += np.float32(BONE_FIX)
        offsets[node] = offset.astype(np.float32)

    return offsets


def inverse_bind_matrices(skeleton: Skeleton, size: float) -> List[np.ndarray]:
    """
    Inverse bind matrix per bone, in bone matrix order.

    Rotation is the transposed rest rotation; translation is the adjusted
    bind offset from bind_offsets.
    """
    offsets = bind_offsets(skeleton, size)
    matrices = []
    for node in range(len(skeleton)):
        matrix = np.eye(4, dtype=np.float32)
        matrix[:3, :3] = skeleton.bone(node).rotation.T
        matrix[:3, 3] = offsets[node]
        matrices.append(matrix)
    return matrices
