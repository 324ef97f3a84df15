"""Shared model fixtures."""

import numpy as np
import pytest

from levelforge.animation import Animation, Frame
from levelforge.mesh import SkinnedModel, StandardModel, TextureConfig
from levelforge.skeleton import BoneData, BoneMatrix

TETRA_POSITIONS = np.array([
    [1.0, 1.0, 1.0],
    [1.0, -1.0, -1.0],
    [-1.0, 1.0, -1.0],
    [-1.0, -1.0, 1.0],
], dtype=np.float32)

# Two faces wound outward, two inward
TETRA_FACES = [0, 1, 2, 0, 3, 1, 0, 2, 3, 1, 3, 2]

IDENTITY_ROTATION = [0, 0, 0, 32767]


def tetra_vertex_buffer() -> np.ndarray:
    normals = TETRA_POSITIONS / np.linalg.norm(TETRA_POSITIONS, axis=1, keepdims=True)
    uvs = np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0], [0.25, 0.25]], dtype=np.float32)
    return np.hstack([TETRA_POSITIONS, normals, uvs]).astype(np.float32).reshape(-1)


def rotation_matrix_from_axis_angle(axis, angle) -> np.ndarray:
    """Rodrigues rotation about a unit axis, used as an independent reference."""
    c = np.cos(angle)
    s = np.sin(angle)
    t = 1 - c
    x, y, z = axis

    return np.array([
        [t*x*x + c,   t*x*y - z*s, t*x*z + y*s],
        [t*x*y + z*s, t*y*y + c,   t*y*z - x*s],
        [t*x*z - y*s, t*y*z + x*s, t*z*z + c  ],
    ])


def pack_bytes(values) -> int:
    """Pack four uint8 values little endian into a uint32."""
    return int(values[0]) | int(values[1]) << 8 | int(values[2]) << 16 | int(values[3]) << 24


def make_bone(bone_id, parent, translation=(0.0, 0.0, 0.0), offset=(0.0, 0.0, 0.0)) -> BoneMatrix:
    transformation = np.hstack([np.eye(3), np.array(translation, dtype=np.float32).reshape(3, 1)])
    return BoneMatrix(id=bone_id, parent=parent, transformation=transformation, cumulative_offset=offset)


def make_animation(speeds, bone_count=3) -> Animation:
    return Animation(frames=[
        Frame(speed=speed, rotations=[IDENTITY_ROTATION] * bone_count) for speed in speeds
    ])


@pytest.fixture
def tetrahedron():
    return StandardModel(
        vertex_buffer=tetra_vertex_buffer(),
        index_buffer=np.array(TETRA_FACES, dtype=np.uint16),
        texture_config=[TextureConfig(id=7, start=0, size=12)],
        size=1.0,
        id=3,
    )


@pytest.fixture
def skinned_tetrahedron():
    bones = [
        make_bone(0, 0, translation=(0.0, 0.0, 0.0), offset=(0.0, 0.0, 0.0)),
        make_bone(1, 0, translation=(0.0, 0.0, 512.0), offset=(0.0, 0.0, -512.0)),
        make_bone(2, 1, translation=(0.0, 0.0, 512.0), offset=(0.0, 0.0, -1024.0)),
    ]
    bone_datas = [BoneData(translation=bone.translation) for bone in bones]
    weights = np.full(4, pack_bytes([128, 127, 0, 0]), dtype=np.uint32)
    ids = np.array([pack_bytes([0, 1, 0, 0]), pack_bytes([1, 2, 0, 0]),
                    pack_bytes([0, 2, 0, 0]), pack_bytes([2, 1, 0, 0])], dtype=np.uint32)
    return SkinnedModel(
        vertex_buffer=tetra_vertex_buffer(),
        index_buffer=np.array(TETRA_FACES, dtype=np.uint16),
        texture_config=[TextureConfig(id=7, start=0, size=6), TextureConfig(id=8, start=6, size=6)],
        size=1024.0,
        id=12,
        weights=weights,
        ids=ids,
        bone_matrices=bones,
        bone_datas=bone_datas,
        animations=[make_animation([1.0, 0.0, 2.0]), make_animation([0.5, 0.5])],
    )
