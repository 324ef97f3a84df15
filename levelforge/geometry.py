"""
Geometry utilities shared by the mesh, skeleton and exporter code.

Includes quaternion rotation matrices and triangle winding correction.
"""

import numpy as np
from typing import Optional, Tuple


def quaternion_to_matrix(quaternion: np.ndarray) -> np.ndarray:
    """
    Convert an (x, y, z, w) quaternion to a 3x3 rotation matrix.

    The quaternion does not need to be normalized; the conversion divides by
    its squared norm, so any uniform scale cancels out. A zero quaternion
    yields the identity.

    Args:
        quaternion: Array of (x, y, z, w)

    Returns:
        3x3 rotation matrix acting on column vectors
    """
    x, y, z, w = (float(c) for c in quaternion)
    norm_sq = x*x + y*y + z*z + w*w
    if norm_sq == 0.0:
        return np.eye(3)

    s = 2.0 / norm_sq
    return np.array([
        [1 - s*(y*y + z*z), s*(x*y - z*w),     s*(x*z + y*w)    ],
        [s*(x*y + z*w),     1 - s*(x*x + z*z), s*(y*z - x*w)    ],
        [s*(x*z - y*w),     s*(y*z + x*w),     1 - s*(x*x + y*y)],
    ])


def should_reverse_winding(
    positions: np.ndarray,
    normals: Optional[np.ndarray],
    f1: int,
    f2: int,
    f3: int,
) -> bool:
    """
    Check whether a triangle's winding disagrees with its vertex normals.

    The face normal implied by the vertex order is compared with the sum of
    the three vertex normals. Triangles without normals are never reversed.

    Args:
        positions: Nx3 vertex positions
        normals: Nx3 vertex normals, or None
        f1, f2, f3: Vertex indices of the triangle

    Returns:
        True if the second and third index should be swapped
    """
    if normals is None:
        return False

    p1 = positions[f1]
    face_normal = np.cross(positions[f2] - p1, positions[f3] - p1)
    vertex_normal = normals[f1] + normals[f2] + normals[f3]

    return float(np.dot(face_normal, vertex_normal)) < 0.0


def correct_winding(
    positions: np.ndarray,
    normals: Optional[np.ndarray],
    f1: int,
    f2: int,
    f3: int,
) -> Tuple[int, int, int]:
    """Return the triangle with its winding made consistent with the normals."""
    if should_reverse_winding(positions, normals, f1, f2, f3):
        return f1, f3, f2
    return f1, f2, f3
