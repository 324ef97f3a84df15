"""
Consistency checks and inspection helpers for decoded models.

validate_model runs the same structural checks the exporter relies on and
reports every problem at once instead of stopping at the first. The trimesh
helpers are optional and only needed for mesh statistics.
"""

from typing import Any, Dict, List, Tuple

import numpy as np

try:
    import trimesh
    HAS_TRIMESH = True
except ImportError:
    HAS_TRIMESH = False

from levelforge.mesh import Model, SkinnedModel, TerrainModel


def validate_model(model: Model) -> Tuple[bool, List[str]]:
    """
    Validate the buffers of a model.

    Checks:
    - Vertex buffer length is a whole number of vertices
    - Index count is a multiple of 3 and every index names a vertex
    - Texture config ranges are multiples of 3 inside the index buffer
    - Skinned models carry weights and ids for every vertex, and a
      well formed bone hierarchy
    - Terrain models carry four colour bytes per vertex

    Args:
        model: Model to check

    Returns:
        Tuple of (is_valid, list_of_errors)

    Example:
        >>> is_valid, errors = validate_model(model)
        >>> if not is_valid:
        ...     print(f"Validation failed: {errors}")
    """
    errors = []
    vertex_count = model.vertex_count

    if len(model.vertex_buffer) % model.floats_per_vertex:
        errors.append(
            f"Vertex buffer has {len(model.vertex_buffer)} floats, "
            f"not a multiple of {model.floats_per_vertex}"
        )

    index_count = len(model.index_buffer)
    if index_count % 3:
        errors.append(f"Index count {index_count} is not a multiple of 3")

    if index_count:
        highest = int(model.index_buffer.max())
        if highest >= vertex_count:
            errors.append(f"Index {highest} out of range for {vertex_count} vertices")

    for config in model.texture_config:
        if config.start % 3 or config.size % 3:
            errors.append(f"Texture config {config.id}: start {config.start} / size {config.size} not multiples of 3")
        if config.start < 0 or config.size < 0 or config.start + config.size > index_count:
            errors.append(
                f"Texture config {config.id}: range {config.start}..{config.start + config.size} "
                f"outside index buffer of {index_count}"
            )

    if isinstance(model, SkinnedModel):
        if len(model.weights) != vertex_count:
            errors.append(f"Expected {vertex_count} weights, got {len(model.weights)}")
        if len(model.ids) != vertex_count:
            errors.append(f"Expected {vertex_count} bone ids, got {len(model.ids)}")

        bone_total = len(model.bone_matrices)
        for i, bone in enumerate(model.bone_matrices):
            if not 0 <= bone.parent < bone_total:
                errors.append(f"Bone {i} has parent index {bone.parent} out of range")
        if model.bone_count > bone_total:
            errors.append(f"Bone count {model.bone_count} exceeds {bone_total} bone matrices")

        if len(model.ids):
            highest_bone = int(model.ids.astype("<u4").view(np.uint8).max())
            if highest_bone >= max(bone_total, 1):
                errors.append(f"Vertex references bone {highest_bone}, model has {bone_total}")

        for a, animation in enumerate(model.animations):
            for f, frame in enumerate(animation.frames):
                if frame.bone_count < model.bone_count:
                    errors.append(
                        f"Animation {a} frame {f} has {frame.bone_count} rotations for {model.bone_count} bones"
                    )
                    break

    if isinstance(model, TerrainModel):
        if len(model.rgbas) < vertex_count * 4:
            errors.append(f"Expected {vertex_count * 4} colour bytes, got {len(model.rgbas)}")

    return len(errors) == 0, errors


def model_to_trimesh(model: Model) -> "trimesh.Trimesh":
    """
    Convert a model to a trimesh.Trimesh in model units.

    Positions are scaled by the model size. Vertex order and faces are kept
    as they are (no merging or winding fixes).
    """
    if not HAS_TRIMESH:
        raise ImportError("trimesh is required for mesh inspection. Install with: pip install trimesh")

    vertices = model.positions() * np.float32(model.size)
    faces = model.triangles() if len(model.index_buffer) else np.zeros((0, 3), dtype=np.int64)

    kwargs = {}
    normals = model.normals()
    if normals is not None:
        kwargs["vertex_normals"] = normals
    colors = model.vertex_colors()
    if colors is not None:
        kwargs["vertex_colors"] = (colors * 255).round().astype(np.uint8)

    return trimesh.Trimesh(vertices=vertices, faces=faces.astype(np.int64), process=False, **kwargs)


def mesh_stats(model: Model) -> Dict[str, Any]:
    """
    Summary statistics for a model.

    Returns:
        Dictionary with vertex/face counts, bounds and, when trimesh is
        installed, whether the mesh is watertight
    """
    positions = model.positions() * np.float32(model.size)
    stats: Dict[str, Any] = {
        "kind": model.kind,
        "id": model.id,
        "vertices": model.vertex_count,
        "faces": len(model.index_buffer) // 3,
        "texture_configs": len(model.texture_config),
    }
    if len(positions):
        stats["bounds"] = [positions.min(axis=0).tolist(), positions.max(axis=0).tolist()]

    if isinstance(model, SkinnedModel):
        stats["bones"] = len(model.bone_matrices)
        stats["animations"] = len(model.animations)

    if HAS_TRIMESH and len(model.index_buffer) and not validate_model(model)[1]:
        stats["watertight"] = bool(model_to_trimesh(model).is_watertight)

    return stats
