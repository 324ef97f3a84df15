"""
Mesh buffers and model variants.

Vertex layouts (byte strides of the source records):
- standard: 0x20 -> position xyz, normal xyz, uv st (float32 each)
- skinned:  0x28 -> standard fields, then uint32 weights at 0x20, uint32 ids at 0x24
- skybox:   0x18 -> position xyz, uv st, packed colour at 0x14
- tie:      0x18 -> position xyz, normal xyz (encode only)
- uv:       0x08 -> uv st (encode only; decode via decode_split_vertices)

In memory every model keeps a flat float32 vertex buffer: 8 floats per
vertex, or 6 for skyboxes (position, uv, colour). The skybox colour keeps the
raw packed bytes bit for bit inside its float32 slot.

Index buffers are uint16. Texture configs split the index buffer into one
draw range per material; start and size count indices, not triangles.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from levelforge.codec import (
    Buffer,
    read_block,
    read_float32,
    read_int32,
    read_uint16,
    read_uint32,
    write_float32,
    write_int32,
    write_uint16,
    write_uint32,
)
from levelforge.errors import MalformedLayout
from levelforge.animation import Animation
from levelforge.skeleton import BoneData, BoneMatrix, Skeleton, build_skeleton


@dataclass(frozen=True)
class VertexLayout:
    """Named vertex record layout."""
    name: str
    stride: int
    floats_per_vertex: int = 8


STANDARD = VertexLayout("standard", 0x20)
SKINNED = VertexLayout("skinned", 0x28)
SKYBOX = VertexLayout("skybox", 0x18, floats_per_vertex=6)
TIE = VertexLayout("tie", 0x18)
UV = VertexLayout("uv", 0x08)

VERTEX_LAYOUTS: Dict[str, VertexLayout] = {
    layout.name: layout for layout in (STANDARD, SKINNED, SKYBOX, TIE, UV)
}

_DECODABLE = (STANDARD, SKINNED, SKYBOX)

# element size -> (id, start, size, mode) offsets
TEXTURE_CONFIG_LAYOUTS: Dict[int, Tuple[int, int, int, int]] = {
    0x10: (0x00, 0x04, 0x08, 0x0C),
    0x18: (0x00, 0x08, 0x0C, 0x14),
}


def get_layout(layout: Union[str, VertexLayout]) -> VertexLayout:
    """Look up a vertex layout by name."""
    if isinstance(layout, VertexLayout):
        return layout
    try:
        return VERTEX_LAYOUTS[layout]
    except KeyError:
        raise MalformedLayout(f"Unknown vertex layout: {layout!r}") from None


def layout_for_stride(stride: int) -> VertexLayout:
    """Decodable layout for a source stride (0x18 is taken as skybox)."""
    for layout in _DECODABLE:
        if layout.stride == stride:
            return layout
    raise MalformedLayout(f"Unsupported vertex stride: {stride:#x}")


def decode_vertices(
    buffer: Buffer,
    offset: int,
    count: int,
    layout: Union[str, VertexLayout],
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Decode interleaved vertex records.

    Args:
        buffer: Source bytes
        offset: Byte offset of the first vertex record
        count: Number of vertices
        layout: "standard", "skinned" or "skybox"

    Returns:
        Tuple of:
        - vertex_buffer: Flat float32 array (8 or 6 floats per vertex)
        - weights: uint32 packed weights per vertex (zeros unless skinned)
        - ids: uint32 packed bone ids per vertex (zeros unless skinned)

    Raises:
        MalformedLayout: If the layout cannot be decoded on its own
        BoundsError: If the records run past the end of the buffer
    """
    layout = get_layout(layout)
    if layout not in _DECODABLE:
        raise MalformedLayout(f"Layout {layout.name!r} cannot be decoded on its own")

    block = read_block(buffer, offset, count * layout.stride)
    floats = layout.floats_per_vertex
    vertex_buffer = np.zeros(count * floats, dtype=np.float32)
    weights = np.zeros(count, dtype=np.uint32)
    ids = np.zeros(count, dtype=np.uint32)

    if layout is SKYBOX:
        bits = vertex_buffer.view(np.uint32)
        for i in range(count):
            base = i * layout.stride
            for j in range(5):
                vertex_buffer[i * 6 + j] = read_float32(block, base + 4 * j)
            bits[i * 6 + 5] = read_uint32(block, base + 0x14)
        return vertex_buffer, weights, ids

    for i in range(count):
        base = i * layout.stride
        for j in range(8):
            vertex_buffer[i * 8 + j] = read_float32(block, base + 4 * j)
        if layout is SKINNED:
            weights[i] = read_uint32(block, base + 0x20)
            ids[i] = read_uint32(block, base + 0x24)

    return vertex_buffer, weights, ids


def decode_split_vertices(
    buffer: Buffer,
    vertex_offset: int,
    uv_offset: int,
    count: int,
    vertex_stride: int,
    uv_stride: int,
) -> np.ndarray:
    """
    Decode vertices whose UVs live in a separate region.

    Positions and normals come from the first six floats of each vertex
    record; UVs from the first two floats of each UV record.

    Returns:
        Flat float32 vertex buffer with 8 floats per vertex
    """
    if vertex_stride < 0x18:
        raise MalformedLayout(f"Vertex stride {vertex_stride:#x} too small for position and normal")
    if uv_stride < 0x08:
        raise MalformedLayout(f"UV stride {uv_stride:#x} too small for two floats")

    vertex_block = read_block(buffer, vertex_offset, count * vertex_stride)
    uv_block = read_block(buffer, uv_offset, count * uv_stride)
    vertex_buffer = np.zeros(count * 8, dtype=np.float32)

    for i in range(count):
        for j in range(6):
            vertex_buffer[i * 8 + j] = read_float32(vertex_block, i * vertex_stride + 4 * j)
        vertex_buffer[i * 8 + 6] = read_float32(uv_block, i * uv_stride)
        vertex_buffer[i * 8 + 7] = read_float32(uv_block, i * uv_stride + 4)

    return vertex_buffer


def encode_vertices(
    vertex_buffer: np.ndarray,
    layout: Union[str, VertexLayout],
    weights: Optional[np.ndarray] = None,
    ids: Optional[np.ndarray] = None,
) -> bytes:
    """
    Encode a flat vertex buffer into a target record layout.

    Args:
        vertex_buffer: Flat float32 buffer (6 floats per vertex for skybox,
            8 otherwise)
        layout: Target layout name or VertexLayout
        weights: Packed weights for the skinned layout (zero if omitted)
        ids: Packed bone ids for the skinned layout (zero if omitted)

    Returns:
        Encoded bytes, ``vertex count * stride`` long
    """
    layout = get_layout(layout)
    vertex_buffer = np.ascontiguousarray(vertex_buffer, dtype=np.float32)
    floats = 6 if layout is SKYBOX else 8
    if len(vertex_buffer) % floats:
        raise MalformedLayout(
            f"Vertex buffer of {len(vertex_buffer)} floats is not a multiple of {floats}"
        )

    count = len(vertex_buffer) // floats
    out = bytearray(count * layout.stride)

    if layout is SKYBOX:
        bits = vertex_buffer.view(np.uint32)
        for i in range(count):
            base = i * layout.stride
            for j in range(5):
                write_float32(out, base + 4 * j, vertex_buffer[i * 6 + j])
            write_uint32(out, base + 0x14, bits[i * 6 + 5])
        return bytes(out)

    if layout is UV:
        for i in range(count):
            write_float32(out, i * layout.stride, vertex_buffer[i * 8 + 6])
            write_float32(out, i * layout.stride + 4, vertex_buffer[i * 8 + 7])
        return bytes(out)

    fields = 6 if layout is TIE else 8
    for i in range(count):
        base = i * layout.stride
        for j in range(fields):
            write_float32(out, base + 4 * j, vertex_buffer[i * 8 + j])
        if layout is SKINNED:
            write_uint32(out, base + 0x20, 0 if weights is None else weights[i])
            write_uint32(out, base + 0x24, 0 if ids is None else ids[i])

    return bytes(out)


def decode_indices(buffer: Buffer, offset: int, count: int, index_bias: int = 0) -> np.ndarray:
    """
    Decode ``count`` uint16 indices, subtracting ``index_bias`` from each.

    Subtraction wraps around at 16 bits, like the source format.
    """
    block = read_block(buffer, offset, count * 2)
    indices = np.zeros(count, dtype=np.uint16)
    for i in range(count):
        indices[i] = (read_uint16(block, i * 2) - index_bias) & 0xFFFF
    return indices


def encode_indices(index_buffer: Sequence[int], index_bias: int = 0) -> bytes:
    """Encode indices as uint16, adding ``index_bias`` to each."""
    out = bytearray(len(index_buffer) * 2)
    for i, index in enumerate(index_buffer):
        write_uint16(out, i * 2, int(index) + index_bias)
    return bytes(out)


@dataclass
class TextureConfig:
    """Material draw range over the index buffer."""
    id: int = 0
    start: int = 0
    size: int = 0
    mode: int = 0

    @property
    def face_start(self) -> int:
        return self.start // 3

    @property
    def face_count(self) -> int:
        return self.size // 3


def _texture_offsets(element_size: int) -> Tuple[int, int, int, int]:
    try:
        return TEXTURE_CONFIG_LAYOUTS[element_size]
    except KeyError:
        raise MalformedLayout(f"Unsupported texture config element size: {element_size:#x}") from None


def decode_texture_configs(
    buffer: Buffer,
    pointer: int,
    count: int,
    element_size: int,
    negate: bool = False,
) -> List[TextureConfig]:
    """
    Decode texture config records.

    Args:
        buffer: Source bytes
        pointer: Byte offset of the first record
        count: Number of records
        element_size: 0x10 or 0x18
        negate: Re-base starts so the first record starts at 0

    Returns:
        Texture configs in source order
    """
    id_offset, start_offset, size_offset, mode_offset = _texture_offsets(element_size)
    block = read_block(buffer, pointer, count * element_size)

    configs = []
    for i in range(count):
        base = i * element_size
        configs.append(TextureConfig(
            id=read_int32(block, base + id_offset),
            start=read_int32(block, base + start_offset),
            size=read_int32(block, base + size_offset),
            mode=read_int32(block, base + mode_offset),
        ))

    if negate:
        configs = negate_texture_configs(configs)
    return configs


def negate_texture_configs(configs: Sequence[TextureConfig]) -> List[TextureConfig]:
    """Shift every start by the first config's start, keeping pairwise differences."""
    if not configs:
        return []
    base = configs[0].start
    return [TextureConfig(c.id, c.start - base, c.size, c.mode) for c in configs]


def encode_texture_configs(configs: Sequence[TextureConfig], element_size: int) -> bytes:
    """Encode texture configs; bytes not covered by a field are zero."""
    id_offset, start_offset, size_offset, mode_offset = _texture_offsets(element_size)
    out = bytearray(len(configs) * element_size)
    for i, config in enumerate(configs):
        base = i * element_size
        write_int32(out, base + id_offset, config.id)
        write_int32(out, base + start_offset, config.start)
        write_int32(out, base + size_offset, config.size)
        write_int32(out, base + mode_offset, config.mode)
    return bytes(out)


class Model:
    """
    General purpose 3D model.

    Args:
        vertex_buffer: Flat float32 vertex buffer
        index_buffer: uint16 vertex indices, three per triangle
        texture_config: Draw ranges, one per material
        size: Uniform scale applied to positions on export
        id: Model id from the level data
        weights: Packed per-vertex bone weights (four uint8 per uint32)
        ids: Packed per-vertex bone indices (four uint8 per uint32)
    """

    kind = "standard"
    floats_per_vertex = 8
    has_normals = True
    has_vertex_colors = False

    def __init__(
        self,
        vertex_buffer: Optional[np.ndarray] = None,
        index_buffer: Optional[np.ndarray] = None,
        texture_config: Optional[List[TextureConfig]] = None,
        size: float = 1.0,
        id: int = 0,
        weights: Optional[np.ndarray] = None,
        ids: Optional[np.ndarray] = None,
    ):
        self.id = id
        self.size = size
        self.vertex_buffer = np.asarray(
            vertex_buffer if vertex_buffer is not None else [], dtype=np.float32
        )
        self.index_buffer = np.asarray(
            index_buffer if index_buffer is not None else [], dtype=np.uint16
        )
        self.texture_config: List[TextureConfig] = list(texture_config or [])
        self.weights = np.asarray(weights if weights is not None else [], dtype=np.uint32)
        self.ids = np.asarray(ids if ids is not None else [], dtype=np.uint32)

    @property
    def vertex_count(self) -> int:
        return len(self.vertex_buffer) // self.floats_per_vertex

    def vertices(self) -> np.ndarray:
        return self.vertex_buffer

    def indices(self) -> np.ndarray:
        return self.index_buffer

    def texture_configs(self) -> List[TextureConfig]:
        return self.texture_config

    def get_weights(self) -> np.ndarray:
        return self.weights

    def get_ids(self) -> np.ndarray:
        return self.ids

    def face_count(self) -> int:
        """Total index count covered by the texture configs."""
        return sum(config.size for config in self.texture_config)

    def _columns(self) -> np.ndarray:
        return self.vertex_buffer.reshape(-1, self.floats_per_vertex)

    def positions(self) -> np.ndarray:
        """Nx3 positions in model units (before size scaling)."""
        return self._columns()[:, 0:3]

    def normals(self) -> Optional[np.ndarray]:
        return self._columns()[:, 3:6]

    def uvs(self) -> np.ndarray:
        return self._columns()[:, 6:8]

    def vertex_colors(self) -> Optional[np.ndarray]:
        """Nx4 float RGBA colours, or None when the variant has none."""
        return None

    def triangles(self) -> np.ndarray:
        """Fx3 vertex indices."""
        return self.index_buffer.reshape(-1, 3)


class StandardModel(Model):
    """Mesh with position, normal and uv per vertex."""


def _abgr_to_rgba(abgr: np.ndarray) -> np.ndarray:
    """Reorder bytes stored as (a, b, g, r) into float RGBA in [0, 1]."""
    return abgr[:, ::-1].astype(np.float32) / np.float32(255.0)


class SkyboxModel(Model):
    """Skybox mesh: no normals, packed vertex colour in the sixth float."""

    kind = "skybox"
    floats_per_vertex = 6
    has_normals = False
    has_vertex_colors = True

    def normals(self) -> Optional[np.ndarray]:
        return None

    def uvs(self) -> np.ndarray:
        return self._columns()[:, 3:5]

    def packed_colors(self) -> np.ndarray:
        """Raw uint32 colour per vertex."""
        return np.ascontiguousarray(self._columns()[:, 5]).view(np.uint32)

    def vertex_colors(self) -> np.ndarray:
        abgr = self.packed_colors().astype("<u4").view(np.uint8).reshape(-1, 4)
        return _abgr_to_rgba(abgr)


class TerrainModel(Model):
    """Terrain mesh with a separate per-vertex byte colour buffer."""

    kind = "terrain"
    has_vertex_colors = True

    def __init__(self, *args, rgbas: Optional[bytes] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.rgbas = np.frombuffer(bytes(rgbas or b""), dtype=np.uint8).copy()

    def vertex_colors(self) -> np.ndarray:
        return _abgr_to_rgba(self.rgbas[: self.vertex_count * 4].reshape(-1, 4))


class SkinnedModel(Model):
    """
    Mesh bound to a bone skeleton, with its animation clips.

    Per-vertex skin data is read through `get_weights()` and `get_ids()`,
    the bone hierarchy through the `skeleton` property and the clips from
    the `animations` list.

    Args:
        bone_matrices: Rest transforms, one per bone
        bone_datas: Rest translations, one per bone
        animations: Animation clips
        bone_count: Number of animated bones (defaults to len(bone_matrices))
    """

    kind = "skinned"

    def __init__(
        self,
        *args,
        bone_matrices: Optional[List[BoneMatrix]] = None,
        bone_datas: Optional[List[BoneData]] = None,
        animations: Optional[List[Animation]] = None,
        bone_count: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.bone_matrices: List[BoneMatrix] = list(bone_matrices or [])
        self.bone_datas: List[BoneData] = list(bone_datas or [])
        self.animations: List[Animation] = list(animations or [])
        self.bone_count = len(self.bone_matrices) if bone_count is None else bone_count
        self._skeleton: Optional[Skeleton] = build_skeleton(self.bone_matrices)

    @property
    def skeleton(self) -> Optional[Skeleton]:
        return self._skeleton

    def rest_translation(self, bone: int) -> np.ndarray:
        """Rest translation of a bone; zero when no bone data is present."""
        if bone < len(self.bone_datas):
            return self.bone_datas[bone].translation
        return np.zeros(3, dtype=np.float32)


MODEL_KINDS = {
    cls.kind: cls for cls in (StandardModel, SkyboxModel, TerrainModel, SkinnedModel)
}
