"""
Model descriptors: where a model lives inside a raw level file.

A descriptor is a small JSON document naming the byte regions of one model.
Pointers may be written as integers or as hex strings ("0x1A40").

Example descriptor:
    {
      "kind": "skinned",
      "id": 12,
      "size": 0.5,
      "vertices": {"pointer": "0x100", "count": 24, "stride": "0x28"},
      "indices": {"pointer": "0x4C0", "count": 36},
      "textures": {"pointer": "0x520", "count": 2, "element_size": "0x10"},
      "skeleton": {
        "bone_matrix_pointer": "0x540",
        "bone_count": 3,
        "bone_data_pointer": "0x600",
        "animation_pointers": ["0x630"]
      }
    }
"""

from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import json
import logging

from levelforge.animation import Animation
from levelforge.codec import Buffer, read_block
from levelforge.errors import MalformedLayout
from levelforge.mesh import (
    MODEL_KINDS,
    SKINNED,
    SKYBOX,
    STANDARD,
    TEXTURE_CONFIG_LAYOUTS,
    Model,
    SkinnedModel,
    TerrainModel,
    decode_indices,
    decode_split_vertices,
    decode_texture_configs,
    decode_vertices,
)
from levelforge.skeleton import BoneData, BoneMatrix

logger = logging.getLogger(__name__)


def _parse_int(value: Union[int, str, None]) -> Optional[int]:
    """Accept ints and decimal or 0x-prefixed strings."""
    if value is None:
        return None
    if isinstance(value, str):
        return int(value, 0)
    return int(value)


@dataclass
class VertexRegion:
    """Interleaved vertex records, optionally with UVs in a separate region."""
    pointer: int = 0
    count: int = 0
    stride: int = 0x20
    uv_pointer: Optional[int] = None
    uv_stride: int = 0x08

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "VertexRegion":
        return cls(
            pointer=_parse_int(d.get("pointer", 0)),
            count=_parse_int(d.get("count", 0)),
            stride=_parse_int(d.get("stride", 0x20)),
            uv_pointer=_parse_int(d.get("uv_pointer")),
            uv_stride=_parse_int(d.get("uv_stride", 0x08)),
        )


@dataclass
class IndexRegion:
    """uint16 index buffer and the bias subtracted from each index."""
    pointer: int = 0
    count: int = 0
    bias: int = 0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "IndexRegion":
        return cls(
            pointer=_parse_int(d.get("pointer", 0)),
            count=_parse_int(d.get("count", 0)),
            bias=_parse_int(d.get("bias", 0)),
        )


@dataclass
class TextureRegion:
    """Texture config records."""
    pointer: int = 0
    count: int = 0
    element_size: int = 0x10
    negate: bool = False

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TextureRegion":
        return cls(
            pointer=_parse_int(d.get("pointer", 0)),
            count=_parse_int(d.get("count", 0)),
            element_size=_parse_int(d.get("element_size", 0x10)),
            negate=bool(d.get("negate", False)),
        )


@dataclass
class SkeletonRegion:
    """Bone records and animation clips of a skinned model."""
    bone_matrix_pointer: int = 0
    bone_count: int = 0
    bone_data_pointer: Optional[int] = None
    animation_pointers: List[int] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SkeletonRegion":
        return cls(
            bone_matrix_pointer=_parse_int(d.get("bone_matrix_pointer", 0)),
            bone_count=_parse_int(d.get("bone_count", 0)),
            bone_data_pointer=_parse_int(d.get("bone_data_pointer")),
            animation_pointers=[_parse_int(p) for p in d.get("animation_pointers", [])],
        )


@dataclass
class ModelDescriptor:
    """
    Location of one model inside a raw binary file.

    Required fields:
    - kind: "standard", "skybox", "terrain" or "skinned"
    - vertices, indices, textures: Byte regions of the mesh buffers

    Optional fields:
    - rgba_pointer: Per-vertex colour bytes (terrain)
    - skeleton: Bone and animation regions (skinned)
    """
    kind: str = "standard"
    id: int = 0
    size: float = 1.0
    vertices: VertexRegion = field(default_factory=VertexRegion)
    indices: IndexRegion = field(default_factory=IndexRegion)
    textures: TextureRegion = field(default_factory=TextureRegion)
    rgba_pointer: Optional[int] = None
    skeleton: Optional[SkeletonRegion] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        d = {
            "kind": self.kind,
            "id": self.id,
            "size": self.size,
            "vertices": {k: v for k, v in asdict(self.vertices).items() if v is not None},
            "indices": asdict(self.indices),
            "textures": asdict(self.textures),
        }
        if self.rgba_pointer is not None:
            d["rgba_pointer"] = self.rgba_pointer
        if self.skeleton:
            d["skeleton"] = {k: v for k, v in asdict(self.skeleton).items() if v is not None}
        return d

    def to_json(self, indent: int = 2) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ModelDescriptor":
        """Create ModelDescriptor from dictionary."""
        skeleton = None
        if d.get("skeleton"):
            skeleton = SkeletonRegion.from_dict(d["skeleton"])

        return cls(
            kind=d.get("kind", "standard"),
            id=_parse_int(d.get("id", 0)),
            size=float(d.get("size", 1.0)),
            vertices=VertexRegion.from_dict(d.get("vertices", {})),
            indices=IndexRegion.from_dict(d.get("indices", {})),
            textures=TextureRegion.from_dict(d.get("textures", {})),
            rgba_pointer=_parse_int(d.get("rgba_pointer")),
            skeleton=skeleton,
        )

    @classmethod
    def from_json(cls, json_str: str) -> "ModelDescriptor":
        """Create ModelDescriptor from JSON string."""
        return cls.from_dict(json.loads(json_str))

    def validate(self) -> List[str]:
        """
        Check the descriptor for consistency before touching any data.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if self.kind not in MODEL_KINDS:
            errors.append(f"Unknown model kind: {self.kind}")

        for name, value in [
            ("vertices.pointer", self.vertices.pointer),
            ("vertices.count", self.vertices.count),
            ("indices.pointer", self.indices.pointer),
            ("indices.count", self.indices.count),
            ("textures.pointer", self.textures.pointer),
            ("textures.count", self.textures.count),
        ]:
            if value < 0:
                errors.append(f"{name} must not be negative: {value}")

        if self.indices.count % 3:
            errors.append(f"indices.count {self.indices.count} is not a multiple of 3")

        if self.textures.element_size not in TEXTURE_CONFIG_LAYOUTS:
            errors.append(f"Unsupported texture element size: {self.textures.element_size:#x}")

        expected = _layout_for_kind(self.kind)
        if self.vertices.uv_pointer is not None:
            if self.kind in ("skybox", "skinned"):
                errors.append(f"Split UVs are not supported for {self.kind} models")
        elif expected is not None and self.vertices.stride != expected.stride:
            errors.append(
                f"Vertex stride {self.vertices.stride:#x} does not match {self.kind} layout ({expected.stride:#x})"
            )

        if self.kind == "terrain" and self.rgba_pointer is None:
            errors.append("Terrain models need an rgba_pointer")

        if self.skeleton is not None:
            if self.kind != "skinned":
                errors.append(f"Skeleton given for a {self.kind} model")
            if self.skeleton.bone_count < 0:
                errors.append(f"Negative bone count: {self.skeleton.bone_count}")
        elif self.kind == "skinned":
            errors.append("Skinned models need a skeleton region")

        return errors


def _layout_for_kind(kind: str):
    return {"standard": STANDARD, "terrain": STANDARD, "skybox": SKYBOX, "skinned": SKINNED}.get(kind)


def load_descriptor(path: Union[str, Path]) -> ModelDescriptor:
    """Read a descriptor from a JSON file."""
    return ModelDescriptor.from_json(Path(path).read_text(encoding="utf-8"))


def load_model(data: Buffer, descriptor: ModelDescriptor) -> Model:
    """
    Decode a model from raw bytes.

    Args:
        data: Contents of the level file
        descriptor: Regions of the model inside ``data``

    Returns:
        Model of the class named by ``descriptor.kind``

    Raises:
        MalformedLayout: If the descriptor is inconsistent
        BoundsError: If a region runs past the end of ``data``
    """
    errors = descriptor.validate()
    if errors:
        raise MalformedLayout("; ".join(errors))

    vertices = descriptor.vertices
    weights = ids = None
    if vertices.uv_pointer is not None:
        vertex_buffer = decode_split_vertices(
            data, vertices.pointer, vertices.uv_pointer, vertices.count, vertices.stride, vertices.uv_stride
        )
    else:
        vertex_buffer, weights, ids = decode_vertices(
            data, vertices.pointer, vertices.count, _layout_for_kind(descriptor.kind)
        )

    index_buffer = decode_indices(data, descriptor.indices.pointer, descriptor.indices.count, descriptor.indices.bias)
    textures = descriptor.textures
    texture_config = decode_texture_configs(
        data, textures.pointer, textures.count, textures.element_size, negate=textures.negate
    )

    common = dict(
        vertex_buffer=vertex_buffer,
        index_buffer=index_buffer,
        texture_config=texture_config,
        size=descriptor.size,
        id=descriptor.id,
        weights=weights,
        ids=ids,
    )
    logger.debug(
        "Loaded %s model %d: %d vertices, %d indices, %d texture configs",
        descriptor.kind, descriptor.id, vertices.count, len(index_buffer), len(texture_config),
    )

    if descriptor.kind == "terrain":
        rgbas = read_block(data, descriptor.rgba_pointer, vertices.count * 4)
        return TerrainModel(rgbas=rgbas, **common)

    if descriptor.kind == "skinned":
        skeleton = descriptor.skeleton
        count = skeleton.bone_count
        matrix_block = read_block(data, skeleton.bone_matrix_pointer, count * BoneMatrix.ELEMENT_SIZE)
        bone_matrices = [BoneMatrix.decode(matrix_block, i) for i in range(count)]

        bone_datas = []
        if skeleton.bone_data_pointer is not None:
            data_block = read_block(data, skeleton.bone_data_pointer, count * BoneData.ELEMENT_SIZE)
            bone_datas = [BoneData.decode(data_block, i) for i in range(count)]

        animations = [Animation.decode(data, pointer, count) for pointer in skeleton.animation_pointers]
        logger.debug("Model %d: %d bones, %d animations", descriptor.id, count, len(animations))

        try:
            return SkinnedModel(
                bone_matrices=bone_matrices,
                bone_datas=bone_datas,
                animations=animations,
                bone_count=count,
                **common,
            )
        except ValueError as e:
            raise MalformedLayout(f"Invalid skeleton: {e}") from e

    return MODEL_KINDS[descriptor.kind](**common)
