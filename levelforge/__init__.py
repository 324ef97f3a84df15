"""
levelforge - Decode level model data and export it as COLLADA scenes.

Pieces:
- codec / records: bounds-checked little-endian fixed-record access
- mesh: vertex, index and texture config buffers and model variants
- skeleton / animation: bone hierarchies and quantized rotation clips
- collada: .dae export with skin controllers and animations
- descriptor / validate: locating models in raw files and checking them
"""

__version__ = "0.1.0"

from levelforge.collada import ColladaExporter, export_model
from levelforge.descriptor import ModelDescriptor, load_descriptor, load_model
from levelforge.errors import (
    BoundsError,
    ClipIndexOutOfRange,
    IndexOutOfRange,
    LevelForgeError,
    MalformedLayout,
    MissingSkeleton,
)
from levelforge.mesh import Model, SkinnedModel, SkyboxModel, StandardModel, TerrainModel, TextureConfig
from levelforge.settings import AnimationChoice, ExportSettings
from levelforge.validate import validate_model

__all__ = [
    "ColladaExporter",
    "export_model",
    "ModelDescriptor",
    "load_descriptor",
    "load_model",
    "BoundsError",
    "ClipIndexOutOfRange",
    "IndexOutOfRange",
    "LevelForgeError",
    "MalformedLayout",
    "MissingSkeleton",
    "Model",
    "SkinnedModel",
    "SkyboxModel",
    "StandardModel",
    "TerrainModel",
    "TextureConfig",
    "AnimationChoice",
    "ExportSettings",
    "validate_model",
]
