"""
COLLADA (.dae) scene export for level models.

A document is assembled fully in memory, section by section, in this order:

1. asset metadata
2. images, effects, materials (one per texture config)
3. geometry: positions, normals, vertex colours, uvs, one triangle block
   per texture config
4. skin controller: joints, weights, inverse bind matrices (skinned models)
5. animations (skinned models, when requested)
6. visual scene graph and scene reference

It is then written to a temporary file next to the target and renamed into
place, so a failed export never leaves a truncated document behind.

Number formatting is locale independent: each value is written as the
shortest positional decimal that round-trips its float32 value.
"""

import logging
import os
import tempfile
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

import numpy as np

from levelforge.animation import Animation, Frame, sequential_frame_times
from levelforge.errors import ClipIndexOutOfRange, IndexOutOfRange, MalformedLayout, MissingSkeleton
from levelforge.geometry import correct_winding
from levelforge.mesh import Model, SkinnedModel, TerrainModel
from levelforge.settings import AnimationChoice, ExportSettings
from levelforge.skeleton import Skeleton, bone_tip, inverse_bind_matrices, joint_matrix

logger = logging.getLogger(__name__)

NAMESPACE = "http://www.collada.org/2005/11/COLLADASchema"
VERSION = "1.4.1"
FILE_ENDING = ".dae"
IDENTITY_MATRIX = "1 0 0 0 0 1 0 0 0 0 1 0 0 0 0 1"


def format_float(value: float) -> str:
    """Shortest round-tripping positional decimal of a float32 value."""
    return np.format_float_positional(np.float32(value), unique=True, trim="-")


def format_floats(values: Iterable[float]) -> str:
    return " ".join(format_float(v) for v in values)


def format_matrix(matrix: np.ndarray) -> str:
    """Row-major 4x4 matrix as 16 space separated numbers."""
    return format_floats(np.asarray(matrix).reshape(16))


def _matrix_values(matrices: Iterable[np.ndarray]) -> List[str]:
    """Flatten 4x4 matrices into one formatted value per element."""
    return [format_float(v) for matrix in matrices for v in np.asarray(matrix).reshape(16)]


def _sub(parent: ET.Element, tag: str, text: Optional[str] = None, **attrib) -> ET.Element:
    element = ET.SubElement(parent, tag, {k: str(v) for k, v in attrib.items()})
    if text is not None:
        element.text = text
    return element


def _add_source(
    parent: ET.Element,
    source_id: str,
    array_id: str,
    values: Sequence,
    params: Sequence[str],
    param_type: str = "float",
    array_tag: str = "float_array",
    stride: Optional[int] = None,
) -> ET.Element:
    """
    Append a <source> with one data array and its accessor.

    ``values`` are already formatted strings; the accessor count is
    ``len(values) / stride``.
    """
    stride = stride or len(params)
    source = _sub(parent, "source", id=source_id)
    _sub(source, array_tag, " ".join(values), id=array_id, count=len(values))
    technique = _sub(source, "technique_common")
    accessor = _sub(technique, "accessor", source=f"#{array_id}", count=len(values) // stride, stride=stride)
    for name in params:
        _sub(accessor, "param", name=name, type=param_type)
    return source


@dataclass
class _Clip:
    """One <animation> block: a name plus the clips that feed its timeline."""
    name: str
    animations: List[Animation] = field(default_factory=list)

    @property
    def frames(self) -> List[Frame]:
        return [frame for animation in self.animations for frame in animation.frames]


@dataclass
class _Document:
    """Working state while one document is assembled."""
    model: Model
    root: ET.Element
    positions: np.ndarray
    normals: Optional[np.ndarray]
    skinned: bool
    clips: List[_Clip] = field(default_factory=list)


class ColladaExporter:
    """
    Export models to COLLADA documents.

    Args:
        settings: Export options (defaults to ExportSettings())

    Example:
        >>> exporter = ColladaExporter(ExportSettings(animation_choice=AnimationChoice.ALL_SEQUENTIAL))
        >>> exporter.export_model("out/moby.dae", model)
    """

    def __init__(self, settings: Optional[ExportSettings] = None):
        self.settings = settings or ExportSettings()

    @staticmethod
    def file_ending() -> str:
        return FILE_ENDING

    # ====== Public entry points ======

    def export_model(
        self,
        file_name: Union[str, Path],
        model: Model,
        animations: Optional[List[Animation]] = None,
    ) -> List[Path]:
        """
        Export a model to one or more .dae files.

        With ALL_SEPARATE and split_files set, a skinned model with clips is
        written once per animation as ``<base>_<index><ext>``; otherwise a
        single file is written.

        Args:
            file_name: Output path
            model: Model to export
            animations: Clips to use instead of the model's own

        Returns:
            Paths of the written files
        """
        file_name = Path(file_name)
        skinned = _has_skeleton(model)
        clips = self._source_animations(model, animations) if skinned else []

        if (
            skinned
            and self.settings.animation_index is None
            and self.settings.animation_choice == AnimationChoice.ALL_SEPARATE
            and self.settings.split_files
            and clips
        ):
            written = []
            for index in range(len(clips)):
                path = file_name.with_name(f"{file_name.stem}_{index}{file_name.suffix}")
                tree = self.build_document(model, animations, animation_index=index)
                written.append(write_document(tree, path))
            return written

        tree = self.build_document(model, animations)
        return [write_document(tree, file_name)]

    def to_bytes(
        self,
        model: Model,
        animations: Optional[List[Animation]] = None,
        animation_index: Optional[int] = None,
    ) -> bytes:
        """Build a document and return it serialized as UTF-8 XML."""
        tree = self.build_document(model, animations, animation_index)
        return ET.tostring(tree.getroot(), encoding="utf-8", xml_declaration=True)

    def build_document(
        self,
        model: Model,
        animations: Optional[List[Animation]] = None,
        animation_index: Optional[int] = None,
    ) -> ET.ElementTree:
        """
        Assemble the complete document for a model in memory.

        Args:
            model: Model to export
            animations: Clips to use instead of the model's own
            animation_index: Write only this clip (defaults to the settings)

        Returns:
            ElementTree of the document

        Raises:
            MissingSkeleton: If a clip is selected for a model without bones
            IndexOutOfRange: If a triangle references a missing vertex
            MalformedLayout: If buffers and texture configs disagree
        """
        if animation_index is None:
            animation_index = self.settings.animation_index

        skinned = _has_skeleton(model)
        if animation_index is not None and not skinned:
            raise MissingSkeleton(f"Model {model.id} has no bones to animate")

        positions = (model.positions() * np.float32(model.size)).astype(np.float32)
        root = ET.Element("COLLADA", {"xmlns": NAMESPACE, "version": VERSION})
        doc = _Document(
            model=model,
            root=root,
            positions=positions,
            normals=model.normals(),
            skinned=skinned,
        )
        if skinned:
            doc.clips = self._select_clips(self._source_animations(model, animations), animation_index)

        stages = [
            self._write_asset,
            self._write_images,
            self._write_effects,
            self._write_materials,
            self._write_geometry,
        ]
        if skinned:
            stages.append(self._write_controller)
            if doc.clips:
                stages.append(self._write_animations)
        stages.extend([self._write_visual_scene, self._write_scene])

        for stage in stages:
            logger.debug("Model %d: %s", model.id, stage.__name__.lstrip("_"))
            stage(doc)

        tree = ET.ElementTree(root)
        ET.indent(tree, space="\t")
        return tree

    # ====== Animation selection ======

    @staticmethod
    def _source_animations(model: Model, animations: Optional[List[Animation]]) -> List[Animation]:
        if animations is not None:
            return list(animations)
        return list(getattr(model, "animations", []))

    def _select_clips(self, animations: List[Animation], animation_index: Optional[int]) -> List[_Clip]:
        if animation_index is not None:
            if not 0 <= animation_index < len(animations):
                raise ClipIndexOutOfRange(animation_index, len(animations))
            return [_Clip(f"Anim{animation_index}", [animations[animation_index]])]

        choice = self.settings.animation_choice
        if choice == AnimationChoice.NONE or not animations:
            return []
        if choice == AnimationChoice.ALL_SEQUENTIAL:
            return [_Clip("Anim", animations)]
        return [_Clip(f"Anim{i}", [animation]) for i, animation in enumerate(animations)]

    # ====== Stages ======

    def _write_asset(self, doc: _Document) -> None:
        asset = _sub(doc.root, "asset")
        contributor = _sub(asset, "contributor")
        _sub(contributor, "author", self.settings.author)
        _sub(contributor, "authoring_tool", self.settings.authoring_tool)
        timestamp = self.settings.timestamp()
        _sub(asset, "created", timestamp)
        _sub(asset, "modified", timestamp)
        _sub(asset, "unit", name="meter", meter="1")
        _sub(asset, "up_axis", self.settings.up_axis)

    def _write_images(self, doc: _Document) -> None:
        library = _sub(doc.root, "library_images")
        for config in doc.model.texture_config:
            image = _sub(library, "image", id=f"texture_{config.id}")
            _sub(image, "init_from", f"{config.id}.png")

    def _write_effects(self, doc: _Document) -> None:
        library = _sub(doc.root, "library_effects")
        for config in doc.model.texture_config:
            effect = _sub(library, "effect", id=f"effect_{config.id}")
            profile = _sub(effect, "profile_COMMON")

            surface_param = _sub(profile, "newparam", sid=f"surface_{config.id}")
            surface = _sub(surface_param, "surface", type="2D")
            _sub(surface, "init_from", f"texture_{config.id}")
            _sub(surface, "format", "A8R8G8B8")

            sampler_param = _sub(profile, "newparam", sid=f"sampler_{config.id}")
            sampler = _sub(sampler_param, "sampler2D")
            _sub(sampler, "source", f"surface_{config.id}")
            _sub(sampler, "minfilter", "LINEAR_MIPMAP_LINEAR")
            _sub(sampler, "magfilter", "LINEAR")

            technique = _sub(profile, "technique", sid="common")
            lambert = _sub(technique, "lambert")
            diffuse = _sub(lambert, "diffuse")
            _sub(diffuse, "texture", texture=f"sampler_{config.id}", texcoord=f"texcoord_{config.id}")

    def _write_materials(self, doc: _Document) -> None:
        library = _sub(doc.root, "library_materials")
        for config in doc.model.texture_config:
            material = _sub(library, "material", id=f"material_{config.id}")
            _sub(material, "instance_effect", url=f"#effect_{config.id}")

    def _write_geometry(self, doc: _Document) -> None:
        model = doc.model
        vertex_count = model.vertex_count

        library = _sub(doc.root, "library_geometries")
        geometry = _sub(library, "geometry", id="Model")
        mesh = _sub(geometry, "mesh")

        _add_source(
            mesh, "Model_positions", "Model_positions_array",
            [format_float(v) for v in doc.positions.reshape(-1)],
            ["X", "Y", "Z"],
        )
        if doc.normals is not None:
            _add_source(
                mesh, "Model_normals", "Model_normals_array",
                [format_float(v) for v in doc.normals.reshape(-1)],
                ["X", "Y", "Z"],
            )
        if isinstance(model, TerrainModel) and len(model.rgbas) < vertex_count * 4:
            raise MalformedLayout(
                f"Terrain model {model.id} has {len(model.rgbas)} colour bytes for {vertex_count} vertices"
            )
        colors = model.vertex_colors()
        if colors is not None:
            _add_source(
                mesh, "Model_vertex_colors", "Model_vertex_colors_array",
                [format_float(v) for v in colors.reshape(-1)],
                ["R", "G", "B", "A"],
            )
        uvs = model.uvs().astype(np.float32)
        uvs[:, 1] = np.float32(1.0) - uvs[:, 1]
        _add_source(
            mesh, "Model_uvs", "Model_uvs_array",
            [format_float(v) for v in uvs.reshape(-1)],
            ["S", "T"],
        )

        vertices = _sub(mesh, "vertices", id="Model_vertices")
        _sub(vertices, "input", semantic="POSITION", source="#Model_positions")

        indices = model.index_buffer
        for config in model.texture_config:
            first = config.start // 3
            face_count = config.size // 3
            if (first + face_count) * 3 > len(indices) or first < 0:
                raise MalformedLayout(
                    f"Texture config {config.id} covers indices {config.start}..{config.start + config.size} "
                    f"beyond the {len(indices)}-entry index buffer"
                )

            triangles = _sub(mesh, "triangles", count=face_count, material=f"material_symbol_{config.id}")
            _sub(triangles, "input", semantic="VERTEX", source="#Model_vertices", offset=0)
            if doc.normals is not None:
                _sub(triangles, "input", semantic="NORMAL", source="#Model_normals", offset=0)
            _sub(triangles, "input", semantic="TEXCOORD", source="#Model_uvs", offset=0, set=0)
            if colors is not None:
                _sub(triangles, "input", semantic="COLOR", source="#Model_vertex_colors", offset=0)

            p = []
            for face in range(first, first + face_count):
                f1, f2, f3 = (int(i) for i in indices[face * 3:face * 3 + 3])
                for index in (f1, f2, f3):
                    if index >= vertex_count:
                        raise IndexOutOfRange(index, vertex_count)
                p.extend(correct_winding(doc.positions, doc.normals, f1, f2, f3))
            _sub(triangles, "p", " ".join(str(i) for i in p))

        logger.debug("Model %d: %d vertices, %d faces", model.id, vertex_count, model.face_count() // 3)

    def _write_controller(self, doc: _Document) -> None:
        model: SkinnedModel = doc.model
        skeleton = model.skeleton
        vertex_count = model.vertex_count

        if len(model.weights) < vertex_count or len(model.ids) < vertex_count:
            raise MalformedLayout(
                f"Skinned model {model.id} has {len(model.weights)} weights and {len(model.ids)} ids "
                f"for {vertex_count} vertices"
            )
        weight_bytes = model.weights[:vertex_count].astype("<u4").view(np.uint8).reshape(-1, 4)
        id_bytes = model.ids[:vertex_count].astype("<u4").view(np.uint8).reshape(-1, 4)

        library = _sub(doc.root, "library_controllers")
        controller = _sub(library, "controller", id="Armature", name="Armature")
        skin = _sub(controller, "skin", source="#Model")
        _sub(skin, "bind_shape_matrix", IDENTITY_MATRIX)

        _add_source(
            skin, "Joints", "JointsArray",
            [f"J{bone.id}" for bone in skeleton.bone_matrices],
            ["JOINT"], param_type="Name", array_tag="Name_array",
        )

        weights = []
        vcount = []
        v = []
        for vertex in range(vertex_count):
            influences = 0
            for slot in range(4):
                weight = weight_bytes[vertex, slot]
                if weight == 0:
                    continue
                v.extend([str(id_bytes[vertex, slot]), str(len(weights))])
                weights.append(format_float(weight / 255.0))
                influences += 1
            vcount.append(str(influences))

        _add_source(skin, "Weights", "WeightsArray", weights, ["WEIGHT"])
        _add_source(
            skin, "InvBindMats", "InvBindMatsArray",
            _matrix_values(inverse_bind_matrices(skeleton, model.size)),
            ["TRANSFORM"], param_type="float4x4", stride=16,
        )

        joints = _sub(skin, "joints")
        _sub(joints, "input", semantic="JOINT", source="#Joints")
        _sub(joints, "input", semantic="INV_BIND_MATRIX", source="#InvBindMats")

        vertex_weights = _sub(skin, "vertex_weights", count=vertex_count)
        _sub(vertex_weights, "input", semantic="JOINT", source="#Joints", offset=0)
        _sub(vertex_weights, "input", semantic="WEIGHT", source="#Weights", offset=1)
        _sub(vertex_weights, "vcount", " ".join(vcount))
        _sub(vertex_weights, "v", " ".join(v))

    def _write_animations(self, doc: _Document) -> None:
        library = _sub(doc.root, "library_animations")
        for clip in doc.clips:
            self._write_clip(library, clip, doc.model)

    def _write_clip(self, library: ET.Element, clip: _Clip, model: SkinnedModel) -> None:
        frames = clip.frames
        times = [format_float(t) for t in sequential_frame_times(clip.animations)]
        interpolations = ["LINEAR"] * len(frames)

        animation = _sub(library, "animation", id=clip.name, name=clip.name)
        for bone in range(model.bone_count):
            for frame in frames:
                if bone >= frame.bone_count:
                    raise MalformedLayout(
                        f"{clip.name}: frame has {frame.bone_count} rotations, model has {model.bone_count} bones"
                    )

            channel = f"{clip.name}_{bone}"
            translation = model.rest_translation(bone)
            transforms = _matrix_values(frame.transform(bone, translation, model.size) for frame in frames)

            bone_animation = _sub(animation, "animation", id=channel, name=channel)
            _add_source(bone_animation, f"{channel}Input", f"{channel}InputArray", times, ["TIME"])
            _add_source(
                bone_animation, f"{channel}Output", f"{channel}OutputArray", transforms,
                ["TRANSFORM"], param_type="float4x4", stride=16,
            )
            _add_source(
                bone_animation, f"{channel}Interp", f"{channel}InterpArray", interpolations,
                ["INTERPOLATION"], param_type="Name", array_tag="Name_array",
            )
            sampler = _sub(bone_animation, "sampler", id=f"{channel}Sampler")
            _sub(sampler, "input", semantic="INPUT", source=f"#{channel}Input")
            _sub(sampler, "input", semantic="OUTPUT", source=f"#{channel}Output")
            _sub(sampler, "input", semantic="INTERPOLATION", source=f"#{channel}Interp")
            _sub(bone_animation, "channel", source=f"#{channel}Sampler", target=f"Skel{_joint_id(model, bone)}/transform")

    def _write_visual_scene(self, doc: _Document) -> None:
        model = doc.model
        library = _sub(doc.root, "library_visual_scenes")
        scene = _sub(library, "visual_scene", id="Scene", name="Scene")

        if doc.skinned:
            _write_joint(scene, model.skeleton, model.skeleton.root, model.size)

        node = _sub(scene, "node", id="Object", name="Object", type="NODE")
        _sub(node, "matrix", IDENTITY_MATRIX, sid="transform")
        if doc.skinned:
            instance = _sub(node, "instance_controller", url="#Armature", name="Armature")
            root_id = model.skeleton.bone(model.skeleton.root).id
            _sub(instance, "skeleton", f"#Skel{root_id}")
        else:
            instance = _sub(node, "instance_geometry", url="#Model", name="Model")

        bind_material = _sub(instance, "bind_material")
        technique = _sub(bind_material, "technique_common")
        for config in model.texture_config:
            material = _sub(
                technique, "instance_material",
                symbol=f"material_symbol_{config.id}", target=f"#material_{config.id}",
            )
            _sub(
                material, "bind_vertex_input",
                semantic=f"texcoord_{config.id}", input_semantic="TEXCOORD", input_set=0,
            )

    def _write_scene(self, doc: _Document) -> None:
        scene = _sub(doc.root, "scene")
        _sub(scene, "instance_visual_scene", url="#Scene")


def _has_skeleton(model: Model) -> bool:
    return isinstance(model, SkinnedModel) and model.bone_count != 0 and model.skeleton is not None


def _joint_id(model: SkinnedModel, bone: int) -> int:
    if bone < len(model.bone_matrices):
        return model.bone_matrices[bone].id
    return bone


def _write_joint(parent: ET.Element, skeleton: Skeleton, node: int, size: float) -> None:
    """Append a joint node and, recursively, its children in source order."""
    bone = skeleton.bone(node)
    element = _sub(parent, "node", id=f"Skel{bone.id}", sid=f"J{bone.id}", name=f"Skel{bone.id}", type="JOINT")
    _sub(element, "matrix", format_matrix(joint_matrix(skeleton, node, size)), sid="transform")

    tip = bone_tip(bone, size)
    extra = _sub(element, "extra")
    technique = _sub(extra, "technique", profile="blender")
    _sub(technique, "connect", "1")
    _sub(technique, "layer", "0")
    _sub(technique, "roll", "0")
    _sub(technique, "tip_x", format_float(tip[0]))
    _sub(technique, "tip_y", format_float(tip[1]))
    _sub(technique, "tip_z", format_float(tip[2]))

    for child in skeleton.nodes[node].children:
        _write_joint(element, skeleton, child, size)


def write_document(tree: ET.ElementTree, path: Union[str, Path]) -> Path:
    """
    Write a document atomically.

    The XML goes to a temporary file in the target directory which is then
    renamed over ``path``.

    Returns:
        The written path
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            tree.write(f, encoding="utf-8", xml_declaration=True)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise

    logger.info("Wrote %s", path)
    return path


def export_model(
    file_name: Union[str, Path],
    model: Model,
    settings: Optional[ExportSettings] = None,
    animations: Optional[List[Animation]] = None,
) -> List[Path]:
    """Convenience wrapper around ColladaExporter.export_model."""
    return ColladaExporter(settings).export_model(file_name, model, animations)
