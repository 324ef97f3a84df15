"""Tests for collada.py - COLLADA document export."""

import os
import tempfile
import xml.etree.ElementTree as ET
from pathlib import Path

import numpy as np
import pytest

from levelforge.collada import NAMESPACE, ColladaExporter, export_model, format_float
from levelforge.errors import ClipIndexOutOfRange, IndexOutOfRange, MalformedLayout, MissingSkeleton
from levelforge.mesh import SkinnedModel, SkyboxModel, StandardModel, TerrainModel, TextureConfig
from levelforge.settings import AnimationChoice, ExportSettings

from conftest import TETRA_FACES, TETRA_POSITIONS, pack_bytes, tetra_vertex_buffer

NS = {"c": NAMESPACE}
CREATED = "2025-01-01T00:00:00+00:00"


def parse(exporter, model, **kwargs):
    return ET.fromstring(exporter.to_bytes(model, **kwargs))


def floats(element):
    return np.array([float(v) for v in element.text.split()])


def settings(**kwargs):
    return ExportSettings(created=CREATED, **kwargs)


# Stored a, b, g, r
ABGR = [255, 0, 128, 51]
RGBA = ["0.2", "0.5019608", "0", "1"]


def skybox_tetrahedron():
    vertex_buffer = np.zeros(4 * 6, dtype=np.float32)
    columns = vertex_buffer.reshape(-1, 6)
    columns[:, 0:3] = TETRA_POSITIONS
    columns[:, 3:5] = [0.5, 0.25]
    vertex_buffer.view(np.uint32).reshape(-1, 6)[:, 5] = pack_bytes(ABGR)
    return SkyboxModel(
        vertex_buffer=vertex_buffer,
        index_buffer=np.array(TETRA_FACES, dtype=np.uint16),
        texture_config=[TextureConfig(id=2, start=0, size=12)],
    )


def terrain_tetrahedron(rgbas=bytes(ABGR * 4)):
    return TerrainModel(
        vertex_buffer=tetra_vertex_buffer(),
        index_buffer=np.array(TETRA_FACES, dtype=np.uint16),
        texture_config=[TextureConfig(id=2, start=0, size=12)],
        rgbas=rgbas,
    )


class TestFormatFloat:
    """Test locale independent number formatting."""

    def test_integers_have_no_fraction(self):
        assert format_float(1.0) == "1"
        assert format_float(0.0) == "0"
        assert format_float(-512.0) == "-512"

    def test_shortest_float32(self):
        assert format_float(0.1) == "0.1"
        assert format_float(np.float32(1 / 3)) == "0.33333334"

    def test_no_exponent(self):
        assert "e" not in format_float(1e-7)


class TestStaticExport:
    """Test export of a model without bones."""

    def test_document_header(self, tetrahedron):
        root = parse(ColladaExporter(settings()), tetrahedron)

        assert root.tag == f"{{{NAMESPACE}}}COLLADA"
        assert root.get("version") == "1.4.1"
        assert root.find("c:asset/c:up_axis", NS).text == "Z_UP"
        assert root.find("c:asset/c:created", NS).text == CREATED
        assert root.find("c:asset/c:unit", NS).get("name") == "meter"

    def test_materials_per_texture_config(self, tetrahedron):
        root = parse(ColladaExporter(settings()), tetrahedron)

        assert root.find("c:library_images/c:image[@id='texture_7']/c:init_from", NS).text == "7.png"
        assert root.find("c:library_materials/c:material[@id='material_7']/c:instance_effect", NS).get("url") == "#effect_7"
        assert root.find("c:library_effects/c:effect[@id='effect_7']", NS) is not None

    def test_geometry_sources(self, tetrahedron):
        root = parse(ColladaExporter(settings()), tetrahedron)
        mesh = root.find("c:library_geometries/c:geometry[@id='Model']/c:mesh", NS)

        positions = mesh.find("c:source[@id='Model_positions']/c:float_array", NS)
        assert positions.get("count") == "12"
        assert mesh.find("c:source[@id='Model_normals']", NS) is not None
        assert mesh.find("c:source[@id='Model_vertex_colors']", NS) is None

        triangles = mesh.find("c:triangles", NS)
        assert triangles.get("count") == "4"
        assert triangles.get("material") == "material_symbol_7"
        assert [i.get("semantic") for i in triangles.findall("c:input", NS)] == ["VERTEX", "NORMAL", "TEXCOORD"]

    def test_winding_outward(self, tetrahedron):
        """Test every exported triangle faces away from the centre."""
        root = parse(ColladaExporter(settings()), tetrahedron)
        p = root.find("c:library_geometries/c:geometry/c:mesh/c:triangles/c:p", NS)
        faces = np.array([int(i) for i in p.text.split()]).reshape(-1, 3)
        positions = tetrahedron.positions()

        assert len(faces) == 4
        for f1, f2, f3 in faces:
            normal = np.cross(positions[f2] - positions[f1], positions[f3] - positions[f1])
            centroid = positions[[f1, f2, f3]].mean(axis=0)
            assert np.dot(normal, centroid) > 0

    def test_uv_flip(self, tetrahedron):
        root = parse(ColladaExporter(settings()), tetrahedron)
        uvs = floats(root.find("c:library_geometries/c:geometry/c:mesh/c:source[@id='Model_uvs']/c:float_array", NS))

        assert uvs.reshape(-1, 2)[1].tolist() == [1.0, 1.0]
        assert uvs.reshape(-1, 2)[3].tolist() == [0.25, 0.75]

    def test_size_scales_positions(self, tetrahedron):
        tetrahedron.size = 2.0
        root = parse(ColladaExporter(settings()), tetrahedron)
        positions = floats(root.find("c:library_geometries/c:geometry/c:mesh/c:source/c:float_array", NS))

        assert positions[:3].tolist() == [2.0, 2.0, 2.0]

    def test_no_skin_or_animation(self, tetrahedron):
        root = parse(ColladaExporter(settings()), tetrahedron)

        assert root.find("c:library_controllers", NS) is None
        assert root.find("c:library_animations", NS) is None
        instance = root.find("c:library_visual_scenes/c:visual_scene/c:node[@id='Object']/c:instance_geometry", NS)
        assert instance.get("url") == "#Model"
        material = instance.find("c:bind_material/c:technique_common/c:instance_material", NS)
        assert material.get("symbol") == "material_symbol_7"
        assert root.find("c:scene/c:instance_visual_scene", NS).get("url") == "#Scene"

    def test_skinned_without_bones_is_static(self):
        model = SkinnedModel(
            vertex_buffer=tetra_vertex_buffer(),
            index_buffer=np.array(TETRA_FACES, dtype=np.uint16),
            texture_config=[TextureConfig(id=1, start=0, size=12)],
        )
        root = parse(ColladaExporter(settings()), model)

        assert root.find("c:library_controllers", NS) is None


class TestExportErrors:
    """Test failures abort the export without writing anything."""

    def test_index_out_of_range(self, tetrahedron):
        tetrahedron.index_buffer[5] = 4

        with pytest.raises(IndexOutOfRange) as exc:
            ColladaExporter(settings()).build_document(tetrahedron)
        assert exc.value.index == 4
        assert exc.value.vertex_count == 4

    def test_no_partial_file(self, tetrahedron):
        tetrahedron.index_buffer[0] = 100

        with tempfile.TemporaryDirectory() as tmpdir:
            out = Path(tmpdir) / "broken.dae"
            with pytest.raises(IndexOutOfRange):
                export_model(out, tetrahedron, settings())
            assert os.listdir(tmpdir) == []

    def test_texture_range_past_indices(self, tetrahedron):
        tetrahedron.texture_config = [TextureConfig(id=7, start=0, size=15)]

        with pytest.raises(MalformedLayout):
            ColladaExporter(settings()).build_document(tetrahedron)

    def test_animation_without_skeleton(self, tetrahedron):
        with pytest.raises(MissingSkeleton):
            ColladaExporter(settings()).build_document(tetrahedron, animation_index=0)

        with pytest.raises(MissingSkeleton):
            ColladaExporter(settings(animation_index=0)).build_document(tetrahedron)

    def test_animation_index_out_of_range(self, skinned_tetrahedron):
        with pytest.raises(ClipIndexOutOfRange) as exc:
            ColladaExporter(settings()).build_document(skinned_tetrahedron, animation_index=5)
        assert exc.value.index == 5
        assert exc.value.clip_count == 2

    def test_terrain_without_colours(self):
        with pytest.raises(MalformedLayout, match="0 colour bytes for 4 vertices"):
            ColladaExporter(settings()).build_document(terrain_tetrahedron(rgbas=None))

    def test_terrain_short_colours(self):
        with pytest.raises(MalformedLayout, match="5 colour bytes"):
            ColladaExporter(settings()).build_document(terrain_tetrahedron(rgbas=bytes(5)))


class TestColouredExport:
    """Test skybox and terrain models with per-vertex colours."""

    @staticmethod
    def _mesh(model):
        root = parse(ColladaExporter(settings()), model)
        return root.find("c:library_geometries/c:geometry[@id='Model']/c:mesh", NS)

    def test_skybox_has_no_normals(self):
        mesh = self._mesh(skybox_tetrahedron())

        assert mesh.find("c:source[@id='Model_normals']", NS) is None
        triangles = mesh.find("c:triangles", NS)
        assert [i.get("semantic") for i in triangles.findall("c:input", NS)] == ["VERTEX", "TEXCOORD", "COLOR"]

    def test_skybox_colours(self):
        mesh = self._mesh(skybox_tetrahedron())
        colors = mesh.find("c:source[@id='Model_vertex_colors']/c:float_array", NS)
        accessor = mesh.find("c:source[@id='Model_vertex_colors']/c:technique_common/c:accessor", NS)

        assert colors.get("count") == "16"
        assert accessor.get("count") == "4"
        assert colors.text.split()[:4] == RGBA
        color_input = mesh.find("c:triangles/c:input[@semantic='COLOR']", NS)
        assert color_input.get("source") == "#Model_vertex_colors"

    def test_skybox_uvs(self):
        """Test UVs come from the fourth and fifth floats with V flipped."""
        mesh = self._mesh(skybox_tetrahedron())
        uvs = mesh.find("c:source[@id='Model_uvs']/c:float_array", NS).text.split()

        assert uvs[:2] == ["0.5", "0.75"]
        assert len(uvs) == 8

    def test_skybox_winding_unchanged(self):
        mesh = self._mesh(skybox_tetrahedron())
        p = mesh.find("c:triangles/c:p", NS)

        assert [int(i) for i in p.text.split()] == TETRA_FACES

    def test_terrain_colours_and_normals(self):
        mesh = self._mesh(terrain_tetrahedron())

        assert mesh.find("c:source[@id='Model_normals']", NS) is not None
        triangles = mesh.find("c:triangles", NS)
        assert [i.get("semantic") for i in triangles.findall("c:input", NS)] == [
            "VERTEX", "NORMAL", "TEXCOORD", "COLOR",
        ]
        colors = mesh.find("c:source[@id='Model_vertex_colors']/c:float_array", NS).text.split()
        assert colors == RGBA * 4

    def test_terrain_ignores_trailing_colour_bytes(self):
        mesh = self._mesh(terrain_tetrahedron(rgbas=bytes(ABGR * 5)))
        colors = mesh.find("c:source[@id='Model_vertex_colors']/c:float_array", NS)

        assert colors.get("count") == "16"


class TestSkinnedExport:
    """Test skin controller, joints and animations."""

    def test_controller(self, skinned_tetrahedron):
        root = parse(ColladaExporter(settings(animation_choice=AnimationChoice.NONE)), skinned_tetrahedron)
        skin = root.find("c:library_controllers/c:controller[@id='Armature']/c:skin", NS)

        assert skin.get("source") == "#Model"
        assert skin.find("c:source[@id='Joints']/c:Name_array", NS).text == "J0 J1 J2"

        weights = skin.find("c:source[@id='Weights']/c:float_array", NS)
        assert weights.get("count") == "8"
        assert np.allclose(floats(weights)[:2], [128 / 255, 127 / 255], atol=1e-6)

        vertex_weights = skin.find("c:vertex_weights", NS)
        assert vertex_weights.get("count") == "4"
        assert vertex_weights.find("c:vcount", NS).text == "2 2 2 2"
        assert vertex_weights.find("c:v", NS).text.split()[:4] == ["0", "0", "1", "1"]

    def test_inverse_bind_matrices(self, skinned_tetrahedron):
        root = parse(ColladaExporter(settings(animation_choice=AnimationChoice.NONE)), skinned_tetrahedron)
        source = root.find("c:library_controllers/c:controller/c:skin/c:source[@id='InvBindMats']", NS)

        array = source.find("c:float_array", NS)
        accessor = source.find("c:technique_common/c:accessor", NS)
        assert array.get("count") == "48"
        assert accessor.get("count") == "3"
        assert accessor.get("stride") == "16"
        matrices = floats(array).reshape(3, 4, 4)
        assert matrices[2][2][3] == -1024.0
        assert matrices[0][:3, :3].tolist() == np.eye(3).tolist()

    def test_joint_hierarchy(self, skinned_tetrahedron):
        root = parse(ColladaExporter(settings(animation_choice=AnimationChoice.NONE)), skinned_tetrahedron)
        scene = root.find("c:library_visual_scenes/c:visual_scene", NS)

        skel0 = scene.find("c:node[@id='Skel0']", NS)
        skel1 = skel0.find("c:node[@id='Skel1']", NS)
        skel2 = skel1.find("c:node[@id='Skel2']", NS)
        assert skel2 is not None
        assert skel1.get("sid") == "J1"
        assert skel1.get("type") == "JOINT"
        assert skel1.find("c:extra/c:technique[@profile='blender']/c:tip_z", NS).text == "512"
        assert floats(skel1.find("c:matrix", NS)).reshape(4, 4)[2][3] == 512.0

        controller = scene.find("c:node[@id='Object']/c:instance_controller", NS)
        assert controller.get("url") == "#Armature"
        assert controller.find("c:skeleton", NS).text == "#Skel0"

    def test_sequential_timeline(self, skinned_tetrahedron):
        """Test clips share one timeline that keeps accumulating."""
        root = parse(ColladaExporter(settings(animation_choice=AnimationChoice.ALL_SEQUENTIAL)), skinned_tetrahedron)
        animations = root.findall("c:library_animations/c:animation", NS)

        assert [a.get("id") for a in animations] == ["Anim"]
        bones = animations[0].findall("c:animation", NS)
        assert [b.get("id") for b in bones] == ["Anim_0", "Anim_1", "Anim_2"]

        times = floats(bones[0].find("c:source[@id='Anim_0Input']/c:float_array", NS))
        expected = np.cumsum([0.0, 1 / 60, 1 / 12, 1 / 120, 1 / 30])
        assert np.allclose(times, expected, atol=1e-6)

        output = bones[1].find("c:source[@id='Anim_1Output']/c:float_array", NS)
        assert output.get("count") == str(5 * 16)
        interpolation = bones[1].find("c:source[@id='Anim_1Interp']/c:Name_array", NS)
        assert set(interpolation.text.split()) == {"LINEAR"}

        channel = bones[1].find("c:channel", NS)
        assert channel.get("source") == "#Anim_1Sampler"
        assert channel.get("target") == "Skel1/transform"

    def test_animated_transform_keeps_rest_translation(self, skinned_tetrahedron):
        root = parse(ColladaExporter(settings(animation_choice=AnimationChoice.ALL_SEQUENTIAL)), skinned_tetrahedron)
        output = root.find(
            "c:library_animations/c:animation/c:animation[@id='Anim_2']/c:source[@id='Anim_2Output']/c:float_array", NS
        )
        first = floats(output)[:16].reshape(4, 4)

        assert np.allclose(first[:3, :3], np.eye(3))
        assert first[2][3] == 512.0

    def test_single_clip_selection(self, skinned_tetrahedron):
        root = parse(ColladaExporter(settings()), skinned_tetrahedron, animation_index=1)
        animations = root.findall("c:library_animations/c:animation", NS)

        assert [a.get("id") for a in animations] == ["Anim1"]
        times = floats(animations[0].find("c:animation/c:source/c:float_array", NS))
        assert np.allclose(times, [0.0, 1 / 30], atol=1e-6)

    def test_separate_in_one_file(self, skinned_tetrahedron):
        root = parse(ColladaExporter(settings(split_files=False)), skinned_tetrahedron)
        animations = root.findall("c:library_animations/c:animation", NS)

        assert [a.get("id") for a in animations] == ["Anim0", "Anim1"]

    def test_explicit_animations_override(self, skinned_tetrahedron):
        clips = skinned_tetrahedron.animations[:1]
        root = parse(ColladaExporter(settings(split_files=False)), skinned_tetrahedron, animations=clips)

        assert len(root.findall("c:library_animations/c:animation", NS)) == 1


class TestFileExport:
    """Test writing documents to disk."""

    def test_single_file(self, tetrahedron):
        with tempfile.TemporaryDirectory() as tmpdir:
            out = Path(tmpdir) / "nested" / "tetra.dae"
            written = ColladaExporter(settings()).export_model(out, tetrahedron)

            assert written == [out]
            assert out.read_bytes().startswith(b"<?xml")
            assert ET.parse(out).getroot().tag == f"{{{NAMESPACE}}}COLLADA"
            assert os.listdir(out.parent) == ["tetra.dae"]

    def test_one_file_per_animation(self, skinned_tetrahedron):
        with tempfile.TemporaryDirectory() as tmpdir:
            out = Path(tmpdir) / "moby.dae"
            written = ColladaExporter(settings()).export_model(out, skinned_tetrahedron)

            assert [p.name for p in written] == ["moby_0.dae", "moby_1.dae"]
            assert sorted(os.listdir(tmpdir)) == ["moby_0.dae", "moby_1.dae"]

            second = ET.parse(written[1]).getroot()
            animations = second.findall("c:library_animations/c:animation", NS)
            assert [a.get("id") for a in animations] == ["Anim1"]

    def test_no_animations_single_file(self, skinned_tetrahedron):
        with tempfile.TemporaryDirectory() as tmpdir:
            out = Path(tmpdir) / "moby.dae"
            written = ColladaExporter(settings(animation_choice=AnimationChoice.NONE)).export_model(out, skinned_tetrahedron)

            assert written == [out]
            root = ET.parse(out).getroot()
            assert root.find("c:library_controllers", NS) is not None
            assert root.find("c:library_animations", NS) is None

    def test_deterministic(self, skinned_tetrahedron):
        exporter = ColladaExporter(settings(animation_choice=AnimationChoice.ALL_SEQUENTIAL))
        assert exporter.to_bytes(skinned_tetrahedron) == exporter.to_bytes(skinned_tetrahedron)

    def test_file_ending(self):
        assert ColladaExporter.file_ending() == ".dae"


def test_standard_model_default_settings():
    """Test export works with no settings given."""
    model = StandardModel(
        vertex_buffer=tetra_vertex_buffer(),
        index_buffer=np.array(TETRA_FACES, dtype=np.uint16),
        texture_config=[TextureConfig(id=2, start=0, size=12)],
    )
    root = ET.fromstring(ColladaExporter().to_bytes(model))
    assert root.find("c:asset/c:created", NS).text
