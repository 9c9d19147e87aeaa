"""Tests for the lightmap strategies (none / baked_material / packed / packed_source_exr / unpacked)."""

from __future__ import annotations

import os
import sys

import numpy as np
import pytest
from PIL import Image

_script_dir = os.path.join(os.path.dirname(os.path.dirname(__file__)), "script")
if _script_dir not in sys.path:
    sys.path.insert(0, _script_dir)

from export_config import (
    LIGHTMAP_BAKED_MATERIAL,
    LIGHTMAP_NONE,
    LIGHTMAP_PACKED,
    LIGHTMAP_PACKED_SOURCE_EXR,
    LIGHTMAP_UNPACKED,
    ExportConfig,
)
from export_errors import ConfigurationError
from janus_export import export_scene
from lightmap_pipeline import (
    BakedMaterialStrategy,
    PackedSourceExrStrategy,
    create_strategy,
    next_power_of_two,
    object_bake_resolution,
)
from scene_loader import find_lightmaps
from scene_model import (
    PROPERTY_COLOR,
    PROPERTY_TEXTURE,
    Material,
    MeshData,
    Renderable,
    Scene,
    SceneNode,
    ShaderProperty,
    SourceImage,
)
from texture_baking import SoftwareBaker

import cv2  # noqa: E402  (after scene_model, which enables OpenEXR)


class RecordingBaker(SoftwareBaker):
    """SoftwareBaker that also counts acquisitions."""

    def __init__(self):
        super().__init__()
        self.acquired = 0

    def acquire(self, width, height):
        self.acquired += 1
        return super().acquire(width, height)


def _quad():
    return MeshData(
        name="Quad",
        vertices=[[0, 0, 0], [1, 0, 0], [1, 1, 0], [0, 1, 0]],
        normals=[[0, 0, -1]] * 4,
        triangles=[0, 1, 2, 0, 2, 3],
        uv0=[[0, 0], [1, 0], [1, 1], [0, 1]],
    )


def _scene(lightmaps, scale_offset=(1.0, 1.0, 0.0, 0.0), color=(0.5, 0.5, 0.5, 1.0)):
    material = Material("Paint", properties=[ShaderProperty("_Color", PROPERTY_COLOR, color)])
    node = SceneNode(name="Wall", capabilities=[Renderable(
        mesh=_quad(), materials=[material], lightmap_index=0, lightmap_scale_offset=scale_offset,
    )])
    return Scene(name="Test", roots=[node], lightmaps=lightmaps)


def _config(tmp_path, mode, **kwargs):
    return ExportConfig(
        export_dir=str(tmp_path / "out"),
        lightmap_mode=mode,
        texture_format="png",
        export_skybox=False,
        **kwargs,
    )


def _hdr(value=1.0, size=8):
    return {0: SourceImage(name="Lightmap-0_comp_light", pixels=np.full((size, size, 4), value, dtype=np.float32))}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestResolution:

    @pytest.mark.parametrize("n, expected", [(0, 1), (1, 1), (5, 8), (64, 64), (65, 128)])
    def test_next_power_of_two(self, n, expected):
        assert next_power_of_two(n) == expected

    def test_quarter_footprint(self):
        assert object_bake_resolution((0.25, 0.25, 0.0, 0.0), 1024) == 256

    def test_offset_shrinks_footprint(self):
        # max((1-0.5)*0.1, (1-0.5)*0.1) * 1024 = 51.2 -> 64
        assert object_bake_resolution((0.1, 0.1, 0.5, 0.5), 1024) == 64

    def test_floor_is_16(self):
        assert object_bake_resolution((0.001, 0.001, 0.0, 0.0), 1024) == 16

    def test_capped_by_max(self):
        assert object_bake_resolution((1.0, 1.0, 0.0, 0.0), 1000) == 1000
        assert object_bake_resolution((1.0, 1.0, 0.0, 0.0), 8) == 8

    def test_atlas_space_uses_full_size(self):
        assert object_bake_resolution((0.1, 0.1, 0.0, 0.0), 512, atlas_space=True) == 512

    def test_create_strategy(self):
        assert isinstance(create_strategy(LIGHTMAP_BAKED_MATERIAL), BakedMaterialStrategy)
        assert isinstance(create_strategy(LIGHTMAP_PACKED_SOURCE_EXR), PackedSourceExrStrategy)
        with pytest.raises(ConfigurationError):
            create_strategy("radiosity")


# ---------------------------------------------------------------------------
# Modes
# ---------------------------------------------------------------------------

class TestModes:

    def test_none_mode_never_bakes(self, tmp_path):
        baker = RecordingBaker()
        session = export_scene(_scene(_hdr()), _config(tmp_path, LIGHTMAP_NONE), baker=baker)
        assert baker.acquired == 0
        assert "lmap_id" not in session.document
        assert 'image_id="GeneratedColor0"' in session.document

    def test_packed_decodes_atlas_once(self, tmp_path):
        baker = RecordingBaker()
        session = export_scene(
            _scene(_hdr(0.5), scale_offset=(0.5, 0.5, 0.25, 0.0)),
            _config(tmp_path, LIGHTMAP_PACKED),
            baker=baker,
        )
        doc = session.document
        assert 'lmap_id="Lightmap0"' in doc
        assert 'lmap_sca="0.5 0.5 0.25 0"' in doc
        assert '<AssetImage id="Lightmap0" src="Lightmap0.png" />' in doc
        assert [op for op, _, _ in baker.history] == ["acquire", "clear", "draw", "read", "release"]

        path = os.path.join(session.config.export_dir, "Lightmap0.png")
        with Image.open(path) as img:
            assert img.size == (8, 8)
            r = img.getpixel((4, 4))[0]
        # 0.5 linear -> gamma encoded
        assert abs(r - round(0.5 ** (1 / 2.2) * 255)) <= 1

    def test_packed_missing_source_is_skipped(self, tmp_path):
        session = export_scene(_scene({}), _config(tmp_path, LIGHTMAP_PACKED))
        assert "lmap_id" not in session.document
        assert "<Object " in session.document

    def test_packed_source_exr_only_copies(self, tmp_path):
        lm_dir = tmp_path / "Lightmaps"
        lm_dir.mkdir()
        exr = lm_dir / "Lightmap-0_comp_light.exr"
        exr.write_bytes(b"not really an exr")
        lightmaps = {0: SourceImage(name="Lightmap-0_comp_light", path=str(exr))}

        baker = RecordingBaker()
        session = export_scene(
            _scene(lightmaps, scale_offset=(0.5, 0.5, 0.0, 0.5)),
            _config(tmp_path, LIGHTMAP_PACKED_SOURCE_EXR),
            baker=baker,
        )
        assert baker.acquired == 0
        assert baker.draw_calls == 0
        assert baker.history == []
        assert '<AssetImage id="Lightmap0" src="Lightmap0.exr" />' in session.document
        assert 'lmap_sca="0.5 0.5 0 0.5"' in session.document
        copied = os.path.join(session.config.export_dir, "Lightmap0.exr")
        with open(copied, "rb") as f:
            assert f.read() == b"not really an exr"

    def test_baked_material_composites_into_diffuse(self, tmp_path):
        session = export_scene(_scene(_hdr(1.0)), _config(tmp_path, LIGHTMAP_BAKED_MATERIAL))
        doc = session.document
        assert 'image_id="Wall_Baked"' in doc
        assert "GeneratedColor" not in doc
        assert " col=" not in doc
        assert "lmap_id" not in doc

        path = os.path.join(session.config.export_dir, "Wall_Baked.png")
        with Image.open(path) as img:
            # capped by the source lightmap width
            assert img.size == (8, 8)
            assert img.mode == "RGB"
            r, g, b = img.getpixel((4, 4))
        assert abs(r - 128) <= 1
        assert abs(b - 128) <= 1

    def test_baked_material_transparent_keeps_alpha(self, tmp_path):
        scene = _scene(_hdr(1.0))
        scene.roots[0].capabilities[0].materials[0].shader = "Transparent/Diffuse"
        session = export_scene(scene, _config(tmp_path, LIGHTMAP_BAKED_MATERIAL))
        path = os.path.join(session.config.export_dir, "Wall_Baked.png")
        with Image.open(path) as img:
            assert img.mode == "RGBA"

    def test_unpacked_uses_baked_image_as_lightmap(self, tmp_path):
        baker = RecordingBaker()
        session = export_scene(_scene(_hdr(1.0)), _config(tmp_path, LIGHTMAP_UNPACKED), baker=baker)
        doc = session.document
        assert 'lmap_id="Wall_Baked"' in doc
        assert "lmap_sca" not in doc
        assert 'image_id="GeneratedColor0"' in doc
        assert baker.acquired == 1
        assert os.path.isfile(os.path.join(session.config.export_dir, "Wall_Baked.png"))

    def test_html_only_rerun_does_not_bake(self, tmp_path):
        first = export_scene(_scene(_hdr(0.5)), _config(tmp_path, LIGHTMAP_PACKED))

        baker = RecordingBaker()
        second = export_scene(
            _scene(_hdr(0.5)), _config(tmp_path, LIGHTMAP_PACKED, html_only=True), baker=baker,
        )
        assert baker.acquired == 0
        assert second.document == first.document

    def test_packed_decodes_exr_from_disk(self, tmp_path):
        lm_dir = tmp_path / "Lightmaps"
        lm_dir.mkdir()
        assert cv2.imwrite(str(lm_dir / "Lightmap-0_comp_light.exr"), np.full((8, 8, 3), 0.5, dtype=np.float32))

        session = export_scene(_scene(find_lightmaps(str(lm_dir))), _config(tmp_path, LIGHTMAP_PACKED))
        assert 'lmap_id="Lightmap0"' in session.document

        path = os.path.join(session.config.export_dir, "Lightmap0.png")
        with Image.open(path) as img:
            assert img.size == (8, 8)
            r = img.getpixel((4, 4))[0]
        assert abs(r - round(0.5 ** (1 / 2.2) * 255)) <= 1

    def test_atlas_does_not_overwrite_texture_with_same_name(self, tmp_path):
        texture = SourceImage(name="Lightmap0", pixels=np.zeros((4, 4, 3), dtype=np.float32))
        poster_material = Material("Poster", properties=[ShaderProperty("_MainTex", PROPERTY_TEXTURE, texture)])
        poster = SceneNode(name="Poster", capabilities=[Renderable(mesh=_quad(), materials=[poster_material])])
        scene = _scene(_hdr(0.5))
        scene.roots.insert(0, poster)

        session = export_scene(scene, _config(tmp_path, LIGHTMAP_PACKED))
        doc = session.document
        assert '<AssetImage id="Lightmap0" src="Lightmap0.png" />' in doc
        assert '<AssetImage id="Lightmap0_1" src="Lightmap0_1.png" />' in doc
        assert 'image_id="Lightmap0"' in doc
        assert 'lmap_id="Lightmap0_1"' in doc

        with Image.open(os.path.join(session.config.export_dir, "Lightmap0.png")) as img:
            assert img.getpixel((1, 1))[0] == 0
        with Image.open(os.path.join(session.config.export_dir, "Lightmap0_1.png")) as img:
            assert img.getpixel((4, 4))[0] > 100
