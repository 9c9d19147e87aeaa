"""Tests for FireBox document serialization."""

from __future__ import annotations

import os
import sys

import pytest

_script_dir = os.path.join(os.path.dirname(os.path.dirname(__file__)), "script")
if _script_dir not in sys.path:
    sys.path.insert(0, _script_dir)

from asset_registry import AssetImage, AssetMesh
from export_config import (
    LIGHTMAP_PACKED,
    LIGHTMAP_UNPACKED,
    LMAP_SCALE_UNIT,
    ExportConfig,
)
from export_session import RoomObject
from scene_model import SKYBOX_FACES, Transform
from scene_serializer import (
    format_color,
    format_float,
    object_attributes,
    serialize,
    transform_attributes,
)
from scene_walker import LinkObject


def _resolved_mesh(mesh_id="Cube"):
    mesh = AssetMesh(id=mesh_id, src=mesh_id)
    mesh.resolve(".glb")
    return mesh


def _resolved_image(image_id):
    image = AssetImage(id=image_id, src=image_id)
    image.resolve(".jpg")
    return image


def _room_object(mesh, **kwargs):
    return RoomObject(id=mesh.id, name=mesh.id, mesh=mesh, transform=kwargs.pop("transform", Transform()), **kwargs)


class TestFormatting:

    @pytest.mark.parametrize("value, expected", [
        (2.0, "2"),
        (-0.0, "0"),
        (0.5, "0.5"),
        (0.1234567, "0.123457"),
        (-3.25, "-3.25"),
        (1e-9, "0"),
    ])
    def test_format_float(self, value, expected):
        assert format_float(value) == expected

    def test_format_color(self):
        assert format_color((1.0, 0.5, 0.0, 1.0)) == "#fFF7F00"
        assert format_color((2.0, -1.0, 0.0)) == "#fFF0000"


class TestTransformAttributes:

    def test_position_is_scaled_then_mirrored(self):
        attrs = dict(transform_attributes(Transform(position=(1.0, 2.0, 3.0)), 2.0))
        assert attrs["pos"] == "-2 4 6"
        assert attrs["scale"] == "2 2 2"
        assert attrs["xdir"] == "-1 0 0"
        assert attrs["ydir"] == "0 1 0"
        assert attrs["zdir"] == "0 0 1"
        assert "cull_face" not in attrs

    def test_negative_scale_culls_front(self):
        attrs = transform_attributes(Transform(scale=(1.0, -1.0, 1.0)), 1.0)
        names = [name for name, _ in attrs]
        assert dict(attrs)["cull_face"] == "front"
        assert names == ["pos", "cull_face", "scale", "xdir", "ydir", "zdir"]


class TestObjectAttributes:

    def test_attribute_order(self):
        mesh = _resolved_mesh()
        images = {"Brick": _resolved_image("Brick"), "Lightmap0": _resolved_image("Lightmap0")}
        ro = _room_object(
            mesh, image_id="Brick", lightmap_id="Lightmap0", lightmap_scale_offset=(0.5, 0.5, 0.0, 0.0),
            tiling=(2.0, 2.0, 0.0, 0.0), has_collider=True, color=(1.0, 1.0, 1.0, 1.0),
        )
        names = [n for n, _ in object_attributes(ro, images, ExportConfig(lightmap_mode=LIGHTMAP_PACKED))]
        assert names == [
            "id", "lighting", "image_id", "lmap_id", "lmap_sca", "tile", "collision_id", "col",
            "pos", "scale", "xdir", "ydir", "zdir",
        ]

    def test_lmap_sca_is_clamped(self):
        mesh = _resolved_mesh()
        images = {"Lightmap0": _resolved_image("Lightmap0")}
        ro = _room_object(mesh, lightmap_id="Lightmap0", lightmap_scale_offset=(3.0, -3.0, 0.5, 0.0))

        signed = dict(object_attributes(ro, images, ExportConfig(lightmap_mode=LIGHTMAP_PACKED)))
        assert signed["lmap_sca"] == "2 -2 0.5 0"

        unit = ExportConfig(lightmap_mode=LIGHTMAP_PACKED, lmap_scale_range=LMAP_SCALE_UNIT)
        assert dict(object_attributes(ro, images, unit))["lmap_sca"] == "1 0 0.5 0"

    def test_lmap_sca_only_in_packed_modes(self):
        mesh = _resolved_mesh()
        images = {"Wall_Baked": _resolved_image("Wall_Baked")}
        ro = _room_object(mesh, lightmap_id="Wall_Baked", lightmap_scale_offset=(0.5, 0.5, 0.0, 0.0))
        attrs = dict(object_attributes(ro, images, ExportConfig(lightmap_mode=LIGHTMAP_UNPACKED)))
        assert attrs["lmap_id"] == "Wall_Baked"
        assert "lmap_sca" not in attrs

    def test_unresolved_images_are_not_referenced(self):
        mesh = _resolved_mesh()
        ro = _room_object(mesh, image_id="Missing", lightmap_id="Lightmap9")
        attrs = dict(object_attributes(ro, {}, ExportConfig()))
        assert "image_id" not in attrs
        assert "lmap_id" not in attrs


class TestSerialize:

    def test_document_structure(self):
        mesh = _resolved_mesh()
        image = _resolved_image("Brick")
        ro = _room_object(mesh, image_id="Brick", transform=Transform(position=(1.0, 0.0, 0.0)))
        doc = serialize([mesh], [image], [ro], {}, 750.0, ExportConfig())
        lines = doc.splitlines()
        assert lines[0] == "<html>"
        assert lines[2] == "\t\t<title>Janus Scene Exporter v203</title>"
        assert '\t\t\t\t<AssetObject id="Cube" src="Cube.glb" />' in lines
        assert '\t\t\t\t<AssetImage id="Brick" src="Brick.jpg" />' in lines
        assert '\t\t\t<Room far_dist="750">' in lines
        assert (
            '\t\t\t\t<Object id="Cube" lighting="true" image_id="Brick" '
            'pos="-1 0 0" scale="1 1 1" xdir="-1 0 0" ydir="0 1 0" zdir="0 0 1" />'
        ) in lines
        assert lines[-1] == "</html>"

    def test_unresolved_assets_are_omitted(self):
        good = _resolved_mesh("Good")
        bad = AssetMesh(id="Bad", src="Bad")
        pending = AssetImage(id="Pending", src="Pending")
        doc = serialize(
            [good, bad], [pending],
            [_room_object(good), _room_object(bad)],
            {}, 500.0, ExportConfig(),
        )
        assert "Bad" not in doc
        assert "Pending" not in doc
        assert doc.count("<Object ") == 1

    def test_skybox_needs_all_six_faces(self):
        ids = {face: f"Sky_{face}" for face in SKYBOX_FACES}
        images = [_resolved_image(i) for i in ids.values()]
        doc = serialize([], images, [], ids, 500.0, ExportConfig())
        assert 'skybox_front_id="Sky_front"' in doc
        assert 'skybox_down_id="Sky_down"' in doc

        doc = serialize([], images[:5], [], ids, 500.0, ExportConfig())
        assert "skybox_" not in doc

    def test_links(self):
        link = LinkObject(
            name="Portal", transform=Transform(position=(2.0, 1.0, 0.0), scale=(1.0, 2.0, 1.0)),
            url="https://example.org/?a=1&b=2", title="Next", color=(1.0, 1.0, 1.0, 1.0),
            draw_glow=True, draw_text=False, auto_load=False, circular=True,
        )
        doc = serialize([], [], [], {}, 500.0, ExportConfig(), links=[link])
        assert (
            '<Link url="https://example.org/?a=1&amp;b=2" title="Next" pos="-2 0 0" scale="1 2 1" '
            'xdir="-1 0 0" ydir="0 1 0" zdir="0 0 1" col="#fFFFFFF" draw_glow="true" '
            'draw_text="false" auto_load="false" circular="true" />'
        ) in doc

    def test_title_is_escaped(self):
        doc = serialize([], [], [], {}, 500.0, ExportConfig(title="Rock & Roll"))
        assert "<title>Rock &amp; Roll v203</title>" in doc

    def test_output_is_deterministic(self):
        mesh = _resolved_mesh()
        ro = _room_object(mesh, transform=Transform(position=(0.1, 0.2, 0.3)))
        first = serialize([mesh], [], [ro], {}, 500.0, ExportConfig())
        second = serialize([mesh], [], [ro], {}, 500.0, ExportConfig())
        assert first == second
