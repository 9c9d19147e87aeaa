"""Tests for diffuse/tiling/transparency extraction from materials."""

import os
import sys
import unittest

# Add script directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'script'))

from asset_registry import AssetMesh, AssetRegistry
from export_session import RoomObject
from material_extractor import (
    MaterialExtractor,
    find_diffuse,
    is_transparent_shader,
    material_tiling,
)
from scene_model import (
    PROPERTY_COLOR,
    PROPERTY_FLOAT,
    PROPERTY_TEXTURE,
    Material,
    ShaderProperty,
    SourceImage,
    Transform,
)


def _room_object(name="Wall"):
    return RoomObject(id=name, name=name, mesh=AssetMesh(id=name, src=name), transform=Transform())


class TestFindDiffuse(unittest.TestCase):

    def test_first_match_wins(self):
        a = SourceImage(name="A", path="/a.png")
        b = SourceImage(name="B", path="/b.png")
        mat = Material("M", properties=[
            ShaderProperty("_MainTex", PROPERTY_TEXTURE, a),
            ShaderProperty("_Color", PROPERTY_COLOR, (1.0, 0.0, 0.0, 1.0)),
            ShaderProperty("_MAINTEX", PROPERTY_TEXTURE, b),
            ShaderProperty("_color", PROPERTY_COLOR, (0.0, 1.0, 0.0, 1.0)),
        ])
        texture, color = find_diffuse(mat)
        self.assertIs(texture, a)
        self.assertEqual(color, (1.0, 0.0, 0.0, 1.0))

    def test_unrecognised_names_and_kinds_ignored(self):
        mat = Material("M", properties=[
            ShaderProperty("_BumpMap", PROPERTY_TEXTURE, SourceImage(name="N", path="/n.png")),
            ShaderProperty("_Color", PROPERTY_FLOAT, 0.5),
        ])
        self.assertEqual(find_diffuse(mat), (None, None))

    def test_empty_texture_slot_does_not_win(self):
        b = SourceImage(name="B", path="/b.png")
        mat = Material("M", properties=[
            ShaderProperty("_MainTex", PROPERTY_TEXTURE, None),
            ShaderProperty("_MainTex", PROPERTY_TEXTURE, b),
        ])
        self.assertIs(find_diffuse(mat)[0], b)

    def test_rgb_color_gets_opaque_alpha(self):
        mat = Material("M", properties=[ShaderProperty("_Color", PROPERTY_COLOR, (0.2, 0.4, 0.6))])
        self.assertEqual(find_diffuse(mat)[1], (0.2, 0.4, 0.6, 1.0))


class TestMaterialHelpers(unittest.TestCase):

    def test_transparency_is_substring_match(self):
        self.assertTrue(is_transparent_shader("Legacy Shaders/Transparent/Diffuse"))
        self.assertFalse(is_transparent_shader("Standard"))

    def test_tiling_only_when_not_identity(self):
        self.assertIsNone(material_tiling(Material("M")))
        mat = Material("M", texture_scale=(2.0, 2.0), texture_offset=(0.5, 0.0))
        self.assertEqual(material_tiling(mat), (2.0, 2.0, 0.5, 0.0))


class TestMaterialExtractor(unittest.TestCase):

    def test_flat_color_synthesizes_image(self):
        registry = AssetRegistry()
        mat = Material("Red", properties=[ShaderProperty("_Color", PROPERTY_COLOR, (1.0, 0.0, 0.0, 1.0))])
        info = MaterialExtractor(registry, export_colors=True).extract(mat)
        self.assertIsNone(info.color)
        self.assertIsNotNone(info.texture)
        self.assertEqual([i.id for i in registry.images], ["GeneratedColor0"])

    def test_flat_color_kept_when_synthesis_disabled(self):
        registry = AssetRegistry()
        mat = Material("Red", properties=[ShaderProperty("_Color", PROPERTY_COLOR, (1.0, 0.0, 0.0, 1.0))])
        info = MaterialExtractor(registry, export_colors=False).extract(mat)
        self.assertEqual(info.color, (1.0, 0.0, 0.0, 1.0))
        self.assertIsNone(info.texture)
        self.assertEqual(registry.images, [])

    def test_apply_records_texture_and_transparency(self):
        registry = AssetRegistry()
        leaves = SourceImage(name="Leaves", path="/leaves.png")
        mat = Material(
            "Foliage",
            shader="Transparent/Cutout",
            properties=[
                ShaderProperty("_MainTex", PROPERTY_TEXTURE, leaves),
                ShaderProperty("_Color", PROPERTY_COLOR, (0.5, 0.5, 0.5, 1.0)),
            ],
            texture_scale=(4.0, 4.0),
        )
        ro = _room_object()
        MaterialExtractor(registry).apply(ro, mat)
        self.assertEqual(ro.image_id, "Leaves")
        self.assertTrue(ro.is_transparent)
        self.assertEqual(ro.tiling, (4.0, 4.0, 0.0, 0.0))
        self.assertEqual(ro.color, (0.5, 0.5, 0.5, 1.0))
        self.assertTrue(registry.get_image("Leaves").export_alpha)

    def test_shared_material_registers_one_image(self):
        registry = AssetRegistry()
        brick = SourceImage(name="Brick", path="/brick.png")
        mat = Material("Brick", properties=[ShaderProperty("_MainTex", PROPERTY_TEXTURE, brick)])
        extractor = MaterialExtractor(registry)
        a, b = _room_object("A"), _room_object("B")
        extractor.apply(a, mat)
        extractor.apply(b, mat)
        self.assertEqual(a.image_id, b.image_id)
        self.assertEqual(len(registry.images), 1)


if __name__ == '__main__':
    unittest.main()
