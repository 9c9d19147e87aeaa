"""Tests for the software texture-baking service."""

import os
import sys
import unittest

import numpy as np

# Add script directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'script'))

from export_errors import BakingStateError, ConfigurationError
from texture_baking import (
    SHADING_BAKED,
    SHADING_EXPOSURE,
    DrawCall,
    ShadingParams,
    SoftwareBaker,
    decode_exposure,
    full_target_quad,
    sample_bilinear,
)


def _exposure_quad(value=0.5, is_linear=False):
    lightmap = np.full((4, 4, 4), value, dtype=np.float32)
    return full_target_quad(ShadingParams(mode=SHADING_EXPOSURE, lightmap=lightmap, is_linear=is_linear))


class TestRenderTargetOrdering(unittest.TestCase):

    def setUp(self):
        self.baker = SoftwareBaker()

    def test_draw_before_clear_raises(self):
        target = self.baker.acquire(4, 4)
        with self.assertRaises(BakingStateError):
            self.baker.draw(target, _exposure_quad())

    def test_read_before_clear_raises(self):
        target = self.baker.acquire(4, 4)
        with self.assertRaises(BakingStateError):
            self.baker.read_back(target)

    def test_second_acquire_while_held_raises(self):
        self.baker.acquire(4, 4)
        with self.assertRaises(BakingStateError):
            self.baker.acquire(8, 8)

    def test_draw_after_release_raises(self):
        target = self.baker.acquire(4, 4)
        self.baker.clear(target)
        self.baker.release(target)
        with self.assertRaises(BakingStateError):
            self.baker.draw(target, _exposure_quad())

    def test_draw_after_read_back_raises(self):
        target = self.baker.acquire(4, 4)
        self.baker.clear(target)
        self.baker.read_back(target)
        with self.assertRaises(BakingStateError):
            self.baker.draw(target, _exposure_quad())

    def test_context_manager_order(self):
        with self.baker.render_target(4, 4) as target:
            self.baker.draw(target, _exposure_quad())
            self.baker.read_back(target)
        ops = [op for op, _, _ in self.baker.history]
        self.assertEqual(ops, ["acquire", "clear", "draw", "read", "release"])

    def test_context_manager_releases_on_error(self):
        with self.assertRaises(ValueError):
            with self.baker.render_target(4, 4):
                raise ValueError("boom")
        # a new target can be acquired afterwards
        target = self.baker.acquire(4, 4)
        self.assertEqual(target.size, (4, 4))

    def test_released_buffers_are_pooled(self):
        first = self.baker.acquire(4, 4)
        buffer = first.buffer
        self.baker.clear(first)
        self.baker.release(first)
        second = self.baker.acquire(4, 4)
        self.assertIs(second.buffer, buffer)

    def test_read_back_returns_a_copy(self):
        with self.baker.render_target(2, 2) as target:
            pixels = self.baker.read_back(target)
        pixels[:] = 9.0
        self.assertFalse((target.buffer == 9.0).any())


class TestShading(unittest.TestCase):

    def test_decode_exposure(self):
        np.testing.assert_allclose(decode_exposure(np.array([0.25]), 2.0, False), [1.0])
        np.testing.assert_allclose(decode_exposure(np.array([0.25]), 0.0, True), [0.25 ** (1 / 2.2)], rtol=1e-5)
        np.testing.assert_allclose(decode_exposure(np.array([4.0, -1.0]), 0.0, False), [1.0, 0.0])

    def test_sample_bilinear_constant(self):
        tex = np.full((3, 3, 4), 0.75, dtype=np.float32)
        out = sample_bilinear(tex, np.array([[0.0, 0.0], [0.5, 0.5], [1.0, 1.0]]))
        np.testing.assert_allclose(out, 0.75)

    def test_sample_bilinear_v_up(self):
        # top row white, bottom row black
        tex = np.zeros((2, 1, 4), dtype=np.float32)
        tex[0] = 1.0
        out = sample_bilinear(tex, np.array([[0.5, 0.75], [0.5, 0.25]]))
        self.assertAlmostEqual(float(out[0, 0]), 1.0)
        self.assertAlmostEqual(float(out[1, 0]), 0.0)

    def test_full_quad_exposure(self):
        baker = SoftwareBaker()
        with baker.render_target(4, 4) as target:
            baker.draw(target, _exposure_quad(0.5))
            pixels = baker.read_back(target)
        np.testing.assert_allclose(pixels[:, :, :3], 0.5, atol=1e-6)
        np.testing.assert_allclose(pixels[:, :, 3], 1.0)

    def test_triangle_coverage(self):
        baker = SoftwareBaker()
        call = DrawCall(
            positions=np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]]),
            triangles=np.array([0, 1, 2]),
            shading=ShadingParams(mode=SHADING_EXPOSURE),
        )
        with baker.render_target(4, 4) as target:
            baker.draw(target, call)
            pixels = baker.read_back(target)
        # lower-left corner is covered, upper-right is still clear
        self.assertEqual(float(pixels[3, 0, 3]), 1.0)
        self.assertEqual(float(pixels[0, 3, 3]), 0.0)

    def test_baked_multiplies_diffuse_color(self):
        baker = SoftwareBaker()
        shading = ShadingParams(
            mode=SHADING_BAKED,
            lightmap=np.ones((2, 2, 4), dtype=np.float32),
            diffuse_color=(0.5, 0.25, 1.0, 1.0),
            is_linear=False,
        )
        with baker.render_target(2, 2) as target:
            baker.draw(target, full_target_quad(shading))
            pixels = baker.read_back(target)
        np.testing.assert_allclose(pixels[0, 0], [0.5, 0.25, 1.0, 1.0], atol=1e-6)

    def test_unknown_pass_rejected(self):
        baker = SoftwareBaker()
        with baker.render_target(2, 2) as target:
            with self.assertRaises(ConfigurationError):
                baker.draw(target, full_target_quad(ShadingParams(mode="bloom")))


class TestSkybox(unittest.TestCase):

    def test_face_render(self):
        baker = SoftwareBaker()

        def sampler(dirs):
            return np.tile(np.array([[0.2, 0.4, 0.6]], dtype=np.float32), (len(dirs), 1))

        pixels = baker.render_skybox_face(sampler, "up", 8, is_linear=False)
        self.assertEqual(pixels.shape, (8, 8, 4))
        np.testing.assert_allclose(pixels[4, 4], [0.2, 0.4, 0.6, 1.0], atol=1e-6)

    def test_unknown_face(self):
        with self.assertRaises(ConfigurationError):
            SoftwareBaker().render_skybox_face(lambda d: d, "sideways", 4)


if __name__ == '__main__':
    unittest.main()
