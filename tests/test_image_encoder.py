"""Tests for image export planning and the Pillow-backed image encoder."""

import os
import sys
import tempfile
import unittest

import numpy as np
from PIL import Image

# Add script directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'script'))

from export_errors import EncodingError
from image_encoder import (
    ACTION_COPY,
    ACTION_ENCODE,
    ImageEncoder,
    format_to_extension,
    plan_image_export,
    to_uint8,
)


class TestPlanImageExport(unittest.TestCase):

    def test_copyable_source_is_copied(self):
        self.assertEqual(plan_image_export("/t/brick.PNG", "jpg", False), (ACTION_COPY, ".png"))
        self.assertEqual(plan_image_export("/t/brick.jpeg", "png", False), (ACTION_COPY, ".jpeg"))

    def test_other_sources_are_encoded(self):
        self.assertEqual(plan_image_export("/t/brick.tga", "jpg", False), (ACTION_ENCODE, ".jpg"))
        self.assertEqual(plan_image_export(None, "png", False), (ACTION_ENCODE, ".png"))

    def test_force_retranscode(self):
        self.assertEqual(plan_image_export("/t/brick.png", "jpg", False, True), (ACTION_ENCODE, ".jpg"))

    def test_alpha_forces_png(self):
        self.assertEqual(plan_image_export("/t/leaves.tif", "jpg", True), (ACTION_ENCODE, ".png"))

    def test_format_to_extension(self):
        self.assertEqual(format_to_extension("JPEG"), ".jpg")
        self.assertEqual(format_to_extension("jpg"), ".jpg")
        self.assertEqual(format_to_extension("png"), ".png")
        self.assertEqual(format_to_extension("unknown"), ".png")

    def test_to_uint8_clamps(self):
        out = to_uint8(np.array([-1.0, 0.0, 0.5, 1.0, 3.0]))
        self.assertEqual(out.tolist(), [0, 0, 128, 255, 255])


class TestImageEncoder(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = self._tmp.name
        self.encoder = ImageEncoder()

    def tearDown(self):
        self._tmp.cleanup()

    def test_encode_jpg_drops_alpha(self):
        pixels = np.full((4, 6, 4), 0.5, dtype=np.float32)
        ext = self.encoder.encode(pixels, os.path.join(self.tmp, "a"), "jpg", quality=90)
        self.assertEqual(ext, ".jpg")
        with Image.open(os.path.join(self.tmp, "a.jpg")) as img:
            self.assertEqual(img.size, (6, 4))
            self.assertEqual(img.mode, "RGB")

    def test_encode_keep_alpha_writes_rgba_png(self):
        pixels = np.zeros((2, 2, 4), dtype=np.float32)
        pixels[0, 0] = [1.0, 0.0, 0.0, 0.5]
        ext = self.encoder.encode(pixels, os.path.join(self.tmp, "b"), "jpg", keep_alpha=True)
        self.assertEqual(ext, ".png")
        with Image.open(os.path.join(self.tmp, "b.png")) as img:
            self.assertEqual(img.mode, "RGBA")
            self.assertEqual(img.getpixel((0, 0)), (255, 0, 0, 128))

    def test_encode_greyscale_input(self):
        ext = self.encoder.encode(np.ones((3, 3), dtype=np.float32), os.path.join(self.tmp, "g"), "png")
        with Image.open(os.path.join(self.tmp, "g" + ext)) as img:
            self.assertEqual(img.getpixel((1, 1)), (255, 255, 255))

    def test_encode_into_missing_directory_raises(self):
        with self.assertRaises(EncodingError):
            self.encoder.encode(np.zeros((2, 2, 4)), os.path.join(self.tmp, "missing", "c"), "png")

    def test_copy_keeps_extension(self):
        src = os.path.join(self.tmp, "source.jpeg")
        with open(src, "wb") as f:
            f.write(b"jpeg bytes")
        ext = self.encoder.copy(src, os.path.join(self.tmp, "Brick"))
        self.assertEqual(ext, ".jpeg")
        with open(os.path.join(self.tmp, "Brick.jpeg"), "rb") as f:
            self.assertEqual(f.read(), b"jpeg bytes")

    def test_copy_missing_source_raises(self):
        with self.assertRaises(EncodingError):
            self.encoder.copy(os.path.join(self.tmp, "nope.png"), os.path.join(self.tmp, "x"))


if __name__ == '__main__':
    unittest.main()
