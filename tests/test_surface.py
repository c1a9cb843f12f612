import io
import math
import unittest

import numpy as np
from PIL import Image

from spiral_cutout.surface import Surface, premultiply


class TestSurface(unittest.TestCase):
    def test_new_surface_is_transparent(self):
        px = Surface(5, 4).to_pixels()
        self.assertEqual(px.shape, (4, 5, 4))
        self.assertTrue((px == 0).all())

    def test_fill_background(self):
        s = Surface(6, 3)
        s.fill((240, 240, 240, 255))
        px = s.to_pixels()
        self.assertTrue((px == np.array([240, 240, 240, 255], dtype=np.uint8)).all())

    def test_draw_image_integer_offset(self):
        s = Surface(6, 6)
        img = np.zeros((2, 2, 4), dtype=np.uint8)
        img[...] = (255, 0, 0, 255)
        s.draw_image(img, 1, 1)
        px = s.to_pixels()
        np.testing.assert_array_equal(px[1:3, 1:3], np.broadcast_to([255, 0, 0, 255], (2, 2, 4)))
        self.assertEqual(px[0, 0, 3], 0)
        self.assertEqual(px[3, 3, 3], 0)

    def test_transparent_pixels_leave_destination(self):
        s = Surface(4, 4)
        s.fill((10, 20, 30, 255))
        img = np.zeros((4, 4, 4), dtype=np.uint8)
        s.draw_image(img, 0, 0)
        np.testing.assert_array_equal(s.to_pixels()[2, 2], [10, 20, 30, 255])

    def test_save_restore_and_compose(self):
        s = Surface(10, 10)
        s.save()
        s.translate(10, 0)
        s.rotate(math.pi / 2)
        s.scale(2)
        m = s.matrix
        # local (1, 0) -> scaled to (2, 0) -> rotated to (0, 2) -> translated to (10, 2)
        np.testing.assert_allclose(m @ np.array([1.0, 0.0, 1.0]), [10.0, 2.0, 1.0], atol=1e-9)
        s.restore()
        np.testing.assert_allclose(s.matrix, np.eye(3))
        # restore on an empty stack is a no-op
        s.restore()
        np.testing.assert_allclose(s.matrix, np.eye(3))

    def test_png_export(self):
        s = Surface(12, 8)
        s.fill((240, 240, 240, 255))
        data = s.to_png_bytes()
        self.assertGreater(len(data), 0)
        img = Image.open(io.BytesIO(data))
        self.assertEqual(img.size, (12, 8))
        self.assertEqual(img.mode, "RGBA")

    def test_invalid_size(self):
        with self.assertRaises(ValueError):
            Surface(0, 10)


class TestPremultiply(unittest.TestCase):
    def test_scales_color_by_alpha(self):
        px = np.array([[[200, 100, 50, 255], [200, 100, 50, 0]]], dtype=np.uint8)
        src = premultiply(px)
        self.assertEqual(src.dtype, np.float32)
        np.testing.assert_allclose(src[0, 0], [200 / 255, 100 / 255, 50 / 255, 1.0], rtol=1e-6)
        np.testing.assert_allclose(src[0, 1], [0.0, 0.0, 0.0, 0.0])
        # input untouched
        self.assertEqual(px[0, 1, 0], 200)

    def test_draw_premultiplied_matches_draw_image(self):
        img = np.zeros((5, 7, 4), dtype=np.uint8)
        img[...] = (30, 160, 90, 128)
        a, b = Surface(20, 20), Surface(20, 20)
        for s in (a, b):
            s.fill((240, 240, 240, 255))
            s.translate(10, 10)
            s.rotate(0.4)
            s.scale(1.5)
        a.draw_image(img, -3.5, -2.5, 7, 5)
        b.draw_premultiplied(premultiply(img), -3.5, -2.5, 7, 5)
        np.testing.assert_array_equal(a.to_pixels(), b.to_pixels())


if __name__ == "__main__":
    unittest.main()
