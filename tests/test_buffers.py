"""Tests for the immutable buffer types."""

import unittest

import numpy as np


class TestImageBuffer(unittest.TestCase):
    def test_geometry_properties(self):
        from PhotonicRing.core import ImageBuffer
        buf = ImageBuffer(np.zeros((6, 10, 4), dtype=np.uint8))
        self.assertEqual(buf.width, 10)
        self.assertEqual(buf.height, 6)
        self.assertEqual(buf.channels, 4)
        self.assertEqual(buf.stride, 40)
        self.assertEqual(buf.size, (10, 6))

    def test_pixels_are_copied_and_read_only(self):
        from PhotonicRing.core import ImageBuffer
        src = np.zeros((4, 4, 3), dtype=np.uint8)
        buf = ImageBuffer(src)
        src[0, 0, 0] = 99
        self.assertEqual(buf.pixels[0, 0, 0], 0)
        with self.assertRaises(ValueError):
            buf.pixels[0, 0, 0] = 1

    def test_zero_width_rejected(self):
        from PhotonicRing.core import ImageBuffer, InvalidDimensionsError
        with self.assertRaises(InvalidDimensionsError):
            ImageBuffer(np.zeros((4, 0, 3), dtype=np.uint8))

    def test_two_channel_rejected(self):
        from PhotonicRing.core import ImageBuffer, InvalidDimensionsError
        with self.assertRaises(InvalidDimensionsError):
            ImageBuffer(np.zeros((4, 4, 2), dtype=np.uint8))

    def test_integer_dtype_other_than_uint8_rejected(self):
        from PhotonicRing.core import ImageBuffer, UnsupportedFormatError
        with self.assertRaises(UnsupportedFormatError):
            ImageBuffer(np.zeros((4, 4), dtype=np.int32))

    def test_single_channel_axis_is_squeezed(self):
        from PhotonicRing.core import ImageBuffer
        buf = ImageBuffer(np.zeros((3, 5, 1), dtype=np.uint8))
        self.assertEqual(buf.pixels.shape, (3, 5))
        self.assertEqual(buf.channels, 1)

    def test_luminance_of_gray_matches_value(self):
        from PhotonicRing.core import ImageBuffer
        buf = ImageBuffer(np.full((4, 4, 3), 51, dtype=np.uint8))
        np.testing.assert_allclose(buf.luminance(), 0.2, atol=1e-5)

    def test_from_image_converts_modes(self):
        from PIL import Image
        from PhotonicRing.core import ImageBuffer
        with Image.new("LA", (3, 2), (90, 255)) as img:
            self.assertEqual(ImageBuffer.from_image(img).channels, 4)
        with Image.new("I;16", (3, 2), 65535) as img:
            buf = ImageBuffer.from_image(img)
        self.assertEqual(buf.pixels.dtype, np.float32)
        np.testing.assert_allclose(buf.pixels, 1.0)

    def test_rgb_drops_alpha(self):
        from PhotonicRing.core import ImageBuffer
        arr = np.zeros((2, 2, 4), dtype=np.uint8)
        arr[..., 3] = 255
        self.assertEqual(ImageBuffer(arr).rgb().shape, (2, 2, 3))


class TestFields(unittest.TestCase):
    def test_scalar_field_clamps(self):
        from PhotonicRing.core import ScalarField
        field = ScalarField(np.array([[-1.0, 0.5], [2.0, np.nan]]))
        np.testing.assert_allclose(field.values, [[0.0, 0.5], [1.0, 0.0]])
        self.assertEqual(field.to_uint8().tolist(), [[0, 128], [255, 0]])

    def test_flat_normal_encodes_to_128_128_255(self):
        from PhotonicRing.core import NormalField
        vec = np.zeros((3, 3, 3), dtype=np.float32)
        vec[..., 2] = 1.0
        encoded = NormalField(vec).encode()
        self.assertTrue(np.all(encoded == np.array([128, 128, 255], dtype=np.uint8)))

    def test_normal_from_encoded_is_unit_length(self):
        from PhotonicRing.core import NormalField
        encoded = np.random.default_rng(1).integers(0, 256, (8, 8, 3), dtype=np.uint8)
        encoded[..., 2] = 255
        field = NormalField.from_encoded(encoded)
        np.testing.assert_allclose(np.linalg.norm(field.vectors, axis=-1), 1.0, atol=1e-5)

    def test_classification_dominant(self):
        from PhotonicRing.core import ClassificationField, MaterialClass
        labels = np.full((4, 4), int(MaterialClass.WOOD), dtype=np.uint8)
        labels[0, :] = int(MaterialClass.STONE)
        conf = np.full((4, 4), 0.5, dtype=np.float32)
        field = ClassificationField(labels, conf)
        material, confidence = field.dominant()
        self.assertEqual(material, MaterialClass.WOOD)
        self.assertAlmostEqual(confidence, 0.5, places=5)
        self.assertAlmostEqual(field.fraction(MaterialClass.STONE), 0.25)
        self.assertEqual(field.label_counts()[MaterialClass.DIFFUSE], 0)

    def test_classification_shape_mismatch(self):
        from PhotonicRing.core import ClassificationField, InvalidDimensionsError
        with self.assertRaises(InvalidDimensionsError):
            ClassificationField(np.zeros((4, 4)), np.zeros((4, 5)))


if __name__ == "__main__":
    unittest.main(verbosity=2)
