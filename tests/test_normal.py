"""Tests for normal field generation."""

import unittest

import numpy as np

from PhotonicRing.config import GeneratorConfig
from PhotonicRing.core import ScalarField, WorkerPool
from PhotonicRing.phases.normal import (
    NormalMapGenerator,
    generate_normal,
    scharr_gradients,
    tensor_eigen,
    structure_tensor,
)


def _ramp_x(h=24, w=24):
    return ScalarField(np.tile(np.linspace(0.0, 1.0, w, dtype=np.float32), (h, 1)))


class TestNormalGeneration(unittest.TestCase):
    def test_flat_height_encodes_straight_up(self):
        field = generate_normal(ScalarField(np.full((16, 16), 0.5, dtype=np.float32)))
        encoded = field.encode()
        self.assertTrue(np.all(encoded == np.array([128, 128, 255], dtype=np.uint8)))

    def test_vectors_are_unit_length(self):
        rng = np.random.default_rng(0)
        field = generate_normal(ScalarField(rng.random((30, 30)).astype(np.float32)))
        lengths = np.linalg.norm(field.vectors, axis=-1)
        np.testing.assert_allclose(lengths, 1.0, atol=1e-5)
        self.assertTrue(np.all(field.vectors[..., 2] > 0.0))

    def test_rising_x_ramp_tilts_red_down(self):
        encoded = generate_normal(_ramp_x()).encode()
        interior = encoded[4:-4, 4:-4]
        self.assertTrue(np.all(interior[..., 0] < 128))
        self.assertTrue(np.all(np.abs(interior[..., 1].astype(int) - 128) <= 1))

    def test_invert_y_flips_green(self):
        heights = ScalarField(np.tile(np.linspace(0.0, 1.0, 24, dtype=np.float32)[:, None], (1, 24)))
        config = GeneratorConfig()
        plain = NormalMapGenerator(config).generate(heights).vectors
        config.normal.invert_y = True
        flipped = NormalMapGenerator(config).generate(heights).vectors
        np.testing.assert_allclose(flipped[..., 1], -plain[..., 1], atol=1e-6)
        np.testing.assert_allclose(flipped[..., 0], plain[..., 0], atol=1e-6)

    def test_strength_steepens_normals(self):
        config = GeneratorConfig()
        config.normal.strength = 1.0
        soft = NormalMapGenerator(config).generate(_ramp_x()).vectors
        config.normal.strength = 8.0
        steep = NormalMapGenerator(config).generate(_ramp_x()).vectors
        self.assertLess(float(steep[8:16, 8:16, 2].mean()), float(soft[8:16, 8:16, 2].mean()))

    def test_worker_count_does_not_change_result(self):
        heights = ScalarField(np.random.default_rng(4).random((50, 21)).astype(np.float32))
        config = GeneratorConfig()
        one = NormalMapGenerator(config, WorkerPool(1, 8)).generate(heights)
        many = NormalMapGenerator(config, WorkerPool(5, 8)).generate(heights)
        np.testing.assert_array_equal(one.vectors, many.vectors)

    def test_banded_matches_single_band(self):
        heights = ScalarField(np.random.default_rng(6).random((40, 17)).astype(np.float32))
        config = GeneratorConfig()
        banded = NormalMapGenerator(config, WorkerPool(3, 8)).generate(heights)
        whole = NormalMapGenerator(config, WorkerPool(1, 1024)).generate(heights)
        np.testing.assert_allclose(banded.vectors, whole.vectors, atol=1e-5)


class TestGradientHelpers(unittest.TestCase):
    def test_scharr_on_unit_ramp(self):
        ramp = np.tile(np.arange(10, dtype=np.float32), (6, 1))
        gx, gy = scharr_gradients(ramp)
        np.testing.assert_allclose(gx[:, 2:-2], 2.0, atol=1e-5)
        np.testing.assert_allclose(gy, 0.0, atol=1e-5)

    def test_scharr_accepts_read_only_input(self):
        arr = np.zeros((5, 5), dtype=np.float32)
        arr.setflags(write=False)
        gx, _ = scharr_gradients(arr)
        self.assertEqual(gx.shape, (5, 5))

    def test_zero_gradient_has_zero_coherence(self):
        gx = np.zeros((8, 8), dtype=np.float32)
        jxx, jxy, jyy = structure_tensor(gx, gx)
        _, _, _, coherence = tensor_eigen(jxx, jxy, jyy)
        np.testing.assert_array_equal(coherence, 0.0)

    def test_oriented_gradient_is_fully_coherent(self):
        gx = np.ones((8, 8), dtype=np.float32)
        gy = np.zeros((8, 8), dtype=np.float32)
        _, ex, ey, coherence = tensor_eigen(*structure_tensor(gx, gy))
        np.testing.assert_allclose(coherence, 1.0, atol=1e-6)
        np.testing.assert_allclose(np.abs(ex), 1.0, atol=1e-6)
        np.testing.assert_allclose(ey, 0.0, atol=1e-6)


if __name__ == "__main__":
    unittest.main(verbosity=2)
