"""End-to-end tests for the file-level entry operations."""

import os
import shutil
import tempfile
import unittest
from unittest.mock import patch

import numpy as np
from PIL import Image

from PhotonicRing.config import GeneratorConfig
from PhotonicRing.core import ImageBuffer, MaterialClass
from PhotonicRing.phases.compress import BLOCK_ERROR_THRESHOLD, block_errors, read_dds
from PhotonicRing.pipeline import TextureGenerator


def _save_png(path, width, height, channels=3, seed=0):
    rng = np.random.default_rng(seed)
    shape = (height, width) if channels == 1 else (height, width, channels)
    Image.fromarray(rng.integers(0, 256, size=shape, dtype=np.uint8)).save(path)


class _PipelineTestCase(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.out_dir = os.path.join(self.tmpdir, "out")
        self.config = GeneratorConfig()
        self.config.max_workers = 2
        self.config.band_rows = 16

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def _outputs(self):
        if not os.path.isdir(self.out_dir):
            return []
        return sorted(os.listdir(self.out_dir))


class TestGenerateMaps(_PipelineTestCase):
    def test_writes_three_named_maps(self):
        src = os.path.join(self.tmpdir, "rock.png")
        _save_png(src, 40, 24)
        result = TextureGenerator(self.config).generate_maps(src, self.out_dir)
        self.assertTrue(result["success"], result["error"])
        self.assertEqual(
            self._outputs(), ["rock_height.png", "rock_normal.png", "rock_roughness.png"]
        )
        self.assertEqual(result["size"], (40, 24))
        self.assertIn(result["material"], [m.label for m in MaterialClass])
        self.assertIsNone(result["error_kind"])
        with Image.open(result["height_path"]) as img:
            self.assertEqual((img.size, img.mode), ((40, 24), "L"))
        with Image.open(result["normal_path"]) as img:
            self.assertEqual((img.size, img.mode), ((40, 24), "RGB"))

    def test_outputs_default_to_source_directory(self):
        src = os.path.join(self.tmpdir, "grass.png")
        _save_png(src, 16, 16)
        result = TextureGenerator(self.config).generate_maps(src)
        self.assertTrue(result["success"], result["error"])
        self.assertEqual(os.path.dirname(result["roughness_path"]), self.tmpdir)

    def test_constant_albedo_gives_flat_normal_map(self):
        src = os.path.join(self.tmpdir, "flat.png")
        Image.new("RGB", (16, 16), (120, 120, 120)).save(src)
        result = TextureGenerator(self.config).generate_maps(src, self.out_dir)
        self.assertTrue(result["success"], result["error"])
        self.assertEqual(result["material"], "diffuse")
        with Image.open(result["normal_path"]) as img:
            normals = np.asarray(img)
        self.assertTrue(np.all(normals == np.array([128, 128, 255], dtype=np.uint8)))
        with Image.open(result["roughness_path"]) as img:
            roughness = np.asarray(img)
        self.assertLessEqual(int(np.abs(roughness.astype(int) - 128).max()), 1)

    def test_pack_flag_adds_dds_pair(self):
        src = os.path.join(self.tmpdir, "rock.png")
        _save_png(src, 12, 8)
        result = TextureGenerator(self.config).generate_maps(src, self.out_dir, pack=True)
        self.assertTrue(result["success"], result["error"])
        self.assertEqual(len(self._outputs()), 5)
        with open(result["albedo_h_path"], "rb") as f:
            tex = read_dds(f.read())
        self.assertEqual((tex.width, tex.height), (12, 8))

    def test_failed_publish_keeps_previous_run(self):
        src = os.path.join(self.tmpdir, "rock.png")
        _save_png(src, 16, 16, seed=1)
        generator = TextureGenerator(self.config)
        first = generator.generate_maps(src, self.out_dir)
        self.assertTrue(first["success"], first["error"])
        before = {}
        for name in self._outputs():
            with open(os.path.join(self.out_dir, name), "rb") as f:
                before[name] = f.read()

        _save_png(src, 16, 16, seed=2)
        real_replace = os.replace
        calls = []

        def flaky_replace(src_path, dst_path):
            calls.append(src_path)
            if len(calls) == 2:
                raise OSError("disk full")
            return real_replace(src_path, dst_path)

        with patch("os.replace", side_effect=flaky_replace):
            second = generator.generate_maps(src, self.out_dir)
        self.assertFalse(second["success"])
        self.assertEqual(second["error_kind"], "IOFailure")
        self.assertEqual(self._outputs(), sorted(before))
        for name, data in before.items():
            with open(os.path.join(self.out_dir, name), "rb") as f:
                self.assertEqual(f.read(), data, name)

    def test_missing_file_reports_io_failure(self):
        result = TextureGenerator(self.config).generate_maps(
            os.path.join(self.tmpdir, "missing.png"), self.out_dir
        )
        self.assertFalse(result["success"])
        self.assertEqual(result["error_kind"], "IOFailure")
        self.assertIsNone(result["height_path"])
        self.assertEqual(self._outputs(), [])

    def test_garbage_file_reports_unsupported_format(self):
        src = os.path.join(self.tmpdir, "broken.png")
        with open(src, "wb") as f:
            f.write(b"\x00\x01 definitely not a png")
        result = TextureGenerator(self.config).generate_maps(src, self.out_dir)
        self.assertEqual(result["error_kind"], "UnsupportedFormat")
        self.assertEqual(self._outputs(), [])

    def test_one_pixel_image_reports_invalid_dimensions(self):
        src = os.path.join(self.tmpdir, "dot.png")
        Image.new("RGB", (1, 1), (10, 20, 30)).save(src)
        result = TextureGenerator(self.config).generate_maps(src, self.out_dir)
        self.assertEqual(result["error_kind"], "InvalidDimensions")
        self.assertEqual(self._outputs(), [])

    def test_unexpected_failure_has_no_error_kind(self):
        src = os.path.join(self.tmpdir, "rock.png")
        _save_png(src, 16, 16)
        generator = TextureGenerator(self.config)
        with patch.object(generator.roughness_gen, "generate", side_effect=RuntimeError("boom")):
            with self.assertLogs("photonic_ring", level="ERROR"):
                result = generator.generate_maps(src, self.out_dir)
        self.assertFalse(result["success"])
        self.assertIsNone(result["error_kind"])
        self.assertIn("boom", result["error"])
        self.assertEqual(self._outputs(), [])

    def test_res_paths_resolve_against_project_root(self):
        os.makedirs(os.path.join(self.tmpdir, "textures"))
        _save_png(os.path.join(self.tmpdir, "textures", "dirt.png"), 16, 16)
        self.config.project_root = self.tmpdir
        result = TextureGenerator(self.config).generate_maps(
            "res://textures/dirt.png", "res://out"
        )
        self.assertTrue(result["success"], result["error"])
        self.assertEqual(result["height_path"], os.path.join(self.out_dir, "dirt_height.png"))

    def test_output_ext_from_config(self):
        src = os.path.join(self.tmpdir, "rock.png")
        _save_png(src, 16, 16)
        self.config.output_ext = ".tga"
        result = TextureGenerator(self.config).generate_maps(src, self.out_dir)
        self.assertTrue(result["success"], result["error"])
        self.assertTrue(result["normal_path"].endswith("rock_normal.tga"))

    def test_jpeg_quality_from_config(self):
        src = os.path.join(self.tmpdir, "rock.png")
        _save_png(src, 48, 48)
        self.config.output_ext = ".jpg"
        sizes = {}
        for quality in (10, 95):
            self.config.jpeg_quality = quality
            result = TextureGenerator(self.config).generate_maps(
                src, os.path.join(self.out_dir, str(quality))
            )
            self.assertTrue(result["success"], result["error"])
            sizes[quality] = os.path.getsize(result["normal_path"])
        self.assertLess(sizes[10], sizes[95])

    def test_generate_in_memory(self):
        rng = np.random.default_rng(9)
        albedo = ImageBuffer(rng.integers(0, 256, (20, 20, 3), dtype=np.uint8))
        maps = TextureGenerator(self.config).generate(albedo)
        for field in (maps.height, maps.normal, maps.roughness, maps.classification):
            self.assertEqual(field.size, (20, 20))


class TestPackTerrain3D(_PipelineTestCase):
    def _write_inputs(self, size=(8, 8), roughness_size=None):
        w, h = size
        paths = {}
        for name, channels in (("albedo", 3), ("height", 1), ("normal", 3), ("roughness", 1)):
            pw, ph = roughness_size if (name == "roughness" and roughness_size) else (w, h)
            paths[name] = os.path.join(self.tmpdir, f"rock_{name}.png")
            _save_png(paths[name], pw, ph, channels=channels, seed=len(name))
        return paths

    def test_writes_two_dds_files(self):
        paths = self._write_inputs()
        result = TextureGenerator(self.config).pack_terrain_3d(
            paths["albedo"], paths["height"], paths["normal"], paths["roughness"], self.out_dir
        )
        self.assertTrue(result["success"], result["error"])
        self.assertEqual(
            self._outputs(), ["rock_albedo_albedo_h.dds", "rock_albedo_normal_r.dds"]
        )
        with open(result["normal_r_path"], "rb") as f:
            tex = read_dds(f.read())
        self.assertEqual((tex.width, tex.height, tex.block_count), (8, 8, 4))

    def test_smooth_inputs_stay_within_block_error_threshold(self):
        y, x = np.mgrid[0:8, 0:8]
        gray = (120 + 2 * x + y).astype(np.uint8)
        albedo = np.dstack([gray, gray, gray])
        normal = np.dstack([128 + 2 * x, 128 + 2 * y, np.full_like(x, 250)]).astype(np.uint8)
        ramp = (60 + 3 * x + 3 * y).astype(np.uint8)
        paths = {name: os.path.join(self.tmpdir, f"smooth_{name}.png")
                 for name in ("albedo", "height", "normal", "roughness")}
        Image.fromarray(albedo).save(paths["albedo"])
        Image.fromarray(ramp).save(paths["height"])
        Image.fromarray(normal).save(paths["normal"])
        Image.fromarray(255 - ramp).save(paths["roughness"])

        result = TextureGenerator(self.config).pack_terrain_3d(
            paths["albedo"], paths["height"], paths["normal"], paths["roughness"], self.out_dir
        )
        self.assertTrue(result["success"], result["error"])
        for key, expected in (("albedo_h_path", albedo), ("normal_r_path", normal)):
            with open(result[key], "rb") as f:
                decoded = read_dds(f.read()).decode()
            errors = block_errors(expected, decoded[..., :3])
            self.assertEqual(errors.shape, (2, 2))
            self.assertTrue(np.all(errors <= BLOCK_ERROR_THRESHOLD), (key, errors))

    def test_height_lands_in_alpha(self):
        paths = self._write_inputs()
        with Image.open(paths["height"]) as img:
            expected = np.asarray(img)
        result = TextureGenerator(self.config).pack_terrain_3d(
            paths["albedo"], paths["height"], paths["normal"], paths["roughness"], self.out_dir
        )
        with open(result["albedo_h_path"], "rb") as f:
            decoded = read_dds(f.read()).decode()
        # BC3 alpha is lossy; the 8-level ramp keeps random data within a step.
        err = np.abs(decoded[..., 3].astype(int) - expected.astype(int))
        self.assertLessEqual(int(err.max()), 19)

    def test_dimension_mismatch_writes_nothing(self):
        paths = self._write_inputs(roughness_size=(8, 4))
        result = TextureGenerator(self.config).pack_terrain_3d(
            paths["albedo"], paths["height"], paths["normal"], paths["roughness"], self.out_dir
        )
        self.assertFalse(result["success"])
        self.assertEqual(result["error_kind"], "DimensionMismatch")
        self.assertEqual(self._outputs(), [])

    def test_missing_input_reports_io_failure(self):
        paths = self._write_inputs()
        result = TextureGenerator(self.config).pack_terrain_3d(
            paths["albedo"], os.path.join(self.tmpdir, "nope.png"),
            paths["normal"], paths["roughness"], self.out_dir,
        )
        self.assertEqual(result["error_kind"], "IOFailure")
        self.assertEqual(self._outputs(), [])


if __name__ == "__main__":
    unittest.main(verbosity=2)
