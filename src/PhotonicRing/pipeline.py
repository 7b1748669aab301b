"""Entry operations: derive PBR maps from an albedo, and pack Terrain3D textures.

`TextureGenerator` is a plain constructible service. Its file-level
operations never raise for expected failures; they return a result dict with
``success``, the output paths, ``error`` and ``error_kind`` instead, and
either every output of a call is written or none is.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from .config import GeneratorConfig
from .core import (
    ClassificationField, ImageBuffer, NormalField, ScalarField,
    StagedWriter, WorkerPool, error_kind_for, get_output_path,
    load_image, resolve_resource_path,
)
from .phases.classify import MaterialClassifier
from .phases.height import HeightMapGenerator
from .phases.normal import NormalMapGenerator
from .phases.packing import ChannelPacker
from .phases.roughness import RoughnessMapGenerator

logger = logging.getLogger("photonic_ring")

HEIGHT_SUFFIX = "_height"
NORMAL_SUFFIX = "_normal"
ROUGHNESS_SUFFIX = "_roughness"
ALBEDO_HEIGHT_SUFFIX = "_albedo_h"
NORMAL_ROUGHNESS_SUFFIX = "_normal_r"
DDS_EXT = ".dds"


@dataclass(frozen=True)
class GeneratedMaps:
    """In-memory result of one generation pass."""

    height: ScalarField
    normal: NormalField
    roughness: ScalarField
    classification: ClassificationField


class TextureGenerator:
    """Generate height/normal/roughness maps and pack Terrain3D textures."""

    def __init__(self, config: Optional[GeneratorConfig] = None):
        self.config = config or GeneratorConfig()
        self.pool = WorkerPool.from_config(self.config)
        self.height_gen = HeightMapGenerator(self.config, self.pool)
        self.normal_gen = NormalMapGenerator(self.config, self.pool)
        self.classifier = MaterialClassifier(self.config, self.pool)
        self.roughness_gen = RoughnessMapGenerator(self.config, self.pool)
        self.packer = ChannelPacker(self.config, self.pool)

    def generate(self, albedo: ImageBuffer) -> GeneratedMaps:
        """Run height, normal, classification and roughness on a buffer.

        Raises the texture error taxonomy on invalid input.
        """
        height = self.height_gen.generate(albedo)
        normal = self.normal_gen.generate(height)
        classification = self.classifier.classify(albedo, height)
        roughness = self.roughness_gen.generate(albedo, classification)
        return GeneratedMaps(height, normal, roughness, classification)

    def _load(self, path: str) -> ImageBuffer:
        return load_image(
            resolve_resource_path(path, self.config.project_root),
            max_pixels=self.config.max_image_pixels,
            supported_formats=self.config.supported_formats,
        )

    def _record_failure(self, result: dict, exc: Exception, operation: str, source: str):
        kind = error_kind_for(exc)
        result["success"] = False
        result["error"] = str(exc) or exc.__class__.__name__
        result["error_kind"] = kind.value if kind else None
        if kind is None:
            logger.error("%s failed for %s: %s", operation, source, exc, exc_info=True)
        else:
            logger.error("%s failed for %s [%s]: %s", operation, source, kind.value, exc)

    def generate_maps(self, albedo_path: str, output_dir: str = "",
                      pack: bool = False) -> dict:
        """Write ``<stem>_height``, ``<stem>_normal`` and ``<stem>_roughness``.

        Outputs go beside the source, or into ``output_dir`` when given, using
        ``config.output_ext``. With ``pack`` the Terrain3D DDS pair built from
        the generated maps is written in the same batch.
        """
        result = {
            "success": False,
            "height_path": None,
            "normal_path": None,
            "roughness_path": None,
            "albedo_h_path": None,
            "normal_r_path": None,
            "material": None,
            "size": None,
            "error": None,
            "error_kind": None,
        }
        try:
            source = resolve_resource_path(albedo_path, self.config.project_root)
            out_dir = resolve_resource_path(output_dir, self.config.project_root)
            albedo = self._load(source)
            maps = self.generate(albedo)

            ext = self.config.output_ext.lower()
            paths = {
                "height_path": get_output_path(source, out_dir, HEIGHT_SUFFIX, ext),
                "normal_path": get_output_path(source, out_dir, NORMAL_SUFFIX, ext),
                "roughness_path": get_output_path(source, out_dir, ROUGHNESS_SUFFIX, ext),
            }
            packed = None
            if pack:
                packed = self.packer.pack_and_compress(
                    albedo, maps.height, maps.normal, maps.roughness
                )
                paths["albedo_h_path"] = get_output_path(
                    source, out_dir, ALBEDO_HEIGHT_SUFFIX, DDS_EXT
                )
                paths["normal_r_path"] = get_output_path(
                    source, out_dir, NORMAL_ROUGHNESS_SUFFIX, DDS_EXT
                )

            quality = self.config.jpeg_quality
            with StagedWriter() as writer:
                writer.stage_image(maps.height.to_uint8(), paths["height_path"], quality)
                writer.stage_image(maps.normal.encode(), paths["normal_path"], quality)
                writer.stage_image(maps.roughness.to_uint8(), paths["roughness_path"], quality)
                if packed is not None:
                    writer.stage_bytes(packed[0].to_dds(), paths["albedo_h_path"])
                    writer.stage_bytes(packed[1].to_dds(), paths["normal_r_path"])
                writer.commit()

            material, confidence = maps.classification.dominant()
            result.update(paths)
            result.update({
                "success": True,
                "material": material.label,
                "size": albedo.size,
            })
            logger.info(
                "Generated maps for %s (%dx%d, dominant material %s, confidence %.2f)",
                os.path.basename(source), albedo.width, albedo.height,
                material.label, confidence,
            )
        except Exception as exc:
            self._record_failure(result, exc, "Map generation", albedo_path)
        return result

    def pack_terrain_3d(self, albedo: str, height: str, normal: str,
                        roughness: str, output_dir: str = "") -> dict:
        """Write ``<stem>_albedo_h.dds`` and ``<stem>_normal_r.dds``.

        The stem comes from the albedo path. All four inputs must share the
        same dimensions.
        """
        result = {
            "success": False,
            "albedo_h_path": None,
            "normal_r_path": None,
            "error": None,
            "error_kind": None,
        }
        try:
            source = resolve_resource_path(albedo, self.config.project_root)
            out_dir = resolve_resource_path(output_dir, self.config.project_root)
            buffers = [self._load(p) for p in (source, height, normal, roughness)]
            texture_a, texture_b = self.packer.pack_manual(*buffers)

            paths = {
                "albedo_h_path": get_output_path(source, out_dir, ALBEDO_HEIGHT_SUFFIX, DDS_EXT),
                "normal_r_path": get_output_path(source, out_dir, NORMAL_ROUGHNESS_SUFFIX, DDS_EXT),
            }
            with StagedWriter() as writer:
                writer.stage_bytes(texture_a.to_dds(), paths["albedo_h_path"])
                writer.stage_bytes(texture_b.to_dds(), paths["normal_r_path"])
                writer.commit()

            result.update(paths)
            result["success"] = True
            logger.info(
                "Packed Terrain3D textures for %s (%dx%d)",
                os.path.basename(source), texture_a.width, texture_a.height,
            )
        except Exception as exc:
            self._record_failure(result, exc, "Terrain3D packing", albedo)
        return result
