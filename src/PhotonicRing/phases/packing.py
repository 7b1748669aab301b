"""Channel packing for the Terrain3D two-texture layout.

Texture A carries (Albedo.R, Albedo.G, Albedo.B, Height) and texture B
carries (Normal.X, Normal.Y, Normal.Z, Roughness). Both are BC3-compressed.
"""

import logging
from typing import Optional, Tuple

import numpy as np

from ..config import GeneratorConfig
from ..core import (
    DimensionMismatchError, ImageBuffer, NormalField, ScalarField,
    WorkerPool, to_uint8,
)
from .compress import CompressedTexture, compress_bc3

logger = logging.getLogger("photonic_ring.packing")


def _check_sizes(**named):
    sizes = {name: (obj.width, obj.height) for name, obj in named.items()}
    if len(set(sizes.values())) > 1:
        detail = ", ".join(f"{name}={w}x{h}" for name, (w, h) in sizes.items())
        raise DimensionMismatchError(f"Pack inputs must share dimensions: {detail}")


def assemble(rgb: np.ndarray, alpha: np.ndarray) -> np.ndarray:
    """Stack uint8 (H, W, 3) color and (H, W) alpha into (H, W, 4)."""
    return np.ascontiguousarray(np.dstack([rgb, alpha]).astype(np.uint8))


class ChannelPacker:
    """Pack four maps into two RGBA textures and compress them."""

    def __init__(self, config: Optional[GeneratorConfig] = None,
                 pool: Optional[WorkerPool] = None):
        self.config = config or GeneratorConfig()
        self.pool = pool or WorkerPool.from_config(self.config)

    def pack(self, albedo: ImageBuffer, height: ScalarField,
             normal: NormalField, roughness: ScalarField) -> Tuple[np.ndarray, np.ndarray]:
        """Return the two uncompressed RGBA textures for generated maps."""
        _check_sizes(albedo=albedo, height=height, normal=normal, roughness=roughness)
        texture_a = assemble(to_uint8(albedo.rgb()), height.to_uint8())
        texture_b = assemble(normal.encode(), roughness.to_uint8())
        return texture_a, texture_b

    def pack_manual(self, albedo: ImageBuffer, height: ImageBuffer,
                    normal: ImageBuffer, roughness: ImageBuffer
                    ) -> Tuple[CompressedTexture, CompressedTexture]:
        """Pack four caller-supplied decoded images.

        Height and roughness are reduced to luminance; the normal map's RGB
        is used as stored.
        """
        _check_sizes(albedo=albedo, height=height, normal=normal, roughness=roughness)
        texture_a = assemble(to_uint8(albedo.rgb()), to_uint8(height.luminance()))
        texture_b = assemble(to_uint8(normal.rgb()), to_uint8(roughness.luminance()))
        return self._compress(texture_a, texture_b)

    def pack_and_compress(self, albedo: ImageBuffer, height: ScalarField,
                          normal: NormalField, roughness: ScalarField
                          ) -> Tuple[CompressedTexture, CompressedTexture]:
        texture_a, texture_b = self.pack(albedo, height, normal, roughness)
        return self._compress(texture_a, texture_b)

    def _compress(self, texture_a: np.ndarray, texture_b: np.ndarray):
        compressed_a = compress_bc3(texture_a, self.pool)
        compressed_b = compress_bc3(texture_b, self.pool)
        logger.debug(
            "Packed %dx%d into two BC3 textures (%d blocks each)",
            compressed_a.width, compressed_a.height, compressed_a.block_count,
        )
        return compressed_a, compressed_b


def pack_and_compress(albedo: ImageBuffer, height: ScalarField,
                      normal: NormalField, roughness: ScalarField,
                      pool: Optional[WorkerPool] = None
                      ) -> Tuple[CompressedTexture, CompressedTexture]:
    return ChannelPacker(pool=pool).pack_and_compress(albedo, height, normal, roughness)
