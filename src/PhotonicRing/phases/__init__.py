"""Generation and packing phases."""

from .height import HeightMapGenerator, generate_height
from .normal import NormalMapGenerator, generate_normal
from .classify import MaterialClassifier, classify
from .roughness import RoughnessMapGenerator, generate_roughness
from .compress import CompressedTexture, compress_bc3, decode_bc3, read_dds
from .packing import ChannelPacker, pack_and_compress

__all__ = [
    "HeightMapGenerator", "generate_height",
    "NormalMapGenerator", "generate_normal",
    "MaterialClassifier", "classify",
    "RoughnessMapGenerator", "generate_roughness",
    "CompressedTexture", "compress_bc3", "decode_bc3", "read_dds",
    "ChannelPacker", "pack_and_compress",
]
