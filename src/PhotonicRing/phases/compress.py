"""BC3 (DXT5) block compression and the DDS container.

Each 4x4 block becomes 16 bytes: an 8-byte alpha block (two endpoints plus
3-bit indices into an 8-level ramp) followed by an 8-byte color block (two
RGB565 endpoints plus 2-bit indices into a 4-level ramp). Images are padded
to multiples of 4 with edge-clamped pixels before encoding, and blocks are
stored in row-major tile order.
"""

import logging
import struct
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from ..core import (
    InvalidDimensionsError, UnsupportedFormatError, WorkerPool,
    crop_from_padded, pad_to_multiple,
)

logger = logging.getLogger("photonic_ring.compress")

BLOCK_SIZE = 4
BLOCK_BYTES = 16
# Summed squared RGB error (16 texels) below which the luminance-extreme
# endpoints are accepted without trying other candidates.
BLOCK_ERROR_THRESHOLD = 4096

DDS_MAGIC = b"DDS "
DDS_HEADER_SIZE = 124
DDS_PIXELFORMAT_SIZE = 32
DDSD_CAPS = 0x1
DDSD_HEIGHT = 0x2
DDSD_WIDTH = 0x4
DDSD_PIXELFORMAT = 0x1000
DDSD_LINEARSIZE = 0x80000
DDPF_FOURCC = 0x4
DDSCAPS_TEXTURE = 0x1000
FOURCC_DXT5 = b"DXT5"

_BC3_BLOCK = np.dtype([
    ("a0", "u1"),
    ("a1", "u1"),
    ("abits", "u1", (6,)),
    ("c0", "<u2"),
    ("c1", "<u2"),
    ("cbits", "<u4"),
])

_LUMA_WEIGHTS = np.array([2126, 7152, 722], dtype=np.int64)
_FAR = 1 << 30


def _padded(size: int) -> int:
    return (size + BLOCK_SIZE - 1) // BLOCK_SIZE * BLOCK_SIZE


@dataclass(frozen=True)
class CompressedTexture:
    """BC3 block stream for a ``width`` x ``height`` image."""

    width: int
    height: int
    data: bytes

    def __post_init__(self):
        if self.width < 1 or self.height < 1:
            raise InvalidDimensionsError(
                f"Compressed texture must be at least 1x1, got {self.width}x{self.height}"
            )
        expected = (self.padded_width // BLOCK_SIZE) * (self.padded_height // BLOCK_SIZE)
        if len(self.data) != expected * BLOCK_BYTES:
            raise ValueError(
                f"BC3 stream for {self.width}x{self.height} needs {expected} blocks "
                f"({expected * BLOCK_BYTES} bytes), got {len(self.data)} bytes"
            )

    @property
    def padded_width(self) -> int:
        return _padded(self.width)

    @property
    def padded_height(self) -> int:
        return _padded(self.height)

    @property
    def block_count(self) -> int:
        return len(self.data) // BLOCK_BYTES

    def to_dds(self) -> bytes:
        return build_dds_header(self.width, self.height, len(self.data)) + self.data

    def decode(self) -> np.ndarray:
        return decode_bc3(self.data, self.width, self.height)


def build_dds_header(width: int, height: int, linear_size: int) -> bytes:
    """Return the magic plus a 124-byte DDS header for a DXT5 surface."""
    flags = DDSD_CAPS | DDSD_HEIGHT | DDSD_WIDTH | DDSD_PIXELFORMAT | DDSD_LINEARSIZE
    header = struct.pack(
        "<7I", DDS_HEADER_SIZE, flags, height, width, linear_size, 0, 1
    )
    header += b"\x00" * 44  # dwReserved1[11]
    header += struct.pack(
        "<2I4s5I", DDS_PIXELFORMAT_SIZE, DDPF_FOURCC, FOURCC_DXT5, 0, 0, 0, 0, 0
    )
    header += struct.pack("<5I", DDSCAPS_TEXTURE, 0, 0, 0, 0)
    return DDS_MAGIC + header


def read_dds(payload: bytes) -> CompressedTexture:
    """Parse a DXT5 DDS file written by :func:`build_dds_header`."""
    if len(payload) < 4 + DDS_HEADER_SIZE or payload[:4] != DDS_MAGIC:
        raise UnsupportedFormatError("Not a DDS file")
    size, _flags, height, width = struct.unpack_from("<4I", payload, 4)
    if size != DDS_HEADER_SIZE:
        raise UnsupportedFormatError(f"Unexpected DDS header size {size}")
    pf_size, pf_flags, fourcc = struct.unpack_from("<2I4s", payload, 4 + 72)
    if pf_size != DDS_PIXELFORMAT_SIZE or not pf_flags & DDPF_FOURCC or fourcc != FOURCC_DXT5:
        raise UnsupportedFormatError(f"Unsupported DDS pixel format {fourcc!r}")
    return CompressedTexture(width, height, bytes(payload[4 + DDS_HEADER_SIZE:]))


def _to_blocks(rgba: np.ndarray) -> np.ndarray:
    """(H, W, 4) with H, W multiples of 4 -> (N, 16, 4), texels row-major."""
    h, w = rgba.shape[:2]
    return (
        rgba.reshape(h // BLOCK_SIZE, BLOCK_SIZE, w // BLOCK_SIZE, BLOCK_SIZE, 4)
        .transpose(0, 2, 1, 3, 4)
        .reshape(-1, BLOCK_SIZE * BLOCK_SIZE, 4)
    )


def _from_blocks(blocks: np.ndarray, blocks_y: int, blocks_x: int) -> np.ndarray:
    return (
        blocks.reshape(blocks_y, blocks_x, BLOCK_SIZE, BLOCK_SIZE, 4)
        .transpose(0, 2, 1, 3, 4)
        .reshape(blocks_y * BLOCK_SIZE, blocks_x * BLOCK_SIZE, 4)
    )


def quantize_565(colors: np.ndarray) -> np.ndarray:
    """Round (N, 3) 8-bit colors to packed RGB565."""
    c = colors.astype(np.int64)
    r = (c[:, 0] * 31 + 127) // 255
    g = (c[:, 1] * 63 + 127) // 255
    b = (c[:, 2] * 31 + 127) // 255
    return (r << 11) | (g << 5) | b


def expand_565(packed: np.ndarray) -> np.ndarray:
    """Expand packed RGB565 to (N, 3) 8-bit colors by bit replication."""
    v = packed.astype(np.int64)
    r = (v >> 11) & 0x1F
    g = (v >> 5) & 0x3F
    b = v & 0x1F
    return np.stack([(r << 3) | (r >> 2), (g << 2) | (g >> 4), (b << 3) | (b >> 2)], axis=-1)


def _color_palette(c0: np.ndarray, c1: np.ndarray) -> np.ndarray:
    p0 = expand_565(c0)
    p1 = expand_565(c1)
    return np.stack([p0, p1, (2 * p0 + p1) // 3, (p0 + 2 * p1) // 3], axis=1)


def _fit_endpoints(colors: np.ndarray, e0: np.ndarray, e1: np.ndarray):
    """Quantize one endpoint pair and index every texel against it.

    Returns (color0, color1, indices, sse) with color0 > color1 enforced.
    Equal endpoints leave every index at 0.
    """
    c0 = quantize_565(e0)
    c1 = quantize_565(e1)
    swap = c0 < c1
    c0, c1 = np.where(swap, c1, c0), np.where(swap, c0, c1)

    palette = _color_palette(c0, c1)
    diff = colors[:, :, None, :] - palette[:, None, :, :]
    dist = np.sum(diff * diff, axis=-1)
    equal = c0 == c1
    dist[equal, :, 1:] = _FAR
    indices = np.argmin(dist, axis=-1)
    sse = np.min(dist, axis=-1).sum(axis=-1)
    return c0, c1, indices, sse


def _candidate_pairs(colors: np.ndarray):
    n = colors.shape[0]
    rows = np.arange(n)

    luma = colors @ _LUMA_WEIGHTS
    yield colors[rows, np.argmax(luma, axis=1)], colors[rows, np.argmin(luma, axis=1)]

    mean = colors.mean(axis=1, keepdims=True)
    centered = colors - mean
    cov = np.einsum("nki,nkj->nij", centered, centered)
    axis = np.full((n, 3), 1.0 / np.sqrt(3.0))
    for _ in range(8):
        nxt = np.einsum("nij,nj->ni", cov, axis)
        norm = np.linalg.norm(nxt, axis=1, keepdims=True)
        axis = np.where(norm > 1e-9, nxt / np.maximum(norm, 1e-9), axis)
    proj = np.einsum("nki,ni->nk", centered, axis)
    yield colors[rows, np.argmax(proj, axis=1)], colors[rows, np.argmin(proj, axis=1)]

    yield colors.max(axis=1), colors.min(axis=1)


def encode_color_blocks(colors: np.ndarray):
    """Choose endpoints for (N, 16, 3) blocks; return (c0, c1, indices, sse)."""
    colors = colors.astype(np.int64)
    fits = [_fit_endpoints(colors, e0, e1) for e0, e1 in _candidate_pairs(colors)]
    sse = np.stack([f[3] for f in fits])
    choice = np.argmin(sse, axis=0)
    choice = np.where(sse[0] <= BLOCK_ERROR_THRESHOLD, 0, choice)

    rows = np.arange(colors.shape[0])
    c0 = np.stack([f[0] for f in fits])[choice, rows]
    c1 = np.stack([f[1] for f in fits])[choice, rows]
    indices = np.stack([f[2] for f in fits])[choice, rows]
    return c0, c1, indices, sse[choice, rows]


def alpha_palette(a0: np.ndarray, a1: np.ndarray) -> np.ndarray:
    """(N, 8) alpha ramp. a0 > a1 gives 8 levels; otherwise 6 plus 0 and 255."""
    a0 = a0.astype(np.int64)[:, None]
    a1 = a1.astype(np.int64)[:, None]
    k8 = np.arange(2, 8)
    eight = ((8 - k8) * a0 + (k8 - 1) * a1) // 7
    k6 = np.arange(2, 6)
    six = ((6 - k6) * a0 + (k6 - 1) * a1) // 5
    six = np.concatenate(
        [six, np.zeros_like(a0), np.full_like(a0, 255)], axis=1
    )
    interp = np.where(a0 > a1, eight, six)
    return np.concatenate([a0, a1, interp], axis=1)


def encode_alpha_blocks(alpha: np.ndarray):
    """Encode (N, 16) alpha values with a0 = max and a1 = min."""
    alpha = alpha.astype(np.int64)
    a0 = alpha.max(axis=1)
    a1 = alpha.min(axis=1)
    palette = alpha_palette(a0, a1)
    diff = alpha[:, :, None] - palette[:, None, :]
    indices = np.argmin(diff * diff, axis=-1)
    return a0, a1, indices


def encode_blocks(rgba: np.ndarray) -> bytes:
    """Encode an (H, W, 4) uint8 region whose sides are multiples of 4."""
    blocks = _to_blocks(rgba)
    n = blocks.shape[0]
    c0, c1, cidx, _ = encode_color_blocks(blocks[:, :, :3])
    a0, a1, aidx = encode_alpha_blocks(blocks[:, :, 3])

    out = np.zeros(n, dtype=_BC3_BLOCK)
    out["a0"] = a0
    out["a1"] = a1
    shifts3 = (3 * np.arange(16)).astype(np.uint64)
    abits = np.sum(aidx.astype(np.uint64) << shifts3, axis=1, dtype=np.uint64)
    out["abits"] = abits.astype("<u8").view(np.uint8).reshape(n, 8)[:, :6]
    out["c0"] = c0
    out["c1"] = c1
    shifts2 = (2 * np.arange(16)).astype(np.uint32)
    out["cbits"] = np.sum(cidx.astype(np.uint32) << shifts2, axis=1, dtype=np.uint32)
    return out.tobytes()


def compress_bc3(rgba: np.ndarray, pool: Optional[WorkerPool] = None) -> CompressedTexture:
    """Compress an (H, W, 4) uint8 image to a BC3 block stream."""
    if rgba.ndim != 3 or rgba.shape[2] != 4 or rgba.dtype != np.uint8:
        raise ValueError(
            f"compress_bc3 expects HxWx4 uint8 data, got {rgba.shape} {rgba.dtype}"
        )
    h, w = rgba.shape[:2]
    if h < 1 or w < 1:
        raise InvalidDimensionsError(f"Cannot compress a {w}x{h} image")
    pool = pool or WorkerPool()
    padded, info = pad_to_multiple(rgba, BLOCK_SIZE)

    rows = max(BLOCK_SIZE, pool.band_rows // BLOCK_SIZE * BLOCK_SIZE)
    regions = [padded[y:y + rows] for y in range(0, info["padded_h"], rows)]
    data = b"".join(pool.map_ordered(encode_blocks, regions))
    logger.debug(
        "BC3 compressed %dx%d (padded %dx%d) into %d blocks",
        w, h, info["padded_w"], info["padded_h"], len(data) // BLOCK_BYTES,
    )
    return CompressedTexture(w, h, data)


def decode_bc3(data: bytes, width: int, height: int) -> np.ndarray:
    """Decompress a BC3 stream to (height, width, 4) uint8.

    Used for verification; the padded border is cropped away.
    """
    blocks_x = _padded(width) // BLOCK_SIZE
    blocks_y = _padded(height) // BLOCK_SIZE
    raw = np.frombuffer(data, dtype=_BC3_BLOCK)
    if raw.shape[0] != blocks_x * blocks_y:
        raise ValueError(
            f"Expected {blocks_x * blocks_y} blocks for {width}x{height}, got {raw.shape[0]}"
        )
    n = raw.shape[0]

    abytes = np.zeros((n, 8), dtype=np.uint8)
    abytes[:, :6] = raw["abits"]
    abits = abytes.view("<u8").reshape(n)
    shifts3 = (3 * np.arange(16)).astype(np.uint64)
    aidx = ((abits[:, None] >> shifts3) & np.uint64(7)).astype(np.int64)
    apal = alpha_palette(raw["a0"], raw["a1"])
    alpha = np.take_along_axis(apal, aidx, axis=1)

    cpal = _color_palette(raw["c0"], raw["c1"])
    shifts2 = (2 * np.arange(16)).astype(np.uint32)
    cidx = ((raw["cbits"].astype(np.uint32)[:, None] >> shifts2) & np.uint32(3)).astype(np.int64)
    rgb = np.take_along_axis(cpal, cidx[:, :, None], axis=1)

    texels = np.concatenate([rgb, alpha[:, :, None]], axis=-1).astype(np.uint8)
    image = _from_blocks(texels, blocks_y, blocks_x)
    return crop_from_padded(image, {"original_h": height, "original_w": width})


def block_errors(original: np.ndarray, decoded: np.ndarray) -> np.ndarray:
    """Per-block summed squared RGBA error, shape (blocks_y, blocks_x)."""
    padded_a, info = pad_to_multiple(original.astype(np.int64), BLOCK_SIZE)
    padded_b, _ = pad_to_multiple(decoded.astype(np.int64), BLOCK_SIZE)
    diff = padded_a - padded_b
    sq = np.sum(diff * diff, axis=-1)
    by = info["padded_h"] // BLOCK_SIZE
    bx = info["padded_w"] // BLOCK_SIZE
    return sq.reshape(by, BLOCK_SIZE, bx, BLOCK_SIZE).sum(axis=(1, 3))


def compression_error(texture: CompressedTexture, original: np.ndarray) -> Tuple[int, float]:
    """Return (worst block error, mean block error) against ``original``."""
    errors = block_errors(original, texture.decode())
    return int(errors.max()), float(errors.mean())
