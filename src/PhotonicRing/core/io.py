"""Image I/O utilities -- decode to ImageBuffer, encode 8-bit maps, stage writes."""

import logging
import os
import threading
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

import numpy as np
from PIL import Image, UnidentifiedImageError

from .buffers import ImageBuffer
from .errors import (
    IOFailureError,
    OutOfMemoryError,
    TextureError,
    UnsupportedFormatError,
)

# Pillow's global decompression bomb check is replaced by the per-call
# max_pixels guard in load_image().
Image.MAX_IMAGE_PIXELS = None

logger = logging.getLogger("photonic_ring.io")

DEFAULT_FORMATS = (".png", ".jpg", ".jpeg", ".tga", ".bmp")
WRITABLE_FORMATS = (".png", ".jpg", ".jpeg", ".tga", ".bmp")


def image_to_array(img: Image.Image) -> np.ndarray:
    """Convert a Pillow image to a uint8 or float32 array.

    8-bit modes keep their samples; palette, LA and CMYK images are
    converted to RGB(A). 16-bit and float modes are normalized to float32
    in [0, 1].
    """
    if img.mode in ("I;16", "I;16B", "I;16L", "I;16N"):
        return np.asarray(img, dtype=np.float32) / 65535.0
    if img.mode == "I":
        return np.clip(np.asarray(img, dtype=np.float32) / 65535.0, 0.0, 1.0)
    if img.mode == "F":
        return np.clip(np.asarray(img, dtype=np.float32), 0.0, 1.0)
    if img.mode in ("L", "RGB", "RGBA"):
        return np.asarray(img, dtype=np.uint8)

    if img.mode in ("P", "LA", "PA"):
        target = "RGBA"
    elif img.mode == "1":
        target = "L"
    else:
        target = "RGB"
    logger.debug("Converting %s image to %s", img.mode, target)
    with img.convert(target) as converted:
        return np.asarray(converted, dtype=np.uint8)


def load_image(path: str, max_pixels: int = 0,
               supported_formats: Optional[Iterable[str]] = None) -> ImageBuffer:
    """Decode an image file into an :class:`ImageBuffer`.

    Raises UnsupportedFormatError for unknown extensions or undecodable
    data, IOFailureError for read failures, and OutOfMemoryError when the
    image exceeds ``max_pixels``.
    """
    ext = Path(path).suffix.lower()
    formats = tuple(f.lower() for f in (supported_formats or DEFAULT_FORMATS))
    if ext not in formats:
        raise UnsupportedFormatError(
            f"Unsupported image extension '{ext}' for {path} "
            f"(supported: {', '.join(formats)})"
        )
    if not os.path.isfile(path):
        raise IOFailureError(f"Image not found: {path}")

    try:
        with Image.open(path) as img:
            # Memory guard
            if max_pixels > 0 and img.width * img.height > max_pixels:
                logger.warning(
                    "Image %s exceeds max_pixels: %d > %d",
                    path, img.width * img.height, max_pixels,
                )
                raise OutOfMemoryError(
                    f"Image too large: {img.width}x{img.height} = "
                    f"{img.width * img.height:,} pixels (max {max_pixels:,})"
                )

            buf = ImageBuffer.from_image(img)
            logger.debug("Loaded %s (%dx%d, mode %s)", path, img.width, img.height, img.mode)
            return buf
    except TextureError:
        raise
    except UnidentifiedImageError as e:
        logger.error("Cannot identify image '%s': %s", path, e)
        raise UnsupportedFormatError(f"Cannot decode image {path}: {e}") from e
    except MemoryError as e:
        raise OutOfMemoryError(f"Out of memory decoding {path}") from e
    except (OSError, SyntaxError, ValueError) as e:
        logger.error("Failed to open image '%s' (ext=%s): %s", path, ext, e)
        raise IOFailureError(f"Failed to read image {path}: {e}") from e


def _encode(arr: np.ndarray, path: str, quality: int = 95):
    """Encode a uint8 array with Pillow, picking options from the extension."""
    ext = Path(path).suffix.lower()
    with Image.fromarray(np.ascontiguousarray(arr)) as img:
        if ext in (".jpg", ".jpeg"):
            if img.mode == "RGBA":
                with img.convert("RGB") as converted:
                    converted.save(path, format="JPEG", quality=quality)
            else:
                img.save(path, format="JPEG", quality=quality)
        elif ext == ".png":
            img.save(path, format="PNG", optimize=True)
        elif ext == ".tga":
            img.save(path, format="TGA")
        elif ext == ".bmp":
            img.save(path, format="BMP")
        else:
            raise UnsupportedFormatError(f"Cannot encode images as '{ext}': {path}")


def _tmp_path_for(path: str) -> str:
    ext = Path(path).suffix
    # Keep the original extension so the encoder can infer the format.
    return f"{path}.tmp.{os.getpid()}.{threading.get_ident()}{ext}"


def _backup_path_for(path: str) -> str:
    return f"{path}.bak.{os.getpid()}.{threading.get_ident()}"


def _remove_quietly(path: str):
    if os.path.exists(path):
        try:
            os.remove(path)
        except OSError as exc:
            logger.debug("Could not remove temp file %s: %s", path, exc)


def save_image(arr: np.ndarray, path: str, quality: int = 95):
    """Save a uint8 array (HxW, HxWx3 or HxWx4) atomically."""
    with StagedWriter() as writer:
        writer.stage_image(arr, path, quality=quality)
        writer.commit()


class StagedWriter:
    """Stage several outputs and publish them together.

    Each output is written to a temp file beside its destination. Nothing
    appears at a destination path until :meth:`commit`, and a failed or
    abandoned batch removes its temp files.
    """

    def __init__(self):
        self._staged: List[Tuple[str, str]] = []
        self._committed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if not self._committed:
            self.discard()
        return False

    def _prepare(self, path: str) -> str:
        if self._committed:
            raise RuntimeError("StagedWriter already committed")
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        tmp_path = _tmp_path_for(path)
        self._staged.append((tmp_path, path))
        return tmp_path

    def stage_image(self, arr: np.ndarray, path: str, quality: int = 95):
        if arr.dtype != np.uint8:
            raise ValueError(f"stage_image expects uint8 data, got {arr.dtype}")
        if arr.size == 0 or arr.ndim < 2:
            raise ValueError(
                f"Cannot save empty or degenerate array (shape={arr.shape}) to {path}"
            )
        if Path(path).suffix.lower() not in WRITABLE_FORMATS:
            raise UnsupportedFormatError(f"Cannot encode images as '{Path(path).suffix}': {path}")
        try:
            tmp_path = self._prepare(path)
            _encode(arr, tmp_path, quality=quality)
        except TextureError:
            raise
        except OSError as e:
            raise IOFailureError(f"Failed to write {path}: {e}") from e
        logger.debug("Staged image %s (%s)", path, arr.shape)

    def stage_bytes(self, data: bytes, path: str):
        try:
            tmp_path = self._prepare(path)
            with open(tmp_path, "wb") as f:
                f.write(data)
        except OSError as e:
            raise IOFailureError(f"Failed to write {path}: {e}") from e
        logger.debug("Staged %d bytes for %s", len(data), path)

    def commit(self) -> List[str]:
        """Move every staged file into place; roll back on failure.

        Existing destinations are moved to a sibling backup first and put
        back if any later move fails, so a failed commit leaves the previous
        outputs untouched.
        """
        published: List[Tuple[str, Optional[str]]] = []
        try:
            for tmp_path, path in self._staged:
                backup = None
                if os.path.exists(path):
                    backup = _backup_path_for(path)
                    os.replace(path, backup)
                published.append((path, backup))
                os.replace(tmp_path, path)
        except OSError as e:
            self._restore(published)
            self.discard()
            raise IOFailureError(f"Failed to publish outputs: {e}") from e
        for _, backup in published:
            if backup is not None:
                _remove_quietly(backup)
        self._committed = True
        logger.debug("Committed %d output(s)", len(published))
        return [path for path, _ in published]

    @staticmethod
    def _restore(published: List[Tuple[str, Optional[str]]]):
        for path, backup in reversed(published):
            if backup is None:
                _remove_quietly(path)
                continue
            try:
                os.replace(backup, path)
            except OSError as exc:
                logger.error("Could not restore %s from %s: %s", path, backup, exc)

    def discard(self):
        for tmp_path, _ in self._staged:
            _remove_quietly(tmp_path)
        self._staged = []


def ensure_rgb(arr: np.ndarray) -> np.ndarray:
    """Ensure array is (H, W, 3)."""
    if arr.ndim == 2:
        return np.stack([arr] * 3, axis=-1)
    if arr.shape[-1] == 4:
        return arr[:, :, :3]
    if arr.shape[-1] == 1:
        return np.concatenate([arr] * 3, axis=-1)
    return arr


def luminance_bt709(arr: np.ndarray) -> np.ndarray:
    """Compute BT.709 luminance from an RGB-like float array."""
    if arr.ndim == 2:
        return arr.astype(np.float32, copy=False)
    rgb = ensure_rgb(arr).astype(np.float32, copy=False)
    return (
        0.2126 * rgb[:, :, 0] +
        0.7152 * rgb[:, :, 1] +
        0.0722 * rgb[:, :, 2]
    ).astype(np.float32, copy=False)


def to_uint8(arr: np.ndarray) -> np.ndarray:
    """Quantize float [0, 1] data to uint8 with rounding."""
    if arr.dtype == np.uint8:
        return arr
    return np.round(np.clip(arr, 0.0, 1.0) * 255.0).astype(np.uint8)
