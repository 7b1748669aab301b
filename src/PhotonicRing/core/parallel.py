"""Fixed-size worker pool for deterministic data-parallel stages.

Work is split into row bands whose layout depends only on the image height
and the configured band size. Each band reads a read-only slice of its
sources (plus a halo of context rows) and contributes a disjoint slice of
the output, so results are identical for any worker count.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Sequence

import numpy as np

from .tiling import row_bands

logger = logging.getLogger("photonic_ring.parallel")


class WorkerPool:
    """Run band or item work on a bounded thread pool."""

    def __init__(self, max_workers: int = 1, band_rows: int = 64):
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        if band_rows < 1:
            raise ValueError(f"band_rows must be >= 1, got {band_rows}")
        self.max_workers = int(max_workers)
        self.band_rows = int(band_rows)

    @classmethod
    def from_config(cls, config) -> "WorkerPool":
        return cls(max_workers=config.max_workers, band_rows=config.band_rows)

    def map_ordered(self, fn: Callable, items: Sequence) -> list:
        """Apply ``fn`` to every item and return results in input order.

        The first worker exception is re-raised after pending work is
        cancelled.
        """
        items = list(items)
        if self.max_workers <= 1 or len(items) <= 1:
            return [fn(item) for item in items]

        workers = min(self.max_workers, len(items))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(fn, item) for item in items]
            results = []
            try:
                for future in futures:
                    results.append(future.result())
            except BaseException:
                for future in futures:
                    future.cancel()
                raise
        return results

    def map_bands(self, fn: Callable, sources: Sequence[np.ndarray],
                  halo: int = 0):
        """Run ``fn`` over row bands of ``sources`` and stitch the results.

        ``fn`` receives one slice per source, each extended by up to ``halo``
        rows above and below (clamped to the image), and must return an
        array, or a tuple of arrays, with the same number of rows as its
        inputs. Halo rows are cropped before the band is placed.
        """
        if not sources:
            raise ValueError("map_bands requires at least one source array")
        height = sources[0].shape[0]
        for src in sources[1:]:
            if src.shape[0] != height:
                raise ValueError(
                    f"Band sources disagree on height: {src.shape[0]} != {height}"
                )
        halo = max(0, int(halo))
        bands = row_bands(height, self.band_rows)

        def _run(band):
            start, stop = band
            lo = max(0, start - halo)
            hi = min(height, stop + halo)
            out = fn(*[src[lo:hi] for src in sources])
            is_tuple = isinstance(out, tuple)
            parts = out if is_tuple else (out,)
            top = start - lo
            return is_tuple, tuple(p[top:top + (stop - start)] for p in parts)

        logger.debug(
            "Running %d band(s) of %d rows (halo=%d, workers=%d)",
            len(bands), self.band_rows, halo, self.max_workers,
        )
        pieces = self.map_ordered(_run, bands)

        is_tuple = pieces[0][0]
        outputs = [
            np.empty((height,) + p.shape[1:], dtype=p.dtype) for p in pieces[0][1]
        ]
        for (start, stop), (_, parts) in zip(bands, pieces):
            for dest, part in zip(outputs, parts):
                dest[start:stop] = part
        return tuple(outputs) if is_tuple else outputs[0]
