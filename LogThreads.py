#!/usr/bin/env python3
"""
Thread-level tiling of the LoG filter inside one process.

The local buffer is split into column ranges, one per thread. Every task
reads the same immutable snapshot and writes only its own columns, so the
parallel phase needs no locks; the joblib call returning is the join barrier.
"""
import os

import numpy as np
from joblib import Parallel, delayed

from LogErrors import InvalidThreadCount, OutOfRange
from LogSeq import Boundary, filter_region

DEFAULT_THREADS = 4


def resolve_thread_count(n_threads):
    """-1 means one thread per CPU core."""
    if n_threads == -1:
        return os.cpu_count() or 1
    if n_threads < 1:
        raise InvalidThreadCount(f"thread count must be >= 1, got {n_threads}")
    return n_threads


def split_columns(width, n_threads):
    """Contiguous, disjoint column ranges covering [0, width).

    Each range gets width // n_threads columns; the last one absorbs the
    remainder. Ranges may be empty when width < n_threads.
    """
    n_threads = resolve_thread_count(n_threads)
    step = width // n_threads
    ranges = []
    for t in range(n_threads):
        start = t * step
        end = width if t == n_threads - 1 else (t + 1) * step
        ranges.append((start, end))
    return ranges


def process_columns(orig, out, x0, x1, y0, y1, boundary):
    """Filter one column tile of orig into the same tile of out."""
    out[y0:y1, x0:x1] = filter_region(orig, x0, x1, y0, y1, boundary)
    return x0, x1


class TilePool:
    """Fixed-size thread pool reused across run_filtered() calls.

    Use as a context manager so the joblib workers are started once and
    released on exit.
    """

    def __init__(self, n_threads=DEFAULT_THREADS):
        self.n_threads = resolve_thread_count(n_threads)
        self._parallel = Parallel(n_jobs=self.n_threads, backend="threading")

    def __enter__(self):
        self._parallel.__enter__()
        return self

    def __exit__(self, exc_type, exc, tb):
        return self._parallel.__exit__(exc_type, exc, tb)

    def run_filtered(self, local, top_rows, row_count, boundary=Boundary.SKIP):
        """Overwrite rows [top_rows, top_rows + row_count) of local with filtered values.

        Halo rows outside that range are read but left untouched.
        Returns local once every tile has been written.
        """
        local_h, width = local.shape
        if top_rows < 0 or row_count < 0 or top_rows + row_count > local_h:
            raise OutOfRange(
                f"rows [{top_rows}:{top_rows + row_count}] outside local buffer of height {local_h}"
            )

        # Snapshot every thread reads from
        orig = local.copy()
        orig.setflags(write=False)

        y0, y1 = top_rows, top_rows + row_count
        tiles = [(x0, x1) for x0, x1 in split_columns(width, self.n_threads) if x0 < x1]

        self._parallel(
            delayed(process_columns)(orig, local, x0, x1, y0, y1, boundary)
            for x0, x1 in tiles
        )
        return local


def run_filtered(local, top_rows, row_count, n_threads=DEFAULT_THREADS, boundary=Boundary.SKIP):
    """One-shot TilePool.run_filtered()."""
    with TilePool(n_threads) as pool:
        return pool.run_filtered(local, top_rows, row_count, boundary)


def apply_convolution(grid, n_threads=DEFAULT_THREADS, boundary=Boundary.SKIP):
    """Whole-grid threaded convolution, no halo."""
    local = np.array(grid, dtype=np.int32)
    run_filtered(local, 0, local.shape[0], n_threads, boundary)
    return local.astype(np.uint8)
