#!/usr/bin/env python3
"""
Sequential Laplacian-of-Gaussian edge detection.

Holds the fixed 5x5 kernel, the per-pixel stencil, a vectorised version of
the same arithmetic over a rectangle, and the single-process reference
convolution every parallel run must reproduce bit for bit.
"""
import enum
import os
import sys
import time

import numpy as np
from PIL import Image

from LogErrors import InputNotFound, OutOfRange

# Kernel preset: centre-positive LoG with a negative outer ring.
# KERNEL_LOG[i][j] weighs the pixel at column offset i, row offset j.
KERNEL_LOG = np.array([
    [ 0, -1, -1, -1,  0],
    [-1,  2,  4,  2, -1],
    [-1,  4, 12,  4, -1],
    [-1,  2,  4,  2, -1],
    [ 0, -1, -1, -1,  0],
], dtype=np.int32)
KERNEL_LOG.setflags(write=False)

KERNEL_SIZE = KERNEL_LOG.shape[0]
RADIUS = KERNEL_SIZE // 2


class Boundary(enum.Enum):
    """What to do with neighbours that fall outside the buffer."""
    SKIP = "skip"
    CLAMP_TO_EDGE = "clamp"


def apply_kernel(buffer, x, y, boundary=Boundary.SKIP):
    """Filtered intensity of pixel (x, y) of a 2-D buffer."""
    h, w = buffer.shape
    if not (0 <= x < w and 0 <= y < h):
        raise OutOfRange(f"pixel ({x}, {y}) outside {w}x{h} buffer")

    total = 0
    amount = 0
    for j in range(KERNEL_SIZE):
        for i in range(KERNEL_SIZE):
            tx = x + i - RADIUS
            ty = y + j - RADIUS
            if boundary is Boundary.CLAMP_TO_EDGE:
                tx = min(max(tx, 0), w - 1)
                ty = min(max(ty, 0), h - 1)
            elif not (0 <= tx < w and 0 <= ty < h):
                continue
            weight = int(KERNEL_LOG[i, j])
            total += weight * int(buffer[ty, tx])
            amount += weight

    if amount:
        total //= amount
    return min(max(total, 0), 255)


def filter_region(orig, x0, x1, y0, y1, boundary=Boundary.SKIP):
    """Filter the rectangle [y0, y1) x [x0, x1) of orig.

    Neighbours are read from anywhere in orig; only the buffer edges count
    as boundary. Returns an int32 array of shape (y1 - y0, x1 - x0) equal to
    apply_kernel() at every pixel.
    """
    h, w = orig.shape
    if not (0 <= x0 <= x1 <= w and 0 <= y0 <= y1 <= h):
        raise OutOfRange(f"region [{y0}:{y1}, {x0}:{x1}] outside {w}x{h} buffer")

    out_h, out_w = y1 - y0, x1 - x0
    if out_h == 0 or out_w == 0:
        return np.zeros((out_h, out_w), dtype=np.int32)

    # Only the part of orig the stencil can reach, padded where the buffer ends
    sy0, sy1 = max(y0 - RADIUS, 0), min(y1 + RADIUS, h)
    sx0, sx1 = max(x0 - RADIUS, 0), min(x1 + RADIUS, w)
    pad = (
        (RADIUS - (y0 - sy0), RADIUS - (sy1 - y1)),
        (RADIUS - (x0 - sx0), RADIUS - (sx1 - x1)),
    )
    window = orig[sy0:sy1, sx0:sx1].astype(np.int64)

    if boundary is Boundary.CLAMP_TO_EDGE:
        padded = np.pad(window, pad, mode="edge")
        valid = None
    else:
        padded = np.pad(window, pad, mode="constant")
        valid = np.pad(np.ones_like(window), pad, mode="constant")

    total = np.zeros((out_h, out_w), dtype=np.int64)
    amount = np.zeros((out_h, out_w), dtype=np.int64)
    for i in range(KERNEL_SIZE):
        for j in range(KERNEL_SIZE):
            weight = int(KERNEL_LOG[i, j])
            if weight == 0:
                continue
            shifted = (slice(j, j + out_h), slice(i, i + out_w))
            total += weight * padded[shifted]
            if valid is None:
                amount += weight
            else:
                amount += weight * valid[shifted]

    nonzero = amount != 0
    total[nonzero] //= amount[nonzero]
    return np.clip(total, 0, 255).astype(np.int32)


def apply_convolution(grid, boundary=Boundary.SKIP):
    """Single-process, single-thread reference over the whole grid."""
    h, w = grid.shape
    return filter_region(grid, 0, w, 0, h, boundary).astype(np.uint8)


def apply_convolution_timed(grid, boundary=Boundary.SKIP):
    """Run apply_convolution() and return (result, elapsed_seconds)."""
    t0 = time.perf_counter()
    out = apply_convolution(grid, boundary)
    t1 = time.perf_counter()
    return out, (t1 - t0)


def read_grayscale(path):
    """Load an image file as an (H, W) uint8 grid."""
    if not os.path.isfile(path):
        raise InputNotFound(f"image '{path}' not found.")
    try:
        with Image.open(path) as img:
            return np.array(img.convert("L"))
    except OSError as exc:
        raise InputNotFound(f"image '{path}' could not be read: {exc}") from exc


def save_grayscale(grid, path):
    """Write an (H, W) grid as an 8-bit grayscale image."""
    out = np.clip(grid, 0, 255).astype(np.uint8)
    Image.fromarray(out).save(path)


if __name__ == "__main__":
    # Configuration
    output_path = "output_sequential.png"
    boundary = Boundary.SKIP

    if len(sys.argv) != 2:
        raise SystemExit(f"Usage: {sys.argv[0]} (image path)")

    try:
        arr = read_grayscale(sys.argv[1])
    except InputNotFound as exc:
        raise SystemExit(f"Error: {exc}")

    print(f"w = {arr.shape[1]}; h = {arr.shape[0]}")

    result, elapsed = apply_convolution_timed(arr, boundary)
    print(f"Time elapsed: {elapsed:.4f}s")

    save_grayscale(result, output_path)
    print(f"Saved: {output_path}")
