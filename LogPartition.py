#!/usr/bin/env python3
"""
Row-band decomposition of an image over MPI ranks, and the reverse step
that puts the filtered bands back together.
"""
from dataclasses import dataclass

import numpy as np

from LogErrors import InvalidPartition, TransportFailure
from LogSeq import RADIUS


@dataclass(frozen=True)
class Band:
    """Output rows [start_row, start_row + row_count) produced by one rank."""

    rank: int
    start_row: int
    row_count: int

    @property
    def stop_row(self):
        return self.start_row + self.row_count


@dataclass(frozen=True)
class Halo:
    """Context rows a rank needs above and below its band."""

    top_rows: int
    bottom_rows: int


def usable_process_count(p):
    """Round p down to the nearest power of two."""
    if p < 1:
        raise InvalidPartition(f"need at least one process, got {p}")
    return 1 << (p.bit_length() - 1)


def compute_bands(height, p):
    """Split height rows into p contiguous bands in rank order.

    The first height % p bands get one extra row so every row is covered.
    """
    if p < 1:
        raise InvalidPartition(f"need at least one process, got {p}")
    if height < p:
        raise InvalidPartition(f"cannot split {height} rows over {p} processes")

    base, extra = divmod(height, p)
    bands = []
    start = 0
    for rank in range(p):
        count = base + (1 if rank < extra else 0)
        bands.append(Band(rank, start, count))
        start += count
    return bands


def compute_halos(bands, height, radius=RADIUS):
    """Halo of each band: none at the image edges, radius rows elsewhere."""
    halos = []
    for band in bands:
        # limited to the rows that exist beyond the band
        top = 0 if band.start_row == 0 else min(radius, band.start_row)
        bottom = 0 if band.stop_row == height else min(radius, height - band.stop_row)
        halos.append(Halo(top, bottom))
    return halos


def band_rows(band, halo):
    """Global row range a rank receives: its band plus halo."""
    return slice(band.start_row - halo.top_rows, band.stop_row + halo.bottom_rows)


def assemble(grid, bands, core_slices):
    """Copy each band's core rows into grid, in rank order, in place."""
    if len(core_slices) != len(bands):
        raise TransportFailure(f"expected {len(bands)} slices, got {len(core_slices)}")

    width = grid.shape[1]
    for band, core in zip(bands, core_slices):
        if core.shape != (band.row_count, width):
            raise TransportFailure(
                f"rank {band.rank}: slice of shape {core.shape}, expected {(band.row_count, width)}"
            )
        grid[band.start_row:band.stop_row] = core
    return grid
