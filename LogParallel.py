#!/usr/bin/env python3
"""
Distributed Laplacian-of-Gaussian edge detection.

Rank 0 loads the image, splits it into row bands with halo rows, and ships
one band to every rank. Each rank filters its band with a pool of threads
working on column tiles, sends back its core rows, and rank 0 reassembles
and saves the edge map.

Run with:  mpiexec -n 4 python LogParallel.py image.png
"""
import sys

import numpy as np
from mpi4py import MPI

from LogErrors import LogEdgesError, TransportFailure, UsageError
from LogPartition import compute_bands, compute_halos
from LogSeq import Boundary, read_grayscale, save_grayscale
from LogThreads import DEFAULT_THREADS, TilePool, resolve_thread_count
from LogTransport import Transport

# Configuration
OUTPUT_PATH = "lenaGrayOut.png"
N_THREADS = DEFAULT_THREADS
BOUNDARY = Boundary.SKIP


def _coordinate(transport, pool, grid, boundary, bands=None):
    height, width = grid.shape
    if bands is None:
        bands = compute_bands(height, transport.size)
    halos = compute_halos(bands, height)

    local = transport.scatter(grid, bands, halos)

    own, halo = bands[0], halos[0]
    pool.run_filtered(local, halo.top_rows, own.row_count, boundary)
    core = local[halo.top_rows:halo.top_rows + own.row_count]

    out = np.empty((height, width), dtype=np.int32)
    transport.gather(out, bands, core)
    return out.astype(np.uint8)


def _work(transport, pool, boundary):
    _, height, top, _, local = transport.receive_assignment()
    pool.run_filtered(local, top, height, boundary)
    transport.send_result(local[top:top + height])


def filter_distributed(transport, grid=None, n_threads=DEFAULT_THREADS,
                       boundary=Boundary.SKIP, bands=None):
    """Filter grid across every active rank of an open transport.

    Rank 0 passes the grid and gets the uint8 edge map back; other ranks
    pass nothing and get None.
    """
    if transport.idle:
        return None

    with TilePool(n_threads) as pool:
        if transport.is_coordinator:
            if grid is None:
                raise ValueError("coordinator needs a grid")
            return _coordinate(transport, pool, grid, boundary, bands)
        _work(transport, pool, boundary)
        return None


def _run_coordinator(transport, argv):
    # everything that can fail is checked before the first pixel is sent
    try:
        grid = read_grayscale(argv[1])
        bands = compute_bands(grid.shape[0], transport.size)
        resolve_thread_count(N_THREADS)
    except LogEdgesError as exc:
        print(f"Error: {exc}", flush=True)
        transport.send_status(False)
        return 1

    transport.send_status(True)

    height, width = grid.shape
    print(f"# of processes: {transport.size}", flush=True)
    print(f"Slice size: w = {width}; h = {bands[0].row_count}", flush=True)

    start_t = MPI.Wtime()
    result = filter_distributed(transport, grid, N_THREADS, BOUNDARY, bands)
    end_t = MPI.Wtime()
    print(f"Time elapsed: {end_t - start_t}s", flush=True)

    save_grayscale(result, OUTPUT_PATH)
    print(f"Saved: {OUTPUT_PATH}", flush=True)
    return 0


def _run_worker(transport):
    if not transport.receive_status():
        return 1
    filter_distributed(transport, None, N_THREADS, BOUNDARY)
    return 0


def check_usage(argv):
    if len(argv) != 2:
        raise UsageError(f"Usage: {argv[0]} (image path)")


def main(argv=None, comm=None):
    """Entry point for every rank; returns the process exit code."""
    argv = sys.argv if argv is None else argv

    with Transport(comm) as transport:
        # ranks past the largest power of two sit this one out
        if transport.idle:
            return 0

        # every rank checks its own arguments, so nobody waits on a message
        try:
            check_usage(argv)
        except UsageError as exc:
            if transport.is_coordinator:
                print(exc, flush=True)
            return 2 if transport.is_coordinator else 1

        try:
            if transport.is_coordinator:
                return _run_coordinator(transport, argv)
            return _run_worker(transport)
        except TransportFailure as exc:
            print(f"Error: rank {transport.rank}: {exc}", flush=True)
            transport.abort(1)
            return 1


def cli():
    sys.exit(main())


if __name__ == "__main__":
    cli()
