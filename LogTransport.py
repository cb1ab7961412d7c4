#!/usr/bin/env python3
"""
Message passing between the coordinator (rank 0) and the workers.

Control scalars travel as small pickled messages, one tag per field; pixel
blocks travel as int32 buffers. Every call blocks until its message has been
handed to (or taken from) MPI. Any failure is reported as TransportFailure.
"""
import contextlib
import enum
import numbers

import numpy as np
from mpi4py import MPI

from LogErrors import TransportFailure
from LogPartition import assemble, band_rows, usable_process_count
from LogSeq import RADIUS


class Tag(enum.IntEnum):
    WIDTH = 0
    HEIGHT = 1
    PIXELS = 2
    RESULT = 3
    RESULT_HEADER = 4
    STATUS = 5
    TOP_HALO = 8
    BOTTOM_HALO = 9


@contextlib.contextmanager
def _mpi_errors(what):
    try:
        yield
    except MPI.Exception as exc:
        raise TransportFailure(f"{what}: {exc}") from exc


def _check_int(name, value):
    if isinstance(value, bool) or not isinstance(value, numbers.Integral):
        raise TransportFailure(f"malformed {name}: {value!r}")
    return int(value)


class Transport:
    """Scoped handle on a communicator.

    Entering duplicates the communicator so engine traffic never mixes with
    anything else on it; leaving frees the duplicate.
    """

    def __init__(self, comm=None):
        self._base = MPI.COMM_WORLD if comm is None else comm
        self.comm = None
        self.rank = self._base.Get_rank()
        self.world_size = self._base.Get_size()
        # partitioning only ever sees the power-of-two count
        self.size = usable_process_count(self.world_size)

    @property
    def idle(self):
        return self.rank >= self.size

    @property
    def is_coordinator(self):
        return self.rank == 0

    def __enter__(self):
        with _mpi_errors("duplicating communicator"):
            self.comm = self._base.Dup()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        if self.comm is not None:
            comm, self.comm = self.comm, None
            with _mpi_errors("freeing communicator"):
                comm.Free()

    def abort(self, code=1):
        """Tear down the whole job."""
        self._base.Abort(code)

    def _open(self):
        if self.comm is None:
            raise TransportFailure("transport is not open")
        return self.comm

    def _workers(self):
        return range(1, self.size)

    # coordinator side

    def send_status(self, ok):
        """Tell every active worker whether the run goes ahead."""
        comm = self._open()
        with _mpi_errors("sending status"):
            for k in self._workers():
                comm.send(bool(ok), dest=k, tag=int(Tag.STATUS))

    def scatter(self, grid, bands, halos):
        """Ship every worker its band plus halo; return rank 0's own copy."""
        comm = self._open()
        if len(bands) != self.size or len(halos) != self.size:
            raise TransportFailure(f"{len(bands)} bands for {self.size} processes")

        grid = np.ascontiguousarray(grid, dtype=np.int32)
        width = grid.shape[1]

        with _mpi_errors("scatter"):
            for band, halo in zip(bands[1:], halos[1:]):
                k = band.rank
                comm.send(width, dest=k, tag=int(Tag.WIDTH))
                comm.send(band.row_count, dest=k, tag=int(Tag.HEIGHT))
                comm.send(halo.top_rows, dest=k, tag=int(Tag.TOP_HALO))
                comm.send(halo.bottom_rows, dest=k, tag=int(Tag.BOTTOM_HALO))

                block = np.ascontiguousarray(grid[band_rows(band, halo)])
                comm.Send(block, dest=k, tag=int(Tag.PIXELS))

        # coordinator keeps its own slice locally
        return grid[band_rows(bands[0], halos[0])].copy()

    def gather(self, grid, bands, own_core):
        """Receive each worker's core rows and assemble them with own_core into grid."""
        comm = self._open()
        width = grid.shape[1]
        slices = [own_core]

        with _mpi_errors("gather"):
            for band in bands[1:]:
                header = comm.recv(source=band.rank, tag=int(Tag.RESULT_HEADER))
                if not isinstance(header, tuple) or len(header) != 3:
                    raise TransportFailure(f"malformed result header from rank {band.rank}: {header!r}")
                sender, rows, cols = (_check_int("result header", v) for v in header)

                if sender != band.rank:
                    raise TransportFailure(f"result tagged rank {sender}, expected rank {band.rank}")
                if rows != band.row_count or cols != width:
                    raise TransportFailure(
                        f"rank {sender} sent {rows}x{cols} pixels, expected {band.row_count}x{width}"
                    )

                core = np.empty((rows, cols), dtype=np.int32)
                comm.Recv(core, source=band.rank, tag=int(Tag.RESULT))
                slices.append(core)

        return assemble(grid, bands, slices)

    # worker side

    def receive_status(self):
        comm = self._open()
        with _mpi_errors("receiving status"):
            ok = comm.recv(source=0, tag=int(Tag.STATUS))
        if not isinstance(ok, bool):
            raise TransportFailure(f"malformed status: {ok!r}")
        return ok

    def receive_assignment(self):
        """Return (width, row_count, top_rows, bottom_rows, local_buffer)."""
        comm = self._open()
        with _mpi_errors("receiving assignment"):
            width = _check_int("width", comm.recv(source=0, tag=int(Tag.WIDTH)))
            height = _check_int("band height", comm.recv(source=0, tag=int(Tag.HEIGHT)))
            top = _check_int("top halo", comm.recv(source=0, tag=int(Tag.TOP_HALO)))
            bottom = _check_int("bottom halo", comm.recv(source=0, tag=int(Tag.BOTTOM_HALO)))

            if width < 1 or height < 1:
                raise TransportFailure(f"bad band geometry {width}x{height}")
            if not (0 <= top <= RADIUS and 0 <= bottom <= RADIUS):
                raise TransportFailure(f"bad halo ({top}, {bottom})")

            local = np.empty((top + height + bottom, width), dtype=np.int32)
            comm.Recv(local, source=0, tag=int(Tag.PIXELS))

        return width, height, top, bottom, local

    def send_result(self, core):
        """Send this rank's core rows to the coordinator, tagged with the rank."""
        comm = self._open()
        core = np.ascontiguousarray(core, dtype=np.int32)
        rows, cols = core.shape
        with _mpi_errors("sending result"):
            comm.send((self.rank, rows, cols), dest=0, tag=int(Tag.RESULT_HEADER))
            comm.Send(core, dest=0, tag=int(Tag.RESULT))
