# -*- coding: utf-8 -*-
"""Shared fixtures: an in-process, thread-backed stand-in for an MPI world."""

import copy
import queue
import sys
import threading
from pathlib import Path

# Allow imports from the repository root
_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(_ROOT))

import numpy as np
import pytest
from mpi4py import MPI

TIMEOUT = 30


class FakeWorld:
    """Mailboxes keyed by (source, dest, tag)."""

    def __init__(self, size):
        self.size = size
        self._lock = threading.Lock()
        self._boxes = {}

    def box(self, source, dest, tag):
        with self._lock:
            return self._boxes.setdefault((source, dest, int(tag)), queue.Queue())

    def channels(self):
        """Every (source, dest, tag) that carried or awaited a message."""
        with self._lock:
            return sorted(self._boxes)


class FakeComm:
    """The part of mpi4py's Comm the transport uses."""

    def __init__(self, world, rank):
        self.world = world
        self.rank = rank
        self.freed = False
        self.dups = []

    def Get_rank(self):
        return self.rank

    def Get_size(self):
        return self.world.size

    def Dup(self):
        dup = FakeComm(self.world, self.rank)
        self.dups.append(dup)
        return dup

    def Free(self):
        self.freed = True

    def send(self, obj, dest, tag=0):
        self.world.box(self.rank, dest, tag).put(copy.deepcopy(obj))

    def recv(self, buf=None, source=0, tag=0, status=None):
        return self.world.box(source, self.rank, tag).get(timeout=TIMEOUT)

    def Send(self, buf, dest, tag=0):
        self.world.box(self.rank, dest, tag).put(np.array(buf, copy=True))

    def Recv(self, buf, source=0, tag=0, status=None):
        data = self.world.box(source, self.rank, tag).get(timeout=TIMEOUT)
        if data.size != buf.size:
            raise MPI.Exception(MPI.ERR_TRUNCATE)
        buf[...] = data.reshape(buf.shape)

    def Abort(self, errorcode=0):
        raise SystemExit(errorcode)


def _run_ranks(size, target, world=None):
    """Run target(comm) once per rank, each in its own thread; return per-rank results."""
    world = FakeWorld(size) if world is None else world
    results = [None] * size
    errors = [None] * size

    def runner(rank):
        try:
            results[rank] = target(FakeComm(world, rank))
        except BaseException as exc:  # re-raised in the test thread below
            errors[rank] = exc

    threads = [threading.Thread(target=runner, args=(rank,)) for rank in range(size)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(TIMEOUT * 2)
        assert not t.is_alive(), "rank deadlocked"

    for exc in errors:
        if exc is not None:
            raise exc
    return results


@pytest.fixture
def run_ranks():
    return _run_ranks


@pytest.fixture
def fake_world():
    return FakeWorld


@pytest.fixture
def fake_comm():
    return FakeComm
