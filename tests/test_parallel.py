# -*- coding: utf-8 -*-
"""End-to-end tests of the distributed engine and its entry point."""

import numpy as np
import pytest
from PIL import Image

import LogParallel
from LogParallel import filter_distributed, main
from LogSeq import Boundary, apply_convolution, read_grayscale
from LogTransport import Tag, Transport


def distributed(run_ranks, grid, world_size, n_threads, boundary=Boundary.SKIP):
    def target(comm):
        with Transport(comm) as transport:
            return filter_distributed(transport, grid if transport.is_coordinator else None,
                                      n_threads, boundary)
    return run_ranks(world_size, target)


@pytest.fixture
def random_grid():
    return np.random.default_rng(1234).integers(0, 256, (37, 23), dtype=np.uint8)


class TestDistributedFilter:
    def test_single_rank_single_thread_matches_reference(self, run_ranks, random_grid):
        out, = distributed(run_ranks, random_grid, 1, 1)
        assert out.dtype == np.uint8
        np.testing.assert_array_equal(out, apply_convolution(random_grid))

    @pytest.mark.parametrize("world_size", [1, 2, 4])
    @pytest.mark.parametrize("n_threads", [1, 4])
    def test_parallelism_does_not_change_result(self, run_ranks, random_grid, world_size, n_threads):
        results = distributed(run_ranks, random_grid, world_size, n_threads)
        np.testing.assert_array_equal(results[0], apply_convolution(random_grid))
        assert all(r is None for r in results[1:])

    def test_clamp_to_edge(self, run_ranks, random_grid):
        out = distributed(run_ranks, random_grid, 4, 2, Boundary.CLAMP_TO_EDGE)[0]
        np.testing.assert_array_equal(out, apply_convolution(random_grid, Boundary.CLAMP_TO_EDGE))

    def test_surplus_ranks_idle(self, run_ranks, random_grid):
        results = distributed(run_ranks, random_grid, 3, 2)
        np.testing.assert_array_equal(results[0], apply_convolution(random_grid))
        assert results[1:] == [None, None]

    def test_all_zero(self, run_ranks):
        out = distributed(run_ranks, np.zeros((8, 8), dtype=np.uint8), 2, 4)[0]
        assert not out.any()

    def test_impulse_across_band_boundary(self, run_ranks):
        grid = np.zeros((8, 8), dtype=np.uint8)
        grid[4, 4] = 255  # bands are rows 0-3 and 4-7
        split = distributed(run_ranks, grid, 2, 4)[0]
        single = distributed(run_ranks, grid, 1, 1)[0]
        np.testing.assert_array_equal(split, single)
        assert (split[3:6, 3:6] > 0).all()
        # row 3 only sees the impulse through the halo
        assert split[3, 4] == 255 * 4 // 24


def write_image(path, grid):
    Image.fromarray(grid).save(str(path))
    return str(path)


class TestMain:
    @pytest.fixture(autouse=True)
    def output_path(self, tmp_path, monkeypatch):
        path = tmp_path / "out.png"
        monkeypatch.setattr(LogParallel, "OUTPUT_PATH", str(path))
        return path

    def run_main(self, run_ranks, argv, world_size, world=None):
        return run_ranks(world_size, lambda comm: main(argv, comm), world)

    def test_success(self, run_ranks, tmp_path, output_path, random_grid, capsys):
        image = write_image(tmp_path / "in.png", random_grid)
        assert self.run_main(run_ranks, ["log-edges", image], 4) == [0, 0, 0, 0]
        np.testing.assert_array_equal(read_grayscale(str(output_path)), apply_convolution(random_grid))
        out = capsys.readouterr().out
        assert "# of processes: 4" in out
        assert "Time elapsed" in out

    @pytest.mark.parametrize("argv", [["log-edges"], ["log-edges", "a.png", "b.png"]])
    def test_usage_error(self, run_ranks, fake_world, output_path, argv, capsys):
        world = fake_world(2)
        assert self.run_main(run_ranks, argv, 2, world) == [2, 1]
        # every rank rejects its own arguments without any message
        assert world.channels() == []
        assert not output_path.exists()
        assert "Usage:" in capsys.readouterr().out

    def test_input_not_found(self, run_ranks, tmp_path, output_path, capsys):
        codes = self.run_main(run_ranks, ["log-edges", str(tmp_path / "missing.png")], 4)
        assert codes == [1, 1, 1, 1]
        assert not output_path.exists()
        assert "not found" in capsys.readouterr().out

    def test_too_few_rows(self, run_ranks, tmp_path, output_path):
        image = write_image(tmp_path / "thin.png", np.zeros((1, 9), dtype=np.uint8))
        assert self.run_main(run_ranks, ["log-edges", image], 2) == [1, 1]
        assert not output_path.exists()

    def test_idle_rank_exits_immediately(self, run_ranks, tmp_path, random_grid):
        image = write_image(tmp_path / "in.png", random_grid)
        assert self.run_main(run_ranks, ["log-edges", image], 3) == [0, 0, 0]

    def test_bad_thread_count_stops_before_any_pixels(self, run_ranks, fake_world, tmp_path,
                                                      output_path, random_grid, monkeypatch, capsys):
        monkeypatch.setattr(LogParallel, "N_THREADS", 0)
        image = write_image(tmp_path / "in.png", random_grid)
        world = fake_world(2)
        assert self.run_main(run_ranks, ["log-edges", image], 2, world) == [1, 1]
        assert not output_path.exists()
        assert "thread count" in capsys.readouterr().out
        # only the no-go status went out
        assert world.channels() == [(0, 1, int(Tag.STATUS))]
