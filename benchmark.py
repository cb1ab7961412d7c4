#!/usr/bin/env python3
"""
Benchmark script to compare the sequential reference against the threaded
LoG filter for several thread counts, in a single process.
"""
import multiprocessing
import time

import numpy as np

import LogSeq
import LogThreads


def time_runs(fn, n_runs):
    """Call fn() n_runs times; return (last_result, [seconds, ...])."""
    times = []
    result = None
    for i in range(n_runs):
        start = time.perf_counter()
        result = fn()
        elapsed = time.perf_counter() - start
        times.append(elapsed)
        print(f"Run {i+1}: {elapsed:.4f} seconds")
    return result, times


def benchmark_convolution(arr, thread_counts=(1, 2, 4), boundary=LogSeq.Boundary.SKIP, n_runs=3):
    """Run every version on arr and report timings plus result identity."""
    print(f"Image size: {arr.shape[0]}x{arr.shape[1]} pixels")
    print(f"Kernel size: {LogSeq.KERNEL_SIZE}x{LogSeq.KERNEL_SIZE}")
    print(f"Number of runs: {n_runs}")
    print(f"CPU cores: {multiprocessing.cpu_count()}")
    print("=" * 70)

    results = {}

    print("\nSEQUENTIAL VERSION")
    print("-" * 70)
    result_seq, times_seq = time_runs(lambda: LogSeq.apply_convolution(arr, boundary), n_runs)
    avg_seq = np.mean(times_seq)
    print(f"Average: {avg_seq:.4f} ± {np.std(times_seq):.4f} seconds")
    results['sequential'] = (result_seq, avg_seq)

    for n in thread_counts:
        print(f"\nTHREADED VERSION ({n} threads, column tiles)")
        print("-" * 70)
        result_thr, times_thr = time_runs(
            lambda: LogThreads.apply_convolution(arr, n, boundary), n_runs
        )
        avg_thr = np.mean(times_thr)
        print(f"Average: {avg_thr:.4f} ± {np.std(times_thr):.4f} seconds")
        print(f"Speedup: {avg_seq / avg_thr:.2f}x")
        results[f'threads_{n}'] = (result_thr, avg_thr)

    print("\n" + "=" * 70)
    print("VERIFICATION")
    print("=" * 70)
    identical = True
    for name, (result, _) in results.items():
        diff = np.abs(result_seq.astype(int) - result.astype(int)).max()
        print(f"Max difference (sequential vs {name}): {diff}")
        identical = identical and diff == 0

    if identical:
        print("✓ All results are identical!")
    else:
        print("⚠ Results differ")

    return results


if __name__ == "__main__":
    import sys

    # Configuration
    thread_counts = (1, 2, 4, 8)
    n_runs = 3

    if len(sys.argv) == 2:
        arr = LogSeq.read_grayscale(sys.argv[1])
    else:
        arr = np.random.default_rng(0).integers(0, 256, (1024, 1024), dtype=np.uint8)

    print("=" * 70)
    print("LoG BENCHMARK: Sequential vs Threaded")
    print("=" * 70)

    results = benchmark_convolution(arr, thread_counts, n_runs=n_runs)

    LogSeq.save_grayscale(results['sequential'][0], "output_sequential.png")
    print("\n✓ Result saved to output_sequential.png")
