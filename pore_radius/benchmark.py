"""
Timing and Equivalence Benchmark
=================================

Times the brute-force reference against the serial and pooled pipelines on
growing cubic sub-volumes and records whether all three agree exactly.

Columns of the returned table:
    n, reference_s, serial_s, parallel_s, speedup_serial, speedup_parallel,
    c0_equal, c1_equal, re_equal
"""

import logging
import time
from typing import Callable, Iterable, Tuple

import numpy as np
import pandas as pd

from .psd_calculator import pore_size_distribution, validate_binary_volume
from .reference import reference_pore_size_distribution
from .volume_io import extract_subvolume

logger = logging.getLogger(__name__)

PsdOutputs = Tuple[np.ndarray, np.ndarray, np.ndarray]


def _timed(func: Callable[[], PsdOutputs], repeats: int) -> Tuple[float, PsdOutputs]:
    elapsed = 0.0
    outputs = None
    for _ in range(repeats):
        start = time.perf_counter()
        outputs = func()
        elapsed += time.perf_counter() - start
    return elapsed / repeats, outputs


def outputs_identical(first: PsdOutputs, second: PsdOutputs) -> Tuple[bool, bool, bool]:
    """Exact (dtype-insensitive) equality of C0, C1 and Re."""
    return tuple(bool(np.array_equal(a, b)) for a, b in zip(first, second))


def benchmark_time_complexity(
    volume: np.ndarray,
    sizes: Iterable[int] = range(10, 101, 10),
    repeats: int = 5,
    alignment: str = "top-left-front",
    include_reference: bool = True,
) -> pd.DataFrame:
    """
    Benchmark the three implementations on cubes cut from ``volume``.

    Args:
        volume: Binary volume to cut sub-volumes from.
        sizes: Cube sides to test (clamped to the volume).
        repeats: Runs averaged per implementation and size.
        alignment: Where sub-volumes are cut, see ``extract_subvolume``.
        include_reference: Skip the brute-force runs when False; the
                           equality columns then compare serial to parallel.

    Returns:
        One row per size.
    """
    volume = validate_binary_volume(volume)
    rows = []

    for n in sizes:
        sub = np.ascontiguousarray(extract_subvolume(volume, n, alignment))
        logger.info("Benchmarking cube %d (shape %s)", n, sub.shape)

        t_serial, serial = _timed(lambda: pore_size_distribution(sub, use_parallel=False), repeats)
        t_parallel, parallel = _timed(lambda: pore_size_distribution(sub, use_parallel=True), repeats)

        if include_reference:
            t_reference, reference = _timed(lambda: reference_pore_size_distribution(sub), repeats)
            checks = [outputs_identical(reference, serial), outputs_identical(reference, parallel)]
        else:
            t_reference = float("nan")
            checks = [outputs_identical(serial, parallel)]

        c0_equal, c1_equal, re_equal = (all(flags) for flags in zip(*checks))
        rows.append({
            'n': int(n),
            'reference_s': t_reference,
            'serial_s': t_serial,
            'parallel_s': t_parallel,
            'speedup_serial': t_reference / t_serial if t_serial > 0 else float("nan"),
            'speedup_parallel': t_reference / t_parallel if t_parallel > 0 else float("nan"),
            'c0_equal': c0_equal,
            'c1_equal': c1_equal,
            're_equal': re_equal,
        })

    table = pd.DataFrame(rows)
    if len(table):
        identical = bool(table[['c0_equal', 'c1_equal', 're_equal']].all().all())
        logger.info("All implementations identical: %s", identical)
    return table
