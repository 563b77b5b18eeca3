"""
Region decomposition and multi-threaded region execution.

The voxel grid is cut into an exact, non-overlapping set of rectangular
regions small enough to respect a memory budget, and a per-region function
is applied to them from a thread pool.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from itertools import product
from typing import Callable, List, Optional, Sequence, Tuple
import logging
import math
import os
import threading

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Region:
    """Rectangular block of voxels: start index and size per axis."""
    start: Tuple[int, int, int]
    size: Tuple[int, int, int]

    @property
    def slices(self) -> Tuple[slice, slice, slice]:
        return tuple(slice(s, s + n) for s, n in zip(self.start, self.size))

    @property
    def num_voxels(self) -> int:
        return self.size[0] * self.size[1] * self.size[2]


def _edges(length: int, count: int) -> List[int]:
    return [(i * length) // count for i in range(count + 1)]


def split_regions(
    shape: Sequence[int],
    itemsize: int,
    max_block_size: int,
    min_regions: int = 1,
) -> List[Region]:
    """
    Partition a grid into regions of at most ``max_block_size`` bytes.

    The axis with the largest block extent is split first, so slabs along
    the first axis come out for cubic grids.

    Args:
        shape: Voxel count per axis
        itemsize: Bytes per voxel
        max_block_size: Memory budget of one region (bytes)
        min_regions: Lower bound on the number of regions, e.g. one per worker

    Returns:
        Regions covering every voxel exactly once
    """
    shape = tuple(int(n) for n in shape)
    counts = [1, 1, 1]

    def block_sizes() -> List[int]:
        return [math.ceil(n / c) for n, c in zip(shape, counts)]

    while True:
        sizes = block_sizes()
        too_big = sizes[0] * sizes[1] * sizes[2] * itemsize > max_block_size
        too_few = counts[0] * counts[1] * counts[2] < min_regions
        if not (too_big or too_few):
            break
        splittable = [axis for axis in range(3) if sizes[axis] > 1]
        if not splittable:
            break
        axis = max(splittable, key=lambda a: (sizes[a], -a))
        counts[axis] += 1

    edges = [_edges(n, c) for n, c in zip(shape, counts)]
    regions = []
    for i, j, k in product(range(counts[0]), range(counts[1]), range(counts[2])):
        start = (edges[0][i], edges[1][j], edges[2][k])
        size = (edges[0][i + 1] - start[0],
                edges[1][j + 1] - start[1],
                edges[2][k + 1] - start[2])
        regions.append(Region(start, size))
    return regions


def apply_over_regions(
    fn: Callable[[Region], None],
    regions: Sequence[Region],
    num_threads: Optional[int] = None,
    cancel: Optional[threading.Event] = None,
) -> int:
    """
    Run ``fn`` on every region using up to ``num_threads`` workers.

    Regions not yet started are skipped once ``cancel`` is set or another
    region failed. The first worker exception is re-raised.

    Returns:
        Number of regions that ran to completion
    """
    workers = max(1, min(num_threads or os.cpu_count() or 1, len(regions) or 1))
    stop = threading.Event()

    def run(region: Region) -> bool:
        if stop.is_set() or (cancel is not None and cancel.is_set()):
            return False
        fn(region)
        return True

    if workers == 1:
        completed = 0
        for region in regions:
            if not run(region):
                break
            completed += 1
        return completed

    completed = 0
    error: Optional[BaseException] = None
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [executor.submit(run, region) for region in regions]
        for future in as_completed(futures):
            try:
                completed += int(future.result())
            except Exception as exc:
                stop.set()
                if error is None:
                    error = exc
    if error is not None:
        raise error
    logger.debug(f"Processed {completed}/{len(regions)} regions on {workers} threads")
    return completed
