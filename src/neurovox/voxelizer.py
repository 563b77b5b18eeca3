"""
Voxelization driver.

Samples a functor at every voxel center of a volume, region by region on a
thread pool. A pass writes into a scratch buffer and is committed to the
volume only once every region finished, so a failed or cancelled pass never
leaves a mix of two frames behind.
"""

from typing import List, Optional
import logging
import os
import threading
import time as _time

import numpy as np

from .errors import PartialWriteError
from .functors import EventFunctor
from .pipeline import Region, apply_over_regions, split_regions
from .sources import EventSource
from .volume import Volume

logger = logging.getLogger(__name__)

# Peak float64 arrays per voxel while a region is evaluated:
# the center meshgrid, the stacked centers and the samples
REGION_BYTES_PER_VOXEL = 7 * np.dtype(np.float64).itemsize


class Voxelizer:
    """
    Fills a volume with a functor, one frame at a time.

    Typical use:
        voxelizer = Voxelizer(functor, volume)
        for frame in range(*source.get_frame_range()):
            if voxelizer.sample_frame(frame):
                writer(volume)
    """

    def __init__(
        self,
        functor: EventFunctor,
        volume: Volume,
        max_block_size: Optional[int] = None,
        num_threads: Optional[int] = None,
    ) -> None:
        """
        Args:
            functor: Sampling kernel bound to its event source
            volume: Output volume; its geometry is fixed for the voxelizer's life
            max_block_size: Memory budget of one region's working arrays
                            (bytes); defaults to the source configuration
            num_threads: Worker threads; defaults to the source configuration,
                         then to the CPU count
        """
        config = functor.source.config
        self.functor = functor
        self.volume = volume
        self.max_block_size = max_block_size or config.max_block_size
        self.num_threads = num_threads or config.num_threads or os.cpu_count() or 1
        self.last_time: Optional[float] = None
        self._regions: Optional[List[Region]] = None
        self._cancel = threading.Event()
        self._lock = threading.Lock()

    @property
    def source(self) -> EventSource:
        return self.functor.source

    @property
    def regions(self) -> List[Region]:
        """Region partitioning, computed once for the volume geometry."""
        if self._regions is None:
            self._regions = split_regions(
                self.volume.shape,
                REGION_BYTES_PER_VOXEL,
                self.max_block_size,
                min_regions=self.num_threads,
            )
            logger.debug(
                f"Volume {self.volume.shape} split into {len(self._regions)} regions "
                f"for {self.num_threads} threads"
            )
        return self._regions

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        """Stop the running pass before its next region; later passes fail too."""
        self._cancel.set()

    def sample(self, time: float) -> bool:
        """
        Load ``time`` (ms) and voxelize it.

        Returns:
            False if the source has no data for ``time``; the volume is
            left untouched

        Raises:
            PartialWriteError: The pass was cancelled or a region failed
        """
        with self._lock:
            if self.source.load(time) is None:
                logger.warning(f"No data at t={time}ms, volume left unchanged")
                return False
            self._voxelize()
            self.last_time = time
            return True

    def sample_frame(self, frame: int) -> bool:
        """Load frame ``frame`` and voxelize it; see ``sample``."""
        with self._lock:
            if self.source.load_frame(frame) is None:
                start, end = self.source.get_frame_range()
                logger.warning(
                    f"Frame {frame} unavailable (range [{start}, {end})), "
                    f"volume left unchanged"
                )
                return False
            self._voxelize()
            self.last_time = frame * self.source.dt
            return True

    def update(self) -> None:
        """Voxelize the source's current events without loading."""
        with self._lock:
            self._voxelize()

    def _voxelize(self) -> None:
        volume = self.volume
        regions = self.regions
        self.functor.prepare(volume)
        # Built here so workers only read it
        self.source.spatial_index
        scratch = np.empty(volume.shape, dtype=volume.scratch_dtype)

        def fill(region: Region) -> None:
            points = volume.voxel_centers(region.slices)
            values = self.functor.evaluate_many(points).reshape(region.size)
            scratch[region.slices] = volume.stage(values)

        start = _time.perf_counter()
        try:
            done = apply_over_regions(fill, regions, self.num_threads, self._cancel)
        except Exception as exc:
            raise PartialWriteError(f"voxelization failed: {exc}") from exc
        if done != len(regions):
            raise PartialWriteError(
                f"voxelization cancelled after {done} of {len(regions)} regions"
            )

        volume.commit(scratch)
        elapsed = _time.perf_counter() - start
        logger.debug(
            f"Voxelized {volume.num_voxels} voxels in {elapsed:.3f}s "
            f"({volume.num_voxels / max(elapsed, 1e-9) / 1e6:.2f} MVox/s)"
        )
