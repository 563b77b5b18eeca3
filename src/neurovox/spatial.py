"""
Spatial acceleration structure over event positions.

Wraps ``scipy.spatial.cKDTree`` and maps tree rows back to stable event
indices, so a source may index only its active events.
"""

from itertools import chain
from typing import Optional, Tuple
import logging

import numpy as np
from numpy.typing import NDArray
from scipy.spatial import cKDTree

logger = logging.getLogger(__name__)


class SpatialIndex:
    """
    Range queries over a fixed point set.

    The tree is read-only once built and may be shared by any number of
    worker threads. Coincident positions are allowed.
    """

    def __init__(
        self,
        positions: NDArray[np.float64],
        indices: Optional[NDArray[np.int64]] = None,
        leafsize: int = 16,
    ) -> None:
        """
        Build the index.

        Args:
            positions: (n, 3) point positions (um)
            indices: Stable event index of each row; defaults to 0..n-1
            leafsize: Tree leaf size
        """
        self.positions = np.ascontiguousarray(positions, dtype=float).reshape(-1, 3)
        if indices is None:
            indices = np.arange(len(self.positions))
        self.indices = np.asarray(indices, dtype=np.int64)
        if len(self.indices) != len(self.positions):
            raise ValueError(
                f"got {len(self.indices)} indices for {len(self.positions)} positions"
            )
        self._tree = cKDTree(self.positions, leafsize=leafsize) if len(self) else None
        logger.debug(f"SpatialIndex built over {len(self)} events")

    def __len__(self) -> int:
        return len(self.positions)

    def within(
        self,
        point: NDArray[np.float64],
        radius: float,
        p: float = 2.0,
    ) -> Tuple[NDArray[np.int64], NDArray[np.float64]]:
        """
        Events within ``radius`` of one point.

        Args:
            point: Query position (um)
            radius: Search radius (um)
            p: Minkowski norm of the search ball; ``np.inf`` for a box

        Returns:
            Tuple of (stable event indices, Euclidean distances)
        """
        _, indices, distances = self.within_many(
            np.asarray(point, dtype=float).reshape(1, 3), radius, p=p
        )
        return indices, distances

    def within_many(
        self,
        points: NDArray[np.float64],
        radius: float,
        p: float = 2.0,
    ) -> Tuple[NDArray[np.int64], NDArray[np.int64], NDArray[np.float64]]:
        """
        Events within ``radius`` of each of many points, flattened.

        Args:
            points: (m, 3) query positions (um)
            radius: Search radius (um)
            p: Minkowski norm of the search ball; ``np.inf`` for a box

        Returns:
            Tuple of (query row, stable event index, Euclidean distance)
            arrays of equal length, one entry per (point, event) pair
        """
        points = np.asarray(points, dtype=float).reshape(-1, 3)
        if self._tree is None or len(points) == 0:
            empty = np.empty(0, dtype=np.int64)
            return empty, empty.copy(), np.empty(0)

        neighbors = self._tree.query_ball_point(points, radius, p=p)
        counts = np.fromiter(
            (len(n) for n in neighbors), dtype=np.int64, count=len(neighbors)
        )
        total = int(counts.sum())
        rows = np.repeat(np.arange(len(points), dtype=np.int64), counts)
        local = np.fromiter(chain.from_iterable(neighbors), dtype=np.int64, count=total)

        distances = np.linalg.norm(points[rows] - self.positions[local], axis=1)
        return rows, self.indices[local], distances
