"""
Event storage for neurovox.

Events live in an arena of fixed-size records addressed by a stable index:
one record per compartment, soma, cell or synapse. Loading a frame rewrites
values in place; spike sources additionally toggle the ``active`` flags.
"""

from dataclasses import dataclass
from typing import Optional
import logging

import numpy as np
from numpy.typing import NDArray

logger = logging.getLogger(__name__)

# Smallest extent of a bounding box axis (um)
MIN_EXTENT = 1.0


@dataclass(frozen=True)
class Event:
    """
    Snapshot of one event record.

    Attributes:
        position: World position (um)
        value: Scalar sample (voltage, spike count, weight, current)
        radius: Radius of the emitting compartment (um), 0 for points
    """
    position: NDArray[np.float64]
    value: float
    radius: float = 0.0


@dataclass(frozen=True)
class AABB:
    """Axis-aligned bounding box (um)."""
    min: NDArray[np.float64]
    max: NDArray[np.float64]

    @classmethod
    def from_points(cls, points: NDArray[np.float64]) -> "AABB":
        """Bounding box of an (n, 3) point array; empty arrays give a point box at 0."""
        points = np.asarray(points, dtype=float).reshape(-1, 3)
        if len(points) == 0:
            return cls(np.zeros(3), np.zeros(3))
        return cls(points.min(axis=0), points.max(axis=0))

    @property
    def size(self) -> NDArray[np.float64]:
        """Extent along each axis (um)."""
        return self.max - self.min

    @property
    def center(self) -> NDArray[np.float64]:
        return 0.5 * (self.min + self.max)

    @property
    def max_extent(self) -> float:
        """Largest axis extent, clamped to MIN_EXTENT for degenerate boxes."""
        return max(float(np.max(self.size)), MIN_EXTENT)

    def contains(self, point: NDArray[np.float64]) -> bool:
        point = np.asarray(point, dtype=float)
        return bool(np.all(point >= self.min) and np.all(point <= self.max))


def cutoff_distance(reference_value: float, max_error: float) -> float:
    """
    Distance beyond which an event is negligible.

    For the inverse-square decay law an event of magnitude |v| contributes
    less than max_error beyond sqrt(|v| / max_error).

    Args:
        reference_value: Worst-case event magnitude
        max_error: Largest tolerated contribution of an excluded event

    Returns:
        Cutoff distance (um)
    """
    if max_error <= 0:
        raise ValueError(f"max_error must be positive, got {max_error}")
    return float(np.sqrt(abs(reference_value) / max_error))


class EventArena:
    """
    Stable-indexed event records.

    Positions and radii are fixed at construction. Values and active flags
    are mutated in place by the owning source.

    Attributes:
        positions: (n, 3) world positions (um)
        values: (n,) scalar values
        radii: (n,) emitter radii (um)
        active: (n,) membership flags
        axes: Optional (n, 3) segment vectors (um) for line sources
        areas: Optional (n,) membrane areas (um^2)
    """

    def __init__(
        self,
        positions: NDArray[np.float64],
        radii: Optional[NDArray[np.float64]] = None,
        values: Optional[NDArray[np.float64]] = None,
        axes: Optional[NDArray[np.float64]] = None,
        areas: Optional[NDArray[np.float64]] = None,
    ) -> None:
        self.positions = np.ascontiguousarray(positions, dtype=float).reshape(-1, 3)
        n = len(self.positions)
        self.radii = (np.zeros(n) if radii is None
                      else np.asarray(radii, dtype=float).reshape(n))
        self.values = (np.zeros(n) if values is None
                       else np.array(values, dtype=float).reshape(n))
        self.axes = None if axes is None else np.asarray(axes, dtype=float).reshape(n, 3)
        self.areas = None if areas is None else np.asarray(areas, dtype=float).reshape(n)
        self.active = np.ones(n, dtype=bool)

    def __len__(self) -> int:
        return len(self.positions)

    def __getitem__(self, index: int) -> Event:
        return Event(
            position=self.positions[index].copy(),
            value=float(self.values[index]),
            radius=float(self.radii[index]),
        )

    @property
    def active_indices(self) -> NDArray[np.int64]:
        return np.flatnonzero(self.active)

    @property
    def num_active(self) -> int:
        return int(np.count_nonzero(self.active))

    def bounding_box(self) -> AABB:
        """Bounding box over every record, active or not."""
        return AABB.from_points(self.positions)
