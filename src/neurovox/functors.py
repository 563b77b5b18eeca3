"""
Sampling functors: continuous scalar fields from weighted events.

Every functor queries the source's spatial index around the sample point,
sums one kernel contribution per returned event and multiplies the sum by
``magnitude``. Events farther than the cutoff distance are never returned
and contribute nothing.

Kernels (d = distance to the event, v = event value):
- Field:     v / max(d, radius)^2
- Frequency: v * (1 - d / cutoff)
- Density:   v / voxel_volume for events inside the voxel
- LFP:       I / (4 pi sigma d), or the line source over the compartment
"""

from typing import Optional, Tuple
import logging

import numpy as np
from numpy.typing import NDArray

from .sources import EventSource
from .types import FunctorType, SamplingConfig
from .volume import Volume

logger = logging.getLogger(__name__)

# Smallest distance to an event (um)
MIN_DISTANCE = 1e-3

# Extracellular conductivity (S/m); with nA and um the LFP is in mV
EXTRACELLULAR_CONDUCTIVITY = 0.3


class EventFunctor:
    """
    Base class of the sampling kernels.

    Functors hold no per-query state and are shared read-only by every
    voxelization worker.
    """

    functor_type: FunctorType

    def __init__(self, source: EventSource, magnitude: Optional[float] = None) -> None:
        """
        Args:
            source: Event source providing events and the cutoff distance
            magnitude: Factor applied to every sample; defaults to the
                       configured or per-source magnitude
        """
        self.source = source
        self.magnitude = (source.config.effective_magnitude
                          if magnitude is None else float(magnitude))

    @property
    def cutoff_distance(self) -> float:
        return self.source.cutoff_distance

    def prepare(self, volume: Volume) -> None:
        """Hook run by the voxelizer before each pass over ``volume``."""

    def evaluate(self, point: NDArray[np.float64]) -> float:
        """Field value at one world position (um)."""
        return float(self.evaluate_many(np.asarray(point, dtype=float).reshape(1, 3))[0])

    def evaluate_many(self, points: NDArray[np.float64]) -> NDArray[np.float64]:
        """
        Field values at many world positions.

        Args:
            points: (m, 3) positions (um)

        Returns:
            (m,) sampled values, zero where no event is in reach
        """
        points = np.asarray(points, dtype=float).reshape(-1, 3)
        radius, norm = self._neighborhood()
        rows, indices, distances = self.source.spatial_index.within_many(
            points, radius, p=norm
        )
        result = np.zeros(len(points))
        if len(rows):
            contributions = self._kernel(points, rows, indices, distances)
            result += np.bincount(rows, weights=contributions, minlength=len(points))
        return result * self.magnitude

    def _neighborhood(self) -> Tuple[float, float]:
        return self.cutoff_distance, 2.0

    def _kernel(
        self,
        points: NDArray[np.float64],
        rows: NDArray[np.int64],
        indices: NDArray[np.int64],
        distances: NDArray[np.float64],
    ) -> NDArray[np.float64]:
        raise NotImplementedError


class FieldFunctor(EventFunctor):
    """
    Inverse-square decay.

    Inside an event's radius the value at the compartment surface is used,
    which also keeps coincident points finite.
    """

    functor_type = FunctorType.FIELD

    def _kernel(self, points, rows, indices, distances):
        events = self.source.events
        floor = np.maximum(events.radii[indices], MIN_DISTANCE)
        return events.values[indices] / np.maximum(distances, floor) ** 2


class FrequencyFunctor(EventFunctor):
    """Tent kernel reaching zero at the cutoff distance."""

    functor_type = FunctorType.FREQUENCY

    def _kernel(self, points, rows, indices, distances):
        weight = np.clip(1.0 - distances / self.cutoff_distance, 0.0, None)
        return self.source.events.values[indices] * weight


class DensityFunctor(EventFunctor):
    """
    Sum of event values inside each voxel, per unit volume.

    A voxel owns the half-open box ``[center - s/2, center + s/2)``, so an
    event on a shared face counts for exactly one voxel.
    """

    functor_type = FunctorType.DENSITY

    def __init__(self, source: EventSource, magnitude: Optional[float] = None) -> None:
        super().__init__(source, magnitude)
        self.spacing = np.ones(3)

    @property
    def voxel_volume(self) -> float:
        return float(np.prod(self.spacing))

    def prepare(self, volume: Volume) -> None:
        self.spacing = np.asarray(volume.spacing, dtype=float)

    def _neighborhood(self) -> Tuple[float, float]:
        # Padded so events on a voxel face reach the half-open test
        return 0.5 * float(np.max(self.spacing)) * (1.0 + 1e-6), np.inf

    def _kernel(self, points, rows, indices, distances):
        events = self.source.events
        offset = events.positions[indices] - points[rows]
        half = 0.5 * self.spacing
        inside = np.all((offset >= -half) & (offset < half), axis=1)
        return np.where(inside, events.values[indices] / self.voxel_volume, 0.0)


class LFPFunctor(EventFunctor):
    """
    Local field potential from transmembrane currents.

    Point sources give ``I / (4 pi sigma d)``. Events with a segment axis
    use the line source approximation: the current is spread uniformly
    along the segment centered on the event position.
    """

    functor_type = FunctorType.LFP

    def __init__(
        self,
        source: EventSource,
        magnitude: Optional[float] = None,
        conductivity: float = EXTRACELLULAR_CONDUCTIVITY,
    ) -> None:
        super().__init__(source, magnitude)
        if conductivity <= 0:
            raise ValueError(f"conductivity must be positive, got {conductivity}")
        self.conductivity = conductivity

    def _kernel(self, points, rows, indices, distances):
        events = self.source.events
        currents = events.values[indices]
        floor = np.maximum(events.radii[indices], MIN_DISTANCE)
        factor = 1.0 / (4.0 * np.pi * self.conductivity)
        phi = factor * currents / np.maximum(distances, floor)
        if events.axes is None:
            return phi

        axes = events.axes[indices]
        length = np.linalg.norm(axes, axis=1)
        line = length > MIN_DISTANCE
        if not np.any(line):
            return phi

        axes, length, floor = axes[line], length[line], floor[line]
        direction = axes / length[:, None]
        start = events.positions[indices[line]] - 0.5 * axes
        rel = points[rows[line]] - start
        s1 = np.einsum("ij,ij->i", rel, direction)
        s2 = s1 - length
        r2 = np.maximum(np.einsum("ij,ij->i", rel, rel) - s1 ** 2, floor ** 2)
        ratio = np.log(_line_term(s1, r2)) - np.log(_line_term(s2, r2))
        phi[line] = factor * currents[line] / length * ratio
        return phi


def _line_term(s: NDArray[np.float64], r2: NDArray[np.float64]) -> NDArray[np.float64]:
    # sqrt(s^2 + r^2) + s, rewritten for s < 0 to avoid cancellation
    root = np.sqrt(s ** 2 + r2)
    term = np.empty_like(root)
    ahead = s >= 0
    term[ahead] = root[ahead] + s[ahead]
    term[~ahead] = r2[~ahead] / (root[~ahead] - s[~ahead])
    return term


_FUNCTORS = {
    FunctorType.FIELD: FieldFunctor,
    FunctorType.DENSITY: DensityFunctor,
    FunctorType.FREQUENCY: FrequencyFunctor,
    FunctorType.LFP: LFPFunctor,
}


def make_functor(
    source: EventSource,
    config: Optional[SamplingConfig] = None,
    magnitude: Optional[float] = None,
) -> EventFunctor:
    """
    Construct the functor selected by ``config.functor_type``.

    Args:
        source: Event source to sample
        config: Configuration; defaults to the source's configuration
        magnitude: Overrides the configured magnitude
    """
    config = config or source.config
    functor = _FUNCTORS[config.functor_type](source, magnitude)
    logger.info(
        f"Using {config.functor_type.value} functor on {type(source).__name__}, "
        f"magnitude={functor.magnitude}"
    )
    return functor
