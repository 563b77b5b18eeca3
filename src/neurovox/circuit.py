"""
In-memory circuit and report containers.

These are the data collaborators of the event sources: morphologies with
compartment positions, named cell targets, compartment reports sampled at a
fixed time step, spike reports and synapse positions. Only plain-text spike
files and dye curves are read from disk here.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence, Tuple
import logging
import os

import numpy as np
from numpy.typing import NDArray

from .errors import ConfigurationError
from .streaming import frame_index

logger = logging.getLogger(__name__)


@dataclass
class Morphology:
    """
    Compartment geometry of one cell in global coordinates.

    The first compartment is the soma.

    Attributes:
        points: (n, 3) compartment centers (um)
        radii: (n,) compartment radii (um)
        axes: Optional (n, 3) segment vectors from start to end point (um)
        areas: Optional (n,) membrane areas (um^2)
    """
    points: NDArray[np.float64]
    radii: NDArray[np.float64]
    axes: Optional[NDArray[np.float64]] = None
    areas: Optional[NDArray[np.float64]] = None

    def __post_init__(self) -> None:
        """Validate array shapes."""
        self.points = np.asarray(self.points, dtype=float).reshape(-1, 3)
        self.radii = np.asarray(self.radii, dtype=float).reshape(-1)
        n = len(self.points)
        if n == 0:
            raise ValueError("a morphology needs at least the soma compartment")
        if len(self.radii) != n:
            raise ValueError(f"expected {n} radii, got {len(self.radii)}")
        if self.axes is not None:
            self.axes = np.asarray(self.axes, dtype=float).reshape(n, 3)
        if self.areas is not None:
            self.areas = np.asarray(self.areas, dtype=float).reshape(n)

    @property
    def num_compartments(self) -> int:
        return len(self.points)

    @property
    def soma_position(self) -> NDArray[np.float64]:
        return self.points[0]

    @property
    def soma_radius(self) -> float:
        return float(self.radii[0])


class CompartmentReport:
    """
    Per-compartment values sampled at a fixed time step.

    Frame ``i`` holds the values at ``start_time + i * timestep`` for every
    compartment, cells concatenated in ascending gid order.
    """

    def __init__(
        self,
        gids: Sequence[int],
        counts: Sequence[int],
        frames: NDArray[np.float64],
        start_time: float = 0.0,
        timestep: float = 0.1,
    ) -> None:
        """
        Args:
            gids: Cell identifiers, ascending
            counts: Number of compartments of each cell
            frames: (n_frames, sum(counts)) values
            start_time: Time of the first frame (ms)
            timestep: Time between frames (ms)
        """
        self.gids = np.asarray(gids, dtype=np.int64)
        self.counts = np.asarray(counts, dtype=np.int64)
        self.frames = np.atleast_2d(np.asarray(frames, dtype=float))
        if len(self.gids) != len(self.counts):
            raise ValueError("gids and counts differ in length")
        if np.any(np.diff(self.gids) <= 0):
            raise ValueError("report gids must be unique and ascending")
        if self.frames.shape[1] != int(self.counts.sum()):
            raise ValueError(
                f"frames have {self.frames.shape[1]} columns for "
                f"{int(self.counts.sum())} compartments"
            )
        if timestep <= 0:
            raise ValueError(f"timestep must be positive, got {timestep}")
        self.start_time = float(start_time)
        self.timestep = float(timestep)
        self.offsets = np.concatenate(([0], np.cumsum(self.counts)[:-1])).astype(np.int64)

    @property
    def num_frames(self) -> int:
        return len(self.frames)

    @property
    def end_time(self) -> float:
        """Time just past the last frame (ms)."""
        return self.start_time + self.num_frames * self.timestep

    def load_frame(self, time: float) -> Optional[NDArray[np.float64]]:
        """Values at ``time``, or None when outside the report."""
        index = frame_index(time - self.start_time, self.timestep)
        if index < 0 or index >= self.num_frames:
            return None
        return self.frames[index]

    def select(self, gids: Sequence[int]) -> "CompartmentReport":
        """Restrict the report to a target, keeping ascending gid order."""
        gids = np.asarray(gids, dtype=np.int64)
        positions = np.searchsorted(self.gids, gids)
        found = positions < len(self.gids)
        found[found] = self.gids[positions[found]] == gids[found]
        if not np.all(found):
            missing = gids[~found][:5].tolist()
            raise ConfigurationError(f"report has no data for gids {missing}")
        columns = np.concatenate([
            np.arange(self.offsets[p], self.offsets[p] + self.counts[p])
            for p in positions
        ]) if len(positions) else np.empty(0, dtype=np.int64)
        return CompartmentReport(
            gids, self.counts[positions], self.frames[:, columns],
            start_time=self.start_time, timestep=self.timestep,
        )


class SpikeReport:
    """Static spike timestamps, sorted by time."""

    def __init__(self, times: Sequence[float], gids: Sequence[int]) -> None:
        times = np.asarray(times, dtype=float).reshape(-1)
        gids = np.asarray(gids, dtype=np.int64).reshape(-1)
        if len(times) != len(gids):
            raise ValueError("times and gids differ in length")
        order = np.argsort(times, kind="stable")
        self.times = times[order]
        self.gids = gids[order]

    def __len__(self) -> int:
        return len(self.times)

    @property
    def start_time(self) -> float:
        return float(self.times[0]) if len(self) else 0.0

    @property
    def end_time(self) -> float:
        return float(self.times[-1]) if len(self) else 0.0

    def spikes_between(
        self, start: float, end: float
    ) -> Tuple[NDArray[np.float64], NDArray[np.int64]]:
        """Spikes with start <= t < end."""
        lo = np.searchsorted(self.times, start, side="left")
        hi = np.searchsorted(self.times, end, side="left")
        return self.times[lo:hi], self.gids[lo:hi]


@dataclass
class Circuit:
    """
    Cells, targets and reports of one simulation.

    Attributes:
        morphologies: Morphology per gid
        targets: Named gid sets
        reports: Named compartment reports
        spikes: Spike report of the simulation, if any
        synapses: Afferent synapse positions (m, 3) per gid (um)
        circuit_target: Name that selects every cell
    """
    morphologies: Dict[int, Morphology]
    targets: Dict[str, Sequence[int]] = field(default_factory=dict)
    reports: Dict[str, CompartmentReport] = field(default_factory=dict)
    spikes: Optional[SpikeReport] = None
    synapses: Dict[int, NDArray[np.float64]] = field(default_factory=dict)
    circuit_target: str = "Circuit"

    @property
    def gids(self) -> NDArray[np.int64]:
        return np.array(sorted(self.morphologies), dtype=np.int64)

    def parse_target(self, name: Optional[str] = None) -> NDArray[np.int64]:
        """
        Resolve a target name to ascending gids.

        Raises:
            ConfigurationError: Unknown target, or target cells without morphology
        """
        if name:
            name = name.lstrip("#")
        if not name or name == self.circuit_target:
            gids = self.gids
        elif name in self.targets:
            gids = np.unique(np.asarray(self.targets[name], dtype=np.int64))
        else:
            raise ConfigurationError(f"unknown target '{name}'")

        missing = [int(gid) for gid in gids if int(gid) not in self.morphologies]
        if missing:
            raise ConfigurationError(
                f"target '{name}' references cells without morphology: {missing[:5]}"
            )
        if len(gids) == 0:
            raise ConfigurationError(f"target '{name}' is empty")
        return gids

    def report(self, name: str) -> CompartmentReport:
        """Named compartment report; raises ConfigurationError if unknown."""
        try:
            return self.reports[name]
        except KeyError:
            raise ConfigurationError(
                f"unknown report '{name}', available: {sorted(self.reports)}"
            ) from None


def load_spikes(path: str) -> SpikeReport:
    """
    Read a text spike file with one ``time gid`` pair per line.

    Lines starting with ``#`` or ``/`` (the ``/scatter`` header of out.dat
    files) are ignored.
    """
    if not os.path.isfile(path):
        raise ConfigurationError(f"spike file not found: {path}")
    data = np.loadtxt(path, comments=("#", "/"), ndmin=2)
    if data.size == 0:
        logger.warning(f"Spike file {path} contains no spikes")
        return SpikeReport([], [])
    if data.shape[1] < 2:
        raise ConfigurationError(f"spike file {path} needs 'time gid' columns")
    logger.info(f"Loaded {len(data)} spikes from {path}")
    return SpikeReport(data[:, 0], data[:, 1].astype(np.int64))


def load_dye_curve(path: str) -> NDArray[np.float64]:
    """Read a dye attenuation curve: one float per micrometer of depth."""
    if not os.path.isfile(path):
        raise ConfigurationError(f"dye curve not found: {path}")
    curve = np.loadtxt(path, ndmin=1).reshape(-1)
    if curve.size == 0:
        raise ConfigurationError(f"dye curve {path} is empty")
    return curve
