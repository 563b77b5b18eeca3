"""
Event sources: circuit data turned into weighted points per frame.

Each source binds to one ``SamplingConfig`` and one circuit at construction,
builds its event arena, bounding box and cutoff distance once, and refreshes
event values (and, for spikes, event membership) on every ``load``.

Variants:
- CompartmentSource: one event per compartment, values from a report
- SomaSource: one event per cell at its soma compartment
- SpikeSource: one event per cell, values are spike counts per window
- SynapseSource: one event per synapse, static unit weights
- VSDSource: one event per compartment, voltage-sensitive dye signal
"""

from typing import List, Optional, Tuple, Union
import logging

import numpy as np

from .circuit import (
    Circuit,
    CompartmentReport,
    Morphology,
    SpikeReport,
    load_dye_curve,
    load_spikes,
)
from .errors import ConfigurationError
from .events import AABB, EventArena, cutoff_distance
from .spatial import SpatialIndex
from .streaming import FrameWindow, SpikeStream, frame_index, static_frame_range
from .types import SamplingConfig, SourceType

logger = logging.getLogger(__name__)


class EventSource:
    """
    Base class of all event sources.

    Subclasses build the arena in their constructor, then call
    ``_set_events``. They implement ``_time_range`` and ``_load``.
    """

    source_type: SourceType

    def __init__(self, config: SamplingConfig) -> None:
        self.config = config
        self.events = EventArena(np.empty((0, 3)))
        self.bounding_box = AABB.from_points(np.empty((0, 3)))
        self._dt = config.dt
        self._index: Optional[SpatialIndex] = None

        reference = config.effective_reference_value
        self.cutoff_distance = cutoff_distance(reference, config.max_error)
        logger.info(
            f"Computed cutoff distance: {self.cutoff_distance:.3f} "
            f"with maximum event's value: {reference}"
        )

    def __len__(self) -> int:
        return len(self.events)

    @property
    def dt(self) -> float:
        """Time between frames (ms)."""
        return self._dt

    @property
    def duration(self) -> float:
        """Time window of one frame (ms)."""
        return self.dt

    @property
    def spatial_index(self) -> SpatialIndex:
        """Index over the active events, rebuilt after membership changes."""
        if self._index is None:
            self._rebuild_index()
        return self._index

    def get_frame_range(self) -> Tuple[int, int]:
        """Half-open range of frames that can currently be loaded."""
        start, end = self._time_range()
        return static_frame_range(start, end, self.dt, self.duration)

    def load(self, time: float) -> Optional[int]:
        """
        Refresh events for simulation ``time`` (ms).

        Returns:
            Number of events (or spikes) processed, or None when the data
            for ``time`` is unavailable
        """
        count = self._load(time)
        if count is None:
            logger.debug(f"{type(self).__name__}: no data at t={time}ms")
        return count

    def load_frame(self, frame: int) -> Optional[int]:
        """Load frame ``frame`` if it lies in the current frame range."""
        start, end = self.get_frame_range()
        if not start <= frame < end:
            logger.debug(
                f"{type(self).__name__}: frame {frame} outside [{start}, {end})"
            )
            return None
        return self.load(frame * self.dt)

    def _set_events(self, events: EventArena) -> None:
        self.events = events
        self.bounding_box = events.bounding_box()
        self._index = None
        logger.info(
            f"{type(self).__name__}: {len(events)} events, bounding box "
            f"{np.round(self.bounding_box.min, 2)} - {np.round(self.bounding_box.max, 2)}"
        )

    def _rebuild_index(self) -> None:
        active = self.events.active_indices
        self._index = SpatialIndex(self.events.positions[active], active)

    def _time_range(self) -> Tuple[float, float]:
        raise NotImplementedError

    def _load(self, time: float) -> Optional[int]:
        raise NotImplementedError


class _ReportSource(EventSource):
    """Shared target and report handling of report-driven sources."""

    def __init__(self, config: SamplingConfig, circuit: Circuit) -> None:
        super().__init__(config)
        self.gids = circuit.parse_target(config.target)
        self.report: CompartmentReport = circuit.report(config.report_name).select(self.gids)
        self.morphologies = [circuit.morphologies[int(gid)] for gid in self.gids]
        if self._dt is None:
            self._dt = self.report.timestep

    def _time_range(self) -> Tuple[float, float]:
        return self.report.start_time, self.report.end_time


def _compartment_arena(
    morphologies: List[Morphology], report: CompartmentReport
) -> EventArena:
    for gid, morphology, count in zip(report.gids, morphologies, report.counts):
        if morphology.num_compartments != count:
            raise ConfigurationError(
                f"cell {gid} has {morphology.num_compartments} compartments "
                f"but the report holds {count}"
            )
    axes = None
    if all(m.axes is not None for m in morphologies):
        axes = np.vstack([m.axes for m in morphologies])
    areas = None
    if all(m.areas is not None for m in morphologies):
        areas = np.concatenate([m.areas for m in morphologies])
    return EventArena(
        np.vstack([m.points for m in morphologies]),
        radii=np.concatenate([m.radii for m in morphologies]),
        axes=axes,
        areas=areas,
    )


class CompartmentSource(_ReportSource):
    """One event per compartment; values read by absolute compartment index."""

    source_type = SourceType.COMPARTMENTS

    def __init__(self, config: SamplingConfig, circuit: Circuit) -> None:
        super().__init__(config, circuit)
        self._set_events(_compartment_arena(self.morphologies, self.report))

    def _load(self, time: float) -> Optional[int]:
        values = self.report.load_frame(time)
        if values is None:
            return None
        self.events.values[:] = values
        return len(values)


class SomaSource(_ReportSource):
    """One event per cell, valued by the first compartment (the soma)."""

    source_type = SourceType.SOMAS

    def __init__(self, config: SamplingConfig, circuit: Circuit) -> None:
        super().__init__(config, circuit)
        self._set_events(EventArena(
            np.vstack([m.soma_position for m in self.morphologies]),
            radii=np.array([m.soma_radius for m in self.morphologies]),
        ))

    def _load(self, time: float) -> Optional[int]:
        values = self.report.load_frame(time)
        if values is None:
            return None
        self.events.values[:] = values[self.report.offsets]
        return len(self.gids)


class VSDSource(_ReportSource):
    """
    Voltage-sensitive dye signal per compartment.

    value = (v - resting_potential) * membrane_area * attenuation(depth)

    Depth is measured downwards from the top (max y) of the bounding box;
    attenuation is interpolated from the dye curve, one sample per
    micrometer, holding the last sample past its end.
    """

    source_type = SourceType.VSD

    def __init__(self, config: SamplingConfig, circuit: Circuit) -> None:
        super().__init__(config, circuit)
        events = _compartment_arena(self.morphologies, self.report)
        self._set_events(events)

        if events.areas is not None:
            areas = events.areas
        elif events.axes is not None:
            areas = 2.0 * np.pi * events.radii * np.linalg.norm(events.axes, axis=1)
        else:
            areas = 4.0 * np.pi * events.radii ** 2

        attenuation = np.ones(len(events))
        if config.dyecurve:
            curve = load_dye_curve(config.dyecurve)
            depth = self.bounding_box.max[1] - events.positions[:, 1]
            attenuation = np.interp(depth, np.arange(len(curve), dtype=float), curve)
            logger.info(f"Applied dye curve {config.dyecurve} ({len(curve)} samples)")
        self._scale = areas * attenuation

    def _load(self, time: float) -> Optional[int]:
        values = self.report.load_frame(time)
        if values is None:
            return None
        self.events.values[:] = (values - self.config.resting_potential) * self._scale
        return len(values)


class SpikeSource(EventSource):
    """
    Spike counts per cell over ``[time, time + duration)``.

    Only cells that spiked in the window are active events. With a live
    ``SpikeStream`` the frame range follows the stream's ``FrameWindow``.
    """

    source_type = SourceType.SPIKES

    def __init__(
        self,
        config: SamplingConfig,
        circuit: Circuit,
        spikes: Optional[Union[SpikeReport, SpikeStream]] = None,
    ) -> None:
        super().__init__(config)
        self.gids = circuit.parse_target(config.target)
        morphologies = [circuit.morphologies[int(gid)] for gid in self.gids]
        self._duration = config.spike_duration
        if self._dt is None:
            self._dt = self._duration

        if spikes is None:
            if config.spikes:
                spikes = load_spikes(config.spikes)
            elif circuit.spikes is not None:
                spikes = circuit.spikes
            else:
                raise ConfigurationError("no spike data: set 'spikes' or use a circuit with spikes")
        self.spikes = spikes

        self.window: Optional[FrameWindow] = None
        if isinstance(spikes, SpikeStream):
            self.window = FrameWindow(self.dt, self._duration)
            spikes.subscribe(self.window)

        events = EventArena(
            np.vstack([m.soma_position for m in morphologies]),
            radii=np.array([m.soma_radius for m in morphologies]),
        )
        events.active[:] = False
        self._set_events(events)

    @property
    def duration(self) -> float:
        return self._duration

    @property
    def streaming(self) -> bool:
        return self.window is not None

    def get_frame_range(self) -> Tuple[int, int]:
        if self.window is not None:
            return self.window.frame_range
        return static_frame_range(
            self.spikes.start_time, self.spikes.end_time, self.dt, self.duration
        )

    def _load(self, time: float) -> Optional[int]:
        frame = frame_index(time, self.dt)
        start, end = self.get_frame_range()
        if not start <= frame < end:
            return None

        _, gids = self.spikes.spikes_between(time, time + self.duration)
        n = len(self.gids)
        slots = np.searchsorted(self.gids, gids)
        known = slots < n
        known[known] = self.gids[slots[known]] == gids[known]
        counts = np.bincount(slots[known], minlength=n).astype(float)

        active = counts > 0
        self.events.values[:] = counts
        if not np.array_equal(active, self.events.active):
            self.events.active[:] = active
            self._rebuild_index()
        return int(np.count_nonzero(known))


class SynapseSource(EventSource):
    """Afferent synapses of the target with unit weight; time independent."""

    source_type = SourceType.SYNAPSES

    def __init__(self, config: SamplingConfig, circuit: Circuit) -> None:
        super().__init__(config)
        self.gids = circuit.parse_target(config.target)
        if self._dt is None:
            self._dt = 1.0
        positions = [
            np.asarray(circuit.synapses[int(gid)], dtype=float).reshape(-1, 3)
            for gid in self.gids if int(gid) in circuit.synapses
        ]
        if not positions or sum(len(p) for p in positions) == 0:
            raise ConfigurationError("the target has no synapses")
        positions = np.vstack(positions)
        self._set_events(EventArena(positions, values=np.ones(len(positions))))

    def get_frame_range(self) -> Tuple[int, int]:
        return 0, 1

    def _time_range(self) -> Tuple[float, float]:
        return 0.0, self.dt

    def _load(self, time: float) -> Optional[int]:
        return len(self.events)


_SOURCES = {
    SourceType.COMPARTMENTS: CompartmentSource,
    SourceType.SOMAS: SomaSource,
    SourceType.SYNAPSES: SynapseSource,
    SourceType.VSD: VSDSource,
}


def make_source(
    config: SamplingConfig,
    circuit: Circuit,
    spikes: Optional[Union[SpikeReport, SpikeStream]] = None,
) -> EventSource:
    """
    Construct the event source selected by ``config.source_type``.

    Args:
        config: Sampling configuration
        circuit: Circuit providing morphologies, targets and reports
        spikes: Spike report or live stream for spike sources; overrides
                ``config.spikes`` and the circuit's spikes

    Raises:
        ConfigurationError: Invalid target, report or missing data
    """
    if config.source_type == SourceType.SPIKES:
        return SpikeSource(config, circuit, spikes)
    return _SOURCES[config.source_type](config, circuit)
