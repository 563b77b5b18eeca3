"""
Shared fixtures: a small hand-built circuit with known geometry and values.
"""

import sys
import os

import numpy as np
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from neurovox.circuit import Circuit, CompartmentReport, Morphology, SpikeReport
from neurovox.events import EventArena
from neurovox.sources import EventSource
from neurovox.types import SamplingConfig, SourceType

# 100 frames of 0.1 ms: data from 0.0 to 10.0 ms
NUM_FRAMES = 100
TIMESTEP = 0.1
SPIKE_TIMES = [0.725, 1.5, 2.25, 5.0, 9.975]
SPIKE_GIDS = [1, 2, 1, 3, 2]


def report_frames(num_compartments: int, offset: float = -70.0) -> np.ndarray:
    """frames[k, c] = offset + 0.1 * k + c"""
    k = np.arange(NUM_FRAMES)[:, None]
    c = np.arange(num_compartments)[None, :]
    return offset + 0.1 * k + c


@pytest.fixture
def small_circuit():
    """Three cells on the x axis, each with a soma and one dendrite along y."""
    morphologies = {}
    for gid in (1, 2, 3):
        soma = np.array([10.0 * gid, 0.0, 0.0])
        morphologies[gid] = Morphology(
            points=[soma, soma + [0.0, 5.0, 0.0]],
            radii=[2.0, 0.5],
            axes=[[0.0, 0.0, 0.0], [0.0, 5.0, 0.0]],
            areas=[50.0, 10.0],
        )
    gids = [1, 2, 3]
    counts = [2, 2, 2]
    return Circuit(
        morphologies=morphologies,
        targets={"Column": gids, "Pair": [1, 2], "Ghost": [1, 99]},
        reports={
            "voltage": CompartmentReport(gids, counts, report_frames(6),
                                         timestep=TIMESTEP),
            "currents": CompartmentReport(gids, counts, report_frames(6, offset=0.0) * 1e-3,
                                          timestep=TIMESTEP),
        },
        spikes=SpikeReport(SPIKE_TIMES, SPIKE_GIDS),
        synapses={
            1: np.array([[0.0, 0.0, 0.0], [1.0, 1.0, 1.0]]),
            2: np.array([[20.0, 2.0, 0.0]]),
        },
    )


class StaticSource(EventSource):
    """Fixed events for kernel tests; every load succeeds."""

    source_type = SourceType.COMPARTMENTS

    def __init__(self, config, positions, values, radii=None, axes=None):
        super().__init__(config)
        self._dt = 1.0
        self._set_events(EventArena(positions, radii=radii, values=values, axes=axes))

    def _time_range(self):
        return 0.0, 1.0

    def _load(self, time):
        return len(self.events)


@pytest.fixture
def static_source():
    """Factory for sources with fixed events."""
    def build(positions, values, radii=None, axes=None, config=None):
        config = config or SamplingConfig()
        return StaticSource(config, positions, values, radii=radii, axes=axes)
    return build
