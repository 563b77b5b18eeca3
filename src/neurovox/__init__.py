"""
neurovox
========

Sampling of neural simulation events into regular 3D voxel volumes.

Events (compartment voltages or currents, somas, spikes, synapses, dye
signals) are weighted points in space. A functor turns the events near a
position into a scalar, and the voxelizer evaluates it at every voxel center
of a volume, frame by frame, with multiple threads.

Core modules:
- sources: Event sources with per-frame loading and frame ranges
- functors: Field, frequency, density and LFP sampling kernels
- streaming: Frame completeness of live spike streams
- voxelizer: Region-parallel, all-or-nothing volume filling
"""

__version__ = "0.1.0"
__author__ = "neurovox developers"

from .errors import ConfigurationError, PartialWriteError
from .types import (
    FunctorType,
    IzhikevichParams,
    SamplingConfig,
    SourceType,
    SyntheticCircuitParams,
)
from .events import AABB, Event, EventArena, cutoff_distance
from .circuit import Circuit, CompartmentReport, Morphology, SpikeReport
from .streaming import FrameState, FrameWindow, SpikeStream
from .sources import (
    CompartmentSource,
    EventSource,
    SomaSource,
    SpikeSource,
    SynapseSource,
    VSDSource,
    make_source,
)
from .functors import (
    DensityFunctor,
    EventFunctor,
    FieldFunctor,
    FrequencyFunctor,
    LFPFunctor,
    make_functor,
)
from .volume import Volume
from .voxelizer import Voxelizer
from .uri import parse_volume_uri
from .synthetic import make_synthetic_circuit
from .reporting import frame_sweep_report, summarize_volume

__all__ = [
    # Errors
    "ConfigurationError",
    "PartialWriteError",
    # Types
    "FunctorType",
    "IzhikevichParams",
    "SamplingConfig",
    "SourceType",
    "SyntheticCircuitParams",
    # Events and data
    "AABB",
    "Event",
    "EventArena",
    "cutoff_distance",
    "Circuit",
    "CompartmentReport",
    "Morphology",
    "SpikeReport",
    # Streaming
    "FrameState",
    "FrameWindow",
    "SpikeStream",
    # Sources
    "EventSource",
    "CompartmentSource",
    "SomaSource",
    "SpikeSource",
    "SynapseSource",
    "VSDSource",
    "make_source",
    # Functors
    "EventFunctor",
    "FieldFunctor",
    "DensityFunctor",
    "FrequencyFunctor",
    "LFPFunctor",
    "make_functor",
    # Volume
    "Volume",
    "Voxelizer",
    # Utilities
    "parse_volume_uri",
    "make_synthetic_circuit",
    "frame_sweep_report",
    "summarize_volume",
]
