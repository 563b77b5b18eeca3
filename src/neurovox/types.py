"""
Typed configuration classes for neurovox.

All parameters include units in docstrings and enforce value sanity checks.
Defaults follow the conventions of the volume URI (see ``neurovox.uri``):
resolution in voxels per micrometer, times in milliseconds, block sizes in
bytes.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .errors import ConfigurationError


class SourceType(str, Enum):
    """Closed set of event source variants."""
    COMPARTMENTS = "compartments"
    SOMAS = "somas"
    SPIKES = "spikes"
    SYNAPSES = "synapses"
    VSD = "vsd"


class FunctorType(str, Enum):
    """Closed set of sampling kernels."""
    FIELD = "field"
    DENSITY = "density"
    FREQUENCY = "frequency"
    LFP = "lfp"


# Default kernel per source type
DEFAULT_FUNCTORS = {
    SourceType.COMPARTMENTS: FunctorType.FIELD,
    SourceType.SOMAS: FunctorType.FIELD,
    SourceType.SPIKES: FunctorType.FREQUENCY,
    SourceType.SYNAPSES: FunctorType.DENSITY,
    SourceType.VSD: FunctorType.FIELD,
}

# Worst-case event magnitude used for the cutoff distance, per source type
DEFAULT_REFERENCE_VALUES = {
    SourceType.COMPARTMENTS: -60.0,  # mV
    SourceType.SOMAS: -60.0,         # mV
    SourceType.SPIKES: 1.0,          # spikes per window
    SourceType.SYNAPSES: 1.0,        # synapse weight
    SourceType.VSD: -60.0,           # mV
}

DEFAULT_SPIKE_DURATION = 10.0          # ms
DEFAULT_MAX_BLOCK_SIZE = 64 * 1024 * 1024  # bytes


@dataclass(frozen=True)
class SamplingConfig:
    """
    Immutable configuration of one sampling run.

    Every component receives this value at construction; nothing reads
    process-wide state.

    Attributes:
        source_type: Event source variant
        circuit: Opaque circuit configuration path (informational)
        target: Name of the cell target (None: the circuit target)
        report: Name of the compartment report (None: per-source default)
        magnitude: Factor applied to every sampled voxel (None: per-source default)
        functor: Sampling kernel (None: per-source default)
        resolution: Voxels per micrometer
        max_block_size: Maximum memory of one voxelization region (bytes)
        max_error: Largest contribution an event may have beyond the cutoff
        dt: Time step between frames (ms); None uses the report time step
        duration: Time window per frame (ms); spikes only, defaults to 10 ms
        spikes: Path to a spike file overriding the circuit's spikes
        dyecurve: Path to a dye attenuation curve (VSD only)
        reference_value: Worst-case event value for the cutoff distance
        resting_potential: Membrane resting potential for VSD (mV)
        num_threads: Worker threads for voxelization (None: CPU count)
    """
    source_type: SourceType = SourceType.COMPARTMENTS
    circuit: Optional[str] = None
    target: Optional[str] = None
    report: Optional[str] = None
    magnitude: Optional[float] = None
    functor: Optional[FunctorType] = None
    resolution: float = 1.0              # voxels / um
    max_block_size: int = DEFAULT_MAX_BLOCK_SIZE  # bytes
    max_error: float = 0.001
    dt: Optional[float] = None           # ms
    duration: Optional[float] = None     # ms
    spikes: Optional[str] = None
    dyecurve: Optional[str] = None
    reference_value: Optional[float] = None
    resting_potential: float = -65.0     # mV
    num_threads: Optional[int] = None

    def __post_init__(self) -> None:
        """Coerce enum fields and validate parameters."""
        try:
            object.__setattr__(self, "source_type", SourceType(self.source_type))
            if self.functor is not None:
                object.__setattr__(self, "functor", FunctorType(self.functor))
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc

        if self.resolution <= 0:
            raise ConfigurationError(
                f"resolution must be positive, got {self.resolution}"
            )
        if self.max_block_size <= 0:
            raise ConfigurationError(
                f"max_block_size must be positive, got {self.max_block_size}"
            )
        if self.max_error <= 0:
            raise ConfigurationError(
                f"max_error must be positive, got {self.max_error}"
            )
        if self.dt is not None and self.dt <= 0:
            raise ConfigurationError(f"dt must be positive, got {self.dt}")
        if self.duration is not None and self.duration <= 0:
            raise ConfigurationError(
                f"duration must be positive, got {self.duration}"
            )
        if self.num_threads is not None and self.num_threads <= 0:
            raise ConfigurationError(
                f"num_threads must be positive, got {self.num_threads}"
            )

    @property
    def functor_type(self) -> FunctorType:
        """Requested kernel, or the default of the source type."""
        return self.functor or DEFAULT_FUNCTORS[self.source_type]

    @property
    def spike_duration(self) -> float:
        """Spike counting window (ms)."""
        return self.duration if self.duration is not None else DEFAULT_SPIKE_DURATION

    @property
    def report_name(self) -> str:
        """Compartment report to read, honouring the LFP currents default."""
        if self.report:
            return self.report
        if self.functor_type == FunctorType.LFP:
            return "currents"
        return "voltage"

    @property
    def effective_reference_value(self) -> float:
        """Reference magnitude used to derive the cutoff distance."""
        if self.reference_value is not None:
            return self.reference_value
        return DEFAULT_REFERENCE_VALUES[self.source_type]

    @property
    def effective_magnitude(self) -> float:
        """
        Factor multiplied to each sampled voxel value.

        Defaults: 0.1 for compartments and somas, 1.5 / duration for spikes,
        1.0 for synapses, VSD and the LFP kernel.
        """
        if self.magnitude is not None:
            return self.magnitude
        if self.functor_type == FunctorType.LFP:
            return 1.0
        if self.source_type in (SourceType.COMPARTMENTS, SourceType.SOMAS):
            return 0.1
        if self.source_type == SourceType.SPIKES:
            return 1.5 / self.spike_duration
        return 1.0


@dataclass
class IzhikevichParams:
    """
    Soma dynamics of the synthetic circuit's cells.

    Every soma voltage in the synthetic "voltage" report comes from the
    Izhikevich model (v' = 0.04 v^2 + 5 v + 140 - u + I, u' = a (b v - u))
    driven by random input pulses. Threshold crossings become the spike
    report, and the reset to ``c`` keeps the traces in a realistic mV range
    for the cutoff reference values.

    Attributes:
        a: Recovery rate (1/ms)
        b: Coupling of recovery to voltage (1/ms)
        c: Voltage after a spike (mV)
        d: Recovery jump after a spike (mV/ms)
        v_thresh: Voltage recorded as a spike (mV)
        v_init: Voltage of every cell at t = 0; also the dendritic rest (mV)
        u_init: Recovery at t = 0; None starts at rest, b * v_init
    """
    a: float = 0.02
    b: float = 0.25
    c: float = -65.0         # mV
    d: float = 6.0
    v_thresh: float = 30.0   # mV
    v_init: float = -65.0    # mV
    u_init: Optional[float] = None

    def __post_init__(self) -> None:
        if self.u_init is None:
            self.u_init = self.b * self.v_init
        if self.a <= 0:
            raise ValueError(f"recovery rate a must be positive, got {self.a}")
        if not self.c < self.v_thresh:
            raise ValueError(
                f"reset voltage {self.c} mV must lie below the spike "
                f"threshold {self.v_thresh} mV"
            )
        if not self.v_init < self.v_thresh:
            raise ValueError(
                f"initial voltage {self.v_init} mV must lie below the spike "
                f"threshold {self.v_thresh} mV"
            )


@dataclass
class SyntheticCircuitParams:
    """
    Parameters of the generated test circuit.

    Somas are placed uniformly inside a sphere; each cell grows one straight
    dendrite of ``compartments_per_cell - 1`` segments in a random direction.

    Attributes:
        num_cells: Number of cells (gids 1..num_cells)
        compartments_per_cell: Compartments per cell, soma included
        radius_um: Radius of the soma placement sphere (um)
        segment_length_um: Length of one dendritic segment (um)
        soma_radius_um: Soma radius (um)
        dendrite_radius_um: Dendrite radius (um)
        length_constant_um: Passive voltage attenuation length along the dendrite (um)
        specific_capacitance: Membrane capacitance (pF/um^2)
        duration_ms: Simulated time (ms)
        dt_ms: Report time step (ms)
        input_rate_hz: Rate of input current pulses per cell (Hz)
        pulse_amplitude: Input pulse current (mV equivalent)
        pulse_duration_ms: Input pulse length (ms)
        synapses_per_cell: Afferent synapses per cell
        neuron: Izhikevich parameters shared by all cells
        seed: Random seed for reproducibility
    """
    num_cells: int = 10
    compartments_per_cell: int = 6
    radius_um: float = 50.0
    segment_length_um: float = 10.0
    soma_radius_um: float = 5.0
    dendrite_radius_um: float = 1.0
    length_constant_um: float = 100.0
    specific_capacitance: float = 0.01   # pF / um^2
    duration_ms: float = 100.0
    dt_ms: float = 0.1
    input_rate_hz: float = 40.0
    pulse_amplitude: float = 10.0
    pulse_duration_ms: float = 10.0
    synapses_per_cell: int = 20
    neuron: IzhikevichParams = field(default_factory=IzhikevichParams)
    seed: Optional[int] = 42

    def __post_init__(self) -> None:
        if self.num_cells <= 0:
            raise ValueError(f"num_cells must be positive, got {self.num_cells}")
        if self.compartments_per_cell <= 0:
            raise ValueError(
                f"compartments_per_cell must be positive, got {self.compartments_per_cell}"
            )
        if self.radius_um <= 0:
            raise ValueError(f"radius_um must be positive, got {self.radius_um}")
        if self.segment_length_um <= 0:
            raise ValueError(
                f"segment_length_um must be positive, got {self.segment_length_um}"
            )
        if self.duration_ms <= 0 or self.dt_ms <= 0:
            raise ValueError(
                f"duration_ms and dt_ms must be positive, got "
                f"{self.duration_ms} and {self.dt_ms}"
            )
        if self.dt_ms > self.duration_ms:
            raise ValueError(
                f"dt_ms ({self.dt_ms}) must not exceed duration_ms ({self.duration_ms})"
            )
        if self.synapses_per_cell < 0:
            raise ValueError(
                f"synapses_per_cell must be non-negative, got {self.synapses_per_cell}"
            )

    @property
    def num_steps(self) -> int:
        return int(round(self.duration_ms / self.dt_ms))
