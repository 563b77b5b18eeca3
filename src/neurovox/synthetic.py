"""
Synthetic test circuit.

Generates a small, reproducible circuit that exercises every event source:

1. Somas uniformly distributed in a sphere, each with one straight dendrite
2. Izhikevich dynamics driven by random input pulses for the soma voltage
3. Passive exponential attenuation of the voltage along the dendrite
4. Capacitive transmembrane currents I = C * dV/dt for the LFP kernel
5. Spike times from the threshold crossings, synapses scattered along dendrites
"""

from typing import Optional, Tuple
import logging

import numpy as np
from numpy.typing import NDArray

from .circuit import Circuit, CompartmentReport, Morphology, SpikeReport
from .types import IzhikevichParams, SyntheticCircuitParams

logger = logging.getLogger(__name__)


class IzhikevichNeuron:
    """
    Izhikevich neuron model for a population of independent cells.

    Model equations (dimensionless form):
        dv/dt = 0.04*v^2 + 5*v + 140 - u + I
        du/dt = a*(b*v - u)
        if v >= v_thresh: v = c, u = u + d
    """

    def __init__(self, params: Optional[IzhikevichParams] = None, num_neurons: int = 1) -> None:
        """
        Args:
            params: Model parameters. Uses defaults if None.
            num_neurons: Number of cells simulated side by side
        """
        if num_neurons <= 0:
            raise ValueError(f"num_neurons must be positive, got {num_neurons}")
        self.params = params or IzhikevichParams()
        self.num_neurons = num_neurons
        self.reset()

    def reset(self) -> None:
        """Reset every cell to the initial state."""
        self.v = np.full(self.num_neurons, self.params.v_init, dtype=float)
        self.u = np.full(self.num_neurons, self.params.u_init, dtype=float)

    def step(
        self, I: NDArray[np.float64], dt: float
    ) -> Tuple[NDArray[np.float64], NDArray[np.bool_]]:
        """
        Advance all cells by one time step.

        Args:
            I: Input current per cell (mV equivalent)
            dt: Time step (ms)

        Returns:
            Tuple of (membrane potentials in mV, spike flags)
        """
        p = self.params

        # Two half-steps for numerical stability
        self.v = self.v + 0.5 * dt * (0.04 * self.v ** 2 + 5 * self.v + 140 - self.u + I)
        self.v = self.v + 0.5 * dt * (0.04 * self.v ** 2 + 5 * self.v + 140 - self.u + I)
        self.u = self.u + dt * p.a * (p.b * self.v - self.u)

        spiked = self.v >= p.v_thresh
        self.v = np.where(spiked, p.c, self.v)
        self.u = np.where(spiked, self.u + p.d, self.u)
        return self.v.copy(), spiked

    def simulate(
        self, I_input: NDArray[np.float64], dt: float
    ) -> Tuple[NDArray[np.float64], NDArray[np.bool_]]:
        """
        Simulate over multiple time steps.

        Args:
            I_input: (n_steps, num_neurons) input currents
            dt: Time step (ms)

        Returns:
            Tuple of (n_steps, num_neurons) membrane potentials and spike flags
        """
        self.reset()
        I_input = np.asarray(I_input, dtype=float).reshape(len(I_input), -1)
        n_steps = len(I_input)
        v_trace = np.zeros((n_steps, self.num_neurons))
        spikes = np.zeros((n_steps, self.num_neurons), dtype=bool)

        for i in range(n_steps):
            v_trace[i], spikes[i] = self.step(I_input[i], dt)

        return v_trace, spikes


def generate_input_pulses(
    n_steps: int,
    dt: float,
    rate_hz: float,
    rng: np.random.Generator,
    pulse_amplitude: float = 1.0,
    pulse_duration_ms: float = 10.0,
) -> NDArray[np.float64]:
    """Square input pulses at random times, ``rate_hz`` on average."""
    total_time_s = n_steps * dt / 1000.0
    expected_pulses = int(rate_hz * total_time_s)

    pulse_times = np.sort(rng.uniform(0, n_steps * dt, expected_pulses))

    input_current = np.zeros(n_steps)
    pulse_samples = max(1, int(pulse_duration_ms / dt))

    for t in pulse_times:
        start_idx = int(t / dt)
        end_idx = min(start_idx + pulse_samples, n_steps)
        input_current[start_idx:end_idx] = pulse_amplitude

    return input_current


def sample_sphere(rng: np.random.Generator, n: int, radius: float) -> NDArray[np.float64]:
    """Uniform positions inside a sphere centered at the origin."""
    directions = random_directions(rng, n)
    # Uniform distribution in sphere: r ~ U(0,1)^(1/3)
    distances = radius * rng.random(n) ** (1.0 / 3.0)
    return directions * distances[:, None]


def random_directions(rng: np.random.Generator, n: int) -> NDArray[np.float64]:
    vectors = rng.normal(size=(n, 3))
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    return vectors / np.maximum(norms, 1e-12)


def make_synthetic_circuit(params: Optional[SyntheticCircuitParams] = None) -> Circuit:
    """
    Build a synthetic circuit.

    Returns:
        Circuit with a 'voltage' (mV) and a 'currents' (nA) report sampled
        every ``dt_ms``, spikes, synapses and the targets 'Column' (all
        cells) and 'Sparse' (every other cell)
    """
    p = params or SyntheticCircuitParams()
    rng = np.random.default_rng(p.seed)
    n, m = p.num_cells, p.compartments_per_cell
    gids = np.arange(1, n + 1, dtype=np.int64)
    n_steps = p.num_steps

    somas = sample_sphere(rng, n, p.radius_um)
    directions = random_directions(rng, n)

    inputs = np.stack([
        generate_input_pulses(n_steps, p.dt_ms, p.input_rate_hz, rng,
                              p.pulse_amplitude, p.pulse_duration_ms)
        for _ in range(n)
    ], axis=1)
    neuron = IzhikevichNeuron(p.neuron, n)
    v_soma, spiked = neuron.simulate(inputs, p.dt_ms)

    # Compartment k is centered k segment lengths away from the soma
    along = np.arange(m) * p.segment_length_um
    attenuation = np.exp(-along / p.length_constant_um)
    rest = p.neuron.v_init
    voltage = rest + (v_soma[:, :, None] - rest) * attenuation[None, None, :]

    radii = np.full(m, p.dendrite_radius_um)
    radii[0] = p.soma_radius_um
    areas = 2.0 * np.pi * radii * p.segment_length_um
    areas[0] = 4.0 * np.pi * p.soma_radius_um ** 2

    # pF/um^2 * um^2 * mV/ms = pA; reported in nA, balanced per cell
    if n_steps > 1:
        dv_dt = np.gradient(voltage, p.dt_ms, axis=0)
    else:
        dv_dt = np.zeros_like(voltage)
    currents = 1e-3 * p.specific_capacitance * areas[None, None, :] * dv_dt
    currents -= currents.mean(axis=2, keepdims=True)

    morphologies = {}
    synapses = {}
    for i, gid in enumerate(gids):
        points = somas[i] + along[:, None] * directions[i]
        axes = np.zeros((m, 3))
        axes[1:] = p.segment_length_um * directions[i]
        morphologies[int(gid)] = Morphology(points, radii.copy(), axes=axes, areas=areas.copy())

        sites = rng.integers(0, m, size=p.synapses_per_cell)
        jitter = rng.normal(0.0, 2.0 * p.dendrite_radius_um, size=(p.synapses_per_cell, 3))
        synapses[int(gid)] = points[sites] + jitter

    counts = np.full(n, m)
    reports = {
        "voltage": CompartmentReport(gids, counts, voltage.reshape(n_steps, n * m),
                                     start_time=0.0, timestep=p.dt_ms),
        "currents": CompartmentReport(gids, counts, currents.reshape(n_steps, n * m),
                                      start_time=0.0, timestep=p.dt_ms),
    }

    step_idx, cell_idx = np.nonzero(spiked)
    spikes = SpikeReport(step_idx * p.dt_ms, gids[cell_idx])

    logger.info(
        f"Synthetic circuit: {n} cells x {m} compartments, {n_steps} frames "
        f"of {p.dt_ms}ms, {len(spikes)} spikes, {n * p.synapses_per_cell} synapses"
    )

    return Circuit(
        morphologies=morphologies,
        targets={"Column": gids.tolist(), "Sparse": gids[::2].tolist()},
        reports=reports,
        spikes=spikes,
        synapses=synapses,
    )
