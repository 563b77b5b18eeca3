"""
Tests for the synthetic test circuit.

Validates:
1. Izhikevich neuron produces expected spiking behavior
2. Circuit arrays are mutually consistent
3. Every source type can be built on the circuit
"""

import pytest
import numpy as np
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from neurovox.sources import make_source
from neurovox.synthetic import (
    IzhikevichNeuron,
    generate_input_pulses,
    make_synthetic_circuit,
    sample_sphere,
)
from neurovox.types import IzhikevichParams, SamplingConfig, SourceType, SyntheticCircuitParams


class TestIzhikevichNeuron:
    """Tests for the Izhikevich neuron model."""

    def test_initialization(self):
        """Test neurons initialize with correct state."""
        neuron = IzhikevichNeuron(num_neurons=3)
        np.testing.assert_array_equal(neuron.v, [-65.0] * 3)
        np.testing.assert_array_equal(neuron.u, [neuron.params.b * neuron.params.v_init] * 3)

    def test_reset(self):
        neuron = IzhikevichNeuron()
        neuron.v[:] = 0.0
        neuron.u[:] = 100.0
        neuron.reset()
        assert neuron.v[0] == neuron.params.v_init
        assert neuron.u[0] == neuron.params.u_init

    def test_spike_generation(self):
        """Test that sufficient input produces spikes."""
        neuron = IzhikevichNeuron()
        I_input = np.ones((1000, 1)) * 10.0
        v_trace, spikes = neuron.simulate(I_input, 0.1)
        assert v_trace.shape == (1000, 1)
        assert np.sum(spikes) > 0, "Neuron should spike with strong input"

    def test_phasic_spiking_behavior(self):
        """Test that default params produce phasic spiking."""
        neuron = IzhikevichNeuron()
        I_input = np.zeros(2000)
        I_input[500:1500] = 5.0
        _, spikes = neuron.simulate(I_input, 0.1)

        spike_times = np.where(spikes[:, 0])[0]
        spikes_during_input = np.sum((spike_times >= 500) & (spike_times < 1500))
        assert 0 < spikes_during_input < 10

    def test_independent_cells(self):
        """Only the driven cell spikes."""
        neuron = IzhikevichNeuron(IzhikevichParams(), num_neurons=2)
        I_input = np.zeros((1000, 2))
        I_input[:, 1] = 10.0
        _, spikes = neuron.simulate(I_input, 0.1)
        assert spikes[:, 0].sum() == 0
        assert spikes[:, 1].sum() > 0


class TestHelpers:
    def test_input_pulses(self):
        rng = np.random.default_rng(0)
        pulses = generate_input_pulses(1000, 0.1, 50.0, rng, pulse_amplitude=2.0)
        assert pulses.shape == (1000,)
        assert set(np.unique(pulses)) <= {0.0, 2.0}
        assert pulses.max() == 2.0

    def test_sample_sphere(self):
        rng = np.random.default_rng(0)
        points = sample_sphere(rng, 500, 20.0)
        assert points.shape == (500, 3)
        assert np.all(np.linalg.norm(points, axis=1) <= 20.0 + 1e-9)


class TestSyntheticCircuit:
    """Tests for the generated circuit."""

    @pytest.fixture(scope="class")
    def params(self):
        return SyntheticCircuitParams(
            num_cells=6, compartments_per_cell=4, duration_ms=40.0, input_rate_hz=200.0
        )

    @pytest.fixture(scope="class")
    def circuit(self, params):
        return make_synthetic_circuit(params)

    def test_structure(self, circuit, params):
        np.testing.assert_array_equal(circuit.gids, np.arange(1, 7))
        voltage = circuit.report("voltage")
        assert voltage.num_frames == params.num_steps
        assert voltage.frames.shape == (400, 24)
        assert voltage.end_time == pytest.approx(40.0)
        assert len(circuit.parse_target("Sparse")) == 3
        for morphology in circuit.morphologies.values():
            assert morphology.num_compartments == 4
            assert morphology.soma_radius == params.soma_radius_um

    def test_deterministic(self, params):
        a = make_synthetic_circuit(params)
        b = make_synthetic_circuit(params)
        np.testing.assert_array_equal(a.report("voltage").frames, b.report("voltage").frames)
        np.testing.assert_array_equal(a.spikes.times, b.spikes.times)

    def test_spikes(self, circuit):
        assert len(circuit.spikes) > 0
        assert np.all(np.diff(circuit.spikes.times) >= 0)
        assert set(circuit.spikes.gids) <= set(circuit.gids.tolist())

    def test_currents_balanced_per_cell(self, circuit):
        currents = circuit.report("currents").frames.reshape(400, 6, 4)
        np.testing.assert_allclose(currents.sum(axis=2), 0.0, atol=1e-9)

    def test_dendrite_attenuation(self, circuit, params):
        """Dendritic deflections from rest shrink with distance from the soma."""
        voltage = circuit.report("voltage").frames.reshape(400, 6, 4)
        deflection = np.abs(voltage - params.neuron.v_init).max(axis=0)
        assert np.all(np.diff(deflection, axis=1) <= 1e-12)

    @pytest.mark.parametrize("source_type", list(SourceType))
    def test_every_source(self, circuit, source_type):
        kwargs = {"duration": 1.0, "dt": 1.0} if source_type == SourceType.SPIKES else {}
        source = make_source(SamplingConfig(source_type=source_type, **kwargs), circuit)
        start, end = source.get_frame_range()
        assert end > start
        assert source.load_frame(start) is not None
