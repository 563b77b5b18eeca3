"""
Tests for configuration types.
"""

import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from neurovox.errors import ConfigurationError
from neurovox.types import (
    FunctorType,
    IzhikevichParams,
    SamplingConfig,
    SourceType,
    SyntheticCircuitParams,
)


class TestSamplingConfig:
    """Tests for defaults and validation."""

    def test_defaults(self):
        config = SamplingConfig()
        assert config.source_type == SourceType.COMPARTMENTS
        assert config.functor_type == FunctorType.FIELD
        assert config.resolution == 1.0
        assert config.max_block_size == 64 * 1024 * 1024
        assert config.max_error == 0.001
        assert config.report_name == "voltage"
        assert config.effective_reference_value == -60.0

    @pytest.mark.parametrize("source_type,functor,magnitude", [
        ("compartments", FunctorType.FIELD, 0.1),
        ("somas", FunctorType.FIELD, 0.1),
        ("spikes", FunctorType.FREQUENCY, 0.15),
        ("synapses", FunctorType.DENSITY, 1.0),
        ("vsd", FunctorType.FIELD, 1.0),
    ])
    def test_per_source_defaults(self, source_type, functor, magnitude):
        config = SamplingConfig(source_type=source_type)
        assert config.functor_type == functor
        assert config.effective_magnitude == pytest.approx(magnitude)

    def test_spike_magnitude_follows_duration(self):
        config = SamplingConfig(source_type="spikes", duration=3.0)
        assert config.effective_magnitude == pytest.approx(0.5)

    def test_reference_value_override(self):
        config = SamplingConfig(reference_value=-80.0)
        assert config.effective_reference_value == -80.0

    def test_frozen(self):
        config = SamplingConfig()
        with pytest.raises(AttributeError):
            config.resolution = 2.0

    @pytest.mark.parametrize("kwargs", [
        {"source_type": "meshes"},
        {"functor": "gaussian"},
        {"resolution": 0.0},
        {"max_block_size": 0},
        {"max_error": -1.0},
        {"dt": 0.0},
        {"duration": -2.0},
        {"num_threads": 0},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ConfigurationError):
            SamplingConfig(**kwargs)


class TestSyntheticParams:
    def test_izhikevich_u_init(self):
        params = IzhikevichParams()
        assert params.u_init == params.b * params.v_init

    def test_izhikevich_invalid(self):
        with pytest.raises(ValueError):
            IzhikevichParams(a=0.0)
        with pytest.raises(ValueError):
            IzhikevichParams(v_thresh=-70.0)
        with pytest.raises(ValueError):
            IzhikevichParams(v_init=40.0)

    def test_num_steps(self):
        assert SyntheticCircuitParams(duration_ms=10.0, dt_ms=0.1).num_steps == 100

    @pytest.mark.parametrize("kwargs", [
        {"num_cells": 0},
        {"compartments_per_cell": 0},
        {"radius_um": -1.0},
        {"dt_ms": 0.0},
        {"dt_ms": 200.0},
        {"synapses_per_cell": -1},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            SyntheticCircuitParams(**kwargs)
