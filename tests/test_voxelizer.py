"""
Tests for the voxelization driver.
"""

import pytest
import numpy as np
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from neurovox.errors import PartialWriteError
from neurovox.functors import (
    EXTRACELLULAR_CONDUCTIVITY,
    DensityFunctor,
    FieldFunctor,
    FrequencyFunctor,
    LFPFunctor,
    make_functor,
)
from neurovox.sources import make_source
from neurovox.synthetic import make_synthetic_circuit
from neurovox.types import SamplingConfig, SyntheticCircuitParams
from neurovox.volume import Volume
from neurovox import voxelizer as voxelizer_module
from neurovox.voxelizer import REGION_BYTES_PER_VOXEL, Voxelizer


class FailingFunctor(FieldFunctor):
    """Raises on the second region it evaluates."""

    def __init__(self, source):
        super().__init__(source, magnitude=1.0)
        self.calls = 0

    def evaluate_many(self, points):
        self.calls += 1
        if self.calls == 2:
            raise RuntimeError("evaluation failed")
        return super().evaluate_many(points)


@pytest.fixture(scope="module")
def synthetic_circuit():
    return make_synthetic_circuit(SyntheticCircuitParams(
        num_cells=8, compartments_per_cell=4, duration_ms=5.0, seed=7
    ))


def compartment_setup(circuit, size=12, dtype=np.float32):
    config = SamplingConfig()
    source = make_source(config, circuit)
    functor = make_functor(source, config)
    volume = Volume.from_bounding_box(source.bounding_box, size=size, dtype=dtype)
    return source, functor, volume


class TestVoxelizer:
    """Tests for sampling frames into volumes."""

    def test_sample_matches_functor(self, static_source):
        """Each voxel holds the functor value at its center."""
        source = static_source([[0.0, 0.0, 0.0], [4.0, 4.0, 4.0]], [-60.0, -50.0])
        functor = FieldFunctor(source, magnitude=1.0)
        volume = Volume((4, 4, 4), origin=(0.0, 0.0, 0.0), spacing=(1.0, 1.0, 1.0))
        voxelizer = Voxelizer(functor, volume, num_threads=2)

        assert voxelizer.sample(0.0)
        assert voxelizer.last_time == 0.0
        assert volume.data[0, 0, 0] == pytest.approx(functor.evaluate([0.5, 0.5, 0.5]), rel=1e-5)
        assert volume.data[3, 2, 1] == pytest.approx(functor.evaluate([3.5, 2.5, 1.5]), rel=1e-5)

    def test_parallel_matches_serial(self, synthetic_circuit):
        """Thread count and region size do not change the result."""
        source, functor, volume = compartment_setup(synthetic_circuit)
        Voxelizer(functor, volume, num_threads=1).sample_frame(10)
        serial = volume.data.copy()

        volume.clear()
        voxelizer = Voxelizer(functor, volume, max_block_size=1024, num_threads=4)
        assert voxelizer.sample_frame(10)
        assert len(voxelizer.regions) > 4
        np.testing.assert_allclose(volume.data, serial, rtol=1e-6)
        assert np.any(serial != 0)

    def test_regions_computed_once(self, synthetic_circuit):
        source, functor, volume = compartment_setup(synthetic_circuit)
        voxelizer = Voxelizer(functor, volume, max_block_size=2048)
        assert voxelizer.regions is voxelizer.regions

    def test_failed_load_leaves_volume(self, synthetic_circuit):
        """An unavailable frame returns False and keeps the last good frame."""
        source, functor, volume = compartment_setup(synthetic_circuit)
        voxelizer = Voxelizer(functor, volume)
        assert voxelizer.sample_frame(3)
        before = volume.data.copy()

        start, end = source.get_frame_range()
        assert not voxelizer.sample_frame(end)
        assert not voxelizer.sample(1e6)
        np.testing.assert_array_equal(volume.data, before)
        assert voxelizer.last_time == pytest.approx(3 * source.dt)

    def test_update_uses_current_events(self, static_source):
        source = static_source([[0.5, 0.5, 0.5]], [-60.0])
        functor = FieldFunctor(source, magnitude=1.0)
        volume = Volume((2, 2, 2))
        voxelizer = Voxelizer(functor, volume)
        voxelizer.update()
        first = volume.data.copy()
        source.events.values[:] = -30.0
        voxelizer.update()
        np.testing.assert_allclose(volume.data, first / 2.0, rtol=1e-6)

    def test_integer_precision_clamped(self, static_source):
        """Without rescaling, integer volumes are rounded and clamped to their range."""
        source = static_source([[0.5, 0.5, 0.5]], [1000.0])
        functor = FieldFunctor(source, magnitude=1.0)
        volume = Volume((3, 1, 1), dtype=np.uint8, rescale=False)
        Voxelizer(functor, volume).update()
        # 1000 / 1e-6 at the event, 1000 at 1 um, 250 at 2 um
        np.testing.assert_array_equal(volume.data.ravel(), [255, 255, 250])

    def test_char_volume_spans_range(self, synthetic_circuit):
        """Negative voltage fields fill the whole byte range."""
        source, functor, volume = compartment_setup(synthetic_circuit, size=16)
        assert Voxelizer(functor, volume).sample_frame(10)
        reference = volume.data.astype(np.float64)

        _, _, chars = compartment_setup(synthetic_circuit, size=16, dtype=np.uint8)
        assert Voxelizer(functor, chars).sample_frame(10)
        assert np.count_nonzero(chars.data) > 0
        assert chars.data.min() == 0
        assert chars.data.max() == 255
        assert chars.data.flat[np.argmin(reference)] == 0
        assert chars.data.flat[np.argmax(reference)] == 255

    def test_default_threads_follow_cpu_count(self, synthetic_circuit, monkeypatch):
        """Without a thread setting, regions are cut for one worker per CPU."""
        monkeypatch.setattr(os, "cpu_count", lambda: 4)
        source, functor, volume = compartment_setup(synthetic_circuit, size=16)
        assert source.config.num_threads is None
        voxelizer = Voxelizer(functor, volume)
        assert voxelizer.num_threads == 4
        assert len(voxelizer.regions) >= 4
        assert voxelizer.sample_frame(2)

    def test_regions_fit_block_budget(self, synthetic_circuit):
        """Each region's working arrays stay within max_block_size."""
        source, functor, volume = compartment_setup(synthetic_circuit, size=16)
        budget = 8 * 1024
        voxelizer = Voxelizer(functor, volume, max_block_size=budget, num_threads=1)
        assert len(voxelizer.regions) > 1
        assert all(r.num_voxels * REGION_BYTES_PER_VOXEL <= budget
                   for r in voxelizer.regions)
        assert sum(r.num_voxels for r in voxelizer.regions) == volume.num_voxels

    def test_scratch_follows_output_precision(self, synthetic_circuit, monkeypatch):
        """Pass buffers are allocated at the volume's scratch precision, not float64."""
        source, functor, volume = compartment_setup(synthetic_circuit, size=8,
                                                    dtype=np.uint8)
        allocated = []
        real_empty = np.empty

        def recording_empty(shape, dtype=float, *args, **kwargs):
            allocated.append((shape, np.dtype(dtype)))
            return real_empty(shape, dtype, *args, **kwargs)

        monkeypatch.setattr(voxelizer_module.np, "empty", recording_empty)
        assert Voxelizer(functor, volume).sample_frame(1)
        full_size = [dtype for shape, dtype in allocated if shape == volume.shape]
        assert full_size == [np.dtype(np.float32)]

    def test_cancel_raises_and_keeps_volume(self, synthetic_circuit):
        source, functor, volume = compartment_setup(synthetic_circuit)
        voxelizer = Voxelizer(functor, volume)
        voxelizer.sample_frame(0)
        before = volume.data.copy()

        voxelizer.cancel()
        assert voxelizer.cancelled
        with pytest.raises(PartialWriteError):
            voxelizer.sample_frame(5)
        np.testing.assert_array_equal(volume.data, before)

    def test_worker_error_raises_and_keeps_volume(self, static_source):
        source = static_source([[1.0, 1.0, 1.0]], [-60.0])
        functor = FailingFunctor(source)
        volume = Volume((4, 4, 4))
        volume.data[...] = 7.0
        voxelizer = Voxelizer(functor, volume, max_block_size=64, num_threads=1)
        with pytest.raises(PartialWriteError):
            voxelizer.update()
        assert np.all(volume.data == 7.0)


# One event at the center of voxel 0 of a 5 x 1 x 1 grid with 2 um voxels;
# voxel 3 is centered 6 um away
EVENT_VALUE = -60.0
EVENT_DISTANCE = 6.0
VOXEL_SIZE = 2.0


class TestVoxelizedKernels:
    """A single voxelized event matches each kernel's closed form."""

    @pytest.mark.parametrize("functor_class,voxel,expected", [
        (FieldFunctor, 3, lambda cutoff: EVENT_VALUE / EVENT_DISTANCE ** 2),
        (FrequencyFunctor, 3, lambda cutoff: EVENT_VALUE * (1.0 - EVENT_DISTANCE / cutoff)),
        (LFPFunctor, 3, lambda cutoff: EVENT_VALUE / (
            4.0 * np.pi * EXTRACELLULAR_CONDUCTIVITY * EVENT_DISTANCE)),
        (DensityFunctor, 0, lambda cutoff: EVENT_VALUE / VOXEL_SIZE ** 3),
    ])
    def test_single_event(self, static_source, functor_class, voxel, expected):
        source = static_source([[1.0, 1.0, 1.0]], [EVENT_VALUE], radii=[0.5])
        assert source.cutoff_distance > EVENT_DISTANCE
        functor = functor_class(source, magnitude=1.0)
        volume = Volume((5, 1, 1), spacing=(VOXEL_SIZE,) * 3)
        Voxelizer(functor, volume, num_threads=2).update()

        assert volume.data[voxel, 0, 0] == pytest.approx(
            expected(source.cutoff_distance), rel=0.01
        )

    def test_density_counts_only_owning_voxel(self, static_source):
        source = static_source([[1.0, 1.0, 1.0]], [EVENT_VALUE])
        volume = Volume((5, 1, 1), spacing=(VOXEL_SIZE,) * 3)
        Voxelizer(DensityFunctor(source, magnitude=1.0), volume).update()
        assert np.count_nonzero(volume.data) == 1
        assert volume.data.sum() == pytest.approx(EVENT_VALUE / VOXEL_SIZE ** 3)
