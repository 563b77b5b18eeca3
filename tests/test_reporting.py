"""
Tests for reporting utilities.
"""

import json

import pytest
import numpy as np
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from neurovox.functors import make_functor
from neurovox.reporting import frame_sweep_report, save_report, summarize_volume
from neurovox.sources import make_source
from neurovox.types import SamplingConfig
from neurovox.volume import Volume
from neurovox.voxelizer import Voxelizer


def test_summarize_volume_basic():
    volume = Volume((2, 2, 1), dtype=np.uint8)
    volume.data[0, 0, 0] = 4
    volume.data[1, 1, 0] = 2
    summary = summarize_volume(volume)
    assert summary.shape == (2, 2, 1)
    assert summary.dtype == "uint8"
    assert summary.minimum == 0.0
    assert summary.maximum == 4.0
    assert summary.total == 6.0
    assert summary.mean == pytest.approx(1.5)
    assert summary.nonzero_fraction == pytest.approx(0.5)
    assert summary.to_dict()["shape"] == [2, 2, 1]


def test_frame_sweep_report_shapes(small_circuit):
    config = SamplingConfig()
    source = make_source(config, small_circuit)
    volume = Volume.from_bounding_box(source.bounding_box, size=4)
    voxelizer = Voxelizer(make_functor(source, config), volume)

    report = frame_sweep_report(voxelizer, frames=[0, 10, 500, 20])
    np.testing.assert_array_equal(report["frames"], [0, 10, 20])
    np.testing.assert_allclose(report["times_ms"], [0.0, 1.0, 2.0])
    assert len(report["mean"]) == 3
    # Voltages rise by 0.1 mV per frame, so the negative field weakens
    assert report["mean"][0] < report["mean"][1] < report["mean"][2] < 0


def test_frame_sweep_report_empty(small_circuit):
    config = SamplingConfig()
    source = make_source(config, small_circuit)
    voxelizer = Voxelizer(make_functor(source, config), Volume((2, 2, 2)))
    report = frame_sweep_report(voxelizer, frames=[1000])
    assert len(report["frames"]) == 0


def test_save_report(tmp_path):
    path = tmp_path / "reports" / "sweep.json"
    save_report({"frames": np.array([0, 1]), "name": "somas"}, str(path))
    with open(path, encoding="utf-8") as f:
        loaded = json.load(f)
    assert loaded == {"frames": [0, 1], "name": "somas"}
