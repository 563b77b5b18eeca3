"""
Generate voxelization throughput numbers for README.
"""
import sys
sys.path.insert(0, "src")

import logging
import os
import time

from neurovox.functors import make_functor
from neurovox.sources import make_source
from neurovox.synthetic import make_synthetic_circuit
from neurovox.types import SamplingConfig, SourceType, SyntheticCircuitParams
from neurovox.volume import PRECISIONS, Volume
from neurovox.voxelizer import Voxelizer

logging.basicConfig(level=logging.WARNING)

SIZE = 64
REPEATS = 3

circuit = make_synthetic_circuit(SyntheticCircuitParams(num_cells=50, compartments_per_cell=10))
thread_counts = sorted({1, 2, 4, os.cpu_count() or 1})

print(f"Volume {SIZE}^3, {REPEATS} passes per cell, throughput in MVox/s")
print()

for source_type in (SourceType.COMPARTMENTS, SourceType.SYNAPSES):
    config = SamplingConfig(source_type=source_type)
    source = make_source(config, circuit)
    functor = make_functor(source, config)
    source.load_frame(0)

    print(f"### {source_type.value} ({len(source)} events, {config.functor_type.value})")
    print("| Precision | " + " | ".join(f"{n} threads" for n in thread_counts) + " |")
    print("|-----------|" + "|".join("-----------" for _ in thread_counts) + "|")

    for name, dtype in PRECISIONS.items():
        volume = Volume.from_bounding_box(source.bounding_box, size=SIZE, dtype=dtype)
        cells = []
        for threads in thread_counts:
            voxelizer = Voxelizer(functor, volume, num_threads=threads)
            start = time.perf_counter()
            for _ in range(REPEATS):
                voxelizer.update()
            elapsed = time.perf_counter() - start
            cells.append(f"{volume.num_voxels * REPEATS / elapsed / 1e6:.2f}")
        print(f"| {name:>9} | " + " | ".join(f"{c:>9}" for c in cells) + " |")
    print()
