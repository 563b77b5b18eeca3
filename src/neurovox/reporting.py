"""
Volume statistics and JSON reports.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple
import json
import logging
import os

import numpy as np
from numpy.typing import NDArray

from .volume import Volume
from .voxelizer import Voxelizer

logger = logging.getLogger(__name__)


@dataclass
class VolumeSummary:
    """Summary statistics of one sampled volume."""
    shape: Tuple[int, int, int]
    dtype: str
    minimum: float
    maximum: float
    mean: float
    total: float
    nonzero_fraction: float

    def to_dict(self) -> Dict[str, Any]:
        summary = asdict(self)
        summary["shape"] = list(self.shape)
        return summary


def summarize_volume(volume: Volume) -> VolumeSummary:
    """Statistics of the current volume contents."""
    data = volume.data.astype(np.float64)
    return VolumeSummary(
        shape=volume.shape,
        dtype=volume.dtype.name,
        minimum=float(data.min()),
        maximum=float(data.max()),
        mean=float(data.mean()),
        total=float(data.sum()),
        nonzero_fraction=float(np.count_nonzero(data)) / data.size,
    )


def frame_sweep_report(
    voxelizer: Voxelizer,
    frames: Optional[Iterable[int]] = None,
) -> Dict[str, NDArray[np.float64]]:
    """
    Voxelize a sequence of frames and collect per-frame statistics.

    Args:
        voxelizer: Voxelizer bound to a source and volume
        frames: Frame indices; defaults to the source's current frame range

    Returns:
        Arrays keyed 'frames', 'times_ms', 'mean', 'maximum', 'nonzero_fraction'.
        Unavailable frames are skipped.
    """
    if frames is None:
        frames = range(*voxelizer.source.get_frame_range())

    rows: List[Tuple[float, ...]] = []
    for frame in frames:
        if not voxelizer.sample_frame(frame):
            continue
        summary = summarize_volume(voxelizer.volume)
        rows.append((frame, frame * voxelizer.source.dt, summary.mean,
                     summary.maximum, summary.nonzero_fraction))

    table = np.array(rows, dtype=float).reshape(-1, 5)
    logger.info(f"Frame sweep: {len(table)} frames voxelized")
    return {
        "frames": table[:, 0].astype(np.int64),
        "times_ms": table[:, 1],
        "mean": table[:, 2],
        "maximum": table[:, 3],
        "nonzero_fraction": table[:, 4],
    }


def save_report(
    report: Dict[str, Any],
    path: str
) -> None:
    """
    Save a report dictionary to JSON (numpy arrays converted to lists).
    """
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    serializable = {
        key: (value.tolist() if isinstance(value, np.ndarray) else value)
        for key, value in report.items()
    }
    with open(path, "w", encoding="utf-8") as f:
        json.dump(serializable, f, indent=2)
    logger.info(f"Saved report to {path}")
