"""
Quick-look figures of sampled volumes.

matplotlib is imported inside the plotting functions so that the core
package does not need a display backend.
"""

from typing import Any, Dict, Optional, Tuple
import logging

import numpy as np
from numpy.typing import NDArray

from .volume import Volume

logger = logging.getLogger(__name__)

_AXIS_LABELS = ("x", "y", "z")


def plot_volume_slices(
    volume: Volume,
    index: Optional[Tuple[int, int, int]] = None,
    title: Optional[str] = None,
    save_path: Optional[str] = None,
    figsize: Tuple[float, float] = (14, 4.5),
) -> Any:
    """
    Plot the three axis-aligned slices through a voxel.

    Args:
        volume: Volume to show
        index: Voxel the slices pass through; defaults to the grid center
        title: Figure title
        save_path: Optional path to save figure
        figsize: Figure size (width, height) in inches

    Returns:
        matplotlib figure object
    """
    import matplotlib.pyplot as plt

    if index is None:
        index = tuple(n // 2 for n in volume.shape)
    data = volume.data.astype(np.float64)
    lo, hi = float(data.min()), float(data.max())
    if hi <= lo:
        hi = lo + 1.0

    fig, axes = plt.subplots(1, 3, figsize=figsize)
    for axis, ax in enumerate(axes):
        image = np.take(data, index[axis], axis=axis)
        rows, cols = [a for a in range(3) if a != axis]
        extent = (
            volume.origin[cols], volume.origin[cols] + volume.extent[cols],
            volume.origin[rows], volume.origin[rows] + volume.extent[rows],
        )
        im = ax.imshow(image, origin="lower", extent=extent, vmin=lo, vmax=hi,
                       cmap="viridis", aspect="equal")
        ax.set_xlabel(f"{_AXIS_LABELS[cols]} (um)", fontsize=11)
        ax.set_ylabel(f"{_AXIS_LABELS[rows]} (um)", fontsize=11)
        ax.set_title(f"{_AXIS_LABELS[axis]} = {index[axis]}", fontsize=12)

    fig.colorbar(im, ax=list(axes), shrink=0.8)
    if title:
        fig.suptitle(title, fontsize=14)

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Saved volume slices figure to {save_path}")

    return fig


def plot_frame_means(
    report: Dict[str, NDArray[np.float64]],
    save_path: Optional[str] = None,
    figsize: Tuple[float, float] = (10, 5),
) -> Any:
    """
    Plot mean and maximum voxel value over time from ``frame_sweep_report``.

    Returns:
        matplotlib figure object
    """
    import matplotlib.pyplot as plt

    fig, ax1 = plt.subplots(figsize=figsize)
    ax1.plot(report["times_ms"], report["mean"], 'b-', linewidth=1.2, label='Mean')
    ax1.set_xlabel('Time (ms)', fontsize=12)
    ax1.set_ylabel('Mean voxel value', fontsize=12)
    ax1.grid(True, alpha=0.3)

    ax2 = ax1.twinx()
    ax2.plot(report["times_ms"], report["maximum"], 'r-', linewidth=0.8,
             alpha=0.7, label='Maximum')
    ax2.set_ylabel('Maximum voxel value', fontsize=12)

    handles = ax1.get_legend_handles_labels()[0] + ax2.get_legend_handles_labels()[0]
    ax1.legend(handles, [h.get_label() for h in handles], loc='upper right', fontsize=10)
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Saved frame means figure to {save_path}")

    return fig
