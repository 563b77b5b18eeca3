"""
Regular 3D voxel grid with a caller-chosen scalar precision.

Voxel ``(i, j, k)`` is centered at ``origin + (index + 0.5) * spacing``;
the data array is indexed ``[x, y, z]``.
"""

from typing import Optional, Sequence, Tuple
import logging

import numpy as np
from numpy.typing import DTypeLike, NDArray

from .events import AABB, MIN_EXTENT

logger = logging.getLogger(__name__)

# Output precisions by name
PRECISIONS = {
    "float": np.float32,
    "int": np.uint32,
    "short": np.uint16,
    "char": np.uint8,
}

Slices = Tuple[slice, slice, slice]


def precision(name: str) -> np.dtype:
    """Numpy dtype of a precision name ('float', 'int', 'short', 'char')."""
    try:
        return np.dtype(PRECISIONS[name])
    except KeyError:
        raise ValueError(
            f"unknown precision '{name}', expected one of {sorted(PRECISIONS)}"
        ) from None


def rescale_intensity(values: NDArray, dtype: DTypeLike, copy: bool = True) -> NDArray:
    """
    Map the range of ``values`` linearly onto the full range of an integer dtype.

    The minimum lands on the dtype minimum and the maximum on the dtype
    maximum; a constant input maps to the dtype minimum.

    Args:
        values: Sampled values
        dtype: Integer output precision
        copy: If False a floating point ``values`` is used as work space
    """
    dtype = np.dtype(dtype)
    info = np.iinfo(dtype)
    values = np.asarray(values)
    if values.size == 0:
        return values.astype(dtype)
    low, high = float(np.min(values)), float(np.max(values))
    if high <= low:
        return np.full(values.shape, info.min, dtype=dtype)

    work = values.astype(np.promote_types(values.dtype, np.float32), copy=copy)
    work -= low
    work *= (float(info.max) - float(info.min)) / (high - low)
    work += info.min
    np.rint(work, out=work)
    np.clip(work, info.min, info.max, out=work)
    return work.astype(dtype)


class Volume:
    """
    Voxel buffer plus its world geometry.

    Geometry is fixed at construction; only the contents change between
    frames. A fresh volume is zero-filled.

    Integer volumes either rescale each stored frame from its value range
    onto the full range of the precision, or round and clamp the raw values.
    """

    def __init__(
        self,
        shape: Sequence[int],
        origin: Sequence[float] = (0.0, 0.0, 0.0),
        spacing: Sequence[float] = (1.0, 1.0, 1.0),
        dtype: DTypeLike = np.float32,
        rescale: bool = True,
    ) -> None:
        """
        Args:
            shape: Voxel count per axis
            origin: World position of the grid's minimum corner (um)
            spacing: Voxel size per axis (um)
            dtype: Stored precision, one of PRECISIONS
            rescale: Integer precisions only; False rounds and clamps instead
        """
        self.shape = tuple(int(n) for n in shape)
        self.origin = np.asarray(origin, dtype=float).reshape(3)
        self.spacing = np.asarray(spacing, dtype=float).reshape(3)
        self.dtype = np.dtype(dtype)
        self.rescale = rescale

        if len(self.shape) != 3 or min(self.shape) <= 0:
            raise ValueError(f"shape must be three positive sizes, got {self.shape}")
        if np.any(self.spacing <= 0):
            raise ValueError(f"spacing must be positive, got {self.spacing}")
        if self.dtype not in {np.dtype(t) for t in PRECISIONS.values()}:
            raise ValueError(f"unsupported precision {self.dtype}")

        self.data = np.zeros(self.shape, dtype=self.dtype)

    @classmethod
    def from_bounding_box(
        cls,
        bbox: AABB,
        size: Optional[int] = None,
        resolution: float = 1.0,
        dtype: DTypeLike = np.float32,
        rescale: bool = True,
    ) -> "Volume":
        """
        Volume covering ``bbox``.

        Args:
            bbox: Region to cover (um)
            size: Cubic voxel count per axis, spaced over the largest extent;
                  if None the shape follows ``resolution``
            resolution: Voxels per micrometer when ``size`` is None
            dtype: Stored precision
            rescale: Integer conversion mode, see ``Volume``

        Degenerate boxes are widened to MIN_EXTENT per axis.
        """
        if size is not None:
            if size <= 0:
                raise ValueError(f"size must be positive, got {size}")
            spacing = bbox.max_extent / size
            return cls((size, size, size), bbox.min, (spacing,) * 3, dtype, rescale)

        if resolution <= 0:
            raise ValueError(f"resolution must be positive, got {resolution}")
        extents = np.maximum(bbox.size, MIN_EXTENT)
        shape = np.maximum(np.ceil(extents * resolution - 1e-9), 1).astype(int)
        return cls(shape, bbox.min, (1.0 / resolution,) * 3, dtype, rescale)

    @property
    def num_voxels(self) -> int:
        return int(np.prod(self.shape))

    @property
    def nbytes(self) -> int:
        return self.data.nbytes

    @property
    def rescales(self) -> bool:
        """True if stored frames are mapped onto the integer range."""
        return self.rescale and np.issubdtype(self.dtype, np.integer)

    @property
    def scratch_dtype(self) -> np.dtype:
        """
        Precision of a voxelization pass buffer.

        Rescaled frames keep raw samples until the pass's range is known:
        float32 up to 2**24 output levels, float64 above.
        """
        if not self.rescales:
            return self.dtype
        if np.iinfo(self.dtype).max < 2 ** 24:
            return np.dtype(np.float32)
        return np.dtype(np.float64)

    @property
    def extent(self) -> NDArray[np.float64]:
        """World size of the grid (um)."""
        return self.spacing * np.asarray(self.shape)

    def voxel_centers(self, slices: Optional[Slices] = None) -> NDArray[np.float64]:
        """
        World centers of the voxels in ``slices``, in C order.

        Args:
            slices: Region as three slices with explicit bounds; None for all

        Returns:
            (n, 3) positions matching ``data[slices].ravel()``
        """
        if slices is None:
            slices = tuple(slice(0, n) for n in self.shape)
        axes = [
            self.origin[axis] + (np.arange(s.start, s.stop) + 0.5) * self.spacing[axis]
            for axis, s in enumerate(slices)
        ]
        grid = np.meshgrid(*axes, indexing="ij")
        return np.stack([g.ravel() for g in grid], axis=1)

    def convert(self, values: NDArray[np.float64]) -> NDArray:
        """
        Cast sampled values to the stored precision.

        Integer precisions rescale ``values`` from their own range, or round
        and clamp them when rescaling is off.
        """
        values = np.asarray(values)
        if self.rescales:
            return rescale_intensity(values, self.dtype)
        if np.issubdtype(self.dtype, np.integer):
            info = np.iinfo(self.dtype)
            return np.clip(np.rint(values), info.min, info.max).astype(self.dtype)
        return values.astype(self.dtype)

    def store(self, values: NDArray[np.float64], slices: Optional[Slices] = None) -> None:
        """Write sampled values into the whole volume or one region."""
        if slices is None:
            self.data[...] = self.convert(values).reshape(self.shape)
        else:
            target = self.data[slices]
            target[...] = self.convert(values).reshape(target.shape)

    def stage(self, values: NDArray[np.float64]) -> NDArray:
        """Region samples as kept in a ``scratch_dtype`` pass buffer."""
        if self.rescales:
            return np.asarray(values, dtype=self.scratch_dtype)
        return self.convert(values)

    def commit(self, scratch: NDArray) -> None:
        """
        Replace the contents with a finished pass buffer of staged values.

        The buffer is consumed: rescaling works on it in place.
        """
        if self.rescales:
            self.data[...] = rescale_intensity(scratch, self.dtype, copy=False)
        else:
            self.data[...] = scratch

    def clear(self) -> None:
        self.data.fill(0)
