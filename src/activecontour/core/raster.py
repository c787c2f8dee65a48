"""Raster capability consumed by the optimizers, plus intensity normalization.

The optimizers only ever read pixel values. Any object exposing ``width``,
``height`` and ``value_at(x, y)`` satisfies :class:`Raster`; numpy-backed
images are wrapped in :class:`ArrayRaster`, which additionally exposes the
whole array for energies that need image-wide statistics.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Protocol, runtime_checkable

import numpy as np

logger = logging.getLogger(__name__)

__all__ = [
    "ArrayRaster",
    "IntensityNormalization",
    "Raster",
    "normalize_intensities",
    "raster_to_array",
]


@runtime_checkable
class Raster(Protocol):
    """Read-only scalar image addressed by integer pixel coordinates.

    Example::

        class Constant:
            width = 4
            height = 3

            def value_at(self, x: int, y: int) -> float:
                return 1.0
    """

    @property
    def width(self) -> int:
        """Number of pixel columns."""
        ...

    @property
    def height(self) -> int:
        """Number of pixel rows."""
        ...

    def value_at(self, x: int, y: int) -> float:
        """Return the scalar value at column *x*, row *y*."""
        ...


class ArrayRaster:
    """Raster backed by a 2-D numpy array indexed ``[y, x]``.

    The array is copied and flagged read-only on construction so that a
    raster shared between several optimizers can never be mutated by one
    of them.

    Args:
        data: 2-D array of shape (height, width).

    Raises:
        ValueError: If *data* is not two-dimensional or is empty.
    """

    def __init__(self, data: np.ndarray) -> None:
        arr = np.array(data, copy=True)
        if arr.ndim != 2:
            raise ValueError(f"ArrayRaster expects a 2-D array, got shape {arr.shape}")
        if arr.size == 0:
            raise ValueError("ArrayRaster expects a non-empty array")
        arr.setflags(write=False)
        self._data = arr

    @property
    def width(self) -> int:
        return int(self._data.shape[1])

    @property
    def height(self) -> int:
        return int(self._data.shape[0])

    @property
    def data(self) -> np.ndarray:
        """Read-only view of the underlying (height, width) array."""
        return self._data

    def value_at(self, x: int, y: int) -> float:
        return float(self._data[y, x])

    def __repr__(self) -> str:
        return f"ArrayRaster(width={self.width}, height={self.height}, dtype={self._data.dtype})"


def raster_to_array(raster: Raster) -> np.ndarray:
    """Return the full pixel grid of *raster* as a float64 array ``[y, x]``.

    Args:
        raster: Any object satisfying :class:`Raster`.

    Returns:
        Array of shape (height, width).
    """
    if isinstance(raster, ArrayRaster):
        return raster.data.astype(np.float64)
    out = np.empty((raster.height, raster.width), dtype=np.float64)
    for y in range(raster.height):
        for x in range(raster.width):
            out[y, x] = raster.value_at(x, y)
    return out


# ---------------------------------------------------------------------------
# Intensity normalization
# ---------------------------------------------------------------------------


class IntensityNormalization(Enum):
    """How raster intensities are rescaled before energies see them.

    Attributes:
        NONE: Use raw values.
        TRUE_RANGE: Map the observed value range onto [0, 1], [-1, 1] or
            [-1, 0] depending on the signs present in the image.
        THEORETIC_RANGE: Same mapping, but based on the range of the
            array's integer dtype rather than the observed values.
    """

    NONE = "none"
    TRUE_RANGE = "true_range"
    THEORETIC_RANGE = "theoretic_range"


def _target_interval(
    source_min: float, source_max: float
) -> tuple[float, float, float, float]:
    """Choose source/target intervals from the sign of the source range."""
    max_abs = max(abs(source_min), abs(source_max))
    if source_max < 0:
        return source_min, source_max, -1.0, 0.0
    if source_min < 0:
        return -max_abs, max_abs, -1.0, 1.0
    return source_min, source_max, 0.0, 1.0


def normalize_intensities(raster: Raster, mode: IntensityNormalization) -> Raster:
    """Rescale *raster* intensities according to *mode*.

    The input raster is never modified; a new :class:`ArrayRaster` is
    returned unless *mode* is ``NONE``, in which case *raster* itself is
    returned.

    Args:
        raster: Source raster.
        mode: Normalization mode.

    Returns:
        The normalized raster.

    Raises:
        ValueError: If ``THEORETIC_RANGE`` is requested for a raster whose
            values are not stored with an integer dtype.
    """
    if mode is IntensityNormalization.NONE:
        return raster

    values = raster_to_array(raster)
    if mode is IntensityNormalization.TRUE_RANGE:
        lo, hi = float(values.min()), float(values.max())
        if lo < 0:
            logger.warning(
                "Raster contains negative intensities (min=%.3g); "
                "normalizing to a signed target range",
                lo,
            )
    else:
        if not isinstance(raster, ArrayRaster) or not np.issubdtype(
            raster.data.dtype, np.integer
        ):
            raise ValueError(
                "THEORETIC_RANGE normalization requires an ArrayRaster with an "
                "integer dtype"
            )
        info = np.iinfo(raster.data.dtype)
        lo, hi = float(info.min), float(info.max)

    src_lo, src_hi, dst_lo, dst_hi = _target_interval(lo, hi)
    logger.debug(
        "Normalizing intensities [%g, %g] -> [%g, %g]", src_lo, src_hi, dst_lo, dst_hi
    )
    if src_hi == src_lo:
        # Constant image: everything maps onto the lower target bound.
        return ArrayRaster(np.full_like(values, dst_lo))
    scaled = (values - src_lo) / (src_hi - src_lo) * (dst_hi - dst_lo) + dst_lo
    return ArrayRaster(scaled)
