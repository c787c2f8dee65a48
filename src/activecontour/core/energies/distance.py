"""External energy from the distance to the nearest foreground pixel.

The raster is binarized at a threshold, and a distance transform gives every
pixel its distance to the foreground. The field is min-max scaled to [0, 1],
so the energy is zero on the foreground and grows away from it. Points are
pulled toward the foreground along the field's central differences.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np
import scipy.ndimage

from activecontour.core.energies.base import (
    EnergyNormalization,
    central_differences,
    sample_points,
)
from activecontour.core.errors import InitializationError
from activecontour.core.raster import raster_to_array
from activecontour.core.state import OptimizerState

if TYPE_CHECKING:
    from activecontour.core.optimizer import SingleCurveOptimizer

logger = logging.getLogger(__name__)

__all__ = ["DistanceEnergy"]

_METRICS = ("euclidean", "cityblock", "chessboard")
_FOREGROUNDS = ("white", "black")


class DistanceEnergy:
    """Distance-to-foreground external energy.

    Args:
        threshold: Intensity separating foreground from background, applied
            to the normalized raster.
        foreground: ``"white"`` if pixels above *threshold* are foreground,
            ``"black"`` if pixels at or below it are.
        metric: ``"euclidean"``, ``"cityblock"`` or ``"chessboard"``.

    Raises:
        ValueError: On an unknown *foreground* or *metric*.
    """

    name = "distance"
    requires_counter_clockwise = False
    is_external = True

    def __init__(
        self,
        threshold: float = 0.5,
        foreground: str = "white",
        metric: str = "euclidean",
    ) -> None:
        if foreground not in _FOREGROUNDS:
            raise ValueError(
                f"foreground must be one of {list(_FOREGROUNDS)}, got {foreground!r}"
            )
        if metric not in _METRICS:
            raise ValueError(f"metric must be one of {list(_METRICS)}, got {metric!r}")
        self.threshold = float(threshold)
        self.foreground = foreground
        self.metric = metric
        self._field: np.ndarray | None = None
        self._grad_x: np.ndarray | None = None
        self._grad_y: np.ndarray | None = None
        self._norm_factor = 1.0

    def init(self, optimizer: SingleCurveOptimizer) -> None:
        """Binarize the raster and precompute the distance field.

        Raises:
            InitializationError: If the optimizer has no raster or the
                raster contains no foreground pixel.
        """
        raster = optimizer.state.raster
        if raster is None:
            raise InitializationError("DistanceEnergy requires a raster")
        image = raster_to_array(raster)
        if self.foreground == "white":
            mask = image > self.threshold
        else:
            mask = image <= self.threshold
        if not mask.any():
            raise InitializationError(
                f"DistanceEnergy found no {self.foreground} foreground pixels "
                f"at threshold {self.threshold:g}"
            )

        # Distance transforms measure the distance to the nearest zero.
        if self.metric == "euclidean":
            field = scipy.ndimage.distance_transform_edt(~mask)
        elif self.metric == "cityblock":
            field = scipy.ndimage.distance_transform_cdt(~mask, metric="taxicab")
        else:
            field = scipy.ndimage.distance_transform_cdt(~mask, metric="chessboard")
        field = np.asarray(field, dtype=np.float64)
        peak = float(field.max())
        if peak > 0:
            field = field / peak
        self._field = field
        self._grad_x, self._grad_y = central_differences(field)

        self._norm_factor = 1.0
        if (
            optimizer.energy_set.normalization
            is EnergyNormalization.BALANCED_DERIVATIVES
        ):
            grad_peak = max(np.abs(self._grad_x).max(), np.abs(self._grad_y).max())
            if grad_peak > 0:
                self._norm_factor = 1.0 / float(grad_peak)
        logger.debug(
            "DistanceEnergy initialized: metric=%s, foreground=%s, "
            "%d foreground pixels, norm_factor=%g",
            self.metric,
            self.foreground,
            int(np.count_nonzero(mask)),
            self._norm_factor,
        )

    def update_status(self, optimizer: SingleCurveOptimizer) -> None:
        pass

    def calc_energy(self, state: OptimizerState) -> float:
        field = self._require_init()
        return float(np.sum(sample_points(field, state)))

    def derivative_matrix_part(self, state: OptimizerState) -> np.ndarray:
        n = len(state.curve)
        return np.zeros((2 * n, 2 * n), dtype=np.float64)

    def derivative_vector_part(self, state: OptimizerState) -> np.ndarray | None:
        self._require_init()
        dx = sample_points(self._grad_x, state)  # type: ignore[arg-type]
        dy = sample_points(self._grad_y, state)  # type: ignore[arg-type]
        return self._norm_factor * np.concatenate([dx, dy])

    def duplicate_config(self) -> DistanceEnergy:
        return DistanceEnergy(
            threshold=self.threshold, foreground=self.foreground, metric=self.metric
        )

    @property
    def distance_field(self) -> np.ndarray:
        """Normalized distance field, shape (height, width)."""
        return self._require_init()

    def _require_init(self) -> np.ndarray:
        if self._field is None:
            raise RuntimeError("DistanceEnergy used before init()")
        return self._field

    def __repr__(self) -> str:
        return (
            f"DistanceEnergy(threshold={self.threshold:g}, "
            f"foreground={self.foreground!r}, metric={self.metric!r})"
        )
