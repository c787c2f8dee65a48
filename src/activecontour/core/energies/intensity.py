"""External energy equal to the raster intensity under the curve.

Minimizing the summed intensity drives control points toward dark image
regions. Derivatives are undivided central differences of the (normalized)
raster; the term contributes no matrix part.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

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

__all__ = ["IntensityEnergy"]


class IntensityEnergy:
    """Intensity-valued external energy with a bias-vector derivative."""

    name = "intensity"
    requires_counter_clockwise = False
    is_external = True

    def __init__(self) -> None:
        self._image: np.ndarray | None = None
        self._grad_x: np.ndarray | None = None
        self._grad_y: np.ndarray | None = None
        self._norm_factor = 1.0

    def init(self, optimizer: SingleCurveOptimizer) -> None:
        """Cache the raster and its central differences.

        Raises:
            InitializationError: If the optimizer has no raster.
        """
        raster = optimizer.state.raster
        if raster is None:
            raise InitializationError("IntensityEnergy requires a raster")
        self._image = raster_to_array(raster)
        self._grad_x, self._grad_y = central_differences(self._image)

        self._norm_factor = 1.0
        if (
            optimizer.energy_set.normalization
            is EnergyNormalization.BALANCED_DERIVATIVES
        ):
            peak = max(np.abs(self._grad_x).max(), np.abs(self._grad_y).max())
            if peak > 0:
                self._norm_factor = 1.0 / float(peak)
        logger.debug("IntensityEnergy initialized: norm_factor=%g", self._norm_factor)

    def update_status(self, optimizer: SingleCurveOptimizer) -> None:
        pass

    def calc_energy(self, state: OptimizerState) -> float:
        image = self._require_init()
        return float(np.sum(sample_points(image, state)))

    def derivative_matrix_part(self, state: OptimizerState) -> np.ndarray:
        n = len(state.curve)
        return np.zeros((2 * n, 2 * n), dtype=np.float64)

    def derivative_vector_part(self, state: OptimizerState) -> np.ndarray | None:
        self._require_init()
        dx = sample_points(self._grad_x, state)  # type: ignore[arg-type]
        dy = sample_points(self._grad_y, state)  # type: ignore[arg-type]
        return self._norm_factor * np.concatenate([dx, dy])

    def duplicate_config(self) -> IntensityEnergy:
        return IntensityEnergy()

    def _require_init(self) -> np.ndarray:
        if self._image is None:
            raise RuntimeError("IntensityEnergy used before init()")
        return self._image

    def __repr__(self) -> str:
        return "IntensityEnergy()"
