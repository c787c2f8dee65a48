"""Edge-attraction energy derived from the smoothed image gradient.

The energy map ``E(x, y) = -|grad(G_sigma * I)|^2`` is low on strong edges.
Its spatial derivatives, sampled at the control points, form a bias vector
that pulls the curve toward edges; the term contributes no matrix part.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np
import scipy.ndimage

from activecontour.core.energies.base import EnergyNormalization, sample_points
from activecontour.core.errors import InitializationError
from activecontour.core.raster import raster_to_array
from activecontour.core.state import OptimizerState

if TYPE_CHECKING:
    from activecontour.core.optimizer import SingleCurveOptimizer

logger = logging.getLogger(__name__)

__all__ = ["ImageGradientEnergy"]


class ImageGradientEnergy:
    """Image-based external energy with a bias-vector derivative.

    Args:
        sigma: Standard deviation of the Gaussian pre-smoothing in pixels.
            ``0`` uses plain central differences on the raw image.

    Raises:
        ValueError: If *sigma* is negative.
    """

    name = "image_gradient"
    requires_counter_clockwise = False
    is_external = True

    def __init__(self, sigma: float = 1.0) -> None:
        if sigma < 0:
            raise ValueError(f"sigma must be non-negative, got {sigma}")
        self.sigma = float(sigma)
        self._energy_map: np.ndarray | None = None
        self._grad_x: np.ndarray | None = None
        self._grad_y: np.ndarray | None = None
        self._norm_factor = 1.0

    def init(self, optimizer: SingleCurveOptimizer) -> None:
        """Precompute the energy map and its derivatives.

        Raises:
            InitializationError: If the optimizer has no raster.
        """
        raster = optimizer.state.raster
        if raster is None:
            raise InitializationError("ImageGradientEnergy requires a raster")
        image = raster_to_array(raster)

        if self.sigma > 0:
            magnitude = scipy.ndimage.gaussian_gradient_magnitude(image, self.sigma)
        else:
            gy, gx = np.gradient(image)
            magnitude = np.hypot(gx, gy)
        self._energy_map = -(magnitude**2)
        self._grad_y, self._grad_x = np.gradient(self._energy_map)

        self._norm_factor = 1.0
        if (
            optimizer.energy_set.normalization
            is EnergyNormalization.BALANCED_DERIVATIVES
        ):
            peak = max(np.abs(self._grad_x).max(), np.abs(self._grad_y).max())
            if peak > 0:
                self._norm_factor = 1.0 / float(peak)
        logger.debug(
            "ImageGradientEnergy initialized: sigma=%g, norm_factor=%g",
            self.sigma,
            self._norm_factor,
        )

    def update_status(self, optimizer: SingleCurveOptimizer) -> None:
        pass

    def calc_energy(self, state: OptimizerState) -> float:
        energy_map = self._require_init()
        return float(np.sum(sample_points(energy_map, state)))

    def derivative_matrix_part(self, state: OptimizerState) -> np.ndarray:
        n = len(state.curve)
        return np.zeros((2 * n, 2 * n), dtype=np.float64)

    def derivative_vector_part(self, state: OptimizerState) -> np.ndarray | None:
        self._require_init()
        dx = sample_points(self._grad_x, state)  # type: ignore[arg-type]
        dy = sample_points(self._grad_y, state)  # type: ignore[arg-type]
        return self._norm_factor * np.concatenate([dx, dy])

    def duplicate_config(self) -> ImageGradientEnergy:
        return ImageGradientEnergy(sigma=self.sigma)

    def _require_init(self) -> np.ndarray:
        if self._energy_map is None:
            raise RuntimeError("ImageGradientEnergy used before init()")
        return self._energy_map

    def __repr__(self) -> str:
        return f"ImageGradientEnergy(sigma={self.sigma:g})"
