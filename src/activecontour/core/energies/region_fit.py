"""Two-phase Chan–Vese region-fit energy.

The energy measures how well the mean intensities inside and outside the
curve explain the image:

    E = lambda_in  * sum_{inside}  (I - mu_in)^2
      + lambda_out * sum_{outside} (I - mu_out)^2

Its contribution to the linear system couples the x- and y-blocks: each
point moves along the normal of its outgoing segment with a magnitude given
by the local fit coefficient

    tau_i = lambda_in * (I(p_i) - mu_in)^2 - lambda_out * (I(p_i) - mu_out)^2

which is positive where a pixel is better explained by the outside mean
(the curve retracts there) and negative where it belongs inside (the curve
expands). Curves must be closed and ordered counter-clockwise.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from activecontour.core.energies.base import (
    TARGET_ENERGY_RANGE,
    EnergyNormalization,
    sample_points,
)
from activecontour.core.errors import InitializationError
from activecontour.core.raster import raster_to_array
from activecontour.core.state import OptimizerState

if TYPE_CHECKING:
    from activecontour.core.optimizer import SingleCurveOptimizer

logger = logging.getLogger(__name__)

__all__ = ["RegionFitEnergy"]


class RegionFitEnergy:
    """Chan–Vese region-fit external energy.

    Args:
        lambda_in: Weight of the interior homogeneity term.
        lambda_out: Weight of the exterior homogeneity term.

    Attributes:
        means: ``(mu_out, mu_in)`` computed from the most recent curve, or
            None before :meth:`init`.
    """

    name = "region_fit"
    requires_counter_clockwise = True
    is_external = True

    def __init__(self, lambda_in: float = 0.5, lambda_out: float = 0.5) -> None:
        self.lambda_in = float(lambda_in)
        self.lambda_out = float(lambda_out)
        self.means: tuple[float, float] | None = None
        self._image: np.ndarray | None = None
        self._normalization = EnergyNormalization.NONE
        self._energy_range: tuple[float, float] = (-1.0, 1.0)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init(self, optimizer: SingleCurveOptimizer) -> None:
        """Bind to the optimizer's raster and compute the initial region means.

        Raises:
            InitializationError: If a lambda is negative, the optimizer has no
                raster, or the curve is open.
        """
        if self.lambda_in < 0 or self.lambda_out < 0:
            raise InitializationError(
                f"RegionFitEnergy lambdas must be non-negative, got "
                f"lambda_in={self.lambda_in}, lambda_out={self.lambda_out}"
            )
        state = optimizer.state
        if state.raster is None:
            raise InitializationError("RegionFitEnergy requires a raster")
        if not state.curve.closed:
            raise InitializationError("RegionFitEnergy requires a closed curve")

        self._image = raster_to_array(state.raster)
        self._normalization = optimizer.energy_set.normalization

        bound = max(self.lambda_in, self.lambda_out)
        if (
            self._normalization is EnergyNormalization.BALANCED_DERIVATIVES
            and bound == 0
        ):
            raise InitializationError(
                "RegionFitEnergy cannot balance derivatives with both lambdas zero"
            )
        self._energy_range = (-bound, bound)
        self.means = self._region_means(state)
        logger.debug(
            "RegionFitEnergy initialized: mu_out=%.4g, mu_in=%.4g",
            self.means[0],
            self.means[1],
        )

    def update_status(self, optimizer: SingleCurveOptimizer) -> None:
        self._require_init()
        self.means = self._region_means(optimizer.state)

    # ------------------------------------------------------------------
    # Energy & derivatives
    # ------------------------------------------------------------------

    def point_coefficients(self, state: OptimizerState) -> np.ndarray:
        """Return the (normalized) fit coefficient tau for every control point.

        Args:
            state: Current optimizer state.

        Returns:
            Array of shape (N,).
        """
        image = self._require_init()
        mu_out, mu_in = self.means  # type: ignore[misc]
        values = sample_points(image, state)
        tau = self.lambda_in * (values - mu_in) ** 2 - self.lambda_out * (
            values - mu_out
        ) ** 2
        if self._normalization is EnergyNormalization.BALANCED_DERIVATIVES:
            lo, hi = self._energy_range
            t_lo, t_hi = TARGET_ENERGY_RANGE
            tau = (tau - lo) / (hi - lo) * (t_hi - t_lo) + t_lo
        return tau

    def derivative_matrix_part(self, state: OptimizerState) -> np.ndarray:
        """Antisymmetric x/y coupling built from each point's outgoing segment.

        Row ``i`` (x-equation) reads ``tau_i * (y[i+1] - y[i])`` and row
        ``N + i`` (y-equation) reads ``tau_i * (x[i] - x[i+1])``; indices wrap.
        The lower off-diagonal block is therefore the negation of the upper
        one and both diagonal blocks are zero.
        """
        tau = self.point_coefficients(state)
        n = len(state.curve)
        idx = np.arange(n)
        nxt = (idx + 1) % n
        out = np.zeros((2 * n, 2 * n), dtype=np.float64)
        np.add.at(out, (idx, n + idx), -tau)
        np.add.at(out, (idx, n + nxt), tau)
        np.add.at(out, (n + idx, idx), tau)
        np.add.at(out, (n + idx, nxt), -tau)
        return out

    def derivative_vector_part(self, state: OptimizerState) -> np.ndarray | None:
        return None

    def calc_energy(self, state: OptimizerState) -> float:
        """Sum of weighted squared deviations from the region means."""
        image = self._require_init()
        mask = state.curve.binary_mask(image.shape[1], image.shape[0]).astype(bool)
        mu_out, mu_in = self._region_means(state)
        inside = image[mask]
        outside = image[~mask]
        return float(
            self.lambda_in * np.sum((inside - mu_in) ** 2)
            + self.lambda_out * np.sum((outside - mu_out) ** 2)
        )

    def duplicate_config(self) -> RegionFitEnergy:
        return RegionFitEnergy(lambda_in=self.lambda_in, lambda_out=self.lambda_out)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_init(self) -> np.ndarray:
        if self._image is None or self.means is None:
            raise RuntimeError("RegionFitEnergy used before init()")
        return self._image

    def _region_means(self, state: OptimizerState) -> tuple[float, float]:
        """Mean intensity outside and inside the curve (0.0 for empty regions)."""
        image = self._image
        mask = state.curve.binary_mask(image.shape[1], image.shape[0]).astype(bool)  # type: ignore[union-attr]
        inside = image[mask]  # type: ignore[index]
        outside = image[~mask]  # type: ignore[index]
        mu_in = float(inside.mean()) if inside.size else 0.0
        mu_out = float(outside.mean()) if outside.size else 0.0
        return mu_out, mu_in

    def __repr__(self) -> str:
        return (
            f"RegionFitEnergy(lambda_in={self.lambda_in:g}, "
            f"lambda_out={self.lambda_out:g})"
        )
