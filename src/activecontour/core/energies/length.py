"""Length (elasticity) energy penalizing stretching of the curve."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from activecontour.core.energies.base import (
    EnergyNormalization,
    difference_operator,
    replicate_blocks,
)
from activecontour.core.state import OptimizerState

if TYPE_CHECKING:
    from activecontour.core.optimizer import SingleCurveOptimizer

logger = logging.getLogger(__name__)

__all__ = ["LengthEnergy"]


class LengthEnergy:
    """Elasticity term ``E = 0.5 * alpha * sum_i |p[i+1] - p[i]|^2``.

    The derivative matrix is ``alpha * D^T D`` with D the forward difference
    operator, replicated on the x and y blocks. For closed curves this is the
    circulant tridiagonal stencil (2 alpha on the diagonal, -alpha on both
    wrapped neighbours); the energy equals the quadratic form ``0.5 x^T A x``.

    Args:
        alpha: Non-negative elasticity weight.

    Raises:
        ValueError: If *alpha* is negative.
    """

    name = "length"
    requires_counter_clockwise = False
    is_external = False

    def __init__(self, alpha: float = 1.0) -> None:
        if alpha < 0:
            raise ValueError(f"alpha must be non-negative, got {alpha}")
        self.alpha = float(alpha)
        self._norm_factor = 1.0

    def init(self, optimizer: SingleCurveOptimizer) -> None:
        if (
            optimizer.energy_set.normalization
            is EnergyNormalization.BALANCED_DERIVATIVES
            and self.alpha > 0
        ):
            self._norm_factor = 1.0 / (2.0 * self.alpha)
        else:
            self._norm_factor = 1.0
        logger.debug(
            "LengthEnergy initialized: alpha=%g, norm_factor=%g",
            self.alpha,
            self._norm_factor,
        )

    def update_status(self, optimizer: SingleCurveOptimizer) -> None:
        pass

    def calc_energy(self, state: OptimizerState) -> float:
        diffs = state.curve.first_differences()
        return float(0.5 * self._norm_factor * self.alpha * np.sum(diffs**2))

    def derivative_matrix_part(self, state: OptimizerState) -> np.ndarray:
        op = difference_operator(len(state.curve), state.curve.closed)
        block = self._norm_factor * self.alpha * (op.T @ op)
        return replicate_blocks(block)

    def derivative_vector_part(self, state: OptimizerState) -> np.ndarray | None:
        return None

    def duplicate_config(self) -> LengthEnergy:
        return LengthEnergy(alpha=self.alpha)

    def __repr__(self) -> str:
        return f"LengthEnergy(alpha={self.alpha:g})"
