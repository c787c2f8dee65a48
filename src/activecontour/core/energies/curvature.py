"""Curvature (bending) energy penalizing sharp turns of the curve."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from activecontour.core.energies.base import (
    EnergyNormalization,
    replicate_blocks,
    second_difference_operator,
)
from activecontour.core.errors import InvalidGeometryError
from activecontour.core.state import OptimizerState

if TYPE_CHECKING:
    from activecontour.core.optimizer import SingleCurveOptimizer

logger = logging.getLogger(__name__)

__all__ = ["MIN_CURVATURE_POINTS", "CurvatureEnergy"]

# The pentadiagonal stencil touches i-2..i+2; fewer points make these overlap.
MIN_CURVATURE_POINTS: int = 5


class CurvatureEnergy:
    """Bending term ``E = 0.5 * beta * sum_i |p[i+1] - 2 p[i] + p[i-1]|^2``.

    The derivative matrix is ``beta * D2^T D2``. For closed curves this is
    the circulant pentadiagonal stencil (6 beta, -4 beta at +-1, beta at
    +-2), replicated on the x and y blocks.

    Curves with fewer than :data:`MIN_CURVATURE_POINTS` points are rejected
    with :class:`InvalidGeometryError` instead of evaluating an overlapping
    stencil.

    Args:
        beta: Non-negative bending weight.

    Raises:
        ValueError: If *beta* is negative.
    """

    name = "curvature"
    requires_counter_clockwise = False
    is_external = False

    def __init__(self, beta: float = 1.0) -> None:
        if beta < 0:
            raise ValueError(f"beta must be non-negative, got {beta}")
        self.beta = float(beta)
        self._norm_factor = 1.0

    def init(self, optimizer: SingleCurveOptimizer) -> None:
        self._check_geometry(optimizer.state)
        if (
            optimizer.energy_set.normalization
            is EnergyNormalization.BALANCED_DERIVATIVES
            and self.beta > 0
        ):
            self._norm_factor = 1.0 / (8.0 * self.beta)
        else:
            self._norm_factor = 1.0

    def update_status(self, optimizer: SingleCurveOptimizer) -> None:
        self._check_geometry(optimizer.state)

    def calc_energy(self, state: OptimizerState) -> float:
        self._check_geometry(state)
        diffs = state.curve.second_differences()
        return float(0.5 * self._norm_factor * self.beta * np.sum(diffs**2))

    def derivative_matrix_part(self, state: OptimizerState) -> np.ndarray:
        self._check_geometry(state)
        op = second_difference_operator(len(state.curve), state.curve.closed)
        block = self._norm_factor * self.beta * (op.T @ op)
        return replicate_blocks(block)

    def derivative_vector_part(self, state: OptimizerState) -> np.ndarray | None:
        return None

    def duplicate_config(self) -> CurvatureEnergy:
        return CurvatureEnergy(beta=self.beta)

    @staticmethod
    def _check_geometry(state: OptimizerState) -> None:
        if len(state.curve) < MIN_CURVATURE_POINTS:
            raise InvalidGeometryError(
                f"Curvature energy needs at least {MIN_CURVATURE_POINTS} points, "
                f"curve has {len(state.curve)}"
            )

    def __repr__(self) -> str:
        return f"CurvatureEnergy(beta={self.beta:g})"
