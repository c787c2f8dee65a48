"""Step-size ("gamma") strategies for the implicit snake update.

Step sizes are always returned per coordinate as a vector of length 2N
aligned with :meth:`Curve.as_vector`, so a scalar strategy simply fills the
vector with one value.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import numpy as np

from activecontour.core.state import OptimizerState

if TYPE_CHECKING:
    from activecontour.core.optimizer import SingleCurveOptimizer

logger = logging.getLogger(__name__)

__all__ = [
    "ConstantStepSize",
    "PointwiseExternalStepSize",
    "StepSizeStrategy",
    "get_step_size",
]


@runtime_checkable
class StepSizeStrategy(Protocol):
    """Structural protocol for step-size strategies."""

    def init(self, optimizer: SingleCurveOptimizer) -> None:
        """Bind the strategy to *optimizer* before the first iteration."""
        ...

    def initial_gamma(self, n_points: int) -> np.ndarray:
        """Return the step sizes used for the first iteration, shape (2N,)."""
        ...

    def adapt_gamma(self, state: OptimizerState) -> np.ndarray:
        """Return the step sizes for the next iteration, shape (2N,)."""
        ...

    def duplicate_config(self) -> StepSizeStrategy:
        """Return an unbound copy with identical parameters."""
        ...


class ConstantStepSize:
    """The same step size for every point and every iteration.

    Args:
        gamma: Positive step size.

    Raises:
        ValueError: If *gamma* is not positive.
    """

    def __init__(self, gamma: float = 0.5) -> None:
        if not gamma > 0:
            raise ValueError(f"gamma must be positive, got {gamma}")
        self.gamma = float(gamma)

    def init(self, optimizer: SingleCurveOptimizer) -> None:
        pass

    def initial_gamma(self, n_points: int) -> np.ndarray:
        return np.full(2 * n_points, self.gamma)

    def adapt_gamma(self, state: OptimizerState) -> np.ndarray:
        return np.full(2 * len(state.curve), self.gamma)

    def duplicate_config(self) -> ConstantStepSize:
        return ConstantStepSize(gamma=self.gamma)

    def __repr__(self) -> str:
        return f"ConstantStepSize(gamma={self.gamma:g})"


class PointwiseExternalStepSize:
    """Per-point step sizes that shrink where the external force is strong.

    For every point ``i`` the magnitude ``m_i`` of the weighted external
    energy gradient is divided by its maximum over the curve, and

        gamma_i = gamma / (1 + damping * m_i)

    is applied to both coordinates of the point. Points sitting on strong
    image features therefore take small steps and do not overshoot them.
    Nothing is carried over between calls.

    Args:
        gamma: Base step size for points without external force.
        damping: Non-negative damping strength.

    Raises:
        ValueError: If *gamma* is not positive or *damping* is negative.
    """

    def __init__(self, gamma: float = 0.5, damping: float = 25.0) -> None:
        if not gamma > 0:
            raise ValueError(f"gamma must be positive, got {gamma}")
        if damping < 0:
            raise ValueError(f"damping must be non-negative, got {damping}")
        self.gamma = float(gamma)
        self.damping = float(damping)
        self._optimizer: SingleCurveOptimizer | None = None

    def init(self, optimizer: SingleCurveOptimizer) -> None:
        self._optimizer = optimizer

    def initial_gamma(self, n_points: int) -> np.ndarray:
        return np.full(2 * n_points, self.gamma)

    def adapt_gamma(self, state: OptimizerState) -> np.ndarray:
        if self._optimizer is None:
            raise RuntimeError("PointwiseExternalStepSize used before init()")
        opt = self._optimizer
        grad = opt.energy_set.external_gradient(state, opt.weights)
        n = len(state.curve)
        magnitude = np.hypot(grad[:n], grad[n:])
        peak = magnitude.max() if n else 0.0
        if peak > 0:
            magnitude = magnitude / peak
        per_point = self.gamma / (1.0 + self.damping * magnitude)
        return np.concatenate([per_point, per_point])

    def duplicate_config(self) -> PointwiseExternalStepSize:
        return PointwiseExternalStepSize(gamma=self.gamma, damping=self.damping)

    def __repr__(self) -> str:
        return (
            f"PointwiseExternalStepSize(gamma={self.gamma:g}, "
            f"damping={self.damping:g})"
        )


def get_step_size(kind: str, **kwargs: Any) -> StepSizeStrategy:
    """Create a step-size strategy by kind name.

    Args:
        kind: ``"constant"`` or ``"pointwise_external"``.
        **kwargs: Forwarded to the strategy constructor.

    Returns:
        A new, unbound strategy.

    Raises:
        ValueError: If *kind* is not recognized.
    """
    if kind == "constant":
        return ConstantStepSize(**kwargs)
    if kind == "pointwise_external":
        return PointwiseExternalStepSize(**kwargs)
    raise ValueError(
        f"Unknown step size kind: {kind!r}. "
        f"Supported kinds: ['constant', 'pointwise_external']"
    )
