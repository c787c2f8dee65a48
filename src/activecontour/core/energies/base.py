"""Energy protocol, normalization modes and shared matrix helpers.

Every energy contributes to the per-iteration linear system of size 2N, laid
out as two blocks of N rows/columns: the first block addresses the
x-coordinates of the control points, the second the y-coordinates (the
ordering of :meth:`Curve.as_vector`).
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import numpy as np

from activecontour.core.state import OptimizerState

if TYPE_CHECKING:
    from activecontour.core.optimizer import SingleCurveOptimizer

__all__ = [
    "TARGET_ENERGY_RANGE",
    "Energy",
    "EnergyNormalization",
    "central_differences",
    "difference_operator",
    "replicate_blocks",
    "sample_points",
    "second_difference_operator",
]

# Interval onto which balanced normalization maps external derivative values.
TARGET_ENERGY_RANGE: tuple[float, float] = (-1.0, 1.0)


class EnergyNormalization(Enum):
    """How energy derivatives are scaled before being combined.

    Attributes:
        NONE: Use raw derivative values.
        BALANCED_DERIVATIVES: Scale every energy so that its derivative
            values fall into a common range, making weights comparable.
    """

    NONE = "none"
    BALANCED_DERIVATIVES = "balanced_derivatives"


@runtime_checkable
class Energy(Protocol):
    """Structural protocol for snake energy terms.

    Attributes:
        name: Short identifier used in logs and energy tables.
        requires_counter_clockwise: Whether the term assumes CCW point order.
        is_external: Whether the term is image-derived (as opposed to an
            internal shape prior). Pointwise step sizes use external terms
            only.
    """

    name: str
    requires_counter_clockwise: bool
    is_external: bool

    def init(self, optimizer: SingleCurveOptimizer) -> None:
        """Bind the energy to *optimizer* (raster, normalization, curve).

        Raises:
            InitializationError: If the energy cannot work with the
                optimizer's configuration.
        """
        ...

    def update_status(self, optimizer: SingleCurveOptimizer) -> None:
        """Refresh per-iteration statistics before the system is assembled."""
        ...

    def calc_energy(self, state: OptimizerState) -> float:
        """Return the scalar energy of the current curve."""
        ...

    def derivative_matrix_part(self, state: OptimizerState) -> np.ndarray:
        """Return the (2N, 2N) matrix contribution for the current curve."""
        ...

    def derivative_vector_part(self, state: OptimizerState) -> np.ndarray | None:
        """Return the (2N,) bias contribution, or None if the term has none."""
        ...

    def duplicate_config(self) -> Energy:
        """Return a new, uninitialized energy with identical parameters."""
        ...


# ---------------------------------------------------------------------------
# Matrix helpers
# ---------------------------------------------------------------------------


def difference_operator(n: int, closed: bool) -> np.ndarray:
    """Forward difference operator D with ``(D p)[i] = p[i+1] - p[i]``.

    Matches :meth:`Curve.first_differences`: rows wrap for closed curves and
    the last row is zero for open curves.

    Args:
        n: Number of points.
        closed: Curve topology.

    Returns:
        Array of shape (n, n).
    """
    op = np.zeros((n, n), dtype=np.float64)
    last = n if closed else n - 1
    for i in range(last):
        op[i, i] -= 1.0
        op[i, (i + 1) % n] += 1.0
    return op


def second_difference_operator(n: int, closed: bool) -> np.ndarray:
    """Second difference operator matching :meth:`Curve.second_differences`.

    Args:
        n: Number of points.
        closed: Curve topology.

    Returns:
        Array of shape (n, n).
    """
    op = np.zeros((n, n), dtype=np.float64)
    for i in range(n):
        prv, nxt = (i - 1) % n, (i + 1) % n
        if not closed:
            prv = max(i - 1, 0)
            nxt = min(i + 1, n - 1)
        op[i, nxt] += 1.0
        op[i, i] -= 2.0
        op[i, prv] += 1.0
    return op


def replicate_blocks(block: np.ndarray) -> np.ndarray:
    """Place *block* on both diagonal blocks of a zero (2N, 2N) matrix."""
    n = block.shape[0]
    out = np.zeros((2 * n, 2 * n), dtype=np.float64)
    out[:n, :n] = block
    out[n:, n:] = block
    return out


def sample_points(image: np.ndarray, state: OptimizerState) -> np.ndarray:
    """Sample *image* at the pixel positions of the current control points.

    Coordinates are truncated to integers and clamped to the image domain.

    Args:
        image: Array of shape (height, width).
        state: Optimizer state holding the curve.

    Returns:
        Array of shape (N,) with one value per control point.
    """
    pix = state.curve.pixel_points
    height, width = image.shape
    xs = np.clip(pix[:, 0].astype(np.intp), 0, width - 1)
    ys = np.clip(pix[:, 1].astype(np.intp), 0, height - 1)
    return image[ys, xs]


def central_differences(image: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Undivided central differences ``I[k+1] - I[k-1]`` along both axes.

    Border pixels are replicated, so the difference at an edge only sees the
    one neighbour that exists.

    Args:
        image: Array of shape (height, width).

    Returns:
        Tuple ``(dx, dy)`` of arrays shaped like *image*.
    """
    padded = np.pad(image, 1, mode="edge")
    dx = padded[1:-1, 2:] - padded[1:-1, :-2]
    dy = padded[2:, 1:-1] - padded[:-2, 1:-1]
    return dx, dy
