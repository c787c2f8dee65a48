"""Mutable iteration state owned by a SingleCurveOptimizer."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from activecontour.core.curve import Curve
from activecontour.core.raster import Raster

__all__ = ["OptimizerState"]


@dataclass
class OptimizerState:
    """Snapshot of what energies, step sizes and terminations may read.

    The optimizer replaces ``curve`` with a fresh :class:`Curve` every
    iteration and moves the superseded instance to ``previous_curve``.

    Attributes:
        curve: Current curve (normalized coordinates).
        raster: Raster the curve evolves on (after intensity normalization).
        previous_curve: Curve of the previous iteration, None before the
            first iteration.
        iteration: Number of completed iterations.
        gamma: Per-coordinate step sizes, shape (2N,), aligned with
            :meth:`Curve.as_vector`. None until the optimizer is initialized.
    """

    curve: Curve
    raster: Raster
    previous_curve: Curve | None = None
    iteration: int = 0
    gamma: np.ndarray | None = None
