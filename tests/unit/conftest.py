"""Shared fixtures for activecontour unit tests.

Provides small synthetic rasters and polygon factories so tests do not depend
on image files.
"""

from __future__ import annotations

from collections.abc import Callable
from types import SimpleNamespace

import numpy as np
import pytest

from activecontour.core.curve import Curve
from activecontour.core.energies import EnergySet
from activecontour.core.raster import ArrayRaster
from activecontour.core.state import OptimizerState

# ---------------------------------------------------------------------------
# Polygons
# ---------------------------------------------------------------------------

OCTAGON: list[tuple[float, float]] = [
    (2.0, 1.0),
    (3.0, 1.0),
    (4.0, 2.0),
    (4.0, 3.0),
    (3.0, 4.0),
    (2.0, 4.0),
    (1.0, 3.0),
    (1.0, 2.0),
]


def circle_points(
    cx: float, cy: float, radius: float, n: int, clockwise: bool = False
) -> np.ndarray:
    """Return *n* points on a circle, counter-clockwise by default.

    Counter-clockwise is meant in the mathematical sense on (x, y), i.e. a
    positive shoelace area.
    """
    t = np.linspace(0.0, 2.0 * np.pi, n, endpoint=False)
    if clockwise:
        t = -t
    return np.column_stack([cx + radius * np.cos(t), cy + radius * np.sin(t)])


@pytest.fixture
def octagon() -> list[tuple[float, float]]:
    """The 8-point octagon with unit and diagonal edges."""
    return list(OCTAGON)


@pytest.fixture
def make_circle() -> Callable[..., np.ndarray]:
    """Factory fixture wrapping :func:`circle_points`."""
    return circle_points


# ---------------------------------------------------------------------------
# Rasters
# ---------------------------------------------------------------------------


@pytest.fixture
def disk_raster() -> ArrayRaster:
    """64x64 float raster with a bright disk (1.0, radius 12) at the center."""
    yy, xx = np.mgrid[0:64, 0:64]
    image = ((xx - 32.0) ** 2 + (yy - 32.0) ** 2 <= 12.0**2).astype(np.float64)
    return ArrayRaster(image)


@pytest.fixture
def blank_raster() -> ArrayRaster:
    """64x64 all-zero float raster."""
    return ArrayRaster(np.zeros((64, 64), dtype=np.float64))


# ---------------------------------------------------------------------------
# Optimizer stand-in
# ---------------------------------------------------------------------------


@pytest.fixture
def bind_state() -> Callable[..., SimpleNamespace]:
    """Factory building the minimal optimizer surface energies bind to.

    Energies and step sizes read ``state``, ``energy_set`` and ``weights``
    from the optimizer passed to ``init``; this avoids running a full
    :class:`SingleCurveOptimizer` initialization in energy tests.
    """

    def _bind(
        curve: Curve,
        raster: ArrayRaster | None,
        energy_set: EnergySet | None = None,
    ) -> SimpleNamespace:
        energy_set = energy_set if energy_set is not None else EnergySet([])
        weights = (
            energy_set.normalized_weights() if len(energy_set) else np.zeros(0)
        )
        return SimpleNamespace(
            state=OptimizerState(curve=curve, raster=raster),
            energy_set=energy_set,
            weights=weights,
        )

    return _bind
