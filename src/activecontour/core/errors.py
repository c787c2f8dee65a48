"""Error taxonomy for snake optimization.

Configuration mistakes (unknown backend kinds, out-of-range parameters) raise
plain :class:`ValueError`. The classes below cover failures that arise while
preparing or running an optimization.
"""

from __future__ import annotations

__all__ = [
    "ActiveContourError",
    "InitializationError",
    "InvalidGeometryError",
    "NumericalError",
]


class ActiveContourError(Exception):
    """Base class for all snake optimization failures."""


class InitializationError(ActiveContourError):
    """An energy, step-size or termination strategy could not be initialized.

    Raised before the first iteration. An optimizer whose initialization
    failed refuses to iterate.
    """


class InvalidGeometryError(ActiveContourError):
    """A curve is unusable, e.g. empty after resampling or too short for a stencil."""


class NumericalError(ActiveContourError):
    """The assembled linear system is singular, ill-conditioned or produced NaN/Inf."""
