"""Termination strategies polled once per completed snake iteration.

Every strategy follows a two-phase lifecycle: it is *constructed* unbound
from its thresholds and *bound* to exactly one optimizer through
:meth:`init`. :meth:`duplicate_config` yields a fresh unbound copy, so a
configured prototype can seed any number of optimizers without sharing
state between them. Calling :meth:`terminate` on an unbound strategy is an
error.

All strategies are idempotent: polling twice without an intervening
iteration returns the same status.
"""

from __future__ import annotations

import logging
from collections import deque
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import numpy as np

if TYPE_CHECKING:
    from activecontour.core.optimizer import SingleCurveOptimizer

logger = logging.getLogger(__name__)

__all__ = [
    "AreaDiff",
    "AreaDiffSlidingOffset",
    "MaxIterations",
    "MotionDiff",
    "TerminationStatus",
    "TerminationStrategy",
    "get_termination",
]


class TerminationStatus(Enum):
    """Verdict of a termination strategy."""

    CONTINUE = "continue"
    DONE = "done"


@runtime_checkable
class TerminationStrategy(Protocol):
    """Structural protocol for convergence tests.

    Attributes:
        name: Short identifier reported when the strategy stops a run.
    """

    name: str

    @property
    def is_bound(self) -> bool:
        """Whether :meth:`init` has successfully bound an optimizer."""
        ...

    def init(self, optimizer: SingleCurveOptimizer) -> bool:
        """Bind to *optimizer*; return False if it cannot be polled."""
        ...

    def terminate(self) -> TerminationStatus:
        """Decide whether the bound optimizer should stop."""
        ...

    def duplicate_config(self) -> TerminationStrategy:
        """Return an unbound copy with identical thresholds."""
        ...


class _Bindable:
    """Shared back-reference handling for the concrete strategies."""

    name = "termination"

    def __init__(self) -> None:
        self._optimizer: SingleCurveOptimizer | None = None

    @property
    def is_bound(self) -> bool:
        return self._optimizer is not None

    def init(self, optimizer: SingleCurveOptimizer) -> bool:
        if optimizer is None or getattr(optimizer, "state", None) is None:
            logger.warning("%s: cannot bind to an uninitialized optimizer", self.name)
            return False
        self._optimizer = optimizer
        self._reset()
        return True

    def _reset(self) -> None:
        """Clear any history accumulated for a previously bound optimizer."""

    def _bound(self) -> SingleCurveOptimizer:
        if self._optimizer is None:
            raise RuntimeError(
                f"{type(self).__name__}.terminate() called before init(optimizer)"
            )
        return self._optimizer


# ---------------------------------------------------------------------------
# Variants
# ---------------------------------------------------------------------------


class MaxIterations(_Bindable):
    """Stop once the iteration count reaches *max_iterations*.

    Args:
        max_iterations: Non-negative iteration budget.

    Raises:
        ValueError: If *max_iterations* is negative.
    """

    name = "max_iterations"

    def __init__(self, max_iterations: int = 100) -> None:
        super().__init__()
        if max_iterations < 0:
            raise ValueError(
                f"max_iterations must be non-negative, got {max_iterations}"
            )
        self.max_iterations = int(max_iterations)

    def terminate(self) -> TerminationStatus:
        if self._bound().iteration_count >= self.max_iterations:
            return TerminationStatus.DONE
        return TerminationStatus.CONTINUE

    def duplicate_config(self) -> MaxIterations:
        return MaxIterations(max_iterations=self.max_iterations)

    def __repr__(self) -> str:
        return f"MaxIterations(max_iterations={self.max_iterations})"


class AreaDiff(_Bindable):
    """Stop when the enclosed area changes by less than *fraction*.

    The enclosed pixel counts ``old`` (previous curve) and ``new`` (current
    curve) are compared; the run is done when ``|1 - new/old| < fraction``
    or the iteration count exceeds *max_iterations*. A previous area of zero
    has no meaningful ratio and is treated as done.

    Args:
        fraction: Relative area change regarded as converged.
        max_iterations: Hard iteration limit (strictly exceeded).

    Raises:
        ValueError: If *fraction* or *max_iterations* is negative.
    """

    name = "area_diff"

    def __init__(self, fraction: float = 0.001, max_iterations: int = 100) -> None:
        super().__init__()
        if fraction < 0:
            raise ValueError(f"fraction must be non-negative, got {fraction}")
        if max_iterations < 0:
            raise ValueError(
                f"max_iterations must be non-negative, got {max_iterations}"
            )
        self.fraction = float(fraction)
        self.max_iterations = int(max_iterations)

    def terminate(self) -> TerminationStatus:
        opt = self._bound()
        if opt.iteration_count > self.max_iterations:
            return TerminationStatus.DONE
        previous = opt.previous_curve
        if previous is None:
            return TerminationStatus.CONTINUE

        raster = opt.state.raster
        old = previous.enclosed_pixel_count(raster)
        new = opt.current_curve.enclosed_pixel_count(raster)
        if old == 0:
            logger.warning(
                "AreaDiff: previous curve encloses no pixels at iteration %d; "
                "stopping",
                opt.iteration_count,
            )
            return TerminationStatus.DONE

        change = abs(1.0 - new / old)
        logger.debug(
            "AreaDiff: iteration %d, area %d -> %d (change %.5f)",
            opt.iteration_count,
            old,
            new,
            change,
        )
        if change < self.fraction:
            return TerminationStatus.DONE
        return TerminationStatus.CONTINUE

    def duplicate_config(self) -> AreaDiff:
        return AreaDiff(fraction=self.fraction, max_iterations=self.max_iterations)

    def __repr__(self) -> str:
        return (
            f"AreaDiff(fraction={self.fraction:g}, "
            f"max_iterations={self.max_iterations})"
        )


class AreaDiffSlidingOffset(_Bindable):
    """Stop when the smoothed enclosed area stagnates over a time offset.

    Every iteration the enclosed pixel count is pushed into a raw window of
    :attr:`WINDOW_SIZE` samples. Once the window is full its mean is appended
    to a smoothed sequence. When :attr:`TIME_OFFSET` + 1 smoothed values
    exist, the value ``TIME_OFFSET`` iterations ago (``h``) is compared with
    the newest one (``n``); the run is done when ``|n - h| / h < fraction``.
    During warm-up the strategy always continues.

    Args:
        fraction: Relative change of the smoothed area regarded as
            converged. Defaults to 0.001.

    Raises:
        ValueError: If *fraction* is negative.
    """

    name = "area_diff_sliding_offset"

    WINDOW_SIZE: int = 11
    TIME_OFFSET: int = 10

    def __init__(self, fraction: float = 0.001) -> None:
        super().__init__()
        if fraction < 0:
            raise ValueError(f"fraction must be non-negative, got {fraction}")
        self.fraction = float(fraction)
        self._reset()

    def _reset(self) -> None:
        self._window: deque[int] = deque(maxlen=self.WINDOW_SIZE)
        self._smoothed: deque[float] = deque(maxlen=self.TIME_OFFSET + 1)
        self._last_iteration: int | None = None
        self._last_status = TerminationStatus.CONTINUE

    @property
    def smoothed_areas(self) -> list[float]:
        """Smoothed area history currently retained (oldest first)."""
        return list(self._smoothed)

    def terminate(self) -> TerminationStatus:
        opt = self._bound()
        if opt.iteration_count == self._last_iteration:
            return self._last_status

        self._last_iteration = opt.iteration_count
        self._last_status = self._advance(
            opt.current_curve.enclosed_pixel_count(opt.state.raster)
        )
        return self._last_status

    def _advance(self, area: int) -> TerminationStatus:
        self._window.append(area)
        if len(self._window) < self.WINDOW_SIZE:
            return TerminationStatus.CONTINUE

        self._smoothed.append(float(np.mean(self._window)))
        if len(self._smoothed) < self.TIME_OFFSET + 1:
            return TerminationStatus.CONTINUE

        then, now = self._smoothed[0], self._smoothed[-1]
        if then == 0:
            logger.warning(
                "AreaDiffSlidingOffset: smoothed area %d iterations ago is zero; "
                "stopping",
                self.TIME_OFFSET,
            )
            return TerminationStatus.DONE
        change = abs(now - then) / then
        logger.debug("AreaDiffSlidingOffset: smoothed change %.5f", change)
        if change < self.fraction:
            return TerminationStatus.DONE
        return TerminationStatus.CONTINUE

    def duplicate_config(self) -> AreaDiffSlidingOffset:
        return AreaDiffSlidingOffset(fraction=self.fraction)

    def __repr__(self) -> str:
        return f"AreaDiffSlidingOffset(fraction={self.fraction:g})"


class MotionDiff(_Bindable):
    """Stop when enough control points have stopped moving.

    For every current point linked to a previous point, the displacement
    (in normalized coordinates) is measured; points moving less than
    *epsilon* count as unmoved. The run is done when
    ``unmoved / n_points >= fraction`` or the iteration count reaches
    *max_iterations*. Points inserted by resampling count toward
    ``n_points`` but never as unmoved.

    Args:
        fraction: Share of unmoved points regarded as converged.
        max_iterations: Iteration limit.
        epsilon: Displacement below which a point is considered unmoved.

    Raises:
        ValueError: If a parameter is negative.
    """

    name = "motion_diff"

    def __init__(
        self,
        fraction: float = 0.05,
        max_iterations: int = 100,
        epsilon: float = 1e-6,
    ) -> None:
        super().__init__()
        if fraction < 0 or max_iterations < 0 or epsilon < 0:
            raise ValueError(
                "MotionDiff parameters must be non-negative, got "
                f"fraction={fraction}, max_iterations={max_iterations}, "
                f"epsilon={epsilon}"
            )
        self.fraction = float(fraction)
        self.max_iterations = int(max_iterations)
        self.epsilon = float(epsilon)

    def unmoved_fraction(self) -> float:
        """Share of current points whose linked predecessor is within epsilon."""
        opt = self._bound()
        current, previous = opt.current_curve, opt.previous_curve
        if previous is None:
            return 0.0
        links = current.previous_index
        valid = (links >= 0) & (links < len(previous))
        if not np.any(valid):
            return 0.0
        disp = current.points[valid] - previous.points[links[valid]]
        unmoved = int(np.count_nonzero(np.hypot(disp[:, 0], disp[:, 1]) < self.epsilon))
        return unmoved / len(current)

    def terminate(self) -> TerminationStatus:
        opt = self._bound()
        if opt.iteration_count >= self.max_iterations:
            return TerminationStatus.DONE
        share = self.unmoved_fraction()
        logger.debug(
            "MotionDiff: iteration %d, unmoved fraction %.3f",
            opt.iteration_count,
            share,
        )
        if opt.previous_curve is not None and share >= self.fraction:
            return TerminationStatus.DONE
        return TerminationStatus.CONTINUE

    def duplicate_config(self) -> MotionDiff:
        return MotionDiff(
            fraction=self.fraction,
            max_iterations=self.max_iterations,
            epsilon=self.epsilon,
        )

    def __repr__(self) -> str:
        return (
            f"MotionDiff(fraction={self.fraction:g}, "
            f"max_iterations={self.max_iterations}, epsilon={self.epsilon:g})"
        )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

_TERMINATION_KINDS: dict[str, type] = {
    "max_iterations": MaxIterations,
    "area_diff": AreaDiff,
    "area_diff_sliding_offset": AreaDiffSlidingOffset,
    "motion_diff": MotionDiff,
}


def get_termination(kind: str, **kwargs: Any) -> TerminationStrategy:
    """Create an unbound termination strategy by kind name.

    Args:
        kind: One of ``"max_iterations"``, ``"area_diff"``,
            ``"area_diff_sliding_offset"``, ``"motion_diff"``.
        **kwargs: Forwarded to the strategy constructor.

    Returns:
        A new, unbound strategy.

    Raises:
        ValueError: If *kind* is not recognized.
    """
    try:
        cls = _TERMINATION_KINDS[kind]
    except KeyError:
        raise ValueError(
            f"Unknown termination kind: {kind!r}. "
            f"Supported kinds: {sorted(_TERMINATION_KINDS)}"
        ) from None
    return cls(**kwargs)
