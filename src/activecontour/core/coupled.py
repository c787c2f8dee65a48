"""Lock-step optimization of several curves on one shared raster."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np

from activecontour.core.context import RunContext
from activecontour.core.energies.energy_set import EnergySet
from activecontour.core.errors import InvalidGeometryError, NumericalError
from activecontour.core.optimizer import (
    IterationStatus,
    OptimizationResult,
    SingleCurveOptimizer,
)
from activecontour.core.raster import Raster
from activecontour.core.stepsize import StepSizeStrategy
from activecontour.core.termination import TerminationStrategy

logger = logging.getLogger(__name__)

__all__ = ["CoupledOptimizer", "CoupledResult"]

# Marker in ``iterations_per_curve`` for curves that never finished.
_NOT_FINISHED: int = -1


@dataclass(frozen=True)
class CoupledResult:
    """Outcome of a coupled run.

    Attributes:
        results: One :class:`OptimizationResult` per curve, in input order.
            Members that were never initialized are reported as None.
        rounds: Number of rounds executed.
        iterations_per_curve: Round in which each curve finished (DONE or
            failed), ``-1`` if it never finished or was inactive.
        failed: Indices of curves whose iteration raised.
    """

    results: list[OptimizationResult | None]
    rounds: int
    iterations_per_curve: list[int]
    failed: list[int] = field(default_factory=list)


class CoupledOptimizer:
    """Drives one :class:`SingleCurveOptimizer` per initial curve in rounds.

    Every member is built from the same configuration through
    ``duplicate_config`` so no energy or termination strategy is shared
    between members. Each round performs exactly one iteration on every
    active member that has not finished yet; rounds continue until all
    active members are done. A member whose iteration fails with a
    numerical or geometric error is logged and retired; it no longer
    blocks the remaining members.

    Args:
        raster: Shared read-only raster.
        initial_curves: One polygon (pixel coordinates) per curve.
        energy_set: Prototype energy configuration.
        closed: Topology of all curves.
        step_size: Prototype step-size strategy.
        terminations: Prototype termination strategies.
        activity: Optional per-curve activity flags. Missing entries
            default to active; extra entries are ignored.
        context: Run context shared by all members.
        **optimizer_kwargs: Forwarded to :class:`SingleCurveOptimizer`
            (``resample_segment_length``, ``do_resampling``,
            ``intensity_normalization``).

    Raises:
        ValueError: If *initial_curves* is empty.
    """

    def __init__(
        self,
        raster: Raster,
        initial_curves: Sequence[np.ndarray | Sequence[tuple[float, float]]],
        energy_set: EnergySet,
        *,
        closed: bool = True,
        step_size: StepSizeStrategy | None = None,
        terminations: Sequence[TerminationStrategy] | None = None,
        activity: Sequence[bool] | None = None,
        context: RunContext | None = None,
        **optimizer_kwargs: object,
    ) -> None:
        if len(initial_curves) == 0:
            raise ValueError("CoupledOptimizer needs at least one initial curve")

        self.context = context if context is not None else RunContext()
        self.members: list[SingleCurveOptimizer] = [
            SingleCurveOptimizer(
                raster,
                points,
                energy_set.duplicate_config(),
                closed=closed,
                step_size=(
                    step_size.duplicate_config() if step_size is not None else None
                ),
                terminations=(
                    [t.duplicate_config() for t in terminations]
                    if terminations is not None
                    else None
                ),
                context=self.context,
                **optimizer_kwargs,  # type: ignore[arg-type]
            )
            for points in initial_curves
        ]

        flags = list(activity) if activity is not None else []
        self.activity: list[bool] = [
            bool(flags[i]) if i < len(flags) else True
            for i in range(len(self.members))
        ]
        self.iterations_per_curve: list[int] = [_NOT_FINISHED] * len(self.members)
        self.failed: set[int] = set()
        self.rounds = 0
        self._initialized = False

    def __len__(self) -> int:
        return len(self.members)

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def _pending(self) -> list[int]:
        """Indices of active members that have neither finished nor failed."""
        return [
            i
            for i, member in enumerate(self.members)
            if self.activity[i] and i not in self.failed and not member.is_done
        ]

    def initialize(self) -> None:
        """Initialize every active member.

        Raises:
            InitializationError: If any active member cannot be initialized.
            InvalidGeometryError: If an active member's curve is unusable.
        """
        for i, member in enumerate(self.members):
            if not self.activity[i]:
                logger.debug("Skipping initialization of inactive %s", member.name)
                continue
            member.initialize()
        self.rounds = 0
        self.failed.clear()
        self.iterations_per_curve = [_NOT_FINISHED] * len(self.members)
        self._initialized = True
        logger.info(
            "Coupled optimizer initialized: %d curves, %d active",
            len(self.members),
            sum(self.activity),
        )

    def iterate_round(self) -> IterationStatus:
        """Run one iteration on every pending member.

        Returns:
            ``DONE`` once no active member is pending, else ``SUCCESS``.

        Raises:
            RuntimeError: If :meth:`initialize` has not completed.
        """
        if not self._initialized:
            raise RuntimeError("CoupledOptimizer is not initialized")
        pending = self._pending()
        if not pending:
            return IterationStatus.DONE

        self.rounds += 1
        for i in pending:
            member = self.members[i]
            try:
                status = member.iterate()
            except (NumericalError, InvalidGeometryError):
                logger.warning(
                    "Curve %s failed in round %d; excluding it from further rounds",
                    member.name,
                    self.rounds,
                    exc_info=True,
                )
                self.failed.add(i)
                self.iterations_per_curve[i] = self.rounds
                continue
            if status is IterationStatus.DONE:
                self.iterations_per_curve[i] = self.rounds
                logger.info("Curve %s ready after %d rounds", member.name, self.rounds)

        remaining = len(self._pending())
        logger.debug("Round %d complete, %d curves still running", self.rounds, remaining)
        return IterationStatus.DONE if remaining == 0 else IterationStatus.SUCCESS

    def run(self, max_rounds: int | None = None) -> CoupledResult:
        """Initialize if necessary and run rounds until every member is done.

        Args:
            max_rounds: Optional cap on the number of rounds of this call.

        Returns:
            The :class:`CoupledResult`.
        """
        if not self._initialized:
            self.initialize()
        executed = 0
        while max_rounds is None or executed < max_rounds:
            executed += 1
            if self.iterate_round() is IterationStatus.DONE:
                break
        return self.result()

    def result(self) -> CoupledResult:
        return CoupledResult(
            results=[m.result() if m.is_initialized else None for m in self.members],
            rounds=self.rounds,
            iterations_per_curve=list(self.iterations_per_curve),
            failed=sorted(self.failed),
        )

    def current_curves(self) -> list[np.ndarray | None]:
        """Pixel-space points of every initialized member (None otherwise)."""
        return [
            m.current_curve.pixel_points if m.is_initialized else None
            for m in self.members
        ]
