"""Single-curve snake optimizer based on an implicit variational update.

Each iteration assembles the weighted linear system ``(A, b)`` of all active
energies and advances the stacked coordinates ``x = [x_0..x_{N-1},
y_0..y_{N-1}]`` with per-coordinate step sizes ``gamma`` by solving

    (I + diag(gamma) A) x_new = x - gamma * b

The new curve is optionally resampled, clipped to the raster and handed to
the termination strategies; the first strategy answering ``DONE`` stops the
run.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

import numpy as np
import scipy.linalg

from activecontour.core.context import RunContext
from activecontour.core.curve import Curve
from activecontour.core.energies.energy_set import EnergySet
from activecontour.core.errors import (
    InitializationError,
    InvalidGeometryError,
    NumericalError,
)
from activecontour.core.raster import (
    IntensityNormalization,
    Raster,
    normalize_intensities,
)
from activecontour.core.state import OptimizerState
from activecontour.core.stepsize import ConstantStepSize, StepSizeStrategy
from activecontour.core.termination import (
    MaxIterations,
    TerminationStatus,
    TerminationStrategy,
)

logger = logging.getLogger(__name__)

__all__ = [
    "MIN_POINTS",
    "IterationStatus",
    "OptimizationResult",
    "SingleCurveOptimizer",
]

# ---------------------------------------------------------------------------
# Module-level constants
# ---------------------------------------------------------------------------

# Smallest curve the optimizer iterates; matches the curvature stencil width.
MIN_POINTS: int = 5

# Condition number above which the implicit system is rejected.
_CONDITION_LIMIT: float = 1e12

# Resampling is applied on every n-th iteration only.
_RESAMPLE_EVERY: int = 2


class IterationStatus(Enum):
    """Outcome of one optimizer iteration."""

    SUCCESS = "success"
    DONE = "done"


@dataclass(frozen=True)
class OptimizationResult:
    """Final outcome of a single-curve run.

    Attributes:
        curve: Final curve (normalized coordinates).
        points: Final control points in pixel coordinates, shape (N, 2).
        closed: Curve topology.
        iterations: Number of completed iterations.
        status: ``DONE`` if a termination strategy stopped the run,
            ``SUCCESS`` if the run was cut short by ``max_rounds``.
        terminated_by: Name of the strategy that stopped the run, if any.
    """

    curve: Curve
    points: np.ndarray
    closed: bool
    iterations: int
    status: IterationStatus
    terminated_by: str | None = None


class SingleCurveOptimizer:
    """Evolves one curve on a raster until a termination strategy fires.

    Construction only stores configuration. :meth:`initialize` normalizes
    the raster, builds the curve, fixes point ordering, resamples, and binds
    energies, step size and termination strategies. Iterating an optimizer
    whose initialization failed is refused.

    Args:
        raster: Read-only image the curve evolves on.
        initial_points: Initial polygon in pixel coordinates, shape (N, 2).
        energy_set: Energies and their weights. Owned by this optimizer;
            use :meth:`EnergySet.duplicate_config` to seed several optimizers.
        closed: Whether the curve is closed.
        step_size: Step-size strategy (default constant 0.5).
        terminations: Termination strategies polled in order (default
            ``[MaxIterations(100)]``). Must not be empty.
        resample_segment_length: Target point spacing in pixels.
        do_resampling: Resample at initialization and every second
            iteration. Curves with at most :data:`MIN_POINTS` points are
            always resampled at initialization.
        intensity_normalization: Raster rescaling applied before energies
            are initialized. Defaults to stretching the observed intensity
            range onto [0, 1].
        context: Run context supplying the curve id. A private context is
            created if omitted.
        name: Label used in logs; defaults to ``"curve-<id>"``.

    Raises:
        ValueError: On an empty termination list or non-positive spacing.

    Example::

        opt = SingleCurveOptimizer(
            ArrayRaster(image),
            circle_points,
            EnergySet([LengthEnergy(0.2), RegionFitEnergy()]),
            terminations=[MaxIterations(200), AreaDiff(0.001)],
        )
        result = opt.run()
    """

    def __init__(
        self,
        raster: Raster,
        initial_points: np.ndarray | Sequence[tuple[float, float]],
        energy_set: EnergySet,
        *,
        closed: bool = True,
        step_size: StepSizeStrategy | None = None,
        terminations: Sequence[TerminationStrategy] | None = None,
        resample_segment_length: float = 5.0,
        do_resampling: bool = True,
        intensity_normalization: IntensityNormalization = (
            IntensityNormalization.TRUE_RANGE
        ),
        context: RunContext | None = None,
        name: str | None = None,
    ) -> None:
        if not resample_segment_length > 0:
            raise ValueError(
                "resample_segment_length must be positive, got "
                f"{resample_segment_length}"
            )
        if terminations is not None and len(terminations) == 0:
            raise ValueError("At least one termination strategy is required")

        self.context = context if context is not None else RunContext()
        self.curve_id = self.context.next_id("curve")
        self.name = name or f"curve-{self.curve_id}"

        self._raster = raster
        self._initial_points = np.array(initial_points, dtype=np.float64)
        self.closed = bool(closed)
        self.energy_set = energy_set
        self.step_size: StepSizeStrategy = (
            step_size if step_size is not None else ConstantStepSize()
        )
        self.terminations: list[TerminationStrategy] = (
            list(terminations) if terminations is not None else [MaxIterations()]
        )
        self.resample_segment_length = float(resample_segment_length)
        self.do_resampling = bool(do_resampling)
        self.intensity_normalization = intensity_normalization

        self.state: OptimizerState | None = None
        self.weights: np.ndarray | None = None
        self.terminated_by: str | None = None
        self._status: IterationStatus | None = None
        self._initialized = False

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def is_done(self) -> bool:
        return self._status is IterationStatus.DONE

    @property
    def current_curve(self) -> Curve:
        return self._require_state().curve

    @property
    def previous_curve(self) -> Curve | None:
        return self._require_state().previous_curve

    @property
    def iteration_count(self) -> int:
        return self.state.iteration if self.state is not None else 0

    @property
    def raster(self) -> Raster:
        """The (possibly intensity-normalized) raster energies read from."""
        return self._require_state().raster

    def _require_state(self) -> OptimizerState:
        if self.state is None:
            raise RuntimeError(f"Optimizer {self.name} has not been initialized")
        return self.state

    # ------------------------------------------------------------------
    # Configuration cloning
    # ------------------------------------------------------------------

    def duplicate_config(
        self,
        initial_points: np.ndarray | Sequence[tuple[float, float]],
        *,
        closed: bool | None = None,
        name: str | None = None,
    ) -> SingleCurveOptimizer:
        """Create an uninitialized optimizer with this configuration.

        Energies, step size and termination strategies are duplicated
        unbound; the raster and run context are shared.

        Args:
            initial_points: Initial polygon of the new optimizer.
            closed: Topology; defaults to this optimizer's.
            name: Label of the new optimizer.

        Returns:
            New optimizer awaiting :meth:`initialize`.
        """
        return SingleCurveOptimizer(
            self._raster,
            initial_points,
            self.energy_set.duplicate_config(),
            closed=self.closed if closed is None else closed,
            step_size=self.step_size.duplicate_config(),
            terminations=[t.duplicate_config() for t in self.terminations],
            resample_segment_length=self.resample_segment_length,
            do_resampling=self.do_resampling,
            intensity_normalization=self.intensity_normalization,
            context=self.context,
            name=name,
        )

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Prepare the curve and bind all strategies.

        Raises:
            InvalidGeometryError: If the initial polygon is unusable or has
                fewer than :data:`MIN_POINTS` points after resampling.
            InitializationError: If an energy, the step size or a
                termination strategy cannot be initialized.
        """
        self._initialized = False
        self._status = None
        self.terminated_by = None

        if self._raster is None:
            raise InitializationError(f"{self.name}: no raster given")
        raster = normalize_intensities(self._raster, self.intensity_normalization)
        scale = float(max(raster.width, raster.height))
        curve = Curve.from_polygon(self._initial_points, closed=self.closed, scale=scale)

        if (
            len(curve) > MIN_POINTS
            and self.energy_set.requires_counter_clockwise
            and not curve.is_counter_clockwise()
        ):
            logger.debug("%s: reversing point order to counter-clockwise", self.name)
            curve = curve.reversed()

        if len(curve) <= MIN_POINTS or self.do_resampling:
            curve = curve.resample(self.resample_segment_length)
        if len(curve) < MIN_POINTS:
            raise InvalidGeometryError(
                f"{self.name}: curve has {len(curve)} points after resampling, "
                f"at least {MIN_POINTS} required"
            )

        self.state = OptimizerState(curve=curve, raster=raster)
        self.weights = self.energy_set.normalized_weights()

        for energy in self.energy_set.energies:
            energy.init(self)
        self.step_size.init(self)
        self.state.gamma = self.step_size.initial_gamma(len(curve))

        for strategy in self.terminations:
            if not strategy.init(self):
                raise InitializationError(
                    f"{self.name}: termination strategy {strategy!r} failed to bind"
                )

        self._initialized = True
        logger.info(
            "Initialized %s: %d points, scale=%g, energies=%s",
            self.name,
            len(curve),
            scale,
            [e.name for e in self.energy_set.energies],
        )

    # ------------------------------------------------------------------
    # Iteration
    # ------------------------------------------------------------------

    def iterate(self) -> IterationStatus:
        """Perform one update step and poll the termination strategies.

        Returns:
            ``DONE`` if a strategy requested termination (or the run had
            already terminated), else ``SUCCESS``.

        Raises:
            RuntimeError: If :meth:`initialize` has not completed.
            NumericalError: If the linear system cannot be solved reliably.
            InvalidGeometryError: If the curve drops below
                :data:`MIN_POINTS` points.
        """
        if not self._initialized:
            raise RuntimeError(f"Optimizer {self.name} is not initialized")
        if self._status is IterationStatus.DONE:
            return IterationStatus.DONE

        state = self._require_state()
        curve = state.curve
        n = len(curve)
        if n < MIN_POINTS:
            raise InvalidGeometryError(
                f"{self.name}: curve has {n} points, at least {MIN_POINTS} required"
            )

        for energy in self.energy_set.energies:
            energy.update_status(self)
        a_mat, b_vec = self.energy_set.assemble(state, self.weights)
        solution = self._solve(a_mat, b_vec, curve.as_vector(), state.gamma)

        new_curve = curve.with_points(
            np.column_stack([solution[:n], solution[n:]]), np.arange(n)
        )
        if new_curve.closed and not new_curve.is_simple():
            new_curve = new_curve.made_simple()
            logger.debug(
                "%s: removed self-intersections, %d points left",
                self.name,
                len(new_curve),
            )
        if (
            len(new_curve) > MIN_POINTS
            and self.energy_set.requires_counter_clockwise
            and not new_curve.is_counter_clockwise()
        ):
            new_curve = new_curve.reversed()

        iteration = state.iteration + 1
        if self.do_resampling and iteration % _RESAMPLE_EVERY == 0:
            new_curve = new_curve.resample(self.resample_segment_length)
        if len(new_curve) < MIN_POINTS:
            raise InvalidGeometryError(
                f"{self.name}: curve collapsed to {len(new_curve)} points at "
                f"iteration {iteration}"
            )
        new_curve = new_curve.clipped(state.raster.width, state.raster.height)

        state.previous_curve = curve
        state.curve = new_curve
        state.iteration = iteration
        state.gamma = self.step_size.adapt_gamma(state)

        logger.debug(
            "%s: iteration %d, %d points, mean gamma %.4g",
            self.name,
            iteration,
            len(new_curve),
            float(np.mean(state.gamma)),
        )

        for strategy in self.terminations:
            if strategy.terminate() is TerminationStatus.DONE:
                self.terminated_by = strategy.name
                self._status = IterationStatus.DONE
                logger.info(
                    "%s: terminated by %s after %d iterations",
                    self.name,
                    strategy.name,
                    iteration,
                )
                return IterationStatus.DONE

        self._status = IterationStatus.SUCCESS
        return IterationStatus.SUCCESS

    def _solve(
        self,
        a_mat: np.ndarray,
        b_vec: np.ndarray,
        x: np.ndarray,
        gamma: np.ndarray,
    ) -> np.ndarray:
        """Solve ``(I + diag(gamma) A) x_new = x - gamma * b``.

        Raises:
            NumericalError: If the system is non-finite, singular or
                ill-conditioned, or the solution is non-finite.
        """
        system = np.eye(x.shape[0]) + gamma[:, None] * a_mat
        rhs = x - gamma * b_vec
        if not (np.all(np.isfinite(system)) and np.all(np.isfinite(rhs))):
            raise NumericalError(f"{self.name}: assembled system contains NaN/Inf")

        cond = np.linalg.cond(system)
        if not np.isfinite(cond) or cond > _CONDITION_LIMIT:
            raise NumericalError(
                f"{self.name}: system is singular or ill-conditioned "
                f"(condition number {cond:.3g})"
            )
        try:
            solution = scipy.linalg.solve(system, rhs)
        except np.linalg.LinAlgError as exc:
            raise NumericalError(f"{self.name}: linear solve failed: {exc}") from exc

        if not np.all(np.isfinite(solution)):
            raise NumericalError(f"{self.name}: solution contains NaN/Inf")
        return solution

    # ------------------------------------------------------------------
    # Driving & reporting
    # ------------------------------------------------------------------

    def run(self, max_rounds: int | None = None) -> OptimizationResult:
        """Initialize if necessary and iterate until termination.

        Args:
            max_rounds: Optional cap on the number of iterations performed by
                this call, independent of the termination strategies.

        Returns:
            The final :class:`OptimizationResult`.
        """
        if not self._initialized:
            self.initialize()
        rounds = 0
        while max_rounds is None or rounds < max_rounds:
            rounds += 1
            if self.iterate() is IterationStatus.DONE:
                break
        return self.result()

    def result(self) -> OptimizationResult:
        """Package the current curve and status as an :class:`OptimizationResult`."""
        curve = self.current_curve
        return OptimizationResult(
            curve=curve,
            points=curve.pixel_points,
            closed=curve.closed,
            iterations=self.iteration_count,
            status=self._status or IterationStatus.SUCCESS,
            terminated_by=self.terminated_by,
        )

    def energy_values(self) -> dict[str, float]:
        """Unweighted energy of every term for the current curve."""
        return self.energy_set.energy_values(self._require_state())

    def __repr__(self) -> str:
        return (
            f"SingleCurveOptimizer(name={self.name!r}, "
            f"iterations={self.iteration_count}, energies={self.energy_set!r})"
        )
