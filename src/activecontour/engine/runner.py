"""SegmentationRun orchestrator and config-driven optimizer factories.

:class:`SegmentationRun` drives a single or coupled optimizer to completion,
emits lifecycle events via :class:`EventBus`, and writes the serialized
config as the first artifact when the config names an output directory.

The ``build_*`` factories turn a frozen :class:`SnakeConfig` into energies,
step-size and termination strategies, and optimizers.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from pathlib import Path

import numpy as np

from activecontour.core.context import RunContext
from activecontour.core.coupled import CoupledOptimizer, CoupledResult
from activecontour.core.energies import EnergyNormalization, EnergySet, get_energy
from activecontour.core.optimizer import (
    IterationStatus,
    OptimizationResult,
    SingleCurveOptimizer,
)
from activecontour.core.raster import IntensityNormalization, Raster
from activecontour.core.stepsize import StepSizeStrategy, get_step_size
from activecontour.core.termination import TerminationStrategy, get_termination
from activecontour.engine.config import SnakeConfig, serialize_config
from activecontour.engine.events import (
    Event,
    IterationComplete,
    RunComplete,
    RunFailed,
    RunStart,
)
from activecontour.engine.observers import EventBus, Observer

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def build_energy_set(config: SnakeConfig) -> EnergySet:
    """Build the weighted :class:`EnergySet` described by *config*.

    Raises:
        ValueError: On an unknown energy kind or invalid parameters.
    """
    energies = [get_energy(e.kind, **e.params) for e in config.energies]
    return EnergySet(
        energies,
        weights=[e.weight for e in config.energies],
        normalization=EnergyNormalization(config.optimizer.energy_normalization),
    )


def build_step_size(config: SnakeConfig) -> StepSizeStrategy:
    """Build the step-size strategy described by *config*.

    Raises:
        ValueError: On an unknown step-size kind.
    """
    step = config.step_size
    if step.kind == "pointwise_external":
        return get_step_size(step.kind, gamma=step.gamma, damping=step.damping)
    return get_step_size(step.kind, gamma=step.gamma)


def build_terminations(config: SnakeConfig) -> list[TerminationStrategy]:
    """Build the termination strategies described by *config*, in order.

    Raises:
        ValueError: On an unknown termination kind.
    """
    return [get_termination(t.kind, **t.params) for t in config.terminations]


def _optimizer_kwargs(config: SnakeConfig) -> dict[str, object]:
    opt = config.optimizer
    return {
        "closed": opt.closed,
        "resample_segment_length": opt.resample_segment_length,
        "do_resampling": opt.do_resampling,
        "intensity_normalization": IntensityNormalization(opt.intensity_normalization),
    }


def build_optimizer(
    config: SnakeConfig,
    raster: Raster,
    initial_points: np.ndarray | Sequence[tuple[float, float]],
    *,
    context: RunContext | None = None,
    name: str | None = None,
) -> SingleCurveOptimizer:
    """Build an uninitialized :class:`SingleCurveOptimizer` from *config*."""
    return SingleCurveOptimizer(
        raster,
        initial_points,
        build_energy_set(config),
        step_size=build_step_size(config),
        terminations=build_terminations(config),
        context=context,
        name=name,
        **_optimizer_kwargs(config),  # type: ignore[arg-type]
    )


def build_coupled_optimizer(
    config: SnakeConfig,
    raster: Raster,
    initial_curves: Sequence[np.ndarray | Sequence[tuple[float, float]]],
    *,
    activity: Sequence[bool] | None = None,
    context: RunContext | None = None,
) -> CoupledOptimizer:
    """Build an uninitialized :class:`CoupledOptimizer` from *config*."""
    return CoupledOptimizer(
        raster,
        initial_curves,
        build_energy_set(config),
        step_size=build_step_size(config),
        terminations=build_terminations(config),
        activity=activity,
        context=context,
        **_optimizer_kwargs(config),
    )


# ---------------------------------------------------------------------------
# Run orchestration
# ---------------------------------------------------------------------------


class SegmentationRun:
    """Drives one optimizer to completion while emitting run events.

    ``run()``:

    1. Writes ``config.yaml`` into ``config.output_dir`` when it is set.
    2. Emits :class:`RunStart`.
    3. Initializes the optimizer (unless already initialized) and iterates
       until it reports DONE or ``config.optimizer.max_rounds`` is reached,
       emitting :class:`IterationComplete` for every curve step.
    4. Emits :class:`RunComplete` and returns the result, or emits
       :class:`RunFailed` and re-raises.

    Observers are purely additive: removing all observers produces the same
    result.

    For coupled optimizers the members step inside one round, so the
    ``elapsed_seconds`` of their iteration events is the round time.

    Args:
        optimizer: A :class:`SingleCurveOptimizer` or :class:`CoupledOptimizer`.
        config: Frozen config of the run.
        observers: Observers subscribed to the base ``Event`` type.
    """

    def __init__(
        self,
        optimizer: SingleCurveOptimizer | CoupledOptimizer,
        config: SnakeConfig,
        observers: list[Observer] | None = None,
    ) -> None:
        self._optimizer = optimizer
        self._config = config
        self._bus = EventBus()
        if observers:
            for observer in observers:
                self._bus.subscribe(Event, observer)

    @property
    def optimizer(self) -> SingleCurveOptimizer | CoupledOptimizer:
        return self._optimizer

    def add_observer(self, observer: Observer, event_type: type[Event] = Event) -> None:
        """Subscribe *observer* to *event_type* events (default: all events)."""
        self._bus.subscribe(event_type, observer)

    def remove_observer(
        self, observer: Observer, event_type: type[Event] = Event
    ) -> None:
        """Unsubscribe *observer* from *event_type*; no-op if not subscribed."""
        self._bus.unsubscribe(event_type, observer)

    def _members(self) -> list[SingleCurveOptimizer]:
        if isinstance(self._optimizer, CoupledOptimizer):
            return self._optimizer.members
        return [self._optimizer]

    def _step(self) -> IterationStatus:
        if isinstance(self._optimizer, CoupledOptimizer):
            return self._optimizer.iterate_round()
        return self._optimizer.iterate()

    def _emit_iterations(
        self, members: list[SingleCurveOptimizer], before: list[int], elapsed: float
    ) -> int:
        """Emit one event per member that advanced; return how many did."""
        sample = self._config.optimizer.sample_energies
        advanced = 0
        for member, count in zip(members, before):
            if not member.is_initialized or member.iteration_count == count:
                continue
            advanced += 1
            self._bus.emit(
                IterationComplete(
                    curve_name=member.name,
                    iteration=member.iteration_count,
                    n_points=member.current_curve.n_points,
                    elapsed_seconds=elapsed,
                    done=member.is_done,
                    energies=member.energy_values() if sample else {},
                )
            )
        return advanced

    def run(self) -> OptimizationResult | CoupledResult:
        """Execute the run.

        Returns:
            :class:`OptimizationResult` for a single optimizer,
            :class:`CoupledResult` for a coupled one.

        Raises:
            Exception: Re-raises any optimizer exception after emitting
                :class:`RunFailed`.
        """
        run_start = time.monotonic()
        run_id = self._config.run_id

        if self._config.output_dir:
            output_dir = Path(self._config.output_dir).expanduser()
            output_dir.mkdir(parents=True, exist_ok=True)
            (output_dir / "config.yaml").write_text(
                serialize_config(self._config), encoding="utf-8"
            )

        members = self._members()
        self._bus.emit(RunStart(run_id=run_id, n_curves=len(members), config=self._config))

        max_rounds = self._config.optimizer.max_rounds
        rounds = 0
        try:
            if not self._optimizer.is_initialized:
                self._optimizer.initialize()

            while max_rounds is None or rounds < max_rounds:
                before = [m.iteration_count if m.is_initialized else 0 for m in members]
                step_start = time.monotonic()
                status = self._step()
                elapsed = time.monotonic() - step_start
                if self._emit_iterations(members, before, elapsed):
                    rounds += 1
                if status is IterationStatus.DONE:
                    break
            result = self._optimizer.result()
        except Exception as exc:
            self._bus.emit(
                RunFailed(
                    run_id=run_id,
                    error=str(exc),
                    elapsed_seconds=time.monotonic() - run_start,
                )
            )
            raise

        total_elapsed = time.monotonic() - run_start
        logger.info("Run %s finished after %d rounds (%.3fs)", run_id, rounds, total_elapsed)
        self._bus.emit(
            RunComplete(
                run_id=run_id,
                rounds=rounds,
                elapsed_seconds=total_elapsed,
                result=result,
            )
        )
        return result


def run_segmentation(
    config: SnakeConfig,
    raster: Raster,
    initial_curves: Sequence[np.ndarray | Sequence[tuple[float, float]]],
    *,
    activity: Sequence[bool] | None = None,
    observers: list[Observer] | None = None,
) -> OptimizationResult | CoupledResult:
    """Build the optimizer(s) for *initial_curves* and run them to completion.

    A single curve runs on a :class:`SingleCurveOptimizer`; several curves
    run in lock-step on a :class:`CoupledOptimizer`. All optimizers of the
    run share one :class:`RunContext` named after ``config.run_id``.

    Args:
        config: Frozen run config.
        raster: Image the curves evolve on.
        initial_curves: One polygon (pixel coordinates) per curve.
        activity: Per-curve activity flags for coupled runs.
        observers: Observers receiving every run event.

    Returns:
        :class:`OptimizationResult` for one curve, else :class:`CoupledResult`.

    Raises:
        ValueError: If *initial_curves* is empty or the config is invalid.
    """
    if len(initial_curves) == 0:
        raise ValueError("run_segmentation needs at least one initial curve")
    context = RunContext(run_id=config.run_id)
    optimizer: SingleCurveOptimizer | CoupledOptimizer
    if len(initial_curves) == 1 and activity is None:
        optimizer = build_optimizer(config, raster, initial_curves[0], context=context)
    else:
        optimizer = build_coupled_optimizer(
            config, raster, initial_curves, activity=activity, context=context
        )
    return SegmentationRun(optimizer, config, observers=observers).run()


__all__ = [
    "SegmentationRun",
    "build_coupled_optimizer",
    "build_energy_set",
    "build_optimizer",
    "build_step_size",
    "build_terminations",
    "run_segmentation",
]
