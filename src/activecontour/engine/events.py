"""Typed event dataclasses for snake optimization runs.

Events use a 2-tier taxonomy:
- Run lifecycle: RunStart, RunComplete, RunFailed
- Iteration-level: IterationComplete

All events are frozen dataclasses with an auto-populated timestamp field.
Observers react to events without mutating optimizer state.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Event:
    """Base class for all run events.

    Subscribing to ``Event`` receives every event.

    Attributes:
        timestamp: Unix timestamp (seconds) at event construction time.
    """

    timestamp: float = field(default_factory=time.time)


# ---------------------------------------------------------------------------
# Run lifecycle events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RunStart(Event):
    """Emitted before the optimizers are initialized.

    Attributes:
        run_id: Unique identifier for this run.
        n_curves: Number of curves being optimized.
        config: The ``SnakeConfig`` of the run. Typed as ``object`` so this
            module does not depend on the config module.
    """

    run_id: str = ""
    n_curves: int = 0
    config: object = field(default=None, compare=False)


@dataclass(frozen=True)
class RunComplete(Event):
    """Emitted after every curve finished.

    Attributes:
        run_id: Unique identifier for this run.
        rounds: Iterations (single curve) or rounds (coupled) executed.
        elapsed_seconds: Wall-clock time for the entire run.
        result: The ``OptimizationResult`` or ``CoupledResult``.
    """

    run_id: str = ""
    rounds: int = 0
    elapsed_seconds: float = 0.0
    result: object = field(default=None, compare=False)


@dataclass(frozen=True)
class RunFailed(Event):
    """Emitted when the run terminates due to an unhandled exception.

    Attributes:
        run_id: Unique identifier for this run.
        error: String representation of the exception.
        elapsed_seconds: Wall-clock time elapsed before failure.
    """

    run_id: str = ""
    error: str = ""
    elapsed_seconds: float = 0.0


# ---------------------------------------------------------------------------
# Iteration-level events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IterationComplete(Event):
    """Emitted after one curve completed one iteration.

    Attributes:
        curve_name: Name of the optimizer that iterated.
        iteration: The optimizer's iteration count after the step.
        n_points: Number of curve points after resampling.
        elapsed_seconds: Wall-clock time of the step.
        done: Whether a termination strategy fired on this step.
        energies: Energy values keyed by energy name; empty unless energy
            sampling is enabled.
    """

    curve_name: str = ""
    iteration: int = 0
    n_points: int = 0
    elapsed_seconds: float = 0.0
    done: bool = False
    energies: dict[str, float] = field(default_factory=dict, compare=False)


__all__ = [
    "Event",
    "IterationComplete",
    "RunComplete",
    "RunFailed",
    "RunStart",
]
