"""Run engine for snake optimization.

Config hierarchy, event system, observers and the run orchestrator.

Import boundary: engine/ may import from core/, but core/ never imports
from engine/.
"""

from activecontour.engine.config import (
    EnergyConfig,
    OptimizerConfig,
    SnakeConfig,
    StepSizeConfig,
    TerminationConfig,
    load_config,
    serialize_config,
)
from activecontour.engine.energy_trace import EnergyTraceObserver
from activecontour.engine.events import (
    Event,
    IterationComplete,
    RunComplete,
    RunFailed,
    RunStart,
)
from activecontour.engine.observers import EventBus, Observer
from activecontour.engine.runner import (
    SegmentationRun,
    build_coupled_optimizer,
    build_energy_set,
    build_optimizer,
    build_step_size,
    build_terminations,
    run_segmentation,
)
from activecontour.engine.timing import TimingObserver

__all__ = [
    "EnergyConfig",
    "EnergyTraceObserver",
    "Event",
    "EventBus",
    "IterationComplete",
    "Observer",
    "OptimizerConfig",
    "RunComplete",
    "RunFailed",
    "RunStart",
    "SegmentationRun",
    "SnakeConfig",
    "StepSizeConfig",
    "TerminationConfig",
    "TimingObserver",
    "build_coupled_optimizer",
    "build_energy_set",
    "build_optimizer",
    "build_step_size",
    "build_terminations",
    "load_config",
    "run_segmentation",
    "serialize_config",
]
