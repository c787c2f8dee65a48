"""Core snake optimization: curves, energies, step sizes, terminations, optimizers.

Data flow of one iteration:
1. Energies refresh their statistics (``update_status``)
2. EnergySet assembles the weighted system ``(A, b)``
3. SingleCurveOptimizer solves the implicit update with the current gamma
4. The new curve loses self-intersection loops, is resampled/clipped and
   handed to termination strategies

core/ never imports from engine/.
"""

from activecontour.core.context import RunContext
from activecontour.core.coupled import CoupledOptimizer, CoupledResult
from activecontour.core.curve import NO_PREVIOUS, Curve
from activecontour.core.energies import (
    CurvatureEnergy,
    DistanceEnergy,
    Energy,
    EnergyNormalization,
    EnergySet,
    ImageGradientEnergy,
    IntensityEnergy,
    LengthEnergy,
    RegionFitEnergy,
    get_energy,
)
from activecontour.core.errors import (
    ActiveContourError,
    InitializationError,
    InvalidGeometryError,
    NumericalError,
)
from activecontour.core.optimizer import (
    MIN_POINTS,
    IterationStatus,
    OptimizationResult,
    SingleCurveOptimizer,
)
from activecontour.core.raster import (
    ArrayRaster,
    IntensityNormalization,
    Raster,
    normalize_intensities,
)
from activecontour.core.state import OptimizerState
from activecontour.core.stepsize import (
    ConstantStepSize,
    PointwiseExternalStepSize,
    StepSizeStrategy,
    get_step_size,
)
from activecontour.core.termination import (
    AreaDiff,
    AreaDiffSlidingOffset,
    MaxIterations,
    MotionDiff,
    TerminationStatus,
    TerminationStrategy,
    get_termination,
)

__all__ = [
    "MIN_POINTS",
    "NO_PREVIOUS",
    "ActiveContourError",
    "AreaDiff",
    "AreaDiffSlidingOffset",
    "ArrayRaster",
    "ConstantStepSize",
    "CoupledOptimizer",
    "CoupledResult",
    "CurvatureEnergy",
    "Curve",
    "DistanceEnergy",
    "Energy",
    "EnergyNormalization",
    "EnergySet",
    "ImageGradientEnergy",
    "InitializationError",
    "IntensityEnergy",
    "IntensityNormalization",
    "InvalidGeometryError",
    "IterationStatus",
    "LengthEnergy",
    "MaxIterations",
    "MotionDiff",
    "NumericalError",
    "OptimizationResult",
    "OptimizerState",
    "PointwiseExternalStepSize",
    "Raster",
    "RegionFitEnergy",
    "RunContext",
    "SingleCurveOptimizer",
    "StepSizeStrategy",
    "TerminationStatus",
    "TerminationStrategy",
    "get_energy",
    "get_step_size",
    "get_termination",
]
