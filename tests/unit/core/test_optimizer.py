"""Unit tests for SingleCurveOptimizer initialization and iteration."""

from __future__ import annotations

import numpy as np
import pytest

from activecontour.core.context import RunContext
from activecontour.core.curve import NO_PREVIOUS, Curve
from activecontour.core.energies import (
    CurvatureEnergy,
    EnergySet,
    ImageGradientEnergy,
    LengthEnergy,
    RegionFitEnergy,
)
from activecontour.core.errors import (
    InitializationError,
    InvalidGeometryError,
    NumericalError,
)
from activecontour.core.optimizer import (
    MIN_POINTS,
    IterationStatus,
    SingleCurveOptimizer,
)
from activecontour.core.raster import ArrayRaster, IntensityNormalization, raster_to_array
from activecontour.core.stepsize import PointwiseExternalStepSize
from activecontour.core.termination import AreaDiff, MaxIterations

# ---------------------------------------------------------------------------
# Test helpers
# ---------------------------------------------------------------------------


class SingularEnergy:
    """Energy whose matrix cancels the identity for gamma = 0.5."""

    name = "singular"
    requires_counter_clockwise = False
    is_external = False

    def init(self, optimizer) -> None:
        pass

    def update_status(self, optimizer) -> None:
        pass

    def calc_energy(self, state) -> float:
        return 0.0

    def derivative_matrix_part(self, state) -> np.ndarray:
        return -2.0 * np.eye(2 * len(state.curve))

    def derivative_vector_part(self, state) -> None:
        return None

    def duplicate_config(self) -> SingularEnergy:
        return SingularEnergy()


class NeverBinds:
    """Termination strategy that refuses every optimizer."""

    name = "never_binds"
    is_bound = False

    def init(self, optimizer) -> bool:
        return False

    def terminate(self):
        raise AssertionError("must not be polled")

    def duplicate_config(self) -> NeverBinds:
        return NeverBinds()


def _optimizer(raster, points, energies, **kwargs) -> SingleCurveOptimizer:
    kwargs.setdefault("terminations", [MaxIterations(10)])
    return SingleCurveOptimizer(raster, points, EnergySet(energies), **kwargs)


# ---------------------------------------------------------------------------
# Construction & initialization
# ---------------------------------------------------------------------------


def test_constructor_validates_arguments(disk_raster, make_circle) -> None:
    points = make_circle(32, 32, 20, 40)
    with pytest.raises(ValueError):
        _optimizer(disk_raster, points, [LengthEnergy()], terminations=[])
    with pytest.raises(ValueError):
        _optimizer(disk_raster, points, [LengthEnergy()], resample_segment_length=0.0)


def test_initialize_normalizes_curve(disk_raster, make_circle) -> None:
    opt = _optimizer(disk_raster, make_circle(32, 32, 20, 40), [LengthEnergy()])
    assert not opt.is_initialized
    opt.initialize()
    assert opt.is_initialized
    assert opt.current_curve.scale == 64.0
    assert opt.current_curve.n_points == 40
    assert opt.iteration_count == 0
    assert opt.state.gamma.shape == (80,)
    np.testing.assert_allclose(opt.weights, [1.0])


def test_initialize_without_raster_fails(make_circle) -> None:
    opt = _optimizer(None, make_circle(32, 32, 20, 40), [LengthEnergy()])
    with pytest.raises(InitializationError):
        opt.initialize()
    with pytest.raises(RuntimeError):
        opt.iterate()


def test_iterate_before_initialize_fails(disk_raster, make_circle) -> None:
    opt = _optimizer(disk_raster, make_circle(32, 32, 20, 40), [LengthEnergy()])
    with pytest.raises(RuntimeError, match="not initialized"):
        opt.iterate()


def test_tiny_polygon_rejected(disk_raster) -> None:
    """A polygon that resamples below MIN_POINTS cannot be optimized."""
    opt = _optimizer(disk_raster, [(10, 10), (11, 10), (11, 11)], [LengthEnergy()])
    with pytest.raises(InvalidGeometryError):
        opt.initialize()


def test_small_polygon_is_resampled_even_without_resampling(disk_raster) -> None:
    """Curves with at most MIN_POINTS points are always resampled."""
    square = [(12, 12), (52, 12), (52, 52), (12, 52)]
    opt = _optimizer(disk_raster, square, [LengthEnergy()], do_resampling=False)
    opt.initialize()
    assert opt.current_curve.n_points >= MIN_POINTS
    assert opt.current_curve.n_points == 32


def test_clockwise_input_reversed_for_region_fit(disk_raster, make_circle) -> None:
    points = make_circle(32, 32, 20, 40, clockwise=True)
    opt = _optimizer(
        disk_raster, points, [LengthEnergy(), RegionFitEnergy()], do_resampling=False
    )
    opt.initialize()
    assert opt.current_curve.is_counter_clockwise()


def test_clockwise_input_kept_without_orientation_requirement(
    disk_raster, make_circle
) -> None:
    points = make_circle(32, 32, 20, 40, clockwise=True)
    opt = _optimizer(disk_raster, points, [LengthEnergy()], do_resampling=False)
    opt.initialize()
    assert not opt.current_curve.is_counter_clockwise()


def test_unbindable_termination_fails_initialization(disk_raster, make_circle) -> None:
    opt = _optimizer(
        disk_raster,
        make_circle(32, 32, 20, 40),
        [LengthEnergy()],
        terminations=[NeverBinds()],
    )
    with pytest.raises(InitializationError, match="failed to bind"):
        opt.initialize()
    assert not opt.is_initialized


# ---------------------------------------------------------------------------
# Iteration
# ---------------------------------------------------------------------------


def test_length_energy_shrinks_curve(blank_raster, make_circle) -> None:
    opt = _optimizer(
        blank_raster, make_circle(32, 32, 20, 40), [LengthEnergy(1.0)], do_resampling=False
    )
    opt.initialize()
    initial_length = opt.current_curve.arc_length()
    result = opt.run()
    assert result.iterations == 10
    assert result.status is IterationStatus.DONE
    assert result.terminated_by == "max_iterations"
    assert result.curve.arc_length() < initial_length
    assert result.points.shape == (40, 2)


def test_iteration_links_points_to_previous_curve(blank_raster, make_circle) -> None:
    opt = _optimizer(
        blank_raster, make_circle(32, 32, 20, 40), [LengthEnergy()], do_resampling=False
    )
    opt.initialize()
    opt.iterate()
    np.testing.assert_array_equal(opt.current_curve.previous_index, np.arange(40))
    assert opt.previous_curve is not None


def test_done_optimizer_stops_iterating(blank_raster, make_circle) -> None:
    opt = _optimizer(
        blank_raster,
        make_circle(32, 32, 20, 40),
        [LengthEnergy()],
        terminations=[MaxIterations(2)],
    )
    result = opt.run()
    assert result.iterations == 2
    assert opt.is_done
    assert opt.iterate() is IterationStatus.DONE
    assert opt.iteration_count == 2


def test_run_respects_max_rounds(blank_raster, make_circle) -> None:
    opt = _optimizer(blank_raster, make_circle(32, 32, 20, 40), [LengthEnergy()])
    result = opt.run(max_rounds=3)
    assert result.iterations == 3
    assert result.status is IterationStatus.SUCCESS
    assert result.terminated_by is None


def test_region_fit_run_stays_inside_raster(disk_raster, make_circle) -> None:
    opt = _optimizer(
        disk_raster,
        make_circle(32, 32, 20, 40),
        [LengthEnergy(0.5), CurvatureEnergy(0.5), RegionFitEnergy()],
        terminations=[MaxIterations(15), AreaDiff(fraction=0.0)],
    )
    result = opt.run()
    assert 1 <= result.iterations <= 15
    assert len(result.points) >= MIN_POINTS
    assert result.points.min() >= 0.0
    assert result.points.max() <= 63.0
    assert result.curve.is_counter_clockwise()


def test_pointwise_step_size_run(disk_raster, make_circle) -> None:
    opt = _optimizer(
        disk_raster,
        make_circle(32, 32, 16, 32),
        [LengthEnergy(0.2), ImageGradientEnergy(sigma=1.5)],
        step_size=PointwiseExternalStepSize(gamma=0.5, damping=5.0),
        terminations=[MaxIterations(5)],
    )
    result = opt.run()
    assert result.iterations == 5
    assert np.all(opt.state.gamma <= 0.5)


def test_singular_system_raises_numerical_error(blank_raster, make_circle) -> None:
    opt = _optimizer(
        blank_raster, make_circle(32, 32, 20, 40), [SingularEnergy()], do_resampling=False
    )
    opt.initialize()
    with pytest.raises(NumericalError):
        opt.iterate()


# ---------------------------------------------------------------------------
# Configuration cloning & reporting
# ---------------------------------------------------------------------------


def test_duplicate_config_shares_context_only(disk_raster, make_circle) -> None:
    context = RunContext(run_id="clone-test")
    original = _optimizer(
        disk_raster, make_circle(32, 32, 20, 40), [RegionFitEnergy()], context=context
    )
    clone = original.duplicate_config(make_circle(20, 20, 8, 20))
    assert original.name == "curve-0"
    assert clone.name == "curve-1"
    assert clone.context is context
    assert clone.energy_set is not original.energy_set
    assert clone.energy_set.energies[0] is not original.energy_set.energies[0]
    assert clone.terminations[0] is not original.terminations[0]
    assert not clone.is_initialized


def test_energy_values_after_initialize(disk_raster, make_circle) -> None:
    opt = _optimizer(
        disk_raster, make_circle(32, 32, 20, 40), [LengthEnergy(), RegionFitEnergy()]
    )
    opt.initialize()
    values = opt.energy_values()
    assert set(values) == {"length", "region_fit"}
    assert values["length"] > 0.0


# ---------------------------------------------------------------------------
# Defaults & self-intersections
# ---------------------------------------------------------------------------


def test_default_intensity_normalization_stretches_uint8_raster(make_circle) -> None:
    yy, xx = np.mgrid[0:64, 0:64]
    image = np.where((xx - 32) ** 2 + (yy - 32) ** 2 <= 144, 255, 0).astype(np.uint8)
    opt = SingleCurveOptimizer(
        ArrayRaster(image), make_circle(32, 32, 20, 40), EnergySet([LengthEnergy()])
    )
    assert opt.intensity_normalization is IntensityNormalization.TRUE_RANGE
    opt.initialize()
    values = raster_to_array(opt.state.raster)
    assert values.min() == 0.0
    assert values.max() == 1.0


def test_iteration_removes_self_intersection_loop(blank_raster) -> None:
    # Figure-eight crossing at (70/3, 70/3); the right-hand loop is larger.
    bowtie = Curve.from_polygon([(10, 10), (50, 50), (50, 10), (10, 30)])
    points = bowtie.resample(2.0).pixel_points
    opt = _optimizer(blank_raster, points, [LengthEnergy(0.05)], do_resampling=False)
    opt.initialize()
    assert not opt.current_curve.is_simple()

    opt.iterate()
    curve = opt.current_curve
    assert curve.is_simple()
    assert len(curve) < len(points)
    assert abs(curve.signed_area()) > 400.0
    links = curve.previous_index
    assert np.any(links == NO_PREVIOUS)
    assert links[links != NO_PREVIOUS].max() < len(points)
