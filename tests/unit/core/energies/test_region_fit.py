"""Unit tests for the Chan–Vese region-fit energy."""

from __future__ import annotations

import numpy as np
import pytest

from activecontour.core.curve import Curve
from activecontour.core.energies import EnergyNormalization, EnergySet, RegionFitEnergy
from activecontour.core.errors import InitializationError
from activecontour.core.raster import ArrayRaster
from activecontour.core.state import OptimizerState

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _bright_square_raster() -> ArrayRaster:
    """32x32 raster, 1.0 on the pixel square [5, 25] x [5, 25], else 0."""
    image = np.zeros((32, 32))
    image[5:26, 5:26] = 1.0
    return ArrayRaster(image)


def _square_curve(lo: float, hi: float, step: float = 5.0) -> Curve:
    """Closed CCW square with corners lo/hi sampled every *step* pixels."""
    ts = np.arange(lo, hi, step)
    pts = (
        [(t, lo) for t in ts]
        + [(hi, t) for t in ts]
        + [(hi - (t - lo), hi) for t in ts]
        + [(lo, hi - (t - lo)) for t in ts]
    )
    return Curve.from_polygon(pts)


def _initialized(bind_state, curve: Curve, normalization=EnergyNormalization.NONE):
    energy = RegionFitEnergy(lambda_in=0.5, lambda_out=0.5)
    opt = bind_state(curve, _bright_square_raster(), EnergySet([], normalization=normalization))
    energy.init(opt)
    return energy, opt


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


def test_means_on_exact_segmentation(bind_state) -> None:
    """A curve on the object boundary sees mu_in = 1 and mu_out = 0."""
    energy, opt = _initialized(bind_state, _square_curve(5, 25))
    mu_out, mu_in = energy.means
    assert mu_in == pytest.approx(1.0)
    assert mu_out == pytest.approx(0.0)
    assert energy.calc_energy(opt.state) == pytest.approx(0.0)


def test_update_status_tracks_new_curve(bind_state) -> None:
    energy, opt = _initialized(bind_state, _square_curve(5, 25))
    opt.state.curve = _square_curve(0, 30)
    energy.update_status(opt)
    _, mu_in = energy.means
    assert 0.0 < mu_in < 1.0


# ---------------------------------------------------------------------------
# Matrix layout
# ---------------------------------------------------------------------------


def test_matrix_is_antisymmetric_coupling(bind_state) -> None:
    """Diagonal blocks vanish and the lower block negates the upper block."""
    energy, opt = _initialized(bind_state, _square_curve(2, 29))
    a_mat = energy.derivative_matrix_part(opt.state)
    n = len(opt.state.curve)
    np.testing.assert_allclose(a_mat[:n, :n], 0.0)
    np.testing.assert_allclose(a_mat[n:, n:], 0.0)
    np.testing.assert_allclose(a_mat[n:, :n], -a_mat[:n, n:])
    assert energy.derivative_vector_part(opt.state) is None


def test_matrix_sign_layout(bind_state) -> None:
    """Row i carries -tau_i at (i, N+i) and +tau_i at (i, N+i+1)."""
    energy, opt = _initialized(bind_state, _square_curve(2, 29))
    tau = energy.point_coefficients(opt.state)
    a_mat = energy.derivative_matrix_part(opt.state)
    n = len(tau)
    for i in range(n):
        assert a_mat[i, n + i] == pytest.approx(-tau[i])
        assert a_mat[i, n + (i + 1) % n] == pytest.approx(tau[i])
        assert a_mat[n + i, i] == pytest.approx(tau[i])
        assert a_mat[n + i, (i + 1) % n] == pytest.approx(-tau[i])


def test_coefficient_sign_follows_pixel_membership(bind_state) -> None:
    """Points on object pixels get tau < 0, points on background tau > 0."""
    energy, opt = _initialized(bind_state, _square_curve(5, 25))
    assert np.all(energy.point_coefficients(opt.state) < 0)

    energy, opt = _initialized(bind_state, _square_curve(1, 30))
    assert np.all(energy.point_coefficients(opt.state) > 0)


def test_balanced_coefficients_in_unit_range(bind_state) -> None:
    energy, opt = _initialized(
        bind_state, _square_curve(5, 25), EnergyNormalization.BALANCED_DERIVATIVES
    )
    tau = energy.point_coefficients(opt.state)
    np.testing.assert_allclose(tau, -1.0)


# ---------------------------------------------------------------------------
# Initialization errors
# ---------------------------------------------------------------------------


def test_open_curve_rejected(bind_state) -> None:
    curve = Curve.from_polygon([(1, 1), (10, 1), (10, 10), (1, 10), (1, 5)], closed=False)
    opt = bind_state(curve, _bright_square_raster())
    with pytest.raises(InitializationError, match="closed"):
        RegionFitEnergy().init(opt)


def test_missing_raster_rejected(bind_state) -> None:
    opt = bind_state(_square_curve(5, 25), None)
    with pytest.raises(InitializationError, match="raster"):
        RegionFitEnergy().init(opt)


def test_negative_lambda_rejected(bind_state) -> None:
    opt = bind_state(_square_curve(5, 25), _bright_square_raster())
    with pytest.raises(InitializationError):
        RegionFitEnergy(lambda_in=-1.0).init(opt)


def test_balanced_with_zero_lambdas_rejected(bind_state) -> None:
    opt = bind_state(
        _square_curve(5, 25),
        _bright_square_raster(),
        EnergySet([], normalization=EnergyNormalization.BALANCED_DERIVATIVES),
    )
    with pytest.raises(InitializationError):
        RegionFitEnergy(lambda_in=0.0, lambda_out=0.0).init(opt)


def test_use_before_init_raises() -> None:
    state = OptimizerState(curve=_square_curve(5, 25), raster=_bright_square_raster())
    with pytest.raises(RuntimeError):
        RegionFitEnergy().derivative_matrix_part(state)


def test_duplicate_config_is_uninitialized(bind_state) -> None:
    energy, _ = _initialized(bind_state, _square_curve(5, 25))
    clone = energy.duplicate_config()
    assert clone.means is None
    assert (clone.lambda_in, clone.lambda_out) == (0.5, 0.5)
