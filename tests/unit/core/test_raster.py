"""Unit tests for the Raster protocol, ArrayRaster and intensity normalization."""

from __future__ import annotations

import numpy as np
import pytest

from activecontour.core.raster import (
    ArrayRaster,
    IntensityNormalization,
    Raster,
    normalize_intensities,
    raster_to_array,
)


class ConstantRaster:
    """Structural Raster implementation without numpy storage."""

    width = 3
    height = 2

    def value_at(self, x: int, y: int) -> float:
        return float(10 * y + x)


def test_array_raster_satisfies_protocol() -> None:
    raster = ArrayRaster(np.zeros((4, 5)))
    assert isinstance(raster, Raster)
    assert (raster.width, raster.height) == (5, 4)


def test_array_raster_indexes_x_then_y() -> None:
    """value_at(x, y) reads column x of row y."""
    raster = ArrayRaster(np.arange(6).reshape(2, 3))
    assert raster.value_at(2, 1) == 5.0
    assert raster.value_at(0, 1) == 3.0


def test_array_raster_is_isolated_from_source() -> None:
    """Mutating the source array does not affect the raster."""
    source = np.zeros((2, 2))
    raster = ArrayRaster(source)
    source[0, 0] = 7.0
    assert raster.value_at(0, 0) == 0.0
    with pytest.raises(ValueError):
        raster.data[0, 0] = 1.0


@pytest.mark.parametrize("data", [np.zeros(5), np.zeros((0, 3)), np.zeros((2, 2, 2))])
def test_array_raster_rejects_bad_shapes(data: np.ndarray) -> None:
    with pytest.raises(ValueError):
        ArrayRaster(data)


def test_raster_to_array_for_structural_raster() -> None:
    arr = raster_to_array(ConstantRaster())
    np.testing.assert_allclose(arr, [[0, 1, 2], [10, 11, 12]])


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def test_normalization_none_returns_same_raster() -> None:
    raster = ArrayRaster(np.ones((2, 2)))
    assert normalize_intensities(raster, IntensityNormalization.NONE) is raster


def test_true_range_maps_to_unit_interval() -> None:
    raster = ArrayRaster(np.array([[10.0, 20.0], [30.0, 50.0]]))
    out = normalize_intensities(raster, IntensityNormalization.TRUE_RANGE)
    np.testing.assert_allclose(raster_to_array(out), [[0.0, 0.25], [0.5, 1.0]])
    # The source raster is untouched.
    assert raster.value_at(0, 0) == 10.0


def test_true_range_signed_values_map_symmetrically() -> None:
    raster = ArrayRaster(np.array([[-2.0, 0.0, 4.0]]))
    out = raster_to_array(normalize_intensities(raster, IntensityNormalization.TRUE_RANGE))
    np.testing.assert_allclose(out, [[-0.5, 0.0, 1.0]])


def test_true_range_all_negative_maps_to_minus_one_zero() -> None:
    raster = ArrayRaster(np.array([[-4.0, -2.0]]))
    out = raster_to_array(normalize_intensities(raster, IntensityNormalization.TRUE_RANGE))
    np.testing.assert_allclose(out, [[-1.0, 0.0]])


def test_theoretic_range_uses_dtype_limits() -> None:
    raster = ArrayRaster(np.array([[0, 255, 51]], dtype=np.uint8))
    out = raster_to_array(
        normalize_intensities(raster, IntensityNormalization.THEORETIC_RANGE)
    )
    np.testing.assert_allclose(out, [[0.0, 1.0, 0.2]])


def test_theoretic_range_rejects_float_data() -> None:
    raster = ArrayRaster(np.zeros((2, 2), dtype=np.float32))
    with pytest.raises(ValueError, match="integer dtype"):
        normalize_intensities(raster, IntensityNormalization.THEORETIC_RANGE)


def test_constant_image_maps_to_lower_bound() -> None:
    raster = ArrayRaster(np.full((2, 2), 9.0))
    out = raster_to_array(normalize_intensities(raster, IntensityNormalization.TRUE_RANGE))
    np.testing.assert_allclose(out, 0.0)
