"""Ordered, weighted collection of energies with a normalization policy."""

from __future__ import annotations

import logging
from collections.abc import Sequence

import numpy as np

from activecontour.core.energies.base import Energy, EnergyNormalization
from activecontour.core.errors import InitializationError
from activecontour.core.state import OptimizerState

logger = logging.getLogger(__name__)

__all__ = ["EnergySet"]


class EnergySet:
    """Energies combined into one linear system per iteration.

    The set is immutable once built: energies, weights and the
    normalization mode are fixed at construction.

    Args:
        energies: Energy instances in evaluation order.
        weights: One non-negative weight per energy. Defaults to 1.0 each.
        normalization: Derivative normalization applied by every energy.

    Raises:
        ValueError: If *weights* and *energies* differ in length, a weight is
            negative, or an energy does not satisfy the :class:`Energy`
            protocol.

    Example::

        energies = EnergySet(
            [LengthEnergy(alpha=0.5), RegionFitEnergy()],
            weights=[1.0, 2.0],
            normalization=EnergyNormalization.BALANCED_DERIVATIVES,
        )
    """

    def __init__(
        self,
        energies: Sequence[Energy],
        weights: Sequence[float] | None = None,
        normalization: EnergyNormalization = EnergyNormalization.NONE,
    ) -> None:
        energies = tuple(energies)
        if weights is None:
            weights = [1.0] * len(energies)
        weights = tuple(float(w) for w in weights)
        if len(weights) != len(energies):
            raise ValueError(
                f"Got {len(energies)} energies but {len(weights)} weights"
            )
        for w in weights:
            if w < 0:
                raise ValueError(f"Energy weights must be non-negative, got {w}")
        for energy in energies:
            if not isinstance(energy, Energy):
                raise ValueError(f"{energy!r} does not implement the Energy protocol")
        self._energies = energies
        self._weights = weights
        self._normalization = normalization

    @property
    def energies(self) -> tuple[Energy, ...]:
        return self._energies

    @property
    def weights(self) -> tuple[float, ...]:
        return self._weights

    @property
    def normalization(self) -> EnergyNormalization:
        return self._normalization

    @property
    def requires_counter_clockwise(self) -> bool:
        """True if any member energy assumes counter-clockwise point order."""
        return any(e.requires_counter_clockwise for e in self._energies)

    def __len__(self) -> int:
        return len(self._energies)

    def normalized_weights(self) -> np.ndarray:
        """Weights rescaled to sum to one.

        Raises:
            InitializationError: If the set is empty or all weights are zero.
        """
        total = sum(self._weights)
        if not self._energies or total <= 0:
            raise InitializationError(
                "EnergySet needs at least one energy with a positive weight"
            )
        return np.asarray(self._weights, dtype=np.float64) / total

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    def assemble(
        self, state: OptimizerState, weights: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray]:
        """Sum the weighted matrix and bias contributions of all energies.

        Args:
            state: Current optimizer state.
            weights: One weight per energy, usually :meth:`normalized_weights`.

        Returns:
            Tuple ``(A, b)`` with shapes (2N, 2N) and (2N,).
        """
        n2 = 2 * len(state.curve)
        a_total = np.zeros((n2, n2), dtype=np.float64)
        b_total = np.zeros(n2, dtype=np.float64)
        for energy, w in zip(self._energies, weights):
            if w == 0:
                continue
            a_total += w * energy.derivative_matrix_part(state)
            b = energy.derivative_vector_part(state)
            if b is not None:
                b_total += w * b
        return a_total, b_total

    def external_gradient(
        self, state: OptimizerState, weights: np.ndarray
    ) -> np.ndarray:
        """Gradient ``A_ext x + b_ext`` of the weighted external energies.

        Args:
            state: Current optimizer state.
            weights: One weight per energy.

        Returns:
            Array of shape (2N,); zeros if the set has no external energy.
        """
        x = state.curve.as_vector()
        grad = np.zeros_like(x)
        for energy, w in zip(self._energies, weights):
            if not energy.is_external or w == 0:
                continue
            grad += w * (energy.derivative_matrix_part(state) @ x)
            b = energy.derivative_vector_part(state)
            if b is not None:
                grad += w * b
        return grad

    def energy_values(self, state: OptimizerState) -> dict[str, float]:
        """Evaluate every energy on the current curve.

        Repeated energy names are disambiguated with a ``#k`` suffix.

        Returns:
            Mapping energy name -> unweighted scalar energy.
        """
        values: dict[str, float] = {}
        for energy in self._energies:
            key = energy.name
            k = 1
            while key in values:
                k += 1
                key = f"{energy.name}#{k}"
            values[key] = energy.calc_energy(state)
        return values

    def duplicate_config(self) -> EnergySet:
        """Return a new set of uninitialized energy copies with equal weights."""
        return EnergySet(
            [e.duplicate_config() for e in self._energies],
            weights=self._weights,
            normalization=self._normalization,
        )

    def __repr__(self) -> str:
        parts = ", ".join(
            f"{e!r}*{w:g}" for e, w in zip(self._energies, self._weights)
        )
        return f"EnergySet([{parts}], normalization={self._normalization.value})"
