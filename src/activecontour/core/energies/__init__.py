"""Energy terms for snake optimization and their registry.

Provides the :class:`Energy` protocol, the concrete internal and external
terms, :class:`EnergySet`, and a factory resolving kind strings to
configured energy instances.
"""

from __future__ import annotations

from typing import Any

from activecontour.core.energies.base import Energy, EnergyNormalization
from activecontour.core.energies.curvature import CurvatureEnergy
from activecontour.core.energies.distance import DistanceEnergy
from activecontour.core.energies.energy_set import EnergySet
from activecontour.core.energies.image_gradient import ImageGradientEnergy
from activecontour.core.energies.intensity import IntensityEnergy
from activecontour.core.energies.length import LengthEnergy
from activecontour.core.energies.region_fit import RegionFitEnergy

__all__ = [
    "CurvatureEnergy",
    "DistanceEnergy",
    "Energy",
    "EnergyNormalization",
    "EnergySet",
    "ImageGradientEnergy",
    "IntensityEnergy",
    "LengthEnergy",
    "RegionFitEnergy",
    "get_energy",
]

_ENERGY_KINDS: dict[str, type] = {
    "length": LengthEnergy,
    "curvature": CurvatureEnergy,
    "region_fit": RegionFitEnergy,
    "image_gradient": ImageGradientEnergy,
    "intensity": IntensityEnergy,
    "distance": DistanceEnergy,
}


def get_energy(kind: str, **kwargs: Any) -> Energy:
    """Create an energy term by kind name.

    Args:
        kind: Energy identifier. Supported values:

            - ``"length"``: elasticity term; kwargs ``alpha``.
            - ``"curvature"``: bending term; kwargs ``beta``.
            - ``"region_fit"``: Chan–Vese region fit; kwargs ``lambda_in``,
              ``lambda_out``.
            - ``"image_gradient"``: edge attraction; kwargs ``sigma``.
            - ``"intensity"``: attraction to dark pixels; no kwargs.
            - ``"distance"``: attraction to binarized foreground; kwargs
              ``threshold``, ``foreground``, ``metric``.

        **kwargs: Forwarded to the energy constructor.

    Returns:
        A new, uninitialized energy instance.

    Raises:
        ValueError: If *kind* is not a recognized energy identifier.
    """
    try:
        cls = _ENERGY_KINDS[kind]
    except KeyError:
        raise ValueError(
            f"Unknown energy kind: {kind!r}. "
            f"Supported kinds: {sorted(_ENERGY_KINDS)}"
        ) from None
    return cls(**kwargs)
