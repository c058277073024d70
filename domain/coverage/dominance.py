"""Coverage Bounded Context - Dominance transform.

Logistic map from signal strength to connection attractiveness:

    dominance(s) = 1 / (1 + exp(-steepness * (s - midpoint)))

Strictly increasing for steepness > 0, exactly 0.5 at the midpoint, and flat
in both tails so that strong signals compete on near-equal terms.
"""

from __future__ import annotations

import math

import numpy as np
from numpy.typing import ArrayLike, NDArray
from pydantic import BaseModel, ConfigDict, model_validator

from domain.errors import ConfigurationError
from domain.parameters import ModelParameters


def _check_steepness(steepness: float) -> None:
    if not math.isfinite(steepness) or steepness <= 0:
        raise ConfigurationError(f"steepness must be positive: {steepness}")


def dominance(
    strength_dbm: ArrayLike, midpoint: float, steepness: float
) -> NDArray[np.float64] | float:
    """Dominance of one or more strengths (dBm).

    Returns a float for scalar input, an array otherwise.

    Raises:
        ConfigurationError: If steepness <= 0
    """
    _check_steepness(steepness)
    z = -steepness * (np.asarray(strength_dbm, dtype=np.float64) - midpoint)
    # exp overflow for very weak signals yields inf and a dominance of 0
    with np.errstate(over="ignore"):
        result = 1.0 / (1.0 + np.exp(z))
    return float(result) if result.ndim == 0 else result


def strength_for_dominance(p: float, midpoint: float, steepness: float) -> float:
    """Inverse transform: strength (dBm) at which dominance equals p."""
    _check_steepness(steepness)
    if not (0 < p < 1):
        raise ConfigurationError(f"Dominance must be in (0, 1): {p}")
    return midpoint - math.log(1.0 / p - 1.0) / steepness


class DominanceTransform(BaseModel):
    """Dominance with fixed midpoint and steepness (Value Object)."""

    midpoint: float
    steepness: float

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def validate_transform(self) -> "DominanceTransform":
        _check_steepness(self.steepness)
        return self

    @classmethod
    def from_parameters(cls, params: ModelParameters) -> "DominanceTransform":
        return cls(midpoint=params.dominance_midpoint, steepness=params.dominance_steepness)

    def __call__(self, strength_dbm: ArrayLike) -> NDArray[np.float64] | float:
        return dominance(strength_dbm, self.midpoint, self.steepness)

    def inverse(self, p: float) -> float:
        return strength_for_dominance(p, self.midpoint, self.steepness)
