"""Coverage Bounded Context - Antenna radiation patterns.

Each plane (azimuth, elevation) uses the same normal-shaped loss curve:

    L(a) = |db_back| * (1 - exp(-a^2 / 2 sd^2)) / (1 - exp(-180^2 / 2 sd^2))

so L(0) = 0, L(180) = |db_back|, and L grows monotonically with the offset
angle a. The spread sd is solved once per (beam_width, db_back) so that the
loss at an offset of beam_width (the -3 dB half-angle) is exactly 3 dB;
beam widths past 180 degrees are capped there. Losses are positive dB
values subtracted from the transmit power.

How the two planes combine is a policy (LossCombiner); adding them in dB is
the default.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from functools import lru_cache

import numpy as np
from numpy.typing import ArrayLike, NDArray
from pydantic import BaseModel, ConfigDict, model_validator

from domain.errors import ConfigurationError

HALF_POWER_DB = 3.0
BACK_ANGLE_DEG = 180.0

# Search interval for the pattern spread (degrees)
SD_MIN = 0.01
SD_MAX = 1000.0
_BISECTION_STEPS = 100

LossCombiner = Callable[[NDArray[np.float64], NDArray[np.float64]], NDArray[np.float64]]


def _normal_loss(offset: float, db_back: float, sd: float) -> float:
    two_var = 2.0 * sd * sd
    return db_back * math.expm1(-offset * offset / two_var) / math.expm1(
        -BACK_ANGLE_DEG * BACK_ANGLE_DEG / two_var
    )


@lru_cache(maxsize=256)
def solve_spread(beam_width: float, db_back: float) -> float:
    """Spread sd giving a 3 dB loss at an offset of beam_width degrees.

    db_back is the back-lobe magnitude (>= 0). When 3 dB cannot be reached
    inside [SD_MIN, SD_MAX] (back lobe weaker than 3 dB, or a beam so wide
    that even the flattest curve exceeds 3 dB, i.e. beam_width above
    180 * sqrt(3 / db_back)) the closest end is returned.
    """
    angle = min(beam_width, BACK_ANGLE_DEG)
    lo, hi = SD_MIN, SD_MAX
    if _normal_loss(angle, db_back, hi) >= HALF_POWER_DB:
        return hi
    if _normal_loss(angle, db_back, lo) <= HALF_POWER_DB:
        return lo
    # Loss at a fixed offset decreases as the spread widens
    for _ in range(_BISECTION_STEPS):
        mid = 0.5 * (lo + hi)
        if _normal_loss(angle, db_back, mid) > HALF_POWER_DB:
            lo = mid
        else:
            hi = mid
    return 0.5 * (lo + hi)


def angular_offset(bearing: ArrayLike, direction: float) -> NDArray[np.float64]:
    """Absolute angle between bearings, wrapped to [0, 180]."""
    diff = np.mod(np.asarray(bearing, dtype=np.float64) - direction + 180.0, 360.0) - 180.0
    return np.abs(diff)


class RadiationPattern(BaseModel):
    """Loss curve of one antenna plane (Value Object).

    Attributes:
        beam_width: Offset in degrees where the loss reaches 3 dB (the
            -3 dB half-angle, capped at 180)
        db_back: Attenuation at 180 degrees offset; sign is ignored
    """

    beam_width: float
    db_back: float

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def validate_pattern(self) -> "RadiationPattern":
        if not (0 < self.beam_width <= 360):
            raise ConfigurationError(f"beam_width must be in (0, 360]: {self.beam_width}")
        if not math.isfinite(self.db_back):
            raise ConfigurationError(f"db_back must be finite: {self.db_back}")
        return self

    @property
    def back_loss(self) -> float:
        return abs(self.db_back)

    @property
    def spread(self) -> float:
        return solve_spread(self.beam_width, self.back_loss)

    def attenuation(self, offset_deg: ArrayLike) -> NDArray[np.float64]:
        """Loss in dB (>= 0) at the given offset angles."""
        a = np.clip(np.abs(np.asarray(offset_deg, dtype=np.float64)), 0.0, BACK_ANGLE_DEG)
        if self.back_loss == 0:
            return np.zeros_like(a)
        two_var = 2.0 * self.spread**2
        return self.back_loss * np.expm1(-(a**2) / two_var) / math.expm1(
            -BACK_ANGLE_DEG**2 / two_var
        )


def combine_additive(
    azimuth_loss: NDArray[np.float64], elevation_loss: NDArray[np.float64]
) -> NDArray[np.float64]:
    """Sum the two plane losses in dB."""
    return azimuth_loss + elevation_loss


def combine_max(
    azimuth_loss: NDArray[np.float64], elevation_loss: NDArray[np.float64]
) -> NDArray[np.float64]:
    """Take the larger of the two plane losses."""
    return np.maximum(azimuth_loss, elevation_loss)
