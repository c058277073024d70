"""Model parameter bundle.

One immutable configuration object passed by value into every stage; there
are no module-level mutable defaults. Cell records may override the antenna
and physics fields per cell (see Cell.resolved).

Example:
    >>> params = ModelParameters.model_validate({"ple": 4.0, "max_range": 5000})
    >>> params.dominance_midpoint
    -92.5
"""

from __future__ import annotations

import math
from typing import Any

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from domain.errors import ConfigurationError
from domain.grid.value_objects import Grid


class ModelParameters(BaseModel):
    """Tunables of propagation, dominance, likelihood and prior stages."""

    # Transmitter defaults
    power_w: float = 10.0
    ple: float = 3.7
    reference_distance: float = 1.0  # metres
    strength_floor: float = -140.0  # dBm
    tilt: float = 5.0  # degrees, positive = downward

    # Radiation pattern defaults
    azimuth_beam_width: float = 65.0  # degrees, -3 dB half-angle
    elevation_beam_width: float = 9.0
    azimuth_db_back: float = -30.0  # dB at 180 degrees offset
    elevation_db_back: float = -30.0

    # Dominance
    dominance_midpoint: float = -92.5  # dBm
    dominance_steepness: float = 0.2  # 1/dB

    # Table size bounds
    max_range: float = 20_000.0  # metres
    dominance_threshold: float = 0.0
    max_cells_per_tile: int | None = None

    # Study region, one flag per tile id; None = whole grid
    region_mask: NDArray[np.bool_] | None = None

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @field_validator("region_mask", mode="before")
    @classmethod
    def _coerce_mask(cls, value: Any) -> Any:
        if value is None:
            return None
        mask = np.array(value, dtype=bool, copy=True).ravel()
        mask.flags.writeable = False
        return mask

    @model_validator(mode="after")
    def validate_parameters(self) -> "ModelParameters":
        for name in ("power_w", "ple", "reference_distance", "max_range"):
            value = getattr(self, name)
            if not math.isfinite(value) or value <= 0:
                raise ConfigurationError(f"{name} must be positive: {value}")
        if not math.isfinite(self.dominance_steepness) or self.dominance_steepness <= 0:
            raise ConfigurationError(
                f"dominance_steepness must be positive: {self.dominance_steepness}"
            )
        for name in ("azimuth_beam_width", "elevation_beam_width"):
            value = getattr(self, name)
            if not (0 < value <= 360):
                raise ConfigurationError(f"{name} must be in (0, 360]: {value}")
        if not (0 <= self.dominance_threshold < 1):
            raise ConfigurationError(
                f"dominance_threshold must be in [0, 1): {self.dominance_threshold}"
            )
        if self.max_cells_per_tile is not None and self.max_cells_per_tile < 1:
            raise ConfigurationError(
                f"max_cells_per_tile must be >= 1: {self.max_cells_per_tile}"
            )
        if self.region_mask is not None and not self.region_mask.any():
            raise ConfigurationError("region_mask selects no tiles")
        return self

    def region_for(self, grid: Grid) -> NDArray[np.bool_]:
        """Region mask aligned with grid (all tiles when no mask is set)."""
        if self.region_mask is None:
            mask = np.ones(grid.n_tiles, dtype=bool)
            mask.flags.writeable = False
            return mask
        if self.region_mask.shape != (grid.n_tiles,):
            raise ConfigurationError(
                f"region_mask has {self.region_mask.size} entries, grid has {grid.n_tiles} tiles"
            )
        return self.region_mask
