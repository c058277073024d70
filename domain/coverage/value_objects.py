"""Coverage Bounded Context - Value Objects.

Immutable cell records, the per-tile environment modifier, and the signal
table produced by propagation + dominance.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from typing import ClassVar

import numpy as np
from numpy.typing import ArrayLike, NDArray
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from domain.errors import ConfigurationError
from domain.grid.tables import KeyedTable
from domain.grid.value_objects import Grid
from domain.parameters import ModelParameters

# Fields a Cell may leave unset and inherit from ModelParameters
_INHERITED_FIELDS = (
    "tilt",
    "power_w",
    "ple",
    "azimuth_beam_width",
    "elevation_beam_width",
    "azimuth_db_back",
    "elevation_db_back",
    "max_range",
)


class Cell(BaseModel):
    """A transmitting antenna (Value Object).

    Position is in the grid CRS. `azimuth=None` marks an omnidirectional
    cell. Antenna and physics fields left as None are filled from the
    parameter bundle by resolved().
    """

    cell_id: str
    x: float
    y: float
    height: float  # metres above ground
    ground_elevation: float = 0.0  # metres, terrain height at the mast
    azimuth: float | None = None  # degrees clockwise from north
    tilt: float | None = None  # degrees, positive = downward
    power_w: float | None = None
    frequency_mhz: float | None = None
    ple: float | None = None
    azimuth_beam_width: float | None = None
    elevation_beam_width: float | None = None
    azimuth_db_back: float | None = None
    elevation_db_back: float | None = None
    max_range: float | None = None

    model_config = ConfigDict(frozen=True)

    @field_validator("azimuth")
    @classmethod
    def _wrap_azimuth(cls, value: float | None) -> float | None:
        return None if value is None else value % 360.0

    @model_validator(mode="after")
    def validate_cell(self) -> "Cell":
        if not self.cell_id:
            raise ConfigurationError("cell_id must be non-empty")
        if not (math.isfinite(self.x) and math.isfinite(self.y)):
            raise ConfigurationError(f"Cell {self.cell_id}: non-finite position")
        if self.height < 0:
            raise ConfigurationError(f"Cell {self.cell_id}: negative height {self.height}")
        for name in ("power_w", "ple", "max_range", "frequency_mhz"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ConfigurationError(f"Cell {self.cell_id}: {name} must be positive")
        for name in ("azimuth_beam_width", "elevation_beam_width"):
            value = getattr(self, name)
            if value is not None and not (0 < value <= 360):
                raise ConfigurationError(f"Cell {self.cell_id}: {name} must be in (0, 360]")
        return self

    @property
    def is_omnidirectional(self) -> bool:
        return self.azimuth is None

    @property
    def power_dbm(self) -> float:
        """Transmit power in dBm (10 * log10(1000 * W))."""
        if self.power_w is None:
            raise ConfigurationError(f"Cell {self.cell_id}: power not resolved")
        return 10.0 * math.log10(self.power_w * 1000.0)

    def resolved(self, params: ModelParameters) -> "Cell":
        """Copy with every unset antenna/physics field taken from params."""
        update = {
            name: getattr(params, name)
            for name in _INHERITED_FIELDS
            if getattr(self, name) is None
        }
        return self.model_copy(update=update) if update else self


class EnvironmentLayer(BaseModel):
    """Per-tile additive path-loss-exponent modifier (Value Object).

    values[tile_id] is added to a cell's baseline ple at that tile.
    """

    values: NDArray[np.float64]

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @field_validator("values", mode="before")
    @classmethod
    def _coerce_values(cls, value: ArrayLike) -> NDArray[np.float64]:
        return np.asarray(value, dtype=np.float64)

    @model_validator(mode="after")
    def validate_layer(self) -> "EnvironmentLayer":
        arr = np.array(self.values, dtype=np.float64, copy=True)
        if arr.ndim != 1:
            raise ValueError(f"Environment values must be 1D, got {arr.ndim}D")
        if not np.isfinite(arr).all():
            raise ValueError("Environment values must be finite")
        arr.flags.writeable = False
        object.__setattr__(self, "values", arr)
        return self

    @classmethod
    def from_land_use(
        cls,
        grid: Grid,
        shares: Mapping[str, ArrayLike],
        weights: Mapping[str, float],
    ) -> "EnvironmentLayer":
        """Weighted combination of land-use share rasters.

        Args:
            grid: Tile lattice the rasters are aligned with
            shares: Category -> per-tile share (0..1) of that land use
            weights: Category -> ple increment at full coverage

        Raises:
            ConfigurationError: If categories and weights do not match
        """
        if set(shares) != set(weights):
            raise ConfigurationError(
                f"Land-use categories {sorted(shares)} do not match weights {sorted(weights)}"
            )
        total = np.zeros(grid.n_tiles, dtype=np.float64)
        for category in sorted(shares):
            total += weights[category] * grid.aligned(shares[category], name=category)
        return cls(values=total)


class SignalRow(BaseModel):
    """One (tile, cell) record of a SignalTable."""

    tile_id: int
    cell_id: str
    strength_dbm: float
    dominance: float

    model_config = ConfigDict(frozen=True)


class SignalTable(KeyedTable):
    """Strength (dBm) and dominance per computed (tile, cell) pair.

    Cells only have rows for tiles within their maximum range.
    """

    strength_dbm: NDArray[np.float64]
    dominance: NDArray[np.float64]

    value_columns: ClassVar[tuple[str, ...]] = ("strength_dbm", "dominance")
    row_type: ClassVar[type[BaseModel]] = SignalRow

    @model_validator(mode="after")
    def validate_dominance(self) -> "SignalTable":
        if len(self) and ((self.dominance < 0).any() or (self.dominance > 1).any()):
            raise ValueError("Dominance must lie in [0, 1]")
        return self

    def for_cell(self, cell_id: str) -> "SignalTable":
        """Rows of a single cell."""
        mask = self.cell_id == cell_id
        return SignalTable(**{name: col[mask] for name, col in self.columns().items()})
