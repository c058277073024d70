"""Location Bounded Context - Value Objects.

Probability tables of the Bayesian location estimate:
- LikelihoodTable: P(cell | tile), sparse, sums to 1 per present tile
- PriorRaster: P(tile), dense over the grid, sums to 1 over the region
- PosteriorTable: P(tile | cell), sparse, sums to 1 per present cell
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import ClassVar

import numpy as np
from numpy.typing import ArrayLike, NDArray
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from domain.errors import ConfigurationError, ZeroMassWarning
from domain.grid.tables import KeyedTable, group_sum
from domain.grid.value_objects import Grid

# Tolerance for "sums to one" invariants
PROBABILITY_TOLERANCE = 1e-6


def _check_unit_groups(keys: NDArray, probabilities: NDArray[np.float64], label: str) -> None:
    if probabilities.size == 0:
        return
    if (probabilities < 0).any() or (probabilities > 1 + PROBABILITY_TOLERANCE).any():
        raise ValueError(f"Probabilities must lie in [0, 1] ({label})")
    unique, sums, _ = group_sum(keys, probabilities)
    bad = ~(np.abs(sums - 1.0) <= PROBABILITY_TOLERANCE)
    # All-zero groups are tolerated: they carry no mass, like absent groups
    bad &= ~(sums <= PROBABILITY_TOLERANCE)
    if bad.any():
        raise ValueError(
            f"Probabilities per {label} must sum to 1; offending {label}s: {unique[bad][:5].tolist()}"
        )


# ---------------------------------------------------------------------------
# Likelihood
# ---------------------------------------------------------------------------
class LikelihoodRow(BaseModel):
    """One (tile, cell) record of a LikelihoodTable."""

    tile_id: int
    cell_id: str
    p_cell_given_tile: float

    model_config = ConfigDict(frozen=True)


class LikelihoodTable(KeyedTable):
    """P(cell | tile) for every covered tile.

    Tiles without a covering cell are absent.
    """

    p_cell_given_tile: NDArray[np.float64]
    model: str = ""  # Name of the strategy that produced the table

    value_columns: ClassVar[tuple[str, ...]] = ("p_cell_given_tile",)
    row_type: ClassVar[type[BaseModel]] = LikelihoodRow

    @model_validator(mode="after")
    def validate_normalized(self) -> "LikelihoodTable":
        _check_unit_groups(self.tile_id, self.p_cell_given_tile, "tile")
        return self


# ---------------------------------------------------------------------------
# Prior
# ---------------------------------------------------------------------------
class PriorEntry(BaseModel):
    """P(tile) for one tile."""

    tile_id: int
    p_tile: float

    model_config = ConfigDict(frozen=True)


class PriorRaster(BaseModel):
    """Dense P(tile), indexed by tile id (Value Object).

    Invariants:
        values are finite and non-negative
        values are 0 outside the region
        values sum to 1 within PROBABILITY_TOLERANCE
    """

    p_tile: NDArray[np.float64]
    region: NDArray[np.bool_]

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @field_validator("p_tile", mode="before")
    @classmethod
    def _coerce_values(cls, value: ArrayLike) -> NDArray[np.float64]:
        return np.array(value, dtype=np.float64, copy=True).ravel()

    @field_validator("region", mode="before")
    @classmethod
    def _coerce_region(cls, value: ArrayLike) -> NDArray[np.bool_]:
        return np.array(value, dtype=bool, copy=True).ravel()

    @model_validator(mode="after")
    def validate_prior(self) -> "PriorRaster":
        if self.p_tile.shape != self.region.shape:
            raise ValueError(
                f"Prior has {self.p_tile.size} values but region has {self.region.size} flags"
            )
        if not np.isfinite(self.p_tile).all() or (self.p_tile < 0).any():
            raise ValueError("Prior values must be finite and non-negative")
        if (self.p_tile[~self.region] != 0).any():
            raise ValueError("Prior assigns mass outside the region")
        total = float(self.p_tile.sum())
        if abs(total - 1.0) > PROBABILITY_TOLERANCE:
            raise ValueError(f"Prior must sum to 1, got {total}")
        self.p_tile.flags.writeable = False
        self.region.flags.writeable = False
        return self

    @property
    def n_tiles(self) -> int:
        return int(self.p_tile.size)

    @classmethod
    def from_weights(cls, weights: ArrayLike, region: ArrayLike) -> "PriorRaster":
        """Normalize non-negative weights to a prior over the region.

        Negative weights are clipped to 0 and weights outside the region are
        dropped before normalizing.

        Raises:
            ConfigurationError: If no mass remains inside the region
        """
        w = np.array(weights, dtype=np.float64, copy=True).ravel()
        mask = np.array(region, dtype=bool).ravel()
        if w.shape != mask.shape:
            raise ConfigurationError(
                f"Prior weights have {w.size} values but region has {mask.size} flags"
            )
        if not np.isfinite(w).all():
            raise ConfigurationError("Prior weights must be finite")
        w = np.where(mask, np.clip(w, 0.0, None), 0.0)
        total = w.sum()
        if not total > 0:
            raise ConfigurationError("Prior has zero mass inside the region")
        return cls(p_tile=w / total, region=mask)

    # ------------------------------------------------------------------
    # Raster <-> table conversions
    # ------------------------------------------------------------------
    def to_entries(self) -> tuple[PriorEntry, ...]:
        """One PriorEntry per in-region tile, ascending tile id."""
        return tuple(
            PriorEntry(tile_id=int(t), p_tile=float(self.p_tile[t]))
            for t in np.flatnonzero(self.region)
        )

    @classmethod
    def from_entries(
        cls, grid: Grid, entries: Iterable[PriorEntry], region: ArrayLike | None = None
    ) -> "PriorRaster":
        """Dense prior from sparse entries; missing in-region tiles get 0.

        Raises:
            ConfigurationError: If a tile id is outside the grid or repeated, or
                the region does not have one flag per tile
        """
        mask = np.ones(grid.n_tiles, dtype=bool)
        if region is not None:
            mask = np.asarray(region, dtype=bool).ravel()
            if mask.shape != (grid.n_tiles,):
                raise ConfigurationError(
                    f"Region has {mask.size} flags, grid has {grid.n_tiles} tiles"
                )
        values = np.zeros(grid.n_tiles, dtype=np.float64)
        seen: set[int] = set()
        for entry in entries:
            tid = grid.check_tile_id(entry.tile_id)
            if tid in seen:
                raise ConfigurationError(f"Tile id {tid} listed twice")
            seen.add(tid)
            values[tid] = entry.p_tile
        return cls(p_tile=values, region=mask)


# ---------------------------------------------------------------------------
# Posterior
# ---------------------------------------------------------------------------
class PosteriorRow(BaseModel):
    """One (tile, cell) record of a PosteriorTable."""

    tile_id: int
    cell_id: str
    p_tile_given_cell: float

    model_config = ConfigDict(frozen=True)


class PosteriorTable(KeyedTable):
    """P(tile | cell) for every cell with posterior mass."""

    p_tile_given_cell: NDArray[np.float64]

    value_columns: ClassVar[tuple[str, ...]] = ("p_tile_given_cell",)
    row_type: ClassVar[type[BaseModel]] = PosteriorRow

    @model_validator(mode="after")
    def validate_normalized(self) -> "PosteriorTable":
        _check_unit_groups(self.cell_id, self.p_tile_given_cell, "cell")
        return self


class PosteriorResult(BaseModel):
    """Posterior table plus the cells that ended up without mass."""

    table: PosteriorTable
    warnings: tuple[ZeroMassWarning, ...] = ()

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @property
    def zero_mass_cells(self) -> tuple[str, ...]:
        return tuple(w.cell_id for w in self.warnings)
