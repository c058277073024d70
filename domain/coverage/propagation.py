"""Coverage Bounded Context - Signal propagation.

Per-tile received strength for one cell:

    strength = P_dBm - 10 * ple * log10(max(d, d_ref) / d_ref) - L(az, el)

clipped below at the strength floor. d is the horizontal distance from the
mast to the tile centroid, ple is the cell's baseline exponent plus the
environment modifier of the tile, and L combines the azimuth and elevation
pattern losses (additive in dB unless another LossCombiner is supplied).
Tiles farther than the cell's maximum range produce no row.

Data gap policy:
    Terrain and environment layers are sampled once per grid when the
    PropagationContext is built. A missing sample is a DataGapError. With
    on_data_gap="fallback" (default) the tile gets a flat elevation of 0 m /
    a zero ple modifier, a warning is logged and the tile id is recorded in
    context.terrain_gaps / context.environment_gaps. With on_data_gap="raise"
    the DataGapError propagates to the caller.
"""

from __future__ import annotations

import logging
import math
import numbers
from collections.abc import Hashable, Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Literal

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict, model_validator

from domain.coverage.dominance import DominanceTransform
from domain.coverage.radiation import (
    LossCombiner,
    RadiationPattern,
    angular_offset,
    combine_additive,
)
from domain.coverage.value_objects import Cell, EnvironmentLayer, SignalTable
from domain.errors import ConfigurationError, DataGapError
from domain.grid.services import distances_and_bearings
from domain.grid.value_objects import Grid, parse_crs
from domain.parameters import ModelParameters
from domain.terrain.repositories import EnvironmentSampler, TerrainSampler
from domain.terrain.services import terrain_sampler
from domain.terrain.value_objects import TerrainGrid

# Module-level logger (reused across all calls)
logger = logging.getLogger(__name__)

DataGapPolicy = Literal["fallback", "raise"]


def _is_missing(value: object) -> bool:
    return value is None or (isinstance(value, numbers.Real) and math.isnan(float(value)))


def _handle_gaps(layer: str, gaps: list[int], policy: DataGapPolicy, fallback: str) -> None:
    if not gaps:
        return
    if policy == "raise":
        raise DataGapError(layer, gaps)
    logger.warning(
        "Missing %s sample at %d tile(s); using %s for those tiles",
        layer,
        len(gaps),
        fallback,
    )


class PropagationContext(BaseModel):
    """Read-only per-tile inputs shared by all cell computations.

    Build with PropagationContext.build(); the arrays are indexed by tile id.
    """

    grid: Grid
    elevation: NDArray[np.float64]
    environment: NDArray[np.float64] | None = None
    terrain_gaps: tuple[int, ...] = ()
    environment_gaps: tuple[int, ...] = ()

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @model_validator(mode="after")
    def validate_context(self) -> "PropagationContext":
        object.__setattr__(self, "elevation", self.grid.aligned(self.elevation, "elevation"))
        if self.environment is not None:
            object.__setattr__(
                self, "environment", self.grid.aligned(self.environment, "environment")
            )
        return self

    @property
    def data_gaps(self) -> dict[str, tuple[int, ...]]:
        """Layer name -> tiles that fell back to the documented default."""
        gaps = {"terrain": self.terrain_gaps, "environment": self.environment_gaps}
        return {layer: tiles for layer, tiles in gaps.items() if tiles}

    @classmethod
    def flat(cls, grid: Grid) -> "PropagationContext":
        """Context without terrain or environment."""
        return cls(grid=grid, elevation=np.zeros(grid.n_tiles))

    @classmethod
    def build(
        cls,
        grid: Grid,
        terrain: TerrainSampler | TerrainGrid | None = None,
        environment: EnvironmentSampler | EnvironmentLayer | None = None,
        environment_weights: Mapping[Hashable, float] | None = None,
        on_data_gap: DataGapPolicy = "fallback",
    ) -> "PropagationContext":
        """Sample terrain and environment at every tile centroid.

        Args:
            grid: Tile lattice
            terrain: Elevation sampler (or a TerrainGrid to sample bilinearly)
            environment: Land-use sampler or a precomputed EnvironmentLayer
            environment_weights: Category -> ple modifier, for samplers that
                return categories
            on_data_gap: "fallback" (default) or "raise"

        Raises:
            DataGapError: If on_data_gap="raise" and a sample is missing
            ConfigurationError: If a category has no weight or a TerrainGrid
                is not in the grid CRS
        """
        if on_data_gap not in ("fallback", "raise"):
            raise ConfigurationError(f"Unknown data gap policy: {on_data_gap!r}")

        elevation = np.zeros(grid.n_tiles, dtype=np.float64)
        terrain_gaps: list[int] = []
        if terrain is not None:
            sample = terrain
            if isinstance(terrain, TerrainGrid):
                if not parse_crs(terrain.crs).equals(parse_crs(grid.crs), ignore_axis_order=True):
                    raise ConfigurationError(
                        f"Terrain CRS {terrain.crs} does not match grid CRS {grid.crs}"
                    )
                logger.debug("Terrain raster NoData share: %.1f%%", 100.0 * terrain.nodata_ratio())
                sample = terrain_sampler(terrain)
            for tile_id, (x, y) in grid.tiles():
                value = sample(x, y)
                if _is_missing(value):
                    terrain_gaps.append(tile_id)
                else:
                    elevation[tile_id] = float(value)
            _handle_gaps("terrain", terrain_gaps, on_data_gap, "flat elevation 0 m")

        modifier: NDArray[np.float64] | None = None
        environment_gaps: list[int] = []
        if isinstance(environment, EnvironmentLayer):
            modifier = np.array(environment.values)
        elif environment is not None:
            modifier = np.zeros(grid.n_tiles, dtype=np.float64)
            for tile_id, (x, y) in grid.tiles():
                value = environment(x, y)
                if _is_missing(value):
                    environment_gaps.append(tile_id)
                elif isinstance(value, numbers.Real) and not isinstance(value, bool):
                    modifier[tile_id] = float(value)
                elif environment_weights is None or value not in environment_weights:
                    raise ConfigurationError(f"No environment weight for category {value!r}")
                else:
                    modifier[tile_id] = float(environment_weights[value])
            _handle_gaps("environment", environment_gaps, on_data_gap, "a zero ple modifier")

        return cls(
            grid=grid,
            elevation=elevation,
            environment=modifier,
            terrain_gaps=tuple(terrain_gaps),
            environment_gaps=tuple(environment_gaps),
        )


class PropagationModel:
    """Directional path-loss model producing per-tile strength for a cell.

    Parameters
    ----------
    params: ModelParameters
        Defaults for any antenna field a Cell leaves unset, plus reference
        distance, strength floor and dominance settings.
    combine_losses: LossCombiner
        How azimuth and elevation losses are merged; additive in dB by default.
    """

    def __init__(
        self, params: ModelParameters, combine_losses: LossCombiner = combine_additive
    ) -> None:
        self.params = params
        self.combine_losses = combine_losses
        self.dominance = DominanceTransform.from_parameters(params)

    def strength(
        self, cell: Cell, grid: Grid, context: PropagationContext | None = None
    ) -> tuple[NDArray[np.int64], NDArray[np.float64]]:
        """Strength (dBm) at every tile within range of the cell.

        Returns:
            (tile_ids, strength_dbm), tile ids ascending
        """
        context = self._context_for(grid, context)
        cell = cell.resolved(self.params)

        distance, bearing = distances_and_bearings(grid, cell.x, cell.y)
        tile_ids = np.flatnonzero(distance <= cell.max_range).astype(np.int64)
        d = distance[tile_ids]
        at_mast = d == 0

        # Elevation plane: depression angle from the antenna to the tile
        antenna_z = cell.ground_elevation + cell.height
        vertical = np.degrees(np.arctan2(antenna_z - context.elevation[tile_ids], d))
        elevation_offset = np.where(at_mast, 0.0, np.abs(vertical - cell.tilt))
        elevation_loss = RadiationPattern(
            beam_width=cell.elevation_beam_width, db_back=cell.elevation_db_back
        ).attenuation(elevation_offset)

        if cell.is_omnidirectional:
            azimuth_loss = np.zeros_like(d)
        else:
            azimuth_offset = np.where(at_mast, 0.0, angular_offset(bearing[tile_ids], cell.azimuth))
            azimuth_loss = RadiationPattern(
                beam_width=cell.azimuth_beam_width, db_back=cell.azimuth_db_back
            ).attenuation(azimuth_offset)

        ple = np.full_like(d, cell.ple)
        if context.environment is not None:
            ple = np.maximum(ple + context.environment[tile_ids], 0.0)

        d_ref = self.params.reference_distance
        path_loss = 10.0 * ple * np.log10(np.maximum(d, d_ref) / d_ref)
        strength = cell.power_dbm - path_loss - self.combine_losses(azimuth_loss, elevation_loss)
        return tile_ids, np.maximum(strength, self.params.strength_floor)

    def compute(
        self, cell: Cell, grid: Grid, context: PropagationContext | None = None
    ) -> SignalTable:
        """SignalTable rows (strength + dominance) of a single cell."""
        tile_ids, strength = self.strength(cell, grid, context)
        logger.debug("Cell %s: %d tile(s) within range", cell.cell_id, tile_ids.size)
        return SignalTable(
            tile_id=tile_ids,
            cell_id=np.full(tile_ids.size, cell.cell_id),
            strength_dbm=strength,
            dominance=np.asarray(self.dominance(strength), dtype=np.float64),
        )

    def signal_table(
        self,
        cells: Iterable[Cell],
        grid: Grid,
        context: PropagationContext | None = None,
        max_workers: int | None = None,
    ) -> SignalTable:
        """Compute and merge the rows of many cells.

        Cells are independent; with max_workers > 1 they run on a thread
        pool and the per-cell row sets are concatenated afterwards.

        Raises:
            ConfigurationError: If two cells share an id
        """
        cells = list(cells)
        check_unique_cells(cells)
        context = self._context_for(grid, context)

        if max_workers is None or max_workers <= 1 or len(cells) <= 1:
            parts = [self.compute(cell, grid, context) for cell in cells]
        else:
            results: dict[str, SignalTable] = {}
            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                futures = {
                    executor.submit(self.compute, cell, grid, context): cell.cell_id
                    for cell in cells
                }
                for future in as_completed(futures):
                    results[futures[future]] = future.result()
            parts = [results[cell.cell_id] for cell in cells]

        table = SignalTable.concat(parts)
        logger.info("Signal table: %d row(s) for %d cell(s)", len(table), len(cells))
        return table

    def _context_for(self, grid: Grid, context: PropagationContext | None) -> PropagationContext:
        if context is None:
            return PropagationContext.flat(grid)
        if context.grid != grid:
            raise ConfigurationError("Propagation context was built for a different grid")
        return context


def check_unique_cells(cells: Iterable[Cell]) -> None:
    """Raise ConfigurationError when a cell id occurs twice."""
    seen: set[str] = set()
    for cell in cells:
        if cell.cell_id in seen:
            raise ConfigurationError(f"Duplicate cell id {cell.cell_id!r}")
        seen.add(cell.cell_id)
