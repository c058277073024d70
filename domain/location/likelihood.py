"""Location Bounded Context - Likelihood engine.

P(cell | tile) under a closed set of models sharing one contract,
`compute(grid, cells, context) -> LikelihoodTable`:

- VoronoiLikelihood: nearest cell wins the tile (probability 1); equal
  distances go to the lowest cell id in lexicographic order, so "10" beats "9".
- StrengthLikelihood: each cell's share of the tile's total dominance.

New models are added to LIKELIHOOD_MODELS explicitly.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Protocol

import numpy as np
from pydantic import BaseModel, ConfigDict, Field

from domain.coverage.propagation import check_unique_cells
from domain.coverage.value_objects import Cell, SignalTable
from domain.errors import ConfigurationError
from domain.grid.services import distance_to_tiles
from domain.grid.tables import group_sum
from domain.grid.value_objects import Grid
from domain.location.value_objects import LikelihoodTable
from domain.parameters import ModelParameters

logger = logging.getLogger(__name__)


class LikelihoodContext(BaseModel):
    """Inputs a likelihood model may need beyond grid and cells."""

    signal: SignalTable | None = None
    params: ModelParameters = Field(default_factory=ModelParameters)

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)


class LikelihoodModel(Protocol):
    """Contract shared by all likelihood models."""

    name: str

    def compute(
        self, grid: Grid, cells: Sequence[Cell], context: LikelihoodContext
    ) -> LikelihoodTable: ...


class VoronoiLikelihood:
    """Nearest-cell partition of the grid; ignores signal physics.

    Ties go to the cell id that sorts first as a string ("10" before "9").
    """

    name = "voronoi"

    def compute(
        self, grid: Grid, cells: Sequence[Cell], context: LikelihoodContext | None = None
    ) -> LikelihoodTable:
        check_unique_cells(cells)
        ordered = sorted(cells, key=lambda c: c.cell_id)
        if not ordered:
            return LikelihoodTable(tile_id=(), cell_id=(), p_cell_given_tile=(), model=self.name)

        best_distance = np.full(grid.n_tiles, np.inf)
        best_cell = np.zeros(grid.n_tiles, dtype=np.intp)
        # Strict comparison keeps the earlier (lower id) cell on ties
        for index, cell in enumerate(ordered):
            distance = distance_to_tiles(grid, cell.x, cell.y)
            closer = distance < best_distance
            best_distance[closer] = distance[closer]
            best_cell[closer] = index

        ids = np.array([c.cell_id for c in ordered])
        logger.debug("Voronoi likelihood: %d tiles over %d cells", grid.n_tiles, len(ordered))
        return LikelihoodTable(
            tile_id=np.arange(grid.n_tiles, dtype=np.int64),
            cell_id=ids[best_cell],
            p_cell_given_tile=np.ones(grid.n_tiles),
            model=self.name,
        )


class StrengthLikelihood:
    """Dominance share per tile: s(tile, cell) / sum over cells s(tile, c').

    Parameters
    ----------
    dominance_threshold: float | None
        Rows with lower dominance are dropped before normalizing; defaults to
        the context parameters.
    max_cells_per_tile: int | None
        Keep only the k most dominant cells per tile (ties to lower cell id);
        defaults to the context parameters.
    """

    name = "strength"

    def __init__(
        self,
        dominance_threshold: float | None = None,
        max_cells_per_tile: int | None = None,
    ) -> None:
        if dominance_threshold is not None and not (0 <= dominance_threshold < 1):
            raise ConfigurationError(
                f"dominance_threshold must be in [0, 1): {dominance_threshold}"
            )
        if max_cells_per_tile is not None and max_cells_per_tile < 1:
            raise ConfigurationError(f"max_cells_per_tile must be >= 1: {max_cells_per_tile}")
        self.dominance_threshold = dominance_threshold
        self.max_cells_per_tile = max_cells_per_tile

    def compute(
        self, grid: Grid, cells: Sequence[Cell] | None, context: LikelihoodContext | None
    ) -> LikelihoodTable:
        """Normalize dominance per tile.

        Args:
            grid: Tile lattice the signal table is keyed by
            cells: Restrict to these cells; None uses every cell in the table
            context: Must carry the SignalTable

        Raises:
            ConfigurationError: If no signal table is supplied or it
                references tiles outside the grid
        """
        if context is None or context.signal is None:
            raise ConfigurationError("Strength likelihood requires a signal table")
        signal = context.signal
        params = context.params
        threshold = (
            params.dominance_threshold
            if self.dominance_threshold is None
            else self.dominance_threshold
        )
        top_k = (
            params.max_cells_per_tile
            if self.max_cells_per_tile is None
            else self.max_cells_per_tile
        )

        if len(signal) and int(signal.tile_id.max()) >= grid.n_tiles:
            raise ConfigurationError("Signal table references tiles outside the grid")

        keep = (signal.dominance > 0) & (signal.dominance >= threshold)
        if cells is not None:
            check_unique_cells(cells)
            keep &= np.isin(signal.cell_id, [c.cell_id for c in cells])
        tile_id = signal.tile_id[keep]
        cell_id = signal.cell_id[keep]
        dom = signal.dominance[keep]

        # Sort by tile, then dominance descending, then cell id
        order = np.lexsort((cell_id, -dom, tile_id))
        tile_id, cell_id, dom = tile_id[order], cell_id[order], dom[order]

        if top_k is not None and tile_id.size:
            starts = np.r_[True, tile_id[1:] != tile_id[:-1]]
            position = np.arange(tile_id.size)
            rank = position - np.maximum.accumulate(np.where(starts, position, 0))
            within = rank < top_k
            tile_id, cell_id, dom = tile_id[within], cell_id[within], dom[within]

        # Every remaining row has positive dominance, so no tile sum is zero
        _, sums, inverse = group_sum(tile_id, dom)
        probability = dom / sums[inverse] if dom.size else dom

        logger.debug(
            "Strength likelihood: %d row(s) over %d tile(s) (%d dropped)",
            tile_id.size,
            np.unique(tile_id).size,
            len(signal) - tile_id.size,
        )
        return LikelihoodTable(
            tile_id=tile_id,
            cell_id=cell_id,
            p_cell_given_tile=probability,
            model=self.name,
        )


LIKELIHOOD_MODELS: dict[str, Callable[[], LikelihoodModel]] = {
    VoronoiLikelihood.name: VoronoiLikelihood,
    StrengthLikelihood.name: StrengthLikelihood,
}


def likelihood_model(name: str) -> LikelihoodModel:
    """Instantiate a registered likelihood model by name.

    Raises:
        ConfigurationError: If the name is not registered
    """
    try:
        return LIKELIHOOD_MODELS[name]()
    except KeyError:
        raise ConfigurationError(
            f"Unknown likelihood model {name!r}; expected one of {sorted(LIKELIHOOD_MODELS)}"
        ) from None
