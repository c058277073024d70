"""Location Bounded Context - Posterior engine.

Bayes update per cell:

    P(tile | cell) = P(tile) * P(cell | tile) / sum_t' P(t') * P(cell | t')

Cells whose normalizing sum is zero (every covered tile has zero prior, or
the cell has no likelihood rows at all) are left out of the table and
reported as ZeroMassWarning entries of the result. Rows with zero posterior
probability are not stored.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

import numpy as np

from domain.errors import ConfigurationError, ZeroMassWarning
from domain.grid.tables import group_sum
from domain.grid.value_objects import Grid
from domain.location.value_objects import (
    LikelihoodTable,
    PosteriorResult,
    PosteriorTable,
    PriorRaster,
)

logger = logging.getLogger(__name__)

REASON_NO_ROWS = "no likelihood rows"
REASON_ZERO_PRIOR = "zero prior mass over covered tiles"


def compute_posterior(
    prior: PriorRaster,
    likelihood: LikelihoodTable,
    grid: Grid,
    cell_ids: Iterable[str] | None = None,
) -> PosteriorResult:
    """Combine a prior and a likelihood into P(tile | cell).

    Args:
        prior: Dense P(tile) aligned with grid
        likelihood: P(cell | tile) from any likelihood model
        grid: Tile lattice both inputs are keyed by
        cell_ids: Cells the caller expects in the output; those without any
            likelihood row are reported as zero-mass instead of vanishing

    Returns:
        PosteriorResult with the normalized table and one ZeroMassWarning per
        cell left out

    Raises:
        ConfigurationError: If prior or likelihood do not fit the grid
    """
    if prior.n_tiles != grid.n_tiles:
        raise ConfigurationError(
            f"Prior has {prior.n_tiles} tiles, grid has {grid.n_tiles}"
        )
    if len(likelihood) and int(likelihood.tile_id.max()) >= grid.n_tiles:
        raise ConfigurationError("Likelihood references tiles outside the grid")

    joint = prior.p_tile[likelihood.tile_id] * likelihood.p_cell_given_tile
    cells, sums, inverse = group_sum(likelihood.cell_id, joint)

    warnings: list[ZeroMassWarning] = []
    for cell_id in cells[sums <= 0]:
        warnings.append(ZeroMassWarning(str(cell_id), REASON_ZERO_PRIOR))
    if cell_ids is not None:
        present = {str(c) for c in cells}
        for cell_id in sorted(set(cell_ids) - present):
            warnings.append(ZeroMassWarning(cell_id, REASON_NO_ROWS))
    for warning in warnings:
        logger.warning("Cell %s left out of posterior: %s", warning.cell_id, warning.reason)

    row_sums = sums[inverse]
    keep = (row_sums > 0) & (joint > 0)
    table = PosteriorTable(
        tile_id=likelihood.tile_id[keep],
        cell_id=likelihood.cell_id[keep],
        p_tile_given_cell=joint[keep] / row_sums[keep],
    )
    logger.debug(
        "Posterior: %d row(s) for %d cell(s), %d without mass",
        len(table),
        int((sums > 0).sum()),
        len(warnings),
    )
    return PosteriorResult(table=table, warnings=tuple(warnings))
