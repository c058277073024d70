"""Location Bounded Context - Prior engine.

P(tile) as a dense PriorRaster, zero outside the study region:

- uniform_prior: equal mass on every region tile
- network_prior: proportional to the best (or summed) dominance at the tile
- layer_prior / categorical_prior: weighted external layers
- composite_prior: weighted mix of already-normalized priors

Every builder renormalizes its result, so sums stay at 1 even after
floating-point accumulation.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Hashable, Mapping, Sequence
from typing import Literal

import numpy as np
from numpy.typing import ArrayLike, NDArray

from domain.coverage.value_objects import SignalTable
from domain.errors import ConfigurationError
from domain.grid.value_objects import Grid
from domain.location.value_objects import PROBABILITY_TOLERANCE, PriorRaster

logger = logging.getLogger(__name__)

NetworkAggregation = Literal["max", "sum"]


def region_mask(grid: Grid, region: ArrayLike | None) -> NDArray[np.bool_]:
    """Boolean mask per tile id; None selects the whole grid."""
    if region is None:
        return np.ones(grid.n_tiles, dtype=bool)
    mask = np.array(region, dtype=bool).ravel()
    if mask.shape != (grid.n_tiles,):
        raise ConfigurationError(
            f"Region has {mask.size} flags, grid has {grid.n_tiles} tiles"
        )
    return mask


def uniform_prior(grid: Grid, region: ArrayLike | None = None) -> PriorRaster:
    """1 / |region| inside the region, 0 outside."""
    mask = region_mask(grid, region)
    return PriorRaster.from_weights(mask.astype(np.float64), mask)


def network_prior(
    grid: Grid,
    signal: SignalTable,
    region: ArrayLike | None = None,
    aggregation: NetworkAggregation = "max",
) -> PriorRaster:
    """Prior proportional to network coverage at each tile.

    Args:
        grid: Tile lattice
        signal: Dominance per (tile, cell)
        region: Study region mask
        aggregation: "max" (best server) or "sum" over cells

    Raises:
        ConfigurationError: On an unknown aggregation, tiles outside the grid,
            or no coverage inside the region
    """
    mask = region_mask(grid, region)
    if len(signal) and int(signal.tile_id.max()) >= grid.n_tiles:
        raise ConfigurationError("Signal table references tiles outside the grid")
    if aggregation == "max":
        coverage = np.zeros(grid.n_tiles, dtype=np.float64)
        np.maximum.at(coverage, signal.tile_id, signal.dominance)
    elif aggregation == "sum":
        coverage = np.bincount(signal.tile_id, weights=signal.dominance, minlength=grid.n_tiles)
    else:
        raise ConfigurationError(f"Unknown network aggregation {aggregation!r}")
    logger.debug(
        "Network prior: %d of %d region tiles covered",
        int((coverage[mask] > 0).sum()),
        int(mask.sum()),
    )
    return PriorRaster.from_weights(coverage, mask)


def layer_prior(
    grid: Grid,
    layers: Mapping[str, ArrayLike],
    weights: Mapping[str, float],
    region: ArrayLike | None = None,
) -> PriorRaster:
    """Weighted sum of continuous per-tile layers (e.g. population, land use).

    Negative sums are clipped to 0 before normalizing.

    Raises:
        ConfigurationError: If layer and weight names differ
    """
    if not layers:
        raise ConfigurationError("layer_prior needs at least one layer")
    if set(layers) != set(weights):
        raise ConfigurationError(
            f"Layers {sorted(layers)} do not match weights {sorted(weights)}"
        )
    total = np.zeros(grid.n_tiles, dtype=np.float64)
    for name in sorted(layers):
        total += float(weights[name]) * grid.aligned(layers[name], name=name)
    return PriorRaster.from_weights(total, region_mask(grid, region))


def categorical_prior(
    grid: Grid,
    categories: Sequence[Hashable | None],
    weights: Mapping[Hashable, float],
    region: ArrayLike | None = None,
) -> PriorRaster:
    """Prior from one categorical layer with a weight per category.

    Tiles whose category is None get weight 0.

    Raises:
        ConfigurationError: If the layer length differs from the grid, or a
            region tile has a category without a weight
    """
    if len(categories) != grid.n_tiles:
        raise ConfigurationError(
            f"Category layer has {len(categories)} entries, grid has {grid.n_tiles} tiles"
        )
    mask = region_mask(grid, region)
    values = np.zeros(grid.n_tiles, dtype=np.float64)
    for tile_id, category in enumerate(categories):
        if category is None or not mask[tile_id]:
            continue
        if category not in weights:
            raise ConfigurationError(f"No weight for category {category!r}")
        values[tile_id] = float(weights[category])
    return PriorRaster.from_weights(values, mask)


def composite_prior(priors: Sequence[PriorRaster], weights: Sequence[float]) -> PriorRaster:
    """Weighted mix of normalized priors, renormalized.

    The region of the result is the union of the component regions.

    Raises:
        ConfigurationError: If fewer than 2 priors, counts differ, a weight is
            negative, weights do not sum to 1, or the priors differ in size
    """
    if len(priors) < 2:
        raise ConfigurationError("composite_prior needs at least 2 priors")
    if len(weights) != len(priors):
        raise ConfigurationError(
            f"{len(weights)} weight(s) given for {len(priors)} prior(s)"
        )
    if any(not math.isfinite(w) or w < 0 for w in weights):
        raise ConfigurationError(f"Weights must be finite and non-negative: {list(weights)}")
    total_weight = math.fsum(weights)
    if abs(total_weight - 1.0) > PROBABILITY_TOLERANCE:
        raise ConfigurationError(f"Weights must sum to 1, got {total_weight}")
    sizes = {p.n_tiles for p in priors}
    if len(sizes) != 1:
        raise ConfigurationError(f"Priors differ in size: {sorted(sizes)}")

    combined = np.zeros(priors[0].n_tiles, dtype=np.float64)
    region = np.zeros(priors[0].n_tiles, dtype=bool)
    for prior, weight in zip(priors, weights):
        combined += weight * prior.p_tile
        region |= prior.region
    return PriorRaster.from_weights(combined, region)
