"""End-to-end geolocation pipeline.

Orchestrates the domain stages for a whole cellplan:

1) Sample terrain / environment once per grid (PropagationContext)
2) Propagate every cell, concurrently when max_workers > 1
3) Build the likelihood with the configured model
4) Build or accept the prior
5) Bayes update per cell

Each stage consumes the previous stage's immutable output; nothing is
shared mutably between stages or worker threads.
"""

from __future__ import annotations

import logging
from collections.abc import Hashable, Iterable, Mapping
from typing import Literal

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict

from domain.coverage.propagation import (
    DataGapPolicy,
    PropagationContext,
    PropagationModel,
    check_unique_cells,
)
from domain.coverage.radiation import LossCombiner, combine_additive
from domain.coverage.value_objects import Cell, EnvironmentLayer, SignalTable
from domain.errors import ConfigurationError, ZeroMassWarning
from domain.grid.value_objects import Grid
from domain.location.likelihood import LikelihoodContext, LikelihoodModel, likelihood_model
from domain.location.posterior import compute_posterior
from domain.location.prior import network_prior, uniform_prior
from domain.location.value_objects import LikelihoodTable, PosteriorTable, PriorRaster
from domain.parameters import ModelParameters
from domain.terrain.repositories import EnvironmentSampler, TerrainSampler
from domain.terrain.value_objects import TerrainGrid

logger = logging.getLogger(__name__)

PriorKind = Literal["uniform", "network"]


class PipelineResult(BaseModel):
    """Every intermediate table of one pipeline run."""

    signal: SignalTable
    likelihood: LikelihoodTable
    prior: PriorRaster
    posterior: PosteriorTable
    warnings: tuple[ZeroMassWarning, ...] = ()
    data_gaps: dict[str, tuple[int, ...]] = {}

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)


class GeolocationPipeline:
    """Runs propagation, likelihood, prior and posterior for a cellplan.

    Parameters
    ----------
    params: ModelParameters | None
        Parameter bundle; defaults are used when None.
    likelihood: LikelihoodModel | str
        A likelihood model instance or a registered name ("strength",
        "voronoi").
    combine_losses: LossCombiner
        Azimuth/elevation loss combination policy.
    max_workers: int | None
        Thread pool size for per-cell propagation; None or 1 runs serially.
    """

    def __init__(
        self,
        params: ModelParameters | None = None,
        likelihood: LikelihoodModel | str = "strength",
        combine_losses: LossCombiner = combine_additive,
        max_workers: int | None = None,
    ) -> None:
        self.params = params or ModelParameters()
        self.likelihood = likelihood_model(likelihood) if isinstance(likelihood, str) else likelihood
        self.propagation = PropagationModel(self.params, combine_losses)
        self.max_workers = max_workers

    def run(
        self,
        grid: Grid,
        cells: Iterable[Cell],
        prior: PriorRaster | PriorKind = "uniform",
        terrain: TerrainSampler | TerrainGrid | None = None,
        environment: EnvironmentSampler | EnvironmentLayer | None = None,
        environment_weights: Mapping[Hashable, float] | None = None,
        on_data_gap: DataGapPolicy = "fallback",
    ) -> PipelineResult:
        """Estimate P(tile | cell) for every cell.

        Raises:
            ConfigurationError: On duplicate cell ids, an unknown prior kind
                or a prior that does not fit the grid
            DataGapError: If on_data_gap="raise" and a sample is missing
        """
        cells = list(cells)
        check_unique_cells(cells)
        region = self.params.region_for(grid)

        context = PropagationContext.build(
            grid,
            terrain=terrain,
            environment=environment,
            environment_weights=environment_weights,
            on_data_gap=on_data_gap,
        )
        signal = self.propagation.signal_table(cells, grid, context, self.max_workers)

        likelihood = self.likelihood.compute(
            grid, cells, LikelihoodContext(signal=signal, params=self.params)
        )
        logger.info(
            "Likelihood (%s): %d row(s) over %d tile(s)",
            self.likelihood.name,
            len(likelihood),
            likelihood.tile_ids().size,
        )

        prior_raster = self._prior(prior, grid, signal, region)
        result = compute_posterior(
            prior_raster, likelihood, grid, cell_ids=[c.cell_id for c in cells]
        )
        logger.info(
            "Posterior: %d cell(s) estimated, %d without mass",
            len(result.table.cell_ids()),
            len(result.warnings),
        )
        return PipelineResult(
            signal=signal,
            likelihood=likelihood,
            prior=prior_raster,
            posterior=result.table,
            warnings=result.warnings,
            data_gaps=context.data_gaps,
        )

    def _prior(
        self,
        prior: PriorRaster | PriorKind,
        grid: Grid,
        signal: SignalTable,
        region: NDArray[np.bool_],
    ) -> PriorRaster:
        if isinstance(prior, PriorRaster):
            if prior.n_tiles != grid.n_tiles:
                raise ConfigurationError(
                    f"Prior has {prior.n_tiles} tiles, grid has {grid.n_tiles}"
                )
            return prior
        if prior == "uniform":
            return uniform_prior(grid, region)
        if prior == "network":
            return network_prior(grid, signal, region)
        raise ConfigurationError(f"Unknown prior kind {prior!r}")
