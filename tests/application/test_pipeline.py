"""End-to-end tests for GeolocationPipeline.

two_tile_grid has exactly two tiles, centroids (50, 50) and (150, 50). With
a 60 m range a cell on each centroid only reaches its own tile.
"""

from __future__ import annotations

import numpy as np
import pytest

from application import GeolocationPipeline, PipelineResult
from domain.errors import ConfigurationError, DataGapError, ZeroMassWarning
from domain.grid.value_objects import BoundingBox, Grid
from domain.location.likelihood import VoronoiLikelihood
from domain.location.posterior import REASON_NO_ROWS, REASON_ZERO_PRIOR
from domain.location.value_objects import PriorRaster
from domain.parameters import ModelParameters


@pytest.fixture
def two_tile_grid() -> Grid:
    return Grid(
        bounds=BoundingBox(min_x=0.0, min_y=0.0, max_x=200.0, max_y=100.0),
        resolution=100.0,
        crs="EPSG:3035",
    )


@pytest.fixture
def short_range(omni_params) -> ModelParameters:
    return omni_params.model_copy(update={"max_range": 60.0})


def posterior_dict(result: PipelineResult) -> dict[tuple[int, str], float]:
    return {(r.tile_id, r.cell_id): r.p_tile_given_cell for r in result.posterior.rows()}


# ===========================================================================
# Scenarios
# ===========================================================================
def test_disjoint_cells_locate_exactly(two_tile_grid, short_range, make_cell):
    cells = [make_cell("A", 50.0, 50.0), make_cell("B", 150.0, 50.0)]

    result = GeolocationPipeline(short_range).run(two_tile_grid, cells)

    assert len(result.signal) == 2
    assert posterior_dict(result) == {(0, "A"): 1.0, (1, "B"): 1.0}
    assert result.warnings == ()
    assert result.data_gaps == {}
    np.testing.assert_allclose(result.prior.p_tile, [0.5, 0.5])


@pytest.mark.parametrize("likelihood", ["voronoi", VoronoiLikelihood()])
def test_voronoi_likelihood(two_tile_grid, short_range, make_cell, likelihood):
    cells = [make_cell("A", 40.0, 50.0), make_cell("B", 160.0, 50.0)]

    result = GeolocationPipeline(short_range, likelihood=likelihood).run(two_tile_grid, cells)

    assert result.likelihood.model == "voronoi"
    assert posterior_dict(result) == {(0, "A"): 1.0, (1, "B"): 1.0}


def test_overlapping_cells_share_tiles(line_grid, omni_params, make_cell):
    cells = [make_cell("A", 0.0, 0.0), make_cell("B", 1000.0, 0.0)]

    result = GeolocationPipeline(omni_params).run(line_grid, cells)
    a = result.posterior.to_raster(line_grid, "A")
    b = result.posterior.to_raster(line_grid, "B")

    assert a.sum() == pytest.approx(1.0)
    assert b.sum() == pytest.approx(1.0)
    assert a.argmax() == 0
    assert b.argmax() == 20
    # Symmetric layout gives mirrored posteriors
    np.testing.assert_allclose(a, b[::-1])


def test_cell_without_coverage_is_reported(two_tile_grid, short_range, make_cell):
    cells = [make_cell("A", 50.0, 50.0), make_cell("far", 5000.0, 5000.0)]

    result = GeolocationPipeline(short_range).run(two_tile_grid, cells)

    assert result.warnings == (ZeroMassWarning("far", REASON_NO_ROWS),)
    assert result.posterior.cell_ids() == ("A",)


def test_region_mask_removes_prior_mass(two_tile_grid, short_range, make_cell):
    params = ModelParameters.model_validate(
        {**short_range.model_dump(), "region_mask": [True, False]}
    )
    cells = [make_cell("A", 50.0, 50.0), make_cell("B", 150.0, 50.0)]

    result = GeolocationPipeline(params).run(two_tile_grid, cells)

    assert result.warnings == (ZeroMassWarning("B", REASON_ZERO_PRIOR),)
    assert posterior_dict(result) == {(0, "A"): 1.0}


def test_network_prior(line_grid, omni_params, make_cell):
    cells = [make_cell("A", 0.0, 0.0, max_range=200.0)]

    result = GeolocationPipeline(omni_params).run(line_grid, cells, prior="network")

    assert result.prior.p_tile[5:].sum() == 0.0
    assert result.prior.p_tile[0] > result.prior.p_tile[4]


def test_explicit_prior(two_tile_grid, short_range, make_cell):
    prior = PriorRaster.from_weights([3.0, 1.0], [True, True])
    cells = [make_cell("A", 50.0, 50.0)]

    result = GeolocationPipeline(short_range).run(two_tile_grid, cells, prior=prior)

    assert result.prior is prior


def test_prior_must_fit_grid(two_tile_grid, short_range, make_cell):
    prior = PriorRaster.from_weights([1.0, 1.0, 1.0], [True, True, True])
    with pytest.raises(ConfigurationError, match="Prior has 3 tiles"):
        GeolocationPipeline(short_range).run(two_tile_grid, [make_cell("A", 50.0, 50.0)], prior=prior)


def test_unknown_prior_kind(two_tile_grid, short_range, make_cell):
    with pytest.raises(ConfigurationError, match="Unknown prior kind"):
        GeolocationPipeline(short_range).run(two_tile_grid, [make_cell("A", 50.0, 50.0)], prior="census")


def test_duplicate_cells(two_tile_grid, short_range, make_cell):
    cells = [make_cell("A", 50.0, 50.0), make_cell("A", 150.0, 50.0)]
    with pytest.raises(ConfigurationError, match="Duplicate cell id"):
        GeolocationPipeline(short_range).run(two_tile_grid, cells)


def test_data_gaps_are_reported(two_tile_grid, short_range, make_cell):
    cells = [make_cell("A", 50.0, 50.0)]

    def terrain(x, y):
        return None if x > 100 else 0.0

    result = GeolocationPipeline(short_range).run(two_tile_grid, cells, terrain=terrain)
    assert result.data_gaps == {"terrain": (1,)}

    with pytest.raises(DataGapError):
        GeolocationPipeline(short_range).run(
            two_tile_grid, cells, terrain=terrain, on_data_gap="raise"
        )


def test_unknown_likelihood_name():
    with pytest.raises(ConfigurationError, match="Unknown likelihood model"):
        GeolocationPipeline(likelihood="bayes")


# ===========================================================================
# Larger network
# ===========================================================================
@pytest.mark.slow
def test_sector_network_threaded(make_cell):
    grid = Grid(
        bounds=BoundingBox(min_x=0.0, min_y=0.0, max_x=5000.0, max_y=5000.0),
        resolution=100.0,
        crs="EPSG:3035",
    )
    rng = np.random.default_rng(7)
    cells = [
        make_cell(
            f"site{site:02d}-{sector}",
            float(x),
            float(y),
            height=30.0,
            azimuth=120.0 * sector,
        )
        for site, (x, y) in enumerate(rng.uniform(500.0, 4500.0, size=(12, 2)))
        for sector in range(3)
    ]
    params = ModelParameters(max_range=3000.0)

    serial = GeolocationPipeline(params).run(grid, cells)
    threaded = GeolocationPipeline(params, max_workers=4).run(grid, cells, prior="network")

    np.testing.assert_array_equal(serial.signal.strength_dbm, threaded.signal.strength_dbm)
    assert serial.warnings == ()
    for result in (serial, threaded):
        for cell in cells:
            raster = result.posterior.to_raster(grid, cell.cell_id)
            assert raster.sum() == pytest.approx(1.0)
