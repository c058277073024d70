"""Root pytest configuration for all tests.

Shared grids and parameter bundles. Domain tests build value objects
directly; nothing here performs I/O.

Grid reference:
- square_grid: 10 x 10 tiles of 100 m over [0, 1000] x [0, 1000], EPSG:3035
  tile 0 centroid (50, 950), tile 9 centroid (950, 950), tile 10 (50, 850)
- line_grid: 1 x 21 tiles of 50 m, centroids (0, 0), (50, 0), ... (1000, 0)
"""

import pytest

from domain.coverage.value_objects import Cell
from domain.grid.value_objects import BoundingBox, Grid
from domain.parameters import ModelParameters

PROJECTED_CRS = "EPSG:3035"


@pytest.fixture
def square_grid() -> Grid:
    return Grid(
        bounds=BoundingBox(min_x=0.0, min_y=0.0, max_x=1000.0, max_y=1000.0),
        resolution=100.0,
        crs=PROJECTED_CRS,
    )


@pytest.fixture
def line_grid() -> Grid:
    return Grid(
        bounds=BoundingBox(min_x=-25.0, min_y=-25.0, max_x=1025.0, max_y=25.0),
        resolution=50.0,
        crs=PROJECTED_CRS,
    )


@pytest.fixture
def omni_params() -> ModelParameters:
    """No angular losses at all: omni azimuth plane, flat elevation plane."""
    return ModelParameters(
        ple=4.0,
        reference_distance=1.0,
        tilt=0.0,
        azimuth_beam_width=360.0,
        azimuth_db_back=0.0,
        elevation_beam_width=360.0,
        elevation_db_back=0.0,
    )


@pytest.fixture
def make_cell():
    """Factory for cells at ground level with sensible defaults."""

    def _make(cell_id: str, x: float, y: float, **overrides) -> Cell:
        fields = {"cell_id": cell_id, "x": x, "y": y, "height": 0.0}
        fields.update(overrides)
        return Cell(**fields)

    return _make
