"""Terrain Bounded Context - Domain Services.

Pure domain logic for terrain lookups.
NO I/O operations - DEM loading belongs to the ingestion layer, which hands
over a TerrainGrid or any callable matching the TerrainSampler port.
"""

from __future__ import annotations

import math

from domain.terrain.repositories import TerrainSampler
from domain.terrain.value_objects import TerrainGrid


# ---------------------------------------------------------------------------
# Helper: Bounds Check
# ---------------------------------------------------------------------------
def is_within_bounds(grid: TerrainGrid, x: float, y: float) -> bool:
    """Check if (x, y) is within the terrain extent (inclusive)."""
    b = grid.bounds
    return b.min_x <= x <= b.max_x and b.min_y <= y <= b.max_y


# ---------------------------------------------------------------------------
# Bilinear Interpolation
# ---------------------------------------------------------------------------
def bilinear_interpolate(grid: TerrainGrid, x: float, y: float) -> tuple[float, bool]:
    """Interpolate elevation at an arbitrary point using the 4 nearest pixels.

    Returns (elevation, is_nodata).
    If any of the 4 neighbors is NaN, returns (NaN, True).

    Boundary behavior:
        Points exactly on grid boundaries use clamped indices, so bilinear
        degrades to linear on edges and nearest on corners.
    """
    # Row 0 = north edge (max_y), so y is inverted
    px = (x - grid.bounds.min_x) / grid.resolution[0]
    py = (grid.bounds.max_y - y) / grid.resolution[1]

    height, width = grid.data.shape

    x0 = int(math.floor(px))
    y0 = int(math.floor(py))
    x1 = x0 + 1
    y1 = y0 + 1

    x0 = max(0, min(x0, width - 1))
    x1 = max(0, min(x1, width - 1))
    y0 = max(0, min(y0, height - 1))
    y1 = max(0, min(y1, height - 1))

    q11 = float(grid.data[y0, x0])  # top-left
    q21 = float(grid.data[y0, x1])  # top-right
    q12 = float(grid.data[y1, x0])  # bottom-left
    q22 = float(grid.data[y1, x1])  # bottom-right

    if math.isnan(q11) or math.isnan(q21) or math.isnan(q12) or math.isnan(q22):
        return (float("nan"), True)

    fx = px - math.floor(px)
    fy = py - math.floor(py)

    elevation = (
        q11 * (1 - fx) * (1 - fy)
        + q21 * fx * (1 - fy)
        + q12 * (1 - fx) * fy
        + q22 * fx * fy
    )

    return (float(elevation), False)


# ---------------------------------------------------------------------------
# Sampler Adapter
# ---------------------------------------------------------------------------
def terrain_sampler(grid: TerrainGrid) -> TerrainSampler:
    """Wrap a TerrainGrid as a TerrainSampler.

    Points outside the raster or touching NoData pixels sample as None, which
    propagation treats as a data gap.

    Example:
        >>> sampler = terrain_sampler(dem)
        >>> context = PropagationContext.build(grid, terrain=sampler)
    """

    def sample(x: float, y: float) -> float | None:
        if not is_within_bounds(grid, x, y):
            return None
        elevation, is_nodata = bilinear_interpolate(grid, x, y)
        return None if is_nodata else elevation

    return sample
