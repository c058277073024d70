"""Grid Bounded Context - Domain Services.

Pure geometry between a point and the tile centroids of a Grid.
Projected CRSs use planar distances; geographic CRSs use geodesics on the
CRS ellipsoid (pyproj.Geod), the same way terrain profiles are measured.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray

from domain.grid.value_objects import Grid, geod_for


def distances_and_bearings(
    grid: Grid, x: float, y: float
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Horizontal distance and bearing from (x, y) to every tile centroid.

    Args:
        grid: Tile lattice (its CRS decides planar vs geodesic measurement)
        x: Easting / longitude of the origin, in grid CRS units
        y: Northing / latitude of the origin, in grid CRS units

    Returns:
        (distance_m, bearing_deg) indexed by tile id. Bearings are clockwise
        from north in [0, 360); the bearing to a coincident tile is 0.
    """
    xs, ys = grid.centroids()
    if grid.is_geographic:
        origin_x = np.full_like(xs, x)
        origin_y = np.full_like(ys, y)
        azimuth, _, distance = geod_for(grid.crs).inv(origin_x, origin_y, xs, ys)
        distance = np.abs(np.asarray(distance, dtype=np.float64))
        bearing = np.mod(np.asarray(azimuth, dtype=np.float64), 360.0)
    else:
        dx = xs - x
        dy = ys - y
        distance = np.hypot(dx, dy)
        bearing = np.mod(np.degrees(np.arctan2(dx, dy)), 360.0)
    bearing = np.where(distance == 0, 0.0, bearing)
    return distance, bearing


def distance_to_tiles(grid: Grid, x: float, y: float) -> NDArray[np.float64]:
    """Horizontal distance from (x, y) to every tile centroid, in metres."""
    distance, _ = distances_and_bearings(grid, x, y)
    return distance
