"""Grid Bounded Context - Value Objects.

Immutable description of the regular tile lattice every other context is
aligned with. All validation occurs at construction time via Pydantic.

Tile ids are row-major starting at the north-west corner:
    tile_id = row * n_cols + col, row 0 touching max_y, col 0 touching min_x.
"""

from __future__ import annotations

import math
from collections.abc import Iterator
from functools import lru_cache

import numpy as np
from numpy.typing import ArrayLike, NDArray
from pydantic import BaseModel, ConfigDict, model_validator
from pyproj import CRS, Geod
from pyproj.exceptions import CRSError

from domain.errors import ConfigurationError

# Relative slack when the box extent is an exact multiple of the resolution
_COUNT_TOLERANCE = 1e-9


@lru_cache(maxsize=32)
def parse_crs(crs: str) -> CRS:
    """Parse a CRS string once; raises ConfigurationError when pyproj rejects it."""
    try:
        return CRS.from_user_input(crs)
    except CRSError as e:
        raise ConfigurationError(f"Unknown CRS {crs!r}: {e}") from e


@lru_cache(maxsize=32)
def geod_for(crs: str) -> Geod:
    """Ellipsoid of a geographic CRS, for geodesic distances and bearings."""
    geod = parse_crs(crs).get_geod()
    return geod if geod is not None else Geod(ellps="WGS84")


def _tile_count(extent: float, resolution: float) -> int:
    n = extent / resolution
    nearest = round(n)
    if abs(n - nearest) <= _COUNT_TOLERANCE * max(1.0, n):
        return max(1, int(nearest))
    return max(1, math.ceil(n))


class BoundingBox(BaseModel):
    """Rectangular extent in the grid CRS (Value Object).

    Invariants are enforced at construction time - a degenerate BoundingBox
    cannot be instantiated.
    """

    min_x: float
    min_y: float
    max_x: float
    max_y: float

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def validate_bounds(self) -> "BoundingBox":
        values = (self.min_x, self.min_y, self.max_x, self.max_y)
        if not all(math.isfinite(v) for v in values):
            raise ConfigurationError(f"Bounding box must be finite: {values}")
        if not (self.min_x < self.max_x):
            raise ConfigurationError(
                f"Invalid x ordering: min_x={self.min_x} >= max_x={self.max_x}"
            )
        if not (self.min_y < self.max_y):
            raise ConfigurationError(
                f"Invalid y ordering: min_y={self.min_y} >= max_y={self.max_y}"
            )
        return self

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y


class Grid(BaseModel):
    """Regular tiling of a bounding box at a fixed resolution (Value Object).

    The lattice starts at (min_x, max_y) and covers the whole box; when the
    extent is not a multiple of the resolution the last row/column extends
    past max_x / below min_y.
    """

    bounds: BoundingBox
    resolution: float  # Tile edge length in CRS units (metres or degrees)
    crs: str

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def validate_grid(self) -> "Grid":
        if not math.isfinite(self.resolution) or self.resolution <= 0:
            raise ConfigurationError(
                f"Resolution must be positive: {self.resolution}"
            )
        crs = parse_crs(self.crs)
        if crs.is_geographic:
            b = self.bounds
            if not (-180 <= b.min_x and b.max_x <= 180 and -90 <= b.min_y and b.max_y <= 90):
                raise ConfigurationError(
                    f"Geographic bounds out of range for {self.crs}: {b}"
                )
        return self

    # ------------------------------------------------------------------
    # Shape
    # ------------------------------------------------------------------
    @property
    def n_cols(self) -> int:
        return _tile_count(self.bounds.width, self.resolution)

    @property
    def n_rows(self) -> int:
        return _tile_count(self.bounds.height, self.resolution)

    @property
    def n_tiles(self) -> int:
        return self.n_rows * self.n_cols

    @property
    def is_geographic(self) -> bool:
        return parse_crs(self.crs).is_geographic

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------
    def check_tile_id(self, tile_id: int) -> int:
        """Return tile_id as int, raising ConfigurationError when out of range."""
        tid = int(tile_id)
        if not (0 <= tid < self.n_tiles):
            raise ConfigurationError(
                f"Tile id {tile_id} outside grid with {self.n_tiles} tiles"
            )
        return tid

    def centroid(self, tile_id: int) -> tuple[float, float]:
        """Centroid (x, y) of a tile."""
        row, col = divmod(self.check_tile_id(tile_id), self.n_cols)
        return (
            self.bounds.min_x + (col + 0.5) * self.resolution,
            self.bounds.max_y - (row + 0.5) * self.resolution,
        )

    def centroids(self) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Centroid x and y arrays indexed by tile id."""
        cols = np.arange(self.n_cols, dtype=np.float64)
        rows = np.arange(self.n_rows, dtype=np.float64)
        xs = self.bounds.min_x + (cols + 0.5) * self.resolution
        ys = self.bounds.max_y - (rows + 0.5) * self.resolution
        grid_x, grid_y = np.meshgrid(xs, ys, indexing="xy")
        return grid_x.ravel(), grid_y.ravel()

    def contains(self, x: float, y: float) -> bool:
        """Check if (x, y) lies within the lattice extent (inclusive)."""
        max_x = self.bounds.min_x + self.n_cols * self.resolution
        min_y = self.bounds.max_y - self.n_rows * self.resolution
        return self.bounds.min_x <= x <= max_x and min_y <= y <= self.bounds.max_y

    def tile_at(self, x: float, y: float) -> int | None:
        """Tile id containing (x, y), or None outside the lattice.

        Points on a shared edge belong to the tile east / south of it; points
        on the outer east or south edge are clamped to the last column / row.
        """
        if not self.contains(x, y):
            return None
        col = min(int(math.floor((x - self.bounds.min_x) / self.resolution)), self.n_cols - 1)
        row = min(int(math.floor((self.bounds.max_y - y) / self.resolution)), self.n_rows - 1)
        return row * self.n_cols + col

    def aligned(self, values: ArrayLike, name: str = "layer") -> NDArray[np.float64]:
        """Return a read-only float64 copy of a per-tile array.

        Raises:
            ConfigurationError: If the array is not 1-D with n_tiles entries
        """
        arr = np.array(values, dtype=np.float64, copy=True)
        if arr.ndim == 2 and arr.shape == (self.n_rows, self.n_cols):
            arr = arr.ravel()
        if arr.shape != (self.n_tiles,):
            raise ConfigurationError(
                f"{name} has shape {arr.shape}, expected ({self.n_tiles},)"
            )
        arr.flags.writeable = False
        return arr

    # ------------------------------------------------------------------
    # Iteration
    # ------------------------------------------------------------------
    def tiles(self) -> "TileSequence":
        """Lazy, restartable sequence of (tile_id, (x, y)) pairs."""
        return TileSequence(self)


class TileSequence:
    """Iterable view over a grid's tiles.

    Nothing is materialized; every iter() starts a fresh pass in tile id order.
    """

    def __init__(self, grid: Grid) -> None:
        self._grid = grid

    def __iter__(self) -> Iterator[tuple[int, tuple[float, float]]]:
        grid = self._grid
        n_cols = grid.n_cols
        min_x, max_y, res = grid.bounds.min_x, grid.bounds.max_y, grid.resolution
        for tile_id in range(grid.n_tiles):
            row, col = divmod(tile_id, n_cols)
            yield tile_id, (min_x + (col + 0.5) * res, max_y - (row + 0.5) * res)

    def __len__(self) -> int:
        return self._grid.n_tiles
