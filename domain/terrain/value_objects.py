"""Terrain Bounded Context - Value Objects.

Immutable elevation raster handed over by the (external) DEM ingestion layer.
All validation occurs at construction time via Pydantic.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict, model_validator

from domain.grid.value_objects import BoundingBox, parse_crs


class TerrainGrid(BaseModel):
    """Immutable elevation grid with geographic metadata (Value Object).

    Row 0 is the north edge (max_y). NaN marks NoData. The data array is made
    read-only at construction time.
    """

    data: NDArray[np.float32]  # 2D float32 array (height x width), read-only
    bounds: BoundingBox  # Extent in `crs` units
    crs: str  # Must match the Grid it is sampled for
    resolution: tuple[float, float]  # (x_res, y_res) absolute values

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @model_validator(mode="after")
    def validate_grid(self) -> "TerrainGrid":
        if self.data.ndim != 2:
            raise ValueError(f"Data must be 2D, got {self.data.ndim}D")
        if self.data.shape[0] == 0 or self.data.shape[1] == 0:
            raise ValueError(f"Data cannot be empty: {self.data.shape}")
        if self.resolution[0] <= 0 or self.resolution[1] <= 0:
            raise ValueError(f"Resolution must be positive: {self.resolution}")
        parse_crs(self.crs)
        if np.isnan(self.data).all():
            raise ValueError("Grid contains 100% NoData")

        # Owned, contiguous float32 copy; caller arrays are never touched.
        immutable = np.array(self.data, dtype=np.float32, copy=True, order="C")
        immutable.flags.writeable = False
        object.__setattr__(self, "data", immutable)

        return self

    def nodata_ratio(self) -> float:
        """Return fraction of pixels that are NoData (0.0 to 1.0)."""
        return float(np.isnan(self.data).mean())
