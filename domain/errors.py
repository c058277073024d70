"""Geolocation Domain - Error Hierarchy.

Custom exceptions shared by all bounded contexts.

ConfigurationError is always fatal to the call. DataGapError is recoverable:
propagation falls back to a flat elevation / zero modifier and records the
gap (see domain.coverage.propagation). ZeroMassWarning is never raised; it is
returned inside result objects so callers can enumerate affected cells.
"""

from __future__ import annotations

from collections.abc import Sequence


class GeolocationError(Exception):
    """Base error for geolocation operations."""


class ConfigurationError(GeolocationError):
    """Invalid parameters: resolution, steepness, weights, CRS, ids."""


class DataGapError(GeolocationError):
    """A terrain or environment sample is missing at one or more tiles.

    Attributes:
        layer: Name of the layer with missing samples ("terrain", "environment")
        tile_ids: Tiles without a sample
    """

    def __init__(self, layer: str, tile_ids: Sequence[int]) -> None:
        self.layer = layer
        self.tile_ids = tuple(int(t) for t in tile_ids)
        preview = ", ".join(str(t) for t in self.tile_ids[:5])
        more = "..." if len(self.tile_ids) > 5 else ""
        super().__init__(
            f"Missing {layer} sample at {len(self.tile_ids)} tile(s): [{preview}{more}]"
        )


class ZeroMassWarning(UserWarning):
    """A cell ended up with zero total probability mass after normalization.

    Attributes:
        cell_id: The affected cell
        reason: Short explanation ("no likelihood rows", "zero prior mass")
    """

    def __init__(self, cell_id: str, reason: str) -> None:
        self.cell_id = cell_id
        self.reason = reason
        super().__init__(f"Cell {cell_id!r} has zero posterior mass: {reason}")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ZeroMassWarning):
            return NotImplemented
        return (self.cell_id, self.reason) == (other.cell_id, other.reason)

    def __hash__(self) -> int:
        return hash((self.cell_id, self.reason))
