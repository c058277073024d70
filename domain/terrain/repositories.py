"""Domain Port(s) for terrain and land-use sampling.

Defines the callables the ingestion layer must provide.
No concrete I/O here.
"""

from __future__ import annotations

from collections.abc import Hashable
from typing import Protocol


class TerrainSampler(Protocol):
    """Port returning ground elevation (m) at a tile centroid.

    None (or NaN) means no sample is available at that location.
    """

    def __call__(self, x: float, y: float) -> float | None: ...


class EnvironmentSampler(Protocol):
    """Port returning the land-use class or a scalar modifier at a tile centroid.

    Hashable non-numeric results are looked up in a category -> weight
    mapping; numbers are used as the modifier directly; None is a gap.
    """

    def __call__(self, x: float, y: float) -> Hashable | float | None: ...
