"""Cell Geolocation Domain Layer.

This package contains the core estimation logic organized by bounded contexts:
- grid: Tile lattice, sparse (tile, cell) tables
- terrain: Elevation and land-use sampling ports
- coverage: RF propagation, signal strength, dominance
- location: Likelihood, prior and posterior engines
"""

# Imports alphabetized per project style (isort)
from domain import coverage, grid, location, terrain

__all__ = ["coverage", "grid", "location", "terrain"]
