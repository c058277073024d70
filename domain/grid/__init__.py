"""Grid Bounded Context.

Responsible for the regular tile lattice all layers and tables are keyed by:
- Value Objects: BoundingBox, Grid, TileSequence
- Services: distances_and_bearings
"""
