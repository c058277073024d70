"""Terrain Bounded Context.

Responsible for physical geography lookups feeding propagation:
- Value Objects: TerrainGrid
- Ports: TerrainSampler, EnvironmentSampler
- Services: bilinear_interpolate, terrain_sampler
"""
