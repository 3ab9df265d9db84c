"""
Uniform-grid acceleration structure for triangle meshes.

Public API
----------
voxelize(positions, indices, num_divisions=(32, 32, 32))
    – build per-voxel triangle lists using exact triangle/box clipping

VoxelData.closest_hit(mesh, origin, direction)
    – nearest triangle along a ray, marching the grid with a 3D DDA
"""
from ._core import NO_ENTRY, PARALLEL_EPSILON
from .grid import (
    CELL_EPSILON,
    DEFAULT_DIVISIONS,
    GRID_EPSILON,
    Grid,
    compute_bounds,
    validate_divisions,
)
from .intersect import triangle_intersects_box
from .mesh import Mesh
from .ray import Ray
from .voxel_data import ENTRY_DTYPE, SETTINGS_DTYPE, GridSettings, VoxelData, voxelize

__all__ = [
    "NO_ENTRY",
    "PARALLEL_EPSILON",
    "CELL_EPSILON",
    "DEFAULT_DIVISIONS",
    "GRID_EPSILON",
    "ENTRY_DTYPE",
    "SETTINGS_DTYPE",
    "Grid",
    "GridSettings",
    "Mesh",
    "Ray",
    "VoxelData",
    "compute_bounds",
    "triangle_intersects_box",
    "validate_divisions",
    "voxelize",
]
