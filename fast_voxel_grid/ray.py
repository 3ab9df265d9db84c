"""
Ray class encapsulating origin and direction, with grid and mesh queries.
"""
from typing import Iterable, Optional, Tuple

from .grid import Grid
from .mesh import Mesh
from .voxel_data import VoxelData


class Ray:
    def __init__(self, origin: Iterable[float], direction: Iterable[float]):
        self.origin = tuple(float(x) for x in origin)
        self.direction = tuple(float(x) for x in direction)

    def at(self, t: float) -> Tuple[float, float, float]:
        """Point reached after travelling *t* direction lengths."""
        return tuple(o + d * t for o, d in zip(self.origin, self.direction))

    def entry_time(self, grid: Grid) -> float:
        """Return parametric t where this ray first hits the grid."""
        return grid.entry_time(self.origin, self.direction)

    def traverse(
        self,
        grid: Grid,
        start_t: Optional[float] = None,
        t_max: float = float('inf')
    ):
        """Delegate to Grid.traverse."""
        return grid.traverse(self.origin, self.direction, start_t=start_t, t_max=t_max)

    def closest_hit(
        self,
        voxel_data: VoxelData,
        mesh: Mesh,
        t_max: float = float('inf')
    ) -> Optional[Tuple[float, int]]:
        """Delegate to VoxelData.closest_hit."""
        return voxel_data.closest_hit(mesh, self.origin, self.direction, t_max=t_max)

    def occluded(
        self,
        voxel_data: VoxelData,
        mesh: Mesh,
        t_max: float = float('inf')
    ) -> bool:
        """Delegate to VoxelData.occluded."""
        return voxel_data.occluded(mesh, self.origin, self.direction, t_max=t_max)
