"""
Sparse triangle-per-voxel lists over a uniform grid.

Every voxel of the grid owns a singly linked list of the triangles that
intersect it. The lists live in two flat arrays so the structure can be
copied byte-for-byte into GPU storage buffers:

    voxels[x + nx*(y + ny*z)]  -> index of the voxel's first entry or NO_ENTRY
    entries[i] = (triangle, next)

Entries are stored in insertion order and prepended to their voxel, so a
list yields its triangles newest first.
"""
import logging
import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np
from mpl_toolkits.mplot3d import Axes3D  # noqa: F401

from ._core import NO_ENTRY, _voxelize, _trace
from .grid import (
    CELL_EPSILON,
    DEFAULT_DIVISIONS,
    GRID_EPSILON,
    Grid,
    compute_bounds,
    validate_divisions,
)
from .mesh import Mesh

log = logging.getLogger(__name__)

ENTRY_DTYPE = np.dtype([('triangle', '<u4'), ('next', '<u4')])

# vec3/uvec3 members aligned to 16 bytes.
SETTINGS_DTYPE = np.dtype({
    'names': ['grid_start', 'grid_end', 'num_divisions'],
    'formats': [('<f4', 3), ('<f4', 3), ('<u4', 3)],
    'offsets': [0, 16, 32],
    'itemsize': 48,
})


@dataclass(frozen=True, eq=False)
class GridSettings:
    """Extent and resolution of a voxel grid."""
    grid_start: np.ndarray
    grid_end: np.ndarray
    num_divisions: Tuple[int, int, int]

    @property
    def cell_size(self) -> np.ndarray:
        return (self.grid_end - self.grid_start) / np.array(self.num_divisions, dtype=np.float64)

    def to_grid(self) -> Grid:
        return Grid(bounds=(self.grid_start, self.grid_end), shape=self.num_divisions)


class VoxelData:
    """Voxel grid settings plus the flattened per-voxel triangle lists."""

    def __init__(self, settings: GridSettings, voxels: np.ndarray, entries: np.ndarray) -> None:
        nx, ny, nz = settings.num_divisions
        if voxels.shape != (nx * ny * nz,):
            raise ValueError(f"expected {nx * ny * nz} voxel heads, got {voxels.shape}")
        self.settings = settings
        self.voxels = voxels
        self.entries = entries
        self.grid = settings.to_grid()
        # contiguous link columns for the ray kernels
        self._entry_tri = np.ascontiguousarray(entries['triangle'], dtype=np.uint32)
        self._entry_next = np.ascontiguousarray(entries['next'], dtype=np.uint32)
        self.voxels.flags.writeable = False
        self.entries.flags.writeable = False

    @classmethod
    def build(
        cls,
        mesh: Mesh,
        *,
        num_divisions: Sequence[int] = DEFAULT_DIVISIONS,
        grid_epsilon: float = GRID_EPSILON,
        cell_epsilon: float = CELL_EPSILON,
    ) -> "VoxelData":
        """Voxelize *mesh* into ``num_divisions`` cells per axis."""
        divs = validate_divisions(num_divisions)
        start, end = compute_bounds(mesh.positions, grid_epsilon)
        settings = GridSettings(grid_start=start, grid_end=end, num_divisions=divs)
        grid = settings.to_grid()

        voxels = np.full(grid.num_cells, NO_ENTRY, dtype=np.uint32)
        if mesh.num_triangles:
            entry_tri, entry_next, complete = _voxelize(
                mesh.positions,
                mesh.triangles,
                grid.origin,
                grid.voxel_size,
                np.array(divs, dtype=np.int64),
                float(cell_epsilon),
                voxels,
            )
        else:
            entry_tri = np.empty(0, dtype=np.uint32)
            entry_next = np.empty(0, dtype=np.uint32)
            complete = True

        if not complete:
            raise OverflowError(f"more than {NO_ENTRY} voxel entries do not fit 32-bit links")
        entries = np.empty(len(entry_tri), dtype=ENTRY_DTYPE)
        entries['triangle'] = entry_tri
        entries['next'] = entry_next

        log.debug(
            "voxelized %d triangles into %s cells: %d entries, %d occupied voxels",
            mesh.num_triangles, divs, len(entries), int(np.count_nonzero(voxels != NO_ENTRY)),
        )
        return cls(settings, voxels, entries)

    # ---------------------------------------------------------------------
    # Queries
    # ---------------------------------------------------------------------
    @property
    def num_entries(self) -> int:
        return len(self.entries)

    def head(self, ix: int, iy: int, iz: int) -> int:
        return int(self.voxels[self.grid.flat_index(ix, iy, iz)])

    def triangles_in(self, ix: int, iy: int, iz: int) -> List[int]:
        """Triangles listed in voxel ``(ix, iy, iz)``, newest first."""
        out = []
        e = self.head(ix, iy, iz)
        while e != NO_ENTRY:
            out.append(int(self.entries['triangle'][e]))
            e = int(self.entries['next'][e])
        return out

    def occupancy(self) -> np.ndarray:
        """``(nx, ny, nz)`` array of how many triangles each voxel lists."""
        counts = np.zeros(self.grid.num_cells, dtype=np.int64)
        if self.num_entries:
            np.add.at(counts, self._entry_owners(), 1)
        nx, ny, nz = self.grid.shape
        return counts.reshape(nz, ny, nx).transpose(2, 1, 0)

    def _entry_owners(self) -> np.ndarray:
        owner = np.empty(self.num_entries, dtype=np.int64)
        nxt = self.entries['next']
        for flat in np.flatnonzero(self.voxels != NO_ENTRY):
            e = int(self.voxels[flat])
            while e != NO_ENTRY:
                owner[e] = flat
                e = int(nxt[e])
        return owner

    def as_buffers(self) -> Tuple[bytes, bytes, bytes]:
        """``(settings, voxels, entries)`` as little-endian GPU buffer contents."""
        settings = np.zeros(1, dtype=SETTINGS_DTYPE)
        settings['grid_start'] = self.settings.grid_start
        settings['grid_end'] = self.settings.grid_end
        settings['num_divisions'] = self.settings.num_divisions
        return (settings.tobytes(),
                self.voxels.astype('<u4').tobytes(),
                self.entries.tobytes())

    # ---------------------------------------------------------------------
    # Ray casting
    # ---------------------------------------------------------------------
    def _cast(self, mesh: Mesh, origin: Iterable[float], direction: Iterable[float],
              t_max: float, any_hit: bool) -> Tuple[float, int]:
        if not self.num_entries:
            return math.inf, -1
        o = np.asarray(origin, dtype=np.float64)
        d = np.asarray(direction, dtype=np.float64)
        t, tri = _trace(
            o,
            d,
            tuple(self.grid.shape),
            self.grid.voxel_size,
            self.grid.origin,
            float(t_max),
            any_hit,
            self.voxels,
            self._entry_tri,
            self._entry_next,
            mesh.positions,
            mesh.triangles,
        )
        return float(t), int(tri)

    def closest_hit(self, mesh: Mesh, origin: Iterable[float], direction: Iterable[float],
                    t_max: float = math.inf) -> Optional[Tuple[float, int]]:
        """
        Return ``(t, triangle)`` for the nearest triangle hit by the ray, or
        *None*. *mesh* must be the mesh this grid was built from.
        """
        t, tri = self._cast(mesh, origin, direction, t_max, False)
        if tri < 0:
            return None
        return t, tri

    def occluded(self, mesh: Mesh, origin: Iterable[float], direction: Iterable[float],
                 t_max: float = math.inf) -> bool:
        """True if anything blocks the ray before *t_max*."""
        _, tri = self._cast(mesh, origin, direction, t_max, True)
        return tri >= 0

    def plot(self, **kwargs) -> Axes3D:
        """Draw occupied voxels coloured by triangle count."""
        return self.grid.plot(self.occupancy(), **kwargs)

    def __repr__(self) -> str:
        return (f"VoxelData(divisions={self.settings.num_divisions}, "
                f"entries={self.num_entries})")


# -------------------------------------------------------------------------
# Convenience top‑level helper
# -------------------------------------------------------------------------
def voxelize(
    positions,
    indices,
    *,
    num_divisions=DEFAULT_DIVISIONS,
    grid_epsilon=GRID_EPSILON,
    cell_epsilon=CELL_EPSILON,
) -> VoxelData:
    """Build a :class:`VoxelData` straight from vertex positions and an index buffer."""
    return VoxelData.build(
        Mesh(positions, indices),
        num_divisions=num_divisions,
        grid_epsilon=grid_epsilon,
        cell_epsilon=cell_epsilon,
    )
