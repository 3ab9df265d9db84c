"""
Grid partitioning: mesh bounds, cell sizing, world→cell mapping, DDA traversal
and plotting.
"""
import math
from typing import Iterable, Optional, Sequence, Tuple, Generator, Union

import numpy as np
import matplotlib.pyplot as plt
from mpl_toolkits.mplot3d import Axes3D  # noqa: F401

from ._core import _ray_aabb_intersect, _dda

# Outward padding of the mesh bounds (32 float32 ulps at 1.0).
GRID_EPSILON = 32.0 * float(np.finfo(np.float32).eps)

# Padding applied to each cell box before the exact triangle test.
CELL_EPSILON = float(np.finfo(np.float32).eps)

DEFAULT_DIVISIONS = (32, 32, 32)


def compute_bounds(positions: Iterable[Sequence[float]],
                   epsilon: float = GRID_EPSILON) -> Tuple[np.ndarray, np.ndarray]:
    """
    Tight axis-aligned box of *positions*, grown by *epsilon* on every side.

    Each side moves out by at least one ulp, so a flat axis keeps a non-zero
    extent where *epsilon* is lost to rounding far from the origin.
    No positions yield the zero-size box at the origin, without padding.
    """
    pts = np.asarray(positions, dtype=np.float64)
    if pts.size == 0:
        return np.zeros(3), np.zeros(3)
    pts = pts.reshape(-1, pts.shape[-1])[:, :3]
    lo = pts.min(axis=0)
    hi = pts.max(axis=0)
    return (np.minimum(lo - epsilon, np.nextafter(lo, -np.inf)),
            np.maximum(hi + epsilon, np.nextafter(hi, np.inf)))


def validate_divisions(num_divisions: Sequence[int]) -> Tuple[int, int, int]:
    """Return *num_divisions* as three ints, rejecting anything not positive."""
    divs = tuple(int(n) for n in num_divisions)
    if len(divs) != 3:
        raise ValueError(f"num_divisions needs 3 components, got {len(divs)}")
    if any(n <= 0 for n in divs):
        raise ValueError(f"num_divisions must be positive on every axis, got {divs}")
    return divs


class Grid:
    """Axis‑aligned 3‑D voxel grid."""

    def __init__(
        self,
        *,
        grid_shape: Optional[Tuple[int, int, int]] = None,
        voxel_size: Union[float, Tuple[float, float, float]] = 1.0,
        grid_origin: Tuple[float, float, float] = (0.0, 0.0, 0.0),
        bounds: Optional[Tuple[Sequence[float], Sequence[float]]] = None,
        shape: Optional[Tuple[int, int, int]] = None,
    ) -> None:
        # Choose representation mode
        if bounds is not None and shape is not None:
            gmin = np.asarray(bounds[0], dtype=np.float64)
            gmax = np.asarray(bounds[1], dtype=np.float64)
            self.shape = validate_divisions(shape)
            self.voxel_size = (gmax - gmin) / np.array(self.shape, dtype=np.float64)
            self.origin = gmin
        elif grid_shape is not None:
            self.shape = validate_divisions(grid_shape)
            if np.ndim(voxel_size):
                self.voxel_size = np.asarray(voxel_size, dtype=np.float64)
            else:
                self.voxel_size = np.full(3, float(voxel_size), dtype=np.float64)
            self.origin = np.asarray(grid_origin, dtype=np.float64)
        else:
            raise ValueError("Must specify either grid_shape or bounds+shape.")

    @property
    def end(self) -> np.ndarray:
        return self.origin + self.voxel_size * np.array(self.shape, dtype=np.float64)

    @property
    def num_cells(self) -> int:
        nx, ny, nz = self.shape
        return nx * ny * nz

    @property
    def is_degenerate(self) -> bool:
        """True when some axis has zero extent (grid of an empty mesh)."""
        return bool(np.any(self.voxel_size <= 0.0))

    # ---------------------------------------------------------------------
    # Cell addressing
    # ---------------------------------------------------------------------
    def cell_index_of(self, position: Iterable[float]) -> Tuple[int, int, int]:
        """``floor((position - origin) / voxel_size)``, not clamped to the grid."""
        if self.is_degenerate:
            raise ValueError("cell lookup on a zero-size grid")
        p = np.asarray(position, dtype=np.float64)
        rel = np.floor((p - self.origin) / self.voxel_size)
        return int(rel[0]), int(rel[1]), int(rel[2])

    def flat_index(self, ix: int, iy: int, iz: int) -> int:
        nx, ny, _ = self.shape
        return ix + nx * (iy + ny * iz)

    def unflatten(self, flat: int) -> Tuple[int, int, int]:
        nx, ny, _ = self.shape
        return flat % nx, (flat // nx) % ny, flat // (nx * ny)

    def cell_box(self, ix: int, iy: int, iz: int) -> Tuple[np.ndarray, np.ndarray]:
        start = self.origin + self.voxel_size * np.array((ix, iy, iz), dtype=np.float64)
        return start, start + self.voxel_size

    def padded_cell_box(self, ix: int, iy: int, iz: int,
                        epsilon: float = CELL_EPSILON) -> Tuple[np.ndarray, np.ndarray]:
        """Cell box with *epsilon* of slack, as used by the voxelizer."""
        start, _ = self.cell_box(ix, iy, iz)
        return start - epsilon, start + self.voxel_size + epsilon

    def candidate_range(self, a: Iterable[float], b: Iterable[float],
                        c: Iterable[float]) -> Tuple[Tuple[int, ...], Tuple[int, ...]]:
        """
        Inclusive ``(lo, hi)`` cell range covering triangle ``abc``'s AABB.

        Both corners go through ``floor``, so a triangle ending just short of a
        cell face is not offered the next cell even when it falls within that
        cell's padding.
        """
        tri = np.array([a, b, c], dtype=np.float64)
        top = np.array(self.shape) - 1
        lo = np.clip(np.floor((tri.min(axis=0) - self.origin) / self.voxel_size), 0, top)
        hi = np.clip(np.floor((tri.max(axis=0) - self.origin) / self.voxel_size), 0, top)
        return tuple(int(v) for v in lo), tuple(int(v) for v in hi)

    # ---------------------------------------------------------------------
    # Analytics
    # ---------------------------------------------------------------------
    def entry_time(self, origin: Iterable[float], direction: Iterable[float]) -> float:
        """Return *t_enter* or +inf if the ray misses this grid's AABB."""
        o = np.asarray(origin, dtype=np.float64)
        d = np.asarray(direction, dtype=np.float64)
        t0, t1 = _ray_aabb_intersect(o, d, self.origin, self.end)
        # no hit if the exit time is before the ray start or infinite entry
        if t1 < 0.0 or t0 == math.inf:
            return math.inf
        return float(t0)

    def traverse(
        self,
        origin: Iterable[float],
        direction: Iterable[float],
        start_t: Optional[float] = None,
        t_max: float = math.inf,
    ) -> Generator[Tuple[int, int, int, float, float], None, None]:
        """Yield ``(ix, iy, iz, t_enter, t_exit)`` for each crossed voxel."""
        o = np.asarray(origin, dtype=np.float64)
        d = np.asarray(direction, dtype=np.float64)
        do_intersect = start_t is None
        t0 = 0.0 if start_t is None else float(start_t)

        max_vox = sum(self.shape) + 3  # safe upper bound
        buf_ix = np.empty((max_vox, 3), dtype=np.int64)
        buf_t0 = np.empty(max_vox, dtype=np.float64)
        buf_t1 = np.empty(max_vox, dtype=np.float64)

        hits = _dda(
            o,
            d,
            tuple(self.shape),
            self.voxel_size,
            self.origin,
            float(t_max),
            t0,
            do_intersect,
            buf_ix,
            buf_t0,
            buf_t1,
        )

        for i in range(hits):
            yield (
                int(buf_ix[i, 0]),
                int(buf_ix[i, 1]),
                int(buf_ix[i, 2]),
                float(buf_t0[i]),
                float(buf_t1[i]),
            )

    # ---------------------------------------------------------------------
    # Visualization
    # ---------------------------------------------------------------------
    def plot(
        self,
        grid_array: np.ndarray,
        ax: Optional[Axes3D] = None,
        cmap: str = 'viridis',
        edgecolor: str = 'k',
        set_limits: bool = True,
        show: bool = True,
    ) -> Axes3D:
        """Plot occupied voxels in 3D using matplotlib, respecting grid origin and size."""
        mask = grid_array.astype(bool)
        nx, ny, nz = self.shape

        # Corner coordinates
        xs = self.origin[0] + np.arange(nx + 1) * self.voxel_size[0]
        ys = self.origin[1] + np.arange(ny + 1) * self.voxel_size[1]
        zs = self.origin[2] + np.arange(nz + 1) * self.voxel_size[2]
        xv, yv, zv = np.meshgrid(xs, ys, zs, indexing='ij')

        if ax is None:
            fig = plt.figure()
            ax = fig.add_subplot(111, projection='3d')

        # Colour by value relative to the busiest voxel
        peak = float(grid_array.max()) if grid_array.size else 0.0
        values = grid_array.astype(float) / peak if peak > 0 else grid_array.astype(float)
        facecolors = plt.get_cmap(cmap)(values)
        ax.voxels(xv, yv, zv, mask, facecolors=facecolors, edgecolor=edgecolor)

        if set_limits:
            end = self.end
            ax.set_xlim(self.origin[0], end[0])
            ax.set_ylim(self.origin[1], end[1])
            ax.set_zlim(self.origin[2], end[2])

        if show:
            plt.show()
        return ax
