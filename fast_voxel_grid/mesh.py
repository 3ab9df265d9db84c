"""
Triangle mesh input: vertex positions plus a triangle index buffer.
"""
import logging
from typing import Sequence, Union

import numpy as np

log = logging.getLogger(__name__)

ArrayLike = Union[np.ndarray, Sequence]


class Mesh:
    """
    Immutable snapshot of a triangle mesh.

    ``positions`` may carry extra per-vertex attributes after the first three
    columns (normals, colours, ...); only the positions are kept. ``indices``
    is either a flat index buffer or an ``(M, 3)`` array of triangles.
    """

    def __init__(self, positions: ArrayLike, indices: ArrayLike = ()) -> None:
        pos = np.asarray(positions, dtype=np.float64)
        if pos.size == 0:
            pos = pos.reshape(0, 3)
        if pos.ndim != 2 or pos.shape[1] < 3:
            raise ValueError(
                f"positions must be an (N, 3) array, got shape {pos.shape}")
        self.positions = np.array(pos[:, :3], order="C")

        flat = np.asarray(indices, dtype=np.int64).reshape(-1)
        extra = flat.size % 3
        if extra:
            log.warning("dropping %d trailing indices that do not form a triangle",
                        extra)
            flat = flat[:flat.size - extra]
        if flat.size and (flat.min() < 0 or flat.max() >= len(self.positions)):
            raise ValueError(
                f"triangle indices must lie in [0, {len(self.positions)})")
        self.triangles = np.array(flat.reshape(-1, 3), order="C")

        self.positions.flags.writeable = False
        self.triangles.flags.writeable = False

    @property
    def num_vertices(self) -> int:
        return len(self.positions)

    @property
    def num_triangles(self) -> int:
        return len(self.triangles)

    def triangle(self, index: int) -> np.ndarray:
        """Return the ``(3, 3)`` corner positions of triangle ``index``."""
        return self.positions[self.triangles[index]]

    def __repr__(self) -> str:
        return f"Mesh(vertices={self.num_vertices}, triangles={self.num_triangles})"
