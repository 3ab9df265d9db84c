"""
Exact triangle / axis-aligned box intersection.

The triangle is clipped against the box one slab at a time (z, then x, then
y). Whatever survives all three slabs lies inside the box, so the test is
exact rather than conservative: it answers ``True`` only when the closed
triangle and the closed box share at least one point.
"""
from typing import Iterable

import numpy as np

from ._core import _triangle_box_intersect


def _point(p: Iterable[float]) -> np.ndarray:
    return np.array(p, dtype=np.float64).reshape(3)


def triangle_intersects_box(a: Iterable[float], b: Iterable[float], c: Iterable[float],
                            box_min: Iterable[float], box_max: Iterable[float]) -> bool:
    """Return True if triangle ``abc`` touches the box ``[box_min, box_max]``."""
    return bool(_triangle_box_intersect(_point(a), _point(b), _point(c),
                                        _point(box_min), _point(box_max)))
