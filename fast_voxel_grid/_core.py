"""
Low-level NumPy+Numba kernels: exact triangle/box clipping, grid voxelization,
slab intersection, 3D DDA and ray/triangle hits.
"""
import math
import numpy as np
from numba import njit, int64, float64
from typing import Tuple

# End-of-list marker for voxel heads and entry links (max uint32).
NO_ENTRY = 0xFFFFFFFF

# Crossing denominators at or below this are treated as parallel edges.
PARALLEL_EPSILON = 1e-30

# Möller–Trumbore determinant cutoff and minimal accepted hit distance.
_DET_EPSILON = 1e-12
_HIT_EPSILON = 1e-9


# --------------------------------------------------------------------------- #
# Exact triangle / box predicate (recursive slab clipping)
# --------------------------------------------------------------------------- #

@njit(cache=True)
def _sort3(a: np.ndarray, b: np.ndarray, c: np.ndarray, k: int):
    """Stable ascending sort of three points on axis ``k``."""
    if a[k] > b[k]:
        a, b = b, a
    if b[k] > c[k]:
        b, c = c, b
    if a[k] > b[k]:
        a, b = b, a
    return a, b, c


@njit(cache=True)
def _cross_point(p_from: np.ndarray, p_to: np.ndarray,
                 v_from: float, v_to: float, barrier: float) -> np.ndarray:
    """Point where segment ``p_from -> p_to`` meets the plane ``barrier``."""
    denom = v_to - v_from
    if abs(denom) <= PARALLEL_EPSILON:
        return p_from.copy()
    t = (barrier - v_from) / denom
    if t < 0.0:
        t = 0.0
    elif t > 1.0:
        t = 1.0
    return p_from + (p_to - p_from) * t


# recursive: compiled per process, not cached
@njit
def _clip_intersects(a: np.ndarray, b: np.ndarray, c: np.ndarray, depth: int,
                     box_min: np.ndarray, box_max: np.ndarray) -> bool:
    """
    Clip triangle ``abc`` against the slab of axis ``(depth + 2) % 3`` and
    recurse on what is left. Axes are visited in z, x, y order.

    Vertex labels below are positions relative to the slab ``| |`` after the
    ascending sort (``a`` lowest, ``c`` highest).
    """
    if depth == 3:
        return True
    k = (depth + 2) % 3
    a, b, c = _sort3(a, b, c, k)
    av = a[k]
    bv = b[k]
    cv = c[k]
    s = box_min[k]
    e = box_max[k]
    nxt = depth + 1

    if cv < s or av > e:
        return False                                # a b c | |  or  | | a b c

    if av <= s:
        asc = _cross_point(a, c, av, cv, s)
        if bv <= s:
            bsc = _cross_point(b, c, bv, cv, s)
            if cv <= e:                             # a b | c |
                return _clip_intersects(asc, bsc, c, nxt, box_min, box_max)
            bec = _cross_point(b, c, bv, cv, e)     # a b | | c
            if _clip_intersects(bsc, bec, asc, nxt, box_min, box_max):
                return True
            aec = _cross_point(a, c, av, cv, e)
            return _clip_intersects(asc, bec, aec, nxt, box_min, box_max)
        if bv <= e:
            asb = _cross_point(a, b, av, bv, s)
            if cv <= e:                             # a | b c |
                if _clip_intersects(asc, b, c, nxt, box_min, box_max):
                    return True
                return _clip_intersects(asc, asb, b, nxt, box_min, box_max)
            bec = _cross_point(b, c, bv, cv, e)     # a | b | c
            if _clip_intersects(asb, b, bec, nxt, box_min, box_max):
                return True
            if _clip_intersects(asc, asb, bec, nxt, box_min, box_max):
                return True
            aec = _cross_point(a, c, av, cv, e)
            return _clip_intersects(asc, bec, aec, nxt, box_min, box_max)
        asb = _cross_point(a, b, av, bv, s)         # a | | b c
        aeb = _cross_point(a, b, av, bv, e)
        if _clip_intersects(asc, asb, aeb, nxt, box_min, box_max):
            return True
        aec = _cross_point(a, c, av, cv, e)
        return _clip_intersects(asc, aeb, aec, nxt, box_min, box_max)

    if cv <= e:                                     # | a b c |
        return _clip_intersects(a, b, c, nxt, box_min, box_max)
    aec = _cross_point(a, c, av, cv, e)
    if bv <= e:                                     # | a b | c
        bec = _cross_point(b, c, bv, cv, e)
        if _clip_intersects(a, b, bec, nxt, box_min, box_max):
            return True
        return _clip_intersects(a, aec, bec, nxt, box_min, box_max)
    aeb = _cross_point(a, b, av, bv, e)             # | a | b c
    return _clip_intersects(a, aeb, aec, nxt, box_min, box_max)


@njit
def _triangle_box_intersect(a: np.ndarray, b: np.ndarray, c: np.ndarray,
                            box_min: np.ndarray, box_max: np.ndarray) -> bool:
    """Exact test: does the closed triangle ``abc`` touch the closed box?"""
    return _clip_intersects(a, b, c, 0, box_min, box_max)


# --------------------------------------------------------------------------- #
# Voxelization: candidate cells + exact test + linked-list prepend
# --------------------------------------------------------------------------- #

@njit(cache=True)
def _cell_index(value: float, start: float, size: float, n: int) -> int:
    idx = math.floor((value - start) / size)
    if idx < 0:
        return 0
    if idx > n - 1:
        return n - 1
    return idx


@njit(cache=True)
def _grow(buf: np.ndarray) -> np.ndarray:
    out = np.empty(buf.shape[0] * 2, dtype=np.uint32)
    out[:buf.shape[0]] = buf
    return out


@njit
def _voxelize(positions: np.ndarray, triangles: np.ndarray,
              grid_start: np.ndarray, cell_size: np.ndarray,
              divisions: np.ndarray, cell_pad: float,
              voxels: np.ndarray,
              max_entries: int = NO_ENTRY) -> Tuple[np.ndarray, np.ndarray, bool]:
    """
    Register every triangle in every candidate cell it exactly intersects.

    ``voxels`` must arrive filled with ``NO_ENTRY`` and is updated in place.
    Returns the ``(triangle, next)`` entry columns, trimmed to size, and
    False if stopping at ``max_entries`` left triangles unregistered. No
    head is ever set to an index at or past ``max_entries``.
    """
    n_tri = triangles.shape[0]
    capacity = max(16, 2 * n_tri)
    entry_tri = np.empty(capacity, dtype=np.uint32)
    entry_next = np.empty(capacity, dtype=np.uint32)
    count = 0

    nx = divisions[0]
    ny = divisions[1]
    lo = np.empty(3, dtype=int64)
    hi = np.empty(3, dtype=int64)
    cell_min = np.empty(3, dtype=float64)
    cell_max = np.empty(3, dtype=float64)

    for t in range(n_tri):
        # copies: the clipper recurses on writable contiguous points only
        a = positions[triangles[t, 0]].copy()
        b = positions[triangles[t, 1]].copy()
        c = positions[triangles[t, 2]].copy()

        # 1) Candidate range from the triangle's own AABB
        for k in range(3):
            lo[k] = _cell_index(min(a[k], b[k], c[k]),
                                grid_start[k], cell_size[k], divisions[k])
            hi[k] = _cell_index(max(a[k], b[k], c[k]),
                                grid_start[k], cell_size[k], divisions[k])

        # 2) Exact test against each padded candidate cell
        for x in range(lo[0], hi[0] + 1):
            for y in range(lo[1], hi[1] + 1):
                for z in range(lo[2], hi[2] + 1):
                    cell_min[0] = grid_start[0] + cell_size[0] * x
                    cell_min[1] = grid_start[1] + cell_size[1] * y
                    cell_min[2] = grid_start[2] + cell_size[2] * z
                    for k in range(3):
                        cell_max[k] = cell_min[k] + cell_size[k] + cell_pad
                        cell_min[k] -= cell_pad
                    if not _triangle_box_intersect(a, b, c, cell_min, cell_max):
                        continue

                    # 3) Prepend to the voxel's list
                    if count >= max_entries:
                        return entry_tri[:count].copy(), entry_next[:count].copy(), False
                    if count == entry_tri.shape[0]:
                        entry_tri = _grow(entry_tri)
                        entry_next = _grow(entry_next)
                    flat = x + nx * (y + ny * z)
                    entry_tri[count] = t
                    entry_next[count] = voxels[flat]
                    voxels[flat] = count
                    count += 1

    return entry_tri[:count].copy(), entry_next[:count].copy(), True


# --------------------------------------------------------------------------- #
# Ray traversal
# --------------------------------------------------------------------------- #

@njit(fastmath=True, cache=True)
def _ray_aabb_intersect(o: np.ndarray, d: np.ndarray,
                        bmin: np.ndarray, bmax: np.ndarray) -> Tuple[float, float]:
    """
    Robust slab test returning (t_near, t_far) or (inf, -inf) on miss.
    Handles d==0 by verifying origin inside slab, avoids NaN.
    """
    t0 = -math.inf
    t1 = math.inf
    for k in range(3):
        if d[k] == 0.0:
            # axis-parallel: require origin inside slab
            if o[k] < bmin[k] or o[k] > bmax[k]:
                return math.inf, -math.inf
            tn = -math.inf
            tf = math.inf
        else:
            inv = 1.0 / d[k]
            tn = (bmin[k] - o[k]) * inv
            tf = (bmax[k] - o[k]) * inv
            if tn > tf:
                tn, tf = tf, tn
        if tn > t0:
            t0 = tn
        if tf < t1:
            t1 = tf
        if t0 > t1:
            return math.inf, -math.inf
    return t0, t1


@njit(cache=True, fastmath=True)
def _dda(o: np.ndarray, d: np.ndarray,
         grid_shape: Tuple[int64, int64, int64],
         voxel_size: np.ndarray,
         grid_origin: np.ndarray,
         t_max: float,
         start_t: float,
         do_intersect: bool,
         out_ix: np.ndarray,
         out_t0: np.ndarray,
         out_t1: np.ndarray) -> int:
    """
    Fast 3D DDA stepping. Returns number of hits and fills out_ix, out_t0, out_t1.
    """
    # 1) Optional AABB intersect
    if do_intersect:
        bmin = grid_origin
        bmax = grid_origin + voxel_size * np.array(grid_shape, dtype=np.float64)
        t_ent, t_ext = _ray_aabb_intersect(o, d, bmin, bmax)
        if t_ext < 0.0 or t_ent > t_ext:
            return 0
        t0 = t_ent if t_ent > 0.0 else 0.0
        t_exit = t_ext
    else:
        t0 = start_t
        t_exit = math.inf

    # 2) Initial voxel index
    p = o + d * t0
    ix = np.empty(3, dtype=int64)
    for k in range(3):
        rel = (p[k] - grid_origin[k]) / voxel_size[k]
        idx = int(rel)
        if idx < 0:
            idx = 0
        elif idx >= grid_shape[k]:
            idx = grid_shape[k] - 1
        ix[k] = idx

    # 3) Setup per-axis stepping
    step = np.empty(3, dtype=int64)
    tnext = np.empty(3, dtype=float64)
    dt = np.empty(3, dtype=float64)
    for k in range(3):
        if d[k] > 0.0:
            step[k] = 1
            boundary = grid_origin[k] + (ix[k] + 1) * voxel_size[k]
            tnext[k] = (boundary - o[k]) / d[k]
            dt[k] = voxel_size[k] / d[k]
        elif d[k] < 0.0:
            step[k] = -1
            boundary = grid_origin[k] + ix[k] * voxel_size[k]
            tnext[k] = (boundary - o[k]) / d[k]
            dt[k] = -voxel_size[k] / d[k]
        else:
            step[k] = 0
            tnext[k] = math.inf
            dt[k] = math.inf

    # 4) March the grid
    count = 0
    max_hits = out_ix.shape[0]
    while count < max_hits:
        out_ix[count, 0] = ix[0]
        out_ix[count, 1] = ix[1]
        out_ix[count, 2] = ix[2]
        out_t0[count] = t0

        # strict-< comparisons: X only when strictly smallest, Z on remaining ties
        if tnext[0] < tnext[1] and tnext[0] < tnext[2]:
            ksel = 0
        elif tnext[1] < tnext[2]:
            ksel = 1
        else:
            ksel = 2
        tmin = tnext[ksel]

        out_t1[count] = tmin
        count += 1
        t0 = tmin
        if t0 > t_exit or t0 > t_max:
            break

        ix[ksel] += step[ksel]
        if ix[ksel] < 0 or ix[ksel] >= grid_shape[ksel]:
            return count          # left the grid
        tnext[ksel] += dt[ksel]

    return count


@njit(cache=True)
def _ray_triangle(o: np.ndarray, d: np.ndarray,
                  a: np.ndarray, b: np.ndarray, c: np.ndarray) -> float:
    """Two-sided Möller–Trumbore; returns hit distance or +inf."""
    e1x = b[0] - a[0]
    e1y = b[1] - a[1]
    e1z = b[2] - a[2]
    e2x = c[0] - a[0]
    e2y = c[1] - a[1]
    e2z = c[2] - a[2]
    px = d[1] * e2z - d[2] * e2y
    py = d[2] * e2x - d[0] * e2z
    pz = d[0] * e2y - d[1] * e2x
    det = e1x * px + e1y * py + e1z * pz
    if abs(det) < _DET_EPSILON:
        return math.inf
    inv = 1.0 / det
    sx = o[0] - a[0]
    sy = o[1] - a[1]
    sz = o[2] - a[2]
    u = (sx * px + sy * py + sz * pz) * inv
    if u < 0.0 or u > 1.0:
        return math.inf
    qx = sy * e1z - sz * e1y
    qy = sz * e1x - sx * e1z
    qz = sx * e1y - sy * e1x
    v = (d[0] * qx + d[1] * qy + d[2] * qz) * inv
    if v < 0.0 or u + v > 1.0:
        return math.inf
    t = (e2x * qx + e2y * qy + e2z * qz) * inv
    if t <= _HIT_EPSILON:
        return math.inf
    return t


@njit(cache=True)
def _trace(o: np.ndarray, d: np.ndarray,
           grid_shape: Tuple[int64, int64, int64],
           voxel_size: np.ndarray,
           grid_origin: np.ndarray,
           t_max: float,
           any_hit: bool,
           voxels: np.ndarray,
           entry_tri: np.ndarray,
           entry_next: np.ndarray,
           positions: np.ndarray,
           triangles: np.ndarray) -> Tuple[float, int]:
    """
    Walk the voxels pierced by the ray and test their triangle lists.

    Returns ``(t, triangle)`` of the nearest hit within ``t_max``, or
    ``(inf, -1)``. With ``any_hit`` the first accepted hit is returned.
    """
    max_vox = grid_shape[0] + grid_shape[1] + grid_shape[2] + 3
    buf_ix = np.empty((max_vox, 3), dtype=np.int64)
    buf_t0 = np.empty(max_vox, dtype=np.float64)
    buf_t1 = np.empty(max_vox, dtype=np.float64)
    hits = _dda(o, d, grid_shape, voxel_size, grid_origin, t_max, 0.0, True,
                buf_ix, buf_t0, buf_t1)

    nx = grid_shape[0]
    ny = grid_shape[1]
    best_t = math.inf
    best_tri = -1
    for i in range(hits):
        flat = buf_ix[i, 0] + nx * (buf_ix[i, 1] + ny * buf_ix[i, 2])
        e = voxels[flat]
        while e != NO_ENTRY:
            tri = entry_tri[e]
            t = _ray_triangle(o, d,
                              positions[triangles[tri, 0]],
                              positions[triangles[tri, 1]],
                              positions[triangles[tri, 2]])
            # occlusion counts hits in (0, t_max); closest hits may land on t_max
            within = t < t_max if any_hit else t <= t_max
            if t < best_t and within:
                if any_hit:
                    return t, int(tri)
                best_t = t
                best_tri = int(tri)
            e = entry_next[e]
        # a hit past this voxel's exit may still be beaten further along
        if best_tri >= 0 and best_t <= buf_t1[i] + _HIT_EPSILON:
            return best_t, best_tri
    return best_t, best_tri
