import numpy as np
import pytest

from fast_voxel_grid import Grid, Mesh, Ray, VoxelData

# two unit squares, at z = 0 (triangles 0, 1) and z = 1 (triangles 2, 3)
PLATES = Mesh(
    [(0, 0, 0), (1, 0, 0), (1, 1, 0), (0, 1, 0),
     (0, 0, 1), (1, 0, 1), (1, 1, 1), (0, 1, 1)],
    [0, 1, 2, 0, 2, 3,
     4, 5, 6, 4, 6, 7],
)


@pytest.fixture(scope="module")
def plates():
    return VoxelData.build(PLATES, num_divisions=(4, 4, 4))


def test_ray_entry_and_traverse():
    ray = Ray(origin=(-1.0, -0.75, -0.5),
              direction=(1.0, 1.0, 1.0))
    g = Grid(grid_shape=(3, 3, 3))

    # entry through the x = 0 face at t=1 → (0,0,0)
    assert ray.entry_time(g) == pytest.approx(1.0)

    voxels = list(ray.traverse(g))
    expected = [(0, 0, 0), (0, 0, 1), (0, 1, 1), (1, 1, 1),
                (1, 1, 2), (1, 2, 2), (2, 2, 2)]
    assert [v[:3] for v in voxels] == expected


def test_ray_at():
    ray = Ray((1.0, 2.0, 3.0), (0.0, 0.0, -2.0))
    assert ray.at(0.5) == (1.0, 2.0, 2.0)


def test_closest_hit_from_above(plates):
    hit = Ray((0.3, 0.6, 2.0), (0.0, 0.0, -1.0)).closest_hit(plates, PLATES)
    assert hit is not None
    t, tri = hit
    assert tri == 3
    assert t == pytest.approx(1.0)


def test_closest_hit_from_below(plates):
    t, tri = plates.closest_hit(PLATES, (0.3, 0.6, -1.0), (0.0, 0.0, 1.0))
    assert tri == 1
    assert t == pytest.approx(1.0)


def test_closest_hit_oblique(plates):
    # enters through the side, lands on the lower plate below y = x
    origin = np.array([-0.5, 0.1, 0.5])
    direction = np.array([1.0, 0.0, -0.5])
    t, tri = plates.closest_hit(PLATES, origin, direction)
    assert tri == 0
    assert t == pytest.approx(1.0)
    assert np.allclose(origin + direction * t, [0.5, 0.1, 0.0])


def test_closest_hit_misses(plates):
    assert plates.closest_hit(PLATES, (2.0, 2.0, 2.0), (0.0, 0.0, -1.0)) is None
    # between the plates, parallel to them
    assert plates.closest_hit(PLATES, (-1.0, 0.5, 0.5), (1.0, 0.0, 0.0)) is None


def test_closest_hit_respects_t_max(plates):
    assert plates.closest_hit(PLATES, (0.3, 0.6, 2.0), (0.0, 0.0, -1.0), t_max=0.5) is None


def test_listed_triangle_missed_by_ray():
    mesh = Mesh([(0, 0, 0), (1, 0, 0), (0, 1, 0)], [0, 1, 2])
    data = VoxelData.build(mesh, num_divisions=(2, 2, 1))
    assert 0 in data.triangles_in(1, 1, 0)
    assert data.closest_hit(mesh, (0.9, 0.9, 1.0), (0.0, 0.0, -1.0)) is None
    assert data.closest_hit(mesh, (0.2, 0.2, 1.0), (0.0, 0.0, -1.0))[1] == 0


def test_occluded(plates):
    ray = Ray((0.3, 0.6, 0.5), (0.0, 0.0, 1.0))
    assert not ray.occluded(plates, PLATES, t_max=0.4)
    assert ray.occluded(plates, PLATES, t_max=1.0)
    assert not Ray((0.3, 0.6, 0.5), (1.0, 0.0, 0.0)).occluded(plates, PLATES)


def test_occluded_excludes_hit_at_t_max(plates):
    origin, direction = (0.3, 0.6, 0.5), (0.0, 0.0, 1.0)
    t, tri = plates.closest_hit(PLATES, origin, direction)
    assert tri == 3
    assert not plates.occluded(PLATES, origin, direction, t_max=t)
    assert plates.occluded(PLATES, origin, direction, t_max=np.nextafter(t, np.inf))
    # closest hits still include t_max itself
    assert plates.closest_hit(PLATES, origin, direction, t_max=t) == (t, tri)


def test_empty_mesh_never_hits():
    mesh = Mesh(np.empty((0, 3)), [])
    data = VoxelData.build(mesh, num_divisions=(2, 2, 2))
    assert data.closest_hit(mesh, (0, 0, 1), (0, 0, -1)) is None
    assert not data.occluded(mesh, (0, 0, 1), (0, 0, -1))
