import logging

import numpy as np
import pytest

from fast_voxel_grid import Mesh


def test_flat_and_triangle_indices_agree():
    pos = [(0, 0, 0), (1, 0, 0), (0, 1, 0), (1, 1, 0)]
    flat = Mesh(pos, [0, 1, 2, 2, 1, 3])
    tris = Mesh(pos, [(0, 1, 2), (2, 1, 3)])
    assert flat.num_triangles == tris.num_triangles == 2
    assert np.array_equal(flat.triangles, tris.triangles)
    assert np.array_equal(flat.triangle(1), np.array([(0, 1, 0), (1, 0, 0), (1, 1, 0)]))


def test_extra_vertex_attributes_are_dropped():
    # position, normal, colour
    pnc = np.arange(27, dtype=float).reshape(3, 9)
    mesh = Mesh(pnc, [0, 1, 2])
    assert mesh.positions.shape == (3, 3)
    assert np.array_equal(mesh.positions[1], [9.0, 10.0, 11.0])


def test_trailing_indices_dropped(caplog):
    with caplog.at_level(logging.WARNING, logger="fast_voxel_grid.mesh"):
        mesh = Mesh([(0, 0, 0), (1, 0, 0), (0, 1, 0)], [0, 1, 2, 0, 1])
    assert mesh.num_triangles == 1
    assert "trailing" in caplog.text


@pytest.mark.parametrize("indices", [[0, 1, 3], [0, -1, 2]])
def test_out_of_range_indices_rejected(indices):
    with pytest.raises(ValueError):
        Mesh([(0, 0, 0), (1, 0, 0), (0, 1, 0)], indices)


def test_bad_position_shape_rejected():
    with pytest.raises(ValueError):
        Mesh([(0, 0), (1, 0), (0, 1)], [0, 1, 2])


def test_empty_mesh():
    mesh = Mesh([], [])
    assert mesh.num_vertices == 0
    assert mesh.num_triangles == 0
    assert mesh.triangles.shape == (0, 3)
