import numpy as np
import pytest
from numpy.testing import assert_allclose

from fede.fem import IntervalMesh


def test_interval_mesh_attributes():
    mesh = IntervalMesh([0.0, 0.25, 0.5, 1.0])
    assert mesh.n_nodes == 4
    assert mesh.n_elements == 3
    assert mesh.domain == (0.0, 1.0)
    assert_allclose(mesh.element_sizes, [0.25, 0.25, 0.5])
    assert "n_nodes=4" in repr(mesh)


@pytest.mark.parametrize("bad_nodes", [[0.0], [0.0, 0.5, 0.5], [1.0, 0.0], [[0.0, 1.0], [1.0, 2.0]]])
def test_interval_mesh_invalid_nodes(bad_nodes):
    with pytest.raises(ValueError):
        IntervalMesh(bad_nodes)


def test_interval_mesh_locate():
    mesh = IntervalMesh(np.linspace(0.0, 1.0, 5))
    element_idx = mesh.locate(np.array([0.0, 0.1, 0.25, 0.6, 1.0]))
    np.testing.assert_array_equal(element_idx, [0, 0, 1, 2, 3])


@pytest.mark.parametrize("point", [-0.01, 1.01])
def test_interval_mesh_locate_outside(point):
    mesh = IntervalMesh(np.linspace(0.0, 1.0, 5))
    with pytest.raises(ValueError, match="outside the mesh domain"):
        mesh.locate(np.array([0.5, point]))
