import numpy as np
import pytest
from numpy.testing import assert_allclose

from fede.problem import DataProblem, DataProblemTime


def test_data_problem_attributes(make_problem, sample_data):
    dp, _ = make_problem(lambda_=[1e-3, 1e-2, 1e-1])
    assert dp.n_obs == sample_data.size
    assert dp.n_nodes == 11
    assert dp.n_basis == 11
    assert dp.psi.shape == (sample_data.size, 11)
    assert dp.basis_matrix is dp.get_global_psi()
    assert dp.mass.shape == dp.stiffness.shape == (11, 11)
    assert len(dp.penalty_components) == 1
    assert_allclose(dp.penalty_components[0], dp.penalty_components[0].T, atol=1e-8)
    assert dp.n_lambda == 3
    assert dp.candidate_grid == [1e-3, 1e-2, 1e-1]
    assert dp.get_lambda(2) == 1e-1
    assert dp.fvec is None
    s = repr(dp)
    assert "DataProblem(" in s and "nfolds=5" in s


def test_data_problem_scalar_and_empty_lambda(make_problem):
    dp, _ = make_problem(lambda_=0.5)
    assert dp.candidate_grid == [0.5]
    dp, _ = make_problem(lambda_=[])
    assert dp.n_lambda == 0


def test_data_problem_penalty_is_semidefinite(make_problem):
    dp, _ = make_problem()
    penalty = dp.penalty_components[0]
    assert_allclose(penalty @ np.ones(dp.n_basis), 0.0, atol=1e-8)
    assert np.all(np.linalg.eigvalsh(0.5 * (penalty + penalty.T)) > -1e-8)


@pytest.mark.parametrize(
    "kwargs, error",
    [
        ({"nfolds": 2.5}, TypeError),
        ({"inference": "yes"}, ValueError),
        ({"ci_level": 1.5}, ValueError),
        ({"heat_step": 0.0}, ValueError),
        ({"heat_iter": 0}, ValueError),
        ({"n_quad": 1}, ValueError),
        ({"print_progress": 1}, ValueError),
        ({"lambda_": [1e-3, -1.0]}, ValueError),
        ({"fvec": np.ones(4)}, ValueError),
        ({"fvec": np.zeros(11)}, ValueError),
    ],
)
def test_data_problem_invalid(make_problem, kwargs, error):
    with pytest.raises(error):
        make_problem(**kwargs)


def test_data_problem_data_outside_domain(mesh_nodes):
    with pytest.raises(ValueError, match="within the mesh domain"):
        DataProblem(np.array([0.2, 1.5]), mesh_nodes, 1e-3)


def test_data_problem_fvec(make_problem):
    dp, _ = make_problem(fvec=np.full(11, 2.0))
    assert_allclose(dp.fvec, 2.0)


def test_data_problem_time_attributes(make_time_problem):
    dp, _ = make_time_problem(lambda_=[1e-4, 1e-3], lambda_time=[1e-2, 1e-1])
    assert dp.n_nodes == 6
    assert dp.n_time_nodes == 4
    assert dp.n_basis == 24
    assert dp.upsilon.shape == (120, 24)
    assert dp.basis_matrix is dp.get_upsilon()
    assert_allclose(np.asarray(dp.upsilon.sum(axis=1)).ravel(), 1.0)
    assert len(dp.penalty_components) == 2
    assert dp.candidate_grid == [(1e-4, 1e-2), (1e-4, 1e-1), (1e-3, 1e-2), (1e-3, 1e-1)]
    assert dp.get_lambda(1) == (1e-4, 1e-1)
    ones = np.ones(24)
    assert_allclose(ones @ (dp.mass @ ones), 1.0)
    assert "DataProblemTime(" in repr(dp)


def test_data_problem_time_layout(make_time_problem):
    dp, _ = make_time_problem()
    # coefficient of space node s and time node t sits at s * n_time_nodes + t
    i = 0
    psi_row = dp.psi[i].toarray().ravel()
    phi_row = dp.phi[i].toarray().ravel()
    assert_allclose(dp.upsilon[i].toarray().ravel(), np.outer(psi_row, phi_row).ravel())


def test_data_problem_time_size_mismatch():
    nodes = np.linspace(0.0, 1.0, 5)
    with pytest.raises(ValueError, match="same size"):
        DataProblemTime([0.1, 0.2, 0.3], [0.5, 0.5], nodes, nodes, 1e-3, 1e-3)
