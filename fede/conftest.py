import numpy as np
import pytest

from fede import DensityDataGenerator
from fede.problem import DataProblem, DataProblemTime, FunctionalProblem, FunctionalProblemTime


@pytest.fixture
def sample_data():
    return DensityDataGenerator().generate(100, seed=7)


@pytest.fixture
def mesh_nodes():
    return np.linspace(0.0, 1.0, 11)


@pytest.fixture
def make_problem(sample_data, mesh_nodes):
    def _make(lambda_=(1e-4, 1e-3), nfolds=5, data=None, **kwargs):
        dp = DataProblem(sample_data if data is None else data, mesh_nodes, lambda_, nfolds=nfolds, **kwargs)
        return dp, FunctionalProblem(dp)

    return _make


@pytest.fixture
def make_time_problem():
    x, t = DensityDataGenerator(drift=0.2).generate_space_time(120, seed=11)

    def _make(lambda_=(1e-4, 1e-3), lambda_time=1e-3, nfolds=4, **kwargs):
        dp = DataProblemTime(x, t, np.linspace(0.0, 1.0, 6), np.linspace(0.0, 1.0, 4), lambda_, lambda_time, nfolds=nfolds, **kwargs)
        return dp, FunctionalProblemTime(dp)

    return _make
