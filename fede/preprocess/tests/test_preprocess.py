import pickle

import numpy as np
import pytest
from joblib import parallel_config
from numpy.testing import assert_allclose
from sklearn.exceptions import NotFittedError

from fede.exceptions import FEDEError, NonConvergenceError, PreprocessError
from fede.optimization import MinimizationAlgorithm, create_minimization_algorithm
from fede.preprocess import (
    NoCrossValidation,
    NoCrossValidationTime,
    RightCrossValidation,
    RightCrossValidationTime,
    SimplifiedCrossValidation,
    SimplifiedCrossValidationTime,
    create_preprocess,
    create_preprocess_time,
)


class RecordingMinimization(MinimizationAlgorithm):
    """Return ``np.full(n_basis, call_number)`` and remember every starting point."""

    def __init__(self, data_problem, functional_problem, fail_at=None):
        super().__init__(data_problem, functional_problem)
        self.fail_at = fail_at
        self.starts = []
        self.train_rows = []

    def minimize(self, psi, lambda_, g_init):
        call = len(self.starts)
        self.starts.append(np.array(g_init, copy=True))
        self.train_rows.append(psi.shape[0])
        if call == self.fail_at:
            raise NonConvergenceError("stub failure", stage="minimization")
        return np.full(g_init.shape[0], float(call))


class ScriptedError:
    """Return the scripted fold errors in call order."""

    def __init__(self, losses):
        self.losses = list(losses)
        self.calls = 0

    def score(self, g, psi_valid):
        loss = self.losses[self.calls]
        self.calls += 1
        return loss


def test_no_cross_validation(make_problem):
    dp, fp = make_problem(lambda_=1e-3)
    algorithm = RecordingMinimization(dp, fp)
    preprocess = NoCrossValidation(dp, fp, algorithm)
    preprocess.perform_preprocess_task()

    f_init, g_init, best_lambda = preprocess.get_preprocess_parameter()
    assert len(f_init) == 1
    assert_allclose(g_init, np.log(f_init[0]))
    assert best_lambda == 1e-3
    assert preprocess.get_cv_error() == []
    assert algorithm.starts == []


@pytest.mark.parametrize("lambda_", [[], [1e-3, 1e-2]])
def test_no_cross_validation_requires_one_candidate(make_problem, lambda_):
    dp, fp = make_problem(lambda_=lambda_)
    with pytest.raises(PreprocessError) as exc_info:
        NoCrossValidation(dp, fp).perform_preprocess_task()
    assert exc_info.value.stage == "preprocess"


def test_get_preprocess_parameter_before_task(make_problem):
    dp, fp = make_problem()
    with pytest.raises(NotFittedError):
        RightCrossValidation(dp, fp, RecordingMinimization(dp, fp)).get_preprocess_parameter()


@pytest.mark.parametrize("cls", [SimplifiedCrossValidation, RightCrossValidation])
@pytest.mark.parametrize("lambda_, nfolds", [([], 5), ([1e-3], 1), ([1e-3], 101)])
def test_cross_validation_configuration_errors(make_problem, cls, lambda_, nfolds):
    dp, fp = make_problem(lambda_=lambda_, nfolds=nfolds)
    algorithm = RecordingMinimization(dp, fp)
    with pytest.raises(PreprocessError) as exc_info:
        cls(dp, fp, algorithm).perform_preprocess_task()
    assert exc_info.value.stage == "preprocess"
    assert algorithm.starts == []


def test_cross_validation_requires_an_algorithm(make_problem):
    dp, fp = make_problem()
    with pytest.raises(ValueError):
        RightCrossValidation(dp, fp, None)
    with pytest.raises(ValueError):
        RightCrossValidation(dp, fp, RecordingMinimization(dp, fp), n_jobs=0)


def test_first_candidate_wins_ties(make_problem):
    dp, fp = make_problem(lambda_=[0.1, 0.5, 0.5], nfolds=2)
    algorithm = RecordingMinimization(dp, fp)
    error = ScriptedError([1.5, 1.5, 0.5, 0.5, 0.5, 0.5])
    preprocess = SimplifiedCrossValidation(dp, fp, algorithm, l2_error=error)
    preprocess.perform_preprocess_task()

    assert preprocess.get_cv_error() == [3.0, 1.0, 1.0]
    _, g_init, best_lambda = preprocess.get_preprocess_parameter()
    assert best_lambda == 0.5
    # last fold of candidate 1 is the fourth minimization
    assert_allclose(g_init, 3.0)
    assert preprocess.f_init_[1] is preprocess.f_init_[2]


def test_fold_errors_are_summed(make_problem):
    dp, fp = make_problem(lambda_=[1e-4, 1e-3], nfolds=3)
    error = ScriptedError([0.4, 0.2, 0.2, 0.1, 0.5, 0.3])
    preprocess = RightCrossValidation(dp, fp, RecordingMinimization(dp, fp), l2_error=error)
    preprocess.perform_preprocess_task()

    assert_allclose(preprocess.cv_errors_, [0.8, 0.9])
    for candidate_results, total in zip(preprocess.fold_results_, preprocess.cv_errors_):
        assert [r.fold for r in candidate_results] == [0, 1, 2]
        assert total == sum(r.loss for r in candidate_results)
    assert preprocess.best_lambda_ == 1e-4


def test_right_cross_validation(make_problem):
    dp, fp = make_problem(lambda_=[1e-4, 1e-3], nfolds=3)
    algorithm = RecordingMinimization(dp, fp)
    error = ScriptedError([0.4, 0.2, 0.2, 0.1, 0.5, 0.3])
    preprocess = RightCrossValidation(dp, fp, algorithm, l2_error=error)
    preprocess.perform_preprocess_task()

    assert_allclose(preprocess.best_loss_, [0.2, 0.1])
    # candidate 0 ties between folds 1 and 2: fold 1 (call 1) is kept
    assert_allclose(preprocess.g_sols_[0], 1.0)
    assert_allclose(preprocess.g_sols_[1], 3.0)
    assert_allclose(preprocess.g_init_, 1.0)
    # every fold starts from the log of the candidate's initial density
    for call, start in enumerate(algorithm.starts):
        assert_allclose(start, np.log(preprocess.f_init_[call // 3]))


def test_simplified_cross_validation_warm_starts(make_problem):
    dp, fp = make_problem(lambda_=[1e-4, 1e-3], nfolds=4)
    algorithm = RecordingMinimization(dp, fp)
    preprocess = SimplifiedCrossValidation(dp, fp, algorithm)
    preprocess.perform_preprocess_task()

    assert not hasattr(preprocess, "best_loss_")
    assert len(preprocess.get_cv_error()) == 2
    for candidate in range(2):
        first = 4 * candidate
        assert_allclose(algorithm.starts[first], np.log(preprocess.f_init_[candidate]))
        for fold in range(1, 4):
            assert_allclose(algorithm.starts[first + fold], float(first + fold - 1))
        assert_allclose(preprocess.g_sols_[candidate], float(first + 3))


@pytest.mark.parametrize("cls", [SimplifiedCrossValidation, RightCrossValidation])
def test_number_of_fold_minimizations(make_problem, cls):
    dp, fp = make_problem(lambda_=[1e-4, 1e-3], nfolds=5)
    algorithm = RecordingMinimization(dp, fp)
    preprocess = cls(dp, fp, algorithm)
    preprocess.perform_preprocess_task()

    assert len(algorithm.starts) == 10
    assert algorithm.train_rows == [80] * 10
    np.testing.assert_array_equal(preprocess.k_folds_, np.arange(100) % 5)


def test_fold_non_convergence_is_located(make_problem):
    dp, fp = make_problem(lambda_=[1e-4, 1e-3], nfolds=5)
    algorithm = RecordingMinimization(dp, fp, fail_at=7)
    with pytest.raises(NonConvergenceError) as exc_info:
        RightCrossValidation(dp, fp, algorithm).perform_preprocess_task()
    assert exc_info.value.stage == "preprocess"
    assert exc_info.value.candidate_index == 1
    assert exc_info.value.fold_index == 2
    assert isinstance(exc_info.value.__cause__, NonConvergenceError)


def test_non_finite_fold_error(make_problem):
    dp, fp = make_problem(lambda_=1e-3, nfolds=2)
    preprocess = RightCrossValidation(dp, fp, RecordingMinimization(dp, fp), l2_error=ScriptedError([np.nan, 1.0]))
    with pytest.raises(FEDEError, match="Non-finite"):
        preprocess.perform_preprocess_task()


@pytest.mark.parametrize("cls", [SimplifiedCrossValidation, RightCrossValidation])
def test_cross_validation_with_the_real_functional(make_problem, cls):
    dp, fp = make_problem(lambda_=[1e-4, 1e-3, 1e-2], nfolds=4)
    preprocess = cls(dp, fp, create_minimization_algorithm(dp, fp))
    preprocess.perform_preprocess_task()

    f_init, g_init, best_lambda = preprocess.get_preprocess_parameter()
    assert len(f_init) == 3
    assert g_init.shape == (dp.n_basis,)
    assert best_lambda in dp.candidate_grid
    assert len(preprocess.cv_errors_) == 3
    assert np.all(np.isfinite(preprocess.cv_errors_))
    assert best_lambda == dp.get_lambda(int(np.argmin(preprocess.cv_errors_)))


@pytest.mark.parametrize("cls", [SimplifiedCrossValidation, RightCrossValidation])
def test_parallel_sweep_matches_sequential(make_problem, cls):
    dp, fp = make_problem(lambda_=[1e-4, 1e-3], nfolds=3)
    sequential = cls(dp, fp, create_minimization_algorithm(dp, fp))
    sequential.perform_preprocess_task()
    parallel = cls(dp, fp, create_minimization_algorithm(dp, fp), n_jobs=2)
    with parallel_config(backend="threading"):
        parallel.perform_preprocess_task()

    assert_allclose(parallel.cv_errors_, sequential.cv_errors_, rtol=1e-12)
    assert parallel.best_lambda_ == sequential.best_lambda_
    assert_allclose(parallel.g_init_, sequential.g_init_, rtol=1e-12)


@pytest.mark.parametrize("cls", [SimplifiedCrossValidation, RightCrossValidation])
def test_process_pool_sweep_matches_sequential(make_problem, cls):
    dp, fp = make_problem(lambda_=[1e-4, 1e-3], nfolds=3)
    sequential = cls(dp, fp, create_minimization_algorithm(dp, fp))
    sequential.perform_preprocess_task()
    # default joblib backend, candidates are shipped to worker processes
    parallel = cls(dp, fp, create_minimization_algorithm(dp, fp), n_jobs=2)
    parallel.perform_preprocess_task()

    assert_allclose(parallel.cv_errors_, sequential.cv_errors_, rtol=1e-12)
    assert parallel.best_lambda_ == sequential.best_lambda_
    assert_allclose(parallel.g_init_, sequential.g_init_, rtol=1e-12)


def test_error_context_survives_pickling():
    error = NonConvergenceError("fold failed", stage="preprocess", candidate_index=1, fold_index=2)
    restored = pickle.loads(pickle.dumps(error))
    assert type(restored) is NonConvergenceError
    assert str(restored) == str(error)
    assert (restored.stage, restored.candidate_index, restored.fold_index) == ("preprocess", 1, 2)


def test_create_preprocess(make_problem):
    dp, fp = make_problem(lambda_=1e-3)
    algorithm = create_minimization_algorithm(dp, fp)
    assert type(create_preprocess(dp, fp, algorithm, "NoCrossValidation")) is NoCrossValidation
    assert type(create_preprocess(dp, fp, algorithm, "SimplifiedCV")) is SimplifiedCrossValidation
    right = create_preprocess(dp, fp, algorithm, "RightCV", n_jobs=2)
    assert type(right) is RightCrossValidation
    assert right.n_jobs == 2
    with pytest.raises(ValueError):
        create_preprocess(dp, fp, algorithm, "LeaveOneOut")


def test_create_preprocess_time(make_time_problem, make_problem):
    dp, fp = make_time_problem()
    algorithm = create_minimization_algorithm(dp, fp)
    assert type(create_preprocess_time(dp, fp, algorithm, "NoCrossValidation")) is NoCrossValidationTime
    assert type(create_preprocess_time(dp, fp, algorithm, "SimplifiedCV")) is SimplifiedCrossValidationTime
    assert type(create_preprocess_time(dp, fp, algorithm, "RightCV")) is RightCrossValidationTime
    with pytest.raises(ValueError):
        create_preprocess_time(dp, fp, algorithm, "rightcv")

    dp_space, fp_space = make_problem()
    with pytest.raises(TypeError):
        create_preprocess_time(dp_space, fp_space, algorithm, "RightCV")


def test_right_cross_validation_time(make_time_problem):
    dp, fp = make_time_problem(lambda_=[1e-4, 1e-3], lambda_time=[1e-3, 1e-2], nfolds=3)
    algorithm = RecordingMinimization(dp, fp)
    preprocess = RightCrossValidationTime(dp, fp, algorithm)
    preprocess.perform_preprocess_task()

    f_init, g_init, lambda_s, lambda_t = preprocess.get_preprocess_parameter()
    assert len(f_init) == 4
    assert g_init.shape == (24,)
    assert (lambda_s, lambda_t) in dp.candidate_grid
    assert (preprocess.best_lambda_s_, preprocess.best_lambda_t_) == (lambda_s, lambda_t)
    assert len(preprocess.get_cv_error()) == 4
    assert len(algorithm.starts) == 12


def test_no_cross_validation_time(make_time_problem):
    dp, fp = make_time_problem(lambda_=1e-4, lambda_time=1e-2)
    preprocess = NoCrossValidationTime(dp, fp)
    preprocess.perform_preprocess_task()
    _, g_init, lambda_s, lambda_t = preprocess.get_preprocess_parameter()
    assert (lambda_s, lambda_t) == (1e-4, 1e-2)
    assert_allclose(g_init, np.log(preprocess.f_init_[0]))
