import sys
import gc
import time
import numpy as np
from fede import FEDE, DensityDataGenerator
from fede.optimization import create_minimization_algorithm
from fede.problem import DataProblem, FunctionalProblem


def benchmark_fede(x, mesh_nodes, lambdas, nfolds, preprocess_method, n_jobs=None):
    """Benchmark one FEDE run."""
    gc.collect()  # Clear garbage collector to avoid interference
    start_time = time.time_ns()
    data_problem = DataProblem(x, mesh_nodes, lambdas, nfolds=nfolds)
    functional_problem = FunctionalProblem(data_problem)
    algorithm = create_minimization_algorithm(data_problem, functional_problem)
    model = FEDE(data_problem, functional_problem, algorithm, preprocess_method=preprocess_method, n_jobs=n_jobs)
    model.apply()
    elapsed_time = time.time_ns() - start_time
    del model  # Free memory
    return elapsed_time


if __name__ == "__main__":
    n = int(2e3)
    mesh_nodes = np.linspace(0.0, 1.0, 51)
    lambdas = np.logspace(-5, -2, 4)
    nfolds = 10
    generator = DensityDataGenerator()
    methods = ["SimplifiedCV", "RightCV"]

    print("Python Information:\n", sys.version)
    np.show_config()

    num_replications = 10
    run_times = dict()
    for method in methods:
        run_times[method] = []
        for i in range(num_replications):
            # Draw a new sample each time to simulate different data
            x = generator.generate(n, seed=i)
            run_times[method].append(benchmark_fede(x, mesh_nodes, lambdas, nfolds, method))

    for method in methods:
        # remove fastest and slowest
        run_times_remove = np.sort(run_times[method])[1:-1]

        print(
            f"Average time (remove fastest and slowest) for {num_replications} replications with sample size {n} on " +
            f"FEDE with {method} over {lambdas.size} candidates and {nfolds} folds: {np.mean(run_times_remove) / 1e9:.6f} seconds"
        )
        print(f"Standard deviation of run times: {np.std(run_times_remove) / 1e9:.6f} seconds")
