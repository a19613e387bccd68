"""
Test parameter grids and optimizers.

Run with: python -m pytest tests/test_optimizer.py -v
"""

import pytest

from learning.optimizer import (
    Evaluation,
    GridSearchOptimizer,
    OptimizationMethod,
    Optimizer,
    ParameterGrid,
    RandomSearchOptimizer,
)

RANGES = {"a": [1, 2, 3], "b": [10, 20]}


def score_sum(params):
    return Evaluation(params=params, score=params["a"] + params["b"], is_valid=True)


class TestParameterGrid:

    def test_cartesian_order(self):
        grid = ParameterGrid(RANGES)
        combos = list(grid)
        assert len(grid) == 6
        assert combos[0] == {"a": 1, "b": 10}
        assert combos[1] == {"a": 1, "b": 20}
        assert combos[-1] == {"a": 3, "b": 20}

    def test_empty_values_rejected(self):
        with pytest.raises(ValueError):
            ParameterGrid({"a": []})
        with pytest.raises(ValueError):
            ParameterGrid({})


class TestGridSearch:

    def test_picks_highest_score(self):
        result = GridSearchOptimizer().optimize(score_sum, RANGES)
        assert result.best_params == {"a": 3, "b": 20}
        assert result.best_score == 23
        assert result.iterations == 6
        assert result.method == OptimizationMethod.GRID_SEARCH

    def test_ties_go_to_first_enumerated(self):
        result = GridSearchOptimizer().optimize(
            lambda p: Evaluation(params=p, score=1.0, is_valid=True), RANGES
        )
        assert result.best_params == {"a": 1, "b": 10}

    def test_invalid_and_failing_candidates_never_win(self):
        def objective(params):
            if params["a"] == 3:
                raise RuntimeError("backtest blew up")
            return Evaluation(params=params, score=params["a"], is_valid=params["b"] == 10)

        result = GridSearchOptimizer().optimize(objective, RANGES)

        assert result.best_params == {"a": 2, "b": 10}
        assert result.failed == 2
        assert result.history[4].error == "backtest blew up"

    def test_nothing_valid(self):
        result = GridSearchOptimizer().optimize(lambda p: Evaluation(params=p, score=5.0), RANGES)
        assert not result.found
        assert result.best_params is None

    def test_parallel_matches_serial(self):
        serial = GridSearchOptimizer().optimize(score_sum, RANGES)
        parallel = GridSearchOptimizer(max_workers=4).optimize(score_sum, RANGES)
        assert parallel.best_params == serial.best_params
        assert [e.index for e in parallel.history] == list(range(6))
        assert parallel.to_dict() == serial.to_dict()


class TestOptimizerBase:

    def test_base_class_is_abstract(self):
        with pytest.raises(TypeError):
            Optimizer()


class TestRandomSearch:

    def test_seeded_subset(self):
        a = RandomSearchOptimizer(n_iter=3, seed=1).candidates(RANGES)
        b = RandomSearchOptimizer(n_iter=3, seed=1).candidates(RANGES)
        assert a == b
        assert len(a) == 3
        assert all(c in list(ParameterGrid(RANGES)) for c in a)

    def test_large_n_iter_is_full_grid(self):
        result = RandomSearchOptimizer(n_iter=100).optimize(score_sum, RANGES)
        assert result.iterations == 6
        assert result.best_params == {"a": 3, "b": 20}
        assert result.method == OptimizationMethod.RANDOM_SEARCH
