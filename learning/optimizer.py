"""
PARAMETER OPTIMIZER - Search Strategy Parameters

Explores a discrete parameter space with a user-supplied objective:
- Grid search: every combination of the Cartesian product
- Random search: a seeded sample of combinations

Both share one evaluation contract: the objective returns an Evaluation
with a score and a validity flag. Invalid or failing candidates never win.
The winner is the highest score, ties broken by enumeration order, so the
result does not depend on how many workers evaluated the space.
"""

import math
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from itertools import product
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

import numpy as np
from loguru import logger


class OptimizationMethod(str, Enum):
    """Parameter optimization methods."""
    GRID_SEARCH = "grid_search"
    RANDOM_SEARCH = "random_search"


class ParameterGrid:
    """Deterministic Cartesian product over named value lists."""

    def __init__(self, ranges: Dict[str, Sequence[Any]]):
        if not ranges:
            raise ValueError("Parameter grid needs at least one parameter")
        for name, values in ranges.items():
            if len(values) == 0:
                raise ValueError(f"Parameter '{name}' has no values")
        self.ranges = {name: list(values) for name, values in ranges.items()}
        self.names = list(self.ranges)

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        for values in product(*[self.ranges[name] for name in self.names]):
            yield dict(zip(self.names, values))

    def __len__(self) -> int:
        return math.prod(len(values) for values in self.ranges.values())


@dataclass
class Evaluation:
    """Outcome of scoring one parameter combination."""
    params: Dict[str, Any]
    score: float = float('-inf')
    is_valid: bool = False
    metrics: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    index: int = 0  # enumeration order, used as tie-breaker

    def to_dict(self) -> Dict[str, Any]:
        return {
            "params": dict(self.params),
            "score": self.score,
            "is_valid": self.is_valid,
            "error": self.error,
            "index": self.index,
        }


@dataclass
class OptimizationResult:
    """Result of parameter optimization."""
    best_params: Optional[Dict[str, Any]]  # None when no candidate was valid
    best_score: float
    iterations: int
    failed: int
    method: OptimizationMethod
    history: List[Evaluation] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.best_params is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "best_params": self.best_params,
            "best_score": self.best_score,
            "iterations": self.iterations,
            "failed": self.failed,
            "method": self.method.value,
        }


Objective = Callable[[Dict[str, Any]], Evaluation]


class Optimizer(ABC):
    """
    Base optimizer.

    Subclasses only decide which candidates to evaluate; evaluation,
    failure handling and selection are shared.
    """

    method: OptimizationMethod = OptimizationMethod.GRID_SEARCH

    def __init__(self, max_workers: Optional[int] = None):
        self.max_workers = max_workers

    @abstractmethod
    def candidates(self, ranges: Dict[str, Sequence[Any]]) -> List[Dict[str, Any]]:
        """Parameter combinations to evaluate, in enumeration order."""

    def optimize(self, objective: Objective, ranges: Dict[str, Sequence[Any]]) -> OptimizationResult:
        candidates = self.candidates(ranges)
        evaluations = self._evaluate_all(objective, candidates)

        valid = [e for e in evaluations if e.is_valid and not math.isnan(e.score)]
        best = max(valid, key=lambda e: (e.score, -e.index)) if valid else None
        failed = sum(1 for e in evaluations if e.error is not None)

        return OptimizationResult(
            best_params=dict(best.params) if best else None,
            best_score=best.score if best else float('-inf'),
            iterations=len(evaluations),
            failed=failed,
            method=self.method,
            history=evaluations,
        )

    def _evaluate(self, objective: Objective, params: Dict[str, Any], index: int) -> Evaluation:
        try:
            evaluation = objective(dict(params))
        except Exception as e:
            logger.debug(f"Objective function failed for {params}: {e}")
            return Evaluation(params=dict(params), error=str(e), index=index)
        evaluation.index = index
        return evaluation

    def _evaluate_all(self, objective: Objective, candidates: List[Dict[str, Any]]) -> List[Evaluation]:
        if not self.max_workers or self.max_workers <= 1 or len(candidates) <= 1:
            return [self._evaluate(objective, params, i) for i, params in enumerate(candidates)]

        evaluations: List[Evaluation] = []
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(self._evaluate, objective, params, i): i
                for i, params in enumerate(candidates)
            }
            for future in as_completed(futures):
                evaluations.append(future.result())

        evaluations.sort(key=lambda e: e.index)
        return evaluations


class GridSearchOptimizer(Optimizer):
    """Exhaustive search over the full grid."""

    method = OptimizationMethod.GRID_SEARCH

    def candidates(self, ranges: Dict[str, Sequence[Any]]) -> List[Dict[str, Any]]:
        return list(ParameterGrid(ranges))


class RandomSearchOptimizer(Optimizer):
    """Seeded sample of distinct grid combinations."""

    method = OptimizationMethod.RANDOM_SEARCH

    def __init__(self, n_iter: int = 50, seed: int = 42, max_workers: Optional[int] = None):
        super().__init__(max_workers)
        self.n_iter = n_iter
        self.seed = seed

    def candidates(self, ranges: Dict[str, Sequence[Any]]) -> List[Dict[str, Any]]:
        grid = list(ParameterGrid(ranges))
        if self.n_iter >= len(grid):
            return grid
        rng = np.random.default_rng(self.seed)
        picks = sorted(rng.choice(len(grid), size=self.n_iter, replace=False))
        return [grid[i] for i in picks]
