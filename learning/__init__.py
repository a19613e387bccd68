"""
LEARNING MODULE - Parameter search for the pairs strategy

This module finds the strategy parameters that performed best in-sample:
- Enumerate a discrete parameter space deterministically
- Score each combination with a shared evaluation contract
- Pick the winner independently of evaluation order or parallelism
"""

from learning.optimizer import (
    OptimizationMethod,
    ParameterGrid,
    Evaluation,
    OptimizationResult,
    Optimizer,
    GridSearchOptimizer,
    RandomSearchOptimizer,
)

__all__ = [
    "OptimizationMethod",
    "ParameterGrid",
    "Evaluation",
    "OptimizationResult",
    "Optimizer",
    "GridSearchOptimizer",
    "RandomSearchOptimizer",
]
