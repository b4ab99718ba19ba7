"""Iteration state shared between the outer loop and the step procedures."""

import time
from dataclasses import dataclass, field
from functools import cached_property
from typing import Optional

import numpy as np
import numpy.typing as npt
from scipy.sparse.linalg import LinearOperator

from .problem import NonlinearProblem


@dataclass(frozen=True, eq=False)
class IterationState:
    """Snapshot of the solver at a point.

    Steps never mutate a state; the outer loop builds a new one (with
    dataclasses.replace) whenever the point, the multipliers or the radius change.
    Residual norms are derived from the stored quantities on first access, so they
    can't go stale.

    Parameters
    ----------
     x : vector
        The point.
     fx : float
        Objective at x.
     cx : vector
        Constraints at x.
     gx : vector
        Objective gradient at x.
     J : LinearOperator
        Constraint Jacobian at x.
     multipliers : vector
        Current multiplier estimate. It is not necessarily computed at x: the outer
        loop only re-estimates multipliers after a normal step.
     rho : float
        Infeasibility radius.
     iteration : int
        Outer iteration counter.

    """

    x: npt.NDArray[np.float64]
    fx: float
    cx: npt.NDArray[np.float64]
    gx: npt.NDArray[np.float64]
    J: LinearOperator
    multipliers: npt.NDArray[np.float64]
    rho: float
    iteration: int = 0

    @cached_property
    def lagrangian_gradient(self) -> npt.NDArray[np.float64]:
        """Gradient of the Lagrangian, g + J^T * y."""
        return self.gx + self.J.rmatvec(self.multipliers)

    @cached_property
    def lagrangian(self) -> float:
        """Lagrangian, f + y^T * c."""
        return self.fx + float(np.dot(self.multipliers, self.cx))

    @cached_property
    def primal_norm(self) -> float:
        """||c(x)||."""
        return float(np.linalg.norm(self.cx))

    @cached_property
    def dual_norm(self) -> float:
        """||g + J^T * y||."""
        return float(np.linalg.norm(self.lagrangian_gradient))

    @cached_property
    def gradient_norm(self) -> float:
        """||g||."""
        return float(np.linalg.norm(self.gx))


@dataclass
class Budget:
    """Evaluation and wall clock budget.

    The evaluation count is the number of objective plus constraint evaluations, as
    tracked by the problem's counters. Both limits are strict: the budget is exhausted
    once the count (or elapsed time) *exceeds* the limit.

    """

    max_eval: int
    max_time: float
    start_time: float = field(default_factory=time.time)

    def num_evals(self, problem: NonlinearProblem) -> int:
        """Objective plus constraint evaluations so far."""
        return problem.counters.neval_obj + problem.counters.neval_cons

    def elapsed(self) -> float:
        """Seconds since the budget was created."""
        return time.time() - self.start_time

    def exhausted(self, problem: NonlinearProblem) -> Optional[str]:
        """Which limit, if any, has been exceeded.

        Returns "max_eval" or "max_time", checked in that order, or None.

        """
        if self.num_evals(problem) > self.max_eval:
            return "max_eval"
        if self.elapsed() > self.max_time:
            return "max_time"
        return None
