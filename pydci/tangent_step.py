r"""Tangent step: decrease the Lagrangian while keeping infeasibility under control.

Starting from a point z produced by the normal step, the tangent step calculates a
direction d from the regularized KKT system
     _                _   _   _     _          _
    | H + gamma * I  J^T | | d |   | -grad L(z) |
    |      J   -delta * I| | y | = |      0     |
     -                -   -   -     -          -
so that d (approximately) satisfies J * d = 0, i.e. it is tangent to the constraint
manifold. If the KKT solve fails, or d is not a descent direction for the Lagrangian
(which happens when the Hessian has negative curvature along the manifold), we fall back
to the projected steepest descent direction, -P * grad L(z).

We then backtrack along d, accepting the first point x = z + s * d that
  1. decreases the merit function L(x, y) = f(x) + y^T c(x) sufficiently (Armijo), and
  2. keeps ||c(x)|| <= infeasibility_growth * rho.

"""

from dataclasses import dataclass
from typing import Tuple

import numpy as np
import numpy.typing as npt
from scipy.sparse.linalg import LinearOperator

from .exceptions import (
    BacktrackingLineSearchError,
    InfeasibilityGrowthError,
    InvalidDescentDirectionError,
    KKTSolveError,
    SevereCurvatureError,
)
from .kkt import KKTSystem
from .numerical_helpers import project_onto_nullspace
from .problem import NonlinearProblem
from .state import Budget

SUCCESS = "success"
UNSUCCESSFUL = "unsuccessful"


@dataclass
class TangentStepResult:
    """Wrapper for the result of a tangent step.

    Parameters
    ----------
     x : vector
        The new point. Equals z unless the status is "success".
     status : str
        One of:
          "success" : x satisfies both acceptance conditions (or z was already
                      stationary along the manifold, in which case x = z)
          "unsuccessful" : backtracking failed, or the direction was not a descent
                           direction; x = z
          "max_eval", "max_time" : ran out of budget; x = z
     step_size : float
        Accepted step size s, or 0.0.
     nits : int
        Number of trial points evaluated.
     direction : str
        "kkt" or "projected_gradient", whichever direction was used.
     message : str
        Summary of result.

    """

    x: npt.NDArray[np.float64]
    status: str
    step_size: float
    nits: int
    direction: str
    message: str


def tangent_direction(
    kkt: KKTSystem,
    lagrangian_gradient: npt.NDArray[np.float64],
    J: LinearOperator,
    lsqr_atol: float = 1e-12,
    lsqr_btol: float = 1e-12,
) -> Tuple[npt.NDArray[np.float64], str]:
    """Calculate the search direction.

    Parameters
    ----------
     kkt : KKTSystem
        KKT system, already refreshed at the current point.
     lagrangian_gradient : vector
        Gradient of the Lagrangian at the current point.
     J : LinearOperator
        Constraint Jacobian, used by the fallback.

    Returns
    -------
     d : vector
        Search direction.
     direction : str
        "kkt" or "projected_gradient".

    """
    rhs = np.concatenate([-lagrangian_gradient, np.zeros(kkt.num_constraints)])
    try:
        d, _ = kkt.solve(rhs)
        slope = np.dot(lagrangian_gradient, d)
        if slope >= 0.0 and np.any(d):
            raise InvalidDescentDirectionError(
                message="KKT step was not a descent direction.", slope=slope
            )
        return d, "kkt"
    except (KKTSolveError, InvalidDescentDirectionError):
        d = -project_onto_nullspace(
            J, lagrangian_gradient, atol=lsqr_atol, btol=lsqr_btol
        )
        return d, "projected_gradient"


def tangent_step(
    problem: NonlinearProblem,
    z: npt.NDArray[np.float64],
    multipliers: npt.NDArray[np.float64],
    kkt: KKTSystem,
    lagrangian_gradient: npt.NDArray[np.float64],
    J: LinearOperator,
    merit_value: float,
    rho: float,
    budget: Budget,
    infeasibility_growth: float = 2.0,
    backtracking_alpha: float = 1e-4,
    backtracking_beta: float = 0.5,
    backtracking_min_step: float = 1e-10,
    lsqr_atol: float = 1e-12,
    lsqr_btol: float = 1e-12,
) -> TangentStepResult:
    """Take a tangent step from z.

    Parameters
    ----------
     problem : NonlinearProblem
        The problem.
     z : vector
        Reference point, typically the output of a normal step.
     multipliers : vector
        Multiplier estimate, held fixed during the step.
     kkt : KKTSystem
        KKT system, refreshed at z with these multipliers.
     lagrangian_gradient : vector
        Gradient of the Lagrangian at z.
     J : LinearOperator
        Constraint Jacobian at z.
     merit_value : float
        The Lagrangian at z; trial points must improve on it.
     rho : float
        Infeasibility radius.
     budget : Budget
        Evaluation and time budget, checked before every trial point.
     infeasibility_growth : float, default=2.0
        Trial points must satisfy ||c(x)|| <= infeasibility_growth * rho.
     backtracking_alpha : float, default=1e-4
        Sufficient decrease coefficient.
     backtracking_beta : float, default=0.5
        Step size reduction factor.
     backtracking_min_step : float, default=1e-10
        Smallest step size we try before giving up.

    Returns
    -------
     res : TangentStepResult
        The new point and status.

    """
    d, direction = tangent_direction(
        kkt, lagrangian_gradient, J, lsqr_atol=lsqr_atol, lsqr_btol=lsqr_btol
    )
    slope = float(np.dot(lagrangian_gradient, d))
    if not np.any(d):
        return TangentStepResult(
            x=z,
            status=SUCCESS,
            step_size=0.0,
            nits=0,
            direction=direction,
            message="Lagrangian is stationary along the constraint manifold.",
        )

    if slope >= 0.0:
        error = InvalidDescentDirectionError(
            message="Search direction is not a descent direction.", slope=slope
        )
        return TangentStepResult(
            x=z,
            status=UNSUCCESSFUL,
            step_size=0.0,
            nits=0,
            direction=direction,
            message=str(error),
        )

    allowed = infeasibility_growth * rho
    step_size = 1.0
    nits = 0
    try:
        while True:
            exhausted = budget.exhausted(problem)
            if exhausted is not None:
                return TangentStepResult(
                    x=z,
                    status=exhausted,
                    step_size=0.0,
                    nits=nits,
                    direction=direction,
                    message="Ran out of budget during the line search.",
                )

            x = z + step_size * d
            fx = problem.objective(x)
            cx = problem.constraints(x)
            nits += 1
            merit = fx + float(np.dot(multipliers, cx))
            primal_norm = float(np.linalg.norm(cx))
            required = merit_value + backtracking_alpha * step_size * slope

            sufficient_decrease = np.isfinite(merit) and merit <= required
            bounded_infeasibility = primal_norm <= allowed
            if sufficient_decrease and bounded_infeasibility:
                break

            if step_size < backtracking_min_step:
                if not bounded_infeasibility:
                    raise InfeasibilityGrowthError(
                        message="Small steps did not keep infeasibility bounded.",
                        primal_norm=primal_norm,
                        allowed=allowed,
                    )
                raise SevereCurvatureError(
                    message="Small step sizes did not adequately decrease the merit.",
                    required_improvement=-backtracking_alpha * step_size * slope,
                    actual_improvement=merit_value - merit,
                )
            step_size *= backtracking_beta
    except BacktrackingLineSearchError as e:
        return TangentStepResult(
            x=z,
            status=UNSUCCESSFUL,
            step_size=0.0,
            nits=nits,
            direction=direction,
            message=str(e),
        )

    return TangentStepResult(
        x=x,
        status=SUCCESS,
        step_size=step_size,
        nits=nits,
        direction=direction,
        message="Tangent step accepted.",
    )
