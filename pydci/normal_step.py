r"""Normal step: restore feasibility inside an infeasibility radius.

Given a point x with constraint violation ||c(x)|| > rho, the normal step looks for a
nearby z with ||c(z)|| <= rho by approximately solving
    minimize 0.5 * ||c(z)||^2
with a trust region Gauss-Newton method. Each iteration combines the minimum norm
Gauss-Newton step (from LSQR on the Jacobian operator) with the Cauchy step using the
dogleg path, and accepts or rejects the trial point with the usual ratio of actual to
predicted reduction.

The step never increases the constraint violation: trial points are only accepted when
they reduce ||c||.

"""

from dataclasses import dataclass
from typing import Optional

import numpy as np
import numpy.typing as npt
from scipy.sparse.linalg import LinearOperator

from .numerical_helpers import cauchy_step, dogleg, least_squares
from .problem import NonlinearProblem
from .state import Budget

SUCCESS = "success"
INFEASIBLE = "infeasible"


@dataclass
class NormalStepResult:
    """Wrapper for the result of a normal step.

    Parameters
    ----------
     z : vector
        The restored point.
     cz : vector
        Constraints at z.
     J : LinearOperator
        Constraint Jacobian at z.
     rho : float
        Infeasibility radius after the radius update.
     status : str
        One of:
          "success" : ||c(z)|| <= rho
          "infeasible" : z is (locally) the best we can do and it isn't good enough
          "max_eval", "max_time" : ran out of budget
     nits : int
        Number of trust region iterations.
     trust_radius : float
        Trust region radius at exit.

    """

    z: npt.NDArray[np.float64]
    cz: npt.NDArray[np.float64]
    J: LinearOperator
    rho: float
    status: str
    nits: int
    trust_radius: float

    @property
    def primal_norm(self) -> float:
        """||c(z)||."""
        return float(np.linalg.norm(self.cz))


def update_radius(rho: float, rho_max: float, ngp: float, floor: float) -> float:
    """Shrink the infeasibility radius.

    The target radius is proportional to ngp, the dual residual relative to the
    gradient size: far from stationarity we tolerate a lot of infeasibility, close to
    it we ask for (almost) feasible points. The target is capped at 0.75 * rho_max and
    floored at `floor` (the primal tolerance), and the radius never grows.

    Parameters
    ----------
     rho : float
        Current radius.
     rho_max : float
        Upper bound on the radius.
     ngp : float
        ||grad L|| / (||grad f|| + 1).
     floor : float
        Smallest radius we ever ask for.

    Returns
    -------
     rho : float
        The new radius.

    """
    target = max(min(ngp, 0.75) * rho_max, floor)
    return min(rho, target)


def is_stationary(
    g: npt.NDArray[np.float64],
    Jg: npt.NDArray[np.float64],
    c_norm: float,
    tolerance: float,
) -> bool:
    """Check whether the linearized violation can't be reduced along -g.

    Minimizing ||c - alpha * J * g|| over alpha reduces ||c||^2 by r^2, where
    r = ||g||^2 / ||J * g|| and g = J^T * c. Since r <= ||c||, the ratio r / ||c|| is
    a measure of stationarity that doesn't change when c or J is rescaled.

    Parameters
    ----------
     g : vector
        J^T * c.
     Jg : vector
        J * g.
     c_norm : float
        ||c||.
     tolerance : float
        We declare stationarity when r <= tolerance * ||c||.

    Returns
    -------
     stationary : bool
        True if c is (numerically) orthogonal to the range of J.

    """
    g_norm = float(np.linalg.norm(g))
    Jg_norm = float(np.linalg.norm(Jg))
    return g_norm**2 <= tolerance * c_norm * Jg_norm


def normal_step(
    problem: NonlinearProblem,
    x: npt.NDArray[np.float64],
    cx: npt.NDArray[np.float64],
    rho: float,
    rho_max: float,
    ngp: float,
    primal_tolerance: float,
    budget: Budget,
    J: Optional[LinearOperator] = None,
    trust_radius: float = 1.0,
    max_iterations: int = 100,
    eta: float = 1e-4,
    infeasibility_tolerance: float = 1e-6,
    min_trust_radius: float = 1e-12,
    lsqr_atol: float = 1e-12,
    lsqr_btol: float = 1e-12,
) -> NormalStepResult:
    """Restore feasibility.

    Parameters
    ----------
     problem : NonlinearProblem
        The problem.
     x : vector
        Starting point.
     cx : vector
        Constraints at x.
     rho, rho_max : float
        Infeasibility radius and its upper bound. The radius is updated (see
        update_radius) before anything else.
     ngp : float
        Dual residual relative to the gradient size; guides the radius update.
     primal_tolerance : float
        Floor for the radius.
     budget : Budget
        Evaluation and time budget, checked before every trial point.
     J : LinearOperator, optional
        Jacobian at x, if the caller already has it.
     trust_radius : float, default=1.0
        Initial trust region radius.
     max_iterations : int, default=100
        Trust region iterations before we give up and report infeasibility.
     eta : float, default=1e-4
        Minimum ratio of actual to predicted reduction to accept a trial point.
     infeasibility_tolerance : float, default=1e-6
        We declare z a stationary point of the constraint violation when a trial
        step from z was rejected and is_stationary holds with this tolerance, or
        immediately when J^T * c = 0.
     min_trust_radius : float, default=1e-12
        If the trust region collapses below this, no step can reduce the violation.
     lsqr_atol, lsqr_btol : float
        Tolerances for the Gauss-Newton least squares solves.

    Returns
    -------
     res : NormalStepResult
        The restored point and status.

    Notes
    -----
    Only constraint evaluations are spent here (one per trial point), plus Jacobian
    evaluations at accepted points. The first check in each iteration is whether we
    are already inside the radius, so a call with ||c(x)|| <= rho (after the radius
    update) returns immediately without evaluating anything.

    """
    rho = update_radius(rho, rho_max, ngp, primal_tolerance)
    z = x.copy()
    cz = cx.copy()
    cz_norm = float(np.linalg.norm(cz))
    Jz = problem.jacobian_operator(z) if J is None else J
    delta = trust_radius
    rejected = False

    def result(status: str, nits: int) -> NormalStepResult:
        return NormalStepResult(
            z=z, cz=cz, J=Jz, rho=rho, status=status, nits=nits, trust_radius=delta
        )

    for nit in range(max_iterations):
        if cz_norm <= rho:
            return result(SUCCESS, nit)

        exhausted = budget.exhausted(problem)
        if exhausted is not None:
            return result(exhausted, nit)

        g = Jz.rmatvec(cz)
        if not np.any(g):
            # No descent direction for ||c||^2 at all.
            return result(INFEASIBLE, nit)

        Jg = Jz.matvec(g)
        if rejected and is_stationary(g, Jg, cz_norm, infeasibility_tolerance):
            return result(INFEASIBLE, nit)

        if delta < min_trust_radius:
            return result(INFEASIBLE, nit)

        gauss_newton, _, _ = least_squares(Jz, -cz, atol=lsqr_atol, btol=lsqr_btol)
        d = dogleg(gauss_newton, cauchy_step(g, Jg), g, delta)
        d_norm = float(np.linalg.norm(d))

        predicted = 0.5 * (cz_norm**2 - float(np.linalg.norm(cz + Jz.matvec(d))) ** 2)
        z_trial = z + d
        c_trial = problem.constraints(z_trial)
        trial_norm = float(np.linalg.norm(c_trial))

        if predicted > 0 and np.isfinite(trial_norm):
            ratio = 0.5 * (cz_norm**2 - trial_norm**2) / predicted
        else:
            ratio = -np.inf

        if ratio >= eta and trial_norm < cz_norm:
            z, cz, cz_norm = z_trial, c_trial, trial_norm
            Jz = problem.jacobian_operator(z)
            rejected = False
        else:
            rejected = True

        if ratio < 0.25:
            delta = 0.25 * d_norm
        elif ratio > 0.75 and d_norm >= 0.99 * delta:
            delta = 2.0 * delta

    if cz_norm <= rho:
        return result(SUCCESS, max_iterations)

    exhausted = budget.exhausted(problem)
    if exhausted is not None:
        return result(exhausted, max_iterations)

    return result(INFEASIBLE, max_iterations)
