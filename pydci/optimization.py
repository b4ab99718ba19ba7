r"""Dynamic Control of Infeasibility.

The solver minimizes f(x) subject to c(x) = 0 by alternating two kinds of steps:
- a normal step, which reduces the constraint violation ||c(x)|| until it is below a
  radius rho, and
- a tangent step, which decreases the Lagrangian f(x) + y^T c(x) while letting the
  violation grow to at most a multiple of rho.

Rather than insisting on feasibility at every iteration, the method controls how much
infeasibility it tolerates: rho shrinks as the dual residual ||grad f + J^T y|| gets
smaller, so iterates approach the feasible set at the same pace as they approach
stationarity. See (Bielschowsky and Gomes, 2008).

The outer loop works like this:
  1. Evaluate the starting point, estimate multipliers and fix the tolerances
       eps_p = atol + rtol * ||c(x0)||,   eps_d = atol + rtol * ||grad L(x0)||.
  2. Normal step, retried until ||c(z)|| <= rho, the problem is found to be locally
     infeasible, or the budget runs out.
  3. Re-estimate multipliers at z. Stop if ||c(z)|| < eps_p and ||grad L(z)|| < eps_d.
  4. Refresh the KKT system at z and take a tangent step to a new point x.
  5. Evaluate x, check convergence and budget, go back to 2.

References
----------
- Bielschowsky, Roberto H. and Gomes, Francisco A. M., Dynamic Control of
  Infeasibility in Equality Constrained Optimization, SIAM Journal on Optimization
  19(3), 1299-1325, 2008. https://doi.org/10.1137/070679557

"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import List, Literal, Optional, Sequence

import matplotlib.pyplot as plt
import numpy as np
import numpy.typing as npt
from matplotlib.axes import Axes
from scipy.sparse.linalg import LinearOperator

from .exceptions import NotEqualityConstrainedError
from .kkt import FixedRegularization, KKTSystem, RegularizationPolicy
from .multipliers import MultiplierEstimate, estimate_multipliers
from .normal_step import INFEASIBLE, NormalStepResult, normal_step
from .problem import Counters, NonlinearProblem
from .reporting import ConsolePrinter, HistoryRecorder, ProgressRow, ProgressSink
from .state import Budget, IterationState
from .tangent_step import SUCCESS, tangent_step

TangentFailurePolicy = Literal["continue", "abort", "shrink"]

STATUS_MESSAGES = {
    "first_order": "First order stationary point found to the desired tolerance.",
    "max_eval": "Maximum number of evaluations exceeded.",
    "max_time": "Maximum elapsed time exceeded.",
    "infeasible": "Problem may be locally infeasible.",
    "stalled": "Tangent step failed and the solver was asked to stop.",
    "unknown": "Solver stopped for an unknown reason.",
}


@dataclass
class DCISettings:
    """Solver settings.

    Parameters
    ----------
    atol : float, default=1e-8
        Absolute tolerance for both the primal and dual residuals.
    rtol : float, default=1e-6
        Relative tolerance. The primal tolerance is atol + rtol * ||c(x0)|| and the
        dual tolerance atol + rtol * ||grad L(x0)||; both are fixed at the start.
    ctol : float, default=1e-6
        Constraint stationarity tolerance. After a rejected trial step, the normal
        step declares the problem locally infeasible when ||J^T c||^2 <= ctol *
        ||c|| * ||J J^T c||, a test that is unchanged by rescaling c or J.
    max_eval : int, default=1000
        Budget for objective plus constraint evaluations. The solver stops with status
        "max_eval" once the count exceeds this.
    max_time : float, default=60.0
        Budget in seconds of wall clock time.
    rho_max : float, default=1.0
        Upper bound, and initial value, of the infeasibility radius.
    tangent_failure : {"continue", "abort", "shrink"}, default="continue"
        What to do when a tangent step is not successful. "continue" keeps going from
        the restored point, "abort" stops with status "stalled", and "shrink" halves
        the radius (but not below the primal tolerance) and keeps going.
    normal_trust_radius : float, default=1.0
        Initial trust region radius of each normal step.
    max_normal_iterations : int, default=100
        Trust region iterations per normal step.
    normal_eta : float, default=1e-4
        Minimum ratio of actual to predicted reduction for the normal step.
    min_trust_radius : float, default=1e-12
        The normal step declares infeasibility if its trust region collapses below
        this.
    infeasibility_growth : float, default=2.0
        The tangent step keeps ||c(x)|| <= infeasibility_growth * rho.
    backtracking_alpha : float, default=1e-4
        Sufficient decrease coefficient for the tangent step line search.
    backtracking_beta : float, default=0.5
        Step size reduction factor for the tangent step line search.
    backtracking_min_step : float, default=1e-10
        Smallest step size the tangent step tries.
    lsqr_atol, lsqr_btol : float, default=1e-12
        Tolerances for the least-squares solves (multipliers, Gauss-Newton steps,
        null space projections).
    lsqr_iter_lim : int, optional
        Iteration limit for the least-squares solves.
    verbose : bool, default=False
        If True, print a progress table and how long the solve took.

    """

    atol: float = 1e-8
    rtol: float = 1e-6
    ctol: float = 1e-6
    max_eval: int = 1000
    max_time: float = 60.0
    rho_max: float = 1.0
    tangent_failure: TangentFailurePolicy = "continue"
    normal_trust_radius: float = 1.0
    max_normal_iterations: int = 100
    normal_eta: float = 1e-4
    min_trust_radius: float = 1e-12
    infeasibility_growth: float = 2.0
    backtracking_alpha: float = 1e-4
    backtracking_beta: float = 0.5
    backtracking_min_step: float = 1e-10
    lsqr_atol: float = 1e-12
    lsqr_btol: float = 1e-12
    lsqr_iter_lim: Optional[int] = None
    verbose: bool = False

    def __post_init__(self) -> None:
        if self.tangent_failure not in ("continue", "abort", "shrink"):
            raise ValueError(
                "tangent_failure must be one of 'continue', 'abort' or 'shrink'."
            )
        if self.rho_max <= 0:
            raise ValueError("rho_max must be positive.")


@dataclass
class OptimizationResult:
    """Wrapper for generic optimization result."""

    solution: npt.NDArray[np.float64]


@dataclass
class DCIResult(OptimizationResult):
    """Wrapper for the results of the DCI method.

    Parameters
    ----------
     solution : vector
        The last point the solver evaluated.
     status : str
        Solution status:
          "first_order" : residuals below tolerance
          "max_eval" : evaluation budget exceeded
          "max_time" : time budget exceeded
          "infeasible" : normal step could not restore feasibility
          "stalled" : tangent step failed under tangent_failure="abort"
          "unknown" : none of the above (should not happen)
     objective_value : float
        Objective at the solution.
     dual_residual : float
        ||grad f + J^T y|| at the solution.
     primal_residual : float
        ||c|| at the solution.
     elapsed_time : float
        Seconds spent in the solver.
     multipliers : vector
        Multiplier estimate.
     nits : int
        Number of completed outer iterations (tangent steps).
     num_evals : int
        Objective plus constraint evaluations.
     counters : Counters
        Snapshot of all evaluation counters.
     history : List[ProgressRow]
        Progress rows, one per stage.
     message : str
        Summary of result.

    """

    status: str
    objective_value: float
    dual_residual: float
    primal_residual: float
    elapsed_time: float
    multipliers: npt.NDArray[np.float64]
    nits: int
    num_evals: int
    counters: Counters
    history: List[ProgressRow] = field(default_factory=list)
    message: str = ""

    def plot_convergence(self, ax: Optional[Axes] = None) -> Axes:
        """Plot primal and dual residuals for each logged stage."""
        if ax is None:
            _, ax = plt.subplots()

        stages = list(range(len(self.history)))
        ax.plot(
            stages,
            [row.primal_residual for row in self.history],
            marker="o",
            label="‖c(x)‖",
        )
        ax.plot(
            stages,
            [row.dual_residual for row in self.history],
            marker="s",
            label="‖∇L‖",
        )
        ax.set_yscale("log")
        ax.set_xlabel("Stage")
        ax.set_ylabel("Residual")
        ax.legend()
        return ax


class Optimizer(ABC):
    """Base class for an optimizer."""

    def __init__(self, settings: Optional[DCISettings] = None) -> None:
        """Initialize optimizer."""
        if settings is None:
            self.settings: DCISettings = DCISettings()
        else:
            self.settings = settings

    @property
    @abstractmethod
    def num_eq_constraints(self) -> int:
        """Count equality constraints."""

    @property
    @abstractmethod
    def num_ineq_constraints(self) -> int:
        """Count inequality constraints."""

    @abstractmethod
    def solve(self, x0: Optional[npt.NDArray[np.float64]] = None) -> OptimizationResult:
        """Solve optimization problem.

        Parameters
        ----------
         x0 : vector, optional
            Initial guess.

        Returns
        -------
         res : OptimizationResult
            The solution.

        """


class DCISolver(Optimizer):
    """Solve an equality constrained problem with Dynamic Control of Infeasibility.

    Parameters
    ----------
     problem : NonlinearProblem
        The problem. Must be purely equality constrained.
     settings : DCISettings, optional
        Solver settings.
     sinks : sequence of ProgressSink, optional
        Extra receivers for progress rows. A HistoryRecorder is always attached, and
        a ConsolePrinter too when settings.verbose is True.
     regularization : RegularizationPolicy, optional
        Maps the iteration state to the KKT regularization (gamma, delta). Defaults to
        FixedRegularization(1e-8, 1e-8).

    """

    def __init__(
        self,
        problem: NonlinearProblem,
        settings: Optional[DCISettings] = None,
        sinks: Optional[Sequence[ProgressSink]] = None,
        regularization: Optional[RegularizationPolicy] = None,
    ) -> None:
        super().__init__(settings=settings)
        self.problem = problem
        self.sinks: List[ProgressSink] = [] if sinks is None else list(sinks)
        self.regularization: RegularizationPolicy = (
            FixedRegularization() if regularization is None else regularization
        )

    @property
    def num_eq_constraints(self) -> int:
        """Count equality constraints."""
        return self.problem.num_constraints

    @property
    def num_ineq_constraints(self) -> int:
        """Count inequality constraints."""
        return self.problem.num_inequality_constraints

    def check_problem(self) -> None:
        """Reject problems the method doesn't handle, before evaluating anything."""
        problem = self.problem
        if (
            self.num_eq_constraints == 0
            or self.num_ineq_constraints > 0
            or problem.has_bounds
        ):
            raise NotEqualityConstrainedError(
                message="DCI only works for equality constrained problems",
                num_constraints=problem.num_constraints,
                num_inequality_constraints=problem.num_inequality_constraints,
                has_bounds=problem.has_bounds,
            )

    def solve(self, x0: Optional[npt.NDArray[np.float64]] = None) -> DCIResult:
        """Solve the problem.

        Parameters
        ----------
         x0 : vector, optional
            Starting point. Defaults to problem.x0.

        Returns
        -------
         res : DCIResult
            The solution and solver statistics. Running out of budget and local
            infeasibility are reported through res.status, not raised.

        Raises
        ------
         NotEqualityConstrainedError
            If the problem has no equality constraints, or has inequality constraints
            or bounds.

        Notes
        -----
        The problem's evaluation counters are reset at the start, so the budget and
        res.counters cover this solve only.

        """
        self.check_problem()

        problem = self.problem
        settings = self.settings
        problem.reset_counters()
        x = problem.x0 if x0 is None else np.asarray(x0, dtype=np.float64).copy()
        if x.shape != (problem.num_variables,):
            raise ValueError("x0 should have one entry per variable.")

        history = HistoryRecorder()
        sinks: List[ProgressSink] = [history, *self.sinks]
        if settings.verbose:
            sinks.append(ConsolePrinter())

        budget = Budget(max_eval=settings.max_eval, max_time=settings.max_time)
        kkt = KKTSystem(problem)

        state = self.evaluate(x, rho=settings.rho_max, iteration=0)
        eps_p = settings.atol + settings.rtol * state.primal_norm
        eps_d = settings.atol + settings.rtol * state.dual_norm

        solved = state.primal_norm < eps_p and state.dual_norm < eps_d
        tired = budget.exhausted(problem)
        infeasible = False
        stalled = False
        self.emit(sinks, "init", state, budget)

        while not (solved or tired or infeasible or stalled):
            done_with_normal_step = False
            while not done_with_normal_step:
                normal = self.normal_step(state, eps_p, eps_d, budget)
                state = self.restored_state(state, normal)
                self.emit(sinks, "N", state, budget, normal.status)
                tired = budget.exhausted(problem)
                infeasible = normal.status == INFEASIBLE
                done_with_normal_step = (
                    state.primal_norm <= state.rho or tired is not None or infeasible
                )

            solved = state.primal_norm < eps_p and state.dual_norm < eps_d
            if solved or tired or infeasible:
                break

            gamma, delta = self.regularization(state)
            kkt.refresh(state.x, state.multipliers, gamma, delta)
            tangent = tangent_step(
                problem,
                z=state.x,
                multipliers=state.multipliers,
                kkt=kkt,
                lagrangian_gradient=state.lagrangian_gradient,
                J=state.J,
                merit_value=state.lagrangian,
                rho=state.rho,
                budget=budget,
                infeasibility_growth=settings.infeasibility_growth,
                backtracking_alpha=settings.backtracking_alpha,
                backtracking_beta=settings.backtracking_beta,
                backtracking_min_step=settings.backtracking_min_step,
                lsqr_atol=settings.lsqr_atol,
                lsqr_btol=settings.lsqr_btol,
            )

            rho = state.rho
            if tangent.status != SUCCESS:
                if settings.tangent_failure == "abort":
                    stalled = True
                elif settings.tangent_failure == "shrink":
                    rho = max(0.5 * rho, eps_p)

            iteration = state.iteration
            if np.array_equal(tangent.x, state.x):
                state = replace(state, rho=rho, iteration=iteration + 1)
            else:
                state = self.evaluate(
                    tangent.x,
                    rho=rho,
                    iteration=iteration + 1,
                    multipliers=state.multipliers,
                )
            self.emit(sinks, "T", state, budget, tangent.status, iteration=iteration)

            solved = state.primal_norm < eps_p and state.dual_norm < eps_d
            tired = budget.exhausted(problem)

        if solved:
            status = "first_order"
        elif tired is not None:
            status = tired
        elif infeasible:
            status = "infeasible"
        elif stalled:
            status = "stalled"
        else:
            status = "unknown"

        elapsed_time = budget.elapsed()
        if settings.verbose:
            print(
                f"  DCI completed in {1000 * elapsed_time:.03f} ms with status {status}"
            )

        return DCIResult(
            solution=state.x,
            status=status,
            objective_value=state.fx,
            dual_residual=state.dual_norm,
            primal_residual=state.primal_norm,
            elapsed_time=elapsed_time,
            multipliers=state.multipliers,
            nits=state.iteration,
            num_evals=budget.num_evals(problem),
            counters=replace(problem.counters),
            history=history.rows,
            message=STATUS_MESSAGES[status],
        )

    def estimate_multipliers(
        self, J: LinearOperator, g: npt.NDArray[np.float64]
    ) -> MultiplierEstimate:
        """Least-squares multiplier estimate with the configured tolerances."""
        return estimate_multipliers(
            J,
            g,
            atol=self.settings.lsqr_atol,
            btol=self.settings.lsqr_btol,
            iter_lim=self.settings.lsqr_iter_lim,
        )

    def evaluate(
        self,
        x: npt.NDArray[np.float64],
        rho: float,
        iteration: int,
        multipliers: Optional[npt.NDArray[np.float64]] = None,
    ) -> IterationState:
        """Evaluate everything we need at x.

        If multipliers are not given, they are estimated at x.

        """
        problem = self.problem
        fx = problem.objective(x)
        cx = problem.constraints(x)
        gx = problem.gradient(x)
        J = problem.jacobian_operator(x)
        if multipliers is None:
            multipliers = self.estimate_multipliers(J, gx).multipliers
        return IterationState(
            x=x,
            fx=fx,
            cx=cx,
            gx=gx,
            J=J,
            multipliers=multipliers,
            rho=rho,
            iteration=iteration,
        )

    def normal_step(
        self,
        state: IterationState,
        eps_p: float,
        eps_d: float,
        budget: Budget,
    ) -> NormalStepResult:
        """Run a normal step from the current state.

        Once the dual residual is below tolerance there is no point tolerating any more
        infeasibility than eps_p, so we pass ngp = 0 and the radius drops to its floor.

        """
        settings = self.settings
        if state.dual_norm < eps_d:
            ngp = 0.0
        else:
            ngp = state.dual_norm / (state.gradient_norm + 1.0)

        return normal_step(
            self.problem,
            state.x,
            state.cx,
            rho=state.rho,
            rho_max=settings.rho_max,
            ngp=ngp,
            primal_tolerance=eps_p,
            budget=budget,
            J=state.J,
            trust_radius=settings.normal_trust_radius,
            max_iterations=settings.max_normal_iterations,
            eta=settings.normal_eta,
            infeasibility_tolerance=settings.ctol,
            min_trust_radius=settings.min_trust_radius,
            lsqr_atol=settings.lsqr_atol,
            lsqr_btol=settings.lsqr_btol,
        )

    def restored_state(
        self, state: IterationState, normal: NormalStepResult
    ) -> IterationState:
        """State at the point returned by a normal step, with fresh multipliers."""
        if np.array_equal(normal.z, state.x):
            fz, gz = state.fx, state.gx
        else:
            fz = self.problem.objective(normal.z)
            gz = self.problem.gradient(normal.z)

        estimate = self.estimate_multipliers(normal.J, gz)
        return replace(
            state,
            x=normal.z,
            fx=fz,
            cx=normal.cz,
            gx=gz,
            J=normal.J,
            multipliers=estimate.multipliers,
            rho=normal.rho,
        )

    def emit(
        self,
        sinks: Sequence[ProgressSink],
        stage: str,
        state: IterationState,
        budget: Budget,
        status: str = "",
        iteration: Optional[int] = None,
    ) -> None:
        """Send a progress row to every sink."""
        row = ProgressRow(
            stage=stage,
            iteration=state.iteration if iteration is None else iteration,
            num_evals=budget.num_evals(self.problem),
            objective=state.fx,
            dual_residual=state.dual_norm,
            primal_residual=state.primal_norm,
            radius=state.rho,
            status=status,
            elapsed_time=budget.elapsed(),
        )
        for sink in sinks:
            sink.record(row)


def dci(
    problem: NonlinearProblem,
    x0: Optional[npt.NDArray[np.float64]] = None,
    sinks: Optional[Sequence[ProgressSink]] = None,
    regularization: Optional[RegularizationPolicy] = None,
    **kwargs,
) -> DCIResult:
    """Solve an equality constrained problem with Dynamic Control of Infeasibility.

    Keyword arguments other than those listed are DCISettings fields, e.g.
    dci(problem, atol=1e-10, max_eval=500).

    Parameters
    ----------
     problem : NonlinearProblem
        The problem.
     x0 : vector, optional
        Starting point. Defaults to problem.x0.
     sinks : sequence of ProgressSink, optional
        Extra receivers for progress rows.
     regularization : RegularizationPolicy, optional
        KKT regularization policy.

    Returns
    -------
     res : DCIResult
        The solution and solver statistics.

    """
    solver = DCISolver(
        problem,
        settings=DCISettings(**kwargs),
        sinks=sinks,
        regularization=regularization,
    )
    return solver.solve(x0)
