r"""Regularized KKT system.

The tangent step needs the solution of
     _                _   _   _     _  _
    | H + gamma * I  J^T | | d |   | r1 |
    |      J   -delta * I| | y | = | r2 |
     -                -   -   -     -  -
where H is the Hessian of the Lagrangian and J the constraint Jacobian. The matrix has
the same sparsity pattern at every iteration, so we build the pattern once and only
overwrite the values afterwards.

The coordinate buffers hold the lower triangle in four contiguous blocks:
  1. the Hessian structure reported by the problem,
  2. the Jacobian structure, with rows shifted down by n,
  3. the n diagonal entries gamma * I,
  4. the m diagonal entries -delta * I.

"""

from collections.abc import Callable
from typing import Optional, Tuple

import numpy as np
import numpy.typing as npt
from scipy import sparse
from scipy.sparse.linalg import splu

from .exceptions import KKTSolveError, PatternAlreadyBuiltError
from .problem import NonlinearProblem
from .state import IterationState

RegularizationPolicy = Callable[[IterationState], Tuple[float, float]]


class FixedRegularization:
    """Regularization policy returning the same (gamma, delta) at every iteration."""

    def __init__(self, gamma: float = 1e-8, delta: float = 1e-8) -> None:
        if gamma < 0 or delta < 0:
            raise ValueError("gamma and delta must be nonnegative.")
        self.gamma = gamma
        self.delta = delta

    def __call__(self, state: IterationState) -> Tuple[float, float]:
        """Return (gamma, delta)."""
        return self.gamma, self.delta


class KKTSystem:
    """Fixed-pattern sparse KKT matrix for a NonlinearProblem.

    Parameters
    ----------
     problem : NonlinearProblem
        Supplies dimensions, derivative structures and values.

    """

    def __init__(self, problem: NonlinearProblem) -> None:
        self.problem = problem
        self.num_variables = problem.num_variables
        self.num_constraints = problem.num_constraints
        self.nnz_hessian = problem.nnz_hessian
        self.nnz_jacobian = problem.nnz_jacobian
        self.gamma = 0.0
        self.delta = 0.0
        self.rows: Optional[npt.NDArray[np.int64]] = None
        self.cols: Optional[npt.NDArray[np.int64]] = None
        self.vals: Optional[npt.NDArray[np.float64]] = None
        self.build_pattern()

    @property
    def nnz(self) -> int:
        """Length of the coordinate buffers."""
        return (
            self.nnz_hessian
            + self.nnz_jacobian
            + self.num_variables
            + self.num_constraints
        )

    @property
    def dimension(self) -> int:
        """Number of rows (and columns) of the KKT matrix."""
        return self.num_variables + self.num_constraints

    @property
    def hessian_block(self) -> slice:
        """Positions of the Hessian entries in the buffers."""
        return slice(0, self.nnz_hessian)

    @property
    def jacobian_block(self) -> slice:
        """Positions of the Jacobian entries in the buffers."""
        start = self.nnz_hessian
        return slice(start, start + self.nnz_jacobian)

    @property
    def primal_block(self) -> slice:
        """Positions of the gamma * I entries in the buffers."""
        start = self.nnz_hessian + self.nnz_jacobian
        return slice(start, start + self.num_variables)

    @property
    def dual_block(self) -> slice:
        """Positions of the -delta * I entries in the buffers."""
        start = self.nnz_hessian + self.nnz_jacobian + self.num_variables
        return slice(start, start + self.num_constraints)

    def build_pattern(self) -> None:
        """Allocate the coordinate buffers and fill in the row/column indices.

        Raises
        ------
         PatternAlreadyBuiltError
            If called more than once. The index arrays must never be reallocated.

        """
        if self.rows is not None:
            raise PatternAlreadyBuiltError("KKT pattern has already been built.")

        n, m = self.num_variables, self.num_constraints
        rows = np.zeros(self.nnz, dtype=np.int64)
        cols = np.zeros(self.nnz, dtype=np.int64)

        hess_rows, hess_cols = self.problem.hessian_structure()
        rows[self.hessian_block] = hess_rows
        cols[self.hessian_block] = hess_cols

        jac_rows, jac_cols = self.problem.jacobian_structure()
        rows[self.jacobian_block] = n + np.asarray(jac_rows)
        cols[self.jacobian_block] = jac_cols

        rows[self.primal_block] = np.arange(n)
        cols[self.primal_block] = np.arange(n)

        rows[self.dual_block] = n + np.arange(m)
        cols[self.dual_block] = n + np.arange(m)

        self.rows = rows
        self.cols = cols
        self.vals = np.zeros(self.nnz)

    def refresh(
        self,
        x: npt.NDArray[np.float64],
        multipliers: npt.NDArray[np.float64],
        gamma: float,
        delta: float,
    ) -> None:
        """Overwrite the values in place.

        Parameters
        ----------
         x : vector
            Point at which to evaluate the derivatives.
         multipliers : vector
            Multiplier estimate, used for the Hessian of the Lagrangian.
         gamma, delta : float
            Regularization of the primal and dual blocks.

        """
        self.vals[self.hessian_block] = self.problem.hessian_coords(x, multipliers)
        self.vals[self.jacobian_block] = self.problem.jacobian_coords(x)
        self.vals[self.primal_block] = gamma
        self.vals[self.dual_block] = -delta
        self.gamma = gamma
        self.delta = delta

    def matrix(self) -> sparse.csc_matrix:
        """Assemble the full symmetric matrix from the lower triangle."""
        N = self.dimension
        lower = sparse.coo_matrix(
            (self.vals, (self.rows, self.cols)), shape=(N, N)
        ).tocsc()
        # Entries with equal indices were summed by tocsc.
        return (lower + lower.T - sparse.diags(lower.diagonal())).tocsc()

    def solve(
        self, rhs: npt.NDArray[np.float64]
    ) -> Tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        """Solve K * [d; y] = rhs.

        Returns
        -------
         d : vector of length n
            Primal part of the solution.
         y : vector of length m
            Dual part of the solution.

        Raises
        ------
         KKTSolveError
            If the matrix is singular or the solution is not finite.

        """
        if rhs.shape != (self.dimension,):
            raise ValueError("rhs should have one entry per row of the KKT matrix.")

        K = self.matrix()
        if not np.all(np.isfinite(K.data)):
            raise KKTSolveError("KKT matrix has non-finite entries.")

        try:
            lu = splu(K)
        except RuntimeError as e:
            raise KKTSolveError("KKT matrix is singular.") from e

        sol = lu.solve(rhs)
        if not np.all(np.isfinite(sol)):
            raise KKTSolveError("KKT solution is not finite.")

        n = self.num_variables
        return sol[:n], sol[n:]
