r"""Nonlinear program models.

The solver works with problems of the form:
    minimize    f(x)
    subject to  c(x) = 0,
where f: R^n -> R and c: R^n -> R^m are twice continuously differentiable.

Usage
-----
To use the solver on your own problem, either create a class that inherits from
NonlinearProblem, or wrap plain Python callables in a FunctionProblem. The methods a
subclass needs to implement are:
- evaluate_objective
- evaluate_gradient
- evaluate_constraints
- jacobian_structure and evaluate_jacobian_coords
- hessian_structure and evaluate_hessian_coords

The public methods (objective, gradient, constraints, ...) wrap these and keep track
of how many times each was called. The solver budgets its work in terms of these
counters, so subclasses should not bypass them.

Sparse derivative data is exchanged in coordinate format: a structure method returns
the (rows, cols) index arrays once, and the coords method returns the matching values
at a point. The Hessian structure covers only the lower triangle of the (symmetric)
Hessian of the Lagrangian,
    L(x, y) = obj_weight * f(x) + y^T c(x).

"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, fields
from typing import Optional, Tuple

import numpy as np
import numpy.typing as npt
from scipy import sparse
from scipy.sparse.linalg import LinearOperator


@dataclass
class Counters:
    """Evaluation counters for a NonlinearProblem."""

    neval_obj: int = 0
    neval_grad: int = 0
    neval_cons: int = 0
    neval_jac: int = 0
    neval_jprod: int = 0
    neval_jtprod: int = 0
    neval_hess: int = 0

    def reset(self) -> None:
        """Set every counter back to zero."""
        for f in fields(self):
            setattr(self, f.name, 0)

    def total(self) -> int:
        """Sum of all counters."""
        return sum(getattr(self, f.name) for f in fields(self))


class NonlinearProblem(ABC):
    """Base class for an equality constrained nonlinear program."""

    def __init__(self, x0: npt.ArrayLike, name: str = "") -> None:
        self._x0 = np.asarray(x0, dtype=np.float64).ravel().copy()
        self.name = name
        self.counters = Counters()

    @property
    def x0(self) -> npt.NDArray[np.float64]:
        """Starting point (a copy, so callers can't mutate it)."""
        return self._x0.copy()

    @property
    def num_variables(self) -> int:
        """Count variables."""
        return self._x0.shape[0]

    @property
    @abstractmethod
    def num_constraints(self) -> int:
        """Count equality constraints."""

    @property
    def num_inequality_constraints(self) -> int:
        """Count inequality constraints."""
        return 0

    @property
    def has_bounds(self) -> bool:
        """Whether any variable has a finite lower or upper bound."""
        return False

    @property
    def is_equality_constrained(self) -> bool:
        """True if the only constraints are (at least one) equality constraints."""
        return (
            self.num_constraints > 0
            and self.num_inequality_constraints == 0
            and not self.has_bounds
        )

    @property
    def nnz_jacobian(self) -> int:
        """Number of entries in the Jacobian structure."""
        return len(self.jacobian_structure()[0])

    @property
    def nnz_hessian(self) -> int:
        """Number of entries in the (lower triangle) Hessian structure."""
        return len(self.hessian_structure()[0])

    def reset_counters(self) -> None:
        """Reset evaluation counters."""
        self.counters.reset()

    def objective(self, x: npt.NDArray[np.float64]) -> float:
        """Calculate f at x."""
        self.counters.neval_obj += 1
        return float(self.evaluate_objective(x))

    def gradient(self, x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """Calculate the gradient of f at x."""
        self.counters.neval_grad += 1
        return np.asarray(self.evaluate_gradient(x), dtype=np.float64).ravel()

    def constraints(self, x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """Calculate c at x."""
        self.counters.neval_cons += 1
        return np.asarray(self.evaluate_constraints(x), dtype=np.float64).ravel()

    def jacobian_coords(self, x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """Calculate the Jacobian values at x, matching jacobian_structure."""
        self.counters.neval_jac += 1
        return np.asarray(self.evaluate_jacobian_coords(x), dtype=np.float64).ravel()

    def hessian_coords(
        self,
        x: npt.NDArray[np.float64],
        y: npt.NDArray[np.float64],
        obj_weight: float = 1.0,
    ) -> npt.NDArray[np.float64]:
        """Calculate the Lagrangian Hessian values, matching hessian_structure."""
        self.counters.neval_hess += 1
        return np.asarray(
            self.evaluate_hessian_coords(x, y, obj_weight), dtype=np.float64
        ).ravel()

    def jacobian(self, x: npt.NDArray[np.float64]) -> sparse.csr_matrix:
        """Assemble the Jacobian at x as a sparse matrix."""
        rows, cols = self.jacobian_structure()
        return sparse.csr_matrix(
            (self.jacobian_coords(x), (rows, cols)),
            shape=(self.num_constraints, self.num_variables),
        )

    def jacobian_operator(self, x: npt.NDArray[np.float64]) -> LinearOperator:
        """Jacobian at x as a linear operator.

        Supports J * v (matvec) and J^T * w (rmatvec). Each product is counted.
        Subclasses with a cheaper matrix-free product can override this method.

        """
        J = self.jacobian(x)

        def matvec(v: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
            self.counters.neval_jprod += 1
            return J @ np.ravel(v)

        def rmatvec(w: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
            self.counters.neval_jtprod += 1
            return J.T @ np.ravel(w)

        return LinearOperator(
            shape=J.shape, matvec=matvec, rmatvec=rmatvec, dtype=np.float64
        )

    @abstractmethod
    def evaluate_objective(self, x: npt.NDArray[np.float64]) -> float:
        """Calculate f at x."""

    @abstractmethod
    def evaluate_gradient(self, x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """Calculate the gradient of f at x."""

    @abstractmethod
    def evaluate_constraints(
        self, x: npt.NDArray[np.float64]
    ) -> npt.NDArray[np.float64]:
        """Calculate c at x."""

    @abstractmethod
    def jacobian_structure(self) -> Tuple[npt.NDArray[np.int64], npt.NDArray[np.int64]]:
        """Row and column indices of the Jacobian entries."""

    @abstractmethod
    def evaluate_jacobian_coords(
        self, x: npt.NDArray[np.float64]
    ) -> npt.NDArray[np.float64]:
        """Jacobian values at x."""

    @abstractmethod
    def hessian_structure(self) -> Tuple[npt.NDArray[np.int64], npt.NDArray[np.int64]]:
        """Row and column indices of the lower triangle of the Lagrangian Hessian."""

    @abstractmethod
    def evaluate_hessian_coords(
        self,
        x: npt.NDArray[np.float64],
        y: npt.NDArray[np.float64],
        obj_weight: float,
    ) -> npt.NDArray[np.float64]:
        """Lagrangian Hessian values at (x, y)."""


class FunctionProblem(NonlinearProblem):
    """A NonlinearProblem defined by plain callables.

    Parameters
    ----------
     objective : Callable
        x -> f(x).
     gradient : Callable
        x -> grad f(x), a vector of length n.
     constraints : Callable
        x -> c(x), a vector of length m.
     jacobian : Callable
        x -> J(x), an m-by-n dense array or sparse matrix.
     hessian : Callable
        (x, y, obj_weight) -> obj_weight * hess f(x) + sum_i y_i * hess c_i(x), an
        n-by-n dense array.
     x0 : vector
        Starting point.
     num_constraints : int, optional
        Number of equality constraints. If omitted, `constraints` is called once at x0
        (outside of the evaluation counters) to find out.
     lower, upper : vectors, optional
        Variable bounds. The solver does not support bounds, but problems carrying
        them can still be described so they are rejected cleanly.
     num_inequality_constraints : int, default=0
        Same idea as bounds: describes constraints the solver will refuse.
     name : str, optional
        Problem name, used in progress output.

    Notes
    -----
    Derivatives are treated as dense: the Jacobian structure lists all m * n entries
    and the Hessian structure the n * (n + 1) / 2 entries of the lower triangle. That
    is fine for small problems; large sparse problems should subclass
    NonlinearProblem directly.

    """

    def __init__(
        self,
        objective: Callable[[npt.NDArray[np.float64]], float],
        gradient: Callable[[npt.NDArray[np.float64]], npt.ArrayLike],
        constraints: Callable[[npt.NDArray[np.float64]], npt.ArrayLike],
        jacobian: Callable[[npt.NDArray[np.float64]], npt.ArrayLike],
        hessian: Callable[
            [npt.NDArray[np.float64], npt.NDArray[np.float64], float], npt.ArrayLike
        ],
        x0: npt.ArrayLike,
        num_constraints: Optional[int] = None,
        lower: Optional[npt.ArrayLike] = None,
        upper: Optional[npt.ArrayLike] = None,
        num_inequality_constraints: int = 0,
        name: str = "",
    ) -> None:
        super().__init__(x0, name=name)
        self._objective = objective
        self._gradient = gradient
        self._constraints = constraints
        self._jacobian = jacobian
        self._hessian = hessian
        if num_constraints is None:
            num_constraints = np.asarray(constraints(self._x0)).size
        self._num_constraints = int(num_constraints)
        self._num_inequality_constraints = int(num_inequality_constraints)

        n = self.num_variables
        self.lower = None if lower is None else np.asarray(lower, dtype=np.float64)
        self.upper = None if upper is None else np.asarray(upper, dtype=np.float64)
        for bound in (self.lower, self.upper):
            if bound is not None and bound.shape != (n,):
                raise ValueError("Bounds must have one entry per variable.")

        jac_rows, jac_cols = np.divmod(np.arange(self._num_constraints * n), n)
        self._jac_rows = jac_rows.astype(np.int64)
        self._jac_cols = jac_cols.astype(np.int64)
        hess_rows, hess_cols = np.tril_indices(n)
        self._hess_rows = hess_rows.astype(np.int64)
        self._hess_cols = hess_cols.astype(np.int64)

    @property
    def num_constraints(self) -> int:
        """Count equality constraints."""
        return self._num_constraints

    @property
    def num_inequality_constraints(self) -> int:
        """Count inequality constraints."""
        return self._num_inequality_constraints

    @property
    def has_bounds(self) -> bool:
        """Whether any variable has a finite lower or upper bound."""
        return any(
            bound is not None and np.any(np.isfinite(bound))
            for bound in (self.lower, self.upper)
        )

    def evaluate_objective(self, x: npt.NDArray[np.float64]) -> float:
        """Calculate f at x."""
        return self._objective(x)

    def evaluate_gradient(self, x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """Calculate the gradient of f at x."""
        return np.asarray(self._gradient(x), dtype=np.float64)

    def evaluate_constraints(
        self, x: npt.NDArray[np.float64]
    ) -> npt.NDArray[np.float64]:
        """Calculate c at x."""
        return np.atleast_1d(np.asarray(self._constraints(x), dtype=np.float64))

    def jacobian_structure(self) -> Tuple[npt.NDArray[np.int64], npt.NDArray[np.int64]]:
        """Dense row-major structure."""
        return self._jac_rows, self._jac_cols

    def evaluate_jacobian_coords(
        self, x: npt.NDArray[np.float64]
    ) -> npt.NDArray[np.float64]:
        """Jacobian values at x."""
        J = self._jacobian(x)
        if sparse.issparse(J):
            J = J.toarray()
        J = np.asarray(J, dtype=np.float64).reshape(
            self._num_constraints, self.num_variables
        )
        return J[self._jac_rows, self._jac_cols]

    def hessian_structure(self) -> Tuple[npt.NDArray[np.int64], npt.NDArray[np.int64]]:
        """Dense lower triangle structure."""
        return self._hess_rows, self._hess_cols

    def evaluate_hessian_coords(
        self,
        x: npt.NDArray[np.float64],
        y: npt.NDArray[np.float64],
        obj_weight: float,
    ) -> npt.NDArray[np.float64]:
        """Lagrangian Hessian values at (x, y)."""
        H = np.asarray(self._hessian(x, y, obj_weight), dtype=np.float64)
        n = self.num_variables
        return H.reshape(n, n)[self._hess_rows, self._hess_cols]
