"""Small equality constrained test problems.

Most come from the Hock-Schittkowski collection (Hock and Schittkowski, 1981) or from
CUTEst. They are tiny, have known solutions, and exercise different parts of the
solver: an infeasible starting point, curved constraints, a nearly flat landscape
near the solution, and a constraint system with no real solution at all.

References
----------
- Hock, Willi and Schittkowski, Klaus, Test Examples for Nonlinear Programming Codes,
  Lecture Notes in Economics and Mathematical Systems 187, Springer, 1981.

"""

from typing import Optional

import numpy as np
import numpy.typing as npt

from .problem import FunctionProblem


class BenchmarkProblem(FunctionProblem):
    """A FunctionProblem with a known solution."""

    def __init__(
        self,
        *args,
        expected_solution: Optional[npt.ArrayLike] = None,
        expected_objective: Optional[float] = None,
        **kwargs,
    ) -> None:
        super().__init__(*args, **kwargs)
        self.expected_solution = (
            None
            if expected_solution is None
            else np.asarray(expected_solution, dtype=np.float64)
        )
        self.expected_objective = expected_objective


def quadratic_on_line(x0: Optional[npt.ArrayLike] = None) -> BenchmarkProblem:
    """Minimize x1^2 + x2^2 subject to x1 + x2 = 1.

    The solution is (0.5, 0.5) with objective 0.5.

    """
    return BenchmarkProblem(
        objective=lambda x: x[0] ** 2 + x[1] ** 2,
        gradient=lambda x: 2.0 * x,
        constraints=lambda x: np.array([x[0] + x[1] - 1.0]),
        jacobian=lambda x: np.array([[1.0, 1.0]]),
        hessian=lambda x, y, w: 2.0 * w * np.eye(2),
        x0=[2.0, 0.0] if x0 is None else x0,
        num_constraints=1,
        name="quadratic_on_line",
        expected_solution=[0.5, 0.5],
        expected_objective=0.5,
    )


def hs6(x0: Optional[npt.ArrayLike] = None) -> BenchmarkProblem:
    """Hock-Schittkowski problem 6.

    minimize    (1 - x1)^2
    subject to  10 * (x2 - x1^2) = 0

    """

    def hessian(
        x: npt.NDArray[np.float64], y: npt.NDArray[np.float64], w: float
    ) -> npt.NDArray[np.float64]:
        return np.array([[2.0 * w - 20.0 * y[0], 0.0], [0.0, 0.0]])

    return BenchmarkProblem(
        objective=lambda x: (1.0 - x[0]) ** 2,
        gradient=lambda x: np.array([-2.0 * (1.0 - x[0]), 0.0]),
        constraints=lambda x: np.array([10.0 * (x[1] - x[0] ** 2)]),
        jacobian=lambda x: np.array([[-20.0 * x[0], 10.0]]),
        hessian=hessian,
        x0=[-1.2, 1.0] if x0 is None else x0,
        num_constraints=1,
        name="hs6",
        expected_solution=[1.0, 1.0],
        expected_objective=0.0,
    )


def hs7(x0: Optional[npt.ArrayLike] = None) -> BenchmarkProblem:
    """Hock-Schittkowski problem 7.

    minimize    log(1 + x1^2) - x2
    subject to  (1 + x1^2)^2 + x2^2 - 4 = 0

    """

    def objective(x: npt.NDArray[np.float64]) -> float:
        return np.log1p(x[0] ** 2) - x[1]

    def gradient(x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        return np.array([2.0 * x[0] / (1.0 + x[0] ** 2), -1.0])

    def constraints(x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        return np.array([(1.0 + x[0] ** 2) ** 2 + x[1] ** 2 - 4.0])

    def jacobian(x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        return np.array([[4.0 * x[0] * (1.0 + x[0] ** 2), 2.0 * x[1]]])

    def hessian(
        x: npt.NDArray[np.float64], y: npt.NDArray[np.float64], w: float
    ) -> npt.NDArray[np.float64]:
        u = 1.0 + x[0] ** 2
        f11 = 2.0 * (1.0 - x[0] ** 2) / u**2
        c11 = 4.0 + 12.0 * x[0] ** 2
        return np.array([[w * f11 + y[0] * c11, 0.0], [0.0, 2.0 * y[0]]])

    return BenchmarkProblem(
        objective=objective,
        gradient=gradient,
        constraints=constraints,
        jacobian=jacobian,
        hessian=hessian,
        x0=[2.0, 2.0] if x0 is None else x0,
        num_constraints=1,
        name="hs7",
        expected_solution=[0.0, np.sqrt(3.0)],
        expected_objective=-np.sqrt(3.0),
    )


def bt1(x0: Optional[npt.ArrayLike] = None) -> BenchmarkProblem:
    """BT1 from CUTEst.

    minimize    -x1 + 10 * (x1^2 + x2^2 - 1)
    subject to  x1^2 + x2^2 - 1 = 0

    The feasible set is the unit circle, which is almost tangent to the contour lines
    of the paraboloid, so the landscape near the solution (1, 0) is rather flat.

    """
    return BenchmarkProblem(
        objective=lambda x: -x[0] + 10.0 * (x[0] ** 2 + x[1] ** 2 - 1.0),
        gradient=lambda x: np.array([-1.0 + 20.0 * x[0], 20.0 * x[1]]),
        constraints=lambda x: np.array([x[0] ** 2 + x[1] ** 2 - 1.0]),
        jacobian=lambda x: np.array([[2.0 * x[0], 2.0 * x[1]]]),
        hessian=lambda x, y, w: (20.0 * w + 2.0 * y[0]) * np.eye(2),
        x0=[0.08, 0.06] if x0 is None else x0,
        num_constraints=1,
        name="bt1",
        expected_solution=[1.0, 0.0],
        expected_objective=-1.0,
    )


def infeasible_circle(x0: Optional[npt.ArrayLike] = None) -> BenchmarkProblem:
    """Minimize x1^2 + x2^2 subject to x1^2 + 1 = 0, which has no real solution.

    The constraint violation ||c(x)|| = x1^2 + 1 is smallest at x1 = 0, where the
    Jacobian vanishes.

    """
    return BenchmarkProblem(
        objective=lambda x: x[0] ** 2 + x[1] ** 2,
        gradient=lambda x: 2.0 * x,
        constraints=lambda x: np.array([x[0] ** 2 + 1.0]),
        jacobian=lambda x: np.array([[2.0 * x[0], 0.0]]),
        hessian=lambda x, y, w: np.diag([2.0 * w + 2.0 * y[0], 2.0 * w]),
        x0=[1.0, 1.0] if x0 is None else x0,
        num_constraints=1,
        name="infeasible_circle",
    )
