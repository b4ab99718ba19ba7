"""Test the tangent step."""

import sys

import numpy as np

from pydci.kkt import KKTSystem
from pydci.problem import FunctionProblem
from pydci.problems import quadratic_on_line
from pydci.state import Budget
from pydci.tangent_step import SUCCESS, UNSUCCESSFUL, tangent_direction, tangent_step


def concave_on_line() -> FunctionProblem:
    """Minimize -(x1^2 + x2^2) subject to x1 + x2 = 1, which is unbounded."""
    return FunctionProblem(
        objective=lambda x: -(x[0] ** 2 + x[1] ** 2),
        gradient=lambda x: -2.0 * x,
        constraints=lambda x: np.array([x[0] + x[1] - 1.0]),
        jacobian=lambda x: np.array([[1.0, 1.0]]),
        hessian=lambda x, y, w: -2.0 * w * np.eye(2),
        x0=[1.0, 0.0],
    )


def top_of_circle() -> FunctionProblem:
    """Minimize -x2 subject to x1^2 + x2^2 = 1."""
    return FunctionProblem(
        objective=lambda x: -x[1],
        gradient=lambda x: np.array([0.0, -1.0]),
        constraints=lambda x: np.array([x[0] ** 2 + x[1] ** 2 - 1.0]),
        jacobian=lambda x: np.array([[2.0 * x[0], 2.0 * x[1]]]),
        hessian=lambda x, y, w: 2.0 * y[0] * np.eye(2),
        x0=[1.0, 0.0],
    )


def undefined_away_from_start() -> FunctionProblem:
    """Quadratic on a line, but the objective is only defined at the start."""
    x0 = np.array([2.0, -1.0])
    return FunctionProblem(
        objective=lambda x: float(x @ x) if np.array_equal(x, x0) else np.nan,
        gradient=lambda x: 2.0 * x,
        constraints=lambda x: np.array([x[0] + x[1] - 1.0]),
        jacobian=lambda x: np.array([[1.0, 1.0]]),
        hessian=lambda x, y, w: 2.0 * w * np.eye(2),
        x0=x0,
    )


def take_tangent_step(problem, z, multipliers, rho, budget=None, **kwargs):
    z = np.asarray(z, dtype=np.float64)
    multipliers = np.asarray(multipliers, dtype=np.float64)
    J = problem.jacobian_operator(z)
    lagrangian_gradient = problem.gradient(z) + J.rmatvec(multipliers)
    merit_value = problem.objective(z) + float(
        np.dot(multipliers, problem.constraints(z))
    )
    kkt = KKTSystem(problem)
    kkt.refresh(z, multipliers, gamma=1e-8, delta=1e-8)
    if budget is None:
        budget = Budget(max_eval=1000, max_time=60.0)
    return tangent_step(
        problem,
        z=z,
        multipliers=multipliers,
        kkt=kkt,
        lagrangian_gradient=lagrangian_gradient,
        J=J,
        merit_value=merit_value,
        rho=rho,
        budget=budget,
        **kwargs,
    )


class TestTangentDirection:
    @staticmethod
    def test_kkt_direction() -> None:
        problem = quadratic_on_line()
        z = np.array([1.5, -0.5])
        kkt = KKTSystem(problem)
        kkt.refresh(z, np.array([-1.0]), gamma=1e-8, delta=1e-8)

        d, direction = tangent_direction(
            kkt, np.array([2.0, -2.0]), problem.jacobian_operator(z)
        )

        assert direction == "kkt"
        np.testing.assert_allclose(d, [-1.0, 1.0], rtol=1e-7)

    @staticmethod
    def test_negative_curvature_falls_back() -> None:
        problem = concave_on_line()
        z = problem.x0
        kkt = KKTSystem(problem)
        kkt.refresh(z, np.array([1.0]), gamma=1e-8, delta=1e-8)
        lagrangian_gradient = np.array([-1.0, 1.0])

        d, direction = tangent_direction(
            kkt, lagrangian_gradient, problem.jacobian_operator(z)
        )

        assert direction == "projected_gradient"
        np.testing.assert_allclose(d, [1.0, -1.0], atol=1e-10)
        assert np.dot(lagrangian_gradient, d) < 0


class TestTangentStep:
    @staticmethod
    def test_quadratic_on_line() -> None:
        problem = quadratic_on_line()
        res = take_tangent_step(problem, [1.5, -0.5], [-1.0], rho=0.5)

        assert res.status == SUCCESS
        assert res.direction == "kkt"
        assert res.step_size == 1.0
        assert res.nits == 1
        np.testing.assert_allclose(res.x, [0.5, 0.5], atol=1e-7)

    @staticmethod
    def test_stationary_point() -> None:
        """No step is taken when the Lagrangian is already stationary."""
        problem = quadratic_on_line()
        z = np.array([0.5, 0.5])
        res = take_tangent_step(problem, z, [-1.0], rho=0.5)

        assert res.status == SUCCESS
        assert res.nits == 0
        assert res.step_size == 0.0
        np.testing.assert_array_equal(res.x, z)

    @staticmethod
    def test_negative_curvature() -> None:
        problem = concave_on_line()
        res = take_tangent_step(problem, [1.0, 0.0], [1.0], rho=0.5)

        assert res.status == SUCCESS
        assert res.direction == "projected_gradient"
        np.testing.assert_allclose(res.x, [2.0, -1.0], atol=1e-10)

    @staticmethod
    def test_infeasibility_stays_bounded() -> None:
        """The step backtracks until ||c(x)|| <= 2 * rho."""
        problem = top_of_circle()
        rho = 0.01
        res = take_tangent_step(problem, [1.0, 0.0], [0.0], rho=rho)

        assert res.status == SUCCESS
        primal_norm = np.linalg.norm(problem.constraints(res.x))
        assert 0.0 < primal_norm <= 2.0 * rho
        assert res.x[1] > 0.0

    @staticmethod
    def test_custom_infeasibility_growth() -> None:
        problem = top_of_circle()
        rho = 0.01
        res = take_tangent_step(
            problem, [1.0, 0.0], [0.0], rho=rho, infeasibility_growth=1.0
        )

        assert res.status == SUCCESS
        assert np.linalg.norm(problem.constraints(res.x)) <= rho

    @staticmethod
    def test_line_search_failure() -> None:
        problem = undefined_away_from_start()
        z = problem.x0
        res = take_tangent_step(problem, z, [-1.0], rho=0.5)

        assert res.status == UNSUCCESSFUL
        assert res.step_size == 0.0
        assert res.message
        np.testing.assert_array_equal(res.x, z)
        assert res.nits > 1

    @staticmethod
    def test_out_of_budget() -> None:
        problem = quadratic_on_line()
        budget = Budget(max_eval=0, max_time=60.0)
        z = np.array([1.5, -0.5])
        res = take_tangent_step(problem, z, [-1.0], rho=0.5, budget=budget)

        assert res.status == "max_eval"
        np.testing.assert_array_equal(res.x, z)
        assert res.nits == 0

    @staticmethod
    def test_infeasibility_growth_failure() -> None:
        """Tangent moves can't fix a violation already above the allowed growth."""
        problem = quadratic_on_line()
        z = problem.x0
        rho = 0.1
        res = take_tangent_step(problem, z, [-1.0], rho=rho)

        assert res.status == UNSUCCESSFUL
        assert res.step_size == 0.0
        np.testing.assert_array_equal(res.x, z)
        assert "||c(x)||" in res.message
        assert f"> {2.0 * rho:.03g}" in res.message
        # Step sizes 1, 1/2, ..., 2^-34, the first one below 1e-10.
        assert res.nits == 35

    @staticmethod
    def test_ascent_direction_is_unsuccessful(monkeypatch) -> None:
        problem = quadratic_on_line()
        z = np.array([1.5, -0.5])
        monkeypatch.setattr(
            sys.modules["pydci.tangent_step"],
            "tangent_direction",
            lambda *args, **kwargs: (np.array([1.0, -1.0]), "projected_gradient"),
        )
        problem.reset_counters()
        res = take_tangent_step(problem, z, [-1.0], rho=0.5)

        assert res.status == UNSUCCESSFUL
        assert res.nits == 0
        assert ">= 0" in res.message
        np.testing.assert_array_equal(res.x, z)
        # Only the merit value at z was evaluated.
        assert problem.counters.neval_obj == 1
        assert problem.counters.neval_cons == 1
