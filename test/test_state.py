"""Test iteration state and budget."""

from dataclasses import FrozenInstanceError, replace

import numpy as np
import pytest

from pydci.problems import quadratic_on_line
from pydci.state import Budget, IterationState


def make_state(x, multipliers, rho=1.0) -> IterationState:
    problem = quadratic_on_line()
    x = np.asarray(x, dtype=np.float64)
    return IterationState(
        x=x,
        fx=problem.objective(x),
        cx=problem.constraints(x),
        gx=problem.gradient(x),
        J=problem.jacobian_operator(x),
        multipliers=np.asarray(multipliers, dtype=np.float64),
        rho=rho,
    )


class TestIterationState:
    @staticmethod
    def test_residuals() -> None:
        state = make_state([2.0, 0.0], [-2.0])
        np.testing.assert_allclose(state.lagrangian_gradient, [2.0, -2.0])
        np.testing.assert_allclose(state.dual_norm, 2.0 * np.sqrt(2.0))
        np.testing.assert_allclose(state.primal_norm, 1.0)
        np.testing.assert_allclose(state.gradient_norm, 4.0)
        np.testing.assert_allclose(state.lagrangian, 4.0 - 2.0)

    @staticmethod
    def test_frozen() -> None:
        state = make_state([2.0, 0.0], [-2.0])
        with pytest.raises(FrozenInstanceError):
            state.rho = 0.5

    @staticmethod
    def test_replace_recomputes_residuals() -> None:
        state = make_state([2.0, 0.0], [-2.0])
        assert state.dual_norm > 0
        updated = replace(state, multipliers=np.array([-1.0]))
        np.testing.assert_allclose(updated.lagrangian_gradient, [3.0, -1.0])
        # The input state is unchanged.
        np.testing.assert_allclose(state.lagrangian_gradient, [2.0, -2.0])


class TestBudget:
    @staticmethod
    def test_eval_limit_is_strict() -> None:
        problem = quadratic_on_line()
        budget = Budget(max_eval=2, max_time=60.0)
        x = problem.x0
        problem.objective(x)
        problem.constraints(x)
        assert budget.num_evals(problem) == 2
        assert budget.exhausted(problem) is None

        problem.constraints(x)
        assert budget.exhausted(problem) == "max_eval"

    @staticmethod
    def test_only_objective_and_constraints_count() -> None:
        problem = quadratic_on_line()
        budget = Budget(max_eval=0, max_time=60.0)
        x = problem.x0
        problem.gradient(x)
        problem.jacobian_coords(x)
        problem.hessian_coords(x, np.zeros(1))
        assert budget.exhausted(problem) is None

    @staticmethod
    def test_time_limit() -> None:
        problem = quadratic_on_line()
        budget = Budget(max_eval=10, max_time=-1.0)
        assert budget.exhausted(problem) == "max_time"

    @staticmethod
    def test_eval_limit_checked_first() -> None:
        problem = quadratic_on_line()
        problem.objective(problem.x0)
        budget = Budget(max_eval=0, max_time=-1.0)
        assert budget.exhausted(problem) == "max_eval"

    @staticmethod
    def test_elapsed_is_nondecreasing() -> None:
        budget = Budget(max_eval=10, max_time=60.0)
        first = budget.elapsed()
        second = budget.elapsed()
        assert 0.0 <= first <= second
