"""Test numerical helpers."""

import numpy as np
import pytest
from scipy import sparse

from pydci.numerical_helpers import (
    cauchy_step,
    dogleg,
    least_squares,
    project_onto_nullspace,
)


class TestLeastSquares:
    @staticmethod
    @pytest.mark.parametrize(
        "seed,m,n",
        [
            (101, 3, 10),
            (201, 5, 12),
            (301, 20, 8),
            (401, 1, 2),
        ],
    )
    def test_minimum_norm_solution(seed: int, m: int, n: int) -> None:
        """Compare against the pseudo-inverse solution."""
        rng = np.random.default_rng(seed)
        A = rng.normal(size=(m, n))
        b = rng.normal(size=m)

        x, converged, nits = least_squares(A, b)
        x_expected = np.linalg.pinv(A) @ b

        assert converged
        assert nits > 0
        np.testing.assert_allclose(x, x_expected, rtol=1e-6, atol=1e-8)

    @staticmethod
    def test_sparse_matrix() -> None:
        A = sparse.csr_matrix(np.array([[1.0, 1.0, 0.0], [0.0, 1.0, 1.0]]))
        b = np.array([1.0, 2.0])
        x, converged, _ = least_squares(A, b)
        assert converged
        np.testing.assert_allclose(A @ x, b, atol=1e-10)

    @staticmethod
    def test_zero_rhs() -> None:
        A = np.array([[1.0, 2.0]])
        x, converged, nits = least_squares(A, np.zeros(1))
        np.testing.assert_array_equal(x, np.zeros(2))
        assert converged
        assert nits == 0

    @staticmethod
    def test_deterministic() -> None:
        rng = np.random.default_rng(7)
        A = rng.normal(size=(4, 9))
        b = rng.normal(size=4)
        x1, _, _ = least_squares(A, b)
        x2, _, _ = least_squares(A, b)
        np.testing.assert_array_equal(x1, x2)

    @staticmethod
    def test_dimension_mismatch() -> None:
        with pytest.raises(ValueError):
            least_squares(np.eye(3), np.ones(2))


@pytest.mark.parametrize(
    "seed,m,n",
    [
        (102, 1, 2),
        (202, 3, 10),
        (302, 5, 6),
    ],
)
def test_project_onto_nullspace(seed: int, m: int, n: int) -> None:
    rng = np.random.default_rng(seed)
    J = rng.normal(size=(m, n))
    v = rng.normal(size=n)

    Pv = project_onto_nullspace(J, v)

    np.testing.assert_allclose(J @ Pv, 0.0, atol=1e-8)
    # v - Pv is in the range of J^T, so it is orthogonal to Pv.
    assert abs(np.dot(v - Pv, Pv)) < 1e-8
    # Projecting twice changes nothing.
    np.testing.assert_allclose(project_onto_nullspace(J, Pv), Pv, atol=1e-8)


class TestCauchyStep:
    @staticmethod
    def test_minimizes_model_along_gradient() -> None:
        J = np.array([[2.0, 1.0], [0.0, 1.0]])
        c = np.array([1.0, -3.0])
        g = J.T @ c

        d = cauchy_step(g, J @ g)

        def model(step):
            return 0.5 * np.linalg.norm(c + J @ step) ** 2

        for alpha in [0.9, 1.1]:
            assert model(d) <= model(alpha * d)

    @staticmethod
    def test_no_curvature() -> None:
        assert cauchy_step(np.array([1.0, 0.0]), np.zeros(1)) is None


class TestDogleg:
    @staticmethod
    def test_gauss_newton_inside() -> None:
        gn = np.array([0.3, 0.4])
        d = dogleg(gn, np.array([0.1, 0.1]), np.array([-1.0, -1.0]), radius=1.0)
        np.testing.assert_array_equal(d, gn)

    @staticmethod
    def test_cauchy_outside() -> None:
        g = np.array([3.0, 4.0])
        d = dogleg(np.array([-6.0, -8.0]), np.array([-3.0, -4.0]), g, radius=1.0)
        np.testing.assert_allclose(d, [-0.6, -0.8])

    @staticmethod
    def test_unbounded_cauchy() -> None:
        g = np.array([0.0, 2.0])
        d = dogleg(np.array([0.0, -10.0]), None, g, radius=0.5)
        np.testing.assert_allclose(d, [0.0, -0.5])

    @staticmethod
    def test_second_leg() -> None:
        gn = np.array([2.0, 0.0])
        cauchy = np.array([0.5, 0.5])
        d = dogleg(gn, cauchy, np.array([-1.0, -1.0]), radius=1.0)
        np.testing.assert_allclose(np.linalg.norm(d), 1.0)
        # d lies on the segment between the Cauchy and Gauss-Newton steps.
        diff = gn - cauchy
        tau = np.dot(d - cauchy, diff) / np.dot(diff, diff)
        assert 0.0 <= tau <= 1.0
        np.testing.assert_allclose(d, cauchy + tau * diff, atol=1e-12)

    @staticmethod
    def test_nonpositive_radius() -> None:
        with pytest.raises(ValueError):
            dogleg(np.ones(2), np.ones(2), np.ones(2), radius=0.0)
