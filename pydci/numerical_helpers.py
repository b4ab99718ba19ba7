"""Numerical linear algebra routines."""

from typing import Optional, Tuple

import numpy as np
import numpy.typing as npt
from scipy.sparse.linalg import LinearOperator, aslinearoperator, lsqr

# lsqr stopping flags meaning "we have a (least-squares) solution".
_LSQR_CONVERGED = (0, 1, 2, 4, 5)


def least_squares(
    A: LinearOperator,
    b: npt.NDArray[np.float64],
    atol: float = 1e-12,
    btol: float = 1e-12,
    iter_lim: Optional[int] = None,
) -> Tuple[npt.NDArray[np.float64], bool, int]:
    """Solve minimize ||A * x - b|| for the minimum norm x.

    Parameters
    ----------
     A : LinearOperator, sparse or dense matrix
        Only products A * v and A^T * w are needed, so A can be matrix free.
     b : vector
        Right hand side.
     atol, btol : float
        Stopping tolerances passed to LSQR. `btol` controls how accurately we solve
        consistent systems, `atol` how accurately we solve inconsistent ones.
     iter_lim : int, optional
        Iteration limit. Defaults to twice the number of columns of A.

    Returns
    -------
     x : vector
        The solution, or the last iterate if LSQR hit its iteration limit.
     converged : bool
        Whether LSQR reported convergence.
     nits : int
        Number of LSQR iterations.

    Notes
    -----
    LSQR (Paige and Saunders, 1982) is mathematically equivalent to conjugate
    gradients on the normal equations A^T * A * x = A^T * b, but numerically more
    reliable. Starting from x = 0 it converges to the minimum norm solution, which is
    what we want for rank deficient Jacobians. It is deterministic: the same inputs
    always produce the same output.

    """
    A = aslinearoperator(A)
    if A.shape[0] != b.shape[0]:
        raise ValueError("Dimension mismatch: b should have one entry per row of A.")

    if iter_lim is None:
        iter_lim = 2 * max(A.shape[1], 1)

    if not np.any(b):
        return np.zeros(A.shape[1]), True, 0

    result = lsqr(A, b, atol=atol, btol=btol, iter_lim=iter_lim)
    x, istop, nits = result[0], result[1], result[2]
    return x, istop in _LSQR_CONVERGED, nits


def project_onto_nullspace(
    J: LinearOperator,
    v: npt.NDArray[np.float64],
    atol: float = 1e-12,
    btol: float = 1e-12,
    iter_lim: Optional[int] = None,
) -> npt.NDArray[np.float64]:
    """Project v onto the null space of J.

    Calculates P * v = v - J^T * w, where w = argmin ||J^T * w - v||. The result is the
    component of v tangent to the constraint manifold, {d : J * d = 0}.

    """
    J = aslinearoperator(J)
    w, _, _ = least_squares(J.T, v, atol=atol, btol=btol, iter_lim=iter_lim)
    return v - J.rmatvec(w)


def cauchy_step(
    g: npt.NDArray[np.float64],
    Jg: npt.NDArray[np.float64],
) -> Optional[npt.NDArray[np.float64]]:
    """Minimizer of the Gauss-Newton model along the steepest descent direction.

    For the model m(d) = 0.5 * ||c + J * d||^2, the gradient at d = 0 is g = J^T * c.
    Minimizing m(-alpha * g) over alpha gives alpha = ||g||^2 / ||J * g||^2.

    Parameters
    ----------
     g : vector
        Gradient of the model, J^T * c.
     Jg : vector
        The product J * g.

    Returns
    -------
     d : vector or None
        The Cauchy step, -alpha * g, or None if the model has no curvature along g
        (in which case the step is unbounded).

    """
    curvature = np.dot(Jg, Jg)
    if curvature <= 0.0:
        return None
    return -(np.dot(g, g) / curvature) * g


def dogleg(
    gauss_newton: npt.NDArray[np.float64],
    cauchy: Optional[npt.NDArray[np.float64]],
    g: npt.NDArray[np.float64],
    radius: float,
) -> npt.NDArray[np.float64]:
    """Combine a Gauss-Newton step and a Cauchy step inside a trust region.

    Parameters
    ----------
     gauss_newton : vector
        Gauss-Newton step.
     cauchy : vector or None
        Cauchy step, or None if the model is flat along the gradient.
     g : vector
        Model gradient, used to orient the step when the Cauchy step is unbounded.
     radius : float
        Trust region radius.

    Returns
    -------
     d : vector
        A step with ||d|| <= radius.

    Notes
    -----
    The dogleg path runs from 0 to the Cauchy step and from there to the Gauss-Newton
    step (Nocedal and Wright, 2006, section 4.1):
      1. If the Gauss-Newton step lies inside the region, take it.
      2. If the Cauchy step is outside the region, take the steepest descent step to
         the boundary.
      3. Otherwise, follow the second leg of the path to the boundary; the step is
         cauchy + tau * (gauss_newton - cauchy) with tau in [0, 1] chosen so that the
         norm equals the radius.

    """
    if radius <= 0.0:
        raise ValueError("radius must be positive.")

    if np.linalg.norm(gauss_newton) <= radius:
        return gauss_newton

    if cauchy is None or np.linalg.norm(cauchy) >= radius:
        g_norm = np.linalg.norm(g)
        if g_norm == 0.0:
            return np.zeros_like(g)
        return -(radius / g_norm) * g

    diff = gauss_newton - cauchy
    a = np.dot(diff, diff)
    b = 2.0 * np.dot(cauchy, diff)
    c = np.dot(cauchy, cauchy) - radius**2
    # c < 0 since the Cauchy step is strictly inside, so there is a positive root.
    tau = (-b + np.sqrt(b**2 - 4.0 * a * c)) / (2.0 * a)
    return cauchy + min(max(tau, 0.0), 1.0) * diff
