"""Lagrange multiplier estimates."""

from dataclasses import dataclass
from typing import Optional

import numpy as np
import numpy.typing as npt
from scipy.sparse.linalg import LinearOperator, aslinearoperator

from .numerical_helpers import least_squares


@dataclass
class MultiplierEstimate:
    """Least-squares multiplier estimate.

    Parameters
    ----------
     multipliers : vector
        The estimate, one entry per constraint.
     residual_norm : float
        ||J^T * multipliers + g||, the dual residual at the estimate.
     converged : bool
        Whether the least-squares solver reported convergence. If not, `multipliers`
        is the best available iterate; callers see the effect through
        `residual_norm` and don't need to treat it as an error.
     nits : int
        Iterations of the least-squares solver.

    """

    multipliers: npt.NDArray[np.float64]
    residual_norm: float
    converged: bool
    nits: int


def estimate_multipliers(
    J: LinearOperator,
    g: npt.NDArray[np.float64],
    atol: float = 1e-12,
    btol: float = 1e-12,
    iter_lim: Optional[int] = None,
) -> MultiplierEstimate:
    """Estimate Lagrange multipliers.

    Solves
        minimize ||J^T * y + g||
    over y, where J is the constraint Jacobian and g the objective gradient. At a
    first order point the minimum is zero and y is the vector of Lagrange
    multipliers.

    Parameters
    ----------
     J : LinearOperator
        Constraint Jacobian, m-by-n. Only J * v and J^T * w are used.
     g : vector of length n
        Objective gradient.
     atol, btol, iter_lim
        Passed to the least-squares solver.

    Returns
    -------
     res : MultiplierEstimate
        The estimate and its residual.

    """
    J = aslinearoperator(J)
    if J.shape[1] != g.shape[0]:
        raise ValueError(
            "Dimension mismatch: g should have one entry for each column of J."
        )

    y, converged, nits = least_squares(
        J.T, -g, atol=atol, btol=btol, iter_lim=iter_lim
    )
    residual_norm = float(np.linalg.norm(J.rmatvec(y) + g))
    return MultiplierEstimate(
        multipliers=y, residual_norm=residual_norm, converged=converged, nits=nits
    )
