"""Custom exceptions."""


class DCIError(Exception):
    """Base class for solver errors."""

    def __init__(self, message: str) -> None:
        self.message = message

    def __str__(self) -> str:
        """Pretty-print error."""
        return self.message


class NotEqualityConstrainedError(DCIError):
    """Raised when a problem is not purely equality constrained.

    The solver handles problems of the form
        minimize    f(x)
        subject to  c(x) = 0,
    with at least one constraint, no inequality constraints and no bounds on x.

    """

    def __init__(
        self,
        message: str,
        num_constraints: int,
        num_inequality_constraints: int,
        has_bounds: bool,
    ) -> None:
        self.message = message
        self.num_constraints = num_constraints
        self.num_inequality_constraints = num_inequality_constraints
        self.has_bounds = has_bounds

    def __str__(self) -> str:
        """Pretty-print error."""
        msg = (
            f"{self.message} ({self.num_constraints} constraint(s), "
            f"{self.num_inequality_constraints} inequalit(ies), "
            f"bounds={self.has_bounds})"
        )
        return msg


class KKTSolveError(DCIError):
    """Raised when we cannot factorize or solve the KKT system."""


class PatternAlreadyBuiltError(DCIError):
    """Raised when the KKT sparsity pattern is built a second time."""


class BacktrackingLineSearchError(DCIError):
    """Raised when the tangent step line search fails."""


class SevereCurvatureError(BacktrackingLineSearchError):
    """Raised when small steps did not adequately decrease the merit function."""

    def __init__(
        self,
        message: str,
        required_improvement: float,
        actual_improvement: float,
    ) -> None:
        self.message = message
        self.required_improvement = required_improvement
        self.actual_improvement = actual_improvement

    def __str__(self) -> str:
        """Pretty-print error."""
        msg = (
            f"{self.message} (required improvement >= {self.required_improvement:.03g}"
            f"; actual improvement = {self.actual_improvement:.03g})"
        )
        return msg


class InfeasibilityGrowthError(BacktrackingLineSearchError):
    """Raised when even small steps let the infeasibility grow past its budget."""

    def __init__(self, message: str, primal_norm: float, allowed: float) -> None:
        self.message = message
        self.primal_norm = primal_norm
        self.allowed = allowed

    def __str__(self) -> str:
        """Pretty-print error."""
        msg = (
            f"{self.message} (||c(x)|| = {self.primal_norm:.03g} > "
            f"{self.allowed:.03g})"
        )
        return msg


class InvalidDescentDirectionError(BacktrackingLineSearchError):
    """Raised when the tangent direction is not a descent direction.

    Usually this is because the Hessian of the Lagrangian has negative curvature along
    the constraint manifold.

    """

    def __init__(self, message: str, slope: float) -> None:
        self.message = message
        self.slope = slope

    def __str__(self) -> str:
        """Pretty-print error."""
        msg = f"{self.message} (∇L^T d = {self.slope} >= 0, but should be < 0)"
        return msg
