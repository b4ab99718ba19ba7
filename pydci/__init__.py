"""Dynamic Control of Infeasibility for equality constrained optimization."""

from .exceptions import (
    BacktrackingLineSearchError,
    DCIError,
    InfeasibilityGrowthError,
    InvalidDescentDirectionError,
    KKTSolveError,
    NotEqualityConstrainedError,
    PatternAlreadyBuiltError,
    SevereCurvatureError,
)
from .kkt import FixedRegularization, KKTSystem
from .multipliers import MultiplierEstimate, estimate_multipliers
from .normal_step import NormalStepResult, normal_step, update_radius
from .optimization import (
    DCIResult,
    DCISettings,
    DCISolver,
    OptimizationResult,
    Optimizer,
    dci,
)
from .problem import Counters, FunctionProblem, NonlinearProblem
from .reporting import ConsolePrinter, HistoryRecorder, ProgressRow
from .state import Budget, IterationState
from .tangent_step import TangentStepResult, tangent_step

__all__ = [
    "dci",
    "DCISolver",
    "DCISettings",
    "DCIResult",
    "OptimizationResult",
    "Optimizer",
    "NonlinearProblem",
    "FunctionProblem",
    "Counters",
    "IterationState",
    "Budget",
    "KKTSystem",
    "FixedRegularization",
    "MultiplierEstimate",
    "estimate_multipliers",
    "NormalStepResult",
    "normal_step",
    "update_radius",
    "TangentStepResult",
    "tangent_step",
    "ProgressRow",
    "HistoryRecorder",
    "ConsolePrinter",
    "BacktrackingLineSearchError",
    "DCIError",
    "InfeasibilityGrowthError",
    "InvalidDescentDirectionError",
    "KKTSolveError",
    "NotEqualityConstrainedError",
    "PatternAlreadyBuiltError",
    "SevereCurvatureError",
]
