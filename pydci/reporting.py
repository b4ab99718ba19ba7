"""Progress reporting.

The solver emits one ProgressRow per stage of the outer loop: "init" once, "N" after
every normal step attempt and "T" after every tangent step. Rows go to any number of
sinks. Sinks only observe; nothing they do feeds back into the solver.

"""

import sys
from dataclasses import astuple, dataclass, field
from typing import List, Optional, Protocol, TextIO


@dataclass
class ProgressRow:
    """One row of the progress log."""

    stage: str
    iteration: int
    num_evals: int
    objective: float
    dual_residual: float
    primal_residual: float
    radius: float
    status: str = ""
    elapsed_time: float = 0.0


class ProgressSink(Protocol):
    """Anything that can receive progress rows."""

    def record(self, row: ProgressRow) -> None:
        """Receive a row."""


@dataclass
class HistoryRecorder:
    """Keep every row in memory."""

    rows: List[ProgressRow] = field(default_factory=list)

    def record(self, row: ProgressRow) -> None:
        """Append the row."""
        self.rows.append(row)

    def stage(self, stage: str) -> List[ProgressRow]:
        """Rows for a particular stage."""
        return [row for row in self.rows if row.stage == stage]


class ConsolePrinter:
    """Print rows as a fixed-width table.

    The header is printed before the first row.

    """

    HEADER = (
        f"{'stage':>5}  {'iter':>5}  {'#f':>6}  {'f(x)':>12}  {'‖∇L‖':>9}  "
        f"{'‖c(x)‖':>9}  {'ρ':>9}  {'status':<12}  {'time':>8}"
    )

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self.stream = stream
        self._printed_header = False

    def format_row(self, row: ProgressRow) -> str:
        """Format one row."""
        stage, iteration, num_evals, fx, dual, primal, rho, status, elapsed = astuple(
            row
        )
        return (
            f"{stage:>5}  {iteration:>5d}  {num_evals:>6d}  {fx:>12.5e}  {dual:>9.2e}  "
            f"{primal:>9.2e}  {rho:>9.2e}  {status:<12}  {elapsed:>8.3f}"
        )

    def record(self, row: ProgressRow) -> None:
        """Print the row, preceded by the header the first time."""
        stream = sys.stdout if self.stream is None else self.stream
        if not self._printed_header:
            print(self.HEADER, file=stream)
            self._printed_header = True
        print(self.format_row(row), file=stream)
