"""Test progress reporting."""

import io

from pydci.reporting import ConsolePrinter, HistoryRecorder, ProgressRow


def make_row(stage: str, iteration: int = 0, status: str = "") -> ProgressRow:
    return ProgressRow(
        stage=stage,
        iteration=iteration,
        num_evals=2 * iteration + 2,
        objective=1.5,
        dual_residual=0.25,
        primal_residual=1e-3,
        radius=0.5,
        status=status,
        elapsed_time=0.001,
    )


class TestHistoryRecorder:
    @staticmethod
    def test_records_in_order() -> None:
        history = HistoryRecorder()
        rows = [make_row("init"), make_row("N", 0, "success"), make_row("T", 0)]
        for row in rows:
            history.record(row)
        assert history.rows == rows

    @staticmethod
    def test_stage() -> None:
        history = HistoryRecorder()
        for stage in ["init", "N", "T", "N", "T"]:
            history.record(make_row(stage))
        assert len(history.stage("N")) == 2
        assert len(history.stage("init")) == 1
        assert history.stage("max") == []


class TestConsolePrinter:
    @staticmethod
    def test_header_printed_once() -> None:
        stream = io.StringIO()
        printer = ConsolePrinter(stream=stream)
        printer.record(make_row("init"))
        printer.record(make_row("N", 0, "success"))

        lines = stream.getvalue().splitlines()
        assert len(lines) == 3
        assert lines[0] == ConsolePrinter.HEADER
        for column in ["stage", "iter", "#f", "f(x)", "‖∇L‖", "‖c(x)‖", "ρ", "status"]:
            assert column in lines[0]
        assert lines[1].split()[0] == "init"
        assert lines[2].split()[0] == "N"
        assert "success" in lines[2]

    @staticmethod
    def test_format_row() -> None:
        printer = ConsolePrinter()
        line = printer.format_row(make_row("T", 3, "success"))
        fields = line.split()
        assert fields[0] == "T"
        assert fields[1] == "3"
        assert fields[2] == "8"
        assert float(fields[3]) == 1.5
        assert float(fields[4]) == 0.25
        assert fields[7] == "success"

    @staticmethod
    def test_default_stream(capsys) -> None:
        printer = ConsolePrinter()
        printer.record(make_row("init"))
        captured = capsys.readouterr()
        assert captured.out.startswith(ConsolePrinter.HEADER)
