"""
Terminal rendering of comparison reports.

Colour language:
  green   passing steps, lines only in the actual output
  red     failing steps, lines only in the expected output
  yellow  execution problems (timeouts, errors, skipped steps)
"""

import io
from typing import List, Optional

from rich import box
from rich.console import Console
from rich.table import Table
from rich.text import Text

from ..matcher import DiffFragment, DiffKind
from .models import ComparisonReport, StepResult

LAYOUTS = ("inline", "side-by-side")

EXPECTED_STYLE = "red"
ACTUAL_STYLE = "green"
EQUAL_STYLE = "dim"
PROBLEM_STYLE = "yellow"


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


class ReportRenderer:
    """Renders a ComparisonReport as an inline or side-by-side diff."""

    def __init__(self, color: bool = True, layout: str = "inline", width: int = 120):
        if layout not in LAYOUTS:
            raise ValueError(f"Unknown layout '{layout}', expected one of {LAYOUTS}")
        self.color = color
        self.layout = layout
        self.width = width

    def render(self, report: ComparisonReport) -> str:
        """Render the report to a string."""
        buffer = io.StringIO()
        console = Console(
            file=buffer,
            force_terminal=self.color,
            no_color=not self.color,
            color_system="standard" if self.color else None,
            width=self.width,
            highlight=False,
            soft_wrap=True
        )
        self.print(report, console)
        return buffer.getvalue()

    def print(self, report: ComparisonReport, console: Optional[Console] = None) -> None:
        """Print the report to a rich console."""
        if console is None:
            console = Console(no_color=not self.color, highlight=False)

        for result in report.results:
            console.print(self._header(result))
            if result.passed:
                continue
            if result.error_message:
                console.print(Text(f"  {result.error_message}", style=PROBLEM_STYLE))
            if self.layout == "side-by-side":
                if result.diff_fragments:
                    console.print(self._table(result.diff_fragments))
            else:
                for line in self._inline_lines(result.diff_fragments):
                    console.print(line, soft_wrap=True)

        console.print(self._summary(report))

    def _header(self, result: StepResult) -> Text:
        status = _label("PASS", "green") if result.passed else _label("FAIL", "red")
        header = Text.assemble(status, " ", (f"step {result.step_index + 1}", "bold"), ": ")
        header.append(f"$ {result.command}")
        if result.execution_status is not None and result.execution_status.value != "completed":
            header.append(f" [{result.execution_status.value}]", style=PROBLEM_STYLE)
        if result.exit_status not in (None, 0):
            header.append(f" (exit {result.exit_status})", style=PROBLEM_STYLE)
        if result.origin_path is not None:
            header.append(f"  {result.origin_path}", style="dim")
        return header

    def _inline_lines(self, fragments: List[DiffFragment]) -> List[Text]:
        lines: List[Text] = []
        for fragment in fragments:
            if fragment.kind == DiffKind.EQUAL:
                lines.append(Text(f"  {fragment.expected}", style=EQUAL_STYLE))
            elif fragment.kind == DiffKind.MISSING:
                lines.append(Text(f"- {fragment.expected}", style=EXPECTED_STYLE))
            elif fragment.kind == DiffKind.ADDED:
                lines.append(Text(f"+ {fragment.actual}", style=ACTUAL_STYLE))
            else:
                lines.append(Text(f"- {fragment.expected}", style=EXPECTED_STYLE))
                lines.append(Text(f"+ {fragment.actual}", style=ACTUAL_STYLE))
        return lines

    def _table(self, fragments: List[DiffFragment]) -> Table:
        table = Table(box=box.SIMPLE, show_header=True, header_style="bold", padding=(0, 1))
        table.add_column("#", justify="right", style="dim", width=5)
        table.add_column("Expected", ratio=1, overflow="fold")
        table.add_column("", width=1)
        table.add_column("Actual", ratio=1, overflow="fold")

        for fragment in fragments:
            number = fragment.expected_line or fragment.actual_line
            expected = Text(fragment.expected or "")
            actual = Text(fragment.actual or "")
            if fragment.kind == DiffKind.EQUAL:
                marker = " "
                expected.stylize(EQUAL_STYLE)
                actual.stylize(EQUAL_STYLE)
            elif fragment.kind == DiffKind.MISSING:
                marker = "<"
                expected.stylize(EXPECTED_STYLE)
            elif fragment.kind == DiffKind.ADDED:
                marker = ">"
                actual.stylize(ACTUAL_STYLE)
            else:
                marker = "|"
                expected.stylize(EXPECTED_STYLE)
                actual.stylize(ACTUAL_STYLE)
            table.add_row(str(number) if number else "", expected, marker, actual)
        return table

    def _summary(self, report: ComparisonReport) -> Text:
        summary = Text()
        summary.append(f"{report.passed_count} passed", style=ACTUAL_STYLE if report.passed_count else "")
        summary.append(", ")
        summary.append(f"{report.failed_count} failed", style=EXPECTED_STYLE if report.failed_count else "")
        if report.cancelled:
            summary.append(" (cancelled)", style=PROBLEM_STYLE)
        return summary
