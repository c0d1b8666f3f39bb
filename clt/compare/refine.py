"""
Promotion of actual output into expectations.

Refining rewrites the expected output of failing steps from a comparison
report. Lines that already matched keep their expected text, placeholders
included; everything else is taken from the actual output.
"""

from pathlib import Path
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field

from ..document.models import CommandStep, Document, FlattenedDocument
from ..interfaces import PlaceholderError
from ..logging_config import get_logger
from ..matcher import DiffFragment, DiffKind, compile_matcher
from ..patterns import PatternRegistry
from .models import ComparisonReport

logger = get_logger(__name__)


class SkippedStep(BaseModel):
    step_index: int
    command: str
    reason: str
    path: Optional[Path] = None


class RefineSummary(BaseModel):
    """What a refine pass changed."""

    refined: List[int] = Field(default_factory=list, description="Command indices whose expectation changed")
    skipped: List[SkippedStep] = Field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.refined)


def merge_expectation(fragments: List[DiffFragment]) -> str:
    """Merge diff fragments into a new expectation."""
    lines = []
    for fragment in fragments:
        if fragment.kind == DiffKind.EQUAL:
            lines.append(fragment.expected)
        elif fragment.kind in (DiffKind.CHANGED, DiffKind.ADDED):
            lines.append(fragment.actual)
    return "\n".join(lines)


def _same_path(a: Optional[Path], b: Optional[Path]) -> bool:
    if a is None or b is None:
        return a is None and b is None
    return Path(a).resolve() == Path(b).resolve()


def _still_matches(expected: str, actual: str, registry: PatternRegistry) -> bool:
    try:
        return compile_matcher(expected, registry).matches(actual)
    except PlaceholderError:
        return False


def refine_document(document: Document, flattened: FlattenedDocument, report: ComparisonReport,
                    registry: Optional[PatternRegistry] = None) -> Tuple[Document, RefineSummary]:
    """
    Rewrite failing expectations of the root document from a report.

    Args:
        document: The unflattened root document
        flattened: Its flattened form, used to locate where each step lives
        report: Comparison of ``flattened`` against a replay
        registry: When given, a merged expectation that still does not match
            the actual output is replaced by the actual output verbatim

    Returns:
        The refined document and a summary. Steps that live in block files
        or never executed are listed as skipped.
    """
    steps = list(document.steps)
    summary = RefineSummary()
    positions = flattened.command_positions()

    for result in report.failures:
        if result.step_index >= len(positions):
            summary.skipped.append(SkippedStep(
                step_index=result.step_index, command=result.command,
                reason="not in the document"
            ))
            continue

        origin = flattened.origin_of(positions[result.step_index])
        if not _same_path(origin.path, document.path):
            summary.skipped.append(SkippedStep(
                step_index=result.step_index, command=result.command,
                reason="defined in a block file", path=origin.path
            ))
            continue

        if result.actual_text is None or (result.execution_status is not None
                                          and result.execution_status.value != "completed"):
            summary.skipped.append(SkippedStep(
                step_index=result.step_index, command=result.command,
                reason="did not execute", path=origin.path
            ))
            continue

        step = steps[origin.index]
        if not isinstance(step, CommandStep) or step.input != result.command:
            summary.skipped.append(SkippedStep(
                step_index=result.step_index, command=result.command,
                reason="document changed since it was flattened", path=origin.path
            ))
            continue

        merged = merge_expectation(result.diff_fragments)
        if registry is not None and not _still_matches(merged, result.actual_text, registry):
            # A placeholder spanning lines cannot be merged line by line
            merged = result.actual_text

        steps[origin.index] = step.model_copy(update={"expected_output": merged})
        summary.refined.append(result.step_index)
        logger.info(f"Refined step {result.step_index}: {result.command}")

    refined = document.model_copy(update={"steps": steps})
    return refined, summary
