"""
Comparison of a replay against its session document.

Command steps of the flattened document are paired with replayed steps by
index. A step passes when it completed and its output conforms to the
expected output; placeholders allow dynamic content.
"""

from typing import List, Optional

from ..document.models import ActualDocument, ActualStep, CommandStep, FlattenedDocument
from ..interfaces import ComparisonError, PlaceholderError
from ..logging_config import get_logger
from ..matcher import CompiledMatcher, DiffFragment, DiffKind, compile_matcher, normalize_text
from ..patterns import PatternRegistry
from .models import ComparisonReport, StepResult, Verdict

logger = get_logger(__name__)


def _compile_step(step: CommandStep, index: int, registry: PatternRegistry) -> CompiledMatcher:
    try:
        matcher = compile_matcher(step.expected_output, registry)
        for nested in _nested_commands(step):
            compile_matcher(nested.expected_output, registry)
    except PlaceholderError as e:
        raise e.attach_step(index, step.input)
    return matcher


def _nested_commands(step: CommandStep) -> List[CommandStep]:
    found: List[CommandStep] = []
    pending = list(step.nested_steps or [])
    while pending:
        nested = pending.pop(0)
        if isinstance(nested, CommandStep):
            found.append(nested)
            pending.extend(nested.nested_steps or [])
    return found


def validate(flattened: FlattenedDocument, registry: PatternRegistry) -> List[CompiledMatcher]:
    """
    Compile the expectation of every command step before anything runs.

    Nested editor steps are compiled too, so a broken placeholder anywhere in
    the document is reported up front.

    Returns:
        One matcher per command step, in order

    Raises:
        PlaceholderError: The first unusable placeholder, annotated with the
            step index and command
    """
    commands = [step for step in flattened.steps if isinstance(step, CommandStep)]
    matchers = [_compile_step(step, index, registry) for index, step in enumerate(commands)]
    logger.debug(f"Validated {len(matchers)} expectations")
    return matchers


def _missing_fragments(matcher: CompiledMatcher) -> List[DiffFragment]:
    if not matcher.expected:
        return []
    return [
        DiffFragment(kind=DiffKind.MISSING, expected=line, expected_line=number)
        for number, line in enumerate(matcher.expected.split("\n"), start=1)
    ]


def _added_fragments(text: str) -> List[DiffFragment]:
    text = normalize_text(text)
    if not text:
        return []
    return [
        DiffFragment(kind=DiffKind.ADDED, actual=line, actual_line=number)
        for number, line in enumerate(text.split("\n"), start=1)
    ]


def _compare_step(index: int, step: CommandStep, matcher: CompiledMatcher,
                  actual_step: Optional[ActualStep], origin_path) -> StepResult:
    if actual_step is None:
        return StepResult(
            step_index=index,
            command=step.input,
            verdict=Verdict.FAIL,
            expected_rendered=matcher.rendered,
            diff_fragments=_missing_fragments(matcher),
            error_message="Step has no replayed counterpart",
            origin_path=origin_path
        )

    if actual_step.input != step.input:
        raise ComparisonError(
            f"Step {index}: replay ran {actual_step.input!r} but the document expects {step.input!r}"
        )

    conforms = matcher.matches(actual_step.actual_output)
    passed = actual_step.executed and conforms
    fragments = [] if conforms else matcher.explain(actual_step.actual_output)

    return StepResult(
        step_index=index,
        command=step.input,
        verdict=Verdict.PASS if passed else Verdict.FAIL,
        expected_rendered=matcher.rendered,
        actual_text=normalize_text(actual_step.actual_output),
        diff_fragments=fragments,
        execution_status=actual_step.status,
        exit_status=actual_step.exit_status,
        error_message=actual_step.error_message,
        origin_path=origin_path
    )


def compare(flattened: FlattenedDocument, actual: ActualDocument,
            registry: PatternRegistry) -> ComparisonReport:
    """
    Compare a replay with the document it was replayed from.

    Mismatches are report data; only structural problems raise.

    Raises:
        PlaceholderError: If an expectation cannot be compiled
        ComparisonError: If the replay ran different commands than the document
    """
    matchers = validate(flattened, registry)
    positions = flattened.command_positions()
    commands = [flattened.steps[position] for position in positions]

    results: List[StepResult] = []
    for index, (step, matcher) in enumerate(zip(commands, matchers)):
        actual_step = actual.steps[index] if index < len(actual.steps) else None
        origin_path = flattened.origin_of(positions[index]).path
        result = _compare_step(index, step, matcher, actual_step, origin_path)
        results.append(result)
        logger.debug(f"Step {index} ({step.input}): {result.verdict.value}")

    for index in range(len(commands), len(actual.steps)):
        extra = actual.steps[index]
        results.append(StepResult(
            step_index=index,
            command=extra.input,
            verdict=Verdict.FAIL,
            actual_text=normalize_text(extra.actual_output),
            diff_fragments=_added_fragments(extra.actual_output),
            execution_status=extra.status,
            exit_status=extra.exit_status,
            error_message="Replayed step is not in the document"
        ))

    report = ComparisonReport(
        source_path=flattened.path or actual.source_path,
        results=results,
        cancelled=actual.cancelled
    )
    logger.info(f"Comparison finished: {report.passed_count} passed, {report.failed_count} failed")
    return report
