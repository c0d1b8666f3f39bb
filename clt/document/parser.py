"""
Line-oriented session file format.

Sections are introduced by marker lines::

    ––– input –––
    echo hi
    ––– output –––
    hi
    ––– comment –––
    free text
    ––– block: common/login –––

Replay artifacts (``.rep``) additionally carry a ``––– duration: 12ms (3.50%) –––``
line after each output section.
"""

import re
from pathlib import Path
from typing import List, Optional, Tuple

from ..interfaces import ParseError
from ..logging_config import get_logger
from .models import (
    ActualDocument,
    ActualStep,
    BlockReferenceStep,
    CommandStep,
    CommentStep,
    Document,
    ExecutionStatus,
    Step,
)

SESSION_SUFFIX = ".rec"
BLOCK_SUFFIX = ".recb"
REPLAY_SUFFIX = ".rep"

INPUT_MARKER = "––– input –––"
OUTPUT_MARKER = "––– output –––"
COMMENT_MARKER = "––– comment –––"

MARKER_RE = re.compile(r"^––– (?P<name>[a-z]+)(?:: (?P<arg>.+?))? –––$")
BLOCK_PATH_RE = re.compile(r"^[.a-zA-Z0-9\-/_]+$")
DURATION_RE = re.compile(r"^(?P<ms>[0-9.]+)ms \((?P<pct>[0-9.]+)%\)$")
KNOWN_MARKERS = ("input", "output", "comment", "block", "duration")

logger = get_logger(__name__)


def output_marker(checker: Optional[str] = None) -> str:
    if checker:
        return f"––– output: {checker} –––"
    return OUTPUT_MARKER


def block_marker(reference_path: str) -> str:
    return f"––– block: {reference_path} –––"


def duration_marker(duration_ms: float, percentage: float) -> str:
    return f"––– duration: {int(round(duration_ms))}ms ({percentage:.2f}%) –––"


def is_block_file(path: Path) -> bool:
    """True if the path names a reusable block file rather than a session."""
    return Path(path).suffix == BLOCK_SUFFIX


def block_file_path(reference_path: str, referencing_path: Optional[Path]) -> Path:
    """Resolve a block reference relative to the directory of the referencing file."""
    base_dir = Path(referencing_path).parent if referencing_path else Path(".")
    return base_dir / f"{reference_path}{BLOCK_SUFFIX}"


def replay_file_path(session_path: Path) -> Path:
    """Path of the replay artifact written next to a session file."""
    return Path(session_path).with_suffix(REPLAY_SUFFIX)


class _Marker:
    __slots__ = ("name", "arg", "lineno")

    def __init__(self, name: str, arg: Optional[str], lineno: int):
        self.name = name
        self.arg = arg
        self.lineno = lineno


class _Section:
    """A marker and the body lines that follow it."""

    __slots__ = ("marker", "lines")

    def __init__(self, marker: _Marker):
        self.marker = marker
        self.lines: List[str] = []

    @property
    def body(self) -> str:
        return _join_body(self.lines)


def _join_body(lines: List[str]) -> str:
    # Trailing blank lines are not significant; everything else is kept as is
    end = len(lines)
    while end > 0 and not lines[end - 1].strip():
        end -= 1
    return "\n".join(lines[:end])


def _match_marker(line: str, lineno: int) -> Optional[_Marker]:
    # Surrounding whitespace is ignored when detecting markers
    stripped = line.strip()
    if not stripped.startswith("––– "):
        return None
    match = MARKER_RE.match(stripped)
    if not match:
        return None
    return _Marker(match.group("name"), match.group("arg"), lineno)


def _split_sections(text: str, path: Optional[Path]) -> Tuple[List[str], List[_Section]]:
    """Single pass over the text: description lines, then marker sections."""
    text = text.replace("\r\n", "\n")
    description: List[str] = []
    sections: List[_Section] = []

    for lineno, line in enumerate(text.split("\n"), start=1):
        marker = _match_marker(line, lineno)
        if marker is not None and marker.name not in KNOWN_MARKERS:
            # Marker-shaped text inside a body is ordinary output
            if not sections:
                raise ParseError(f"Unknown marker '{line.strip()}'", path, lineno)
            marker = None
        if marker is not None:
            sections.append(_Section(marker))
        elif sections:
            sections[-1].lines.append(line)
        else:
            description.append(line)

    return description, sections


def _description(lines: List[str]) -> Optional[str]:
    start = 0
    while start < len(lines) and not lines[start].strip():
        start += 1
    body = _join_body(lines[start:])
    return body or None


def _parse_duration(section: _Section, path: Optional[Path]) -> float:
    match = DURATION_RE.match(section.marker.arg or "")
    if not match:
        raise ParseError(f"Malformed duration marker '{section.marker.arg}'", path, section.marker.lineno)
    if section.body:
        raise ParseError("Duration marker cannot have a body", path, section.marker.lineno)
    return float(match.group("ms"))


def _parse_steps(sections: List[_Section], path: Optional[Path],
                 durations: Optional[List[float]] = None) -> List[Step]:
    steps: List[Step] = []
    pending_input: Optional[_Section] = None

    for section in sections:
        name = section.marker.name
        lineno = section.marker.lineno

        if pending_input is not None and name != "output":
            raise ParseError(
                "Unterminated step: input marker is not followed by an output marker",
                path, pending_input.marker.lineno
            )

        if name == "input":
            if section.marker.arg is not None:
                raise ParseError("Input marker takes no argument", path, lineno)
            if not section.body.strip():
                raise ParseError("Empty command after input marker", path, lineno)
            pending_input = section

        elif name == "output":
            if pending_input is None:
                raise ParseError("Output marker without a preceding input marker", path, lineno)
            steps.append(CommandStep(
                input=pending_input.body,
                expected_output=section.body,
                checker=section.marker.arg
            ))
            pending_input = None

        elif name == "comment":
            if section.marker.arg is not None:
                raise ParseError("Comment marker takes no argument", path, lineno)
            steps.append(CommentStep(text=section.body))

        elif name == "block":
            reference = section.marker.arg
            if not reference or not BLOCK_PATH_RE.match(reference):
                raise ParseError(f"Invalid block reference '{reference}'", path, lineno)
            if section.body.strip():
                raise ParseError("Unexpected text after block marker", path, lineno + 1)
            steps.append(BlockReferenceStep(reference_path=reference))

        elif name == "duration":
            duration = _parse_duration(section, path)
            if not steps or not isinstance(steps[-1], CommandStep):
                raise ParseError("Duration marker must follow an output section", path, lineno)
            if durations is not None:
                durations.append(duration)

    if pending_input is not None:
        raise ParseError(
            "Unterminated step: input marker is not followed by an output marker",
            path, pending_input.marker.lineno
        )

    return steps


def parse(text: str, document_path: Optional[Path] = None) -> Document:
    """
    Parse session text into a Document.

    Args:
        text: Document text
        document_path: File the text came from; used for error context and
            for resolving block references later

    Returns:
        Parsed document (block references are not resolved)

    Raises:
        ParseError: If the marker sequence is malformed
    """
    path = Path(document_path) if document_path is not None else None
    description, sections = _split_sections(text, path)
    steps = _parse_steps(sections, path)

    document = Document(description=_description(description), steps=steps, path=path)
    logger.debug(f"Parsed {len(steps)} steps from {path or '<string>'}")
    return document


def serialize(document: Document) -> str:
    """
    Serialize a Document to text.

    Nested steps are editor-only and are not written. The result ends with
    exactly one newline.
    """
    lines: List[str] = []

    if document.description:
        lines.append(document.description)
        if document.steps:
            lines.append("")

    for step in document.steps:
        if isinstance(step, CommandStep):
            lines.append(INPUT_MARKER)
            lines.append(step.input)
            lines.append(output_marker(step.checker))
            if step.expected_output:
                lines.append(step.expected_output)
        elif isinstance(step, CommentStep):
            lines.append(COMMENT_MARKER)
            if step.text:
                lines.append(step.text)
        elif isinstance(step, BlockReferenceStep):
            lines.append(block_marker(step.reference_path))
        else:
            raise TypeError(f"Cannot serialize step of type {type(step).__name__}")

    if not lines:
        return ""
    return "\n".join(lines) + "\n"


def load_document(path: Path) -> Document:
    """Read and parse a session or block file."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    return parse(text, path)


def save_document(document: Document, path: Path) -> Path:
    """Serialize a document to a file, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(serialize(document), encoding="utf-8")
    logger.info(f"Saved document with {len(document.steps)} steps to {path}")
    return path


def parse_actual(text: str, path: Optional[Path] = None) -> ActualDocument:
    """
    Parse a replay artifact.

    Only input, output and duration markers may appear. Exit statuses and
    execution statuses are not stored in the artifact; steps read back are
    marked completed.
    """
    path = Path(path) if path is not None else None
    _, sections = _split_sections(text, path)
    for section in sections:
        if section.marker.name in ("comment", "block"):
            raise ParseError(
                f"Replay artifacts cannot contain {section.marker.name} markers",
                path, section.marker.lineno
            )

    durations: List[float] = []
    steps = _parse_steps(sections, path, durations)

    actual_steps = []
    for index, step in enumerate(steps):
        actual_steps.append(ActualStep(
            index=index,
            input=step.input,
            actual_output=step.expected_output,
            duration_ms=durations[index] if index < len(durations) else 0.0,
            status=ExecutionStatus.COMPLETED
        ))

    return ActualDocument(source_path=path, steps=actual_steps)


def serialize_actual(actual: ActualDocument) -> str:
    """Serialize a replay result in the session format plus duration lines."""
    total = actual.total_duration_ms
    lines: List[str] = []

    for step in actual.steps:
        lines.append(INPUT_MARKER)
        lines.append(step.input)
        lines.append(OUTPUT_MARKER)
        output = _join_body(step.actual_output.replace("\r\n", "\n").split("\n"))
        if output:
            lines.append(output)
        percentage = (step.duration_ms / total * 100) if total > 0 else 0.0
        lines.append(duration_marker(step.duration_ms, percentage))

    if not lines:
        return ""
    return "\n".join(lines) + "\n"


def save_actual(actual: ActualDocument, path: Path) -> Path:
    """Write a replay artifact."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(serialize_actual(actual), encoding="utf-8")
    logger.info(f"Saved replay artifact with {len(actual.steps)} steps to {path}")
    return path


def load_actual(path: Path) -> ActualDocument:
    """Read a replay artifact."""
    path = Path(path)
    return parse_actual(path.read_text(encoding="utf-8"), path)
