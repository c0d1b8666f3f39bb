"""
Expected-output matching with placeholders.

Expected output is literal text that may embed two kinds of placeholders:

* ``%{IDENTIFIER}`` - replaced by the regex registered under IDENTIFIER
* ``#!/REGEX/!#`` - an inline regular expression

Everything else is matched literally. A matcher succeeds only when the whole
actual output conforms to the composed pattern.
"""

import re
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel

from .interfaces import InvalidPatternError, PlaceholderError
from .logging_config import get_logger
from .patterns import PatternRegistry

INLINE_OPEN = "#!/"
INLINE_CLOSE = "/!#"
NAMED_RE = re.compile(r"%\{([A-Z][A-Z0-9_]*)\}")

# LCS alignment beyond this many cells falls back to positional pairing
MAX_ALIGNMENT_CELLS = 4_000_000

logger = get_logger(__name__)


class TokenKind(str, Enum):
    LITERAL = "literal"
    NAMED = "named"
    INLINE = "inline"


class DiffKind(str, Enum):
    """Classification of one line in a diff."""

    EQUAL = "equal"
    MISSING = "missing"  # only in expected
    ADDED = "added"  # only in actual
    CHANGED = "changed"


class DiffFragment(BaseModel):
    """One line-aligned element of an expected/actual diff."""

    kind: DiffKind
    expected: Optional[str] = None
    actual: Optional[str] = None
    expected_line: Optional[int] = None
    actual_line: Optional[int] = None


def normalize_text(text: str) -> str:
    """Unify line endings and drop trailing blank lines."""
    lines = text.replace("\r\n", "\n").split("\n")
    end = len(lines)
    while end > 0 and not lines[end - 1].strip():
        end -= 1
    return "\n".join(lines[:end])


def tokenize(text: str) -> List[Tuple[TokenKind, str]]:
    """
    Split expected text into literal, named and inline tokens.

    Raises:
        InvalidPatternError: If an inline placeholder is not closed or empty
    """
    tokens: List[Tuple[TokenKind, str]] = []
    pos = 0

    while pos < len(text):
        inline_at = text.find(INLINE_OPEN, pos)
        named = NAMED_RE.search(text, pos)
        named_at = named.start() if named else -1

        if inline_at < 0 and named_at < 0:
            tokens.append((TokenKind.LITERAL, text[pos:]))
            break

        if inline_at >= 0 and (named_at < 0 or inline_at < named_at):
            if inline_at > pos:
                tokens.append((TokenKind.LITERAL, text[pos:inline_at]))
            start = inline_at + len(INLINE_OPEN)
            close = text.find(INLINE_CLOSE, start)
            if close < 0:
                raise InvalidPatternError(f"Unterminated inline pattern at offset {inline_at}")
            regex = text[start:close]
            if not regex:
                raise InvalidPatternError(f"Empty inline pattern at offset {inline_at}")
            tokens.append((TokenKind.INLINE, regex))
            pos = close + len(INLINE_CLOSE)
        else:
            if named_at > pos:
                tokens.append((TokenKind.LITERAL, text[pos:named_at]))
            tokens.append((TokenKind.NAMED, named.group(1)))
            pos = named.end()

    return tokens


def _build_pattern(tokens: List[Tuple[TokenKind, str]], registry: PatternRegistry) -> str:
    fragments = []
    for kind, value in tokens:
        if kind == TokenKind.LITERAL:
            fragments.append(re.escape(value))
            continue

        regex = registry.resolve(value) if kind == TokenKind.NAMED else value
        try:
            re.compile(regex)
        except re.error as e:
            label = f"%{{{value}}}" if kind == TokenKind.NAMED else f"{INLINE_OPEN}{value}{INLINE_CLOSE}"
            raise InvalidPatternError(f"Invalid regex in {label}: {e}") from e
        fragments.append(f"(?:{regex})")
    return "".join(fragments)


def render_placeholders(text: str, registry: PatternRegistry) -> str:
    """Expand named placeholders into their inline form."""
    parts = []
    for kind, value in tokenize(text):
        if kind == TokenKind.LITERAL:
            parts.append(value)
        elif kind == TokenKind.NAMED:
            parts.append(f"{INLINE_OPEN}{registry.resolve(value)}{INLINE_CLOSE}")
        else:
            parts.append(f"{INLINE_OPEN}{value}{INLINE_CLOSE}")
    return "".join(parts)


class CompiledMatcher:
    """Anchored matcher for one step's expected output."""

    def __init__(self, expected: str, registry: PatternRegistry):
        self.expected = normalize_text(expected)
        self.registry = registry
        self.tokens = tokenize(self.expected)
        self.pattern = _build_pattern(self.tokens, registry)
        try:
            self.regex = re.compile(self.pattern)
        except re.error as e:
            raise InvalidPatternError(f"Composed pattern does not compile: {e}") from e
        self.rendered = render_placeholders(self.expected, registry)
        self._line_matchers: Optional[List["_LineMatcher"]] = None

    @property
    def has_placeholders(self) -> bool:
        return any(kind != TokenKind.LITERAL for kind, _ in self.tokens)

    def matches(self, actual: str) -> bool:
        """True if the entire normalised actual output conforms."""
        return self.regex.fullmatch(normalize_text(actual)) is not None

    def explain(self, actual: str) -> List[DiffFragment]:
        """
        Produce a line-aligned diff between expected and actual output.

        Lines are aligned by longest common subsequence where two lines are
        equal if the expected line's own matcher accepts the actual line.
        Adjacent runs of missing and added lines are paired as changed lines.
        """
        actual_text = normalize_text(actual)
        expected_lines = self.expected.split("\n") if self.expected else []
        actual_lines = actual_text.split("\n") if actual_text else []
        line_matchers = self._get_line_matchers(expected_lines)

        ops = _align(line_matchers, actual_lines)
        fragments = _fragments_from_ops(ops, expected_lines, actual_lines)

        if not self.matches(actual) and all(f.kind == DiffKind.EQUAL for f in fragments):
            # Only a multi-line placeholder can disagree with every line matching
            fragments.append(DiffFragment(
                kind=DiffKind.CHANGED,
                expected=self.expected,
                actual=actual_text,
                expected_line=1 if expected_lines else None,
                actual_line=1 if actual_lines else None
            ))
        return fragments

    def _get_line_matchers(self, expected_lines: List[str]) -> List["_LineMatcher"]:
        if self._line_matchers is None:
            self._line_matchers = [_LineMatcher(line, self.registry) for line in expected_lines]
        return self._line_matchers

    def __repr__(self) -> str:
        return f"CompiledMatcher({self.expected!r})"


class _LineMatcher:
    """Matcher for a single expected line; literal comparison if the line cannot compile alone."""

    def __init__(self, line: str, registry: PatternRegistry):
        self.line = line
        try:
            self.regex: Optional[re.Pattern] = re.compile(_build_pattern(tokenize(line), registry))
        except (PlaceholderError, re.error):
            # A placeholder spanning several lines cannot be split per line
            self.regex = None

    def accepts(self, actual_line: str) -> bool:
        if self.regex is None:
            return self.line == actual_line
        return self.regex.fullmatch(actual_line) is not None


def _align(matchers: List[_LineMatcher], actual: List[str]) -> List[Tuple[str, Optional[int], Optional[int]]]:
    """Return ops ('equal', i, j), ('delete', i, None), ('insert', None, j)."""
    n, m = len(matchers), len(actual)

    prefix = 0
    while prefix < n and prefix < m and matchers[prefix].accepts(actual[prefix]):
        prefix += 1
    suffix = 0
    while (suffix < n - prefix and suffix < m - prefix
           and matchers[n - 1 - suffix].accepts(actual[m - 1 - suffix])):
        suffix += 1

    head = [("equal", i, i) for i in range(prefix)]
    tail = [("equal", n - suffix + k, m - suffix + k) for k in range(suffix)]
    mid_n, mid_m = n - prefix - suffix, m - prefix - suffix

    if mid_n * mid_m > MAX_ALIGNMENT_CELLS:
        logger.debug(f"Diff of {mid_n}x{mid_m} lines too large for alignment, pairing by position")
        middle = []
        for k in range(max(mid_n, mid_m)):
            i = prefix + k if k < mid_n else None
            j = prefix + k if k < mid_m else None
            if i is not None and j is not None:
                middle.append(("equal" if matchers[i].accepts(actual[j]) else "pair", i, j))
            elif i is not None:
                middle.append(("delete", i, None))
            else:
                middle.append(("insert", None, j))
        return head + _expand_pairs(middle) + tail

    # lengths[i][j]: LCS of matchers[prefix+i:] and actual[prefix+j:]
    lengths = [[0] * (mid_m + 1) for _ in range(mid_n + 1)]
    accepted = [[False] * mid_m for _ in range(mid_n)]
    for i in range(mid_n - 1, -1, -1):
        matcher = matchers[prefix + i]
        row, below = lengths[i], lengths[i + 1]
        for j in range(mid_m - 1, -1, -1):
            if matcher.accepts(actual[prefix + j]):
                accepted[i][j] = True
                row[j] = below[j + 1] + 1
            else:
                row[j] = max(below[j], row[j + 1])

    middle = []
    i = j = 0
    while i < mid_n and j < mid_m:
        if accepted[i][j] and lengths[i][j] == lengths[i + 1][j + 1] + 1:
            middle.append(("equal", prefix + i, prefix + j))
            i += 1
            j += 1
        elif lengths[i + 1][j] >= lengths[i][j + 1]:
            middle.append(("delete", prefix + i, None))
            i += 1
        else:
            middle.append(("insert", None, prefix + j))
            j += 1
    while i < mid_n:
        middle.append(("delete", prefix + i, None))
        i += 1
    while j < mid_m:
        middle.append(("insert", None, prefix + j))
        j += 1

    return head + middle + tail


def _expand_pairs(ops: List[Tuple[str, Optional[int], Optional[int]]]) -> List[Tuple[str, Optional[int], Optional[int]]]:
    expanded = []
    for op, i, j in ops:
        if op == "pair":
            expanded.append(("delete", i, None))
            expanded.append(("insert", None, j))
        else:
            expanded.append((op, i, j))
    return expanded


def _fragments_from_ops(ops: List[Tuple[str, Optional[int], Optional[int]]],
                        expected: List[str], actual: List[str]) -> List[DiffFragment]:
    fragments: List[DiffFragment] = []
    deletes: List[int] = []
    inserts: List[int] = []

    def flush() -> None:
        paired = min(len(deletes), len(inserts))
        for k in range(paired):
            i, j = deletes[k], inserts[k]
            fragments.append(DiffFragment(
                kind=DiffKind.CHANGED, expected=expected[i], actual=actual[j],
                expected_line=i + 1, actual_line=j + 1
            ))
        for i in deletes[paired:]:
            fragments.append(DiffFragment(kind=DiffKind.MISSING, expected=expected[i], expected_line=i + 1))
        for j in inserts[paired:]:
            fragments.append(DiffFragment(kind=DiffKind.ADDED, actual=actual[j], actual_line=j + 1))
        deletes.clear()
        inserts.clear()

    for op, i, j in ops:
        if op == "equal":
            flush()
            fragments.append(DiffFragment(
                kind=DiffKind.EQUAL, expected=expected[i], actual=actual[j],
                expected_line=i + 1, actual_line=j + 1
            ))
        elif op == "delete":
            deletes.append(i)
        else:
            inserts.append(j)
    flush()

    return fragments


def compile_matcher(expected_output: str, registry: PatternRegistry) -> CompiledMatcher:
    """
    Compile expected output into an anchored matcher.

    Raises:
        UnknownPatternError: If a named placeholder is not registered
        InvalidPatternError: If an inline placeholder is malformed
    """
    return CompiledMatcher(expected_output, registry)


def matches(matcher: CompiledMatcher, actual_text: str) -> bool:
    return matcher.matches(actual_text)


def explain(matcher: CompiledMatcher, actual_text: str) -> List[DiffFragment]:
    return matcher.explain(actual_text)
