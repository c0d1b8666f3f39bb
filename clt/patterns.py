"""
Pattern registry for named output placeholders.

A pattern file holds one definition per line::

    SEMVER [0-9]+\\.[0-9]+\\.[0-9]+

Expected output refers to a definition as ``%{SEMVER}``. The engine ships a
base set; a project file of the same shape is merged on top of it and wins on
identical identifiers.
"""

import re
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Optional, Tuple, Union

from .config_models import SystemConfig
from .interfaces import UnknownPatternError
from .logging_config import get_logger

IDENTIFIER_RE = re.compile(r"^[A-Z][A-Z0-9_]*$")

BASE_PATTERNS = r"""
# Built-in placeholder definitions
NUMBER [0-9]+
SEMVER [0-9]+\.[0-9]+\.[0-9]+
YEAR [0-9]{4}
DATE [0-9]{4}-[0-9]{2}-[0-9]{2}
TIME [0-9]{2}:[0-9]{2}:[0-9]{2}
DATETIME [0-9]{4}-[0-9]{2}-[0-9]{2}[ T][0-9]{2}:[0-9]{2}:[0-9]{2}
IPADDR [0-9]+\.[0-9]+\.[0-9]+\.[0-9]+
UUID [0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}
HASH [0-9a-f]{7,64}
COMMITDATE [a-z0-9]{7}@[0-9]{6}
PATH [^\s]+
"""

PatternSource = Union[str, Path, None]


class PatternRegistry(Mapping[str, str]):
    """Immutable mapping from placeholder identifier to raw regular expression."""

    def __init__(self, patterns: Optional[Mapping[str, str]] = None, warnings: Optional[List[str]] = None):
        self._patterns: Mapping[str, str] = MappingProxyType(dict(patterns or {}))
        self._warnings: Tuple[str, ...] = tuple(warnings or ())

    @classmethod
    def load(cls, base_source: PatternSource = BASE_PATTERNS,
             project_source: PatternSource = None) -> "PatternRegistry":
        """
        Build a registry from a base source and an optional project source.

        Args:
            base_source: Definitions text, a path to a pattern file, or None
            project_source: Definitions merged on top of the base set

        Returns:
            Registry with project definitions overriding base ones
        """
        logger = get_logger(__name__)
        patterns: Dict[str, str] = {}
        warnings: List[str] = []

        for label, source in (("base", base_source), ("project", project_source)):
            text, origin = _read_source(source, label)
            if text is None:
                continue
            definitions, source_warnings = parse_definitions(text, origin)
            for identifier, regex in definitions:
                if identifier in patterns and patterns[identifier] != regex:
                    logger.debug(f"Pattern {identifier} overridden by {origin}")
                patterns[identifier] = regex
            warnings.extend(source_warnings)

        for warning in warnings:
            logger.warning(warning)

        logger.debug(f"Loaded {len(patterns)} patterns")
        return cls(patterns, warnings)

    @property
    def warnings(self) -> Tuple[str, ...]:
        """Malformed lines skipped while loading."""
        return self._warnings

    def resolve(self, identifier: str) -> str:
        """Return the regex for an identifier or raise UnknownPatternError."""
        try:
            return self._patterns[identifier]
        except KeyError:
            raise UnknownPatternError(identifier) from None

    def merged(self, other: "PatternRegistry") -> "PatternRegistry":
        """Return a new registry with ``other`` layered on top of this one."""
        patterns = dict(self._patterns)
        patterns.update(other)
        return PatternRegistry(patterns, list(self._warnings) + list(other.warnings))

    def __getitem__(self, identifier: str) -> str:
        return self._patterns[identifier]

    def __iter__(self) -> Iterator[str]:
        return iter(self._patterns)

    def __len__(self) -> int:
        return len(self._patterns)

    def __repr__(self) -> str:
        return f"PatternRegistry({len(self._patterns)} patterns)"


def parse_definitions(text: str, origin: str = "<patterns>") -> Tuple[List[Tuple[str, str]], List[str]]:
    """
    Parse pattern definition lines.

    Blank lines and ``#`` comments are skipped. Lines without a regex, with an
    invalid identifier, or with a regex that does not compile are skipped and
    reported as warnings.

    Returns:
        Tuple of (identifier, regex) pairs in file order and warning messages
    """
    definitions: List[Tuple[str, str]] = []
    warnings: List[str] = []

    for lineno, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue

        parts = line.split(None, 1)
        if len(parts) != 2:
            warnings.append(f"{origin}:{lineno}: missing regex for '{line}'")
            continue

        identifier, regex = parts[0], parts[1].strip()
        if not IDENTIFIER_RE.match(identifier):
            warnings.append(f"{origin}:{lineno}: invalid identifier '{identifier}'")
            continue

        try:
            re.compile(regex)
        except re.error as e:
            warnings.append(f"{origin}:{lineno}: invalid regex for {identifier}: {e}")
            continue

        definitions.append((identifier, regex))

    return definitions, warnings


def _read_source(source: PatternSource, label: str) -> Tuple[Optional[str], str]:
    if source is None:
        return None, label
    if isinstance(source, Path):
        if not source.exists():
            return None, str(source)
        return source.read_text(encoding="utf-8"), str(source)
    return source, f"<{label} patterns>"


def load_registry(config: SystemConfig) -> PatternRegistry:
    """Load the base pattern set plus the configured project pattern file."""
    base_source: PatternSource = BASE_PATTERNS
    if config.paths.base_patterns_file is not None:
        base_source = config.paths.base_patterns_file
    return PatternRegistry.load(base_source, config.paths.patterns_file)
