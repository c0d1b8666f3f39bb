"""
Session management.

This module provides the high-level interface used by the command-line tool:
loading and compiling documents, recording, replaying, comparing and
refining sessions.
"""

import threading
from pathlib import Path
from typing import Optional, Tuple

from ..compare.comparator import compare, validate
from ..compare.models import ComparisonReport
from ..compare.refine import RefineSummary, refine_document
from ..config_models import SystemConfig
from ..document.models import ActualDocument, Document, FlattenedDocument
from ..document.parser import load_actual, load_document, replay_file_path, save_actual, save_document
from ..document.resolver import FileResolver, flatten
from ..interfaces import Executor
from ..logging_config import get_logger
from ..patterns import PatternRegistry, load_registry
from .executors import ShellExecutor
from .player import ReplayDriver
from .recorder import RecordingResult, SessionRecorder


class SessionManager:
    """Central manager for session operations."""

    def __init__(self, config: SystemConfig, registry: Optional[PatternRegistry] = None):
        """Initialize session manager."""
        self.config = config
        self.registry = registry if registry is not None else load_registry(config)
        self.resolver = FileResolver()
        self.cancel_event = threading.Event()
        self.logger = get_logger(__name__)

        self.logger.info(f"Initialized session manager with {len(self.registry)} patterns")

    # Documents

    def load(self, path: Path) -> Document:
        """Load a session document."""
        path = Path(path)
        if not path.is_file():
            raise FileNotFoundError(f"Session file not found: {path}")
        return load_document(path)

    def compile(self, source) -> FlattenedDocument:
        """
        Flatten a document and compile all of its expectations.

        Args:
            source: A session file path or an already loaded Document

        Raises:
            ParseError, BlockReferenceError, PlaceholderError: Structural
                problems, raised before anything is executed
        """
        document = source if isinstance(source, Document) else self.load(source)
        self.logger.debug(f"Document summary: {document.get_summary()}")
        self.resolver.clear()
        flattened = flatten(document, self.resolver)
        validate(flattened, self.registry)
        self.logger.info(f"Compiled {document.path or '<document>'}: "
                         f"{len(flattened.command_positions())} commands")
        return flattened

    # Recording

    def record(self, path: Path, target: Optional[str] = None,
               description: Optional[str] = None) -> RecordingResult:
        """Record an interactive session into a session file."""
        recorder = SessionRecorder(self.config, target)
        result = recorder.record(Path(path), description=description)
        for warning in result.warnings:
            self.logger.warning(warning)
        return result

    # Replay and comparison

    def create_executor(self, target: Optional[str] = None) -> Executor:
        """Create the executor for a configured target."""
        return ShellExecutor.from_config(self.config, target)

    def replay(self, path: Path, target: Optional[str] = None,
               executor: Optional[Executor] = None) -> ActualDocument:
        """Replay a session and write its ``.rep`` artifact next to it."""
        flattened = self.compile(path)
        actual = self._replay(flattened, target, executor)
        save_actual(actual, replay_file_path(Path(path)))
        return actual

    def _replay(self, flattened: FlattenedDocument, target: Optional[str],
                executor: Optional[Executor]) -> ActualDocument:
        settings = self.config.replay
        driver = ReplayDriver(
            executor or self.create_executor(target),
            inter_step_delay=settings.inter_step_delay_ms / 1000,
            step_timeout=settings.step_timeout,
            overall_timeout=settings.overall_timeout,
            fail_fast=settings.fail_fast,
            cancel_event=self.cancel_event
        )
        return driver.replay(flattened)

    def compare(self, rec_path: Path, rep_path: Optional[Path] = None) -> ComparisonReport:
        """Compare a session with a previously written replay artifact."""
        flattened = self.compile(rec_path)
        rep_path = Path(rep_path) if rep_path else replay_file_path(Path(rec_path))
        if not rep_path.is_file():
            raise FileNotFoundError(f"Replay artifact not found: {rep_path}")
        return compare(flattened, load_actual(rep_path), self.registry)

    def test(self, path: Path, target: Optional[str] = None,
             executor: Optional[Executor] = None) -> ComparisonReport:
        """Replay a session and compare the result in one go."""
        flattened = self.compile(path)
        actual = self._replay(flattened, target, executor)
        save_actual(actual, replay_file_path(Path(path)))
        return compare(flattened, actual, self.registry)

    def refine(self, path: Path, target: Optional[str] = None,
               executor: Optional[Executor] = None) -> Tuple[ComparisonReport, RefineSummary]:
        """Replay a session and promote actual output into failing expectations."""
        document = self.load(path)
        flattened = self.compile(document)
        actual = self._replay(flattened, target, executor)
        report = compare(flattened, actual, self.registry)

        if report.cancelled:
            self.logger.warning("Replay was cancelled; session file left unchanged")
            return report, RefineSummary()

        refined, summary = refine_document(document, flattened, report, self.registry)
        if summary.changed:
            save_document(refined, Path(path))
        for skipped in summary.skipped:
            self.logger.warning(f"Step {skipped.step_index} ({skipped.command}) not refined: {skipped.reason}")
        return report, summary

    def cancel(self) -> None:
        """Cancel a running replay."""
        self.cancel_event.set()
