"""
Central pytest configuration and fixtures.

This module provides the core fixtures that are shared across all test modules,
including configuration, logging, the pattern registry, session files on disk
and scripted executors.
"""

import shutil
import tempfile
import time
import uuid
from collections.abc import Generator
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

import pytest

from clt.config_models import PathsConfig, SystemConfig
from clt.interfaces import ExecutionResult, Executor
from clt.logging_config import get_logger, setup_logging
from clt.patterns import PatternRegistry

# Global variables to track test run state
_test_run_id: Optional[str] = None
_session_config: Optional[SystemConfig] = None


class ScriptedExecutor(Executor):
    """
    Executor answering commands from a table, for replay tests.

    Each response is an output string, an ``(output, exit_status)`` tuple, an
    ExecutionResult, or an exception to raise.
    """

    def __init__(self, responses: Optional[Dict[str, object]] = None, delay: float = 0.0):
        self.responses = responses or {}
        self.delay = delay
        self.executed: List[str] = []
        self.started = False
        self.closed = False
        self.terminated = False

    def start(self) -> None:
        self.started = True

    def execute(self, command: str, timeout: Optional[float] = None) -> ExecutionResult:
        self.executed.append(command)
        if self.delay:
            time.sleep(self.delay)

        response = self.responses.get(command, "")
        if isinstance(response, BaseException):
            raise response
        if isinstance(response, ExecutionResult):
            return response
        if isinstance(response, tuple):
            output, exit_status = response
            return ExecutionResult(output=output, exit_status=exit_status)
        return ExecutionResult(output=response, exit_status=0)

    def close(self) -> None:
        self.closed = True

    def terminate(self) -> None:
        self.terminated = True


# ================================================================================
# Session-scoped fixtures (created once per test session)
# ================================================================================

@pytest.fixture(scope="session")
def config() -> SystemConfig:
    """
    Provide a system configuration for the entire test session.

    Logs and pattern files live in a temporary directory for test isolation.
    """
    global _session_config

    if _session_config is None:
        temp_dir = Path(tempfile.mkdtemp(prefix="clt_test_"))
        _session_config = SystemConfig(paths=PathsConfig(
            log_dir=temp_dir / "logs",
            patterns_file=temp_dir / "patterns"
        ))

    return _session_config


@pytest.fixture(scope="session", autouse=True)
def test_session(config: SystemConfig) -> Generator[str, None, None]:
    """
    Manage the test session lifecycle.

    Generates a run id and sets up logging once for every test session.
    """
    global _test_run_id

    _test_run_id = str(uuid.uuid4())
    setup_logging(config, _test_run_id)
    logger = get_logger("clt.tests")
    logger.info(f"Starting test session {_test_run_id}")

    yield _test_run_id

    logger.info(f"Completing test session {_test_run_id}")
    shutil.rmtree(config.paths.log_dir.parent, ignore_errors=True)


@pytest.fixture(scope="session")
def registry() -> PatternRegistry:
    """Registry with the built-in pattern set."""
    return PatternRegistry.load()


# ================================================================================
# Function-scoped fixtures (created for each test function)
# ================================================================================

@pytest.fixture
def write_file(tmp_path: Path) -> Callable[[str, str], Path]:
    """Write a text file below the test's temporary directory and return its path."""

    def _write(relative: str, text: str) -> Path:
        path = tmp_path / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def scripted_executor() -> Callable[..., ScriptedExecutor]:
    """Factory for executors that answer from a response table."""

    def _create(responses: Optional[Dict[str, Union[str, Tuple[str, int], BaseException]]] = None,
                delay: float = 0.0) -> ScriptedExecutor:
        return ScriptedExecutor(responses, delay)

    return _create


# ================================================================================
# Pytest hooks for test organisation
# ================================================================================

def pytest_collection_modifyitems(config: pytest.Config, items) -> None:
    """
    Hook called after test collection to modify test items.

    Adds markers based on the directory a test lives in.
    """
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)


# ================================================================================
# Utility functions for tests
# ================================================================================

def get_current_test_run_id() -> Optional[str]:
    """Get the current test run ID."""
    return _test_run_id
