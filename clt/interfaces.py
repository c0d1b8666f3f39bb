"""Exception hierarchy and collaborator interfaces for the CLT engine."""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Sequence


class CltError(Exception):
    """Base exception for all engine errors."""


class ParseError(CltError):
    """Raised when a session document is malformed."""

    def __init__(self, message: str, path: Optional[Path] = None, line: Optional[int] = None):
        self.message = message
        self.path = path
        self.line = line

        location = str(path) if path else "<string>"
        if line is not None:
            location = f"{location}:{line}"
        super().__init__(f"{location}: {message}")


class BlockReferenceError(CltError):
    """Base exception for block reference resolution failures."""

    def __init__(self, message: str, chain: Sequence[Path] = ()):
        self.chain: List[Path] = list(chain)
        if self.chain:
            message = f"{message} (reference chain: {' -> '.join(str(p) for p in self.chain)})"
        super().__init__(message)


class UnresolvedReferenceError(BlockReferenceError):
    """Raised when a referenced block file does not exist."""

    def __init__(self, reference: str, block_path: Path, referencing_path: Optional[Path],
                 chain: Sequence[Path] = ()):
        self.reference = reference
        self.block_path = block_path
        self.referencing_path = referencing_path
        referrer = str(referencing_path) if referencing_path else "<string>"
        super().__init__(
            f"Block '{reference}' referenced from {referrer} not found: {block_path}",
            chain
        )


class ReferenceCycleError(BlockReferenceError):
    """Raised when a document references itself directly or transitively."""

    def __init__(self, chain: Sequence[Path]):
        super().__init__("Block reference cycle detected", chain)


class PlaceholderError(CltError):
    """Raised when expected output contains an unusable placeholder."""

    def __init__(self, message: str):
        self.message = message
        self.step_index: Optional[int] = None
        self.command: Optional[str] = None
        super().__init__(message)

    def attach_step(self, step_index: int, command: str) -> "PlaceholderError":
        """Record which step the failing expectation belongs to."""
        self.step_index = step_index
        self.command = command
        self.args = (f"step {step_index} ({command!r}): {self.message}",)
        return self


class UnknownPatternError(PlaceholderError):
    """Raised when a named placeholder is not defined in the registry."""

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"Unknown pattern %{{{identifier}}}")


class InvalidPatternError(PlaceholderError):
    """Raised when an inline placeholder is unterminated or not a valid regex."""


class ExecutorError(CltError):
    """Raised when the execution collaborator fails."""


class ComparisonError(CltError):
    """Raised when a replay artifact does not correspond to its document."""


class ExecutionResult:
    """Outcome of executing one command through an executor."""

    def __init__(self, output: str, exit_status: Optional[int] = None,
                 duration_ms: float = 0.0, timed_out: bool = False):
        self.output = output
        self.exit_status = exit_status
        self.duration_ms = duration_ms
        self.timed_out = timed_out

    def __repr__(self) -> str:
        return (f"ExecutionResult(exit_status={self.exit_status}, duration_ms={self.duration_ms:.1f}, "
                f"timed_out={self.timed_out}, output={self.output!r})")


class Executor(ABC):
    """
    Interface for running commands inside a target environment.

    Implementations must keep environment state (working directory, variables)
    between successive ``execute`` calls.
    """

    def start(self) -> None:
        """Prepare the target environment. Called once before the first command."""

    @abstractmethod
    def execute(self, command: str, timeout: Optional[float] = None) -> ExecutionResult:
        """
        Run a command and block until its output has settled.

        Args:
            command: Command line to submit
            timeout: Maximum seconds to wait for the command to settle

        Returns:
            Captured output and exit status

        Raises:
            ExecutorError: If the target environment is no longer usable
        """

    def close(self) -> None:
        """Release the target environment."""

    def terminate(self) -> None:
        """Forcefully stop the target environment (used on cancellation)."""
        self.close()

    def __enter__(self) -> "Executor":
        self.start()
        return self

    def __exit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        self.close()
