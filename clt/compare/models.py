"""Data models for comparison reports."""

from enum import Enum, IntEnum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..document.models import ExecutionStatus
from ..matcher import DiffFragment, DiffKind

__all__ = ["DiffFragment", "DiffKind", "ExitStatus", "Verdict", "StepResult", "ComparisonReport"]


class ExitStatus(IntEnum):
    """Process exit statuses of the command-line tool."""

    PASSED = 0
    FAILED = 1
    STRUCTURAL_ERROR = 2
    SETUP_ERROR = 3
    MISSING_FILE = 5
    CANCELLED = 130


class Verdict(str, Enum):
    PASS = "pass"
    FAIL = "fail"


class StepResult(BaseModel):
    """Verdict for one command step."""

    step_index: int = Field(..., description="Index among the command steps")
    command: str
    verdict: Verdict
    expected_rendered: str = Field(default="", description="Expectation with placeholders in inline form")
    actual_text: Optional[str] = Field(default=None, description="None when the step has no actual counterpart")
    diff_fragments: List[DiffFragment] = Field(default_factory=list)
    execution_status: Optional[ExecutionStatus] = None
    exit_status: Optional[int] = None
    error_message: Optional[str] = None
    origin_path: Optional[Path] = Field(default=None, description="File the step was written in")

    @property
    def passed(self) -> bool:
        return self.verdict == Verdict.PASS


class ComparisonReport(BaseModel):
    """Outcome of comparing a document against a replay."""

    source_path: Optional[Path] = None
    results: List[StepResult] = Field(default_factory=list)
    cancelled: bool = False

    @property
    def success(self) -> bool:
        """True when every step passed and the run was not cancelled."""
        if self.cancelled:
            return False
        return all(result.passed for result in self.results)

    @property
    def passed_count(self) -> int:
        return sum(1 for result in self.results if result.passed)

    @property
    def failed_count(self) -> int:
        return sum(1 for result in self.results if not result.passed)

    @property
    def failures(self) -> List[StepResult]:
        return [result for result in self.results if not result.passed]

    @property
    def exit_status(self) -> ExitStatus:
        if self.cancelled:
            return ExitStatus.CANCELLED
        return ExitStatus.PASSED if self.success else ExitStatus.FAILED

    def get_summary(self) -> Dict[str, Any]:
        """Get comparison summary."""
        total = len(self.results)
        return {
            "source_path": str(self.source_path) if self.source_path else None,
            "success": self.success,
            "total_steps": total,
            "passed": self.passed_count,
            "failed": self.failed_count,
            "pass_rate": (self.passed_count / max(1, total)) * 100,
            "cancelled": self.cancelled,
            "exit_status": int(self.exit_status)
        }
