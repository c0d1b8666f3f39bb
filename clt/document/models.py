"""
Data models for session documents.

A document is an ordered list of steps: commands with their expected output,
comments, and references to reusable block files.
"""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def normalize_body(text: str) -> str:
    """Normalize line endings and drop trailing blank lines, as the file format does."""
    lines = text.replace("\r\n", "\n").split("\n")
    while lines and not lines[-1].strip():
        lines.pop()
    return "\n".join(lines)


class CommandStep(BaseModel):
    """A command and the output it is expected to produce."""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["command"] = "command"
    input: str = Field(..., description="Command text as typed")
    expected_output: str = Field(default="", description="Expected output, may contain placeholders")
    checker: Optional[str] = Field(default=None, description="Argument of the output marker")
    nested_steps: Optional[List["Step"]] = Field(
        default=None,
        description="Editor-attached structure; not serialized, replayed as one unit"
    )

    @field_validator("input", "expected_output")
    @classmethod
    def normalize_text(cls, v: str) -> str:
        return normalize_body(v)

    @field_validator("input")
    @classmethod
    def input_must_not_be_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Command input cannot be empty")
        return v


class CommentStep(BaseModel):
    """Non-executable annotation kept verbatim."""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["comment"] = "comment"
    text: str = ""

    @field_validator("text")
    @classmethod
    def normalize_text(cls, v: str) -> str:
        return normalize_body(v)


class BlockReferenceStep(BaseModel):
    """Pointer to a block file, relative to the referencing document."""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["block"] = "block"
    reference_path: str = Field(..., pattern=r"^[.a-zA-Z0-9\-/_]+$")


Step = Annotated[Union[CommandStep, CommentStep, BlockReferenceStep], Field(discriminator="kind")]
ExecutableStep = Annotated[Union[CommandStep, CommentStep], Field(discriminator="kind")]

CommandStep.model_rebuild()


class Document(BaseModel):
    """An ordered session: optional description followed by steps."""

    model_config = ConfigDict(extra="forbid")

    description: Optional[str] = Field(default=None, description="Free text before the first marker")
    steps: List[Step] = Field(default_factory=list)
    path: Optional[Path] = Field(default=None, exclude=True, description="File the document was read from")

    @field_validator("description")
    @classmethod
    def normalize_description(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        lines = normalize_body(v).split("\n")
        while lines and not lines[0].strip():
            lines.pop(0)
        return "\n".join(lines) or None

    def __eq__(self, other: object) -> bool:
        # Where a document lives does not change what it says
        if not isinstance(other, Document):
            return NotImplemented
        return self.description == other.description and self.steps == other.steps

    __hash__ = None  # type: ignore[assignment]

    @property
    def command_steps(self) -> List[CommandStep]:
        """Executable command steps in document order."""
        return [step for step in self.steps if isinstance(step, CommandStep)]

    @property
    def block_references(self) -> List[BlockReferenceStep]:
        """Direct block references in document order."""
        return [step for step in self.steps if isinstance(step, BlockReferenceStep)]

    def get_summary(self) -> dict:
        """Get document summary information."""
        return {
            "path": str(self.path) if self.path else None,
            "total_steps": len(self.steps),
            "commands": len(self.command_steps),
            "blocks": len(self.block_references),
            "comments": sum(1 for step in self.steps if isinstance(step, CommentStep)),
        }


class StepOrigin(BaseModel):
    """Where a flattened step was written."""

    path: Optional[Path] = None
    index: int = Field(..., description="Index of the step inside that file")


class FlattenedDocument(Document):
    """A document whose block references have all been expanded in place."""

    steps: List[ExecutableStep] = Field(default_factory=list)
    origins: List[StepOrigin] = Field(default_factory=list, exclude=True)

    @model_validator(mode="after")
    def origins_match_steps(self) -> "FlattenedDocument":
        if self.origins and len(self.origins) != len(self.steps):
            raise ValueError("origins must parallel steps")
        return self

    def origin_of(self, step_position: int) -> StepOrigin:
        """Return the origin of the step at a position in ``steps``."""
        if self.origins:
            return self.origins[step_position]
        return StepOrigin(path=self.path, index=step_position)

    def command_positions(self) -> List[int]:
        """Positions in ``steps`` of every command step."""
        return [i for i, step in enumerate(self.steps) if isinstance(step, CommandStep)]


class ExecutionStatus(str, Enum):
    """How a replayed step ended."""

    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    ERROR = "error"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


class ActualStep(BaseModel):
    """Output produced by one replayed command."""

    index: int = Field(..., description="Index among the command steps")
    input: str
    actual_output: str = ""
    exit_status: Optional[int] = None
    duration_ms: float = 0.0
    status: ExecutionStatus = ExecutionStatus.COMPLETED
    error_message: Optional[str] = None

    @property
    def executed(self) -> bool:
        return self.status == ExecutionStatus.COMPLETED


class ActualDocument(BaseModel):
    """Result of replaying a flattened document, parallel to its command steps."""

    source_path: Optional[Path] = None
    steps: List[ActualStep] = Field(default_factory=list)
    cancelled: bool = False
    started_at: datetime = Field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    @property
    def total_duration_ms(self) -> float:
        return sum(step.duration_ms for step in self.steps)

    def get_summary(self) -> dict:
        """Get replay summary information."""
        statuses = {}
        for step in self.steps:
            statuses[step.status.value] = statuses.get(step.status.value, 0) + 1

        return {
            "source_path": str(self.source_path) if self.source_path else None,
            "total_steps": len(self.steps),
            "statuses": statuses,
            "nonzero_exits": sum(1 for step in self.steps if step.exit_status not in (None, 0)),
            "cancelled": self.cancelled,
            "duration_ms": self.total_duration_ms,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
