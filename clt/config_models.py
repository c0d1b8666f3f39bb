"""Configuration models for the CLT engine."""

from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

DEFAULT_PROMPT = "clt[$?]> "
DEFAULT_PROMPT_PATTERN = r"^clt\[(?P<status>\d+)\]> ?$"


class PathsConfig(BaseModel):
    """Configuration for file system paths."""

    log_dir: Path = Field(default=Path(".clt/logs"), description="Directory for log files")
    patterns_file: Path = Field(default=Path(".clt/patterns"), description="Project pattern definitions")
    base_patterns_file: Optional[Path] = Field(
        default=None,
        description="Replacement for the built-in pattern set"
    )

    @field_validator("log_dir", mode="before")
    @classmethod
    def ensure_path_exists(cls, v: str | Path) -> Path:
        """Ensure the log directory exists."""
        if isinstance(v, str):
            v = Path(v)
        v.mkdir(parents=True, exist_ok=True)
        return v


class LoggingConfig(BaseModel):
    """Configuration for the logging framework."""

    level: str = Field(default="WARNING", description="Console log level")
    format_console: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(run_id)s - %(message)s",
        description="Console log format"
    )
    file_logging: bool = Field(default=True, description="Write JSON log file per run")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"Level must be one of {valid_levels}")
        return v.upper()


class TargetConfig(BaseModel):
    """A target environment: the command that launches its interactive shell."""

    command: List[str] = Field(..., description="argv that starts an interactive shell in the target")
    env: Dict[str, str] = Field(default_factory=dict, description="Extra environment variables")

    @field_validator("command")
    @classmethod
    def command_must_not_be_empty(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("Target command cannot be empty")
        return v


def _default_targets() -> Dict[str, TargetConfig]:
    return {
        "local": TargetConfig(command=["bash", "--noprofile", "--norc", "-i"]),
    }


class ShellConfig(BaseModel):
    """Shell settings shared by recorder and replay."""

    prompt: str = Field(default=DEFAULT_PROMPT, description="PS1 installed in the shell")
    prompt_pattern: str = Field(
        default=DEFAULT_PROMPT_PATTERN,
        description="Regex matching an idle prompt line; group 'status' carries the exit code"
    )
    columns: int = Field(default=10000, description="Terminal width reported to the shell")
    startup_timeout: float = Field(default=10.0, description="Seconds to wait for the first prompt")
    tail_prompt_quiet: float = Field(
        default=1.0,
        description="Seconds without output before a prompt sharing a line with output counts"
    )
    record_init: str = Field(
        default="bind 'set enable-bracketed-paste off' 2>/dev/null; export PS1='{prompt}' PS2=''",
        description="Line sent to the shell before recording; {prompt} is replaced by the prompt"
    )
    replay_init: str = Field(
        default="set +o emacs +o vi 2>/dev/null; stty -echo 2>/dev/null; export PS1='{prompt}' PS2=''",
        description="Line sent to the shell before replay; {prompt} is replaced by the prompt"
    )

    @field_validator("columns")
    @classmethod
    def columns_must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Columns must be positive")
        return v

    @field_validator("tail_prompt_quiet")
    @classmethod
    def quiet_must_not_be_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Tail prompt quiet time must not be negative")
        return v


class ReplayConfig(BaseModel):
    """Replay driver settings."""

    inter_step_delay_ms: int = Field(default=5, description="Minimum settle time between steps")
    step_timeout: float = Field(default=30.0, description="Seconds a single step may take")
    overall_timeout: Optional[float] = Field(default=None, description="Seconds the whole run may take")
    fail_fast: bool = Field(default=False, description="Stop after the first failed execution")

    @field_validator("inter_step_delay_ms")
    @classmethod
    def delay_must_not_be_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Delay must not be negative")
        return v

    @field_validator("step_timeout", "overall_timeout")
    @classmethod
    def timeout_must_be_positive(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("Timeout must be positive")
        return v


class RecorderConfig(BaseModel):
    """Session recorder settings."""

    idle_strategy: str = Field(default="prompt", description="prompt or delay")
    idle_delay_ms: int = Field(default=500, description="Silence that marks a command as finished")

    @field_validator("idle_strategy")
    @classmethod
    def validate_strategy(cls, v: str) -> str:
        if v not in ("prompt", "delay"):
            raise ValueError("Idle strategy must be 'prompt' or 'delay'")
        return v


class CompareConfig(BaseModel):
    """Comparison report rendering settings."""

    color: bool = Field(default=True, description="Colorize diff output")
    layout: str = Field(default="inline", description="inline or side-by-side")

    @field_validator("layout")
    @classmethod
    def validate_layout(cls, v: str) -> str:
        if v not in ("inline", "side-by-side"):
            raise ValueError("Layout must be 'inline' or 'side-by-side'")
        return v


class SystemConfig(BaseModel):
    """Main system configuration."""

    paths: PathsConfig = Field(default_factory=PathsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    shell: ShellConfig = Field(default_factory=ShellConfig)
    targets: Dict[str, TargetConfig] = Field(default_factory=_default_targets)
    default_target: str = Field(default="local", description="Target used when none is given")
    replay: ReplayConfig = Field(default_factory=ReplayConfig)
    recorder: RecorderConfig = Field(default_factory=RecorderConfig)
    compare: CompareConfig = Field(default_factory=CompareConfig)

    def get_target(self, name: Optional[str] = None) -> TargetConfig:
        """Look up a target by name, falling back to the default target."""
        name = name or self.default_target
        if name not in self.targets:
            raise KeyError(f"Unknown target '{name}', available: {sorted(self.targets)}")
        return self.targets[name]
