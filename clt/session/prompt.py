"""
Strategies for deciding that a shell has finished a command.

An opaque interactive shell gives no universal "command done" signal, so
completion is inferred either from the prompt reappearing or from a period
of silence.
"""

import re
from abc import ABC, abstractmethod
from typing import Optional

from ..config_models import SystemConfig


class PromptDetector(ABC):
    """Decides when captured output has settled and removes the prompt from it."""

    @abstractmethod
    def is_idle(self, output: str, silence: float) -> bool:
        """
        Check whether the shell is idle.

        Args:
            output: Normalised output captured since the command was submitted
            silence: Seconds since the last output byte arrived

        Returns:
            True once the command is considered finished
        """

    @abstractmethod
    def strip_prompt(self, output: str) -> str:
        """Remove the trailing prompt from settled output."""

    def exit_status(self, output: str) -> Optional[int]:
        """Exit status announced by the prompt, when the strategy can tell."""
        return None


def _split_last_line(output: str):
    head, sep, last = output.rpartition("\n")
    return head, sep, last


class PromptPatternDetector(PromptDetector):
    """
    Idle when the last output line is a prompt.

    A named group ``status`` in the pattern, if present, carries the exit
    status of the previous command. A prompt that follows output on the same
    line only counts after ``tail_silence`` seconds without output.
    """

    def __init__(self, pattern: str, min_silence: float = 0.0, tail_silence: float = 1.0):
        self.pattern = re.compile(pattern)
        # Output without a final newline leaves the prompt at the end of a line
        core = pattern.lstrip("^").rstrip("$")
        self._tail = re.compile(rf"(?:{core})\s*\Z")
        self.min_silence = min_silence
        self.tail_silence = tail_silence

    def _prompt_match(self, output: str):
        _, _, last = _split_last_line(output)
        return self.pattern.fullmatch(last) or self.pattern.fullmatch(last.rstrip()) or self._tail.search(last)

    def is_idle(self, output: str, silence: float) -> bool:
        if silence < self.min_silence:
            return False
        match = self._prompt_match(output)
        if match is None:
            return False
        return match.start() == 0 or silence >= self.tail_silence

    def strip_prompt(self, output: str) -> str:
        match = self._prompt_match(output)
        if match is None:
            return output
        head, sep, last = _split_last_line(output)
        if match.start() > 0:
            return head + sep + last[:match.start()]
        return head

    def exit_status(self, output: str) -> Optional[int]:
        match = self._prompt_match(output)
        if match is None or "status" not in self.pattern.groupindex:
            return None
        status = match.group("status")
        return int(status) if status is not None else None


class FixedDelayDetector(PromptDetector):
    """
    Idle after a fixed period without output.

    The trailing line is treated as the prompt when it does not end with a
    newline, which is how shells print prompts.
    """

    def __init__(self, delay: float):
        if delay <= 0:
            raise ValueError("Delay must be positive")
        self.delay = delay

    def is_idle(self, output: str, silence: float) -> bool:
        return silence >= self.delay

    def strip_prompt(self, output: str) -> str:
        if output.endswith("\n"):
            return output
        head, _, _ = _split_last_line(output)
        return head


def create_detector(config: SystemConfig, strategy: Optional[str] = None) -> PromptDetector:
    """Build the configured prompt detection strategy."""
    strategy = strategy or config.recorder.idle_strategy
    if strategy == "delay":
        return FixedDelayDetector(config.recorder.idle_delay_ms / 1000)
    return PromptPatternDetector(config.shell.prompt_pattern, tail_silence=config.shell.tail_prompt_quiet)
