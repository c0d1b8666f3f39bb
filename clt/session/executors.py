"""
Executors that run replayed commands in a target environment.

The replay driver only depends on the ``Executor`` interface; the
``ShellExecutor`` here talks to an interactive shell on a pseudo-terminal and
``CallableExecutor`` adapts a plain function, which is what tests use.
"""

import time
from typing import Callable, Dict, List, Optional, Tuple, Union

from ..config_models import DEFAULT_PROMPT, DEFAULT_PROMPT_PATTERN, ShellConfig, SystemConfig
from ..interfaces import CltError, ExecutionResult, Executor, ExecutorError
from ..logging_config import get_logger, log_shell_command
from .prompt import PromptPatternDetector
from .terminal import PtyProcess, normalize_output, tidy_output

__all__ = ["Executor", "ExecutionResult", "ShellExecutor", "CallableExecutor"]

INTERRUPT_GRACE = 2.0


class ShellExecutor(Executor):
    """
    Runs commands in one long-lived interactive shell.

    Shell state (working directory, variables, functions) persists between
    commands. A command has finished when the configured prompt is the last
    output line; the exit status is read from the prompt.
    """

    def __init__(self, target_command: List[str], prompt: str = DEFAULT_PROMPT,
                 prompt_pattern: str = DEFAULT_PROMPT_PATTERN,
                 init_line: Optional[str] = None, env: Optional[Dict[str, str]] = None,
                 columns: int = 10000, startup_timeout: float = 10.0,
                 tail_prompt_quiet: float = 1.0, target_name: str = "local"):
        self.target_command = list(target_command)
        self.prompt = prompt
        self.detector = PromptPatternDetector(prompt_pattern, tail_silence=tail_prompt_quiet)
        self.init_line = (init_line or ShellConfig().replay_init).format(prompt=prompt)
        self.env = env
        self.columns = columns
        self.startup_timeout = startup_timeout
        self.target_name = target_name
        self.logger = get_logger(__name__)

        self.process: Optional[PtyProcess] = None

    @classmethod
    def from_config(cls, config: SystemConfig, target: Optional[str] = None) -> "ShellExecutor":
        """Create an executor for a named target of the configuration."""
        target_name = target or config.default_target
        target_config = config.get_target(target_name)
        shell = config.shell
        return cls(
            target_command=target_config.command,
            prompt=shell.prompt,
            prompt_pattern=shell.prompt_pattern,
            init_line=shell.replay_init,
            env=target_config.env,
            columns=shell.columns,
            startup_timeout=shell.startup_timeout,
            tail_prompt_quiet=shell.tail_prompt_quiet,
            target_name=target_name
        )

    @property
    def is_running(self) -> bool:
        return self.process is not None and self.process.is_alive

    def start(self) -> None:
        """Launch the shell and wait for the first prompt."""
        if self.process is not None:
            return

        self.process = PtyProcess(self.target_command, env=self.env, columns=self.columns)
        try:
            self.process.spawn()
        except OSError as e:
            self.process = None
            raise ExecutorError(f"Cannot start target shell {self.target_command}: {e}") from e

        self.process.write(self.init_line.encode("utf-8") + b"\n")
        _, settled = self._read_until_prompt(self.startup_timeout)

        if not settled:
            self.terminate()
            raise ExecutorError(
                f"Target shell {self.target_command} did not present the prompt "
                f"within {self.startup_timeout}s"
            )

        self.logger.info(f"Shell started on target '{self.target_name}': {' '.join(self.target_command)}")

    def execute(self, command: str, timeout: Optional[float] = None) -> ExecutionResult:
        """Submit a command and wait for the prompt to return."""
        if not self.is_running:
            raise ExecutorError("Target shell is not running")

        start_time = time.monotonic()
        self.process.write(self._payload(command))

        raw, settled = self._read_until_prompt(timeout if timeout is not None else float("inf"))
        duration_ms = (time.monotonic() - start_time) * 1000

        if not settled and self.process.at_eof:
            raise ExecutorError(f"Target shell exited while running '{command}'")

        text = normalize_output(raw.decode("utf-8", "replace"))

        if not settled:
            self.logger.warning(f"Command '{command}' did not settle within {timeout}s")
            self._interrupt()
            return ExecutionResult(
                output=tidy_output(self._strip_echo(text, command)),
                exit_status=None,
                duration_ms=duration_ms,
                timed_out=True
            )

        exit_status = self.detector.exit_status(text)
        output = tidy_output(self._strip_echo(self.detector.strip_prompt(text), command))
        log_shell_command(self.logger, self.target_name, command, exit_status, duration_ms)

        return ExecutionResult(output=output, exit_status=exit_status, duration_ms=duration_ms)

    def close(self) -> None:
        """Ask the shell to exit, then release the terminal."""
        if self.process is None:
            return
        if self.process.is_alive:
            try:
                self.process.write(b"exit\n")
            except OSError:
                pass
        self.process.terminate(grace=1.0)
        self.process = None
        self.logger.info(f"Shell on target '{self.target_name}' closed")

    def terminate(self) -> None:
        """Kill the shell without waiting for it to exit on its own."""
        if self.process is None:
            return
        self.process.terminate(grace=0.2)
        self.process = None
        self.logger.info(f"Shell on target '{self.target_name}' terminated")

    def _payload(self, command: str) -> bytes:
        # A brace group keeps multi-line input to a single prompt
        if "\n" in command:
            command = "{\n" + command + "\n}"
        return command.encode("utf-8") + b"\n"

    def _prompt_seen(self, raw: bytes, silence: float) -> bool:
        return self.detector.is_idle(normalize_output(raw.decode("utf-8", "replace")), silence)

    def _read_until_prompt(self, timeout: float) -> Tuple[bytes, bool]:
        """Read until the prompt shows; returns the output and whether the prompt was seen."""
        settled = False

        def prompt_seen(raw: bytes, silence: float) -> bool:
            nonlocal settled
            settled = self._prompt_seen(raw, silence)
            return settled

        raw = self.process.read_until(prompt_seen, timeout)
        return raw, settled

    def _interrupt(self) -> None:
        """Interrupt a command that overran its timeout and wait for the prompt."""
        try:
            self.process.write(b"\x03")
        except OSError:
            return
        _, settled = self._read_until_prompt(INTERRUPT_GRACE)
        if not settled:
            self.logger.warning("Shell did not recover after interrupt")

    @staticmethod
    def _strip_echo(text: str, command: str) -> str:
        # Echo is disabled during replay, but some targets echo anyway
        first_line, sep, rest = text.partition("\n")
        command_first = command.split("\n", 1)[0].strip()
        if command_first and first_line.strip().endswith(command_first):
            return rest
        return text


CommandOutput = Union[str, bytes]
CommandFunction = Callable[[str], Union[CommandOutput, Tuple[CommandOutput, Optional[int]]]]


class CallableExecutor(Executor):
    """
    Adapts a function ``command -> output`` or ``command -> (output, exit_status)``.

    Output may be text or bytes; bytes are decoded as UTF-8 with invalid
    sequences replaced.

    The function cannot be interrupted, so a timeout is only detected after it
    returns.
    """

    def __init__(self, func: CommandFunction):
        self.func = func
        self.logger = get_logger(__name__)

    def execute(self, command: str, timeout: Optional[float] = None) -> ExecutionResult:
        start_time = time.monotonic()
        try:
            result = self.func(command)
        except CltError:
            raise
        except Exception as e:
            raise ExecutorError(f"Command '{command}' failed: {e}") from e
        duration_ms = (time.monotonic() - start_time) * 1000

        if isinstance(result, tuple):
            output, exit_status = result
        else:
            output, exit_status = result, 0
        if isinstance(output, bytes):
            output = output.decode("utf-8", "replace")

        timed_out = timeout is not None and duration_ms > timeout * 1000
        return ExecutionResult(
            output=output,
            exit_status=None if timed_out else exit_status,
            duration_ms=duration_ms,
            timed_out=timed_out
        )
