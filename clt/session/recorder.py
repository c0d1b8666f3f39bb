"""
Interactive session recording.

This module turns an operator's interactive shell session into a Document.
``RecordingSession`` is the keystroke state machine; ``SessionRecorder``
attaches it to a shell running on a pseudo-terminal.
"""

import codecs
import os
import select
import sys
import termios
import time
import tty
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Any, BinaryIO, Dict, Iterator, List, Optional

from ..config_models import SystemConfig
from ..document.models import CommandStep, Document
from ..document.parser import save_document
from ..logging_config import get_logger
from .keys import CANONICAL_BYTES, Key, KeyDecoder, KeyKind
from .prompt import PromptDetector, PromptPatternDetector, create_detector
from .terminal import PtyProcess, normalize_output, tidy_output

POLL_INTERVAL = 0.05


class RecorderState(str, Enum):
    """States of the recording state machine."""

    AWAITING_PROMPT = "awaiting_prompt"
    CAPTURING_INPUT = "capturing_input"
    AWAITING_COMPLETION = "awaiting_completion"
    CAPTURING_OUTPUT = "capturing_output"
    SESSION_CLOSED = "session_closed"


class CloseReason(str, Enum):
    END_OF_INPUT = "end_of_input"
    INTERRUPT = "interrupt"
    SHELL_EXITED = "shell_exited"


class LineBuffer:
    """The command line being typed, with a cursor."""

    def __init__(self):
        self._chars: List[str] = []
        self.cursor = 0

    @property
    def value(self) -> str:
        return "".join(self._chars)

    def insert(self, char: str) -> None:
        self._chars.insert(self.cursor, char)
        self.cursor += 1

    def left(self) -> bool:
        if self.cursor == 0:
            return False
        self.cursor -= 1
        return True

    def right(self) -> bool:
        if self.cursor >= len(self._chars):
            return False
        self.cursor += 1
        return True

    def backspace(self) -> bool:
        if self.cursor == 0:
            return False
        self.cursor -= 1
        del self._chars[self.cursor]
        return True

    def delete(self) -> bool:
        if self.cursor >= len(self._chars):
            return False
        del self._chars[self.cursor]
        return True

    def home(self) -> None:
        self.cursor = 0

    def end(self) -> None:
        self.cursor = len(self._chars)

    def clear(self) -> None:
        self._chars.clear()
        self.cursor = 0

    def __len__(self) -> int:
        return len(self._chars)


class RecordingResult:
    """Outcome of a recording session."""

    def __init__(self, document: Document, reason: CloseReason, warnings: List[str]):
        self.document = document
        self.reason = reason
        self.warnings = warnings

    @property
    def truncated(self) -> bool:
        return self.reason == CloseReason.SHELL_EXITED

    @property
    def interrupted(self) -> bool:
        return self.reason == CloseReason.INTERRUPT


class RecordingSession:
    """
    Keystroke state machine for one recording.

    ``handle_key`` returns the bytes that must be forwarded to the shell so
    that the shell's command line always equals the captured buffer. Keys
    outside the supported set are dropped. ``handle_output`` and ``poll`` take
    a monotonic timestamp so completion detection can be driven by time.
    """

    def __init__(self, detector: PromptDetector, description: Optional[str] = None,
                 path: Optional[Path] = None):
        self.detector = detector
        self.description = description
        self.path = path
        self.logger = get_logger(__name__)

        self.state = RecorderState.AWAITING_PROMPT
        self.steps: List[CommandStep] = []
        self.buffer = LineBuffer()
        self.warnings: List[str] = []
        self.ignored_keys = 0

        self._pending_command: Optional[str] = None
        self._raw_output = ""
        self._last_output_at = 0.0
        self._result: Optional[RecordingResult] = None
        self._warned_passthrough = False

    @property
    def closed(self) -> bool:
        return self.state == RecorderState.SESSION_CLOSED

    @property
    def result(self) -> Optional[RecordingResult]:
        return self._result

    def handle_key(self, key: Key, now: float) -> bytes:
        """Apply a key press and return the bytes to forward to the shell."""
        if self.closed:
            return b""

        if key.kind == KeyKind.END_OF_INPUT:
            self.close(CloseReason.END_OF_INPUT)
            return b""
        if key.kind == KeyKind.INTERRUPT:
            self.close(CloseReason.INTERRUPT)
            return b""

        if self.state in (RecorderState.AWAITING_COMPLETION, RecorderState.CAPTURING_OUTPUT):
            return self._passthrough(key)

        if self.state == RecorderState.AWAITING_PROMPT:
            self._transition(RecorderState.CAPTURING_INPUT)

        return self._edit(key, now)

    def _edit(self, key: Key, now: float) -> bytes:
        kind = key.kind
        buffer = self.buffer

        if kind == KeyKind.CHAR:
            buffer.insert(key.char)
            return key.raw
        if kind == KeyKind.SUBMIT:
            return self._submit(now)

        if kind == KeyKind.LEFT:
            moved = buffer.left()
        elif kind == KeyKind.RIGHT:
            moved = buffer.right()
        elif kind == KeyKind.BACKSPACE:
            moved = buffer.backspace()
        elif kind == KeyKind.DELETE:
            moved = buffer.delete()
        elif kind == KeyKind.LINE_START:
            buffer.home()
            moved = True
        elif kind == KeyKind.LINE_END:
            buffer.end()
            moved = True
        else:
            self.ignored_keys += 1
            self.logger.debug(f"Ignoring unsupported key {key!r}")
            return b""

        # Forwarding a no-op edit would make some shells ring the bell
        return CANONICAL_BYTES[kind] if moved else b""

    def _submit(self, now: float) -> bytes:
        command = self.buffer.value
        self.buffer.clear()

        if not command.strip():
            return CANONICAL_BYTES[KeyKind.SUBMIT]

        self._pending_command = command
        self._raw_output = ""
        self._last_output_at = now
        self._transition(RecorderState.AWAITING_COMPLETION)
        self.logger.debug(f"Submitted command: {command}")
        return CANONICAL_BYTES[KeyKind.SUBMIT]

    def _passthrough(self, key: Key) -> bytes:
        # Input typed while a command runs goes to that command and is not recorded
        if not self._warned_passthrough:
            self._warned_passthrough = True
            self._warn(f"Input typed while '{self._pending_command}' was running is not recorded")
        if key.kind == KeyKind.UNSUPPORTED:
            self.ignored_keys += 1
            return b""
        return key.raw

    def handle_output(self, text: str, now: float) -> None:
        """Feed decoded shell output."""
        if self.state not in (RecorderState.AWAITING_COMPLETION, RecorderState.CAPTURING_OUTPUT):
            # Prompt redraws and echo of the line being typed
            return

        self._raw_output += text
        self._last_output_at = now

        if self.state == RecorderState.AWAITING_COMPLETION:
            if "\n" not in normalize_output(self._raw_output):
                return
            self._transition(RecorderState.CAPTURING_OUTPUT)

        self._check_idle(now)

    def poll(self, now: float) -> None:
        """Give time-based completion detection a chance to fire."""
        if self.state == RecorderState.CAPTURING_OUTPUT:
            self._check_idle(now)

    def _output_body(self) -> str:
        normalized = normalize_output(self._raw_output)
        # Everything up to the first newline is the echo of the submitted line
        _, _, body = normalized.partition("\n")
        return body

    def _check_idle(self, now: float) -> None:
        body = self._output_body()
        if not self.detector.is_idle(body, now - self._last_output_at):
            return

        output = tidy_output(self.detector.strip_prompt(body))
        self.steps.append(CommandStep(input=self._pending_command, expected_output=output))
        self.logger.debug(f"Recorded step {len(self.steps)}: {self._pending_command}")

        self._pending_command = None
        self._raw_output = ""
        self._transition(RecorderState.AWAITING_PROMPT)

    def close(self, reason: CloseReason) -> RecordingResult:
        """Finish the session, keeping every completed step."""
        if self._result is not None:
            return self._result

        if self._pending_command is not None:
            self._warn(f"Discarded unfinished step '{self._pending_command}'")
            self._pending_command = None

        if reason == CloseReason.SHELL_EXITED:
            self._warn(f"Shell exited unexpectedly; session truncated after {len(self.steps)} steps")

        if self.ignored_keys:
            self.logger.info(f"Ignored {self.ignored_keys} unsupported key presses")

        self._transition(RecorderState.SESSION_CLOSED)
        document = Document(description=self.description, steps=list(self.steps), path=self.path)
        self._result = RecordingResult(document, reason, list(self.warnings))
        self.logger.info(f"Recording closed ({reason.value}) with {len(self.steps)} steps")
        return self._result

    def _transition(self, state: RecorderState) -> None:
        if state != self.state:
            self.logger.debug(f"Recorder state {self.state.value} -> {state.value}")
            self.state = state

    def _warn(self, message: str) -> None:
        self.warnings.append(message)
        self.logger.warning(message)


@contextmanager
def _raw_terminal(fd: int) -> Iterator[None]:
    if not os.isatty(fd):
        yield
        return
    saved = termios.tcgetattr(fd)
    try:
        tty.setraw(fd)
        yield
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, saved)


class SessionRecorder:
    """Records an operator's session with a target shell."""

    def __init__(self, config: SystemConfig, target: Optional[str] = None,
                 detector: Optional[PromptDetector] = None):
        """Initialize session recorder."""
        self.config = config
        self.target_name = target or config.default_target
        self.target = config.get_target(self.target_name)
        self.detector = detector or create_detector(config)
        self.logger = get_logger(__name__)

        self.active_session: Optional[RecordingSession] = None

    def record(self, output_path: Path, description: Optional[str] = None,
               stdin_fd: Optional[int] = None, stdout: Optional[BinaryIO] = None) -> RecordingResult:
        """
        Record a session until the operator presses Ctrl-D.

        Args:
            output_path: Session file to write
            description: Optional leading description of the document
            stdin_fd: Operator input; defaults to the process's stdin
            stdout: Where shell output is mirrored; defaults to stdout

        Returns:
            Recording result; the document has already been written
        """
        output_path = Path(output_path)
        if stdin_fd is None:
            stdin_fd = sys.stdin.fileno()
        if stdout is None:
            stdout = sys.stdout.buffer

        session = RecordingSession(self.detector, description=description, path=output_path)
        self.active_session = session
        process = PtyProcess(self.target.command, env=self.target.env, columns=self.config.shell.columns)

        self.logger.info(f"Recording session on target '{self.target_name}' into {output_path}")
        process.spawn()
        try:
            first_prompt = self._initialize_shell(process)
            stdout.write(first_prompt.encode("utf-8"))
            stdout.flush()

            with _raw_terminal(stdin_fd):
                self._loop(session, process, stdin_fd, stdout)
        except KeyboardInterrupt:
            session.close(CloseReason.INTERRUPT)
        finally:
            process.terminate()
            self.active_session = None

        result = session.result or session.close(CloseReason.INTERRUPT)
        save_document(result.document, output_path)
        return result

    def _initialize_shell(self, process: PtyProcess) -> str:
        shell = self.config.shell
        process.write(shell.record_init.format(prompt=shell.prompt).encode("utf-8") + b"\r")

        prompt_detector = PromptPatternDetector(shell.prompt_pattern, tail_silence=shell.tail_prompt_quiet)
        settled = False

        def prompt_seen(data: bytes, silence: float) -> bool:
            nonlocal settled
            text = normalize_output(data.decode("utf-8", "replace"))
            settled = prompt_detector.is_idle(text, silence)
            return settled

        raw = process.read_until(prompt_seen, shell.startup_timeout)
        text = normalize_output(raw.decode("utf-8", "replace"))
        if not settled:
            self.logger.warning("Configured prompt not seen after shell start; continuing anyway")
        return text.rpartition("\n")[2]

    def _loop(self, session: RecordingSession, process: PtyProcess, stdin_fd: int, stdout: BinaryIO) -> None:
        decoder = KeyDecoder()
        output_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

        while not session.closed:
            ready, _, _ = select.select([stdin_fd, process.fileno()], [], [], POLL_INTERVAL)
            now = time.monotonic()

            if process.fileno() in ready:
                data = process.read(0)
                if data is None:
                    session.close(CloseReason.SHELL_EXITED)
                    break
                stdout.write(data)
                stdout.flush()
                session.handle_output(output_decoder.decode(data), now)

            if stdin_fd in ready:
                data = os.read(stdin_fd, 1024)
                if not data:
                    session.close(CloseReason.END_OF_INPUT)
                    break
                for key in decoder.feed(data):
                    forward = session.handle_key(key, now)
                    if forward:
                        process.write(forward)
                    if session.closed:
                        break

            session.poll(now)

    def get_recording_status(self) -> Dict[str, Any]:
        """Get current recording status."""
        if not self.active_session:
            return {
                "recording": False,
                "session": None
            }

        return {
            "recording": not self.active_session.closed,
            "session": {
                "path": str(self.active_session.path),
                "state": self.active_session.state.value,
                "steps_recorded": len(self.active_session.steps)
            }
        }
