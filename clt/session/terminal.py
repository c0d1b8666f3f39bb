"""Pseudo-terminal process handling and terminal output normalisation."""

import errno
import fcntl
import os
import re
import select
import signal
import struct
import subprocess
import termios
import time
from typing import Dict, List, Optional

from ..logging_config import get_logger

# CSI / OSC / two-byte escape sequences emitted by shells and readline
ANSI_RE = re.compile(
    r"\x1b\[[0-?]*[ -/]*[@-~]"
    r"|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"
    r"|\x1b[@-Z\\-_]"
)
LINE_END_RE = re.compile(r"\r+\n")
CONTROL_RE = re.compile(r"[\x00\x07]")


def normalize_output(raw: str) -> str:
    """
    Turn raw terminal output into plain text.

    Escape sequences, NUL and BEL are dropped, CRLF becomes LF, and a bare
    carriage return overwrites the line the way a terminal would.
    """
    text = ANSI_RE.sub("", raw)
    text = CONTROL_RE.sub("", text)
    text = LINE_END_RE.sub("\n", text)
    if "\r" in text:
        text = "\n".join(_apply_carriage_returns(line) for line in text.split("\n"))
    return text


def _apply_carriage_returns(line: str) -> str:
    if "\r" not in line:
        return line
    segments = line.split("\r")
    result = ""
    for segment in segments:
        result = segment + result[len(segment):]
    return result


def tidy_output(text: str) -> str:
    """Strip trailing whitespace from every line and drop trailing blank lines."""
    lines = [line.rstrip() for line in text.split("\n")]
    while lines and not lines[-1]:
        lines.pop()
    return "\n".join(lines)


class PtyProcess:
    """
    A child process attached to a pseudo-terminal.

    The parent keeps the master side; reads are bounded by timeouts so callers
    can multiplex input and output without blocking indefinitely.
    """

    def __init__(self, argv: List[str], env: Optional[Dict[str, str]] = None,
                 columns: int = 10000, rows: int = 50, cwd: Optional[str] = None):
        self.argv = list(argv)
        self.env = env
        self.columns = columns
        self.rows = rows
        self.cwd = cwd
        self.logger = get_logger(__name__)

        self.process: Optional[subprocess.Popen] = None
        self.master_fd: Optional[int] = None
        self._eof = False

    def spawn(self) -> None:
        """Start the child on a new pseudo-terminal."""
        if self.process is not None:
            raise RuntimeError("Process already spawned")

        master_fd, slave_fd = os.openpty()
        _set_window_size(slave_fd, self.rows, self.columns)

        env = dict(os.environ)
        env.update({"TERM": "dumb", "COLUMNS": str(self.columns), "LINES": str(self.rows)})
        if self.env:
            env.update(self.env)

        try:
            self.process = subprocess.Popen(
                self.argv,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                env=env,
                cwd=self.cwd,
                start_new_session=True,
                preexec_fn=_make_controlling_tty,
                close_fds=True
            )
        except OSError:
            os.close(master_fd)
            raise
        finally:
            os.close(slave_fd)

        self.master_fd = master_fd
        self.logger.debug(f"Spawned {self.argv} on pty (pid {self.process.pid})")

    @property
    def is_alive(self) -> bool:
        return self.process is not None and self.process.poll() is None

    @property
    def exit_code(self) -> Optional[int]:
        if self.process is None:
            return None
        return self.process.poll()

    @property
    def at_eof(self) -> bool:
        return self._eof

    def fileno(self) -> int:
        if self.master_fd is None:
            raise RuntimeError("Process not spawned")
        return self.master_fd

    def read(self, timeout: float) -> Optional[bytes]:
        """
        Read available output.

        Returns:
            Bytes read, ``b""`` if nothing arrived within the timeout, or None
            once the child has closed the terminal
        """
        if self._eof:
            return None

        ready, _, _ = select.select([self.fileno()], [], [], max(timeout, 0))
        if not ready:
            return b""

        try:
            data = os.read(self.fileno(), 4096)
        except OSError as e:
            # Linux reports a closed slave side as EIO
            if e.errno == errno.EIO:
                data = b""
            else:
                raise

        if not data:
            self._eof = True
            return None
        return data

    def read_until(self, predicate, timeout: float, poll_interval: float = 0.05) -> bytes:
        """
        Read until ``predicate(buffer, silence)`` holds, EOF, or the timeout expires.

        ``silence`` is the number of seconds since output last arrived.
        """
        deadline = time.monotonic() + timeout
        buffer = b""
        last_output_at = time.monotonic()
        while not predicate(buffer, time.monotonic() - last_output_at):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            chunk = self.read(min(poll_interval, remaining))
            if chunk is None:
                break
            if chunk:
                buffer += chunk
                last_output_at = time.monotonic()
        return buffer

    def write(self, data: bytes) -> None:
        """Write all bytes to the child's terminal."""
        view = memoryview(data)
        while view:
            written = os.write(self.fileno(), view)
            view = view[written:]

    def terminate(self, grace: float = 1.0) -> None:
        """Stop the child and its process group."""
        if self.process is None:
            return
        if self.process.poll() is None:
            self._signal_group(signal.SIGHUP)
            try:
                self.process.wait(timeout=grace)
            except subprocess.TimeoutExpired:
                self._signal_group(signal.SIGKILL)
                self.process.wait()
        self.close()

    def close(self) -> None:
        """Close the master side of the terminal."""
        if self.master_fd is not None:
            try:
                os.close(self.master_fd)
            except OSError:
                pass
            self.master_fd = None
        if self.process is not None and self.process.poll() is None:
            try:
                self.process.wait(timeout=1.0)
            except subprocess.TimeoutExpired:
                self._signal_group(signal.SIGKILL)
                self.process.wait()

    def _signal_group(self, sig: int) -> None:
        try:
            os.killpg(self.process.pid, sig)
        except ProcessLookupError:
            pass

    def __enter__(self) -> "PtyProcess":
        self.spawn()
        return self

    def __exit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        self.terminate()


def _set_window_size(fd: int, rows: int, columns: int) -> None:
    fcntl.ioctl(fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, min(columns, 65535), 0, 0))


def _make_controlling_tty() -> None:
    # Runs in the child after setsid(); stdin is already the slave side
    fcntl.ioctl(0, termios.TIOCSCTTY, 0)
