"""
Integration tests against a real interactive bash on a pseudo-terminal.

These tests start actual shell processes and are skipped where bash is not
installed.
"""

import io
import os
import shutil
import threading
import time
from pathlib import Path

import pytest

from clt.compare.models import ExitStatus
from clt.config_models import PathsConfig, ReplayConfig, SystemConfig
from clt.document.models import CommandStep, ExecutionStatus
from clt.document.parser import load_actual, load_document
from clt.session.executors import ShellExecutor
from clt.session.manager import SessionManager
from clt.session.recorder import CloseReason, SessionRecorder

pytestmark = pytest.mark.skipif(shutil.which("bash") is None, reason="bash not installed")

BASH = ["bash", "--noprofile", "--norc", "-i"]


@pytest.fixture
def shell():
    executor = ShellExecutor(BASH, env={"LANG": "C"})
    executor.start()
    yield executor
    executor.close()


@pytest.fixture
def local_config(tmp_path) -> SystemConfig:
    return SystemConfig(
        paths=PathsConfig(log_dir=tmp_path / "logs", patterns_file=tmp_path / "patterns"),
        replay=ReplayConfig(step_timeout=10)
    )


def step_block(command: str, output: str) -> str:
    return f"––– input –––\n{command}\n––– output –––\n{output}\n"


class TestShellExecutor:
    """Test command execution in a live shell."""

    @pytest.mark.integration
    def test_output_and_exit_status(self, shell):
        result = shell.execute("echo hi", timeout=10)

        assert result.output == "hi"
        assert result.exit_status == 0
        assert not result.timed_out

        assert shell.execute("false", timeout=10).exit_status == 1

    @pytest.mark.integration
    def test_state_persists_between_commands(self, shell, tmp_path):
        shell.execute(f"cd {tmp_path}", timeout=10)
        shell.execute("GREETING=hello", timeout=10)

        assert shell.execute("pwd", timeout=10).output == str(tmp_path)
        assert shell.execute("echo $GREETING", timeout=10).output == "hello"

    @pytest.mark.integration
    def test_multi_line_command(self, shell):
        result = shell.execute("for i in 1 2 3; do\n  echo $i\ndone", timeout=10)

        assert result.output == "1\n2\n3"
        assert result.exit_status == 0

    @pytest.mark.integration
    def test_output_without_trailing_newline(self, shell):
        assert shell.execute("printf abc", timeout=10).output == "abc"

    @pytest.mark.integration
    def test_prompt_like_output_does_not_end_the_command(self, shell):
        first = shell.execute("printf 'x clt[0]> '; sleep 0.5; echo done", timeout=10)
        second = shell.execute("echo second", timeout=10)

        assert first.output == "x clt[0]> done"
        assert first.exit_status == 0
        assert second.output == "second"

    @pytest.mark.integration
    def test_timeout_interrupts_and_recovers(self, shell):
        result = shell.execute("sleep 30", timeout=0.5)

        assert result.timed_out
        assert result.exit_status is None
        assert shell.execute("echo back", timeout=10).output == "back"


class TestSessionManager:
    """Test replay and comparison of session files through bash."""

    @pytest.mark.integration
    def test_passing_session(self, local_config, tmp_path):
        session = tmp_path / "ok.rec"
        session.write_text(
            "Checks a few basic commands\n"
            + step_block("echo hello", "hello")
            + "––– comment –––\ndates change every day\n"
            + step_block("date +%Y-%m-%d", "%{DATE}")
            + step_block("X=41; echo $((X + 1))", "42")
        )

        report = SessionManager(local_config).test(session)

        assert report.success, report.get_summary()
        assert report.exit_status == ExitStatus.PASSED
        replay = load_actual(session.with_suffix(".rep"))
        assert [step.actual_output for step in replay.steps][0] == "hello"

    @pytest.mark.integration
    def test_failing_session(self, local_config, tmp_path):
        session = tmp_path / "bad.rec"
        session.write_text(step_block("echo hi", "hello") + step_block("echo ok", "ok"))

        report = SessionManager(local_config).test(session)

        assert report.exit_status == ExitStatus.FAILED
        assert [result.passed for result in report.results] == [False, True]

    @pytest.mark.integration
    def test_blocks_share_the_shell(self, local_config, tmp_path):
        (tmp_path / "setup.recb").write_text(step_block("cd /", ""))
        session = tmp_path / "blocks.rec"
        session.write_text("––– block: setup –––\n" + step_block("pwd", "/"))

        report = SessionManager(local_config).test(session)

        assert report.success
        assert report.results[0].origin_path.name == "setup.recb"

    @pytest.mark.integration
    def test_refine_updates_session(self, local_config, tmp_path):
        session = tmp_path / "refine.rec"
        session.write_text(step_block("echo new", "old"))

        report, summary = SessionManager(local_config).refine(session)

        assert not report.success
        assert summary.refined == [0]
        assert load_document(session).steps == [CommandStep(input="echo new", expected_output="new")]
        assert SessionManager(local_config).test(session).success

    @pytest.mark.integration
    def test_step_timeout(self, local_config, tmp_path):
        local_config.replay.step_timeout = 0.5
        session = tmp_path / "slow.rec"
        session.write_text(step_block("sleep 30", "") + step_block("echo after", "after"))

        report = SessionManager(local_config).test(session)

        assert report.results[0].execution_status == ExecutionStatus.TIMED_OUT
        assert report.results[1].passed


class TestSessionRecorder:
    """Test recording from a scripted keyboard."""

    @pytest.mark.integration
    def test_record_from_pipe(self, local_config, tmp_path):
        read_fd, write_fd = os.pipe()
        output = io.BytesIO()
        path = tmp_path / "recorded.rec"

        def type_keys():
            time.sleep(1.0)
            os.write(write_fd, b"echo recorded\r")
            time.sleep(1.5)
            os.write(write_fd, b"\x04")
            os.close(write_fd)

        typist = threading.Thread(target=type_keys)
        typist.start()
        try:
            result = SessionRecorder(local_config).record(path, description="Recorded", stdin_fd=read_fd,
                                                          stdout=output)
        finally:
            typist.join()
            os.close(read_fd)

        assert result.reason == CloseReason.END_OF_INPUT
        assert result.document.steps == [CommandStep(input="echo recorded", expected_output="recorded")]
        document = load_document(Path(path))
        assert document.description == "Recorded"
        assert document.steps == result.document.steps
        assert b"recorded" in output.getvalue()
