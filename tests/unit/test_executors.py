"""
Unit tests for executors that do not need a live shell.
"""

import time

import pytest

from clt.config_models import SystemConfig, TargetConfig
from clt.interfaces import ExecutorError, ParseError
from clt.session.executors import CallableExecutor, ShellExecutor


class TestCallableExecutor:
    """Test the function adapter."""

    @pytest.mark.unit
    def test_plain_output_means_success(self):
        result = CallableExecutor(lambda command: command[::-1]).execute("abc")

        assert result.output == "cba"
        assert result.exit_status == 0
        assert result.duration_ms >= 0

    @pytest.mark.unit
    def test_byte_output_is_decoded(self):
        result = CallableExecutor(lambda command: (b"caf\xc3\xa9\n\xff\xfe\n", 3)).execute("x")

        assert result.output == "café\n��\n"
        assert result.exit_status == 3

    @pytest.mark.unit
    def test_slow_function_reports_timeout(self):
        def slow(command):
            time.sleep(0.05)
            return "late", 0

        result = CallableExecutor(slow).execute("x", timeout=0.01)

        assert result.timed_out
        assert result.exit_status is None
        assert result.output == "late"

    @pytest.mark.unit
    def test_engine_errors_pass_through(self):
        def broken(command):
            raise ParseError("bad")

        with pytest.raises(ParseError):
            CallableExecutor(broken).execute("x")

    @pytest.mark.unit
    def test_other_errors_are_wrapped(self):
        def broken(command):
            raise OSError("no such device")

        with pytest.raises(ExecutorError, match="no such device"):
            CallableExecutor(broken).execute("x")


class TestShellExecutorHelpers:
    """Test command framing and echo removal."""

    @pytest.mark.unit
    def test_single_line_payload(self):
        executor = ShellExecutor(["bash"])

        assert executor._payload("echo hi") == b"echo hi\n"

    @pytest.mark.unit
    def test_multi_line_payload_is_grouped(self):
        executor = ShellExecutor(["bash"])

        assert executor._payload("for i in 1 2; do\n  echo $i\ndone") == (
            b"{\nfor i in 1 2; do\n  echo $i\ndone\n}\n"
        )

    @pytest.mark.unit
    def test_strip_echo(self):
        assert ShellExecutor._strip_echo("echo hi\nhi", "echo hi") == "hi"
        assert ShellExecutor._strip_echo("clt[0]> echo hi\nhi", "echo hi") == "hi"
        assert ShellExecutor._strip_echo("hi\nthere", "echo hi") == "hi\nthere"

    @pytest.mark.unit
    def test_init_line_installs_prompt(self):
        executor = ShellExecutor(["bash"], prompt="p> ")

        assert "PS1='p> '" in executor.init_line
        assert "{prompt}" not in executor.init_line

    @pytest.mark.unit
    def test_from_config(self, config):
        config = SystemConfig(paths=config.paths, targets={
            "box": TargetConfig(command=["sh", "-i"], env={"LANG": "C"}),
        }, default_target="box")

        executor = ShellExecutor.from_config(config)

        assert executor.target_command == ["sh", "-i"]
        assert executor.env == {"LANG": "C"}
        assert executor.target_name == "box"
        assert executor.detector.tail_silence == config.shell.tail_prompt_quiet
        assert not executor.is_running

    @pytest.mark.unit
    def test_execute_requires_started_shell(self):
        with pytest.raises(ExecutorError, match="not running"):
            ShellExecutor(["bash"]).execute("true")

    @pytest.mark.unit
    def test_missing_program(self):
        executor = ShellExecutor(["/nonexistent/shell-binary"])

        with pytest.raises(ExecutorError, match="Cannot start"):
            executor.start()
        assert executor.process is None
