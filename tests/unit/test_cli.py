"""
Unit tests for the command-line interface.

Only subcommands that do not start a shell are exercised here; replay
through a real shell is covered by the integration tests.
"""

import os
from pathlib import Path

import pytest

from clt.cli import apply_overrides, create_parser, main
from clt.compare.models import ExitStatus
from clt.config_loader import ConfigurationError
from clt.config_models import SystemConfig
from clt.document.models import ActualDocument, ActualStep
from clt.document.parser import save_actual

SESSION = "––– input –––\necho hi\n––– output –––\nhi\n"


@pytest.fixture(autouse=True)
def workspace(monkeypatch, tmp_path) -> Path:
    for name in list(os.environ):
        if name.startswith("CLT_") or name == "NO_COLOR":
            monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
    return tmp_path


def write_replay(path: Path, output: str) -> None:
    save_actual(ActualDocument(steps=[
        ActualStep(index=0, input="echo hi", actual_output=output, exit_status=0),
    ]), path)


class TestArgumentParsing:
    """Test option parsing and overrides."""

    @pytest.mark.unit
    def test_replay_options(self):
        args = create_parser().parse_args(["test", "s.rec", "--target", "local", "--delay", "20",
                                           "--timeout", "2.5", "--fail-fast", "--layout", "side-by-side"])
        config = SystemConfig()

        apply_overrides(config, args)

        assert config.replay.inter_step_delay_ms == 20
        assert config.replay.step_timeout == 2.5
        assert config.replay.fail_fast
        assert config.compare.layout == "side-by-side"

    @pytest.mark.unit
    def test_unknown_target_is_rejected(self):
        args = create_parser().parse_args(["replay", "s.rec", "--target", "mars"])

        with pytest.raises(ConfigurationError, match="Unknown target"):
            apply_overrides(SystemConfig(), args)

    @pytest.mark.unit
    def test_negative_delay_is_rejected(self):
        args = create_parser().parse_args(["replay", "s.rec", "--delay", "-5"])

        with pytest.raises(ConfigurationError, match="negative"):
            apply_overrides(SystemConfig(), args)

    @pytest.mark.unit
    def test_subcommand_is_required(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args([])


class TestMain:
    """Test exit statuses of the main entry point."""

    @pytest.mark.unit
    def test_compare_passes(self, workspace, capsys):
        (workspace / "s.rec").write_text(SESSION)
        write_replay(workspace / "s.rep", "hi")

        status = main(["compare", "s.rec", "--no-color"])

        assert status == ExitStatus.PASSED
        assert "1 passed, 0 failed" in capsys.readouterr().out

    @pytest.mark.unit
    def test_compare_fails_with_diff(self, workspace, capsys):
        (workspace / "s.rec").write_text(SESSION)
        write_replay(workspace / "other.rep", "bye")

        status = main(["compare", "s.rec", "other.rep", "--no-color"])

        out = capsys.readouterr().out
        assert status == ExitStatus.FAILED
        assert "- hi" in out
        assert "+ bye" in out

    @pytest.mark.unit
    def test_quiet_compare_lists_failures(self, workspace, capsys):
        (workspace / "s.rec").write_text(SESSION)
        write_replay(workspace / "s.rep", "bye")

        status = main(["--quiet", "compare", "s.rec"])

        captured = capsys.readouterr()
        assert status == ExitStatus.FAILED
        assert captured.out == ""
        assert "FAIL step 1: echo hi" in captured.err

    @pytest.mark.unit
    def test_missing_session_file(self, capsys):
        status = main(["compare", "absent.rec"])

        assert status == ExitStatus.MISSING_FILE
        assert "not found" in capsys.readouterr().err

    @pytest.mark.unit
    def test_missing_replay_artifact(self, workspace):
        (workspace / "s.rec").write_text(SESSION)

        assert main(["compare", "s.rec"]) == ExitStatus.MISSING_FILE

    @pytest.mark.unit
    def test_malformed_session_is_structural(self, workspace, capsys):
        (workspace / "s.rec").write_text("––– bogus –––\n")

        status = main(["compare", "s.rec"])

        assert status == ExitStatus.STRUCTURAL_ERROR
        assert "Error:" in capsys.readouterr().err

    @pytest.mark.unit
    def test_unknown_placeholder_is_structural(self, workspace):
        (workspace / "s.rec").write_text("––– input –––\necho hi\n––– output –––\n%{NOT_DEFINED}\n")
        write_replay(workspace / "s.rep", "hi")

        assert main(["compare", "s.rec"]) == ExitStatus.STRUCTURAL_ERROR

    @pytest.mark.unit
    def test_missing_block_is_structural(self, workspace):
        (workspace / "s.rec").write_text("––– block: nowhere –––\n")

        assert main(["test", "s.rec"]) == ExitStatus.STRUCTURAL_ERROR

    @pytest.mark.unit
    def test_unknown_target_is_setup_error(self, workspace):
        (workspace / "s.rec").write_text(SESSION)

        assert main(["test", "s.rec", "--target", "mars"]) == ExitStatus.SETUP_ERROR

    @pytest.mark.unit
    def test_patterns_lists_registry(self, workspace, capsys):
        patterns = workspace / ".clt" / "patterns"
        patterns.parent.mkdir(parents=True, exist_ok=True)
        patterns.write_text("BUILD_ID [a-f0-9]{8}\n")

        status = main(["patterns"])

        out = capsys.readouterr().out
        assert status == ExitStatus.PASSED
        assert "BUILD_ID" in out
        assert "DATE" in out
