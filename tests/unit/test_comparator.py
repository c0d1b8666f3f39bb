"""
Unit tests for comparing replays against session documents.
"""

import pytest

from clt.compare.comparator import compare, validate
from clt.compare.models import ExitStatus, Verdict
from clt.document.models import (
    ActualDocument,
    ActualStep,
    CommandStep,
    CommentStep,
    ExecutionStatus,
    FlattenedDocument,
)
from clt.document.parser import load_document
from clt.document.resolver import flatten
from clt.interfaces import ComparisonError, UnknownPatternError
from clt.matcher import DiffKind
from clt.session.player import replay


def document(*pairs) -> FlattenedDocument:
    return FlattenedDocument(steps=[CommandStep(input=i, expected_output=o) for i, o in pairs])


def actual(*triples) -> ActualDocument:
    steps = []
    for index, (command, output, *rest) in enumerate(triples):
        status = rest[0] if rest else ExecutionStatus.COMPLETED
        steps.append(ActualStep(index=index, input=command, actual_output=output, exit_status=0, status=status))
    return ActualDocument(steps=steps)


class TestCompare:
    """Test per-step verdicts."""

    @pytest.mark.unit
    def test_all_steps_pass(self, registry):
        expected = document(("echo hi", "hi"), ("date", "%{DATE}"))

        report = compare(expected, actual(("echo hi", "hi"), ("date", "2024-03-01")), registry)

        assert report.success
        assert report.exit_status == ExitStatus.PASSED
        assert [result.verdict for result in report.results] == [Verdict.PASS, Verdict.PASS]
        assert report.results[1].expected_rendered != "%{DATE}"

    @pytest.mark.unit
    def test_output_mismatch_fails_with_diff(self, registry):
        expected = document(("echo hi", "hello"))

        report = compare(expected, actual(("echo hi", "hi")), registry)

        assert not report.success
        assert report.exit_status == ExitStatus.FAILED
        result = report.results[0]
        assert result.verdict == Verdict.FAIL
        assert result.actual_text == "hi"
        assert [(f.kind, f.expected, f.actual) for f in result.diff_fragments] == [
            (DiffKind.CHANGED, "hello", "hi")
        ]

    @pytest.mark.unit
    def test_comments_are_not_paired(self, registry):
        expected = FlattenedDocument(steps=[
            CommentStep(text="intro"),
            CommandStep(input="true"),
            CommentStep(text="middle"),
            CommandStep(input="echo x", expected_output="x"),
        ])

        report = compare(expected, actual(("true", ""), ("echo x", "x")), registry)

        assert report.passed_count == 2
        assert [result.step_index for result in report.results] == [0, 1]

    @pytest.mark.unit
    def test_unexecuted_step_fails_even_if_output_conforms(self, registry):
        expected = document(("sleep 100", ""))

        report = compare(expected, actual(("sleep 100", "", ExecutionStatus.TIMED_OUT)), registry)

        assert report.results[0].verdict == Verdict.FAIL
        assert report.results[0].diff_fragments == []
        assert report.results[0].execution_status == ExecutionStatus.TIMED_OUT

    @pytest.mark.unit
    def test_missing_replayed_steps(self, registry):
        expected = document(("echo a", "a"), ("echo b", "b"))

        report = compare(expected, actual(("echo a", "a")), registry)

        missing = report.results[1]
        assert missing.verdict == Verdict.FAIL
        assert missing.actual_text is None
        assert [f.kind for f in missing.diff_fragments] == [DiffKind.MISSING]
        assert "no replayed counterpart" in missing.error_message

    @pytest.mark.unit
    def test_extra_replayed_steps(self, registry):
        expected = document(("echo a", "a"))

        report = compare(expected, actual(("echo a", "a"), ("echo z", "z")), registry)

        assert len(report.results) == 2
        extra = report.results[1]
        assert extra.verdict == Verdict.FAIL
        assert [(f.kind, f.actual) for f in extra.diff_fragments] == [(DiffKind.ADDED, "z")]

    @pytest.mark.unit
    def test_different_command_is_structural(self, registry):
        expected = document(("echo a", "a"))

        with pytest.raises(ComparisonError, match="echo b"):
            compare(expected, actual(("echo b", "a")), registry)

    @pytest.mark.unit
    def test_cancelled_replay(self, registry):
        expected = document(("true", ""))
        replayed = actual(("true", ""))
        replayed.cancelled = True

        report = compare(expected, replayed, registry)

        assert report.exit_status == ExitStatus.CANCELLED
        assert not report.success

    @pytest.mark.unit
    def test_origin_paths_come_from_blocks(self, write_file, registry):
        write_file("setup.recb", "––– input –––\ncd /\n––– output –––\n")
        session = write_file("main.rec", "––– block: setup –––\n––– input –––\npwd\n––– output –––\n/\n")
        flattened = flatten(load_document(session))

        report = compare(flattened, actual(("cd /", ""), ("pwd", "/")), registry)

        assert report.success
        assert report.results[0].origin_path.name == "setup.recb"
        assert report.results[1].origin_path == session

    @pytest.mark.unit
    def test_summary(self, registry):
        report = compare(document(("a", "1"), ("b", "2")), actual(("a", "1"), ("b", "3")), registry)

        summary = report.get_summary()

        assert summary["passed"] == 1
        assert summary["failed"] == 1
        assert summary["pass_rate"] == 50.0
        assert summary["exit_status"] == 1
        assert set(summary) == {
            "source_path", "success", "total_steps", "passed", "failed", "pass_rate", "cancelled", "exit_status",
        }


class TestValidate:
    """Test up-front compilation of expectations."""

    @pytest.mark.unit
    def test_unknown_pattern_is_annotated(self, registry):
        expected = document(("echo ok", "ok"), ("echo v", "%{NO_SUCH_PATTERN}"))

        with pytest.raises(UnknownPatternError) as exc_info:
            validate(expected, registry)

        assert exc_info.value.step_index == 1
        assert exc_info.value.command == "echo v"
        assert "echo v" in str(exc_info.value)

    @pytest.mark.unit
    def test_nested_steps_are_validated(self, registry):
        step = CommandStep(
            input="outer",
            nested_steps=[CommandStep(input="inner", expected_output="%{NO_SUCH_PATTERN}")]
        )

        with pytest.raises(UnknownPatternError) as exc_info:
            validate(FlattenedDocument(steps=[step]), registry)

        assert exc_info.value.step_index == 0

    @pytest.mark.unit
    def test_compare_validates_before_pairing(self, registry):
        with pytest.raises(UnknownPatternError):
            compare(document(("x", "%{NO_SUCH_PATTERN}")), actual(), registry)


class TestReplayScenario:
    """Test replay and comparison end to end with function executors."""

    @pytest.mark.unit
    def test_echo_hi_passes(self, registry):
        expected = document(("echo hi", "hi"))

        report = compare(expected, replay(expected, lambda command: "hi\n"), registry)

        assert report.success

    @pytest.mark.unit
    def test_extra_text_fails(self, registry):
        expected = document(("echo hi", "hi"))

        report = compare(expected, replay(expected, lambda command: "hi there\n"), registry)

        assert not report.success
        fragment = report.results[0].diff_fragments[0]
        assert fragment.kind == DiffKind.CHANGED
        assert fragment.expected == "hi"
        assert fragment.actual == "hi there"
