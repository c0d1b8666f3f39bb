"""
Unit tests for block resolution and flattening.
"""

from pathlib import Path

import pytest

from clt.document.models import CommandStep, CommentStep, Document, FlattenedDocument
from clt.document.parser import load_document, parse
from clt.document.resolver import FileResolver, flatten
from clt.interfaces import ReferenceCycleError, UnresolvedReferenceError


def command(text: str, output: str = "") -> str:
    return f"––– input –––\n{text}\n––– output –––\n{output}\n"


class TestFlatten:
    """Test expansion of block references."""

    @pytest.mark.unit
    def test_document_without_blocks(self):
        document = parse(command("ls") + "––– comment –––\nnote\n")

        flattened = flatten(document)

        assert isinstance(flattened, FlattenedDocument)
        assert flattened.steps == document.steps
        assert [origin.index for origin in flattened.origins] == [0, 1]

    @pytest.mark.unit
    def test_blocks_expand_in_place(self, write_file):
        write_file("blocks/setup.recb", command("cd /tmp") + command("pwd", "/tmp"))
        session = write_file("main.rec", command("echo start", "start")
                             + "––– block: blocks/setup –––\n"
                             + command("echo end", "end"))

        flattened = flatten(load_document(session))

        assert [step.input for step in flattened.steps] == ["echo start", "cd /tmp", "pwd", "echo end"]
        origins = flattened.origins
        assert origins[0].path == session and origins[0].index == 0
        assert origins[1].path.name == "setup.recb" and origins[1].index == 0
        assert origins[2].path.name == "setup.recb" and origins[2].index == 1
        assert origins[3].path == session and origins[3].index == 2

    @pytest.mark.unit
    def test_nested_blocks_resolve_relative_to_their_file(self, write_file):
        write_file("lib/inner.recb", command("echo inner", "inner"))
        write_file("lib/outer.recb", "––– block: inner –––\n" + command("echo outer", "outer"))
        session = write_file("main.rec", "––– block: lib/outer –––\n")

        flattened = flatten(load_document(session))

        assert [step.input for step in flattened.steps] == ["echo inner", "echo outer"]

    @pytest.mark.unit
    def test_same_block_twice_is_not_a_cycle(self, write_file):
        write_file("twice.recb", command("date"))
        session = write_file("main.rec", "––– block: twice –––\n––– block: twice –––\n")

        flattened = flatten(load_document(session))

        assert [step.input for step in flattened.steps] == ["date", "date"]

    @pytest.mark.unit
    def test_flatten_is_idempotent(self, write_file):
        write_file("b.recb", command("whoami", "root"))
        session = write_file("main.rec", command("id") + "––– block: b –––\n")

        once = flatten(load_document(session))
        twice = flatten(once)

        assert twice.steps == once.steps
        assert twice.origins == once.origins

    @pytest.mark.unit
    def test_custom_resolver(self):
        blocks = {
            Path("shared.recb"): Document(steps=[CommentStep(text="from memory")]),
        }
        document = parse("––– block: shared –––\n" + command("ls"))

        flattened = flatten(document, lambda path: blocks[path])

        assert flattened.steps == [CommentStep(text="from memory"), CommandStep(input="ls")]


class TestFlattenErrors:
    """Test unresolved references and cycles."""

    @pytest.mark.unit
    def test_missing_block(self, write_file):
        session = write_file("main.rec", "––– block: missing –––\n")

        with pytest.raises(UnresolvedReferenceError) as exc_info:
            flatten(load_document(session))

        error = exc_info.value
        assert error.reference == "missing"
        assert error.referencing_path == session
        assert error.block_path.name == "missing.recb"

    @pytest.mark.unit
    def test_self_reference(self, write_file):
        write_file("loop.recb", "––– block: loop –––\n")
        session = write_file("main.rec", "––– block: loop –––\n")

        with pytest.raises(ReferenceCycleError) as exc_info:
            flatten(load_document(session))

        names = [path.name for path in exc_info.value.chain]
        assert names == ["main.rec", "loop.recb", "loop.recb"]

    @pytest.mark.unit
    def test_indirect_cycle(self, write_file):
        write_file("a.recb", "––– block: b –––\n")
        write_file("b.recb", "––– block: a –––\n")
        session = write_file("main.rec", "––– block: a –––\n")

        with pytest.raises(ReferenceCycleError) as exc_info:
            flatten(load_document(session))

        names = [path.name for path in exc_info.value.chain]
        assert names == ["main.rec", "a.recb", "b.recb", "a.recb"]


class TestFileResolver:
    """Test block caching."""

    @pytest.mark.unit
    def test_cache_by_resolved_path(self, write_file, tmp_path: Path):
        block = write_file("shared.recb", command("ls"))
        resolver = FileResolver()

        first = resolver(block)
        block.write_text(command("pwd"))
        second = resolver(tmp_path / "." / "shared.recb")

        assert first is second
        resolver.clear()
        assert resolver(block).steps[0].input == "pwd"

    @pytest.mark.unit
    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            FileResolver()(tmp_path / "nope.recb")
