"""
Tests for the Precompile Statement Collector.
"""

from unittest.mock import MagicMock

import pytest

from imageforge.core.collector import (
    PrecompileCollector,
    parse_statement,
    parse_statements,
    read_statements_file,
    split_type_args,
)
from imageforge.core.errors import PrecompileFileError, PrecompileScriptError
from imageforge.domain.models import PrecompileSources, PrecompileStatement

HELLO = PrecompileStatement(callable="Example.hello", arg_types=("String",))


class TestParsing:
    """Tests for the trace-format parser."""

    def test_split_respects_nested_brackets(self):
        parts = split_type_args("typeof(f), Vector{Tuple{Int64, String}}, Dict{Symbol, Any}")
        assert parts == ["typeof(f)", "Vector{Tuple{Int64, String}}", "Dict{Symbol, Any}"]

    def test_split_rejects_unbalanced(self):
        with pytest.raises(ValueError):
            split_type_args("typeof(f), Vector{Int64")
        with pytest.raises(ValueError):
            split_type_args("typeof(f)), Int64")

    def test_split_rejects_empty_argument(self):
        with pytest.raises(ValueError):
            split_type_args("typeof(f), , Int64")

    def test_parse_typeof_statement(self):
        assert parse_statement("precompile(Tuple{typeof(Example.hello), String})") == HELLO

    def test_parse_nested_types(self):
        statement = parse_statement(
            "precompile(Tuple{typeof(Base.show), Base.IOContext{Base.TTY}, Vector{Tuple{Int64, String}}})"
        )
        assert statement.callable == "Base.show"
        assert statement.arg_types == ("Base.IOContext{Base.TTY}", "Vector{Tuple{Int64, String}}")

    def test_parse_constructor_head(self):
        statement = parse_statement("precompile(Tuple{Type{Example.Greeter}, String})")
        assert statement.callable == "Type{Example.Greeter}"
        assert statement.arg_types == ("String",)

    def test_parse_roundtrip_of_rendered_line(self):
        assert parse_statement(HELLO.to_line()) == HELLO

    def test_parse_rejects_other_code(self):
        with pytest.raises(ValueError):
            parse_statement('Example.hello("friend")')

    def test_parse_statements_skips_blank_comment_and_malformed(self):
        lines = [
            "# recorded with --trace-compile",
            "",
            "precompile(Tuple{typeof(Example.hello), String})",
            "precompile(Tuple{typeof(Example.hello), String})",
            "precompile(Tuple{typeof(Example.hello), Int64",
            "garbage",
            "precompile(Tuple{typeof(Example.hello), Int64})",
        ]
        statements = parse_statements(lines)
        assert statements == {HELLO, PrecompileStatement(callable="Example.hello", arg_types=("Int64",))}


class TestStatementsFile:
    """Tests for the recorded-statement-file source."""

    def test_reads_file(self, tmp_path):
        path = tmp_path / "trace.jl"
        path.write_text("precompile(Tuple{typeof(Example.hello), String})\nnot a statement\n")
        assert read_statements_file(path) == {HELLO}

    def test_unreadable_file_is_fatal(self, tmp_path):
        missing = tmp_path / "missing.jl"
        with pytest.raises(PrecompileFileError) as exc_info:
            read_statements_file(missing)
        assert exc_info.value.subject == str(missing)
        assert exc_info.value.phase == "precompiling"

    def test_binary_file_is_fatal(self, tmp_path):
        path = tmp_path / "trace.bin"
        path.write_bytes(b"\xff\xfe\x00\x81")
        with pytest.raises(PrecompileFileError):
            read_statements_file(path)


class TestPrecompileCollector:
    """Tests for combining sources."""

    @pytest.fixture
    def tracer(self):
        tracer = MagicMock()
        tracer.trace_script.return_value = [
            "precompile(Tuple{typeof(Example.hello), String})",
            "precompile(Tuple{typeof(Example.hello), Float64})",
        ]
        tracer.infer_statements.return_value = ["precompile(Tuple{typeof(Example.__init__)})"]
        return tracer

    @pytest.fixture
    def script(self, tmp_path):
        path = tmp_path / "warmup.jl"
        path.write_text('Example.hello("friend")\n')
        return path

    def test_no_sources(self):
        assert PrecompileCollector().collect(PrecompileSources()) == set()

    def test_union_of_all_sources(self, tmp_path, tracer, script):
        statements_file = tmp_path / "trace.jl"
        statements_file.write_text("precompile(Tuple{typeof(Example.hello), String})\n")

        statements = PrecompileCollector(tracer).collect(
            PrecompileSources(script=script, statements_file=statements_file, infer=True)
        )

        assert statements == {
            HELLO,
            PrecompileStatement(callable="Example.hello", arg_types=("Float64",)),
            PrecompileStatement(callable="Example.__init__"),
        }
        tracer.trace_script.assert_called_once_with(script)

    def test_script_without_session(self, script):
        with pytest.raises(PrecompileScriptError, match="session"):
            PrecompileCollector().collect(PrecompileSources(script=script))

    def test_missing_script(self, tmp_path, tracer):
        with pytest.raises(PrecompileScriptError, match="not found"):
            PrecompileCollector(tracer).collect(PrecompileSources(script=tmp_path / "nope.jl"))
        tracer.trace_script.assert_not_called()

    def test_script_failure_discards_everything(self, tmp_path, tracer, script):
        statements_file = tmp_path / "trace.jl"
        statements_file.write_text(HELLO.to_line() + "\n")
        tracer.trace_script.side_effect = PrecompileScriptError("boom", subject=str(script))

        with pytest.raises(PrecompileScriptError):
            PrecompileCollector(tracer).collect(
                PrecompileSources(script=script, statements_file=statements_file)
            )

    def test_infer_without_session_is_empty(self):
        assert PrecompileCollector().collect(PrecompileSources(infer=True)) == set()
