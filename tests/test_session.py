"""
Tests for the Build Session Host.

Most tests run the fake runtime as a real subprocess.
"""

import sys
from unittest.mock import MagicMock, patch

import pytest

from imageforge.core.errors import BuildTimeoutError, PrecompileScriptError, SessionError
from imageforge.core.session import BuildSession, SessionState
from imageforge.domain.models import PackageId, PrecompileSources, PrecompileStatement
from support.helpers import write_image

EXAMPLE = PackageId(name="Example", uuid="e", version="0.5.3")
JSON3 = PackageId(name="JSON3", uuid="j", version="1.13.2")
BROKEN = PackageId(name="BrokenPkg", uuid="b", version="0.1.0")

HELLO = PrecompileStatement(callable="Example.hello", arg_types=("String",))
UNLOADED = PrecompileStatement(callable="GLMakie.display", arg_types=("Figure",))


class TestSessionLifecycle:
    """State machine tests against the fake runtime."""

    def test_start_enters_loading(self, settings):
        with BuildSession(settings) as session:
            assert session.state == SessionState.STARTING
            session.start()
            assert session.state == SessionState.LOADING
            assert session.base_packages == []
        assert session.state == SessionState.TERMINATED

    def test_run_reaches_ready(self, settings):
        with BuildSession(settings) as session:
            session.run([EXAMPLE, JSON3], [HELLO])
            assert session.state == SessionState.READY
            assert session.packages == ["Example", "JSON3"]
            assert session.report.compiled == 1
            assert session.report.skipped == []

    def test_unavailable_symbols_are_skipped(self, settings):
        with BuildSession(settings) as session:
            session.run([EXAMPLE], [HELLO, UNLOADED])
            assert session.state == SessionState.READY
            assert session.report.compiled == 1
            assert session.report.skipped == [UNLOADED.to_line()]
        assert "STATEMENT_SKIPPED" in session.journal.events()

    def test_base_image_packages_are_present(self, settings, tmp_path):
        base = write_image(tmp_path / "base.so", ["Example"])
        with BuildSession(settings, base_image=base) as session:
            session.run([EXAMPLE, JSON3])
            assert session.base_packages == ["Example"]
            assert [p.name for p in session.loaded] == ["JSON3"]
            assert session.packages == ["Example", "JSON3"]

    def test_terminate_is_idempotent(self, settings):
        session = BuildSession(settings)
        session.start()
        session.terminate()
        session.terminate()
        assert session.state == SessionState.TERMINATED

    def test_exception_inside_block_fails_and_terminates(self, settings):
        with pytest.raises(RuntimeError):
            with BuildSession(settings) as session:
                session.start()
                raise RuntimeError("caller bug")
        assert session.state == SessionState.TERMINATED
        assert "SESSION_FAILED" in session.journal.events()


class TestSessionFailures:
    """Failures are fatal and name the phase and the offending input."""

    def test_load_failure(self, settings):
        with BuildSession(settings) as session:
            with pytest.raises(SessionError) as exc_info:
                session.run([EXAMPLE, BROKEN, JSON3])
            assert session.state == SessionState.FAILED

        error = exc_info.value
        assert error.phase == "loading"
        assert error.package == "BrokenPkg"
        assert "syntax error" in error.cause
        assert [p.name for p in session.loaded] == ["Example"]

    def test_missing_package_source(self, settings, tmp_path):
        ghost = PackageId(name="Ghost", uuid="g", path=str(tmp_path / "dev" / "Ghost"))
        with BuildSession(settings) as session:
            with pytest.raises(SessionError, match="source not found"):
                session.run([ghost])

    def test_missing_runtime_executable(self, settings, tmp_path):
        settings.runtime_command = [str(tmp_path / "no-such-runtime")]
        with BuildSession(settings) as session:
            with pytest.raises(SessionError) as exc_info:
                session.start()
        assert exc_info.value.phase == "starting"

    def test_runtime_that_exits_immediately(self, settings):
        settings.runtime_command = [sys.executable, "-c", "import sys; sys.exit(3)"]
        with BuildSession(settings) as session:
            with pytest.raises(SessionError, match="failed to start"):
                session.start()

    def test_missing_base_image(self, settings, tmp_path):
        with BuildSession(settings, base_image=tmp_path / "gone.so") as session:
            with pytest.raises(SessionError, match="Base image not found"):
                session.start()
        assert session.state == SessionState.TERMINATED

    def test_no_mutation_after_ready(self, settings):
        with BuildSession(settings) as session:
            session.run([EXAMPLE])
            with pytest.raises(SessionError, match="ready"):
                session.load([JSON3])
            with pytest.raises(SessionError):
                session.compile([HELLO])

    def test_emit_requires_ready(self, settings, tmp_path):
        with BuildSession(settings) as session:
            session.start()
            with pytest.raises(SessionError):
                session.emit_object(tmp_path / "x.o", incremental=True)

    def test_dead_mans_switch(self, settings):
        settings.session_timeout_seconds = 3
        with BuildSession(settings, runtime_args=["--hang-on", "load"]) as session:
            with pytest.raises(BuildTimeoutError) as exc_info:
                session.run([EXAMPLE])
        assert exc_info.value.phase == "loading"
        assert isinstance(exc_info.value, SessionError)
        assert "TIMEOUT_TRIGGERED" in session.journal.events()


class TestPrecompileScript:
    """Script tracing runs inside the session."""

    def test_script_statements_are_compiled(self, settings, tmp_path):
        script = tmp_path / "warmup.jl"
        script.write_text('# warm up\nExample.hello("friend")\nExample.hello(42)\n')

        with BuildSession(settings) as session:
            session.run([EXAMPLE], sources=PrecompileSources(script=script, infer=True))
            assert session.state == SessionState.READY
            # two traced calls + one inferred __init__
            assert session.report.compiled == 3

    def test_script_failure(self, settings, tmp_path):
        script = tmp_path / "warmup.jl"
        script.write_text('Example.hello("friend")\nerror("no network")\n')

        with BuildSession(settings) as session:
            with pytest.raises(PrecompileScriptError) as exc_info:
                session.run([EXAMPLE], sources=PrecompileSources(script=script))
            assert session.state == SessionState.FAILED
        assert exc_info.value.subject == str(script)

    def test_script_referencing_unloaded_package_fails(self, settings, tmp_path):
        script = tmp_path / "warmup.jl"
        script.write_text('Plots.plot(1)\n')

        with BuildSession(settings) as session:
            with pytest.raises(PrecompileScriptError, match="UndefVarError"):
                session.run([EXAMPLE], sources=PrecompileSources(script=script))


class TestSessionWithMockedRuntime:
    """Protocol-level behaviour with the runtime client mocked out."""

    @patch("imageforge.core.session.RuntimeProcess")
    def test_packages_in_base_image_are_not_reloaded(self, mock_process_cls, settings, tmp_path):
        base = write_image(tmp_path / "base.so", ["Example"])
        process = MagicMock()
        process.start.return_value = {"ok": True, "packages": ["Example"]}
        process.request.return_value = {"ok": True}
        mock_process_cls.return_value = process

        session = BuildSession(settings, base_image=base)
        session.start()
        session.load([EXAMPLE, JSON3])
        session.terminate()

        process.request.assert_called_once()
        args, kwargs = process.request.call_args
        assert args == ("load",)
        assert kwargs["package"]["name"] == "JSON3"

    @patch("imageforge.core.session.RuntimeProcess")
    def test_runtime_launched_with_image_flag(self, mock_process_cls, settings, tmp_path):
        base = write_image(tmp_path / "base.so", [])
        mock_process_cls.return_value.start.return_value = {"ok": True, "packages": []}

        session = BuildSession(settings, base_image=base, runtime_args=["--threads=4"])
        session.start()
        session.terminate()

        _, kwargs = mock_process_cls.call_args
        assert kwargs["image"] == base
        assert kwargs["image_flag"] == settings.image_flag
        assert kwargs["extra_args"] == ["--threads=4"]
