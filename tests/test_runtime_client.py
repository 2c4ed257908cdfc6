"""
Tests for the runtime subprocess client, against the fake runtime.
"""

import sys

import pytest

from imageforge.infra.runtime_client import RuntimeProcess, RuntimeProcessError, RuntimeRequestError
from support.helpers import RUNTIME_COMMAND, write_image


class TestRuntimeProcess:
    def test_handshake_reports_image_packages(self, tmp_path):
        image = write_image(tmp_path / "base.so", ["Colors"])
        process = RuntimeProcess(RUNTIME_COMMAND, image=image)
        try:
            hello = process.start()
            assert hello["packages"] == ["Colors"]
            assert process.is_alive()
            assert process.argv[-2:] == ["--image", str(image)]
        finally:
            assert process.close(grace_seconds=5) == 0
        assert not process.is_alive()

    def test_non_protocol_output_is_ignored(self, start_runtime):
        process = start_runtime(extra_args=["--noise"])
        assert process.request("loaded")["packages"] == []

    def test_request_error_carries_kind(self, start_runtime):
        process = start_runtime()
        with pytest.raises(RuntimeRequestError) as exc_info:
            process.request("load", package={"name": "BrokenPkg"})
        assert exc_info.value.kind == "load"
        assert "syntax error" in str(exc_info.value)
        # the process survives a refused request
        assert process.request("loaded")["packages"] == []

    def test_unknown_op(self, start_runtime):
        with pytest.raises(RuntimeRequestError) as exc_info:
            start_runtime().request("teleport")
        assert exc_info.value.kind == "protocol"

    def test_reply_timeout(self, start_runtime):
        process = start_runtime(extra_args=["--hang-on", "loaded"])
        with pytest.raises(RuntimeProcessError, match="did not answer"):
            process.request("loaded", timeout=0.5)
        process.kill()

    def test_process_exit(self):
        process = RuntimeProcess([sys.executable, "-c", "import sys; sys.stderr.write('fatal: no memory\\n')"])
        with pytest.raises(RuntimeProcessError):
            process.start()
        process.close(grace_seconds=5)
        assert "fatal: no memory" in process.stderr_tail()

    def test_missing_executable(self, tmp_path):
        process = RuntimeProcess([str(tmp_path / "nope")])
        with pytest.raises(RuntimeProcessError, match="Cannot launch runtime"):
            process.start()
        assert process.close() is None

    def test_request_before_start(self):
        with pytest.raises(RuntimeProcessError, match="not started"):
            RuntimeProcess(RUNTIME_COMMAND).request("hello")
