"""
Pytest configuration and fixtures for imageforge tests.

End-to-end tests drive tests/support/fake_runtime.py and fake_linker.py
through the real subprocess protocol, so no language runtime or C
toolchain is needed.
"""

import sys
from pathlib import Path

import pytest

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from imageforge.core.config import Settings  # noqa: E402
from imageforge.infra.runtime_client import RuntimeProcess  # noqa: E402
from support.helpers import (  # noqa: E402
    EXAMPLE_GRAPH,
    LINKER_COMMAND,
    RUNTIME_COMMAND,
    write_project,
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep user settings and .env files out of the tests."""
    for name in (
        "IMAGEFORGE_CONFIG",
        "IMAGEFORGE_PROJECT",
        "IMAGEFORGE_DEFAULT_IMAGE",
        "IMAGEFORGE_RUNTIME",
        "IMAGEFORGE_LINKER",
        "IMAGEFORGE_BUILD_LOG_DIR",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def project_dir(tmp_path):
    """A project pinning EXAMPLE_GRAPH."""
    return write_project(tmp_path / "project", EXAMPLE_GRAPH)


@pytest.fixture
def settings(tmp_path):
    """Settings wired to the fake runtime and linker, slot under tmp_path."""
    return Settings(
        runtime_command=RUNTIME_COMMAND,
        linker_command=LINKER_COMMAND,
        default_image=tmp_path / "slot" / "default.so",
        session_timeout_seconds=60,
        link_timeout_seconds=60,
        shutdown_grace_seconds=5,
    )


@pytest.fixture
def start_runtime():
    """Start the fake runtime from an image, as a later process start would."""
    processes = []

    def _start(image: Path | None = None, extra_args=()):
        process = RuntimeProcess(RUNTIME_COMMAND, image=image, extra_args=extra_args)
        process.start()
        processes.append(process)
        return process

    yield _start

    for process in processes:
        process.close(grace_seconds=5)
