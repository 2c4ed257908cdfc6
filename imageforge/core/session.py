# Copyright 2026 Pramod Kumar Voola
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

# -----------------------------------------------------------------------------
# THE BUILD SESSION HOST
# -----------------------------------------------------------------------------
# Responsibility: Drive one runtime process from launch to teardown:
# load the resolved packages, execute precompile statements so their
# specializations materialize, then hold the process still while the Linker
# reads its state.
#
# State machine:
#   STARTING -> LOADING -> COMPILING -> READY -> TERMINATED
#   FAILED is reachable from any state before TERMINATED.
#
# Safety Features:
# - Dead Man's Switch: the runtime is killed after session_timeout_seconds
# - Context manager: leaving the block (error or Ctrl-C) tears the process down
#
# Package code and the precompile script run with the caller's full
# privileges. The session does not sandbox them.
# -----------------------------------------------------------------------------

import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, Sequence

from rich.console import Console
from rich.markup import escape

from imageforge.core.collector import PrecompileCollector
from imageforge.core.config import Settings
from imageforge.core.errors import BuildTimeoutError, PrecompileScriptError, SessionError
from imageforge.core.journal import BuildJournal
from imageforge.domain.models import PackageId, PrecompileSources, PrecompileStatement
from imageforge.infra.runtime_client import RuntimeProcess, RuntimeProcessError, RuntimeRequestError

console = Console()


class SessionState(str, Enum):
    """Lifecycle of a build session."""

    STARTING = "starting"
    LOADING = "loading"
    COMPILING = "compiling"
    READY = "ready"
    TERMINATED = "terminated"
    FAILED = "failed"


_TRANSITIONS = {
    SessionState.STARTING: {SessionState.LOADING, SessionState.FAILED, SessionState.TERMINATED},
    SessionState.LOADING: {SessionState.COMPILING, SessionState.FAILED, SessionState.TERMINATED},
    SessionState.COMPILING: {SessionState.READY, SessionState.FAILED, SessionState.TERMINATED},
    SessionState.READY: {SessionState.FAILED, SessionState.TERMINATED},
    SessionState.FAILED: {SessionState.TERMINATED},
    SessionState.TERMINATED: set(),
}


@dataclass
class CompileReport:
    """Outcome of the COMPILING phase."""

    compiled: int = 0
    skipped: list[str] = field(default_factory=list)


class BuildSession:
    """
    One runtime process used for one image build, then thrown away.

    With a base image the runtime starts from that image's state, which is
    what makes a build incremental: nothing already baked into the base is
    loaded again.
    """

    def __init__(
        self,
        settings: Settings,
        base_image: Path | None = None,
        runtime_args: Sequence[str] = (),
        journal: BuildJournal | None = None,
    ) -> None:
        self.settings = settings
        self.base_image = Path(base_image) if base_image else None
        self.runtime_args = list(runtime_args)
        self.journal = journal or BuildJournal()

        self.base_packages: list[str] = []
        self.loaded: list[PackageId] = []
        self.report = CompileReport()

        self._state = SessionState.STARTING
        self._process: RuntimeProcess | None = None
        self._timer: threading.Timer | None = None
        self._timed_out = threading.Event()

    # -- state -----------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def packages(self) -> list[str]:
        """Every package present in the session, base image included."""
        names = list(self.base_packages)
        names += [p.name for p in self.loaded if p.name not in names]
        return names

    def _transition(self, new: SessionState) -> None:
        if new not in _TRANSITIONS[self._state]:
            raise SessionError(
                f"Illegal session transition {self._state.value} -> {new.value}",
                phase=self._state.value,
            )
        self._state = new

    def _require(self, *states: SessionState) -> None:
        if self._state not in states:
            allowed = ", ".join(s.value for s in states)
            raise SessionError(
                f"Session is {self._state.value}; expected {allowed}", phase=self._state.value
            )

    def _fail(self) -> None:
        if self._state not in (SessionState.FAILED, SessionState.TERMINATED):
            self._state = SessionState.FAILED
            self.journal.log("SESSION_FAILED")

    def _enter_compiling(self) -> None:
        if self._state == SessionState.LOADING:
            self._transition(SessionState.COMPILING)
        self._require(SessionState.COMPILING)

    # -- process ---------------------------------------------------------------

    def _dead_mans_switch(self) -> None:
        """Kill the runtime after timeout."""
        self._timed_out.set()
        console.print("[red][SESSION] TIMEOUT! Killing runtime...[/red]")
        self.journal.log("TIMEOUT_TRIGGERED", f"Limit: {self.settings.session_timeout_seconds}s")
        if self._process is not None:
            self._process.kill()

    def _call(self, op: str, subject: str | None = None, **payload) -> dict:
        """
        Send a request, turning transport failures into SessionError.

        RuntimeRequestError (the runtime answered ok=false) is left to the
        caller, which knows whether that failure is fatal.
        """
        phase = self._state.value
        try:
            return self._process.request(op, **payload)
        except RuntimeProcessError as e:
            self._fail()
            if self._timed_out.is_set():
                raise BuildTimeoutError(
                    f"Session exceeded {self.settings.session_timeout_seconds}s",
                    subject=subject,
                    phase=phase,
                    cause=e.stderr,
                )
            raise SessionError(str(e), subject=subject, phase=phase, cause=e.stderr)

    def start(self) -> None:
        """
        Launch the runtime (from the base image, if any).

        Raises:
            SessionError: Base image missing or runtime failed to start.
        """
        self._require(SessionState.STARTING)

        if self.base_image is not None and not self.base_image.is_file():
            self._fail()
            raise SessionError("Base image not found", subject=str(self.base_image), phase="starting")

        self._process = RuntimeProcess(
            self.settings.runtime_command,
            image=self.base_image,
            image_flag=self.settings.image_flag,
            extra_args=self.runtime_args,
        )
        source = self.base_image or "fresh runtime"
        console.print(
            f"[cyan][SESSION] Starting runtime from {source} "
            f"(TTL: {self.settings.session_timeout_seconds}s)[/cyan]"
        )

        self._timer = threading.Timer(self.settings.session_timeout_seconds, self._dead_mans_switch)
        self._timer.daemon = True
        self._timer.start()

        try:
            hello = self._process.start()
        except RuntimeProcessError as e:
            self._fail()
            raise SessionError(f"Runtime failed to start: {e}", phase="starting", cause=e.stderr)
        except RuntimeRequestError as e:
            self._fail()
            raise SessionError(f"Runtime rejected handshake: {e}", phase="starting", cause=str(e))

        self.base_packages = [str(name) for name in hello.get("packages", [])]
        self.journal.log("SESSION_STARTED", f"pid={self._process.pid} base={self.base_image}")
        console.print(
            f"[green][SESSION] Runtime active (pid {self._process.pid}, "
            f"{len(self.base_packages)} packages from base image)[/green]"
        )
        self._transition(SessionState.LOADING)

    # -- phases ----------------------------------------------------------------

    def load(self, packages: Iterable[PackageId]) -> None:
        """
        Load packages in order. Any failure is fatal for the build.

        Raises:
            SessionError: phase "loading", naming the package.
        """
        self._require(SessionState.LOADING)

        for package in packages:
            if package.name in self.base_packages:
                console.print(f"[dim][SESSION] {package.name} already in base image[/dim]")
                continue

            console.print(f"[cyan][SESSION] Loading {package}...[/cyan]")
            try:
                self._call("load", subject=package.name, package=package.model_dump(mode="json"))
            except RuntimeRequestError as e:
                self._fail()
                console.print(f"[red][SESSION] Failed to load {package.name}: {escape(str(e))}[/red]")
                self.journal.log("LOAD_FAILED", f"{package.name}: {e}")
                raise SessionError(
                    f"Failed to load package: {e}", subject=package.name, phase="loading", cause=str(e)
                )

            self.loaded.append(package)
            self.journal.log("PACKAGE_LOADED", str(package))

    def trace_script(self, script: Path) -> list[str]:
        """
        Run a precompile script and return the statements it triggered.

        Raises:
            PrecompileScriptError: The script raised inside the runtime.
        """
        self._enter_compiling()
        try:
            reply = self._call("trace", subject=str(script), script=str(Path(script).resolve()))
        except RuntimeRequestError as e:
            self._fail()
            self.journal.log("SCRIPT_FAILED", str(e))
            raise PrecompileScriptError(f"Precompile script failed: {e}", subject=str(script))

        statements = [str(line) for line in reply.get("statements", [])]
        self.journal.log("SCRIPT_TRACED", f"{script}: {len(statements)} calls")
        return statements

    def infer_statements(self) -> list[str]:
        """Statements the runtime derives from the loaded code."""
        self._enter_compiling()
        try:
            reply = self._call("infer")
        except RuntimeRequestError as e:
            console.print(f"[yellow][SESSION] Inference unavailable: {escape(str(e))}[/yellow]")
            self.journal.log("INFER_FAILED", str(e))
            return []
        return [str(line) for line in reply.get("statements", [])]

    def compile(self, statements: Iterable[PrecompileStatement]) -> CompileReport:
        """
        Execute each statement so its specialization is compiled.

        Statements naming symbols that are not loaded, or that fail inside
        the runtime, are logged and skipped rather than failing the build.
        """
        self._enter_compiling()

        ordered = sorted(set(statements), key=lambda s: s.to_line())
        if ordered:
            console.print(f"[cyan][SESSION] Compiling {len(ordered)} statements...[/cyan]")

        for statement in ordered:
            try:
                reply = self._call("precompile", subject=str(statement), statement=statement.to_line())
            except RuntimeRequestError as e:
                reason = str(e)
            else:
                if not reply.get("skipped"):
                    self.report.compiled += 1
                    continue
                reason = str(reply.get("reason", "unavailable"))

            self.report.skipped.append(statement.to_line())
            console.print(f"[yellow][SESSION] Skipped {statement}: {escape(reason)}[/yellow]", highlight=False)
            self.journal.log("STATEMENT_SKIPPED", f"{statement.to_line()}: {reason}")

        self.journal.log(
            "STATEMENTS_COMPILED",
            f"compiled={self.report.compiled} skipped={len(self.report.skipped)}",
        )
        return self.report

    def seal(self) -> None:
        """Enter READY. Nothing may change the session after this."""
        self._enter_compiling()
        self._transition(SessionState.READY)
        self.journal.log("SESSION_READY", ", ".join(self.packages))
        console.print("[green][SESSION] Session ready for linking[/green]")

    def run(
        self,
        packages: Iterable[PackageId],
        statements: Iterable[PrecompileStatement] = (),
        sources: PrecompileSources | None = None,
    ) -> "BuildSession":
        """
        Start (if needed), load, compile and seal.

        `sources` names the session-bound precompile sources (script and
        infer); their statements are collected here and merged with
        `statements`.

        Returns:
            This session, READY for the Linker.
        """
        if self._state == SessionState.STARTING:
            self.start()
        self.load(packages)

        pending = set(statements)
        if sources is not None and not sources.is_empty():
            pending |= PrecompileCollector(self).collect(sources)

        self.compile(pending)
        self.seal()
        return self

    def emit_object(
        self,
        path: Path,
        incremental: bool,
        cpu_target: str | None = None,
        data_path: Path | None = None,
    ) -> dict:
        """
        Ask the READY runtime to serialize its state into an object file.

        `data_path` is where the runtime may write a companion data file if
        its constant-embedding strategy needs one.

        Returns:
            The runtime's reply (`packages`, optional companion `data` path).

        Raises:
            SessionError: Session not READY or the runtime died.
            RuntimeRequestError: The runtime refused to emit.
        """
        self._require(SessionState.READY)
        return self._call(
            "emit",
            subject=str(path),
            object=str(path),
            incremental=incremental,
            cpu_target=cpu_target,
            data=str(data_path) if data_path else None,
        )

    def terminate(self) -> None:
        """Tear the runtime down. Safe to call more than once."""
        if self._state == SessionState.TERMINATED:
            return
        if self._timer is not None:
            self._timer.cancel()
        code = None
        if self._process is not None:
            code = self._process.close(self.settings.shutdown_grace_seconds)
        self._state = SessionState.TERMINATED
        self.journal.log("SESSION_TERMINATED", f"exit code: {code}")
        console.print(f"[dim][SESSION] Runtime terminated (exit code: {code})[/dim]")

    def __enter__(self) -> "BuildSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            self._fail()
        self.terminate()
        return False
